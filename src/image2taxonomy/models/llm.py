from typing import Any, Dict, Optional
from pydantic import BaseModel

class LLMResponse(BaseModel):
    """
    Data Transfer Object (DTO) for a chat completion returned by the local engine.
    """
    content: str
    raw_response: str
    model_name: str
    finish_reason: Optional[str] = None
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    latency_ms: float = 0.0
    provider: str = "llama-server"
    metadata: Optional[Dict[str, Any]] = None

    @property
    def truncated(self) -> bool:
        return self.finish_reason == "length"
