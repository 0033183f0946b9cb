from __future__ import annotations

import json
import time
from typing import Any, Dict, List, Optional

from openai import APIError, OpenAI

from image2taxonomy.exception import InferenceError
from image2taxonomy.logger import get_logger
from image2taxonomy.models import LLMResponse

logger = get_logger(__name__)

# llama-server ignores the key but the SDK requires one.
LOCAL_API_KEY = "sk-no-key-required"


class OpenAIClient:
    """
    Thin wrapper around the OpenAI chat-completions API, pointed at the
    OpenAI-compatible endpoint of a local llama-server. Supports a GBNF
    grammar as a hard constraint on the generated text.

    Requests are never retried: a failure belongs to the job that issued it.
    """

    def __init__(
        self,
        base_url: str,
        model: str = "qwen3vl",
        temperature: float = 0.05,
        max_tokens: int = 768,
        timeout: Optional[float] = 600.0,
        client: Optional[OpenAI] = None,
    ) -> None:
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.base_url = base_url.rstrip("/")

        self.client = client or OpenAI(
            api_key=LOCAL_API_KEY,
            base_url=f"{self.base_url}/v1",
            timeout=timeout,
            max_retries=0,
        )

    # ------------------------------------------------------------------
    def chat_with_image(
        self,
        system_prompt: str,
        user_prompt: str,
        image_data_url: str,
        grammar: Optional[str] = None,
    ) -> LLMResponse:
        """
        Send one system + user(text, image) exchange and return the first choice.

        Args:
            system_prompt: Classification policy.
            user_prompt: Instruction for the answer format.
            image_data_url: "data:<mime>;base64,<...>" reference to the image.
            grammar: Optional GBNF grammar constraining the output.

        Raises:
            InferenceError: transport failure, non-2xx status, malformed
                envelope, no choices or empty content.
        """
        messages: List[Dict[str, Any]] = [
            {"role": "system", "content": system_prompt},
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": user_prompt},
                    {"type": "image_url", "image_url": {"url": image_data_url}},
                ],
            },
        ]
        extra_body = {"grammar": grammar} if grammar else None

        logger.info(
            f"Sending chat request to {self.base_url}/v1/chat/completions "
            f"(image payload: {len(image_data_url)} bytes)"
        )
        started = time.perf_counter()
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                extra_body=extra_body,
            )
        except APIError as exc:
            logger.error("Chat request failed: %s", exc)
            raise InferenceError(f"request failed: {exc}")
        except (ValueError, TypeError) as exc:
            logger.error("Could not parse chat response: %s", exc)
            raise InferenceError(f"failed to parse chat response: {exc}")

        latency_ms = (time.perf_counter() - started) * 1000
        return self._to_llm_response(response, latency_ms)

    # ------------------------------------------------------------------
    def _to_llm_response(self, response: Any, latency_ms: float) -> LLMResponse:
        raw = self._dump(response)

        choices = getattr(response, "choices", None)
        if not choices:
            raise InferenceError(f"no choices in response: {raw}")

        choice = choices[0]
        message = getattr(choice, "message", None)
        content = getattr(message, "content", None)
        if not isinstance(content, str) or not content:
            raise InferenceError(f"empty content in response: {raw}")

        finish_reason = getattr(choice, "finish_reason", None)
        if finish_reason == "length":
            logger.warning("AI generation was truncated (hit token limit)")

        usage = getattr(response, "usage", None)
        model_name = getattr(response, "model", None)
        logger.info(f"AI generated {len(content)} characters, finish_reason: {finish_reason}")

        return LLMResponse(
            content=content,
            raw_response=raw,
            model_name=model_name if isinstance(model_name, str) else self.model,
            finish_reason=finish_reason if isinstance(finish_reason, str) else None,
            prompt_tokens=_token_count(usage, "prompt_tokens"),
            completion_tokens=_token_count(usage, "completion_tokens"),
            total_tokens=_token_count(usage, "total_tokens"),
            latency_ms=latency_ms,
        )

    @staticmethod
    def _dump(response: Any) -> str:
        """Best-effort JSON text of a response object, for logs and error messages."""
        dump = getattr(response, "model_dump", None)
        if callable(dump):
            try:
                return json.dumps(dump(), default=str)
            except (TypeError, ValueError):
                pass
        return str(response)


def _token_count(usage: Any, field: str) -> int:
    value = getattr(usage, field, None)
    return value if isinstance(value, int) else 0
