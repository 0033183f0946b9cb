from image2taxonomy.llm.openai_client import OpenAIClient
from image2taxonomy.llm.engine_supervisor import LlamaServerSupervisor

__all__ = ["OpenAIClient", "LlamaServerSupervisor"]
