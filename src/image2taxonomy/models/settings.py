from typing import Optional

from pydantic import BaseModel, Field

from image2taxonomy.models.job import DEFAULT_JOB_KIND

ACCELERATION_BACKENDS = ("cpu", "gpu", "metal", "arm")


class AccelerationProfile(BaseModel):
    backend: str = "cpu"
    gpu_layers: int = Field(0, ge=0)


class EngineSettings(BaseModel):
    """Everything the supervisor needs to launch and talk to llama-server."""

    server_path: str
    model_path: str
    grammar_path: str
    host: str = "127.0.0.1"
    port: int = 8080
    context_size: int = 8192
    acceleration: str = "cpu"
    gpu_layers: int = 0
    startup_timeout: float = 120.0
    health_interval: float = 1.0
    request_timeout: Optional[float] = 600.0
    max_tokens: int = 768
    temperature: float = 0.05
    model_alias: str = "qwen3vl"
    image_target_size: int = 768
    jpeg_quality: int = Field(90, ge=1, le=100)

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"


class QueueSettings(BaseModel):
    url: str = "redis://localhost:6379/0"
    name: str = "queue:default"
    job_class: str = DEFAULT_JOB_KIND
    retry_delay: float = 1.0


class TaxonomySettings(BaseModel):
    source: str = "https://raw.githubusercontent.com/Shopify/product-taxonomy/refs/heads/main/dist/en/taxonomy.json"
    vertical: str = "Apparel & Accessories"
    grammar_path: str


class Settings(BaseModel):
    project_root: str
    mode: str = "local"
    database_url: str
    engine: EngineSettings
    queue: QueueSettings
    taxonomy: TaxonomySettings
