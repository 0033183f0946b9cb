from .taxonomy import TaxonomyNode, Grammar, GrammarRule
from .job import QueueEntry, ClassificationJob, decode_job, DEFAULT_JOB_KIND
from .result import ProductEnvelope, ClassificationResult, ProcessingStatus
from .llm import LLMResponse
from .image import PreparedImage
from .settings import Settings, EngineSettings, QueueSettings, TaxonomySettings, AccelerationProfile
