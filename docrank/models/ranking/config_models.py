"""
Ranking Configuration Models
Every tunable of the ranking pipeline and the inference gateway, with defaults.
"""

from typing import List
from pydantic import BaseModel, Field, field_validator, model_validator

from docrank.config.settings import settings


DEFAULT_FALLBACK_MODELS = [
    "tinyllama:latest",
    "tinyllama",
    "phi3:mini",
    "qwen2:0.5b",
    "gemma2:2b",
]


class TimeoutConfig(BaseModel):
    """Timeout classes for calls to the inference service, in seconds."""
    health_check: float = Field(default=5.0, gt=0, description="Availability check")
    generation: float = Field(default=120.0, gt=0, description="Single text generation request")
    model_loading: float = Field(default=60.0, gt=0, description="Listing installed models")
    model_pull: float = Field(default=600.0, gt=0, description="Streamed model download")
    embedding: float = Field(default=45.0, gt=0, description="Single embedding request")


class RetryConfig(BaseModel):
    """Retry policy for one logical generation call."""
    max_retries: int = Field(default=3, ge=1, le=10)
    base_delay: float = Field(default=1.0, ge=0.0, description="First backoff delay in seconds")
    max_delay: float = Field(default=10.0, ge=0.0, description="Upper bound for any backoff delay")
    jitter: float = Field(default=1.0, ge=0.0, description="Uniform random jitter added to each delay")

    @field_validator('max_delay')
    @classmethod
    def max_delay_not_below_base(cls, v, info):
        base_delay = info.data.get('base_delay', 1.0)
        if v < base_delay:
            raise ValueError('max_delay must be greater than or equal to base_delay')
        return v


class CircuitBreakerConfig(BaseModel):
    """Circuit breaker guarding generation requests."""
    failure_threshold: int = Field(default=5, ge=1)
    reset_timeout: float = Field(default=60.0, gt=0, description="Seconds an open circuit stays open")


class GatewayConfig(BaseModel):
    """Connection and model settings for the inference gateway."""
    base_url: str = Field(default_factory=lambda: settings.OLLAMA_HOST)
    default_model: str = Field(default_factory=lambda: settings.OLLAMA_MODEL)
    fallback_models: List[str] = Field(default_factory=lambda: list(DEFAULT_FALLBACK_MODELS))
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=1024, ge=1)
    top_p: float = Field(default=0.9, ge=0.0, le=1.0)
    top_k: int = Field(default=40, ge=1)
    model_cache_ttl: float = Field(default=300.0, ge=0.0, description="Seconds the installed-model list is reused")
    model_ready_delay: float = Field(default=3.0, ge=0.0, description="Pause after an automatic pull")
    service_wait_timeout: float = Field(default=30.0, ge=0.0, description="Startup wait for the service")


class EmbeddingConfig(BaseModel):
    """Configuration for the embedding client."""
    model: str = Field(default_factory=lambda: settings.EMBEDDING_MODEL)
    cache_size: int = Field(default=500, ge=1)
    cache_key_length: int = Field(default=1024, ge=1)
    max_input_chars: int = Field(default=8000, ge=1)
    dimension: int = Field(default=0, ge=0, description="0 infers the dimension from the first response")


class RerankConfig(BaseModel):
    """Configuration for language-model re-ranking."""
    batch_size: int = Field(default=8, ge=1, le=50)
    time_budget: float = Field(default=30.0, gt=0, description="Wall-clock budget for the re-rank call")
    excerpt_length: int = Field(default=400, ge=1, description="Excerpt used for the prompt and the fallback")
    prompt_excerpt_length: int = Field(default=280, ge=1)
    max_tokens: int = Field(default=400, ge=1)


class FusionWeights(BaseModel):
    """Weights for combining normalized signals."""
    lexical: float = Field(default=0.4, ge=0.0, le=1.0)
    semantic: float = Field(default=0.3, ge=0.0, le=1.0)
    llm: float = Field(default=0.3, ge=0.0, le=1.0)

    # Used when a candidate has no language-model score
    fallback_lexical: float = Field(default=0.6, ge=0.0, le=1.0)
    fallback_semantic: float = Field(default=0.4, ge=0.0, le=1.0)

    precision: int = Field(default=4, ge=0, le=10)

    @field_validator('llm')
    @classmethod
    def weights_sum_to_one(cls, v, info):
        total = info.data.get('lexical', 0.4) + info.data.get('semantic', 0.3) + v
        if abs(total - 1.0) > 0.01:
            raise ValueError('Lexical, semantic and llm weights must sum to 1.0')
        return v

    @field_validator('fallback_semantic')
    @classmethod
    def fallback_weights_sum_to_one(cls, v, info):
        if abs((info.data.get('fallback_lexical', 0.6) + v) - 1.0) > 0.01:
            raise ValueError('Fallback lexical and semantic weights must sum to 1.0')
        return v


class SearchConfig(BaseModel):
    """Configuration for candidate retrieval and the response shape."""
    max_candidate_window: int = Field(default=200, ge=1, description="Upper bound on candidates fetched per request")
    display_excerpt_length: int = Field(default=500, ge=1)
    semantic_scan_limit: int = Field(default=100, ge=1, description="Embedded documents compared by semantic search")
    facet_limit: int = Field(default=20, ge=1, description="Buckets returned for file type and author facets")
    tag_facet_limit: int = Field(default=50, ge=1)


class RankingConfiguration(BaseModel):
    """Main ranking configuration container."""
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    rerank: RerankConfig = Field(default_factory=RerankConfig)
    fusion: FusionWeights = Field(default_factory=FusionWeights)
    search: SearchConfig = Field(default_factory=SearchConfig)

    @model_validator(mode='after')
    def check_timeout_hierarchy(self):
        if self.rerank.time_budget >= self.timeouts.generation:
            raise ValueError('Re-rank time budget must be shorter than the generation timeout')
        if self.timeouts.health_check >= self.timeouts.generation:
            raise ValueError('Health-check timeout must be shorter than the generation timeout')
        return self
