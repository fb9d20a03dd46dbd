"""Ranking-related configuration models."""

from .config_models import (
    TimeoutConfig,
    RetryConfig,
    CircuitBreakerConfig,
    GatewayConfig,
    EmbeddingConfig,
    RerankConfig,
    FusionWeights,
    SearchConfig,
    RankingConfiguration,
    DEFAULT_FALLBACK_MODELS
)

__all__ = [
    "TimeoutConfig",
    "RetryConfig",
    "CircuitBreakerConfig",
    "GatewayConfig",
    "EmbeddingConfig",
    "RerankConfig",
    "FusionWeights",
    "SearchConfig",
    "RankingConfiguration",
    "DEFAULT_FALLBACK_MODELS"
]
