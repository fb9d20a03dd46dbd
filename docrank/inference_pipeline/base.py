"""
Abstract gateway interface and error taxonomy for the inference service.
Errors carry a retryable flag that the retry policy and the API classifier read.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence

from docrank.models.schemas import GenerationResult, ModelDescriptor, RerankItem


class IInferenceGateway(ABC):
    """
    Abstract interface to a language-model inference service.
    Only the calls the ranking pipeline needs are part of the contract.
    """

    @abstractmethod
    async def is_available(self) -> bool:
        """Check whether the service answers."""
        pass

    @abstractmethod
    async def list_models(self, force_refresh: bool = False) -> List[ModelDescriptor]:
        """List installed models."""
        pass

    @abstractmethod
    async def pull_model(self, model_name: str) -> bool:
        """Install a model, blocking until the pull stream ends."""
        pass

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        max_retries: Optional[int] = None
    ) -> GenerationResult:
        """Generate text for a prompt."""
        pass

    @abstractmethod
    async def embed(self, text: str, model: Optional[str] = None) -> List[float]:
        """Compute an embedding vector for text."""
        pass

    @abstractmethod
    async def generate_relevance_scores(
        self,
        query: str,
        items: Sequence[RerankItem]
    ) -> Dict[str, int]:
        """Ask the model for 0-100 relevance scores keyed by item id."""
        pass


class InferenceGatewayError(Exception):
    """Base exception for inference gateway operations."""
    retryable = False


class TransientGatewayError(InferenceGatewayError):
    """A failure that may succeed when retried."""
    retryable = True


class ServiceUnavailableError(TransientGatewayError):
    """Raised when the service cannot be reached or reports overload."""
    pass


class GatewayTimeoutError(TransientGatewayError):
    """Raised when a request exceeds its timeout class."""
    pass


class ModelExecutionError(TransientGatewayError):
    """Raised when the model reports an error while generating."""
    pass


class CircuitOpenError(InferenceGatewayError):
    """Raised without network I/O while the circuit breaker is open."""
    pass


class ModelNotFoundError(InferenceGatewayError):
    """Raised when no requested or fallback model could be used."""
    pass


class ModelPullError(InferenceGatewayError):
    """Raised when a model download fails."""
    pass


class MalformedResponseError(InferenceGatewayError):
    """Raised when the service returns a payload that cannot be understood."""
    pass


class UnauthorizedError(InferenceGatewayError):
    """Raised when the service rejects the credentials."""
    pass


class InvalidRequestError(InferenceGatewayError):
    """Raised when the service rejects the request as invalid."""
    pass


def is_retryable_error(error: BaseException) -> bool:
    """Check whether a failed generation attempt should be retried."""
    return isinstance(error, InferenceGatewayError) and error.retryable
