"""
Ollama Gateway for docrank.
Resilient access to the Ollama inference service: health probing, retrying
generation behind a circuit breaker, embeddings, relevance scoring and the
model lifecycle (listing, pulling, bootstrap and fallback).
"""

import asyncio
import json
import random
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence

import httpx
import pybreaker
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt
from tenacity.wait import wait_base

from docrank.config.ranking_config import get_ranking_config
from docrank.models.ranking import RankingConfiguration
from docrank.models.schemas import GenerationResult, ModelDescriptor, PullStatus, RerankItem
from docrank.utils.logger import LoggerMixin
from .base import (
    GatewayTimeoutError,
    IInferenceGateway,
    InferenceGatewayError,
    InvalidRequestError,
    MalformedResponseError,
    ModelExecutionError,
    ModelNotFoundError,
    ModelPullError,
    ServiceUnavailableError,
    UnauthorizedError,
    is_retryable_error,
)
from .circuit_breaker import circuit_state, create_circuit_breaker, guarded_call
from .prompt_manager import RelevancePromptBuilder
from .response_handler import ParseFailure, RelevanceResponseParser


class JitteredBackoff(wait_base):
    """Exponential backoff with additive uniform jitter, capped at max_delay."""

    def __init__(
        self,
        base_delay: float,
        max_delay: float,
        jitter: float,
        rng: Callable[[], float] = random.random
    ) -> None:
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self._rng = rng

    def __call__(self, retry_state: RetryCallState) -> float:
        exponent = max(retry_state.attempt_number - 1, 0)
        delay = self.base_delay * (2 ** exponent) + self._rng() * self.jitter
        return min(delay, self.max_delay)


@dataclass
class _GenerationCall:
    """Per-call state shared by the attempts of one logical generation."""
    model: str
    auto_install_attempted: bool = False


class InferenceGateway(IInferenceGateway, LoggerMixin):
    """Gateway to an Ollama inference service."""

    def __init__(
        self,
        config: Optional[RankingConfiguration] = None,
        client: Optional[httpx.AsyncClient] = None,
        circuit_breaker: Optional[pybreaker.CircuitBreaker] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Callable[[], float] = random.random
    ):
        """
        Initialize the gateway.

        Args:
            config: Ranking configuration, the process-wide one if omitted
            client: HTTP client, created and owned by the gateway if omitted
            circuit_breaker: Breaker guarding generation, created from config if omitted
            clock: Monotonic time source in seconds
            sleep: Coroutine used for every backoff and readiness pause
            rng: Uniform [0, 1) source for jitter
        """
        config = config or get_ranking_config()
        self.gateway_config = config.gateway.model_copy()
        self.timeouts = config.timeouts.model_copy()
        self.retry_config = config.retry.model_copy()
        self.rerank_config = config.rerank.model_copy()
        self.embedding_model = config.embedding.model

        self.base_url = self.gateway_config.base_url.rstrip("/")
        self.current_model = self.gateway_config.default_model

        self._owns_client = client is None
        self.client = client or httpx.AsyncClient()
        self.circuit_breaker = circuit_breaker or create_circuit_breaker(config.circuit_breaker)
        self.prompt_builder = RelevancePromptBuilder(self.rerank_config.prompt_excerpt_length)
        self.response_parser = RelevanceResponseParser()

        self._clock = clock
        self._sleep = sleep
        self._rng = rng
        self._initialized = False
        self._model_cache: Optional[List[ModelDescriptor]] = None
        self._model_cache_time = 0.0

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    # ------------------------------------------------------------------
    # Health and startup
    # ------------------------------------------------------------------

    async def is_available(self) -> bool:
        """
        Check the service with the health-check timeout.

        Returns:
            True if the model listing endpoint answered with a 2xx status
        """
        try:
            response = await self.client.get(self._url("/api/tags"), timeout=self.timeouts.health_check)
        except httpx.TimeoutException:
            self.logger.debug("Inference service health check timed out")
            return False
        except httpx.HTTPError as e:
            self.logger.debug(f"Inference service not available: {e}")
            return False

        if not response.is_success:
            self.logger.debug(f"Inference service returned {response.status_code}")
            return False
        return True

    async def wait_for_service(self, max_wait: Optional[float] = None) -> bool:
        """
        Poll the service with exponential backoff until it answers.

        Args:
            max_wait: Seconds to keep polling, the configured startup wait if omitted

        Returns:
            True if the service became available in time
        """
        if max_wait is None:
            max_wait = self.gateway_config.service_wait_timeout

        start = self._clock()
        attempt = 0
        while self._clock() - start < max_wait:
            attempt += 1
            if await self.is_available():
                self.logger.info(f"Inference service available after {attempt} attempts")
                return True

            delay = min(
                self.retry_config.base_delay * (2 ** (attempt - 1)),
                self.retry_config.max_delay
            ) + self._rng() * self.retry_config.jitter
            await self._sleep(delay)

        self.logger.warning(f"Inference service not available after {max_wait}s")
        return False

    async def initialize(self) -> bool:
        """
        Wait for the service and make sure a usable model is installed.
        Failures are logged and reported through the return value.

        Returns:
            True if the gateway is ready to generate
        """
        self.logger.info("Initializing inference gateway...")
        self._initialized = True

        if not await self.wait_for_service():
            self.logger.warning("Inference service not available during initialization")
            return False

        try:
            await self.ensure_model_availability()
        except InferenceGatewayError as e:
            self.logger.error(f"Failed to initialize inference gateway: {e}")
            return False

        self.logger.info("Inference gateway initialized successfully")
        return True

    async def _bootstrap(self) -> None:
        """Run model bootstrap once when generation starts without initialize()."""
        self._initialized = True
        try:
            await self.ensure_model_availability()
        except InferenceGatewayError as e:
            self.logger.error(f"Model bootstrap failed: {e}")

    # ------------------------------------------------------------------
    # Model lifecycle
    # ------------------------------------------------------------------

    def invalidate_model_cache(self) -> None:
        self._model_cache = None
        self._model_cache_time = 0.0

    async def list_models(self, force_refresh: bool = False) -> List[ModelDescriptor]:
        """
        List installed models, reusing a cached listing within its TTL.

        Args:
            force_refresh: Bypass the cache

        Returns:
            Installed models, or an empty list if the listing failed
        """
        now = self._clock()
        if (
            not force_refresh
            and self._model_cache is not None
            and now - self._model_cache_time < self.gateway_config.model_cache_ttl
        ):
            return list(self._model_cache)

        try:
            response = await self.client.get(self._url("/api/tags"), timeout=self.timeouts.model_loading)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            self.logger.error(f"Error fetching available models: {e}")
            return []

        models = []
        for entry in data.get("models") or []:
            if not isinstance(entry, dict) or not entry.get("name"):
                continue
            models.append(ModelDescriptor(
                name=entry["name"],
                size=entry.get("size"),
                modified_at=entry.get("modified_at")
            ))

        self._model_cache = models
        self._model_cache_time = now
        return list(models)

    async def stream_pull(self, model_name: str) -> AsyncIterator[PullStatus]:
        """
        Stream progress events of a model download.

        Args:
            model_name: Model to pull

        Yields:
            PullStatus events in the order the service emits them

        Raises:
            ModelPullError: If the service rejects the pull or reports an error event
        """
        async with self.client.stream(
            "POST",
            self._url("/api/pull"),
            json={"name": model_name},
            timeout=self.timeouts.model_pull
        ) as response:
            if not response.is_success:
                body = (await response.aread()).decode("utf-8", errors="replace")
                raise ModelPullError(
                    f"Failed to pull model {model_name}: {response.status_code} - {body}"
                )

            async for line in response.aiter_lines():
                line = line.strip()
                if not line:
                    continue
                try:
                    data = json.loads(line)
                except json.JSONDecodeError:
                    self.logger.debug(f"Skipping non-JSON pull line: {line[:80]}")
                    continue
                if not isinstance(data, dict):
                    continue

                event = PullStatus.model_validate(data)
                if event.error:
                    raise ModelPullError(f"Model pull error: {event.error}")
                yield event

    async def _consume_pull(self, model_name: str) -> None:
        async for event in self.stream_pull(model_name):
            if event.total and event.completed is not None:
                percent = event.completed / event.total * 100
                self.logger.info(f"Model pull progress: {event.status} ({percent:.1f}%)")
            elif event.status:
                self.logger.info(f"Model pull progress: {event.status}")

    async def pull_model(self, model_name: str) -> bool:
        """
        Install a model and wait for the download to finish.

        Args:
            model_name: Model to pull

        Returns:
            True once the model is installed

        Raises:
            ModelPullError: If the service is unavailable, the pull fails or times out
        """
        self.logger.info(f"Pulling model: {model_name}")

        if not await self.is_available():
            raise ModelPullError("Inference service is not available for model pulling")

        try:
            await asyncio.wait_for(self._consume_pull(model_name), timeout=self.timeouts.model_pull)
        except asyncio.TimeoutError as e:
            raise ModelPullError(
                f"Model pull timed out after {self.timeouts.model_pull}s"
            ) from e
        except httpx.HTTPError as e:
            raise ModelPullError(f"Failed to pull model {model_name}: {e}") from e

        self.logger.info(f"Successfully pulled model: {model_name}")
        self.invalidate_model_cache()
        return True

    async def ensure_model_availability(self) -> str:
        """
        Make sure the active model is installed.

        With no models installed, the fallback models are pulled in order until
        one succeeds. With models installed but the configured one missing, the
        configured model is pulled once and the first installed model is used
        if that fails.

        Returns:
            Name of the active model

        Raises:
            ModelNotFoundError: If no model is installed and no fallback could be pulled
        """
        models = await self.list_models(force_refresh=True)

        if not models:
            self.logger.info("No models found, attempting to install a lightweight fallback model")
            for candidate in self.gateway_config.fallback_models:
                try:
                    await self.pull_model(candidate)
                except ModelPullError as e:
                    self.logger.warning(f"Failed to install {candidate}: {e}")
                    continue

                self.current_model = candidate
                self.logger.info(f"Installed and set fallback model: {candidate}")
                return candidate

            raise ModelNotFoundError("No models installed and no fallback model could be pulled")

        if not any(m.name.startswith(self.current_model) for m in models):
            self.logger.info(f"Configured model '{self.current_model}' not found, attempting to pull it")
            try:
                await self.pull_model(self.current_model)
            except ModelPullError as e:
                self.logger.warning(
                    f"Failed to pull configured model '{self.current_model}': {e}. "
                    f"Falling back to '{models[0].name}'"
                )
                self.current_model = models[0].name

        self.logger.info(f"Using model: {self.current_model} ({len(models)} models available)")
        return self.current_model

    async def _get_fallback_model(self, exclude: Optional[str] = None) -> Optional[str]:
        """Pick an installed model other than exclude, or pull one from the fallback list."""
        models = await self.list_models(force_refresh=True)
        for model in models:
            if model.name != exclude:
                return model.name

        for candidate in self.gateway_config.fallback_models:
            if candidate == exclude:
                continue
            try:
                await self.pull_model(candidate)
                return candidate
            except ModelPullError as e:
                self.logger.warning(f"Could not install fallback model {candidate}: {e}")

        return None

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def generate(
        self,
        prompt: str,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        max_retries: Optional[int] = None
    ) -> GenerationResult:
        """
        Generate text with retries behind the circuit breaker.

        Args:
            prompt: Prompt text
            model: Model to use, the active model if omitted
            temperature: Sampling temperature override
            max_tokens: Maximum tokens to generate
            max_retries: Attempt limit override

        Returns:
            GenerationResult of the successful attempt

        Raises:
            CircuitOpenError: If the breaker is open
            InferenceGatewayError: If every attempt failed or a non-retryable error occurred
        """
        with guarded_call(self.circuit_breaker):
            return await self._generate_with_retries(prompt, model, temperature, max_tokens, max_retries)

    async def _generate_with_retries(
        self,
        prompt: str,
        model: Optional[str],
        temperature: Optional[float],
        max_tokens: Optional[int],
        max_retries: Optional[int]
    ) -> GenerationResult:
        """One logical generation: lazy bootstrap, then the retry loop."""
        if not self._initialized:
            await self._bootstrap()

        call = _GenerationCall(model=model or self.current_model)
        options = {
            "temperature": self.gateway_config.temperature if temperature is None else temperature,
            "num_predict": max_tokens or self.gateway_config.max_tokens,
            "top_p": self.gateway_config.top_p,
            "top_k": self.gateway_config.top_k,
        }

        retrying = AsyncRetrying(
            stop=stop_after_attempt(max_retries or self.retry_config.max_retries),
            wait=JitteredBackoff(
                self.retry_config.base_delay,
                self.retry_config.max_delay,
                self.retry_config.jitter,
                rng=self._rng
            ),
            retry=retry_if_exception(is_retryable_error),
            before_sleep=self._log_retry,
            sleep=self._sleep,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    result = await self._attempt_generation(
                        prompt, call, options, attempt.retry_state.attempt_number
                    )
        except InferenceGatewayError as e:
            self.logger.error(f"Generation failed with model '{call.model}': {e}")
            raise

        return result

    def _log_retry(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        self.logger.warning(
            f"Generation attempt {retry_state.attempt_number} failed: {error}. "
            f"Retrying in {delay:.2f}s"
        )

    async def _attempt_generation(
        self,
        prompt: str,
        call: _GenerationCall,
        options: Dict[str, Any],
        attempt_number: int
    ) -> GenerationResult:
        """One generation attempt, including the one-time missing-model recovery."""
        self.logger.debug(f"Generation attempt {attempt_number} with model '{call.model}'")

        if not await self.is_available():
            raise ServiceUnavailableError(f"Inference service at {self.base_url} is not available")

        try:
            return await self._post_generate(prompt, call.model, options, attempt_number)
        except ModelNotFoundError:
            if call.auto_install_attempted:
                raise
            call.auto_install_attempted = True
            return await self._recover_missing_model(prompt, call, options, attempt_number)

    async def _recover_missing_model(
        self,
        prompt: str,
        call: _GenerationCall,
        options: Dict[str, Any],
        attempt_number: int
    ) -> GenerationResult:
        """Pull a missing model once, or switch to a fallback model."""
        missing = call.model
        self.logger.warning(f"Model '{missing}' not found, attempting automatic install")

        try:
            await self.pull_model(missing)
        except ModelPullError as e:
            self.logger.warning(f"Automatic install of '{missing}' failed: {e}")
        else:
            await self._sleep(self.gateway_config.model_ready_delay)
            try:
                return await self._post_generate(prompt, missing, options, attempt_number)
            except ModelNotFoundError as e:
                self.logger.warning(f"Model '{missing}' still unavailable after install: {e}")

        fallback = await self._get_fallback_model(exclude=missing)
        if not fallback:
            raise ModelNotFoundError(f"Model '{missing}' not found and no fallback model is available")

        self.logger.info(f"Switching from '{missing}' to fallback model '{fallback}'")
        call.model = fallback
        self.current_model = fallback
        return await self._post_generate(prompt, fallback, options, attempt_number)

    async def _post_generate(
        self,
        prompt: str,
        model: str,
        options: Dict[str, Any],
        attempt_number: int
    ) -> GenerationResult:
        payload = {"model": model, "prompt": prompt, "stream": False, "options": options}
        try:
            response = await self.client.post(
                self._url("/api/generate"),
                json=payload,
                timeout=self.timeouts.generation
            )
        except httpx.TimeoutException as e:
            raise GatewayTimeoutError(
                f"Generation timed out after {self.timeouts.generation}s"
            ) from e
        except httpx.TransportError as e:
            raise ServiceUnavailableError(f"Cannot reach inference service: {e}") from e
        except httpx.HTTPError as e:
            raise ServiceUnavailableError(f"Invalid response from inference service: {e}") from e

        self._raise_for_status(response, model)
        data = self._decode_json(response)

        if data.get("error"):
            raise self._classify_model_error(str(data["error"]))

        text = data.get("response")
        if not isinstance(text, str):
            raise MalformedResponseError("Generation response carries no text")

        return GenerationResult(
            text=text.strip(),
            model=data.get("model") or model,
            prompt_tokens=data.get("prompt_eval_count") or 0,
            response_tokens=data.get("eval_count") or 0,
            total_duration=data.get("total_duration") or 0,
            attempt=attempt_number
        )

    # ------------------------------------------------------------------
    # Response handling
    # ------------------------------------------------------------------

    def _decode_json(self, response: httpx.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise MalformedResponseError(f"Invalid JSON from inference service: {e}") from e
        if not isinstance(data, dict):
            raise MalformedResponseError("Inference service returned a non-object payload")
        return data

    def _error_message(self, response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            data = None
        if isinstance(data, dict) and data.get("error"):
            return f"Ollama error: {data['error']}"

        defaults = {
            404: "Model not found. Please ensure the model is installed in Ollama.",
            429: "Ollama service is overloaded. Please try again later.",
            500: "Ollama server error. The model may be loading or corrupted.",
            503: "Ollama service unavailable. Please check if Ollama is running.",
        }
        return defaults.get(
            response.status_code,
            f"Ollama API error: {response.status_code} {response.reason_phrase}"
        )

    def _raise_for_status(self, response: httpx.Response, model: str) -> None:
        if response.is_success:
            return

        status = response.status_code
        message = self._error_message(response)
        if status in (401, 403):
            raise UnauthorizedError(message)
        if status == 404:
            raise ModelNotFoundError(f"Model '{model}' not found: {message}")
        if status in (400, 422):
            raise InvalidRequestError(message)
        if status == 408:
            raise GatewayTimeoutError(message)
        raise ServiceUnavailableError(message)

    def _classify_model_error(self, message: str) -> InferenceGatewayError:
        lowered = message.lower()
        if "not found" in lowered:
            return ModelNotFoundError(f"Ollama error: {message}")
        if "unauthorized" in lowered:
            return UnauthorizedError(f"Ollama error: {message}")
        if "invalid" in lowered or "malformed" in lowered:
            return InvalidRequestError(f"Ollama error: {message}")
        return ModelExecutionError(f"Ollama error: {message}")

    # ------------------------------------------------------------------
    # Embeddings and relevance scoring
    # ------------------------------------------------------------------

    async def embed(self, text: str, model: Optional[str] = None) -> List[float]:
        """
        Compute an embedding vector.

        Args:
            text: Input text
            model: Embedding model, the configured one if omitted

        Returns:
            Embedding vector

        Raises:
            InferenceGatewayError: On transport, status or payload errors
        """
        model_name = model or self.embedding_model
        try:
            response = await self.client.post(
                self._url("/api/embeddings"),
                json={"model": model_name, "prompt": text},
                timeout=self.timeouts.embedding
            )
        except httpx.TimeoutException as e:
            raise GatewayTimeoutError(f"Embedding timed out after {self.timeouts.embedding}s") from e
        except httpx.TransportError as e:
            raise ServiceUnavailableError(f"Cannot reach inference service: {e}") from e
        except httpx.HTTPError as e:
            raise ServiceUnavailableError(f"Invalid response from inference service: {e}") from e

        self._raise_for_status(response, model_name)
        data = self._decode_json(response)

        embedding = data.get("embedding")
        if not isinstance(embedding, list) or not all(
            isinstance(x, (int, float)) and not isinstance(x, bool) for x in embedding
        ):
            raise MalformedResponseError("Embedding response carries no numeric vector")

        return [float(x) for x in embedding]

    async def generate_relevance_scores(
        self,
        query: str,
        items: Sequence[RerankItem]
    ) -> Dict[str, int]:
        """
        Ask the model to score documents against the query.

        Args:
            query: User's search query
            items: Documents to score

        Returns:
            Mapping of document id to an integer score in [0, 100], empty on any failure
        """
        if not items:
            return {}

        prompt = self.prompt_builder.create_relevance_prompt(query, items)
        try:
            result = await self.generate(prompt, max_tokens=self.rerank_config.max_tokens)
        except InferenceGatewayError as e:
            self.logger.warning(f"LLM re-ranking failed: {e}")
            return {}

        parsed = self.response_parser.parse(result.text, allowed_ids={item.id for item in items})
        if isinstance(parsed, ParseFailure):
            self.logger.warning(f"Could not parse relevance scores: {parsed.reason}")
            return {}

        self.logger.debug(f"Model scored {len(parsed.scores)} of {len(items)} documents")
        return parsed.scores

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def health_status(self) -> Dict[str, Any]:
        """
        Report service health.

        Returns:
            Dictionary with status (healthy, unhealthy or error), message and details
        """
        timestamp = datetime.utcnow().isoformat()
        try:
            start = self._clock()
            available = await self.is_available()
            response_time_ms = round((self._clock() - start) * 1000)

            if not available:
                return {
                    "status": "unhealthy",
                    "message": "Ollama service is not responding",
                    "response_time_ms": response_time_ms,
                    "circuit_state": circuit_state(self.circuit_breaker).value,
                    "timestamp": timestamp,
                }

            models = await self.list_models()
            return {
                "status": "healthy",
                "message": "Ollama service is running",
                "response_time_ms": response_time_ms,
                "models": len(models),
                "current_model": self.current_model,
                "circuit_state": circuit_state(self.circuit_breaker).value,
                "timestamp": timestamp,
                "config": {
                    "base_url": self.base_url,
                    "timeouts": self.timeouts.model_dump(),
                },
            }
        except Exception as e:
            self.logger.error(f"Health check failed: {e}")
            return {
                "status": "error",
                "message": str(e),
                "timestamp": timestamp,
            }

    async def aclose(self) -> None:
        """Close the HTTP client if the gateway created it."""
        if self._owns_client:
            await self.client.aclose()


def create_inference_gateway(
    config: Optional[RankingConfiguration] = None,
    client: Optional[httpx.AsyncClient] = None
) -> InferenceGateway:
    """
    Factory function to create an inference gateway.

    Args:
        config: Ranking configuration, the process-wide one if omitted
        client: Optional HTTP client

    Returns:
        InferenceGateway instance
    """
    return InferenceGateway(config=config, client=client)
