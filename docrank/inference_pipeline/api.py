"""
FastAPI service layer for docrank.
Exposes the ranking pipeline and the inference gateway health over HTTP.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from docrank.config.ranking_config import get_ranking_config, get_ranking_config_manager
from docrank.config.settings import settings
from docrank.inference_pipeline.base import (
    CircuitOpenError,
    GatewayTimeoutError,
    InvalidRequestError,
    ServiceUnavailableError,
)
from docrank.inference_pipeline.circuit_breaker import circuit_state as breaker_state
from docrank.inference_pipeline.ollama_gateway import InferenceGateway, create_inference_gateway
from docrank.models.schemas import (
    AdvancedSearchRequest,
    AdvancedSearchResponse,
    APIInfoResponse,
    ErrorDetail,
    ErrorResponse,
    HealthResponse,
    RankingRequest,
    RankingResponse,
    SemanticSearchRequest,
    SemanticSearchResponse,
)
from docrank.ranking_pipeline.document_store import (
    DocumentStoreError,
    IDatabaseConnection,
    StoreConnectionError,
    StoreTimeoutError,
    close_mongodb_connection,
    create_document_store,
    get_mongodb_connection,
)
from docrank.ranking_pipeline.orchestrator import RankingOrchestrator, create_ranking_orchestrator
from docrank.utils.logger import LoggerMixin, configure_logging, request_scope


@dataclass
class ErrorClassification:
    """How an exception is reported to API clients."""
    status_code: int
    error_type: str
    retryable: bool
    message: str


TIMEOUT_ERRORS = (StoreTimeoutError, GatewayTimeoutError, asyncio.TimeoutError, httpx.TimeoutException)
NETWORK_ERRORS = (StoreConnectionError, ServiceUnavailableError, CircuitOpenError, httpx.TransportError)
VALIDATION_ERRORS = (ValidationError, RequestValidationError, InvalidRequestError)


def classify_error(error: BaseException) -> ErrorClassification:
    """
    Classify an exception raised while serving a search.

    Args:
        error: The exception

    Returns:
        ErrorClassification with status code, error type, retry hint and message
    """
    if isinstance(error, TIMEOUT_ERRORS):
        return ErrorClassification(408, "timeout", True, "Search timed out. Please try a simpler query.")
    if isinstance(error, NETWORK_ERRORS):
        return ErrorClassification(503, "network", True, "Service connection issue. Please try again.")
    if isinstance(error, VALIDATION_ERRORS):
        return ErrorClassification(400, "validation", False, "Invalid search parameters.")
    return ErrorClassification(500, "server", True, "Internal server error during search.")


def error_response(error: BaseException, messages: Optional[List[str]] = None) -> JSONResponse:
    """Build the JSON error response for an exception."""
    classification = classify_error(error)
    body = ErrorResponse(
        errors=[ErrorDetail(msg=m) for m in (messages or [classification.message])],
        retryable=classification.retryable,
        error_type=classification.error_type
    )
    return JSONResponse(
        status_code=classification.status_code,
        content=body.model_dump(by_alias=True)
    )


class DocRankAPI(LoggerMixin):
    """FastAPI application for docrank."""

    def __init__(
        self,
        orchestrator: Optional[RankingOrchestrator] = None,
        gateway: Optional[InferenceGateway] = None,
        connection: Optional[IDatabaseConnection] = None
    ):
        """
        Initialize the FastAPI application.

        Components that are not injected are created on startup.

        Args:
            orchestrator: Ranking orchestrator
            gateway: Inference gateway
            connection: Database connection used for health checks
        """
        self.app = FastAPI(
            title=settings.PROJECT_NAME,
            description="Hybrid document relevance ranking",
            version=settings.VERSION,
            docs_url="/docs",
            redoc_url="/redoc"
        )

        self.orchestrator = orchestrator
        self.gateway = gateway
        self.connection = connection
        self._owns_components = orchestrator is None
        self._init_task: Optional[asyncio.Task] = None

        self._setup_exception_handlers()
        self._setup_routes()

    async def _build_components(self) -> None:
        """Connect to the database and create the gateway and orchestrator."""
        manager = get_ranking_config_manager()
        config = get_ranking_config()
        manager.validate_config(config)

        self.connection = await get_mongodb_connection()
        store = create_document_store(self.connection)
        try:
            await store.ensure_indexes()
        except DocumentStoreError as e:
            self.logger.warning(f"Could not ensure text index: {e}")

        if self.gateway is None:
            self.gateway = create_inference_gateway(config)
        self.orchestrator = create_ranking_orchestrator(store, self.gateway, config)

        self._init_task = asyncio.create_task(self.gateway.initialize())

    def _require_orchestrator(self) -> RankingOrchestrator:
        if self.orchestrator is None:
            raise StoreConnectionError("Ranking service not initialized")
        return self.orchestrator

    def _setup_exception_handlers(self):
        """Set up handlers for errors raised outside route bodies."""

        @self.app.exception_handler(RequestValidationError)
        async def validation_exception_handler(request: Request, exc: RequestValidationError):
            messages = [str(err.get("msg", "Invalid value")) for err in exc.errors()]
            self.logger.warning(f"Rejected request to {request.url.path}: {messages}")
            return error_response(exc, messages or None)

    def _setup_routes(self):
        """Set up API routes."""

        @self.app.on_event("startup")
        async def startup_event():
            """Create components on startup."""
            if not self._owns_components:
                return
            try:
                self.logger.info("Initializing ranking service...")
                await self._build_components()
                self.logger.info("Ranking service initialized successfully")
            except Exception as e:
                self.logger.error(f"Failed to initialize ranking service: {str(e)}")
                raise

        @self.app.on_event("shutdown")
        async def shutdown_event():
            """Release owned resources."""
            self.logger.info("Shutting down docrank API...")
            if not self._owns_components:
                return
            if self._init_task is not None and not self._init_task.done():
                self._init_task.cancel()
            if self.gateway is not None:
                await self.gateway.aclose()
            await close_mongodb_connection()

        @self.app.post(f"{settings.API_PREFIX}/search", response_model=RankingResponse)
        async def search(request: RankingRequest):
            """Rank documents for a query."""
            with request_scope():
                self.logger.info(
                    f"Search query: \"{request.query}\" (page={request.page}, limit={request.limit}, "
                    f"folder={request.folder})"
                )
                try:
                    return await self._require_orchestrator().rank(request)
                except Exception as e:
                    self.logger.error(f"Search error: {str(e)}")
                    return error_response(e)

        @self.app.post(f"{settings.API_PREFIX}/search/advanced", response_model=AdvancedSearchResponse)
        async def advanced_search(request: AdvancedSearchRequest):
            """Rank documents for a query and count facet values."""
            with request_scope():
                self.logger.info(
                    f"Advanced search query: \"{request.query}\" "
                    f"(facets={[f.value for f in request.facets]})"
                )
                try:
                    return await self._require_orchestrator().advanced_search(request)
                except Exception as e:
                    self.logger.error(f"Advanced search error: {str(e)}")
                    return error_response(e)

        @self.app.post(f"{settings.API_PREFIX}/search/semantic", response_model=SemanticSearchResponse)
        async def semantic_search(request: SemanticSearchRequest):
            """Rank embedded documents by similarity to the query."""
            with request_scope():
                self.logger.info(
                    f"Semantic search query: \"{request.query}\" (threshold={request.threshold})"
                )
                try:
                    return await self._require_orchestrator().semantic_search(request)
                except Exception as e:
                    self.logger.error(f"Semantic search error: {str(e)}")
                    return error_response(e)

        @self.app.get(f"{settings.API_PREFIX}/search/health/ollama")
        async def ollama_health():
            """Inference gateway health."""
            if self.gateway is None:
                return JSONResponse(
                    status_code=503,
                    content={"status": "unhealthy", "message": "Inference gateway not initialized"}
                )

            health: Dict[str, Any] = await self.gateway.health_status()
            status_code = {"healthy": 200, "unhealthy": 503}.get(health.get("status"), 500)
            return JSONResponse(status_code=status_code, content=health)

        @self.app.get("/health", response_model=HealthResponse)
        async def health_check():
            """Service liveness including the database and the circuit breaker."""
            database_connected = False
            if self.connection is not None:
                database_connected = await self.connection.health_check()

            circuit_state = "UNKNOWN"
            if self.gateway is not None:
                circuit_state = breaker_state(self.gateway.circuit_breaker).value

            return HealthResponse(
                status="healthy" if database_connected else "unhealthy",
                database_connected=database_connected,
                circuit_state=circuit_state,
                details={
                    "orchestrator_ready": self.orchestrator is not None,
                    "current_model": self.gateway.current_model if self.gateway else None,
                }
            )

        @self.app.get("/", response_model=APIInfoResponse)
        async def root():
            """Root endpoint with API information."""
            return APIInfoResponse(
                name=settings.PROJECT_NAME,
                version=settings.VERSION,
                description="Hybrid document relevance ranking",
                endpoints={
                    "search": f"{settings.API_PREFIX}/search",
                    "advanced_search": f"{settings.API_PREFIX}/search/advanced",
                    "semantic_search": f"{settings.API_PREFIX}/search/semantic",
                    "ollama_health": f"{settings.API_PREFIX}/search/health/ollama",
                    "health": "/health",
                    "docs": "/docs"
                }
            )


# Create the application instance
def create_app() -> FastAPI:
    """Create and return the FastAPI application."""
    api = DocRankAPI()
    return api.app


# For running directly
if __name__ == "__main__":
    import uvicorn

    configure_logging(log_file="docrank.log")
    app = create_app()
    uvicorn.run(
        app,
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower()
    )
