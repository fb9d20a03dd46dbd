"""
Tests for the FastAPI service layer.
Collaborators are injected as mocks so no database or inference service is needed.
"""

import asyncio
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import httpx
import pybreaker
import pytest
from fastapi.testclient import TestClient

from docrank.inference_pipeline.api import DocRankAPI, classify_error
from docrank.inference_pipeline.base import (
    CircuitOpenError,
    GatewayTimeoutError,
    InvalidRequestError,
    ModelExecutionError,
    ServiceUnavailableError,
)
from docrank.models.schemas import (
    AdvancedSearchResponse,
    FacetBucket,
    FacetName,
    Pagination,
    RankedDocument,
    RankingResponse,
    SemanticResult,
    SemanticSearchResponse,
)
from docrank.ranking_pipeline.document_store import StoreConnectionError, StoreTimeoutError


@pytest.fixture
def orchestrator():
    orchestrator = MagicMock()
    orchestrator.rank = AsyncMock(return_value=RankingResponse(
        results=[RankedDocument(
            id="d1",
            original_name="router.md",
            folder="/",
            mime_type="text/markdown",
            size=120,
            created_at=datetime(2024, 1, 1),
            extracted_text_excerpt="Reset the router",
            relevance_score=0.97,
            base_score=1.0,
            semantic_score=1.0,
            llm_score=90
        )],
        total=1,
        returned=1
    ))
    return orchestrator


@pytest.fixture
def gateway():
    gateway = MagicMock()
    gateway.circuit_breaker.current_state = pybreaker.STATE_CLOSED
    gateway.current_model = "tinyllama:latest"
    gateway.health_status = AsyncMock(return_value={"status": "healthy", "models": ["tinyllama:latest"]})
    return gateway


@pytest.fixture
def connection():
    connection = MagicMock()
    connection.health_check = AsyncMock(return_value=True)
    return connection


@pytest.fixture
def client(orchestrator, gateway, connection):
    api = DocRankAPI(orchestrator=orchestrator, gateway=gateway, connection=connection)
    return TestClient(api.app)


class TestSearchEndpoint:
    """Test POST /api/search."""

    def test_search_returns_camel_case(self, client, orchestrator):
        response = client.post("/api/search", json={"query": "router", "minScore": 0.2, "page": 1})

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 1
        assert body["pageSize"] == 10
        assert body["results"][0]["relevanceScore"] == 0.97
        assert body["results"][0]["originalName"] == "router.md"
        assert body["results"][0]["llmScore"] == 90

        request = orchestrator.rank.await_args.args[0]
        assert request.query == "router"
        assert request.min_score == 0.2

    def test_filters_accepted(self, client, orchestrator):
        response = client.post("/api/search", json={
            "query": "router",
            "folder": "/ops",
            "filters": {"fileTypes": ["application/pdf"], "sizeRange": {"min": 10}},
        })

        assert response.status_code == 200
        request = orchestrator.rank.await_args.args[0]
        assert request.folder == "/ops"
        assert request.filters.file_types == ["application/pdf"]
        assert request.filters.size_range.min == 10

    @pytest.mark.parametrize("payload", [
        {"query": ""},
        {"query": "   "},
        {"query": "router", "limit": 51},
        {"query": "router", "page": 0},
        {"query": "router", "minScore": 1.5},
        {},
    ])
    def test_invalid_request(self, client, orchestrator, payload):
        response = client.post("/api/search", json=payload)

        assert response.status_code == 400
        body = response.json()
        assert body["errorType"] == "validation"
        assert body["retryable"] is False
        assert body["errors"]
        orchestrator.rank.assert_not_awaited()

    @pytest.mark.parametrize("error, status_code, error_type", [
        (StoreTimeoutError("slow query"), 408, "timeout"),
        (StoreConnectionError("no primary"), 503, "network"),
        (CircuitOpenError("circuit open"), 503, "network"),
        (RuntimeError("boom"), 500, "server"),
    ])
    def test_pipeline_errors(self, client, orchestrator, error, status_code, error_type):
        orchestrator.rank.side_effect = error

        response = client.post("/api/search", json={"query": "router"})

        assert response.status_code == status_code
        body = response.json()
        assert body["errorType"] == error_type
        assert body["retryable"] is True
        assert len(body["errors"]) == 1

    def test_not_initialized(self, gateway, connection):
        api = DocRankAPI(gateway=gateway, connection=connection)
        client = TestClient(api.app)

        response = client.post("/api/search", json={"query": "router"})

        assert response.status_code == 503
        assert response.json()["errorType"] == "network"


class TestAdvancedSearchEndpoint:
    """Test POST /api/search/advanced."""

    def test_facets_returned(self, client, orchestrator):
        ranking = orchestrator.rank.return_value
        orchestrator.advanced_search = AsyncMock(return_value=AdvancedSearchResponse(
            query="router",
            results=ranking.results,
            total=1,
            facets={"tags": [FacetBucket(value="network", count=4)]},
            pagination=Pagination(page=1, limit=20, total=1, pages=1)
        ))

        response = client.post("/api/search/advanced", json={"query": "router", "facets": ["tags"]})

        assert response.status_code == 200
        body = response.json()
        assert body["results"][0]["originalName"] == "router.md"
        assert body["facets"]["tags"] == [{"value": "network", "name": None, "count": 4}]
        assert body["pagination"]["pages"] == 1

        request = orchestrator.advanced_search.await_args.args[0]
        assert request.facets == [FacetName.TAGS]
        assert request.limit == 20

    def test_unknown_facet_rejected(self, client, orchestrator):
        orchestrator.advanced_search = AsyncMock()

        response = client.post("/api/search/advanced", json={"query": "router", "facets": ["colors"]})

        assert response.status_code == 400
        assert response.json()["errorType"] == "validation"
        orchestrator.advanced_search.assert_not_awaited()

    def test_store_timeout(self, client, orchestrator):
        orchestrator.advanced_search = AsyncMock(side_effect=StoreTimeoutError("slow aggregation"))

        response = client.post("/api/search/advanced", json={"query": "router", "facets": ["fileTypes"]})

        assert response.status_code == 408
        assert response.json()["errorType"] == "timeout"


class TestSemanticSearchEndpoint:
    """Test POST /api/search/semantic."""

    def test_semantic_results(self, client, orchestrator):
        orchestrator.semantic_search = AsyncMock(return_value=SemanticSearchResponse(
            query="router",
            results=[SemanticResult(
                id="d1",
                original_name="router.md",
                folder="/",
                mime_type="text/markdown",
                size=120,
                extracted_text_excerpt="Reset the router",
                semantic_score=0.9123
            )],
            total=1,
            threshold=0.5
        ))

        response = client.post("/api/search/semantic", json={"query": "router", "threshold": 0.5})

        assert response.status_code == 200
        body = response.json()
        assert body["searchType"] == "semantic"
        assert body["threshold"] == 0.5
        assert body["results"][0]["semanticScore"] == 0.9123
        assert orchestrator.semantic_search.await_args.args[0].threshold == 0.5

    def test_default_threshold(self, client, orchestrator):
        orchestrator.semantic_search = AsyncMock(return_value=SemanticSearchResponse(
            query="router", total=0, threshold=0.7
        ))

        client.post("/api/search/semantic", json={"query": "router"})

        request = orchestrator.semantic_search.await_args.args[0]
        assert (request.threshold, request.limit) == (0.7, 10)

    @pytest.mark.parametrize("payload", [{"query": " "}, {"query": "router", "threshold": 1.5}])
    def test_invalid_request(self, client, orchestrator, payload):
        orchestrator.semantic_search = AsyncMock()

        response = client.post("/api/search/semantic", json=payload)

        assert response.status_code == 400
        orchestrator.semantic_search.assert_not_awaited()

    def test_embedding_unavailable(self, client, orchestrator):
        orchestrator.semantic_search = AsyncMock(side_effect=ServiceUnavailableError("Embedding service unavailable"))

        response = client.post("/api/search/semantic", json={"query": "router"})

        assert response.status_code == 503
        assert response.json()["retryable"] is True


class TestHealthEndpoints:
    """Test health and info endpoints."""

    def test_ollama_health_healthy(self, client):
        response = client.get("/api/search/health/ollama")

        assert response.status_code == 200
        assert response.json()["models"] == ["tinyllama:latest"]

    def test_ollama_health_unhealthy(self, client, gateway):
        gateway.health_status.return_value = {"status": "unhealthy", "message": "Ollama service is not responding"}

        response = client.get("/api/search/health/ollama")

        assert response.status_code == 503

    def test_ollama_health_error(self, client, gateway):
        gateway.health_status.return_value = {"status": "error", "message": "unexpected"}

        response = client.get("/api/search/health/ollama")

        assert response.status_code == 500

    def test_service_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["database_connected"] is True
        assert body["circuit_state"] == "CLOSED"

    def test_service_health_database_down(self, client, connection):
        connection.health_check.return_value = False

        body = client.get("/health").json()

        assert body["status"] == "unhealthy"
        assert body["database_connected"] is False

    def test_root(self, client):
        body = client.get("/").json()

        assert body["name"] == "docrank"
        assert body["endpoints"]["search"] == "/api/search"


class TestClassifyError:
    """Test error classification."""

    def test_timeouts(self):
        for error in (GatewayTimeoutError("t"), asyncio.TimeoutError(), httpx.ReadTimeout("t")):
            classification = classify_error(error)
            assert classification.status_code == 408
            assert classification.retryable is True

    def test_network(self):
        assert classify_error(httpx.ConnectError("refused")).status_code == 503

    def test_validation(self):
        classification = classify_error(InvalidRequestError("bad options"))
        assert classification.status_code == 400
        assert classification.retryable is False

    def test_other_gateway_errors_are_server_errors(self):
        assert classify_error(ModelExecutionError("model crashed")).status_code == 500
