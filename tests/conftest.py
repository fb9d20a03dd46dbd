"""
Shared fixtures for docrank tests.
"""

import asyncio
from datetime import datetime
from typing import Dict, List, Optional, Sequence

import pytest

from docrank.inference_pipeline.base import IInferenceGateway
from docrank.models.ranking import GatewayConfig, RankingConfiguration
from docrank.models.schemas import (
    Document,
    GenerationResult,
    ModelDescriptor,
    RankingFilters,
    RerankItem,
)
from docrank.ranking_pipeline.document_store.base import IDocumentStore


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeGateway(IInferenceGateway):
    """In-memory gateway with scripted embeddings and relevance scores."""

    def __init__(
        self,
        embeddings: Optional[Dict[str, List[float]]] = None,
        relevance_scores: Optional[Dict[str, int]] = None,
        relevance_delay: Optional[float] = None
    ):
        self.embeddings = embeddings or {}
        self.relevance_scores = relevance_scores or {}
        self.relevance_delay = relevance_delay
        self.embed_calls: List[str] = []
        self.relevance_calls: List[List[RerankItem]] = []

    async def is_available(self) -> bool:
        return True

    async def list_models(self, force_refresh: bool = False) -> List[ModelDescriptor]:
        return [ModelDescriptor(name="tinyllama:latest")]

    async def pull_model(self, model_name: str) -> bool:
        return True

    async def generate(self, prompt, model=None, temperature=None, max_tokens=None, max_retries=None):
        return GenerationResult(text="{}", model=model or "tinyllama:latest")

    async def embed(self, text: str, model: Optional[str] = None) -> List[float]:
        self.embed_calls.append(text)
        return list(self.embeddings.get(text, []))

    async def generate_relevance_scores(self, query: str, items: Sequence[RerankItem]) -> Dict[str, int]:
        self.relevance_calls.append(list(items))
        if self.relevance_delay is not None:
            await asyncio.sleep(self.relevance_delay)
        return {item.id: self.relevance_scores[item.id] for item in items if item.id in self.relevance_scores}


class FakeDocumentStore(IDocumentStore):
    """Document store returning fixed text and regex results."""

    def __init__(self, text_results: List[Document], regex_results: Optional[List[Document]] = None):
        self.text_results = text_results
        self.regex_results = regex_results or []
        self.text_calls = []
        self.regex_calls = []
        self.embedded = []
        self.facets = {}
        self.facet_calls = []

    def build_match_conditions(self, folder=None, filters: Optional[RankingFilters] = None):
        conditions = {"status": "processed"}
        if folder:
            conditions["folder"] = folder
        return conditions

    async def text_search(self, query, match_conditions, limit):
        self.text_calls.append((query, match_conditions, limit))
        return self.text_results[:limit]

    async def regex_search(self, query, match_conditions, limit):
        self.regex_calls.append((query, match_conditions, limit))
        return self.regex_results[:limit]

    async def embedded_documents(self, limit):
        return self.embedded[:limit]

    async def facet_counts(self, facets, limit=20, tag_limit=50):
        self.facet_calls.append((list(facets), limit, tag_limit))
        return {facet.value: self.facets.get(facet.value, []) for facet in facets}


def make_document(
    doc_id: str,
    text: str = "",
    name: Optional[str] = None,
    embedding: Optional[List[float]] = None,
    text_score: Optional[float] = None,
    created_at: Optional[datetime] = None
) -> Document:
    """Build a processed document."""
    return Document(
        id=doc_id,
        original_name=name or f"{doc_id}.txt",
        mime_type="text/plain",
        size=len(text),
        extracted_text=text,
        embedding=embedding,
        text_score=text_score,
        created_at=created_at or datetime(2024, 1, 1)
    )


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def ranking_config():
    """Default configuration with a fixed gateway address."""
    return RankingConfiguration(
        gateway=GatewayConfig(base_url="http://ollama.test", default_model="tinyllama:latest")
    )
