"""
Tests for the lexical, semantic and re-ranking stages.
"""

import asyncio

import pytest

from docrank.inference_pipeline.base import ServiceUnavailableError
from docrank.inference_pipeline.embedding_client import EmbeddingClient
from docrank.models.ranking import RerankConfig
from docrank.models.schemas import Candidate, RetrievalMode
from docrank.ranking_pipeline.lexical_search import LexicalSearchStage, term_frequency
from docrank.ranking_pipeline.reranker import RelevanceReranker, term_density_score
from docrank.ranking_pipeline.semantic_scorer import SemanticScorer

from conftest import FakeDocumentStore, FakeGateway, make_document


def candidates_for(*documents, scores=None):
    scores = scores or [0.0] * len(documents)
    return [
        Candidate(document=doc, retrieval_rank=i, lexical_score=score)
        for i, (doc, score) in enumerate(zip(documents, scores))
    ]


class TestLexicalSearchStage:
    """Test retrieval and lexical scoring."""

    def test_term_frequency(self):
        text = "Network issues: check the network cable. NETWORK down."

        assert term_frequency("network", text) == 3
        assert term_frequency("network cable", text) == 4
        assert term_frequency("aa", "aaaa") == 2
        assert term_frequency("router", "") == 0

    @pytest.mark.asyncio
    async def test_native_score_preferred(self):
        store = FakeDocumentStore([
            make_document("d1", "network network", text_score=2.5),
            make_document("d2", "network network network"),
        ])
        stage = LexicalSearchStage(store)

        candidates = await stage.search("network", {"status": "processed"}, 10)

        assert [c.lexical_score for c in candidates] == [2.5, 3.0]
        assert [c.retrieval_rank for c in candidates] == [0, 1]
        assert store.regex_calls == []

    @pytest.mark.asyncio
    async def test_regex_fallback(self):
        store = FakeDocumentStore([], regex_results=[
            make_document("d1", "network guide"),
            make_document("d2", "other"),
        ])
        stage = LexicalSearchStage(store)

        candidates = await stage.search("network", {"status": "processed"}, 10)

        assert [c.id for c in candidates] == ["d1", "d2"]
        assert store.regex_calls == [("network", {"status": "processed"}, 10)]

    @pytest.mark.asyncio
    async def test_retrieve_reports_mode_per_call(self):
        text_store = FakeDocumentStore([make_document("d1", "network", text_score=1.0)])
        regex_store = FakeDocumentStore([], regex_results=[make_document("d2", "network")])

        text_docs, text_mode = await LexicalSearchStage(text_store).retrieve("network", {}, 5)
        regex_docs, regex_mode = await LexicalSearchStage(regex_store).retrieve("network", {}, 5)

        assert [d.id for d in text_docs] == ["d1"]
        assert text_mode == RetrievalMode.TEXT
        assert [d.id for d in regex_docs] == ["d2"]
        assert regex_mode == RetrievalMode.REGEX

    @pytest.mark.asyncio
    async def test_concurrent_searches_keep_their_own_mode(self):
        store = FakeDocumentStore([make_document("d1", "network", text_score=1.0)])
        stage = LexicalSearchStage(store)
        original = store.text_search

        async def text_search(query, match_conditions, limit):
            if query == "printer":
                return []
            await asyncio.sleep(0)
            return await original(query, match_conditions, limit)

        store.text_search = text_search

        (text_docs, text_mode), (regex_docs, regex_mode) = await asyncio.gather(
            stage.retrieve("network", {}, 5),
            stage.retrieve("printer", {}, 5),
        )

        assert text_mode == RetrievalMode.TEXT
        assert [d.id for d in text_docs] == ["d1"]
        assert regex_mode == RetrievalMode.REGEX

    def test_normalize(self):
        stage = LexicalSearchStage(FakeDocumentStore([]))
        candidates = candidates_for(make_document("d1"), make_document("d2"), scores=[4.0, 1.0])

        stage.normalize(candidates)

        assert [c.normalized_lexical for c in candidates] == [1.0, 0.25]

    def test_normalize_all_zero(self):
        stage = LexicalSearchStage(FakeDocumentStore([]))
        candidates = candidates_for(make_document("d1"), make_document("d2"))

        stage.normalize(candidates)

        assert [c.normalized_lexical for c in candidates] == [0.0, 0.0]


class TestSemanticScorer:
    """Test embedding similarity scoring."""

    @pytest.mark.asyncio
    async def test_scores_and_normalizes(self):
        gateway = FakeGateway(embeddings={"query": [1.0, 0.0]})
        scorer = SemanticScorer(EmbeddingClient(gateway))
        candidates = candidates_for(
            make_document("d1", embedding=[1.0, 1.0]),
            make_document("d2", embedding=[1.0, 0.0]),
            make_document("d3", embedding=[1.0, 0.0, 0.0]),
            make_document("d4"),
            make_document("d5", embedding=[-1.0, 0.0]),
        )

        await scorer.score("query", candidates)

        assert candidates[0].semantic_score == pytest.approx(0.7071, abs=1e-4)
        assert candidates[1].semantic_score == pytest.approx(1.0)
        assert candidates[2].semantic_score == 0.0
        assert candidates[3].semantic_score == 0.0
        assert candidates[4].semantic_score == 0.0
        assert candidates[1].normalized_semantic == pytest.approx(1.0)
        assert gateway.embed_calls == ["query"]

    @pytest.mark.asyncio
    async def test_no_query_embedding(self):
        scorer = SemanticScorer(EmbeddingClient(FakeGateway()))
        candidates = candidates_for(make_document("d1", embedding=[1.0, 0.0]))

        await scorer.score("query", candidates)

        assert candidates[0].semantic_score == 0.0
        assert candidates[0].normalized_semantic == 0.0


class TestRelevanceReranker:
    """Test LLM re-ranking with budget and fallback."""

    def test_term_density_score(self):
        assert term_density_score("router", "") == 0.0
        assert term_density_score("router", "router") == 100.0
        assert term_density_score("router", "the router " + "x" * 989) == pytest.approx(10.0)

    def test_batch_selection(self):
        reranker = RelevanceReranker(FakeGateway(), RerankConfig(batch_size=2))
        candidates = candidates_for(
            make_document("d1"), make_document("d2"), make_document("d3"),
            scores=[1.0, 3.0, 3.0]
        )

        batch = reranker.select_batch(candidates)

        assert [c.id for c in batch] == ["d2", "d3"]

    @pytest.mark.asyncio
    async def test_model_scores_applied_to_batch_only(self):
        gateway = FakeGateway(relevance_scores={"d1": 90, "d2": 40, "d3": 70})
        reranker = RelevanceReranker(gateway, RerankConfig(batch_size=2))
        candidates = candidates_for(
            make_document("d1"), make_document("d2"), make_document("d3"),
            scores=[3.0, 2.0, 1.0]
        )

        await reranker.rerank("query", candidates)

        assert [c.llm_score for c in candidates] == [90.0, 40.0, None]
        sent = gateway.relevance_calls[0]
        assert [item.id for item in sent] == ["d1", "d2"]

    @pytest.mark.asyncio
    async def test_excerpts_sent_to_model(self):
        gateway = FakeGateway(relevance_scores={"d1": 50})
        reranker = RelevanceReranker(gateway, RerankConfig(excerpt_length=400))
        candidates = candidates_for(make_document("d1", "y" * 1000))

        await reranker.rerank("query", candidates)

        assert gateway.relevance_calls[0][0].excerpt == "y" * 400

    @pytest.mark.asyncio
    async def test_empty_mapping_uses_fallback(self):
        gateway = FakeGateway()
        reranker = RelevanceReranker(gateway)
        candidates = candidates_for(
            make_document("d1", "network network"),
            make_document("d2", "nothing relevant"),
            make_document("d3", ""),
        )

        await reranker.rerank("network", candidates)

        assert candidates[0].llm_score == 100.0
        assert candidates[1].llm_score == 0.0
        assert candidates[2].llm_score == 0.0

    @pytest.mark.asyncio
    async def test_gateway_error_uses_fallback(self):
        gateway = FakeGateway()

        async def fail(query, items):
            raise ServiceUnavailableError("down")

        gateway.generate_relevance_scores = fail
        reranker = RelevanceReranker(gateway)
        candidates = candidates_for(make_document("d1", "network"))

        await reranker.rerank("network", candidates)

        assert candidates[0].llm_score == 100.0

    @pytest.mark.asyncio
    async def test_timeout_uses_fallback_without_cancelling(self):
        """Test the slow model call keeps running after the budget expires."""
        release = asyncio.Event()
        finished = []
        gateway = FakeGateway()

        async def slow(query, items):
            await release.wait()
            finished.append(True)
            return {"d1": 99}

        gateway.generate_relevance_scores = slow
        reranker = RelevanceReranker(gateway, RerankConfig(time_budget=0.05))
        candidates = candidates_for(make_document("d1", "network " + "x" * 992))

        await reranker.rerank("network", candidates)

        assert candidates[0].llm_score == pytest.approx(25.0)
        assert len(reranker._background_tasks) == 1

        release.set()
        await asyncio.sleep(0.01)

        assert finished == [True]
        assert len(reranker._background_tasks) == 0
        assert candidates[0].llm_score == pytest.approx(25.0)

    @pytest.mark.asyncio
    async def test_empty_candidates(self):
        gateway = FakeGateway()
        reranker = RelevanceReranker(gateway)

        assert await reranker.rerank("query", []) == []
        assert gateway.relevance_calls == []
