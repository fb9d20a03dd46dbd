"""
Ranking orchestrator for docrank.
Runs one ranking request through retrieval, scoring, re-ranking, fusion
and pagination.
"""

import math
import time
from datetime import datetime
from typing import Optional

from docrank.config.ranking_config import get_ranking_config
from docrank.inference_pipeline.base import IInferenceGateway, ServiceUnavailableError
from docrank.inference_pipeline.embedding_client import EmbeddingClient, cosine
from docrank.models.ranking import RankingConfiguration
from docrank.models.schemas import (
    AdvancedSearchRequest,
    AdvancedSearchResponse,
    Pagination,
    RankingRequest,
    RankingResponse,
    SemanticResult,
    SemanticSearchRequest,
    SemanticSearchResponse,
)
from docrank.utils.logger import LoggerMixin
from .document_store.base import IDocumentStore
from .lexical_search import LexicalSearchStage
from .reranker import RelevanceReranker
from .score_fusion import ScoreFusionEngine
from .semantic_scorer import SemanticScorer


class RankingOrchestrator(LoggerMixin):
    """Hybrid ranking pipeline over the document store."""

    def __init__(
        self,
        store: IDocumentStore,
        gateway: IInferenceGateway,
        config: Optional[RankingConfiguration] = None,
        embedding_client: Optional[EmbeddingClient] = None
    ):
        """
        Initialize the orchestrator and its stages.

        Args:
            store: Document store used for retrieval
            gateway: Inference gateway used for embeddings and re-ranking
            config: Ranking configuration, the process-wide one if omitted
            embedding_client: Embedding client, created around the gateway if omitted
        """
        self.config = config or get_ranking_config()
        self.store = store
        self.gateway = gateway

        self.embedding_client = embedding_client or EmbeddingClient(gateway, self.config.embedding)
        self.lexical_stage = LexicalSearchStage(store)
        self.semantic_scorer = SemanticScorer(self.embedding_client)
        self.reranker = RelevanceReranker(gateway, self.config.rerank)
        self.fusion = ScoreFusionEngine(self.config.fusion, self.config.search)

    def candidate_window(self, request: RankingRequest) -> int:
        """Number of candidates fetched so that the requested page can be filled."""
        return min(request.limit * request.page, self.config.search.max_candidate_window)

    async def rank(self, request: RankingRequest) -> RankingResponse:
        """
        Rank documents for a request.

        Args:
            request: Validated ranking request

        Returns:
            RankingResponse with one page of results and the filtered total

        Raises:
            DocumentStoreError: If retrieval fails
        """
        start_time = time.time()

        try:
            match_conditions = self.store.build_match_conditions(request.folder, request.filters)
            self.logger.debug(f"Match conditions built: {match_conditions}")

            candidates = await self.lexical_stage.search(
                request.query, match_conditions, self.candidate_window(request)
            )
            self.lexical_stage.normalize(candidates)

            await self.semantic_scorer.score(request.query, candidates)
            await self.reranker.rerank(request.query, candidates)

            fused = self.fusion.fuse(candidates)
            filtered = self.fusion.apply_min_score(fused, request.min_score)
            page, total = self.fusion.paginate(filtered, request.page, request.limit)

        except Exception as e:
            self.logger.error(
                f"Ranking failed for query '{request.query[:100]}' "
                f"(page={request.page}, limit={request.limit}, min_score={request.min_score}): {e}"
            )
            raise

        elapsed = time.time() - start_time
        self.logger.info(
            f"Ranked query '{request.query[:100]}': {len(page)} of {total} results "
            f"on page {request.page} in {elapsed:.2f}s"
        )

        return RankingResponse(
            results=[self.fusion.to_ranked_document(c) for c in page],
            total=total,
            page=request.page,
            page_size=request.limit,
            returned=len(page),
            min_score=request.min_score,
            search_time=datetime.utcnow()
        )

    async def advanced_search(self, request: AdvancedSearchRequest) -> AdvancedSearchResponse:
        """
        Rank documents and count facet values.

        Facet counts cover every processed document, not only the matches.

        Args:
            request: Ranking request with the facets to compute

        Returns:
            AdvancedSearchResponse with the ranked page, facets and pagination
        """
        ranking = await self.rank(request)

        facets = {}
        if request.facets:
            facets = await self.store.facet_counts(
                request.facets,
                limit=self.config.search.facet_limit,
                tag_limit=self.config.search.tag_facet_limit
            )

        return AdvancedSearchResponse(
            query=request.query,
            results=ranking.results,
            total=ranking.total,
            facets=facets,
            pagination=Pagination(
                page=request.page,
                limit=request.limit,
                total=ranking.total,
                pages=math.ceil(ranking.total / request.limit)
            )
        )

    async def semantic_search(self, request: SemanticSearchRequest) -> SemanticSearchResponse:
        """
        Rank embedded documents by cosine similarity to the query alone.

        Raises:
            ServiceUnavailableError: If the query cannot be embedded
        """
        query_vector = await self.embedding_client.embed(request.query)
        if not query_vector:
            raise ServiceUnavailableError("Embedding service unavailable")

        documents = await self.store.embedded_documents(self.config.search.semantic_scan_limit)
        scored = [(cosine(query_vector, document.embedding), document) for document in documents]
        matches = [(similarity, document) for similarity, document in scored if similarity >= request.threshold]
        matches.sort(key=lambda match: match[0], reverse=True)

        results = [
            SemanticResult(
                id=document.id,
                original_name=document.original_name,
                folder=document.folder,
                mime_type=document.mime_type,
                size=document.size,
                tags=document.tags,
                created_at=document.created_at,
                extracted_text_excerpt=self.fusion.excerpt(document.extracted_text),
                semantic_score=round(similarity, 4)
            )
            for similarity, document in matches[:request.limit]
        ]

        self.logger.info(
            f"Semantic search for '{request.query[:100]}': {len(results)} of {len(documents)} "
            f"embedded documents at threshold {request.threshold}"
        )
        return SemanticSearchResponse(
            query=request.query,
            results=results,
            total=len(results),
            threshold=request.threshold
        )


def create_ranking_orchestrator(
    store: IDocumentStore,
    gateway: IInferenceGateway,
    config: Optional[RankingConfiguration] = None
) -> RankingOrchestrator:
    """
    Factory function to create a ranking orchestrator.

    Args:
        store: Document store
        gateway: Inference gateway
        config: Optional ranking configuration

    Returns:
        RankingOrchestrator instance
    """
    return RankingOrchestrator(store, gateway, config)
