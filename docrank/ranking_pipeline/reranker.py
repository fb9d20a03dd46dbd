"""
Language-model re-ranking stage for docrank.
Requests relevance scores within a time budget and falls back to term density.
"""

import asyncio
from typing import Dict, List, Optional, Set

from docrank.inference_pipeline.base import IInferenceGateway, InferenceGatewayError
from docrank.models.ranking import RerankConfig
from docrank.models.schemas import Candidate, RerankItem
from docrank.utils.logger import LoggerMixin


def term_density_score(query: str, excerpt: str) -> float:
    """
    Deterministic relevance estimate from query-term density.

    Args:
        query: Search query, split on whitespace
        excerpt: Excerpt to scan, compared case-insensitively

    Returns:
        min(100, occurrences / len(excerpt) * 10000), or 0 for an empty excerpt
    """
    content = (excerpt or "").lower()
    if not content:
        return 0.0
    occurrences = sum(content.count(term) for term in query.lower().split())
    return min(100.0, occurrences / len(content) * 10000)


class RelevanceReranker(LoggerMixin):
    """Assigns LLM scores to the top lexical candidates."""

    def __init__(self, gateway: IInferenceGateway, config: Optional[RerankConfig] = None):
        """
        Initialize the re-ranker.

        Args:
            gateway: Inference gateway used for relevance scoring
            config: Re-rank configuration
        """
        self.gateway = gateway
        self.config = (config or RerankConfig()).model_copy()
        self._background_tasks: Set[asyncio.Task] = set()

    def select_batch(self, candidates: List[Candidate]) -> List[Candidate]:
        """Top batch_size candidates by lexical score, ties kept in retrieval order."""
        ordered = sorted(candidates, key=lambda c: (-c.lexical_score, c.retrieval_rank))
        return ordered[:min(self.config.batch_size, len(ordered))]

    def _excerpt(self, candidate: Candidate) -> str:
        return candidate.document.extracted_text[:self.config.excerpt_length]

    async def rerank(self, query: str, candidates: List[Candidate]) -> List[Candidate]:
        """
        Set LLM scores on the re-rank batch.

        Args:
            query: Search query
            candidates: All candidates of the request

        Returns:
            The same candidates, batch members carrying an LLM score
        """
        batch = self.select_batch(candidates)
        if not batch:
            return candidates

        items = [
            RerankItem(
                id=c.id,
                original_name=c.document.original_name,
                excerpt=self._excerpt(c)
            )
            for c in batch
        ]

        scores = await self._scores_within_budget(query, items)

        if not scores:
            self.logger.info("Applying fallback term-density re-ranking")
            scores = {
                c.id: term_density_score(query, self._excerpt(c)) for c in batch
            }

        batch_ids = {c.id for c in batch}
        for candidate in candidates:
            if candidate.id in batch_ids and candidate.id in scores:
                candidate.llm_score = float(scores[candidate.id])

        scored = sum(1 for c in candidates if c.llm_score is not None)
        self.logger.info(f"Re-rank stage scored {scored} of {len(candidates)} candidates")
        return candidates

    async def _scores_within_budget(self, query: str, items: List[RerankItem]) -> Dict[str, float]:
        """
        Race the relevance call against the time budget.
        The relevance task is not cancelled when the budget runs out.
        """
        task = asyncio.ensure_future(self.gateway.generate_relevance_scores(query, items))
        done, _ = await asyncio.wait({task}, timeout=self.config.time_budget)

        if task not in done:
            self.logger.warning(
                f"LLM re-ranking timed out after {self.config.time_budget} seconds, "
                "applying fallback scoring"
            )
            self._background_tasks.add(task)
            task.add_done_callback(self._discard_background_task)
            return {}

        try:
            return task.result() or {}
        except InferenceGatewayError as e:
            self.logger.warning(f"LLM re-ranking failed, applying fallback scoring: {e}")
            return {}

    def _discard_background_task(self, task: asyncio.Task) -> None:
        self._background_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.logger.debug(f"Late re-rank task failed: {error}")
