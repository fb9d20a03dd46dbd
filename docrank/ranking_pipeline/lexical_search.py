"""
Lexical retrieval stage for docrank.
Fetches candidates with full-text search, falls back to regex search,
and scores them by native text score or term frequency.
"""

from typing import Any, Dict, List, Tuple

from docrank.models.schemas import Candidate, Document, RetrievalMode
from docrank.utils.logger import LoggerMixin
from .document_store.base import IDocumentStore


def term_frequency(query: str, text: str) -> int:
    """
    Count non-overlapping occurrences of each query term in text.

    Args:
        query: Search query, split on whitespace
        text: Text to scan, compared case-insensitively

    Returns:
        Sum of occurrences over all terms
    """
    haystack = (text or "").lower()
    return sum(haystack.count(term) for term in query.lower().split())


class LexicalSearchStage(LoggerMixin):
    """Retrieves candidate documents and assigns lexical scores."""

    def __init__(self, store: IDocumentStore):
        """
        Initialize the lexical stage.

        Args:
            store: Document store to query
        """
        self.store = store

    async def retrieve(
        self,
        query: str,
        match_conditions: Dict[str, Any],
        limit: int
    ) -> Tuple[List[Document], RetrievalMode]:
        """Full-text search, or regex search when it finds nothing. Also returns the mode used."""
        documents = await self.store.text_search(query, match_conditions, limit)
        if documents:
            return documents, RetrievalMode.TEXT

        self.logger.info("Text search found no documents, falling back to regex search")
        documents = await self.store.regex_search(query, match_conditions, limit)
        return documents, RetrievalMode.REGEX

    async def search(
        self,
        query: str,
        match_conditions: Dict[str, Any],
        limit: int
    ) -> List[Candidate]:
        """
        Retrieve candidates and score them lexically.

        A truthy native text score is preferred over term frequency.

        Args:
            query: Search query
            match_conditions: Filter predicate
            limit: Maximum number of candidates

        Returns:
            Candidates in retrieval order with lexical scores set
        """
        documents, mode = await self.retrieve(query, match_conditions, limit)

        candidates = []
        for rank, document in enumerate(documents):
            score = document.text_score or term_frequency(query, document.extracted_text)
            candidates.append(Candidate(
                document=document,
                retrieval_rank=rank,
                lexical_score=float(score)
            ))

        self.logger.info(
            f"Lexical stage produced {len(candidates)} candidates ({mode.value} retrieval)"
        )
        return candidates

    def normalize(self, candidates: List[Candidate]) -> List[Candidate]:
        """Divide lexical scores by the maximum, or by 1 when the maximum is 0."""
        max_score = max((c.lexical_score for c in candidates), default=0.0) or 1.0
        for candidate in candidates:
            candidate.normalized_lexical = candidate.lexical_score / max_score
        return candidates
