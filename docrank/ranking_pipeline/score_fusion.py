"""
Score fusion, filtering and pagination for docrank.
"""

from typing import List, Optional, Tuple

from docrank.models.ranking import FusionWeights, SearchConfig
from docrank.models.schemas import Candidate, RankedDocument
from docrank.utils.logger import LoggerMixin


class ScoreFusionEngine(LoggerMixin):
    """Combines normalized signals into one relevance score and pages the result."""

    def __init__(
        self,
        weights: Optional[FusionWeights] = None,
        search_config: Optional[SearchConfig] = None
    ):
        self.weights = (weights or FusionWeights()).model_copy()
        self.search_config = (search_config or SearchConfig()).model_copy()

    def combined_score(self, candidate: Candidate) -> float:
        """
        Weighted combination of the normalized signals.

        Args:
            candidate: Candidate with normalized lexical and semantic scores

        Returns:
            Score in [0, 1], rounded to the configured precision
        """
        w = self.weights
        if candidate.llm_score is not None:
            combined = (
                w.lexical * candidate.normalized_lexical
                + w.semantic * candidate.normalized_semantic
                + w.llm * (candidate.llm_score / 100)
            )
        else:
            combined = (
                w.fallback_lexical * candidate.normalized_lexical
                + w.fallback_semantic * candidate.normalized_semantic
            )
        return round(max(0.0, min(1.0, combined)), w.precision)

    def fuse(self, candidates: List[Candidate]) -> List[Candidate]:
        """
        Score and sort candidates by combined score, descending.
        Ties keep retrieval order.
        """
        for candidate in candidates:
            candidate.combined_score = self.combined_score(candidate)

        fused = sorted(candidates, key=lambda c: (-c.combined_score, c.retrieval_rank))
        self.logger.info(f"Fusion stage ranked {len(fused)} candidates")
        return fused

    def apply_min_score(self, candidates: List[Candidate], min_score: float) -> List[Candidate]:
        """Keep candidates scoring at least min_score. A min_score of 0 keeps everything."""
        if min_score <= 0:
            return candidates
        kept = [c for c in candidates if c.combined_score >= min_score]
        self.logger.info(f"Min-score filter kept {len(kept)} of {len(candidates)} candidates")
        return kept

    def paginate(self, candidates: List[Candidate], page: int, limit: int) -> Tuple[List[Candidate], int]:
        """
        Slice one page out of the filtered candidates.

        Args:
            candidates: Filtered, sorted candidates
            page: 1-based page number
            limit: Page size

        Returns:
            Tuple of (page of candidates, filtered total)
        """
        skip = (page - 1) * limit
        return candidates[skip:skip + limit], len(candidates)

    def excerpt(self, text: str) -> str:
        """Display excerpt, with "..." appended when the text was cut."""
        length = self.search_config.display_excerpt_length
        return text[:length] + ("..." if len(text) > length else "")

    def to_ranked_document(self, candidate: Candidate) -> RankedDocument:
        """Build the response view of a candidate."""
        document = candidate.document
        precision = self.weights.precision

        return RankedDocument(
            id=document.id,
            original_name=document.original_name,
            folder=document.folder,
            mime_type=document.mime_type,
            size=document.size,
            tags=document.tags,
            uploaded_by=document.uploaded_by,
            created_at=document.created_at,
            extracted_text_excerpt=self.excerpt(document.extracted_text),
            relevance_score=candidate.combined_score,
            base_score=round(candidate.normalized_lexical, precision),
            semantic_score=round(candidate.normalized_semantic, precision),
            llm_score=candidate.llm_score
        )
