"""
Semantic scoring stage for docrank.
"""

from typing import List

from docrank.inference_pipeline.embedding_client import EmbeddingClient, cosine
from docrank.models.schemas import Candidate
from docrank.utils.logger import LoggerMixin


class SemanticScorer(LoggerMixin):
    """Scores candidates by cosine similarity between query and stored embeddings."""

    def __init__(self, embedding_client: EmbeddingClient):
        self.embedding_client = embedding_client

    async def score(self, query: str, candidates: List[Candidate]) -> List[Candidate]:
        """
        Set semantic scores on candidates.

        The query is embedded once. Candidates without an embedding of the
        query's dimension score 0, and negative similarity is floored to 0.

        Args:
            query: Search query
            candidates: Candidates to score in place

        Returns:
            The same candidates with semantic scores normalized by the maximum
        """
        query_vector = await self.embedding_client.embed(query)

        if not query_vector:
            self.logger.info("No query embedding available, semantic scores set to 0")

        scored = 0
        for candidate in candidates:
            embedding = candidate.document.embedding
            if query_vector and embedding and len(embedding) == len(query_vector):
                candidate.semantic_score = max(0.0, cosine(query_vector, embedding))
                scored += 1
            else:
                candidate.semantic_score = 0.0

        max_score = max((c.semantic_score for c in candidates), default=0.0) or 1.0
        for candidate in candidates:
            candidate.normalized_semantic = candidate.semantic_score / max_score

        self.logger.info(f"Semantic stage scored {scored} of {len(candidates)} candidates")
        return candidates
