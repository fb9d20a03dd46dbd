"""
Prompt Manager for docrank.
Builds the relevance-scoring prompt sent to the language model.
"""

from typing import Sequence

from docrank.models.schemas import RerankItem
from docrank.utils.logger import LoggerMixin


class RelevancePromptBuilder(LoggerMixin):
    """Builds prompts asking the model to score documents against a query."""

    def __init__(self, excerpt_length: int = 280):
        """
        Initialize the prompt builder.

        Args:
            excerpt_length: Characters of each document excerpt included in the prompt
        """
        self.excerpt_length = excerpt_length
        self.instructions = (
            "Return a concise pure JSON object ONLY (no markdown) mapping document id "
            "to an integer relevance score 0-100 like: {\"<id>\": 87, \"<id2>\": 42}. "
            "Use higher scores for more relevant documents. "
            "If uncertain, give a moderate score."
        )

    def format_document(self, index: int, item: RerankItem) -> str:
        """Format one document entry of the prompt."""
        excerpt = (item.excerpt or "")[:self.excerpt_length]
        return f"DOC {index} (id:{item.id}): {item.original_name}\n{excerpt}"

    def create_relevance_prompt(self, query: str, items: Sequence[RerankItem]) -> str:
        """
        Create the relevance-scoring prompt.

        Args:
            query: User's search query
            items: Documents to score

        Returns:
            Formatted prompt string
        """
        documents = "\n\n".join(
            self.format_document(i, item) for i, item in enumerate(items, 1)
        )

        return (
            "You are ranking documents for relevance to a user query.\n"
            f"Query: \"{query}\"\n"
            "Documents:\n"
            f"{documents}\n\n"
            f"{self.instructions}"
        )
