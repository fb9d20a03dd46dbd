"""
Abstract base classes and interfaces for the document store.
This module defines the contracts that concrete implementations must follow.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from docrank.models.schemas import Document, FacetBucket, FacetName, RankingFilters


class IDatabaseConnection(ABC):
    """
    Abstract interface for database connections.
    Only manages the connection lifecycle.
    """

    @abstractmethod
    async def connect(self) -> None:
        """Establish database connection."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close database connection."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if connection is healthy."""
        pass

    @abstractmethod
    def get_client(self) -> Any:
        """Get the underlying database client."""
        pass


class IDocumentStore(ABC):
    """
    Abstract interface for read-only document retrieval.
    The collection is written by another system.
    """

    @abstractmethod
    def build_match_conditions(
        self,
        folder: Optional[str] = None,
        filters: Optional[RankingFilters] = None
    ) -> Dict[str, Any]:
        """Build the filter predicate shared by every retrieval query."""
        pass

    @abstractmethod
    async def text_search(
        self,
        query: str,
        match_conditions: Dict[str, Any],
        limit: int
    ) -> List[Document]:
        """Full-text search ordered by the native text score."""
        pass

    @abstractmethod
    async def regex_search(
        self,
        query: str,
        match_conditions: Dict[str, Any],
        limit: int
    ) -> List[Document]:
        """Case-insensitive term search ordered by creation date, newest first."""
        pass

    @abstractmethod
    async def embedded_documents(self, limit: int) -> List[Document]:
        """Processed documents that carry a stored embedding."""
        pass

    @abstractmethod
    async def facet_counts(
        self,
        facets: List[FacetName],
        limit: int = 20,
        tag_limit: int = 50
    ) -> Dict[str, List[FacetBucket]]:
        """Document counts per facet value over processed documents, largest first."""
        pass


class DocumentStoreError(Exception):
    """Base exception for document store operations."""
    pass


class StoreConnectionError(DocumentStoreError):
    """Raised when the database cannot be reached."""
    pass


class StoreTimeoutError(DocumentStoreError):
    """Raised when a database operation times out."""
    pass


class SearchError(DocumentStoreError):
    """Raised when a retrieval query fails."""
    pass
