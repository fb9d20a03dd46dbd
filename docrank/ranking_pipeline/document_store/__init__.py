"""
Document store module for docrank.
Read-only MongoDB retrieval with full-text and regex search.
"""

from .base import (
    IDatabaseConnection,
    IDocumentStore,
    DocumentStoreError,
    StoreConnectionError,
    StoreTimeoutError,
    SearchError
)

from .mongodb_client import (
    MongoDBConnection,
    get_mongodb_connection,
    close_mongodb_connection
)

from .document_store import (
    MongoDocumentStore,
    create_document_store
)

# Main entry points
__all__ = [
    "IDatabaseConnection",
    "IDocumentStore",
    "MongoDocumentStore",
    "create_document_store",
    "MongoDBConnection",
    "get_mongodb_connection",
    "close_mongodb_connection",
    "DocumentStoreError",
    "StoreConnectionError",
    "StoreTimeoutError",
    "SearchError"
]
