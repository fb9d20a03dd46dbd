"""
Read-only MongoDB document store.
Builds filter predicates, runs full-text and regex retrieval queries
and counts facet values.
"""

import re
from typing import Any, Dict, List, Optional

import pymongo
from bson import ObjectId
from pymongo.errors import (
    AutoReconnect,
    ConnectionFailure,
    ExecutionTimeout,
    NetworkTimeout,
    PyMongoError,
    ServerSelectionTimeoutError,
)

from docrank.config.settings import settings
from docrank.models.schemas import Document, DocumentStatus, FacetBucket, FacetName, RankingFilters
from docrank.utils.logger import LoggerMixin
from .base import (
    IDocumentStore,
    SearchError,
    StoreConnectionError,
    StoreTimeoutError,
)
from .mongodb_client import MongoDBConnection


TEXT_INDEX_FIELDS = ["extractedText", "originalName", "tags"]


def _as_object_id(value: str) -> Any:
    """Convert a hex id to ObjectId, leaving anything else untouched."""
    return ObjectId(value) if ObjectId.is_valid(value) else value


class MongoDocumentStore(IDocumentStore, LoggerMixin):
    """
    MongoDB implementation of the document store.
    Reads the document collection and populates uploader usernames.
    """

    def __init__(
        self,
        connection: MongoDBConnection,
        collection_name: Optional[str] = None,
        users_collection_name: Optional[str] = None,
        text_index_name: Optional[str] = None
    ):
        """
        Initialize the document store.

        Args:
            connection: MongoDB connection instance
            collection_name: Name of the documents collection
            users_collection_name: Name of the users collection
            text_index_name: Name of the full-text index
        """
        self.connection = connection
        self.collection_name = collection_name or settings.DOCUMENTS_COLLECTION
        self.users_collection_name = users_collection_name or settings.USERS_COLLECTION
        self.text_index_name = text_index_name or settings.TEXT_INDEX_NAME

    def _get_collection(self):
        return self.connection.get_collection(self.collection_name)

    def _get_users_collection(self):
        return self.connection.get_collection(self.users_collection_name)

    def build_match_conditions(
        self,
        folder: Optional[str] = None,
        filters: Optional[RankingFilters] = None
    ) -> Dict[str, Any]:
        """
        Build the filter predicate shared by every retrieval query.

        Args:
            folder: Restrict to documents in this folder
            filters: Optional filter predicates

        Returns:
            MongoDB filter document
        """
        conditions: Dict[str, Any] = {"status": DocumentStatus.PROCESSED.value}

        if folder:
            conditions["folder"] = folder

        if filters is None:
            return conditions

        if filters.date_range and (filters.date_range.start or filters.date_range.end):
            created_at = {}
            if filters.date_range.start:
                created_at["$gte"] = filters.date_range.start
            if filters.date_range.end:
                created_at["$lte"] = filters.date_range.end
            conditions["createdAt"] = created_at

        if filters.file_types:
            conditions["mimeType"] = {"$in": list(filters.file_types)}

        if filters.tags:
            conditions["tags"] = {"$in": list(filters.tags)}

        if filters.authors:
            conditions["uploadedBy"] = {"$in": [_as_object_id(a) for a in filters.authors]}

        if filters.size_range and (
            filters.size_range.min is not None or filters.size_range.max is not None
        ):
            size = {}
            if filters.size_range.min is not None:
                size["$gte"] = filters.size_range.min
            if filters.size_range.max is not None:
                size["$lte"] = filters.size_range.max
            conditions["size"] = size

        if filters.workspace:
            conditions["bookmarkedInWorkspaces.workspace"] = _as_object_id(filters.workspace)

        return conditions

    async def text_search(
        self,
        query: str,
        match_conditions: Dict[str, Any],
        limit: int
    ) -> List[Document]:
        """
        Full-text search ordered by the native text score.

        Args:
            query: Search query
            match_conditions: Filter predicate
            limit: Maximum number of documents

        Returns:
            Matching documents carrying their text score

        Raises:
            StoreTimeoutError, StoreConnectionError, SearchError: On database errors
        """
        text_filter = {"$text": {"$search": query}, **match_conditions}
        projection = {"score": {"$meta": "textScore"}}

        try:
            cursor = (
                self._get_collection()
                .find(text_filter, projection)
                .sort([("score", {"$meta": "textScore"})])
                .limit(limit)
            )
            raw_documents = await cursor.to_list(length=limit)
            raw_documents = await self._populate_uploaders(raw_documents)
        except PyMongoError as e:
            raise self._translate_error(e, "Text search") from e

        self.logger.debug(f"Text search returned {len(raw_documents)} documents")
        return [Document.from_mongo(doc) for doc in raw_documents]

    async def regex_search(
        self,
        query: str,
        match_conditions: Dict[str, Any],
        limit: int
    ) -> List[Document]:
        """
        Case-insensitive term search over name, text and tags, newest first.

        Args:
            query: Search query, split on whitespace into alternative terms
            match_conditions: Filter predicate
            limit: Maximum number of documents

        Returns:
            Matching documents

        Raises:
            StoreTimeoutError, StoreConnectionError, SearchError: On database errors
        """
        terms = [re.escape(term) for term in query.split()]
        if not terms:
            return []

        pattern = {"$regex": "|".join(terms), "$options": "i"}
        regex_filter = {
            **match_conditions,
            "$or": [
                {"originalName": pattern},
                {"extractedText": pattern},
                {"tags": pattern},
            ],
        }

        try:
            cursor = (
                self._get_collection()
                .find(regex_filter)
                .sort("createdAt", pymongo.DESCENDING)
                .limit(limit)
            )
            raw_documents = await cursor.to_list(length=limit)
            raw_documents = await self._populate_uploaders(raw_documents)
        except PyMongoError as e:
            raise self._translate_error(e, "Regex search") from e

        self.logger.debug(f"Regex search returned {len(raw_documents)} documents")
        return [Document.from_mongo(doc) for doc in raw_documents]

    async def embedded_documents(self, limit: int) -> List[Document]:
        """
        Processed documents that carry a stored embedding, in collection order.

        Args:
            limit: Maximum number of documents

        Raises:
            StoreTimeoutError, StoreConnectionError, SearchError: On database errors
        """
        embedded_filter = {
            "status": DocumentStatus.PROCESSED.value,
            "embedding": {"$exists": True, "$ne": None},
        }

        try:
            cursor = self._get_collection().find(embedded_filter).limit(limit)
            raw_documents = await cursor.to_list(length=limit)
        except PyMongoError as e:
            raise self._translate_error(e, "Embedded document scan") from e

        return [Document.from_mongo(doc) for doc in raw_documents]

    def _facet_pipeline(self, facet: FacetName, limit: int) -> List[Dict[str, Any]]:
        match = {"$match": {"status": DocumentStatus.PROCESSED.value}}
        tail = [{"$sort": {"count": -1}}, {"$limit": limit}]

        if facet == FacetName.FILE_TYPES:
            return [match, {"$group": {"_id": "$mimeType", "count": {"$sum": 1}}}, *tail]
        if facet == FacetName.TAGS:
            return [match, {"$unwind": "$tags"}, {"$group": {"_id": "$tags", "count": {"$sum": 1}}}, *tail]
        return [
            match,
            {"$lookup": {
                "from": self.users_collection_name,
                "localField": "uploadedBy",
                "foreignField": "_id",
                "as": "author",
            }},
            {"$unwind": "$author"},
            {"$group": {"_id": "$author._id", "name": {"$first": "$author.username"}, "count": {"$sum": 1}}},
            *tail,
        ]

    async def facet_counts(
        self,
        facets: List[FacetName],
        limit: int = 20,
        tag_limit: int = 50
    ) -> Dict[str, List[FacetBucket]]:
        """
        Count processed documents per file type, author or tag.

        Args:
            facets: Facets to compute; duplicates are computed once
            limit: Buckets kept for file types and authors
            tag_limit: Buckets kept for tags

        Returns:
            Facet name to buckets, largest count first

        Raises:
            StoreTimeoutError, StoreConnectionError, SearchError: On database errors
        """
        results: Dict[str, List[FacetBucket]] = {}
        for facet in dict.fromkeys(facets):
            bucket_limit = tag_limit if facet == FacetName.TAGS else limit
            try:
                cursor = self._get_collection().aggregate(self._facet_pipeline(facet, bucket_limit))
                rows = await cursor.to_list(length=bucket_limit)
            except PyMongoError as e:
                raise self._translate_error(e, f"{facet.value} facet") from e

            results[facet.value] = [
                FacetBucket(
                    value=str(row["_id"]) if row.get("_id") is not None else None,
                    name=row.get("name"),
                    count=row.get("count", 0)
                )
                for row in rows
            ]

        return results

    async def _populate_uploaders(self, raw_documents: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Replace uploader ids with {_id, username} using a single users query."""
        uploader_ids = {
            doc["uploadedBy"] for doc in raw_documents
            if isinstance(doc.get("uploadedBy"), ObjectId)
        }
        if not uploader_ids:
            return raw_documents

        cursor = self._get_users_collection().find(
            {"_id": {"$in": list(uploader_ids)}},
            {"username": 1}
        )
        users = await cursor.to_list(length=len(uploader_ids))
        by_id = {user["_id"]: user for user in users}

        populated = []
        for doc in raw_documents:
            user = by_id.get(doc.get("uploadedBy"))
            if user is not None:
                doc = {**doc, "uploadedBy": {"_id": user["_id"], "username": user.get("username")}}
            populated.append(doc)
        return populated

    def _translate_error(self, error: PyMongoError, operation: str) -> Exception:
        """Map a driver error onto the document store error hierarchy."""
        self.logger.error(f"{operation} failed: {error}")
        if isinstance(error, (ExecutionTimeout, NetworkTimeout, ServerSelectionTimeoutError)):
            return StoreTimeoutError(f"{operation} timed out: {error}")
        if isinstance(error, (ConnectionFailure, AutoReconnect)):
            return StoreConnectionError(f"{operation} lost the database connection: {error}")
        return SearchError(f"{operation} failed: {error}")

    async def ensure_indexes(self) -> bool:
        """
        Create the full-text index used by text search if it is missing.

        Returns:
            True once the index exists
        """
        try:
            await self._get_collection().create_index(
                [(field, pymongo.TEXT) for field in TEXT_INDEX_FIELDS],
                name=self.text_index_name
            )
        except PyMongoError as e:
            raise self._translate_error(e, "Text index creation") from e

        self.logger.info(f"Text index '{self.text_index_name}' is in place")
        return True


def create_document_store(connection: MongoDBConnection) -> MongoDocumentStore:
    """
    Factory function to create a document store.

    Args:
        connection: MongoDB connection instance

    Returns:
        MongoDocumentStore instance
    """
    return MongoDocumentStore(connection)
