"""
Data models and schemas for docrank.
This module defines the Pydantic models used throughout the application.

Stored documents use the camelCase layout of the document collection, so
fields carry camelCase aliases and accept either spelling on input.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union
from pydantic import BaseModel, Field, field_validator


class DocumentStatus(str, Enum):
    """Processing status of stored documents."""
    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"


class RetrievalMode(str, Enum):
    """How candidates were retrieved from the document store."""
    TEXT = "text"
    REGEX = "regex"


class UploaderRef(BaseModel):
    """Populated reference to the uploading user."""
    id: str
    username: Optional[str] = None


class Document(BaseModel):
    """A stored document as read from the document collection."""
    id: str
    original_name: str = Field(default="", alias="originalName")
    folder: str = Field(default="/")
    mime_type: str = Field(default="", alias="mimeType")
    size: int = Field(default=0, ge=0)
    tags: List[str] = Field(default_factory=list)
    uploaded_by: Optional[Union[UploaderRef, str]] = Field(default=None, alias="uploadedBy")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    extracted_text: str = Field(default="", alias="extractedText")
    embedding: Optional[List[float]] = Field(default=None, description="Stored vector embedding")
    status: DocumentStatus = Field(default=DocumentStatus.PROCESSED)
    text_score: Optional[float] = Field(default=None, alias="score", description="Native full-text score")

    class Config:
        populate_by_name = True

    @field_validator('extracted_text', mode='before')
    @classmethod
    def none_text_to_empty(cls, v):
        return v or ""

    @field_validator('tags', mode='before')
    @classmethod
    def none_tags_to_empty(cls, v):
        return v or []

    @classmethod
    def from_mongo(cls, doc_dict: Dict[str, Any]) -> "Document":
        """
        Convert a MongoDB document to a Document model.

        Args:
            doc_dict: Raw document from the collection

        Returns:
            Document instance
        """
        data = dict(doc_dict)
        if '_id' in data:
            data['id'] = str(data.pop('_id'))

        uploader = data.get('uploadedBy')
        if isinstance(uploader, dict):
            uploader = dict(uploader)
            if '_id' in uploader:
                uploader['id'] = str(uploader.pop('_id'))
            data['uploadedBy'] = uploader
        elif uploader is not None:
            data['uploadedBy'] = str(uploader)

        return cls(**data)


class DateRange(BaseModel):
    """Inclusive creation-date range."""
    start: Optional[datetime] = None
    end: Optional[datetime] = None


class SizeRange(BaseModel):
    """Inclusive size range in bytes."""
    min: Optional[int] = Field(default=None, ge=0)
    max: Optional[int] = Field(default=None, ge=0)


class RankingFilters(BaseModel):
    """Optional filter predicates applied during retrieval."""
    date_range: Optional[DateRange] = Field(default=None, alias="dateRange")
    file_types: List[str] = Field(default_factory=list, alias="fileTypes")
    tags: List[str] = Field(default_factory=list)
    authors: List[str] = Field(default_factory=list)
    size_range: Optional[SizeRange] = Field(default=None, alias="sizeRange")
    workspace: Optional[str] = None

    class Config:
        populate_by_name = True
        frozen = True


class RankingRequest(BaseModel):
    """A validated ranking request. Immutable for the lifetime of the request."""
    query: str = Field(..., min_length=1, description="Free-text search query")
    limit: int = Field(default=10, ge=1, le=50, description="Page size")
    page: int = Field(default=1, ge=1, description="1-based page number")
    min_score: float = Field(default=0.0, ge=0.0, le=1.0, alias="minScore")
    folder: Optional[str] = None
    filters: RankingFilters = Field(default_factory=RankingFilters)

    class Config:
        populate_by_name = True
        frozen = True

    @field_validator('query')
    @classmethod
    def query_not_blank(cls, v):
        v = v.strip()
        if not v:
            raise ValueError('Search query is required')
        return v


class RankedDocument(BaseModel):
    """One ranked result as returned to the caller."""
    id: str
    original_name: str = Field(..., alias="originalName")
    folder: str
    mime_type: str = Field(..., alias="mimeType")
    size: int
    tags: List[str] = Field(default_factory=list)
    uploaded_by: Optional[Union[UploaderRef, str]] = Field(default=None, alias="uploadedBy")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    extracted_text_excerpt: str = Field(..., alias="extractedTextExcerpt")
    relevance_score: float = Field(..., ge=0.0, le=1.0, alias="relevanceScore")
    base_score: float = Field(..., alias="baseScore")
    semantic_score: float = Field(..., alias="semanticScore")
    llm_score: Optional[float] = Field(default=None, alias="llmScore")

    class Config:
        populate_by_name = True


class RankingResponse(BaseModel):
    """Paginated ranking response."""
    results: List[RankedDocument] = Field(default_factory=list)
    total: int = Field(..., ge=0, description="Filtered candidate count before pagination")
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=10, ge=1, alias="pageSize")
    returned: int = Field(default=0, ge=0)
    min_score: float = Field(default=0.0, alias="minScore")
    search_time: datetime = Field(default_factory=datetime.utcnow, alias="searchTime")

    class Config:
        populate_by_name = True


@dataclass
class Candidate:
    """A document under consideration for one ranking request. Never persisted."""
    document: Document
    retrieval_rank: int
    lexical_score: float = 0.0
    normalized_lexical: float = 0.0
    semantic_score: float = 0.0
    normalized_semantic: float = 0.0
    llm_score: Optional[float] = None
    combined_score: float = 0.0

    @property
    def id(self) -> str:
        return self.document.id


class FacetName(str, Enum):
    """Facets available to advanced search."""
    FILE_TYPES = "fileTypes"
    AUTHORS = "authors"
    TAGS = "tags"


class FacetBucket(BaseModel):
    """Document count for one facet value."""
    value: Optional[str] = None
    name: Optional[str] = None
    count: int = Field(..., ge=0)


class AdvancedSearchRequest(RankingRequest):
    """A ranking request that also asks for facet counts."""
    limit: int = Field(default=20, ge=1, le=50, description="Page size")
    facets: List[FacetName] = Field(default_factory=list)


class Pagination(BaseModel):
    """Page position within a result set."""
    page: int = Field(..., ge=1)
    limit: int = Field(..., ge=1)
    total: int = Field(..., ge=0)
    pages: int = Field(..., ge=0)


class AdvancedSearchResponse(BaseModel):
    """Ranked page plus facet counts over processed documents."""
    query: str
    results: List[RankedDocument] = Field(default_factory=list)
    total: int = Field(..., ge=0)
    facets: Dict[str, List[FacetBucket]] = Field(default_factory=dict)
    pagination: Pagination


class SemanticSearchRequest(BaseModel):
    """Embedding-only search request."""
    query: str = Field(..., min_length=1)
    limit: int = Field(default=10, ge=1, le=50)
    threshold: float = Field(default=0.7, ge=-1.0, le=1.0, description="Minimum cosine similarity")

    class Config:
        frozen = True

    @field_validator('query')
    @classmethod
    def query_not_blank(cls, v):
        v = v.strip()
        if not v:
            raise ValueError('Search query is required')
        return v


class SemanticResult(BaseModel):
    """One document matched by embedding similarity."""
    id: str
    original_name: str = Field(..., alias="originalName")
    folder: str
    mime_type: str = Field(..., alias="mimeType")
    size: int
    tags: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    extracted_text_excerpt: str = Field(..., alias="extractedTextExcerpt")
    semantic_score: float = Field(..., alias="semanticScore")

    class Config:
        populate_by_name = True


class SemanticSearchResponse(BaseModel):
    """Embedding-only search results, most similar first."""
    query: str
    results: List[SemanticResult] = Field(default_factory=list)
    total: int = Field(..., ge=0)
    threshold: float
    search_type: str = Field(default="semantic", alias="searchType")

    class Config:
        populate_by_name = True


class ModelDescriptor(BaseModel):
    """A model installed on the inference service."""
    name: str
    available: bool = True
    size: Optional[int] = None
    modified_at: Optional[str] = None


class GenerationResult(BaseModel):
    """Result of one logical text generation call."""
    text: str
    model: str
    prompt_tokens: int = 0
    response_tokens: int = 0
    total_duration: int = 0
    attempt: int = 1


class PullStatus(BaseModel):
    """One streamed progress event of a model pull."""
    status: Optional[str] = None
    digest: Optional[str] = None
    total: Optional[int] = None
    completed: Optional[int] = None
    error: Optional[str] = None


class RerankItem(BaseModel):
    """Lightweight view of a candidate sent to the language model."""
    id: str
    original_name: str
    excerpt: str = ""


class HealthResponse(BaseModel):
    """Service health response."""
    status: str
    database_connected: bool
    circuit_state: str
    details: Dict[str, Any] = Field(default_factory=dict)


class ErrorDetail(BaseModel):
    """One error message."""
    msg: str


class ErrorResponse(BaseModel):
    """Error body returned by the API, with a hint whether retrying may help."""
    errors: List[ErrorDetail]
    retryable: bool = False
    error_type: str = Field(default="unknown", alias="errorType")

    class Config:
        populate_by_name = True


class APIInfoResponse(BaseModel):
    """API information response."""
    name: str
    version: str
    description: str
    endpoints: Dict[str, str]
