"""
Pydantic models for the Legal Research FastAPI backend.

Request and response bodies use the camelCase field names the UI sends;
Python attributes stay snake_case through aliases.
"""

import datetime
from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict, Field


class CamelModel(BaseModel):
    """Accepts both alias and field name on input."""
    model_config = ConfigDict(populate_by_name=True)


class FiltersModel(CamelModel):
    """Equality filters on document metadata, plus an inclusive publication date bound."""
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    jurisdiction: Optional[str] = None
    practice_area: Optional[str] = Field(default=None, alias="practiceArea")
    document_type: Optional[str] = Field(default=None, alias="documentType")
    date_from: Optional[datetime.date] = Field(default=None, alias="dateFrom")

    def to_filters(self) -> dict:
        return self.model_dump(mode="json", exclude_none=True)


class RetrieveRequest(CamelModel):
    """Request body for the retrieval endpoint."""
    query: str = Field(..., min_length=1, max_length=2000)
    limit: Optional[int] = Field(default=None, ge=1, le=50)
    filters: Optional[FiltersModel] = None
    sources: Optional[list[str]] = None  # e.g. ["internal", "justia"]
    date_from: Optional[datetime.date] = Field(default=None, alias="dateFrom")


class SearchResultModel(CamelModel):
    """A ranked result."""
    id: str
    title: str
    content: str
    source: str
    source_type: str = Field(alias="sourceType")
    citation: Optional[str] = None
    court: Optional[str] = None
    date: Optional[str] = None
    url: Optional[str] = None
    jurisdiction: Optional[str] = None
    practice_area: Optional[str] = Field(default=None, alias="practiceArea")
    document_type: Optional[str] = Field(default=None, alias="documentType")
    score: float
    rank: Optional[int] = None


class CitationModel(CamelModel):
    """A numbered citation paired with a ranked result."""
    number: int
    id: str
    title: str
    source: str
    url: Optional[str] = None
    excerpt: str
    relevance_score: float = Field(alias="relevanceScore")
    source_type: str = Field(alias="sourceType")
    citation: Optional[str] = None
    court: Optional[str] = None
    date: Optional[str] = None


class ProviderFailureModel(BaseModel):
    provider: str
    reason: str
    timed_out: bool = False


class RetrieveResponse(CamelModel):
    """Response body for the retrieval endpoint."""
    results: list[SearchResultModel]
    citations: list[CitationModel]
    prompt_blocks: str = Field(alias="promptBlocks")
    embedding_degraded: bool = Field(default=False, alias="embeddingDegraded")
    provider_failures: list[ProviderFailureModel] = Field(default_factory=list, alias="providerFailures")
    cache_hit: bool = Field(default=False, alias="cacheHit")
    latency_ms: float = Field(default=0, alias="latencyMs")


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class ChatRequest(CamelModel):
    """Request body for the streaming chat endpoint. The last user message is the query."""
    messages: list[ChatMessage] = Field(..., min_length=1)
    limit: Optional[int] = Field(default=None, ge=1, le=50)
    filters: Optional[FiltersModel] = None
    sources: Optional[list[str]] = None


class IngestRequest(CamelModel):
    """Request body for ingesting a document body."""
    title: str = Field(..., min_length=1, max_length=500)
    content: str = Field(..., min_length=1)
    document_id: Optional[str] = Field(default=None, alias="documentId")
    source: str = "upload"
    source_url: Optional[str] = Field(default=None, alias="sourceUrl")
    citation: Optional[str] = None
    court: Optional[str] = None
    jurisdiction: Optional[str] = None
    practice_area: Optional[str] = Field(default=None, alias="practiceArea")
    document_type: Optional[str] = Field(default=None, alias="documentType")
    publication_date: Optional[str] = Field(default=None, alias="publicationDate")
    max_bytes: Optional[int] = Field(default=None, ge=64, alias="maxBytes")


class IngestResponse(CamelModel):
    """Response body for document ingestion."""
    document_id: str = Field(alias="documentId")
    title: str
    chunks: int
    degraded_chunks: int = Field(default=0, alias="degradedChunks")


class ImportRequest(CamelModel):
    """Request body for importing provider results into the store."""
    query: str = Field(..., min_length=1, max_length=2000)
    limit: int = Field(default=5, ge=1, le=20)
    filters: Optional[FiltersModel] = None


class ImportOutcomeModel(CamelModel):
    source_id: str = Field(alias="sourceId")
    title: str
    status: str
    document_id: Optional[str] = Field(default=None, alias="documentId")
    chunk_count: int = Field(default=0, alias="chunkCount")
    error: Optional[str] = None


class ImportResponse(BaseModel):
    provider: str
    imported: int
    failed: int
    outcomes: list[ImportOutcomeModel]


class HealthResponse(BaseModel):
    """Response body for health check."""
    status: str
    version: str
    database: str
