"""
Shared behaviour for live legal research providers.

Every provider answers search() in one of two modes:
- live: an HTTP call to the provider (credentials or opt-in required)
- curated: a small static set of landmark results, filtered by the query

A live failure falls back to curated results, so search() does not raise
for provider-side errors. Callers still guard each call with a timeout.
"""

import uuid
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import httpx

from ..document_parser import LegalDocument
from ..vector_store import SearchFilters, SearchResult

logger = logging.getLogger(__name__)

USER_AGENT = "LegalResearch-Retrieval/0.1"


class ProviderStatus(str, Enum):
    ONLINE = "online"
    LIMITED = "limited"
    OFFLINE = "offline"


@dataclass
class ProviderHealth:
    provider: str
    status: ProviderStatus
    message: str = ""
    result_count: int = 0

    def to_dict(self) -> dict:
        return {
            "provider": self.provider,
            "status": self.status.value,
            "message": self.message,
            "result_count": self.result_count,
        }


@dataclass
class ProviderConfig:
    """Per-provider configuration."""
    enabled: bool = True
    api_key: Optional[str] = None
    timeout_seconds: float = 8.0
    base_url: Optional[str] = None
    live_search: bool = False  # opt-in for providers that need no key


@dataclass
class ProviderSearchOptions:
    limit: int = 10
    filters: SearchFilters = field(default_factory=SearchFilters)


@dataclass
class ImportOutcome:
    """Per-result status of an import run."""
    source_id: str
    title: str
    status: str  # "downloaded" or "failed"
    document_id: Optional[str] = None
    chunk_count: int = 0
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "source_id": self.source_id,
            "title": self.title,
            "status": self.status,
            "document_id": self.document_id,
            "chunk_count": self.chunk_count,
            "error": self.error,
        }


class RetrievalProvider(ABC):
    """
    Base class for live providers.

    Subclasses set:
    - name: configuration key ("court_listener")
    - display_name: value used as SearchResult.source
    - curated_results: fallback records (dicts with SearchResult field names)
    - sends_date_bound: True when _search_live passes filters.date_from upstream
    - health_check_query: query used by health_check()

    and implement _search_live().
    """

    name: str = "base"
    display_name: str = "Base"
    curated_results: list[dict] = []
    sends_date_bound: bool = False
    health_check_query: str = "constitutional law"

    def __init__(
        self,
        config: Optional[ProviderConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or ProviderConfig()
        self._client = client

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    @property
    def has_live_access(self) -> bool:
        """True when the live path may be attempted."""
        return bool(self.config.api_key)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def search(
        self, query: str, options: Optional[ProviderSearchOptions] = None
    ) -> list[SearchResult]:
        """Search live when possible, curated otherwise. Never raises for provider errors."""
        options = options or ProviderSearchOptions()
        if not self.enabled:
            return []

        if self.has_live_access:
            try:
                results = await self._search_live(query, options)
                live_filters = options.filters
                if self.sends_date_bound:
                    # Upstream applied the date bound; its dates may be year-only
                    live_filters = live_filters.equality_only()
                return [r for r in results if live_filters.matches(r)][:options.limit]
            except Exception as e:
                logger.warning(
                    f"{self.display_name} live search failed, using curated results: {e}"
                )
        else:
            logger.debug(f"{self.display_name}: no live access, using curated results")

        return self._curated_search(query, options)

    async def health_check(self) -> ProviderHealth:
        """online if a live search succeeds, limited if only curated results work."""
        if not self.enabled:
            return ProviderHealth(self.name, ProviderStatus.OFFLINE, "Provider disabled")

        if not self.has_live_access:
            return ProviderHealth(
                self.name,
                ProviderStatus.LIMITED,
                "No live access configured; serving curated results",
                result_count=len(self.curated_results),
            )

        try:
            results = await self._search_live(
                self.health_check_query, ProviderSearchOptions(limit=1)
            )
        except Exception as e:
            return ProviderHealth(
                self.name, ProviderStatus.LIMITED, f"Live search failed: {e}"
            )
        return ProviderHealth(
            self.name,
            ProviderStatus.ONLINE,
            f"Connected to {self.display_name}",
            result_count=len(results),
        )

    async def import_results(
        self,
        query: str,
        pipeline,
        options: Optional[ProviderSearchOptions] = None,
    ) -> list[ImportOutcome]:
        """
        Search, then ingest each result through an IngestionPipeline.

        Document ids are derived from the result URL, so importing the same
        result again replaces its chunks.
        """
        options = options or ProviderSearchOptions(limit=5)
        results = await self.search(query, options)

        outcomes = []
        for result in results[:options.limit]:
            try:
                ingested = await pipeline.ingest(self.to_document(result))
            except Exception as e:
                logger.error(f"Failed to import {result.title} from {self.display_name}: {e}")
                outcomes.append(ImportOutcome(
                    source_id=result.id, title=result.title, status="failed", error=str(e)
                ))
                continue
            outcomes.append(ImportOutcome(
                source_id=result.id,
                title=result.title,
                status="downloaded",
                document_id=ingested.document_id,
                chunk_count=ingested.chunk_count,
            ))
        return outcomes

    def to_document(self, result: SearchResult) -> LegalDocument:
        """Convert a provider result into a document for ingestion."""
        identity = result.url or f"{self.name}:{result.id}"
        content = "\n\n".join(
            part for part in (result.title, result.citation, result.court, result.content) if part
        )
        return LegalDocument(
            document_id=str(uuid.uuid5(uuid.NAMESPACE_URL, identity)),
            title=result.title,
            content=content,
            source=self.display_name,
            source_url=result.url,
            citation=result.citation,
            court=result.court,
            jurisdiction=result.jurisdiction,
            practice_area=result.practice_area,
            document_type=result.document_type,
            publication_date=result.date,
            metadata={"provider": self.name, "source_id": result.id},
        )

    # ------------------------------------------------------------------
    # Subclass hooks and helpers
    # ------------------------------------------------------------------

    @abstractmethod
    async def _search_live(
        self, query: str, options: ProviderSearchOptions
    ) -> list[SearchResult]:
        """Query the provider over HTTP. May raise."""

    def _curated_search(self, query: str, options: ProviderSearchOptions) -> list[SearchResult]:
        needle = query.strip().casefold()
        results = []
        for item in self.curated_results:
            result = self._curated_to_result(item)
            if needle not in result.title.casefold() and needle not in result.content.casefold():
                continue
            if not options.filters.matches(result):
                continue
            results.append(result)
        return results[:options.limit]

    def _curated_to_result(self, item: dict) -> SearchResult:
        data = dict(item)
        source_id = data.pop("id")
        return SearchResult(
            id=f"{self.name}-{source_id}",
            source=self.display_name,
            source_type="live",
            metadata={"curated": True},
            **data,
        )

    @asynccontextmanager
    async def _http(self):
        """Yield the injected client, or a short-lived one."""
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(
            timeout=self.config.timeout_seconds,
            headers={"User-Agent": USER_AGENT},
            follow_redirects=True,
        ) as client:
            yield client
