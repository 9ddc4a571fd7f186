"""
Retrieval aggregator: one query fanned out to the internal store and the
live providers, merged into a single ranked, de-duplicated list.

Pipeline:
1. Validate query, limit, filters, sources
2. Query cache lookup
3. Embed the query (degraded embeddings switch the store to lexical search)
4. Fan out concurrently, each source under its own timeout
5. Concatenate in enumeration order (internal first, then providers as configured)
6. De-duplicate by normalized title, keeping the first occurrence
7. Score, stable-sort descending, truncate, assign ranks 1..N
8. Cache the ranked list when every source answered with a real embedding
"""

import re
import copy
import asyncio
import logging
from dataclasses import dataclass, field, replace as _replace
from datetime import date, timedelta
from typing import Callable, Optional, Sequence

from .embeddings import BaseEmbeddingService, EmbeddingResult
from .errors import InvalidRetrievalRequest, ProviderUnavailable
from .metrics import MetricsCollector
from .providers import ProviderSearchOptions, RetrievalProvider, build_providers
from .query_cache import QueryCache
from .settings import ResearchSettings
from .vector_store import SearchFilters, SearchResult, VectorStore, VectorStoreConfig

logger = logging.getLogger(__name__)

INTERNAL_SOURCE = "internal"

_NON_WORD = re.compile(r"[^\w\s]")


@dataclass
class RetrievalConfig:
    """Configuration for aggregated retrieval."""
    default_limit: int = 10
    max_limit: int = 50
    # Each source is asked for limit * candidate_multiplier results
    candidate_multiplier: int = 2

    # Per-source timeouts (seconds)
    store_timeout_seconds: float = 8.0
    provider_timeout_seconds: float = 8.0

    # Relevance scoring
    title_term_weight: float = 3.0
    content_term_weight: float = 1.0
    recent_days: int = 365
    recent_bonus: float = 1.0
    internal_bonus: float = 2.0
    citation_bonus: float = 1.0

    use_cache: bool = True
    # Query the store lexically when the query embedding is a fallback vector
    lexical_on_degraded_embedding: bool = True


@dataclass
class RetrievalReport:
    """Ranked results plus what went wrong getting them."""
    results: list[SearchResult]
    failures: list[ProviderUnavailable] = field(default_factory=list)
    embedding_degraded: bool = False
    cache_hit: bool = False

    def to_dict(self) -> dict:
        return {
            "results": [r.to_dict() for r in self.results],
            "failures": [f.to_dict() for f in self.failures],
            "embedding_degraded": self.embedding_degraded,
            "cache_hit": self.cache_hit,
        }


# =============================================================================
# Merge and rank
# =============================================================================

def normalize_title(title: str) -> str:
    """Lowercase, strip punctuation, collapse whitespace."""
    return " ".join(_NON_WORD.sub("", (title or "").lower()).split())


def query_terms(query: str) -> list[str]:
    """Lowercased whitespace-separated terms. Repeated terms count repeatedly."""
    return query.lower().split()


def dedupe_by_title(results: Sequence[SearchResult]) -> list[SearchResult]:
    """Keep the first result for each normalized title."""
    seen = set()
    unique = []
    for result in results:
        key = normalize_title(result.title) or f"id:{result.id}"
        if key in seen:
            continue
        seen.add(key)
        unique.append(result)
    return unique


def score_result(
    result: SearchResult,
    terms: Sequence[str],
    today: date,
    config: Optional[RetrievalConfig] = None,
) -> float:
    """Relevance score from term hits, recency, source and citation presence."""
    config = config or RetrievalConfig()
    title = (result.title or "").lower()
    content = (result.content or "").lower()

    score = 0.0
    for term in terms:
        if term in title:
            score += config.title_term_weight
        if term in content:
            score += config.content_term_weight

    published = _parse_date(result.date)
    if published is not None and (today - published).days < config.recent_days:
        score += config.recent_bonus

    if result.source_type == INTERNAL_SOURCE:
        score += config.internal_bonus
    if result.citation:
        score += config.citation_bonus

    return score


def rank_results(
    results: Sequence[SearchResult],
    query: str,
    today: date,
    limit: int,
    config: Optional[RetrievalConfig] = None,
) -> list[SearchResult]:
    """
    Score copies of results, stable-sort by score descending, truncate,
    and number them 1..N. Ties keep their merge order.
    """
    terms = query_terms(query)
    scored = []
    for result in results:
        metadata = dict(result.metadata)
        metadata.setdefault("source_score", result.score)
        scored.append(_replace(
            result,
            score=score_result(result, terms, today, config),
            metadata=metadata,
        ))

    scored.sort(key=lambda r: r.score, reverse=True)
    return [_replace(r, rank=i + 1) for i, r in enumerate(scored[:limit])]


def _parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


# =============================================================================
# Aggregator
# =============================================================================

class RetrievalAggregator:
    """
    Fans a query out to the store and providers and merges the results.

    Usage:
        aggregator = RetrievalAggregator(store, embeddings, providers, cache=QueryCache())
        results = await aggregator.retrieve("Miranda rights", limit=5)
    """

    def __init__(
        self,
        store: VectorStore,
        embedding_service: BaseEmbeddingService,
        providers: Sequence[RetrievalProvider] = (),
        cache: Optional[QueryCache] = None,
        config: Optional[RetrievalConfig] = None,
        metrics: Optional[MetricsCollector] = None,
        today: Callable[[], date] = date.today,
    ):
        self.store = store
        self.embedding_service = embedding_service
        self.providers = list(providers)
        self.cache = cache
        self.config = config or RetrievalConfig()
        self.metrics = metrics
        self._today = today

        names = [p.name for p in self.providers]
        if len(set(names)) != len(names) or INTERNAL_SOURCE in names:
            raise ValueError(f"Provider names must be unique and not '{INTERNAL_SOURCE}': {names}")

    @property
    def source_names(self) -> list[str]:
        """All sources in enumeration order."""
        return [INTERNAL_SOURCE] + [p.name for p in self.providers]

    async def retrieve(
        self,
        query: str,
        limit: Optional[int] = None,
        filters=None,
        sources: Optional[Sequence[str]] = None,
        date_from=None,
    ) -> list[SearchResult]:
        """Ranked, de-duplicated results. Source failures are logged, not raised."""
        report = await self.retrieve_detailed(
            query, limit=limit, filters=filters, sources=sources, date_from=date_from
        )
        return report.results

    async def retrieve_recent(
        self,
        query: str,
        days: int = 30,
        limit: Optional[int] = None,
        sources: Optional[Sequence[str]] = None,
    ) -> list[SearchResult]:
        """Results published within the last `days` days, today included."""
        if isinstance(days, bool) or not isinstance(days, int) or days < 0:
            raise InvalidRetrievalRequest("days must be a non-negative integer", field="days")
        since = self._today() - timedelta(days=days)
        return await self.retrieve(query, limit=limit, sources=sources, date_from=since)

    async def retrieve_detailed(
        self,
        query: str,
        limit: Optional[int] = None,
        filters=None,
        sources: Optional[Sequence[str]] = None,
        date_from=None,
    ) -> RetrievalReport:
        """
        Like retrieve(), but also reports failed sources, embedding
        degradation and whether the cache answered.

        Raises:
            InvalidRetrievalRequest: empty query, non-positive limit,
                malformed filters or date_from, or unknown source names
        """
        query, limit, search_filters, selected = self._validate(
            query, limit, filters, sources, date_from
        )

        if self.metrics is None:
            return await self._retrieve(query, limit, search_filters, selected)

        with self.metrics.track_query(query) as tracker:
            report = await self._retrieve(query, limit, search_filters, selected)
            tracker.set_results(
                len(report.results),
                cache_hit=report.cache_hit,
                embedding_degraded=report.embedding_degraded,
                failed_providers=[f.provider for f in report.failures],
                timed_out_providers=[f.provider for f in report.failures if f.timed_out],
            )
        return report

    async def source_health(self) -> dict:
        """Health of the store and every provider, keyed by source name."""
        async def _provider_health(provider: RetrievalProvider) -> dict:
            try:
                health = await asyncio.wait_for(
                    provider.health_check(), timeout=self.config.provider_timeout_seconds
                )
                return health.to_dict()
            except asyncio.TimeoutError:
                return {"provider": provider.name, "status": "limited",
                        "message": "Health check timed out", "result_count": 0}

        store_health, *provider_health = await asyncio.gather(
            asyncio.to_thread(self.store.health_check),
            *(_provider_health(p) for p in self.providers),
        )
        health = {INTERNAL_SOURCE: store_health}
        for provider, status in zip(self.providers, provider_health):
            health[provider.name] = status
        return health

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _validate(self, query, limit, filters, sources, date_from=None):
        if not isinstance(query, str) or not query.strip():
            raise InvalidRetrievalRequest("query must be a non-empty string", field="query")

        if limit is None:
            limit = self.config.default_limit
        if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
            raise InvalidRetrievalRequest("limit must be a positive integer", field="limit")
        limit = min(limit, self.config.max_limit)

        search_filters = SearchFilters.from_dict(filters)
        if date_from is not None:
            # An explicit date_from overrides one given inside filters
            search_filters = SearchFilters.from_dict(
                {**search_filters.to_dict(), "date_from": date_from}
            )

        if sources is None:
            selected = self.source_names
        else:
            unknown = [s for s in sources if s not in self.source_names]
            if unknown:
                raise InvalidRetrievalRequest(
                    f"Unknown sources: {', '.join(unknown)}", field="sources"
                )
            # Enumeration order is fixed regardless of request order
            selected = [s for s in self.source_names if s in sources]

        return query.strip(), limit, search_filters, selected

    async def _retrieve(
        self,
        query: str,
        limit: int,
        filters: SearchFilters,
        selected: list[str],
    ) -> RetrievalReport:
        cache_key = QueryCache.make_key(query, filters.to_dict(), limit, selected)
        if self.cache is not None and self.config.use_cache:
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.debug(f"Query cache hit for '{query[:50]}'")
                return RetrievalReport(results=[copy.deepcopy(r) for r in cached], cache_hit=True)

        embedding = None
        if INTERNAL_SOURCE in selected:
            embedding = await self._embed_query(query)
        embedding_degraded = embedding is not None and embedding.degraded

        candidate_limit = limit * max(self.config.candidate_multiplier, 1)
        runs = []
        for name in selected:
            if name == INTERNAL_SOURCE:
                runs.append(self._run_source(
                    name,
                    self._search_internal(query, embedding, candidate_limit, filters),
                    self.config.store_timeout_seconds,
                ))
            else:
                provider = self._provider(name)
                options = ProviderSearchOptions(limit=candidate_limit, filters=filters)
                runs.append(self._run_source(
                    name,
                    provider.search(query, options),
                    self.config.provider_timeout_seconds,
                ))

        outcomes = await asyncio.gather(*runs, return_exceptions=True)

        merged: list[SearchResult] = []
        failures: list[ProviderUnavailable] = []
        for name, outcome in zip(selected, outcomes):
            if isinstance(outcome, ProviderUnavailable):
                failures.append(outcome)
            elif isinstance(outcome, BaseException):
                failure = ProviderUnavailable(name, repr(outcome))
                logger.warning(f"Retrieval source {failure}")
                failures.append(failure)
            else:
                merged.extend(outcome)

        unique = dedupe_by_title(merged)
        ranked = rank_results(unique, query, self._today(), limit, self.config)

        logger.info(
            f"Retrieved {len(ranked)} results for '{query[:50]}' "
            f"({len(merged)} candidates, {len(unique)} unique, {len(failures)} failed sources)"
        )

        if (
            self.cache is not None
            and self.config.use_cache
            and not failures
            and not embedding_degraded
        ):
            self.cache.set(cache_key, tuple(copy.deepcopy(r) for r in ranked))

        return RetrievalReport(
            results=ranked,
            failures=failures,
            embedding_degraded=embedding_degraded,
        )

    async def _embed_query(self, query: str) -> Optional[EmbeddingResult]:
        try:
            return await self.embedding_service.embed_query(query)
        except Exception as e:
            logger.warning(f"Query embedding failed, store will be searched lexically: {e}")
            return None

    async def _search_internal(
        self,
        query: str,
        embedding: Optional[EmbeddingResult],
        limit: int,
        filters: SearchFilters,
    ) -> list[SearchResult]:
        use_lexical = embedding is None or (
            embedding.degraded and self.config.lexical_on_degraded_embedding
        )
        if use_lexical:
            return await asyncio.to_thread(self.store.lexical_search, query, limit, filters)
        return await asyncio.to_thread(
            self.store.similarity_search, embedding.vector, limit, filters, query
        )

    async def _run_source(self, name: str, coro, timeout: float):
        """Await one source under its own timeout; failures become ProviderUnavailable."""
        try:
            return await asyncio.wait_for(coro, timeout=timeout)
        except asyncio.TimeoutError:
            failure = ProviderUnavailable(name, f"timed out after {timeout}s", timed_out=True)
        except Exception as e:
            failure = ProviderUnavailable(name, str(e) or type(e).__name__)
        logger.warning(f"Retrieval source {failure}")
        return failure

    def _provider(self, name: str) -> RetrievalProvider:
        for provider in self.providers:
            if provider.name == name:
                return provider
        raise KeyError(name)


def build_aggregator(
    settings: Optional[ResearchSettings] = None,
    metrics: Optional[MetricsCollector] = None,
) -> RetrievalAggregator:
    """
    Wire an aggregator from settings.

    The store is not connected here; its pool is created on first use.
    """
    from .embeddings import get_embedding_service

    settings = settings or ResearchSettings.from_env()

    api_key = settings.voyage_api_key if settings.embedding_provider == "voyage" else settings.cohere_api_key
    embeddings = get_embedding_service(
        settings.embedding_provider, model=settings.embedding_model, api_key=api_key
    )
    store = VectorStore(VectorStoreConfig(
        connection_string=settings.database_url,
        embedding_dimensions=embeddings.dimensions,
    ))
    return RetrievalAggregator(
        store,
        embeddings,
        providers=build_providers(settings),
        cache=QueryCache(
            max_size=settings.query_cache_max_size,
            default_ttl=settings.query_cache_ttl_seconds,
        ),
        config=RetrievalConfig(
            default_limit=settings.default_limit,
            store_timeout_seconds=settings.provider_timeout_seconds,
            provider_timeout_seconds=settings.provider_timeout_seconds,
        ),
        metrics=metrics,
    )


# CLI for testing
if __name__ == "__main__":
    import sys
    from dotenv import load_dotenv

    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    query = sys.argv[1] if len(sys.argv) > 1 else "Miranda rights"
    aggregator = build_aggregator()

    print(f"\nSearching for: {query}")
    print("-" * 50)

    report = asyncio.run(aggregator.retrieve_detailed(query, limit=5))
    for result in report.results:
        print(f"\n[{result.rank}] {result.title} ({result.source}) score={result.score:.1f}")
        if result.citation:
            print(f"    {result.citation}")
        print(f"    {result.content[:200]}...")
    for failure in report.failures:
        print(f"\n! {failure}")
