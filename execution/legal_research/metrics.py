"""
Retrieval Metrics

In-process counters for the research backend: how long retrievals take,
how often the query cache answers, which providers fail or time out, and
how many chunks were stored with fallback embeddings.

A collector is constructed by the caller and injected into the
aggregator and ingestion pipeline; there is no global instance.
"""

import time
import logging
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

logger = logging.getLogger(__name__)

QUERY_TEXT_LIMIT = 200


@dataclass
class QueryMetrics:
    """One tracked retrieval."""
    query_id: str
    query_text: str
    start_time: float
    end_time: float = 0
    latency_ms: float = 0
    results_count: int = 0
    cache_hit: bool = False
    embedding_degraded: bool = False
    failed_providers: list = field(default_factory=list)
    timed_out_providers: list = field(default_factory=list)
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


def _rate(part: int, whole: int) -> float:
    return part / whole if whole else 0


def _nearest_rank(samples, fraction: float) -> float:
    if not samples:
        return 0
    ordered = sorted(samples)
    return ordered[min(int(len(ordered) * fraction), len(ordered) - 1)]


@dataclass
class SystemMetrics:
    """Running totals since startup (or the last reset)."""
    total_queries: int = 0
    successful_queries: int = 0
    failed_queries: int = 0

    # Latency (ms); `latencies` is a bounded window for percentiles
    total_latency_ms: float = 0
    min_latency_ms: float = float('inf')
    max_latency_ms: float = 0
    latencies: list = field(default_factory=list)

    cache_hits: int = 0
    cache_misses: int = 0

    degraded_queries: int = 0
    provider_failures: Counter = field(default_factory=Counter)
    provider_timeouts: Counter = field(default_factory=Counter)

    documents_ingested: int = 0
    chunks_created: int = 0
    degraded_chunks: int = 0
    total_ingestion_time_ms: float = 0

    errors_by_type: Counter = field(default_factory=Counter)

    @property
    def avg_latency_ms(self) -> float:
        return _rate(self.total_latency_ms, self.total_queries)

    @property
    def p95_latency_ms(self) -> float:
        return _nearest_rank(self.latencies, 0.95)

    @property
    def p99_latency_ms(self) -> float:
        return _nearest_rank(self.latencies, 0.99)

    @property
    def cache_hit_rate(self) -> float:
        return _rate(self.cache_hits, self.cache_hits + self.cache_misses)

    @property
    def error_rate(self) -> float:
        return _rate(self.failed_queries, self.total_queries)

    def latency_summary(self) -> dict:
        """Rounded latency figures; min is 0 before the first query."""
        lowest = 0 if self.min_latency_ms == float('inf') else self.min_latency_ms
        return {
            "avg": round(self.avg_latency_ms, 2),
            "min": round(lowest, 2),
            "max": round(self.max_latency_ms, 2),
            "p95": round(self.p95_latency_ms, 2),
            "p99": round(self.p99_latency_ms, 2),
        }

    def to_dict(self) -> dict:
        """Serializable snapshot for the metrics endpoint."""
        ingested = max(self.documents_ingested, 1)
        return {
            "queries": {
                "total": self.total_queries,
                "successful": self.successful_queries,
                "failed": self.failed_queries,
                "error_rate": f"{self.error_rate:.2%}",
                "embedding_degraded": self.degraded_queries,
            },
            "latency_ms": self.latency_summary(),
            "cache": {
                "hits": self.cache_hits,
                "misses": self.cache_misses,
                "hit_rate": f"{self.cache_hit_rate:.2%}",
            },
            "providers": {
                "failures": dict(self.provider_failures),
                "timeouts": dict(self.provider_timeouts),
            },
            "ingestion": {
                "documents": self.documents_ingested,
                "chunks": self.chunks_created,
                "degraded_chunks": self.degraded_chunks,
                "avg_time_ms": round(self.total_ingestion_time_ms / ingested, 2),
            },
            "errors": dict(self.errors_by_type),
        }


class MetricsCollector:
    """
    Accumulates SystemMetrics and keeps a window of recent retrievals.

    Usage:
        collector = MetricsCollector()

        with collector.track_query(query_text) as tracker:
            report = await aggregator.retrieve_detailed(query_text)
            tracker.set_results(len(report.results), cache_hit=report.cache_hit)

        snapshot = collector.get_metrics_dict()
    """

    def __init__(self, max_history: int = 1000):
        self._max_history = max_history
        self._sequence = 0
        self.reset()

    def reset(self):
        """Drop all counters and history and restart the uptime clock."""
        self.metrics = SystemMetrics()
        self._history: deque[QueryMetrics] = deque(maxlen=self._max_history)
        self._start_time = datetime.now()

    class QueryTracker:
        """Times one retrieval; exceptions are counted and re-raised."""

        def __init__(self, collector: 'MetricsCollector', query_text: str):
            self.collector = collector
            self.query = QueryMetrics(
                query_id=collector._next_query_id(),
                query_text=query_text[:QUERY_TEXT_LIMIT],
                start_time=time.perf_counter(),
            )

        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc_val, exc_tb):
            self.query.end_time = time.perf_counter()
            self.query.latency_ms = (self.query.end_time - self.query.start_time) * 1000
            if exc_type is not None:
                self.query.error = str(exc_val) or exc_type.__name__
                self.collector.metrics.errors_by_type[exc_type.__name__] += 1
            self.collector._record_query(self.query)
            return False

        def set_results(
            self,
            count: int,
            cache_hit: bool = False,
            embedding_degraded: bool = False,
            failed_providers: Optional[list[str]] = None,
            timed_out_providers: Optional[list[str]] = None,
        ):
            self.query.results_count = count
            self.query.cache_hit = cache_hit
            self.query.embedding_degraded = embedding_degraded
            self.query.failed_providers = list(failed_providers or [])
            self.query.timed_out_providers = list(timed_out_providers or [])

    def track_query(self, query_text: str) -> QueryTracker:
        return self.QueryTracker(self, query_text)

    def _next_query_id(self) -> str:
        self._sequence += 1
        return f"q_{int(time.time() * 1000)}_{self._sequence}"

    def _record_query(self, query: QueryMetrics):
        m = self.metrics
        m.total_queries += 1
        if query.succeeded:
            m.successful_queries += 1
        else:
            m.failed_queries += 1

        m.total_latency_ms += query.latency_ms
        m.min_latency_ms = min(m.min_latency_ms, query.latency_ms)
        m.max_latency_ms = max(m.max_latency_ms, query.latency_ms)
        m.latencies.append(query.latency_ms)
        del m.latencies[:-self._max_history]

        # A failed retrieval never reached the cache
        if query.succeeded:
            if query.cache_hit:
                m.cache_hits += 1
            else:
                m.cache_misses += 1

        if query.embedding_degraded:
            m.degraded_queries += 1
        m.provider_failures.update(query.failed_providers)
        m.provider_timeouts.update(query.timed_out_providers)

        if query.failed_providers:
            logger.debug(
                f"Query {query.query_id} completed without: {', '.join(query.failed_providers)}"
            )
        self._history.append(query)

    def record_ingestion(self, chunks_count: int, degraded_count: int, duration_ms: float):
        """Count one ingested document and its chunks."""
        m = self.metrics
        m.documents_ingested += 1
        m.chunks_created += chunks_count
        m.degraded_chunks += degraded_count
        m.total_ingestion_time_ms += duration_ms

    def get_metrics(self) -> SystemMetrics:
        return self.metrics

    def get_metrics_dict(self) -> dict:
        """Snapshot plus uptime in seconds."""
        data = self.metrics.to_dict()
        data["uptime_seconds"] = round(self.get_uptime().total_seconds(), 1)
        return data

    def get_recent_queries(self, limit: int = 10) -> list[QueryMetrics]:
        return list(self._history)[-limit:]

    def get_uptime(self) -> timedelta:
        return datetime.now() - self._start_time
