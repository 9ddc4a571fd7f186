"""
Embedding Service for Legal Research

Provides embeddings via Voyage AI (voyage-law-2) or Cohere with a
deterministic fallback when the upstream call fails.
Supports batching, bounded caching, and different input types (documents vs queries).

Architecture:
    BaseEmbeddingService  -- shared caching, batching, fallback, embed/embed_batch
        VoyageEmbeddingService    -- Voyage AI voyage-law-2 provider
        CohereEmbeddingService    -- Cohere embed-v3 provider

Every call returns EmbeddingResult objects. A result built from the fallback
vector carries degraded=True so downstream ranking can skip vector search.
"""

import os
import asyncio
import hashlib
import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from .errors import DimensionMismatch, EmbeddingDegraded
from .text_utils import truncate_to_bytes, utf8_length

logger = logging.getLogger(__name__)

# Characters of input folded into the cache key (together with the length).
CACHE_KEY_PREFIX_CHARS = 100


@dataclass
class EmbeddingConfig:
    """Configuration for embedding service."""
    provider: str = "voyage"  # "voyage" or "cohere"
    model: str = "voyage-law-2"  # voyage-law-2 or embed-english-v3.0
    dimensions: int = 1024
    batch_size: int = 128  # Voyage supports up to 128
    max_input_bytes: int = 30000
    cache_size: int = 10000
    use_cache: bool = True
    timeout_seconds: float = 30.0
    inter_call_delay: float = 1.0  # seconds between consecutive upstream calls
    api_key: Optional[str] = None


@dataclass
class EmbeddingResult:
    """An embedding vector plus whether it came from the fallback path."""
    vector: list[float]
    model: str
    degraded: bool = False
    error: Optional[EmbeddingDegraded] = None

    @property
    def dimensions(self) -> int:
        return len(self.vector)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity clamped to [-1, 1].

    Raises:
        DimensionMismatch: if the vectors differ in length
    """
    if len(a) != len(b):
        raise DimensionMismatch(len(a), len(b))

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    denom = np.linalg.norm(va) * np.linalg.norm(vb)
    if denom == 0:
        return 0.0
    return float(np.clip(np.dot(va, vb) / denom, -1.0, 1.0))


def fallback_vector(text: str, dimensions: int) -> list[float]:
    """Deterministic unit vector seeded from the text's SHA-256 digest."""
    seed = int.from_bytes(hashlib.sha256(text.encode("utf-8")).digest()[:8], "big")
    rng = np.random.default_rng(seed)
    vec = rng.standard_normal(dimensions)
    norm = np.linalg.norm(vec)
    if norm > 0:
        vec = vec / norm
    return vec.tolist()


class BaseEmbeddingService:
    """
    Base class for API-based embedding services.

    Provides shared functionality:
    - Batched (or sequential, for providers without batch support) upstream calls
    - Bounded in-memory cache with oldest-first eviction
    - Byte-safe input truncation
    - Deterministic fallback vectors on upstream failure or timeout

    Subclasses only need to implement:
    - _init_client(): Initialize the provider-specific API client

    And set these class attributes:
    - _provider_name: Human-readable provider name for log messages
    - _env_var_name: Environment variable name for the API key
    - _doc_input_type / _query_input_type: provider input type strings
    - supports_batch: whether one upstream call may carry several texts
    """

    _provider_name: str = "Base"
    _env_var_name: str = ""
    _doc_input_type: str = "document"
    _query_input_type: str = "query"
    supports_batch: bool = True

    def __init__(self, config: Optional[EmbeddingConfig] = None):
        """
        Initialize embedding service.

        Args:
            config: Optional configuration. Uses defaults if not provided.
        """
        self.config = config or EmbeddingConfig()
        self._client = None
        self._cache: OrderedDict[str, list[float]] = OrderedDict()
        self._init_client()

    def _init_client(self):
        """Initialize the provider-specific API client. Must be overridden by subclasses."""
        raise NotImplementedError("Subclasses must implement _init_client()")

    def _api_key(self) -> Optional[str]:
        return self.config.api_key or os.getenv(self._env_var_name)

    @property
    def dimensions(self) -> int:
        """Return embedding dimensions."""
        return self.config.dimensions

    @property
    def available(self) -> bool:
        """True when an upstream client is configured."""
        return self._client is not None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def embed(
        self,
        text: str,
        model: Optional[str] = None,
        input_type: Optional[str] = None,
    ) -> EmbeddingResult:
        """Embed a single text. Never raises for upstream failures."""
        results = await self.embed_batch([text], model=model, input_type=input_type)
        return results[0]

    async def embed_query(self, query: str) -> EmbeddingResult:
        """Embed a search query with the provider's query input type."""
        return await self.embed(query, input_type=self._query_input_type)

    async def embed_batch(
        self,
        texts: list[str],
        model: Optional[str] = None,
        input_type: Optional[str] = None,
    ) -> list[EmbeddingResult]:
        """
        Embed texts in input order.

        Cached texts skip the upstream call. Each failed upstream call
        degrades only the texts it carried.
        """
        if not texts:
            return []

        model = model or self.config.model
        input_type = input_type or self._doc_input_type
        prepared = [self._prepare_text(text) for text in texts]

        results: list[Optional[EmbeddingResult]] = [None] * len(prepared)
        pending = []
        for i, text in enumerate(prepared):
            cached = self._get_cached(self._get_cache_key(text, model, input_type))
            if cached is not None:
                results[i] = EmbeddingResult(vector=cached, model=model)
            else:
                pending.append(i)

        batches = self._create_batches(pending)
        if batches:
            logger.info(
                f"Embedding {len(pending)} texts in {len(batches)} calls"
                f" with {self._provider_name}"
            )

        for call_idx, batch in enumerate(batches):
            if call_idx and self.config.inter_call_delay > 0:
                await asyncio.sleep(self.config.inter_call_delay)

            batch_texts = [prepared[i] for i in batch]
            try:
                vectors = await self._embed_upstream(batch_texts, model, input_type)
            except Exception as e:
                error = EmbeddingDegraded(
                    f"{self._provider_name} embedding failed: {e}", model=model, cause=e
                )
                logger.warning(f"{error}; using fallback vectors for {len(batch)} texts")
                for i in batch:
                    results[i] = EmbeddingResult(
                        vector=fallback_vector(prepared[i], self.config.dimensions),
                        model=model,
                        degraded=True,
                        error=error,
                    )
                continue

            for i, vector in zip(batch, vectors):
                self._set_cached(self._get_cache_key(prepared[i], model, input_type), vector)
                results[i] = EmbeddingResult(vector=vector, model=model)

        return results

    @staticmethod
    def similarity(a: Sequence[float], b: Sequence[float]) -> float:
        """Cosine similarity; raises DimensionMismatch on unequal lengths."""
        return cosine_similarity(a, b)

    # ------------------------------------------------------------------
    # Upstream
    # ------------------------------------------------------------------

    def _create_batches(self, indices: list[int]) -> list[list[int]]:
        size = self.config.batch_size if self.supports_batch else 1
        size = max(size, 1)
        return [indices[i:i + size] for i in range(0, len(indices), size)]

    async def _embed_upstream(
        self, texts: list[str], model: str, input_type: str
    ) -> list[list[float]]:
        if self._client is None:
            raise RuntimeError(
                f"{self._provider_name} client not initialized. "
                f"Check {self._env_var_name}."
            )

        vectors = await asyncio.wait_for(
            asyncio.to_thread(self._call_client, texts, model, input_type),
            timeout=self.config.timeout_seconds,
        )
        if len(vectors) != len(texts):
            raise RuntimeError(
                f"{self._provider_name} returned {len(vectors)} embeddings for {len(texts)} texts"
            )
        for vector in vectors:
            if len(vector) != self.config.dimensions:
                raise DimensionMismatch(len(vector), self.config.dimensions)
        return vectors

    def _call_client(self, texts: list[str], model: str, input_type: str) -> list[list[float]]:
        """Blocking SDK call; runs in a worker thread."""
        response = self._client.embed(texts=texts, model=model, input_type=input_type)
        return [[float(x) for x in embedding] for embedding in response.embeddings]

    def _prepare_text(self, text: str) -> str:
        if utf8_length(text) > self.config.max_input_bytes:
            logger.debug(
                f"Truncating embedding input from {utf8_length(text)} to "
                f"{self.config.max_input_bytes} bytes"
            )
            return truncate_to_bytes(text, self.config.max_input_bytes)
        return text

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def _get_cache_key(self, text: str, model: str, input_type: str) -> str:
        """Cache key from model, input type, a text prefix and the text length."""
        content = f"{model}:{input_type}:{text[:CACHE_KEY_PREFIX_CHARS]}_{len(text)}"
        return hashlib.sha256(content.encode()).hexdigest()[:32]

    def _get_cached(self, key: str) -> Optional[list[float]]:
        if not self.config.use_cache:
            return None
        return self._cache.get(key)

    def _set_cached(self, key: str, embedding: list[float]) -> None:
        if not self.config.use_cache or self.config.cache_size <= 0:
            return
        if key not in self._cache:
            while len(self._cache) >= self.config.cache_size:
                self._cache.popitem(last=False)
        self._cache[key] = embedding

    def clear_cache(self) -> None:
        self._cache.clear()

    @property
    def cache_size(self) -> int:
        return len(self._cache)


class VoyageEmbeddingService(BaseEmbeddingService):
    """
    Embedding service using Voyage AI's voyage-law-2 model.

    voyage-law-2 provides:
    - 1024-dimensional embeddings
    - Better retrieval on legal benchmarks than general models
    - Different input types for documents vs queries
    """

    _provider_name = "Voyage AI"
    _env_var_name = "VOYAGE_API_KEY"
    _doc_input_type = "document"
    _query_input_type = "query"

    def _init_client(self):
        """Initialize the Voyage AI client."""
        api_key = self._api_key()

        if not api_key:
            logger.warning(
                "VOYAGE_API_KEY not found. Embeddings will use fallback vectors. "
                "Get an API key at https://dash.voyageai.com/"
            )
            return

        import voyageai
        self._client = voyageai.Client(api_key=api_key)
        logger.info(f"Voyage AI client initialized with model {self.config.model}")


class CohereEmbeddingService(BaseEmbeddingService):
    """Generates embeddings using Cohere's embed-v3 model (1024 dimensions)."""

    _provider_name = "Cohere"
    _env_var_name = "COHERE_API_KEY"
    _doc_input_type = "search_document"
    _query_input_type = "search_query"

    def _init_client(self):
        """Initialize the Cohere client."""
        api_key = self._api_key()

        if not api_key:
            logger.warning(
                "COHERE_API_KEY not found. Embeddings will use fallback vectors."
            )
            return

        import cohere
        self._client = cohere.Client(api_key)
        logger.info(f"Cohere client initialized with model {self.config.model}")


def get_embedding_service(
    provider: str = "voyage",
    model: Optional[str] = None,
    api_key: Optional[str] = None,
) -> BaseEmbeddingService:
    """
    Factory function to get the embedding service for a provider.

    Args:
        provider: "voyage" (default, best for legal) or "cohere"
        model: Optional model override
        api_key: Optional key; falls back to the provider's environment variable

    Returns:
        Configured embedding service
    """
    if provider == "voyage":
        config = EmbeddingConfig(
            provider="voyage",
            model=model or "voyage-law-2",
            dimensions=1024,
            batch_size=128,
            api_key=api_key,
        )
        return VoyageEmbeddingService(config)

    if provider == "cohere":
        config = EmbeddingConfig(
            provider="cohere",
            model=model or "embed-english-v3.0",
            dimensions=1024,
            batch_size=96,
            api_key=api_key,
        )
        return CohereEmbeddingService(config)

    raise ValueError(f"Unknown embedding provider: {provider}")


if __name__ == "__main__":
    import sys
    from dotenv import load_dotenv

    load_dotenv()
    logging.basicConfig(level=logging.INFO)

    if len(sys.argv) < 2:
        print("Usage: python -m execution.legal_research.embeddings <text> [provider]")
        sys.exit(1)

    service = get_embedding_service(sys.argv[2] if len(sys.argv) > 2 else "voyage")
    result = asyncio.run(service.embed_query(sys.argv[1]))
    print(f"Model: {result.model}")
    print(f"Dimensions: {result.dimensions}")
    print(f"Degraded: {result.degraded}")
    print(f"First 5 values: {result.vector[:5]}")
