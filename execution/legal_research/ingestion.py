"""
Ingestion pipeline: chunk, embed, and store a LegalDocument.

Re-ingesting a document id replaces its whole chunk set.
"""

import time
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from .chunker import LegalChunker
from .document_parser import LegalDocument
from .embeddings import BaseEmbeddingService
from .metrics import MetricsCollector
from .vector_store import VectorStore

logger = logging.getLogger(__name__)


@dataclass
class IngestionResult:
    """Outcome of ingesting one document."""
    document_id: str
    title: str
    chunk_count: int
    degraded_chunks: int = 0

    @property
    def fully_embedded(self) -> bool:
        return self.degraded_chunks == 0

    def to_dict(self) -> dict:
        return {
            "document_id": self.document_id,
            "title": self.title,
            "chunk_count": self.chunk_count,
            "degraded_chunks": self.degraded_chunks,
        }


class IngestionPipeline:
    """
    Usage:
        pipeline = IngestionPipeline(store, embedding_service)
        result = await pipeline.ingest(document)
    """

    def __init__(
        self,
        store: VectorStore,
        embedding_service: BaseEmbeddingService,
        chunker: Optional[LegalChunker] = None,
        max_chunk_bytes: Optional[int] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.store = store
        self.embedding_service = embedding_service
        self.chunker = chunker or LegalChunker()
        self.max_chunk_bytes = max_chunk_bytes
        self.metrics = metrics

    async def ingest(self, document: LegalDocument, max_bytes: Optional[int] = None) -> IngestionResult:
        """Chunk, embed and persist a document."""
        start = time.perf_counter()

        chunks = self.chunker.chunk(
            document.content,
            max_bytes=self.max_chunk_bytes if max_bytes is None else max_bytes,
            metadata={"title": document.title, "source": document.source},
            document_id=document.document_id,
        )
        if not chunks:
            logger.warning(f"Document {document.document_id} produced no chunks")

        embeddings = await self.embedding_service.embed_batch([c.content for c in chunks])
        degraded = 0
        for chunk, result in zip(chunks, embeddings):
            chunk.embedding = result.vector
            chunk.embedding_model = result.model
            chunk.embedding_degraded = result.degraded
            if result.degraded:
                degraded += 1

        if degraded:
            logger.warning(
                f"{degraded}/{len(chunks)} chunks of {document.document_id} stored with "
                f"fallback embeddings; they are excluded from vector search"
            )

        written = await asyncio.to_thread(self.store.replace_document, document, chunks)

        elapsed_ms = (time.perf_counter() - start) * 1000
        if self.metrics:
            self.metrics.record_ingestion(written, degraded, elapsed_ms)
        logger.info(f"Ingested '{document.title}' ({written} chunks) in {elapsed_ms:.0f}ms")

        return IngestionResult(
            document_id=document.document_id,
            title=document.title,
            chunk_count=written,
            degraded_chunks=degraded,
        )
