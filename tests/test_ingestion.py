"""
Tests for execution/legal_research/ingestion.py

Covers: chunk -> embed -> replace flow, degraded chunk accounting,
        re-ingestion replacing the chunk set, byte budget override,
        metrics recording.
"""

from dataclasses import replace

import pytest

from conftest import FakeEmbeddingService, FakeVectorStore


def _pipeline(store=None, embeddings=None, **kwargs):
    from execution.legal_research.ingestion import IngestionPipeline
    return IngestionPipeline(
        store if store is not None else FakeVectorStore(),
        embeddings or FakeEmbeddingService(),
        **kwargs,
    )


class TestIngest:

    @pytest.mark.asyncio
    async def test_chunks_embedded_and_stored(self, sample_document):
        store = FakeVectorStore()
        embeddings = FakeEmbeddingService(dimensions=8)

        result = await _pipeline(store, embeddings).ingest(sample_document)

        chunks = store.chunks[sample_document.document_id]
        assert result.document_id == sample_document.document_id
        assert result.chunk_count == len(chunks) == 5
        assert result.fully_embedded
        assert [c.index for c in chunks] == list(range(5))
        assert all(len(c.embedding) == 8 for c in chunks)
        assert all(c.embedding_model == "fake-embed" for c in chunks)
        assert all(c.document_id == sample_document.document_id for c in chunks)
        assert chunks[0].metadata == {"title": sample_document.title, "source": "upload"}
        assert embeddings.batches == [[c.content for c in chunks]]

    @pytest.mark.asyncio
    async def test_degraded_chunks_counted(self, sample_document):
        store = FakeVectorStore()

        result = await _pipeline(store, FakeEmbeddingService(degraded=True)).ingest(sample_document)

        assert result.degraded_chunks == 5
        assert not result.fully_embedded
        assert all(c.embedding_degraded for c in store.chunks[sample_document.document_id])

    @pytest.mark.asyncio
    async def test_reingest_replaces_chunk_set(self, sample_document):
        store = FakeVectorStore()
        pipeline = _pipeline(store)

        await pipeline.ingest(sample_document)
        shorter = replace(sample_document, content="Section 1. Only one section remains in force.")
        result = await pipeline.ingest(shorter)

        assert result.chunk_count == 1
        assert len(store.chunks[sample_document.document_id]) == 1
        assert len(store.documents) == 1

    @pytest.mark.asyncio
    async def test_byte_budget_override(self, sample_document):
        from execution.legal_research.text_utils import utf8_length

        store = FakeVectorStore()
        pipeline = _pipeline(store, max_chunk_bytes=4000)

        await pipeline.ingest(sample_document, max_bytes=120)

        chunks = store.chunks[sample_document.document_id]
        assert len(chunks) > 5
        assert all(utf8_length(c.content) <= 120 for c in chunks)

    @pytest.mark.asyncio
    async def test_zero_byte_budget_rejected(self, sample_document):
        store = FakeVectorStore()

        with pytest.raises(ValueError, match="max_bytes must be positive"):
            await _pipeline(store, max_chunk_bytes=4000).ingest(sample_document, max_bytes=0)
        assert store.documents == {}

    @pytest.mark.asyncio
    async def test_empty_document_stores_no_chunks(self, sample_document):
        store = FakeVectorStore()

        result = await _pipeline(store).ingest(replace(sample_document, content="   "))

        assert result.chunk_count == 0
        assert store.chunks[sample_document.document_id] == []

    @pytest.mark.asyncio
    async def test_store_error_propagates(self, sample_document):
        class BrokenStore(FakeVectorStore):
            def replace_document(self, document, chunks):
                raise RuntimeError("disk full")

        with pytest.raises(RuntimeError, match="disk full"):
            await _pipeline(BrokenStore()).ingest(sample_document)

    @pytest.mark.asyncio
    async def test_metrics_recorded(self, sample_document):
        from execution.legal_research.metrics import MetricsCollector

        metrics = MetricsCollector()
        await _pipeline(metrics=metrics, embeddings=FakeEmbeddingService(degraded=True)).ingest(sample_document)

        snapshot = metrics.get_metrics()
        assert snapshot.documents_ingested == 1
        assert snapshot.chunks_created == 5
        assert snapshot.degraded_chunks == 5


def test_result_to_dict():
    from execution.legal_research.ingestion import IngestionResult

    result = IngestionResult(document_id="d1", title="T", chunk_count=3, degraded_chunks=1)
    assert result.to_dict() == {
        "document_id": "d1", "title": "T", "chunk_count": 3, "degraded_chunks": 1,
    }
