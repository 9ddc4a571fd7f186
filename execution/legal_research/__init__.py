"""
Legal Research - Grounded retrieval for legal question answering

This module provides:
- Ingesting legal documents (PDFs, HTML, case law) into a pgvector store
- Section-aware chunking with citation extraction
- Concurrent retrieval across the internal store and live legal providers
- Title de-duplication and relevance ranking
- Numbered grounding context and citations for cited answers

Entry point: api.create_app() builds the FastAPI service; build_aggregator()
wires the store, embeddings and providers from environment settings.
"""

from .document_parser import LegalDocument, LegalDocumentParser
from .chunker import Chunk, LegalChunker
from .embeddings import EmbeddingResult, get_embedding_service
from .vector_store import SearchFilters, SearchResult, VectorStore
from .ingestion import IngestionPipeline
from .query_cache import QueryCache
from .retriever import RetrievalAggregator, RetrievalReport
from .citation import CitationEntry, GroundingContextBuilder

__all__ = [
    "Chunk",
    "CitationEntry",
    "EmbeddingResult",
    "GroundingContextBuilder",
    "IngestionPipeline",
    "LegalChunker",
    "LegalDocument",
    "LegalDocumentParser",
    "QueryCache",
    "RetrievalAggregator",
    "RetrievalReport",
    "SearchFilters",
    "SearchResult",
    "VectorStore",
    "get_embedding_service",
]

__version__ = "0.1.0"
