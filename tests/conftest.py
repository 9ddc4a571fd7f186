"""
Shared fixtures and test utilities for Legal Research tests.

Provides fake services, sample data, and reusable fixtures so that all tests
can run without API keys, databases, or external network access.
"""

import sys
import uuid
import asyncio
from pathlib import Path
from typing import Optional

import pytest
from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Path setup - ensure the execution package is importable
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

load_dotenv(PROJECT_ROOT / ".env")

# ---------------------------------------------------------------------------
# Sample legal document text
# ---------------------------------------------------------------------------
SAMPLE_DOCUMENT = """CONSUMER DATA PROTECTION ACT OF THE STATE

Section 1. Short Title
This Act may be cited as the Consumer Data Protection Act.

Section 2. Definitions
In this Act, "controller" means the person who determines the purposes and
means of processing personal data. See 15 U.S.C. § 6801 for related terms.

"Consumer" means a natural person who is a resident of the State acting only
in an individual or household context.

Section 3. Consumer Rights
A consumer may invoke the rights authorized pursuant to this section at any
time by submitting a request to a controller.

The controller shall comply with an authenticated consumer request to confirm
whether or not the controller is processing the consumer's personal data, as
recognized in Miranda v. Arizona, 384 U.S. 436 (1966) for analogous notice duties.

Section 4. Enforcement
The Attorney General has exclusive authority to enforce violations of this Act
and may seek injunctive relief and civil penalties under 16 C.F.R. § 314.4.
"""


# ---------------------------------------------------------------------------
# Result factory
# ---------------------------------------------------------------------------

def make_result(
    title: str,
    content: str = "",
    source: str = "Internal Database",
    source_type: str = "internal",
    **fields,
):
    """Build a SearchResult with sensible defaults."""
    from execution.legal_research.vector_store import SearchResult
    fields.setdefault("id", f"{source_type}-{uuid.uuid5(uuid.NAMESPACE_URL, source + title)}")
    return SearchResult(
        title=title,
        content=content,
        source=source,
        source_type=source_type,
        **fields,
    )


@pytest.fixture
def sample_document_text():
    """Return the sample statute text."""
    return SAMPLE_DOCUMENT


@pytest.fixture
def sample_document():
    """Return a LegalDocument wrapping the sample statute."""
    from execution.legal_research.document_parser import LegalDocument
    return LegalDocument(
        document_id="11111111-1111-1111-1111-111111111111",
        title="Consumer Data Protection Act",
        content=SAMPLE_DOCUMENT,
        jurisdiction="US-CA",
        practice_area="PRIVACY",
        document_type="STATUTE",
        publication_date="2023-03-01",
    )


# ---------------------------------------------------------------------------
# Fake embedding service
# ---------------------------------------------------------------------------

class FakeEmbeddingService:
    """Deterministic embedding service -- never calls external APIs."""

    def __init__(self, dimensions: int = 8, degraded: bool = False, error: Optional[Exception] = None):
        self._dimensions = dimensions
        self.degraded = degraded
        self.error = error
        self.queries: list[str] = []
        self.batches: list[list[str]] = []

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def _result(self, text: str, degraded: bool):
        from execution.legal_research.embeddings import EmbeddingResult, fallback_vector
        return EmbeddingResult(
            vector=fallback_vector(text, self._dimensions),
            model="fake-embed",
            degraded=degraded,
        )

    async def embed_query(self, query: str):
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        return self._result(query, self.degraded)

    async def embed_batch(self, texts, model=None, input_type=None):
        self.batches.append(list(texts))
        return [self._result(t, self.degraded) for t in texts]


@pytest.fixture
def fake_embeddings():
    return FakeEmbeddingService()


# ---------------------------------------------------------------------------
# Fake vector store (no database needed)
# ---------------------------------------------------------------------------

class FakeVectorStore:
    """In-memory stand-in for VectorStore with canned search results."""

    def __init__(self, vector_results=None, lexical_results=None, error: Optional[Exception] = None):
        self.vector_results = list(vector_results or [])
        self.lexical_results = list(lexical_results or [])
        self.error = error
        self.calls: list[tuple] = []
        self.documents: dict = {}
        self.chunks: dict = {}

    def similarity_search(self, query_vector, limit=10, filters=None, query_text=None):
        self.calls.append(("vector", limit, filters))
        if self.error is not None:
            raise self.error
        return list(self.vector_results[:limit])

    def lexical_search(self, query_text, limit=10, filters=None):
        self.calls.append(("lexical", limit, filters))
        if self.error is not None:
            raise self.error
        return list(self.lexical_results[:limit])

    def replace_document(self, document, chunks):
        self.documents[document.document_id] = document
        self.chunks[document.document_id] = list(chunks)
        return len(chunks)

    def health_check(self):
        return {"status": "healthy", "documents": len(self.documents), "chunks": 0}


# ---------------------------------------------------------------------------
# Fake providers
# ---------------------------------------------------------------------------

def make_provider(name: str, results=None, delay: float = 0.0, error: Optional[Exception] = None):
    """A RetrievalProvider whose search() returns canned results, sleeps or raises."""
    from execution.legal_research.providers.base import RetrievalProvider

    class FakeProvider(RetrievalProvider):
        display_name = name.replace("_", " ").title()

        def __init__(self):
            super().__init__()
            self.name = name
            self.calls = 0
            self.cancelled = False

        async def search(self, query, options=None):
            self.calls += 1
            if delay:
                try:
                    await asyncio.sleep(delay)
                except asyncio.CancelledError:
                    self.cancelled = True
                    raise
            if error is not None:
                raise error
            return list(results or [])

        async def _search_live(self, query, options):
            return list(results or [])

    return FakeProvider()
