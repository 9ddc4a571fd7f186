"""
Vector Store with PostgreSQL + pgvector

Owns persisted legal documents and their chunks. Provides cosine-distance
nearest-neighbour search with a full-text (ts_rank) fallback, and
transactional replacement of a document's chunk set on re-ingestion.

All methods are blocking (psycopg2); async callers run them in a worker
thread.
"""

import os
import datetime
import json
import math
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field, fields as dataclass_fields, replace
from typing import Optional

import psycopg2
import psycopg2.pool
from psycopg2.extras import RealDictCursor, execute_values

from .chunker import Chunk
from .document_parser import LegalDocument
from .errors import InvalidFiltersError, VectorQueryFailed

logger = logging.getLogger(__name__)

INTERNAL_SOURCE_NAME = "Internal Database"
VALID_FTS_CONFIGS = {"english", "simple"}

# Accepted filter keys, both API (camelCase) and Python spellings
FILTER_KEYS = {
    "jurisdiction": "jurisdiction",
    "practice_area": "practice_area",
    "practiceArea": "practice_area",
    "document_type": "document_type",
    "documentType": "document_type",
    "date_from": "date_from",
    "dateFrom": "date_from",
}
EQUALITY_FILTERS = ("jurisdiction", "practice_area", "document_type")


def parse_iso_date(value) -> Optional[datetime.date]:
    """Leading YYYY-MM-DD of a date, datetime or string; None if unparseable."""
    if value is None:
        return None
    if isinstance(value, datetime.date):
        return value if not isinstance(value, datetime.datetime) else value.date()
    try:
        return datetime.date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        return None


@dataclass
class VectorStoreConfig:
    """Configuration for vector store."""
    connection_string: Optional[str] = None
    documents_table: str = "legal_documents"
    table_name: str = "document_chunks"
    embedding_dimensions: int = 1024
    index_lists: int = 100  # IVFFlat index parameter
    fts_language: str = "english"
    pool_min_connections: int = 1
    pool_max_connections: int = 10


@dataclass(frozen=True)
class SearchFilters:
    """
    Predicates applied to every retrieval source.

    jurisdiction, practice_area and document_type are case-insensitive
    equality checks. date_from is an inclusive lower bound (ISO date) on the
    publication date; undated results never satisfy it.
    """
    jurisdiction: Optional[str] = None
    practice_area: Optional[str] = None
    document_type: Optional[str] = None
    date_from: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "SearchFilters":
        """
        Validate and build filters.

        Raises:
            InvalidFiltersError: on unknown keys, non-string values or
                a date_from that is not an ISO date
        """
        if data is None:
            return cls()
        if isinstance(data, SearchFilters):
            return data
        if not isinstance(data, dict):
            raise InvalidFiltersError(
                f"filters must be an object, got {type(data).__name__}", field="filters"
            )

        values = {}
        for key, value in data.items():
            name = FILTER_KEYS.get(key)
            if name is None:
                raise InvalidFiltersError(f"Unknown filter: {key}", field=key)
            if value is None:
                continue
            if name == "date_from":
                values[name] = cls._parse_date_from(key, value)
                continue
            if not isinstance(value, str) or not value.strip():
                raise InvalidFiltersError(
                    f"Filter {key} must be a non-empty string", field=key
                )
            values[name] = value.strip()
        return cls(**values)

    @staticmethod
    def _parse_date_from(key: str, value) -> str:
        if isinstance(value, datetime.date):
            return parse_iso_date(value).isoformat()
        if isinstance(value, str) and len(value.strip()) == 10:
            parsed = parse_iso_date(value)
            if parsed is not None:
                return parsed.isoformat()
        raise InvalidFiltersError(f"Filter {key} must be an ISO date (YYYY-MM-DD)", field=key)

    def to_dict(self) -> dict:
        return {f.name: getattr(self, f.name) for f in dataclass_fields(self)
                if getattr(self, f.name) is not None}

    @property
    def is_empty(self) -> bool:
        return not self.to_dict()

    def equality_only(self) -> "SearchFilters":
        """These filters without the date bound."""
        return replace(self, date_from=None)

    def matches(self, result: "SearchResult") -> bool:
        """
        Equality fields pass unless the result defines a different value;
        the date bound requires a parseable date on or after date_from.
        """
        for name in EQUALITY_FILTERS:
            wanted = getattr(self, name)
            actual = getattr(result, name, None)
            if wanted is not None and actual is not None and actual.casefold() != wanted.casefold():
                return False
        if self.date_from is not None:
            published = parse_iso_date(result.date)
            if published is None or published.isoformat() < self.date_from:
                return False
        return True


@dataclass
class SearchResult:
    """A single retrieval result from the store or a live provider."""
    id: str
    title: str
    content: str
    source: str
    source_type: str  # "internal" or "live"
    citation: Optional[str] = None
    court: Optional[str] = None
    date: Optional[str] = None  # ISO date
    url: Optional[str] = None
    jurisdiction: Optional[str] = None
    practice_area: Optional[str] = None
    document_type: Optional[str] = None
    score: float = 0.0
    rank: Optional[int] = None
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "source": self.source,
            "source_type": self.source_type,
            "citation": self.citation,
            "court": self.court,
            "date": self.date,
            "url": self.url,
            "jurisdiction": self.jurisdiction,
            "practice_area": self.practice_area,
            "document_type": self.document_type,
            "score": self.score,
            "rank": self.rank,
            "metadata": self.metadata,
        }


class VectorStore:
    """
    PostgreSQL vector store with pgvector.

    Features:
    - Cosine similarity search, excluding chunks embedded with fallback vectors
    - Full-text fallback when the vector path fails
    - Metadata filtering on jurisdiction / practice area / document type
    - Transactional chunk replacement with batch insert
    """

    def __init__(self, config: Optional[VectorStoreConfig] = None):
        """
        Initialize vector store.

        Args:
            config: Optional configuration. Uses env vars if not provided.
        """
        self.config = config or VectorStoreConfig()
        self._pool = None
        self._pool_lock = threading.Lock()
        self._connection_string = (
            self.config.connection_string or
            os.getenv("DATABASE_URL") or
            os.getenv("POSTGRES_URL") or
            "postgresql://localhost:5432/legal_research"
        )
        if self.config.fts_language not in VALID_FTS_CONFIGS:
            logger.warning(
                f"Invalid FTS language '{self.config.fts_language}', falling back to 'english'"
            )
            self.config.fts_language = "english"

    # =========================================================================
    # Connection handling
    # =========================================================================

    def connect(self) -> None:
        """Create the connection pool and ensure the pgvector extension exists."""
        with self._pool_lock:
            self._open_pool()

    def _open_pool(self) -> None:
        """Build a pool and swap it in. Caller holds _pool_lock."""
        try:
            pool = psycopg2.pool.ThreadedConnectionPool(
                minconn=self.config.pool_min_connections,
                maxconn=self.config.pool_max_connections,
                dsn=self._connection_string,
                cursor_factory=RealDictCursor,
            )
            conn = pool.getconn()
            try:
                with conn.cursor() as cur:
                    cur.execute("CREATE EXTENSION IF NOT EXISTS vector")
                conn.commit()
            finally:
                pool.putconn(conn)
        except Exception as e:
            logger.error(f"Database connection failed: {e}")
            raise

        self._pool = pool
        logger.info(
            f"Connection pool initialized (min={self.config.pool_min_connections}, "
            f"max={self.config.pool_max_connections})"
        )

    def _get_connection(self):
        try:
            return self._pool.getconn()
        except (psycopg2.OperationalError, psycopg2.InterfaceError):
            logger.warning("Connection from pool is dead, attempting to re-establish...")
            self.connect()
            return self._pool.getconn()

    def _release_connection(self, conn):
        """Release a connection back to the pool."""
        if self._pool and conn:
            self._pool.putconn(conn)

    def _ensure_connection(self):
        """Ensure the pool exists and return a connection from it."""
        if self._pool is None:
            # Concurrent first calls build a single pool
            with self._pool_lock:
                if self._pool is None:
                    self._open_pool()
        return self._get_connection()

    @contextmanager
    def get_connection(self):
        """
        Context manager for getting a database connection.

        Usage:
            with store.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")
        """
        conn = self._ensure_connection()
        try:
            yield conn
        finally:
            self._release_connection(conn)

    def _safe_rollback(self, conn) -> None:
        """Rollback a connection, ignoring errors if the connection is dead."""
        try:
            conn.rollback()
        except (psycopg2.InterfaceError, psycopg2.OperationalError):
            pass

    def _execute_with_retry(self, operation, label="db_operation"):
        """Execute a DB operation with one retry on stale connection.

        Args:
            operation: Callable(conn) that performs the DB work and returns a result.
            label: Human-readable name for logging.

        Returns:
            Whatever ``operation`` returns.
        """
        for attempt in range(2):
            conn = self._ensure_connection()
            try:
                result = operation(conn)
                self._release_connection(conn)
                return result
            except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
                self._safe_rollback(conn)
                self._release_connection(conn)
                if attempt == 0:
                    logger.warning(f"{label}: stale conn, reconnecting: {e}")
                    self.connect()
                    continue
                raise
            except Exception:
                self._safe_rollback(conn)
                self._release_connection(conn)
                raise

    def close(self) -> None:
        """Close the connection pool."""
        if self._pool:
            self._pool.closeall()
            self._pool = None
            logger.info("Connection pool closed")

    # =========================================================================
    # Schema
    # =========================================================================

    def initialize_schema(self) -> None:
        """Create tables and indexes if they don't exist."""
        docs = self.config.documents_table
        chunks = self.config.table_name

        schema_sql = f"""
        CREATE TABLE IF NOT EXISTS {docs} (
            id UUID PRIMARY KEY,
            title TEXT NOT NULL,
            source TEXT NOT NULL DEFAULT 'upload',
            source_url TEXT,
            citation TEXT,
            court TEXT,
            jurisdiction TEXT,
            practice_area TEXT,
            document_type TEXT,
            publication_date DATE,
            metadata JSONB DEFAULT '{{}}',
            created_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ DEFAULT NOW()
        );

        CREATE TABLE IF NOT EXISTS {chunks} (
            id UUID PRIMARY KEY,
            document_id UUID NOT NULL REFERENCES {docs}(id) ON DELETE CASCADE,
            chunk_index INT NOT NULL,
            content TEXT NOT NULL,
            section_title TEXT,
            citations TEXT[] DEFAULT ARRAY[]::TEXT[],
            embedding VECTOR({self.config.embedding_dimensions}),
            embedding_model VARCHAR(50),
            embedding_degraded BOOLEAN DEFAULT FALSE,
            metadata JSONB DEFAULT '{{}}',
            created_at TIMESTAMPTZ DEFAULT NOW(),
            UNIQUE (document_id, chunk_index)
        );

        CREATE INDEX IF NOT EXISTS idx_chunks_document
            ON {chunks}(document_id);

        CREATE INDEX IF NOT EXISTS idx_chunks_content_fts
            ON {chunks}
            USING GIN (to_tsvector('{self.config.fts_language}', content));

        CREATE INDEX IF NOT EXISTS idx_documents_filters
            ON {docs}(jurisdiction, practice_area, document_type);
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(schema_sql)
            conn.commit()
            logger.info("Schema initialized successfully")

        self._execute_with_retry(_op, "initialize_schema")

    def create_vector_index(self, index_type: str = "ivfflat") -> None:
        """
        Create vector index (call after inserting data).

        Args:
            index_type: "ivfflat" (default) or "hnsw" (better for large corpora)
        """
        if index_type == "hnsw":
            index_sql = f"""
            DROP INDEX IF EXISTS idx_chunks_embedding;
            CREATE INDEX idx_chunks_embedding
                ON {self.config.table_name}
                USING hnsw (embedding vector_cosine_ops)
                WITH (m = 16, ef_construction = 64);
            """
        else:
            index_sql = f"""
            CREATE INDEX IF NOT EXISTS idx_chunks_embedding
                ON {self.config.table_name}
                USING ivfflat (embedding vector_cosine_ops)
                WITH (lists = {self.config.index_lists});
            """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(index_sql)
            conn.commit()
            logger.info(f"Vector index created (type: {index_type})")

        self._execute_with_retry(_op, "create_vector_index")

    # =========================================================================
    # Writes
    # =========================================================================

    def replace_document(self, document: LegalDocument, chunks: list[Chunk]) -> int:
        """
        Upsert a document and replace its whole chunk set in one transaction.

        Returns:
            Number of chunks written
        """
        for chunk in chunks:
            if chunk.document_id != document.document_id:
                raise ValueError(
                    f"Chunk {chunk.chunk_id} belongs to {chunk.document_id}, "
                    f"not {document.document_id}"
                )

        upsert_sql = f"""
        INSERT INTO {self.config.documents_table}
            (id, title, source, source_url, citation, court, jurisdiction,
             practice_area, document_type, publication_date, metadata)
        VALUES
            (%s::uuid, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        ON CONFLICT (id) DO UPDATE SET
            title = EXCLUDED.title,
            source = EXCLUDED.source,
            source_url = EXCLUDED.source_url,
            citation = EXCLUDED.citation,
            court = EXCLUDED.court,
            jurisdiction = EXCLUDED.jurisdiction,
            practice_area = EXCLUDED.practice_area,
            document_type = EXCLUDED.document_type,
            publication_date = EXCLUDED.publication_date,
            metadata = EXCLUDED.metadata,
            updated_at = NOW()
        """
        delete_sql = f"DELETE FROM {self.config.table_name} WHERE document_id = %s::uuid"
        insert_sql = f"""
        INSERT INTO {self.config.table_name}
            (id, document_id, chunk_index, content, section_title, citations,
             embedding, embedding_model, embedding_degraded, metadata)
        VALUES %s
        """

        values = [
            (
                chunk.chunk_id,
                chunk.document_id,
                chunk.index,
                chunk.content,
                chunk.section_title,
                chunk.citations,
                chunk.embedding,
                chunk.embedding_model,
                chunk.embedding_degraded,
                json.dumps(chunk.metadata),
            )
            for chunk in chunks
        ]

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(upsert_sql, (
                    document.document_id,
                    document.title,
                    document.source,
                    document.source_url,
                    document.citation,
                    document.court,
                    document.jurisdiction,
                    document.practice_area,
                    document.document_type,
                    document.publication_date,
                    json.dumps(document.metadata),
                ))
                cur.execute(delete_sql, (document.document_id,))
                if values:
                    execute_values(
                        cur,
                        insert_sql,
                        values,
                        template="(%s::uuid, %s::uuid, %s, %s, %s, %s, %s::vector, %s, %s, %s)",
                        page_size=1000,
                    )
            conn.commit()
            logger.info(f"Stored document {document.document_id} with {len(values)} chunks")
            return len(values)

        return self._execute_with_retry(_op, "replace_document")

    def delete_document(self, document_id: str) -> bool:
        """
        Delete a document and all its chunks.

        Returns:
            True if a document was deleted, False if not found
        """
        sql = f"DELETE FROM {self.config.documents_table} WHERE id = %s::uuid"

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (document_id,))
                deleted = cur.rowcount > 0
            conn.commit()
            if deleted:
                logger.info(f"Deleted document {document_id}")
            else:
                logger.warning(f"Document {document_id} not found")
            return deleted

        return self._execute_with_retry(_op, "delete_document")

    # =========================================================================
    # Reads
    # =========================================================================

    def similarity_search(
        self,
        query_vector: list[float],
        limit: int = 10,
        filters: Optional[SearchFilters] = None,
        query_text: Optional[str] = None,
    ) -> list[SearchResult]:
        """
        Nearest chunks by cosine distance, ascending.

        Chunks stored with fallback embeddings are excluded. If the vector
        path fails for any reason the call degrades to lexical_search on
        query_text (or returns [] without it).
        """
        filters = filters or SearchFilters()
        try:
            return self._vector_search(query_vector, limit, filters)
        except VectorQueryFailed as e:
            logger.warning(f"{e}; falling back to lexical search")
            if not query_text:
                return []
            return self.lexical_search(query_text, limit, filters)

    def _vector_search(
        self, query_vector: list[float], limit: int, filters: SearchFilters
    ) -> list[SearchResult]:
        self._validate_vector(query_vector)

        where, params = self._filter_clause(filters)
        sql = f"""
        SELECT
            c.id AS chunk_id, c.document_id, c.chunk_index, c.content,
            c.section_title, c.citations,
            d.title, d.source, d.source_url, d.citation, d.court,
            d.publication_date, d.jurisdiction, d.practice_area, d.document_type,
            c.embedding <=> %s::vector AS distance
        FROM {self.config.table_name} c
        JOIN {self.config.documents_table} d ON d.id = c.document_id
        WHERE c.embedding IS NOT NULL
          AND NOT c.embedding_degraded
          {where}
        ORDER BY distance ASC, c.document_id, c.chunk_index
        LIMIT %s
        """
        final_params = [list(query_vector)] + params + [limit]

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, final_params)
                rows = cur.fetchall()
            return [
                self._row_to_result(row, score=1.0 - float(row["distance"]), match="vector")
                for row in rows
            ]

        try:
            return self._execute_with_retry(_op, "similarity_search")
        except Exception as e:
            raise VectorQueryFailed(f"Vector query failed: {e}", cause=e) from e

    def lexical_search(
        self,
        query_text: str,
        limit: int = 10,
        filters: Optional[SearchFilters] = None,
    ) -> list[SearchResult]:
        """
        Full-text keyword search using PostgreSQL ts_rank.

        Backend errors are logged and produce an empty list.
        """
        if not query_text or not query_text.strip():
            return []

        filters = filters or SearchFilters()
        fts = self.config.fts_language
        where, params = self._filter_clause(filters)
        sql = f"""
        SELECT
            c.id AS chunk_id, c.document_id, c.chunk_index, c.content,
            c.section_title, c.citations,
            d.title, d.source, d.source_url, d.citation, d.court,
            d.publication_date, d.jurisdiction, d.practice_area, d.document_type,
            ts_rank(to_tsvector('{fts}', c.content),
                    websearch_to_tsquery('{fts}', %s)) AS text_rank
        FROM {self.config.table_name} c
        JOIN {self.config.documents_table} d ON d.id = c.document_id
        WHERE to_tsvector('{fts}', c.content) @@ websearch_to_tsquery('{fts}', %s)
          {where}
        ORDER BY text_rank DESC, c.document_id, c.chunk_index
        LIMIT %s
        """
        final_params = [query_text, query_text] + params + [limit]

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, final_params)
                rows = cur.fetchall()
            return [
                self._row_to_result(row, score=float(row["text_rank"]), match="lexical")
                for row in rows
            ]

        try:
            return self._execute_with_retry(_op, "lexical_search")
        except Exception as e:
            logger.error(f"Lexical search failed: {e}")
            return []

    def list_documents(self, filters: Optional[SearchFilters] = None, limit: int = 100) -> list[dict]:
        """List stored documents with their chunk counts, newest first."""
        where, params = self._filter_clause(filters or SearchFilters())
        sql = f"""
        SELECT d.id, d.title, d.source, d.source_url, d.jurisdiction,
               d.practice_area, d.document_type, d.publication_date, d.created_at,
               COUNT(c.id) AS chunk_count
        FROM {self.config.documents_table} d
        LEFT JOIN {self.config.table_name} c ON c.document_id = d.id
        WHERE TRUE {where}
        GROUP BY d.id
        ORDER BY d.created_at DESC
        LIMIT %s
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, params + [limit])
                return [dict(row) for row in cur.fetchall()]

        return self._execute_with_retry(_op, "list_documents")

    def health_check(self) -> dict:
        """Report connectivity and row counts. Never raises."""
        sql = f"""
        SELECT
            (SELECT COUNT(*) FROM {self.config.documents_table}) AS documents,
            (SELECT COUNT(*) FROM {self.config.table_name}) AS chunks
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql)
                return dict(cur.fetchone())

        try:
            counts = self._execute_with_retry(_op, "health_check")
            return {"status": "healthy", **counts}
        except Exception as e:
            logger.error(f"Store health check failed: {e}")
            return {"status": "unhealthy", "error": str(e)}

    # =========================================================================
    # Helpers
    # =========================================================================

    def _validate_vector(self, query_vector) -> None:
        if not query_vector:
            raise VectorQueryFailed("Empty query vector")
        if len(query_vector) != self.config.embedding_dimensions:
            raise VectorQueryFailed(
                f"Query vector has {len(query_vector)} dimensions, "
                f"expected {self.config.embedding_dimensions}"
            )
        for value in query_vector:
            if not isinstance(value, (int, float)) or not math.isfinite(value):
                raise VectorQueryFailed("Query vector contains non-finite values")

    @staticmethod
    def _filter_clause(filters: SearchFilters) -> tuple[str, list]:
        """AND-ed predicates on the documents table; NULL dates fail the date bound."""
        clauses = []
        params = []
        for column, value in filters.to_dict().items():
            if column == "date_from":
                clauses.append("AND d.publication_date >= %s")
            else:
                clauses.append(f"AND lower(d.{column}) = lower(%s)")
            params.append(value)
        return " ".join(clauses), params

    @staticmethod
    def _row_to_result(row, score: float, match: str) -> SearchResult:
        citations = list(row.get("citations") or [])
        published = row.get("publication_date")
        return SearchResult(
            id=f"internal-{row['chunk_id']}",
            title=row["title"],
            content=row["content"],
            source=INTERNAL_SOURCE_NAME,
            source_type="internal",
            citation=row.get("citation") or (citations[0] if citations else None),
            court=row.get("court"),
            date=published.isoformat() if hasattr(published, "isoformat") else published,
            url=row.get("source_url"),
            jurisdiction=row.get("jurisdiction"),
            practice_area=row.get("practice_area"),
            document_type=row.get("document_type"),
            score=score,
            metadata={
                "document_id": str(row["document_id"]),
                "chunk_index": row.get("chunk_index"),
                "section_title": row.get("section_title"),
                "citations": citations,
                "origin": row.get("source"),
                "match": match,
            },
        )
