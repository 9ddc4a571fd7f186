"""
Tests for execution/legal_research/vector_store.py

Covers: VectorStoreConfig, connection string resolution, SearchFilters
        validation and matching, filter SQL, vector search with lexical
        fallback, lexical search, chunk replacement, health check,
        stale-connection retry, single pool under concurrent first use.

All database calls are mocked -- no PostgreSQL required.
"""

import threading
import time
from datetime import date
from unittest.mock import patch, MagicMock

import psycopg2
import pytest


def _mock_store(dimensions=4, rows=None, execute_error=None):
    """A VectorStore whose pool hands out one mock connection and cursor."""
    from execution.legal_research.vector_store import VectorStore, VectorStoreConfig

    store = VectorStore(VectorStoreConfig(
        connection_string="postgresql://test/db", embedding_dimensions=dimensions
    ))
    cursor = MagicMock()
    cursor.fetchall.return_value = list(rows or [])
    if execute_error is not None:
        cursor.execute.side_effect = execute_error

    conn = MagicMock()
    conn.cursor.return_value.__enter__.return_value = cursor

    store._pool = MagicMock()
    store._pool.getconn.return_value = conn
    return store, conn, cursor


def _row(**overrides):
    row = {
        "chunk_id": "c1",
        "document_id": "d1",
        "chunk_index": 0,
        "content": "Custodial interrogation requires warnings.",
        "section_title": "Opinion",
        "citations": ["384 U.S. 436"],
        "title": "Miranda v. Arizona",
        "source": "upload",
        "source_url": "https://example.test/miranda",
        "citation": None,
        "court": "Supreme Court",
        "publication_date": date(1966, 6, 13),
        "jurisdiction": "US",
        "practice_area": "CRIMINAL",
        "document_type": "CASE",
    }
    row.update(overrides)
    return row


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class TestVectorStoreConfig:

    def test_defaults(self):
        from execution.legal_research.vector_store import VectorStoreConfig
        cfg = VectorStoreConfig()
        assert cfg.connection_string is None
        assert cfg.documents_table == "legal_documents"
        assert cfg.table_name == "document_chunks"
        assert cfg.embedding_dimensions == 1024
        assert cfg.fts_language == "english"


class TestConnectionString:

    def test_uses_config_connection_string(self, monkeypatch):
        from execution.legal_research.vector_store import VectorStore, VectorStoreConfig

        monkeypatch.setenv("DATABASE_URL", "postgres://env/db")
        store = VectorStore(VectorStoreConfig(connection_string="postgres://custom/db"))
        assert store._connection_string == "postgres://custom/db"

    def test_database_url_before_postgres_url(self, monkeypatch):
        from execution.legal_research.vector_store import VectorStore

        monkeypatch.setenv("DATABASE_URL", "postgres://database/db")
        monkeypatch.setenv("POSTGRES_URL", "postgres://postgres/db")
        assert VectorStore()._connection_string == "postgres://database/db"

    def test_falls_back_to_postgres_url(self, monkeypatch):
        from execution.legal_research.vector_store import VectorStore

        monkeypatch.delenv("DATABASE_URL", raising=False)
        monkeypatch.setenv("POSTGRES_URL", "postgres://postgres/db")
        assert VectorStore()._connection_string == "postgres://postgres/db"

    def test_invalid_fts_language_reset(self):
        from execution.legal_research.vector_store import VectorStore, VectorStoreConfig

        store = VectorStore(VectorStoreConfig(fts_language="english'); DROP TABLE x; --"))
        assert store.config.fts_language == "english"

    def test_construction_does_not_connect(self):
        from execution.legal_research.vector_store import VectorStore

        with patch("psycopg2.pool.ThreadedConnectionPool") as pool:
            VectorStore()
        pool.assert_not_called()


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------

class TestSearchFilters:

    def test_camel_and_snake_case_keys(self):
        from execution.legal_research.vector_store import SearchFilters

        filters = SearchFilters.from_dict({
            "jurisdiction": "US", "practiceArea": "PRIVACY", "document_type": "STATUTE",
        })
        assert filters == SearchFilters(
            jurisdiction="US", practice_area="PRIVACY", document_type="STATUTE"
        )

    def test_none_and_missing(self):
        from execution.legal_research.vector_store import SearchFilters

        assert SearchFilters.from_dict(None).is_empty
        assert SearchFilters.from_dict({"jurisdiction": None}).is_empty

    @pytest.mark.parametrize("data", [
        {"court": "SCOTUS"},
        {"jurisdiction": 1},
        {"jurisdiction": "   "},
        ["jurisdiction"],
    ])
    def test_invalid(self, data):
        from execution.legal_research.errors import InvalidFiltersError
        from execution.legal_research.vector_store import SearchFilters

        with pytest.raises(InvalidFiltersError):
            SearchFilters.from_dict(data)

    def test_matches_is_case_insensitive_and_lenient_on_missing(self):
        from execution.legal_research.vector_store import SearchFilters
        from conftest import make_result

        filters = SearchFilters(jurisdiction="us")
        assert filters.matches(make_result("A", jurisdiction="US"))
        assert filters.matches(make_result("B"))
        assert not filters.matches(make_result("C", jurisdiction="UK"))

    def test_filter_clause(self):
        from execution.legal_research.vector_store import SearchFilters, VectorStore

        where, params = VectorStore._filter_clause(
            SearchFilters(jurisdiction="US", document_type="CASE")
        )
        assert where == (
            "AND lower(d.jurisdiction) = lower(%s) AND lower(d.document_type) = lower(%s)"
        )
        assert params == ["US", "CASE"]

    def test_empty_filter_clause(self):
        from execution.legal_research.vector_store import SearchFilters, VectorStore
        assert VectorStore._filter_clause(SearchFilters()) == ("", [])

    def test_date_from_accepts_iso_strings_and_dates(self):
        from execution.legal_research.vector_store import SearchFilters

        assert SearchFilters.from_dict({"dateFrom": "2024-05-02"}).date_from == "2024-05-02"
        assert SearchFilters.from_dict({"date_from": date(2024, 5, 2)}).date_from == "2024-05-02"

    @pytest.mark.parametrize("value", ["2024-13-01", "May 2024", "20240502", 20240502, ""])
    def test_date_from_rejects_non_iso(self, value):
        from execution.legal_research.errors import InvalidFiltersError
        from execution.legal_research.vector_store import SearchFilters

        with pytest.raises(InvalidFiltersError) as exc:
            SearchFilters.from_dict({"dateFrom": value})
        assert exc.value.field == "dateFrom"

    def test_date_from_matching(self):
        from execution.legal_research.vector_store import SearchFilters
        from conftest import make_result

        filters = SearchFilters(date_from="2024-01-01")
        assert filters.matches(make_result("New", date="2024-01-01"))
        assert filters.matches(make_result("Newer", date="2024-03-05T10:00:00"))
        assert not filters.matches(make_result("Old", date="2023-12-31"))
        assert not filters.matches(make_result("Undated"))
        assert filters.equality_only().matches(make_result("Undated"))

    def test_date_from_filter_clause(self):
        from execution.legal_research.vector_store import SearchFilters, VectorStore

        where, params = VectorStore._filter_clause(
            SearchFilters(jurisdiction="US", date_from="2024-01-01")
        )
        assert where == "AND lower(d.jurisdiction) = lower(%s) AND d.publication_date >= %s"
        assert params == ["US", "2024-01-01"]


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

class TestSimilaritySearch:

    def test_rows_mapped_to_results(self):
        store, _, cursor = _mock_store(rows=[_row(distance=0.25)])

        results = store.similarity_search([0.1, 0.2, 0.3, 0.4], limit=5)

        assert len(results) == 1
        result = results[0]
        assert result.id == "internal-c1"
        assert result.source == "Internal Database"
        assert result.source_type == "internal"
        assert result.score == pytest.approx(0.75)
        assert result.date == "1966-06-13"
        assert result.citation == "384 U.S. 436"
        assert result.metadata["match"] == "vector"
        assert result.metadata["document_id"] == "d1"

        sql, params = cursor.execute.call_args.args
        assert "NOT c.embedding_degraded" in sql
        assert params[0] == [0.1, 0.2, 0.3, 0.4]
        assert params[-1] == 5

    def test_filters_bound_as_parameters(self):
        from execution.legal_research.vector_store import SearchFilters

        store, _, cursor = _mock_store(rows=[])
        store.similarity_search([0.0, 0.0, 0.0, 1.0], 3, SearchFilters(jurisdiction="US"))

        sql, params = cursor.execute.call_args.args
        assert "lower(d.jurisdiction) = lower(%s)" in sql
        assert params[1:] == ["US", 3]

    def test_dimension_mismatch_falls_back_to_lexical(self):
        store, _, cursor = _mock_store(rows=[_row(text_rank=0.4)])

        results = store.similarity_search([0.1, 0.2], limit=5, query_text="interrogation")

        assert [r.metadata["match"] for r in results] == ["lexical"]
        assert results[0].score == pytest.approx(0.4)
        sql, params = cursor.execute.call_args.args
        assert "websearch_to_tsquery" in sql
        assert params[:2] == ["interrogation", "interrogation"]

    def test_non_finite_vector_rejected(self):
        from execution.legal_research.errors import VectorQueryFailed

        store, _, _ = _mock_store()
        with pytest.raises(VectorQueryFailed):
            store._validate_vector([0.1, float("nan"), 0.0, 0.0])
        with pytest.raises(VectorQueryFailed):
            store._validate_vector([])

    def test_database_error_falls_back_to_lexical(self):
        store, _, _ = _mock_store()
        lexical = MagicMock(return_value=["lexical hit"])

        with patch.object(store, "lexical_search", lexical), \
                patch.object(store, "_execute_with_retry", side_effect=psycopg2.ProgrammingError("type vector")):
            results = store.similarity_search([0.1, 0.2, 0.3, 0.4], limit=2, query_text="miranda")

        assert results == ["lexical hit"]
        lexical.assert_called_once()

    def test_failure_without_query_text_returns_empty(self):
        store, _, cursor = _mock_store()
        assert store.similarity_search([1.0], limit=2) == []
        cursor.execute.assert_not_called()


class TestLexicalSearch:

    def test_blank_query_skips_database(self):
        store, _, cursor = _mock_store()
        assert store.lexical_search("   ") == []
        cursor.execute.assert_not_called()

    def test_backend_error_returns_empty(self):
        store, conn, _ = _mock_store(execute_error=psycopg2.ProgrammingError("bad tsquery"))

        assert store.lexical_search("miranda") == []
        conn.rollback.assert_called()
        store._pool.putconn.assert_called_with(conn)

    def test_citation_from_document_preferred(self):
        store, _, _ = _mock_store(rows=[_row(text_rank=0.1, citation="86 S. Ct. 1602")])
        assert store.lexical_search("miranda")[0].citation == "86 S. Ct. 1602"


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

class TestReplaceDocument:

    def _chunks(self, document_id, count=2):
        from execution.legal_research.chunker import Chunk
        return [
            Chunk(
                chunk_id=f"00000000-0000-0000-0000-00000000000{i}",
                document_id=document_id,
                index=i,
                content=f"Section {i + 1}. Text",
                embedding=[0.0, 0.0, 0.0, 1.0],
                embedding_model="fake-embed",
            )
            for i in range(count)
        ]

    def test_upsert_delete_insert_in_one_transaction(self, sample_document):
        store, conn, cursor = _mock_store()
        chunks = self._chunks(sample_document.document_id)

        with patch("execution.legal_research.vector_store.execute_values") as execute_values:
            written = store.replace_document(sample_document, chunks)

        assert written == 2
        statements = [c.args[0] for c in cursor.execute.call_args_list]
        assert "ON CONFLICT (id) DO UPDATE" in statements[0]
        assert statements[1].startswith("DELETE FROM document_chunks")
        values = execute_values.call_args.args[2]
        assert [v[2] for v in values] == [0, 1]
        conn.commit.assert_called_once()

    def test_empty_chunk_set_clears_document(self, sample_document):
        store, conn, cursor = _mock_store()

        with patch("execution.legal_research.vector_store.execute_values") as execute_values:
            assert store.replace_document(sample_document, []) == 0

        execute_values.assert_not_called()
        assert cursor.execute.call_count == 2
        conn.commit.assert_called_once()

    def test_foreign_chunk_rejected(self, sample_document):
        store, _, cursor = _mock_store()

        with pytest.raises(ValueError):
            store.replace_document(sample_document, self._chunks("someone-else"))
        cursor.execute.assert_not_called()

    def test_failure_rolls_back(self, sample_document):
        store, conn, _ = _mock_store(execute_error=psycopg2.IntegrityError("duplicate key"))

        with pytest.raises(psycopg2.IntegrityError):
            store.replace_document(sample_document, self._chunks(sample_document.document_id))
        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()


class TestConnectionRetry:

    def test_stale_connection_retried_once(self):
        store, _, cursor = _mock_store()
        cursor.fetchone.return_value = {"documents": 3, "chunks": 12}
        cursor.execute.side_effect = [psycopg2.OperationalError("server closed"), None]

        with patch.object(store, "connect") as connect:
            health = store.health_check()

        connect.assert_called_once()
        assert health == {"status": "healthy", "documents": 3, "chunks": 12}

    def test_health_check_never_raises(self):
        store, _, _ = _mock_store(execute_error=psycopg2.OperationalError("down"))

        with patch.object(store, "connect"):
            health = store.health_check()

        assert health["status"] == "unhealthy"
        assert "down" in health["error"]

    def test_concurrent_first_use_builds_one_pool(self):
        from execution.legal_research.vector_store import VectorStore

        def slow_pool(*args, **kwargs):
            time.sleep(0.05)
            return MagicMock()

        store = VectorStore()
        barrier = threading.Barrier(4)
        errors = []

        def worker():
            barrier.wait()
            try:
                store._ensure_connection()
            except Exception as e:  # surfaced by the assertion below
                errors.append(e)

        with patch("psycopg2.pool.ThreadedConnectionPool", side_effect=slow_pool) as pool_cls:
            threads = [threading.Thread(target=worker) for _ in range(4)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

        assert errors == []
        assert pool_cls.call_count == 1
