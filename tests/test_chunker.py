"""
Tests for execution/legal_research/chunker.py

Covers: section splitting, paragraph accumulation for oversized sections,
        byte-safe truncation, noise dropping, citation and section header
        extraction, chunk index contiguity.
"""

import pytest


SECTION_ONE = "Section 1. Scope\nThis Act applies to all."
SECTION_THREE = "Section 3. Effect\nThis Act takes effect now."


def _middle_section(paragraphs: int = 10) -> str:
    body = "\n\n".join(
        (f"Paragraph {i}. " + "The controller shall protect personal data. " * 4).rstrip()
        for i in range(paragraphs)
    )
    return f"Section 2. Duties\n\n{body}"


def _three_section_document() -> str:
    return f"{SECTION_ONE}\n\n{_middle_section()}\n\n{SECTION_THREE}\n"


# ---------------------------------------------------------------------------
# Section-aware chunking
# ---------------------------------------------------------------------------

class TestSectionChunking:
    """A small / oversized / small section document with a 1000-byte budget."""

    def test_small_sections_kept_verbatim(self):
        from execution.legal_research.chunker import LegalChunker

        chunks = LegalChunker().chunk(_three_section_document(), max_bytes=1000)

        assert chunks[0].content == SECTION_ONE
        assert chunks[-1].content == SECTION_THREE

    def test_oversized_section_split_into_paragraph_chunks(self):
        from execution.legal_research.chunker import LegalChunker
        from execution.legal_research.text_utils import utf8_length

        middle = _middle_section()
        assert utf8_length(middle) > 1000

        chunks = LegalChunker().chunk(_three_section_document(), max_bytes=1000)
        middle_chunks = chunks[1:-1]

        assert len(middle_chunks) >= 2
        assert len(chunks) >= 4
        for chunk in middle_chunks:
            assert utf8_length(chunk.content) <= 1000
            assert chunk.section_title == "Section 2. Duties"

    def test_paragraphs_are_not_lost_or_reordered(self):
        from execution.legal_research.chunker import LegalChunker

        chunks = LegalChunker().chunk(_three_section_document(), max_bytes=1000)
        joined = "\n\n".join(c.content for c in chunks[1:-1])

        assert joined == _middle_section()

    def test_indices_are_contiguous(self):
        from execution.legal_research.chunker import LegalChunker

        chunks = LegalChunker().chunk(_three_section_document(), max_bytes=1000)
        assert [c.index for c in chunks] == list(range(len(chunks)))

    def test_text_without_markers_is_one_section(self):
        from execution.legal_research.chunker import LegalChunker

        text = "This opinion has no numbered sections at all, only prose."
        chunks = LegalChunker().chunk(text, max_bytes=1000)

        assert len(chunks) == 1
        assert chunks[0].content == text
        assert chunks[0].section_title is None

    def test_preamble_before_first_marker_is_its_own_chunk(self, sample_document_text):
        from execution.legal_research.chunker import LegalChunker

        chunks = LegalChunker().chunk(sample_document_text, max_bytes=4000)

        assert chunks[0].content == "CONSUMER DATA PROTECTION ACT OF THE STATE"
        assert chunks[1].section_title == "Section 1. Short Title"
        assert len(chunks) == 5

    def test_lowercase_keyword_is_a_marker(self):
        from execution.legal_research.chunker import LegalChunker

        text = (
            "article IV governs the duties of every controller in the state.\n\n"
            "§ 12.3 Remedies available to consumers are listed in this part."
        )
        chunks = LegalChunker().chunk(text, max_bytes=1000)

        assert [c.section_title for c in chunks] == [
            "article IV governs the duties of every controller in the state.",
            "§ 12.3 Remedies available to consumers are listed in this part.",
        ]


# ---------------------------------------------------------------------------
# Byte budget
# ---------------------------------------------------------------------------

class TestByteBudget:
    """Chunks never exceed max_bytes, even with multi-byte characters."""

    def test_oversized_paragraph_truncated(self):
        from execution.legal_research.chunker import LegalChunker
        from execution.legal_research.text_utils import utf8_length

        text = "Section 1. Long\n\n" + "word " * 400
        chunks = LegalChunker().chunk(text, max_bytes=200)

        assert all(utf8_length(c.content) <= 200 for c in chunks)
        assert chunks[-1].content.startswith("word word")

    def test_multibyte_truncation_is_valid_utf8(self):
        from execution.legal_research.chunker import LegalChunker
        from execution.legal_research.text_utils import utf8_length

        text = "Article 1. Δικαιώματα\n\n" + "δίκαιο " * 200
        chunks = LegalChunker().chunk(text, max_bytes=101)

        assert chunks
        for chunk in chunks:
            encoded = chunk.content.encode("utf-8")
            assert len(encoded) <= 101
            assert encoded.decode("utf-8") == chunk.content
            assert utf8_length(chunk.content) == len(encoded)

    @pytest.mark.parametrize("max_bytes", [0, -5])
    def test_invalid_max_bytes_raises(self, max_bytes):
        from execution.legal_research.chunker import LegalChunker

        with pytest.raises(ValueError, match="max_bytes must be positive"):
            LegalChunker().chunk("Section 1. Text that is long enough to keep.", max_bytes=max_bytes)

    def test_zero_budget_rejected_before_empty_check(self):
        from execution.legal_research.chunker import LegalChunker

        with pytest.raises(ValueError):
            LegalChunker().chunk("", max_bytes=0)


# ---------------------------------------------------------------------------
# Noise and empty input
# ---------------------------------------------------------------------------

class TestNoise:

    def test_empty_input_returns_no_chunks(self):
        from execution.legal_research.chunker import LegalChunker

        assert LegalChunker().chunk("") == []
        assert LegalChunker().chunk("   \n\n  ") == []

    def test_short_fragments_dropped(self):
        from execution.legal_research.chunker import LegalChunker, ChunkConfig

        text = "12\n\nSection 1. Definitions used throughout this whole Act apply."
        chunks = LegalChunker(ChunkConfig(min_chunk_bytes=32)).chunk(text)

        assert len(chunks) == 1
        assert chunks[0].content.startswith("Section 1.")
        assert chunks[0].index == 0


# ---------------------------------------------------------------------------
# Metadata extraction
# ---------------------------------------------------------------------------

class TestCitationExtraction:

    def test_reporter_and_code_citations(self):
        from execution.legal_research.chunker import extract_citations

        text = (
            "See Miranda v. Arizona, 384 U.S. 436 (1966); 86 S. Ct. 1602; "
            "42 U.S.C. § 1983 and 29 C.F.R. § 1630.2; also 123 F.3d 456."
        )
        citations = extract_citations(text)

        assert citations == [
            "384 U.S. 436",
            "86 S. Ct. 1602",
            "42 U.S.C. § 1983",
            "29 C.F.R. § 1630.2",
            "123 F.3d 456",
        ]

    def test_duplicates_removed(self):
        from execution.legal_research.chunker import extract_citations

        text = "384 U.S. 436 was cited twice: 384 U.S. 436."
        assert extract_citations(text) == ["384 U.S. 436"]

    def test_chunks_carry_citations(self, sample_document_text):
        from execution.legal_research.chunker import LegalChunker

        chunks = LegalChunker().chunk(sample_document_text)
        by_title = {c.section_title: c for c in chunks}

        assert by_title["Section 2. Definitions"].citations == ["15 U.S.C. § 6801"]
        assert by_title["Section 3. Consumer Rights"].citations == ["384 U.S. 436"]
        assert by_title["Section 4. Enforcement"].citations == ["16 C.F.R. § 314.4"]

    def test_metadata_copied_to_each_chunk(self):
        from execution.legal_research.chunker import LegalChunker

        chunks = LegalChunker().chunk(
            _three_section_document(),
            max_bytes=1000,
            metadata={"source": "upload"},
            document_id="doc-1",
        )
        assert all(c.metadata == {"source": "upload"} for c in chunks)
        assert all(c.document_id == "doc-1" for c in chunks)
        chunks[0].metadata["source"] = "changed"
        assert chunks[1].metadata == {"source": "upload"}
