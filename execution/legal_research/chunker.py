"""
Legal-Aware Section Chunker

Splits legal documents into chunks that respect section structure
(SECTION / Article / Chapter / Part / §) under a UTF-8 byte budget.

Strategy:
- Split on section markers; text before the first marker is its own section
- A section that fits the budget becomes one chunk, verbatim
- Larger sections are re-split on blank-line paragraphs, accumulated greedily
- A single paragraph over budget is truncated at a character boundary
"""

import uuid
import logging
from dataclasses import dataclass, field
from typing import Optional

from .language_patterns import (
    CITATION_PATTERNS,
    PARAGRAPH_SPLIT_PATTERN,
    SECTION_HEADER_PATTERN,
    SECTION_SPLIT_PATTERN,
)
from .text_utils import collapse_whitespace, truncate_to_bytes, utf8_length

logger = logging.getLogger(__name__)

MAX_SECTION_TITLE_CHARS = 200


@dataclass
class Chunk:
    """A chunk of text with metadata for retrieval."""
    chunk_id: str
    document_id: str
    index: int  # Position within the document, contiguous from 0
    content: str
    section_title: Optional[str] = None
    citations: list[str] = field(default_factory=list)

    # Filled in by the ingestion pipeline
    embedding: Optional[list[float]] = None
    embedding_model: Optional[str] = None
    embedding_degraded: bool = False

    metadata: dict = field(default_factory=dict)

    @property
    def byte_length(self) -> int:
        return utf8_length(self.content)

    def to_dict(self) -> dict:
        return {
            "chunk_id": self.chunk_id,
            "document_id": self.document_id,
            "index": self.index,
            "content": self.content,
            "section_title": self.section_title,
            "citations": self.citations,
            "embedding_model": self.embedding_model,
            "embedding_degraded": self.embedding_degraded,
            "metadata": self.metadata,
        }


@dataclass
class ChunkConfig:
    """Configuration for chunking parameters."""
    max_bytes: int = 4000
    # Chunks shorter than this are treated as noise (page numbers, stray headers)
    min_chunk_bytes: int = 32


def extract_citations(text: str) -> list[str]:
    """Find reporter and code citations, de-duplicated in order of appearance."""
    found = []
    for pattern in CITATION_PATTERNS:
        for match in pattern.finditer(text):
            found.append((match.start(), collapse_whitespace(match.group(0))))

    seen = set()
    citations = []
    for _, citation in sorted(found, key=lambda item: item[0]):
        if citation not in seen:
            seen.add(citation)
            citations.append(citation)
    return citations


def extract_section_title(text: str) -> Optional[str]:
    """Return the section header line that opens text, if any."""
    match = SECTION_HEADER_PATTERN.match(text)
    if not match:
        return None
    return match.group(1).strip()[:MAX_SECTION_TITLE_CHARS]


class LegalChunker:
    """
    Chunks legal documents while preserving section structure.

    Usage:
        chunker = LegalChunker()
        chunks = chunker.chunk(text, max_bytes=1000, metadata={"source": "upload"})
    """

    def __init__(self, config: Optional[ChunkConfig] = None):
        self.config = config or ChunkConfig()

    def chunk(
        self,
        text: str,
        max_bytes: Optional[int] = None,
        metadata: Optional[dict] = None,
        document_id: Optional[str] = None,
    ) -> list[Chunk]:
        """
        Chunk a document.

        Args:
            text: Full document text
            max_bytes: Per-chunk UTF-8 byte budget (defaults to config)
            metadata: Copied onto every chunk
            document_id: Owning document id (generated when omitted)

        Returns:
            Chunks with contiguous indices in source order
        """
        if max_bytes is None:
            max_bytes = self.config.max_bytes
        if max_bytes <= 0:
            raise ValueError(f"max_bytes must be positive, got {max_bytes}")

        if not text or not text.strip():
            return []

        document_id = document_id or str(uuid.uuid4())

        chunks: list[Chunk] = []
        for section in self._split_sections(text):
            header = extract_section_title(section)
            for content in self._split_section(section, max_bytes):
                if utf8_length(content) < self.config.min_chunk_bytes:
                    logger.debug(f"Dropping {utf8_length(content)}-byte fragment")
                    continue
                chunks.append(self._create_chunk(
                    content,
                    document_id=document_id,
                    index=len(chunks),
                    inherited_title=header,
                    metadata=metadata,
                ))

        logger.info(f"Created {len(chunks)} chunks for document {document_id}")
        return chunks

    def _split_sections(self, text: str) -> list[str]:
        """Split text at section markers, keeping each marker with its body."""
        sections = []
        for part in SECTION_SPLIT_PATTERN.split(text):
            part = part.strip()
            if part:
                sections.append(part)
        return sections

    def _split_section(self, section: str, max_bytes: int) -> list[str]:
        """Return the section verbatim if it fits, else paragraph-accumulated pieces."""
        if utf8_length(section) <= max_bytes:
            return [section]

        paragraphs = [
            p.strip() for p in PARAGRAPH_SPLIT_PATTERN.split(section) if p.strip()
        ]

        pieces = []
        current = ""
        for para in paragraphs:
            if utf8_length(para) > max_bytes:
                if current:
                    pieces.append(current)
                    current = ""
                logger.warning(
                    f"Paragraph of {utf8_length(para)} bytes exceeds {max_bytes}; truncating"
                )
                pieces.append(truncate_to_bytes(para, max_bytes))
                continue

            candidate = f"{current}\n\n{para}" if current else para
            if utf8_length(candidate) > max_bytes:
                pieces.append(current)
                current = para
            else:
                current = candidate

        if current:
            pieces.append(current)

        return pieces

    def _create_chunk(
        self,
        content: str,
        document_id: str,
        index: int,
        inherited_title: Optional[str],
        metadata: Optional[dict],
    ) -> Chunk:
        return Chunk(
            chunk_id=str(uuid.uuid4()),
            document_id=document_id,
            index=index,
            content=content,
            section_title=extract_section_title(content) or inherited_title,
            citations=extract_citations(content),
            metadata=dict(metadata or {}),
        )
