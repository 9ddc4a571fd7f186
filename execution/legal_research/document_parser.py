"""
Legal Document Parser - Turns files, URLs and storage keys into LegalDocument records

Uses PyMuPDF4LLM for PDF extraction and BeautifulSoup for HTML.
Detects document type from keyword patterns and derives jurisdiction,
document type, year and title from storage keys such as
legal-data/us-fed/cases/2023/smith-v-jones.pdf.
"""

import re
import html
import uuid
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional

import httpx
from bs4 import BeautifulSoup

from .language_patterns import DOCTYPE_PATTERNS, FOLDER_DOCUMENT_TYPES, YEAR_PATTERN

logger = logging.getLogger(__name__)

JURISDICTION_CODES = {
    "us-fed": "US-FED",
    "us-ca": "US-CA",
    "us-ny": "US-NY",
}

TEXT_SUFFIXES = {".txt", ".md", ".markdown"}
HTML_SUFFIXES = {".html", ".htm"}


@dataclass
class LegalDocument:
    """A source document before chunking."""
    document_id: str
    title: str
    content: str
    source: str = "upload"
    source_url: Optional[str] = None
    citation: Optional[str] = None
    court: Optional[str] = None
    jurisdiction: Optional[str] = None
    practice_area: Optional[str] = None
    document_type: Optional[str] = None
    publication_date: Optional[str] = None  # ISO date
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "document_id": self.document_id,
            "title": self.title,
            "source": self.source,
            "source_url": self.source_url,
            "citation": self.citation,
            "court": self.court,
            "jurisdiction": self.jurisdiction,
            "practice_area": self.practice_area,
            "document_type": self.document_type,
            "publication_date": self.publication_date,
            "metadata": self.metadata,
        }


def metadata_from_key(key: str) -> dict:
    """
    Derive document metadata from a storage key.

    legal-data/us-fed/cases/2023/smith-v-jones.pdf ->
        {"jurisdiction": "US-FED", "document_type": "CASE",
         "publication_date": "2023-01-01", "title": "smith v jones"}
    """
    metadata = {}
    parts = [p for p in key.split("/") if p]

    if len(parts) >= 2:
        metadata["jurisdiction"] = JURISDICTION_CODES.get(parts[1], parts[1])

    if len(parts) >= 3:
        metadata["document_type"] = FOLDER_DOCUMENT_TYPES.get(parts[2], parts[2].upper())

    if len(parts) >= 4 and YEAR_PATTERN.match(parts[3]):
        metadata["publication_date"] = f"{parts[3]}-01-01"

    if parts:
        match = re.match(r"^(.+)\.[^.]+$", parts[-1])
        if match:
            metadata["title"] = match.group(1).replace("-", " ")

    return metadata


def html_to_text(markup: str) -> str:
    soup = BeautifulSoup(markup, "html.parser")
    for tag in soup(["script", "style", "nav", "header", "footer"]):
        tag.decompose()
    text = soup.get_text("\n")
    return re.sub(r"\n{3,}", "\n\n", text).strip()


class LegalDocumentParser:
    """
    Parses legal documents into LegalDocument records.

    Usage:
        parser = LegalDocumentParser()
        document = parser.parse("opinions/miranda.pdf", jurisdiction="US-FED")
    """

    def __init__(self, http_timeout: float = 30.0):
        self._http_timeout = http_timeout

    def parse(self, file_path: str, **fields) -> LegalDocument:
        """
        Parse a legal document from file.

        Args:
            file_path: Path to a PDF, text, markdown or HTML file
            **fields: LegalDocument fields that override detected values

        Returns:
            LegalDocument with extracted content
        """
        path = Path(file_path)
        if not path.exists():
            raise FileNotFoundError(f"Document not found: {file_path}")

        logger.info(f"Parsing document: {path.name}")

        suffix = path.suffix.lower()
        if suffix == ".pdf":
            markdown = self._extract_with_pymupdf(str(path))
            text = self._markdown_to_text(markdown)
        elif suffix in TEXT_SUFFIXES:
            markdown = path.read_text(encoding="utf-8")
            text = self._markdown_to_text(markdown) if suffix != ".txt" else markdown.strip()
        elif suffix in HTML_SUFFIXES:
            markdown = html_to_text(path.read_text(encoding="utf-8"))
            text = markdown
        else:
            raise ValueError(f"Unsupported document format: {suffix}")

        fields.setdefault("title", self._extract_title(markdown, path.stem))
        fields.setdefault("source", "upload")
        fields.setdefault("metadata", {"file_path": str(path.absolute())})
        return self.parse_text(text, **fields)

    def parse_key(self, key: str, content: str, bucket: Optional[str] = None) -> LegalDocument:
        """Build a document for content fetched from object storage."""
        derived = metadata_from_key(key)
        source_url = f"s3://{bucket}/{key}" if bucket else key
        return self.parse_text(
            content,
            title=derived.get("title") or key.split("/")[-1] or "Untitled Document",
            source="S3",
            source_url=source_url,
            jurisdiction=derived.get("jurisdiction"),
            document_type=derived.get("document_type") or "CASE",
            publication_date=derived.get("publication_date"),
            metadata={"storage_key": key, **derived},
        )

    def parse_url(self, url: str, **fields) -> LegalDocument:
        """Fetch a PDF, HTML or text document over HTTP and parse it."""
        response = httpx.get(url, timeout=self._http_timeout, follow_redirects=True)
        response.raise_for_status()
        content_type = response.headers.get("content-type", "")

        if "pdf" in content_type:
            import fitz  # PyMuPDF
            with fitz.open(stream=response.content, filetype="pdf") as doc:
                text = "\n".join(page.get_text() for page in doc)
        elif "html" in content_type:
            text = html_to_text(response.text)
        elif "text" in content_type:
            text = response.text
        else:
            raise ValueError(f"Unsupported content type: {content_type}")

        fields.setdefault("title", url.rstrip("/").split("/")[-1] or "Untitled Document")
        fields.setdefault("source", "URL")
        fields.setdefault("source_url", url)
        fields.setdefault("metadata", {"url": url, "content_type": content_type})
        return self.parse_text(text, **fields)

    def parse_text(self, text: str, **fields) -> LegalDocument:
        """Wrap raw text as a document, detecting the type when not given."""
        if not fields.get("document_id"):
            fields["document_id"] = str(uuid.uuid4())
        if not fields.get("title"):
            fields["title"] = self._extract_title(text, "Untitled Document")
        if not fields.get("document_type"):
            fields["document_type"] = self._detect_document_type(text)
        return LegalDocument(content=text, **fields)

    def _extract_with_pymupdf(self, file_path: str) -> str:
        import pymupdf4llm
        return pymupdf4llm.to_markdown(file_path)

    def _markdown_to_text(self, markdown: str) -> str:
        """Convert markdown to plain text."""
        text = re.sub(r'^#+\s*', '', markdown, flags=re.MULTILINE)  # Headers
        text = re.sub(r'\*\*([^*]+)\*\*', r'\1', text)  # Bold
        text = re.sub(r'\*([^*]+)\*', r'\1', text)  # Italic
        text = re.sub(r'!\[([^\]]*)\]\([^)]+\)', '', text)  # Images
        text = re.sub(r'\[([^\]]+)\]\([^)]+\)', r'\1', text)  # Links
        text = re.sub(r'`([^`]+)`', r'\1', text)  # Code
        text = re.sub(r'<!--.*?-->', '', text)
        return html.unescape(text).strip()

    def _detect_document_type(self, text: str) -> str:
        """Detect the type of legal document from keyword patterns."""
        scores = {}
        for doc_type, patterns in DOCTYPE_PATTERNS.items():
            scores[doc_type] = sum(
                len(re.findall(pattern, text[:5000])) for pattern in patterns
            )

        if max(scores.values()) > 0:
            return max(scores, key=scores.get)
        return "unknown"

    def _extract_title(self, markdown: str, fallback: str) -> str:
        """Extract document title from content."""
        match = re.search(r'^#+\s*(.+)$', markdown, re.MULTILINE)
        if match:
            return match.group(1).strip()

        for line in markdown.strip().split('\n')[:8]:
            clean_line = re.sub(r'[#*`]', '', line).strip()
            if not clean_line or len(clean_line) < 3 or len(clean_line) > 200:
                continue

            letter_count = len(re.findall(r'[A-Za-z]', clean_line))
            if letter_count / len(clean_line) < 0.4:
                continue
            if ' ' not in clean_line and len(clean_line) > 20:
                continue
            if clean_line.endswith('.'):
                continue

            return clean_line

        return fallback
