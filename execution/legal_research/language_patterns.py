"""
Pattern Definitions for Legal Research

Regex patterns, document type keywords, and prompt templates used across the
chunker, parser, and grounding context builder. Modules import from here
instead of defining patterns inline.
"""

import re

# =============================================================================
# Section Markers (chunk boundaries)
# =============================================================================

# Keyword match is case-insensitive; numerals stay uppercase so prose such as
# "part civil" is not mistaken for a header.
_SECTION_HEAD = (
    r"(?:(?i:section|article|chapter|part)\s+[IVXLCDM\d]+(?:\.\d+)*\b"
    r"|§\s*\d+(?:\.\d+)*)"
)

SECTION_SPLIT_PATTERN = re.compile(rf"(?=^[ \t]*{_SECTION_HEAD})", re.MULTILINE)

SECTION_HEADER_PATTERN = re.compile(rf"^[ \t]*({_SECTION_HEAD}[^\n]*)", re.MULTILINE)

PARAGRAPH_SPLIT_PATTERN = re.compile(r"\n\s*\n")

# =============================================================================
# Citation Patterns (reporter and code references)
# =============================================================================

CITATION_PATTERNS = [
    # U.S. Reports: 384 U.S. 436
    re.compile(r"\b\d+\s+U\.\s?S\.\s+\d+\b"),
    # Supreme Court Reporter: 86 S. Ct. 1602
    re.compile(r"\b\d+\s+S\.\s?Ct\.\s+\d+\b"),
    # Federal Reporter: 123 F.3d 456, 12 F. 34
    re.compile(r"\b\d+\s+F\.(?:\s?\d+d)?\s+\d+\b"),
    # Federal Supplement: 45 F. Supp. 2d 678
    re.compile(r"\b\d+\s+F\.\s?Supp\.(?:\s?\d+d)?\s+\d+\b"),
    # United States Code: 42 U.S.C. § 1983
    re.compile(r"\b\d+\s+U\.S\.C\.?\s*§*\s*\d+[a-z]?\b"),
    # Code of Federal Regulations: 29 C.F.R. § 1630.2
    re.compile(r"\b\d+\s+C\.F\.R\.?\s*§*\s*\d+(?:\.\d+)*\b"),
]

# =============================================================================
# Document Type Detection
# =============================================================================

DOCTYPE_PATTERNS = {
    "case": [
        r"(?i)plaintiff|defendant|petitioner|respondent",
        r"(?i)opinion of the court|held|judgment|affirmed|reversed",
        r"(?i)appeal|appellant|appellee|certiorari",
    ],
    "statute": [
        r"(?i)enacted by|legislature|public law",
        r"(?i)be it enacted|section \d+\.",
        r"(?i)u\.s\.c\.|statutes at large",
    ],
    "regulation": [
        r"(?i)regulation|agency|federal register",
        r"(?i)promulgated|pursuant to",
        r"(?i)c\.f\.r\.|code of federal regulations",
    ],
    "contract": [
        r"(?i)agreement|contract|terms and conditions|parties agree",
        r"(?i)witnesseth|whereas|now therefore",
    ],
}

# Storage folder name -> document type, for keys like
# legal-data/us-fed/cases/2023/smith-v-jones.pdf
FOLDER_DOCUMENT_TYPES = {
    "cases": "CASE",
    "statutes": "STATUTE",
    "regulations": "REGULATION",
    "guides": "GUIDE",
}

YEAR_PATTERN = re.compile(r"^(?:19|20)\d{2}$")

# =============================================================================
# Answer References
# =============================================================================

SOURCE_REFERENCE_PATTERN = re.compile(r"\[Source (\d+)\]")

# =============================================================================
# Prompts and fixed messages
# =============================================================================

NO_SOURCES_MESSAGE = (
    "No relevant sources found for this query. "
    "Answer from general legal knowledge and state clearly that no "
    "supporting sources were retrieved."
)

LLM_FALLBACK_MESSAGE = (
    "The language model is currently unavailable. "
    "Please review the cited sources directly."
)

LLM_PROMPTS = {
    "system": """You are a legal research assistant. Answer the user's question using the
numbered sources below. Cite every claim with the matching [Source N] marker.
If the sources do not answer the question, say so plainly instead of guessing.

SOURCES:
{context}""",
}
