"""
Grounding Context for Cited Answers

Renders ranked search results as numbered source blocks for the language
model prompt, plus a parallel citation list for the UI:

[Source 1] Internal Database - Miranda v. Arizona
Content: The prosecution may not use statements...

Numbers follow the final ranked order and form one continuous sequence
across internal and live results.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from .language_patterns import LLM_PROMPTS, NO_SOURCES_MESSAGE, SOURCE_REFERENCE_PATTERN
from .text_utils import excerpt
from .vector_store import SearchResult

logger = logging.getLogger(__name__)

BLOCK_SEPARATOR = "\n\n---\n\n"


@dataclass
class CitationEntry:
    """A numbered source paired 1:1 with a ranked result."""
    number: int
    id: str
    title: str
    source: str
    url: Optional[str]
    excerpt: str
    relevance_score: float
    source_type: str
    citation: Optional[str] = None
    court: Optional[str] = None
    date: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "number": self.number,
            "id": self.id,
            "title": self.title,
            "source": self.source,
            "url": self.url,
            "excerpt": self.excerpt,
            "relevanceScore": self.relevance_score,
            "sourceType": self.source_type,
            "citation": self.citation,
            "court": self.court,
            "date": self.date,
        }


@dataclass
class GroundingContext:
    prompt_blocks: str
    citations: list[CitationEntry] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.citations

    def to_dict(self) -> dict:
        return {
            "promptBlocks": self.prompt_blocks,
            "citations": [c.to_dict() for c in self.citations],
        }


class GroundingContextBuilder:
    """
    Builds prompt blocks and citation entries from ranked results.

    Output depends only on the results passed in, so building twice from
    the same list yields identical text.
    """

    def __init__(self, content_chars: int = 400, excerpt_chars: int = 200):
        self.content_chars = content_chars
        self.excerpt_chars = excerpt_chars

    def build_context(
        self,
        results: Sequence[SearchResult],
        start_number: int = 1,
    ) -> GroundingContext:
        """
        Number results in the order given, starting at start_number.

        start_number is only for callers that render a secondary block after
        an existing one; it should be one past the last number already used.
        """
        if start_number < 1:
            raise ValueError(f"start_number must be >= 1, got {start_number}")

        if not results:
            return GroundingContext(prompt_blocks=NO_SOURCES_MESSAGE, citations=[])

        blocks = []
        citations = []
        for offset, result in enumerate(results):
            number = start_number + offset
            blocks.append(self._format_block(number, result))
            citations.append(self._to_citation(number, result))

        logger.debug(f"Built grounding context with {len(citations)} sources")
        return GroundingContext(
            prompt_blocks=BLOCK_SEPARATOR.join(blocks),
            citations=citations,
        )

    def _format_block(self, number: int, result: SearchResult) -> str:
        content = excerpt(result.content or "", self.content_chars)
        return f"[Source {number}] {result.source} - {result.title}\nContent: {content}"

    def _to_citation(self, number: int, result: SearchResult) -> CitationEntry:
        return CitationEntry(
            number=number,
            id=result.id,
            title=result.title,
            source=result.source,
            url=result.url,
            excerpt=excerpt(result.content or "", self.excerpt_chars),
            relevance_score=result.score,
            source_type=result.source_type,
            citation=result.citation,
            court=result.court,
            date=result.date,
        )


def system_prompt(context: GroundingContext) -> str:
    """System prompt for the language model with the numbered sources inlined."""
    return LLM_PROMPTS["system"].format(context=context.prompt_blocks)


def citations_header(citations: Sequence[CitationEntry]) -> str:
    """
    Citation list serialized for a response header.

    Non-ASCII characters are escaped since header values must be latin-1.
    """
    return json.dumps([c.to_dict() for c in citations], ensure_ascii=True)


def referenced_numbers(answer: str, citations: Sequence[CitationEntry] = ()) -> list[int]:
    """
    Distinct [Source N] numbers in answer, in order of first mention.

    If citations are given, numbers with no matching entry are dropped.
    """
    valid = {c.number for c in citations} if citations else None
    numbers = []
    for match in SOURCE_REFERENCE_PATTERN.finditer(answer or ""):
        number = int(match.group(1))
        if valid is not None and number not in valid:
            logger.debug(f"Answer cites unknown [Source {number}]")
            continue
        if number not in numbers:
            numbers.append(number)
    return numbers
