"""
Byte-safe text helpers shared by the chunker and the embedding service.

Chunk budgets and embedding input limits are measured in UTF-8 bytes, so
truncation has to land on a character boundary.
"""

import re


def utf8_length(text: str) -> int:
    """Length of text in UTF-8 bytes."""
    return len(text.encode("utf-8"))


def truncate_to_bytes(text: str, max_bytes: int) -> str:
    """
    Return the longest prefix of text whose UTF-8 encoding fits max_bytes.

    Binary search over the character count, so a multi-byte character is
    never split.
    """
    if max_bytes <= 0:
        return ""
    if utf8_length(text) <= max_bytes:
        return text

    low, high = 0, len(text)
    while low < high:
        mid = (low + high + 1) // 2
        if utf8_length(text[:mid]) <= max_bytes:
            low = mid
        else:
            high = mid - 1
    return text[:low]


_WHITESPACE = re.compile(r"\s+")


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def excerpt(text: str, max_chars: int, suffix: str = "...") -> str:
    """Cap text at max_chars characters, appending suffix when cut."""
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + suffix
