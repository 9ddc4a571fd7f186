"""
Error taxonomy for Legal Research retrieval.

Most of these are recovered where they occur and only surface in logs or in
the retrieval report. InvalidRetrievalRequest and DimensionMismatch propagate
to the caller.
"""

from typing import Optional


class LegalResearchError(Exception):
    """Base class for all legal research errors."""


class EmbeddingDegraded(LegalResearchError):
    """Raised (and recovered) when the upstream embedding call fails."""

    def __init__(self, message: str, model: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.model = model
        self.cause = cause


class VectorQueryFailed(LegalResearchError):
    """The vector similarity path failed; callers fall back to lexical search."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class ProviderUnavailable(LegalResearchError):
    """A retrieval source errored or timed out during fan-out."""

    def __init__(self, provider: str, reason: str, timed_out: bool = False):
        super().__init__(f"{provider} unavailable: {reason}")
        self.provider = provider
        self.reason = reason
        self.timed_out = timed_out

    def to_dict(self) -> dict:
        return {
            "provider": self.provider,
            "reason": self.reason,
            "timed_out": self.timed_out,
        }


class DimensionMismatch(LegalResearchError, ValueError):
    """Two vectors compared for similarity have different lengths."""

    def __init__(self, left: int, right: int):
        super().__init__(f"Vector dimension mismatch: {left} != {right}")
        self.left = left
        self.right = right


class InvalidRetrievalRequest(LegalResearchError, ValueError):
    """Malformed retrieval input (empty query, bad limit, bad filters)."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class InvalidFiltersError(InvalidRetrievalRequest):
    """A filter key or value was not recognised."""
