"""Error taxonomy for the Campus Concierge.

Only the startup path (knowledge base loading) and the generative fallback
path raise. Lexical matching and classification never do: an unmatched query
is a normal zero-candidate result that resolves to ``intent=unknown``.
"""

from typing import Optional


class ConciergeError(Exception):
    """Base class for all concierge errors."""


class EmptyQueryError(ConciergeError, ValueError):
    """Raised when a blank query reaches the engine."""

    def __init__(self, message: str = "No query provided"):
        super().__init__(message)


class KnowledgeBaseLoadError(ConciergeError):
    """Raised at startup when the campus dataset is unreadable or malformed."""

    def __init__(self, message: str, problems: Optional[list[str]] = None):
        self.problems = list(problems or [])
        if self.problems:
            details = "\n".join(f"  - {p}" for p in self.problems)
            message = f"{message}\n{details}"
        super().__init__(message)


class FallbackError(ConciergeError):
    """Base class for failures on the generative fallback path."""

    error_type = "general_error"


class QuotaExceededError(FallbackError):
    """Provider rejected the call for quota or rate-limit reasons (HTTP 429).

    Recoverable by the caller after a cooldown; never retried internally.
    """

    error_type = "quota_exceeded"

    def __init__(self, message: str = "Model provider quota exceeded", status_code: Optional[int] = 429):
        super().__init__(message)
        self.status_code = status_code


class FallbackProviderError(FallbackError):
    """Provider call failed for any other reason (non-2xx, transport error)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class FallbackMalformedError(FallbackError):
    """Provider answered, but the payload does not satisfy the response schema."""

    def __init__(self, message: str, errors: Optional[list[str]] = None, raw_response: str = ""):
        super().__init__(message)
        self.errors = list(errors or [])
        self.raw_response = raw_response
