"""Error taxonomy for search and ranking.

Every error carries an ``error_code`` (the name surfaced to API callers) and
a ``retryable`` flag so callers can decide between backing off and alerting.
"""


class ContribuxError(Exception):
    """Base class for all search engine errors."""

    error_code = "InternalError"
    retryable = False

    def __init__(self, message: str = "", **details):
        super().__init__(message or self.error_code)
        self.message = message or self.error_code
        self.details = details

    def to_dict(self) -> dict:
        return {
            "error": self.error_code,
            "message": self.message,
            "retryable": self.retryable,
            **({"details": self.details} if self.details else {}),
        }


class InvalidParameter(ContribuxError):
    """Caller-correctable input problem (query too long, bad filter value)."""

    error_code = "InvalidParameter"


class Unauthorized(ContribuxError):
    """The caller is not authenticated or has no profile."""

    error_code = "Unauthorized"


class IndexUnavailable(ContribuxError):
    """A lexical or vector index could not serve the query."""

    error_code = "IndexUnavailable"
    retryable = True


class ProviderError(ContribuxError):
    """The embedding provider failed or returned malformed data."""

    error_code = "ProviderError"
    retryable = True


class InputTooLarge(ContribuxError):
    """Text exceeds the embedding provider's input budget."""

    error_code = "InvalidParameter"


class SearchUnavailable(ContribuxError):
    """Both index sources failed; no partial data is available."""

    error_code = "SearchUnavailable"
    retryable = True


class InternalError(ContribuxError):
    """Invariant violation: configuration or data-integrity bug."""

    error_code = "InternalError"


class DimensionMismatch(InternalError):
    """A vector's length does not match the configured embedding dimension."""

    def __init__(self, expected: int, actual: int, where: str = "vector"):
        super().__init__(
            f"{where} has dimension {actual}, expected {expected}",
            expected=expected,
            actual=actual,
        )
        self.expected = expected
        self.actual = actual
