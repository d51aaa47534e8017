"""Typed failures raised by the suggestion engine."""


class SuggestionEngineError(RuntimeError):
    """Base class for engine errors surfaced to callers."""


class NotFoundError(SuggestionEngineError):
    """Raised when an entity, suggestion, or job does not exist."""


class ConflictError(SuggestionEngineError):
    """Raised when a concurrent or duplicate action loses a race."""


class RateLimitedError(SuggestionEngineError):
    """Raised when a saga exceeds its generation job allowance."""

    def __init__(self, message: str, *, retry_after_seconds: int | None = None) -> None:
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class ValidationError(SuggestionEngineError):
    """Raised for out-of-range scores, self-referential pairs, and bad feedback."""


class OracleTimeoutError(SuggestionEngineError):
    """Raised when the semantic-similarity oracle does not answer in time."""


class JobFailedError(SuggestionEngineError):
    """Raised when a generation batch runs past its wall-clock time limit."""
