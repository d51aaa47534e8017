"""Translate engine errors into HTTP responses."""

from fastapi import HTTPException

from saga_suggestions.errors import (
    ConflictError,
    NotFoundError,
    RateLimitedError,
    SuggestionEngineError,
    ValidationError,
)
from saga_suggestions.schemas.common import ErrorDetail

_STATUS_CODES: tuple[tuple[type[SuggestionEngineError], int], ...] = (
    (NotFoundError, 404),
    (ConflictError, 409),
    (RateLimitedError, 429),
    (ValidationError, 422),
)


def to_http_exception(exc: SuggestionEngineError) -> HTTPException:
    status_code = 500
    for error_type, code in _STATUS_CODES:
        if isinstance(exc, error_type):
            status_code = code
            break
    retry_after = getattr(exc, "retry_after_seconds", None)
    detail = ErrorDetail(error=type(exc).__name__, message=str(exc), retry_after_seconds=retry_after)
    headers = {"Retry-After": str(retry_after)} if retry_after else None
    return HTTPException(status_code=status_code, detail=detail.model_dump(), headers=headers)
