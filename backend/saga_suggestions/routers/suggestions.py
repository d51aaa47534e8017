"""Suggestion query routes."""

from typing import Literal

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.orm import Session

from saga_suggestions.db.dependencies import get_db
from saga_suggestions.errors import SuggestionEngineError
from saga_suggestions.routers.error_mapping import to_http_exception
from saga_suggestions.schemas.common import ApiResponse
from saga_suggestions.schemas.suggestion import (
    SortDirection,
    SuggestionDetail,
    SuggestionFilters,
    SuggestionPage,
    SuggestionSort,
    SuggestionStatistics,
)
from saga_suggestions.services.suggestion_repository import (
    get_suggestion_detail,
    get_suggestion_statistics,
    list_suggestions,
)

SagaIdParam = Path(..., min_length=1, max_length=255)
StatusFilterParam = Literal["pending", "accepted", "rejected", "modified", "auto_accepted", "dismissed", "all"]

router = APIRouter()


@router.get("/sagas/{saga_id}/suggestions", response_model=ApiResponse[SuggestionPage])
def get_suggestions(
    saga_id: str = SagaIdParam,
    status: StatusFilterParam = Query(default="pending"),
    min_confidence: float | None = Query(default=None, ge=0, le=100),
    suggested_type: str | None = Query(default=None, min_length=1),
    entity_id: int | None = Query(default=None, ge=1),
    sort: SuggestionSort = Query(default="priority"),
    direction: SortDirection = Query(default="desc"),
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=25, ge=1, le=200),
    db: Session = Depends(get_db),
) -> ApiResponse[SuggestionPage]:
    """List suggestions for a saga, highest priority first by default."""

    filters = SuggestionFilters(
        status=None if status == "all" else status,
        min_confidence=min_confidence,
        suggested_type=suggested_type,
        entity_id=entity_id,
        sort=sort,
        direction=direction,
        page=page,
        per_page=per_page,
    )
    return ApiResponse(data=list_suggestions(db, saga_id, filters))


@router.get("/sagas/{saga_id}/suggestions/statistics", response_model=ApiResponse[SuggestionStatistics])
def get_statistics(
    saga_id: str = SagaIdParam,
    db: Session = Depends(get_db),
) -> ApiResponse[SuggestionStatistics]:
    """Counts by status and type for a saga."""

    return ApiResponse(data=get_suggestion_statistics(db, saga_id))


@router.get("/suggestions/{suggestion_id}", response_model=ApiResponse[SuggestionDetail])
def get_suggestion(
    suggestion_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
) -> ApiResponse[SuggestionDetail]:
    """One suggestion with its features and feedback history."""

    try:
        return ApiResponse(data=get_suggestion_detail(db, suggestion_id))
    except SuggestionEngineError as exc:
        raise to_http_exception(exc) from exc
