"""Feedback submission routes."""

from fastapi import APIRouter, BackgroundTasks, Depends, Path
from sqlalchemy.orm import Session

from saga_suggestions.db.dependencies import get_db
from saga_suggestions.errors import SuggestionEngineError
from saga_suggestions.routers.error_mapping import to_http_exception
from saga_suggestions.schemas.common import ApiResponse
from saga_suggestions.schemas.feedback import BulkFeedbackRequest, BulkFeedbackResult, FeedbackRequest, FeedbackResult
from saga_suggestions.services.background_jobs import run_learning_job
from saga_suggestions.services.feedback import submit_bulk_feedback, submit_feedback

router = APIRouter()


@router.post("/suggestions/{suggestion_id}/feedback", response_model=ApiResponse[FeedbackResult])
def post_feedback(
    payload: FeedbackRequest,
    background_tasks: BackgroundTasks,
    suggestion_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
) -> ApiResponse[FeedbackResult]:
    """Accept, reject, modify or dismiss one pending suggestion."""

    try:
        result = submit_feedback(db, suggestion_id, payload, learning_mode="none")
    except SuggestionEngineError as exc:
        raise to_http_exception(exc) from exc
    background_tasks.add_task(run_learning_job, result.saga_id)
    return ApiResponse(data=result)


@router.post("/sagas/{saga_id}/suggestions/bulk-feedback", response_model=ApiResponse[BulkFeedbackResult])
def post_bulk_feedback(
    payload: BulkFeedbackRequest,
    background_tasks: BackgroundTasks,
    saga_id: str = Path(..., min_length=1, max_length=255),
    db: Session = Depends(get_db),
) -> ApiResponse[BulkFeedbackResult]:
    """Apply one decision to several suggestions of a saga."""

    result = submit_bulk_feedback(db, saga_id, payload, learning_mode="none")
    if result.succeeded:
        background_tasks.add_task(run_learning_job, saga_id)
    return ApiResponse(data=result)
