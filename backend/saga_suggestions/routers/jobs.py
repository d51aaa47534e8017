"""Suggestion generation job routes."""

from fastapi import APIRouter, BackgroundTasks, Depends, Path
from sqlalchemy.orm import Session

from saga_suggestions.config import get_settings
from saga_suggestions.db.dependencies import get_db
from saga_suggestions.errors import SuggestionEngineError
from saga_suggestions.routers.error_mapping import to_http_exception
from saga_suggestions.schemas.common import ApiResponse
from saga_suggestions.schemas.job import CancelResult, JobProgress, SuggestionJobRead
from saga_suggestions.services.background_jobs import run_generation_job
from saga_suggestions.services.batch_jobs import cancel, get_progress, start_batch

router = APIRouter(prefix="/sagas/{saga_id}/suggestions")


@router.post("/generate", response_model=ApiResponse[SuggestionJobRead], status_code=202)
def generate_suggestions(
    background_tasks: BackgroundTasks,
    saga_id: str = Path(..., min_length=1, max_length=255),
    db: Session = Depends(get_db),
) -> ApiResponse[SuggestionJobRead]:
    """Queue a generation job; poll /progress for its state."""

    try:
        job = start_batch(db, saga_id)
    except SuggestionEngineError as exc:
        raise to_http_exception(exc) from exc
    if get_settings().job_dispatch_mode == "background":
        background_tasks.add_task(run_generation_job, job.id)
    return ApiResponse(data=job)


@router.get("/progress", response_model=ApiResponse[JobProgress])
def get_generation_progress(
    saga_id: str = Path(..., min_length=1, max_length=255),
    db: Session = Depends(get_db),
) -> ApiResponse[JobProgress]:
    """Return the latest job state for a saga."""

    return ApiResponse(data=get_progress(db, saga_id))


@router.post("/cancel", response_model=ApiResponse[CancelResult])
def cancel_generation(
    saga_id: str = Path(..., min_length=1, max_length=255),
    db: Session = Depends(get_db),
) -> ApiResponse[CancelResult]:
    """Request cancellation of the saga's active job."""

    return ApiResponse(data=cancel(db, saga_id))
