"""Learning engine routes."""

from fastapi import APIRouter, Depends, Path
from sqlalchemy.orm import Session

from saga_suggestions.db.dependencies import get_db
from saga_suggestions.errors import SuggestionEngineError
from saga_suggestions.routers.error_mapping import to_http_exception
from saga_suggestions.schemas.common import ApiResponse
from saga_suggestions.schemas.learning import LearningResetResult, LearningRunResult, LearningStats
from saga_suggestions.services.learning import get_learning_stats, process_pending_feedback, reset_learning

router = APIRouter(prefix="/sagas/{saga_id}/learning")


@router.get("", response_model=ApiResponse[LearningStats])
def get_learning(
    saga_id: str = Path(..., min_length=1, max_length=255),
    db: Session = Depends(get_db),
) -> ApiResponse[LearningStats]:
    """Weights, sample counts and decision quality for a saga."""

    return ApiResponse(data=get_learning_stats(db, saga_id))


@router.post("/run", response_model=ApiResponse[LearningRunResult])
def run_learning(
    saga_id: str = Path(..., min_length=1, max_length=255),
    db: Session = Depends(get_db),
) -> ApiResponse[LearningRunResult]:
    """Process pending feedback for a saga now."""

    try:
        return ApiResponse(data=process_pending_feedback(db, saga_id))
    except SuggestionEngineError as exc:
        raise to_http_exception(exc) from exc


@router.delete("", response_model=ApiResponse[LearningResetResult])
def delete_learning(
    saga_id: str = Path(..., min_length=1, max_length=255),
    db: Session = Depends(get_db),
) -> ApiResponse[LearningResetResult]:
    """Drop a saga's learned weights."""

    return ApiResponse(data=reset_learning(db, saga_id))
