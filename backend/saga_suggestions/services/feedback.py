"""Feedback ingestion for relationship suggestions."""

from __future__ import annotations

import logging
from time import perf_counter
from typing import Literal

from sqlalchemy import select
from sqlalchemy.orm import Session

from saga_suggestions.config import EngineConfig
from saga_suggestions.errors import NotFoundError, SuggestionEngineError
from saga_suggestions.models import RelationshipSuggestion
from saga_suggestions.models.statuses import FeedbackAction
from saga_suggestions.schemas.feedback import (
    BulkFeedbackFailure,
    BulkFeedbackRequest,
    BulkFeedbackResult,
    FeedbackRequest,
    FeedbackResult,
)
from saga_suggestions.services.entity_store import EntityStore, SqlEntityStore
from saga_suggestions.services.learning import process_pending_feedback
from saga_suggestions.services.list_cache import suggestion_list_cache
from saga_suggestions.services.suggestion_repository import record_feedback

logger = logging.getLogger(__name__)


def submit_feedback(
    db: Session,
    suggestion_id: int,
    payload: FeedbackRequest,
    *,
    store: EntityStore | None = None,
    learning_mode: Literal["inline", "none"] = "inline",
    config: EngineConfig | None = None,
) -> FeedbackResult:
    """Record one decision, materialize the relationship if any, then learn from it."""

    total_started = perf_counter()
    action = FeedbackAction(payload.action)
    try:
        outcome = record_feedback(
            db,
            suggestion_id,
            action,
            store=store or SqlEntityStore(db),
            corrected_type=payload.corrected_type,
            corrected_strength=payload.corrected_strength,
            note=payload.note,
        )
        result = FeedbackResult(
            suggestion_id=outcome.suggestion.id,
            saga_id=outcome.suggestion.saga_id,
            feedback_id=outcome.feedback.id,
            status=outcome.suggestion.status,
            relationship_id=outcome.relationship_id,
        )
        db.commit()
    except SuggestionEngineError as exc:
        db.rollback()
        logger.info(
            "feedback.rejected suggestion_id=%s action=%s error=%s",
            suggestion_id,
            action.value,
            type(exc).__name__,
        )
        raise
    except Exception:
        db.rollback()
        logger.exception("feedback.failed suggestion_id=%s action=%s", suggestion_id, action.value)
        raise
    suggestion_list_cache.invalidate(result.saga_id)

    if learning_mode == "inline":
        process_pending_feedback(db, result.saga_id, config)

    logger.info(
        "feedback.recorded saga_id=%s suggestion_id=%s action=%s relationship_id=%s learning_mode=%s total_ms=%.2f",
        result.saga_id,
        suggestion_id,
        action.value,
        result.relationship_id,
        learning_mode,
        (perf_counter() - total_started) * 1000.0,
    )
    return result


def submit_bulk_feedback(
    db: Session,
    saga_id: str,
    payload: BulkFeedbackRequest,
    *,
    store: EntityStore | None = None,
    learning_mode: Literal["inline", "none"] = "inline",
    config: EngineConfig | None = None,
) -> BulkFeedbackResult:
    """Apply one decision to several suggestions; each succeeds or fails on its own."""

    in_saga = set(
        db.scalars(
            select(RelationshipSuggestion.id).where(
                RelationshipSuggestion.saga_id == saga_id,
                RelationshipSuggestion.id.in_(payload.suggestion_ids),
            )
        ).all()
    )
    succeeded: list[FeedbackResult] = []
    failed: list[BulkFeedbackFailure] = []
    single = FeedbackRequest(action=payload.action, note=payload.note)
    for suggestion_id in payload.suggestion_ids:
        try:
            if suggestion_id not in in_saga:
                raise NotFoundError(f"Suggestion {suggestion_id} not found in saga {saga_id}")
            succeeded.append(submit_feedback(db, suggestion_id, single, store=store, learning_mode="none"))
        except SuggestionEngineError as exc:
            failed.append(BulkFeedbackFailure(suggestion_id=suggestion_id, error=type(exc).__name__, message=str(exc)))

    if succeeded and learning_mode == "inline":
        process_pending_feedback(db, saga_id, config)
    logger.info(
        "feedback.bulk saga_id=%s action=%s succeeded=%d failed=%d",
        saga_id,
        payload.action,
        len(succeeded),
        len(failed),
    )
    return BulkFeedbackResult(succeeded=succeeded, failed=failed)
