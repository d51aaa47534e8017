"""Persistence and queries for relationship suggestions and their feedback."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, aliased

from saga_suggestions.errors import ConflictError, NotFoundError, ValidationError
from saga_suggestions.models import (
    RelationshipSuggestion,
    SagaEntity,
    SuggestionFeature,
    SuggestionFeedback,
    SuggestionStatus,
)
from saga_suggestions.models.statuses import FeedbackAction
from saga_suggestions.prediction.features import FEATURE_SET_VERSION, FeatureVector
from saga_suggestions.prediction.scorer import Prediction
from saga_suggestions.schemas.suggestion import (
    SuggestionDetail,
    SuggestionFeatureRead,
    SuggestionFeedbackRead,
    SuggestionFilters,
    SuggestionListItem,
    SuggestionPage,
    SuggestionStatistics,
)
from saga_suggestions.services.entity_store import EntityStore
from saga_suggestions.services.list_cache import SagaListCache, suggestion_list_cache

logger = logging.getLogger(__name__)

_SORT_COLUMNS = {
    "priority": RelationshipSuggestion.priority_score,
    "confidence": RelationshipSuggestion.confidence,
    "created": RelationshipSuggestion.created_at,
}


@dataclass(slots=True)
class FeedbackOutcome:
    """Result of one recorded decision, before commit."""

    suggestion: RelationshipSuggestion
    feedback: SuggestionFeedback
    relationship_id: int | None


def upsert_suggestion(
    db: Session,
    saga_id: str,
    source_entity_id: int,
    target_entity_id: int,
    prediction: Prediction,
    vector: FeatureVector,
    *,
    store: EntityStore | None = None,
    cache: SagaListCache | None = None,
) -> tuple[RelationshipSuggestion, bool]:
    """Insert a suggestion unless one already exists for the same pair and type.

    Auto-accepted predictions also materialize their relationship through
    `store`, inside the caller's transaction. Nothing is committed here.
    """

    _validate_prediction(source_entity_id, target_entity_id, prediction)

    existing = _find_existing(db, saga_id, source_entity_id, target_entity_id, prediction.suggested_type)
    if existing is not None:
        return existing, False

    auto_accept = prediction.auto_accept and store is not None
    suggestion = RelationshipSuggestion(
        saga_id=saga_id,
        source_entity_id=source_entity_id,
        target_entity_id=target_entity_id,
        suggested_type=prediction.suggested_type,
        confidence=prediction.confidence,
        strength=prediction.strength,
        priority_score=prediction.priority_score,
        reasoning=prediction.reasoning,
        suggestion_method=prediction.suggestion_method,
        feature_set_version=vector.version or FEATURE_SET_VERSION,
        status=(SuggestionStatus.AUTO_ACCEPTED if auto_accept else SuggestionStatus.PENDING).value,
    )
    try:
        with db.begin_nested():
            db.add(suggestion)
            db.flush()
    except IntegrityError:
        existing = _find_existing(db, saga_id, source_entity_id, target_entity_id, prediction.suggested_type)
        if existing is None:
            raise
        logger.info(
            "suggestions.upsert_race saga_id=%s source_id=%s target_id=%s type=%s",
            saga_id,
            source_entity_id,
            target_entity_id,
            prediction.suggested_type,
        )
        return existing, False

    for feature in vector:
        db.add(
            SuggestionFeature(
                suggestion_id=suggestion.id,
                feature_type=feature.feature_type.value,
                feature_value=feature.value,
                weight=prediction.weights_used.get(feature.feature_type.value, 1.0),
            )
        )

    if auto_accept:
        suggestion.created_relationship_id = store.create_relationship(
            saga_id,
            source_entity_id,
            target_entity_id,
            prediction.suggested_type,
            prediction.strength,
            {"suggestion_id": suggestion.id, "origin": "auto_accept", "confidence": prediction.confidence},
        )
        suggestion.actioned_at = datetime.now(timezone.utc)

    db.flush()
    (cache or suggestion_list_cache).invalidate(saga_id)
    return suggestion, True


def record_feedback(
    db: Session,
    suggestion_id: int,
    action: FeedbackAction,
    *,
    store: EntityStore,
    corrected_type: str | None = None,
    corrected_strength: int | None = None,
    note: str | None = None,
    cache: SagaListCache | None = None,
) -> FeedbackOutcome:
    """Move a pending suggestion to its decided status and log the decision.

    The status change is a conditional update from `pending`, so of two racing
    callers exactly one wins and the other gets ConflictError. Nothing is
    committed here.
    """

    if corrected_strength is not None and not 0 <= corrected_strength <= 100:
        raise ValidationError("corrected_strength must be within [0, 100]")
    if action == FeedbackAction.MODIFY and not (corrected_type or "").strip() and corrected_strength is None:
        raise ValidationError("Modify requires a corrected type or strength")

    now = datetime.now(timezone.utc)
    result = db.execute(
        update(RelationshipSuggestion)
        .where(
            RelationshipSuggestion.id == suggestion_id,
            RelationshipSuggestion.status == SuggestionStatus.PENDING.value,
        )
        .values(status=action.resulting_status.value, actioned_at=now)
        .execution_options(synchronize_session=False)
    )
    suggestion = db.get(RelationshipSuggestion, suggestion_id, populate_existing=True)
    if suggestion is None:
        raise NotFoundError(f"Suggestion {suggestion_id} not found")
    if result.rowcount != 1:
        raise ConflictError(f"Suggestion {suggestion_id} already actioned")

    relationship_id: int | None = None
    if action.materializes_relationship:
        relationship_type = (corrected_type or suggestion.suggested_type).strip()
        strength = corrected_strength if corrected_strength is not None else suggestion.strength
        relationship_id = store.create_relationship(
            suggestion.saga_id,
            suggestion.source_entity_id,
            suggestion.target_entity_id,
            relationship_type,
            strength,
            {"suggestion_id": suggestion.id, "origin": action.value},
        )
        suggestion.created_relationship_id = relationship_id

    created_at = _as_utc(suggestion.created_at)
    feedback = SuggestionFeedback(
        suggestion_id=suggestion.id,
        saga_id=suggestion.saga_id,
        action=action.value,
        suggested_type=suggestion.suggested_type,
        corrected_type=corrected_type.strip() if corrected_type else None,
        corrected_strength=corrected_strength,
        note=note,
        confidence_at_decision=suggestion.confidence,
        features_at_decision_json=feature_snapshot(db, suggestion.id),
        decision_latency_seconds=max(0, int((now - created_at).total_seconds())) if created_at else 0,
    )
    db.add(feedback)
    db.flush()
    (cache or suggestion_list_cache).invalidate(suggestion.saga_id)
    return FeedbackOutcome(suggestion=suggestion, feedback=feedback, relationship_id=relationship_id)


def feature_snapshot(db: Session, suggestion_id: int) -> dict[str, float]:
    """Feature values frozen on a suggestion when it was scored."""

    rows = db.scalars(
        select(SuggestionFeature)
        .where(SuggestionFeature.suggestion_id == suggestion_id)
        .order_by(SuggestionFeature.id.asc())
    ).all()
    return {row.feature_type: row.feature_value for row in rows}


def list_suggestions(
    db: Session,
    saga_id: str,
    filters: SuggestionFilters | None = None,
    *,
    cache: SagaListCache | None = None,
) -> SuggestionPage:
    """Filtered, sorted, paginated suggestions for one saga."""

    active_filters = filters or SuggestionFilters()
    active_cache = cache or suggestion_list_cache
    cache_key = active_filters.cache_key()
    cached = active_cache.get(saga_id, cache_key)
    if cached is not None:
        return cached

    conditions = [RelationshipSuggestion.saga_id == saga_id]
    if active_filters.status is not None:
        conditions.append(RelationshipSuggestion.status == active_filters.status)
    if active_filters.min_confidence is not None:
        conditions.append(RelationshipSuggestion.confidence >= active_filters.min_confidence)
    if active_filters.suggested_type:
        conditions.append(RelationshipSuggestion.suggested_type == active_filters.suggested_type.strip())
    if active_filters.entity_id is not None:
        conditions.append(
            or_(
                RelationshipSuggestion.source_entity_id == active_filters.entity_id,
                RelationshipSuggestion.target_entity_id == active_filters.entity_id,
            )
        )

    total = int(db.scalar(select(func.count(RelationshipSuggestion.id)).where(and_(*conditions))) or 0)

    sort_column = _SORT_COLUMNS[active_filters.sort]
    ordering = sort_column.asc() if active_filters.direction == "asc" else sort_column.desc()
    source_entity = aliased(SagaEntity)
    target_entity = aliased(SagaEntity)
    rows = db.execute(
        select(RelationshipSuggestion, source_entity.canonical_name, target_entity.canonical_name)
        .join(source_entity, source_entity.id == RelationshipSuggestion.source_entity_id)
        .join(target_entity, target_entity.id == RelationshipSuggestion.target_entity_id)
        .where(and_(*conditions))
        .order_by(ordering, RelationshipSuggestion.id.asc())
        .offset((active_filters.page - 1) * active_filters.per_page)
        .limit(active_filters.per_page)
    ).all()

    page = SuggestionPage(
        items=[
            _list_item(suggestion, source_name, target_name)
            for suggestion, source_name, target_name in rows
        ],
        total=total,
        page=active_filters.page,
        per_page=active_filters.per_page,
    )
    active_cache.set(saga_id, cache_key, page)
    return page


def get_suggestion_detail(db: Session, suggestion_id: int) -> SuggestionDetail:
    """One suggestion with names, frozen features and its feedback history."""

    suggestion = db.get(RelationshipSuggestion, suggestion_id)
    if suggestion is None:
        raise NotFoundError(f"Suggestion {suggestion_id} not found")
    names = _entity_names(db, [suggestion.source_entity_id, suggestion.target_entity_id])
    features = db.scalars(
        select(SuggestionFeature)
        .where(SuggestionFeature.suggestion_id == suggestion_id)
        .order_by(SuggestionFeature.id.asc())
    ).all()
    feedback_rows = db.scalars(
        select(SuggestionFeedback)
        .where(SuggestionFeedback.suggestion_id == suggestion_id)
        .order_by(SuggestionFeedback.id.asc())
    ).all()
    item = _list_item(
        suggestion,
        names.get(suggestion.source_entity_id, ""),
        names.get(suggestion.target_entity_id, ""),
    )
    return SuggestionDetail(
        **item.model_dump(),
        features=[SuggestionFeatureRead.model_validate(row) for row in features],
        feedback=[SuggestionFeedbackRead.model_validate(row) for row in feedback_rows],
    )


def get_suggestion_statistics(db: Session, saga_id: str) -> SuggestionStatistics:
    """Counts by status and type plus acceptance rate for one saga."""

    by_status = {
        status: int(count)
        for status, count in db.execute(
            select(RelationshipSuggestion.status, func.count(RelationshipSuggestion.id))
            .where(RelationshipSuggestion.saga_id == saga_id)
            .group_by(RelationshipSuggestion.status)
        ).all()
    }
    by_type = {
        suggested_type: int(count)
        for suggested_type, count in db.execute(
            select(RelationshipSuggestion.suggested_type, func.count(RelationshipSuggestion.id))
            .where(RelationshipSuggestion.saga_id == saga_id)
            .group_by(RelationshipSuggestion.suggested_type)
        ).all()
    }
    average = db.scalar(
        select(func.avg(RelationshipSuggestion.confidence)).where(RelationshipSuggestion.saga_id == saga_id)
    )

    positive = sum(
        by_status.get(status.value, 0)
        for status in (SuggestionStatus.ACCEPTED, SuggestionStatus.MODIFIED, SuggestionStatus.AUTO_ACCEPTED)
    )
    decided = positive + by_status.get(SuggestionStatus.REJECTED.value, 0)
    return SuggestionStatistics(
        saga_id=saga_id,
        total=sum(by_status.values()),
        by_status=by_status,
        by_type=by_type,
        average_confidence=round(float(average), 2) if average is not None else None,
        acceptance_rate=round(positive / decided, 4) if decided else None,
    )


def pairs_with_open_suggestions(db: Session, saga_id: str) -> set[tuple[int, int]]:
    """Unordered pairs that already hold a suggestion in any non-dismissed status."""

    rows = db.execute(
        select(RelationshipSuggestion.source_entity_id, RelationshipSuggestion.target_entity_id).where(
            RelationshipSuggestion.saga_id == saga_id,
            RelationshipSuggestion.status != SuggestionStatus.DISMISSED.value,
        )
    ).all()
    return {(min(source, target), max(source, target)) for source, target in rows}


def _validate_prediction(source_entity_id: int, target_entity_id: int, prediction: Prediction) -> None:
    if source_entity_id == target_entity_id:
        raise ValidationError("Suggestion source and target must differ")
    if not 0.0 <= prediction.confidence <= 100.0:
        raise ValidationError(f"Confidence out of range: {prediction.confidence}")
    if not 0 <= prediction.strength <= 100:
        raise ValidationError(f"Strength out of range: {prediction.strength}")
    if not 0.0 <= prediction.priority_score <= 100.0:
        raise ValidationError(f"Priority out of range: {prediction.priority_score}")
    if not prediction.suggested_type.strip():
        raise ValidationError("Suggested type must be non-empty")


def _find_existing(
    db: Session,
    saga_id: str,
    source_entity_id: int,
    target_entity_id: int,
    suggested_type: str,
) -> RelationshipSuggestion | None:
    return db.scalar(
        select(RelationshipSuggestion).where(
            RelationshipSuggestion.saga_id == saga_id,
            RelationshipSuggestion.source_entity_id == source_entity_id,
            RelationshipSuggestion.target_entity_id == target_entity_id,
            RelationshipSuggestion.suggested_type == suggested_type,
        )
    )


def _entity_names(db: Session, entity_ids: list[int]) -> dict[int, str]:
    rows = db.execute(select(SagaEntity.id, SagaEntity.canonical_name).where(SagaEntity.id.in_(entity_ids))).all()
    return {entity_id: name for entity_id, name in rows}


def _list_item(suggestion: RelationshipSuggestion, source_name: str, target_name: str) -> SuggestionListItem:
    return SuggestionListItem(
        id=suggestion.id,
        saga_id=suggestion.saga_id,
        source_entity_id=suggestion.source_entity_id,
        target_entity_id=suggestion.target_entity_id,
        suggested_type=suggestion.suggested_type,
        confidence=suggestion.confidence,
        strength=suggestion.strength,
        priority_score=suggestion.priority_score,
        reasoning=suggestion.reasoning,
        suggestion_method=suggestion.suggestion_method,
        feature_set_version=suggestion.feature_set_version,
        status=suggestion.status,
        created_relationship_id=suggestion.created_relationship_id,
        actioned_at=suggestion.actioned_at,
        created_at=suggestion.created_at,
        updated_at=suggestion.updated_at,
        source_entity_name=source_name,
        target_entity_name=target_name,
    )


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
