"""Online weight learning from suggestion feedback."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from time import perf_counter

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from saga_suggestions.config import EngineConfig, get_engine_config
from saga_suggestions.errors import ConflictError
from saga_suggestions.models import ANY_RELATIONSHIP_TYPE, GLOBAL_SCOPE, LearningWeight, SuggestionFeedback
from saga_suggestions.models.statuses import FeedbackAction
from saga_suggestions.prediction.features import FeatureType
from saga_suggestions.prediction.similarity import type_match_similarity
from saga_suggestions.schemas.learning import FeatureWeightRead, LearningResetResult, LearningRunResult, LearningStats

logger = logging.getLogger(__name__)

HIGH_CONFIDENCE_CUT = 70.0
_MAX_ATTEMPTS = 5
_POSITIVE_ACTIONS = (FeedbackAction.ACCEPT.value, FeedbackAction.MODIFY.value)


def feedback_error(action: FeedbackAction, suggested_type: str, corrected_type: str | None) -> float:
    """Signed learning signal for one decision."""

    if action == FeedbackAction.ACCEPT:
        return 1.0
    if action == FeedbackAction.REJECT:
        return -1.0
    if action == FeedbackAction.MODIFY:
        return 0.5 * type_match_similarity(suggested_type, corrected_type)
    return 0.0


def apply_update(weight: float, learning_rate: float, error: float, value: float) -> float:
    return max(0.0, min(1.0, weight + learning_rate * error * value))


def load_effective_weights(db: Session, saga_id: str, min_samples: int) -> dict[FeatureType, float]:
    """Weights used for scoring: graduated saga row, then global row, then 1.0."""

    rows = db.scalars(
        select(LearningWeight).where(
            LearningWeight.scope_key.in_([saga_id, GLOBAL_SCOPE]),
            LearningWeight.relationship_type == ANY_RELATIONSHIP_TYPE,
        )
    ).all()
    saga_rows = {row.feature_type: row for row in rows if row.scope_key == saga_id}
    global_rows = {row.feature_type: row for row in rows if row.scope_key == GLOBAL_SCOPE}

    weights: dict[FeatureType, float] = {}
    for feature_type in FeatureType:
        saga_row = saga_rows.get(feature_type.value)
        if saga_row is not None and saga_row.sample_count >= min_samples:
            weights[feature_type] = saga_row.weight
        elif feature_type.value in global_rows:
            weights[feature_type] = global_rows[feature_type.value].weight
        else:
            weights[feature_type] = 1.0
    return weights


def process_pending_feedback(
    db: Session,
    saga_id: str,
    config: EngineConfig | None = None,
) -> LearningRunResult:
    """Apply every unprocessed feedback event of a saga in arrival order.

    Each event is claimed, applied and committed on its own. A version conflict
    on a weight row rolls the event back and retries it against fresh rows.
    """

    active = config or get_engine_config()
    total_started = perf_counter()
    feedback_ids = list(
        db.scalars(
            select(SuggestionFeedback.id)
            .where(SuggestionFeedback.saga_id == saga_id, SuggestionFeedback.processed_at.is_(None))
            .order_by(SuggestionFeedback.id.asc())
        ).all()
    )
    db.rollback()

    events_processed = 0
    weights_updated = 0
    for feedback_id in feedback_ids:
        for attempt in range(1, _MAX_ATTEMPTS + 1):
            try:
                touched = _apply_feedback_event(db, feedback_id, active)
                db.commit()
            except StaleDataError:
                db.rollback()
                logger.info(
                    "learning.weight_conflict saga_id=%s feedback_id=%s attempt=%d",
                    saga_id,
                    feedback_id,
                    attempt,
                )
                continue
            except Exception:
                db.rollback()
                raise
            if touched is not None:
                events_processed += 1
                weights_updated += touched
            break
        else:
            raise ConflictError(f"Learning could not apply feedback {feedback_id} after {_MAX_ATTEMPTS} attempts")

    accuracy = _refresh_accuracy(db, saga_id)
    db.commit()
    logger.info(
        "learning.run_timing saga_id=%s events=%d weights_updated=%d accuracy=%s total_ms=%.2f",
        saga_id,
        events_processed,
        weights_updated,
        accuracy,
        (perf_counter() - total_started) * 1000.0,
    )
    return LearningRunResult(
        saga_id=saga_id,
        events_processed=events_processed,
        weights_updated=weights_updated,
        accuracy=accuracy,
    )


def get_learning_stats(db: Session, saga_id: str, config: EngineConfig | None = None) -> LearningStats:
    """Sample counts, current weights and decision quality for one saga."""

    active = config or get_engine_config()
    rows = db.scalars(
        select(LearningWeight).where(
            LearningWeight.scope_key.in_([saga_id, GLOBAL_SCOPE]),
            LearningWeight.relationship_type == ANY_RELATIONSHIP_TYPE,
        )
    ).all()
    saga_rows = {row.feature_type: row for row in rows if row.scope_key == saga_id}
    global_rows = {row.feature_type: row for row in rows if row.scope_key == GLOBAL_SCOPE}

    weights: list[FeatureWeightRead] = []
    for feature_type in FeatureType:
        saga_row = saga_rows.get(feature_type.value)
        global_row = global_rows.get(feature_type.value)
        if saga_row is not None and saga_row.sample_count >= active.learning_min_samples:
            chosen, scope = saga_row, "saga"
        elif global_row is not None:
            chosen, scope = global_row, "global"
        else:
            chosen, scope = None, "default"
        weights.append(
            FeatureWeightRead(
                feature_type=feature_type.value,
                weight=chosen.weight if chosen is not None else 1.0,
                scope=scope,
                sample_count=saga_row.sample_count if saga_row is not None else 0,
                last_updated=chosen.last_updated if chosen is not None else None,
            )
        )

    processed = int(
        db.scalar(
            select(func.count(SuggestionFeedback.id)).where(
                SuggestionFeedback.saga_id == saga_id,
                SuggestionFeedback.processed_at.is_not(None),
            )
        )
        or 0
    )
    pending = int(
        db.scalar(
            select(func.count(SuggestionFeedback.id)).where(
                SuggestionFeedback.saga_id == saga_id,
                SuggestionFeedback.processed_at.is_(None),
            )
        )
        or 0
    )
    # A saga counts as graduated only when every feature it has samples for
    # scores from its own row, matching load_effective_weights.
    graduated_features = sorted(
        row.feature_type for row in saga_rows.values() if row.sample_count >= active.learning_min_samples
    )
    if saga_rows:
        fewest = min(row.sample_count for row in saga_rows.values())
        samples_needed = max(0, active.learning_min_samples - fewest)
    else:
        samples_needed = active.learning_min_samples
    precision, recall, f1_score = _decision_quality(db, saga_id)
    return LearningStats(
        saga_id=saga_id,
        graduated=bool(saga_rows) and len(graduated_features) == len(saga_rows),
        graduated_features=graduated_features,
        sample_count=processed,
        samples_needed=samples_needed,
        pending_feedback=pending,
        accuracy=_accuracy(db, saga_id),
        precision=precision,
        recall=recall,
        f1_score=f1_score,
        weights=weights,
    )


def reset_learning(db: Session, saga_id: str) -> LearningResetResult:
    """Drop a saga's learned weights so scoring falls back to the global pool."""

    result = db.execute(delete(LearningWeight).where(LearningWeight.scope_key == saga_id))
    db.commit()
    deleted = int(result.rowcount or 0)
    logger.info("learning.reset saga_id=%s weights_deleted=%d", saga_id, deleted)
    return LearningResetResult(saga_id=saga_id, weights_deleted=deleted)


def _apply_feedback_event(db: Session, feedback_id: int, config: EngineConfig) -> int | None:
    claimed = db.execute(
        update(SuggestionFeedback)
        .where(SuggestionFeedback.id == feedback_id, SuggestionFeedback.processed_at.is_(None))
        .values(processed_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount != 1:
        return None
    feedback = db.get(SuggestionFeedback, feedback_id, populate_existing=True)
    if feedback is None:
        return None

    error = feedback_error(FeedbackAction(feedback.action), feedback.suggested_type, feedback.corrected_type)
    touched = 0
    for feature_key, raw_value in sorted((feedback.features_at_decision_json or {}).items()):
        try:
            feature_type = FeatureType(feature_key)
            value = max(0.0, min(1.0, float(raw_value)))
        except (TypeError, ValueError):
            logger.debug("learning.snapshot_skipped feedback_id=%s feature=%s", feedback_id, feature_key)
            continue

        saga_row = _get_or_create_weight(db, feedback.saga_id, feature_type)
        global_row = _get_or_create_weight(db, GLOBAL_SCOPE, feature_type)
        was_graduated = saga_row.sample_count >= config.learning_min_samples
        saga_row.sample_count += 1
        if saga_row.sample_count >= config.learning_min_samples:
            if not was_graduated:
                saga_row.weight = global_row.weight
            target = saga_row
        else:
            global_row.sample_count += 1
            target = global_row
        target.weight = apply_update(target.weight, config.learning_rate, error, value)
        touched += 1

    db.flush()
    return touched


def _get_or_create_weight(db: Session, scope_key: str, feature_type: FeatureType) -> LearningWeight:
    stmt = select(LearningWeight).where(
        LearningWeight.scope_key == scope_key,
        LearningWeight.feature_type == feature_type.value,
        LearningWeight.relationship_type == ANY_RELATIONSHIP_TYPE,
    )
    row = db.scalar(stmt)
    if row is not None:
        return row
    row = LearningWeight(
        scope_key=scope_key,
        feature_type=feature_type.value,
        relationship_type=ANY_RELATIONSHIP_TYPE,
        weight=1.0,
        sample_count=0,
    )
    try:
        with db.begin_nested():
            db.add(row)
            db.flush()
    except IntegrityError:
        existing = db.scalar(stmt)
        if existing is None:
            raise
        return existing
    return row


def _refresh_accuracy(db: Session, saga_id: str) -> float | None:
    accuracy = _accuracy(db, saga_id)
    if accuracy is not None:
        for row in db.scalars(select(LearningWeight).where(LearningWeight.scope_key == saga_id)).all():
            row.accuracy_score = accuracy
    return accuracy


def _accuracy(db: Session, saga_id: str) -> float | None:
    counts = dict(
        db.execute(
            select(SuggestionFeedback.action, func.count(SuggestionFeedback.id))
            .where(SuggestionFeedback.saga_id == saga_id)
            .group_by(SuggestionFeedback.action)
        ).all()
    )
    accepted = sum(int(counts.get(action, 0)) for action in _POSITIVE_ACTIONS)
    rejected = int(counts.get(FeedbackAction.REJECT.value, 0))
    if accepted + rejected == 0:
        return None
    return round(accepted / (accepted + rejected), 4)


def _decision_quality(db: Session, saga_id: str) -> tuple[float | None, float | None, float | None]:
    rows = db.execute(
        select(SuggestionFeedback.action, SuggestionFeedback.confidence_at_decision).where(
            SuggestionFeedback.saga_id == saga_id,
            SuggestionFeedback.action != FeedbackAction.DISMISS.value,
        )
    ).all()
    if not rows:
        return None, None, None
    true_positives = false_positives = false_negatives = 0
    for action, confidence in rows:
        high_confidence = confidence >= HIGH_CONFIDENCE_CUT
        accepted = action in _POSITIVE_ACTIONS
        if high_confidence and accepted:
            true_positives += 1
        elif high_confidence:
            false_positives += 1
        elif accepted:
            false_negatives += 1
    precision = true_positives / (true_positives + false_positives) if true_positives + false_positives else 0.0
    recall = true_positives / (true_positives + false_negatives) if true_positives + false_negatives else 0.0
    f1_score = 2 * precision * recall / (precision + recall) if precision + recall else 0.0
    return round(precision, 4), round(recall, 4), round(f1_score, 4)
