"""Integration tests for online weight learning."""

from __future__ import annotations

import unittest

from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from saga_suggestions.config import EngineConfig
from saga_suggestions.models import GLOBAL_SCOPE, LearningWeight, SuggestionFeedback
from saga_suggestions.models.base import Base
from saga_suggestions.models.statuses import FeedbackAction
from saga_suggestions.prediction.features import FeatureType
from saga_suggestions.prediction.similarity import type_match_similarity
from saga_suggestions.services.learning import (
    apply_update,
    feedback_error,
    get_learning_stats,
    load_effective_weights,
    process_pending_feedback,
    reset_learning,
)
from saga_suggestions.services.suggestion_repository import upsert_suggestion
from saga_builders import add_entity, clear_all, make_prediction, make_vector

CONFIG = EngineConfig(learning_rate=0.1, learning_min_samples=3)


class LearningRuleTests(unittest.TestCase):
    def test_feedback_error_by_action(self) -> None:
        self.assertEqual(feedback_error(FeedbackAction.ACCEPT, "ally", None), 1.0)
        self.assertEqual(feedback_error(FeedbackAction.REJECT, "ally", None), -1.0)
        self.assertEqual(feedback_error(FeedbackAction.DISMISS, "ally", None), 0.0)
        self.assertEqual(feedback_error(FeedbackAction.MODIFY, "ally", "ally"), 0.5)
        self.assertEqual(feedback_error(FeedbackAction.MODIFY, "ally", "mentor"), 0.25)

    def test_type_match_similarity_groups(self) -> None:
        self.assertEqual(type_match_similarity("enemy", "Enemy"), 1.0)
        self.assertEqual(type_match_similarity("enemy", "rival"), 0.5)
        self.assertLess(type_match_similarity("enemy", "family"), 0.5)
        self.assertEqual(type_match_similarity("ally", None), 1.0)

    def test_update_is_clamped(self) -> None:
        self.assertEqual(apply_update(0.98, 0.1, 1.0, 1.0), 1.0)
        self.assertEqual(apply_update(0.02, 0.1, -1.0, 1.0), 0.0)
        self.assertEqual(apply_update(0.5, 0.1, -1.0, 0.0), 0.5)

    def test_synthetic_stream_converges_without_oscillation(self) -> None:
        weight = 0.3
        history: list[float] = []
        for step in range(200):
            accepted = step % 2 == 0
            value = 1.0 if accepted else 0.0
            error = feedback_error(FeedbackAction.ACCEPT if accepted else FeedbackAction.REJECT, "ally", None)
            weight = apply_update(weight, 0.1, error, value)
            history.append(weight)

        crossed = next(index for index, value in enumerate(history) if value > 0.9)
        tail = history[crossed:]
        self.assertGreater(history[-1], 0.9)
        self.assertLess(max(tail) - min(tail), 0.05)
        self.assertTrue(all(abs(value - history[-1]) < 0.05 for value in history[crossed + 2 :]))


class LearningEngineTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.engine = create_engine(
            "sqlite+pysqlite:///:memory:",
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        cls.SessionLocal = sessionmaker(bind=cls.engine, autoflush=False, autocommit=False, future=True)
        Base.metadata.create_all(bind=cls.engine)

    @classmethod
    def tearDownClass(cls) -> None:
        Base.metadata.drop_all(bind=cls.engine)
        cls.engine.dispose()

    def setUp(self) -> None:
        self.db = self.SessionLocal()
        clear_all(self.db)
        source = add_entity(self.db, "saga-1", "Aragorn")
        target = add_entity(self.db, "saga-1", "Legolas")
        suggestion, _ = upsert_suggestion(self.db, "saga-1", source.id, target.id, make_prediction(), make_vector())
        self.db.commit()
        self.suggestion_id = suggestion.id

    def tearDown(self) -> None:
        self.db.close()

    def _feedback(
        self,
        action: str,
        features: dict[str, float],
        *,
        confidence: float = 60.0,
        saga_id: str = "saga-1",
        corrected_type: str | None = None,
    ) -> None:
        self.db.add(
            SuggestionFeedback(
                suggestion_id=self.suggestion_id,
                saga_id=saga_id,
                action=action,
                suggested_type="ally",
                corrected_type=corrected_type,
                confidence_at_decision=confidence,
                features_at_decision_json=features,
            )
        )
        self.db.commit()

    def _weight(self, scope_key: str, feature_type: str) -> LearningWeight | None:
        return self.db.scalar(
            select(LearningWeight).where(
                LearningWeight.scope_key == scope_key,
                LearningWeight.feature_type == feature_type,
            )
        )

    def test_updates_go_to_global_pool_until_saga_graduates(self) -> None:
        for _ in range(2):
            self._feedback("reject", {"co_occurrence": 1.0})
        process_pending_feedback(self.db, "saga-1", CONFIG)

        global_row = self._weight(GLOBAL_SCOPE, "co_occurrence")
        saga_row = self._weight("saga-1", "co_occurrence")
        self.assertAlmostEqual(global_row.weight, 0.8)
        self.assertEqual(global_row.sample_count, 2)
        self.assertEqual(saga_row.sample_count, 2)
        self.assertEqual(saga_row.weight, 1.0)
        self.assertAlmostEqual(load_effective_weights(self.db, "saga-1", 3)[FeatureType.CO_OCCURRENCE], 0.8)

        self._feedback("reject", {"co_occurrence": 1.0})
        process_pending_feedback(self.db, "saga-1", CONFIG)

        self.db.expire_all()
        global_row = self._weight(GLOBAL_SCOPE, "co_occurrence")
        saga_row = self._weight("saga-1", "co_occurrence")
        self.assertAlmostEqual(global_row.weight, 0.8)
        self.assertEqual(saga_row.sample_count, 3)
        self.assertAlmostEqual(saga_row.weight, 0.7)
        self.assertGreater(saga_row.version, 1)
        weights = load_effective_weights(self.db, "saga-1", 3)
        self.assertAlmostEqual(weights[FeatureType.CO_OCCURRENCE], 0.7)
        self.assertEqual(weights[FeatureType.SEMANTIC_SIMILARITY], 1.0)
        self.assertAlmostEqual(load_effective_weights(self.db, "saga-2", 3)[FeatureType.CO_OCCURRENCE], 0.8)

    def test_events_are_applied_once(self) -> None:
        self._feedback("reject", {"shared_faction": 1.0})

        first = process_pending_feedback(self.db, "saga-1", CONFIG)
        second = process_pending_feedback(self.db, "saga-1", CONFIG)

        self.assertEqual(first.events_processed, 1)
        self.assertEqual(first.weights_updated, 1)
        self.assertEqual(second.events_processed, 0)
        self.assertAlmostEqual(self._weight(GLOBAL_SCOPE, "shared_faction").weight, 0.9)
        processed = self.db.scalars(select(SuggestionFeedback.processed_at)).all()
        self.assertTrue(all(value is not None for value in processed))

    def test_unknown_snapshot_keys_are_skipped(self) -> None:
        self._feedback("reject", {"eye_color": 1.0, "co_occurrence": 0.5})

        result = process_pending_feedback(self.db, "saga-1", CONFIG)

        self.assertEqual(result.weights_updated, 1)
        self.assertAlmostEqual(self._weight(GLOBAL_SCOPE, "co_occurrence").weight, 0.95)

    def test_feedback_stream_drives_weight_above_threshold(self) -> None:
        self.db.add(
            LearningWeight(
                scope_key=GLOBAL_SCOPE,
                feature_type="co_occurrence",
                relationship_type="*",
                weight=0.2,
                sample_count=0,
            )
        )
        self.db.commit()

        history: list[float] = []
        for step in range(200):
            accepted = step % 2 == 0
            self._feedback(
                "accept" if accepted else "reject",
                {"co_occurrence": 1.0 if accepted else 0.0, "timeline_proximity": 0.5},
            )
            process_pending_feedback(self.db, "saga-1", CONFIG)
            history.append(load_effective_weights(self.db, "saga-1", 3)[FeatureType.CO_OCCURRENCE])

        crossed = next(index for index, value in enumerate(history) if value > 0.9)
        self.assertLess(crossed, 40)
        self.assertTrue(all(abs(value - history[-1]) < 0.05 for value in history[crossed + 2 :]))
        self.assertGreater(history[-1], 0.9)

    def test_stats_report_quality_and_progress(self) -> None:
        self._feedback("accept", {"co_occurrence": 0.9}, confidence=80.0)
        self._feedback("reject", {"co_occurrence": 0.9}, confidence=80.0)
        self._feedback("modify", {"co_occurrence": 0.4}, confidence=50.0, corrected_type="mentor")
        self._feedback("reject", {"co_occurrence": 0.4}, confidence=50.0)
        self._feedback("dismiss", {"co_occurrence": 0.4}, confidence=90.0)
        process_pending_feedback(self.db, "saga-1", CONFIG)
        self._feedback("accept", {"co_occurrence": 0.4}, confidence=90.0)

        stats = get_learning_stats(self.db, "saga-1", CONFIG)

        self.assertTrue(stats.graduated)
        self.assertEqual(stats.sample_count, 5)
        self.assertEqual(stats.samples_needed, 0)
        self.assertEqual(stats.pending_feedback, 1)
        self.assertEqual(stats.accuracy, 0.6)
        self.assertEqual(stats.precision, 0.6667)
        self.assertEqual(stats.recall, 0.6667)
        self.assertEqual(stats.f1_score, 0.6667)
        by_feature = {weight.feature_type: weight for weight in stats.weights}
        self.assertEqual(by_feature["co_occurrence"].scope, "saga")
        self.assertEqual(by_feature["semantic_similarity"].scope, "default")
        self.assertEqual(len(stats.weights), len(FeatureType))

    def test_stats_graduation_follows_each_feature_row(self) -> None:
        for _ in range(3):
            self._feedback("accept", {"co_occurrence": 0.9})
        self._feedback("accept", {"co_occurrence": 0.9, "timeline_proximity": 0.5})
        process_pending_feedback(self.db, "saga-1", CONFIG)

        stats = get_learning_stats(self.db, "saga-1", CONFIG)

        self.assertEqual(stats.sample_count, 4)
        self.assertFalse(stats.graduated)
        self.assertEqual(stats.graduated_features, ["co_occurrence"])
        self.assertEqual(stats.samples_needed, 2)
        by_feature = {weight.feature_type: weight for weight in stats.weights}
        self.assertEqual(by_feature["co_occurrence"].scope, "saga")
        self.assertEqual(by_feature["timeline_proximity"].scope, "global")
        self.assertEqual(by_feature["timeline_proximity"].sample_count, 1)

    def test_reset_falls_back_to_global_weights(self) -> None:
        for _ in range(4):
            self._feedback("reject", {"co_occurrence": 1.0})
        process_pending_feedback(self.db, "saga-1", CONFIG)
        self.assertAlmostEqual(load_effective_weights(self.db, "saga-1", 3)[FeatureType.CO_OCCURRENCE], 0.6)

        result = reset_learning(self.db, "saga-1")

        self.assertEqual(result.weights_deleted, 1)
        self.assertIsNone(self._weight("saga-1", "co_occurrence"))
        self.assertAlmostEqual(load_effective_weights(self.db, "saga-1", 3)[FeatureType.CO_OCCURRENCE], 0.8)

    def test_empty_saga_stats(self) -> None:
        stats = get_learning_stats(self.db, "saga-empty", CONFIG)

        self.assertFalse(stats.graduated)
        self.assertEqual(stats.samples_needed, 3)
        self.assertIsNone(stats.accuracy)
        self.assertIsNone(stats.precision)
        self.assertTrue(all(weight.weight == 1.0 for weight in stats.weights))


if __name__ == "__main__":
    unittest.main()
