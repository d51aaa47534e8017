"""Integration tests for pair feature extraction."""

from __future__ import annotations

import math
import threading
import unittest

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from saga_suggestions.errors import NotFoundError, ValidationError
from saga_suggestions.models.base import Base
from saga_suggestions.prediction.extractor import FeatureExtractor
from saga_suggestions.prediction.features import FeatureType, FeatureVector
from saga_suggestions.services.entity_store import SqlEntityStore
from saga_builders import add_entity, add_fragment, add_relationship, clear_all, seed_rebellion


class _FixedOracle:
    def __init__(self, score: float) -> None:
        self.score = score

    def similarity(self, left_text: str, right_text: str) -> float:
        return self.score


class _BlockingOracle:
    def __init__(self) -> None:
        self.release = threading.Event()

    def similarity(self, left_text: str, right_text: str) -> float:
        self.release.wait(timeout=5)
        return 0.9


class _BrokenOracle:
    def similarity(self, left_text: str, right_text: str) -> float:
        raise OSError("embedding backend unreachable")


class FeatureVectorTests(unittest.TestCase):
    def test_vector_orders_features_and_rejects_out_of_range_values(self) -> None:
        vector = FeatureVector.from_values({"shared_faction": 1.0, FeatureType.CO_OCCURRENCE: 0.4})

        self.assertEqual(
            [feature.feature_type for feature in vector],
            [FeatureType.CO_OCCURRENCE, FeatureType.SHARED_FACTION],
        )
        self.assertEqual(vector.version, "features.v1")
        self.assertIn(FeatureType.SHARED_FACTION, vector)
        self.assertIsNone(vector.get(FeatureType.SEMANTIC_SIMILARITY))
        with self.assertRaises(ValidationError):
            FeatureVector.from_values({"co_occurrence": 1.2})
        with self.assertRaises(ValidationError):
            FeatureVector.from_values({"eye_color": 0.5})
        with self.assertRaises(ValidationError):
            FeatureVector.from_values({"co_occurrence": float("nan")})


class FeatureExtractorTests(unittest.TestCase):
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
        self.entities = seed_rebellion(self.db, "saga-1")
        self.store = SqlEntityStore(self.db)

    def tearDown(self) -> None:
        self.db.close()

    def test_extracts_every_structural_feature_for_a_pair(self) -> None:
        luke = self.entities["luke"]
        obi_wan = self.entities["obi_wan"]

        vector = FeatureExtractor(self.store).extract("saga-1", luke.id, obi_wan.id)

        self.assertAlmostEqual(vector.get(FeatureType.CO_OCCURRENCE), 2 / 3)
        self.assertAlmostEqual(vector.get(FeatureType.TIMELINE_PROXIMITY), 0.2)
        self.assertEqual(vector.get(FeatureType.ATTRIBUTE_SIMILARITY), 0.0)
        self.assertEqual(vector.get(FeatureType.SHARED_LOCATION), 0.0)
        self.assertEqual(vector.get(FeatureType.SHARED_FACTION), 1.0)
        self.assertAlmostEqual(vector.get(FeatureType.NETWORK_CENTRALITY), 0.25)
        self.assertAlmostEqual(vector.get(FeatureType.MENTION_FREQUENCY), math.log1p(1) / math.log1p(10))
        self.assertNotIn(FeatureType.SEMANTIC_SIMILARITY, vector)
        for feature in vector:
            self.assertGreaterEqual(feature.value, 0.0)
            self.assertLessEqual(feature.value, 1.0)

    def test_enemy_factions_do_not_count_as_shared_membership(self) -> None:
        luke = self.entities["luke"]
        vader = self.entities["vader"]
        extractor = FeatureExtractor(self.store)

        vector = extractor.extract("saga-1", luke.id, vader.id)
        signals = extractor.pair_signals("saga-1", luke.id, vader.id)

        self.assertEqual(vector.get(FeatureType.SHARED_FACTION), 0.0)
        self.assertTrue(signals.opposing_factions)
        self.assertEqual(signals.source_name, "Luke Skywalker")

    def test_features_without_inputs_are_omitted(self) -> None:
        drifter = add_entity(self.db, "saga-1", "Nameless Drifter")
        hermit = add_entity(self.db, "saga-1", "Hidden Hermit")
        self.db.commit()

        vector = FeatureExtractor(self.store).extract("saga-1", drifter.id, hermit.id)

        self.assertNotIn(FeatureType.CO_OCCURRENCE, vector)
        self.assertNotIn(FeatureType.TIMELINE_PROXIMITY, vector)
        self.assertNotIn(FeatureType.ATTRIBUTE_SIMILARITY, vector)
        self.assertNotIn(FeatureType.MENTION_FREQUENCY, vector)
        self.assertEqual(vector.get(FeatureType.SHARED_FACTION), 0.0)
        self.assertEqual(vector.get(FeatureType.NETWORK_CENTRALITY), 0.0)

    def test_zero_timeline_span_means_full_proximity(self) -> None:
        clear_all(self.db)
        first = add_entity(self.db, "saga-2", "Twin One", timeline_anchor=4.0)
        second = add_entity(self.db, "saga-2", "Twin Two", timeline_anchor=4.0)
        self.db.commit()

        vector = FeatureExtractor(self.store).extract("saga-2", first.id, second.id)

        self.assertEqual(vector.get(FeatureType.TIMELINE_PROXIMITY), 1.0)

    def test_shared_location_and_attribute_overlap(self) -> None:
        clear_all(self.db)
        cantina = add_entity(self.db, "saga-3", "Mos Eisley Cantina", "location")
        han = add_entity(self.db, "saga-3", "Han Solo", attributes={"Home World": "Corellia", "rank": "captain"})
        chewie = add_entity(self.db, "saga-3", "Chewbacca", attributes={"home_world": "corellia", "species": "wookiee"})
        add_relationship(self.db, "saga-3", han, cantina, "visits")
        add_relationship(self.db, "saga-3", chewie, cantina, "visits")
        add_fragment(self.db, "saga-3", "Han and Chewie drink.", [han, chewie])
        self.db.commit()

        vector = FeatureExtractor(self.store).extract("saga-3", han.id, chewie.id)

        self.assertEqual(vector.get(FeatureType.SHARED_LOCATION), 1.0)
        self.assertAlmostEqual(vector.get(FeatureType.ATTRIBUTE_SIMILARITY), 1 / 3)
        self.assertEqual(vector.get(FeatureType.CO_OCCURRENCE), 1.0)

    def test_mention_frequency_saturates_at_cap(self) -> None:
        clear_all(self.db)
        chronicler = add_entity(self.db, "saga-4", "Chronicler", description=" ".join(["Yoda said."] * 12))
        yoda = add_entity(self.db, "saga-4", "Yoda")
        self.db.commit()

        vector = FeatureExtractor(self.store).extract("saga-4", chronicler.id, yoda.id)

        self.assertEqual(vector.get(FeatureType.MENTION_FREQUENCY), 1.0)

    def test_invalid_pairs_raise_typed_errors(self) -> None:
        luke = self.entities["luke"]
        stranger = add_entity(self.db, "saga-other", "Stranger")
        self.db.commit()
        extractor = FeatureExtractor(self.store)

        with self.assertRaises(ValidationError):
            extractor.extract("saga-1", luke.id, luke.id)
        with self.assertRaises(NotFoundError):
            extractor.extract("saga-1", luke.id, stranger.id)
        with self.assertRaises(NotFoundError):
            extractor.extract("saga-1", luke.id, 999_999)

    def test_semantic_similarity_comes_from_the_oracle(self) -> None:
        luke = self.entities["luke"]
        obi_wan = self.entities["obi_wan"]

        vector = FeatureExtractor(self.store, oracle=_FixedOracle(0.73)).extract("saga-1", luke.id, obi_wan.id)

        self.assertEqual(vector.get(FeatureType.SEMANTIC_SIMILARITY), 0.73)

    def test_oracle_timeout_omits_only_the_semantic_feature(self) -> None:
        luke = self.entities["luke"]
        obi_wan = self.entities["obi_wan"]
        oracle = _BlockingOracle()
        try:
            slow = FeatureExtractor(self.store, oracle=oracle, oracle_timeout_seconds=0.05).extract(
                "saga-1", luke.id, obi_wan.id
            )
        finally:
            oracle.release.set()
        without_oracle = FeatureExtractor(self.store).extract("saga-1", luke.id, obi_wan.id)

        self.assertNotIn(FeatureType.SEMANTIC_SIMILARITY, slow)
        self.assertEqual(slow.as_dict(), without_oracle.as_dict())

    def test_oracle_failure_omits_the_semantic_feature(self) -> None:
        luke = self.entities["luke"]
        obi_wan = self.entities["obi_wan"]

        vector = FeatureExtractor(self.store, oracle=_BrokenOracle()).extract("saga-1", luke.id, obi_wan.id)

        self.assertNotIn(FeatureType.SEMANTIC_SIMILARITY, vector)
        self.assertEqual(len(vector), 7)


if __name__ == "__main__":
    unittest.main()
