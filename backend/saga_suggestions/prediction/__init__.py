"""Feature extraction and scoring for relationship suggestions."""

from saga_suggestions.prediction.extractor import FeatureExtractor, PairSignals, SagaContext
from saga_suggestions.prediction.features import FEATURE_SET_VERSION, Feature, FeatureType, FeatureVector
from saga_suggestions.prediction.scorer import Prediction, RelationshipScorer, raw_confidence, score_confidence

__all__ = [
    "FEATURE_SET_VERSION",
    "Feature",
    "FeatureExtractor",
    "FeatureType",
    "FeatureVector",
    "PairSignals",
    "Prediction",
    "RelationshipScorer",
    "SagaContext",
    "raw_confidence",
    "score_confidence",
]
