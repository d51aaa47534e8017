"""Confidence scoring and relationship type prediction."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Mapping

from saga_suggestions.config import EngineConfig
from saga_suggestions.errors import ValidationError
from saga_suggestions.prediction.extractor import PairSignals
from saga_suggestions.prediction.features import FeatureType, FeatureVector
from saga_suggestions.prediction.similarity import normalize_label, normalize_value

DEFAULT_RELATIONSHIP_TYPE = "associated"
FAMILY_MARKER_KEYS = ("family", "house", "surname", "lineage", "clan")
MENTOR_AGE_GAP = 15.0

STRENGTH_MULTIPLIERS = {
    "family": 1.0,
    "enemy": 0.9,
    "mentor": 0.85,
    "ally": 0.8,
    DEFAULT_RELATIONSHIP_TYPE: 0.6,
}
_DEFAULT_MULTIPLIER = 0.6

_HIGH_VALUE = 0.7
_HYBRID_MIN_FEATURES = 3
_METHOD_BY_FEATURE = {
    FeatureType.SEMANTIC_SIMILARITY: "semantic",
    FeatureType.TIMELINE_PROXIMITY: "timeline",
    FeatureType.ATTRIBUTE_SIMILARITY: "attribute",
}
_METHOD_BOOST = {"hybrid": 10.0, "semantic": 5.0, "content": 3.0, "timeline": 2.0, "attribute": 1.0}
_IMPORTANT_TYPES = frozenset({"family", "mentor", "enemy", "ally"})

_REASON_MIN_VALUE = 0.6
_REASON_TOP_N = 3
_REASON_TEMPLATES = {
    FeatureType.CO_OCCURRENCE: "appear together frequently in content ({pct}%)",
    FeatureType.TIMELINE_PROXIMITY: "are close in timeline events ({pct}%)",
    FeatureType.ATTRIBUTE_SIMILARITY: "have similar attributes ({pct}%)",
    FeatureType.SHARED_FACTION: "belong to the same faction",
    FeatureType.SHARED_LOCATION: "share common locations",
    FeatureType.MENTION_FREQUENCY: "are mentioned in each other's descriptions ({pct}%)",
    FeatureType.SEMANTIC_SIMILARITY: "have semantically similar descriptions ({pct}%)",
}


@dataclass(frozen=True, slots=True)
class Prediction:
    """Everything the scorer decides for one candidate pair."""

    suggested_type: str
    confidence: float
    strength: int
    suggestion_method: str
    priority_score: float
    reasoning: str
    auto_accept: bool
    weights_used: dict[str, float] = field(default_factory=dict)


def raw_confidence(vector: FeatureVector, weights: Mapping[FeatureType, float] | None = None) -> float:
    """Weighted mean of present features scaled to [0, 100], unrounded."""

    active_weights = weights or {}
    total_weight = 0.0
    weighted_sum = 0.0
    for feature in vector:
        weight = float(active_weights.get(feature.feature_type, 1.0))
        if weight < 0.0:
            raise ValidationError(f"Negative weight for {feature.feature_type.value}")
        total_weight += weight
        weighted_sum += feature.value * weight
    if total_weight <= 0.0:
        return 0.0
    return max(0.0, min(100.0, 100.0 * weighted_sum / total_weight))


def score_confidence(vector: FeatureVector, weights: Mapping[FeatureType, float] | None = None) -> float:
    """Confidence as stored and displayed: rounded to 2 decimals."""

    return round(raw_confidence(vector, weights), 2)


def _numeric(value: object) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip())
    except (TypeError, ValueError):
        return None


def _attribute(attributes: Mapping[str, object], key: str) -> object | None:
    for raw_key, value in attributes.items():
        if normalize_label(str(raw_key)) == key:
            return value
    return None


def _is_enemy(vector: FeatureVector, signals: PairSignals) -> bool:
    return signals.opposing_factions


def _is_family(vector: FeatureVector, signals: PairSignals) -> bool:
    if (vector.get(FeatureType.TIMELINE_PROXIMITY) or 0.0) < 0.5:
        return False
    for key in FAMILY_MARKER_KEYS:
        left = _attribute(signals.source_attributes, key)
        right = _attribute(signals.target_attributes, key)
        if left is None or right is None:
            continue
        left_value = normalize_value(left)
        if left_value and left_value == normalize_value(right):
            return True
    return False


def _is_mentor(vector: FeatureVector, signals: PairSignals) -> bool:
    source_age = _numeric(_attribute(signals.source_attributes, "age"))
    target_age = _numeric(_attribute(signals.target_attributes, "age"))
    if source_age is None or target_age is None:
        return False
    if abs(source_age - target_age) < MENTOR_AGE_GAP:
        return False
    return (vector.get(FeatureType.SHARED_FACTION) or 0.0) >= 1.0 or (
        vector.get(FeatureType.CO_OCCURRENCE) or 0.0
    ) >= 0.5


def _is_ally(vector: FeatureVector, signals: PairSignals) -> bool:
    return (vector.get(FeatureType.SHARED_FACTION) or 0.0) >= 1.0 and (
        vector.get(FeatureType.CO_OCCURRENCE) or 0.0
    ) >= 0.5


TYPE_RULES: dict[str, Callable[[FeatureVector, PairSignals], bool]] = {
    "enemy": _is_enemy,
    "family": _is_family,
    "mentor": _is_mentor,
    "ally": _is_ally,
}


class RelationshipScorer:
    """Turns a feature vector and learned weights into a scored prediction."""

    def __init__(self, config: EngineConfig | None = None) -> None:
        self.config = config or EngineConfig()
        unknown = [name for name in self.config.type_rule_order if name not in TYPE_RULES]
        if unknown:
            raise ValidationError(f"Unknown relationship type rules: {', '.join(unknown)}")

    def predict_type(self, vector: FeatureVector, signals: PairSignals) -> str:
        for name in self.config.type_rule_order:
            if TYPE_RULES[name](vector, signals):
                return name
        return DEFAULT_RELATIONSHIP_TYPE

    def should_auto_accept(self, confidence: float) -> bool:
        """Decide on the unrounded confidence; 94.996 must not pass a threshold of 95."""

        # Drop float noise only, so 0.95 * 100 still meets 95.
        return self.config.auto_accept_enabled and round(confidence, 9) >= self.config.auto_accept_threshold

    def score(
        self,
        vector: FeatureVector,
        signals: PairSignals,
        weights: Mapping[FeatureType, float] | None = None,
    ) -> Prediction:
        active_weights = weights or {}
        exact_confidence = raw_confidence(vector, active_weights)
        confidence = round(exact_confidence, 2)
        suggested_type = self.predict_type(vector, signals)
        strength = compute_strength(confidence, suggested_type)
        method = suggestion_method(vector)
        return Prediction(
            suggested_type=suggested_type,
            confidence=confidence,
            strength=strength,
            suggestion_method=method,
            priority_score=priority_score(confidence, strength, method, suggested_type),
            reasoning=build_reasoning(signals.source_name, signals.target_name, vector, suggested_type),
            auto_accept=self.should_auto_accept(exact_confidence),
            weights_used={
                feature.feature_type.value: float(active_weights.get(feature.feature_type, 1.0)) for feature in vector
            },
        )


def compute_strength(confidence: float, relationship_type: str) -> int:
    multiplier = STRENGTH_MULTIPLIERS.get(normalize_label(relationship_type), _DEFAULT_MULTIPLIER)
    return max(0, min(100, int(round(confidence * multiplier))))


def suggestion_method(vector: FeatureVector) -> str:
    """hybrid when several features are strong, else the family of the strongest feature."""

    if sum(1 for feature in vector if feature.value >= _HIGH_VALUE) >= _HYBRID_MIN_FEATURES:
        return "hybrid"
    if vector.is_empty:
        return "content"
    strongest = max(vector, key=lambda feature: feature.value)
    return _METHOD_BY_FEATURE.get(strongest.feature_type, "content")


def priority_score(confidence: float, strength: int, method: str, relationship_type: str) -> float:
    score = confidence
    if strength >= 80:
        score += 10.0
    elif strength >= 60:
        score += 5.0
    score += _METHOD_BOOST.get(method, 0.0)
    if normalize_label(relationship_type) in _IMPORTANT_TYPES:
        score += 5.0
    return round(min(score, 100.0), 2)


def build_reasoning(source_name: str, target_name: str, vector: FeatureVector, relationship_type: str) -> str:
    ranked = sorted(vector, key=lambda feature: feature.value, reverse=True)[:_REASON_TOP_N]
    reasons = [
        _REASON_TEMPLATES[feature.feature_type].format(pct=int(round(feature.value * 100)))
        for feature in ranked
        if feature.value >= _REASON_MIN_VALUE and feature.feature_type in _REASON_TEMPLATES
    ]
    if not reasons:
        return f"{source_name} and {target_name} may be connected as {relationship_type}"
    return f"{source_name} and {target_name} {', '.join(reasons)}, suggesting a {relationship_type} relationship"
