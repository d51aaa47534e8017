"""Versioned feature vocabulary and immutable feature vectors."""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Mapping

from saga_suggestions.errors import ValidationError

FEATURE_SET_VERSION = "features.v1"


class FeatureType(str, Enum):
    """Pair features known to the `features.v1` extractor."""

    CO_OCCURRENCE = "co_occurrence"
    TIMELINE_PROXIMITY = "timeline_proximity"
    ATTRIBUTE_SIMILARITY = "attribute_similarity"
    SHARED_LOCATION = "shared_location"
    SHARED_FACTION = "shared_faction"
    NETWORK_CENTRALITY = "network_centrality"
    MENTION_FREQUENCY = "mention_frequency"
    SEMANTIC_SIMILARITY = "semantic_similarity"

    @classmethod
    def parse(cls, value: str) -> "FeatureType":
        try:
            return cls(value)
        except ValueError as exc:
            raise ValidationError(f"Unknown feature type: {value}") from exc


FEATURE_ORDER: tuple[FeatureType, ...] = tuple(FeatureType)
_FEATURE_RANK = {feature_type: index for index, feature_type in enumerate(FEATURE_ORDER)}


@dataclass(frozen=True, slots=True)
class Feature:
    """One normalized feature measurement."""

    feature_type: FeatureType
    value: float

    def __post_init__(self) -> None:
        if not isinstance(self.value, (int, float)) or math.isnan(self.value):
            raise ValidationError(f"Feature {self.feature_type.value} has a non-numeric value")
        if self.value < 0.0 or self.value > 1.0:
            raise ValidationError(f"Feature {self.feature_type.value} out of range: {self.value}")


@dataclass(frozen=True, slots=True)
class FeatureVector:
    """Ordered, immutable set of present features for one entity pair."""

    features: tuple[Feature, ...] = ()
    version: str = FEATURE_SET_VERSION

    @classmethod
    def from_values(
        cls,
        values: Mapping[FeatureType | str, float],
        *,
        version: str = FEATURE_SET_VERSION,
    ) -> "FeatureVector":
        parsed: dict[FeatureType, Feature] = {}
        for key, value in values.items():
            feature_type = key if isinstance(key, FeatureType) else FeatureType.parse(key)
            parsed[feature_type] = Feature(feature_type, float(value))
        ordered = sorted(parsed.values(), key=lambda feature: _FEATURE_RANK[feature.feature_type])
        return cls(features=tuple(ordered), version=version)

    def __iter__(self):
        return iter(self.features)

    def __len__(self) -> int:
        return len(self.features)

    def __contains__(self, feature_type: object) -> bool:
        return any(feature.feature_type == feature_type for feature in self.features)

    def get(self, feature_type: FeatureType, default: float | None = None) -> float | None:
        for feature in self.features:
            if feature.feature_type == feature_type:
                return feature.value
        return default

    def as_dict(self) -> dict[str, float]:
        return {feature.feature_type.value: feature.value for feature in self.features}

    @property
    def is_empty(self) -> bool:
        return not self.features

