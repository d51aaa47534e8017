"""Pair feature extraction over an entity store."""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field

from saga_suggestions.errors import NotFoundError, ValidationError
from saga_suggestions.prediction.features import FeatureType, FeatureVector
from saga_suggestions.prediction.oracle import SemanticOracle, similarity_with_timeout
from saga_suggestions.prediction.similarity import ADVERSARIAL_TYPES, normalize_label, normalize_value
from saga_suggestions.services.entity_store import EntityRecord, EntityStore, RelationshipRecord

logger = logging.getLogger(__name__)

MENTION_CAP = 10
LOCATION_TYPE = "location"
FACTION_TYPE = "faction"
ADVERSARIAL_RELATIONSHIP_TYPES = frozenset(ADVERSARIAL_TYPES | {"opposes", "at war with"})


@dataclass(slots=True)
class SagaContext:
    """Saga-wide data loaded once and shared by every pair in a batch."""

    saga_id: str
    entities: dict[int, EntityRecord]
    relationships: list[RelationshipRecord]
    neighbors: dict[int, set[int]] = field(default_factory=dict)
    edges_by_entity: dict[int, list[RelationshipRecord]] = field(default_factory=dict)
    timeline_span: float | None = None
    fragment_ids: dict[int, set[int]] = field(default_factory=dict)

    @classmethod
    def build(cls, saga_id: str, entities: list[EntityRecord], relationships: list[RelationshipRecord]) -> "SagaContext":
        context = cls(
            saga_id=saga_id,
            entities={entity.id: entity for entity in entities},
            relationships=relationships,
        )
        for edge in relationships:
            if edge.source_entity_id == edge.target_entity_id:
                continue
            context.neighbors.setdefault(edge.source_entity_id, set()).add(edge.target_entity_id)
            context.neighbors.setdefault(edge.target_entity_id, set()).add(edge.source_entity_id)
            context.edges_by_entity.setdefault(edge.source_entity_id, []).append(edge)
            context.edges_by_entity.setdefault(edge.target_entity_id, []).append(edge)
        anchors = [entity.timeline_anchor for entity in entities if entity.timeline_anchor is not None]
        if anchors:
            context.timeline_span = max(anchors) - min(anchors)
        return context

    def related_of_type(self, entity_id: int, entity_type: str, *, members_only: bool = False) -> set[int]:
        """Ids of entities of one type linked to `entity_id` in either direction."""

        related: set[int] = set()
        for edge in self.edges_by_entity.get(entity_id, []):
            if members_only and normalize_label(edge.relationship_type) in ADVERSARIAL_RELATIONSHIP_TYPES:
                continue
            other_id = edge.target_entity_id if edge.source_entity_id == entity_id else edge.source_entity_id
            other = self.entities.get(other_id)
            if other is not None and normalize_label(other.entity_type) == entity_type:
                related.add(other_id)
        return related

    def sides(self, entity_id: int) -> set[int]:
        """The entity itself plus every faction it belongs to."""

        return {entity_id} | self.related_of_type(entity_id, FACTION_TYPE, members_only=True)

    def has_adversarial_edge(self, left_ids: set[int], right_ids: set[int]) -> bool:
        for edge in self.relationships:
            if normalize_label(edge.relationship_type) not in ADVERSARIAL_RELATIONSHIP_TYPES:
                continue
            if (edge.source_entity_id in left_ids and edge.target_entity_id in right_ids) or (
                edge.source_entity_id in right_ids and edge.target_entity_id in left_ids
            ):
                return True
        return False


@dataclass(frozen=True, slots=True)
class PairSignals:
    """Non-feature facts about a pair that the type rules need."""

    source_name: str
    target_name: str
    source_attributes: dict[str, object]
    target_attributes: dict[str, object]
    opposing_factions: bool = False


class FeatureExtractor:
    """Computes the `features.v1` vector for candidate entity pairs."""

    def __init__(
        self,
        store: EntityStore,
        *,
        oracle: SemanticOracle | None = None,
        oracle_timeout_seconds: float = 2.0,
    ) -> None:
        self.store = store
        self.oracle = oracle
        self.oracle_timeout_seconds = oracle_timeout_seconds

    def load_context(self, saga_id: str) -> SagaContext:
        return SagaContext.build(
            saga_id,
            self.store.list_entities_in_saga(saga_id),
            self.store.get_relationships(saga_id),
        )

    def extract(
        self,
        saga_id: str,
        source_entity_id: int,
        target_entity_id: int,
        *,
        context: SagaContext | None = None,
    ) -> FeatureVector:
        active = context or self.load_context(saga_id)
        source, target = self._resolve_pair(active, source_entity_id, target_entity_id)

        values: dict[FeatureType, float] = {}
        for feature_type, compute in (
            (FeatureType.CO_OCCURRENCE, self._co_occurrence),
            (FeatureType.TIMELINE_PROXIMITY, self._timeline_proximity),
            (FeatureType.ATTRIBUTE_SIMILARITY, self._attribute_similarity),
            (FeatureType.SHARED_LOCATION, self._shared_location),
            (FeatureType.SHARED_FACTION, self._shared_faction),
            (FeatureType.NETWORK_CENTRALITY, self._network_centrality),
            (FeatureType.MENTION_FREQUENCY, self._mention_frequency),
            (FeatureType.SEMANTIC_SIMILARITY, self._semantic_similarity),
        ):
            value = compute(active, source, target)
            if value is None:
                logger.debug(
                    "features.omitted saga_id=%s source_id=%s target_id=%s feature=%s",
                    saga_id,
                    source.id,
                    target.id,
                    feature_type.value,
                )
                continue
            values[feature_type] = max(0.0, min(1.0, value))
        return FeatureVector.from_values(values)

    def pair_signals(
        self,
        saga_id: str,
        source_entity_id: int,
        target_entity_id: int,
        *,
        context: SagaContext | None = None,
    ) -> PairSignals:
        active = context or self.load_context(saga_id)
        source, target = self._resolve_pair(active, source_entity_id, target_entity_id)
        return PairSignals(
            source_name=source.canonical_name,
            target_name=target.canonical_name,
            source_attributes=dict(source.attributes),
            target_attributes=dict(target.attributes),
            opposing_factions=active.has_adversarial_edge(active.sides(source.id), active.sides(target.id)),
        )

    def _resolve_pair(
        self,
        context: SagaContext,
        source_entity_id: int,
        target_entity_id: int,
    ) -> tuple[EntityRecord, EntityRecord]:
        if source_entity_id == target_entity_id:
            raise ValidationError("Source and target entity must differ")
        resolved: list[EntityRecord] = []
        for entity_id in (source_entity_id, target_entity_id):
            entity = context.entities.get(entity_id)
            if entity is None:
                entity = self.store.get_entity(entity_id)
                if entity is None or entity.saga_id != context.saga_id:
                    raise NotFoundError(f"Entity {entity_id} not found in saga {context.saga_id}")
            resolved.append(entity)
        return resolved[0], resolved[1]

    def _fragments(self, context: SagaContext, entity_id: int) -> set[int]:
        cached = context.fragment_ids.get(entity_id)
        if cached is None:
            cached = self.store.list_fragment_ids_mentioning(context.saga_id, entity_id)
            context.fragment_ids[entity_id] = cached
        return cached

    def _co_occurrence(self, context: SagaContext, source: EntityRecord, target: EntityRecord) -> float | None:
        source_fragments = self._fragments(context, source.id)
        target_fragments = self._fragments(context, target.id)
        either = source_fragments | target_fragments
        if not either:
            return None
        return len(source_fragments & target_fragments) / len(either)

    def _timeline_proximity(self, context: SagaContext, source: EntityRecord, target: EntityRecord) -> float | None:
        if source.timeline_anchor is None or target.timeline_anchor is None:
            return None
        span = context.timeline_span or 0.0
        if span <= 0.0:
            return 1.0
        distance = abs(source.timeline_anchor - target.timeline_anchor)
        return 1.0 - min(1.0, distance / span)

    def _attribute_similarity(self, context: SagaContext, source: EntityRecord, target: EntityRecord) -> float | None:
        if not source.attributes or not target.attributes:
            return None
        source_keys = {normalize_label(str(key)): value for key, value in source.attributes.items()}
        target_keys = {normalize_label(str(key)): value for key, value in target.attributes.items()}
        union = set(source_keys) | set(target_keys)
        if not union:
            return None
        matches = sum(
            1
            for key in set(source_keys) & set(target_keys)
            if normalize_value(source_keys[key]) == normalize_value(target_keys[key])
        )
        return matches / len(union)

    def _shared_location(self, context: SagaContext, source: EntityRecord, target: EntityRecord) -> float | None:
        shared = context.related_of_type(source.id, LOCATION_TYPE) & context.related_of_type(target.id, LOCATION_TYPE)
        return 1.0 if shared else 0.0

    def _shared_faction(self, context: SagaContext, source: EntityRecord, target: EntityRecord) -> float | None:
        shared = context.related_of_type(source.id, FACTION_TYPE, members_only=True) & context.related_of_type(
            target.id, FACTION_TYPE, members_only=True
        )
        return 1.0 if shared else 0.0

    def _network_centrality(self, context: SagaContext, source: EntityRecord, target: EntityRecord) -> float | None:
        entity_count = len(context.entities)
        if entity_count < 2:
            return None
        denominator = entity_count - 1
        source_degree = len(context.neighbors.get(source.id, set())) / denominator
        target_degree = len(context.neighbors.get(target.id, set())) / denominator
        return max(0.0, min(1.0, (source_degree + target_degree) / 2.0))

    def _mention_frequency(self, context: SagaContext, source: EntityRecord, target: EntityRecord) -> float | None:
        description = (source.description or "").strip()
        name = target.canonical_name.strip()
        if not description or not name:
            return None
        pattern = re.compile(rf"(?<!\w){re.escape(name)}(?!\w)", re.IGNORECASE)
        count = len(pattern.findall(description))
        return min(1.0, math.log1p(count) / math.log1p(MENTION_CAP))

    def _semantic_similarity(self, context: SagaContext, source: EntityRecord, target: EntityRecord) -> float | None:
        if self.oracle is None:
            return None
        left_text = (source.description or "").strip()
        right_text = (target.description or "").strip()
        if not left_text or not right_text:
            return None
        try:
            return similarity_with_timeout(
                self.oracle,
                left_text,
                right_text,
                timeout_seconds=self.oracle_timeout_seconds,
            )
        except (RuntimeError, ValueError, OSError) as exc:
            logger.warning(
                "features.oracle_failed saga_id=%s source_id=%s target_id=%s error=%s",
                context.saga_id,
                source.id,
                target.id,
                exc,
            )
            return None
