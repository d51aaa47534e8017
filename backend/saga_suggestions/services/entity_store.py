"""Read/write access to saga entities consumed by the suggestion engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from saga_suggestions.models import ContentFragment, EntityRelationship, FragmentMention, SagaEntity


@dataclass(frozen=True, slots=True)
class EntityRecord:
    """Read-only view of one saga entity."""

    id: int
    saga_id: str
    canonical_name: str
    entity_type: str
    attributes: dict[str, object] = field(default_factory=dict)
    importance_score: int = 50
    timeline_anchor: float | None = None
    description: str | None = None


@dataclass(frozen=True, slots=True)
class RelationshipRecord:
    """Read-only view of one directed relationship edge."""

    id: int
    source_entity_id: int
    target_entity_id: int
    relationship_type: str
    strength: int


class EntityStore(Protocol):
    """Operations the engine needs from whatever owns saga entities."""

    def get_entity(self, entity_id: int) -> EntityRecord | None:
        """Return one entity or None."""

    def list_entities_in_saga(self, saga_id: str) -> list[EntityRecord]:
        """Return every entity in a saga ordered by id."""

    def get_attributes(self, entity_id: int) -> dict[str, object]:
        """Return the attribute map of an entity."""

    def get_relationships(self, saga_id: str, entity_id: int | None = None) -> list[RelationshipRecord]:
        """Return saga relationships, optionally only those touching one entity."""

    def get_timeline_anchor(self, entity_id: int) -> float | None:
        """Return the entity's position on the saga timeline."""

    def get_description_text(self, entity_id: int) -> str | None:
        """Return the entity's free-text description."""

    def list_fragment_ids_mentioning(self, saga_id: str, entity_id: int) -> set[int]:
        """Return ids of content fragments that mention the entity."""

    def list_saga_ids(self) -> list[str]:
        """Return every saga that has at least one entity."""

    def create_relationship(
        self,
        saga_id: str,
        source_entity_id: int,
        target_entity_id: int,
        relationship_type: str,
        strength: int,
        metadata: dict[str, object] | None = None,
    ) -> int:
        """Persist a relationship inside the caller's transaction and return its id."""


class SqlEntityStore:
    """EntityStore backed by the service's own saga tables."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def get_entity(self, entity_id: int) -> EntityRecord | None:
        row = self.db.get(SagaEntity, entity_id)
        return _entity_record(row) if row is not None else None

    def list_entities_in_saga(self, saga_id: str) -> list[EntityRecord]:
        rows = self.db.scalars(
            select(SagaEntity).where(SagaEntity.saga_id == saga_id).order_by(SagaEntity.id.asc())
        ).all()
        return [_entity_record(row) for row in rows]

    def get_attributes(self, entity_id: int) -> dict[str, object]:
        row = self.db.get(SagaEntity, entity_id)
        if row is None:
            return {}
        return dict(row.attributes_json or {})

    def get_relationships(self, saga_id: str, entity_id: int | None = None) -> list[RelationshipRecord]:
        stmt = select(EntityRelationship).where(EntityRelationship.saga_id == saga_id)
        if entity_id is not None:
            stmt = stmt.where(
                or_(
                    EntityRelationship.source_entity_id == entity_id,
                    EntityRelationship.target_entity_id == entity_id,
                )
            )
        rows = self.db.scalars(stmt.order_by(EntityRelationship.id.asc())).all()
        return [
            RelationshipRecord(
                id=row.id,
                source_entity_id=row.source_entity_id,
                target_entity_id=row.target_entity_id,
                relationship_type=row.relationship_type,
                strength=row.strength,
            )
            for row in rows
        ]

    def get_timeline_anchor(self, entity_id: int) -> float | None:
        row = self.db.get(SagaEntity, entity_id)
        return row.timeline_anchor if row is not None else None

    def get_description_text(self, entity_id: int) -> str | None:
        row = self.db.get(SagaEntity, entity_id)
        return row.description if row is not None else None

    def list_fragment_ids_mentioning(self, saga_id: str, entity_id: int) -> set[int]:
        stmt = (
            select(FragmentMention.fragment_id)
            .join(ContentFragment, ContentFragment.id == FragmentMention.fragment_id)
            .where(ContentFragment.saga_id == saga_id, FragmentMention.entity_id == entity_id)
        )
        return set(self.db.scalars(stmt).all())

    def list_saga_ids(self) -> list[str]:
        return list(self.db.scalars(select(SagaEntity.saga_id).distinct().order_by(SagaEntity.saga_id)).all())

    def create_relationship(
        self,
        saga_id: str,
        source_entity_id: int,
        target_entity_id: int,
        relationship_type: str,
        strength: int,
        metadata: dict[str, object] | None = None,
    ) -> int:
        row = EntityRelationship(
            saga_id=saga_id,
            source_entity_id=source_entity_id,
            target_entity_id=target_entity_id,
            relationship_type=relationship_type,
            strength=max(0, min(100, int(strength))),
            metadata_json=dict(metadata or {}),
        )
        self.db.add(row)
        self.db.flush()
        return row.id


def _entity_record(row: SagaEntity) -> EntityRecord:
    return EntityRecord(
        id=row.id,
        saga_id=row.saga_id,
        canonical_name=row.canonical_name,
        entity_type=row.entity_type,
        attributes=dict(row.attributes_json or {}),
        importance_score=row.importance_score,
        timeline_anchor=row.timeline_anchor,
        description=row.description,
    )
