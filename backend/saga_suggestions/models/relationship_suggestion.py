"""Relationship suggestion ORM model."""

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from saga_suggestions.models.base import Base, CreatedAtMixin, IdMixin, UpdatedAtMixin


class RelationshipSuggestion(Base, IdMixin, CreatedAtMixin, UpdatedAtMixin):
    """Scored candidate relationship awaiting (or past) human review."""

    __tablename__ = "relationship_suggestions"
    __table_args__ = (
        UniqueConstraint(
            "saga_id",
            "source_entity_id",
            "target_entity_id",
            "suggested_type",
            name="uq_relationship_suggestions_pair_type",
        ),
        Index("ix_relationship_suggestions_saga_status", "saga_id", "status"),
        CheckConstraint("source_entity_id <> target_entity_id", name="ck_relationship_suggestions_distinct_pair"),
        CheckConstraint("confidence >= 0 AND confidence <= 100", name="ck_relationship_suggestions_confidence"),
        CheckConstraint("strength >= 0 AND strength <= 100", name="ck_relationship_suggestions_strength"),
    )

    saga_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    source_entity_id: Mapped[int] = mapped_column(
        ForeignKey("saga_entities.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    target_entity_id: Mapped[int] = mapped_column(
        ForeignKey("saga_entities.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    suggested_type: Mapped[str] = mapped_column(String(64), nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    strength: Mapped[int] = mapped_column(Integer, nullable=False)
    priority_score: Mapped[float] = mapped_column(Float, default=50.0, nullable=False)
    reasoning: Mapped[str] = mapped_column(Text, default="", nullable=False)
    suggestion_method: Mapped[str] = mapped_column(String(32), nullable=False)
    feature_set_version: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(32), default="pending", nullable=False)
    created_relationship_id: Mapped[int | None] = mapped_column(
        ForeignKey("entity_relationships.id", ondelete="SET NULL"),
        nullable=True,
    )
    actioned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
