"""Saga entity ORM model."""

from sqlalchemy import JSON, Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from saga_suggestions.models.base import Base, CreatedAtMixin, IdMixin, UpdatedAtMixin


class SagaEntity(Base, IdMixin, CreatedAtMixin, UpdatedAtMixin):
    """Character, location, faction, event, or other saga entity."""

    __tablename__ = "saga_entities"

    saga_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    canonical_name: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    attributes_json: Mapped[dict[str, object]] = mapped_column(JSON, default=dict, nullable=False)
    importance_score: Mapped[int] = mapped_column(Integer, default=50, nullable=False)
    timeline_anchor: Mapped[float | None] = mapped_column(Float, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
