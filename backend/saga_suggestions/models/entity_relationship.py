"""Entity relationship ORM model."""

from sqlalchemy import JSON, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from saga_suggestions.models.base import Base, CreatedAtMixin, IdMixin


class EntityRelationship(Base, IdMixin, CreatedAtMixin):
    """Directed relationship edge between two saga entities."""

    __tablename__ = "entity_relationships"

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
    relationship_type: Mapped[str] = mapped_column(String(64), nullable=False)
    strength: Mapped[int] = mapped_column(Integer, default=50, nullable=False)
    metadata_json: Mapped[dict[str, object]] = mapped_column(JSON, default=dict, nullable=False)
