"""Content fragment and mention link models."""

from sqlalchemy import ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from saga_suggestions.models.base import Base, CreatedAtMixin, IdMixin


class ContentFragment(Base, IdMixin, CreatedAtMixin):
    """One unit of saga content (scene, chapter excerpt, wiki paragraph)."""

    __tablename__ = "content_fragments"

    saga_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    fragment_text: Mapped[str] = mapped_column(Text, nullable=False)


class FragmentMention(Base, IdMixin):
    """Tracks which entities a content fragment mentions."""

    __tablename__ = "fragment_mentions"
    __table_args__ = (
        UniqueConstraint("fragment_id", "entity_id", name="uq_fragment_mentions_fragment_entity"),
    )

    fragment_id: Mapped[int] = mapped_column(
        ForeignKey("content_fragments.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    entity_id: Mapped[int] = mapped_column(
        ForeignKey("saga_entities.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
