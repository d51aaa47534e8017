"""Frozen feature snapshot rows for suggestions."""

from sqlalchemy import Float, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from saga_suggestions.models.base import Base, CreatedAtMixin, IdMixin


class SuggestionFeature(Base, IdMixin, CreatedAtMixin):
    """One feature value captured when its suggestion was scored."""

    __tablename__ = "suggestion_features"
    __table_args__ = (
        UniqueConstraint("suggestion_id", "feature_type", name="uq_suggestion_features_suggestion_type"),
    )

    suggestion_id: Mapped[int] = mapped_column(
        ForeignKey("relationship_suggestions.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    feature_type: Mapped[str] = mapped_column(String(64), nullable=False)
    feature_value: Mapped[float] = mapped_column(Float, nullable=False)
    weight: Mapped[float] = mapped_column(Float, default=1.0, nullable=False)
