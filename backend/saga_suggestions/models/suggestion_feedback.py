"""Append-only feedback log model."""

from datetime import datetime

from sqlalchemy import JSON, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from saga_suggestions.models.base import Base, CreatedAtMixin, IdMixin


class SuggestionFeedback(Base, IdMixin, CreatedAtMixin):
    """Human decision on a suggestion plus the features it was based on."""

    __tablename__ = "suggestion_feedback"

    suggestion_id: Mapped[int] = mapped_column(
        ForeignKey("relationship_suggestions.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    saga_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    action: Mapped[str] = mapped_column(String(16), nullable=False)
    suggested_type: Mapped[str] = mapped_column(String(64), nullable=False)
    corrected_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    corrected_strength: Mapped[int | None] = mapped_column(Integer, nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    confidence_at_decision: Mapped[float] = mapped_column(Float, nullable=False)
    features_at_decision_json: Mapped[dict[str, float]] = mapped_column(JSON, default=dict, nullable=False)
    decision_latency_seconds: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), index=True, nullable=True)
