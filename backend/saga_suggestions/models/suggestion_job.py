"""Durable suggestion generation job record."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from saga_suggestions.models.base import Base, CreatedAtMixin, IdMixin, UpdatedAtMixin

# One queued or running job per saga.
ACTIVE_JOB_PREDICATE = "status IN ('queued', 'running')"


class SuggestionJob(Base, IdMixin, CreatedAtMixin, UpdatedAtMixin):
    """Progress and control state for one batch generation run."""

    __tablename__ = "suggestion_jobs"
    __table_args__ = (
        Index("ix_suggestion_jobs_saga_created", "saga_id", "created_at"),
        Index(
            "uq_suggestion_jobs_active_saga",
            "saga_id",
            unique=True,
            postgresql_where=text(ACTIVE_JOB_PREDICATE),
            sqlite_where=text(ACTIVE_JOB_PREDICATE),
        ),
    )

    saga_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    status: Mapped[str] = mapped_column(String(16), default="queued", index=True, nullable=False)
    pairs_total: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    pairs_processed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    suggestions_created: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cancel_requested: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    heartbeat_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
