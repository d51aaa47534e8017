"""Suggestion generation job schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class SuggestionJobRead(BaseModel):
    """Serialized job record."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    saga_id: str
    status: str
    pairs_total: int
    pairs_processed: int
    suggestions_created: int
    cancel_requested: bool
    error_message: str | None
    created_at: datetime
    started_at: datetime | None
    heartbeat_at: datetime | None
    finished_at: datetime | None


class JobProgress(BaseModel):
    """Latest job state for a saga, or `idle` when none exists."""

    saga_id: str
    status: str
    job_id: int | None = None
    pairs_total: int = 0
    pairs_processed: int = 0
    suggestions_created: int = 0
    percent_complete: float = 0.0
    error_message: str | None = None
    started_at: datetime | None = None
    heartbeat_at: datetime | None = None
    finished_at: datetime | None = None


class CancelResult(BaseModel):
    """Whether a cancellation was recorded."""

    saga_id: str
    cancelled: bool


class GenerationRunResult(BaseModel):
    """Summary of one executed generation job."""

    job_id: int
    saga_id: str
    status: str
    pairs_total: int
    pairs_processed: int
    suggestions_created: int
    error_message: str | None = None
