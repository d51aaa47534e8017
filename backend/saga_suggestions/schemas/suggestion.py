"""Relationship suggestion schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

SuggestionStatusLiteral = Literal["pending", "accepted", "rejected", "modified", "auto_accepted", "dismissed"]
SuggestionSort = Literal["priority", "confidence", "created"]
SortDirection = Literal["asc", "desc"]


class SuggestionRead(BaseModel):
    """Serialized suggestion row."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    saga_id: str
    source_entity_id: int
    target_entity_id: int
    suggested_type: str
    confidence: float
    strength: int
    priority_score: float
    reasoning: str
    suggestion_method: str
    feature_set_version: str
    status: str
    created_relationship_id: int | None
    actioned_at: datetime | None
    created_at: datetime
    updated_at: datetime


class SuggestionListItem(SuggestionRead):
    """Suggestion plus denormalized endpoint names."""

    source_entity_name: str
    target_entity_name: str


class SuggestionFilters(BaseModel):
    """List filters, sort and page for one saga's suggestions."""

    status: SuggestionStatusLiteral | None = "pending"
    min_confidence: float | None = Field(default=None, ge=0, le=100)
    suggested_type: str | None = None
    entity_id: int | None = None
    sort: SuggestionSort = "priority"
    direction: SortDirection = "desc"
    page: int = Field(default=1, ge=1)
    per_page: int = Field(default=25, ge=1, le=200)

    def cache_key(self) -> str:
        return self.model_dump_json()


class SuggestionPage(BaseModel):
    """Paginated suggestion list payload."""

    items: list[SuggestionListItem]
    total: int
    page: int
    per_page: int


class SuggestionFeatureRead(BaseModel):
    """Feature value frozen at scoring time."""

    model_config = ConfigDict(from_attributes=True)

    feature_type: str
    feature_value: float
    weight: float


class SuggestionFeedbackRead(BaseModel):
    """Feedback row attached to a suggestion."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    action: str
    suggested_type: str
    corrected_type: str | None
    corrected_strength: int | None
    note: str | None
    confidence_at_decision: float
    decision_latency_seconds: int
    processed_at: datetime | None
    created_at: datetime


class SuggestionDetail(SuggestionListItem):
    """Suggestion with its feature snapshot and decision history."""

    features: list[SuggestionFeatureRead]
    feedback: list[SuggestionFeedbackRead]


class SuggestionStatistics(BaseModel):
    """Aggregate suggestion counters for one saga."""

    saga_id: str
    total: int
    by_status: dict[str, int]
    by_type: dict[str, int]
    average_confidence: float | None
    acceptance_rate: float | None
