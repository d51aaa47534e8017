"""Feedback request and result schemas."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, model_validator

FeedbackActionLiteral = Literal["accept", "reject", "modify", "dismiss"]


class FeedbackRequest(BaseModel):
    """One human decision on a pending suggestion."""

    action: FeedbackActionLiteral
    corrected_type: str | None = Field(default=None, min_length=1, max_length=64)
    corrected_strength: int | None = Field(default=None, ge=0, le=100)
    note: str | None = Field(default=None, max_length=2000)

    @model_validator(mode="after")
    def validate_correction(self) -> "FeedbackRequest":
        if self.action == "modify" and self.corrected_type is None and self.corrected_strength is None:
            raise ValueError("Modify requires corrected_type or corrected_strength.")
        if self.action != "modify" and (self.corrected_type is not None or self.corrected_strength is not None):
            raise ValueError("Corrections are only accepted with the modify action.")
        return self


class FeedbackResult(BaseModel):
    """Outcome of a feedback submission."""

    suggestion_id: int
    saga_id: str
    feedback_id: int
    status: str
    relationship_id: int | None = None


class BulkFeedbackRequest(BaseModel):
    """Same decision applied to several suggestions."""

    suggestion_ids: list[int] = Field(min_length=1, max_length=500)
    action: Literal["accept", "reject", "dismiss"]
    note: str | None = Field(default=None, max_length=2000)

    @model_validator(mode="after")
    def validate_unique_ids(self) -> "BulkFeedbackRequest":
        if len(set(self.suggestion_ids)) != len(self.suggestion_ids):
            raise ValueError("suggestion_ids must be unique.")
        return self


class BulkFeedbackFailure(BaseModel):
    """Suggestion that could not be actioned in a bulk request."""

    suggestion_id: int
    error: str
    message: str


class BulkFeedbackResult(BaseModel):
    """Per-item outcome of a bulk feedback request."""

    succeeded: list[FeedbackResult]
    failed: list[BulkFeedbackFailure]
