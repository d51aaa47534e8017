"""Shared status vocabularies stored in string columns."""

from __future__ import annotations

from enum import Enum


class SuggestionStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    MODIFIED = "modified"
    AUTO_ACCEPTED = "auto_accepted"
    DISMISSED = "dismissed"

    @property
    def is_positive(self) -> bool:
        return self in {SuggestionStatus.ACCEPTED, SuggestionStatus.MODIFIED, SuggestionStatus.AUTO_ACCEPTED}


class FeedbackAction(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"
    MODIFY = "modify"
    DISMISS = "dismiss"

    @property
    def resulting_status(self) -> SuggestionStatus:
        return _ACTION_STATUS[self]

    @property
    def materializes_relationship(self) -> bool:
        return self in {FeedbackAction.ACCEPT, FeedbackAction.MODIFY}


_ACTION_STATUS = {
    FeedbackAction.ACCEPT: SuggestionStatus.ACCEPTED,
    FeedbackAction.REJECT: SuggestionStatus.REJECTED,
    FeedbackAction.MODIFY: SuggestionStatus.MODIFIED,
    FeedbackAction.DISMISS: SuggestionStatus.DISMISSED,
}


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_active(self) -> bool:
        return self in {JobStatus.QUEUED, JobStatus.RUNNING}


ACTIVE_JOB_STATUSES = (JobStatus.QUEUED.value, JobStatus.RUNNING.value)
