"""Learning engine schemas."""

from datetime import datetime

from pydantic import BaseModel


class FeatureWeightRead(BaseModel):
    """Weight currently used for one feature type."""

    feature_type: str
    weight: float
    scope: str
    sample_count: int
    last_updated: datetime | None = None


class LearningStats(BaseModel):
    """Learning progress and decision quality for one saga."""

    saga_id: str
    graduated: bool
    graduated_features: list[str]
    sample_count: int
    samples_needed: int
    pending_feedback: int
    accuracy: float | None
    precision: float | None
    recall: float | None
    f1_score: float | None
    weights: list[FeatureWeightRead]


class LearningRunResult(BaseModel):
    """Summary of one learning pass."""

    saga_id: str
    events_processed: int
    weights_updated: int
    accuracy: float | None


class LearningResetResult(BaseModel):
    """Outcome of dropping a saga's learned weights."""

    saga_id: str
    weights_deleted: int
