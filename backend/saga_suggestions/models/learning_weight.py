"""Learned feature weight ORM model."""

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Float, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from saga_suggestions.models.base import Base, IdMixin

GLOBAL_SCOPE = "__global__"
ANY_RELATIONSHIP_TYPE = "*"


class LearningWeight(Base, IdMixin):
    """Weight for one feature type in a saga scope or the shared global pool."""

    __tablename__ = "learning_weights"
    __table_args__ = (
        UniqueConstraint(
            "scope_key",
            "feature_type",
            "relationship_type",
            name="uq_learning_weights_scope_feature_type",
        ),
        CheckConstraint("weight >= 0 AND weight <= 1", name="ck_learning_weights_weight_range"),
    )

    scope_key: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    feature_type: Mapped[str] = mapped_column(String(64), nullable=False)
    relationship_type: Mapped[str] = mapped_column(String(64), default=ANY_RELATIONSHIP_TYPE, nullable=False)
    weight: Mapped[float] = mapped_column(Float, default=1.0, nullable=False)
    accuracy_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    sample_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_global(self) -> bool:
        return self.scope_key == GLOBAL_SCOPE
