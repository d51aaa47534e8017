"""SQLAlchemy metadata registry import for Alembic."""

from saga_suggestions.models import (
    ContentFragment,
    EntityRelationship,
    FragmentMention,
    LearningWeight,
    RelationshipSuggestion,
    SagaEntity,
    SuggestionFeature,
    SuggestionFeedback,
    SuggestionJob,
)
from saga_suggestions.models.base import Base

__all__ = [
    "Base",
    "SagaEntity",
    "EntityRelationship",
    "ContentFragment",
    "FragmentMention",
    "RelationshipSuggestion",
    "SuggestionFeature",
    "SuggestionFeedback",
    "LearningWeight",
    "SuggestionJob",
]
