"""ORM models package exports."""

from saga_suggestions.models.content_fragment import ContentFragment, FragmentMention
from saga_suggestions.models.entity_relationship import EntityRelationship
from saga_suggestions.models.learning_weight import ANY_RELATIONSHIP_TYPE, GLOBAL_SCOPE, LearningWeight
from saga_suggestions.models.relationship_suggestion import RelationshipSuggestion
from saga_suggestions.models.saga_entity import SagaEntity
from saga_suggestions.models.statuses import FeedbackAction, JobStatus, SuggestionStatus
from saga_suggestions.models.suggestion_feature import SuggestionFeature
from saga_suggestions.models.suggestion_feedback import SuggestionFeedback
from saga_suggestions.models.suggestion_job import SuggestionJob

__all__ = [
    "ANY_RELATIONSHIP_TYPE",
    "GLOBAL_SCOPE",
    "SagaEntity",
    "EntityRelationship",
    "ContentFragment",
    "FragmentMention",
    "RelationshipSuggestion",
    "SuggestionFeature",
    "SuggestionFeedback",
    "LearningWeight",
    "SuggestionJob",
    "SuggestionStatus",
    "FeedbackAction",
    "JobStatus",
]
