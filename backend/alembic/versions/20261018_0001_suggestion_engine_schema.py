"""saga entities and relationship suggestion engine schema

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18 00:00:01
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20261018_0001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None

_ACTIVE_JOB_PREDICATE = "status IN ('queued', 'running')"


def _timestamps(*, updated: bool = False) -> list[sa.Column]:
    columns = [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]
    if updated:
        columns.append(
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False)
        )
    return columns


def upgrade() -> None:
    op.create_table(
        "saga_entities",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("saga_id", sa.String(length=255), nullable=False),
        sa.Column("canonical_name", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("attributes_json", sa.JSON(), nullable=False),
        sa.Column("importance_score", sa.Integer(), nullable=False, server_default=sa.text("50")),
        sa.Column("timeline_anchor", sa.Float(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        *_timestamps(updated=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_saga_entities_saga_id", "saga_entities", ["saga_id"], unique=False)
    op.create_index("ix_saga_entities_entity_type", "saga_entities", ["entity_type"], unique=False)

    op.create_table(
        "entity_relationships",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("saga_id", sa.String(length=255), nullable=False),
        sa.Column("source_entity_id", sa.Integer(), nullable=False),
        sa.Column("target_entity_id", sa.Integer(), nullable=False),
        sa.Column("relationship_type", sa.String(length=64), nullable=False),
        sa.Column("strength", sa.Integer(), nullable=False, server_default=sa.text("50")),
        sa.Column("metadata_json", sa.JSON(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["source_entity_id"], ["saga_entities.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["target_entity_id"], ["saga_entities.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_entity_relationships_saga_id", "entity_relationships", ["saga_id"], unique=False)
    op.create_index(
        "ix_entity_relationships_source_entity_id", "entity_relationships", ["source_entity_id"], unique=False
    )
    op.create_index(
        "ix_entity_relationships_target_entity_id", "entity_relationships", ["target_entity_id"], unique=False
    )

    op.create_table(
        "content_fragments",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("saga_id", sa.String(length=255), nullable=False),
        sa.Column("fragment_text", sa.Text(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_content_fragments_saga_id", "content_fragments", ["saga_id"], unique=False)

    op.create_table(
        "fragment_mentions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("fragment_id", sa.Integer(), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["fragment_id"], ["content_fragments.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["entity_id"], ["saga_entities.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("fragment_id", "entity_id", name="uq_fragment_mentions_fragment_entity"),
    )
    op.create_index("ix_fragment_mentions_fragment_id", "fragment_mentions", ["fragment_id"], unique=False)
    op.create_index("ix_fragment_mentions_entity_id", "fragment_mentions", ["entity_id"], unique=False)

    op.create_table(
        "relationship_suggestions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("saga_id", sa.String(length=255), nullable=False),
        sa.Column("source_entity_id", sa.Integer(), nullable=False),
        sa.Column("target_entity_id", sa.Integer(), nullable=False),
        sa.Column("suggested_type", sa.String(length=64), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("strength", sa.Integer(), nullable=False),
        sa.Column("priority_score", sa.Float(), nullable=False, server_default=sa.text("50")),
        sa.Column("reasoning", sa.Text(), nullable=False),
        sa.Column("suggestion_method", sa.String(length=32), nullable=False),
        sa.Column("feature_set_version", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="pending"),
        sa.Column("created_relationship_id", sa.Integer(), nullable=True),
        sa.Column("actioned_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(updated=True),
        sa.ForeignKeyConstraint(["source_entity_id"], ["saga_entities.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["target_entity_id"], ["saga_entities.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["created_relationship_id"], ["entity_relationships.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "saga_id",
            "source_entity_id",
            "target_entity_id",
            "suggested_type",
            name="uq_relationship_suggestions_pair_type",
        ),
        sa.CheckConstraint("source_entity_id <> target_entity_id", name="ck_relationship_suggestions_distinct_pair"),
        sa.CheckConstraint("confidence >= 0 AND confidence <= 100", name="ck_relationship_suggestions_confidence"),
        sa.CheckConstraint("strength >= 0 AND strength <= 100", name="ck_relationship_suggestions_strength"),
    )
    op.create_index("ix_relationship_suggestions_saga_id", "relationship_suggestions", ["saga_id"], unique=False)
    op.create_index(
        "ix_relationship_suggestions_source_entity_id", "relationship_suggestions", ["source_entity_id"], unique=False
    )
    op.create_index(
        "ix_relationship_suggestions_target_entity_id", "relationship_suggestions", ["target_entity_id"], unique=False
    )
    op.create_index(
        "ix_relationship_suggestions_saga_status", "relationship_suggestions", ["saga_id", "status"], unique=False
    )

    op.create_table(
        "suggestion_features",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("suggestion_id", sa.Integer(), nullable=False),
        sa.Column("feature_type", sa.String(length=64), nullable=False),
        sa.Column("feature_value", sa.Float(), nullable=False),
        sa.Column("weight", sa.Float(), nullable=False, server_default=sa.text("1.0")),
        *_timestamps(),
        sa.ForeignKeyConstraint(["suggestion_id"], ["relationship_suggestions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("suggestion_id", "feature_type", name="uq_suggestion_features_suggestion_type"),
    )
    op.create_index("ix_suggestion_features_suggestion_id", "suggestion_features", ["suggestion_id"], unique=False)

    op.create_table(
        "suggestion_feedback",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("suggestion_id", sa.Integer(), nullable=False),
        sa.Column("saga_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=16), nullable=False),
        sa.Column("suggested_type", sa.String(length=64), nullable=False),
        sa.Column("corrected_type", sa.String(length=64), nullable=True),
        sa.Column("corrected_strength", sa.Integer(), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("confidence_at_decision", sa.Float(), nullable=False),
        sa.Column("features_at_decision_json", sa.JSON(), nullable=False),
        sa.Column("decision_latency_seconds", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["suggestion_id"], ["relationship_suggestions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_suggestion_feedback_suggestion_id", "suggestion_feedback", ["suggestion_id"], unique=False)
    op.create_index("ix_suggestion_feedback_saga_id", "suggestion_feedback", ["saga_id"], unique=False)
    op.create_index("ix_suggestion_feedback_processed_at", "suggestion_feedback", ["processed_at"], unique=False)

    op.create_table(
        "learning_weights",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("scope_key", sa.String(length=255), nullable=False),
        sa.Column("feature_type", sa.String(length=64), nullable=False),
        sa.Column("relationship_type", sa.String(length=64), nullable=False, server_default="*"),
        sa.Column("weight", sa.Float(), nullable=False, server_default=sa.text("1.0")),
        sa.Column("accuracy_score", sa.Float(), nullable=True),
        sa.Column("sample_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("last_updated", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "scope_key",
            "feature_type",
            "relationship_type",
            name="uq_learning_weights_scope_feature_type",
        ),
        sa.CheckConstraint("weight >= 0 AND weight <= 1", name="ck_learning_weights_weight_range"),
    )
    op.create_index("ix_learning_weights_scope_key", "learning_weights", ["scope_key"], unique=False)

    op.create_table(
        "suggestion_jobs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("saga_id", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="queued"),
        sa.Column("pairs_total", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("pairs_processed", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("suggestions_created", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("cancel_requested", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("heartbeat_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(updated=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_suggestion_jobs_saga_id", "suggestion_jobs", ["saga_id"], unique=False)
    op.create_index("ix_suggestion_jobs_status", "suggestion_jobs", ["status"], unique=False)
    op.create_index("ix_suggestion_jobs_saga_created", "suggestion_jobs", ["saga_id", "created_at"], unique=False)
    op.create_index(
        "uq_suggestion_jobs_active_saga",
        "suggestion_jobs",
        ["saga_id"],
        unique=True,
        postgresql_where=sa.text(_ACTIVE_JOB_PREDICATE),
        sqlite_where=sa.text(_ACTIVE_JOB_PREDICATE),
    )


def downgrade() -> None:
    op.drop_index("uq_suggestion_jobs_active_saga", table_name="suggestion_jobs")
    op.drop_index("ix_suggestion_jobs_saga_created", table_name="suggestion_jobs")
    op.drop_index("ix_suggestion_jobs_status", table_name="suggestion_jobs")
    op.drop_index("ix_suggestion_jobs_saga_id", table_name="suggestion_jobs")
    op.drop_table("suggestion_jobs")

    op.drop_index("ix_learning_weights_scope_key", table_name="learning_weights")
    op.drop_table("learning_weights")

    op.drop_index("ix_suggestion_feedback_processed_at", table_name="suggestion_feedback")
    op.drop_index("ix_suggestion_feedback_saga_id", table_name="suggestion_feedback")
    op.drop_index("ix_suggestion_feedback_suggestion_id", table_name="suggestion_feedback")
    op.drop_table("suggestion_feedback")

    op.drop_index("ix_suggestion_features_suggestion_id", table_name="suggestion_features")
    op.drop_table("suggestion_features")

    op.drop_index("ix_relationship_suggestions_saga_status", table_name="relationship_suggestions")
    op.drop_index("ix_relationship_suggestions_target_entity_id", table_name="relationship_suggestions")
    op.drop_index("ix_relationship_suggestions_source_entity_id", table_name="relationship_suggestions")
    op.drop_index("ix_relationship_suggestions_saga_id", table_name="relationship_suggestions")
    op.drop_table("relationship_suggestions")

    op.drop_index("ix_fragment_mentions_entity_id", table_name="fragment_mentions")
    op.drop_index("ix_fragment_mentions_fragment_id", table_name="fragment_mentions")
    op.drop_table("fragment_mentions")

    op.drop_index("ix_content_fragments_saga_id", table_name="content_fragments")
    op.drop_table("content_fragments")

    op.drop_index("ix_entity_relationships_target_entity_id", table_name="entity_relationships")
    op.drop_index("ix_entity_relationships_source_entity_id", table_name="entity_relationships")
    op.drop_index("ix_entity_relationships_saga_id", table_name="entity_relationships")
    op.drop_table("entity_relationships")

    op.drop_index("ix_saga_entities_entity_type", table_name="saga_entities")
    op.drop_index("ix_saga_entities_saga_id", table_name="saga_entities")
    op.drop_table("saga_entities")
