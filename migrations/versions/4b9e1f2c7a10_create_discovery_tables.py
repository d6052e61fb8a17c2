"""Create discoveries, prospects, prospect_feedback and listener_runs.

The unique constraints are the authoritative dedup guarantee: repeat scans of
one source, concurrent promotions of one domain and repeat feedback from one
reviewer all collapse onto a single row.
"""

from __future__ import annotations

import logging

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "4b9e1f2c7a10"
down_revision = None
branch_labels = None
depends_on = None

logger = logging.getLogger(__name__)

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")
NOW = sa.text("CURRENT_TIMESTAMP")


def upgrade() -> None:
    op.create_table(
        "discoveries",
        sa.Column("id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("team_id", sa.String(length=255), nullable=False),
        sa.Column("source_kind", sa.String(length=64), nullable=False),
        sa.Column("source_ref", sa.String(length=2048), nullable=False),
        sa.Column("source_title", sa.String(length=1024), nullable=True),
        sa.Column("company_domain", sa.String(length=255), nullable=False),
        sa.Column("company_name", sa.String(length=255), nullable=True),
        sa.Column("trigger_text", sa.Text(), nullable=False),
        sa.Column("matched_keywords", JSON_TYPE, nullable=False),
        sa.Column("tags", JSON_TYPE, nullable=False),
        sa.Column("keyword_category", sa.String(length=64), nullable=True),
        sa.Column("confidence_score", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("run_id", sa.Uuid(as_uuid=True), nullable=True),
        sa.Column("prospect_id", sa.Uuid(as_uuid=True), nullable=True),
        sa.Column("discovered_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reviewed_by", sa.String(length=255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_discoveries"),
        sa.UniqueConstraint("company_domain", "source_ref", name="uq_discoveries_domain_source"),
    )
    op.create_index("ix_discoveries_team_status", "discoveries", ["team_id", "status"], unique=False)
    op.create_index("ix_discoveries_confidence", "discoveries", ["confidence_score"], unique=False)

    op.create_table(
        "prospects",
        sa.Column("id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("team_id", sa.String(length=255), nullable=False),
        sa.Column("company_domain", sa.String(length=255), nullable=False),
        sa.Column("company_name", sa.String(length=255), nullable=True),
        sa.Column("fit_score", sa.Integer(), nullable=False),
        sa.Column("fit_tags", JSON_TYPE, nullable=False),
        sa.Column("connection_score", sa.Float(), nullable=False),
        sa.Column("has_warm_intro", sa.Boolean(), nullable=False),
        sa.Column("warm_intro_count", sa.Integer(), nullable=False),
        sa.Column("best_connector", sa.String(length=255), nullable=True),
        sa.Column("connections_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("priority_score", sa.Float(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("source", sa.String(length=32), nullable=False),
        sa.Column("discovery_id", sa.Uuid(as_uuid=True), nullable=True),
        sa.Column("user_override", sa.Boolean(), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reviewed_by", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.PrimaryKeyConstraint("id", name="pk_prospects"),
        sa.UniqueConstraint("team_id", "company_domain", name="uq_prospects_team_domain"),
    )
    op.create_index("ix_prospects_team_priority", "prospects", ["team_id", "priority_score"], unique=False)

    op.create_table(
        "prospect_feedback",
        sa.Column("id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("prospect_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("is_good_fit", sa.Boolean(), nullable=False),
        sa.Column("confidence", sa.Integer(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("user_rating", sa.Integer(), nullable=True),
        sa.Column("review_time_ms", sa.Integer(), nullable=True),
        sa.Column("ai_fit_score", sa.Integer(), nullable=True),
        sa.Column("ai_tags", JSON_TYPE, nullable=False),
        sa.Column("previous_status", sa.String(length=32), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.PrimaryKeyConstraint("id", name="pk_prospect_feedback"),
        sa.UniqueConstraint("prospect_id", "user_id", name="uq_prospect_feedback_prospect_user"),
    )
    op.create_index("ix_prospect_feedback_prospect", "prospect_feedback", ["prospect_id"], unique=False)

    op.create_table(
        "listener_runs",
        sa.Column("id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("team_id", sa.String(length=255), nullable=False),
        sa.Column("source_kind", sa.String(length=64), nullable=False),
        sa.Column("source_name", sa.String(length=255), nullable=False),
        sa.Column("run_type", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("items_scanned", sa.Integer(), nullable=False),
        sa.Column("discoveries_created", sa.Integer(), nullable=False),
        sa.Column("duplicates_skipped", sa.Integer(), nullable=False),
        sa.Column("auto_promoted", sa.Integer(), nullable=False),
        sa.Column("skipped", sa.Integer(), nullable=False),
        sa.Column("errors_count", sa.Integer(), nullable=False),
        sa.Column("error_details", JSON_TYPE, nullable=False),
        sa.Column("ruleset_sha256", sa.String(length=64), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_listener_runs"),
    )
    op.create_index("ix_listener_runs_team_started", "listener_runs", ["team_id", "started_at"], unique=False)
    logger.info("discovery.migration.applied", extra={"revision": revision})


def downgrade() -> None:
    op.drop_index("ix_listener_runs_team_started", table_name="listener_runs")
    op.drop_table("listener_runs")
    op.drop_index("ix_prospect_feedback_prospect", table_name="prospect_feedback")
    op.drop_table("prospect_feedback")
    op.drop_index("ix_prospects_team_priority", table_name="prospects")
    op.drop_table("prospects")
    op.drop_index("ix_discoveries_confidence", table_name="discoveries")
    op.drop_index("ix_discoveries_team_status", table_name="discoveries")
    op.drop_table("discoveries")
