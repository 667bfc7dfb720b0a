"""Initial schema: businesses, settings, reviews, automation runs and leases, subscriptions, activity log.

Revision ID: 001
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    conn = op.get_bind()
    insp = sa.inspect(conn)
    if "businesses" in insp.get_table_names():
        return

    op.create_table(
        "businesses",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("industry", sa.String(255), nullable=True),
        sa.Column("owner_email", sa.String(320), nullable=True),
        sa.Column("customer_support_email", sa.String(320), nullable=True),
        sa.Column("customer_support_phone", sa.String(64), nullable=True),
        sa.Column("google_account_id", sa.String(255), nullable=True),
        sa.Column("google_location_id", sa.String(255), nullable=True),
        sa.Column("google_access_token", sa.Text(), nullable=True),
        sa.Column("google_refresh_token", sa.Text(), nullable=True),
        sa.Column("google_token_expires_at", sa.DateTime(), nullable=True),
        sa.Column("connection_status", sa.String(32), nullable=True, server_default="disconnected"),
        sa.Column("last_connection_attempt", sa.DateTime(), nullable=True),
        sa.Column("last_review_sync", sa.DateTime(), nullable=True),
        sa.Column("initial_backfill_complete", sa.Boolean(), nullable=True, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_businesses_user_id", "businesses", ["user_id"], unique=False)
    op.create_index("ix_businesses_connection_status", "businesses", ["connection_status"], unique=False)

    op.create_table(
        "business_settings",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("business_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("brand_voice_preset", sa.String(32), nullable=True, server_default="friendly"),
        sa.Column("formality_level", sa.Integer(), nullable=True, server_default="3"),
        sa.Column("warmth_level", sa.Integer(), nullable=True, server_default="3"),
        sa.Column("brevity_level", sa.Integer(), nullable=True, server_default="3"),
        sa.Column("custom_instruction", sa.Text(), nullable=True),
        sa.Column("approval_mode", sa.String(32), nullable=True, server_default="manual"),
        sa.Column("auto_sync_enabled", sa.Boolean(), nullable=True, server_default=sa.false()),
        sa.Column("auto_sync_slot", sa.String(16), nullable=True, server_default="slot_1"),
        sa.Column("auto_reply_enabled", sa.Boolean(), nullable=True, server_default=sa.false()),
        sa.Column("auto_post_enabled", sa.Boolean(), nullable=True, server_default=sa.false()),
        sa.Column("email_notifications_enabled", sa.Boolean(), nullable=True, server_default=sa.true()),
        sa.Column("automation_errors", postgresql.JSON(astext_type=sa.Text()), nullable=True),
        sa.Column("last_automation_run", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["business_id"], ["businesses.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("business_id"),
    )
    op.create_index(
        "ix_business_settings_auto_sync", "business_settings", ["auto_sync_enabled", "auto_sync_slot"], unique=False
    )

    op.create_table(
        "reviews",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("business_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("google_review_id", sa.String(512), nullable=True),
        sa.Column("customer_name", sa.String(255), nullable=True),
        sa.Column("customer_avatar_url", sa.Text(), nullable=True),
        sa.Column("rating", sa.Integer(), nullable=False),
        sa.Column("review_text", sa.Text(), nullable=True),
        sa.Column("review_date", sa.DateTime(), nullable=True),
        sa.Column("status", sa.String(20), nullable=True, server_default="pending"),
        sa.Column("ai_reply", sa.Text(), nullable=True),
        sa.Column("final_reply", sa.Text(), nullable=True),
        sa.Column("reply_tone", sa.String(32), nullable=True),
        sa.Column("posted_at", sa.DateTime(), nullable=True),
        sa.Column("automated_reply", sa.Boolean(), nullable=True, server_default=sa.false()),
        sa.Column("auto_approved", sa.Boolean(), nullable=True, server_default=sa.false()),
        sa.Column("automation_failed", sa.Boolean(), nullable=True, server_default=sa.false()),
        sa.Column("automation_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["business_id"], ["businesses.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("business_id", "google_review_id", name="uq_review_business_google_id"),
    )
    op.create_index("ix_reviews_business_status", "reviews", ["business_id", "status"], unique=False)
    op.create_index("ix_reviews_business_created", "reviews", ["business_id", "created_at"], unique=False)
    op.create_index("ix_reviews_automation_failed", "reviews", ["business_id", "automation_failed"], unique=False)

    op.create_table(
        "automation_runs",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("business_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("slot_id", sa.String(16), nullable=True),
        sa.Column("trigger_type", sa.String(16), nullable=True, server_default="manual"),
        sa.Column("success", sa.Boolean(), nullable=True, server_default=sa.true()),
        sa.Column("processed_reviews", sa.Integer(), nullable=True, server_default="0"),
        sa.Column("generated_replies", sa.Integer(), nullable=True, server_default="0"),
        sa.Column("auto_approved", sa.Integer(), nullable=True, server_default="0"),
        sa.Column("auto_posted", sa.Integer(), nullable=True, server_default="0"),
        sa.Column("emails_sent", sa.Integer(), nullable=True, server_default="0"),
        sa.Column("error_count", sa.Integer(), nullable=True, server_default="0"),
        sa.Column("errors", postgresql.JSON(astext_type=sa.Text()), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True, server_default="0"),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["business_id"], ["businesses.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_automation_runs_business_completed", "automation_runs", ["business_id", "completed_at"], unique=False
    )

    op.create_table(
        "automation_leases",
        sa.Column("business_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("owner", sa.String(64), nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["business_id"], ["businesses.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("business_id"),
    )

    op.create_table(
        "subscriptions",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("plan_id", sa.String(32), nullable=True, server_default="basic"),
        sa.Column("status", sa.String(32), nullable=True, server_default="active"),
        sa.Column("current_period_end", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id"),
    )

    op.create_table(
        "activity_log",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("business_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("category", sa.String(50), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("details", postgresql.JSON(astext_type=sa.Text()), nullable=True),
        sa.Column("entity_type", sa.String(50), nullable=True),
        sa.Column("entity_id", sa.String(255), nullable=True),
        sa.Column("status", sa.String(20), nullable=True, server_default="success"),
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["business_id"], ["businesses.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_activity_log_business_id", "activity_log", ["business_id"], unique=False)
    op.create_index("ix_activity_log_category", "activity_log", ["category"], unique=False)
    op.create_index("ix_activity_log_action", "activity_log", ["action"], unique=False)
    op.create_index("ix_activity_log_created_at", "activity_log", ["created_at"], unique=False)
    op.create_index("ix_activity_log_entity", "activity_log", ["entity_type", "entity_id"], unique=False)


def downgrade() -> None:
    op.drop_table("activity_log")
    op.drop_table("subscriptions")
    op.drop_table("automation_leases")
    op.drop_table("automation_runs")
    op.drop_table("reviews")
    op.drop_table("business_settings")
    op.drop_table("businesses")
