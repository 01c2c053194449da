"""create signal monitor tables

Revision ID: 0001_create_signal_monitor_tables
Revises:
Create Date: 2026-10-18 12:00:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_create_signal_monitor_tables"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("plan", sa.String(length=32), nullable=False, server_default="free"),
        sa.Column("webhook_url", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "monitored_profiles",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("account_id", sa.Integer(), sa.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("linkedin_url", sa.String(length=512), nullable=False),
        sa.Column("keywords", sa.JSON(), nullable=False),
        sa.Column("last_post_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_scan_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_monitored_profiles_account_id", "monitored_profiles", ["account_id"])
    op.create_index("ix_monitored_profiles_next_scan_at", "monitored_profiles", ["next_scan_at"])

    op.create_table(
        "signal_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "profile_id",
            sa.Integer(),
            sa.ForeignKey("monitored_profiles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("keyword", sa.String(length=255), nullable=False),
        sa.Column("post_url", sa.String(length=1024), nullable=False),
        sa.Column("post_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("snippet", sa.Text(), nullable=True),
        sa.Column("detected_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("profile_id", "post_url", "keyword", name="uq_signal_events_profile_url_keyword"),
    )
    op.create_index("ix_signal_events_profile_id", "signal_events", ["profile_id"])
    op.create_index("ix_signal_events_post_url", "signal_events", ["post_url"])
    op.create_index("ix_signal_events_detected_at", "signal_events", ["detected_at"])

    op.create_table(
        "engagement_scans",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("account_id", sa.Integer(), sa.ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True),
        sa.Column("post_url", sa.String(length=1024), nullable=False),
        sa.Column("engagement_types", sa.JSON(), nullable=False),
        sa.Column("limit_per_type", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="processing"),
        sa.Column("total_engagers", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("unique_profiles", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("profiles_enriched", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("companies_enriched", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "engagers",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "scan_id",
            sa.String(length=36),
            sa.ForeignKey("engagement_scans.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=255), nullable=False, server_default="Unknown"),
        sa.Column("job_title", sa.Text(), nullable=True),
        sa.Column("location", sa.String(length=255), nullable=True),
        sa.Column("industry", sa.String(length=255), nullable=True),
        sa.Column("linkedin_url", sa.String(length=512), nullable=False),
        sa.Column("total_connections", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("follower_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("company_name", sa.String(length=255), nullable=True),
        sa.Column("employee_size", sa.String(length=64), nullable=True),
        sa.Column("company_location", sa.String(length=255), nullable=True),
        sa.Column("company_profile_url", sa.String(length=512), nullable=True),
        sa.Column("reaction_type", sa.String(length=255), nullable=True),
        sa.Column("comment_text", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("scan_id", "linkedin_url", name="uq_engagers_scan_url"),
    )
    op.create_index("ix_engagers_scan_id", "engagers", ["scan_id"])


def downgrade() -> None:
    op.drop_index("ix_engagers_scan_id", table_name="engagers")
    op.drop_table("engagers")
    op.drop_table("engagement_scans")
    op.drop_index("ix_signal_events_detected_at", table_name="signal_events")
    op.drop_index("ix_signal_events_post_url", table_name="signal_events")
    op.drop_index("ix_signal_events_profile_id", table_name="signal_events")
    op.drop_table("signal_events")
    op.drop_index("ix_monitored_profiles_next_scan_at", table_name="monitored_profiles")
    op.drop_index("ix_monitored_profiles_account_id", table_name="monitored_profiles")
    op.drop_table("monitored_profiles")
    op.drop_table("accounts")
