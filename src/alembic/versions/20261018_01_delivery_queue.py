"""Create bulk_campaigns and delivery_jobs tables

Revision ID: 20261018_01
Revises:
Create Date: 2026-10-18

"""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op


# revision identifiers, used by Alembic.
revision = "20261018_01"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create the campaign and delivery job tables."""
    op.create_table(
        "bulk_campaigns",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("subject", sa.String(length=998), nullable=False),
        sa.Column("body_text", sa.Text(), nullable=False),
        sa.Column("body_html", sa.Text(), nullable=True),
        sa.Column("reply_to", sa.String(length=320), nullable=True),
        sa.Column(
            "status",
            sa.String(length=20),
            nullable=False,
            server_default="draft",
        ),
        sa.Column(
            "total_recipients", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column(
            "cancel_requested",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('draft', 'sending', 'completed', 'cancelled')",
            name="ck_bulk_campaigns_status",
        ),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "delivery_jobs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("recipient", sa.String(length=320), nullable=False),
        sa.Column("cc", sa.JSON(), nullable=False),
        sa.Column("reply_to", sa.String(length=320), nullable=True),
        sa.Column("subject", sa.String(length=998), nullable=False),
        sa.Column("body_text", sa.Text(), nullable=False),
        sa.Column("body_html", sa.Text(), nullable=True),
        sa.Column(
            "attachments",
            sa.JSON(),
            nullable=False,
            comment="List of {filename, content_type, content_b64}",
        ),
        sa.Column(
            "status",
            sa.String(length=20),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="3"),
        sa.Column(
            "next_attempt_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "email_type",
            sa.String(length=50),
            nullable=False,
            server_default="submission",
        ),
        sa.Column("submission_id", sa.String(length=64), nullable=True),
        sa.Column("campaign_id", sa.Uuid(), nullable=True),
        sa.Column("campaign_position", sa.Integer(), nullable=True),
        sa.Column("provider_message_id", sa.String(length=255), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'sent', 'failed')",
            name="ck_delivery_jobs_status",
        ),
        sa.ForeignKeyConstraint(
            ["campaign_id"], ["bulk_campaigns.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_delivery_jobs_due", "delivery_jobs", ["status", "next_attempt_at"]
    )
    op.create_index(
        "ix_delivery_jobs_campaign_status",
        "delivery_jobs",
        ["campaign_id", "status"],
    )
    op.create_index(
        op.f("ix_delivery_jobs_submission_id"), "delivery_jobs", ["submission_id"]
    )


def downgrade() -> None:
    """Drop the delivery job and campaign tables."""
    op.drop_index(op.f("ix_delivery_jobs_submission_id"), table_name="delivery_jobs")
    op.drop_index("ix_delivery_jobs_campaign_status", table_name="delivery_jobs")
    op.drop_index("ix_delivery_jobs_due", table_name="delivery_jobs")
    op.drop_table("delivery_jobs")
    op.drop_table("bulk_campaigns")
