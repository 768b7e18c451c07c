"""Initial schema - webhook registrations, forms, responses and ping audit trail.

Revision ID: 001
Revises:
Create Date: 2026-10-19
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
    # Airtable webhook subscriptions and their payload cursors
    op.create_table(
        "webhook_registrations",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("webhook_id", sa.String(64), nullable=False),
        sa.Column("mac_secret_encrypted", sa.Text),
        sa.Column("notification_url", sa.Text, nullable=False),
        sa.Column("base_id", sa.String(64)),
        sa.Column("cursor_for_next_payload", sa.Integer, nullable=False, server_default="1"),
        sa.Column("notifications_enabled", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("hook_enabled", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("deleted", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("expiration_time", sa.DateTime(timezone=True)),
        sa.Column("last_payload_fetch_time", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_webhook_registrations_webhook_id", "webhook_registrations", ["webhook_id"], unique=True,
    )
    op.create_index(
        "ix_webhook_registrations_notification_url", "webhook_registrations", ["notification_url"],
    )

    # Forms generated from Airtable tables (owned by form CRUD)
    op.create_table(
        "forms",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("owner_id", sa.String(64)),
        sa.Column("airtable_base_id", sa.String(64), nullable=False),
        sa.Column("airtable_table_id", sa.String(64), nullable=False),
        sa.Column("title", sa.String(255)),
        sa.Column("questions", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_forms_airtable_table_id", "forms", ["airtable_table_id"])

    # Responses mirrored from Airtable rows
    op.create_table(
        "form_responses",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "form_id", postgresql.UUID(as_uuid=True),
            sa.ForeignKey("forms.id"), nullable=False,
        ),
        sa.Column("airtable_record_id", sa.String(64), nullable=False),
        sa.Column("answers", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column("deleted_in_airtable", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("form_id", "airtable_record_id", name="uq_form_responses_form_record"),
    )
    op.create_index("ix_form_responses_form_id", "form_responses", ["form_id"])
    op.create_index("ix_form_responses_airtable_record_id", "form_responses", ["airtable_record_id"])

    # Ping audit trail - records every Airtable notification on arrival
    op.create_table(
        "webhook_pings",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("webhook_id", sa.String(64), nullable=True),
        sa.Column("payload_hash", sa.String(64), nullable=False),
        sa.Column("verification", sa.String(20), nullable=False),
        sa.Column("processing_status", sa.String(20), nullable=False, server_default="received"),
        sa.Column("records_applied", sa.Integer, nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("correlation_id", sa.String(64), nullable=True),
    )
    op.create_index("ix_webhook_pings_webhook_id", "webhook_pings", ["webhook_id"])
    op.create_index("ix_webhook_pings_payload_hash", "webhook_pings", ["payload_hash"])
    op.create_index("ix_webhook_pings_correlation_id", "webhook_pings", ["correlation_id"])
    op.create_index("ix_webhook_pings_received_at", "webhook_pings", ["received_at"])


def downgrade() -> None:
    op.drop_table("webhook_pings")
    op.drop_table("form_responses")
    op.drop_table("forms")
    op.drop_table("webhook_registrations")
