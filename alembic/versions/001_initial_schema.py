"""Initial schema: parties, cases, documents, events, tokens, calendars and sync log.

Revision ID: 001
Revises:
Create Date: 2026-10-17

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def upgrade() -> None:
    # Enable extensions
    op.execute("CREATE EXTENSION IF NOT EXISTS \"uuid-ossp\"")

    # Operators table
    op.create_table(
        "operators",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text("uuid_generate_v4()")),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Clients table
    op.create_table(
        "clients",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text("uuid_generate_v4()")),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        *_timestamps(),
    )

    # Dossiers table
    op.create_table(
        "dossiers",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text("uuid_generate_v4()")),
        sa.Column("client_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("reference", sa.String(50), nullable=False, unique=True),
        sa.Column("title", sa.String(255), nullable=False, server_default=""),
        sa.Column("status", sa.String(30), server_default="open"),
        sa.Column("created_by_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("operators.id", ondelete="SET NULL"), nullable=True),
        sa.Column("onedrive_folder_id", sa.String(255), nullable=True),
        sa.Column("onedrive_folder_path", sa.String(1024), nullable=True),
        sa.Column("onedrive_cabinet_folder_id", sa.String(255), nullable=True),
        sa.Column("onedrive_client_folder_id", sa.String(255), nullable=True),
        sa.Column("onedrive_last_sync", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )

    # Documents table
    op.create_table(
        "documents",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text("uuid_generate_v4()")),
        sa.Column("dossier_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("dossiers.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("original_name", sa.String(255), nullable=False),
        sa.Column("document_type", sa.String(30), server_default="other"),
        sa.Column("remote_file_id", sa.String(255), nullable=True, index=True),
        sa.Column("web_url", sa.Text, nullable=True),
        sa.Column("download_url", sa.Text, nullable=True),
        sa.Column("size_bytes", sa.BigInteger, nullable=True),
        sa.Column("mime_type", sa.String(150), nullable=True),
        sa.Column("extension", sa.String(20), nullable=True),
        sa.Column("remote_modified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("location", sa.String(32), nullable=False, server_default="cabinet"),
        sa.Column("uploaded_by_type", sa.String(32), nullable=False),
        sa.Column("uploaded_by_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("is_sensitive", sa.Boolean, server_default=sa.false()),
        sa.Column("visible_to_client", sa.Boolean, server_default=sa.false()),
        *_timestamps(),
    )

    # OAuth tokens table
    op.create_table(
        "oauth_tokens",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text("uuid_generate_v4()")),
        sa.Column("service", sa.String(32), nullable=False),
        sa.Column("operator_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("operators.id", ondelete="CASCADE"), nullable=True),
        sa.Column("access_token", sa.Text, nullable=False),
        sa.Column("refresh_token", sa.Text, nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("account_email", sa.String(255), nullable=True),
        sa.Column("account_name", sa.String(255), nullable=True),
        sa.Column("scopes", sa.Text, nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_oauth_token_operator", "oauth_tokens", ["service", "operator_id"], unique=True)
    # One shared (operator-less) token per service
    op.create_index(
        "idx_oauth_token_shared",
        "oauth_tokens",
        ["service"],
        unique=True,
        postgresql_where=sa.text("operator_id IS NULL"),
    )

    # Remote calendars table
    op.create_table(
        "remote_calendars",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text("uuid_generate_v4()")),
        sa.Column("token_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("oauth_tokens.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("calendar_id", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("color", sa.String(20), nullable=True),
        sa.Column("is_active", sa.Boolean, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_index("idx_remote_calendar_unique", "remote_calendars", ["token_id", "calendar_id"], unique=True)

    # Events table
    op.create_table(
        "events",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text("uuid_generate_v4()")),
        sa.Column("dossier_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("dossiers.id", ondelete="SET NULL"), nullable=True, index=True),
        sa.Column("remote_calendar_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("remote_calendars.id", ondelete="SET NULL"), nullable=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("event_type", sa.String(30), server_default="other"),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ends_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("all_day", sa.Boolean, server_default=sa.false()),
        sa.Column("place", sa.String(255), nullable=True),
        sa.Column("room", sa.String(100), nullable=True),
        sa.Column("address", sa.String(500), nullable=True),
        sa.Column("remote_event_id", sa.String(255), nullable=True, index=True),
        sa.Column("remote_last_sync", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sync_enabled", sa.Boolean, server_default=sa.true()),
        *_timestamps(),
    )

    # Sync logs table
    op.create_table(
        "sync_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text("uuid_generate_v4()")),
        sa.Column("sync_type", sa.String(32), nullable=False),
        sa.Column("mode", sa.String(32), nullable=False),
        sa.Column("outcome", sa.String(32), nullable=False),
        sa.Column("items_processed", sa.Integer, server_default="0"),
        sa.Column("items_created", sa.Integer, server_default="0"),
        sa.Column("items_updated", sa.Integer, server_default="0"),
        sa.Column("items_deleted", sa.Integer, server_default="0"),
        sa.Column("items_errored", sa.Integer, server_default="0"),
        sa.Column("message", sa.Text, nullable=True),
        sa.Column("details", postgresql.JSONB, nullable=True),
        sa.Column("duration_ms", sa.Integer, nullable=True),
        sa.Column("triggered_by_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("operators.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_sync_logs_type_created", "sync_logs", ["sync_type", "created_at"])


def downgrade() -> None:
    op.drop_table("sync_logs")
    op.drop_table("events")
    op.drop_table("remote_calendars")
    op.drop_table("oauth_tokens")
    op.drop_table("documents")
    op.drop_table("dossiers")
    op.drop_table("clients")
    op.drop_table("operators")
