"""Calendar sync mode on OAuth tokens.

Revision ID: 002
Revises: 001
Create Date: 2026-10-17

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # auto = event mutations push to Google, manual = only explicit syncs do
    op.add_column(
        "oauth_tokens",
        sa.Column("sync_mode", sa.String(32), nullable=False, server_default="auto"),
    )


def downgrade() -> None:
    op.drop_column("oauth_tokens", "sync_mode")
