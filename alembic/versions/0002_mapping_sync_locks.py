"""Add mapping sync leases shared by workers and the CLI.

Revision ID: 0002_mapping_sync_locks
Revises: 0001_rotation_schema
Create Date: 2026-10-18 00:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "0002_mapping_sync_locks"
down_revision = "0001_rotation_schema"
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create the mapping_sync_locks table."""
    op.create_table(
        "mapping_sync_locks",
        sa.Column("mapping_id", sa.String(length=64), primary_key=True),
        sa.Column("holder", sa.String(length=64), nullable=False),
        sa.Column("acquired_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    """Drop the mapping_sync_locks table."""
    op.drop_table("mapping_sync_locks")
