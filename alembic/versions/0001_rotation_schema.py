"""Create schedule, override, user group, mapping and sync log tables.

Revision ID: 0001_rotation_schema
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "0001_rotation_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create the rotation sync tables."""
    schedule_kind_enum = sa.Enum(
        "internal",
        "pagerduty",
        "opsgenie",
        name="schedule_kind",
        native_enum=False,
    )
    rotation_frequency_enum = sa.Enum(
        "daily",
        "weekly",
        "monthly",
        "custom",
        name="rotation_frequency",
        native_enum=False,
    )
    conflict_resolution_enum = sa.Enum(
        "merge",
        "priority",
        "round_robin",
        name="conflict_resolution",
        native_enum=False,
    )
    duration_unit_enum = sa.Enum("m", "h", "d", "w", name="duration_unit", native_enum=False)
    sync_status_enum = sa.Enum("success", "error", name="sync_status", native_enum=False)

    op.create_table(
        "schedules",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("kind", schedule_kind_enum, nullable=False),
        sa.Column("frequency", rotation_frequency_enum, nullable=False),
        sa.Column("custom_interval", sa.String(length=32), nullable=True),
        sa.Column("integration_config", sa.JSON(), nullable=False),
        sa.Column("timezone", sa.String(length=100), nullable=False),
        sa.Column("rotation_start_time", sa.String(length=5), nullable=False),
        sa.Column("workspace_id", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_schedules_workspace_id", "schedules", ["workspace_id"])

    op.create_table(
        "schedule_members",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("schedule_id", sa.String(length=64), sa.ForeignKey("schedules.id"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("identity", sa.String(length=200), nullable=False),
        sa.UniqueConstraint("schedule_id", "position", name="uq_schedule_member_position"),
    )

    op.create_table(
        "user_groups",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("external_group_id", sa.String(length=200), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("workspace_id", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("name", "workspace_id", name="uq_user_group_name_workspace"),
    )
    op.create_index("ix_user_groups_workspace_id", "user_groups", ["workspace_id"])

    op.create_table(
        "schedule_mappings",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column(
            "user_group_id",
            sa.String(length=64),
            sa.ForeignKey("user_groups.id"),
            nullable=False,
        ),
        sa.Column("conflict_resolution", conflict_resolution_enum, nullable=False),
        sa.Column("workspace_id", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("user_group_id", name="uq_schedule_mapping_group"),
    )
    op.create_index("ix_schedule_mappings_workspace_id", "schedule_mappings", ["workspace_id"])

    op.create_table(
        "schedule_mapping_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "mapping_id",
            sa.String(length=64),
            sa.ForeignKey("schedule_mappings.id"),
            nullable=False,
        ),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("schedule_id", sa.String(length=64), nullable=False),
        sa.UniqueConstraint("mapping_id", "position", name="uq_mapping_entry_position"),
    )

    op.create_table(
        "overrides",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("schedule_id", sa.String(length=64), sa.ForeignKey("schedules.id"), nullable=False),
        sa.Column("original_identity", sa.String(length=200), nullable=True),
        sa.Column("replacement_identity", sa.String(length=200), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("duration_value", sa.Integer(), nullable=False),
        sa.Column("duration_unit", duration_unit_enum, nullable=False),
        sa.Column("timezone", sa.String(length=100), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(length=200), nullable=False),
        sa.Column("workspace_id", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("end_time > start_time", name="ck_overrides_window"),
    )
    op.create_index("ix_overrides_schedule_end", "overrides", ["schedule_id", "end_time"])
    op.create_index("ix_overrides_workspace_id", "overrides", ["workspace_id"])

    op.create_table(
        "sync_logs",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column(
            "mapping_id",
            sa.String(length=64),
            sa.ForeignKey("schedule_mappings.id"),
            nullable=False,
        ),
        sa.Column("status", sync_status_enum, nullable=False),
        sa.Column("users_synced", sa.Integer(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("synced_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_sync_logs_mapping_id", "sync_logs", ["mapping_id"])


def downgrade() -> None:
    """Drop the rotation sync tables."""
    op.drop_index("ix_sync_logs_mapping_id", table_name="sync_logs")
    op.drop_table("sync_logs")
    op.drop_index("ix_overrides_workspace_id", table_name="overrides")
    op.drop_index("ix_overrides_schedule_end", table_name="overrides")
    op.drop_table("overrides")
    op.drop_table("schedule_mapping_entries")
    op.drop_index("ix_schedule_mappings_workspace_id", table_name="schedule_mappings")
    op.drop_table("schedule_mappings")
    op.drop_index("ix_user_groups_workspace_id", table_name="user_groups")
    op.drop_table("user_groups")
    op.drop_table("schedule_members")
    op.drop_index("ix_schedules_workspace_id", table_name="schedules")
    op.drop_table("schedules")
