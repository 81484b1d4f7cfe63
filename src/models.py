"""Data models for rotation schedules, overrides, group mappings and sync logs."""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.ext.orderinglist import ordering_list
from sqlalchemy.orm import declarative_base, relationship

# SQLAlchemy base
Base = declarative_base()

ScheduleKindEnum = Enum(
    "internal",
    "pagerduty",
    "opsgenie",
    name="schedule_kind",
    native_enum=False,
)
RotationFrequencyEnum = Enum(
    "daily",
    "weekly",
    "monthly",
    "custom",
    name="rotation_frequency",
    native_enum=False,
)
ConflictResolutionEnum = Enum(
    "merge",
    "priority",
    "round_robin",
    name="conflict_resolution",
    native_enum=False,
)
DurationUnitEnum = Enum(
    "m",
    "h",
    "d",
    "w",
    name="duration_unit",
    native_enum=False,
)
SyncStatusEnum = Enum(
    "success",
    "error",
    name="sync_status",
    native_enum=False,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Schedule(Base):
    """On-call rotation or external provider binding."""

    __tablename__ = "schedules"

    id = Column(String(64), primary_key=True)
    name = Column(String(200), nullable=False)
    kind = Column(ScheduleKindEnum, nullable=False)
    frequency = Column(RotationFrequencyEnum, nullable=False, default="daily")
    custom_interval = Column(String(32), nullable=True)
    integration_config = Column(JSON, nullable=False, default=dict)
    timezone = Column(String(100), nullable=False, default="UTC")
    rotation_start_time = Column(String(5), nullable=False, default="09:00")
    workspace_id = Column(String(64), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    members = relationship(
        "ScheduleMember",
        order_by="ScheduleMember.position",
        collection_class=ordering_list("position"),
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class ScheduleMember(Base):
    """One rotation slot; position is the rotation order."""

    __tablename__ = "schedule_members"
    __table_args__ = (
        UniqueConstraint("schedule_id", "position", name="uq_schedule_member_position"),
    )

    id = Column(Integer, primary_key=True)
    schedule_id = Column(String(64), ForeignKey("schedules.id"), nullable=False)
    position = Column(Integer, nullable=False)
    identity = Column(String(200), nullable=False)


class UserGroup(Base):
    """Group in the membership system that a mapping keeps in sync."""

    __tablename__ = "user_groups"
    __table_args__ = (
        UniqueConstraint("name", "workspace_id", name="uq_user_group_name_workspace"),
    )

    id = Column(String(64), primary_key=True)
    external_group_id = Column(String(200), nullable=False)
    name = Column(String(200), nullable=False)
    workspace_id = Column(String(64), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class ScheduleMapping(Base):
    """Binding of one user group to an ordered set of schedules."""

    __tablename__ = "schedule_mappings"
    __table_args__ = (UniqueConstraint("user_group_id", name="uq_schedule_mapping_group"),)

    id = Column(String(64), primary_key=True)
    user_group_id = Column(String(64), ForeignKey("user_groups.id"), nullable=False)
    conflict_resolution = Column(ConflictResolutionEnum, nullable=False, default="merge")
    workspace_id = Column(String(64), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    entries = relationship(
        "ScheduleMappingEntry",
        order_by="ScheduleMappingEntry.position",
        collection_class=ordering_list("position"),
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class ScheduleMappingEntry(Base):
    """Schedule reference inside a mapping; position is the priority order."""

    __tablename__ = "schedule_mapping_entries"
    __table_args__ = (
        UniqueConstraint("mapping_id", "position", name="uq_mapping_entry_position"),
    )

    id = Column(Integer, primary_key=True)
    mapping_id = Column(String(64), ForeignKey("schedule_mappings.id"), nullable=False)
    position = Column(Integer, nullable=False)
    # No foreign key: schedules removed elsewhere are skipped during sync.
    schedule_id = Column(String(64), nullable=False)


class Override(Base):
    """Time-bounded manual replacement of a schedule's on-call identity."""

    __tablename__ = "overrides"
    __table_args__ = (
        CheckConstraint("end_time > start_time", name="ck_overrides_window"),
        Index("ix_overrides_schedule_end", "schedule_id", "end_time"),
    )

    id = Column(String(64), primary_key=True)
    schedule_id = Column(String(64), ForeignKey("schedules.id"), nullable=False)
    original_identity = Column(String(200), nullable=True)
    replacement_identity = Column(String(200), nullable=False)
    start_time = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    end_time = Column(DateTime(timezone=True), nullable=False)
    duration_value = Column(Integer, nullable=False)
    duration_unit = Column(DurationUnitEnum, nullable=False)
    timezone = Column(String(100), nullable=False, default="UTC")
    reason = Column(Text, nullable=True)
    created_by = Column(String(200), nullable=False)
    workspace_id = Column(String(64), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class SyncLog(Base):
    """Append-only record of one sync attempt for a mapping."""

    __tablename__ = "sync_logs"

    id = Column(String(64), primary_key=True)
    mapping_id = Column(String(64), ForeignKey("schedule_mappings.id"), nullable=False, index=True)
    status = Column(SyncStatusEnum, nullable=False)
    users_synced = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    synced_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class MappingSyncLock(Base):
    """Lease held while one process syncs a mapping."""

    __tablename__ = "mapping_sync_locks"

    # No foreign key: a sync of an unknown mapping still takes the lease first.
    mapping_id = Column(String(64), primary_key=True)
    holder = Column(String(64), nullable=False)
    acquired_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=False)
