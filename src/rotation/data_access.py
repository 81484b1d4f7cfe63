"""Data access layer for schedules, overrides, user groups, mappings and sync logs."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable

from sqlalchemy import and_
from sqlalchemy.orm import Session

from ids import (
    MAPPING_PREFIX,
    OVERRIDE_PREFIX,
    SCHEDULE_PREFIX,
    SYNC_LOG_PREFIX,
    USER_GROUP_PREFIX,
    new_id,
)
from models import (
    Override,
    Schedule,
    ScheduleMapping,
    ScheduleMappingEntry,
    ScheduleMember,
    SyncLog,
    SyncStatusEnum,
    UserGroup,
)
from rotation.duration import ParsedDuration
from rotation.errors import RotationValidationError, ScheduleNotFoundError
from rotation.validation import (
    normalize_identities,
    require_non_empty,
    validate_conflict_resolution,
    validate_frequency,
    validate_kind,
    validate_start_time,
    validate_timezone,
)
from rotation.views import ScheduleCreateRequest
from time_utils import ensure_utc

logger = logging.getLogger(__name__)


def _normalize_timestamp(value: datetime, label: str) -> datetime:
    """Ensure timestamps are timezone-aware UTC, defaulting to UTC if naive."""
    if value.tzinfo is None:
        logger.warning("Naive timestamp provided for %s; assuming UTC.", label)
    return ensure_utc(value)


def create_schedule(
    session: Session,
    request: ScheduleCreateRequest,
    *,
    default_timezone: str,
    default_start_time: str,
    now: datetime | None = None,
) -> Schedule:
    """Validate and persist a schedule with its ordered members."""
    timestamp = _normalize_timestamp(now or datetime.now(timezone.utc), "created_at")
    name = require_non_empty(request.name, "name")
    workspace_id = require_non_empty(request.workspace_id, "workspace_id")
    validate_kind(request.kind)
    validate_frequency(request.frequency, request.custom_interval)
    timezone_name = request.timezone or default_timezone
    validate_timezone(timezone_name)
    start_time = validate_start_time(request.rotation_start_time or default_start_time)
    members = normalize_identities(request.members, "members")
    if request.kind != "internal" and members:
        raise RotationValidationError(
            "members are only supported for internal schedules.",
            {"field": "members", "kind": request.kind},
        )

    schedule = Schedule(
        id=new_id(SCHEDULE_PREFIX),
        name=name,
        kind=request.kind,
        frequency=request.frequency,
        custom_interval=request.custom_interval.strip() if request.custom_interval else None,
        integration_config=dict(request.integration_config or {}),
        timezone=timezone_name,
        rotation_start_time=start_time,
        workspace_id=workspace_id,
        created_at=timestamp,
        updated_at=timestamp,
    )
    schedule.members = [
        ScheduleMember(position=position, identity=identity)
        for position, identity in enumerate(members)
    ]
    session.add(schedule)
    session.flush()
    return schedule


def get_schedule(session: Session, schedule_id: str) -> Schedule | None:
    """Return a schedule by id."""
    return session.get(Schedule, schedule_id)


def require_schedule(session: Session, schedule_id: str) -> Schedule:
    """Return a schedule or raise when missing."""
    schedule = get_schedule(session, schedule_id)
    if schedule is None:
        raise ScheduleNotFoundError(schedule_id)
    return schedule


def list_schedules(session: Session, workspace_id: str) -> list[Schedule]:
    """Return a workspace's schedules in creation order."""
    return (
        session.query(Schedule)
        .filter(Schedule.workspace_id == workspace_id)
        .order_by(Schedule.created_at.asc(), Schedule.id.asc())
        .all()
    )


def get_schedules_by_ids(session: Session, schedule_ids: Iterable[str]) -> dict[str, Schedule]:
    """Return the existing schedules among the ids, keyed by id."""
    ids = list(dict.fromkeys(schedule_ids))
    if not ids:
        return {}
    rows = session.query(Schedule).filter(Schedule.id.in_(ids)).all()
    return {row.id: row for row in rows}


def replace_schedule_members(
    session: Session,
    schedule_id: str,
    members: Iterable[str],
    *,
    now: datetime | None = None,
) -> Schedule:
    """Replace the rotation member list in place, preserving the given order."""
    schedule = require_schedule(session, schedule_id)
    identities = normalize_identities(members, "members")
    if schedule.kind != "internal":
        raise RotationValidationError(
            "members are only supported for internal schedules.",
            {"field": "members", "kind": schedule.kind},
        )
    schedule.members.clear()
    # Flush the removals first so new rows can reuse the freed positions.
    session.flush()
    for position, identity in enumerate(identities):
        schedule.members.append(ScheduleMember(position=position, identity=identity))
    schedule.updated_at = _normalize_timestamp(now or datetime.now(timezone.utc), "updated_at")
    session.flush()
    return schedule


def create_override(
    session: Session,
    *,
    schedule_id: str,
    replacement_identity: str,
    duration: ParsedDuration,
    start_time: datetime,
    timezone_name: str,
    created_by: str,
    workspace_id: str,
    reason: str | None = None,
    original_identity: str | None = None,
) -> Override:
    """Persist an override ending ``duration`` after ``start_time``."""
    start = _normalize_timestamp(start_time, "start_time")
    override = Override(
        id=new_id(OVERRIDE_PREFIX),
        schedule_id=schedule_id,
        original_identity=original_identity,
        replacement_identity=replacement_identity,
        start_time=start,
        end_time=start + duration.timedelta,
        duration_value=duration.value,
        duration_unit=duration.unit,
        timezone=timezone_name,
        reason=reason,
        created_by=created_by,
        workspace_id=workspace_id,
        created_at=start,
    )
    session.add(override)
    session.flush()
    return override


def get_active_override(session: Session, schedule_id: str, now: datetime) -> Override | None:
    """Return the override covering ``now`` with the latest start time."""
    now = _normalize_timestamp(now, "now")
    return (
        session.query(Override)
        .filter(
            and_(
                Override.schedule_id == schedule_id,
                Override.start_time <= now,
                Override.end_time > now,
            )
        )
        .order_by(Override.start_time.desc(), Override.created_at.desc(), Override.id.desc())
        .first()
    )


def delete_expired_overrides(session: Session, now: datetime) -> int:
    """Delete overrides whose end time is strictly before ``now``."""
    now = _normalize_timestamp(now, "now")
    return (
        session.query(Override)
        .filter(Override.end_time < now)
        .delete(synchronize_session=False)
    )


def get_user_group(session: Session, user_group_id: str) -> UserGroup | None:
    """Return a user group by id."""
    return session.get(UserGroup, user_group_id)


def get_user_group_by_name(session: Session, name: str, workspace_id: str) -> UserGroup | None:
    """Return the user group with the name in the workspace."""
    return (
        session.query(UserGroup)
        .filter(and_(UserGroup.name == name, UserGroup.workspace_id == workspace_id))
        .first()
    )


def create_user_group(
    session: Session,
    *,
    name: str,
    external_group_id: str,
    workspace_id: str,
    now: datetime | None = None,
) -> UserGroup:
    """Persist a user group record."""
    group = UserGroup(
        id=new_id(USER_GROUP_PREFIX),
        external_group_id=external_group_id,
        name=name,
        workspace_id=workspace_id,
        created_at=_normalize_timestamp(now or datetime.now(timezone.utc), "created_at"),
    )
    session.add(group)
    session.flush()
    return group


def get_mapping(session: Session, mapping_id: str) -> ScheduleMapping | None:
    """Return a mapping by id."""
    return session.get(ScheduleMapping, mapping_id)


def get_mapping_for_group(session: Session, user_group_id: str) -> ScheduleMapping | None:
    """Return the mapping bound to a user group, if any."""
    return (
        session.query(ScheduleMapping)
        .filter(ScheduleMapping.user_group_id == user_group_id)
        .first()
    )


def list_mappings(session: Session, workspace_id: str) -> list[ScheduleMapping]:
    """Return a workspace's mappings in creation order."""
    return (
        session.query(ScheduleMapping)
        .filter(ScheduleMapping.workspace_id == workspace_id)
        .order_by(ScheduleMapping.created_at.asc(), ScheduleMapping.id.asc())
        .all()
    )


def create_mapping(
    session: Session,
    *,
    user_group_id: str,
    schedule_ids: Iterable[str],
    conflict_resolution: str,
    workspace_id: str,
    now: datetime | None = None,
) -> ScheduleMapping:
    """Persist a mapping with its ordered schedule references."""
    validate_conflict_resolution(conflict_resolution)
    ordered_ids = list(dict.fromkeys(normalize_identities(schedule_ids, "schedule_ids")))
    if not ordered_ids:
        raise RotationValidationError("schedule_ids must not be empty.", {"field": "schedule_ids"})
    mapping = ScheduleMapping(
        id=new_id(MAPPING_PREFIX),
        user_group_id=user_group_id,
        conflict_resolution=conflict_resolution,
        workspace_id=workspace_id,
        created_at=_normalize_timestamp(now or datetime.now(timezone.utc), "created_at"),
    )
    mapping.entries = [
        ScheduleMappingEntry(position=position, schedule_id=schedule_id)
        for position, schedule_id in enumerate(ordered_ids)
    ]
    session.add(mapping)
    session.flush()
    return mapping


def record_sync_log(
    session: Session,
    *,
    mapping_id: str,
    status: str,
    users_synced: int,
    error_message: str | None = None,
    now: datetime | None = None,
) -> SyncLog:
    """Append a sync log entry."""
    if status not in SyncStatusEnum.enums:
        raise ValueError(f"Unsupported sync status: {status}")
    entry = SyncLog(
        id=new_id(SYNC_LOG_PREFIX),
        mapping_id=mapping_id,
        status=status,
        users_synced=users_synced,
        error_message=error_message,
        synced_at=_normalize_timestamp(now or datetime.now(timezone.utc), "synced_at"),
    )
    session.add(entry)
    session.flush()
    return entry


def list_sync_logs(session: Session, mapping_id: str, limit: int = 50) -> list[SyncLog]:
    """Return the latest sync log entries for a mapping, newest first."""
    return (
        session.query(SyncLog)
        .filter(SyncLog.mapping_id == mapping_id)
        .order_by(SyncLog.synced_at.desc(), SyncLog.id.desc())
        .limit(limit)
        .all()
    )


def list_workspace_ids(session: Session) -> list[str]:
    """Return every workspace id that owns a schedule or a mapping."""
    schedule_ids = {row[0] for row in session.query(Schedule.workspace_id).distinct().all()}
    mapping_ids = {row[0] for row in session.query(ScheduleMapping.workspace_id).distinct().all()}
    return sorted(schedule_ids | mapping_ids)
