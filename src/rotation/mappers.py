"""Convert ORM rows into immutable rotation views."""

from __future__ import annotations

from models import Override, Schedule, ScheduleMapping, SyncLog, UserGroup
from rotation.views import (
    ExternalRotation,
    InternalRotation,
    MappingView,
    OverrideView,
    ScheduleView,
    SyncLogView,
    UserGroupView,
)
from time_utils import ensure_utc


def to_schedule_view(schedule: Schedule) -> ScheduleView:
    if schedule.kind == "internal":
        rotation = InternalRotation(
            frequency=schedule.frequency,
            members=tuple(member.identity for member in schedule.members),
            custom_interval=schedule.custom_interval,
        )
    else:
        rotation = ExternalRotation(
            provider=schedule.kind,
            integration_config={
                str(key): str(value) for key, value in (schedule.integration_config or {}).items()
            },
        )
    return ScheduleView(
        id=schedule.id,
        name=schedule.name,
        workspace_id=schedule.workspace_id,
        timezone=schedule.timezone,
        rotation_start_time=schedule.rotation_start_time,
        created_at=ensure_utc(schedule.created_at),
        rotation=rotation,
    )


def to_override_view(override: Override) -> OverrideView:
    return OverrideView(
        id=override.id,
        schedule_id=override.schedule_id,
        replacement_identity=override.replacement_identity,
        start_time=ensure_utc(override.start_time),
        end_time=ensure_utc(override.end_time),
        duration_value=override.duration_value,
        duration_unit=override.duration_unit,
        timezone=override.timezone,
        created_by=override.created_by,
        workspace_id=override.workspace_id,
        reason=override.reason,
        original_identity=override.original_identity,
    )


def to_user_group_view(group: UserGroup) -> UserGroupView:
    return UserGroupView(
        id=group.id,
        external_group_id=group.external_group_id,
        name=group.name,
        workspace_id=group.workspace_id,
    )


def to_mapping_view(mapping: ScheduleMapping) -> MappingView:
    return MappingView(
        id=mapping.id,
        user_group_id=mapping.user_group_id,
        schedule_ids=tuple(entry.schedule_id for entry in mapping.entries),
        conflict_resolution=mapping.conflict_resolution,
        workspace_id=mapping.workspace_id,
    )


def to_sync_log_view(entry: SyncLog) -> SyncLogView:
    return SyncLogView(
        id=entry.id,
        mapping_id=entry.mapping_id,
        status=entry.status,
        users_synced=int(entry.users_synced or 0),
        error_message=entry.error_message,
        synced_at=ensure_utc(entry.synced_at),
    )
