"""Immutable views and request payloads exchanged with the rotation services."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Mapping


@dataclass(frozen=True)
class InternalRotation:
    """Rotation computed from an ordered member list and a cadence."""

    frequency: str
    members: tuple[str, ...]
    custom_interval: str | None = None


@dataclass(frozen=True)
class ExternalRotation:
    """Rotation owned by an external on-call provider."""

    provider: str
    integration_config: Mapping[str, str] = field(default_factory=dict)


RotationSource = InternalRotation | ExternalRotation


@dataclass(frozen=True)
class ScheduleView:
    """Read model for a schedule and its rotation source."""

    id: str
    name: str
    workspace_id: str
    timezone: str
    rotation_start_time: str
    created_at: datetime
    rotation: RotationSource

    @property
    def kind(self) -> str:
        """Return the stored schedule kind."""
        if isinstance(self.rotation, ExternalRotation):
            return self.rotation.provider
        return "internal"

    @property
    def members(self) -> tuple[str, ...]:
        """Return rotation members; external schedules have none."""
        if isinstance(self.rotation, InternalRotation):
            return self.rotation.members
        return ()


@dataclass(frozen=True)
class OverrideView:
    """Read model for a time-bounded override."""

    id: str
    schedule_id: str
    replacement_identity: str
    start_time: datetime
    end_time: datetime
    duration_value: int
    duration_unit: str
    timezone: str
    created_by: str
    workspace_id: str
    reason: str | None = None
    original_identity: str | None = None

    def is_active(self, now: datetime) -> bool:
        """Return whether the override covers the instant; the end is exclusive."""
        return self.start_time <= now < self.end_time


@dataclass(frozen=True)
class UserGroupView:
    """Read model for a synchronized user group."""

    id: str
    external_group_id: str
    name: str
    workspace_id: str


@dataclass(frozen=True)
class MappingView:
    """Read model for a mapping; schedule_ids order is the priority order."""

    id: str
    user_group_id: str
    schedule_ids: tuple[str, ...]
    conflict_resolution: str
    workspace_id: str


@dataclass(frozen=True)
class SyncLogView:
    """Read model for one sync attempt."""

    id: str
    mapping_id: str
    status: str
    users_synced: int
    error_message: str | None
    synced_at: datetime


@dataclass(frozen=True)
class SyncResult:
    """Outcome of a successful mapping sync."""

    mapping_id: str
    user_group_name: str
    users_synced: int
    users: tuple[str, ...]


@dataclass(frozen=True)
class RotationStatus:
    """Current on-call snapshot for one schedule."""

    schedule_id: str
    schedule_name: str
    kind: str
    current_identity: str | None
    is_override: bool
    override_reason: str | None = None
    override_ends_at: datetime | None = None
    warning: str | None = None


@dataclass(frozen=True)
class ScheduleCreateRequest:
    """Input payload for creating a schedule."""

    name: str
    kind: str
    workspace_id: str
    frequency: str = "daily"
    custom_interval: str | None = None
    members: tuple[str, ...] = ()
    integration_config: Mapping[str, str] | None = None
    timezone: str | None = None
    rotation_start_time: str | None = None


@dataclass(frozen=True)
class OverrideCreateRequest:
    """Input payload for creating an override."""

    schedule_id: str
    replacement_identity: str
    duration: str
    created_by: str
    workspace_id: str
    reason: str | None = None
    timezone: str | None = None


@dataclass(frozen=True)
class MappingCreateRequest:
    """Input payload for binding schedules to a user group."""

    user_group_name: str
    schedule_ids: tuple[str, ...]
    workspace_id: str
    conflict_resolution: str = "merge"


@dataclass(frozen=True)
class MappingCreateResult:
    """Created mapping plus the outcome of its initial sync."""

    mapping: MappingView
    user_group: UserGroupView
    sync_result: SyncResult | None
    sync_error: str | None = None
