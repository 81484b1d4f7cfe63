"""Command surface for schedules, overrides, mappings and on-demand syncs."""

from __future__ import annotations

import logging
from contextlib import closing
from datetime import datetime, timezone
from typing import Callable, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import Settings, settings as default_settings
from rotation import data_access
from rotation.errors import (
    MappingConflictError,
    RotationServiceError,
    RotationValidationError,
    ScheduleNotFoundError,
)
from rotation.group_membership import GroupMembershipSink
from rotation.mappers import to_mapping_view, to_schedule_view, to_sync_log_view
from rotation.override_store import OverrideStore
from rotation.resolver import SOURCE_OVERRIDE, ScheduleResolver
from rotation.sync_engine import MultiScheduleSyncEngine
from rotation.validation import normalize_identities, validate_conflict_resolution
from rotation.views import (
    MappingCreateRequest,
    MappingCreateResult,
    MappingView,
    OverrideCreateRequest,
    OverrideView,
    RotationStatus,
    ScheduleCreateRequest,
    ScheduleView,
    SyncLogView,
    SyncResult,
)

ResultT = TypeVar("ResultT")
logger = logging.getLogger(__name__)


class RotationCommandService:
    """Operations exposed to chat commands, the CLI and the periodic workers."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        override_store: OverrideStore,
        resolver: ScheduleResolver,
        sync_engine: MultiScheduleSyncEngine,
        sink: GroupMembershipSink,
        *,
        settings: Settings | None = None,
        now_provider: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the service with its collaborators."""
        self._session_factory = session_factory
        self._override_store = override_store
        self._resolver = resolver
        self._sync_engine = sync_engine
        self._sink = sink
        self._settings = settings or default_settings
        self._now_provider = now_provider or (lambda: datetime.now(timezone.utc))

    def create_schedule(self, request: ScheduleCreateRequest) -> ScheduleView:
        """Create a schedule and return its view."""
        schedule = self._execute(
            lambda session: to_schedule_view(
                data_access.create_schedule(
                    session,
                    request,
                    default_timezone=self._settings.sync.default_timezone,
                    default_start_time=self._settings.sync.default_rotation_start_time,
                    now=self._now_provider(),
                )
            )
        )
        logger.info(
            "Schedule created: id=%s kind=%s members=%s",
            schedule.id,
            schedule.kind,
            len(schedule.members),
        )
        return schedule

    def get_schedule(self, schedule_id: str) -> ScheduleView:
        """Return a schedule or raise ScheduleNotFoundError."""
        return self._execute(
            lambda session: to_schedule_view(data_access.require_schedule(session, schedule_id))
        )

    def list_schedules(self, workspace_id: str) -> list[ScheduleView]:
        """Return the workspace's schedules in creation order."""
        return self._execute(
            lambda session: [
                to_schedule_view(row) for row in data_access.list_schedules(session, workspace_id)
            ]
        )

    def update_schedule_members(self, schedule_id: str, members: list[str] | tuple[str, ...]) -> ScheduleView:
        """Replace an internal schedule's rotation order."""
        return self._execute(
            lambda session: to_schedule_view(
                data_access.replace_schedule_members(
                    session,
                    schedule_id,
                    members,
                    now=self._now_provider(),
                )
            )
        )

    def create_override(self, request: OverrideCreateRequest) -> OverrideView:
        """Create an override, recording who was on call when it started."""
        schedule = self.get_schedule(request.schedule_id)
        if schedule.workspace_id != request.workspace_id:
            raise ScheduleNotFoundError(request.schedule_id)
        now = self._now_provider()
        duration = request.duration.strip() if isinstance(request.duration, str) else request.duration
        original_identity = self._resolver.current_identity(schedule, now)
        return self._override_store.create(
            request.schedule_id,
            request.replacement_identity,
            duration,
            request.reason,
            request.created_by,
            request.workspace_id,
            request.timezone or schedule.timezone,
            original_identity=original_identity,
            start_time=now,
        )

    def create_mapping(self, request: MappingCreateRequest) -> MappingCreateResult:
        """Bind schedules to a user group and run the first sync immediately.

        The mapping is kept even when the first sync fails; the failure is
        reported in ``sync_error`` and the periodic sync retries it.
        """
        validate_conflict_resolution(request.conflict_resolution)
        schedule_ids = tuple(dict.fromkeys(normalize_identities(request.schedule_ids, "schedule_ids")))
        if not schedule_ids:
            raise RotationValidationError("schedule_ids must not be empty.", {"field": "schedule_ids"})
        self._require_workspace_schedules(schedule_ids, request.workspace_id)

        group = self._sink.ensure_group(request.user_group_name, request.workspace_id)

        def handler(session: Session) -> MappingView:
            existing = data_access.get_mapping_for_group(session, group.id)
            if existing is not None:
                raise MappingConflictError(
                    f"User group {group.name} already has a schedule mapping.",
                    {"user_group_id": group.id, "mapping_id": existing.id},
                )
            return to_mapping_view(
                data_access.create_mapping(
                    session,
                    user_group_id=group.id,
                    schedule_ids=schedule_ids,
                    conflict_resolution=request.conflict_resolution,
                    workspace_id=request.workspace_id,
                    now=self._now_provider(),
                )
            )

        try:
            mapping = self._execute(handler)
        except IntegrityError as exc:
            raise MappingConflictError(
                f"User group {group.name} already has a schedule mapping.",
                {"user_group_id": group.id},
            ) from exc
        logger.info(
            "Mapping created: id=%s group=%s schedules=%s strategy=%s",
            mapping.id,
            group.name,
            len(mapping.schedule_ids),
            mapping.conflict_resolution,
        )

        try:
            sync_result = self._sync_engine.sync(mapping.id)
        except RotationServiceError as exc:
            logger.warning("Initial sync failed for mapping %s: %s", mapping.id, exc.message)
            return MappingCreateResult(mapping=mapping, user_group=group, sync_result=None, sync_error=exc.message)
        return MappingCreateResult(mapping=mapping, user_group=group, sync_result=sync_result)

    def list_mappings(self, workspace_id: str) -> list[MappingView]:
        """Return the workspace's mappings."""
        return self._execute(
            lambda session: [to_mapping_view(row) for row in data_access.list_mappings(session, workspace_id)]
        )

    def sync_now(self, mapping_id: str) -> SyncResult:
        """Sync one mapping on demand."""
        return self._sync_engine.sync(mapping_id)

    def sync_workspace(self, workspace_id: str) -> list[SyncResult]:
        """Sync every mapping of a workspace on demand."""
        return self._sync_engine.sync_all(workspace_id)

    def list_rotation_status(self, workspace_id: str) -> list[RotationStatus]:
        """Return who is on call for each schedule in the workspace right now."""
        now = self._now_provider()
        statuses: list[RotationStatus] = []
        for schedule in self.list_schedules(workspace_id):
            resolution = self._resolver.resolve(schedule, now)
            override = resolution.override
            statuses.append(
                RotationStatus(
                    schedule_id=schedule.id,
                    schedule_name=schedule.name,
                    kind=schedule.kind,
                    current_identity=resolution.identity,
                    is_override=resolution.source == SOURCE_OVERRIDE,
                    override_reason=override.reason if override else None,
                    override_ends_at=override.end_time if override else None,
                    warning=resolution.warning,
                )
            )
        return statuses

    def list_sync_logs(self, mapping_id: str, limit: int = 50) -> list[SyncLogView]:
        """Return a mapping's most recent sync log entries, newest first."""
        return self._execute(
            lambda session: [
                to_sync_log_view(row) for row in data_access.list_sync_logs(session, mapping_id, limit)
            ]
        )

    def _require_workspace_schedules(self, schedule_ids: tuple[str, ...], workspace_id: str) -> None:
        def handler(session: Session) -> None:
            found = data_access.get_schedules_by_ids(session, schedule_ids)
            for schedule_id in schedule_ids:
                schedule = found.get(schedule_id)
                if schedule is None or schedule.workspace_id != workspace_id:
                    raise ScheduleNotFoundError(schedule_id)

        self._execute(handler)

    def _execute(self, handler: Callable[[Session], ResultT]) -> ResultT:
        """Execute service work inside a managed session."""
        with closing(self._session_factory()) as session:
            session.expire_on_commit = False
            try:
                result = handler(session)
                session.commit()
            except Exception:
                session.rollback()
                raise
        return result
