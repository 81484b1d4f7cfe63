"""Synchronize user group membership from the schedules mapped onto it.

A sync resolves every schedule of a mapping in stored order, combines the
identities with the mapping's conflict resolution strategy, writes the
result to the group as a full replacement and appends a sync log entry.
The resolve, write and log steps for one mapping run inside that mapping's
exclusive section, a database lease shared by every worker and CLI process,
so a manual sync and the periodic sync never interleave.
"""

from __future__ import annotations

import logging
from contextlib import closing
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, TypeVar

from sqlalchemy.orm import Session

from logs import fields, log_context
from rotation import data_access
from rotation.conflict_resolution import ScheduleContribution, get_strategy
from rotation.errors import MappingNotFoundError, UserGroupNotFoundError
from rotation.group_membership import GroupMembershipSink
from rotation.locks import MappingLockRegistry
from rotation.mappers import to_mapping_view, to_schedule_view, to_user_group_view
from rotation.resolver import ScheduleResolver
from rotation.views import MappingView, ScheduleView, SyncResult, UserGroupView

ResultT = TypeVar("ResultT")
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _SyncTarget:
    mapping: MappingView
    group: UserGroupView | None
    schedules: dict[str, ScheduleView]


class MultiScheduleSyncEngine:
    """Sync mappings one at a time or across a workspace."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        resolver: ScheduleResolver,
        sink: GroupMembershipSink,
        *,
        locks: MappingLockRegistry | None = None,
        now_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._resolver = resolver
        self._sink = sink
        self._locks = locks or MappingLockRegistry(session_factory)
        self._now_provider = now_provider or (lambda: datetime.now(timezone.utc))

    def sync(self, mapping_id: str) -> SyncResult:
        """Sync one mapping and return what was written.

        Raises:
            MappingNotFoundError: The mapping does not exist.
            UserGroupNotFoundError: The mapping's user group is missing.
            MembershipWriteError: Writing the membership failed.
            SyncInProgressError: Another process held the mapping for too long.
        """
        with log_context({fields.MAPPING_ID: mapping_id}), self._locks.hold(mapping_id):
            target = self._execute(lambda session: self._load(session, mapping_id))
            if target is None:
                raise MappingNotFoundError(mapping_id)

            try:
                if target.group is None:
                    raise UserGroupNotFoundError(target.mapping.user_group_id)
                users = self._resolve_members(target)
                self._sink.replace_members(target.group, users)
            except Exception as exc:
                self._record(mapping_id, "error", 0, str(exc))
                raise

            self._record(mapping_id, "success", len(users), None)
            logger.info(
                "Mapping synced: group=%s users=%s strategy=%s",
                target.group.name,
                len(users),
                target.mapping.conflict_resolution,
            )
            return SyncResult(
                mapping_id=mapping_id,
                user_group_name=target.group.name,
                users_synced=len(users),
                users=users,
            )

    def sync_all(self, workspace_id: str) -> list[SyncResult]:
        """Sync every mapping in the workspace; failed mappings are logged and left out."""
        mapping_ids = self._execute(
            lambda session: [mapping.id for mapping in data_access.list_mappings(session, workspace_id)]
        )
        results: list[SyncResult] = []
        with log_context({fields.WORKSPACE_ID: workspace_id}):
            for mapping_id in mapping_ids:
                try:
                    results.append(self.sync(mapping_id))
                except Exception:
                    logger.exception("Mapping sync failed: mapping=%s", mapping_id)
            logger.info(
                "Workspace sync completed: synced=%s failed=%s",
                len(results),
                len(mapping_ids) - len(results),
            )
        return results

    def _load(self, session: Session, mapping_id: str) -> _SyncTarget | None:
        mapping = data_access.get_mapping(session, mapping_id)
        if mapping is None:
            return None
        view = to_mapping_view(mapping)
        group = data_access.get_user_group(session, view.user_group_id)
        schedules = data_access.get_schedules_by_ids(session, view.schedule_ids)
        return _SyncTarget(
            mapping=view,
            group=to_user_group_view(group) if group is not None else None,
            schedules={schedule_id: to_schedule_view(row) for schedule_id, row in schedules.items()},
        )

    def _resolve_members(self, target: _SyncTarget) -> tuple[str, ...]:
        now = self._now_provider()
        contributions: list[ScheduleContribution] = []
        for schedule_id in target.mapping.schedule_ids:
            schedule = target.schedules.get(schedule_id)
            if schedule is None:
                logger.info("Skipping missing schedule %s", schedule_id)
                continue
            identity = self._resolver.current_identity(schedule, now)
            contributions.append(ScheduleContribution(schedule_id=schedule_id, identity=identity))
        strategy = get_strategy(target.mapping.conflict_resolution)
        return strategy.combine(contributions)

    def _record(self, mapping_id: str, status: str, users_synced: int, error_message: str | None) -> None:
        """Append a sync log entry; a failure here is logged and never replaces the sync outcome."""
        try:
            self._execute(
                lambda session: data_access.record_sync_log(
                    session,
                    mapping_id=mapping_id,
                    status=status,
                    users_synced=users_synced,
                    error_message=error_message,
                    now=self._now_provider(),
                )
            )
        except Exception:
            logger.exception("Failed to record sync log: mapping=%s status=%s", mapping_id, status)

    def _execute(self, handler: Callable[[Session], ResultT]) -> ResultT:
        """Execute engine work inside a managed session."""
        with closing(self._session_factory()) as session:
            session.expire_on_commit = False
            try:
                result = handler(session)
                session.commit()
            except Exception:
                session.rollback()
                raise
        return result
