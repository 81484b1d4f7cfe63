"""Time-bounded overrides and the single effective override per schedule."""

from __future__ import annotations

import logging
from contextlib import closing
from datetime import datetime, timezone
from typing import Callable, TypeVar

from sqlalchemy.orm import Session

from config import settings
from rotation import data_access
from rotation.duration import parse_duration
from rotation.mappers import to_override_view
from rotation.validation import require_non_empty, validate_timezone
from rotation.views import OverrideView
from time_utils import ensure_utc

ResultT = TypeVar("ResultT")
logger = logging.getLogger(__name__)


class OverrideStore:
    """Create, look up and sweep schedule overrides.

    The active override is always decided by comparing ``end_time`` with the
    caller's ``now``; the periodic sweep only reclaims rows and never affects
    which override is considered active.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        now_provider: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the store with a session factory and clock."""
        self._session_factory = session_factory
        self._now_provider = now_provider or (lambda: datetime.now(timezone.utc))

    def active_override(self, schedule_id: str, now: datetime | None = None) -> OverrideView | None:
        """Return the override in effect for the schedule at ``now``."""
        instant = ensure_utc(now or self._now_provider())

        def handler(session: Session) -> OverrideView | None:
            row = data_access.get_active_override(session, schedule_id, instant)
            return to_override_view(row) if row is not None else None

        override = self._execute(handler)
        if override is not None and not override.is_active(instant):
            return None
        return override

    def create(
        self,
        schedule_id: str,
        replacement_identity: str,
        duration_token: str,
        reason: str | None,
        created_by: str,
        workspace_id: str,
        timezone_name: str | None = None,
        *,
        original_identity: str | None = None,
        start_time: datetime | None = None,
    ) -> OverrideView:
        """Persist an override lasting ``duration_token`` from now (or ``start_time``)."""
        duration = parse_duration(duration_token)
        replacement = require_non_empty(replacement_identity, "replacement_identity")
        author = require_non_empty(created_by, "created_by")
        zone_name = timezone_name or settings.sync.default_timezone
        validate_timezone(zone_name)
        start = ensure_utc(start_time or self._now_provider())

        def handler(session: Session) -> OverrideView:
            data_access.require_schedule(session, schedule_id)
            row = data_access.create_override(
                session,
                schedule_id=schedule_id,
                replacement_identity=replacement,
                duration=duration,
                start_time=start,
                timezone_name=zone_name,
                created_by=author,
                workspace_id=workspace_id,
                reason=reason.strip() if reason and reason.strip() else None,
                original_identity=original_identity,
            )
            return to_override_view(row)

        override = self._execute(handler)
        logger.info(
            "Override created: schedule=%s override=%s duration=%s ends_at=%s",
            schedule_id,
            override.id,
            duration,
            override.end_time.isoformat(),
        )
        return override

    def sweep_expired(self, now: datetime | None = None) -> int:
        """Delete overrides that ended before ``now``; returns the number removed."""
        instant = ensure_utc(now or self._now_provider())
        removed = self._execute(lambda session: data_access.delete_expired_overrides(session, instant))
        logger.info("Expired override sweep completed: removed=%s", removed)
        return removed

    def _execute(self, handler: Callable[[Session], ResultT]) -> ResultT:
        """Execute store work inside a managed session."""
        with closing(self._session_factory()) as session:
            session.expire_on_commit = False
            try:
                result = handler(session)
                session.commit()
            except Exception:
                session.rollback()
                raise
        return result
