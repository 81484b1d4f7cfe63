"""Per-mapping exclusive sections for sync, shared by every process.

A sync holds a lease row in ``mapping_sync_locks`` keyed by mapping id while it
resolves, writes the membership and records the log entry. The primary key
makes acquisition atomic across Celery workers and CLI invocations, and the
lease expiry lets a crashed holder's section be reclaimed.
"""

from __future__ import annotations

import logging
import time
from contextlib import closing, contextmanager
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterator

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import settings
from ids import LOCK_HOLDER_PREFIX, new_id
from models import MappingSyncLock
from rotation.errors import SyncInProgressError
from time_utils import ensure_utc

logger = logging.getLogger(__name__)


class MappingLockRegistry:
    """Acquire and release database leases on mapping ids.

    Different mappings never contend; a second sync of the same mapping polls
    until the first releases its lease or ``wait_seconds`` elapse.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        lease_seconds: int | None = None,
        wait_seconds: float | None = None,
        poll_interval: float = 0.05,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._lease = timedelta(
            seconds=lease_seconds if lease_seconds is not None else settings.sync.lock_lease_seconds
        )
        self._wait_seconds = wait_seconds if wait_seconds is not None else settings.sync.lock_wait_seconds
        self._poll_interval = poll_interval
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def try_acquire(self, mapping_id: str, holder: str) -> bool:
        """Take the mapping's lease if it is free or expired."""
        now = self._clock()
        with closing(self._session_factory()) as session:
            try:
                session.query(MappingSyncLock).filter(
                    MappingSyncLock.mapping_id == mapping_id,
                    MappingSyncLock.expires_at < now,
                ).delete(synchronize_session=False)
                session.add(
                    MappingSyncLock(
                        mapping_id=mapping_id,
                        holder=holder,
                        acquired_at=now,
                        expires_at=now + self._lease,
                    )
                )
                session.commit()
            except IntegrityError:
                session.rollback()
                return False
            except Exception:
                session.rollback()
                raise
        return True

    def release(self, mapping_id: str, holder: str) -> bool:
        """Drop the lease if ``holder`` still owns it."""
        with closing(self._session_factory()) as session:
            try:
                removed = (
                    session.query(MappingSyncLock)
                    .filter(
                        MappingSyncLock.mapping_id == mapping_id,
                        MappingSyncLock.holder == holder,
                    )
                    .delete(synchronize_session=False)
                )
                session.commit()
            except Exception:
                session.rollback()
                raise
        if not removed:
            logger.warning("Sync lease for mapping %s expired before release", mapping_id)
        return bool(removed)

    def is_locked(self, mapping_id: str) -> bool:
        """Return whether an unexpired lease exists for the mapping."""
        with closing(self._session_factory()) as session:
            row = session.get(MappingSyncLock, mapping_id)
            if row is None:
                return False
            expires_at = ensure_utc(row.expires_at)
        return expires_at >= self._clock()

    @contextmanager
    def hold(self, mapping_id: str) -> Iterator[None]:
        """Block until the mapping's section is free, then hold it.

        Raises:
            SyncInProgressError: The lease stayed taken for ``wait_seconds``.
        """
        holder = new_id(LOCK_HOLDER_PREFIX)
        deadline = time.monotonic() + self._wait_seconds
        while not self.try_acquire(mapping_id, holder):
            if time.monotonic() >= deadline:
                raise SyncInProgressError(mapping_id)
            time.sleep(self._poll_interval)
        try:
            yield
        finally:
            self.release(mapping_id, holder)
