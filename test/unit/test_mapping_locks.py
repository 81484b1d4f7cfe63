"""Unit tests for the per-mapping sync leases."""

import multiprocessing
import os
import threading
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from models import Base
from rotation.errors import SyncInProgressError
from rotation.locks import MappingLockRegistry
from rotation.runtime import build_runtime
from rotation.views import MappingCreateRequest, ScheduleCreateRequest

from helpers.rotation_stubs import RecordingSink

NOW = datetime(2025, 3, 3, 12, 0, tzinfo=timezone.utc)


def _file_engine(db_path: Path) -> Engine:
    """Build an independent engine over one SQLite file."""
    return create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )


def _seed_mapping(session_factory: sessionmaker) -> str:
    runtime = build_runtime(session_factory, providers={}, sink=RecordingSink(session_factory))
    schedule = runtime.service.create_schedule(
        ScheduleCreateRequest(name="Frontend", kind="internal", workspace_id="T1", members=("A",))
    )
    result = runtime.service.create_mapping(
        MappingCreateRequest(user_group_name="@oncall", schedule_ids=(schedule.id,), workspace_id="T1")
    )
    return result.mapping.id


def test_second_holder_cannot_acquire(sqlite_session_factory: sessionmaker) -> None:
    """A held lease blocks other holders until it is released."""
    registry = MappingLockRegistry(sqlite_session_factory)

    assert registry.try_acquire("map_1", "lease_a") is True
    assert registry.try_acquire("map_1", "lease_b") is False
    assert registry.try_acquire("map_2", "lease_b") is True
    assert registry.is_locked("map_1") is True

    assert registry.release("map_1", "lease_a") is True
    assert registry.is_locked("map_1") is False
    assert registry.try_acquire("map_1", "lease_b") is True


def test_release_by_other_holder_is_ignored(sqlite_session_factory: sessionmaker) -> None:
    """Only the owner can release a lease."""
    registry = MappingLockRegistry(sqlite_session_factory)
    registry.try_acquire("map_1", "lease_a")

    assert registry.release("map_1", "lease_b") is False
    assert registry.is_locked("map_1") is True


def test_expired_lease_is_reclaimed(sqlite_session_factory: sessionmaker) -> None:
    """A crashed holder's lease is taken over once it expires."""
    clock = {"now": NOW}
    registry = MappingLockRegistry(sqlite_session_factory, lease_seconds=60, clock=lambda: clock["now"])
    registry.try_acquire("map_1", "lease_crashed")

    clock["now"] = NOW + timedelta(seconds=30)
    assert registry.try_acquire("map_1", "lease_new") is False

    clock["now"] = NOW + timedelta(seconds=61)
    assert registry.try_acquire("map_1", "lease_new") is True


def test_hold_gives_up_after_wait(sqlite_session_factory: sessionmaker) -> None:
    """Waiting on a lease that is never released fails with SyncInProgressError."""
    registry = MappingLockRegistry(sqlite_session_factory, wait_seconds=0.2, poll_interval=0.01)
    registry.try_acquire("map_1", "lease_other")

    with pytest.raises(SyncInProgressError):
        with registry.hold("map_1"):
            pass


def test_hold_releases_on_error(sqlite_session_factory: sessionmaker) -> None:
    """The lease is dropped even when the section raises."""
    registry = MappingLockRegistry(sqlite_session_factory)

    with pytest.raises(RuntimeError):
        with registry.hold("map_1"):
            assert registry.is_locked("map_1") is True
            raise RuntimeError("write failed")

    assert registry.is_locked("map_1") is False


class _OverlapSink(RecordingSink):
    """Sink that records how many writes run at once across sinks."""

    state = {"active": 0, "max_active": 0}
    guard = threading.Lock()

    def replace_members(self, group, identities) -> None:
        with self.guard:
            self.state["active"] += 1
            self.state["max_active"] = max(self.state["max_active"], self.state["active"])
        time.sleep(0.1)
        super().replace_members(group, identities)
        with self.guard:
            self.state["active"] -= 1


def test_separate_runtimes_do_not_overlap(tmp_path: Path) -> None:
    """Runtimes with their own engines and registries still serialize one mapping."""
    db_path = tmp_path / "rotation.db"
    seed_engine = _file_engine(db_path)
    Base.metadata.create_all(seed_engine)
    seed_factory = sessionmaker(bind=seed_engine)
    mapping_id = _seed_mapping(seed_factory)
    _OverlapSink.state.update(active=0, max_active=0)

    runtimes = []
    for _ in range(3):
        factory = sessionmaker(bind=_file_engine(db_path))
        runtimes.append(build_runtime(factory, providers={}, sink=_OverlapSink(factory)))
    errors: list[BaseException] = []

    def _run(runtime) -> None:
        try:
            runtime.service.sync_now(mapping_id)
        except BaseException as exc:
            errors.append(exc)

    threads = [threading.Thread(target=_run, args=(runtime,)) for runtime in runtimes]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert _OverlapSink.state["max_active"] == 1
    assert len(runtimes[0].service.list_sync_logs(mapping_id)) == 4


class _MarkerSink(RecordingSink):
    """Sink that leaves marker files so overlap across processes is visible."""

    def __init__(self, session_factory: sessionmaker, marker_dir: Path) -> None:
        super().__init__(session_factory)
        self.marker_dir = marker_dir

    def replace_members(self, group, identities) -> None:
        pid = os.getpid()
        if any(self.marker_dir.glob("active-*")):
            (self.marker_dir / f"overlap-{pid}").touch()
        active = self.marker_dir / f"active-{pid}"
        active.touch()
        time.sleep(0.3)
        active.unlink()
        super().replace_members(group, identities)


def _sync_in_child(db_path: str, marker_dir: str, mapping_id: str) -> None:
    factory = sessionmaker(bind=_file_engine(Path(db_path)))
    runtime = build_runtime(factory, providers={}, sink=_MarkerSink(factory, Path(marker_dir)))
    runtime.service.sync_now(mapping_id)


@pytest.mark.skipif("fork" not in multiprocessing.get_all_start_methods(), reason="needs fork")
def test_separate_processes_do_not_overlap(tmp_path: Path) -> None:
    """A manual sync and a worker sync in different processes never write at once."""
    db_path = tmp_path / "rotation.db"
    seed_engine = _file_engine(db_path)
    Base.metadata.create_all(seed_engine)
    seed_factory = sessionmaker(bind=seed_engine)
    mapping_id = _seed_mapping(seed_factory)
    seed_engine.dispose()
    marker_dir = tmp_path / "markers"
    marker_dir.mkdir()

    context = multiprocessing.get_context("fork")
    processes = [
        context.Process(target=_sync_in_child, args=(str(db_path), str(marker_dir), mapping_id))
        for _ in range(2)
    ]
    for process in processes:
        process.start()
    for process in processes:
        process.join(timeout=60)

    assert [process.exitcode for process in processes] == [0, 0]
    assert sorted(path.name for path in marker_dir.glob("overlap-*")) == []
