"""Unit tests for override persistence, activation windows and sweeping."""

from contextlib import closing
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.orm import sessionmaker

from models import Override
from rotation import data_access
from rotation.errors import InvalidDurationError, RotationValidationError, ScheduleNotFoundError
from rotation.override_store import OverrideStore
from rotation.views import ScheduleCreateRequest

START = datetime(2025, 3, 3, 12, 0, tzinfo=timezone.utc)


def _create_schedule(session_factory: sessionmaker) -> str:
    """Persist an internal schedule and return its id."""
    with closing(session_factory()) as session:
        schedule = data_access.create_schedule(
            session,
            ScheduleCreateRequest(name="Primary", kind="internal", workspace_id="T1", members=("U1", "U2")),
            default_timezone="UTC",
            default_start_time="09:00",
            now=START - timedelta(days=10),
        )
        session.commit()
        return schedule.id


def _store(session_factory: sessionmaker, now: datetime = START) -> OverrideStore:
    return OverrideStore(session_factory, now_provider=lambda: now)


def test_create_computes_end_time_from_duration(sqlite_session_factory: sessionmaker) -> None:
    """The stored override ends duration milliseconds after creation."""
    schedule_id = _create_schedule(sqlite_session_factory)
    store = _store(sqlite_session_factory)

    override = store.create(schedule_id, "U9", "8h", "swap", "U1", "T1")

    assert override.start_time == START
    assert override.end_time == START + timedelta(hours=8)
    assert (override.duration_value, override.duration_unit) == (8, "h")
    assert override.timezone == "UTC"
    assert override.reason == "swap"
    assert override.id.startswith("ovr_")


def test_activation_boundary_is_exclusive(sqlite_session_factory: sessionmaker) -> None:
    """An override ending at T is active before T and inactive at T."""
    schedule_id = _create_schedule(sqlite_session_factory)
    store = _store(sqlite_session_factory)
    override = store.create(schedule_id, "U9", "1h", None, "U1", "T1")
    end = override.end_time

    assert store.active_override(schedule_id, end - timedelta(milliseconds=1)) is not None
    assert store.active_override(schedule_id, end) is None
    assert store.active_override(schedule_id, end + timedelta(seconds=1)) is None
    assert store.active_override(schedule_id, START - timedelta(seconds=1)) is None


def test_overlapping_overrides_prefer_latest_start(sqlite_session_factory: sessionmaker) -> None:
    """When two windows cover now, the later start wins."""
    schedule_id = _create_schedule(sqlite_session_factory)
    store = _store(sqlite_session_factory)
    store.create(schedule_id, "EARLY", "4h", None, "U1", "T1", start_time=START)
    store.create(schedule_id, "LATE", "1h", None, "U1", "T1", start_time=START + timedelta(hours=1))

    during_both = store.active_override(schedule_id, START + timedelta(minutes=90))
    after_late = store.active_override(schedule_id, START + timedelta(minutes=150))

    assert during_both is not None and during_both.replacement_identity == "LATE"
    assert after_late is not None and after_late.replacement_identity == "EARLY"


def test_sweep_removes_only_ended_overrides(sqlite_session_factory: sessionmaker) -> None:
    """Sweeping deletes overrides whose end is strictly before now."""
    schedule_id = _create_schedule(sqlite_session_factory)
    store = _store(sqlite_session_factory)
    store.create(schedule_id, "OLD", "30m", None, "U1", "T1")
    store.create(schedule_id, "EDGE", "1h", None, "U1", "T1")
    store.create(schedule_id, "CURRENT", "1d", None, "U1", "T1")

    removed = store.sweep_expired(START + timedelta(hours=1))

    with closing(sqlite_session_factory()) as session:
        remaining = sorted(row.replacement_identity for row in session.query(Override).all())
    assert removed == 1
    assert remaining == ["CURRENT", "EDGE"]


def test_sweep_is_idempotent(sqlite_session_factory: sessionmaker) -> None:
    """A second sweep at the same instant removes nothing."""
    schedule_id = _create_schedule(sqlite_session_factory)
    store = _store(sqlite_session_factory)
    store.create(schedule_id, "OLD", "30m", None, "U1", "T1")
    later = START + timedelta(hours=2)

    assert store.sweep_expired(later) == 1
    assert store.sweep_expired(later) == 0


def test_invalid_duration_persists_nothing(sqlite_session_factory: sessionmaker) -> None:
    """A malformed duration is rejected before anything is written."""
    schedule_id = _create_schedule(sqlite_session_factory)
    store = _store(sqlite_session_factory)

    with pytest.raises(InvalidDurationError):
        store.create(schedule_id, "U9", "forever", None, "U1", "T1")

    with closing(sqlite_session_factory()) as session:
        assert session.query(Override).count() == 0


def test_unknown_schedule_is_rejected(sqlite_session_factory: sessionmaker) -> None:
    """Overrides can only target existing schedules."""
    store = _store(sqlite_session_factory)

    with pytest.raises(ScheduleNotFoundError):
        store.create("sched_missing", "U9", "1h", None, "U1", "T1")


def test_blank_replacement_is_rejected(sqlite_session_factory: sessionmaker) -> None:
    """The replacement identity is required."""
    schedule_id = _create_schedule(sqlite_session_factory)
    store = _store(sqlite_session_factory)

    with pytest.raises(RotationValidationError):
        store.create(schedule_id, "  ", "1h", None, "U1", "T1")
