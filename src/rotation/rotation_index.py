"""Which rotation member is on duty at a given instant.

The calculation is a pure function of the schedule and ``now``:

1. The rotation interval comes from the frequency (a month is a fixed 30 days)
   or from the custom duration token.
2. Elapsed time is measured from the schedule's ``created_at`` epoch. When the
   schedule-local start time has not yet been reached today, one day is taken
   off so a 09:00 hand-off does not advance at midnight.
3. Whole intervals elapsed, modulo the member count, is the index.

Only the day-boundary offset is timezone aware; DST shifts inside the elapsed
interval are not compensated.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from rotation.duration import parse_duration
from rotation.errors import InvalidDurationError, RotationValidationError
from rotation.views import InternalRotation, ScheduleView
from time_utils import ensure_utc, to_zone

DAY_MS = 86_400_000

FREQUENCY_MILLISECONDS: dict[str, int] = {
    "daily": DAY_MS,
    "weekly": 7 * DAY_MS,
    "monthly": 30 * DAY_MS,
}


def interval_milliseconds(frequency: str, custom_interval: str | None = None) -> int:
    """Return the rotation interval length in milliseconds."""
    if frequency == "custom":
        if not custom_interval:
            raise InvalidDurationError(custom_interval)
        return parse_duration(custom_interval).milliseconds
    try:
        return FREQUENCY_MILLISECONDS[frequency]
    except KeyError:
        raise RotationValidationError(
            f"Unsupported rotation frequency: {frequency}",
            {"frequency": frequency},
        ) from None


def parse_start_time(value: str) -> tuple[int, int]:
    """Parse an ``HH:MM`` 24-hour start time into hour and minute."""
    try:
        parsed = datetime.strptime(value.strip(), "%H:%M")
    except (AttributeError, ValueError) as exc:
        raise RotationValidationError(
            f"Rotation start time must be HH:MM, got {value!r}",
            {"rotation_start_time": value},
        ) from exc
    return parsed.hour, parsed.minute


def rotation_start_today(now: datetime, timezone_name: str, start_time: str) -> datetime:
    """Return today's hand-off instant in the schedule's local calendar."""
    hour, minute = parse_start_time(start_time)
    local_now = to_zone(now, timezone_name)
    return local_now.replace(hour=hour, minute=minute, second=0, microsecond=0)


def elapsed_milliseconds(start: datetime, end: datetime) -> int:
    """Return whole milliseconds from start to end, floored; negative when end < start."""
    return (ensure_utc(end) - ensure_utc(start)) // timedelta(milliseconds=1)


def current_index(schedule: ScheduleView, now: datetime) -> int:
    """Return the index of the on-duty member, or 0 when there are no members."""
    rotation = schedule.rotation
    if not isinstance(rotation, InternalRotation):
        raise RotationValidationError(
            f"Schedule {schedule.id} is not an internal rotation",
            {"schedule_id": schedule.id, "kind": schedule.kind},
        )
    member_count = len(rotation.members)
    if member_count == 0:
        return 0

    now = ensure_utc(now)
    interval_ms = interval_milliseconds(rotation.frequency, rotation.custom_interval)
    elapsed_ms = elapsed_milliseconds(schedule.created_at, now)
    if now < rotation_start_today(now, schedule.timezone, schedule.rotation_start_time):
        elapsed_ms -= DAY_MS

    rotations_passed = elapsed_ms // interval_ms
    return rotations_passed % member_count
