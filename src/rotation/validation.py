"""Reusable validation helpers for schedule, override and mapping inputs."""

from __future__ import annotations

from typing import Iterable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from models import ConflictResolutionEnum, RotationFrequencyEnum, ScheduleKindEnum
from rotation.duration import parse_duration
from rotation.errors import RotationValidationError
from rotation.rotation_index import parse_start_time


def require_non_empty(value: str | None, field: str) -> str:
    """Ensure a string field is present and non-empty, returning it stripped."""
    if value is None or not value.strip():
        raise RotationValidationError(f"{field} is required.", {"field": field})
    return value.strip()


def validate_kind(kind: str) -> None:
    """Ensure the schedule kind is supported."""
    if kind not in ScheduleKindEnum.enums:
        raise RotationValidationError(
            f"Unsupported schedule kind: {kind}",
            {"field": "kind", "allowed": list(ScheduleKindEnum.enums)},
        )


def validate_frequency(frequency: str, custom_interval: str | None) -> None:
    """Ensure the frequency is supported and custom intervals are well formed."""
    if frequency not in RotationFrequencyEnum.enums:
        raise RotationValidationError(
            f"Unsupported rotation frequency: {frequency}",
            {"field": "frequency", "allowed": list(RotationFrequencyEnum.enums)},
        )
    if frequency == "custom":
        if not custom_interval:
            raise RotationValidationError(
                "custom_interval is required for custom frequency.",
                {"field": "custom_interval"},
            )
        parse_duration(custom_interval.strip())


def validate_timezone(timezone_name: str) -> None:
    """Ensure the timezone is a known IANA name."""
    try:
        ZoneInfo(timezone_name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise RotationValidationError(
            f"Invalid timezone: {timezone_name}",
            {"field": "timezone"},
        ) from exc


def validate_start_time(value: str) -> str:
    """Ensure the rotation start time is HH:MM and return it zero padded."""
    hour, minute = parse_start_time(value)
    return f"{hour:02d}:{minute:02d}"


def normalize_identities(values: Iterable[str], field: str) -> tuple[str, ...]:
    """Strip identities and reject blanks; order and repeats are preserved."""
    identities: list[str] = []
    for value in values:
        if value is None or not str(value).strip():
            raise RotationValidationError(f"{field} must not contain blank entries.", {"field": field})
        identities.append(str(value).strip())
    return tuple(identities)


def validate_conflict_resolution(value: str) -> None:
    """Ensure the conflict resolution strategy name is supported."""
    if value not in ConflictResolutionEnum.enums:
        raise RotationValidationError(
            f"Unsupported conflict resolution: {value}",
            {"field": "conflict_resolution", "allowed": list(ConflictResolutionEnum.enums)},
        )
