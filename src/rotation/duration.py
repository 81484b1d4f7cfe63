"""Parsing of compact duration tokens such as ``30m``, ``8h``, ``3d`` and ``2w``."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import timedelta

from rotation.errors import InvalidDurationError

_DURATION_PATTERN = re.compile(r"([0-9]+)([mhdw])")

UNIT_MILLISECONDS: dict[str, int] = {
    "m": 60_000,
    "h": 3_600_000,
    "d": 86_400_000,
    "w": 604_800_000,
}


@dataclass(frozen=True)
class ParsedDuration:
    """Duration token split into its value, unit and millisecond length."""

    value: int
    unit: str
    milliseconds: int

    @property
    def timedelta(self) -> timedelta:
        """Return the duration as a timedelta."""
        return timedelta(milliseconds=self.milliseconds)

    def __str__(self) -> str:
        return f"{self.value}{self.unit}"


def parse_duration(token: str) -> ParsedDuration:
    """Parse a duration token, raising InvalidDurationError when malformed."""
    if not isinstance(token, str):
        raise InvalidDurationError(token)
    match = _DURATION_PATTERN.fullmatch(token)
    if match is None:
        raise InvalidDurationError(token)
    value = int(match.group(1))
    if value < 1:
        raise InvalidDurationError(token)
    unit = match.group(2)
    return ParsedDuration(value=value, unit=unit, milliseconds=value * UNIT_MILLISECONDS[unit])
