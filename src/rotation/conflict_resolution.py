"""Strategies that combine per-schedule identities into one group membership."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Sequence

from rotation.errors import RotationValidationError


@dataclass(frozen=True)
class ScheduleContribution:
    """Identity resolved for one schedule of a mapping, in mapping order."""

    schedule_id: str
    identity: str | None


class ConflictResolutionStrategy(Protocol):
    """Combine ordered schedule contributions into the target membership."""

    name: str

    def combine(self, contributions: Sequence[ScheduleContribution]) -> tuple[str, ...]:
        """Return the membership; order is deterministic for identical inputs."""


class MergeAll:
    """Union of every resolved identity, duplicates collapsed in first-seen order."""

    name = "merge"

    def combine(self, contributions: Sequence[ScheduleContribution]) -> tuple[str, ...]:
        identities = (item.identity for item in contributions if item.identity)
        return tuple(dict.fromkeys(identities))


class PriorityBased:
    """The first schedule in mapping order that resolves to someone wins."""

    name = "priority"

    def combine(self, contributions: Sequence[ScheduleContribution]) -> tuple[str, ...]:
        for item in contributions:
            if item.identity:
                return (item.identity,)
        return ()


class RoundRobin(MergeAll):
    """Placeholder for rotation among schedules; combines like ``MergeAll`` for now."""

    name = "round_robin"


_STRATEGIES: dict[str, ConflictResolutionStrategy] = {
    strategy.name: strategy for strategy in (MergeAll(), PriorityBased(), RoundRobin())
}


def get_strategy(name: str) -> ConflictResolutionStrategy:
    """Return the strategy registered under ``name``."""
    try:
        return _STRATEGIES[name]
    except KeyError:
        raise RotationValidationError(
            f"Unsupported conflict resolution: {name}",
            {"conflict_resolution": name, "allowed": sorted(_STRATEGIES)},
        ) from None
