"""Resolve the single on-call identity of a schedule at an instant."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Mapping

from logs import fields, log_context
from rotation.errors import ExternalProviderError
from rotation.override_store import OverrideStore
from rotation.providers import ExternalScheduleProvider
from rotation.rotation_index import current_index
from rotation.views import ExternalRotation, OverrideView, ScheduleView

logger = logging.getLogger(__name__)

SOURCE_OVERRIDE = "override"
SOURCE_ROTATION = "rotation"
SOURCE_PROVIDER = "provider"


@dataclass(frozen=True)
class ScheduleResolution:
    """Resolved identity plus where it came from and any non-fatal warning."""

    schedule_id: str
    identity: str | None
    source: str
    override: OverrideView | None = None
    warning: str | None = None


class ScheduleResolver:
    """Apply override precedence on top of rotation or provider lookups."""

    def __init__(
        self,
        override_store: OverrideStore,
        providers: Mapping[str, ExternalScheduleProvider] | None = None,
    ) -> None:
        self._override_store = override_store
        self._providers = dict(providers or {})

    def current_identity(self, schedule: ScheduleView, now: datetime) -> str | None:
        """Return who is on call for the schedule at ``now``, or ``None``."""
        return self.resolve(schedule, now).identity

    def resolve(self, schedule: ScheduleView, now: datetime) -> ScheduleResolution:
        """Resolve the schedule; an active override always wins."""
        override = self._override_store.active_override(schedule.id, now)
        if override is not None:
            return ScheduleResolution(
                schedule_id=schedule.id,
                identity=override.replacement_identity,
                source=SOURCE_OVERRIDE,
                override=override,
            )

        rotation = schedule.rotation
        if isinstance(rotation, ExternalRotation):
            with log_context({fields.SCHEDULE_ID: schedule.id}):
                identity, warning = self._from_provider(schedule.id, rotation)
            return ScheduleResolution(
                schedule_id=schedule.id,
                identity=identity,
                source=SOURCE_PROVIDER,
                warning=warning,
            )

        members = schedule.members
        identity = members[current_index(schedule, now)] if members else None
        return ScheduleResolution(schedule_id=schedule.id, identity=identity, source=SOURCE_ROTATION)

    def _from_provider(
        self, schedule_id: str, rotation: ExternalRotation
    ) -> tuple[str | None, str | None]:
        """Ask the provider for the rotation's kind; failures degrade to nobody."""
        provider = self._providers.get(rotation.provider)
        if provider is None:
            warning = f"No provider registered for {rotation.provider}"
            logger.warning("%s (schedule=%s)", warning, schedule_id)
            return None, warning
        try:
            return provider.current_user(dict(rotation.integration_config)), None
        except ExternalProviderError as exc:
            logger.warning("External lookup failed for schedule %s: %s", schedule_id, exc.message)
            return None, exc.message
        except Exception as exc:
            logger.warning(
                "External lookup raised unexpectedly for schedule %s",
                schedule_id,
                exc_info=True,
            )
            return None, f"{rotation.provider} lookup failed: {exc}"
