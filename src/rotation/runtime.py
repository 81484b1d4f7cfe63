"""Assemble the rotation services from a session factory and settings."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Mapping

from sqlalchemy.orm import Session

from config import Settings, settings as default_settings
from rotation.group_membership import GroupMembershipSink, SlackUserGroupClient, UserGroupDirectory
from rotation.locks import MappingLockRegistry
from rotation.override_store import OverrideStore
from rotation.providers import ExternalScheduleProvider, default_providers
from rotation.resolver import ScheduleResolver
from rotation.service import RotationCommandService
from rotation.sync_engine import MultiScheduleSyncEngine


@dataclass(frozen=True)
class RotationRuntime:
    """The wired collaborators a worker or CLI process needs."""

    session_factory: Callable[[], Session]
    override_store: OverrideStore
    resolver: ScheduleResolver
    sync_engine: MultiScheduleSyncEngine
    service: RotationCommandService


def build_runtime(
    session_factory: Callable[[], Session],
    *,
    settings: Settings | None = None,
    providers: Mapping[str, ExternalScheduleProvider] | None = None,
    sink: GroupMembershipSink | None = None,
    locks: MappingLockRegistry | None = None,
    now_provider: Callable[[], datetime] | None = None,
) -> RotationRuntime:
    """Build the services; production collaborators are used unless given."""
    resolved = settings or default_settings
    override_store = OverrideStore(session_factory, now_provider=now_provider)
    resolver = ScheduleResolver(
        override_store,
        providers if providers is not None else default_providers(resolved),
    )
    membership_sink = sink or UserGroupDirectory(
        session_factory,
        SlackUserGroupClient(resolved),
        now_provider=now_provider,
    )
    sync_engine = MultiScheduleSyncEngine(
        session_factory,
        resolver,
        membership_sink,
        locks=locks,
        now_provider=now_provider,
    )
    service = RotationCommandService(
        session_factory,
        override_store,
        resolver,
        sync_engine,
        membership_sink,
        settings=resolved,
        now_provider=now_provider,
    )
    return RotationRuntime(
        session_factory=session_factory,
        override_store=override_store,
        resolver=resolver,
        sync_engine=sync_engine,
        service=service,
    )
