"""Celery entry point for the periodic full sync and override sweep."""

from __future__ import annotations

from contextlib import closing
import logging
import os
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy.orm import Session

from celery import Celery
from celery.signals import setup_logging

from config import settings
from logs import configure_logging, fields, log_context
from rotation import data_access
from rotation.override_store import OverrideStore
from rotation.runtime import build_runtime
from rotation.sync_engine import MultiScheduleSyncEngine
from services.database import get_sync_session

LOGGER = logging.getLogger(__name__)


def _env(var: str, default: str) -> str:
    return os.environ.get(var, default)


celery_app = Celery("rotation.sync")
celery_app.conf.broker_url = _env("CELERY_BROKER_URL", "redis://redis:6379/1")
celery_app.conf.result_backend = _env("CELERY_RESULT_BACKEND", "redis://redis:6379/2")
celery_app.conf.task_default_queue = _env("CELERY_QUEUE_NAME", "rotation")
celery_app.conf.task_serializer = "json"
celery_app.conf.result_serializer = "json"
celery_app.conf.accept_content = ["json"]
celery_app.conf.enable_utc = True
celery_app.conf.timezone = "UTC"

FULL_SYNC_TASK_NAME = "rotation.full_sync"
OVERRIDE_SWEEP_TASK_NAME = "rotation.sweep_overrides"

beat_schedule = celery_app.conf.get("beat_schedule")
if beat_schedule is None:
    beat_schedule = {}
beat_schedule[FULL_SYNC_TASK_NAME] = {
    "task": FULL_SYNC_TASK_NAME,
    "schedule": float(settings.sync.full_sync_interval_seconds),
}
beat_schedule[OVERRIDE_SWEEP_TASK_NAME] = {
    "task": OVERRIDE_SWEEP_TASK_NAME,
    "schedule": float(settings.sync.override_sweep_interval_seconds),
}
celery_app.conf.beat_schedule = beat_schedule


@setup_logging.connect
def _configure_worker_logging(**_kwargs) -> None:
    """Replace Celery's logging setup with the shared stdout configuration."""
    configure_logging(level=settings.log_level, json_output=settings.log_json, service="rotation-worker")


def _session_factory():
    """Return a new synchronous SQLAlchemy session for rotation tasks."""
    return get_sync_session()


_RUNTIME = build_runtime(_session_factory)


def run_full_sync(
    *,
    engine: MultiScheduleSyncEngine,
    session_factory: Callable[[], Session],
) -> dict[str, int]:
    """Sync every mapping of every known workspace; one workspace failing never stops the rest."""
    with closing(session_factory()) as session:
        workspace_ids = data_access.list_workspace_ids(session)

    synced = 0
    failed_workspaces = 0
    for workspace_id in workspace_ids:
        try:
            synced += len(engine.sync_all(workspace_id))
        except Exception:
            failed_workspaces += 1
            with log_context({fields.WORKSPACE_ID: workspace_id}):
                LOGGER.exception("Full sync failed for workspace %s", workspace_id)

    LOGGER.info(
        "Full sync completed: workspaces=%s mappings_synced=%s failed_workspaces=%s",
        len(workspace_ids),
        synced,
        failed_workspaces,
    )
    return {
        "workspaces": len(workspace_ids),
        "mappings_synced": synced,
        "failed_workspaces": failed_workspaces,
    }


def run_override_sweep(*, store: OverrideStore, now: datetime) -> dict[str, int]:
    """Delete overrides that have already ended."""
    removed = store.sweep_expired(now.astimezone(timezone.utc))
    return {"removed": removed}


@celery_app.task(name=FULL_SYNC_TASK_NAME)
def full_sync() -> dict[str, int]:
    """Celery beat job that syncs every workspace."""
    with log_context({fields.TRIGGER: "periodic"}):
        return run_full_sync(engine=_RUNTIME.sync_engine, session_factory=_session_factory)


@celery_app.task(name=OVERRIDE_SWEEP_TASK_NAME)
def sweep_overrides() -> dict[str, int]:
    """Celery beat job that reclaims expired overrides."""
    return run_override_sweep(store=_RUNTIME.override_store, now=datetime.now(timezone.utc))


@celery_app.task(name="rotation.sync_mapping", acks_late=True)
def sync_mapping(mapping_id: str) -> dict[str, object]:
    """Sync a single mapping on demand."""
    with log_context({fields.TRIGGER: "manual"}):
        result = _RUNTIME.sync_engine.sync(mapping_id)
    return {
        "mapping_id": result.mapping_id,
        "user_group_name": result.user_group_name,
        "users_synced": result.users_synced,
        "users": list(result.users),
    }
