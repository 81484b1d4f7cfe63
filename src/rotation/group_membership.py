"""User group membership: the Slack Web API client and the group directory."""

from __future__ import annotations

import logging
from contextlib import closing
from datetime import datetime, timezone
from typing import Any, Callable, Protocol, Sequence, TypeVar

import httpx
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import Settings, settings as default_settings
from rotation import data_access
from rotation.errors import MembershipWriteError, RotationValidationError
from rotation.mappers import to_user_group_view
from rotation.views import UserGroupView
from services.http_client import HttpClient

ResultT = TypeVar("ResultT")
logger = logging.getLogger(__name__)


class GroupMembershipSink(Protocol):
    """Capability for owning user groups and replacing their members."""

    def ensure_group(self, name: str, workspace_id: str) -> UserGroupView:
        """Return the named group, creating it when it does not exist."""

    def replace_members(self, group: UserGroupView, identities: Sequence[str]) -> None:
        """Make ``identities`` the complete membership of ``group``."""


class SlackUserGroupClient:
    """Minimal Slack Web API client for the user group endpoints we call."""

    def __init__(self, settings: Settings | None = None, *, http_client: HttpClient | None = None) -> None:
        config = (settings or default_settings).slack
        self._token = config.bot_token
        self._api_url = config.api_url.rstrip("/")
        self._http = http_client or HttpClient()

    def create_group(self, name: str, description: str = "Managed by rotation sync") -> str:
        """Create a user group and return its Slack id."""
        handle = name.replace("@", "")
        payload = self._call(
            "usergroups.create",
            {"name": handle, "handle": handle, "description": description},
        )
        usergroup = payload.get("usergroup") or {}
        group_id = usergroup.get("id")
        if not group_id:
            raise MembershipWriteError("usergroups.create returned no group id", {"name": name})
        return str(group_id)

    def update_members(self, external_group_id: str, identities: Sequence[str]) -> None:
        """Replace the user group's members with ``identities``."""
        self._call(
            "usergroups.users.update",
            {"usergroup": external_group_id, "users": ",".join(identities)},
        )

    def _call(self, method: str, body: dict[str, Any]) -> dict[str, Any]:
        """POST a Web API method and return its payload, raising on any failure."""
        if not self._token:
            raise MembershipWriteError("Slack bot token is not configured", {"method": method})
        url = f"{self._api_url}/{method}"
        try:
            response = self._http.post(
                url,
                json=body,
                headers={"Authorization": f"Bearer {self._token}"},
            )
        except httpx.HTTPError as exc:
            raise MembershipWriteError(
                f"{method} failed: {type(exc).__name__}: {exc}",
                {"method": method},
            ) from exc
        try:
            payload = response.json()
        except ValueError as exc:
            raise MembershipWriteError(f"{method} returned a non-JSON body", {"method": method}) from exc
        if not payload.get("ok"):
            error = payload.get("error", "unknown_error")
            raise MembershipWriteError(f"{method} failed: {error}", {"method": method, "error": error})
        return payload


class UserGroupDirectory:
    """GroupMembershipSink backed by the user_groups table and Slack."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        client: SlackUserGroupClient,
        *,
        now_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._client = client
        self._now_provider = now_provider or (lambda: datetime.now(timezone.utc))

    def ensure_group(self, name: str, workspace_id: str) -> UserGroupView:
        """Look up the group by name, otherwise create it in Slack and record it."""
        if not name or not name.strip():
            raise RotationValidationError("user_group_name is required.", {"field": "user_group_name"})
        name = name.strip()
        existing = self._find(name, workspace_id)
        if existing is not None:
            return existing

        external_group_id = self._client.create_group(name)
        try:
            group = self._execute(
                lambda session: to_user_group_view(
                    data_access.create_user_group(
                        session,
                        name=name,
                        external_group_id=external_group_id,
                        workspace_id=workspace_id,
                        now=self._now_provider(),
                    )
                )
            )
        except IntegrityError:
            # Another caller recorded the same group first.
            existing = self._find(name, workspace_id)
            if existing is None:
                raise
            logger.warning(
                "User group %s already recorded in workspace %s; Slack group %s is orphaned",
                name,
                workspace_id,
                external_group_id,
            )
            return existing
        logger.info(
            "User group created: name=%s workspace=%s external_id=%s",
            name,
            workspace_id,
            external_group_id,
        )
        return group

    def replace_members(self, group: UserGroupView, identities: Sequence[str]) -> None:
        """Write the full membership; an empty set is skipped since Slack cannot clear a group."""
        if not identities:
            logger.warning(
                "Skipping membership write for %s: nobody resolved on call.",
                group.name,
            )
            return
        self._client.update_members(group.external_group_id, identities)

    def _find(self, name: str, workspace_id: str) -> UserGroupView | None:
        def handler(session: Session) -> UserGroupView | None:
            row = data_access.get_user_group_by_name(session, name, workspace_id)
            return to_user_group_view(row) if row is not None else None

        return self._execute(handler)

    def _execute(self, handler: Callable[[Session], ResultT]) -> ResultT:
        """Execute directory work inside a managed session."""
        with closing(self._session_factory()) as session:
            session.expire_on_commit = False
            try:
                result = handler(session)
                session.commit()
            except Exception:
                session.rollback()
                raise
        return result
