"""Error hierarchy for rotation resolution and group sync operations."""

from __future__ import annotations


class RotationServiceError(Exception):
    """Base exception for rotation service failures."""

    def __init__(self, code: str, message: str, details: dict[str, object] | None = None) -> None:
        """Initialize the error with a machine-readable code and details."""
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}


class InvalidDurationError(RotationServiceError):
    """Raised when a duration token does not match ``<digits><m|h|d|w>``."""

    def __init__(self, token: object) -> None:
        """Initialize with the rejected token."""
        super().__init__(
            "invalid_duration",
            f"Invalid duration {token!r}. Use a positive number followed by m, h, d or w "
            "(for example 30m, 8h, 3d, 2w).",
            {"token": token},
        )


class RotationValidationError(RotationServiceError):
    """Raised when schedule, override or mapping inputs fail validation."""

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        """Initialize a validation error with optional details."""
        super().__init__("validation_error", message, details)


class ScheduleNotFoundError(RotationServiceError):
    """Raised when a referenced schedule does not exist."""

    def __init__(self, schedule_id: str) -> None:
        """Initialize with the missing schedule id."""
        super().__init__("not_found", f"Schedule not found: {schedule_id}", {"schedule_id": schedule_id})


class MappingNotFoundError(RotationServiceError):
    """Raised when a referenced schedule mapping does not exist."""

    def __init__(self, mapping_id: str) -> None:
        """Initialize with the missing mapping id."""
        super().__init__("not_found", f"Mapping not found: {mapping_id}", {"mapping_id": mapping_id})


class UserGroupNotFoundError(RotationServiceError):
    """Raised when the user group owning a mapping is missing."""

    def __init__(self, user_group_id: str) -> None:
        """Initialize with the missing user group id."""
        super().__init__(
            "not_found",
            f"User group not found: {user_group_id}",
            {"user_group_id": user_group_id},
        )


class MappingConflictError(RotationServiceError):
    """Raised when a user group already has a schedule mapping."""

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        """Initialize a conflict error with optional details."""
        super().__init__("conflict", message, details)


class ExternalProviderError(RotationServiceError):
    """Raised by external schedule providers; resolved to nobody by the resolver."""

    def __init__(self, provider: str, message: str, details: dict[str, object] | None = None) -> None:
        """Initialize with the failing provider name."""
        super().__init__(
            "external_provider_failure",
            f"{provider} lookup failed: {message}",
            {"provider": provider, **(details or {})},
        )
        self.provider = provider


class MembershipWriteError(RotationServiceError):
    """Raised when writing a group's membership fails; fatal to that mapping's sync."""

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        """Initialize a membership write error with optional details."""
        super().__init__("membership_write_failure", message, details)


class SyncInProgressError(RotationServiceError):
    """Raised when another process kept a mapping's sync lease past the wait limit."""

    def __init__(self, mapping_id: str) -> None:
        """Initialize with the contended mapping id."""
        super().__init__(
            "conflict",
            f"Another sync of mapping {mapping_id} is still running.",
            {"mapping_id": mapping_id},
        )
