"""Opaque record identifiers built from prefixed ULIDs.

Identifiers take the form ``<prefix>_<ULID>`` where the ULID is the canonical
26 character Crockford Base32 string. The timestamp in the high bits keeps ids
roughly creation-ordered, which makes log lines and table scans easier to read.
"""

from __future__ import annotations

import secrets
import time

_ULID_ALPHABET = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"

SCHEDULE_PREFIX = "sched"
OVERRIDE_PREFIX = "ovr"
USER_GROUP_PREFIX = "ug"
MAPPING_PREFIX = "map"
SYNC_LOG_PREFIX = "log"
LOCK_HOLDER_PREFIX = "lease"


def generate_ulid_str(*, timestamp_ms: int | None = None) -> str:
    """Generate a new ULID in canonical 26-char string format.

    Timestamp occupies the high 48 bits (milliseconds since epoch), and the
    remaining 80 bits are cryptographically secure random entropy.
    """
    ts_ms = int(time.time() * 1000) if timestamp_ms is None else int(timestamp_ms)
    if ts_ms < 0 or ts_ms >= (1 << 48):
        raise ValueError("timestamp_ms out of ULID 48-bit range")

    entropy = int.from_bytes(secrets.token_bytes(10), byteorder="big", signed=False)
    number = (ts_ms << 80) | entropy
    chars: list[str] = []
    for _ in range(26):
        number, remainder = divmod(number, 32)
        chars.append(_ULID_ALPHABET[remainder])
    return "".join(reversed(chars))


def new_id(prefix: str) -> str:
    """Return a new prefixed opaque identifier."""
    if not prefix:
        raise ValueError("id prefix must be non-empty")
    return f"{prefix}_{generate_ulid_str()}"
