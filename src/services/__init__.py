"""Infrastructure services: database sessions and outbound HTTP."""

from services.database import get_sync_session, init_db
from services.http_client import HttpClient, RetryConfig

__all__ = [
    "init_db",
    "get_sync_session",
    "HttpClient",
    "RetryConfig",
]
