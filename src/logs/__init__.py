"""Logging setup and structured context for rotation sync processes.

This package wraps Python's ``logging`` module with stdout defaults and
``contextvars`` based context so sync lines carry workspace and mapping ids.
"""

from .config import configure_logging
from .context import bind_context, get_context, log_context

__all__ = [
    "bind_context",
    "configure_logging",
    "get_context",
    "log_context",
]
