"""Core primitives shared by every relay package: logging, errors,
settings, and the storage connection."""

from relay.core.errors import RelayError
from relay.core.logging import LogContext, configure_logging, get_logger
from relay.core.settings import RelaySettings, get_settings
from relay.core.sqlite_conn import SqliteConnection

__all__ = [
    "RelayError",
    "LogContext",
    "configure_logging",
    "get_logger",
    "RelaySettings",
    "get_settings",
    "SqliteConnection",
]
