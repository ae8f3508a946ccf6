"""
Data Pipeline Package
======================
Console log history shared by the link and the host display.
"""

from .log_store import (
    DEFAULT_MAX_ENTRIES,
    LogConfig,
    LogEntry,
    LogStore,
)

__all__ = [
    "DEFAULT_MAX_ENTRIES",
    "LogConfig",
    "LogEntry",
    "LogStore",
]
