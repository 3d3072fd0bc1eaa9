from __future__ import annotations

from .base import EventLogStore, ResponseStore
from .fs import FileEventLogStore, FileResponseStore

__all__ = [
    "EventLogStore",
    "ResponseStore",
    "FileEventLogStore",
    "FileResponseStore",
]
