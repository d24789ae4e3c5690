"""Bounded, newest-first diagnostic log shared by delivery workers."""
from __future__ import annotations

import json
import logging
from collections import deque
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from threading import RLock
from typing import Deque, List, Optional, Protocol

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 1000


class LogLevel(str, Enum):
    ERROR = "ERROR"
    WARNING = "WARNING"
    INFO = "INFO"


_STDLIB_LEVELS = {
    LogLevel.ERROR: logging.ERROR,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.INFO: logging.INFO,
}


class LogEntry(BaseModel):
    """Single diagnostic record."""

    timestamp: datetime = Field(default_factory=lambda: datetime.now(tz=timezone.utc))
    level: LogLevel
    message: str
    details: Optional[str] = None


class LogSink(Protocol):
    def append(self, level: LogLevel, message: str, details: Optional[str] = None) -> None:
        ...


class EventLog:
    """Ring buffer of :class:`LogEntry` records, newest first.

    Appends are serialized with a lock so concurrent delivery workers never
    lose or interleave entries. Once ``capacity`` is reached the oldest entry
    is dropped. When ``storage_path`` is given the buffer is loaded from and
    written back to a JSON file after every change.
    """

    def __init__(self, *, capacity: int = DEFAULT_CAPACITY, storage_path: Optional[Path] = None) -> None:
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self._capacity = capacity
        self._storage_path = storage_path
        self._lock = RLock()
        self._entries: Deque[LogEntry] = deque(maxlen=capacity)
        self._load()

    @property
    def capacity(self) -> int:
        return self._capacity

    # ------------------------------------------------------------------
    # Persistence helpers
    def _load(self) -> None:
        if self._storage_path is None or not self._storage_path.exists():
            return
        try:
            raw = json.loads(self._storage_path.read_text(encoding="utf-8"))
            if not isinstance(raw, list):
                raise ValueError(f"expected a list of entries, got {type(raw).__name__}")
            entries = [LogEntry.model_validate(item) for item in raw]
        except (OSError, ValueError, ValidationError) as exc:
            logger.warning("Discarding unreadable event log %s: %s", self._storage_path, exc)
            return
        self._entries.extend(entries[: self._capacity])

    def _persist(self) -> None:
        if self._storage_path is None:
            return
        payload = [entry.model_dump(mode="json") for entry in self._entries]
        try:
            self._storage_path.parent.mkdir(parents=True, exist_ok=True)
            self._storage_path.write_text(json.dumps(payload, separators=(",", ":")), encoding="utf-8")
        except OSError:
            logger.exception("Unable to persist event log to %s", self._storage_path)

    # ------------------------------------------------------------------
    # LogSink API
    def append(self, level: LogLevel, message: str, details: Optional[str] = None) -> LogEntry:
        entry = LogEntry(level=LogLevel(level), message=message, details=details)
        with self._lock:
            self._entries.appendleft(entry)
            self._persist()
        logger.log(_STDLIB_LEVELS[entry.level], "%s%s", message, f" ({details})" if details else "")
        return entry

    def error(self, message: str, details: Optional[str] = None) -> LogEntry:
        return self.append(LogLevel.ERROR, message, details)

    def warning(self, message: str, details: Optional[str] = None) -> LogEntry:
        return self.append(LogLevel.WARNING, message, details)

    def info(self, message: str, details: Optional[str] = None) -> LogEntry:
        return self.append(LogLevel.INFO, message, details)

    def entries(self, level: Optional[LogLevel] = None) -> List[LogEntry]:
        with self._lock:
            snapshot = list(self._entries)
        if level is None:
            return snapshot
        return [entry for entry in snapshot if entry.level == level]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._persist()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def format_timestamp(timestamp: datetime) -> str:
    """Render a timestamp the way the log viewer shows it."""

    return timestamp.astimezone().strftime("%b %d, %Y %H:%M:%S")


__all__ = ["EventLog", "LogEntry", "LogLevel", "LogSink", "format_timestamp"]
