"""Categorised activity log shared by the connection services."""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Deque, Iterable

LEVELS = ("debug", "info", "success", "warning", "error")

_LOGGING_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


@dataclass(slots=True)
class ActivityEntry:
    """A single event recorded by a connection service."""

    timestamp: float
    category: str
    level: str
    event: str
    message: str
    metadata: dict[str, object | None] | None = None

    def to_dict(self) -> dict[str, object | None]:
        payload: dict[str, object | None] = {
            "timestamp": self.timestamp,
            "category": self.category,
            "level": self.level,
            "event": self.event,
            "message": self.message,
        }
        if self.metadata:
            payload["metadata"] = self.metadata
        return payload


class ActivityLog:
    """Bounded log of connection activity, mirrored to :mod:`logging`.

    Entries live in memory. When ``path`` is given every entry is also appended
    to a JSON-lines file, but nothing is read back on start-up.
    """

    def __init__(
        self,
        path: Path | str | None = None,
        *,
        max_entries: int = 500,
        logger: logging.Logger | None = None,
    ) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self._path: Path | None = Path(path) if path is not None else None
        self._entries: Deque[ActivityEntry] = deque(maxlen=max_entries)
        self._lock = threading.Lock()
        self._logger = logger or logging.getLogger("campus_link.activity")
        if self._path is not None:
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as exc:  # pragma: no cover - filesystem errors are rare
                self._logger.warning("Unable to prepare activity log directory: %s", exc)
                self._path = None

    @property
    def path(self) -> Path | None:
        return self._path

    def record(
        self,
        category: str,
        event: str,
        message: str,
        *,
        level: str = "info",
        metadata: dict[str, object | None] | None = None,
    ) -> ActivityEntry:
        """Append an entry and mirror it to the standard logger."""

        cleaned_category = category.strip() if isinstance(category, str) else ""
        cleaned_level = level.strip().lower() if isinstance(level, str) else ""
        if cleaned_level not in _LOGGING_LEVELS:
            cleaned_level = "info"
        entry = ActivityEntry(
            timestamp=time.time(),
            category=cleaned_category or "general",
            level=cleaned_level,
            event=event,
            message=message,
            metadata=self._clean_metadata(metadata),
        )
        with self._lock:
            self._entries.append(entry)
            self._append_persistent(entry)
        if entry.metadata:
            self._logger.log(
                _LOGGING_LEVELS[cleaned_level],
                "[%s] %s: %s | metadata=%s",
                entry.category,
                event,
                message,
                entry.metadata,
            )
        else:
            self._logger.log(
                _LOGGING_LEVELS[cleaned_level], "[%s] %s: %s", entry.category, event, message
            )
        return entry

    def tail(
        self,
        limit: int | None = None,
        *,
        category: str | None = None,
        level: str | None = None,
    ) -> list[ActivityEntry]:
        """Return the most recent entries, oldest first."""

        with self._lock:
            entries: Iterable[ActivityEntry] = list(self._entries)
        if category is not None and category.strip():
            wanted = category.strip()
            entries = [entry for entry in entries if entry.category == wanted]
        if level is not None and level.strip():
            wanted_level = level.strip().lower()
            entries = [entry for entry in entries if entry.level == wanted_level]
        entries = list(entries)
        if limit is not None:
            try:
                limit_value = max(1, int(limit))
            except (TypeError, ValueError):
                limit_value = 1
            if len(entries) > limit_value:
                entries = entries[-limit_value:]
        return entries

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def _append_persistent(self, entry: ActivityEntry) -> None:
        if self._path is None:
            return
        try:
            with self._path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(entry.to_dict(), separators=(",", ":")) + "\n")
        except (OSError, TypeError, ValueError) as exc:  # pragma: no cover - best effort
            self._logger.warning("Unable to persist activity log: %s", exc)

    @staticmethod
    def _clean_metadata(
        metadata: dict[str, object | None] | None,
    ) -> dict[str, object | None] | None:
        if not metadata:
            return None
        cleaned = {key: value for key, value in metadata.items() if value is not None}
        return cleaned or None


__all__ = ["ActivityEntry", "ActivityLog", "LEVELS"]
