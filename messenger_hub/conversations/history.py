"""Rolling 24-hour transcript per customer, used for reply context."""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Any
from zoneinfo import ZoneInfo

from .models import normalize_identifier

logger = logging.getLogger(__name__)

HISTORY_WINDOW = timedelta(hours=24)
INCOMING = "incoming"
OUTGOING = "outgoing"
DISPLAY_TIMEZONE = "Asia/Bangkok"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class HistoryEntry:
    id: str
    text: str
    direction: str
    channel: str
    timestamp: datetime
    metadata: dict[str, Any] = field(default_factory=dict)


class MessageHistoryStore:
    def __init__(
        self,
        *,
        window: timedelta = HISTORY_WINDOW,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.window = window
        self._clock = clock
        self._entries: dict[str, list[HistoryEntry]] = {}
        self._lock = threading.RLock()

    def append(
        self,
        identifier: str,
        text: str,
        direction: str,
        channel: str,
        metadata: dict[str, Any] | None = None,
        timestamp: datetime | None = None,
    ) -> str | None:
        """Record one transcript line; ``None`` when identifier or text is missing."""

        key = normalize_identifier(identifier)
        if not key or not text:
            return None
        if direction not in (INCOMING, OUTGOING):
            raise ValueError(f"direction must be {INCOMING!r} or {OUTGOING!r}")
        entry = HistoryEntry(
            id=f"msg_{uuid.uuid4().hex[:16]}",
            text=text,
            direction=direction,
            channel=channel,
            timestamp=timestamp or self._clock(),
            metadata=dict(metadata or {}),
        )
        with self._lock:
            self._entries.setdefault(key, []).append(entry)
            self._prune_locked(key)
        return entry.id

    def history(self, identifier: str) -> list[HistoryEntry]:
        key = normalize_identifier(identifier)
        cutoff = self._clock() - self.window
        with self._lock:
            entries = [e for e in self._entries.get(key, []) if e.timestamp > cutoff]
        return sorted(entries, key=lambda e: e.timestamp)

    def cleanup(self) -> int:
        removed = 0
        with self._lock:
            for key in list(self._entries):
                removed += self._prune_locked(key)
        if removed:
            logger.info("Purged %s transcript lines older than %s", removed, self.window)
        return removed

    def stats(self) -> dict[str, Any]:
        with self._lock:
            users = len(self._entries)
            messages = sum(len(entries) for entries in self._entries.values())
        return {
            "users": users,
            "messages": messages,
            "average_per_user": round(messages / users) if users else 0,
        }

    def _prune_locked(self, key: str) -> int:
        entries = self._entries.get(key)
        if entries is None:
            return 0
        cutoff = self._clock() - self.window
        recent = [e for e in entries if e.timestamp > cutoff]
        removed = len(entries) - len(recent)
        if recent:
            self._entries[key] = recent
        else:
            del self._entries[key]
        return removed


def _clock_time(moment: datetime) -> str:
    hour = moment.hour % 12 or 12
    suffix = "AM" if moment.hour < 12 else "PM"
    return f"{hour}:{moment.minute:02d} {suffix}"


def format_for_display(
    entries: Iterable[HistoryEntry], tz: tzinfo | str = DISPLAY_TIMEZONE
) -> list[dict[str, Any]]:
    """Shape transcript lines for the reply portal."""

    zone = ZoneInfo(tz) if isinstance(tz, str) else tz
    formatted = []
    for entry in entries:
        default_sender = "Customer" if entry.direction == INCOMING else "BMAsia Support"
        formatted.append(
            {
                "id": entry.id,
                "text": entry.text,
                "direction": entry.direction,
                "time": _clock_time(entry.timestamp.astimezone(zone)),
                "timestamp": entry.timestamp.isoformat(),
                "sender_name": entry.metadata.get("sender_name") or default_sender,
                "files": entry.metadata.get("files", []),
            }
        )
    return formatted
