"""Track identifiers a human has taken over from automation."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from ..app_logging import mask_identifier
from .models import normalize_identifier

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = timedelta(minutes=10)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class EscalationRecord:
    identifier: str
    escalated_at: datetime
    expires_at: datetime | None
    thread_id: str | None = None
    customer_name: str = "Unknown"
    external_conversation_ref: str | None = None
    conversation_history: list[dict[str, Any]] = field(default_factory=list)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now


class EscalationStore:
    """Escalation flags keyed by normalized identifier.

    With ``timeout=None`` records live until :meth:`clear`. With a timeout,
    records expire after that much inactivity; :meth:`extend` restarts the
    countdown and is called whenever a human replies.
    """

    def __init__(
        self,
        *,
        timeout: timedelta | None = DEFAULT_TIMEOUT,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.timeout = timeout
        self._clock = clock
        self._records: dict[str, EscalationRecord] = {}
        self._lock = threading.RLock()

    @property
    def expiring(self) -> bool:
        return self.timeout is not None

    def escalate(
        self,
        identifier: str,
        thread_id: str | None = None,
        customer_name: str | None = None,
        external_ref: str | None = None,
        history: Sequence[dict[str, Any]] | None = None,
    ) -> EscalationRecord:
        key = normalize_identifier(identifier)
        if not key:
            raise ValueError("identifier is required")
        now = self._clock()
        record = EscalationRecord(
            identifier=key,
            escalated_at=now,
            expires_at=now + self.timeout if self.timeout is not None else None,
            thread_id=thread_id,
            customer_name=customer_name or "Unknown",
            external_conversation_ref=external_ref,
            conversation_history=[dict(item) for item in history or []],
        )
        with self._lock:
            self._records[key] = record
        logger.info(
            "Escalated %s to a human%s",
            mask_identifier(key),
            f" for {self.timeout}" if self.timeout else "",
        )
        return record

    def is_escalated(self, identifier: str) -> bool:
        with self._lock:
            return self._live(normalize_identifier(identifier)) is not None

    def get(self, identifier: str) -> EscalationRecord | None:
        with self._lock:
            return self._live(normalize_identifier(identifier))

    def clear(self, identifier: str) -> bool:
        with self._lock:
            removed = self._records.pop(normalize_identifier(identifier), None)
        if removed is not None:
            logger.info("Cleared escalation for %s", mask_identifier(removed.identifier))
        return removed is not None

    def extend(self, identifier: str) -> bool:
        """Restart the inactivity countdown; ``False`` if not escalated."""

        with self._lock:
            record = self._live(normalize_identifier(identifier))
            if record is None:
                return False
            if self.timeout is not None:
                record.expires_at = self._clock() + self.timeout
            return True

    def remaining_time(self, identifier: str) -> timedelta | None:
        """Time left before automation resumes.

        ``None`` when the identifier is not escalated or never expires.
        """

        with self._lock:
            record = self._live(normalize_identifier(identifier))
            if record is None or record.expires_at is None:
                return None
            return max(record.expires_at - self._clock(), timedelta(0))

    def all(self) -> list[EscalationRecord]:
        now = self._clock()
        with self._lock:
            return [r for r in self._records.values() if not r.is_expired(now)]

    def clear_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [k for k, r in self._records.items() if r.is_expired(now)]
            for key in expired:
                del self._records[key]
        if expired:
            logger.info("Returned %s escalations to automation", len(expired))
        return len(expired)

    def stats(self) -> dict[str, Any]:
        records = self.all()
        return {
            "escalated": len(records),
            "timeout_seconds": self.timeout.total_seconds() if self.timeout else None,
        }

    def _live(self, key: str) -> EscalationRecord | None:
        record = self._records.get(key)
        if record is None:
            return None
        if record.is_expired(self._clock()):
            del self._records[key]
            logger.info("Escalation for %s timed out", mask_identifier(key))
            return None
        return record
