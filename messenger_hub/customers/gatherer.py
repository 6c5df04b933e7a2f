"""Gate first-time customers until their name and company are known.

Each customer moves through ``new -> gathering_info -> complete | bypass``.
Every transition goes through :meth:`CustomerInfoGatherer._transition`, which
takes the current record and the inbound text and returns the admission
decision. Records are keyed by normalized identifier and disappear after 24
hours without activity, after which the customer is treated as new again.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from ..app_logging import mask_identifier
from ..backends import TextGenerationBackend
from ..conversations.models import normalize_identifier
from ..errors import EMPTY_TEXT, MISSING_IDENTIFIER, RelayError
from ..settings import DEFAULT_URGENT_KEYWORDS
from ..translation.detector import contains_thai
from .parser import CustomerInfoParser

logger = logging.getLogger(__name__)

RECORD_TTL = timedelta(hours=24)
BYPASS_AFTER_MESSAGES = 5

INFO_REQUEST = {
    "en": (
        "Hello! Thank you for contacting BMAsia. To assist you better, could you "
        "please share your name and company name?"
    ),
    "th": (
        "สวัสดีค่ะ/ครับ ขอบคุณที่ติดต่อ BMAsia เพื่อให้บริการได้ดียิ่งขึ้น "
        "กรุณาแจ้งชื่อและชื่อบริษัทของท่านด้วยค่ะ/ครับ"
    ),
}
ASK_NAME = {
    "en": "Thank you! Could you also share your name?",
    "th": "ขอบคุณค่ะ/ครับ กรุณาแจ้งชื่อของท่านด้วยค่ะ/ครับ",
}
ASK_COMPANY = {
    "en": "Thank you, {name}! Could you also share your company name?",
    "th": "ขอบคุณค่ะ/ครับ คุณ{name} กรุณาแจ้งชื่อบริษัทด้วยค่ะ/ครับ",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CustomerState(str, Enum):
    NEW = "new"
    GATHERING_INFO = "gathering_info"
    COMPLETE = "complete"
    BYPASS = "bypass"


@dataclass
class CustomerRecord:
    identifier: str
    channel: str
    state: CustomerState
    first_contact: datetime
    last_activity: datetime
    name: str | None = None
    business_name: str | None = None
    message_count: int = 0
    info_request_sent: bool = False
    follow_up_sent: bool = False
    language: str = "en"
    held_messages: list[str] = field(default_factory=list)


@dataclass
class Admission:
    forward: bool
    state: CustomerState | None
    previous_state: CustomerState | None = None
    auto_reply_text: str | None = None
    reason: str | None = None
    held_messages: list[str] = field(default_factory=list)
    name: str | None = None
    business_name: str | None = None


def reply_language(text: str) -> str:
    return "th" if contains_thai(text) else "en"


class CustomerInfoGatherer:
    """Per-identifier admission control for inbound customer messages."""

    def __init__(
        self,
        parser: CustomerInfoParser | None = None,
        *,
        backend: TextGenerationBackend | None = None,
        urgent_keywords: Iterable[str] = DEFAULT_URGENT_KEYWORDS,
        enabled: bool = True,
        ttl: timedelta = RECORD_TTL,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.parser = parser or CustomerInfoParser(backend)
        self.backend = backend
        self.urgent_keywords = tuple(k.lower() for k in urgent_keywords)
        self.enabled = enabled
        self.ttl = ttl
        self._clock = clock
        self._records: dict[str, CustomerRecord] = {}
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Public contract

    def admit(self, identifier: str, channel: str, text: str) -> Admission:
        key = normalize_identifier(identifier)
        if not key:
            return Admission(False, None, reason=MISSING_IDENTIFIER)
        if not isinstance(text, str) or not text.strip():
            return Admission(False, None, reason=EMPTY_TEXT)
        if not self.enabled:
            return Admission(True, None, reason="gathering_disabled")

        with self._lock:
            record = self._get_live(key)
            if record is None:
                now = self._clock()
                record = CustomerRecord(
                    identifier=key,
                    channel=channel,
                    state=CustomerState.NEW,
                    first_contact=now,
                    last_activity=now,
                )
                self._records[key] = record
                logger.info("New customer %s on %s", mask_identifier(key), channel)
            previous = record.state
            admission = self._transition(record, text)
            admission.previous_state = previous
            admission.name = record.name
            admission.business_name = record.business_name
            record.last_activity = self._clock()
        if previous is not admission.state:
            logger.info(
                "Customer %s moved %s -> %s (%s)",
                mask_identifier(key),
                previous.value,
                admission.state.value if admission.state else None,
                admission.reason,
            )
        return admission

    def get(self, identifier: str) -> CustomerRecord | None:
        with self._lock:
            return self._get_live(normalize_identifier(identifier))

    def bypass(self, identifier: str, channel: str = "unknown") -> None:
        """Stop gating ``identifier``, e.g. once a human has taken over."""

        key = normalize_identifier(identifier)
        now = self._clock()
        with self._lock:
            record = self._get_live(key)
            if record is None:
                record = CustomerRecord(key, channel, CustomerState.BYPASS, now, now)
                self._records[key] = record
            elif record.state is not CustomerState.COMPLETE:
                record.state = CustomerState.BYPASS
            record.last_activity = now

    def hold(self, identifier: str, texts: Iterable[str]) -> bool:
        """Put texts that never reached the Hub back in front of the queue.

        They come out again with the next forwarded admission. Returns
        ``False`` when no record exists, e.g. with gathering disabled.
        """

        key = normalize_identifier(identifier)
        texts = [t for t in texts if t]
        with self._lock:
            record = self._get_live(key)
            if record is None or not texts:
                return False
            record.held_messages = texts + record.held_messages
        logger.info("Holding %s unposted messages for %s", len(texts), mask_identifier(key))
        return True

    def release(self, identifier: str) -> list[str]:
        with self._lock:
            record = self._get_live(normalize_identifier(identifier))
            return self._release(record) if record is not None else []

    def clear_expired(self) -> int:
        cutoff = self._clock() - self.ttl
        with self._lock:
            expired = [k for k, r in self._records.items() if r.last_activity <= cutoff]
            for key in expired:
                del self._records[key]
        if expired:
            logger.info("Removed %s stale customer records", len(expired))
        return len(expired)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            counts = Counter(r.state for r in self._records.values())
            return {
                "total": len(self._records),
                "new": counts.get(CustomerState.NEW, 0),
                "gathering_info": counts.get(CustomerState.GATHERING_INFO, 0),
                "complete": counts.get(CustomerState.COMPLETE, 0),
                "bypass": counts.get(CustomerState.BYPASS, 0),
            }

    # ------------------------------------------------------------------
    # State machine

    def _get_live(self, key: str) -> CustomerRecord | None:
        record = self._records.get(key)
        if record is not None and self._clock() - record.last_activity >= self.ttl:
            del self._records[key]
            return None
        return record

    def _transition(self, record: CustomerRecord, text: str) -> Admission:
        record.message_count += 1
        state = record.state

        if state in (CustomerState.COMPLETE, CustomerState.BYPASS):
            return Admission(
                True, state, reason="admitted", held_messages=self._release(record)
            )

        if state is CustomerState.NEW:
            if self.is_urgent(text):
                record.state = CustomerState.BYPASS
                return Admission(True, record.state, reason="urgent")
            record.language = reply_language(text)
            record.held_messages.append(text)
            record.info_request_sent = True
            record.state = CustomerState.GATHERING_INFO
            return Admission(
                False,
                record.state,
                auto_reply_text=self._info_request(record, text),
                reason="info_requested",
            )

        # gathering_info
        if record.message_count >= BYPASS_AFTER_MESSAGES:
            record.state = CustomerState.BYPASS
            return Admission(
                True,
                record.state,
                reason="message_limit",
                held_messages=self._release(record),
            )
        if self.is_urgent(text):
            record.state = CustomerState.BYPASS
            return Admission(
                True, record.state, reason="urgent", held_messages=self._release(record)
            )

        parsed = self.parser.parse(text)
        if parsed.name:
            record.name = parsed.name
        if parsed.business_name:
            record.business_name = parsed.business_name

        if record.name and record.business_name:
            record.state = CustomerState.COMPLETE
            return Admission(
                True,
                record.state,
                reason="info_complete",
                held_messages=self._release(record),
            )

        record.held_messages.append(text)
        if (record.name or record.business_name) and not record.follow_up_sent:
            record.follow_up_sent = True
            return Admission(
                False,
                record.state,
                auto_reply_text=self._follow_up(record),
                reason="partial_info",
            )
        return Admission(False, record.state, reason="awaiting_info")

    @staticmethod
    def _release(record: CustomerRecord) -> list[str]:
        held, record.held_messages = record.held_messages, []
        return held

    def is_urgent(self, text: str) -> bool:
        lowered = text.lower()
        return any(keyword in lowered for keyword in self.urgent_keywords)

    def _follow_up(self, record: CustomerRecord) -> str:
        if not record.name:
            return ASK_NAME[record.language]
        return ASK_COMPANY[record.language].format(name=record.name)

    def _info_request(self, record: CustomerRecord, text: str) -> str:
        default = INFO_REQUEST[record.language]
        if self.backend is None:
            return default
        language = "Thai (polite, with ค่ะ/ครับ)" if record.language == "th" else "English"
        prompt = (
            "Write a short, warm message (1-2 sentences) in "
            f"{language} asking a customer for their name and company name. "
            "We are BMAsia, a music and sound design company. "
            f'Briefly acknowledge their message: "{text.strip()}". '
            "Reply with the message only."
        )
        try:
            generated = self.backend.generate(prompt, max_output_tokens=150).strip()
        except RelayError as exc:
            logger.warning("Info request generation failed: %s", exc)
            return default
        return generated or default
