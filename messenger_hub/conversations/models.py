"""Domain models shared by the relay stores."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

CHANNELS = ("whatsapp", "line")

_IDENTIFIER_NOISE = re.compile(r"[\s\-().]")


def normalize_identifier(identifier: object) -> str:
    """Collapse formatting differences in phone numbers and user ids.

    ``"+66 81-234-5678"`` and ``"66812345678"`` normalize to the same key.
    """

    if identifier is None:
        return ""
    value = _IDENTIFIER_NOISE.sub("", str(identifier))
    return value.lstrip("+")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class NormalizedMessage:
    """Uniform representation of inbound channel messages."""

    channel: str
    sender_id: str
    text: str
    sender_name: str | None = None
    message_id: str | None = None
    message_type: str = "text"
    attachments: list[dict[str, Any]] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    sent_at: datetime = field(default_factory=_utcnow)


@dataclass
class SenderInfo:
    """Denormalized sender details carried with a conversation."""

    display_name: str | None = None
    raw_identifier: str | None = None
    original_text: str | None = None
    customer_name: str | None = None
    business_name: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def label(self) -> str:
        name = self.customer_name or self.display_name or "Customer"
        if self.business_name:
            return f"{name} ({self.business_name})"
        return name


@dataclass
class Conversation:
    id: str
    channel: str
    user_id: str
    thread_id: str
    space_id: str
    sender_info: SenderInfo
    created_at: datetime
    last_activity: datetime
    expires_at: datetime
    department: str | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


@dataclass
class HubMessage:
    """A message read back from a Hub thread by the polling adapter."""

    name: str
    thread_id: str
    space_id: str
    text: str
    sender_name: str | None = None
    sender_type: str = "HUMAN"
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def from_bot(self) -> bool:
        return self.sender_type.upper() == "BOT"
