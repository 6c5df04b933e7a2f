"""WhatsApp Cloud API webhook adapter."""

from __future__ import annotations

import hashlib
import hmac
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import Any

from ..conversations.models import NormalizedMessage
from .base import ChannelAdapter

MEDIA_LABELS = {
    "image": "[Image]",
    "audio": "[Voice message]",
    "video": "[Video]",
    "document": "[Document]",
    "sticker": "[Sticker]",
    "location": "[Location]",
}


def _sent_at(timestamp: object) -> datetime:
    if timestamp:
        try:
            return datetime.fromtimestamp(int(timestamp), tz=timezone.utc)
        except (ValueError, TypeError, OverflowError):
            pass
    return datetime.now(timezone.utc)


class WhatsAppAdapter(ChannelAdapter):
    channel_name = "whatsapp"

    def verify_signature(self, body: bytes, headers: Mapping[str, str]) -> bool:
        secret = self.webhook_secret
        if not secret:
            return True
        received = headers.get("X-Hub-Signature-256")
        if not received:
            return False
        digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
        return hmac.compare_digest(received, f"sha256={digest}")

    def verify_subscription(self, params: Mapping[str, str]) -> str | None:
        expected = self.config.verify_token if self.config else None
        if params.get("hub.mode") != "subscribe" or not expected:
            return None
        if params.get("hub.verify_token") != expected:
            return None
        return params.get("hub.challenge")

    def parse_incoming(self, payload: Mapping[str, Any]) -> Iterable[NormalizedMessage]:
        for entry in payload.get("entry", []) or []:
            for change in entry.get("changes", []) or []:
                value = change.get("value", {}) or {}
                contacts = {c.get("wa_id"): c for c in value.get("contacts", []) or []}
                for message in value.get("messages", []) or []:
                    sender_id = str(message.get("from") or "")
                    contact = contacts.get(sender_id, {})
                    message_type = message.get("type") or "text"
                    text, attachments = self._content(message, message_type)
                    yield NormalizedMessage(
                        channel=self.channel_name,
                        sender_id=sender_id,
                        text=text,
                        sender_name=(contact.get("profile") or {}).get("name"),
                        message_id=message.get("id"),
                        message_type=message_type,
                        attachments=attachments,
                        metadata={
                            "phone_number_id": (value.get("metadata") or {}).get(
                                "phone_number_id"
                            ),
                            "context_id": (message.get("context") or {}).get("id"),
                        },
                        sent_at=_sent_at(message.get("timestamp")),
                    )

    @staticmethod
    def _content(
        message: Mapping[str, Any], message_type: str
    ) -> tuple[str, list[dict[str, Any]]]:
        if message_type == "text":
            return (message.get("text") or {}).get("body", ""), []
        if message_type == "interactive":
            interactive = message.get("interactive") or {}
            reply = interactive.get("button_reply") or interactive.get("list_reply") or {}
            return reply.get("title") or interactive.get("text") or "", []
        if message_type == "button":
            return (message.get("button") or {}).get("text", ""), []
        if message_type in MEDIA_LABELS:
            media = message.get(message_type) or {}
            label = MEDIA_LABELS[message_type]
            caption = media.get("caption") or media.get("filename") or ""
            text = f"{label} {caption}".strip()
            return text, [{"type": message_type, **media}]
        return "", []
