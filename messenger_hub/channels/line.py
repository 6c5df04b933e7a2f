"""LINE Messaging API webhook adapter."""

from __future__ import annotations

import base64
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
    "file": "[Document]",
    "sticker": "[Sticker]",
    "location": "[Location]",
}


class LineAdapter(ChannelAdapter):
    channel_name = "line"

    def verify_signature(self, body: bytes, headers: Mapping[str, str]) -> bool:
        secret = self.webhook_secret
        if not secret:
            return True
        received = headers.get("X-Line-Signature")
        if not received:
            return False
        digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
        expected = base64.b64encode(digest).decode("ascii")
        return hmac.compare_digest(received, expected)

    def parse_incoming(self, payload: Mapping[str, Any]) -> Iterable[NormalizedMessage]:
        for event in payload.get("events", []) or []:
            if event.get("type") != "message":
                continue
            source = event.get("source") or {}
            user_id = source.get("userId")
            if not user_id:
                continue
            message = event.get("message") or {}
            message_type = message.get("type") or "text"
            if message_type == "text":
                text = message.get("text", "")
            elif message_type in MEDIA_LABELS:
                detail = message.get("fileName") or message.get("title") or ""
                text = f"{MEDIA_LABELS[message_type]} {detail}".strip()
            else:
                text = ""
            timestamp = event.get("timestamp")
            sent_at = (
                datetime.fromtimestamp(int(timestamp) / 1000, tz=timezone.utc)
                if isinstance(timestamp, (int, float))
                else datetime.now(timezone.utc)
            )
            yield NormalizedMessage(
                channel=self.channel_name,
                sender_id=str(user_id),
                text=text,
                message_id=message.get("id"),
                message_type=message_type,
                metadata={
                    "reply_token": event.get("replyToken"),
                    "source_type": source.get("type"),
                },
                sent_at=sent_at,
            )
