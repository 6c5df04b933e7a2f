"""Outbound delivery to customer channels with bounded retries."""

from __future__ import annotations

import logging
import re
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

import requests

from ..app_logging import mask_identifier
from ..errors import DeliveryError, ErrorKind, classify_status
from ..retry import retry_call
from ..settings import ChannelSettings

logger = logging.getLogger(__name__)

NON_RETRYABLE_STATUSES = frozenset({400, 401, 403, 409})


@dataclass
class DeliveryResult:
    success: bool
    error: str | None = None
    status_code: int | None = None
    message_id: str | None = None
    attempts: int = 0


class Sender(Protocol):
    channel_name: str

    def send(self, identifier: str, text: str) -> DeliveryResult:
        """Deliver ``text`` to ``identifier``; never raises."""


def _should_retry(exc: Exception) -> bool:
    if isinstance(exc, DeliveryError):
        if exc.status_code in NON_RETRYABLE_STATUSES:
            return False
        return exc.retryable
    return isinstance(exc, requests.RequestException)


class HttpSender(ABC):
    """Shared request/retry plumbing for channel HTTP APIs."""

    channel_name: str
    max_text_length: int = 4096

    def __init__(
        self,
        config: ChannelSettings,
        *,
        session: requests.Session | None = None,
        attempts: int = 3,
        base_delay: float = 1.0,
        timeout: float = 10.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.session = session or requests.Session()
        self.attempts = attempts
        self.base_delay = base_delay
        self.timeout = timeout
        self._sleep = sleep

    @abstractmethod
    def build_request(self, recipient: str, text: str) -> tuple[str, dict[str, Any]]:
        """Return the URL and JSON body for one delivery."""

    def clean_recipient(self, identifier: str) -> str | None:
        value = (identifier or "").strip()
        return value or None

    def extract_message_id(self, payload: dict[str, Any]) -> str | None:
        return None

    def send(self, identifier: str, text: str) -> DeliveryResult:
        if not self.config.configured:
            return DeliveryResult(False, error=f"{self.channel_name} sender not configured")
        recipient = self.clean_recipient(identifier)
        if recipient is None:
            return DeliveryResult(False, error="invalid recipient")
        if not text or not text.strip():
            return DeliveryResult(False, error="empty message")
        if len(text) > self.max_text_length:
            logger.warning(
                "Truncating %s message from %s characters", self.channel_name, len(text)
            )
            text = text[: self.max_text_length - 1] + "…"

        url, body = self.build_request(recipient, text)
        attempts = 0

        def _post() -> requests.Response:
            nonlocal attempts
            attempts += 1
            response = self.session.request(
                "POST",
                url,
                json=body,
                headers={
                    "Authorization": f"Bearer {self.config.access_token}",
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
            )
            if response.status_code >= 400:
                raise DeliveryError(
                    f"{self.channel_name} API returned HTTP {response.status_code}",
                    kind=classify_status(response.status_code),
                    status_code=response.status_code,
                )
            return response

        try:
            response = retry_call(
                _post,
                attempts=self.attempts,
                base_delay=self.base_delay,
                should_retry=_should_retry,
                sleep=self._sleep,
                description=f"{self.channel_name} delivery",
            )
        except DeliveryError as exc:
            logger.error(
                "Delivery to %s on %s failed: %s",
                mask_identifier(recipient),
                self.channel_name,
                exc,
            )
            return DeliveryResult(
                False, error=str(exc), status_code=exc.status_code, attempts=attempts
            )
        except requests.RequestException as exc:
            logger.error(
                "Delivery to %s on %s failed: %s",
                mask_identifier(recipient),
                self.channel_name,
                exc,
            )
            return DeliveryResult(False, error=str(exc), attempts=attempts)

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        return DeliveryResult(
            True,
            status_code=response.status_code,
            message_id=self.extract_message_id(payload if isinstance(payload, dict) else {}),
            attempts=attempts,
        )


class WhatsAppSender(HttpSender):
    channel_name = "whatsapp"
    max_text_length = 4096

    def clean_recipient(self, identifier: str) -> str | None:
        digits = re.sub(r"\D", "", identifier or "")
        if not 7 <= len(digits) <= 15:
            return None
        return digits

    def build_request(self, recipient: str, text: str) -> tuple[str, dict[str, Any]]:
        url = f"{self.config.api_url.rstrip('/')}/{self.config.sender_id}/messages"
        body = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": recipient,
            "type": "text",
            "text": {"preview_url": False, "body": text},
        }
        return url, body

    def extract_message_id(self, payload: dict[str, Any]) -> str | None:
        messages = payload.get("messages") or []
        if messages and isinstance(messages[0], dict):
            return messages[0].get("id")
        return None


class LineSender(HttpSender):
    channel_name = "line"
    max_text_length = 5000

    def build_request(self, recipient: str, text: str) -> tuple[str, dict[str, Any]]:
        url = f"{self.config.api_url.rstrip('/')}/message/push"
        body = {"to": recipient, "messages": [{"type": "text", "text": text}]}
        return url, body

    def extract_message_id(self, payload: dict[str, Any]) -> str | None:
        sent = payload.get("sentMessages") or []
        if sent and isinstance(sent[0], dict):
            return sent[0].get("id")
        return None


__all__ = [
    "DeliveryResult",
    "ErrorKind",
    "HttpSender",
    "LineSender",
    "Sender",
    "WhatsAppSender",
]
