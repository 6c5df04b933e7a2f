"""Base abstractions for customer channel adapters."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from typing import Any

from ..conversations.models import NormalizedMessage
from ..settings import ChannelSettings


class ChannelAdapter(ABC):
    """Turn one channel's webhook payloads into normalized messages."""

    #: Lowercase channel identifier used in routes and configuration.
    channel_name: str

    def __init__(self, config: ChannelSettings | None = None) -> None:
        self.config = config

    @property
    def webhook_secret(self) -> str | None:
        return self.config.webhook_secret if self.config else None

    @abstractmethod
    def parse_incoming(self, payload: Mapping[str, Any]) -> Iterable[NormalizedMessage]:
        """Convert a webhook payload into normalized messages."""

    def verify_signature(self, body: bytes, headers: Mapping[str, str]) -> bool:
        """Validate authenticity of the webhook payload.

        Adapters override this with the channel's signature scheme. Without a
        configured secret every payload is accepted.
        """

        return True

    def verify_subscription(self, params: Mapping[str, str]) -> str | None:
        """Answer a subscription handshake; ``None`` rejects it."""

        return None
