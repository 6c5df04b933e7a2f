"""Customer-facing messengers: webhook adapters and outbound senders."""

from __future__ import annotations

from .base import ChannelAdapter
from .line import LineAdapter
from .senders import DeliveryResult, LineSender, Sender, WhatsAppSender
from .whatsapp import WhatsAppAdapter

ADAPTERS: dict[str, type[ChannelAdapter]] = {
    adapter.channel_name: adapter for adapter in (WhatsAppAdapter, LineAdapter)
}


def supported_channels() -> list[str]:
    return sorted(ADAPTERS)


def get_adapter(name: str) -> type[ChannelAdapter]:
    """Return the adapter class for ``name``; unknown channels raise ``KeyError``."""
    try:
        return ADAPTERS[name.lower()]
    except KeyError:
        raise KeyError(f"Unknown channel '{name}'") from None


__all__ = [
    "ADAPTERS",
    "ChannelAdapter",
    "DeliveryResult",
    "LineAdapter",
    "LineSender",
    "Sender",
    "WhatsAppAdapter",
    "WhatsAppSender",
    "get_adapter",
    "supported_channels",
]
