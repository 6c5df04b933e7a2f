"""Conversation tracking: thread mapping, escalations, transcripts and the relay."""

from .escalation import EscalationRecord, EscalationStore
from .history import MessageHistoryStore, format_for_display
from .models import Conversation, HubMessage, NormalizedMessage, SenderInfo, normalize_identifier
from .store import ConversationStore

__all__ = [
    "Conversation",
    "ConversationStore",
    "EscalationRecord",
    "EscalationStore",
    "HubMessage",
    "MessageHistoryStore",
    "NormalizedMessage",
    "SenderInfo",
    "format_for_display",
    "normalize_identifier",
]
