"""In-memory conversation store mapping customers to Hub threads."""

from __future__ import annotations

import logging
import threading
import uuid
from collections import Counter
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from ..app_logging import mask_identifier
from .models import Conversation, SenderInfo, normalize_identifier

logger = logging.getLogger(__name__)

CONVERSATION_TTL = timedelta(hours=24)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_conversation_id() -> str:
    return f"conv_{uuid.uuid4().hex}"


class ConversationStore:
    """Bidirectional TTL map between ``(channel, user_id)`` and a Hub thread.

    Three indexes (by id, by user, by thread) keep every lookup O(1). Reads
    that find an expired entry delete it before reporting "not found", and
    :meth:`clear_expired` removes entries nobody reads again.
    """

    def __init__(
        self,
        *,
        ttl: timedelta = CONVERSATION_TTL,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.ttl = ttl
        self._clock = clock
        self._by_id: dict[str, Conversation] = {}
        self._by_user: dict[tuple[str, str], str] = {}
        self._by_thread: dict[str, str] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_id)

    # ------------------------------------------------------------------
    # Writes

    def put(
        self,
        channel: str,
        user_id: str,
        thread_id: str,
        space_id: str,
        sender_info: SenderInfo | None = None,
        *,
        department: str | None = None,
    ) -> str:
        """Store a mapping with a fresh expiry window and return its id.

        A later ``put`` for the same ``(channel, user_id)`` supersedes the
        earlier mapping; re-putting the same thread keeps the id.
        """

        user_key = (channel, normalize_identifier(user_id))
        if not user_key[1]:
            raise ValueError("user_id is required")
        if not thread_id:
            raise ValueError("thread_id is required")
        now = self._clock()
        with self._lock:
            previous_id = self._by_user.get(user_key)
            previous = self._by_id.get(previous_id) if previous_id else None
            created_at = now
            if previous is not None and previous.thread_id == thread_id:
                conversation_id = previous.id
                created_at = previous.created_at
            else:
                conversation_id = new_conversation_id()
                if previous is not None:
                    self._remove_locked(previous.id)
            stale_thread_owner = self._by_thread.get(thread_id)
            if stale_thread_owner and stale_thread_owner != conversation_id:
                self._remove_locked(stale_thread_owner)
            conversation = Conversation(
                id=conversation_id,
                channel=channel,
                user_id=user_key[1],
                thread_id=thread_id,
                space_id=space_id,
                sender_info=sender_info or SenderInfo(),
                created_at=created_at,
                last_activity=now,
                expires_at=now + self.ttl,
                department=department,
            )
            self._by_id[conversation_id] = conversation
            self._by_user[user_key] = conversation_id
            self._by_thread[thread_id] = conversation_id
        logger.debug(
            "Stored conversation %s for %s:%s -> %s",
            conversation_id,
            channel,
            mask_identifier(user_key[1]),
            thread_id,
        )
        return conversation_id

    def touch(self, conversation_id: str) -> bool:
        with self._lock:
            conversation = self._live(conversation_id)
            if conversation is None:
                return False
            conversation.last_activity = self._clock()
            return True

    def remove(self, conversation_id: str) -> bool:
        with self._lock:
            return self._remove_locked(conversation_id)

    def clear_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [c.id for c in self._by_id.values() if c.is_expired(now)]
            for conversation_id in expired:
                self._remove_locked(conversation_id)
        if expired:
            logger.info("Removed %s expired conversations", len(expired))
        return len(expired)

    # ------------------------------------------------------------------
    # Reads

    def get(self, conversation_id: str) -> Conversation | None:
        with self._lock:
            return self._access(self._live(conversation_id))

    def get_by_user(self, channel: str, user_id: str) -> Conversation | None:
        key = (channel, normalize_identifier(user_id))
        with self._lock:
            conversation_id = self._by_user.get(key)
            if conversation_id is None:
                return None
            return self._access(self._live(conversation_id))

    def get_by_thread(self, thread_id: str) -> Conversation | None:
        with self._lock:
            conversation_id = self._by_thread.get(thread_id)
            if conversation_id is None:
                return None
            return self._access(self._live(conversation_id))

    def all(self) -> list[Conversation]:
        now = self._clock()
        with self._lock:
            return [c for c in self._by_id.values() if not c.is_expired(now)]

    def stats(self) -> dict[str, Any]:
        live = self.all()
        by_channel = Counter(c.channel for c in live)
        created = sorted(c.created_at for c in live)
        return {
            "total": len(live),
            "by_channel": dict(by_channel),
            "oldest": created[0].isoformat() if created else None,
            "newest": created[-1].isoformat() if created else None,
        }

    # ------------------------------------------------------------------
    # Helpers (callers hold the lock)

    def _live(self, conversation_id: str) -> Conversation | None:
        conversation = self._by_id.get(conversation_id)
        if conversation is None:
            return None
        if conversation.is_expired(self._clock()):
            logger.debug("Conversation %s expired on read", conversation_id)
            self._remove_locked(conversation_id)
            return None
        return conversation

    def _access(self, conversation: Conversation | None) -> Conversation | None:
        if conversation is not None:
            conversation.last_activity = self._clock()
        return conversation

    def _remove_locked(self, conversation_id: str) -> bool:
        conversation = self._by_id.pop(conversation_id, None)
        if conversation is None:
            return False
        user_key = (conversation.channel, conversation.user_id)
        if self._by_user.get(user_key) == conversation_id:
            del self._by_user[user_key]
        if self._by_thread.get(conversation.thread_id) == conversation_id:
            del self._by_thread[conversation.thread_id]
        return True
