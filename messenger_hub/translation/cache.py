"""Bounded TTL + LRU cache for translated text."""

from __future__ import annotations

import hashlib
import logging
import math
import threading
from collections import Counter, OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

logger = logging.getLogger(__name__)

KEY_PREFIX = "translation:"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def cache_key(text: str, source_lang: str, target_lang: str) -> str:
    digest = hashlib.sha256(
        f"{text}|{source_lang}|{target_lang}".encode("utf-8")
    ).hexdigest()
    return f"{KEY_PREFIX}{digest}"


@dataclass
class CacheEntry:
    key: str
    translated_text: str
    source_lang: str
    target_lang: str
    confidence: float
    created_at: datetime
    expires_at: datetime
    last_accessed_at: datetime
    hit_count: int = 0


class TranslationCache:
    """In-memory cache keyed by ``sha256(text|source|target)``.

    Writes below ``confidence_threshold`` are refused. When an insert would
    exceed ``max_size`` the least recently used tenth of the entries (at least
    one) is evicted first. Entries expire ``ttl`` after creation regardless of
    how often they are read.
    """

    def __init__(
        self,
        *,
        max_size: int = 1000,
        ttl: timedelta = timedelta(minutes=60),
        confidence_threshold: float = 0.8,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.ttl = ttl
        self.confidence_threshold = confidence_threshold
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, text: str, source_lang: str, target_lang: str) -> CacheEntry | None:
        key = cache_key(text, source_lang, target_lang)
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.expires_at <= now:
                del self._entries[key]
                self._expirations += 1
                self._misses += 1
                return None
            entry.hit_count += 1
            entry.last_accessed_at = now
            self._entries.move_to_end(key)
            self._hits += 1
            return entry

    def set(
        self,
        text: str,
        source_lang: str,
        target_lang: str,
        translated_text: str,
        confidence: float,
    ) -> bool:
        """Store a translation; returns ``False`` when confidence is too low."""

        if confidence < self.confidence_threshold:
            logger.debug(
                "Skipping cache write, confidence %.2f below %.2f",
                confidence,
                self.confidence_threshold,
            )
            return False
        key = cache_key(text, source_lang, target_lang)
        now = self._clock()
        entry = CacheEntry(
            key=key,
            translated_text=translated_text,
            source_lang=source_lang,
            target_lang=target_lang,
            confidence=confidence,
            created_at=now,
            expires_at=now + self.ttl,
            last_accessed_at=now,
        )
        with self._lock:
            if key in self._entries:
                del self._entries[key]
            elif len(self._entries) >= self.max_size:
                self._evict_lru()
            self._entries[key] = entry
        return True

    def _evict_lru(self) -> None:
        count = max(1, math.ceil(len(self._entries) * 0.1))
        for _ in range(min(count, len(self._entries))):
            self._entries.popitem(last=False)
        self._evictions += count
        logger.debug("Evicted %s least recently used translations", count)

    def clear_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if e.expires_at <= now]
            for key in expired:
                del self._entries[key]
            self._expirations += len(expired)
        if expired:
            logger.info("Removed %s expired translations", len(expired))
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = self._misses = self._evictions = self._expirations = 0

    @property
    def hit_ratio(self) -> float:
        with self._lock:
            total = self._hits + self._misses
            return self._hits / total if total else 0.0

    def stats(self) -> dict[str, Any]:
        with self._lock:
            pairs = Counter(
                f"{e.source_lang}->{e.target_lang}" for e in self._entries.values()
            )
            total = self._hits + self._misses
            return {
                "size": len(self._entries),
                "max_size": self.max_size,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "expirations": self._expirations,
                "hit_ratio": self._hits / total if total else 0.0,
                "language_pairs": dict(pairs),
            }
