"""Poll Hub spaces for team replies and hand them to the relay."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta, timezone
from threading import Event
from typing import Any

from ..errors import RelayError
from .client import HubClient

logger = logging.getLogger(__name__)

PROCESSED_TTL = timedelta(hours=24)

ReplyHandler = Callable[..., Any]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HubPoller:
    """Read new thread messages and forward human replies exactly once.

    The poller remembers message names it has handled for a day so a message
    seen on two consecutive polls is not delivered twice.
    """

    def __init__(
        self,
        client: HubClient,
        handle_reply: ReplyHandler,
        spaces: Iterable[str],
        *,
        interval: float = 5.0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.client = client
        self.handle_reply = handle_reply
        self.spaces = list(dict.fromkeys(spaces))
        self.interval = interval
        self._clock = clock
        self._processed: dict[str, datetime] = {}
        self._since: dict[str, datetime] = {}
        self._started_at = clock()
        self._thread: threading.Thread | None = None
        self._stop = Event()

    def poll_once(self) -> int:
        """Process new messages in every space; returns replies handed over."""

        handled = 0
        for space in self.spaces:
            since = self._since.get(space, self._started_at)
            try:
                messages = self.client.list_messages(space, since=since)
            except RelayError as exc:
                logger.warning("Polling %s failed: %s", space, exc)
                continue
            for message in messages:
                if message.created_at > since:
                    self._since[space] = message.created_at
                    since = message.created_at
                if message.from_bot or not message.text.strip():
                    continue
                if message.name in self._processed:
                    continue
                self._processed[message.name] = self._clock()
                self.handle_reply(
                    message.thread_id, message.text, sender_name=message.sender_name
                )
                handled += 1
        self._prune()
        return handled

    def _prune(self) -> None:
        cutoff = self._clock() - PROCESSED_TTL
        for name in [n for n, seen in self._processed.items() if seen <= cutoff]:
            del self._processed[name]

    def _run(self, stop: Event) -> None:
        while not stop.wait(self.interval):
            try:
                self.poll_once()
            except Exception:  # pragma: no cover - keep the loop alive
                logger.exception("Hub polling iteration failed")

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, args=(self._stop,), name="hub-poller", daemon=True
        )
        self._thread.start()
        logger.info("Polling %s Hub spaces every %ss", len(self.spaces), self.interval)

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
