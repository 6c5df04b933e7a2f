"""Background thread that periodically expires stale relay state."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from threading import Event
from typing import Any

logger = logging.getLogger(__name__)


class Sweeper:
    """Call ``task`` every ``interval`` seconds until stopped.

    The loop waits on a :class:`threading.Event`, so :meth:`stop` returns
    promptly instead of sleeping out the interval.
    """

    def __init__(
        self, task: Callable[[], Any], interval: float, *, name: str = "relay-sweeper"
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.task = task
        self.interval = interval
        self.name = name
        self.runs = 0
        self._stop = Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> Any:
        try:
            return self.task()
        except Exception:  # pragma: no cover - keep the loop alive
            logger.exception("Sweep failed")
            return None
        finally:
            self.runs += 1

    def _run(self, stop: Event) -> None:
        while not stop.wait(self.interval):
            self.run_once()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, args=(self._stop,), name=self.name, daemon=True
        )
        self._thread.start()
        logger.info("Started %s every %ss", self.name, self.interval)

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
