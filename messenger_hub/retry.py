"""Bounded retry with exponential backoff."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

from .errors import RelayError

T = TypeVar("T")

logger = logging.getLogger(__name__)


def backoff_delay(base_delay: float, attempt: int) -> float:
    """Delay before retrying after ``attempt`` (0-based) failed."""

    return base_delay * (2**attempt)


def _default_should_retry(exc: Exception) -> bool:
    if isinstance(exc, RelayError):
        return exc.retryable
    return True


def retry_call(
    fn: Callable[[], T],
    *,
    attempts: int = 3,
    base_delay: float = 1.0,
    should_retry: Callable[[Exception], bool] | None = None,
    sleep: Callable[[float], None] = time.sleep,
    description: str = "operation",
) -> T:
    """Call ``fn`` until it succeeds or ``attempts`` are exhausted.

    The last exception is re-raised once retries run out or as soon as
    ``should_retry`` reports a permanent failure. Waits ``base_delay * 2**n``
    between attempts.
    """

    if attempts < 1:
        raise ValueError("attempts must be at least 1")
    check = should_retry or _default_should_retry
    for attempt in range(attempts):
        try:
            return fn()
        except Exception as exc:
            final = attempt == attempts - 1
            if final or not check(exc):
                logger.warning(
                    "%s failed on attempt %s/%s, giving up: %s",
                    description,
                    attempt + 1,
                    attempts,
                    exc,
                )
                raise
            delay = backoff_delay(base_delay, attempt)
            logger.info(
                "%s failed on attempt %s/%s, retrying in %.2fs: %s",
                description,
                attempt + 1,
                attempts,
                delay,
                exc,
            )
            sleep(delay)
    raise AssertionError("unreachable")  # pragma: no cover
