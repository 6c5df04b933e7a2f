"""Error vocabulary shared by the relay and its collaborators.

Collaborators (text-generation backend, Hub client, channel senders) raise
:class:`RelayError` subclasses internally. Public contract methods convert
them into result objects carrying an :class:`ErrorKind` so nothing escapes to
webhook or portal callers.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    NOT_FOUND = "not_found"
    VALIDATION = "validation"


class RelayError(RuntimeError):
    """Base error carrying a classification and optional HTTP status."""

    kind: ErrorKind = ErrorKind.TRANSIENT

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        if kind is not None:
            self.kind = kind
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.kind is ErrorKind.TRANSIENT


class BackendError(RelayError):
    """Raised when the text-generation backend cannot produce a response."""


class HubError(RelayError):
    """Raised when posting to or reading from the Hub fails."""


class DeliveryError(RelayError):
    """Raised by channel senders for a single failed delivery attempt."""


# Validation reasons returned by contract methods.
EMPTY_TEXT = "empty_text"
MISSING_IDENTIFIER = "missing_identifier"
UNKNOWN_CHANNEL = "unknown_channel"
CONVERSATION_NOT_FOUND = "conversation_not_found"

NOT_FOUND_MESSAGE = "This conversation may have expired or could not be found."


def classify_status(status_code: int | None) -> ErrorKind:
    """Map an HTTP status to transient or permanent failure."""

    if status_code is None:
        return ErrorKind.TRANSIENT
    if status_code == 429 or status_code >= 500:
        return ErrorKind.TRANSIENT
    return ErrorKind.PERMANENT
