"""Hub thread API: post into department spaces and read thread replies."""

from __future__ import annotations

import itertools
import logging
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol

import requests

from ..conversations.models import HubMessage
from ..errors import ErrorKind, HubError, classify_status
from ..settings import Settings

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class HubPostResult:
    thread_id: str
    space_id: str
    message_name: str | None = None


class HubClient(Protocol):
    def post_message(
        self, space_id: str, text: str, thread_id: str | None = None
    ) -> HubPostResult:
        """Post ``text``; a ``None`` thread starts a new one. Raises ``HubError``."""

    def list_messages(
        self, space_id: str, since: datetime | None = None
    ) -> list[HubMessage]:
        """Return messages created after ``since`` in ascending order."""


def _parse_time(value: str | None) -> datetime:
    if not value:
        return _utcnow()
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return _utcnow()


class HttpHubClient:
    """Client for a Google Chat style REST API (spaces, threads, messages)."""

    def __init__(
        self,
        base_url: str,
        token: str | None,
        *,
        session: requests.Session | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.session = session or requests.Session()
        self.timeout = timeout

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        try:
            response = self.session.request(
                method,
                f"{self.base_url}/{path.lstrip('/')}",
                headers=headers,
                timeout=self.timeout,
                **kwargs,
            )
        except requests.RequestException as exc:
            raise HubError(f"Hub request failed: {exc}") from exc
        if response.status_code >= 400:
            kind = (
                ErrorKind.NOT_FOUND
                if response.status_code == 404
                else classify_status(response.status_code)
            )
            raise HubError(
                f"Hub returned HTTP {response.status_code}",
                kind=kind,
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise HubError("Hub returned a non-JSON response") from exc
        return payload if isinstance(payload, dict) else {}

    def post_message(
        self, space_id: str, text: str, thread_id: str | None = None
    ) -> HubPostResult:
        body: dict[str, Any] = {"text": text}
        params = {"messageReplyOption": "REPLY_MESSAGE_FALLBACK_TO_NEW_THREAD"}
        if thread_id:
            body["thread"] = {"name": thread_id}
        else:
            body["thread"] = {"threadKey": uuid.uuid4().hex}
        payload = self._request("POST", f"{space_id}/messages", json=body, params=params)
        thread_name = (payload.get("thread") or {}).get("name") or thread_id
        if not thread_name:
            raise HubError("Hub response did not include a thread", kind=ErrorKind.PERMANENT)
        return HubPostResult(
            thread_id=thread_name, space_id=space_id, message_name=payload.get("name")
        )

    def list_messages(
        self, space_id: str, since: datetime | None = None
    ) -> list[HubMessage]:
        params: dict[str, Any] = {"pageSize": 100, "orderBy": "createTime asc"}
        if since is not None:
            params["filter"] = f'createTime > "{since.isoformat()}"'
        payload = self._request("GET", f"{space_id}/messages", params=params)
        messages = []
        for item in payload.get("messages", []) or []:
            sender = item.get("sender") or {}
            messages.append(
                HubMessage(
                    name=item.get("name", ""),
                    thread_id=(item.get("thread") or {}).get("name", ""),
                    space_id=space_id,
                    text=item.get("text") or item.get("argumentText") or "",
                    sender_name=sender.get("displayName"),
                    sender_type=sender.get("type") or "HUMAN",
                    created_at=_parse_time(item.get("createTime")),
                )
            )
        return messages


class InMemoryHubClient:
    """Local Hub used when no Hub credentials are configured."""

    def __init__(self, *, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self._messages: dict[str, list[HubMessage]] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def post_message(
        self, space_id: str, text: str, thread_id: str | None = None
    ) -> HubPostResult:
        if not space_id:
            raise HubError("space_id is required", kind=ErrorKind.VALIDATION)
        with self._lock:
            number = next(self._ids)
            thread = thread_id or f"{space_id}/threads/t{number}"
            message = HubMessage(
                name=f"{space_id}/messages/m{number}",
                thread_id=thread,
                space_id=space_id,
                text=text,
                sender_name="Messenger Hub",
                sender_type="BOT",
                created_at=self._clock(),
            )
            self._messages.setdefault(space_id, []).append(message)
        return HubPostResult(thread_id=thread, space_id=space_id, message_name=message.name)

    def add_reply(
        self, space_id: str, thread_id: str, text: str, sender_name: str = "Agent"
    ) -> HubMessage:
        """Record a team member's reply, as a human would post it."""

        with self._lock:
            number = next(self._ids)
            message = HubMessage(
                name=f"{space_id}/messages/m{number}",
                thread_id=thread_id,
                space_id=space_id,
                text=text,
                sender_name=sender_name,
                created_at=self._clock(),
            )
            self._messages.setdefault(space_id, []).append(message)
        return message

    def list_messages(
        self, space_id: str, since: datetime | None = None
    ) -> list[HubMessage]:
        with self._lock:
            messages = list(self._messages.get(space_id, []))
        if since is not None:
            messages = [m for m in messages if m.created_at > since]
        return messages

    def thread(self, thread_id: str) -> list[HubMessage]:
        with self._lock:
            return [
                m
                for messages in self._messages.values()
                for m in messages
                if m.thread_id == thread_id
            ]


def create_hub_client(settings: Settings) -> HubClient:
    if settings.hub_api_token:
        return HttpHubClient(settings.hub_api_url, settings.hub_api_token)
    logger.warning("HUB_API_TOKEN not set; using the in-memory Hub")
    return InMemoryHubClient()
