from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import pytest
import requests

from messenger_hub.errors import ErrorKind, HubError
from messenger_hub.hub import HttpHubClient, InMemoryHubClient, create_hub_client
from messenger_hub.settings import get_settings, reset_settings_cache


class _FakeResponse:
    def __init__(self, payload: Any, status_code: int = 200):
        self._payload = payload
        self.status_code = status_code

    def json(self) -> Any:
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class _FakeSession:
    def __init__(self, responses: list[_FakeResponse | Exception]):
        self._responses = responses
        self.requests: list[dict[str, Any]] = []

    def request(self, method: str, url: str, **kwargs: Any) -> _FakeResponse:
        self.requests.append({"method": method, "url": url, **kwargs})
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _client(responses):
    session = _FakeSession(responses)
    return HttpHubClient("https://chat.example.test/v1/", "hub-token", session=session), session


def test_post_message_starts_thread():
    client, session = _client(
        [
            _FakeResponse(
                {"name": "spaces/sales/messages/m1", "thread": {"name": "spaces/sales/threads/t1"}}
            )
        ]
    )

    result = client.post_message("spaces/sales", "New customer message")

    assert result.thread_id == "spaces/sales/threads/t1"
    assert result.space_id == "spaces/sales"
    assert result.message_name == "spaces/sales/messages/m1"
    request = session.requests[0]
    assert request["method"] == "POST"
    assert request["url"] == "https://chat.example.test/v1/spaces/sales/messages"
    assert request["headers"]["Authorization"] == "Bearer hub-token"
    assert request["params"] == {"messageReplyOption": "REPLY_MESSAGE_FALLBACK_TO_NEW_THREAD"}
    assert request["json"]["text"] == "New customer message"
    assert "threadKey" in request["json"]["thread"]


def test_post_message_replies_in_existing_thread():
    client, session = _client([_FakeResponse({"name": "spaces/sales/messages/m2"})])

    result = client.post_message("spaces/sales", "follow-up", thread_id="spaces/sales/threads/t1")

    assert result.thread_id == "spaces/sales/threads/t1"
    assert session.requests[0]["json"]["thread"] == {"name": "spaces/sales/threads/t1"}


@pytest.mark.parametrize(
    "status,kind",
    [
        (404, ErrorKind.NOT_FOUND),
        (403, ErrorKind.PERMANENT),
        (429, ErrorKind.TRANSIENT),
        (500, ErrorKind.TRANSIENT),
    ],
)
def test_http_errors_are_classified(status, kind):
    client, _ = _client([_FakeResponse({}, status_code=status)])
    with pytest.raises(HubError) as excinfo:
        client.post_message("spaces/sales", "hello")
    assert excinfo.value.kind is kind
    assert excinfo.value.status_code == status


def test_network_error_is_transient():
    client, _ = _client([requests.ConnectionError("refused")])
    with pytest.raises(HubError) as excinfo:
        client.post_message("spaces/sales", "hello")
    assert excinfo.value.retryable


def test_missing_thread_in_response_is_permanent():
    client, _ = _client([_FakeResponse({"name": "spaces/sales/messages/m1"})])
    with pytest.raises(HubError) as excinfo:
        client.post_message("spaces/sales", "hello")
    assert excinfo.value.kind is ErrorKind.PERMANENT


def test_list_messages_parses_senders_and_filter():
    since = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)
    client, session = _client(
        [
            _FakeResponse(
                {
                    "messages": [
                        {
                            "name": "spaces/sales/messages/m3",
                            "text": "We can help with that",
                            "thread": {"name": "spaces/sales/threads/t1"},
                            "sender": {"displayName": "Anna", "type": "HUMAN"},
                            "createTime": "2024-05-01T09:05:00Z",
                        },
                        {
                            "name": "spaces/sales/messages/m4",
                            "text": "New customer message",
                            "thread": {"name": "spaces/sales/threads/t2"},
                            "sender": {"displayName": "Relay", "type": "BOT"},
                            "createTime": "2024-05-01T09:06:00Z",
                        },
                    ]
                }
            )
        ]
    )

    human, bot = client.list_messages("spaces/sales", since=since)

    assert session.requests[0]["params"]["filter"] == 'createTime > "2024-05-01T09:00:00+00:00"'
    assert human.sender_name == "Anna"
    assert not human.from_bot
    assert human.thread_id == "spaces/sales/threads/t1"
    assert human.created_at == datetime(2024, 5, 1, 9, 5, tzinfo=timezone.utc)
    assert bot.from_bot


def test_in_memory_client_threads(clock):
    hub = InMemoryHubClient(clock=clock)
    first = hub.post_message("spaces/sales", "hello")
    assert first.thread_id.startswith("spaces/sales/threads/")
    again = hub.post_message("spaces/sales", "again", thread_id=first.thread_id)
    assert again.thread_id == first.thread_id

    clock.advance(minutes=1)
    reply = hub.add_reply("spaces/sales", first.thread_id, "Hi, this is Anna")

    assert [m.text for m in hub.thread(first.thread_id)] == ["hello", "again", "Hi, this is Anna"]
    assert hub.list_messages("spaces/sales", since=reply.created_at) == []
    assert len(hub.list_messages("spaces/sales")) == 3
    with pytest.raises(HubError):
        hub.post_message("", "hello")


def test_create_hub_client_depends_on_token(monkeypatch):
    monkeypatch.delenv("HUB_API_TOKEN", raising=False)
    reset_settings_cache()
    assert isinstance(create_hub_client(get_settings()), InMemoryHubClient)

    monkeypatch.setenv("HUB_API_TOKEN", "hub-token")
    reset_settings_cache()
    client = create_hub_client(get_settings())
    assert isinstance(client, HttpHubClient)
    assert client.token == "hub-token"
    reset_settings_cache()
