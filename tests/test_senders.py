from __future__ import annotations

from typing import Any

import pytest
import requests

from messenger_hub.channels.senders import LineSender, WhatsAppSender
from messenger_hub.settings import ChannelSettings

WHATSAPP = ChannelSettings(
    api_url="https://graph.example.test/v18.0",
    access_token="wa-token",
    sender_id="10987654321",
)
LINE = ChannelSettings(api_url="https://api.line.example.test/v2/bot", access_token="line-token")


class _FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None):
        self.status_code = status_code
        self._payload = payload if payload is not None else {}

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


def _whatsapp(responses, sleeps=None):
    session = _FakeSession(responses)
    sleep = sleeps.append if sleeps is not None else (lambda _: None)
    return WhatsAppSender(WHATSAPP, session=session, sleep=sleep), session


def test_whatsapp_send_builds_cloud_api_request():
    sender, session = _whatsapp(
        [_FakeResponse(200, {"messages": [{"id": "wamid.HBg123"}]})]
    )

    result = sender.send("+66 81-234-5678", "Hello from the team")

    assert result.success
    assert result.message_id == "wamid.HBg123"
    assert result.attempts == 1
    request = session.requests[0]
    assert request["method"] == "POST"
    assert request["url"] == "https://graph.example.test/v18.0/10987654321/messages"
    assert request["headers"]["Authorization"] == "Bearer wa-token"
    assert request["json"] == {
        "messaging_product": "whatsapp",
        "recipient_type": "individual",
        "to": "66812345678",
        "type": "text",
        "text": {"preview_url": False, "body": "Hello from the team"},
    }


def test_line_send_uses_push_endpoint():
    session = _FakeSession([_FakeResponse(200, {"sentMessages": [{"id": "4610"}]})])
    sender = LineSender(LINE, session=session, sleep=lambda _: None)

    result = sender.send("U4af4980629", "สวัสดีครับ")

    assert result.success
    assert result.message_id == "4610"
    request = session.requests[0]
    assert request["url"] == "https://api.line.example.test/v2/bot/message/push"
    assert request["headers"]["Authorization"] == "Bearer line-token"
    assert request["json"] == {
        "to": "U4af4980629",
        "messages": [{"type": "text", "text": "สวัสดีครับ"}],
    }


@pytest.mark.parametrize("status", [400, 401, 403, 409])
def test_client_errors_are_not_retried(status):
    sleeps: list[float] = []
    sender, session = _whatsapp([_FakeResponse(status)], sleeps)

    result = sender.send("66812345678", "hello")

    assert not result.success
    assert result.status_code == status
    assert result.attempts == 1
    assert len(session.requests) == 1
    assert sleeps == []


@pytest.mark.parametrize("status", [429, 500, 503])
def test_transient_errors_retry_with_backoff(status):
    sleeps: list[float] = []
    sender, session = _whatsapp(
        [_FakeResponse(status), _FakeResponse(status), _FakeResponse(200, {})], sleeps
    )

    result = sender.send("66812345678", "hello")

    assert result.success
    assert result.attempts == 3
    assert result.message_id is None
    assert sleeps == [1.0, 2.0]


def test_gives_up_after_three_attempts():
    sleeps: list[float] = []
    sender, session = _whatsapp([_FakeResponse(502)] * 3, sleeps)

    result = sender.send("66812345678", "hello")

    assert not result.success
    assert result.status_code == 502
    assert result.attempts == 3
    assert "502" in result.error


def test_network_errors_are_retried():
    sleeps: list[float] = []
    sender, session = _whatsapp(
        [requests.ConnectionError("reset"), _FakeResponse(200, {"messages": [{"id": "m1"}]})],
        sleeps,
    )

    result = sender.send("66812345678", "hello")

    assert result.success
    assert result.attempts == 2
    assert sleeps == [1.0]


def test_network_failure_result_has_no_status():
    sender, session = _whatsapp([requests.Timeout("slow")] * 3)
    result = sender.send("66812345678", "hello")
    assert not result.success
    assert result.status_code is None
    assert result.attempts == 3


@pytest.mark.parametrize("identifier", ["", "12345", "1234567890123456", "not-a-phone"])
def test_invalid_whatsapp_recipient_is_rejected_without_request(identifier):
    sender, session = _whatsapp([])
    result = sender.send(identifier, "hello")
    assert not result.success
    assert result.error == "invalid recipient"
    assert result.attempts == 0
    assert session.requests == []


def test_empty_message_is_rejected():
    sender, session = _whatsapp([])
    result = sender.send("66812345678", "   ")
    assert result.error == "empty message"
    assert session.requests == []


def test_unconfigured_sender_does_not_call_api():
    session = _FakeSession([])
    sender = LineSender(ChannelSettings(api_url="https://api.line.example.test"), session=session)
    result = sender.send("U1", "hello")
    assert not result.success
    assert "not configured" in result.error
    assert session.requests == []


def test_long_messages_are_truncated():
    session = _FakeSession([_FakeResponse(200, {})])
    sender = LineSender(LINE, session=session)
    sender.send("U1", "x" * 6000)
    body = session.requests[0]["json"]["messages"][0]["text"]
    assert len(body) == 5000
    assert body.endswith("…")
