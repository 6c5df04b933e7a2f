"""Endpoint tests for the FastAPI app in messenger_hub/main.py.

Covers health/version/stats, the channel webhooks (handshake, signature
checks, ingestion), the Hub event webhook, the reply portal and the
escalation endpoints. The module-level relay is swapped for one built from
test doubles so no external API is called.
"""

import dataclasses
import hashlib
import hmac
import json

import pytest
from fastapi.testclient import TestClient

from messenger_hub import main
from messenger_hub.__version__ import __build_date__, __commit_sha__, __version__
from messenger_hub.errors import NOT_FOUND_MESSAGE
from messenger_hub.settings import ChannelSettings

WA_SECRET = "wa-secret"

WHATSAPP_PAYLOAD = {
    "entry": [
        {
            "changes": [
                {
                    "value": {
                        "metadata": {"phone_number_id": "10987654321"},
                        "contacts": [{"wa_id": "66812345678", "profile": {"name": "Somchai"}}],
                        "messages": [
                            {
                                "from": "66812345678",
                                "id": "wamid.1",
                                "timestamp": "1714554000",
                                "type": "text",
                                "text": {"body": "Our player is broken and not working"},
                            },
                            {"from": "66812345678", "id": "wamid.2", "type": "reaction"},
                        ],
                    }
                }
            ]
        }
    ]
}


def _signed(payload) -> tuple[bytes, dict[str, str]]:
    body = json.dumps(payload).encode("utf-8")
    digest = hmac.new(WA_SECRET.encode(), body, hashlib.sha256).hexdigest()
    return body, {"X-Hub-Signature-256": f"sha256={digest}", "Content-Type": "application/json"}


@pytest.fixture
def client(monkeypatch, relay):
    settings = dataclasses.replace(
        main.settings,
        whatsapp=ChannelSettings(
            api_url="https://graph.example.test",
            access_token="wa-token",
            webhook_secret=WA_SECRET,
            verify_token="verify-me",
        ),
        line=ChannelSettings(api_url="https://api.line.example.test"),
    )
    monkeypatch.setattr(main.app.state, "settings", settings)
    monkeypatch.setattr(main.app.state, "relay", relay)
    return TestClient(main.app)


def _open_thread(client) -> dict:
    body, headers = _signed(WHATSAPP_PAYLOAD)
    response = client.post("/api/webhooks/whatsapp", content=body, headers=headers)
    assert response.status_code == 200
    return response.json()["results"][0]


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_version(client):
    assert client.get("/api/version").json() == {
        "version": __version__,
        "build_date": __build_date__,
        "commit_sha": __commit_sha__,
    }


def test_stats_reflect_relay_state(client):
    _open_thread(client)
    stats = client.get("/api/stats").json()
    assert stats["conversation_count"] == 1
    assert stats["by_channel"] == {"whatsapp": 1}


def test_whatsapp_subscription_handshake(client):
    params = {"hub.mode": "subscribe", "hub.verify_token": "verify-me", "hub.challenge": "1158201444"}
    response = client.get("/api/webhooks/whatsapp", params=params)
    assert response.status_code == 200
    assert response.text == "1158201444"

    params["hub.verify_token"] = "wrong"
    assert client.get("/api/webhooks/whatsapp", params=params).status_code == 403


def test_unknown_channel_returns_404(client):
    response = client.post("/api/webhooks/telegram", json={})
    assert response.status_code == 404
    assert "telegram" in response.json()["detail"]


def test_bad_signature_is_rejected(client, senders):
    body, _ = _signed(WHATSAPP_PAYLOAD)
    response = client.post(
        "/api/webhooks/whatsapp", content=body, headers={"X-Hub-Signature-256": "sha256=00"}
    )
    assert response.status_code == 401
    assert client.get("/api/stats").json()["conversation_count"] == 0


def test_signed_whatsapp_message_is_relayed(client, hub):
    body, headers = _signed(WHATSAPP_PAYLOAD)
    response = client.post("/api/webhooks/whatsapp", content=body, headers=headers)

    assert response.status_code == 200
    data = response.json()
    assert data["channel"] == "whatsapp"
    assert data["processed_messages"] == 1
    result = data["results"][0]
    assert result["forwarded"]
    assert result["department"] == "technical"
    (posted,) = hub.thread(result["thread_id"])
    assert "*From:* Somchai" in posted.text


def test_invalid_json_is_rejected(client):
    body = b"{not json"
    digest = hmac.new(WA_SECRET.encode(), body, hashlib.sha256).hexdigest()
    response = client.post(
        "/api/webhooks/whatsapp", content=body, headers={"X-Hub-Signature-256": f"sha256={digest}"}
    )
    assert response.status_code == 400


def test_line_webhook_without_secret(client):
    payload = {
        "events": [
            {
                "type": "message",
                "source": {"type": "user", "userId": "U4af4980629"},
                "message": {"id": "m1", "type": "text", "text": "Hello!"},
            }
        ]
    }
    response = client.post("/api/webhooks/line", json=payload)
    assert response.status_code == 200
    result = response.json()["results"][0]
    assert not result["forwarded"]
    assert result["reason"] == "greeting"
    assert result["auto_reply_text"]


def test_hub_event_reply_is_delivered(client, senders):
    thread_id = _open_thread(client)["thread_id"]
    event = {
        "type": "MESSAGE",
        "message": {
            "text": "We are sending a technician",
            "thread": {"name": thread_id},
            "sender": {"displayName": "Anna", "type": "HUMAN"},
        },
    }

    response = client.post("/api/hub/events", json=event)

    assert response.status_code == 200
    assert response.json() == {"text": None}
    identifier, text = senders["whatsapp"].sent[0]
    assert identifier == "66812345678"
    assert "We are sending a technician" in text


def test_hub_event_for_unknown_thread(client):
    event = {
        "type": "MESSAGE",
        "message": {"text": "Hello", "thread": {"name": "spaces/sales/threads/gone"}},
        "user": {"displayName": "Anna"},
    }
    response = client.post("/api/hub/events", json=event)
    assert NOT_FOUND_MESSAGE in response.json()["text"]


def test_hub_event_from_bot_is_ignored(client, senders):
    thread_id = _open_thread(client)["thread_id"]
    event = {
        "type": "MESSAGE",
        "message": {
            "text": "echo",
            "thread": {"name": thread_id},
            "sender": {"displayName": "Relay", "type": "BOT"},
        },
    }
    assert client.post("/api/hub/events", json=event).json() == {"text": None}
    assert client.post("/api/hub/events", json={"type": "ADDED_TO_SPACE"}).json() == {"text": None}
    assert senders["whatsapp"].sent == []


def test_portal_context_and_reply(client, senders):
    conversation_id = _open_thread(client)["conversation_id"]

    context = client.get(f"/api/portal/{conversation_id}").json()
    assert context["channel"] == "whatsapp"
    assert context["messages"][0]["text"] == "Our player is broken and not working"

    response = client.post(
        f"/api/portal/{conversation_id}/reply",
        json={"text": "Hello from the portal", "sender_name": "Anna"},
    )
    assert response.status_code == 200
    assert response.json()["delivered"]
    assert response.json()["message_id"] == "wamid.1"
    assert senders["whatsapp"].sent[0][0] == "66812345678"


def test_portal_missing_conversation(client):
    response = client.get("/api/portal/conv_missing")
    assert response.status_code == 404
    assert response.json()["detail"] == NOT_FOUND_MESSAGE
    reply = client.post("/api/portal/conv_missing/reply", json={"text": "Hello"})
    assert reply.status_code == 404


def test_portal_reply_requires_text(client):
    conversation_id = _open_thread(client)["conversation_id"]
    response = client.post(f"/api/portal/{conversation_id}/reply", json={"text": ""})
    assert response.status_code == 422


def test_portal_reply_delivery_failure(client, senders):
    from messenger_hub.channels.senders import DeliveryResult

    conversation_id = _open_thread(client)["conversation_id"]
    senders["whatsapp"].fail_with = DeliveryResult(
        False, error="whatsapp API returned HTTP 401", status_code=401, attempts=1
    )
    response = client.post(f"/api/portal/{conversation_id}/reply", json={"text": "Hello"})
    assert response.status_code == 502


def test_escalation_endpoints(client):
    thread_id = _open_thread(client)["thread_id"]

    response = client.post("/api/escalations/66812345678")
    assert response.status_code == 200
    data = response.json()
    assert data["identifier"] == "66812345678"
    assert data["thread_id"] == thread_id
    assert data["expires_at"] is not None

    line = client.post("/api/escalations/U1", json={"channel": "line"})
    assert line.status_code == 200
    assert line.json()["thread_id"] is None

    assert client.delete("/api/escalations/66812345678").json() == {"cleared": True}
    assert client.delete("/api/escalations/66812345678").status_code == 404
