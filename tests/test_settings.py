import pytest

from messenger_hub.conversations.service import create_relay_service
from messenger_hub.hub import InMemoryHubClient
from messenger_hub.settings import get_settings, reset_settings_cache


@pytest.fixture(autouse=True)
def _fresh_settings():
    reset_settings_cache()
    yield
    reset_settings_cache()


def test_defaults(monkeypatch):
    for name in ("WHATSAPP_ACCESS_TOKEN", "GEMINI_API_KEY", "DEFAULT_DEPARTMENT", "HUB_API_TOKEN"):
        monkeypatch.delenv(name, raising=False)

    settings = get_settings()

    assert settings.default_department == "sales"
    assert settings.max_clarification_attempts == 3
    assert settings.hub_spaces == {
        "technical": "spaces/technical",
        "sales": "spaces/sales",
        "design": "spaces/design",
    }
    assert not settings.whatsapp.configured
    assert not settings.ai_enabled
    assert settings.info_gathering_enabled
    assert settings.escalation_timeout_minutes == 10


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("WHATSAPP_ACCESS_TOKEN", "wa-token")
    monkeypatch.setenv("HUB_SALES_SPACE", "spaces/AAAA123")
    monkeypatch.setenv("DEFAULT_DEPARTMENT", "Technical")
    monkeypatch.setenv("INFO_GATHERING_ENABLED", "false")
    monkeypatch.setenv("URGENT_KEYWORDS", "Down, outage")
    monkeypatch.setenv("HUB_LANGUAGE", "TH")

    settings = get_settings()

    assert settings.whatsapp.configured
    assert settings.hub_spaces["sales"] == "spaces/AAAA123"
    assert settings.default_department == "technical"
    assert not settings.info_gathering_enabled
    assert settings.urgent_keywords == ("down", "outage")
    assert settings.hub_language == "th"


def test_unknown_default_department_is_rejected(monkeypatch):
    monkeypatch.setenv("DEFAULT_DEPARTMENT", "marketing")
    with pytest.raises(RuntimeError):
        get_settings()


def test_settings_are_cached(monkeypatch):
    first = get_settings()
    monkeypatch.setenv("MAX_CLARIFICATION_ATTEMPTS", "5")
    assert get_settings() is first
    reset_settings_cache()
    assert get_settings().max_clarification_attempts == 5


def test_create_relay_service_from_settings(monkeypatch, clock):
    monkeypatch.delenv("HUB_API_TOKEN", raising=False)
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.setenv("ESCALATION_TIMEOUT_MINUTES", "0")
    monkeypatch.setenv("CONVERSATION_TTL_HOURS", "12")

    relay = create_relay_service(get_settings(), clock=clock)

    assert isinstance(relay.hub, InMemoryHubClient)
    assert relay.escalations.timeout is None
    assert relay.conversations.ttl.total_seconds() == 12 * 3600
    assert set(relay.senders) == {"whatsapp", "line"}
    assert relay.router.default_department == "sales"
