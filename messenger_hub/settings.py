"""Runtime configuration loaded from environment variables."""

from __future__ import annotations

import dataclasses
import os
from functools import lru_cache

DEPARTMENTS = ("technical", "sales", "design")

DEFAULT_URGENT_KEYWORDS = ("urgent", "emergency", "asap", "immediately", "help")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    value = os.getenv(name)
    if not value:
        return default
    return tuple(item.strip().lower() for item in value.split(",") if item.strip())


@dataclasses.dataclass(frozen=True)
class ChannelSettings:
    """Credentials for one outbound customer channel."""

    api_url: str
    access_token: str | None = None
    sender_id: str | None = None
    webhook_secret: str | None = None
    verify_token: str | None = None

    @property
    def configured(self) -> bool:
        return bool(self.access_token)


@dataclasses.dataclass(frozen=True)
class Settings:
    """Everything the relay needs to wire its stores and collaborators."""

    whatsapp: ChannelSettings
    line: ChannelSettings
    hub_api_url: str
    hub_api_token: str | None
    hub_spaces: dict[str, str]
    hub_poll_interval_seconds: float = 5.0
    gemini_api_key: str | None = None
    gemini_model: str = "gemini-2.0-flash"
    gemini_temperature: float = 0.1
    gemini_timeout_seconds: float = 15.0
    default_department: str = "sales"
    max_clarification_attempts: int = 3
    hub_language: str = "en"
    translation_cache_max_size: int = 1000
    translation_cache_ttl_minutes: int = 60
    translation_confidence_threshold: float = 0.8
    translation_retry_delay_seconds: float = 1.0
    info_gathering_enabled: bool = True
    urgent_keywords: tuple[str, ...] = DEFAULT_URGENT_KEYWORDS
    conversation_ttl_hours: int = 24
    escalation_timeout_minutes: int = 10
    sweep_interval_seconds: float = 3600.0

    @property
    def ai_enabled(self) -> bool:
        return bool(self.gemini_api_key)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from the environment with development defaults."""

    whatsapp = ChannelSettings(
        api_url=os.getenv("WHATSAPP_API_URL", "https://graph.facebook.com/v18.0"),
        access_token=os.getenv("WHATSAPP_ACCESS_TOKEN"),
        sender_id=os.getenv("WHATSAPP_PHONE_NUMBER_ID"),
        webhook_secret=os.getenv("WHATSAPP_APP_SECRET"),
        verify_token=os.getenv("WHATSAPP_VERIFY_TOKEN"),
    )
    line = ChannelSettings(
        api_url=os.getenv("LINE_API_URL", "https://api.line.me/v2/bot"),
        access_token=os.getenv("LINE_CHANNEL_ACCESS_TOKEN"),
        webhook_secret=os.getenv("LINE_CHANNEL_SECRET"),
    )
    default_department = os.getenv("DEFAULT_DEPARTMENT", "sales").lower()
    if default_department not in DEPARTMENTS:
        raise RuntimeError(
            f"DEFAULT_DEPARTMENT must be one of {', '.join(DEPARTMENTS)}"
        )
    hub_spaces = {
        department: os.getenv(f"HUB_{department.upper()}_SPACE", f"spaces/{department}")
        for department in DEPARTMENTS
    }
    return Settings(
        whatsapp=whatsapp,
        line=line,
        hub_api_url=os.getenv("HUB_API_URL", "https://chat.googleapis.com/v1"),
        hub_api_token=os.getenv("HUB_API_TOKEN"),
        hub_spaces=hub_spaces,
        hub_poll_interval_seconds=float(os.getenv("HUB_POLL_INTERVAL_SECONDS", "5")),
        gemini_api_key=os.getenv("GEMINI_API_KEY"),
        gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.0-flash"),
        gemini_temperature=float(os.getenv("GEMINI_TEMPERATURE", "0.1")),
        gemini_timeout_seconds=float(os.getenv("GEMINI_TIMEOUT_SECONDS", "15")),
        default_department=default_department,
        max_clarification_attempts=int(os.getenv("MAX_CLARIFICATION_ATTEMPTS", "3")),
        hub_language=os.getenv("HUB_LANGUAGE", "en").lower(),
        translation_cache_max_size=int(os.getenv("TRANSLATION_CACHE_MAX_SIZE", "1000")),
        translation_cache_ttl_minutes=int(
            os.getenv("TRANSLATION_CACHE_TTL_MINUTES", "60")
        ),
        translation_confidence_threshold=float(
            os.getenv("TRANSLATION_CONFIDENCE_THRESHOLD", "0.8")
        ),
        translation_retry_delay_seconds=float(
            os.getenv("TRANSLATION_RETRY_DELAY_SECONDS", "1")
        ),
        info_gathering_enabled=_env_bool("INFO_GATHERING_ENABLED", True),
        urgent_keywords=_env_list("URGENT_KEYWORDS", DEFAULT_URGENT_KEYWORDS),
        conversation_ttl_hours=int(os.getenv("CONVERSATION_TTL_HOURS", "24")),
        escalation_timeout_minutes=int(os.getenv("ESCALATION_TIMEOUT_MINUTES", "10")),
        sweep_interval_seconds=float(os.getenv("SWEEP_INTERVAL_SECONDS", "3600")),
    )


def reset_settings_cache() -> None:
    """Clear cached settings; useful in tests when env vars change."""

    get_settings.cache_clear()
