"""Text-generation backends used for classification, parsing and translation."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import requests

from .errors import BackendError, ErrorKind, classify_status
from .settings import Settings

logger = logging.getLogger(__name__)


class TextGenerationBackend(Protocol):
    """Single request/response call returning free-form text."""

    def generate(self, prompt: str, *, max_output_tokens: int = 256) -> str:
        """Return the model's reply to ``prompt`` or raise ``BackendError``."""


class GeminiBackend:
    """Call the Gemini ``generateContent`` REST endpoint."""

    def __init__(
        self,
        api_key: str,
        *,
        model: str = "gemini-2.0-flash",
        temperature: float = 0.1,
        timeout: float = 15.0,
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        session: requests.Session | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("Gemini backend requires an API key")
        self.model = model
        self.temperature = temperature
        self.timeout = timeout
        self._api_key = api_key
        self._url = f"{base_url.rstrip('/')}/models/{model}:generateContent"
        self.session = session or requests.Session()

    def generate(self, prompt: str, *, max_output_tokens: int = 256) -> str:
        body = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self.temperature,
                "maxOutputTokens": max_output_tokens,
            },
        }
        try:
            response = self.session.request(
                "POST",
                self._url,
                params={"key": self._api_key},
                json=body,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise BackendError(f"Gemini request failed: {exc}") from exc
        if response.status_code >= 400:
            raise BackendError(
                f"Gemini returned HTTP {response.status_code}",
                kind=classify_status(response.status_code),
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise BackendError(
                "Gemini returned a non-JSON body", kind=ErrorKind.PERMANENT
            ) from exc
        if not isinstance(payload, dict):
            raise BackendError(
                "Gemini returned an unexpected body", kind=ErrorKind.PERMANENT
            )
        text = _extract_text(payload)
        if not text:
            raise BackendError("Gemini response contained no text")
        return text

    def describe(self) -> dict[str, Any]:
        return {"provider": "gemini", "model": self.model, "temperature": self.temperature}


def _extract_text(payload: dict[str, Any]) -> str:
    """Join the first candidate's text parts; odd shapes raise ``BackendError``."""

    candidates = payload.get("candidates") or []
    if not isinstance(candidates, list):
        raise BackendError("Gemini candidates is not a list", kind=ErrorKind.PERMANENT)
    if not candidates:
        return ""
    candidate = candidates[0]
    content = candidate.get("content") if isinstance(candidate, dict) else None
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        raise BackendError("Gemini candidate has no content parts", kind=ErrorKind.PERMANENT)
    return "".join(
        str(part.get("text", "")) for part in parts if isinstance(part, dict)
    ).strip()


def create_backend(settings: Settings) -> TextGenerationBackend | None:
    """Build the configured backend, or ``None`` when AI is disabled."""

    if not settings.gemini_api_key:
        logger.info("GEMINI_API_KEY not set; AI features use heuristic fallbacks")
        return None
    return GeminiBackend(
        settings.gemini_api_key,
        model=settings.gemini_model,
        temperature=settings.gemini_temperature,
        timeout=settings.gemini_timeout_seconds,
    )
