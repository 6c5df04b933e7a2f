from __future__ import annotations

from typing import Any

import pytest
import requests

from messenger_hub.backends import GeminiBackend, create_backend
from messenger_hub.errors import BackendError, ErrorKind
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


def _reply(text: str) -> dict[str, Any]:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def test_generate_posts_prompt_and_reads_text():
    session = _FakeSession([_FakeResponse(_reply(" sales \n"))])
    backend = GeminiBackend("key-123", model="gemini-test", session=session)

    assert backend.generate("Classify", max_output_tokens=20) == "sales"

    request = session.requests[0]
    assert request["method"] == "POST"
    assert request["url"].endswith("/models/gemini-test:generateContent")
    assert request["params"] == {"key": "key-123"}
    assert request["json"]["generationConfig"]["maxOutputTokens"] == 20
    assert request["json"]["contents"][0]["parts"][0]["text"] == "Classify"


@pytest.mark.parametrize(
    "status, kind", [(500, ErrorKind.TRANSIENT), (429, ErrorKind.TRANSIENT), (403, ErrorKind.PERMANENT)]
)
def test_http_errors_are_classified(status, kind):
    backend = GeminiBackend("k", session=_FakeSession([_FakeResponse({}, status)]))

    with pytest.raises(BackendError) as excinfo:
        backend.generate("hi")
    assert excinfo.value.kind is kind
    assert excinfo.value.status_code == status


def test_network_errors_are_transient():
    session = _FakeSession([requests.ConnectionError("reset")])
    backend = GeminiBackend("k", session=session)

    with pytest.raises(BackendError) as excinfo:
        backend.generate("hi")
    assert excinfo.value.retryable


def test_empty_and_malformed_bodies():
    backend = GeminiBackend(
        "k",
        session=_FakeSession([_FakeResponse({"candidates": []}), _FakeResponse(ValueError("x"))]),
    )

    with pytest.raises(BackendError):
        backend.generate("hi")
    with pytest.raises(BackendError) as excinfo:
        backend.generate("hi")
    assert excinfo.value.kind is ErrorKind.PERMANENT


@pytest.mark.parametrize(
    "body",
    [
        [],
        "oops",
        {"candidates": ["x"]},
        {"candidates": "x"},
        {"candidates": [{"content": "text"}]},
        {"candidates": [{"content": {"parts": "text"}}]},
    ],
)
def test_unexpected_shapes_raise_backend_error(body):
    backend = GeminiBackend("k", session=_FakeSession([_FakeResponse(body)]))

    with pytest.raises(BackendError) as excinfo:
        backend.generate("hi")
    assert excinfo.value.kind is ErrorKind.PERMANENT


def test_non_dict_parts_are_skipped():
    body = {"candidates": [{"content": {"parts": ["junk", {"text": "sales"}]}}]}
    backend = GeminiBackend("k", session=_FakeSession([_FakeResponse(body)]))

    assert backend.generate("hi") == "sales"


def test_create_backend_depends_on_api_key(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    reset_settings_cache()
    assert create_backend(get_settings()) is None

    monkeypatch.setenv("GEMINI_API_KEY", "abc")
    monkeypatch.setenv("GEMINI_MODEL", "gemini-pro")
    reset_settings_cache()
    backend = create_backend(get_settings())
    assert isinstance(backend, GeminiBackend)
    assert backend.describe()["model"] == "gemini-pro"
    reset_settings_cache()


def test_requires_api_key():
    with pytest.raises(ValueError):
        GeminiBackend("")
