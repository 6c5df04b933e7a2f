"""Relay and access logging.

Two loggers are configured, each writing to a midnight-rotated file under
``LOG_DIR``:

- ``messenger_hub`` (``relay.log``): every module logs through
  ``logging.getLogger(__name__)`` below this name.
- ``uvicorn.access`` (``access.log``): one JSON line per HTTP request,
  written by the middleware installed with :func:`init_logging`.

Webhook payloads carry phone numbers, LINE user ids, access tokens and
signatures; :func:`_scrub` masks all of them before anything reaches disk.

Environment variables: LOG_DIR, LOG_LEVEL, LOG_JSON, LOG_REQUEST_BODIES,
LOG_RETENTION_DAYS, LOG_ROTATE_UTC.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import os
import re
import time
from logging.handlers import TimedRotatingFileHandler
from typing import Any, cast
from uuid import uuid4

from fastapi import FastAPI, Request

APP_LOGGER_NAME = "messenger_hub"
ACCESS_LOGGER_NAME = "uvicorn.access"
PLAIN_FORMAT = "[%(asctime)s] %(levelname)s in %(name)s: %(message)s"
UNLOGGED_PATHS = frozenset({"/api/health", "/api/metrics"})

# Header and payload keys whose values are replaced outright.
SECRET_KEYS = frozenset(
    {
        "authorization",
        "cookie",
        "set-cookie",
        "password",
        "token",
        "access_token",
        "x-hub-signature-256",
        "x-line-signature",
    }
)
# Payload keys holding customer identifiers; the last four characters survive.
IDENTIFIER_KEYS = frozenset({"from", "wa_id", "userid", "user_id", "to", "identifier"})

_PHONE_NUMBER = re.compile(r"\+?\d[\d\s\-()]{6,}\d")


def _flag(name: str) -> bool:
    return os.getenv(name, "false").lower() == "true"


@dataclasses.dataclass(frozen=True)
class LogConfig:
    log_dir: str
    level: int
    json: bool
    retention_days: int
    rotate_utc: bool
    request_bodies: bool

    @classmethod
    def from_env(cls) -> LogConfig:
        level_name = os.getenv("LOG_LEVEL", "INFO").upper()
        return cls(
            log_dir=os.getenv("LOG_DIR", "logs"),
            level=getattr(logging, level_name, logging.INFO),
            json=_flag("LOG_JSON"),
            retention_days=int(os.getenv("LOG_RETENTION_DAYS", "7")),
            rotate_utc=_flag("LOG_ROTATE_UTC"),
            request_bodies=_flag("LOG_REQUEST_BODIES"),
        )

    def path(self, filename: str) -> str:
        return os.path.join(self.log_dir, filename)


class JsonFormatter(logging.Formatter):
    """One JSON object per record, non-ASCII text kept readable."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def mask_identifier(identifier: object) -> str:
    """Keep only the last four characters of a customer identifier."""

    value = str(identifier or "")
    if len(value) <= 4:
        return "***"
    return f"***{value[-4:]}"


def _scrub(data: object) -> object:
    """Return ``data`` with secrets, identifiers and phone numbers masked."""

    if isinstance(data, dict):
        clean: dict[Any, object] = {}
        for key, value in data.items():
            lowered = str(key).lower()
            if lowered in SECRET_KEYS:
                clean[key] = "***"
            elif lowered in IDENTIFIER_KEYS and isinstance(value, (str, int)):
                clean[key] = mask_identifier(value)
            else:
                clean[key] = _scrub(value)
        return clean
    if isinstance(data, list):
        return [_scrub(item) for item in data]
    if isinstance(data, str):
        return _PHONE_NUMBER.sub(lambda match: mask_identifier(match.group(0)), data)
    return data


def _rotating_handler(
    config: LogConfig, filename: str, formatter: logging.Formatter
) -> TimedRotatingFileHandler:
    handler = TimedRotatingFileHandler(
        config.path(filename),
        when="midnight",
        backupCount=config.retention_days,
        utc=config.rotate_utc,
        encoding="utf-8",
    )
    handler.setFormatter(formatter)
    return handler


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded
    return request.client.host if request.client else None


async def _buffered_body(request: Request) -> object | None:
    """Read the body for logging and replay it to the route handler."""

    raw = await request.body()

    async def replay() -> dict:  # pragma: no cover - internal
        return {"type": "http.request", "body": raw, "more_body": False}

    request._receive = replay  # type: ignore[attr-defined]
    if not raw:
        return None
    try:
        return _scrub(json.loads(raw))
    except ValueError:
        return _scrub(raw.decode("utf-8", errors="replace"))


def _install_access_logging(app: FastAPI) -> None:
    """Log one scrubbed JSON line per request and echo ``X-Request-Id``.

    Health and metrics requests are not logged.
    """

    log_bodies = LogConfig.from_env().request_bodies
    access_logger = logging.getLogger(ACCESS_LOGGER_NAME)

    @app.middleware("http")
    async def access_log(request: Request, call_next):
        if request.url.path in UNLOGGED_PATHS:
            return await call_next(request)

        request_id = request.headers.get("X-Request-Id") or uuid4().hex
        request.state.request_id = request_id
        started = time.perf_counter()
        body = await _buffered_body(request) if log_bodies else None

        response = await call_next(request)

        entry: dict[str, Any] = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "latency_ms": round((time.perf_counter() - started) * 1000, 2),
            "client_ip": _client_ip(request),
            "headers": _scrub(dict(request.headers)),
        }
        if body is not None:
            entry["body"] = body
        response.headers["X-Request-Id"] = request_id
        access_logger.info(json.dumps(entry, default=str, ensure_ascii=False))
        return response


def init_logging(app: FastAPI | None = None) -> None:
    """Attach rotating file handlers and, with ``app``, the access middleware."""

    config = LogConfig.from_env()
    os.makedirs(config.log_dir, exist_ok=True)
    formatter = JsonFormatter() if config.json else logging.Formatter(PLAIN_FORMAT)

    relay_logger = logging.getLogger(APP_LOGGER_NAME)
    if not relay_logger.handlers:
        relay_logger.addHandler(_rotating_handler(config, "relay.log", formatter))
    relay_logger.setLevel(config.level)

    access_logger = logging.getLogger(ACCESS_LOGGER_NAME)
    access_logger.handlers.clear()
    access_logger.addHandler(_rotating_handler(config, "access.log", formatter))
    access_logger.setLevel(config.level)

    if app is not None:
        cast(Any, app).logger = relay_logger
        _install_access_logging(app)
