"""Request dependencies shared by the relay routers."""

from __future__ import annotations

from fastapi import HTTPException, Request

from ..conversations.service import RelayService
from ..settings import Settings, get_settings


def get_relay(request: Request) -> RelayService:
    relay = getattr(request.app.state, "relay", None)
    if relay is None:
        raise HTTPException(status_code=503, detail="Relay not initialised")
    return relay


def get_app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()
