"""Pydantic schemas for the relay HTTP surface."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class InboundMessageResult(BaseModel):
    forwarded: bool
    auto_reply_text: str | None = None
    thread_id: str | None = None
    department: str | None = None
    conversation_id: str | None = None
    reason: str | None = None
    error: str | None = None


class WebhookResponse(BaseModel):
    channel: str
    processed_messages: int
    results: list[InboundMessageResult] = Field(default_factory=list)


class ReplyRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=5000)
    sender_name: str | None = Field(default=None, max_length=120)


class ReplyResponse(BaseModel):
    delivered: bool
    channel: str | None = None
    conversation_id: str | None = None
    message_id: str | None = None
    error: str | None = None


class HubUser(BaseModel):
    displayName: str | None = None
    type: str = "HUMAN"


class HubThread(BaseModel):
    name: str


class HubEventMessage(BaseModel):
    name: str | None = None
    text: str | None = None
    argumentText: str | None = None
    thread: HubThread | None = None
    sender: HubUser | None = None


class HubEvent(BaseModel):
    """Subset of a Google Chat style interaction event."""

    type: str
    message: HubEventMessage | None = None
    user: HubUser | None = None


class HubEventResponse(BaseModel):
    text: str | None = None


class PortalMessage(BaseModel):
    id: str
    text: str
    direction: str
    time: str
    timestamp: str
    sender_name: str
    files: list[Any] = Field(default_factory=list)


class PortalContext(BaseModel):
    conversation_id: str
    channel: str
    customer: str
    department: str | None = None
    thread_id: str
    escalated: bool
    messages: list[PortalMessage] = Field(default_factory=list)


class EscalationRequest(BaseModel):
    channel: str | None = None


class EscalationResponse(BaseModel):
    identifier: str
    escalated_at: str
    expires_at: str | None = None
    thread_id: str | None = None
