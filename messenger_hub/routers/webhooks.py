"""Webhook ingestion routes for the customer channels."""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import PlainTextResponse

from ..channels import get_adapter, supported_channels
from ..conversations import schemas
from ..conversations.models import SenderInfo
from ..conversations.service import RelayService
from ..settings import Settings
from .deps import get_app_settings, get_relay

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])


def _adapter(channel: str, settings: Settings):
    try:
        adapter_cls = get_adapter(channel)
    except KeyError as exc:
        raise HTTPException(
            status_code=404,
            detail=f"Unknown channel '{channel}'; expected one of {supported_channels()}",
        ) from exc
    return adapter_cls(getattr(settings, adapter_cls.channel_name, None))


@router.get("/api/webhooks/{channel}", response_class=PlainTextResponse)
def verify_webhook(
    channel: str,
    request: Request,
    settings: Settings = Depends(get_app_settings),
) -> str:
    """Answer the channel's subscription handshake."""

    adapter = _adapter(channel.lower(), settings)
    challenge = adapter.verify_subscription(request.query_params)
    if challenge is None:
        raise HTTPException(status_code=403, detail="Verification failed")
    return challenge


@router.post("/api/webhooks/{channel}", response_model=schemas.WebhookResponse)
async def ingest_webhook(
    channel: str,
    request: Request,
    relay: RelayService = Depends(get_relay),
    settings: Settings = Depends(get_app_settings),
) -> schemas.WebhookResponse:
    channel_name = channel.lower()
    adapter = _adapter(channel_name, settings)
    body_bytes = await request.body()
    if not adapter.verify_signature(body_bytes, request.headers):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature"
        )
    try:
        payload = json.loads(body_bytes.decode("utf-8")) if body_bytes else {}
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise HTTPException(
            status_code=400, detail=f"Invalid JSON payload: {exc}"
        ) from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Payload must be a JSON object")

    results = []
    for message in adapter.parse_incoming(payload):
        if not message.text.strip():
            logger.info("Skipping %s message without text", message.message_type)
            continue
        result = relay.handle_inbound(
            channel_name,
            message.sender_id,
            message.text,
            SenderInfo(display_name=message.sender_name, raw_identifier=message.sender_id),
        )
        results.append(
            schemas.InboundMessageResult(
                forwarded=result.forwarded,
                auto_reply_text=result.auto_reply_text,
                thread_id=result.thread_id,
                department=result.department,
                conversation_id=result.conversation_id,
                reason=result.reason,
                error=result.error,
            )
        )
    return schemas.WebhookResponse(
        channel=channel_name, processed_messages=len(results), results=results
    )
