"""Hub-facing routes: reply events, the reply portal and escalations."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Body, Depends, HTTPException, Request

from ..conversations import schemas
from ..conversations.service import RelayService, ReplyResult
from ..errors import NOT_FOUND_MESSAGE, ErrorKind
from ..rate_limit import limiter
from .deps import get_relay

logger = logging.getLogger(__name__)

router = APIRouter(tags=["hub"])

_STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.VALIDATION: 400,
    ErrorKind.PERMANENT: 502,
    ErrorKind.TRANSIENT: 503,
}


def _raise_for(result: ReplyResult) -> None:
    status_code = _STATUS_BY_KIND.get(result.error_kind or ErrorKind.TRANSIENT, 502)
    detail = result.message if result.error_kind is ErrorKind.NOT_FOUND else result.error
    raise HTTPException(status_code=status_code, detail=detail or "Delivery failed")


@router.post("/api/hub/events", response_model=schemas.HubEventResponse)
def hub_event(
    event: schemas.HubEvent, relay: RelayService = Depends(get_relay)
) -> schemas.HubEventResponse:
    """Relay a team member's thread reply back to the customer."""

    if event.type != "MESSAGE" or event.message is None:
        return schemas.HubEventResponse()
    message = event.message
    sender = message.sender or event.user
    if sender is not None and sender.type.upper() == "BOT":
        return schemas.HubEventResponse()
    if message.thread is None:
        return schemas.HubEventResponse()
    text = (message.argumentText or message.text or "").strip()
    result = relay.handle_reply(
        message.thread.name, text, sender_name=sender.displayName if sender else None
    )
    if result.delivered:
        return schemas.HubEventResponse()
    if result.error_kind is ErrorKind.NOT_FOUND:
        return schemas.HubEventResponse(text=f"⚠️ {NOT_FOUND_MESSAGE}")
    logger.warning("Reply from Hub not delivered: %s", result.error)
    return schemas.HubEventResponse(text="⚠️ The reply could not be delivered to the customer.")


@router.get("/api/portal/{conversation_id}", response_model=schemas.PortalContext)
def portal_context(
    conversation_id: str, relay: RelayService = Depends(get_relay)
) -> schemas.PortalContext:
    context = relay.portal_context(conversation_id)
    if context is None:
        raise HTTPException(status_code=404, detail=NOT_FOUND_MESSAGE)
    return schemas.PortalContext(**context)


@router.post("/api/portal/{conversation_id}/reply", response_model=schemas.ReplyResponse)
@limiter.limit("30/minute")
def portal_reply(
    request: Request,
    conversation_id: str,
    payload: schemas.ReplyRequest,
    relay: RelayService = Depends(get_relay),
) -> schemas.ReplyResponse:
    """Send a reply typed into the web portal instead of the Hub thread."""

    result = relay.portal_reply(conversation_id, payload.text, payload.sender_name)
    if not result.delivered:
        _raise_for(result)
    return schemas.ReplyResponse(
        delivered=True,
        channel=result.channel,
        conversation_id=result.conversation_id,
        message_id=result.message_id,
    )


@router.post("/api/escalations/{identifier}", response_model=schemas.EscalationResponse)
def escalate(
    identifier: str,
    payload: schemas.EscalationRequest | None = Body(default=None),
    relay: RelayService = Depends(get_relay),
) -> schemas.EscalationResponse:
    record = relay.escalate(identifier, payload.channel if payload else None)
    if record is None:
        raise HTTPException(status_code=400, detail="identifier is required")
    return schemas.EscalationResponse(**record)


@router.delete("/api/escalations/{identifier}")
def clear_escalation(
    identifier: str, relay: RelayService = Depends(get_relay)
) -> dict[str, bool]:
    if not relay.clear_escalation(identifier):
        raise HTTPException(status_code=404, detail="Identifier is not escalated")
    return {"cleared": True}
