"""Relay orchestration between customer channels and the Hub."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo

from ..app_logging import mask_identifier
from ..backends import TextGenerationBackend, create_backend
from ..channels.senders import LineSender, Sender, WhatsAppSender
from ..customers import CustomerInfoGatherer, CustomerInfoParser
from ..errors import (
    CONVERSATION_NOT_FOUND,
    EMPTY_TEXT,
    MISSING_IDENTIFIER,
    NOT_FOUND_MESSAGE,
    UNKNOWN_CHANNEL,
    ErrorKind,
    RelayError,
    classify_status,
)
from ..hub.client import HubClient, create_hub_client
from ..routing import AIClassifier, DepartmentRouter, KeywordClassifier, RoutingDecision
from ..settings import Settings
from ..translation import (
    LanguageDetector,
    TranslationCache,
    TranslationService,
    format_bilingual,
)
from .escalation import EscalationStore
from .history import (
    DISPLAY_TIMEZONE,
    INCOMING,
    OUTGOING,
    MessageHistoryStore,
    format_for_display,
)
from .models import CHANNELS, Conversation, SenderInfo, normalize_identifier
from .store import ConversationStore

logger = logging.getLogger(__name__)

INTERNAL_ERROR = "internal_error"
SUPPORT_SENDER = "BMAsia Support"

CHANNEL_ICONS = {"whatsapp": "\U0001f4ac", "line": "\U0001f4f1"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class InboundResult:
    forwarded: bool
    auto_reply_text: str | None = None
    thread_id: str | None = None
    department: str | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    conversation_id: str | None = None
    reason: str | None = None
    translated: bool = False


@dataclass
class ReplyResult:
    delivered: bool
    channel: str | None = None
    identifier: str | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    conversation_id: str | None = None
    message_id: str | None = None
    message: str | None = None


@dataclass
class _Outbound:
    hub_text: str
    routing_text: str
    language: str
    translated: bool = False


class RelayService:
    """Carry customer messages into Hub threads and team replies back out.

    Inbound flow: escalation check, info-gathering gate, translation into the
    Hub language, department routing for customers without a live thread,
    then a post into the department space. Reply flow: thread lookup,
    translation into the customer's language, delivery on the original
    channel, transcript append. Neither flow raises; failures come back as
    result objects carrying an :class:`ErrorKind`.
    """

    def __init__(
        self,
        *,
        hub: HubClient,
        senders: Mapping[str, Sender],
        translator: TranslationService,
        router: DepartmentRouter,
        gatherer: CustomerInfoGatherer,
        conversations: ConversationStore,
        escalations: EscalationStore,
        history: MessageHistoryStore,
        spaces: Mapping[str, str],
        hub_language: str = "en",
        display_timezone: str = DISPLAY_TIMEZONE,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.hub = hub
        self.senders = dict(senders)
        self.translator = translator
        self.router = router
        self.gatherer = gatherer
        self.conversations = conversations
        self.escalations = escalations
        self.history = history
        self.spaces = dict(spaces)
        self.hub_language = hub_language
        self.display_timezone = display_timezone
        self._clock = clock

    # ------------------------------------------------------------------
    # Inbound: customer -> Hub

    def handle_inbound(
        self,
        channel: str,
        identifier: str,
        text: str,
        sender_info: SenderInfo | None = None,
    ) -> InboundResult:
        channel = (channel or "").lower()
        if channel not in CHANNELS or channel not in self.senders:
            return InboundResult(False, error=UNKNOWN_CHANNEL, error_kind=ErrorKind.VALIDATION)
        key = normalize_identifier(identifier)
        if not key:
            return InboundResult(
                False, error=MISSING_IDENTIFIER, error_kind=ErrorKind.VALIDATION
            )
        if not isinstance(text, str) or not text.strip():
            return InboundResult(False, error=EMPTY_TEXT, error_kind=ErrorKind.VALIDATION)

        try:
            return self._handle_inbound(channel, key, text, sender_info or SenderInfo())
        except Exception:  # pragma: no cover - defensive
            logger.exception("Inbound message from %s failed", mask_identifier(key))
            return InboundResult(False, error=INTERNAL_ERROR, error_kind=ErrorKind.TRANSIENT)

    def _handle_inbound(
        self, channel: str, key: str, text: str, sender_info: SenderInfo
    ) -> InboundResult:
        sender_info.raw_identifier = sender_info.raw_identifier or key
        self.history.append(
            key,
            text,
            INCOMING,
            channel,
            metadata={"sender_name": sender_info.display_name},
        )

        escalated = self.escalations.is_escalated(key)
        if escalated:
            self.gatherer.bypass(key, channel)
            texts = self.gatherer.release(key) + [text]
        else:
            admission = self.gatherer.admit(key, channel, text)
            if not admission.forward:
                if admission.auto_reply_text:
                    self._send_automated(channel, key, admission.auto_reply_text)
                return InboundResult(
                    False,
                    auto_reply_text=admission.auto_reply_text,
                    reason=admission.reason,
                )
            texts = admission.held_messages + [text]
            sender_info.customer_name = admission.name or sender_info.customer_name
            sender_info.business_name = (
                admission.business_name or sender_info.business_name
            )

        result = self._forward(channel, key, texts, sender_info, escalated)
        if not result.forwarded and (len(texts) > 1 or result.error):
            self.gatherer.hold(key, texts)
        return result

    def _forward(
        self,
        channel: str,
        key: str,
        texts: list[str],
        sender_info: SenderInfo,
        escalated: bool,
    ) -> InboundResult:
        outbound = self._prepare("\n".join(texts))
        text = texts[-1]
        sender_info.original_text = sender_info.original_text or text
        sender_info.extra["language"] = outbound.language

        conversation = self.conversations.get_by_user(channel, key)
        if conversation is not None:
            return self._post_follow_up(conversation, outbound, sender_info)

        decision = self.router.route(key, outbound.routing_text)
        if not decision.routed:
            if escalated:
                decision = self.router.assign(key, reason="escalated")
            else:
                self._send_automated(channel, key, decision.clarification or "")
                return InboundResult(
                    False,
                    auto_reply_text=decision.clarification,
                    reason=decision.reason or "clarification",
                    translated=outbound.translated,
                )
        return self._post_new_thread(channel, key, outbound, sender_info, decision)

    def _prepare(self, text: str) -> _Outbound:
        detection = self.translator.detect(text)
        if detection.language == self.hub_language:
            return _Outbound(text, text, detection.language)
        result = self.translator.translate(
            text, self.hub_language, source_lang=detection.language
        )
        if result.error or result.translated_text == text:
            return _Outbound(text, text, detection.language)
        return _Outbound(
            format_bilingual(text, result.translated_text),
            result.translated_text,
            detection.language,
            translated=True,
        )

    def _post_new_thread(
        self,
        channel: str,
        key: str,
        outbound: _Outbound,
        sender_info: SenderInfo,
        decision: RoutingDecision,
    ) -> InboundResult:
        department = decision.department or self.router.default_department
        space_id = self.spaces.get(department)
        if not space_id:
            logger.error("No Hub space configured for %s", department)
            return InboundResult(
                False,
                department=department,
                error=f"no space for {department}",
                error_kind=ErrorKind.PERMANENT,
            )
        text = self._format_new_thread(channel, key, outbound.hub_text, sender_info, decision)
        try:
            posted = self.hub.post_message(space_id, text)
        except RelayError as exc:
            logger.error("Posting to %s failed: %s", space_id, exc)
            return InboundResult(
                False, department=department, error=str(exc), error_kind=exc.kind
            )
        conversation_id = self.conversations.put(
            channel,
            key,
            posted.thread_id,
            posted.space_id,
            sender_info,
            department=department,
        )
        logger.info(
            "Opened thread for %s in %s (%s, %.2f)",
            mask_identifier(key),
            department,
            decision.source,
            decision.confidence,
        )
        return InboundResult(
            True,
            thread_id=posted.thread_id,
            department=department,
            conversation_id=conversation_id,
            reason=decision.reason or "routed",
            translated=outbound.translated,
        )

    def _post_follow_up(
        self, conversation: Conversation, outbound: _Outbound, sender_info: SenderInfo
    ) -> InboundResult:
        if sender_info.customer_name:
            conversation.sender_info.customer_name = sender_info.customer_name
        if sender_info.business_name:
            conversation.sender_info.business_name = sender_info.business_name
        conversation.sender_info.extra.update(sender_info.extra)
        text = f"*{conversation.sender_info.label}:*\n{outbound.hub_text}"
        try:
            self.hub.post_message(conversation.space_id, text, conversation.thread_id)
        except RelayError as exc:
            logger.error("Follow-up to %s failed: %s", conversation.thread_id, exc)
            return InboundResult(
                False,
                thread_id=conversation.thread_id,
                department=conversation.department,
                error=str(exc),
                error_kind=exc.kind,
                conversation_id=conversation.id,
            )
        self.conversations.touch(conversation.id)
        return InboundResult(
            True,
            thread_id=conversation.thread_id,
            department=conversation.department,
            conversation_id=conversation.id,
            reason="follow_up",
            translated=outbound.translated,
        )

    def _format_new_thread(
        self,
        channel: str,
        key: str,
        text: str,
        sender_info: SenderInfo,
        decision: RoutingDecision,
    ) -> str:
        icon = CHANNEL_ICONS.get(channel, "\U0001f4dd")
        id_label = "Phone" if channel == "whatsapp" else "User ID"
        lines = [f"{icon} *{channel.upper()} MESSAGE*", ""]
        lines.append(f"*From:* {sender_info.label}")
        lines.append(f"*{id_label}:* {sender_info.raw_identifier or key}")
        lines.append(
            f"*Department:* {(decision.department or '').title()} "
            f"({decision.source}, {decision.confidence:.2f})"
        )
        lines += ["", "*Message:*", text, "", "---"]
        lines.append("\U0001f4ac *To reply:* Just reply to this message in the thread")
        return "\n".join(lines)

    def _send_automated(self, channel: str, key: str, text: str) -> None:
        if not text:
            return
        result = self.senders[channel].send(key, text)
        if not result.success:
            logger.warning(
                "Automated reply to %s failed: %s", mask_identifier(key), result.error
            )
            return
        self.history.append(
            key,
            text,
            OUTGOING,
            channel,
            metadata={"sender_name": SUPPORT_SENDER, "automated": True},
        )

    # ------------------------------------------------------------------
    # Reply: Hub -> customer

    def handle_reply(
        self, thread_id: str, reply_text: str, sender_name: str | None = None
    ) -> ReplyResult:
        if not thread_id:
            return ReplyResult(
                False, error=MISSING_IDENTIFIER, error_kind=ErrorKind.VALIDATION
            )
        if not isinstance(reply_text, str) or not reply_text.strip():
            return ReplyResult(False, error=EMPTY_TEXT, error_kind=ErrorKind.VALIDATION)
        conversation = self.conversations.get_by_thread(thread_id)
        if conversation is None:
            logger.info("Reply for unknown or expired thread %s", thread_id)
            return ReplyResult(
                False,
                error=CONVERSATION_NOT_FOUND,
                error_kind=ErrorKind.NOT_FOUND,
                message=NOT_FOUND_MESSAGE,
            )
        try:
            return self._deliver_reply(conversation, reply_text.strip(), sender_name)
        except Exception:  # pragma: no cover - defensive
            logger.exception("Reply delivery for %s failed", conversation.id)
            return ReplyResult(
                False,
                channel=conversation.channel,
                identifier=conversation.user_id,
                error=INTERNAL_ERROR,
                error_kind=ErrorKind.TRANSIENT,
                conversation_id=conversation.id,
            )

    def _deliver_reply(
        self, conversation: Conversation, reply_text: str, sender_name: str | None
    ) -> ReplyResult:
        sender = self.senders.get(conversation.channel)
        if sender is None:
            return ReplyResult(
                False,
                channel=conversation.channel,
                identifier=conversation.user_id,
                error=UNKNOWN_CHANNEL,
                error_kind=ErrorKind.VALIDATION,
                conversation_id=conversation.id,
            )
        language = conversation.sender_info.extra.get("language") or self.hub_language
        body = reply_text
        if language != self.hub_language:
            translated = self.translator.translate(
                reply_text, language, source_lang=self.hub_language
            )
            if not translated.error:
                body = format_bilingual(translated.translated_text, reply_text)

        text = self.format_reply(conversation.department, body, sender_name)
        delivery = sender.send(conversation.user_id, text)
        if not delivery.success:
            kind = (
                ErrorKind.VALIDATION
                if delivery.status_code is None and delivery.attempts == 0
                else classify_status(delivery.status_code)
            )
            return ReplyResult(
                False,
                channel=conversation.channel,
                identifier=conversation.user_id,
                error=delivery.error,
                error_kind=kind,
                conversation_id=conversation.id,
            )

        self.conversations.touch(conversation.id)
        self.escalations.extend(conversation.user_id)
        self.history.append(
            conversation.user_id,
            reply_text,
            OUTGOING,
            conversation.channel,
            metadata={"sender_name": sender_name or SUPPORT_SENDER},
        )
        logger.info(
            "Delivered reply to %s on %s", mask_identifier(conversation.user_id), conversation.channel
        )
        return ReplyResult(
            True,
            channel=conversation.channel,
            identifier=conversation.user_id,
            conversation_id=conversation.id,
            message_id=delivery.message_id,
        )

    def format_reply(
        self, department: str | None, text: str, sender_name: str | None = None
    ) -> str:
        moment = self._clock().astimezone(ZoneInfo(self.display_timezone))
        team = (department or "Support").title()
        return (
            f"\U0001f4ac Reply from {team} Team\n\n{text}\n\n---\n"
            f"\U0001f464 {sender_name or 'Support Team'}\n"
            f"⏰ {moment:%d %b %Y %H:%M}"
        )

    # ------------------------------------------------------------------
    # Reply portal

    def portal_context(self, conversation_id: str) -> dict[str, Any] | None:
        conversation = self.conversations.get(conversation_id)
        if conversation is None:
            return None
        entries = self.history.history(conversation.user_id)
        return {
            "conversation_id": conversation.id,
            "channel": conversation.channel,
            "customer": conversation.sender_info.label,
            "department": conversation.department,
            "thread_id": conversation.thread_id,
            "escalated": self.escalations.is_escalated(conversation.user_id),
            "messages": format_for_display(entries, self.display_timezone),
        }

    def portal_reply(
        self, conversation_id: str, reply_text: str, sender_name: str | None = None
    ) -> ReplyResult:
        conversation = self.conversations.get(conversation_id)
        if conversation is None:
            return ReplyResult(
                False,
                error=CONVERSATION_NOT_FOUND,
                error_kind=ErrorKind.NOT_FOUND,
                message=NOT_FOUND_MESSAGE,
            )
        return self.handle_reply(conversation.thread_id, reply_text, sender_name)

    # ------------------------------------------------------------------
    # Escalation

    def escalate(self, identifier: str, channel: str | None = None) -> dict[str, Any] | None:
        """Hand ``identifier`` to a human; ``None`` for a blank identifier."""

        key = normalize_identifier(identifier)
        if not key:
            return None
        conversation = None
        for name in [channel] if channel else list(CHANNELS):
            conversation = self.conversations.get_by_user(name, key)
            if conversation is not None:
                break
        transcript = [
            {"text": e.text, "direction": e.direction, "timestamp": e.timestamp.isoformat()}
            for e in self.history.history(key)
        ]
        record = self.escalations.escalate(
            key,
            thread_id=conversation.thread_id if conversation else None,
            customer_name=conversation.sender_info.label if conversation else None,
            external_ref=conversation.id if conversation else None,
            history=transcript,
        )
        self.gatherer.bypass(key, conversation.channel if conversation else channel or "unknown")
        return {
            "identifier": record.identifier,
            "escalated_at": record.escalated_at.isoformat(),
            "expires_at": record.expires_at.isoformat() if record.expires_at else None,
            "thread_id": record.thread_id,
        }

    def clear_escalation(self, identifier: str) -> bool:
        return self.escalations.clear(identifier)

    # ------------------------------------------------------------------
    # Housekeeping

    def sweep(self) -> dict[str, int]:
        """Drop everything whose TTL has passed; returns removals per store."""

        removed = {
            "conversations": self.conversations.clear_expired(),
            "escalations": self.escalations.clear_expired(),
            "customers": self.gatherer.clear_expired(),
            "history": self.history.cleanup(),
            "translations": self.translator.cache.clear_expired(),
            "routing_sessions": self.router.clear_expired(),
        }
        if any(removed.values()):
            logger.info("Sweep removed %s", removed)
        return removed

    def get_stats(self) -> dict[str, Any]:
        conversations = self.conversations.stats()
        return {
            "conversation_count": conversations["total"],
            "by_channel": conversations["by_channel"],
            "cache_hit_ratio": self.translator.cache.hit_ratio,
            "escalated_count": self.escalations.stats()["escalated"],
            "customers": self.gatherer.stats(),
            "history": self.history.stats(),
            "routing": self.router.stats(),
            "translation": self.translator.stats(),
        }


def create_relay_service(
    settings: Settings,
    *,
    hub: HubClient | None = None,
    senders: Mapping[str, Sender] | None = None,
    backend: TextGenerationBackend | None = None,
    clock: Callable[[], datetime] = _utcnow,
) -> RelayService:
    """Wire stores and collaborators from ``settings``."""

    backend = backend if backend is not None else create_backend(settings)
    cache = TranslationCache(
        max_size=settings.translation_cache_max_size,
        ttl=timedelta(minutes=settings.translation_cache_ttl_minutes),
        confidence_threshold=settings.translation_confidence_threshold,
        clock=clock,
    )
    translator = TranslationService(
        backend,
        cache=cache,
        detector=LanguageDetector(backend),
        retry_delay=settings.translation_retry_delay_seconds,
    )
    keywords = KeywordClassifier()
    ai = AIClassifier(
        backend,
        departments=keywords.departments,
        default_department=settings.default_department,
    )
    router = DepartmentRouter(
        keywords,
        ai,
        default_department=settings.default_department,
        max_clarification_attempts=settings.max_clarification_attempts,
        clock=clock,
    )
    gatherer = CustomerInfoGatherer(
        CustomerInfoParser(backend),
        backend=backend,
        urgent_keywords=settings.urgent_keywords,
        enabled=settings.info_gathering_enabled,
        clock=clock,
    )
    timeout = (
        timedelta(minutes=settings.escalation_timeout_minutes)
        if settings.escalation_timeout_minutes > 0
        else None
    )
    if senders is None:
        senders = {
            "whatsapp": WhatsAppSender(settings.whatsapp),
            "line": LineSender(settings.line),
        }
    return RelayService(
        hub=hub or create_hub_client(settings),
        senders=senders,
        translator=translator,
        router=router,
        gatherer=gatherer,
        conversations=ConversationStore(
            ttl=timedelta(hours=settings.conversation_ttl_hours), clock=clock
        ),
        escalations=EscalationStore(timeout=timeout, clock=clock),
        history=MessageHistoryStore(clock=clock),
        spaces=settings.hub_spaces,
        hub_language=settings.hub_language,
        clock=clock,
    )
