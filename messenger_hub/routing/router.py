"""Department routing with a per-customer clarification state machine.

Keywords always win when they produce a decision; the AI classifier is only
consulted for texts the lexicons cannot settle. When neither is confident the
router asks the customer a clarification question instead of guessing, and
after ``max_clarification_attempts`` questions it stops asking and routes to
the default department.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from .ai import GREETING_PROMPT, AIClassifier
from .keywords import KeywordClassifier, KeywordMatch, is_greeting

logger = logging.getLogger(__name__)

INITIAL_THRESHOLD = 0.6
CLARIFIED_THRESHOLD = 0.5
CLARIFIED_AI_THRESHOLD = 0.4
FORCED_CONFIDENCE = 0.3
SESSION_TIMEOUT = timedelta(minutes=15)
MAX_CONTEXT_MESSAGES = 5


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RoutingState(str, Enum):
    NEW = "new"
    AWAITING_CLARIFICATION = "awaiting_clarification"
    ROUTED = "routed"


@dataclass(frozen=True)
class RoutingDecision:
    department: str | None
    confidence: float
    source: str
    matched_keywords: list[str] = field(default_factory=list)
    state: RoutingState = RoutingState.ROUTED
    clarification: str | None = None
    follow_up: bool = False
    reason: str | None = None

    @property
    def routed(self) -> bool:
        return self.state is RoutingState.ROUTED and self.department is not None

    def as_dict(self) -> dict[str, Any]:
        return {
            "department": self.department,
            "confidence": self.confidence,
            "source": self.source,
            "matched_keywords": list(self.matched_keywords),
            "state": self.state.value,
            "clarification": self.clarification,
            "follow_up": self.follow_up,
            "reason": self.reason,
        }


@dataclass
class RoutingSession:
    identifier: str
    state: RoutingState = RoutingState.NEW
    attempts: int = 0
    context: list[str] = field(default_factory=list)
    decision: RoutingDecision | None = None
    last_activity: datetime = field(default_factory=_utcnow)


class DepartmentRouter:
    """Combine keyword and AI classification into a routing decision."""

    def __init__(
        self,
        keywords: KeywordClassifier,
        ai: AIClassifier,
        *,
        default_department: str = "sales",
        max_clarification_attempts: int = 3,
        session_timeout: timedelta = SESSION_TIMEOUT,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.keywords = keywords
        self.ai = ai
        self.default_department = default_department
        self.max_clarification_attempts = max_clarification_attempts
        self.session_timeout = session_timeout
        self._clock = clock
        self._sessions: dict[str, RoutingSession] = {}
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Session bookkeeping

    def _load(self, identifier: str) -> RoutingSession:
        now = self._clock()
        session = self._sessions.get(identifier)
        if session is not None and now - session.last_activity > self.session_timeout:
            logger.debug("Routing session expired, starting over")
            del self._sessions[identifier]
            session = None
        if session is None:
            session = RoutingSession(identifier=identifier, last_activity=now)
            self._sessions[identifier] = session
        return session

    def state_of(self, identifier: str) -> RoutingState:
        with self._lock:
            session = self._sessions.get(identifier)
            if session is None:
                return RoutingState.NEW
            if self._clock() - session.last_activity > self.session_timeout:
                del self._sessions[identifier]
                return RoutingState.NEW
            return session.state

    def assign(
        self, identifier: str, department: str | None = None, *, reason: str = "assigned"
    ) -> RoutingDecision:
        """Mark ``identifier`` as routed without classifying anything."""

        decision = RoutingDecision(
            department or self.default_department,
            FORCED_CONFIDENCE,
            "default",
            reason=reason,
        )
        with self._lock:
            session = self._load(identifier)
            session.state = RoutingState.ROUTED
            session.decision = decision
            session.last_activity = self._clock()
        return decision

    def reset(self, identifier: str) -> None:
        with self._lock:
            self._sessions.pop(identifier, None)

    def clear_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [
                key
                for key, session in self._sessions.items()
                if now - session.last_activity > self.session_timeout
            ]
            for key in expired:
                del self._sessions[key]
        return len(expired)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            counts = Counter(s.state.value for s in self._sessions.values())
            return {
                "sessions": len(self._sessions),
                "by_state": {state.value: counts.get(state.value, 0) for state in RoutingState},
            }

    # ------------------------------------------------------------------
    # Routing

    def route(
        self,
        identifier: str,
        text: str,
        prior_state: RoutingState | None = None,
    ) -> RoutingDecision:
        """Decide where ``text`` goes, or which question to ask instead.

        ``prior_state`` overrides the stored session state when the caller
        tracks it; otherwise the router's own session for ``identifier`` is
        used. Classifier calls happen while holding the session lock, so
        callers must keep per-identifier processing sequential.
        """

        with self._lock:
            session = self._load(identifier)
            state = prior_state or session.state
            session.last_activity = self._clock()

            if state is RoutingState.ROUTED:
                return self._follow_up(session)
            if state is RoutingState.AWAITING_CLARIFICATION:
                decision = self._route_clarification(session, text)
            else:
                decision = self._route_new(session, text)

            session.state = decision.state
            if decision.routed:
                session.decision = decision
            else:
                session.context = (session.context + [text])[-MAX_CONTEXT_MESSAGES:]
            return decision

    def _follow_up(self, session: RoutingSession) -> RoutingDecision:
        if session.decision is None:
            decision = RoutingDecision(
                self.default_department, FORCED_CONFIDENCE, "default", reason="no_prior_decision"
            )
            session.state = RoutingState.ROUTED
            session.decision = decision
        return replace(session.decision, follow_up=True)

    def _route_new(self, session: RoutingSession, text: str) -> RoutingDecision:
        match = self.keywords.classify(text)
        if isinstance(match, KeywordMatch) and match.confidence >= INITIAL_THRESHOLD:
            logger.info(
                "Routed to %s by keywords %s", match.department, match.matched_keywords
            )
            return RoutingDecision(
                match.department,
                match.confidence,
                "keyword",
                matched_keywords=list(match.matched_keywords),
            )

        if is_greeting(text):
            session.attempts = 1
            return RoutingDecision(
                None,
                0.0,
                "default",
                state=RoutingState.AWAITING_CLARIFICATION,
                clarification=GREETING_PROMPT,
                reason="greeting",
            )

        result = self.ai.classify(text)
        if result.trusted:
            return RoutingDecision(result.department, result.confidence, "ai")

        session.attempts = 1
        return RoutingDecision(
            None,
            result.confidence,
            result.source,
            state=RoutingState.AWAITING_CLARIFICATION,
            clarification=self.ai.generate_clarification(text, 0),
            reason="low_confidence",
        )

    def _route_clarification(self, session: RoutingSession, text: str) -> RoutingDecision:
        if session.attempts >= self.max_clarification_attempts:
            logger.info(
                "Clarification limit reached after %s attempts, routing to %s",
                session.attempts,
                self.default_department,
            )
            return RoutingDecision(
                self.default_department,
                FORCED_CONFIDENCE,
                "default",
                reason="max_clarification_attempts",
            )

        match = self.keywords.classify(text)
        if isinstance(match, KeywordMatch) and match.confidence >= CLARIFIED_THRESHOLD:
            return RoutingDecision(
                match.department,
                match.confidence,
                "keyword",
                matched_keywords=list(match.matched_keywords),
                reason="clarified",
            )

        result = self.ai.classify(text, context=session.context)
        if result.source == "ai" and result.confidence >= CLARIFIED_AI_THRESHOLD:
            return RoutingDecision(
                result.department, result.confidence, "ai", reason="clarified"
            )

        question = self.ai.generate_clarification(text, session.attempts)
        session.attempts += 1
        return RoutingDecision(
            None,
            result.confidence,
            result.source,
            state=RoutingState.AWAITING_CLARIFICATION,
            clarification=question,
            reason="still_unclear",
        )
