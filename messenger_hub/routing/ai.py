"""Backend-assisted department classification, used when keywords are inconclusive."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from ..backends import TextGenerationBackend
from ..errors import RelayError

logger = logging.getLogger(__name__)

TRUST_THRESHOLD = 0.6
EXACT_CONFIDENCE = 0.9
PARTIAL_CONFIDENCE = 0.7
UNPARSEABLE_CONFIDENCE = 0.2

GREETING_PROMPT = (
    "Hello! Welcome to BMAsia. How can I assist you today? Are you looking for "
    "technical support, a price quote, or help with music and design?"
)
FALLBACK_CLARIFICATION = (
    "Hello! I'd be happy to help. Are you looking for technical support, "
    "a price quote, or help with music and design?"
)
REPEAT_CLARIFICATION = (
    "Sorry, I'm still not sure who should help you. Could you tell me if you "
    "need technical support, sales information, or design services?"
)

_DEPARTMENT_HINTS = {
    "technical": "support, help, issues, problems, bugs, troubleshooting, errors, fixes",
    "sales": "quotes, pricing, purchases, orders, billing, contracts, buying, costs",
    "design": "music, soundtracks, branding, logos, creative work, visual content",
}


@dataclass(frozen=True)
class AIClassification:
    department: str
    confidence: float
    source: str
    raw_response: str | None = None
    error: str | None = None

    @property
    def trusted(self) -> bool:
        return self.source == "ai" and self.confidence >= TRUST_THRESHOLD


def parse_department(
    reply: str, departments: Sequence[str], default: str
) -> tuple[str, float]:
    """Read a department label out of a free-form reply.

    An exact label scores 0.9, a label somewhere inside the reply 0.7 and
    anything else falls back to ``default`` at 0.2.
    """

    cleaned = reply.strip().strip("\"'`.!").lower()
    if cleaned in departments:
        return cleaned, EXACT_CONFIDENCE
    for department in departments:
        if department in cleaned:
            return department, PARTIAL_CONFIDENCE
    return default, UNPARSEABLE_CONFIDENCE


class AIClassifier:
    """Ask the backend for one department label and parse it defensively."""

    def __init__(
        self,
        backend: TextGenerationBackend | None,
        *,
        departments: Sequence[str] = ("technical", "sales", "design"),
        default_department: str = "sales",
    ) -> None:
        self.backend = backend
        self.departments = tuple(departments)
        self.default_department = default_department

    def classify(
        self, text: str, context: Sequence[str] | None = None
    ) -> AIClassification:
        if not isinstance(text, str) or not text.strip():
            return AIClassification(self.default_department, 0.0, "default")
        if self.backend is None:
            return AIClassification(
                self.default_department, 0.0, "error", error="backend not configured"
            )
        try:
            reply = self.backend.generate(
                self._build_prompt(text, context), max_output_tokens=20
            )
        except RelayError as exc:
            logger.warning("AI classification failed: %s", exc)
            return AIClassification(self.default_department, 0.0, "error", error=str(exc))
        except Exception as exc:
            logger.exception("Unexpected AI classification failure")
            return AIClassification(self.default_department, 0.0, "error", error=str(exc))
        department, confidence = parse_department(
            reply or "", self.departments, self.default_department
        )
        logger.info("AI classified message as %s (%.1f)", department, confidence)
        return AIClassification(department, confidence, "ai", raw_response=reply)

    def _build_prompt(self, text: str, context: Sequence[str] | None) -> str:
        lines = [
            "You are a customer service routing system. Classify this customer "
            "message into exactly one department.",
            "",
        ]
        if context:
            lines.append("Earlier messages from the same customer:")
            lines.extend(f"- {item.strip()}" for item in context if item.strip())
            lines.append("")
        lines.append(f'Message: "{text.strip()}"')
        lines.append("")
        lines.append("Departments:")
        for department in self.departments:
            hint = _DEPARTMENT_HINTS.get(department, department)
            lines.append(f"- {department}: for {hint}")
        labels = ", ".join(f'"{d}"' for d in self.departments)
        lines.append("")
        lines.append(f"Respond with ONLY ONE WORD, one of: {labels}")
        return "\n".join(lines)

    def generate_clarification(self, text: str, attempts: int = 0) -> str:
        """Ask the backend for a natural clarification question."""

        fallback = FALLBACK_CLARIFICATION if attempts == 0 else REPEAT_CLARIFICATION
        if self.backend is None:
            return fallback
        attempt_note = (
            f"This is attempt {attempts + 1} to understand the customer.\n"
            if attempts
            else ""
        )
        prompt = (
            f'A customer sent this message: "{text.strip()}"\n{attempt_note}'
            "Their intent is unclear. Write one or two friendly sentences asking "
            "whether they need technical support, sales or quotes, or music and "
            "design services. Do not mention that you are an assistant or a bot."
        )
        try:
            reply = self.backend.generate(prompt, max_output_tokens=120)
        except RelayError as exc:
            logger.warning("Clarification generation failed: %s", exc)
            return fallback
        cleaned = (reply or "").strip().strip('"')
        return cleaned or fallback

    def describe(self) -> dict[str, Any]:
        info: dict[str, Any] = {
            "enabled": self.backend is not None,
            "departments": list(self.departments),
            "trust_threshold": TRUST_THRESHOLD,
        }
        describe = getattr(self.backend, "describe", None)
        if callable(describe):
            info.update(describe())
        return info
