"""Extract a customer's name and company from a free-text reply."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass

from ..backends import TextGenerationBackend
from ..errors import BackendError, RelayError

logger = logging.getLogger(__name__)

_NAME_INTRO = re.compile(
    r"(?:(?i:\b(?:i['’]?m|i am|my name is|this is)\b|name\s*:)|ผม|ฉัน|ดิฉัน|ชื่อ)\s*"
    r"([A-Za-z\u0e00-\u0e7f][\w\u0e00-\u0e7f'.-]*(?:\s+[A-Z][\w'.-]*)?)"
)
_COMPANY_INTRO = re.compile(
    r"(?:(?i:\b(?:from|at|with|work for|representing)\b|company\s*:)|บริษัท)\s*"
    r"([^,.!?\n]+)"
)
_COMPANY_SUFFIX = re.compile(
    r"([A-Z0-9][\w&'.-]*(?:\s+[A-Z0-9][\w&'.-]*)*\s+"
    r"(?i:corp(?:oration)?|ltd|limited|inc|co\.|company|group|hotel|resort)\.?)"
    r"(?![\w])"
)
_CAPITALIZED_WORDS = re.compile(r"^[A-Z][a-z'-]+(?:\s+[A-Z][a-z'-]+){0,2}$")
_JSON_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)

_NOT_COMPANY_STARTS = {"my", "the", "your", "a", "an", "this", "it", "our", "you"}

_NOT_NAMES = {
    "hello", "hi", "hey", "thanks", "thank", "yes", "no", "ok", "okay",
    "please", "sorry", "good", "we", "i", "here", "the", "a", "from",
    "interested", "looking", "just", "not",
}  # fmt: skip


@dataclass
class ParsedInfo:
    name: str | None = None
    business_name: str | None = None
    method: str = "regex"

    @property
    def complete(self) -> bool:
        return bool(self.name and self.business_name)

    @property
    def empty(self) -> bool:
        return not (self.name or self.business_name)


def _clean(value: str | None) -> str | None:
    if not value:
        return None
    cleaned = re.sub(r"\s+", " ", value).strip(" \t,.;:!?\"'")
    return cleaned or None


def _valid_name(candidate: str | None) -> str | None:
    cleaned = _clean(candidate)
    if not cleaned:
        return None
    first_word = cleaned.split()[0].lower()
    if first_word in _NOT_NAMES or len(cleaned) > 60:
        return None
    return cleaned


def _valid_company(candidate: str | None) -> str | None:
    cleaned = _clean(candidate)
    if not cleaned or cleaned.split()[0].lower() in _NOT_COMPANY_STARTS:
        return None
    return cleaned


def regex_parse(text: str) -> ParsedInfo:
    """Heuristic extraction for replies like "John, Acme Corp" or
    "I'm Sarah from Hilton Bangkok"."""

    info = ParsedInfo(method="regex")
    value = re.sub(r"\s+", " ", text or "").strip()
    if not value:
        return info

    match = _NAME_INTRO.search(value)
    if match:
        info.name = _valid_name(match.group(1))

    match = _COMPANY_INTRO.search(value)
    if match:
        info.business_name = _valid_company(match.group(1))
    else:
        match = _COMPANY_SUFFIX.search(value)
        if match:
            info.business_name = _valid_company(match.group(1))

    segments = [s.strip() for s in re.split(r"[,\n/|]", value) if s.strip()]
    if len(segments) >= 2:
        if info.name is None and _CAPITALIZED_WORDS.match(segments[0]):
            info.name = _valid_name(segments[0])
        if info.business_name is None and len(segments[1].split()) <= 6:
            info.business_name = _valid_company(segments[1])
    elif info.name is None and _CAPITALIZED_WORDS.match(value):
        if info.business_name is None or info.business_name not in value:
            info.name = _valid_name(value)

    if info.name and info.business_name and info.name == info.business_name:
        info.name = None
    return info


class CustomerInfoParser:
    """Ask the backend for structured JSON, falling back to :func:`regex_parse`."""

    def __init__(self, backend: TextGenerationBackend | None = None) -> None:
        self.backend = backend

    def parse(self, text: str) -> ParsedInfo:
        if self.backend is None:
            return regex_parse(text)
        try:
            return self._parse_with_ai(text)
        except RelayError as exc:
            logger.warning("AI info parsing failed, using regex fallback: %s", exc)
            return regex_parse(text)

    def _parse_with_ai(self, text: str) -> ParsedInfo:
        backend = self.backend
        if backend is None:
            raise BackendError("No AI backend configured")
        prompt = (
            "Extract the customer's personal name and company name from their "
            "reply. We asked them for both.\n"
            f'Customer reply: "{text}"\n'
            'Return only JSON: {"name": "... or null", "businessName": "... or null"}\n'
            'Example: "I\'m John from ABC Company" -> '
            '{"name": "John", "businessName": "ABC Company"}'
        )
        reply = backend.generate(prompt, max_output_tokens=150)
        cleaned = _JSON_FENCE.sub("", reply).strip()
        try:
            data = json.loads(cleaned)
        except ValueError as exc:
            raise BackendError("Info parser reply was not JSON") from exc
        if not isinstance(data, dict):
            raise BackendError("Info parser reply was not a JSON object")
        business = data.get("businessName") or data.get("business_name")
        name = data.get("name")
        return ParsedInfo(
            name=_valid_name(name if isinstance(name, str) else None),
            business_name=_valid_company(business if isinstance(business, str) else None),
            method="ai",
        )
