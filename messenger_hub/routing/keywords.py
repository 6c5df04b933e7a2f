"""Deterministic keyword classifier over per-department lexicons."""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

DEFAULT_LEXICONS: dict[str, tuple[str, ...]] = {
    "technical": (
        "support", "help", "issue", "problem", "technical", "error", "bug",
        "not working", "broken", "fix", "troubleshoot", "crash", "debug",
        "maintenance", "update", "installation", "setup", "configure",
    ),
    "sales": (
        "quote", "quotation", "price", "cost", "purchase", "buy", "order",
        "pricing", "payment", "invoice", "billing", "sale", "discount",
        "contract", "deal", "offer", "budget", "estimate",
    ),
    "design": (
        "design", "music", "soundtrack", "playlist", "branding", "logo",
        "visual", "audio", "creative", "artwork", "graphics", "brand",
        "style", "theme", "composition", "mixing", "mastering",
    ),
}  # fmt: skip

GREETINGS = (
    "hello", "hi", "hey", "good morning", "good afternoon", "good evening",
    "greetings", "howdy", "hola", "bonjour", "sawadee", "สวัสดี", "你好",
    "こんにちは",
)  # fmt: skip

_GREETING_FILLER = re.compile(r"[\s!.,?~\-:;)(]+|ครับ|ค่ะ|คะ|there|team|all")


@dataclass(frozen=True)
class KeywordMatch:
    department: str
    confidence: float
    matched_keywords: list[str] = field(default_factory=list)
    scores: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class NoMatch:
    """Explicit "no decision" result: all scores zero or a tie at the top."""

    scores: dict[str, int] = field(default_factory=dict)
    tied: tuple[str, ...] = ()

    def __bool__(self) -> bool:
        return False


NO_MATCH = NoMatch()


class KeywordClassifier:
    """Score text against each lexicon; the strictly highest score wins.

    Scores count case-insensitive substring occurrences of every keyword, so
    "support" inside "supporting" counts. Ties at the top score and texts with
    no hits return a :class:`NoMatch` rather than guessing.
    """

    def __init__(self, lexicons: Mapping[str, Sequence[str]] | None = None) -> None:
        source = lexicons if lexicons is not None else DEFAULT_LEXICONS
        self._lexicons: dict[str, list[str]] = {
            department: [kw.lower() for kw in keywords]
            for department, keywords in source.items()
        }
        self._lock = threading.Lock()

    @property
    def departments(self) -> list[str]:
        return list(self._lexicons)

    def classify(self, text: object) -> KeywordMatch | NoMatch:
        lowered = text.lower() if isinstance(text, str) else ""
        if not lowered.strip():
            return NO_MATCH
        with self._lock:
            lexicons = {d: list(k) for d, k in self._lexicons.items()}
        scores: dict[str, int] = {}
        matched: dict[str, list[str]] = {}
        for department, keywords in lexicons.items():
            hits = [(kw, lowered.count(kw)) for kw in keywords]
            matched[department] = [kw for kw, count in hits if count]
            scores[department] = sum(count for _, count in hits)
        best = max(scores.values(), default=0)
        if best == 0:
            return NoMatch(scores=scores)
        leaders = tuple(d for d, score in scores.items() if score == best)
        if len(leaders) > 1:
            logger.debug("Keyword tie between %s at score %s", leaders, best)
            return NoMatch(scores=scores, tied=leaders)
        department = leaders[0]
        return KeywordMatch(
            department=department,
            confidence=1.0,
            matched_keywords=matched[department],
            scores=scores,
        )

    def add_keyword(self, department: str, keyword: str) -> None:
        department = department.lower()
        keyword = keyword.strip().lower()
        if not keyword:
            raise ValueError("keyword must not be empty")
        with self._lock:
            if department not in self._lexicons:
                raise KeyError(f"Unknown department '{department}'")
            if keyword not in self._lexicons[department]:
                self._lexicons[department].append(keyword)

    def keywords_for(self, department: str) -> list[str]:
        with self._lock:
            return list(self._lexicons.get(department.lower(), []))


def is_greeting(text: object) -> bool:
    """True when the text is nothing but a greeting ("Hi there!", "สวัสดีครับ")."""

    if not isinstance(text, str):
        return False
    lowered = text.strip().lower()
    if not lowered:
        return False
    for greeting in sorted(GREETINGS, key=len, reverse=True):
        if lowered.startswith(greeting):
            rest = lowered[len(greeting):]
            if greeting.isascii() and rest[:1].isalpha():
                continue
            return not _GREETING_FILLER.sub("", rest)
    return False
