"""Translation decision and backend calls."""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from ..backends import TextGenerationBackend
from ..errors import EMPTY_TEXT, RelayError
from ..retry import retry_call
from .cache import TranslationCache
from .detector import DetectionResult, LanguageDetector, language_name, normalize_language

logger = logging.getLogger(__name__)

TRANSLATION_UNAVAILABLE = "translation_unavailable"
TRANSLATION_FAILED = "translation_failed"

_PREFIX_RE = re.compile(r"^\s*translation\s*:\s*", re.IGNORECASE)
_TOKEN_RE = re.compile(r"\w+", re.UNICODE)
_QUOTES = "\"'\u201c\u201d"


@dataclass
class TranslationResult:
    translated_text: str
    detected_lang: str
    confidence: float
    cached: bool = False
    error: str | None = None


def clean_translation_text(text: str) -> str:
    """Strip decoration models like to wrap translations in."""

    cleaned = text.strip()
    cleaned = _PREFIX_RE.sub("", cleaned)
    cleaned = cleaned.replace("**", "")
    if len(cleaned) >= 2 and cleaned[0] in _QUOTES and cleaned[-1] in _QUOTES:
        cleaned = cleaned[1:-1]
    return cleaned.strip()


def _token_similarity(first: str, second: str) -> float:
    left = set(_TOKEN_RE.findall(first.lower()))
    right = set(_TOKEN_RE.findall(second.lower()))
    union = left | right
    if not union:
        return 1.0
    return len(left & right) / len(union)


def estimate_confidence(original: str, translated: str, source_lang: str) -> float:
    """Heuristic quality score for a backend translation.

    Long inputs earn a bonus, very short ones a penalty, and output that is
    almost word-for-word the input from a non-English source is treated as
    untranslated.
    """

    confidence = 0.8
    if len(original) > 50:
        confidence += 0.1
    if len(original) < 10:
        confidence -= 0.2
    if source_lang != "en" and _token_similarity(original, translated) > 0.9:
        confidence -= 0.3
    return round(max(0.1, min(1.0, confidence)), 4)


def format_bilingual(original: str, translated: str) -> str:
    """Render original and translated text for the Hub post."""

    if original.strip() == translated.strip():
        return original
    return f"{original}\n---\n{translated}"


class TranslationService:
    """Detect, decide and translate, consulting the cache first."""

    def __init__(
        self,
        backend: TextGenerationBackend | None,
        *,
        cache: TranslationCache | None = None,
        detector: LanguageDetector | None = None,
        max_attempts: int = 3,
        retry_delay: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.backend = backend
        self.cache = cache or TranslationCache()
        self.detector = detector or LanguageDetector(backend)
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self._sleep = sleep
        self.backend_calls = 0

    def detect(self, text: str) -> DetectionResult:
        return self.detector.detect(text)

    def translate(
        self, text: str, target_lang: str, source_lang: str | None = None
    ) -> TranslationResult:
        if not text or not text.strip():
            return TranslationResult(text or "", "en", 0.0, error=EMPTY_TEXT)
        target = normalize_language(target_lang) or target_lang.lower()
        source = normalize_language(source_lang) if source_lang else None
        if source is None:
            source = self.detector.detect(text).language

        if source == target:
            return TranslationResult(text, source, 1.0)

        entry = self.cache.get(text, source, target)
        if entry is not None:
            logger.debug("Translation cache hit for %s->%s", source, target)
            return TranslationResult(
                entry.translated_text, source, entry.confidence, cached=True
            )

        if self.backend is None:
            return TranslationResult(text, source, 0.0, error=TRANSLATION_UNAVAILABLE)

        prompt = self._build_prompt(text, source, target)
        backend = self.backend

        def _call() -> str:
            self.backend_calls += 1
            return backend.generate(prompt, max_output_tokens=1024)

        try:
            reply = retry_call(
                _call,
                attempts=self.max_attempts,
                base_delay=self.retry_delay,
                sleep=self._sleep,
                description=f"translation {source}->{target}",
            )
        except RelayError as exc:
            logger.warning("Translation %s->%s failed: %s", source, target, exc)
            return TranslationResult(text, source, 0.0, error=TRANSLATION_FAILED)
        except Exception:
            logger.exception("Unexpected translation backend failure")
            return TranslationResult(text, source, 0.0, error=TRANSLATION_FAILED)

        translated = clean_translation_text(reply)
        if not translated:
            return TranslationResult(text, source, 0.0, error=TRANSLATION_FAILED)
        confidence = estimate_confidence(text, translated, source)
        self.cache.set(text, source, target, translated, confidence)
        return TranslationResult(translated, source, confidence)

    def _build_prompt(self, text: str, source: str, target: str) -> str:
        return (
            f"Translate the following {language_name(source)} text to "
            f"{language_name(target)}. Keep names, numbers and formatting. "
            "Reply with the translation only, no quotes or commentary.\n\n"
            f"{text}"
        )

    def stats(self) -> dict[str, Any]:
        data = self.cache.stats()
        data["backend_calls"] = self.backend_calls
        return data
