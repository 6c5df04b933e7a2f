"""Source-language detection.

Pattern scoring over character sets and stop-words runs first. Only texts
whose best pattern score is not above ``pattern_threshold`` are handed to a
slower detector: the AI backend when one is configured, otherwise the
statistical ``langdetect`` model.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
import threading
from collections import OrderedDict
from dataclasses import dataclass, field

from langdetect import DetectorFactory, LangDetectException, detect_langs

from ..backends import TextGenerationBackend
from ..errors import BackendError

logger = logging.getLogger(__name__)

DetectorFactory.seed = 0

DEFAULT_LANGUAGE = "en"

SUPPORTED_LANGUAGES: dict[str, str] = {
    "en": "English",
    "th": "Thai",
    "zh-cn": "Chinese (Simplified)",
    "zh-tw": "Chinese (Traditional)",
    "es": "Spanish",
    "fr": "French",
    "de": "German",
    "ja": "Japanese",
    "ko": "Korean",
    "vi": "Vietnamese",
    "ms": "Malay",
    "id": "Indonesian",
    "pt": "Portuguese",
    "it": "Italian",
    "ru": "Russian",
    "ar": "Arabic",
    "hi": "Hindi",
}

_ALIASES = {"zh": "zh-cn", "zh-hans": "zh-cn", "zh-hant": "zh-tw", "in": "id"}


def normalize_language(code: str | None) -> str | None:
    if not code:
        return None
    value = code.strip().lower().replace("_", "-")
    value = _ALIASES.get(value, value)
    return value if value in SUPPORTED_LANGUAGES else None


def language_name(code: str) -> str:
    return SUPPORTED_LANGUAGES.get(code, code)


@dataclass(frozen=True)
class LanguagePattern:
    language: str
    charset: re.Pattern[str]
    common_words: frozenset[str]
    # Scripts written without spaces match stop-words as substrings.
    unspaced: bool = False


_PATTERNS: tuple[LanguagePattern, ...] = (
    LanguagePattern(
        "en",
        re.compile(r"[a-z]"),
        frozenset(
            "the and is in to of a that it with for you have this be are "
            "can need my please".split()
        ),
    ),
    LanguagePattern(
        "th",
        re.compile(r"[\u0e00-\u0e7f]"),
        frozenset(
            ["และ", "ใน", "ที่", "เป็น", "ของ", "มี", "นี้", "จะ", "ได้", "แล้ว", "ครับ", "ค่ะ"]
        ),
        unspaced=True,
    ),
    LanguagePattern(
        "zh-cn",
        re.compile(r"[\u4e00-\u9fff]"),
        frozenset(["的", "是", "在", "和", "有", "我", "你", "他", "了", "不", "会", "说"]),
        unspaced=True,
    ),
    LanguagePattern(
        "ja",
        re.compile(r"[\u3040-\u30ff]"),
        frozenset(["です", "ます", "した", "ある", "する", "なる", "いる", "ください"]),
        unspaced=True,
    ),
    LanguagePattern(
        "ko",
        re.compile(r"[\uac00-\ud7af]"),
        frozenset(["이", "가", "을", "를", "에", "에서", "으로", "의", "도", "우리"]),
    ),
    LanguagePattern(
        "es",
        re.compile(r"[a-zñáéíóúü]"),
        frozenset(
            "el la de que y es en un se no por con para hola necesito ayuda "
            "gracias quiero".split()
        ),
    ),
    LanguagePattern(
        "fr",
        re.compile(r"[a-zàâäéèêëïîôöùûüÿç]"),
        frozenset(
            "le de et à un il les est pour dans ce une sur avec pas bonjour "
            "merci je".split()
        ),
    ),
    LanguagePattern(
        "de",
        re.compile(r"[a-zäöüß]"),
        frozenset(
            "der die und den von zu das mit sich des auf für ist nicht ein "
            "eine ich hallo danke".split()
        ),
    ),
    LanguagePattern(
        "vi",
        re.compile(
            r"[a-zàáảãạăắằẳẵặâấầẩẫậèéẻẽẹêếềểễệìíỉĩịòóỏõọôốồổỗộơớờởỡợùúủũụưứừửữựỳýỷỹỵđ]"
        ),
        frozenset("và của trong với để cho từ trên về theo như khi tôi không".split()),
    ),
    LanguagePattern(
        "ar",
        re.compile(r"[\u0600-\u06ff]"),
        frozenset(["في", "من", "إلى", "على", "عن", "مع", "هذا", "هذه", "التي", "كان"]),
    ),
    LanguagePattern(
        "ru",
        re.compile(r"[\u0400-\u04ff]"),
        frozenset("и в не на я что с как это по".split()),
    ),
    LanguagePattern(
        "hi",
        re.compile(r"[\u0900-\u097f]"),
        frozenset(["है", "के", "में", "की", "और", "को", "से", "का"]),
    ),
)

_THAI_RE = re.compile(r"[\u0e00-\u0e7f]")
_WORD_RE = re.compile(r"\w+", re.UNICODE)
_JSON_RE = re.compile(r"\{.*\}", re.DOTALL)


def contains_thai(text: str) -> bool:
    return bool(_THAI_RE.search(text or ""))


@dataclass
class DetectionResult:
    language: str
    confidence: float
    method: str
    alternatives: list[tuple[str, float]] = field(default_factory=list)


def detect_by_patterns(text: str) -> DetectionResult:
    """Score every known language and return the best match.

    Character-set hits count double and stop-word hits 1.5; the total is
    normalized by text length and scaled so dense matches reach 1.0. Equal
    scores resolve to the earlier language in the table, English first.
    """

    cleaned = (text or "").lower().strip()
    if not cleaned:
        return DetectionResult(DEFAULT_LANGUAGE, 0.0, "pattern")
    words = _WORD_RE.findall(cleaned)
    scored: list[tuple[str, float]] = []
    for pattern in _PATTERNS:
        score = 2.0 * len(pattern.charset.findall(cleaned))
        if pattern.unspaced:
            hits = sum(cleaned.count(word) for word in pattern.common_words)
        else:
            hits = sum(1 for word in words if word in pattern.common_words)
        score += 1.5 * hits
        scored.append((pattern.language, score / len(cleaned)))
    ranked = sorted(scored, key=lambda item: item[1], reverse=True)
    best_language, best_score = ranked[0]
    alternatives = [
        (language, min(score * 10, 1.0)) for language, score in ranked[1:4] if score > 0
    ]
    if best_score <= 0:
        return DetectionResult(DEFAULT_LANGUAGE, 0.0, "pattern")
    return DetectionResult(
        best_language, min(best_score * 10, 1.0), "pattern", alternatives
    )


class LanguageDetector:
    """Pattern-first detector with an AI or statistical fallback."""

    def __init__(
        self,
        backend: TextGenerationBackend | None = None,
        *,
        pattern_threshold: float = 0.8,
        max_cache_size: int = 500,
    ) -> None:
        self.backend = backend
        self.pattern_threshold = pattern_threshold
        self.max_cache_size = max_cache_size
        self._cache: OrderedDict[str, DetectionResult] = OrderedDict()
        self._lock = threading.Lock()

    def detect(self, text: str) -> DetectionResult:
        if not text or not text.strip():
            return DetectionResult(DEFAULT_LANGUAGE, 0.5, "default")
        key = hashlib.sha256(text.encode("utf-8")).hexdigest()
        with self._lock:
            cached = self._cache.get(key)
        if cached is not None:
            return cached
        result = detect_by_patterns(text)
        if result.confidence <= self.pattern_threshold:
            result = self._detect_slow(text, result)
        with self._lock:
            if len(self._cache) >= self.max_cache_size:
                self._cache.popitem(last=False)
            self._cache[key] = result
        return result

    def _detect_slow(self, text: str, pattern_result: DetectionResult) -> DetectionResult:
        if self.backend is not None:
            try:
                return self._detect_with_ai(text)
            except BackendError as exc:
                logger.warning("AI language detection failed: %s", exc)
        else:
            statistical = self._detect_with_langdetect(text)
            if statistical is not None:
                return statistical
        return DetectionResult(
            pattern_result.language,
            max(0.3, pattern_result.confidence),
            "pattern",
            pattern_result.alternatives,
        )

    def _detect_with_ai(self, text: str) -> DetectionResult:
        backend = self.backend
        if backend is None:
            raise BackendError("No AI backend configured")
        prompt = (
            "You are a language detection expert. Identify the primary language "
            "of the text below.\n"
            f"Use one of these codes: {', '.join(SUPPORTED_LANGUAGES)}.\n"
            'Respond only with JSON: {"language": "code", "confidence": 0.95}\n\n'
            f"Text:\n{text}"
        )
        reply = backend.generate(prompt, max_output_tokens=100)
        match = _JSON_RE.search(reply)
        if not match:
            raise BackendError("No JSON object in language detection reply")
        try:
            data = json.loads(match.group(0))
        except ValueError as exc:
            raise BackendError("Malformed language detection reply") from exc
        if not isinstance(data, dict):
            raise BackendError("Malformed language detection reply")
        language = normalize_language(str(data.get("language") or ""))
        try:
            confidence = float(data.get("confidence", 0))
        except (TypeError, ValueError) as exc:
            raise BackendError("Language detection reply had no confidence") from exc
        if language is None:
            logger.warning("AI returned unsupported language %r", data.get("language"))
            return DetectionResult(DEFAULT_LANGUAGE, 0.5, "ai")
        return DetectionResult(language, max(0.0, min(1.0, confidence)), "ai")

    def _detect_with_langdetect(self, text: str) -> DetectionResult | None:
        try:
            candidates = detect_langs(text)
        except LangDetectException as exc:
            logger.debug("langdetect could not classify text: %s", exc)
            return None
        ranked = [
            (code, candidate.prob)
            for candidate in candidates
            if (code := normalize_language(candidate.lang))
        ]
        if not ranked:
            return None
        language, probability = ranked[0]
        return DetectionResult(language, float(probability), "langdetect", ranked[1:4])

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    def is_thai(self, text: str) -> bool:
        return contains_thai(text)
