"""Language detection, translation and the translation cache."""

from .cache import TranslationCache
from .detector import LanguageDetector, detect_by_patterns
from .service import TranslationResult, TranslationService, format_bilingual

__all__ = [
    "LanguageDetector",
    "TranslationCache",
    "TranslationResult",
    "TranslationService",
    "detect_by_patterns",
    "format_bilingual",
]
