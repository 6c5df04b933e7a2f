"""Department routing: keyword lexicons, AI fallback and clarification flow."""

from .ai import AIClassification, AIClassifier
from .keywords import NO_MATCH, KeywordClassifier, KeywordMatch, NoMatch, is_greeting
from .router import DepartmentRouter, RoutingDecision, RoutingState

__all__ = [
    "AIClassification",
    "AIClassifier",
    "DepartmentRouter",
    "KeywordClassifier",
    "KeywordMatch",
    "NO_MATCH",
    "NoMatch",
    "RoutingDecision",
    "RoutingState",
    "is_greeting",
]
