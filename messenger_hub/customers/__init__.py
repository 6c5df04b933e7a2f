"""Customer info gathering: admission gate and reply parsing."""

from .gatherer import Admission, CustomerInfoGatherer, CustomerRecord, CustomerState
from .parser import CustomerInfoParser, ParsedInfo, regex_parse

__all__ = [
    "Admission",
    "CustomerInfoGatherer",
    "CustomerInfoParser",
    "CustomerRecord",
    "CustomerState",
    "ParsedInfo",
    "regex_parse",
]
