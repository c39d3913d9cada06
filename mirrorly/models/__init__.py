"""Data models for the Mirrorly try-on backend."""

from .garment import Garment
from .profile import MerchantProfile
from .history import HistoryItem
from .result import ErrorCategory, ProcessingResult, TryOnRequest, resolve_api_key

__all__ = [
    "Garment",
    "MerchantProfile",
    "HistoryItem",
    "ErrorCategory",
    "ProcessingResult",
    "TryOnRequest",
    "resolve_api_key",
]
