"""Maps raw pipeline failures to user-facing error categories.

Every heuristic that looks at error text lives here, so the rules can be
tightened (or replaced by structured error codes) in one place.
"""

import asyncio
import logging
import socket
from typing import Any

import httpx

from ..errors import (
    GarmentImageUnavailable,
    GenerationTimeout,
    InsufficientCreditsError,
    MissingCredentialsError,
)
from ..models import ErrorCategory, ProcessingResult
from .gemini_client import ModelResponse

logger = logging.getLogger(__name__)


MESSAGES: dict[str, dict[ErrorCategory, str]] = {
    "en": {
        ErrorCategory.MISSING_CREDENTIALS: "Try-on is not set up for this boutique yet. Please ask the staff for help.",
        ErrorCategory.INVALID_CREDENTIALS: "The boutique's try-on access could not be verified. Please ask the staff for help.",
        ErrorCategory.RATE_LIMITED: "The fitting room is very busy right now. Please wait a moment and try again.",
        ErrorCategory.SAFETY_REFUSAL: "We couldn't create this look from your photo. Please try a different photo.",
        ErrorCategory.UNRECOGNIZABLE_SUBJECT: "We couldn't find you in the photo. Try a well-lit photo showing your upper body.",
        ErrorCategory.GARMENT_FETCH_FAILED: "We couldn't load the garment image. Please try again in a moment.",
        ErrorCategory.TIMEOUT: "This is taking longer than expected. Please try again.",
        ErrorCategory.NETWORK_ERROR: "Connection problem. Check your internet connection and try again.",
        ErrorCategory.EMPTY_RESULT: "The magic mirror came back empty. Please try again.",
        ErrorCategory.INSUFFICIENT_CREDITS: "This boutique has run out of try-ons for now. Please ask the staff for help.",
        ErrorCategory.UNKNOWN: "The magic mirror is a bit cloudy right now. Please try again.",
    },
    "tr": {
        ErrorCategory.MISSING_CREDENTIALS: "Bu butik için sanal deneme henüz ayarlanmamış. Lütfen personelden yardım isteyin.",
        ErrorCategory.INVALID_CREDENTIALS: "Butiğin sanal deneme erişimi doğrulanamadı. Lütfen personelden yardım isteyin.",
        ErrorCategory.RATE_LIMITED: "Deneme kabini şu anda çok yoğun. Lütfen biraz bekleyip tekrar deneyin.",
        ErrorCategory.SAFETY_REFUSAL: "Bu fotoğraftan görünüm oluşturamadık. Lütfen farklı bir fotoğraf deneyin.",
        ErrorCategory.UNRECOGNIZABLE_SUBJECT: "Fotoğrafta sizi bulamadık. Üst bedeninizin göründüğü aydınlık bir fotoğraf deneyin.",
        ErrorCategory.GARMENT_FETCH_FAILED: "Ürün görseli yüklenemedi. Lütfen birazdan tekrar deneyin.",
        ErrorCategory.TIMEOUT: "İşlem beklenenden uzun sürdü. Lütfen tekrar deneyin.",
        ErrorCategory.NETWORK_ERROR: "Bağlantı sorunu. İnternet bağlantınızı kontrol edip tekrar deneyin.",
        ErrorCategory.EMPTY_RESULT: "Sihirli ayna boş döndü. Lütfen tekrar deneyin.",
        ErrorCategory.INSUFFICIENT_CREDITS: "Bu butiğin deneme hakkı şimdilik bitti. Lütfen personelden yardım isteyin.",
        ErrorCategory.UNKNOWN: "Sihirli ayna şu anda biraz bulanık. Lütfen tekrar deneyin.",
    },
}

DEFAULT_LOCALE = "en"

# Finish reasons that mean the output was withheld by a content filter
SAFETY_FINISH_REASONS = {
    "SAFETY",
    "PROHIBITED_CONTENT",
    "BLOCKLIST",
    "SPII",
    "IMAGE_SAFETY",
    "IMAGE_PROHIBITED_CONTENT",
}

SAFETY_MARKERS = (
    "safety",
    "policy",
    "policies",
    "blocked",
    "prohibited",
    "inappropriate",
    "harmful",
)

SUBJECT_MARKERS = (
    "no person",
    "no people",
    "no human",
    "no one in",
    "find a person",
    "find anyone",
    "identify a person",
    "identify the person",
    "detect a person",
    "detect the person",
    "person is not visible",
    "not clearly visible",
)

INVALID_KEY_MARKERS = (
    "api key not valid",
    "api_key_invalid",
    "invalid api key",
    "permission denied",
    "permission_denied",
    "unauthenticated",
)

RATE_LIMIT_MARKERS = (
    "resource_exhausted",
    "resource exhausted",
    "quota",
    "rate limit",
    "too many requests",
)

NETWORK_MARKERS = (
    "failed to fetch",
    "fetch failed",
    "network",
    "connection refused",
    "connection reset",
    "name or service not known",
)


def _contains(text: str, markers: tuple[str, ...]) -> bool:
    return any(marker in text for marker in markers)


class ResultClassifier:
    """Total mapping from failures to `ErrorCategory` plus localized messages."""

    def __init__(self, locale: str = DEFAULT_LOCALE):
        self.locale = locale if locale in MESSAGES else DEFAULT_LOCALE

    def message_for(self, category: ErrorCategory) -> str:
        return MESSAGES[self.locale].get(category) or MESSAGES[DEFAULT_LOCALE][category]

    def classify(self, failure: Any) -> ErrorCategory:
        """Classify an exception, an image-less model response or its text.

        Never raises; anything unrecognized is UNKNOWN.
        """
        try:
            if failure is None:
                return ErrorCategory.EMPTY_RESULT
            if isinstance(failure, ModelResponse):
                return self._classify_response(failure)
            if isinstance(failure, str):
                return self._classify_text(failure)
            if isinstance(failure, BaseException):
                return self._classify_error(failure)
        except Exception:
            logger.exception("Classifier failed on %r", type(failure).__name__)
        return ErrorCategory.UNKNOWN

    def to_result(self, failure: Any) -> ProcessingResult:
        category = self.classify(failure)
        return ProcessingResult.failed(category, self.message_for(category))

    def _classify_response(self, response: ModelResponse) -> ErrorCategory:
        if response.block_reason and response.block_reason != "BLOCKED_REASON_UNSPECIFIED":
            return ErrorCategory.SAFETY_REFUSAL
        if response.finish_reason in SAFETY_FINISH_REASONS:
            return ErrorCategory.SAFETY_REFUSAL
        return self._classify_text(response.text)

    def _classify_text(self, text: str) -> ErrorCategory:
        lowered = (text or "").strip().lower()
        if not lowered:
            return ErrorCategory.EMPTY_RESULT
        if _contains(lowered, SAFETY_MARKERS):
            return ErrorCategory.SAFETY_REFUSAL
        if _contains(lowered, SUBJECT_MARKERS):
            return ErrorCategory.UNRECOGNIZABLE_SUBJECT
        return ErrorCategory.UNKNOWN

    def _status_code(self, error: BaseException) -> int | None:
        if isinstance(error, httpx.HTTPStatusError):
            return error.response.status_code
        for attr in ("code", "status_code"):
            value = getattr(error, attr, None)
            if isinstance(value, int):
                return value
        return None

    def _classify_error(self, error: BaseException) -> ErrorCategory:
        if isinstance(error, MissingCredentialsError):
            return ErrorCategory.MISSING_CREDENTIALS
        if isinstance(error, InsufficientCreditsError):
            return ErrorCategory.INSUFFICIENT_CREDITS
        if isinstance(error, GarmentImageUnavailable):
            return ErrorCategory.GARMENT_FETCH_FAILED
        if isinstance(error, (GenerationTimeout, asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)):
            return ErrorCategory.TIMEOUT

        status = self._status_code(error)
        status_name = str(getattr(error, "status", "") or "").lower()
        text = f"{status_name} {error}".lower()

        if status in (401, 403) or _contains(text, INVALID_KEY_MARKERS):
            return ErrorCategory.INVALID_CREDENTIALS
        if status == 429 or _contains(text, RATE_LIMIT_MARKERS):
            return ErrorCategory.RATE_LIMITED
        if isinstance(error, (httpx.TransportError, ConnectionError, socket.gaierror)):
            return ErrorCategory.NETWORK_ERROR
        if _contains(text, SAFETY_MARKERS):
            return ErrorCategory.SAFETY_REFUSAL
        if _contains(text, NETWORK_MARKERS):
            return ErrorCategory.NETWORK_ERROR
        return ErrorCategory.UNKNOWN
