"""Try-on request and result models."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, model_validator

from .garment import Garment


class ErrorCategory(str, Enum):
    """Closed set of failure kinds a shopper can be shown."""

    MISSING_CREDENTIALS = "missing_credentials"
    INVALID_CREDENTIALS = "invalid_credentials"
    RATE_LIMITED = "rate_limited"
    SAFETY_REFUSAL = "safety_refusal"
    UNRECOGNIZABLE_SUBJECT = "unrecognizable_subject"
    GARMENT_FETCH_FAILED = "garment_fetch_failed"
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"
    EMPTY_RESULT = "empty_result"
    INSUFFICIENT_CREDITS = "insufficient_credits"
    UNKNOWN = "unknown"

    @property
    def retryable(self) -> bool:
        """Whether retrying with the same inputs can help without a config change."""
        return self not in (
            ErrorCategory.MISSING_CREDENTIALS,
            ErrorCategory.INVALID_CREDENTIALS,
        )


def resolve_api_key(*candidates: str | None) -> str | None:
    """Return the first non-blank key, in priority order.

    Callers pass the explicit/profile-scoped key first and the
    environment-configured key last.
    """
    for key in candidates:
        if key and key.strip():
            return key.strip()
    return None


class TryOnRequest(BaseModel):
    """One submitted photo for one garment. Not persisted."""

    user_photo: bytes | str  # raw bytes or data-URI
    garment: Garment
    api_key: str | None = None


class ProcessingResult(BaseModel):
    """Terminal outcome of one try-on attempt."""

    model_config = ConfigDict(frozen=True)

    success: bool
    image_url: str | None = None  # data-URI, success only
    message: str | None = None  # localized, failure only
    category: ErrorCategory | None = None  # failure only

    @model_validator(mode="after")
    def _check_shape(self) -> "ProcessingResult":
        if self.success:
            if not self.image_url:
                raise ValueError("successful result requires image_url")
            if self.message is not None or self.category is not None:
                raise ValueError("successful result cannot carry a failure message")
        else:
            if self.image_url:
                raise ValueError("failed result cannot carry an image")
            if not self.message or self.category is None:
                raise ValueError("failed result requires message and category")
        return self

    @classmethod
    def ok(cls, image_url: str) -> "ProcessingResult":
        return cls(success=True, image_url=image_url)

    @classmethod
    def failed(cls, category: ErrorCategory, message: str) -> "ProcessingResult":
        return cls(success=False, category=category, message=message)

    @property
    def retryable(self) -> bool:
        return not self.success and self.category is not None and self.category.retryable
