"""Credit-gated try-on session state machine."""

import asyncio
import logging
import time
from collections.abc import Callable, Mapping
from enum import Enum

from ..config import AppConfig
from ..errors import InvalidTransition
from ..models import ErrorCategory, Garment, ProcessingResult, TryOnRequest, resolve_api_key
from ..services.history import HistoryRecorder
from ..services.ledger import CreditLedger
from ..services.stores import ProfileStore
from .deeplink import DeepLinkResolver, parse_garment_id
from .tryon_pipeline import TryOnPipeline

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    PHOTO_CAPTURED = "photo_captured"
    PROCESSING = "processing"
    RESULT = "result"


class TryOnSession:
    """One shopper's try-on flow.

    IDLE -> PHOTO_CAPTURED -> PROCESSING -> RESULT, plus:
    - PROCESSING -> IDLE via `cancel` (after a grace period)
    - RESULT -> PHOTO_CAPTURED via `retry` (same photo)
    - RESULT -> IDLE via `retake` (keep garment) or `try_another` (clear it)

    Every attempt gets a token; an attempt whose token is no longer current
    (cancelled) cannot touch the ledger, the history or the state.
    """

    def __init__(
        self,
        config: AppConfig,
        pipeline: TryOnPipeline,
        ledger: CreditLedger,
        history: HistoryRecorder,
        profiles: ProfileStore | None = None,
        resolver: DeepLinkResolver | None = None,
        api_key: str | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.pipeline = pipeline
        self.ledger = ledger
        self.history = history
        self.profiles = profiles or ledger.profile_store
        self.resolver = resolver
        self.api_key = api_key  # explicit key, beats profile and environment
        self._clock = clock

        self.state = SessionState.IDLE
        self.garment: Garment | None = None
        self.deep_link_id: str | None = None
        self.photo: bytes | str | None = None
        self.result: ProcessingResult | None = None

        self._attempt = 0
        self._processing_started: float | None = None
        self._task: asyncio.Task | None = None
        self._committing: int | None = None  # attempt past the point of no return

    # Garment selection -----------------------------------------------------

    def _require(self, operation: str, *states: SessionState):
        if self.state not in states:
            raise InvalidTransition(operation, self.state.value)

    def select_garment(self, garment: Garment):
        self._require("select a garment", SessionState.IDLE)
        self.garment = garment

    async def open_deep_link(self, link: str | Mapping[str, str]) -> Garment | None:
        """Route a scanned QR link. Unknown ids leave the session on the landing state."""
        self._require("open a deep link", SessionState.IDLE)
        if self.resolver is None:
            raise ValueError("No deep link resolver configured")

        garment = await self.resolver.resolve(link)
        if garment is None:
            self.garment = None
            self.deep_link_id = None
            return None

        self.garment = garment
        self.deep_link_id = parse_garment_id(link)
        return garment

    # Processing ------------------------------------------------------------

    def submit_photo(self, photo: bytes | str) -> asyncio.Task | None:
        """Accept a shopper photo and start processing.

        The switch to PROCESSING happens before this returns; the pipeline
        itself starts on the next event loop tick. Submissions while already
        processing are ignored (returns None).
        """
        if self.state == SessionState.PROCESSING:
            logger.info("Photo ignored: session is already processing")
            return None
        self._require("submit a photo", SessionState.IDLE)
        if self.garment is None:
            raise InvalidTransition("submit a photo without a garment", self.state.value)

        self.photo = photo
        self.state = SessionState.PHOTO_CAPTURED
        return self._start_processing()

    def _start_processing(self) -> asyncio.Task:
        loop = asyncio.get_running_loop()
        self._attempt += 1
        self.result = None
        self.state = SessionState.PROCESSING
        self._processing_started = self._clock()
        self._task = loop.create_task(self._process(self._attempt, self.photo, self.garment))
        return self._task

    def _is_current(self, attempt: int) -> bool:
        return attempt == self._attempt and self.state == SessionState.PROCESSING

    def _finish(self, attempt: int, result: ProcessingResult) -> bool:
        if not self._is_current(attempt):
            logger.info("Discarding outcome of stale attempt %d", attempt)
            return False
        self.result = result
        self.state = SessionState.RESULT
        self._processing_started = None
        self._committing = None
        return True

    def _fail(self, category: ErrorCategory) -> ProcessingResult:
        return ProcessingResult.failed(category, self.pipeline.classifier.message_for(category))

    async def _resolve_api_key(self) -> str | None:
        profile = await self.profiles.get_profile()
        return resolve_api_key(
            self.api_key,
            profile.gemini_api_key if profile else None,
            self.config.gemini_api_key,
        )

    def _record_history(self, garment: Garment, result: ProcessingResult):
        try:
            self.history.append(garment, result.image_url)
        except Exception as e:
            # The shopper still gets their image; only the log entry is lost
            logger.error("Failed to save try-on to history: %s", e)

    async def _process(self, attempt: int, photo: bytes | str, garment: Garment) -> ProcessingResult:
        try:
            # 1. credit gate
            if not await self.ledger.can_serve():
                logger.info("No credits left, skipping generation")
                result = self._fail(ErrorCategory.INSUFFICIENT_CREDITS)
                self._finish(attempt, result)
                return result

            # 2-3. images + generation (the pipeline never raises)
            api_key = await self._resolve_api_key()
            result = await self.pipeline.run(
                TryOnRequest(user_photo=photo, garment=garment, api_key=api_key)
            )

            if not self._is_current(attempt):
                logger.info("Attempt %d was cancelled, ignoring its result", attempt)
                return result

            # 4. success: charge once, then log. Cancel is closed from here on.
            if result.success:
                self._committing = attempt
                await self.ledger.consume(1)
                self._record_history(garment, result)

        except Exception as e:
            logger.error("Try-on session step failed: %s: %s", type(e).__name__, e)
            result = self.pipeline.classifier.to_result(e)

        # 5. settle
        self._finish(attempt, result)
        return result

    async def wait(self) -> ProcessingResult | None:
        """Wait for the in-flight attempt, if any, and return the session result."""
        if self._task is not None:
            await self._task
        return self.result

    # Cancel / retry --------------------------------------------------------

    @property
    def can_cancel(self) -> bool:
        """The cancel affordance only appears after the grace period."""
        if self.state != SessionState.PROCESSING or self._processing_started is None:
            return False
        if self._committing == self._attempt:
            return False
        elapsed = self._clock() - self._processing_started
        return elapsed >= self.config.session.cancel_grace_seconds

    def cancel(self) -> bool:
        """Abandon the in-flight attempt. The remote call keeps running; its result is ignored."""
        if not self.can_cancel:
            return False
        self._attempt += 1
        self.state = SessionState.IDLE
        self.photo = None
        self._processing_started = None
        self._task = None
        logger.info("Try-on cancelled by user")
        return True

    def retry(self) -> asyncio.Task:
        """Run again with the same photo."""
        self._require("retry", SessionState.RESULT)
        if self.photo is None:
            raise InvalidTransition("retry without a photo", self.state.value)
        self.state = SessionState.PHOTO_CAPTURED
        return self._start_processing()

    def retake(self):
        """Back to photo capture for the same garment."""
        self._require("retake", SessionState.RESULT)
        self.photo = None
        self.result = None
        self.state = SessionState.IDLE

    def try_another(self):
        """Back to the start, forgetting the garment and any deep link."""
        self._require("try another", SessionState.RESULT)
        self.photo = None
        self.result = None
        self.garment = None
        self.deep_link_id = None
        self.state = SessionState.IDLE
