"""Try-on request pipeline: photo + garment in, ProcessingResult out."""

import logging
import time

from ..agents.request_builder import TryOnRequestBuilder
from ..config import AppConfig
from ..errors import MissingCredentialsError
from ..models import ProcessingResult, TryOnRequest
from ..services.classifier import ResultClassifier
from ..services.gemini_client import GeminiInvoker
from ..services.image_fetcher import RemoteImageFetcher
from ..utils.images import prepare_image

logger = logging.getLogger(__name__)


class TryOnPipeline:
    """Single-shot pipeline for Gemini virtual try-on.

    Flow:
    1. Prepare the shopper photo (bounded, compressed JPEG)
    2. Fetch the garment image if it is a remote URL, then prepare it
    3. Build the multimodal request
    4. Run the generation call under its deadline
    5. Return the image, or a classified failure

    Credits and history are the session's business, not the pipeline's.
    `run` never raises: every failure becomes a failed ProcessingResult.
    """

    def __init__(
        self,
        config: AppConfig,
        invoker: GeminiInvoker | None = None,
        fetcher: RemoteImageFetcher | None = None,
        builder: TryOnRequestBuilder | None = None,
        classifier: ResultClassifier | None = None,
    ):
        self.config = config
        self.invoker = invoker or GeminiInvoker(config.gemini)
        self.fetcher = fetcher or RemoteImageFetcher(config.fetch)
        self.builder = builder or TryOnRequestBuilder(config.gemini, config.safety)
        self.classifier = classifier or ResultClassifier(config.locale)

    def _prepare(self, source: bytes | str) -> str:
        return prepare_image(
            source,
            max_dimension=self.config.image.max_dimension,
            quality=self.config.image.quality,
        )

    async def prepare_garment_image(self, image_url: str) -> str:
        """Garment image as a prepared data-URI, fetching remote URLs first."""
        if image_url.startswith("data:"):
            return self._prepare(image_url)
        return self._prepare(await self.fetcher.fetch(image_url))

    async def run(self, request: TryOnRequest) -> ProcessingResult:
        """Run the try-on pipeline.

        Args:
            request: Shopper photo, garment and the already-resolved API key

        Returns:
            ProcessingResult with the composite image or a user-safe message
        """
        garment = request.garment
        started = time.monotonic()
        logger.info("Try-on started for garment %s", garment.id)

        try:
            # Don't spend time on images when the call cannot be made
            if not request.api_key:
                raise MissingCredentialsError()

            # Step 1-2: prepare both images
            user_image = self._prepare(request.user_photo)
            garment_image = await self.prepare_garment_image(garment.image_url)

            # Step 3: assemble the request
            model_request = self.builder.build(user_image, garment_image, garment)

            # Step 4: generate
            response = await self.invoker.invoke(model_request, request.api_key)

            # Step 5: extract or explain
            if not response.has_image:
                result = self.classifier.to_result(response)
            else:
                result = ProcessingResult.ok(response.image_data_uri())

        except Exception as e:
            logger.warning("Try-on for garment %s failed: %s: %s", garment.id, type(e).__name__, e)
            result = self.classifier.to_result(e)

        elapsed = time.monotonic() - started
        if result.success:
            logger.info("Try-on for garment %s succeeded in %.1fs", garment.id, elapsed)
        else:
            logger.info(
                "Try-on for garment %s ended as %s after %.1fs",
                garment.id, result.category.value, elapsed,
            )
        return result

    async def close(self):
        """Close network clients."""
        await self.fetcher.close()
