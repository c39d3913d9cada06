"""Gemini client for virtual try-on image generation."""

import asyncio
import base64
import logging
from dataclasses import dataclass
from typing import Any, Protocol

from google import genai
from google.genai import types

from ..agents.request_builder import ModelRequest
from ..config import GeminiConfig
from ..errors import GenerationTimeout, MissingCredentialsError
from ..utils.images import to_data_uri

logger = logging.getLogger(__name__)


@dataclass
class ModelResponse:
    """What came back from the model, reduced to what the pipeline needs."""
    image: bytes | None = None
    image_mime_type: str | None = None
    text: str = ""
    block_reason: str | None = None
    finish_reason: str | None = None

    @property
    def has_image(self) -> bool:
        return bool(self.image)

    def image_data_uri(self) -> str:
        if not self.image:
            raise ValueError("Response carries no image")
        return to_data_uri(self.image, self.image_mime_type)


class GenerationBackend(Protocol):
    """Anything that can run one generation call for a given key."""

    async def generate(self, api_key: str, model: str, request: ModelRequest) -> Any:
        ...


class GenaiBackend:
    """google-genai backed generation. One SDK client per API key, reused."""

    def __init__(self):
        self._clients: dict[str, genai.Client] = {}

    def client_for(self, api_key: str) -> genai.Client:
        if api_key not in self._clients:
            self._clients[api_key] = genai.Client(api_key=api_key)
        return self._clients[api_key]

    def build_config(self, request: ModelRequest) -> types.GenerateContentConfig:
        return types.GenerateContentConfig(
            temperature=request.temperature,
            response_modalities=["IMAGE", "TEXT"],
            safety_settings=[
                types.SafetySetting(category=s.category, threshold=s.threshold)
                for s in request.safety_settings
            ],
        )

    async def generate(self, api_key: str, model: str, request: ModelRequest) -> Any:
        contents: list[Any] = [request.prompt]
        for image in request.images:
            contents.append(types.Part.from_bytes(data=image.data, mime_type=image.mime_type))

        client = self.client_for(api_key)
        return await client.aio.models.generate_content(
            model=model,
            contents=contents,
            config=self.build_config(request),
        )


def _enum_value(value: Any) -> str | None:
    if value is None:
        return None
    return str(getattr(value, "value", value))


def extract_response(response: Any) -> ModelResponse:
    """Pull the first inline image and all text out of an SDK response.

    Text is kept even when an image is present; when there is no image it is
    what the classifier works from.
    """
    result = ModelResponse()

    feedback = getattr(response, "prompt_feedback", None)
    if feedback is not None:
        result.block_reason = _enum_value(getattr(feedback, "block_reason", None))

    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return result

    candidate = candidates[0]
    result.finish_reason = _enum_value(getattr(candidate, "finish_reason", None))

    content = getattr(candidate, "content", None)
    parts = getattr(content, "parts", None) or []
    texts = []
    for part in parts:
        inline = getattr(part, "inline_data", None)
        data = getattr(inline, "data", None) if inline is not None else None
        if data and result.image is None:
            result.image = base64.b64decode(data) if isinstance(data, str) else data
            result.image_mime_type = getattr(inline, "mime_type", None) or "image/png"
            continue
        text = getattr(part, "text", None)
        if text:
            texts.append(text.strip())

    result.text = "\n".join(t for t in texts if t)
    return result


def _discard_late_result(task: asyncio.Task) -> None:
    """Consume the outcome of a call that lost the race against its deadline."""
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.debug("Late generation call failed after timeout: %s", error)
    else:
        logger.debug("Late generation result discarded")


class GeminiInvoker:
    """Issues the generation call under a hard deadline."""

    def __init__(self, config: GeminiConfig, backend: GenerationBackend | None = None):
        self.config = config
        self.backend = backend or GenaiBackend()

    async def _race(self, call, deadline: float):
        """First of [call, timer]. The losing call keeps running and is ignored."""
        task = asyncio.ensure_future(call)
        done, _ = await asyncio.wait({task}, timeout=deadline)
        if task in done:
            return task.result()
        task.add_done_callback(_discard_late_result)
        raise GenerationTimeout(deadline)

    async def invoke(
        self,
        request: ModelRequest,
        api_key: str | None,
        deadline: float | None = None,
    ) -> ModelResponse:
        """Run one generation call.

        Args:
            request: Assembled multimodal request
            api_key: Resolved key; None fails fast without calling the model
            deadline: Seconds to wait before giving up (default from config)

        Returns:
            ModelResponse with an image, or the text/metadata explaining why not

        Raises:
            MissingCredentialsError: no key
            GenerationTimeout: deadline elapsed first
            Exception: whatever the backend raised (SDK API errors, transport errors)
        """
        if not api_key:
            raise MissingCredentialsError()

        deadline = deadline if deadline is not None else self.config.timeout_seconds
        logger.info("Generating try-on with %s (deadline %.0fs)", self.config.model, deadline)

        raw = await self._race(
            self.backend.generate(api_key, self.config.model, request),
            deadline,
        )
        response = extract_response(raw)

        if not response.has_image:
            logger.warning(
                "Model returned no image (finish=%s, block=%s): %s",
                response.finish_reason,
                response.block_reason,
                response.text[:200],
            )
        return response
