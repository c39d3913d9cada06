# Test fixtures and configuration
import asyncio
import io
import pytest
import sys
from pathlib import Path
from types import SimpleNamespace

from PIL import Image

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from mirrorly.config import AppConfig, FetchConfig
from mirrorly.models import Garment, MerchantProfile
from mirrorly.services import (
    CreditLedger,
    GeminiInvoker,
    HistoryRecorder,
    InMemoryInventoryStore,
    InMemoryProfileStore,
    RemoteImageFetcher,
)
from mirrorly.pipeline import TryOnPipeline
from mirrorly.utils.images import to_data_uri


@pytest.fixture
def minimal_png_bytes():
    """Minimal valid PNG image bytes."""
    return bytes([
        0x89, 0x50, 0x4E, 0x47, 0x0D, 0x0A, 0x1A, 0x0A,  # PNG signature
        0x00, 0x00, 0x00, 0x0D, 0x49, 0x48, 0x44, 0x52,  # IHDR chunk
        0x00, 0x00, 0x00, 0x01, 0x00, 0x00, 0x00, 0x01,  # 1x1 dimensions
        0x08, 0x02, 0x00, 0x00, 0x00, 0x90, 0x77, 0x53,
        0xDE, 0x00, 0x00, 0x00, 0x0C, 0x49, 0x44, 0x41,  # IDAT chunk
        0x54, 0x08, 0xD7, 0x63, 0xF8, 0xCF, 0xC0, 0x00,
        0x00, 0x00, 0x03, 0x00, 0x01, 0x00, 0x05, 0xFE,
        0xD4, 0xAA, 0x00, 0x00, 0x00, 0x00, 0x49, 0x45,  # IEND chunk
        0x4E, 0x44, 0xAE, 0x42, 0x60, 0x82
    ])


@pytest.fixture
def make_image_bytes():
    """Factory for real encoded images of a given size."""
    def _make(width: int = 64, height: int = 48, fmt: str = "PNG", mode: str = "RGB") -> bytes:
        color = (200, 30, 60, 255) if mode == "RGBA" else (200, 30, 60)
        img = Image.new(mode, (width, height), color)
        buf = io.BytesIO()
        img.save(buf, format=fmt)
        return buf.getvalue()
    return _make


@pytest.fixture
def photo_data_uri(make_image_bytes):
    """A shopper photo as the web app uploads it."""
    return to_data_uri(make_image_bytes(1200, 1600, "JPEG"), "image/jpeg")


@pytest.fixture
def garment(make_image_bytes):
    """Garment with an embedded image."""
    return Garment(
        id="g1",
        name="Silk Evening Gown",
        description="A midnight blue silk gown with elegant draping.",
        price=450,
        image_url=to_data_uri(make_image_bytes(600, 800), "image/png"),
        boutique_name="Lumière Boutique",
        shop_url="https://example.com/buy/g1",
    )


@pytest.fixture
def remote_garment():
    """Garment whose image lives on a remote CDN."""
    return Garment(
        id="g2",
        name="Cashmere Trench Coat",
        description="Classic beige trench coat, 100% cashmere.",
        price=890,
        image_url="https://cdn.example.com/garments/g2.jpg",
        boutique_name="Lumière Boutique",
    )


@pytest.fixture
def config(tmp_path):
    """Config isolated from the developer's .env and data directory."""
    return AppConfig(
        _env_file=None,
        gemini_api_key="test-key",
        data_dir=tmp_path / "data",
    )


@pytest.fixture
def profile_store():
    return InMemoryProfileStore(MerchantProfile(name="Lumière Boutique", credits=5))


@pytest.fixture
def ledger(profile_store):
    return CreditLedger(profile_store)


@pytest.fixture
def history():
    return HistoryRecorder(limit=20)


@pytest.fixture
def inventory(garment, remote_garment):
    return InMemoryInventoryStore([garment, remote_garment])


class FakeBackend:
    """Stands in for the google-genai backend."""

    def __init__(self, response=None, error: Exception | None = None, delay: float = 0.0):
        self.response = response
        self.error = error
        self.delay = delay
        self.calls = []

    async def generate(self, api_key, model, request):
        self.calls.append(SimpleNamespace(api_key=api_key, model=model, request=request))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture
def fake_backend_cls():
    return FakeBackend


@pytest.fixture
def sdk_response():
    """Factory for objects shaped like google-genai GenerateContentResponse."""
    def _make(image: bytes | None = None, text: str | None = None,
              finish_reason: str = "STOP", block_reason: str | None = None,
              no_candidates: bool = False):
        parts = []
        if text is not None:
            parts.append(SimpleNamespace(inline_data=None, text=text))
        if image is not None:
            parts.append(SimpleNamespace(
                inline_data=SimpleNamespace(data=image, mime_type="image/png"),
                text=None,
            ))
        candidates = [] if no_candidates else [
            SimpleNamespace(finish_reason=finish_reason, content=SimpleNamespace(parts=parts))
        ]
        feedback = SimpleNamespace(block_reason=block_reason) if block_reason else None
        return SimpleNamespace(candidates=candidates, prompt_feedback=feedback)
    return _make


@pytest.fixture
def make_pipeline(config):
    """Pipeline wired to a fake backend and an optional fake fetcher."""
    def _make(backend, fetcher: RemoteImageFetcher | None = None):
        return TryOnPipeline(
            config,
            invoker=GeminiInvoker(config.gemini, backend=backend),
            fetcher=fetcher or RemoteImageFetcher(FetchConfig()),
        )
    return _make
