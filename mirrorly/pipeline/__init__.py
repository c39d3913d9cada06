"""Try-on pipeline, session state machine and deep links."""

from .deeplink import DeepLinkResolver, build_deep_link, parse_garment_id
from .session import SessionState, TryOnSession
from .tryon_pipeline import TryOnPipeline

__all__ = [
    "DeepLinkResolver",
    "build_deep_link",
    "parse_garment_id",
    "SessionState",
    "TryOnSession",
    "TryOnPipeline",
]
