"""Request assembly for the generative model."""

from .request_builder import (
    ImagePart,
    ModelRequest,
    SafetySetting,
    TryOnRequestBuilder,
    build_safety_settings,
)

__all__ = [
    "ImagePart",
    "ModelRequest",
    "SafetySetting",
    "TryOnRequestBuilder",
    "build_safety_settings",
]
