"""Image preparation: decode, bound, re-encode, and data-URI helpers."""

import base64
import binascii
import io
import logging
import re

from PIL import Image, ImageOps, UnidentifiedImageError

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "image/jpeg"

_DATA_URI_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<params>(;[^;,]*)*?),", re.IGNORECASE)


def is_data_uri(value: str) -> bool:
    return value[:5].lower() == "data:"


def detect_mime_type(data_uri: str) -> str:
    """Read the mime type from a data-URI header.

    Falls back to a generic raster type for missing or unrecognized headers.
    """
    match = _DATA_URI_RE.match(data_uri or "")
    if match and match.group("mime"):
        mime = match.group("mime").lower()
        if mime.startswith("image/"):
            return "image/jpeg" if mime == "image/jpg" else mime
    return DEFAULT_MIME_TYPE


def sniff_mime_type(data: bytes) -> str:
    """Detect image format from magic bytes."""
    if data[:3] == b'\xff\xd8\xff':
        return "image/jpeg"
    if data[:8] == b'\x89PNG\r\n\x1a\n':
        return "image/png"
    if data[:4] == b'RIFF' and data[8:12] == b'WEBP':
        return "image/webp"
    if data[:6] in (b'GIF87a', b'GIF89a'):
        return "image/gif"
    return DEFAULT_MIME_TYPE


def parse_data_uri(data_uri: str) -> tuple[str, bytes]:
    """Split a data-URI into (mime type, decoded bytes).

    Raises:
        ValueError: if the value is not a base64 data-URI
    """
    if not is_data_uri(data_uri) or "," not in data_uri:
        raise ValueError("Not a data URI")
    header, encoded = data_uri.split(",", 1)
    if ";base64" not in header.lower():
        raise ValueError("Only base64 data URIs are supported")
    try:
        payload = base64.b64decode(encoded, validate=False)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Invalid base64 payload: {e}") from e
    return detect_mime_type(data_uri), payload


def to_data_uri(data: bytes, mime_type: str | None = None) -> str:
    mime_type = mime_type or sniff_mime_type(data)
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def decode_image(data: bytes) -> Image.Image:
    """Decode raster bytes into a fully loaded PIL image.

    Raises:
        ValueError: if the bytes are not a decodable image
    """
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as e:
        raise ValueError(f"Undecodable image: {e}") from e
    return img


def scaled_size(width: int, height: int, max_dimension: int) -> tuple[int, int]:
    """Target size with max(width, height) <= max_dimension. Never upscales."""
    longest = max(width, height)
    if longest <= max_dimension:
        return width, height
    scale = max_dimension / longest
    return max(1, round(width * scale)), max(1, round(height * scale))


def prepare_image(
    source: bytes | str,
    max_dimension: int = 800,
    quality: float = 0.7,
) -> str:
    """Bound an image's dimensions and re-encode it as a compressed JPEG.

    Args:
        source: Raw image bytes or a base64 data-URI
        max_dimension: Upper bound for the longest side, in pixels
        quality: JPEG quality factor between 0.0 and 1.0

    Returns:
        A JPEG data-URI. Input that cannot be decoded is returned unchanged
        (bytes are wrapped into a data-URI as they are).
    """
    try:
        if isinstance(source, str):
            _, raw = parse_data_uri(source)
        else:
            raw = source
        img = decode_image(raw)

        # Respect camera orientation before measuring
        img = ImageOps.exif_transpose(img)

        target = scaled_size(img.width, img.height, max_dimension)
        if target != img.size:
            img = img.resize(target, Image.Resampling.LANCZOS)

        # JPEG has no alpha or palette
        if img.mode != "RGB":
            img = img.convert("RGB")

        output = io.BytesIO()
        jpeg_quality = max(1, min(95, int(round(quality * 100))))
        img.save(output, format="JPEG", quality=jpeg_quality, optimize=True)
        return to_data_uri(output.getvalue(), "image/jpeg")
    except (ValueError, OSError) as e:
        logger.warning("Image preparation skipped, using original input: %s", e)
        if isinstance(source, str):
            return source
        return to_data_uri(source)
