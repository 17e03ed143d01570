"""Image helpers: data-URL parsing and size-bounded JPEG compression."""

from __future__ import annotations

import base64
import binascii
import io
import re

from PIL import Image, UnidentifiedImageError

DATA_URL_RE = re.compile(r"^data:(?P<mime>[^;,]+);base64,(?P<data>.+)$", re.DOTALL)


class ImageDecodeError(ValueError):
    """Input is not a decodable base64 image."""


def parse_data_url(data_url: str) -> tuple[str, str]:
    """Split ``data:<mime>;base64,<data>`` into (mime_type, base64_data).

    Raises:
        ImageDecodeError: If the string is not a base64 data URL.
    """
    match = DATA_URL_RE.match(data_url.strip())
    if not match:
        raise ImageDecodeError("Invalid data URL")
    return match.group("mime"), match.group("data")


def strip_data_url(data: str) -> str:
    """Drop a leading ``data:...,`` prefix if present."""
    return data.split(",", 1)[1] if data.startswith("data:") and "," in data else data


def decode_image(data: str) -> Image.Image:
    """Decode base64 (optionally a data URL) into a loaded Pillow image.

    Raises:
        ImageDecodeError: If the text is not base64 or not an image.
    """
    try:
        raw = base64.b64decode(strip_data_url(data).strip(), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ImageDecodeError("Image data is not valid base64") from exc
    try:
        image = Image.open(io.BytesIO(raw))
        image.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise ImageDecodeError("Image data could not be decoded") from exc
    return image


def compress_base64_image(
    data: str,
    max_bytes: int,
    target_width: int = 1000,
    quality: int = 90,
    min_quality: int = 20,
    min_width: int = 400,
) -> str:
    """Re-encode an image as JPEG no larger than max_bytes where possible.

    The image is first scaled down to target_width (never up), keeping its
    aspect ratio. While it is still too large, quality drops in steps of
    10 down to min_quality, then the width drops in steps of 100 down to
    min_width at quality 70. Once the width floor is reached the last
    encoding is returned, even if it is still over budget.

    Args:
        data: Base64 image, with or without a data-URL prefix.
        max_bytes: Size budget for the encoded JPEG bytes.

    Returns:
        Base64 JPEG data without a prefix.

    Raises:
        ImageDecodeError: If data is not a decodable image.
    """
    image = decode_image(data)
    if image.mode not in ("RGB", "L"):
        image = image.convert("RGB")
    aspect = image.height / image.width

    def encode(width: int, jpeg_quality: int) -> bytes:
        width = min(width, image.width)
        height = max(1, round(width * aspect))
        frame = image if width == image.width else image.resize((width, height), Image.Resampling.LANCZOS)
        buffer = io.BytesIO()
        frame.save(buffer, format="JPEG", quality=jpeg_quality, optimize=True)
        return buffer.getvalue()

    width = min(target_width, image.width)
    current_quality = quality
    encoded = encode(width, current_quality)

    while len(encoded) > max_bytes and current_quality > min_quality:
        current_quality = max(min_quality, current_quality - 10)
        encoded = encode(width, current_quality)

    while len(encoded) > max_bytes and width > min_width:
        width = max(min_width, width - 100)
        encoded = encode(width, 70)

    return base64.b64encode(encoded).decode("ascii")
