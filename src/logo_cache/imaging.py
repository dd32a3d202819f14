"""Pillow codec boundary: decoding, format sniffing, validation and encoding."""

import logging
from io import BytesIO
from typing import NamedTuple

from PIL import Image, UnidentifiedImageError

from .errors import ImageAnalysisError
from .models import ImageMetadata

logger = logging.getLogger(__name__)

VALID_IMAGE_FORMATS: tuple[str, ...] = ("jpeg", "png", "webp", "gif", "svg", "ico")

CONTENT_TYPES: dict[str, str] = {
    "jpeg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
    "gif": "image/gif",
    "svg": "image/svg+xml",
    "ico": "image/x-icon",
}


def looks_like_svg(buffer: bytes) -> bool:
    head = buffer[:1024].lstrip().lower()
    return head.startswith(b"<svg") or (
        head.startswith(b"<?xml") and b"<svg" in head
    )


def open_image(buffer: bytes) -> Image.Image:
    """Decode a buffer, mapping every codec failure to ``ImageAnalysisError``."""
    if looks_like_svg(buffer):
        raise ImageAnalysisError(
            "SVG images cannot be rasterized", ImageAnalysisError.CODEC_FAILURE
        )
    try:
        image = Image.open(BytesIO(buffer))
        image.load()
    except (
        UnidentifiedImageError,
        Image.DecompressionBombError,
        OSError,
        ValueError,
    ) as e:
        raise ImageAnalysisError(
            f"Could not decode image: {e}", ImageAnalysisError.CODEC_FAILURE
        ) from e
    return image


def image_format(image: Image.Image) -> str:
    """Lowercase format name, defaulting to png when the decoder reports none."""
    return (image.format or "png").lower()


def validate_image(image: Image.Image) -> ImageMetadata:
    """Reject unsupported formats and non-positive dimensions."""
    fmt = image_format(image)
    width, height = image.size

    if fmt not in VALID_IMAGE_FORMATS:
        raise ImageAnalysisError(
            f"Invalid image format: {fmt}. "
            f"Must be one of: {', '.join(VALID_IMAGE_FORMATS)}",
            ImageAnalysisError.BAD_FORMAT,
        )
    if width <= 0 or height <= 0:
        raise ImageAnalysisError(
            f"Invalid image dimensions: {width}x{height}. Must be positive numbers.",
            ImageAnalysisError.BAD_DIMENSIONS,
        )

    return ImageMetadata(fmt, width, height)


def has_alpha(image: Image.Image) -> bool:
    return image.mode in ("RGBA", "LA", "PA", "RGBa", "La") or (
        "transparency" in image.info
    )


def encode_png(image: Image.Image) -> bytes:
    byte_arr = BytesIO()
    image.save(byte_arr, format="PNG")
    return byte_arr.getvalue()


class NormalizedImage(NamedTuple):
    buffer: bytes
    content_type: str
    width: int = 0
    height: int = 0
    is_image: bool = True


def normalize_image(buffer: bytes, content_type: str = "") -> NormalizedImage:
    """Bring a fetched body into the single format the cache stores.

    PNG bodies are kept byte-for-byte and SVG is passed through untouched.
    Other raster formats are re-encoded to PNG. Bodies Pillow cannot decode
    are returned as-is with the content type the server sent and
    ``is_image`` unset. Dimensions are 0 when unknown.
    """
    if looks_like_svg(buffer):
        return NormalizedImage(buffer, CONTENT_TYPES["svg"])

    try:
        image = open_image(buffer)
    except ImageAnalysisError as e:
        logger.debug(f"Keeping undecodable body as-is: {e}")
        return NormalizedImage(
            buffer, content_type or "application/octet-stream", is_image=False
        )

    width, height = image.size
    if image_format(image) == "png":
        return NormalizedImage(buffer, CONTENT_TYPES["png"], width, height)

    if image.mode not in ("RGB", "RGBA", "L", "LA"):
        image = image.convert("RGBA")
    return NormalizedImage(encode_png(image), CONTENT_TYPES["png"], width, height)
