"""Perceptual hashing and placeholder-icon detection."""

import hashlib
import logging
from pathlib import Path

from PIL import Image

from .errors import ImageAnalysisError
from .imaging import open_image, validate_image
from .models import ImageMetadata

logger = logging.getLogger(__name__)

HASH_SIZE = 16
MIN_LOGO_SIZE = 64
MAX_SIZE_DIFF = 10


def inspect_image(buffer: bytes, min_size: int = MIN_LOGO_SIZE) -> ImageMetadata:
    """Read format and dimensions and run the pre-check.

    Raises ``ImageAnalysisError`` only when the buffer cannot be decoded;
    format and size problems are reported through ``is_valid``.
    """
    image = open_image(buffer)
    try:
        meta = validate_image(image)
    except ImageAnalysisError as e:
        fmt = (image.format or "png").lower()
        return ImageMetadata(fmt, image.width, image.height, False, str(e))

    if meta.width < min_size or meta.height < min_size:
        return meta._replace(
            is_valid=False,
            validation_error=(
                f"Image too small: {meta.width}x{meta.height}, "
                f"minimum is {min_size}x{min_size}"
            ),
        )
    return meta


def image_hash(buffer: bytes) -> str:
    """Hash of the image reduced to 16x16 grayscale.

    Equal hashes mean perceptually identical at that resolution; this is not
    a distance metric.
    """
    image = open_image(buffer)
    reduced = (
        image.convert("RGB")
        .resize((HASH_SIZE, HASH_SIZE), Image.Resampling.LANCZOS)
        .convert("L")
    )
    return hashlib.sha256(reduced.tobytes()).hexdigest()


def are_similar(first: bytes, second: bytes) -> bool:
    """True when both images hash identically. Never raises."""
    try:
        return image_hash(first) == image_hash(second)
    except ImageAnalysisError as e:
        logger.debug(f"Similarity check failed: {e}")
        return False


class PlaceholderDetector:
    """Compares candidate logos against a known generic placeholder icon."""

    def __init__(
        self,
        reference: bytes,
        min_size: int = MIN_LOGO_SIZE,
        max_size_diff: int = MAX_SIZE_DIFF,
    ):
        self.min_size = min_size
        self.max_size_diff = max_size_diff
        self.reference_meta = inspect_image(reference, min_size=0)
        self.reference_hash = image_hash(reference)

    @classmethod
    def from_path(cls, path: Path, **kwargs) -> "PlaceholderDetector":
        return cls(Path(path).read_bytes(), **kwargs)

    def is_placeholder(self, buffer: bytes) -> bool:
        try:
            meta = inspect_image(buffer, min_size=self.min_size)
        except ImageAnalysisError as e:
            logger.debug(f"Not comparing undecodable image: {e}")
            return False

        if not meta.is_valid:
            logger.debug(f"Not comparing image: {meta.validation_error}")
            return False

        size_diff = abs(meta.width - self.reference_meta.width) + abs(
            meta.height - self.reference_meta.height
        )
        if size_diff > self.max_size_diff:
            return False

        try:
            return image_hash(buffer) == self.reference_hash
        except ImageAnalysisError as e:
            logger.debug(f"Hashing failed: {e}")
            return False
