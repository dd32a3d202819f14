"""Brightness analysis and color inversion for theme-aware logo display."""

import logging

from PIL import Image, ImageOps

from .imaging import encode_png, has_alpha, open_image, validate_image
from .models import BrightnessAnalysis, LogoInversion

logger = logging.getLogger(__name__)

BRIGHTNESS_THRESHOLD = 128
MAX_ANALYSIS_DIMENSION = 512


def analyze_brightness(buffer: bytes) -> BrightnessAnalysis:
    """Average luminance over the visible pixels of an image.

    Large images are first shrunk to fit inside 512x512. Fully transparent
    pixels do not count towards the average; an image with no visible pixel
    has brightness 0.

    Raises:
        ImageAnalysisError: unsupported format, bad dimensions or decode failure.
    """
    image = open_image(buffer)
    meta = validate_image(image)

    sample = image.convert("LA")
    sample.thumbnail(
        (MAX_ANALYSIS_DIMENSION, MAX_ANALYSIS_DIMENSION), Image.Resampling.LANCZOS
    )

    total = 0
    visible = 0
    has_transparency = False
    for luminance, alpha in sample.getdata():
        if alpha < 255:
            has_transparency = True
        if alpha > 0:
            total += luminance
            visible += 1

    average = total / visible if visible else 0.0
    is_light = average >= BRIGHTNESS_THRESHOLD

    logger.debug(
        f"Analyzed {meta.format} {meta.width}x{meta.height}: "
        f"brightness {average:.1f} from {visible} visible pixels"
    )

    return BrightnessAnalysis(
        average_brightness=average,
        is_light_colored=is_light,
        # Light logos vanish on light backgrounds, dark ones on dark
        needs_inversion_in_light_theme=is_light,
        needs_inversion_in_dark_theme=not is_light,
        has_transparency=has_transparency,
        format=meta.format,
        width=meta.width,
        height=meta.height,
    )


def invert(buffer: bytes, preserve_transparency: bool = True) -> bytes:
    """Negate the color channels of an image and return it as PNG.

    With ``preserve_transparency`` the alpha channel of a transparent image is
    kept as-is and only the color channels are negated. Otherwise every
    channel, alpha included, is negated.
    """
    image = open_image(buffer)
    validate_image(image)

    if has_alpha(image):
        rgba = image.convert("RGBA")
        red, green, blue, alpha = rgba.split()
        if not preserve_transparency:
            alpha = ImageOps.invert(alpha)
        color = ImageOps.invert(Image.merge("RGB", (red, green, blue)))
        inverted = Image.merge("RGBA", (*color.split(), alpha))
    elif image.mode == "L":
        inverted = ImageOps.invert(image)
    else:
        inverted = ImageOps.invert(image.convert("RGB"))

    return encode_png(inverted)


def needs_inversion(buffer: bytes, is_dark_theme: bool) -> bool:
    analysis = analyze_brightness(buffer)
    if is_dark_theme:
        return analysis.needs_inversion_in_dark_theme
    return analysis.needs_inversion_in_light_theme


def analyze_image(buffer: bytes) -> LogoInversion:
    """Brightness analysis in the older ``LogoInversion`` shape."""
    return LogoInversion.from_analysis(analyze_brightness(buffer))
