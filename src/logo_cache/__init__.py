"""Top-level package for logo_cache.

Expose primary classes/functions for convenient imports:
    from logo_cache import LogoService, Settings, normalize_domain
"""

from importlib.metadata import version, PackageNotFoundError

from .analysis import analyze_brightness, analyze_image, invert, needs_inversion
from .compare import are_similar, image_hash, PlaceholderDetector
from .config import Settings
from .domain import get_domain_variants, normalize_domain
from .errors import (
    CoalescerFullError,
    ConfigurationError,
    ImageAnalysisError,
    InvalidInputError,
    LogoCacheError,
)
from .models import (
    BrightnessAnalysis,
    CacheStats,
    FetchResult,
    LogoInversion,
    LogoResolution,
    MemoryHealth,
    MemoryHealthState,
    MemoryTrend,
    SourceKind,
)
from .service import LogoService

__all__ = [
    "LogoService",
    "Settings",
    "normalize_domain",
    "get_domain_variants",
    "image_hash",
    "are_similar",
    "PlaceholderDetector",
    "analyze_brightness",
    "analyze_image",
    "invert",
    "needs_inversion",
    "BrightnessAnalysis",
    "CacheStats",
    "FetchResult",
    "LogoInversion",
    "LogoResolution",
    "MemoryHealth",
    "MemoryHealthState",
    "MemoryTrend",
    "SourceKind",
    "LogoCacheError",
    "InvalidInputError",
    "ImageAnalysisError",
    "CoalescerFullError",
    "ConfigurationError",
]

try:
    __version__ = version("logo-cache")
except PackageNotFoundError:  # pragma: no cover - during editable/dev installs
    __version__ = "0.0.0"
