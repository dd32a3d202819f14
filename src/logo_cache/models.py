import time
from enum import Enum
from typing import NamedTuple


class SourceKind(str, Enum):
    """Where a logo buffer came from."""

    GOOGLE = "google"
    CLEARBIT = "clearbit"
    DUCKDUCKGO = "duckduckgo"
    DIRECT = "direct"
    NONE = "none"


class MemoryHealthState(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


class MemoryTrend(str, Enum):
    INCREASING = "increasing"
    STABLE = "stable"
    DECREASING = "decreasing"


class FetchResult(NamedTuple):
    """Outcome of one fetch for a normalized domain.

    Exactly one of ``buffer`` and ``error`` is set.
    """

    key: str
    source: SourceKind
    buffer: bytes | None = None
    content_type: str = ""
    error: str | None = None
    url: str | None = None
    fetched_at: float = 0.0

    @property
    def ok(self) -> bool:
        return self.buffer is not None

    @classmethod
    def success(
        cls,
        key: str,
        source: SourceKind,
        buffer: bytes,
        content_type: str,
        url: str | None = None,
    ) -> "FetchResult":
        return cls(
            key=key,
            source=source,
            buffer=bytes(buffer),
            content_type=content_type,
            url=url,
            fetched_at=time.time(),
        )

    @classmethod
    def failure(cls, key: str, error: str) -> "FetchResult":
        return cls(key=key, source=SourceKind.NONE, error=error, fetched_at=time.time())


class ValidationVerdict(NamedTuple):
    image_hash: str
    is_placeholder: bool
    checked_at: float


class ImageMetadata(NamedTuple):
    """Decoded header information plus the pre-check outcome."""

    format: str
    width: int
    height: int
    is_valid: bool = True
    validation_error: str | None = None


class BrightnessAnalysis(NamedTuple):
    average_brightness: float
    is_light_colored: bool
    needs_inversion_in_light_theme: bool
    needs_inversion_in_dark_theme: bool
    has_transparency: bool
    format: str
    width: int
    height: int


class LogoInversion(NamedTuple):
    """Legacy analysis shape kept for older callers."""

    brightness: float
    needs_dark_inversion: bool
    needs_light_inversion: bool
    has_transparency: bool
    format: str
    width: int
    height: int

    @classmethod
    def from_analysis(cls, analysis: BrightnessAnalysis) -> "LogoInversion":
        return cls(
            brightness=analysis.average_brightness,
            needs_dark_inversion=analysis.needs_inversion_in_dark_theme,
            needs_light_inversion=analysis.needs_inversion_in_light_theme,
            has_transparency=analysis.has_transparency,
            format=analysis.format,
            width=analysis.width,
            height=analysis.height,
        )


class InvertedLogo(NamedTuple):
    buffer: bytes
    content_type: str = "image/png"


class LogoResolution(NamedTuple):
    """What callers of ``resolve_logo`` receive."""

    key: str
    source: SourceKind
    buffer: bytes | None = None
    content_type: str = ""
    error: str | None = None


class CacheStats(NamedTuple):
    entry_count: int
    hit_count: int
    miss_count: int
    total_bytes: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hit_count + self.miss_count
        return self.hit_count / total if total else 0.0


class MemorySample(NamedTuple):
    timestamp: float
    rss: int


class MemoryHealth(NamedTuple):
    state: MemoryHealthState
    trend: MemoryTrend
    rss: int
    budget: int
    warning_threshold: int
    critical_threshold: int
    accepts_requests: bool
    cache: CacheStats | None = None
