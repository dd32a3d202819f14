"""Composition root wiring fetcher, caches, coalescer and governor together."""

import asyncio
import hashlib
import logging
from pathlib import Path

from . import analysis
from .cache import CacheHierarchy
from .coalescer import RequestCoalescer
from .compare import PlaceholderDetector
from .config import Settings
from .domain import normalize_domain
from .errors import CoalescerFullError, ImageAnalysisError, InvalidInputError
from .fetcher import LogoFetcher
from .memory import MemoryGovernor
from .models import (
    BrightnessAnalysis,
    CacheStats,
    FetchResult,
    InvertedLogo,
    LogoResolution,
    MemoryHealth,
    SourceKind,
)
from .persistence import DiskLogoStore, PersistenceQueue

logger = logging.getLogger(__name__)


def content_hash(buffer: bytes) -> str:
    return hashlib.sha256(buffer).hexdigest()


class LogoService:
    """Resolve, validate, analyze and invert logos behind shared caches.

    Use as an async context manager so the memory sampler and the persistence
    queue are started and shut down cleanly::

        async with LogoService() as service:
            result = await service.resolve_logo("https://www.example.com")
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        cache: CacheHierarchy | None = None,
        governor: MemoryGovernor | None = None,
        coalescer: RequestCoalescer | None = None,
        fetcher: LogoFetcher | None = None,
        placeholder_reference: bytes | None = None,
        **fetcher_options,
    ):
        self.settings = settings or Settings()
        self.cache = cache or CacheHierarchy.from_settings(self.settings)
        self.governor = governor or MemoryGovernor(self.settings, cache=self.cache)
        if self.governor.cache is None:
            self.governor.cache = self.cache
        self.cache.admission = self.governor
        self.coalescer = coalescer or RequestCoalescer(self.settings.max_in_flight)

        self.persistence: PersistenceQueue | None = None
        store = None
        if self.settings.persistence_dir is not None:
            store = DiskLogoStore(self.settings.persistence_dir)
            self.persistence = PersistenceQueue(store, self.settings.persistence_queue_size)

        self.fetcher = fetcher or LogoFetcher(
            self.settings,
            store=store,
            persistence=self.persistence,
            validator=self.is_placeholder_icon,
            **fetcher_options,
        )

        self._placeholder_reference = placeholder_reference
        self._detector: PlaceholderDetector | None = None
        self._detector_loaded = False

    async def __aenter__(self) -> "LogoService":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def start(self) -> None:
        self.governor.start()

    async def close(self) -> None:
        await self.governor.stop()
        if self.persistence is not None:
            await self.persistence.close()
        self.cache.clear()

    # --- Logo resolution ---

    async def resolve_logo(self, value: str) -> LogoResolution:
        """Return a logo for a URL, host or company name.

        Never raises for expected failures: empty input, network errors and
        exhausted sources are reported in ``error``.
        """
        key = normalize_domain(value)
        if not key:
            return LogoResolution(key, SourceKind.NONE, error="Domain is required")

        cached = self.cache.get_logo_fetch(key)
        if cached is not None:
            return self._resolution(cached)

        try:
            result = await self.coalescer.run_exclusive(
                key, lambda: self._fetch_and_store(key)
            )
        except CoalescerFullError:
            # Served, just without coalescing or caching
            result = await self._fetch(key)
        except InvalidInputError as e:
            return LogoResolution(key, SourceKind.NONE, error=str(e))

        return self._resolution(result)

    async def _fetch(self, key: str) -> FetchResult:
        try:
            return await self.fetcher.fetch(key)
        except InvalidInputError:
            raise
        except Exception as e:
            logger.exception(f"Unexpected error fetching logo for {key}")
            return FetchResult.failure(key, f"Unexpected error: {e}")

    async def _fetch_and_store(self, key: str) -> FetchResult:
        result = await self._fetch(key)
        if result.ok:
            self.cache.set_logo_fetch(key, result)
        elif not self.settings.build_phase:
            self.cache.set_logo_fetch(
                key, result, failure_ttl=self.settings.fetch_failure_ttl_seconds
            )
        return result

    @staticmethod
    def _resolution(result: FetchResult) -> LogoResolution:
        return LogoResolution(
            key=result.key,
            source=result.source,
            buffer=result.buffer,
            content_type=result.content_type,
            error=result.error,
        )

    def invalidate(self, value: str) -> bool:
        """Forget the cached fetch result for a domain."""
        return self.cache.clear_logo_fetch(normalize_domain(value))

    # --- Placeholder detection ---

    def _get_detector(self) -> PlaceholderDetector | None:
        if self._detector_loaded:
            return self._detector
        self._detector_loaded = True

        options = {
            "min_size": self.settings.min_logo_size,
            "max_size_diff": self.settings.max_size_diff,
        }
        reference = self._placeholder_reference
        path = self.settings.placeholder_reference_path
        try:
            if reference is not None:
                self._detector = PlaceholderDetector(reference, **options)
            elif path is not None:
                self._detector = PlaceholderDetector.from_path(Path(path), **options)
            else:
                logger.warning("No placeholder reference icon configured")
        except (OSError, ImageAnalysisError) as e:
            logger.warning(f"Could not load placeholder reference icon: {e}")
        return self._detector

    async def is_placeholder_icon(self, buffer: bytes) -> bool:
        """True when the image is the generic placeholder icon.

        Verdicts are cached by a hash of the raw bytes. Without a reference
        icon every image is reported as a real logo.
        """
        digest = content_hash(buffer)
        verdict = self.cache.get_logo_validation(digest)
        if verdict is not None:
            return verdict.is_placeholder

        detector = self._get_detector()
        if detector is None:
            return False

        if len(buffer) > self.settings.max_placeholder_bytes:
            is_placeholder = False
        else:
            is_placeholder = await asyncio.to_thread(detector.is_placeholder, buffer)

        self.cache.set_logo_validation(digest, is_placeholder)
        return is_placeholder

    # --- Brightness and inversion ---

    async def analyze_brightness(self, buffer: bytes) -> BrightnessAnalysis:
        """Cached brightness analysis.

        Raises:
            ImageAnalysisError: unsupported format, bad dimensions or decode failure.
        """
        key = content_hash(buffer)
        cached = self.cache.get_logo_analysis(key)
        if cached is not None:
            return cached

        result = await asyncio.to_thread(analysis.analyze_brightness, buffer)
        self.cache.set_logo_analysis(key, result)
        return result

    async def needs_inversion(self, buffer: bytes, is_dark_theme: bool) -> bool:
        result = await self.analyze_brightness(buffer)
        if is_dark_theme:
            return result.needs_inversion_in_dark_theme
        return result.needs_inversion_in_light_theme

    async def invert(self, buffer: bytes, preserve_transparency: bool = True) -> bytes:
        """Color-inverted PNG of an image, cached per content and mode.

        Raises:
            ImageAnalysisError: unsupported format, bad dimensions or decode failure.
        """
        key = f"{content_hash(buffer)}:{int(preserve_transparency)}"
        cached = self.cache.get_inverted_logo(key)
        if cached is not None:
            return cached.buffer

        inverted = await asyncio.to_thread(analysis.invert, buffer, preserve_transparency)
        if self.governor.should_allow_image_operations():
            self.cache.set_inverted_logo(key, InvertedLogo(inverted))
        return inverted

    # --- Introspection ---

    def get_cache_stats(self) -> CacheStats:
        return self.cache.stats()

    def get_memory_health(self) -> MemoryHealth:
        return self.governor.health()
