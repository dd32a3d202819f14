import asyncio
import unittest
from io import BytesIO
from unittest.mock import patch

import httpx
from PIL import Image, ImageDraw

from logo_cache.config import Settings
from logo_cache.errors import ImageAnalysisError
from logo_cache.fetcher import LogoSource
from logo_cache.memory import MemoryGovernor
from logo_cache.models import MemoryHealthState, SourceKind
from logo_cache.service import LogoService

MB = 1024 * 1024

SOURCES = [
    LogoSource(SourceKind.GOOGLE, "provider-a", "https://a.test/{domain}"),
    LogoSource(SourceKind.CLEARBIT, "provider-b", "https://b.test/{domain}"),
    LogoSource(SourceKind.DUCKDUCKGO, "provider-c", "https://c.test/{domain}"),
]


def png(size=(64, 64), color="blue", mode="RGB") -> bytes:
    byte_arr = BytesIO()
    Image.new(mode, size, color=color).save(byte_arr, format="PNG")
    return byte_arr.getvalue()


def globe() -> bytes:
    image = Image.new("RGB", (128, 128), color="white")
    draw = ImageDraw.Draw(image)
    draw.ellipse((8, 8, 120, 120), outline="gray", width=6)
    draw.line((64, 8, 64, 120), fill="gray", width=4)
    byte_arr = BytesIO()
    image.save(byte_arr, format="PNG")
    return byte_arr.getvalue()


class CountingHandler:
    """Serves one logo from provider A, or fails everywhere."""

    def __init__(self, logo: bytes | None = None, delay: float = 0.0):
        self.logo = logo
        self.delay = delay
        self.calls = 0

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.logo is not None and request.url.host == "a.test":
            return httpx.Response(200, content=self.logo)
        return httpx.Response(404)


def make_service(handler, rss: int = 10 * MB, **settings_overrides) -> LogoService:
    options = {"html_discovery": False, "memory_budget_bytes": 100 * MB}
    options.update(settings_overrides)
    settings = Settings(**options)
    governor = MemoryGovernor(settings, sampler=lambda: rss)
    return LogoService(
        settings,
        governor=governor,
        sources=SOURCES,
        transport=httpx.MockTransport(handler),
    )


class TestResolveLogo(unittest.IsolatedAsyncioTestCase):
    """Test logo resolution through caches and the coalescer."""

    async def test_resolves_from_first_source(self):
        logo = png()
        handler = CountingHandler(logo)
        service = make_service(handler)

        result = await service.resolve_logo("https://www.Example.com/about")

        self.assertEqual(result.key, "example.com")
        self.assertEqual(result.source, SourceKind.GOOGLE)
        self.assertEqual(result.buffer, logo)
        self.assertIsNone(result.error)

    async def test_second_call_is_served_from_cache(self):
        handler = CountingHandler(png())
        service = make_service(handler)

        first = await service.resolve_logo("example.com")
        second = await service.resolve_logo("www.example.com")

        self.assertEqual(first, second)
        self.assertEqual(handler.calls, 1)
        self.assertEqual(service.get_cache_stats().hit_count, 1)

    async def test_concurrent_requests_share_one_fetch(self):
        logo = png()
        handler = CountingHandler(logo, delay=0.05)
        service = make_service(handler)

        results = await asyncio.gather(
            *(service.resolve_logo("example.com") for _ in range(50))
        )

        self.assertEqual(handler.calls, 1)
        self.assertTrue(all(r.buffer == logo for r in results))
        self.assertEqual(len(service.coalescer), 0)

    async def test_all_sources_failing(self):
        handler = CountingHandler()
        service = make_service(handler)

        result = await service.resolve_logo("example.com")

        self.assertIsNone(result.buffer)
        self.assertEqual(result.source, SourceKind.NONE)
        for label in ("provider-a", "provider-b", "provider-c"):
            self.assertIn(label, result.error)

        await service.resolve_logo("example.com")
        self.assertEqual(handler.calls, 3)

    async def test_connection_errors_everywhere(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("name resolution failed", request=request)

        service = make_service(handler)
        result = await service.resolve_logo("no-such-domain-xyz.test")

        self.assertIsNone(result.buffer)
        self.assertEqual(result.source, SourceKind.NONE)
        self.assertTrue(result.error)

    async def test_build_phase_failures_are_not_cached(self):
        handler = CountingHandler()
        service = make_service(handler, build_phase=True)

        await service.resolve_logo("example.com")
        await service.resolve_logo("example.com")

        self.assertEqual(handler.calls, 6)

    async def test_empty_input(self):
        handler = CountingHandler(png())
        service = make_service(handler)

        result = await service.resolve_logo("   ")

        self.assertEqual(result.error, "Domain is required")
        self.assertEqual(handler.calls, 0)

    async def test_full_coalescer_still_serves(self):
        handler = CountingHandler(png(), delay=0.05)
        service = make_service(handler, max_in_flight=1)

        first, second = await asyncio.gather(
            service.resolve_logo("a.com"), service.resolve_logo("b.com")
        )

        self.assertIsNotNone(first.buffer)
        self.assertIsNotNone(second.buffer)
        self.assertIsNotNone(service.cache.get_logo_fetch("a.com"))
        self.assertIsNone(service.cache.get_logo_fetch("b.com"))

    async def test_critical_memory_refuses_cache_writes(self):
        handler = CountingHandler(png())
        service = make_service(handler, rss=95 * MB)
        service.governor.check_memory()

        result = await service.resolve_logo("example.com")

        self.assertIsNotNone(result.buffer)
        self.assertEqual(service.get_cache_stats().entry_count, 0)
        self.assertFalse(service.get_memory_health().accepts_requests)

    async def test_placeholder_from_provider_is_skipped(self):
        reference = globe()
        logo = png(color="red")

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "a.test":
                return httpx.Response(200, content=reference)
            return httpx.Response(200, content=logo)

        settings = Settings(html_discovery=False)
        service = LogoService(
            settings,
            placeholder_reference=reference,
            sources=SOURCES,
            transport=httpx.MockTransport(handler),
        )

        result = await service.resolve_logo("example.com")
        self.assertEqual(result.source, SourceKind.CLEARBIT)
        self.assertEqual(result.buffer, logo)

    async def test_invalidate(self):
        handler = CountingHandler(png())
        service = make_service(handler)
        await service.resolve_logo("example.com")

        self.assertTrue(service.invalidate("https://example.com"))
        await service.resolve_logo("example.com")
        self.assertEqual(handler.calls, 2)

    async def test_context_manager_starts_and_stops_sampling(self):
        async with make_service(CountingHandler()) as service:
            self.assertIsNotNone(service.governor._task)
        self.assertIsNone(service.governor._task)
        self.assertEqual(service.get_cache_stats().entry_count, 0)


class TestPlaceholderIcon(unittest.IsolatedAsyncioTestCase):
    """Test placeholder detection through the service."""

    async def test_reference_is_detected_and_cached(self):
        reference = globe()
        service = LogoService(Settings(), placeholder_reference=reference)

        self.assertTrue(await service.is_placeholder_icon(reference))
        self.assertFalse(await service.is_placeholder_icon(png(size=(128, 128))))

        with patch.object(service._detector, "is_placeholder") as mock_check:
            self.assertTrue(await service.is_placeholder_icon(reference))
            mock_check.assert_not_called()

    async def test_no_reference_means_not_placeholder(self):
        service = LogoService(Settings())
        with self.assertLogs("logo_cache.service", level="WARNING"):
            self.assertFalse(await service.is_placeholder_icon(globe()))

    async def test_missing_reference_file(self):
        service = LogoService(Settings(placeholder_reference_path="/nonexistent/globe.png"))
        with self.assertLogs("logo_cache.service", level="WARNING"):
            self.assertFalse(await service.is_placeholder_icon(globe()))

    async def test_oversized_buffer_is_not_placeholder(self):
        reference = globe()
        service = LogoService(
            Settings(max_placeholder_bytes=10), placeholder_reference=reference
        )
        self.assertFalse(await service.is_placeholder_icon(reference))

    async def test_garbage_is_not_placeholder(self):
        service = LogoService(Settings(), placeholder_reference=globe())
        self.assertFalse(await service.is_placeholder_icon(b"not an image"))


class TestImageOperations(unittest.IsolatedAsyncioTestCase):
    """Test cached analysis and inversion."""

    async def test_analysis_is_cached(self):
        service = make_service(CountingHandler())
        data = png(color="white")

        first = await service.analyze_brightness(data)
        second = await service.analyze_brightness(data)

        self.assertEqual(first, second)
        self.assertTrue(first.is_light_colored)
        self.assertEqual(service.get_cache_stats().hit_count, 1)

    async def test_analysis_errors_propagate(self):
        service = make_service(CountingHandler())
        with self.assertRaises(ImageAnalysisError):
            await service.analyze_brightness(b"garbage")

    async def test_needs_inversion(self):
        service = make_service(CountingHandler())
        self.assertTrue(await service.needs_inversion(png(color="black"), True))
        self.assertFalse(await service.needs_inversion(png(color="black"), False))

    async def test_invert_is_cached_per_mode(self):
        service = make_service(CountingHandler())
        data = png(color=(0, 0, 0, 100), mode="RGBA")

        preserved = await service.invert(data)
        again = await service.invert(data)
        negated = await service.invert(data, preserve_transparency=False)

        self.assertEqual(preserved, again)
        self.assertNotEqual(preserved, negated)
        self.assertEqual(
            Image.open(BytesIO(preserved)).getpixel((0, 0)), (255, 255, 255, 100)
        )

    async def test_invert_not_cached_under_pressure(self):
        service = make_service(CountingHandler(), rss=75 * MB)
        service.governor.check_memory()
        self.assertEqual(service.governor.state, MemoryHealthState.WARNING)

        await service.invert(png())
        self.assertEqual(service.get_cache_stats().entry_count, 0)

    async def test_memory_health(self):
        service = make_service(CountingHandler(), rss=20 * MB)
        service.governor.check_memory()

        health = service.get_memory_health()
        self.assertEqual(health.state, MemoryHealthState.HEALTHY)
        self.assertEqual(health.rss, 20 * MB)
        self.assertEqual(health.budget, 100 * MB)


if __name__ == "__main__":
    unittest.main()
