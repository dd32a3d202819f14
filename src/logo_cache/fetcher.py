"""Ordered multi-source logo fetching with per-attempt timeouts."""

import asyncio
import logging
import re
import time
from collections.abc import Awaitable, Callable
from typing import NamedTuple
from urllib.parse import urljoin

import httpx
from selectolax.parser import HTMLParser

from .config import Settings
from .domain import get_domain_variants
from .errors import InvalidInputError
from .imaging import CONTENT_TYPES, looks_like_svg, normalize_image
from .models import FetchResult, SourceKind
from .persistence import LogoStore, PersistenceQueue, logo_key

logger = logging.getLogger(__name__)


class LogoSource(NamedTuple):
    """One place a logo can be fetched from."""

    kind: SourceKind
    label: str
    url_template: str

    def url_for(self, domain: str) -> str:
        return self.url_template.format(domain=domain)


PROVIDER_SOURCES: list[LogoSource] = [
    LogoSource(
        SourceKind.GOOGLE,
        "google (hd)",
        "https://www.google.com/s2/favicons?domain={domain}&sz=256",
    ),
    LogoSource(
        SourceKind.CLEARBIT, "clearbit (hd)", "https://logo.clearbit.com/{domain}"
    ),
    LogoSource(
        SourceKind.DUCKDUCKGO,
        "duckduckgo (hd)",
        "https://icons.duckduckgo.com/ip3/{domain}.ico",
    ),
]

# Common fallback locations on the domain itself
FALLBACK_LOCATIONS: list[str] = [
    "/favicon.svg",
    "/logo.svg",
    "/icon.svg",
    "/favicon-512x512.png",
    "/apple-touch-icon.png",
    "/apple-touch-icon-precomposed.png",
    "/favicon.ico",
]

DEFAULT_SOURCES: list[LogoSource] = PROVIDER_SOURCES + [
    LogoSource(SourceKind.DIRECT, f"direct ({path})", "https://{domain}" + path)
    for path in FALLBACK_LOCATIONS
]

# Final URLs providers redirect to when they have no logo for a domain
GENERIC_PLACEHOLDER_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"/faviconV2\?.*&fallback_opts=.*&type=DEFAULT", re.IGNORECASE),
    re.compile(r"/faviconV2\?.*&fallback_opts=.*&type=FAVICON.*&err=1", re.IGNORECASE),
    re.compile(r"/ip3/[^/]+\.ico.*\?v=\d+", re.IGNORECASE),
    re.compile(r"/ip3/[^/]+\.ico\?f=1", re.IGNORECASE),
    re.compile(r"logo\.clearbit\.com/.*\?.*&default", re.IGNORECASE),
]

PERSISTED_KINDS: tuple[SourceKind, ...] = (
    SourceKind.GOOGLE,
    SourceKind.CLEARBIT,
    SourceKind.DUCKDUCKGO,
    SourceKind.DIRECT,
)

ICON_RELS: frozenset[str] = frozenset(
    {"icon", "apple-touch-icon", "apple-touch-icon-precomposed"}
)

# Default headers to avoid bot detection
DEFAULT_HEADERS: dict[str, str] = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/124.0.0.0 Safari/537.36"
    ),
    "Accept": "image/avif,image/webp,image/png,image/svg+xml,image/*;q=0.8,*/*;q=0.5",
}


def is_generic_placeholder_url(url: str) -> bool:
    return any(pattern.search(url) for pattern in GENERIC_PLACEHOLDER_PATTERNS)


def find_icons_in_html(domain: str, html_content: str) -> list[str]:
    """Absolute icon URLs declared by ``<link>`` tags, in document order."""
    base_url = f"https://{domain}/"
    tree = HTMLParser(html_content)
    urls: list[str] = []

    for element in tree.css("link"):
        rel = (element.attributes.get("rel") or "").lower().split()
        if not ICON_RELS.intersection(rel):
            continue

        href = (element.attributes.get("href") or "").strip()
        if not href or href.startswith("data:"):
            continue

        if href.startswith("//"):
            href = f"https:{href}"
        elif not href.startswith("http"):
            href = urljoin(base_url, href)

        if href not in urls:
            urls.append(href)

    return urls


class FailureTracker:
    """Remembers which domains and sources keep failing.

    A source that has failed for few domains is probably fine and the failure
    is logged at debug level. Once it fails for ``warning_threshold`` distinct
    domains its failures are logged as warnings. A domain that exhausted every
    source ``max_domain_failures`` times in a row is skipped until the
    cooldown passes.
    """

    def __init__(
        self,
        warning_threshold: int = 5,
        max_domain_failures: int = 3,
        cooldown_seconds: float = 24 * 60 * 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.warning_threshold = warning_threshold
        self.max_domain_failures = max_domain_failures
        self.cooldown_seconds = cooldown_seconds
        self.clock = clock
        self._source_failures: dict[str, set[str]] = {}
        self._domain_failures: dict[str, tuple[int, float]] = {}

    def record_source_failure(self, source: LogoSource, domain: str) -> int:
        """Record a failed attempt and return the log level to report it at."""
        domains = self._source_failures.setdefault(source.label, set())
        domains.add(domain)
        if len(domains) >= self.warning_threshold:
            return logging.WARNING
        return logging.DEBUG

    def failing_domain_count(self, source: LogoSource) -> int:
        return len(self._source_failures.get(source.label, ()))

    def record_domain_failure(self, domain: str) -> None:
        count, _ = self._domain_failures.get(domain, (0, 0.0))
        self._domain_failures[domain] = (count + 1, self.clock())

    def record_domain_success(self, domain: str) -> None:
        self._domain_failures.pop(domain, None)

    def should_skip(self, domain: str) -> bool:
        count, last_failure = self._domain_failures.get(domain, (0, 0.0))
        if count < self.max_domain_failures:
            return False
        if self.clock() - last_failure >= self.cooldown_seconds:
            self._domain_failures.pop(domain, None)
            return False
        return True


class LogoFetcher:
    """Tries each configured source in order and returns the first usable logo.

    Every attempt has its own timeout. Failures of individual attempts are
    collected so the final error names all of them. Successful fetches are
    handed to the persistence queue without waiting for the write.
    """

    def __init__(
        self,
        settings: Settings,
        sources: list[LogoSource] | None = None,
        store: LogoStore | None = None,
        persistence: PersistenceQueue | None = None,
        validator: Callable[[bytes], Awaitable[bool]] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        tracker: FailureTracker | None = None,
    ):
        self.settings = settings
        self.sources = list(DEFAULT_SOURCES if sources is None else sources)
        self.store = store
        self.persistence = persistence
        self.validator = validator
        self.transport = transport
        self.tracker = tracker or FailureTracker(
            warning_threshold=settings.failure_warning_threshold,
            max_domain_failures=settings.max_domain_failures,
            cooldown_seconds=settings.domain_failure_cooldown_seconds,
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            headers=DEFAULT_HEADERS,
            timeout=self.settings.fetch_timeout,
            follow_redirects=True,
            transport=self.transport,
        )

    async def fetch(self, domain: str) -> FetchResult:
        """Fetch a logo for an already-normalized domain.

        Never raises for network or decode problems; those end up in the
        ``error`` of the returned result.

        Raises:
            InvalidInputError: when ``domain`` is empty.
        """
        if not domain or not domain.strip():
            raise InvalidInputError("Domain is required")

        if self.tracker.should_skip(domain):
            logger.debug(f"Domain {domain} has failed too many times, skipping")
            return FetchResult.failure(
                domain,
                f"Skipped {domain}: failed {self.settings.max_domain_failures} "
                "times in a row, retrying after cooldown",
            )

        persisted = await self._read_persisted(domain)
        if persisted is not None:
            return persisted

        attempts: list[str] = []
        async with self._client() as client:
            for variant in get_domain_variants(domain):
                for source in self.sources:
                    result = await self._try_source(
                        client, domain, source, source.url_for(variant), attempts
                    )
                    if result is not None:
                        return self._succeeded(result)

            if self.settings.html_discovery:
                for url in await self._discover_html_icons(client, domain, attempts):
                    source = LogoSource(SourceKind.DIRECT, f"direct ({url})", url)
                    result = await self._try_source(client, domain, source, url, attempts)
                    if result is not None:
                        return self._succeeded(result)

        self.tracker.record_domain_failure(domain)
        error = f"Failed to fetch logo for {domain} from all sources: " + "; ".join(
            attempts
        )
        logger.info(error)
        return FetchResult.failure(domain, error)

    def _succeeded(self, result: FetchResult) -> FetchResult:
        self.tracker.record_domain_success(result.key)
        logger.info(f"Fetched logo for {result.key} from {result.url}")
        if self.persistence is not None:
            self.persistence.submit(logo_key(result.key, result.source.value), result.buffer)
        return result

    async def _read_persisted(self, domain: str) -> FetchResult | None:
        if self.store is None:
            return None
        for kind in PERSISTED_KINDS:
            try:
                data = await self.store.read(logo_key(domain, kind.value))
            except OSError as e:
                logger.warning(f"Failed to read stored logo for {domain}: {e}")
                return None
            if data:
                logger.debug(f"Using stored {kind.value} logo for {domain}")
                content_type = CONTENT_TYPES["svg" if looks_like_svg(data) else "png"]
                return FetchResult.success(domain, kind, data, content_type)
        return None

    async def _try_source(
        self,
        client: httpx.AsyncClient,
        domain: str,
        source: LogoSource,
        url: str,
        attempts: list[str],
    ) -> FetchResult | None:
        timeout = self.settings.fetch_timeout
        reason = None
        try:
            logger.debug(f"Trying {source.label} for {domain}: {url}")
            response = await client.get(url, timeout=timeout)
        except httpx.TimeoutException:
            reason = f"timed out after {timeout}s"
        except httpx.HTTPError as e:
            reason = f"{e.__class__.__name__}: {e}"
        else:
            if not response.is_success:
                reason = f"HTTP {response.status_code}"
            elif not response.content:
                reason = "empty response"
            elif is_generic_placeholder_url(str(response.url)):
                reason = "redirected to a generic placeholder"

        if reason is None:
            image = await asyncio.to_thread(
                normalize_image,
                response.content,
                response.headers.get("Content-Type", ""),
            )
            min_size = self.settings.min_logo_size
            if not image.is_image:
                reason = "not an image"
            elif 0 < min(image.width, image.height) < min_size:
                reason = f"too small ({image.width}x{image.height})"
            elif self.validator is not None and await self.validator(image.buffer):
                reason = "placeholder icon"
            else:
                return FetchResult.success(
                    domain,
                    source.kind,
                    image.buffer,
                    image.content_type,
                    str(response.url),
                )

        attempts.append(f"{source.label}: {reason}")
        level = self.tracker.record_source_failure(source, domain)
        logger.log(level, f"{source.label} failed for {domain}: {reason}")
        return None

    async def _discover_html_icons(
        self, client: httpx.AsyncClient, domain: str, attempts: list[str]
    ) -> list[str]:
        url = f"https://{domain}/"
        try:
            response = await client.get(url, timeout=self.settings.fetch_timeout)
            response.raise_for_status()
        except httpx.HTTPError as e:
            attempts.append(f"html ({url}): {e.__class__.__name__}")
            logger.debug(f"Failed to fetch HTML for {domain}: {e}")
            return []

        tried = {source.url_for(domain) for source in self.sources}
        return [
            icon_url
            for icon_url in find_icons_in_html(domain, response.text)
            if icon_url not in tried
        ]
