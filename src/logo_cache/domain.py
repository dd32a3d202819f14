"""Turn free-form company names and URLs into stable cache keys."""

import logging
import re
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

WHITESPACE_REGEX: re.Pattern[str] = re.compile(r"\s+")

# Two-label public suffixes treated as a single TLD when finding root domains
COMPLEX_TLDS: frozenset[str] = frozenset(
    {
        "co.uk", "org.uk", "gov.uk", "ac.uk",
        "com.au", "net.au", "org.au", "gov.au", "edu.au",
        "com.br", "net.br", "org.br", "gov.br", "edu.br",
        "co.jp", "ac.jp", "or.jp", "ne.jp", "gr.jp",
        "co.nz", "net.nz", "org.nz", "ac.nz",
        "co.in", "net.in", "org.in", "gov.in", "edu.in", "ac.in",
        "com.cn", "net.cn", "gov.cn", "edu.cn",
        "co.za", "ac.za", "com.mx", "edu.mx",
    }
)


def _strip_www(host: str) -> str:
    while host.startswith("www."):
        host = host[len("www."):]
    return host


def _company_key(value: str) -> str:
    return WHITESPACE_REGEX.sub("", value.lower())


def normalize_domain(value: str) -> str:
    """Map a URL, bare host or company name to a canonical lowercase key.

    Inputs that look like URLs (a scheme separator or a leading ``www.``) are
    parsed and reduced to their host without ``www.``; anything else, and any
    URL that fails to parse, is lowercased with all whitespace removed. The
    function never raises and is idempotent.
    """
    compact = _company_key(value or "")
    if not compact:
        return ""

    if "://" in compact or compact.startswith("www."):
        url = compact if compact.startswith("http") else f"https://{compact}"
        try:
            host = urlparse(url).hostname
        except ValueError as e:
            logger.debug(f"Could not parse {value!r} as a URL: {e}")
            host = None
        if host:
            key = _company_key(_strip_www(host))
            if key:
                return key

    return compact


def get_root_domain(domain: str) -> str:
    """Return the registrable domain, e.g. ``docs.example.co.uk`` -> ``example.co.uk``."""
    parts = domain.lower().split(".")
    if len(parts) < 2:
        return domain

    tld_labels = 1
    if len(parts) >= 3 and ".".join(parts[-2:]) in COMPLEX_TLDS:
        tld_labels = 2

    if len(parts) <= tld_labels:
        return domain
    return ".".join(parts[-(tld_labels + 1):])


def get_domain_variants(domain: str) -> list[str]:
    """Domains to try in order: the key itself, then its root domain."""
    variants = [domain]
    if domain.count(".") > 1:
        root = get_root_domain(domain)
        if root and root != domain:
            variants.append(root)
    return variants
