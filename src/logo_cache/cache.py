"""Namespaced in-memory TTL cache with memory-pressure admission control."""

import logging
import sys
import threading
import time
from collections.abc import Callable, Mapping
from enum import Enum
from typing import Any, NamedTuple, Protocol

from .config import Settings
from .models import (
    BrightnessAnalysis,
    CacheStats,
    FetchResult,
    InvertedLogo,
    MemoryHealthState,
    ValidationVerdict,
)

logger = logging.getLogger(__name__)


class CacheNamespace(str, Enum):
    FETCH = "logo-fetch"
    VALIDATION = "logo-validation"
    ANALYSIS = "logo-analysis"
    INVERTED = "logo-inverted"


class CacheEntry(NamedTuple):
    value: Any
    inserted_at: float
    ttl: float
    size: int

    def is_expired(self, now: float) -> bool:
        return now - self.inserted_at >= self.ttl


class AdmissionPolicy(Protocol):
    """What the cache needs from the memory governor."""

    @property
    def state(self) -> MemoryHealthState: ...

    def consider_eviction(self) -> None: ...


def estimate_size(value: Any) -> int:
    """Rough retained size of a cached value, dominated by image buffers."""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return len(value)
    buffer = getattr(value, "buffer", None)
    if isinstance(buffer, (bytes, bytearray)):
        return len(buffer) + sys.getsizeof(value)
    return sys.getsizeof(value)


def _owned(value: Any) -> Any:
    # Mutable buffers are copied so callers cannot alter what the cache holds
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    return value


class CacheHierarchy:
    """Four logical namespaces over one store, with per-entry TTLs.

    Writes are refused while the governor reports ``critical``. Under
    ``warning`` they are admitted and the governor is asked to shed old
    entries.
    """

    def __init__(
        self,
        ttls: Mapping[CacheNamespace, float],
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttls = dict(ttls)
        self.clock = clock
        self.admission: AdmissionPolicy | None = None
        self._stores: dict[CacheNamespace, dict[str, CacheEntry]] = {
            namespace: {} for namespace in CacheNamespace
        }
        self._hits = 0
        self._misses = 0
        self._lock = threading.RLock()

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "CacheHierarchy":
        ttls = {
            CacheNamespace.FETCH: settings.fetch_success_ttl_seconds,
            CacheNamespace.VALIDATION: settings.validation_ttl_seconds,
            CacheNamespace.ANALYSIS: settings.analysis_ttl_seconds,
            CacheNamespace.INVERTED: settings.inverted_ttl_seconds,
        }
        return cls(ttls, **kwargs)

    def get(self, namespace: CacheNamespace, key: str) -> Any | None:
        with self._lock:
            store = self._stores[namespace]
            entry = store.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.is_expired(self.clock()):
                del store[key]
                self._misses += 1
                return None
            self._hits += 1
            return entry.value

    def set(
        self,
        namespace: CacheNamespace,
        key: str,
        value: Any,
        ttl: float | None = None,
    ) -> bool:
        """Store a value; returns False when memory pressure refused the write."""
        state = self.admission.state if self.admission else MemoryHealthState.HEALTHY
        if state is MemoryHealthState.CRITICAL:
            logger.debug(f"Refusing {namespace.value} write for {key}: memory critical")
            return False

        value = _owned(value)
        entry = CacheEntry(
            value=value,
            inserted_at=self.clock(),
            ttl=self.ttls[namespace] if ttl is None else ttl,
            size=estimate_size(value),
        )
        # Eviction only considers entries older than this write
        if state is MemoryHealthState.WARNING and self.admission:
            self.admission.consider_eviction()

        with self._lock:
            self._stores[namespace][key] = entry
        return True

    def delete(self, namespace: CacheNamespace, key: str) -> bool:
        with self._lock:
            return self._stores[namespace].pop(key, None) is not None

    def clear(self, namespace: CacheNamespace | None = None) -> int:
        """Drop every entry of one namespace, or of all of them."""
        namespaces = list(CacheNamespace) if namespace is None else [namespace]
        with self._lock:
            removed = 0
            for ns in namespaces:
                removed += len(self._stores[ns])
                self._stores[ns].clear()
        logger.debug(f"Cleared {removed} cache entries")
        return removed

    def purge_expired(self) -> int:
        now = self.clock()
        removed = 0
        with self._lock:
            for store in self._stores.values():
                expired = [key for key, entry in store.items() if entry.is_expired(now)]
                for key in expired:
                    del store[key]
                removed += len(expired)
        return removed

    def namespace_sizes(self) -> dict[CacheNamespace, int]:
        with self._lock:
            return {
                namespace: sum(entry.size for entry in store.values())
                for namespace, store in self._stores.items()
            }

    def largest_namespace(self) -> CacheNamespace | None:
        sizes = self.namespace_sizes()
        namespace, size = max(sizes.items(), key=lambda item: item[1])
        return namespace if size > 0 else None

    def evict_oldest(self, namespace: CacheNamespace, fraction: float = 0.25) -> int:
        """Evict the oldest share of a namespace, larger entries first on ties."""
        with self._lock:
            store = self._stores[namespace]
            count = int(len(store) * fraction) or min(len(store), 1)
            victims = sorted(
                store.items(), key=lambda item: (item[1].inserted_at, -item[1].size)
            )[:count]
            for key, _ in victims:
                del store[key]
        if victims:
            logger.info(f"Evicted {len(victims)} entries from {namespace.value}")
        return len(victims)

    def stats(self) -> CacheStats:
        with self._lock:
            entries = sum(len(store) for store in self._stores.values())
            total = sum(
                entry.size for store in self._stores.values() for entry in store.values()
            )
            return CacheStats(entries, self._hits, self._misses, total)

    # --- Typed accessors ---

    def get_logo_fetch(self, domain: str) -> FetchResult | None:
        return self.get(CacheNamespace.FETCH, domain)

    def set_logo_fetch(
        self, domain: str, result: FetchResult, failure_ttl: float | None = None
    ) -> bool:
        ttl = None if result.ok else failure_ttl
        return self.set(CacheNamespace.FETCH, domain, result, ttl=ttl)

    def clear_logo_fetch(self, domain: str) -> bool:
        return self.delete(CacheNamespace.FETCH, domain)

    def get_logo_validation(self, image_hash: str) -> ValidationVerdict | None:
        return self.get(CacheNamespace.VALIDATION, image_hash)

    def set_logo_validation(self, image_hash: str, is_placeholder: bool) -> bool:
        verdict = ValidationVerdict(image_hash, is_placeholder, time.time())
        return self.set(CacheNamespace.VALIDATION, image_hash, verdict)

    def get_logo_analysis(self, key: str) -> BrightnessAnalysis | None:
        return self.get(CacheNamespace.ANALYSIS, key)

    def set_logo_analysis(self, key: str, analysis: BrightnessAnalysis) -> bool:
        return self.set(CacheNamespace.ANALYSIS, key, analysis)

    def get_inverted_logo(self, key: str) -> InvertedLogo | None:
        return self.get(CacheNamespace.INVERTED, key)

    def set_inverted_logo(self, key: str, logo: InvertedLogo) -> bool:
        return self.set(CacheNamespace.INVERTED, key, logo)
