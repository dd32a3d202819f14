import unittest
from unittest.mock import MagicMock

from logo_cache.cache import CacheHierarchy, CacheNamespace
from logo_cache.config import Settings
from logo_cache.memory import MemoryGovernor
from logo_cache.models import FetchResult, InvertedLogo, MemoryHealthState, SourceKind


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def make_cache(clock=None) -> CacheHierarchy:
    ttls = {namespace: 100 for namespace in CacheNamespace}
    return CacheHierarchy(ttls, clock=clock or FakeClock())


class TestCacheHierarchy(unittest.TestCase):
    """Test namespaced TTL storage and statistics."""

    def test_get_after_set(self):
        cache = make_cache()
        self.assertTrue(cache.set(CacheNamespace.ANALYSIS, "k", "value"))
        self.assertEqual(cache.get(CacheNamespace.ANALYSIS, "k"), "value")

    def test_namespaces_are_isolated(self):
        cache = make_cache()
        cache.set(CacheNamespace.ANALYSIS, "k", "analysis")
        self.assertIsNone(cache.get(CacheNamespace.INVERTED, "k"))

    def test_expiry(self):
        """Test that an entry is gone once its TTL has elapsed."""
        clock = FakeClock()
        cache = make_cache(clock)
        cache.set(CacheNamespace.VALIDATION, "k", True, ttl=10)

        clock.now += 9
        self.assertTrue(cache.get(CacheNamespace.VALIDATION, "k"))
        clock.now += 1
        self.assertIsNone(cache.get(CacheNamespace.VALIDATION, "k"))
        self.assertEqual(cache.stats().entry_count, 0)

    def test_purge_expired(self):
        clock = FakeClock()
        cache = make_cache(clock)
        cache.set(CacheNamespace.ANALYSIS, "old", 1, ttl=5)
        cache.set(CacheNamespace.ANALYSIS, "new", 2, ttl=50)
        clock.now += 10
        self.assertEqual(cache.purge_expired(), 1)
        self.assertEqual(cache.get(CacheNamespace.ANALYSIS, "new"), 2)

    def test_stats(self):
        cache = make_cache()
        cache.set(CacheNamespace.INVERTED, "a", b"x" * 100)
        cache.get(CacheNamespace.INVERTED, "a")
        cache.get(CacheNamespace.INVERTED, "b")

        stats = cache.stats()
        self.assertEqual(stats.entry_count, 1)
        self.assertEqual(stats.hit_count, 1)
        self.assertEqual(stats.miss_count, 1)
        self.assertEqual(stats.total_bytes, 100)
        self.assertEqual(stats.hit_rate, 0.5)

    def test_mutable_buffers_are_copied(self):
        cache = make_cache()
        data = bytearray(b"abc")
        cache.set(CacheNamespace.INVERTED, "k", data)
        data[0] = ord("z")
        self.assertEqual(cache.get(CacheNamespace.INVERTED, "k"), b"abc")

    def test_clear_single_namespace(self):
        cache = make_cache()
        cache.set(CacheNamespace.ANALYSIS, "a", 1)
        cache.set(CacheNamespace.INVERTED, "b", b"1")
        self.assertEqual(cache.clear(CacheNamespace.ANALYSIS), 1)
        self.assertIsNone(cache.get(CacheNamespace.ANALYSIS, "a"))
        self.assertEqual(cache.get(CacheNamespace.INVERTED, "b"), b"1")

    def test_largest_namespace_and_eviction(self):
        clock = FakeClock()
        cache = make_cache(clock)
        self.assertIsNone(cache.largest_namespace())
        for i in range(8):
            clock.now += 1
            cache.set(CacheNamespace.INVERTED, f"k{i}", b"x" * 1000)
        cache.set(CacheNamespace.ANALYSIS, "small", 1)

        self.assertEqual(cache.largest_namespace(), CacheNamespace.INVERTED)
        self.assertEqual(cache.evict_oldest(CacheNamespace.INVERTED, 0.25), 2)
        self.assertIsNone(cache.get(CacheNamespace.INVERTED, "k0"))
        self.assertIsNone(cache.get(CacheNamespace.INVERTED, "k1"))
        self.assertIsNotNone(cache.get(CacheNamespace.INVERTED, "k2"))


class TestCacheAdmission(unittest.TestCase):
    """Test how memory pressure affects writes."""

    def test_critical_refuses_writes(self):
        cache = make_cache()
        cache.admission = MagicMock(state=MemoryHealthState.CRITICAL)
        self.assertFalse(cache.set(CacheNamespace.ANALYSIS, "k", 1))
        self.assertIsNone(cache.get(CacheNamespace.ANALYSIS, "k"))

    def test_warning_admits_and_requests_eviction(self):
        cache = make_cache()
        cache.admission = MagicMock(state=MemoryHealthState.WARNING)
        self.assertTrue(cache.set(CacheNamespace.ANALYSIS, "k", 1))
        self.assertEqual(cache.get(CacheNamespace.ANALYSIS, "k"), 1)
        cache.admission.consider_eviction.assert_called_once()

    def test_healthy_admits_without_eviction(self):
        cache = make_cache()
        cache.admission = MagicMock(state=MemoryHealthState.HEALTHY)
        self.assertTrue(cache.set(CacheNamespace.ANALYSIS, "k", 1))
        cache.admission.consider_eviction.assert_not_called()


class TestCacheWithGovernor(unittest.TestCase):
    """Test the cache wired to a real memory governor."""

    def make(self, rss: int):
        settings = Settings(memory_budget_bytes=1000)
        cache = CacheHierarchy.from_settings(settings)
        governor = MemoryGovernor(settings, cache=cache, sampler=lambda: rss)
        cache.admission = governor
        governor.check_memory()
        return cache, governor

    def test_write_under_warning_survives_its_own_eviction(self):
        cache, governor = self.make(rss=800)
        self.assertEqual(governor.state, MemoryHealthState.WARNING)

        self.assertTrue(cache.set(CacheNamespace.FETCH, "example.com", b"x" * 100))
        self.assertEqual(cache.get(CacheNamespace.FETCH, "example.com"), b"x" * 100)

    def test_warning_evicts_older_entries(self):
        cache, governor = self.make(rss=100)
        for i in range(4):
            cache.set(CacheNamespace.INVERTED, f"old{i}", b"x" * 100)

        governor.sampler = lambda: 800
        governor.check_memory()
        self.assertTrue(cache.set(CacheNamespace.INVERTED, "new", b"y" * 100))

        self.assertIsNone(cache.get(CacheNamespace.INVERTED, "old0"))
        self.assertIsNotNone(cache.get(CacheNamespace.INVERTED, "old1"))
        self.assertEqual(cache.get(CacheNamespace.INVERTED, "new"), b"y" * 100)

    def test_critical_refuses_writes(self):
        cache, governor = self.make(rss=950)
        self.assertFalse(cache.set(CacheNamespace.ANALYSIS, "k", 1))
        self.assertIsNone(cache.get(CacheNamespace.ANALYSIS, "k"))


class TestTypedAccessors(unittest.TestCase):
    """Test the typed accessors and per-result TTLs."""

    def test_failure_results_use_failure_ttl(self):
        clock = FakeClock()
        settings = Settings(fetch_success_ttl_seconds=100, fetch_failure_ttl_seconds=10)
        cache = CacheHierarchy.from_settings(settings, clock=clock)

        ok = FetchResult.success("a.com", SourceKind.GOOGLE, b"png", "image/png")
        failed = FetchResult.failure("b.com", "nope")
        cache.set_logo_fetch("a.com", ok, failure_ttl=10)
        cache.set_logo_fetch("b.com", failed, failure_ttl=10)

        clock.now += 50
        self.assertEqual(cache.get_logo_fetch("a.com"), ok)
        self.assertIsNone(cache.get_logo_fetch("b.com"))

    def test_validation_and_inverted(self):
        cache = make_cache()
        cache.set_logo_validation("hash", True)
        self.assertTrue(cache.get_logo_validation("hash").is_placeholder)

        cache.set_inverted_logo("key", InvertedLogo(b"inverted"))
        self.assertEqual(cache.get_inverted_logo("key").buffer, b"inverted")
        self.assertFalse(cache.clear_logo_fetch("missing"))


if __name__ == "__main__":
    unittest.main()
