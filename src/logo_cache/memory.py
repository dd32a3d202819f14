"""Process memory sampling and pressure classification."""

import asyncio
import gc
import logging
import time
from collections import deque
from collections.abc import Callable

import psutil

from .config import Settings
from .models import MemoryHealth, MemoryHealthState, MemorySample, MemoryTrend

logger = logging.getLogger(__name__)

# Relative RSS change across the trend window that counts as a trend
TREND_THRESHOLD = 0.1
EVICTION_FRACTION = 0.25


def process_rss() -> int:
    """Resident set size of the current process in bytes."""
    return psutil.Process().memory_info().rss


class MemoryGovernor:
    """Samples RSS periodically and turns it into a health state.

    ``state`` is a plain attribute so readers never block. Sampling errors are
    logged and leave the previous state in place.
    """

    def __init__(
        self,
        settings: Settings,
        cache=None,
        sampler: Callable[[], int] = process_rss,
    ):
        self.settings = settings
        self.cache = cache
        self.sampler = sampler
        self.state = MemoryHealthState.HEALTHY
        self._history: deque[MemorySample] = deque(maxlen=settings.memory_history_size)
        self._eviction_requested = False
        self._task: asyncio.Task | None = None

    @property
    def warning_threshold(self) -> int:
        return self.settings.warning_threshold_bytes

    @property
    def critical_threshold(self) -> int:
        return self.settings.critical_threshold_bytes

    def classify(self, rss: int) -> MemoryHealthState:
        if rss >= self.critical_threshold:
            return MemoryHealthState.CRITICAL
        if rss >= self.warning_threshold:
            return MemoryHealthState.WARNING
        return MemoryHealthState.HEALTHY

    def check_memory(self) -> MemoryHealthState:
        """Take one sample and update the state."""
        try:
            rss = int(self.sampler())
        except Exception:
            logger.exception("Memory sampling failed")
            return self.state

        self._history.append(MemorySample(time.time(), rss))
        previous, self.state = self.state, self.classify(rss)
        self._eviction_requested = False

        if self.state is not previous:
            level = (
                logging.INFO
                if self.state is MemoryHealthState.HEALTHY
                else logging.WARNING
            )
            logger.log(
                level,
                f"Memory {previous.value} -> {self.state.value}: "
                f"RSS {rss / 1024**2:.0f}MB of {self.settings.memory_budget_bytes / 1024**2:.0f}MB budget",
            )
            if self.state is MemoryHealthState.CRITICAL:
                self.emergency_cleanup()

        return self.state

    def history(self) -> list[MemorySample]:
        return list(self._history)

    def trend(self) -> MemoryTrend:
        """Least-squares slope of the most recent samples.

        The slope is scaled to the total change across the window relative to
        the mean RSS. Fewer than two samples is stable.
        """
        samples = [s.rss for s in self._history][-self.settings.memory_trend_window:]
        n = len(samples)
        if n < 2:
            return MemoryTrend.STABLE

        mean_x = (n - 1) / 2
        mean_y = sum(samples) / n
        if mean_y <= 0:
            return MemoryTrend.STABLE

        covariance = sum((i - mean_x) * (y - mean_y) for i, y in enumerate(samples))
        variance = sum((i - mean_x) ** 2 for i in range(n))
        relative_change = (covariance / variance) * (n - 1) / mean_y

        if relative_change > TREND_THRESHOLD:
            return MemoryTrend.INCREASING
        if relative_change < -TREND_THRESHOLD:
            return MemoryTrend.DECREASING
        return MemoryTrend.STABLE

    def should_accept_new_requests(self) -> bool:
        return self.state is not MemoryHealthState.CRITICAL

    def should_allow_image_operations(self) -> bool:
        return self.state is MemoryHealthState.HEALTHY

    def consider_eviction(self) -> None:
        """Shed the oldest entries of the largest namespace, once per sample."""
        if self.cache is None or self._eviction_requested:
            return
        if self.state is not MemoryHealthState.WARNING:
            return
        self._eviction_requested = True
        namespace = self.cache.largest_namespace()
        if namespace is not None:
            self.cache.evict_oldest(namespace, EVICTION_FRACTION)

    def emergency_cleanup(self) -> None:
        """Clear the largest cache namespace and collect garbage. Never raises."""
        try:
            if self.cache is not None:
                namespace = self.cache.largest_namespace()
                if namespace is not None:
                    removed = self.cache.clear(namespace)
                    logger.warning(
                        f"Emergency cleanup dropped {removed} entries from {namespace.value}"
                    )
            gc.collect()
        except Exception:
            logger.exception("Emergency memory cleanup failed")

    def health(self) -> MemoryHealth:
        rss = self._history[-1].rss if self._history else 0
        return MemoryHealth(
            state=self.state,
            trend=self.trend(),
            rss=rss,
            budget=self.settings.memory_budget_bytes,
            warning_threshold=self.warning_threshold,
            critical_threshold=self.critical_threshold,
            accepts_requests=self.should_accept_new_requests(),
            cache=self.cache.stats() if self.cache is not None else None,
        )

    async def _run(self) -> None:
        interval = self.settings.memory_sample_interval_seconds
        while True:
            self.check_memory()
            await asyncio.sleep(interval)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
