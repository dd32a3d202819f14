"""Collapse concurrent requests for the same key into one execution."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from .errors import CoalescerFullError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_IN_FLIGHT = 1000


def _mark_retrieved(future: asyncio.Future) -> None:
    # A settled future may have no waiters left to retrieve its exception
    if not future.cancelled():
        future.exception()


class RequestCoalescer:
    """At most one in-flight producer per key; later callers share its outcome.

    The table is only touched from the event loop, and nothing is awaited
    between the lookup and the insert, so insert-if-absent is atomic. An entry
    is removed in the same step that settles its future, so a request arriving
    after settlement always starts a new execution.

    If the caller running the producer is cancelled, waiters that were not
    cancelled themselves retry, and one of them runs the producer again.
    """

    def __init__(self, max_in_flight: int = DEFAULT_MAX_IN_FLIGHT):
        self.max_in_flight = max_in_flight
        self._in_flight: dict[str, asyncio.Future[Any]] = {}

    def __len__(self) -> int:
        return len(self._in_flight)

    def is_in_flight(self, key: str) -> bool:
        return key in self._in_flight

    async def run_exclusive(self, key: str, producer: Callable[[], Awaitable[T]]) -> T:
        existing = self._in_flight.get(key)
        while existing is not None:
            logger.debug(f"Joining in-flight request for {key}")
            try:
                return await asyncio.shield(existing)
            except asyncio.CancelledError:
                if not existing.cancelled():
                    raise
            logger.debug(f"In-flight request for {key} was cancelled, retrying")
            existing = self._in_flight.get(key)

        if len(self._in_flight) >= self.max_in_flight:
            logger.warning(
                f"In-flight limit of {self.max_in_flight} reached, rejecting {key}"
            )
            raise CoalescerFullError(key, self.max_in_flight)

        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        future.add_done_callback(_mark_retrieved)
        self._in_flight[key] = future

        try:
            result = await producer()
        except asyncio.CancelledError:
            self._in_flight.pop(key, None)
            future.cancel()
            raise
        except Exception as e:
            self._in_flight.pop(key, None)
            future.set_exception(e)
            raise

        self._in_flight.pop(key, None)
        future.set_result(result)
        return result
