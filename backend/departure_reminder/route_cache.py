"""
Route cache and rate limiter for the routing backend.

Cache keys round origin and destination to 3 decimals (~110 m) and the
target arrival time down to a 5-minute boundary, so near-repeat queries hit.

The rate limiter keeps a single "last outbound call" watermark. Every caller
waits until watermark + 1.2 s before issuing a new call (~50 req/min quota).
"""

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Awaitable

from common.geo import Coordinates
from .models import RouteResult

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def make_cache_key(origin: Coordinates, destination: Coordinates, target_arrival: datetime) -> str:
    """Build the cache key for a route query."""
    if target_arrival.tzinfo is not None:
        target_arrival = target_arrival.astimezone(timezone.utc)
    bucket = target_arrival.replace(
        minute=(target_arrival.minute // 5) * 5, second=0, microsecond=0
    )
    return (
        f"{origin.latitude:.3f},{origin.longitude:.3f}|"
        f"{destination.latitude:.3f},{destination.longitude:.3f}|"
        f"{bucket.isoformat()}"
    )


@dataclass(frozen=True)
class _CacheEntry:
    result: RouteResult
    cached_at: datetime
    expires_at: datetime


class RouteCache:
    """TTL cache of route results. Expired entries are evicted lazily."""

    TTL = timedelta(minutes=5)

    def __init__(self, ttl: Optional[timedelta] = None, clock: Callable[[], datetime] = _utc_now):
        self.ttl = ttl or self.TTL
        self._clock = clock
        self._entries: Dict[str, _CacheEntry] = {}

    def get(self, key: str) -> Optional[RouteResult]:
        """Return the cached result marked `is_cached=True`, or None."""
        entry = self._entries.get(key)
        if entry is None:
            return None

        if self._clock() > entry.expires_at:
            del self._entries[key]
            return None

        return replace(entry.result, is_cached=True, cached_at=entry.cached_at)

    def put(self, key: str, result: RouteResult) -> None:
        now = self._clock()
        self._entries[key] = _CacheEntry(
            result=replace(result, is_cached=False, cached_at=None),
            cached_at=now,
            expires_at=now + self.ttl,
        )
        self.sweep()

    def sweep(self) -> int:
        """Drop every expired entry. Returns how many were removed."""
        now = self._clock()
        expired = [k for k, entry in self._entries.items() if now > entry.expires_at]
        for k in expired:
            del self._entries[k]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> dict:
        return {"size": len(self._entries), "keys": list(self._entries.keys())}


class RateLimitAborted(Exception):
    """Raised when a rate-limit wait is cut short by the abort signal."""


class RateLimiter:
    """
    Cooperative, process-wide throttle for outbound routing calls.

    Args:
        min_interval_s: Minimum spacing between two outbound calls
        clock: Monotonic clock in seconds
        sleep: Coroutine used to wait (injected by tests)
    """

    MIN_INTERVAL_S = 1.2

    def __init__(
        self,
        min_interval_s: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.min_interval_s = self.MIN_INTERVAL_S if min_interval_s is None else min_interval_s
        self._clock = clock
        self._sleep = sleep
        self._last_call: Optional[float] = None
        self._lock = asyncio.Lock()

    @property
    def last_call(self) -> Optional[float]:
        return self._last_call

    async def acquire(self, abort: Optional[asyncio.Event] = None) -> None:
        """
        Wait until a new outbound call is allowed, then claim the slot.

        Args:
            abort: Optional event; when set during the wait, the wait ends
                with RateLimitAborted instead of claiming the slot.
        """
        async with self._lock:
            if self._last_call is not None:
                wait_s = self._last_call + self.min_interval_s - self._clock()
                if wait_s > 0:
                    logger.debug(f"[DEPARTURE] Rate limit: waiting {wait_s:.2f}s")
                    await self._wait(wait_s, abort)
            if abort is not None and abort.is_set():
                raise RateLimitAborted("rate limit wait aborted")
            self._last_call = self._clock()

    async def _wait(self, wait_s: float, abort: Optional[asyncio.Event]) -> None:
        if abort is None:
            await self._sleep(wait_s)
            return

        sleeper = asyncio.ensure_future(self._sleep(wait_s))
        aborter = asyncio.ensure_future(abort.wait())
        try:
            await asyncio.wait({sleeper, aborter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, aborter):
                if not task.done():
                    task.cancel()
