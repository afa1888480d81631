from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Optional


class TokenBucket:
    """Token bucket admitting `rate` actions per second, bursting to `capacity`.

    Safe for any number of concurrent waiters on one event loop; waiters are
    served in arrival order.
    """

    def __init__(
        self,
        rate: float,
        capacity: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if rate <= 0:
            raise ValueError(f"rate must be positive, got {rate!r}")
        self.rate = float(rate)
        self.capacity = float(capacity if capacity is not None else rate)
        if self.capacity < 1.0:
            raise ValueError(f"capacity must be at least 1, got {self.capacity!r}")
        self._clock = clock
        self._sleep = sleep
        self._tokens = self.capacity
        self._last = clock()
        self._lock: Optional[asyncio.Lock] = None

    def _refill(self) -> None:
        now = self._clock()
        self._tokens = min(self.capacity, self._tokens + (now - self._last) * self.rate)
        self._last = now

    def try_acquire(self) -> bool:
        self._refill()
        if self._tokens < 1.0:
            return False
        self._tokens -= 1.0
        return True

    async def acquire(self) -> None:
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            while not self.try_acquire():
                await self._sleep((1.0 - self._tokens) / self.rate)


class PermitPool:
    """Counting semaphore that also tracks how many permits are held."""

    def __init__(self, size: int):
        if size <= 0:
            raise ValueError(f"size must be positive, got {size!r}")
        self.size = size
        self.in_use = 0
        self.peak = 0
        self._sem: Optional[asyncio.Semaphore] = None

    async def __aenter__(self) -> "PermitPool":
        if self._sem is None:
            self._sem = asyncio.Semaphore(self.size)
        await self._sem.acquire()
        self.in_use += 1
        self.peak = max(self.peak, self.in_use)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.in_use -= 1
        assert self._sem is not None
        self._sem.release()
