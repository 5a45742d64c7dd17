"""Token-bucket rate limiter shared by every generation call."""

import asyncio
import time
from typing import Awaitable, Callable

from loguru import logger


class TokenBucket:
    """Counting semaphore with continuous time-based refill.

    Waiters queue on an internal lock, so permits are granted in arrival
    order and a burst larger than the bucket simply waits for refill.
    """

    def __init__(
        self,
        capacity: int = 2000,
        refill_per_second: float = 2000 / 60,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if capacity <= 0 or refill_per_second <= 0:
            raise ValueError("capacity and refill rate must be positive")
        self.capacity = capacity
        self.refill_per_second = refill_per_second
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(capacity)
        self._last = clock()
        self._lock = asyncio.Lock()

    @classmethod
    def per_minute(cls, permits_per_minute: float, capacity: int | None = None, **kwargs) -> "TokenBucket":
        return cls(
            capacity=capacity or int(permits_per_minute),
            refill_per_second=permits_per_minute / 60,
            **kwargs,
        )

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._last)
        self._last = now
        self._tokens = min(self.capacity, self._tokens + elapsed * self.refill_per_second)

    @property
    def available(self) -> float:
        self._refill()
        return self._tokens

    async def acquire(self, permits: int = 1) -> float:
        """Wait until `permits` tokens are available and take them.

        Returns the total time spent waiting, in seconds.
        """
        if permits > self.capacity:
            raise ValueError(f"Cannot acquire {permits} permits from a bucket of {self.capacity}")
        waited = 0.0
        async with self._lock:
            while True:
                self._refill()
                if self._tokens >= permits:
                    self._tokens -= permits
                    return waited
                delay = (permits - self._tokens) / self.refill_per_second
                logger.debug(f"Rate limiter empty, waiting {delay:.2f}s")
                await self._sleep(delay)
                waited += delay

    def penalize(self, permits: int) -> None:
        """Drain tokens after the backend reports throttling."""
        self._refill()
        self._tokens = max(0.0, self._tokens - permits)
