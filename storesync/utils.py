from __future__ import annotations
import asyncio
import time
import logging
from typing import Awaitable, Callable, Iterator, List, Optional, Sequence, TypeVar
from rich.logging import RichHandler

T = TypeVar("T")

_logger_initialized = False


def get_logger(name: str = "storesync") -> logging.Logger:
    global _logger_initialized
    if not _logger_initialized:
        logging.basicConfig(
            level=logging.INFO,
            format="%(message)s",
            datefmt="%H:%M:%S",
            handlers=[RichHandler(rich_tracebacks=True)],
        )
        _logger_initialized = True
    return logging.getLogger(name)


class RateLimiter:
    """Token bucket shared by the coroutines of one run.

    ``rate`` tokens are added per second up to ``capacity``. The clock and
    sleep functions are injectable so pacing can be tested without waiting.
    """

    def __init__(
        self,
        rate: float,
        capacity: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.rate = rate
        self.capacity = capacity if capacity is not None else max(rate, 1.0)
        self._clock = clock
        self._sleep = sleep
        self._tokens = self.capacity
        self._last = clock()
        self._lock = asyncio.Lock()

    @classmethod
    def per_batch(cls, batch_size: int, interval: float, **kwargs) -> "RateLimiter":
        # one full batch immediately, then one batch per interval
        if interval <= 0:
            return cls(rate=0, capacity=batch_size, **kwargs)
        return cls(rate=batch_size / interval, capacity=batch_size, **kwargs)

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._last
        self._last = now
        if elapsed > 0:
            self._tokens = min(self.capacity, self._tokens + elapsed * self.rate)

    async def acquire(self, tokens: float = 1.0) -> None:
        if self.rate <= 0:
            return
        if tokens > self.capacity:
            raise ValueError(f"cannot acquire {tokens} tokens from a bucket of {self.capacity}")
        async with self._lock:
            self._refill()
            while self._tokens < tokens:
                await self._sleep((tokens - self._tokens) / self.rate)
                self._refill()
            self._tokens -= tokens


def chunked(items: Sequence[T], size: int) -> Iterator[List[T]]:
    for i in range(0, len(items), size):
        yield list(items[i : i + size])
