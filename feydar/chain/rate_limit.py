"""
Per-provider request limiter: bounded concurrency plus minimum spacing between request starts
"""

import asyncio
import time


class RateLimiter:
    """Async context manager guarding every outbound call to one provider.

    Waiters beyond max_concurrency queue on the semaphore and are released in
    FIFO order as slots free up.
    """

    def __init__(self, max_concurrency: int = 4, min_interval: float = 0.0):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.max_concurrency = max_concurrency
        self.min_interval = max(0.0, min_interval)
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._spacing_lock = asyncio.Lock()
        self._last_start = 0.0
        self.in_flight = 0
        self.peak_in_flight = 0

    async def _wait_for_spacing(self):
        async with self._spacing_lock:
            if self.min_interval:
                wait = self._last_start + self.min_interval - time.monotonic()
                if wait > 0:
                    await asyncio.sleep(wait)
            self._last_start = time.monotonic()

    async def __aenter__(self) -> 'RateLimiter':
        await self._semaphore.acquire()
        try:
            await self._wait_for_spacing()
        except BaseException:
            self._semaphore.release()
            raise
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.in_flight -= 1
        self._semaphore.release()
        return False
