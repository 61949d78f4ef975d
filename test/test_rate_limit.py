import asyncio
import time

import pytest

from feydar.chain.rate_limit import RateLimiter


def test_concurrency_is_bounded():
    async def scenario():
        limiter = RateLimiter(max_concurrency=2)

        async def request():
            async with limiter:
                await asyncio.sleep(0.01)

        await asyncio.gather(*(request() for _ in range(10)))
        return limiter

    limiter = asyncio.run(scenario())
    assert limiter.peak_in_flight == 2
    assert limiter.in_flight == 0


def test_waiters_are_served_in_order():
    async def scenario():
        limiter = RateLimiter(max_concurrency=1)
        order = []

        async def request(n):
            async with limiter:
                order.append(n)
                await asyncio.sleep(0)

        await asyncio.gather(*(request(n) for n in range(8)))
        return order

    assert asyncio.run(scenario()) == list(range(8))


def test_minimum_spacing_between_starts():
    async def scenario():
        limiter = RateLimiter(max_concurrency=4, min_interval=0.05)
        starts = []

        async def request():
            async with limiter:
                starts.append(time.monotonic())

        await asyncio.gather(*(request() for _ in range(3)))
        return starts

    starts = asyncio.run(scenario())
    assert starts[-1] - starts[0] >= 0.09


def test_slot_released_on_error():
    async def scenario():
        limiter = RateLimiter(max_concurrency=1)
        with pytest.raises(ValueError):
            async with limiter:
                raise ValueError("provider error")
        async with limiter:
            return limiter.in_flight

    assert asyncio.run(scenario()) == 1


def test_rejects_zero_concurrency():
    with pytest.raises(ValueError):
        RateLimiter(max_concurrency=0)
