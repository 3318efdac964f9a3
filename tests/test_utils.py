import pytest

from storesync.utils import RateLimiter, chunked


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.mark.asyncio
async def test_first_batch_is_immediate_then_paced():
    clock = FakeClock()
    limiter = RateLimiter.per_batch(10, 2.0, clock=clock, sleep=clock.sleep)
    await limiter.acquire(10)
    assert clock.sleeps == []
    await limiter.acquire(10)
    assert clock.sleeps == [pytest.approx(2.0)]
    await limiter.acquire(5)
    assert sum(clock.sleeps) == pytest.approx(3.0)


@pytest.mark.asyncio
async def test_idle_time_refills_bucket():
    clock = FakeClock()
    limiter = RateLimiter(rate=5, capacity=5, clock=clock, sleep=clock.sleep)
    await limiter.acquire(5)
    clock.now += 10
    await limiter.acquire(5)
    assert clock.sleeps == []


@pytest.mark.asyncio
async def test_zero_interval_disables_pacing():
    clock = FakeClock()
    limiter = RateLimiter.per_batch(20, 0, clock=clock, sleep=clock.sleep)
    for _ in range(5):
        await limiter.acquire(20)
    assert clock.sleeps == []


@pytest.mark.asyncio
async def test_acquire_more_than_capacity_fails():
    limiter = RateLimiter(rate=1, capacity=2)
    with pytest.raises(ValueError):
        await limiter.acquire(3)


def test_chunked():
    assert list(chunked([1, 2, 3, 4, 5], 2)) == [[1, 2], [3, 4], [5]]
    assert list(chunked([], 3)) == []
