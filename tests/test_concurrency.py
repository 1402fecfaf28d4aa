"""
Test suite for the concurrency primitives.

Covers the upload limiter, retry schedules, cancellation tokens and
grouped batch execution.
"""

import asyncio

import pytest

from genevault.config import RetryPolicy
from genevault.core.concurrency import (
    CancellationToken,
    ConcurrencyLimiter,
    gather_in_groups,
    retry_async,
)
from genevault.errors import CapacityError, OperationCancelledError


# ===== FIXTURES =====

@pytest.fixture
def recorded_sleeps():
    """List filled by the fake sleep."""
    return []


@pytest.fixture
def fake_sleep(recorded_sleeps):
    """Sleep replacement that records delays instead of waiting."""
    async def sleep(delay):
        recorded_sleeps.append(delay)
    return sleep


class FlakyOperation:
    """Fails a fixed number of times before succeeding."""

    def __init__(self, failures, exc_type=ConnectionError):
        self.failures = failures
        self.exc_type = exc_type
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc_type(f"transient failure {self.calls}")
        return "ok"


# ===== LIMITER TESTS =====

@pytest.mark.unit
class TestConcurrencyLimiter:
    """Test the in-flight bound."""

    @pytest.mark.asyncio
    async def test_bound_is_respected(self):
        """No more than max_concurrent operations run at once."""
        limiter = ConcurrencyLimiter(max_concurrent=3)

        async def work():
            async with limiter:
                assert limiter.in_flight <= 3
                await asyncio.sleep(0.01)

        await asyncio.gather(*(work() for _ in range(10)))

        assert limiter.peak_in_flight == 3
        assert limiter.in_flight == 0
        assert limiter.total_acquired == 10
        assert limiter.total_queued == 7

    @pytest.mark.asyncio
    async def test_fifo_order(self):
        """Queued requests are served in arrival order."""
        limiter = ConcurrencyLimiter(max_concurrent=1)
        order = []

        await limiter.acquire()

        async def work(i):
            async with limiter:
                order.append(i)

        tasks = [asyncio.create_task(work(i)) for i in range(5)]
        await asyncio.sleep(0)
        assert limiter.queued == 5

        limiter.release()
        await asyncio.gather(*tasks)
        assert order == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_try_acquire_at_capacity(self):
        """try_acquire fails fast with CapacityError when full."""
        limiter = ConcurrencyLimiter(max_concurrent=1)
        limiter.try_acquire()

        with pytest.raises(CapacityError):
            limiter.try_acquire()

        limiter.release()
        limiter.try_acquire()
        assert limiter.in_flight == 1

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_leak(self):
        """A waiter cancelled while queued gives up its place."""
        limiter = ConcurrencyLimiter(max_concurrent=1)
        await limiter.acquire()

        waiter = asyncio.create_task(limiter.acquire())
        await asyncio.sleep(0)
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        limiter.release()
        assert limiter.in_flight == 0
        assert limiter.queued == 0

    @pytest.mark.asyncio
    async def test_over_release(self):
        """Releasing more than acquired is a programming error."""
        limiter = ConcurrencyLimiter(max_concurrent=1)
        with pytest.raises(RuntimeError):
            limiter.release()

    def test_invalid_bound(self):
        """The bound must be positive."""
        with pytest.raises(ValueError):
            ConcurrencyLimiter(max_concurrent=0)

    @pytest.mark.asyncio
    async def test_metrics(self):
        """Metrics report the configured bound and usage."""
        limiter = ConcurrencyLimiter(max_concurrent=2, name="test")
        async with limiter:
            metrics = limiter.get_metrics()

        assert metrics["name"] == "test"
        assert metrics["max_concurrent"] == 2
        assert metrics["in_flight"] == 1
        assert limiter.get_metrics()["in_flight"] == 0


# ===== RETRY TESTS =====

@pytest.mark.unit
class TestRetry:
    """Test bounded retries."""

    def test_linear_schedule(self):
        """Linear backoff waits base * attempt."""
        policy = RetryPolicy(attempts=4, base_delay=1.0)
        assert policy.schedule() == [1.0, 2.0, 3.0]

    def test_exponential_schedule_capped(self):
        """Exponential backoff doubles up to max_delay."""
        policy = RetryPolicy(attempts=5, base_delay=1.0, max_delay=5.0, backoff="exponential")
        assert policy.schedule() == [1.0, 2.0, 4.0, 5.0]

    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failures(self, fake_sleep, recorded_sleeps):
        """Transient failures are retried with the scheduled delays."""
        operation = FlakyOperation(failures=2)
        policy = RetryPolicy(attempts=3, base_delay=1.0)

        result = await retry_async(operation, policy, "upload", sleep=fake_sleep)

        assert result == "ok"
        assert operation.calls == 3
        assert recorded_sleeps == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_exhausted_attempts_raise_last_error(self, fake_sleep, recorded_sleeps):
        """After the last attempt the final error propagates."""
        operation = FlakyOperation(failures=10)
        policy = RetryPolicy(attempts=3, base_delay=0.5, backoff="exponential")

        with pytest.raises(ConnectionError, match="transient failure 3"):
            await retry_async(operation, policy, sleep=fake_sleep)

        assert operation.calls == 3
        assert recorded_sleeps == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_non_retryable_error(self, fake_sleep, recorded_sleeps):
        """Errors outside retry_on propagate immediately."""
        operation = FlakyOperation(failures=1, exc_type=KeyError)

        with pytest.raises(KeyError):
            await retry_async(
                operation, RetryPolicy(attempts=3), retry_on=(ConnectionError,), sleep=fake_sleep
            )

        assert operation.calls == 1
        assert recorded_sleeps == []


# ===== CANCELLATION TESTS =====

@pytest.mark.unit
class TestCancellationToken:
    """Test cooperative cancellation."""

    @pytest.mark.asyncio
    async def test_run_completes(self):
        """Uncancelled work returns its result."""
        token = CancellationToken()

        async def work():
            return 42

        assert await token.run(work()) == 42

    @pytest.mark.asyncio
    async def test_cancel_during_run(self):
        """Cancelling mid-flight stops the work."""
        token = CancellationToken()
        finished = []

        async def slow():
            await asyncio.sleep(10)
            finished.append(True)

        async def cancel_soon():
            await asyncio.sleep(0.01)
            token.cancel("user aborted")

        canceller = asyncio.create_task(cancel_soon())
        with pytest.raises(OperationCancelledError, match="user aborted"):
            await token.run(slow())
        await canceller

        assert finished == []

    @pytest.mark.asyncio
    async def test_already_cancelled(self):
        """A cancelled token refuses new work and keeps the first reason."""
        token = CancellationToken()
        token.cancel("first")
        token.cancel("second")

        assert token.cancelled
        assert token.reason == "first"
        with pytest.raises(OperationCancelledError):
            token.raise_if_cancelled()

        work = asyncio.sleep(0)
        with pytest.raises(OperationCancelledError):
            await token.run(work)
        work.close()


# ===== BATCH GROUP TESTS =====

@pytest.mark.unit
class TestGatherInGroups:
    """Test grouped execution."""

    @pytest.mark.asyncio
    async def test_order_and_pauses(self, fake_sleep, recorded_sleeps):
        """Results keep input order and groups are separated by pauses."""
        async def double(x):
            await asyncio.sleep(0.001 * (5 - x))
            return x * 2

        results = await gather_in_groups([1, 2, 3, 4, 5], double, group_size=2, pause=0.1, sleep=fake_sleep)

        assert results == [2, 4, 6, 8, 10]
        assert recorded_sleeps == [0.1, 0.1]

    @pytest.mark.asyncio
    async def test_group_concurrency(self):
        """At most group_size workers run together."""
        running = 0
        peak = 0

        async def work(_):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.001)
            running -= 1

        await gather_in_groups(list(range(7)), work, group_size=3, pause=0)
        assert peak == 3

    @pytest.mark.asyncio
    async def test_return_exceptions(self, fake_sleep):
        """Failures can be collected per item."""
        async def work(x):
            if x == 2:
                raise ValueError("bad item")
            return x

        results = await gather_in_groups(
            [1, 2, 3], work, group_size=10, return_exceptions=True, sleep=fake_sleep
        )

        assert results[0] == 1
        assert isinstance(results[1], ValueError)
        assert results[2] == 3

    @pytest.mark.asyncio
    async def test_invalid_group_size(self):
        """Group size must be positive."""
        async def work(x):
            return x

        with pytest.raises(ValueError):
            await gather_in_groups([1], work, group_size=0)
