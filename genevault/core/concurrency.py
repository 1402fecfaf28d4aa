"""
Concurrency primitives for the storage pipeline.

- ConcurrencyLimiter: bounds in-flight uploads, queues the excess FIFO
- retry_async: bounded retry loop with a computed backoff per attempt
- CancellationToken: cooperative cancellation for retrieval operations
- gather_in_groups: fixed-size concurrent groups with a pause in between
"""

import asyncio
from collections import deque
from typing import Any, Awaitable, Callable, Deque, List, Optional, Sequence, Tuple, Type, TypeVar
import logging

from genevault.config import RetryPolicy
from genevault.errors import CapacityError, OperationCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")
SleepFunc = Callable[[float], Awaitable[Any]]


class ConcurrencyLimiter:
    """
    Process-wide bound on concurrent operations.

    Slots are handed directly from a finishing operation to the oldest
    waiter, so queued requests are served in arrival order and the
    in-flight count never exceeds max_concurrent.

    Usage:
        async with limiter:
            await upload(...)
    """

    def __init__(self, max_concurrent: int = 5, name: str = "uploads"):
        """
        Initialize limiter.

        Args:
            max_concurrent: Maximum operations in flight
            name: Label used in logs and metrics
        """
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be positive, got {max_concurrent}")

        self.max_concurrent = max_concurrent
        self.name = name
        self.in_flight = 0
        self.peak_in_flight = 0
        self.total_acquired = 0
        self.total_queued = 0
        self._waiters: Deque[asyncio.Future] = deque()

    @property
    def queued(self) -> int:
        """Number of requests waiting for a slot."""
        return sum(1 for waiter in self._waiters if not waiter.done())

    def try_acquire(self):
        """
        Take a slot without waiting.

        Raises:
            CapacityError: If every slot is taken or others are already queued
        """
        if self.in_flight >= self.max_concurrent or self.queued:
            raise CapacityError(
                f"{self.name}: {self.in_flight}/{self.max_concurrent} in flight, "
                f"{self.queued} queued"
            )
        self.in_flight += 1
        self.total_acquired += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)

    async def acquire(self):
        """Take a slot, queueing behind earlier requests when at capacity."""
        try:
            self.try_acquire()
            return
        except CapacityError as e:
            logger.debug(f"Queueing request: {e}")

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        self.total_queued += 1

        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # The slot was already handed over; pass it on
                self.release()
            elif waiter in self._waiters:
                self._waiters.remove(waiter)
            raise

    def release(self):
        """Return a slot, handing it to the oldest live waiter if any."""
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                self.total_acquired += 1
                waiter.set_result(None)
                return
        self.in_flight -= 1
        if self.in_flight < 0:
            raise RuntimeError(f"{self.name}: release() called more times than acquire()")

    async def __aenter__(self) -> "ConcurrencyLimiter":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.release()

    def get_metrics(self):
        """Current and historical usage."""
        return {
            "name": self.name,
            "max_concurrent": self.max_concurrent,
            "in_flight": self.in_flight,
            "queued": self.queued,
            "peak_in_flight": self.peak_in_flight,
            "total_acquired": self.total_acquired,
            "total_queued": self.total_queued,
        }


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    description: str = "operation",
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    sleep: SleepFunc = asyncio.sleep,
) -> T:
    """
    Run an async operation with bounded retries.

    Args:
        operation: Zero-argument coroutine factory (called once per attempt)
        policy: Attempt count and backoff schedule
        description: Label for log messages
        retry_on: Exception types treated as transient
        sleep: Awaitable sleep, injectable so tests control the clock

    Returns:
        The operation's result

    Raises:
        The last exception once attempts are exhausted
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except retry_on as exc:
            if attempt >= policy.attempts:
                logger.error(f"{description} failed after {attempt} attempts: {exc}")
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                f"{description} failed (attempt {attempt}/{policy.attempts}): {exc}. "
                f"Retrying in {delay:.2f}s"
            )
            await sleep(delay)


class CancellationToken:
    """
    Cooperative cancellation signal.

    The orchestrator checks the token between pipeline steps and races
    store adapter calls against it, so a cancelled retrieval stops
    consuming resources and never populates a cache.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled by caller"):
        """Trigger cancellation. Idempotent."""
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self):
        """Raise OperationCancelledError if the token was triggered."""
        if self._event.is_set():
            raise OperationCancelledError(self.reason or "Operation cancelled")

    async def run(self, awaitable: Awaitable[T]) -> T:
        """
        Await something unless the token fires first.

        Raises:
            OperationCancelledError: If cancelled before the awaitable finished
        """
        self.raise_if_cancelled()

        task = asyncio.ensure_future(awaitable)
        watcher = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, watcher}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            watcher.cancel()

        if task in done:
            return task.result()

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.debug(f"Cancelled operation raised while stopping: {e}")
        raise OperationCancelledError(self.reason or "Operation cancelled")


async def gather_in_groups(
    items: Sequence[Any],
    worker: Callable[[Any], Awaitable[T]],
    group_size: int,
    pause: float = 0.1,
    return_exceptions: bool = False,
    sleep: SleepFunc = asyncio.sleep,
) -> List[T]:
    """
    Run worker over items in fixed-size concurrent groups.

    Each group runs concurrently; a short pause between groups keeps the
    store adapter's upload queue from being flooded.

    Args:
        items: Inputs, results are returned in the same order
        worker: Coroutine function applied to each item
        group_size: Items per group
        pause: Seconds to wait between groups
        return_exceptions: Collect exceptions instead of failing fast
        sleep: Awaitable sleep, injectable for tests

    Returns:
        Results in input order
    """
    if group_size < 1:
        raise ValueError(f"group_size must be positive, got {group_size}")

    results: List[T] = []
    for start in range(0, len(items), group_size):
        group = items[start:start + group_size]
        group_results = await asyncio.gather(
            *(worker(item) for item in group),
            return_exceptions=return_exceptions,
        )
        results.extend(group_results)

        if start + group_size < len(items) and pause > 0:
            await sleep(pause)

    return results
