from __future__ import annotations

import asyncio
from collections import deque
from contextlib import nullcontext
from dataclasses import dataclass
from typing import (
    AsyncContextManager,
    Awaitable,
    Callable,
    Generic,
    Sequence,
    TypeVar,
)

T = TypeVar("T")

DEFAULT_MAX_CONCURRENT_REQUESTS = 5


class ConcurrencyGate:
    """Counting admission gate with strict FIFO hand-off.

    A release hands the permit directly to the oldest waiter instead of
    returning it to the pool, so a newly arriving caller can never overtake
    a queued one.
    """

    def __init__(self, capacity: int = DEFAULT_MAX_CONCURRENT_REQUESTS) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._capacity = capacity
        self._permits = capacity
        self._waiters: deque[asyncio.Future[None]] = deque()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def available(self) -> int:
        return self._permits

    @property
    def in_flight(self) -> int:
        return self._capacity - self._permits

    @property
    def waiting(self) -> int:
        return sum(1 for waiter in self._waiters if not waiter.done())

    async def acquire(self) -> None:
        if self._permits > 0 and not self.waiting:
            self._permits -= 1
            return

        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # permit was handed over just before cancellation
                self.release()
            else:
                self._remove_waiter(waiter)
            raise

    def release(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return

        if self._permits >= self._capacity:
            raise RuntimeError("ConcurrencyGate released more times than acquired")
        self._permits += 1

    async def __aenter__(self) -> "ConcurrencyGate":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> None:
        del exc_type, exc, tb
        self.release()

    def _remove_waiter(self, waiter: asyncio.Future[None]) -> None:
        try:
            self._waiters.remove(waiter)
        except ValueError:
            pass


@dataclass(frozen=True, slots=True)
class TaskOutcome(Generic[T]):
    index: int
    value: T | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


async def execute_parallel(
    tasks: Sequence[Callable[[], Awaitable[T]]],
    max_concurrent: int = DEFAULT_MAX_CONCURRENT_REQUESTS,
    *,
    gate: ConcurrencyGate | None = None,
) -> list[TaskOutcome[T]]:
    """Run independent tasks with at most ``max_concurrent`` in flight.

    Each task's success or failure is captured in its own slot; one failing
    task never cancels its siblings. Results keep the input order.
    """
    if max_concurrent < 1:
        raise ValueError("max_concurrent must be >= 1")
    if gate is not None:
        max_concurrent = min(max_concurrent, gate.capacity)

    outcomes: list[TaskOutcome[T] | None] = [None] * len(tasks)
    limiter = ConcurrencyGate(max_concurrent)

    async def _run_slot(index: int, task: Callable[[], Awaitable[T]]) -> None:
        async with limiter:
            try:
                value = await task()
            except asyncio.CancelledError:
                raise
            except Exception as error:  # noqa: BLE001
                outcomes[index] = TaskOutcome(index=index, error=error)
                return
            outcomes[index] = TaskOutcome(index=index, value=value)

    await asyncio.gather(
        *(_run_slot(index, task) for index, task in enumerate(tasks))
    )
    return [outcome for outcome in outcomes if outcome is not None]


def admit(gate: ConcurrencyGate | None) -> AsyncContextManager[object]:
    """Return the gate itself, or a no-op context when no gate is configured."""
    if gate is None:
        return nullcontext()
    return gate
