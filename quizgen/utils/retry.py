from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_incrementing,
)

from quizgen.utils.error_taxonomy import StageTimeoutError, is_retryable_exception

T = TypeVar("T")


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 2,
    base_delay_seconds: float = 0.5,
    should_retry: Callable[[BaseException], bool] = is_retryable_exception,
    sleep_fn: Callable[[float], Awaitable[None]] = asyncio.sleep,
    on_retry: Callable[[int, float, BaseException], None] | None = None,
) -> T:
    """Run ``operation`` up to ``max_retries + 1`` times.

    The wait before retry ``n`` is ``base_delay_seconds * n``. Only errors
    accepted by ``should_retry`` are retried; the last error is re-raised
    once attempts are exhausted.
    """
    if max_retries < 0:
        raise ValueError("max_retries must be >= 0")

    def _before_sleep(retry_state: RetryCallState) -> None:
        if on_retry is None or retry_state.outcome is None:
            return
        error = retry_state.outcome.exception()
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        on_retry(retry_state.attempt_number, delay, error)

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_incrementing(start=base_delay_seconds, increment=base_delay_seconds),
        retry=retry_if_exception(should_retry),
        sleep=sleep_fn,
        before_sleep=_before_sleep,
        reraise=True,
    )

    async def _attempt() -> T:
        # tenacity only awaits coroutine functions, not lambdas returning awaitables
        return await operation()

    return await retrying(_attempt)


async def with_timeout(
    operation: Callable[[], Awaitable[T]],
    timeout_seconds: float,
    message: str = "Operation timed out",
) -> T:
    """Run ``operation`` with a deadline.

    On expiry the running operation is cancelled, so any gate permit or open
    request it holds is released before ``StageTimeoutError`` is raised.
    """
    try:
        return await asyncio.wait_for(operation(), timeout=timeout_seconds)
    except StageTimeoutError:
        # nested deadline already fired with its own message
        raise
    except asyncio.TimeoutError as error:
        raise StageTimeoutError(message) from error
