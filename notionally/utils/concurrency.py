"""Retry policy and bounded parallel map used by every acquirer."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence, TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Exponential backoff: waits ``base_delay * 2**(n-1)`` after the n-th failed attempt."""

    attempts: int = 3
    base_delay: float = 2.0
    max_delay: float = 60.0

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            attempts=settings.attempts,
            base_delay=settings.base_delay_seconds,
            max_delay=settings.max_delay_seconds,
        )


def _always(_: BaseException) -> bool:
    return True


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    retryable: Callable[[BaseException], bool] = _always,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Await ``fn`` until it succeeds or the policy is exhausted; the last error is re-raised."""
    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.attempts),
        wait=wait_exponential(multiplier=policy.base_delay, max=policy.max_delay),
        retry=retry_if_exception(retryable),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        sleep=sleep,
        reraise=True,
    )
    return await retrying(fn)


async def run_bounded(
    items: Sequence[T],
    worker: Callable[[T, int], Awaitable[R]],
    concurrency: int,
) -> list[R]:
    """Run ``worker(item, index)`` for every item with at most ``concurrency`` in flight.

    Results come back in input order. Workers are expected to turn their own
    failures into result values; an exception raised by a worker propagates.
    """
    if concurrency < 1:
        raise ValueError("concurrency must be at least 1")
    if not items:
        return []

    semaphore = asyncio.Semaphore(concurrency)

    async def _guarded(item: T, index: int) -> R:
        async with semaphore:
            return await worker(item, index)

    return list(await asyncio.gather(*(_guarded(item, index) for index, item in enumerate(items))))
