"""Bounded retry schedules shared by provider clients and pipelines."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterator
from random import SystemRandom
from typing import TypeVar

_T = TypeVar("_T")


def exponential_backoff(
    *,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    factor: float = 2.0,
    max_delay: float = 30.0,
    jitter: float = 0.25,
) -> Iterator[tuple[int, float]]:
    """Yield (attempt, delay_seconds) pairs for exponential backoff with jitter.

    ``factor=1.0`` turns the schedule into a fixed delay.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")
    if base_delay <= 0:
        raise ValueError("base_delay must be > 0")
    if factor < 1:
        raise ValueError("factor must be >= 1")
    if max_delay <= 0:
        raise ValueError("max_delay must be > 0")
    if jitter < 0:
        raise ValueError("jitter must be >= 0")

    rng = SystemRandom()
    delay = base_delay
    for attempt in range(1, max_attempts + 1):
        jitter_offset = rng.uniform(0, delay * jitter) if jitter > 0 else 0.0
        sleep_for = min(delay + jitter_offset, max_delay)
        yield attempt, sleep_for
        delay = min(delay * factor, max_delay)


async def retry_async(
    operation: Callable[[], Awaitable[_T]],
    *,
    retryable: tuple[type[BaseException], ...],
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 8.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    on_retry: Callable[[BaseException, int, float], None] | None = None,
) -> _T:
    """Await ``operation`` until it succeeds or the retry ceiling is reached.

    Only exceptions listed in ``retryable`` are retried; the last one is
    re-raised once ``max_attempts`` is exhausted.
    """
    for attempt, delay in exponential_backoff(
        max_attempts=max_attempts, base_delay=base_delay, max_delay=max_delay
    ):
        try:
            return await operation()
        except retryable as exc:
            if attempt >= max_attempts:
                raise
            if on_retry is not None:
                on_retry(exc, attempt, delay)
            await sleep(delay)
    raise RuntimeError("retry_async exhausted without a result")  # pragma: no cover
