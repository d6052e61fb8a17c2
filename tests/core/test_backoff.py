from __future__ import annotations

import asyncio

import pytest

from app.core.backoff import exponential_backoff, retry_async
from app.services.scoring.errors import TransientProviderError


def test_schedule_grows_and_caps():
    schedule = list(exponential_backoff(max_attempts=5, base_delay=1.0, factor=2.0, max_delay=4.0, jitter=0))
    assert schedule == [(1, 1.0), (2, 2.0), (3, 4.0), (4, 4.0), (5, 4.0)]


def test_jitter_stays_within_bounds():
    for _, delay in exponential_backoff(max_attempts=3, base_delay=1.0, factor=1.0, jitter=0.5):
        assert 1.0 <= delay <= 1.5


@pytest.mark.parametrize(
    "kwargs",
    [{"max_attempts": 0}, {"base_delay": 0}, {"factor": 0.5}, {"max_delay": 0}, {"jitter": -1}],
)
def test_invalid_schedule_arguments(kwargs):
    with pytest.raises(ValueError):
        list(exponential_backoff(**kwargs))


def test_retry_async_recovers_after_transient_failures():
    attempts: list[int] = []
    sleeps: list[float] = []
    retries: list[int] = []

    async def operation() -> str:
        attempts.append(1)
        if len(attempts) < 3:
            raise TransientProviderError("busy", code="GRAPH_429")
        return "ok"

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    result = asyncio.run(
        retry_async(
            operation,
            retryable=(TransientProviderError,),
            max_attempts=3,
            sleep=fake_sleep,
            on_retry=lambda exc, attempt, delay: retries.append(attempt),
        )
    )

    assert result == "ok"
    assert len(attempts) == 3
    assert len(sleeps) == 2
    assert retries == [1, 2]


def test_retry_async_reraises_after_last_attempt():
    calls: list[int] = []

    async def operation() -> None:
        calls.append(1)
        raise TransientProviderError("busy", code="GRAPH_5XX")

    async def fake_sleep(seconds: float) -> None:
        return None

    with pytest.raises(TransientProviderError):
        asyncio.run(retry_async(operation, retryable=(TransientProviderError,), max_attempts=2, sleep=fake_sleep))
    assert len(calls) == 2


def test_non_retryable_errors_propagate_immediately():
    calls: list[int] = []

    async def operation() -> None:
        calls.append(1)
        raise KeyError("boom")

    with pytest.raises(KeyError):
        asyncio.run(retry_async(operation, retryable=(TransientProviderError,)))
    assert calls == [1]
