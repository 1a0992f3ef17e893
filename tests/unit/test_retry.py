import asyncio

import httpx
import pytest

from stagecraft.config import RetrySettings
from stagecraft.exceptions import ProviderError
from stagecraft.utils.retry import compute_backoff, is_retryable_error, with_retry


class _Recorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


def _failing(exc, counter):
    async def operation():
        counter.append(1)
        raise exc

    return operation


@pytest.mark.parametrize(
    "exc",
    [
        ProviderError("upstream", status_code=503),
        ProviderError("busy", status_code=429),
        ProviderError("refused", code="ECONNREFUSED"),
        ConnectionResetError("reset"),
        asyncio.TimeoutError(),
        httpx.ConnectTimeout("slow"),
        RuntimeError("Rate limit reached, try again"),
        RuntimeError("model is overloaded"),
    ],
)
def test_retryable_errors(exc):
    assert is_retryable_error(exc)


@pytest.mark.parametrize(
    "exc",
    [
        ProviderError("bad request", status_code=400),
        ProviderError("unauthorized", status_code=401),
        ValueError("invalid arguments"),
        KeyError("missing"),
    ],
)
def test_non_retryable_errors(exc):
    assert not is_retryable_error(exc)


@pytest.mark.asyncio
async def test_non_retryable_error_makes_one_attempt():
    calls = []
    sleep = _Recorder()
    result = await with_retry(
        _failing(ProviderError("bad", status_code=400), calls),
        RetrySettings(max_retries=3),
        sleep=sleep,
    )
    assert not result.success
    assert result.attempts == 1
    assert not result.was_retryable
    assert len(calls) == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_retryable_error_makes_at_most_n_plus_one_attempts():
    calls = []
    sleep = _Recorder()
    settings = RetrySettings(max_retries=3, base_delay_ms=100, max_delay_ms=250)
    result = await with_retry(
        _failing(ProviderError("unavailable", status_code=503), calls),
        settings,
        sleep=sleep,
    )
    assert not result.success
    assert result.was_retryable
    assert result.attempts == 4
    assert len(calls) == 4
    assert len(sleep.delays) == 3
    for attempt, seconds in enumerate(sleep.delays):
        base = min(100 * 2**attempt, 250)
        assert 0.75 * base <= seconds * 1000 <= 1.25 * base


@pytest.mark.asyncio
async def test_recovers_after_transient_failure():
    attempts = []
    retries = []

    async def operation():
        attempts.append(1)
        if len(attempts) < 3:
            raise ProviderError("timeout", code="ETIMEDOUT")
        return "ok"

    result = await with_retry(
        operation,
        RetrySettings(max_retries=5, base_delay_ms=10),
        on_retry=lambda attempt, exc, delay: retries.append(attempt),
        sleep=_Recorder(),
    )
    assert result.success
    assert result.data == "ok"
    assert result.attempts == 3
    assert retries == [1, 2]


@pytest.mark.asyncio
async def test_disabled_retry_makes_one_attempt():
    calls = []
    result = await with_retry(
        _failing(ProviderError("unavailable", status_code=503), calls),
        RetrySettings(enabled=False),
        sleep=_Recorder(),
    )
    assert result.attempts == 1
    assert result.was_retryable


def test_compute_backoff_is_capped():
    settings = RetrySettings(base_delay_ms=1000, max_delay_ms=30000)
    for attempt in range(10):
        delay = compute_backoff(attempt, settings)
        expected = min(1000 * 2**attempt, 30000)
        assert 0.75 * expected <= delay <= 1.25 * expected
