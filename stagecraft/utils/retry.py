"""Exponential backoff retry for unreliable async operations."""

from __future__ import annotations

import asyncio
import errno
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

import httpx

from ..config import RetrySettings

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})

RETRYABLE_ERROR_CODES = frozenset(
    {
        "ECONNRESET",
        "ECONNREFUSED",
        "ETIMEDOUT",
        "ENOTFOUND",
        "EAI_AGAIN",
        "EPIPE",
        "EHOSTUNREACH",
        "ENETUNREACH",
    }
)

TRANSIENT_MESSAGE_PATTERNS = (
    "rate limit",
    "too many requests",
    "timeout",
    "timed out",
    "temporarily unavailable",
    "service unavailable",
    "connection reset",
    "connection refused",
    "network error",
    "socket hang up",
    "econnreset",
    "econnrefused",
    "etimedout",
    "overloaded",
)

JITTER = 0.25


@dataclass
class RetryResult(Generic[T]):
    """Outcome of :func:`with_retry`."""

    success: bool
    attempts: int
    data: Optional[T] = None
    error: Optional[BaseException] = None
    was_retryable: bool = False


def _status_code(exc: BaseException) -> Optional[int]:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    for attr in ("status_code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    return None


def _error_code(exc: BaseException) -> Optional[str]:
    code = getattr(exc, "code", None)
    if isinstance(code, str):
        return code.upper()
    if isinstance(exc, OSError) and exc.errno is not None:
        return errno.errorcode.get(exc.errno)
    return None


def is_retryable_error(exc: BaseException) -> bool:
    """Classify ``exc`` as transient (worth retrying) or fatal."""
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError)):
        return True
    if isinstance(exc, (asyncio.TimeoutError, ConnectionError)):
        return True

    status = _status_code(exc)
    if status is not None:
        return status in RETRYABLE_STATUS_CODES

    code = _error_code(exc)
    if code and code in RETRYABLE_ERROR_CODES:
        return True

    message = str(exc).lower()
    return any(pattern in message for pattern in TRANSIENT_MESSAGE_PATTERNS)


def compute_backoff(attempt: int, settings: RetrySettings | None = None) -> float:
    """Return the delay in milliseconds before retry number ``attempt``.

    The exponential delay ``base * 2**attempt`` is capped at the max delay and
    then scaled by a uniform jitter factor in ``[0.75, 1.25]``.
    """
    settings = settings or RetrySettings()
    delay = min(settings.base_delay_ms * (2**attempt), settings.max_delay_ms)
    return delay * random.uniform(1 - JITTER, 1 + JITTER)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    settings: RetrySettings | None = None,
    on_retry: Optional[Callable[[int, BaseException, float], Any]] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> RetryResult[T]:
    """Run ``operation`` with exponential backoff.

    Non-retryable errors return after a single attempt; retryable ones are
    attempted at most ``max_retries + 1`` times.
    """
    settings = settings or RetrySettings()
    max_attempts = settings.max_retries + 1 if settings.enabled else 1
    attempt = 0
    while True:
        attempt += 1
        try:
            data = await operation()
            return RetryResult(success=True, attempts=attempt, data=data)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            retryable = is_retryable_error(exc)
            if not retryable or attempt >= max_attempts:
                if retryable:
                    logger.warning(f"Giving up after {attempt} attempts: {exc}")
                return RetryResult(
                    success=False,
                    attempts=attempt,
                    error=exc,
                    was_retryable=retryable,
                )
            delay_ms = compute_backoff(attempt - 1, settings)
            logger.info(
                f"Retryable error on attempt {attempt}/{max_attempts}: {exc}; "
                f"retrying in {delay_ms:.0f}ms"
            )
            if on_retry is not None:
                on_retry(attempt, exc, delay_ms)
            await sleep(delay_ms / 1000)
