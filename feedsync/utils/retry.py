"""Retry helpers for throttled HTTP calls."""

from __future__ import annotations

import asyncio
import functools
import logging
import random
from collections.abc import Awaitable, Callable

import httpx

logger = logging.getLogger(__name__)

RETRY_EXCEPTIONS = (OSError, asyncio.TimeoutError, httpx.TransportError)
THROTTLED = 429
MAX_DELAY = 60.0


class RetryExhausted(RuntimeError):
    """Raised once a call kept failing for every allowed attempt."""

    def __init__(self, attempts: int, last_status: int | None = None, last_error: BaseException | None = None) -> None:
        self.attempts = attempts
        self.last_status = last_status
        self.last_error = last_error
        reason = f"HTTP {last_status}" if last_status else repr(last_error)
        super().__init__(f"Gave up after {attempts} attempts ({reason})")


def should_retry(status: int) -> bool:
    return status == THROTTLED or 500 <= status < 600


def retry_after_seconds(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def retry_async(
    func: Callable[..., Awaitable],
    *,
    attempts: int = 3,
    base_delay: float = 1.0,
    sleep: Callable[[float], Awaitable] = asyncio.sleep,
):
    """Retry ``func`` on transport errors and throttled responses.

    429 and 5xx responses are retried like exceptions.
    The delay doubles after each attempt with up to ``delay`` of random jitter,
    unless the server sent a ``Retry-After`` header.
    """
    attempts = max(1, attempts)

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        delay = base_delay
        for attempt in range(1, attempts + 1):
            try:
                result = await func(*args, **kwargs)
            except RETRY_EXCEPTIONS as exc:
                if attempt == attempts:
                    raise RetryExhausted(attempts, last_error=exc) from exc
                wait = delay + random.uniform(0, delay)
                logger.debug("Transport error %r, retrying in %.2fs", exc, wait)
            else:
                if not isinstance(result, httpx.Response) or not should_retry(result.status_code):
                    return result
                if attempt == attempts:
                    raise RetryExhausted(attempts, last_status=result.status_code)
                hinted = retry_after_seconds(result)
                wait = hinted if hinted is not None else delay + random.uniform(0, delay)
                logger.info("HTTP %s, attempt %s/%s, retrying in %.2fs", result.status_code, attempt, attempts, wait)
            await sleep(min(wait, MAX_DELAY))
            delay *= 2

    return wrapper
