"""Retry policy for broker calls.

Publishing to the topic is retried a bounded number of times with a fixed
sleep between attempts (no exponential backoff, no jitter). The last error
is re-raised once every attempt has failed.

Key entrypoints:
 - ``RetryPolicy``: attempt count and fixed delay
 - ``with_retries``: run an async callable under a policy

Examples
--------
>>> RetryPolicy()
RetryPolicy(max_tries=2, base_sleep_seconds=5.0)
>>> RetryPolicy(max_tries=3, base_sleep_seconds=0.5).delay_for(1)
0.5
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from snssqs_transport.constants import (
    DEFAULT_PUBLISH_MAX_TRIES,
    DEFAULT_PUBLISH_RETRY_SLEEP_SECONDS,
)


T = TypeVar("T")

OnRetry = Callable[[int, BaseException, float], None]


@dataclass
class RetryPolicy:
    """Retry policy for a broker operation.

    Attributes
    ----------
    max_tries: int
        Total attempts, including the first one.
    base_sleep_seconds: float
        Fixed delay between two consecutive attempts.
    """
    max_tries: int = DEFAULT_PUBLISH_MAX_TRIES
    base_sleep_seconds: float = DEFAULT_PUBLISH_RETRY_SLEEP_SECONDS

    def delay_for(self, attempt: int) -> float:
        """Return the delay after the given (1-based) failed attempt."""
        return max(self.base_sleep_seconds, 0.0)


async def with_retries(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    on_retry: Optional[OnRetry] = None,
) -> T:
    """Await ``fn()`` until it succeeds or ``policy.max_tries`` is reached.

    Parameters
    ----------
    fn:
        Zero-argument coroutine function performing one attempt.
    policy:
        Attempt count and delay.
    sleep:
        Awaitable sleep, injectable for tests.
    on_retry:
        Called with ``(attempt, error, delay)`` before each sleep.

    Raises
    ------
    Exception
        The error of the final attempt.
    """
    max_tries = max(int(policy.max_tries), 1)
    attempt = 1
    while True:
        try:
            return await fn()
        except Exception as exc:
            if attempt >= max_tries:
                raise
            delay = policy.delay_for(attempt)
            if on_retry is not None:
                on_retry(attempt, exc, delay)
            await sleep(delay)
            attempt += 1
