"""Retry utilities (bounded backoff + jitter)."""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Callable, TypeVar

T = TypeVar("T")

@dataclass(frozen=True)
class RetryPolicy:
    retries: int = 1  # total attempts = 1 + retries
    base_delay_seconds: float = 0.5
    max_delay_seconds: float = 2.0
    jitter: float = 0.2  # 20% jitter


def _sleep_seconds(attempt: int, policy: RetryPolicy) -> float:
    # attempt starts at 1 for the first retry sleep
    delay = policy.base_delay_seconds * (2 ** (attempt - 1))
    delay = min(delay, policy.max_delay_seconds)
    # jitter in range [1-jitter, 1+jitter]
    factor = 1.0 + random.uniform(-policy.jitter, policy.jitter)
    return max(0.0, delay * factor)

async def retry_async(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    should_retry: Callable[[Exception], bool],
    *,
    max_sleep: Callable[[], float] | None = None,
) -> T:
    """Await fn() with retries.

    - Retries on exceptions that satisfy should_retry.
    - `max_sleep` (optional) caps each backoff, e.g. by the time left before a
      deadline; when it returns <= 0 the last error is raised instead.
    - Raises the last exception if all attempts fail.
    """
    attempts = 1 + max(policy.retries, 0)

    for i in range(attempts):
        try:
            return await fn()
        except Exception as e:  # noqa: BLE001
            if i == attempts - 1 or not should_retry(e):
                raise
            delay = _sleep_seconds(i + 1, policy)
            if max_sleep is not None:
                budget = max_sleep()
                if budget <= 0:
                    raise
                delay = min(delay, budget)
            await asyncio.sleep(delay)

    raise AssertionError("unreachable")
