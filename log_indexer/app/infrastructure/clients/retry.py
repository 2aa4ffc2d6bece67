from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from log_indexer.app.domain.ports.out import Sleep


logger = logging.getLogger(__name__)

T = TypeVar("T")


def _never(_exc: BaseException) -> bool:
    return False


@dataclass(frozen=True)
class RetryPolicy:
    """
    Exponential backoff with additive jitter.

    Retry n (1-based) waits base_delay * 2 ** (n - 1) + uniform(0, jitter)
    seconds. max_retries counts retries after the first attempt.
    """

    max_retries: int = 8
    base_delay: float = 0.7
    jitter: float = 0.4
    is_retryable: Callable[[BaseException], bool] = field(default=_never)

    def delay_for(self, retry: int, *, rng: random.Random | None = None) -> float:
        uniform = (rng or random).uniform
        return self.base_delay * (2 ** (retry - 1)) + uniform(0, self.jitter)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    description: str = "operation",
    sleep: Sleep = asyncio.sleep,
) -> T:
    """
    Run `operation` until it succeeds, the error is not retryable, or the
    policy's retries are exhausted. The last error is re-raised unchanged.
    """
    retry = 0
    while True:
        try:
            return await operation()
        except Exception as exc:
            if not policy.is_retryable(exc):
                raise
            retry += 1
            if retry > policy.max_retries:
                logger.warning(
                    "%s failed after %s retries: %s",
                    description,
                    policy.max_retries,
                    exc,
                )
                raise

            wait = policy.delay_for(retry)
            logger.warning(
                "%s retry %s/%s in %.2fs (%s)",
                description,
                retry,
                policy.max_retries,
                wait,
                exc,
            )
            await sleep(wait)
