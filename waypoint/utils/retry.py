from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, TypeVar

from ..errors import StoreUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def compute_backoff(attempt: int, base: float = 1.5, jitter: float = 0.5) -> float:
    """Compute exponential backoff with jitter."""
    delay = base ** attempt
    return delay + random.uniform(0, jitter)


async def schedule_retry(attempt: int, base: float = 1.5, jitter: float = 0.5) -> None:
    """Sleep for computed backoff delay before retrying."""
    delay = compute_backoff(attempt, base=base, jitter=jitter)
    await asyncio.sleep(delay)


async def retry_store_call(
    call: Callable[[], Awaitable[T]],
    attempts: int,
    description: str = "store call",
) -> T:
    """Run ``call``, retrying on ``StoreUnavailableError`` with backoff.

    The last error propagates once ``attempts`` calls have failed.
    """
    attempt = 1
    while True:
        try:
            return await call()
        except StoreUnavailableError as exc:
            if attempt >= attempts:
                raise
            logger.warning(
                f"{description} failed (attempt {attempt}/{attempts}): {exc}; retrying"
            )
            await schedule_retry(attempt)
            attempt += 1
