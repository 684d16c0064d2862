"""
Retry wrapper for calls to the external grading model.

Only rate limiting is retried, with exponential backoff. Everything else is
treated as non-transient and propagates on first occurrence.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from app.config import logger
from app.errors import RateLimitedError, RateLimitExhaustedError, RetryAbortedError

T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    max_retries: int = 3
    base_delay_ms: int = 1000


async def with_retry(
    operation: str,
    call: Callable[[], Awaitable[T]],
    config: RetryConfig = RetryConfig(),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Await call(), retrying on RateLimitedError.

    Raises RateLimitExhaustedError after max_retries + 1 rate-limited attempts,
    RetryAbortedError if the backoff sleep is cancelled.
    """
    attempts = 0
    delay_ms = config.base_delay_ms

    while True:
        try:
            return await call()
        except RateLimitedError:
            if attempts >= config.max_retries:
                logger.error(
                    f"Model rate limit exhausted for operation={operation} after {attempts + 1} attempt(s)"
                )
                raise RateLimitExhaustedError(operation, attempts + 1)
            attempts += 1
            logger.warning(
                f"Model rate limit hit for operation={operation}, attempt={attempts}/{config.max_retries}, "
                f"retrying in {delay_ms}ms"
            )
            try:
                await sleep(delay_ms / 1000)
            except asyncio.CancelledError as e:
                raise RetryAbortedError(operation) from e
            delay_ms *= 2
