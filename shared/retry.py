"""
Retry helper for operations that can fail with a retryable error.
"""

import asyncio
import random
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

from shared.logging import get_logger


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(self,
                 max_attempts: int = 3,
                 base_delay: float = 0.0,
                 max_delay: float = 1.0,
                 exponential_base: float = 2.0,
                 jitter: bool = False):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Calculate delay between retry attempts."""
    delay = min(config.base_delay * (config.exponential_base ** (attempt - 1)), config.max_delay)

    if config.jitter:
        jitter_amount = delay * 0.1
        delay += random.uniform(-jitter_amount, jitter_amount)

    return max(0.0, delay)


async def retry_async(operation: Callable[[], Awaitable[Any]],
                      exceptions: Tuple[Type[BaseException], ...],
                      config: Optional[RetryConfig] = None,
                      name: str = "operation") -> Any:
    """Run ``operation`` until it succeeds or attempts run out.

    Only ``exceptions`` are retried; the last one is re-raised unchanged once
    ``config.max_attempts`` is exhausted so callers keep seeing their own error
    types.
    """
    config = config or RetryConfig()
    logger = get_logger(f"orders.retry.{name}")

    for attempt in range(1, config.max_attempts + 1):
        try:
            result = await operation()
            if attempt > 1:
                logger.info("Retry succeeded", attempt=attempt)
            return result
        except exceptions as e:
            if attempt >= config.max_attempts:
                logger.error(
                    "All retry attempts exhausted",
                    attempt=attempt,
                    max_attempts=config.max_attempts,
                    error=str(e)
                )
                raise

            delay = calculate_delay(attempt, config)
            logger.warning(
                "Retry attempt failed, retrying",
                attempt=attempt,
                delay=delay,
                error=str(e)
            )
            if delay:
                await asyncio.sleep(delay)

    raise RuntimeError("retry_async requires max_attempts >= 1")
