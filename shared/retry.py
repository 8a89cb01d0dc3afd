"""
Retry mechanism for resilient operations.
"""

import asyncio
import random
from typing import Any, Optional, Callable, Awaitable

from shared.logging import get_logger


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(self,
                 max_attempts: int = 3,
                 base_delay: float = 1.0,
                 max_delay: float = 60.0,
                 exponential_base: float = 2.0,
                 jitter: bool = True):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter


async def call_with_retry(func: Callable[[], Awaitable[Any]],
                          *,
                          exceptions: tuple = (Exception,),
                          config: Optional[RetryConfig] = None,
                          should_retry: Optional[Callable[[BaseException], bool]] = None,
                          name: str = "operation") -> Any:
    """Await ``func`` until it succeeds or the attempt budget runs out.

    Exceptions outside ``exceptions``, or rejected by ``should_retry``, are
    raised immediately. After the last attempt the final exception is raised
    unchanged.
    """
    if config is None:
        config = RetryConfig()

    logger = get_logger(f"retry.{name}")

    for attempt in range(1, config.max_attempts + 1):
        try:
            result = await func()

            if attempt > 1:
                logger.info(
                    "Retry succeeded",
                    attempt=attempt,
                    function=name
                )

            return result

        except exceptions as e:
            if should_retry is not None and not should_retry(e):
                raise

            if attempt == config.max_attempts:
                if config.max_attempts > 1:
                    logger.error(
                        "All retry attempts exhausted",
                        attempt=attempt,
                        max_attempts=config.max_attempts,
                        function=name,
                        error=str(e)
                    )
                raise

            delay = _calculate_delay(attempt, config)

            logger.warning(
                "Retry attempt failed, waiting before next attempt",
                attempt=attempt,
                delay=delay,
                function=name,
                error=str(e)
            )

            await asyncio.sleep(delay)


def _calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Calculate delay between retry attempts."""
    delay = min(config.base_delay * (config.exponential_base ** (attempt - 1)), config.max_delay)

    if config.jitter:
        jitter_amount = delay * 0.1  # 10% jitter
        delay += random.uniform(-jitter_amount, jitter_amount)

    return max(0.0, delay)
