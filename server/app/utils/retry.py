"""
Retry helper with exponential backoff.

Used at startup for backing-service connections (Redis) so a container that
starts before its dependencies does not fail on the first attempt.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryError(Exception):
    """All attempts failed; ``__cause__`` holds the last error."""


async def with_retry(
    func: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    backoff_factor: float = 1.5,
    initial_delay: float = 1.0,
    max_delay: float = 30.0,
    operation_name: Optional[str] = None,
) -> T:
    """
    Retry an async operation with exponential backoff.

    Args:
        func: Zero-argument coroutine function to call
        max_retries: Maximum number of attempts (default: 3)
        backoff_factor: Multiplier for delay between attempts (default: 1.5)
        initial_delay: Initial delay in seconds (default: 1.0)
        max_delay: Maximum delay between attempts in seconds (default: 30.0)
        operation_name: Name for logging purposes

    Returns:
        Result from the first successful call

    Raises:
        RetryError: If every attempt failed

    Example:
        >>> await with_retry(init_redis, max_retries=5, operation_name="Redis connection")
    """
    name = operation_name or getattr(func, "__name__", "operation")
    last_exception: Optional[Exception] = None

    for attempt in range(max_retries):
        try:
            logger.debug(f"Attempt {attempt + 1}/{max_retries}: {name}")
            result = await func()

            if attempt > 0:
                logger.info(f"{name} succeeded on attempt {attempt + 1}/{max_retries}")

            return result

        except Exception as e:
            last_exception = e

            if attempt < max_retries - 1:
                delay = min(initial_delay * (backoff_factor**attempt), max_delay)
                logger.warning(f"{name} failed (attempt {attempt + 1}/{max_retries}): {e}")
                logger.info(f"Retrying in {delay:.1f}s...")
                await asyncio.sleep(delay)
            else:
                logger.error(f"{name} failed after {max_retries} attempts: {e}")

    raise RetryError(f"{name} failed after {max_retries} attempts. Last error: {last_exception}") from last_exception
