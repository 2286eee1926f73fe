"""
Retry with exponential backoff for transient network failures.

Used for calls to the GitHub API. Database writes and the ingestion service
call are never retried here: their failures are reported to the caller.
"""

import asyncio
import random
from typing import Awaitable, Callable, TypeVar, Any, Tuple, Type

import httpx

from graphbug.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_RETRYABLE_EXCEPTIONS: Tuple[Type[BaseException], ...] = (
    httpx.TransportError,
    ConnectionError,
    TimeoutError,
)


async def retry_with_backoff(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    retryable_exceptions: Tuple[Type[BaseException], ...] = DEFAULT_RETRYABLE_EXCEPTIONS,
    **kwargs: Any,
) -> T:
    """
    Await ``func(*args, **kwargs)``, retrying retryable exceptions with backoff.

    Args:
        func: The async callable to execute
        max_retries: Maximum number of retry attempts (default: 3)
        base_delay: Initial delay in seconds before first retry (default: 1.0)
        max_delay: Maximum delay between retries in seconds (default: 30.0)
        exponential_base: Base for exponential backoff calculation (default: 2.0)
        jitter: Whether to randomise the delay to avoid thundering herd (default: True)
        retryable_exceptions: Exception types that should trigger a retry

    Returns:
        The result of the function call

    Raises:
        The last exception once all retries are exhausted
    """
    name = getattr(func, "__name__", repr(func))

    for attempt in range(max_retries + 1):
        try:
            return await func(*args, **kwargs)
        except retryable_exceptions as e:
            if attempt == max_retries:
                logger.error(f"All {max_retries + 1} attempts failed for {name}: {e}")
                raise

            delay = min(base_delay * (exponential_base ** attempt), max_delay)
            if jitter:
                delay = delay * (0.5 + random.random())

            logger.warning(
                f"Attempt {attempt + 1}/{max_retries + 1} failed for {name}: {e}. "
                f"Retrying in {delay:.2f}s..."
            )
            await asyncio.sleep(delay)

    raise RuntimeError("Unexpected state in retry_with_backoff")
