"""Retry utility for provider calls with exponential backoff."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import aiohttp

T = TypeVar("T")

logger = logging.getLogger(__name__)


def default_is_transient_error(error: Exception) -> bool:
    """Check if an error is transient and worth retrying.

    Type-based detection covers timeouts and connection failures from the
    standard library and aiohttp. Keyword matching handles provider errors
    that only describe the failure in their message.

    Args:
        error: Exception to check

    Returns:
        True if error is transient, False otherwise
    """
    transient_types = (
        asyncio.TimeoutError,
        ConnectionError,
        TimeoutError,
        aiohttp.ClientConnectionError,
    )
    if isinstance(error, transient_types):
        return True

    error_str = str(error).lower()
    transient_keywords = [
        "timeout",
        "connection",
        "network",
        "temporary",
        "unavailable",
    ]
    return any(keyword in error_str for keyword in transient_keywords)


async def retry_with_backoff(
    operation: Callable[..., Awaitable[T]],
    max_retries: int = 3,
    retry_delay: float = 1.0,
    operation_args: tuple[Any, ...] | None = None,
    operation_kwargs: dict[str, Any] | None = None,
    is_transient_error: Callable[[Exception], bool] | None = None,
    on_retry: Callable[..., None] | None = None,
    delay_for: Callable[[Exception, int], float] | None = None,
    before_attempt: Callable[[], Awaitable[None]] | None = None,
) -> T:
    """Execute an async operation with retry logic and exponential backoff.

    Args:
        operation: Async function to execute
        max_retries: Maximum number of retry attempts (default: 3)
        retry_delay: Initial delay in seconds between retries, doubles each retry (default: 1.0)
        operation_args: Tuple of positional arguments to pass to operation
        operation_kwargs: Dictionary of keyword arguments to pass to operation
        is_transient_error: Optional custom function to determine if error is transient
        on_retry: Optional callback called on each retry with (attempt, max_retries, error, delay)
        delay_for: Optional function returning the delay in seconds for (error, attempt),
            replacing the exponential schedule (e.g. to honour Retry-After)
        before_attempt: Optional coroutine function awaited before every attempt,
            including the first (e.g. to pace calls through a rate limiter)

    Returns:
        Result of the operation if successful

    Raises:
        ValueError: If max_retries or retry_delay are negative
        Exception: The last exception if all retries are exhausted or if non-transient error
    """
    if max_retries < 0:
        raise ValueError("max_retries must be >= 0")  # noqa: TRY003
    if retry_delay < 0:
        raise ValueError("retry_delay must be >= 0")  # noqa: TRY003

    if operation_args is None:
        operation_args = ()
    if operation_kwargs is None:
        operation_kwargs = {}

    retry_count = 0

    while retry_count <= max_retries:
        if before_attempt is not None:
            await before_attempt()
        try:
            result = await operation(*operation_args, **operation_kwargs)
        except Exception as e:
            retry_count += 1

            if is_transient_error is not None:
                is_transient = is_transient_error(e)
            else:
                is_transient = default_is_transient_error(e)

            if is_transient and retry_count <= max_retries:
                if delay_for is not None:
                    delay = delay_for(e, retry_count)
                else:
                    delay = retry_delay * (2 ** (retry_count - 1))

                logger.warning(
                    f"Transient error on attempt {retry_count}/{max_retries + 1}: {e}. "
                    f"Retrying in {delay:.2f}s..."
                )

                if on_retry:
                    on_retry(
                        attempt=retry_count,
                        max_retries=max_retries,
                        error=e,
                        delay=delay,
                    )

                await asyncio.sleep(delay)
            else:
                if retry_count > max_retries:
                    logger.warning(f"Max retries ({max_retries}) exceeded: {e}")
                else:
                    logger.debug(f"Non-transient error: {e}")
                raise
        else:
            return result

    # pragma: no cover - the loop always returns on success or raises on error
    raise RuntimeError
