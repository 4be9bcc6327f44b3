"""
Centralized async retry utility for transient failures.

Used for external I/O that may fail transiently: database pool creation and
gateway HTTP calls.

Retry policy:
- Exponential backoff with jitter
- Only retries on transient failures
- Preserves original exception on final failure
- No logging inside utility (caller handles logging)

Domain exceptions (app.core.exceptions) are NEVER retried:
they are not in TRANSIENT_EXCEPTIONS and are raised on the first attempt.
"""

import asyncio
import inspect
import random
from typing import Callable, Type, Tuple, Any
import asyncpg
import httpx


DEFAULT_RETRIES = 2
DEFAULT_BASE_DELAY = 1.0
DEFAULT_MAX_DELAY = 10.0


TRANSIENT_EXCEPTIONS: Tuple[Type[Exception], ...] = (
    asyncpg.PostgresError,
    asyncio.TimeoutError,
    httpx.TransportError,  # connect/read errors and timeouts
    httpx.HTTPStatusError,  # raised by callers for 5xx only
    ConnectionError,
    OSError,
)


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Exponential delay for the given attempt (0-based) with ±20% jitter"""
    delay = min(base_delay * (2 ** attempt), max_delay)
    jitter = delay * 0.2 * (random.random() * 2 - 1)
    return max(0.0, delay + jitter)


async def retry_async(
    fn: Callable[[], Any],
    *,
    retries: int = DEFAULT_RETRIES,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    retry_on: Tuple[Type[Exception], ...] = TRANSIENT_EXCEPTIONS,
) -> Any:
    """
    Retry an async function with exponential backoff.

    Args:
        fn: Callable returning an awaitable (async def or lambda: coro)
        retries: Number of retry attempts (default: 2, total attempts: 3)
        base_delay: Base delay in seconds for exponential backoff
        max_delay: Maximum delay in seconds
        retry_on: Exception types to retry on (default: transient exceptions)

    Returns:
        Result of the function call

    Raises:
        Original exception if all retries fail.
        Non-retryable exceptions are raised immediately.
    """
    for attempt in range(retries + 1):
        try:
            result = fn()
            if inspect.isawaitable(result):
                result = await result
            return result
        except retry_on:
            if attempt >= retries:
                raise
            await asyncio.sleep(backoff_delay(attempt, base_delay, max_delay))

    raise RuntimeError("retry_async: unexpected end of retry loop")
