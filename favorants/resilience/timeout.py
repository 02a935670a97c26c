"""Timeout wrappers for remote calls.

Provides timeout protection with:
- A dedicated timeout signal carrying the deadline
- An inline wrapper for coroutines
"""

import asyncio
from typing import Any, Awaitable


class TimeoutError(Exception):
    """Raised when a remote call exceeds its deadline."""

    def __init__(self, message: str = "", timeout: float = 0.0):
        super().__init__(message)
        self.timeout = timeout


async def with_async_timeout(
    coro: Awaitable[Any],
    timeout_seconds: float,
    error_message: str = "Request timeout",
) -> Any:
    """Execute a coroutine with timeout.

    The coroutine is cancelled when the deadline passes.

    Args:
        coro: Coroutine to execute
        timeout_seconds: Timeout in seconds
        error_message: Error message for timeout

    Returns:
        Coroutine result

    Raises:
        TimeoutError: If timeout is exceeded
    """
    try:
        return await asyncio.wait_for(coro, timeout=timeout_seconds)
    except asyncio.TimeoutError:
        raise TimeoutError(
            f"{error_message} after {timeout_seconds}s",
            timeout_seconds,
        ) from None
