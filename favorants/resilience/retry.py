"""Retry with exponential backoff for remote calls.

Provides automatic retry for transient failures with:
- Per-attempt timeout
- Exponential backoff with additive jitter
- Network-aware error classification

Attempt counting lives inside each call; nothing is kept at module level,
so concurrent invocations never see each other's counters.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import httpx

from ..config import settings
from ..errors import PERMANENT_ERRORS, OfflineError
from .connectivity import ConnectivityMonitor
from .timeout import TimeoutError, with_async_timeout

logger = logging.getLogger(__name__)


# HTTP statuses worth another attempt
TRANSIENT_STATUS_CODES = frozenset({429, 502, 503, 504})

# Postgres codes for races that usually clear up on retry
TRANSIENT_DB_CODES = frozenset({
    "40001",  # serialization_failure
    "40P01",  # deadlock_detected
    "23505",  # unique_violation from concurrent inserts
})

# Lowercase fragments seen in transport-level failure messages
NETWORK_ERROR_SIGNATURES = (
    "network",
    "failed to fetch",
    "connection reset",
    "connection refused",
    "connection aborted",
    "timed out",
    "timeout",
    "abort",
)


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3  # Extra retries beyond the first try
    base_delay: float = 1.0  # Base delay in seconds
    timeout: float = 10.0  # Per-attempt timeout in seconds
    max_jitter: float = 0.2  # Jitter upper bound in seconds

    def __post_init__(self):
        if self.max_attempts < 0:
            raise ValueError("max_attempts must be >= 0")


def retry_config_from_settings() -> RetryConfig:
    """Build a RetryConfig from application settings."""
    return RetryConfig(
        max_attempts=settings.retry_max_attempts,
        base_delay=settings.retry_base_delay,
        timeout=settings.request_timeout,
        max_jitter=settings.retry_max_jitter,
    )


def calculate_backoff(
    attempt: int,
    base_delay: float = 1.0,
    max_jitter: float = 0.2,
) -> float:
    """Calculate backoff delay for a retry attempt.

    Args:
        attempt: Attempt index (0-indexed)
        base_delay: Base delay in seconds
        max_jitter: Jitter upper bound in seconds

    Returns:
        Delay in seconds, in [base * 2^attempt, base * 2^attempt + max_jitter)
    """
    delay = base_delay * (2**attempt)
    if max_jitter > 0:
        delay += random.random() * max_jitter
    return delay


def _status_of(error: BaseException) -> Optional[int]:
    """Pull an HTTP status off an error, wherever the client put it."""
    for attr in ("status", "status_code"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(error, "response", None)
    value = getattr(response, "status_code", None)
    if isinstance(value, int):
        return value
    # postgrest puts the HTTP status in `code` when the body is not JSON
    code = getattr(error, "code", None)
    if isinstance(code, int):
        return code
    if isinstance(code, str) and len(code) == 3 and code.isdigit():
        return int(code)
    return None


def is_network_error(error: BaseException) -> bool:
    """Check whether an error looks like a transport failure."""
    if isinstance(error, (ConnectionError, httpx.TransportError)):
        return True

    message = str(getattr(error, "message", None) or error).lower()
    return any(signature in message for signature in NETWORK_ERROR_SIGNATURES)


def is_retryable(
    error: BaseException,
    connectivity: Optional[ConnectivityMonitor] = None,
) -> bool:
    """Determine if an error should be retried.

    Args:
        error: The exception that occurred
        connectivity: Optional monitor; an offline device makes any failure retryable

    Returns:
        True if another attempt may succeed
    """
    # Check non-retryable first
    if isinstance(error, PERMANENT_ERRORS):
        return False

    if isinstance(error, (TimeoutError, asyncio.TimeoutError, OfflineError)):
        return True

    if connectivity is not None and connectivity.is_offline:
        return True

    if _status_of(error) in TRANSIENT_STATUS_CODES:
        return True

    if str(getattr(error, "code", "")) in TRANSIENT_DB_CODES:
        return True

    return is_network_error(error)


async def execute_with_retry(
    operation: Callable[[], Awaitable[Any]],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    timeout: float = 10.0,
    *,
    max_jitter: float = 0.2,
    connectivity: Optional[ConnectivityMonitor] = None,
    on_retry: Optional[Callable[[BaseException, int, float], None]] = None,
) -> Any:
    """Execute a remote operation with bounded retries.

    Each attempt races the operation against ``timeout``. Success returns
    immediately. A retryable failure with attempts left waits
    ``base_delay * 2**attempt + uniform(0, max_jitter)`` and tries again;
    anything else re-raises the last error unchanged.

    Args:
        operation: Zero-argument coroutine function, one remote call per invocation
        max_attempts: Extra retries beyond the first try (>= 0)
        base_delay: Base delay between retries in seconds
        timeout: Per-attempt timeout in seconds
        max_jitter: Jitter upper bound in seconds
        connectivity: Optional online/offline monitor used for classification
        on_retry: Optional callback (error, attempt_number, delay) before each wait

    Returns:
        The operation's result

    Usage:
        rows = await execute_with_retry(lambda: backend.query("cities"))
    """
    if max_attempts < 0:
        raise ValueError("max_attempts must be >= 0")

    name = getattr(operation, "__name__", "operation")
    total = max_attempts + 1

    for attempt in range(total):
        try:
            return await with_async_timeout(operation(), timeout)
        except Exception as e:
            if not is_retryable(e, connectivity):
                logger.warning(f"Non-retryable error in {name}: {e}")
                raise

            if attempt == max_attempts:
                logger.error(f"All {total} attempts failed for {name}: {e}")
                raise

            delay = calculate_backoff(attempt, base_delay, max_jitter)
            logger.warning(
                f"Attempt {attempt + 1}/{total} failed for {name}: {e}. "
                f"Retrying in {delay:.2f}s"
            )

            if on_retry:
                try:
                    on_retry(e, attempt + 1, delay)
                except Exception as callback_error:
                    logger.debug(f"on_retry callback failed: {callback_error}")

            await asyncio.sleep(delay)
