"""Resilience layer for Favorants.

This module provides:
- Retry with exponential backoff around remote calls
- Per-attempt timeouts
- Online/offline tracking for error classification
"""

from .connectivity import ConnectionState, ConnectionStatus, ConnectivityMonitor
from .retry import (
    RetryConfig,
    calculate_backoff,
    execute_with_retry,
    is_retryable,
    retry_config_from_settings,
)
from .timeout import TimeoutError, with_async_timeout

__all__ = [
    "execute_with_retry",
    "retry_config_from_settings",
    "calculate_backoff",
    "is_retryable",
    "RetryConfig",
    "ConnectivityMonitor",
    "ConnectionState",
    "ConnectionStatus",
    "TimeoutError",
    "with_async_timeout",
]
