"""Shared plumbing for domain services."""

from typing import Any, Awaitable, Callable, Optional

from ..backend import RemoteDataAccess
from ..resilience.connectivity import ConnectivityMonitor
from ..resilience.retry import RetryConfig, execute_with_retry, retry_config_from_settings

# PostgREST "no rows returned" for single-row selects
NO_ROWS_CODE = "PGRST116"

# Postgres unique_violation
UNIQUE_VIOLATION_CODE = "23505"

RESTAURANT_COLUMNS = "*, restaurant_types(id, name), cities(id, name)"


def error_code(error: BaseException) -> Optional[str]:
    """Backend error code, if the error carries one."""
    code = getattr(error, "code", None)
    return str(code) if code is not None else None


class ServiceBase:
    """Base class running every remote call through the retry executor."""

    def __init__(
        self,
        backend: RemoteDataAccess,
        retry_config: Optional[RetryConfig] = None,
        connectivity: Optional[ConnectivityMonitor] = None,
    ):
        """Initialize service.

        Args:
            backend: Remote data access layer
            retry_config: Retry policy. If not provided, uses settings.
            connectivity: Optional online/offline monitor
        """
        self.backend = backend
        self.retry_config = retry_config or retry_config_from_settings()
        self.connectivity = connectivity

    async def run(self, operation: Callable[[], Awaitable[Any]]) -> Any:
        """Execute one remote call with the configured retry policy."""
        config = self.retry_config
        return await execute_with_retry(
            operation,
            config.max_attempts,
            config.base_delay,
            config.timeout,
            max_jitter=config.max_jitter,
            connectivity=self.connectivity,
        )
