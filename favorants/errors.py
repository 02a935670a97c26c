"""Error taxonomy for Favorants.

Transient failures (timeouts, offline, 429/503, transaction races) are
retried by the resilience layer. Everything defined here except
OfflineError is a permanent rejection and is surfaced to the caller as-is.
"""

from typing import Optional


class FavorantsError(Exception):
    """Base exception for Favorants errors."""

    def __init__(self, message: str = "", code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code


class ValidationError(FavorantsError):
    """Missing required field, duplicate name or malformed request."""

    pass


class NotFoundError(FavorantsError):
    """Referenced entity does not exist."""

    pass


class AuthorizationError(FavorantsError):
    """Caller is not allowed to perform the action."""

    pass


class OfflineError(FavorantsError):
    """The device is known to be offline."""

    pass


class OperationFailedError(FavorantsError):
    """A remote operation failed after the executor gave up.

    Carries the last underlying error unchanged.
    """

    def __init__(self, message: str = "Operation failed", last_error: Optional[BaseException] = None):
        super().__init__(message)
        self.last_error = last_error


# Errors that never warrant another attempt
PERMANENT_ERRORS = (
    ValidationError,
    NotFoundError,
    AuthorizationError,
)
