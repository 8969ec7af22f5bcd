"""Exceptions for Contributor Sync.

Exception Hierarchy:
    ContributorSyncError (base)
    ├── ConfigurationError (no usable credentials or database, fatal before any work)
    ├── PlatformAPIError (HTTP API errors with status codes)
    │   ├── NotFoundError (404, never retried)
    │   │   └── RepositoryNotRegisteredError (repository absent from the store)
    │   ├── RateLimitedError (quota exhausted on every credential)
    │   ├── AuthInvalidError (credential rejected by the platform)
    │   │   └── NoCredentialsAvailableError (every credential has been rejected)
    │   └── TransientError (5xx or network failure)
    └── PersistenceError (database write failed after bounded retries)

Usage:
    - RateLimitedError, AuthInvalidError and TransientError are retried by the
      RateLimitedClient before they reach callers.
    - NotFoundError is raised immediately.
    - Per-contributor errors never escape a sync; they end up in the SyncReport.
"""

__all__ = [
    "ContributorSyncError",
    "ConfigurationError",
    "PlatformAPIError",
    "NotFoundError",
    "RepositoryNotRegisteredError",
    "RateLimitedError",
    "AuthInvalidError",
    "NoCredentialsAvailableError",
    "TransientError",
    "PersistenceError",
]


class ContributorSyncError(Exception):
    """Base exception for all Contributor Sync errors."""

    pass


class ConfigurationError(ContributorSyncError):
    """Raised when the run cannot start (no credentials, no database, bad limits)."""

    pass


class PlatformAPIError(ContributorSyncError):
    """Base exception for source platform API errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: dict | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class NotFoundError(PlatformAPIError):
    """Raised when a repository or user does not exist (HTTP 404)."""

    def __init__(
        self,
        message: str,
        status_code: int | None = 404,
        response_body: dict | None = None,
    ):
        super().__init__(message, status_code=status_code, response_body=response_body)


class RepositoryNotRegisteredError(NotFoundError):
    """Raised when a repository has not been registered in the store."""

    def __init__(self, repository: str):
        super().__init__(f"Repository not registered: {repository}", status_code=None)
        self.repository = repository


class RateLimitedError(PlatformAPIError):
    """Raised when the platform reports an exhausted quota (HTTP 403/429).

    reset_time is the Unix timestamp at which the quota is expected back.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = 403,
        response_body: dict | None = None,
        reset_time: float | None = None,
    ):
        super().__init__(message, status_code=status_code, response_body=response_body)
        self.reset_time = reset_time


class AuthInvalidError(PlatformAPIError):
    """Raised when a credential is rejected (HTTP 401 or a revoked-token message)."""

    def __init__(
        self,
        message: str,
        status_code: int | None = 401,
        response_body: dict | None = None,
    ):
        super().__init__(message, status_code=status_code, response_body=response_body)


class NoCredentialsAvailableError(AuthInvalidError):
    """Raised when every configured credential has been removed from rotation."""

    def __init__(self, message: str = "No valid credentials remain"):
        super().__init__(message, status_code=None)


class TransientError(PlatformAPIError):
    """Raised for server errors and network failures that outlived their retries."""

    pass


class PersistenceError(ContributorSyncError):
    """Raised when a database write keeps failing after bounded retries."""

    def __init__(self, message: str, attempts: int = 1):
        super().__init__(message)
        self.attempts = attempts
