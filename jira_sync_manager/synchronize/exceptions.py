"""Contains the error taxonomy of the synchronization engine.

Errors raised while talking to Jira or writing back to the host are
classified by the worker: transient errors are retried with backoff,
permanent errors end the job immediately.
"""


class SyncError(Exception):
    """Base class for synchronization errors."""

    retryable: bool = False

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None) -> None:
        """Initializes the error with the external status code and response body, if any."""
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class TransientFailure(SyncError):
    """Network timeout, 5xx response or similar; retried with backoff."""

    retryable = True


class RateLimitedError(TransientFailure):
    """Jira answered 429 Too Many Requests."""

    def __init__(self, message: str, retry_after: float | None = None, status_code: int | None = 429, body: str | None = None) -> None:
        """Initializes the error with the server-provided Retry-After delay in seconds."""
        super().__init__(message, status_code=status_code, body=body)
        self.retry_after = retry_after


class AuthenticationFailure(TransientFailure):
    """Jira rejected the credentials (401) or the account's permissions (403).

    Credentials are read fresh for every attempt, so an administrator fixing
    them inside the retry window lets the job recover.
    """


class PermanentFailure(SyncError):
    """A 4xx response other than auth or rate limit, e.g. an unknown project key."""


class LocalCommitFailure(SyncError):
    """Host persistence was unavailable after the external issue was created."""

    retryable = True


class AlreadySynced(SyncError):
    """The object already has an external key or a non-terminal sync job.

    This is a no-op outcome rather than a failure.
    """


class AuthorizationDenied(SyncError):
    """The acting user lacks the configured role in the object's project."""
