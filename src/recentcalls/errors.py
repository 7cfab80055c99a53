"""Error taxonomy for recent-call resolution."""

from __future__ import annotations


class RecentCallsError(RuntimeError):
    """Base recent-calls error."""


class MissingDependencyError(RecentCallsError):
    """Raised at construction when a required collaborator is absent."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"{name} is required")


class RemoteFetchError(RecentCallsError):
    """Raised when a remote call-log query fails."""


class CallLogRequestError(RemoteFetchError):
    """Raised when the remote call-log endpoint returns an error."""

    def __init__(self, *, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"Call log request failed ({status_code}): {message}")


class CallLogRateLimitedError(CallLogRequestError):
    """Raised when the remote call-log endpoint rejects the caller with 429."""

    def __init__(self, *, message: str, retry_after: float | None = None) -> None:
        self.retry_after = retry_after
        super().__init__(status_code=429, message=message)
