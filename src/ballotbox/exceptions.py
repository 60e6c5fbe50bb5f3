"""Custom exception hierarchy for ballotbox."""

from __future__ import annotations


class BallotError(Exception):
    """Base exception for all ballotbox errors."""


class BallotConfigError(BallotError):
    """Invalid or missing configuration."""


class BallotTransportError(BallotError):
    """Network-level failure (connection error, timeout, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        path: str = "",
    ) -> None:
        self.status_code = status_code
        self.path = path
        super().__init__(message)


class BallotRequestAbortedError(BallotError):
    """The caller aborted the request.

    Consumers treat this as a no-op and never surface it to end users.
    """


class BallotApiError(BallotError):
    """Server answered with a non-2xx status."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        path: str = "",
    ) -> None:
        self.status_code = status_code
        self.path = path
        super().__init__(message)


class BallotClientError(BallotApiError):
    """HTTP 4xx. Never retried."""


class BallotServerError(BallotApiError):
    """HTTP 5xx returned after all retry attempts were spent."""


class BallotSessionExpiredError(BallotClientError):
    """Session token rejected by the server.

    The stored credential has already been cleared when this is raised,
    so the next request goes out unauthenticated.
    """


class BallotAuthenticationError(BallotError):
    """Sign-in failed (unknown user, inactive account, bad password)."""
