"""
RottenBikes auth error types.

Everything the engine raises derives from RottenBikesError so callers can
catch a single base class.
"""

from typing import Any, Optional


class RottenBikesError(Exception):
    def __init__(self, code: str, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details


class APIError(RottenBikesError):
    """The backend answered with an HTTP status >= 400."""

    def __init__(self, status_code: int, message: str, server_error: Optional[str] = None):
        super().__init__("http_error", message, {"status_code": status_code})
        self.status_code = status_code
        self.server_error = server_error

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404

    @property
    def is_unauthorized(self) -> bool:
        return self.status_code == 401


class ConnectionError(RottenBikesError):
    def __init__(self, message: str):
        super().__init__("connection_error", message)


class AuthError(RottenBikesError):
    def __init__(self, message: str, code: str = "auth_error", details: Optional[dict[str, Any]] = None):
        super().__init__(code, message, details)


class RequestFailedError(AuthError):
    """Login or registration request rejected (captcha, unknown user, rate limit, validation)."""

    def __init__(self, reason: str, details: Optional[dict[str, Any]] = None):
        super().__init__(reason, "request_failed", details)
        self.reason = reason


class ConfirmationFailedError(AuthError):
    """Magic token invalid, already used or expired at exchange time."""

    def __init__(self, message: str = "Invalid or expired token", details: Optional[dict[str, Any]] = None):
        super().__init__(message, "confirmation_failed", details)


class SessionExpiredError(AuthError):
    """An authenticated call was rejected with 401 after a session existed."""

    def __init__(self, message: str = "Session expired", last_username: Optional[str] = None):
        super().__init__(message, "session_expired", {"last_username": last_username})
        self.last_username = last_username


class PollTransientError(AuthError):
    """Non-fatal poll failure. Logged by the poller, never surfaced."""

    def __init__(self, message: str):
        super().__init__(message, "poll_transient")


class AttemptCancelledError(AuthError):
    """The pending attempt was abandoned before it was confirmed."""

    def __init__(self, message: str = "Login attempt was cancelled"):
        super().__init__(message, "attempt_cancelled")
