"""
rottenbikes-auth: passwordless login client for the RottenBikes API.

Magic-link login and registration, same-device and cross-device
confirmation, session persistence and expiry handling.
"""

from rottenbikes_auth.client import AsyncRottenBikes
from rottenbikes_auth.config import Settings, load_settings
from rottenbikes_auth.engine import AuthEvent, AuthEventType, AuthSessionEngine
from rottenbikes_auth.errors import (
    APIError,
    AttemptCancelledError,
    AuthError,
    ConfirmationFailedError,
    ConnectionError,
    PollTransientError,
    RequestFailedError,
    RottenBikesError,
    SessionExpiredError,
)
from rottenbikes_auth.models import AttemptState, ClientType, LoginAttempt, Origin, Session
from rottenbikes_auth.storage import FileStore, MemoryStore

__version__ = "0.1.0"
__all__ = [
    "AsyncRottenBikes",
    "AuthSessionEngine",
    "AuthEvent",
    "AuthEventType",
    "Settings",
    "load_settings",
    "AttemptState",
    "ClientType",
    "LoginAttempt",
    "Origin",
    "Session",
    "FileStore",
    "MemoryStore",
    "RottenBikesError",
    "APIError",
    "ConnectionError",
    "AuthError",
    "RequestFailedError",
    "ConfirmationFailedError",
    "SessionExpiredError",
    "PollTransientError",
    "AttemptCancelledError",
]
