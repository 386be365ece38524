from rottenbikes_auth.models.attempt import AttemptKind, AttemptState, ClientType, LoginAttempt, Origin
from rottenbikes_auth.models.session import (
    ConfirmResponse,
    MagicLinkResponse,
    PollResponse,
    Session,
    VerifyResponse,
)

__all__ = [
    "AttemptKind",
    "AttemptState",
    "ClientType",
    "LoginAttempt",
    "Origin",
    "ConfirmResponse",
    "MagicLinkResponse",
    "PollResponse",
    "Session",
    "VerifyResponse",
]
