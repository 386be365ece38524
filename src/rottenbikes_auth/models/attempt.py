"""
Magic-link attempt models.

An attempt moves through a single AttemptState; there are no parallel
flags for "polling" or "confirmed".
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class AttemptState(str, Enum):
    IDLE = "idle"
    REQUESTED = "requested"
    CONFIRMING = "confirming"
    CONFIRMED_LOCAL = "confirmed_local"
    CONFIRMED_REMOTE = "confirmed_remote"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = {AttemptState.CONFIRMED_LOCAL, AttemptState.CONFIRMED_REMOTE, AttemptState.FAILED}


class Origin(str, Enum):
    """Tag of the client type that created an attempt. Web attempts carry no tag."""
    MOBILE = "mobile"


class ClientType(str, Enum):
    """Execution context of this client."""
    WEB = "web"
    MOBILE = "mobile"


class AttemptKind(str, Enum):
    LOGIN = "login"
    REGISTER = "register"
    LINK = "link"  # opened from a confirmation link, no request on this device


class LoginAttempt(BaseModel):
    model_config = ConfigDict(frozen=True)

    magic_token: str
    kind: AttemptKind = AttemptKind.LOGIN
    state: AttemptState = AttemptState.REQUESTED
    origin: Optional[Origin] = None
    identifier: Optional[str] = None
    error: Optional[str] = None

    def transition(self, state: AttemptState, error: Optional[str] = None) -> "LoginAttempt":
        return self.model_copy(update={"state": state, "error": error})

    def __repr__(self) -> str:
        return f"LoginAttempt(kind={self.kind.value!r}, state={self.state.value!r}, origin={self.origin})"
