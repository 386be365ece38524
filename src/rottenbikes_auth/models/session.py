"""
Session models and the wire responses of the /auth endpoints.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class Session(BaseModel):
    """Immutable snapshot of the engine's session state."""

    model_config = ConfigDict(frozen=True)

    session_token: Optional[str] = None
    user_id: Optional[int] = None
    username: Optional[str] = None
    last_username: Optional[str] = None

    @property
    def is_logged_in(self) -> bool:
        return self.session_token is not None


class MagicLinkResponse(BaseModel):
    """POST /auth/request-magic-link and POST /auth/register"""
    magic_token: str
    message: Optional[str] = None


class ConfirmResponse(BaseModel):
    """GET /auth/confirm/{magic_token}"""
    api_token: str
    email: Optional[str] = None
    api_token_expires_at: Optional[datetime] = None


class PollResponse(BaseModel):
    """GET /auth/poll?token=... once the link was confirmed elsewhere"""
    api_token: str


class VerifyResponse(BaseModel):
    """GET /auth/verify"""
    poster_id: int
    username: Optional[str] = None
    status: Optional[str] = None
