"""
Auth REST API: thin wrappers over the /auth endpoints.

No state lives here; the engine decides what to do with the results.
"""

from typing import Any, Optional, TypeVar
from urllib.parse import quote

from pydantic import BaseModel, ValidationError

from rottenbikes_auth.errors import RottenBikesError
from rottenbikes_auth.models.attempt import Origin
from rottenbikes_auth.models.session import ConfirmResponse, MagicLinkResponse, PollResponse, VerifyResponse
from rottenbikes_auth.transport.http import HttpClient

ModelT = TypeVar("ModelT", bound=BaseModel)


def _parse(model: type[ModelT], data: Any) -> ModelT:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise RottenBikesError(
            "invalid_response", f"Unexpected {model.__name__} payload", {"errors": e.errors()},
        ) from e


class AuthAPI:
    def __init__(self, http: HttpClient):
        self._http = http

    async def request_magic_link(
        self, identifier: str, captcha_token: Optional[str] = None, origin: Optional[Origin] = None,
    ) -> MagicLinkResponse:
        """POST /auth/request-magic-link. Identifiers containing '@' are looked up as email."""
        field = "email" if "@" in identifier else "username"
        body: dict[str, Any] = {field: identifier}
        if captcha_token:
            body["captcha_token"] = captcha_token
        if origin:
            body["origin"] = origin.value
        result = await self._http.post("/auth/request-magic-link", body, authenticated=False)
        return _parse(MagicLinkResponse, result)

    async def register(
        self, username: str, email: str, captcha_token: Optional[str] = None, origin: Optional[Origin] = None,
    ) -> MagicLinkResponse:
        """POST /auth/register"""
        body: dict[str, Any] = {"username": username, "email": email}
        if captcha_token:
            body["captcha_token"] = captcha_token
        if origin:
            body["origin"] = origin.value
        result = await self._http.post("/auth/register", body, authenticated=False)
        return _parse(MagicLinkResponse, result)

    async def confirm(self, magic_token: str, origin: Optional[Origin] = None) -> ConfirmResponse:
        """GET /auth/confirm/{magic_token}. Consumes the magic token server-side."""
        params = {"origin": origin.value} if origin else None
        path = f"/auth/confirm/{quote(magic_token, safe='')}"
        result = await self._http.get(path, params=params, authenticated=False)
        return _parse(ConfirmResponse, result)

    async def poll(self, magic_token: str) -> PollResponse:
        """GET /auth/poll?token=... returns 404 while the link is still unconfirmed."""
        result = await self._http.get("/auth/poll", params={"token": magic_token}, authenticated=False)
        return _parse(PollResponse, result)

    async def verify(self) -> VerifyResponse:
        """GET /auth/verify with the stored bearer token."""
        result = await self._http.get("/auth/verify")
        return _parse(VerifyResponse, result)
