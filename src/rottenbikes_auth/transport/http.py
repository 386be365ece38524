"""
REST HTTP client for the RottenBikes API.

Authenticated requests read the session token from the store at send time,
so a logout or a fresh login is picked up without rebuilding the client.
"""

from typing import Any, Optional

import httpx

from rottenbikes_auth.errors import APIError, ConnectionError
from rottenbikes_auth.storage import TOKEN_KEY, KeyValueStore

DEFAULT_BASE_URL = "http://localhost:8080"


class HttpClient:
    def __init__(
        self,
        store: KeyValueStore,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._store = store
        self._base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={"User-Agent": "rottenbikes-auth/0.1.0", "Accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    async def _auth_headers(self, authenticated: bool) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if authenticated:
            token = await self._store.get_item(TOKEN_KEY)
            if token:
                headers["Authorization"] = f"Bearer {token}"
        return headers

    @staticmethod
    def _server_error(resp: httpx.Response) -> Optional[str]:
        """Server errors come back as {"error": "<message>"}."""
        try:
            body = resp.json()
        except ValueError:
            return None
        if isinstance(body, dict) and body.get("error"):
            return str(body["error"])
        return None

    async def request(
        self,
        method: str,
        path: str,
        body: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, str]] = None,
        authenticated: bool = True,
    ) -> Any:
        headers = await self._auth_headers(authenticated)
        try:
            resp = await self._client.request(method, path, json=body, params=params, headers=headers)
        except httpx.HTTPError as e:
            raise ConnectionError(f"{method} {path} failed: {e}") from e
        if resp.status_code >= 400:
            server_error = self._server_error(resp)
            message = server_error or f"HTTP {resp.status_code}: {resp.text[:200]}"
            raise APIError(resp.status_code, message, server_error)
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise APIError(resp.status_code, f"Invalid JSON from {path}") from e

    async def get(self, path: str, params: Optional[dict[str, str]] = None, authenticated: bool = True) -> Any:
        return await self.request("GET", path, params=params, authenticated=authenticated)

    async def post(self, path: str, body: Optional[dict[str, Any]] = None, authenticated: bool = True) -> Any:
        return await self.request("POST", path, body=body, authenticated=authenticated)

    async def close(self) -> None:
        await self._client.aclose()
