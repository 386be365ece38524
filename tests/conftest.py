"""Shared fixtures: an in-process fake of the RottenBikes /auth API."""

import asyncio
import json
from typing import Any, Optional

import httpx
import pytest
import pytest_asyncio

from rottenbikes_auth import AsyncRottenBikes, ClientType, MemoryStore, Settings
from rottenbikes_auth.notifications import Notification, NotificationKey


class FakeBackend:
    """Mirrors the server's /auth handlers closely enough for client tests."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.users: dict[str, dict[str, Any]] = {
            "alice": {"poster_id": 1, "email": "alice@example.com"},
            "bob": {"poster_id": 2, "email": "bob@example.com"},
        }
        self.links: dict[str, dict[str, Any]] = {}
        self.api_tokens: dict[str, str] = {}
        self.next_magic_tokens: list[str] = []
        self.next_api_tokens: list[str] = []
        self.poll_failures: list[int] = []
        self.poll_delay: float = 0.0
        self.confirm_delay: float = 0.0
        self.poll_connect_errors = 0
        self.verify_status: Optional[int] = None
        self.request_error: Optional[tuple[int, dict[str, Any]]] = None
        self._counter = 0

    # -- helpers used by tests

    def calls(self, path_prefix: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.startswith(path_prefix)]

    def issue_link(self, username: str, magic_token: Optional[str] = None) -> str:
        self._counter += 1
        token = magic_token or (self.next_magic_tokens.pop(0) if self.next_magic_tokens else f"mt{self._counter}")
        self.links[token] = {"username": username, "api_token": None}
        return token

    def confirm(self, magic_token: str) -> str:
        """Consume a link the way GET /auth/confirm does."""
        link = self.links[magic_token]
        self._counter += 1
        api_token = self.next_api_tokens.pop(0) if self.next_api_tokens else f"tok{self._counter}"
        link["api_token"] = api_token
        self.api_tokens[api_token] = link["username"]
        return api_token

    def _find_user(self, identifier: str) -> Optional[str]:
        for name, user in self.users.items():
            if identifier in (name, user["email"]):
                return name
        return None

    # -- transport

    @staticmethod
    def _error(status: int, message: str) -> httpx.Response:
        return httpx.Response(status, json={"error": message})

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.method == "POST" and path == "/auth/request-magic-link":
            if self.request_error:
                return httpx.Response(self.request_error[0], json=self.request_error[1])
            body = json.loads(request.content)
            identifier = body.get("email") or body.get("username")
            username = self._find_user(identifier or "")
            if username is None:
                return self._error(404, "user not found")
            return httpx.Response(200, json={
                "message": "magic link email sent",
                "magic_token": self.issue_link(username),
            })

        if request.method == "POST" and path == "/auth/register":
            if self.request_error:
                return httpx.Response(self.request_error[0], json=self.request_error[1])
            body = json.loads(request.content)
            if self._find_user(body["username"]) or self._find_user(body["email"]):
                return self._error(409, "username already exists")
            self.users[body["username"]] = {"poster_id": len(self.users) + 1, "email": body["email"]}
            return httpx.Response(200, json={
                "message": "confirmation email sent",
                "magic_token": self.issue_link(body["username"]),
            })

        if request.method == "GET" and path.startswith("/auth/confirm/"):
            token = path[len("/auth/confirm/"):]
            link = self.links.get(token)
            if link is None or link["api_token"] is not None:
                return self._error(400, "invalid or expired token")
            api_token = self.confirm(token)
            if self.confirm_delay:
                await asyncio.sleep(self.confirm_delay)
            return httpx.Response(200, json={
                "api_token": api_token,
                "email": self.users[link["username"]]["email"],
                "api_token_expires_at": "2026-12-19T10:00:00Z",
            })

        if request.method == "GET" and path == "/auth/poll":
            if self.poll_delay:
                await asyncio.sleep(self.poll_delay)
            if self.poll_connect_errors:
                self.poll_connect_errors -= 1
                raise httpx.ConnectError("connection refused", request=request)
            if self.poll_failures:
                return self._error(self.poll_failures.pop(0), "internal server error")
            link = self.links.get(request.url.params.get("token", ""))
            if link is None or link["api_token"] is None:
                return self._error(404, "not confirmed")
            return httpx.Response(200, json={"api_token": link["api_token"]})

        if request.method == "GET" and path == "/auth/verify":
            if self.verify_status is not None:
                return self._error(self.verify_status, "verify failed")
            auth = request.headers.get("Authorization", "")
            username = self.api_tokens.get(auth.removeprefix("Bearer "))
            if username is None:
                return self._error(401, "unauthorized")
            return httpx.Response(200, json={
                "poster_id": self.users[username]["poster_id"],
                "username": username,
                "status": "ok",
            })

        return self._error(404, "not found")


class RecordingNotifier:
    def __init__(self) -> None:
        self.notifications: list[Notification] = []

    def notify(self, notification: Notification) -> None:
        self.notifications.append(notification)

    @property
    def keys(self) -> list[NotificationKey]:
        return [n.key for n in self.notifications]


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest_asyncio.fixture
async def make_client(backend, notifier):
    """Factory for clients talking to the fake backend. Closed on teardown."""
    created: list[AsyncRottenBikes] = []

    def _make(
        store: Optional[MemoryStore] = None,
        client_type: ClientType = ClientType.WEB,
        notifier_override: Optional[RecordingNotifier] = None,
        **settings: Any,
    ) -> AsyncRottenBikes:
        options = {"poll_interval": 0.01, "poll_timeout": 5.0, **settings}
        client = AsyncRottenBikes(
            settings=Settings(client_type=client_type, **options),
            store=store if store is not None else MemoryStore(),
            notifier=notifier_override or notifier,
            transport=httpx.MockTransport(backend.handler),
        )
        created.append(client)
        return client

    yield _make
    for client in created:
        await client.close()


@pytest_asyncio.fixture
async def client(make_client) -> AsyncRottenBikes:
    return make_client()


@pytest_asyncio.fixture
async def mobile_client(make_client) -> AsyncRottenBikes:
    return make_client(client_type=ClientType.MOBILE)
