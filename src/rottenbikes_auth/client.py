"""
AsyncRottenBikes: wires transport, store, notifier and engine together.
"""

from typing import Any, Callable, Optional

import httpx

from rottenbikes_auth.auth import AuthAPI
from rottenbikes_auth.config import Settings
from rottenbikes_auth.engine import AuthEvent, AuthSessionEngine
from rottenbikes_auth.models.attempt import AttemptState, LoginAttempt
from rottenbikes_auth.models.session import Session
from rottenbikes_auth.notifications import Notifier
from rottenbikes_auth.storage import FileStore, KeyValueStore
from rottenbikes_auth.transport.http import HttpClient


class AsyncRottenBikes:
    """Async RottenBikes auth client.

    Construct once and share. Use as an async context manager, or call
    open()/close() explicitly; open() restores any stored session.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        store: Optional[KeyValueStore] = None,
        notifier: Optional[Notifier] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or Settings()
        self.store: KeyValueStore = store if store is not None else FileStore(self.settings.store_path)
        self.http = HttpClient(
            self.store,
            base_url=self.settings.api_url,
            timeout=self.settings.request_timeout,
            transport=transport,
        )
        self.auth = AuthAPI(self.http)
        self.engine = AuthSessionEngine(self.auth, self.store, notifier=notifier, settings=self.settings)

    @property
    def session(self) -> Session:
        return self.engine.session

    @property
    def is_logged_in(self) -> bool:
        return self.engine.session.is_logged_in

    async def open(self) -> Session:
        return await self.engine.start()

    async def close(self) -> None:
        await self.engine.close()
        await self.http.close()

    async def __aenter__(self) -> "AsyncRottenBikes":
        await self.open()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def request_login(self, identifier: str, captcha_token: Optional[str] = None) -> LoginAttempt:
        return await self.engine.request_login(identifier, captcha_token)

    async def register(self, username: str, email: str, captcha_token: Optional[str] = None) -> LoginAttempt:
        return await self.engine.register(username, email, captcha_token)

    async def complete_login(self, magic_token: str) -> Session:
        return await self.engine.complete_login(magic_token)

    async def handle_confirmation(self, magic_token: str, origin: Optional[str] = None) -> AttemptState:
        return await self.engine.handle_confirmation(magic_token, origin)

    async def handle_confirmation_link(self, url: str) -> AttemptState:
        return await self.engine.handle_confirmation_link(url)

    async def wait_for_login(self) -> Session:
        return await self.engine.wait_for_login()

    async def fetch_current_user(self) -> Session:
        return await self.engine.fetch_current_user()

    async def logout(self) -> None:
        await self.engine.logout()

    def subscribe(self, handler: Callable[[AuthEvent], None]) -> Callable[[], None]:
        return self.engine.subscribe(handler)
