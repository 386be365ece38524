"""
AuthSessionEngine: magic-link login state machine.

Attempt states: IDLE -> REQUESTED -> CONFIRMING -> CONFIRMED_LOCAL |
CONFIRMED_REMOTE | FAILED. IDLE is represented by `attempt is None`.

Three ways a REQUESTED attempt completes:
- same device: complete_login() exchanges the magic token for a session token
- cross device, confirming side: confirm_attempt() acknowledges the link
  but never stores the returned token
- cross device, originating mobile app: the poller picks up the session
  token once the link was confirmed elsewhere

Session writes go through a single asyncio.Lock; user actions, poll ticks
and 401 handling interleave at await points.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Optional, Union

from rottenbikes_auth.auth import AuthAPI
from rottenbikes_auth.config import Settings
from rottenbikes_auth.errors import (
    APIError,
    AttemptCancelledError,
    AuthError,
    ConfirmationFailedError,
    RequestFailedError,
    RottenBikesError,
    SessionExpiredError,
)
from rottenbikes_auth.links import parse_confirmation_link
from rottenbikes_auth.models.attempt import AttemptKind, AttemptState, LoginAttempt, Origin
from rottenbikes_auth.models.session import MagicLinkResponse, Session
from rottenbikes_auth.notifications import (
    LoggingNotifier,
    Notification,
    NotificationKey,
    NotificationKind,
    Notifier,
)
from rottenbikes_auth.poller import Poller
from rottenbikes_auth.storage import TOKEN_KEY, KeyValueStore

logger = logging.getLogger(__name__)


class AuthEventType(str, Enum):
    LOADING_FINISHED = "loading_finished"
    ATTEMPT_CHANGED = "attempt_changed"
    SESSION_CHANGED = "session_changed"
    PROFILE_CHANGED = "profile_changed"
    PROFILE_FAILED = "profile_failed"
    SESSION_EXPIRED = "session_expired"


class AuthEvent:
    __slots__ = ("type", "session", "attempt")

    def __init__(self, type: AuthEventType, session: Session, attempt: Optional[LoginAttempt]):
        self.type = type
        self.session = session
        self.attempt = attempt

    @property
    def state(self) -> AttemptState:
        return self.attempt.state if self.attempt else AttemptState.IDLE

    def __repr__(self) -> str:
        return f"AuthEvent(type={self.type.value!r}, state={self.state.value!r})"


def _current_task() -> Optional["asyncio.Task[Any]"]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


def _coerce_origin(origin: Union[Origin, str, None]) -> Optional[Origin]:
    if origin is None or isinstance(origin, Origin):
        return origin
    try:
        return Origin(origin.strip().lower())
    except ValueError:
        return None


def _mask(token: str) -> str:
    return f"{token[:6]}..." if len(token) > 6 else "***"


class AuthSessionEngine:
    def __init__(
        self,
        api: AuthAPI,
        store: KeyValueStore,
        notifier: Optional[Notifier] = None,
        settings: Optional[Settings] = None,
    ):
        self._api = api
        self._store = store
        self._notifier: Notifier = notifier or LoggingNotifier()
        self._settings = settings or Settings()

        self._session = Session()
        self._attempt: Optional[LoginAttempt] = None
        self._lock = asyncio.Lock()
        self._handlers: list[Callable[[AuthEvent], None]] = []

        self._started = False
        self._is_loading = True
        self._ready = asyncio.Event()

        self._poller: Optional[Poller] = None
        self._poll_watcher: Optional[asyncio.Task[Optional[Session]]] = None
        self._profile_task: Optional[asyncio.Task[Session]] = None

    @property
    def session(self) -> Session:
        return self._session

    @property
    def attempt(self) -> Optional[LoginAttempt]:
        return self._attempt

    @property
    def state(self) -> AttemptState:
        return self._attempt.state if self._attempt else AttemptState.IDLE

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def ready(self) -> asyncio.Event:
        return self._ready

    @property
    def poller(self) -> Optional[Poller]:
        return self._poller

    @property
    def profile_task(self) -> Optional["asyncio.Task[Session]"]:
        """The most recent profile fetch. userId/username are eventually consistent."""
        return self._profile_task

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def origin(self) -> Optional[Origin]:
        """Origin tag attached to identity requests made from this client."""
        return Origin.MOBILE if self._settings.is_mobile else None

    def subscribe(self, handler: Callable[[AuthEvent], None]) -> Callable[[], None]:
        """Register a state change handler. Returns a function that removes it."""
        self._handlers.append(handler)

        def remove() -> None:
            try:
                self._handlers.remove(handler)
            except ValueError:
                pass
        return remove

    def _emit(self, type: AuthEventType) -> None:
        event = AuthEvent(type, self._session, self._attempt)
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception:
                logger.exception("Auth event handler failed for %s", type.value)

    def _notify(self, kind: NotificationKind, key: NotificationKey, message: str) -> None:
        try:
            self._notifier.notify(Notification(kind=kind, key=key, message=message))
        except Exception:
            logger.exception("Notifier failed for %s", key.value)

    def _set_session(self, session: Session, event: AuthEventType = AuthEventType.SESSION_CHANGED) -> None:
        if session == self._session:
            return
        self._session = session
        self._emit(event)

    def _set_attempt(self, attempt: Optional[LoginAttempt]) -> None:
        if attempt == self._attempt:
            return
        self._attempt = attempt
        if attempt is not None:
            logger.debug("Attempt %s -> %s", _mask(attempt.magic_token), attempt.state.value)
        self._emit(AuthEventType.ATTEMPT_CHANGED)

    async def start(self) -> Session:
        """Restore the session from the store.

        is_loading flips to False once, after the single store read, whether
        or not a token was found. The profile fetch is not awaited.
        """
        if self._started:
            await self._ready.wait()
            return self._session
        self._started = True
        try:
            token = await self._store.get_item(TOKEN_KEY)
        except Exception as e:
            logger.error("Failed to restore session token: %s", e)
            token = None
        try:
            if token:
                logger.info("Restored session %s", _mask(token))
                self._set_session(Session(session_token=token))
                self._launch_profile_fetch()
        finally:
            self._is_loading = False
            self._ready.set()
            self._emit(AuthEventType.LOADING_FINISHED)
        return self._session

    async def request_login(self, identifier: str, captcha_token: Optional[str] = None) -> LoginAttempt:
        """Ask the backend to email a magic link.

        Identifiers containing '@' are sent as email, anything else as
        username. Format is left to the backend.
        """
        identifier = (identifier or "").strip()
        if not identifier:
            raise RequestFailedError("Email or username is required")
        self._abandon_attempt()
        try:
            resp = await self._api.request_magic_link(identifier, self._captcha(captcha_token), self.origin)
        except RottenBikesError as e:
            raise self._request_failed(e, "Failed to request magic link") from e
        return self._open_attempt(resp, AttemptKind.LOGIN, identifier)

    async def register(self, username: str, email: str, captcha_token: Optional[str] = None) -> LoginAttempt:
        username = (username or "").strip()
        email = (email or "").strip()
        if not username or not email:
            raise RequestFailedError("Username and email are required")
        self._abandon_attempt()
        try:
            resp = await self._api.register(username, email, self._captcha(captcha_token), self.origin)
        except RottenBikesError as e:
            raise self._request_failed(e, "Failed to register") from e
        return self._open_attempt(resp, AttemptKind.REGISTER, email)

    def _captcha(self, captcha_token: Optional[str]) -> Optional[str]:
        return captcha_token or self._settings.captcha_token

    @staticmethod
    def _request_failed(exc: RottenBikesError, fallback: str) -> RequestFailedError:
        reason = exc.server_error if isinstance(exc, APIError) and exc.server_error else fallback
        logger.info("%s: %s", fallback, exc)
        return RequestFailedError(reason, details={"code": exc.code})

    def _open_attempt(self, resp: MagicLinkResponse, kind: AttemptKind, identifier: str) -> LoginAttempt:
        attempt = LoginAttempt(
            magic_token=resp.magic_token,
            kind=kind,
            origin=self.origin,
            identifier=identifier,
        )
        self._set_attempt(attempt)
        if self._settings.is_mobile and self._settings.auto_poll:
            self.start_polling()
        return attempt

    def _abandon_attempt(self) -> None:
        self._stop_polling()
        self._set_attempt(None)

    def cancel_attempt(self) -> None:
        """Drop the pending attempt and stop polling. No server call is made."""
        if self._attempt is not None:
            logger.info("Attempt %s cancelled", _mask(self._attempt.magic_token))
        self._abandon_attempt()

    def _attempt_for(self, magic_token: str, origin: Optional[Origin]) -> LoginAttempt:
        if self._attempt is not None and self._attempt.magic_token == magic_token:
            return self._attempt
        # a different link supersedes whatever was pending
        self._stop_polling()
        return LoginAttempt(magic_token=magic_token, kind=AttemptKind.LINK, origin=origin)

    def _fail_attempt(self, magic_token: str, message: str) -> None:
        if self._attempt is not None and self._attempt.magic_token == magic_token:
            self._set_attempt(self._attempt.transition(AttemptState.FAILED, message))

    async def complete_login(self, magic_token: str, origin: Union[Origin, str, None] = None) -> Session:
        """Same-device confirmation: exchange the magic token and log this client in.

        Returns once the token is stored. The profile fetch runs separately,
        see profile_task. Raises AttemptCancelledError if the attempt was
        abandoned while the confirm request was in flight.
        """
        if not magic_token:
            raise ConfirmationFailedError("No token provided")
        attempt = self._attempt_for(magic_token, _coerce_origin(origin))
        self._stop_polling()
        self._set_attempt(attempt.transition(AttemptState.CONFIRMING))
        try:
            resp = await self._api.confirm(magic_token, self.origin)
        except RottenBikesError as e:
            logger.info("Confirmation of %s rejected: %s", _mask(magic_token), e)
            error = ConfirmationFailedError()
            self._fail_attempt(magic_token, error.message)
            raise error from e
        if not await self._establish_session(resp.api_token, magic_token):
            raise AttemptCancelledError("Login attempt was abandoned while the link was being confirmed")
        return self._session

    async def confirm_attempt(self, magic_token: str, origin: Union[Origin, str, None] = Origin.MOBILE) -> LoginAttempt:
        """Cross-device confirmation: acknowledge the link for the device that requested it.

        The api_token in the response is dropped; this client stays logged out.
        """
        if not magic_token:
            raise ConfirmationFailedError("No token provided")
        link_origin = _coerce_origin(origin)
        attempt = self._attempt_for(magic_token, link_origin)
        self._stop_polling()
        self._set_attempt(attempt.transition(AttemptState.CONFIRMING))
        try:
            await self._api.confirm(magic_token, link_origin)
        except RottenBikesError as e:
            logger.info("Cross-device confirmation of %s rejected: %s", _mask(magic_token), e)
            error = ConfirmationFailedError()
            self._fail_attempt(magic_token, error.message)
            raise error from e
        confirmed = attempt.transition(AttemptState.CONFIRMED_REMOTE)
        self._set_attempt(confirmed)
        self._notify(
            NotificationKind.INFO,
            NotificationKey.CROSS_DEVICE_CONFIRMED,
            "Login confirmed. Your mobile app will log you in automatically. You can close this window.",
        )
        return confirmed

    async def handle_confirmation(self, magic_token: str, origin: Union[Origin, str, None] = None) -> AttemptState:
        """Confirm a magic link opened on this client.

        A link requested by the mobile app and opened anywhere but a mobile
        client is only acknowledged; everything else logs this client in.
        """
        if not magic_token:
            raise ConfirmationFailedError("No token provided")
        link_origin = _coerce_origin(origin)
        if link_origin == Origin.MOBILE and not self._settings.is_mobile:
            await self.confirm_attempt(magic_token, link_origin)
            return AttemptState.CONFIRMED_REMOTE
        await self.complete_login(magic_token, link_origin)
        return AttemptState.CONFIRMED_LOCAL

    async def handle_confirmation_link(self, url: str) -> AttemptState:
        try:
            link = parse_confirmation_link(url)
        except ValueError as e:
            raise ConfirmationFailedError("No token provided") from e
        return await self.handle_confirmation(link.token, link.origin)

    async def _establish_session(self, api_token: str, magic_token: str) -> bool:
        """Store a session token obtained from confirm or poll for magic_token."""
        async with self._lock:
            if self._attempt is None or self._attempt.magic_token != magic_token:
                logger.info("Discarding token for abandoned attempt %s", _mask(magic_token))
                return False
            if self._attempt.state == AttemptState.CONFIRMED_LOCAL:
                return True
            await self._store.set_item(TOKEN_KEY, api_token)
            self._set_session(Session(session_token=api_token, last_username=self._session.last_username))
            self._set_attempt(self._attempt.transition(AttemptState.CONFIRMED_LOCAL))
        self._stop_polling()
        logger.info("Logged in with session %s", _mask(api_token))
        self._notify(NotificationKind.SUCCESS, NotificationKey.LOGIN_SUCCESS, "Logged in")
        self._launch_profile_fetch()
        return True

    def start_polling(self) -> Poller:
        """Watch the pending attempt for confirmation on another device."""
        poller, _ = self._ensure_watcher()
        return poller

    def _ensure_watcher(self) -> "tuple[Poller, asyncio.Task[Optional[Session]]]":
        attempt = self._attempt
        if attempt is None or attempt.state != AttemptState.REQUESTED:
            raise AuthError("No pending login attempt to poll", code="no_pending_attempt")
        poller, watcher = self._poller, self._poll_watcher
        if poller is not None and watcher is not None and not watcher.done():
            return poller, watcher
        self._stop_polling()
        magic_token = attempt.magic_token

        async def fetch() -> str:
            return (await self._api.poll(magic_token)).api_token

        poller = Poller(
            fetch,
            interval=self._settings.poll_interval,
            timeout=self._settings.poll_timeout,
            name=f"poll:{_mask(magic_token)}",
        )
        poller.start()
        watcher = asyncio.get_running_loop().create_task(self._watch_poller(poller, magic_token))
        watcher.add_done_callback(self._on_watcher_done)
        self._poller, self._poll_watcher = poller, watcher
        return poller, watcher

    async def _watch_poller(self, poller: Poller, magic_token: str) -> Optional[Session]:
        try:
            api_token = await poller.wait()
        except ConfirmationFailedError as e:
            self._fail_attempt(magic_token, e.message)
            raise
        if not await self._establish_session(api_token, magic_token):
            return None
        return self._session

    @staticmethod
    def _on_watcher_done(task: "asyncio.Task[Optional[Session]]") -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None and not isinstance(exc, ConfirmationFailedError):
            logger.error("Poll watcher failed: %s", exc)

    def _stop_polling(self) -> None:
        poller, self._poller = self._poller, None
        if poller is not None:
            poller.cancel()
        watcher, self._poll_watcher = self._poll_watcher, None
        if watcher is not None and not watcher.done() and watcher is not _current_task():
            watcher.cancel()

    async def check_login_status(self) -> bool:
        """Single poll outside the polling loop. True once this client is logged in."""
        attempt = self._attempt
        if attempt is None or attempt.state != AttemptState.REQUESTED:
            return self._session.is_logged_in
        try:
            resp = await self._api.poll(attempt.magic_token)
        except APIError as e:
            if not e.is_not_found:
                logger.warning("Login status check failed: %s", e)
            return False
        except RottenBikesError as e:
            logger.warning("Login status check failed: %s", e)
            return False
        return await self._establish_session(resp.api_token, attempt.magic_token)

    async def wait_for_login(self) -> Session:
        """Wait until the pending attempt is confirmed, on this device or another.

        Raises ConfirmationFailedError when polling times out or the link is
        rejected and AttemptCancelledError when the attempt is abandoned.
        """
        attempt = self._attempt
        if attempt is None:
            raise AuthError("No pending login attempt to poll", code="no_pending_attempt")
        if attempt.state != AttemptState.REQUESTED:
            return await self._settle(attempt.magic_token)
        _, watcher = self._ensure_watcher()
        magic_token = attempt.magic_token
        try:
            session = await asyncio.shield(watcher)
        except asyncio.CancelledError:
            if not watcher.cancelled():
                raise
            # polling is also stopped when the link is opened on this device
            return await self._settle(magic_token)
        if session is None:
            raise AttemptCancelledError()
        return session

    async def _settle(self, magic_token: str) -> Session:
        """Outcome of an attempt that is no longer being polled."""
        attempt = self._attempt
        if attempt is None or attempt.magic_token != magic_token:
            raise AttemptCancelledError()
        if attempt.state == AttemptState.CONFIRMED_LOCAL:
            return self._session
        if attempt.state == AttemptState.FAILED:
            raise ConfirmationFailedError(attempt.error or "Invalid or expired token")
        if attempt.state != AttemptState.CONFIRMING:
            raise AttemptCancelledError()

        settled: "asyncio.Future[Session]" = asyncio.get_running_loop().create_future()

        def on_event(event: AuthEvent) -> None:
            if settled.done() or event.type != AuthEventType.ATTEMPT_CHANGED:
                return
            current = event.attempt
            if current is None or current.magic_token != magic_token:
                settled.set_exception(AttemptCancelledError())
            elif current.state == AttemptState.CONFIRMED_LOCAL:
                settled.set_result(event.session)
            elif current.state == AttemptState.FAILED:
                settled.set_exception(ConfirmationFailedError(current.error or "Invalid or expired token"))
            elif current.state == AttemptState.CONFIRMED_REMOTE:
                settled.set_exception(AttemptCancelledError())

        remove = self.subscribe(on_event)
        try:
            return await settled
        finally:
            remove()

    def _launch_profile_fetch(self) -> None:
        previous = self._profile_task
        if previous is not None and not previous.done() and previous is not _current_task():
            previous.cancel()
        task = asyncio.get_running_loop().create_task(self.fetch_current_user(), name="fetch-current-user")
        task.add_done_callback(self._on_profile_done)
        self._profile_task = task

    @staticmethod
    def _on_profile_done(task: "asyncio.Task[Session]") -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if isinstance(exc, SessionExpiredError):
            logger.info("Stored session was rejected by the server")
        elif exc is not None:
            logger.warning("Profile fetch failed, keeping session: %s", exc)

    async def fetch_current_user(self) -> Session:
        """Resolve user id and username for the current session token.

        A 401 is a session expiry: the username is remembered in
        last_username, the session is cleared and SessionExpiredError raised.
        """
        token = self._session.session_token
        if token is None:
            return self._session
        try:
            profile = await self._api.verify()
        except APIError as e:
            if e.is_unauthorized:
                last_username = await self._expire_session(token)
                raise SessionExpiredError(last_username=last_username) from e
            self._emit(AuthEventType.PROFILE_FAILED)
            raise
        except RottenBikesError:
            self._emit(AuthEventType.PROFILE_FAILED)
            raise
        async with self._lock:
            if self._session.session_token != token:
                return self._session
            self._set_session(
                self._session.model_copy(update={"user_id": profile.poster_id, "username": profile.username}),
                AuthEventType.PROFILE_CHANGED,
            )
        return self._session

    async def _expire_session(self, token: str) -> Optional[str]:
        async with self._lock:
            if self._session.session_token != token:
                return self._session.last_username
            username = self._session.username
            if username is not None:
                self._set_session(self._session.model_copy(update={"last_username": username}))
            await self._clear_session()
            last_username = self._session.last_username
        self._emit(AuthEventType.SESSION_EXPIRED)
        message = (
            f"Session expired for {last_username}. Please log in again."
            if last_username else "Your session has expired. Please log in again."
        )
        self._notify(NotificationKind.ERROR, NotificationKey.SESSION_EXPIRED, message)
        return last_username

    async def _clear_session(self) -> None:
        """Caller holds the lock."""
        task = self._profile_task
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()
        self._set_session(Session(last_username=self._session.last_username))
        await self._store.delete_item(TOKEN_KEY)

    async def logout(self) -> None:
        """Clear the session in memory and in the store. Idempotent."""
        self._abandon_attempt()
        async with self._lock:
            was_logged_in = self._session.is_logged_in
            await self._clear_session()
        if was_logged_in:
            logger.info("Logged out")
            self._notify(NotificationKind.INFO, NotificationKey.LOGGED_OUT, "Logged out")

    async def close(self) -> None:
        """Tear down background work. The session itself is left in the store."""
        watcher = self._poll_watcher
        self._stop_polling()
        pending = [t for t in (watcher, self._profile_task) if t is not None and not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
