"""
Poller: cross-device confirmation watcher for one magic-link attempt.

Ticks fire on a fixed schedule, each as its own task, so a slow status
check never delays the next one. Ticks are idempotent status reads.

Tick outcomes:
- token returned: poller resolves, no further ticks, in-flight ticks cancelled
- 404: link not confirmed yet, silent
- anything else: PollTransientError, logged and ignored (fail open)
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from rottenbikes_auth.errors import APIError, ConfirmationFailedError, PollTransientError

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_S = 3.0


class Poller:
    def __init__(
        self,
        fetch: Callable[[], Awaitable[str]],
        interval: float = DEFAULT_POLL_INTERVAL_S,
        timeout: Optional[float] = None,
        name: str = "poll",
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._fetch = fetch
        self._interval = interval
        self._timeout = timeout
        self._name = name
        self._task: Optional[asyncio.Task[None]] = None
        self._result: Optional[asyncio.Future[str]] = None
        self._inflight: set[asyncio.Task[None]] = set()
        self._ticks = 0
        self._last_error: Optional[PollTransientError] = None

    @property
    def running(self) -> bool:
        if self._task is None or self._task.done():
            return False
        return self._result is not None and not self._result.done()

    @property
    def ticks(self) -> int:
        """Number of ticks issued so far."""
        return self._ticks

    @property
    def last_error(self) -> Optional[PollTransientError]:
        return self._last_error

    @property
    def cancelled(self) -> bool:
        return self._result is not None and self._result.cancelled()

    def start(self) -> None:
        """Start ticking. Must be called from a running event loop."""
        if self._task is not None:
            return
        loop = asyncio.get_running_loop()
        self._result = loop.create_future()
        self._task = loop.create_task(self._run(self._result), name=self._name)

    async def wait(self) -> str:
        """Wait for the session token.

        Raises ConfirmationFailedError on timeout and CancelledError if the
        poller was cancelled. Cancelling the waiter does not stop the poller.
        """
        if self._result is None:
            raise RuntimeError("Poller not started")
        return await asyncio.shield(self._result)

    def cancel(self) -> None:
        """Stop polling. Safe to call repeatedly and after completion."""
        if self._result is not None and not self._result.done():
            self._result.cancel()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._cancel_inflight()

    async def _run(self, result: "asyncio.Future[str]") -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._timeout if self._timeout is not None else None
        try:
            while not result.done():
                if deadline is not None and loop.time() >= deadline:
                    logger.info("%s: gave up after %d ticks", self._name, self._ticks)
                    result.set_exception(
                        ConfirmationFailedError("Magic link expired before it was confirmed")
                    )
                    break
                self._spawn_tick(result)
                delay = self._interval
                if deadline is not None:
                    delay = min(delay, max(deadline - loop.time(), 0.0))
                await asyncio.wait({result}, timeout=delay)
        finally:
            self._cancel_inflight()

    def _spawn_tick(self, result: "asyncio.Future[str]") -> None:
        self._ticks += 1
        tick = asyncio.get_running_loop().create_task(self._tick(self._ticks, result))
        self._inflight.add(tick)
        tick.add_done_callback(self._inflight.discard)

    async def _tick(self, n: int, result: "asyncio.Future[str]") -> None:
        try:
            token = await self._fetch()
        except APIError as e:
            if e.is_not_found:
                logger.debug("%s tick %d: not confirmed yet", self._name, n)
                return
            self._record_transient(n, e)
            return
        except Exception as e:
            self._record_transient(n, e)
            return
        if not result.done():
            logger.info("%s tick %d: confirmed", self._name, n)
            result.set_result(token)

    def _record_transient(self, n: int, exc: Exception) -> None:
        self._last_error = PollTransientError(f"{type(exc).__name__}: {exc}")
        logger.warning("%s tick %d failed, will retry: %s", self._name, n, self._last_error)

    def _cancel_inflight(self) -> None:
        for tick in list(self._inflight):
            if not tick.done():
                tick.cancel()
