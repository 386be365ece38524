"""Poller scheduling and outcome tests."""

import asyncio

import pytest

from rottenbikes_auth.errors import APIError, ConfirmationFailedError, ConnectionError
from rottenbikes_auth.poller import Poller


def _not_confirmed() -> APIError:
    return APIError(404, "not confirmed", "not confirmed")


class TestSchedule:
    @pytest.mark.asyncio
    async def test_slow_ticks_do_not_delay_the_next_tick(self):
        started: list[float] = []
        loop = asyncio.get_running_loop()

        async def fetch() -> str:
            started.append(loop.time())
            await asyncio.sleep(0.2)
            raise _not_confirmed()

        poller = Poller(fetch, interval=0.02)
        poller.start()
        await asyncio.sleep(0.15)
        poller.cancel()
        # every tick is still sleeping, yet new ones kept starting
        assert len(started) >= 4

    @pytest.mark.asyncio
    async def test_success_stops_ticking(self):
        calls = 0

        async def fetch() -> str:
            nonlocal calls
            calls += 1
            if calls < 3:
                raise _not_confirmed()
            return "tok"

        poller = Poller(fetch, interval=0.01)
        poller.start()
        assert await poller.wait() == "tok"
        ticks = poller.ticks
        await asyncio.sleep(0.05)
        assert poller.ticks == ticks
        assert not poller.running

    @pytest.mark.asyncio
    async def test_success_cancels_slow_inflight_ticks(self):
        finished: list[int] = []
        calls = 0

        async def fetch() -> str:
            nonlocal calls
            calls += 1
            n = calls
            if n == 2:
                return "tok"
            await asyncio.sleep(0.1)
            finished.append(n)
            raise _not_confirmed()

        poller = Poller(fetch, interval=0.01)
        poller.start()
        assert await poller.wait() == "tok"
        await asyncio.sleep(0.15)
        assert finished == []

    def test_interval_must_be_positive(self):
        async def fetch() -> str:
            return "tok"

        with pytest.raises(ValueError):
            Poller(fetch, interval=0)


class TestOutcomes:
    @pytest.mark.asyncio
    async def test_transient_errors_are_recorded_not_raised(self):
        failures = [ConnectionError("refused"), APIError(500, "internal server error")]

        async def fetch() -> str:
            if failures:
                raise failures.pop(0)
            return "tok"

        poller = Poller(fetch, interval=0.01)
        poller.start()
        assert await poller.wait() == "tok"
        assert poller.last_error is not None
        assert "internal server error" in str(poller.last_error)

    @pytest.mark.asyncio
    async def test_not_confirmed_is_not_an_error(self):
        async def fetch() -> str:
            raise _not_confirmed()

        poller = Poller(fetch, interval=0.01)
        poller.start()
        await asyncio.sleep(0.05)
        poller.cancel()
        assert poller.ticks >= 2
        assert poller.last_error is None

    @pytest.mark.asyncio
    async def test_timeout_fails_with_confirmation_error(self):
        async def fetch() -> str:
            raise _not_confirmed()

        poller = Poller(fetch, interval=0.01, timeout=0.05)
        poller.start()
        with pytest.raises(ConfirmationFailedError):
            await poller.wait()
        assert not poller.running

    @pytest.mark.asyncio
    async def test_cancel_stops_ticks_and_wakes_waiters(self):
        async def fetch() -> str:
            raise _not_confirmed()

        poller = Poller(fetch, interval=0.01)
        poller.start()
        waiter = asyncio.ensure_future(poller.wait())
        await asyncio.sleep(0.03)
        poller.cancel()
        poller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter
        assert poller.cancelled
        assert not poller.running
        ticks = poller.ticks
        await asyncio.sleep(0.05)
        assert poller.ticks == ticks

    @pytest.mark.asyncio
    async def test_wait_before_start(self):
        async def fetch() -> str:
            return "tok"

        with pytest.raises(RuntimeError):
            await Poller(fetch).wait()
