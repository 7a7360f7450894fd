"""
CostKitchen - Session Guard Tests

Login timeout race, failed-login lockout and inactivity sign-out.
"""

import asyncio

import pytest

from conftest import USER_EMAIL, USER_PASSWORD
from costkitchen.core.errors import AuthenticationFailed, SessionTimeout
from costkitchen.models.finance import NoticeLevel, SyncState
from costkitchen.services.notifications import Notifier
from costkitchen.services.session_guard import SessionGuard

pytestmark = pytest.mark.anyio


class Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


async def succeed() -> str:
    return "user-1"


async def reject() -> str:
    raise AuthenticationFailed("Invalid email or password")


class TestLogin:

    async def test_success(self):
        guard = SessionGuard()
        result = await guard.login(succeed)

        assert result.success
        assert result.user_id == "user-1"
        assert guard.user_id == "user-1"

    async def test_timeout_returns_without_cancelling(self):
        finished = asyncio.Event()

        async def slow() -> str:
            await asyncio.sleep(0.05)
            finished.set()
            raise AuthenticationFailed("too late")

        guard = SessionGuard(login_timeout=0.01)
        result = await guard.login(slow)

        assert result.timed_out and not result.success
        await asyncio.wait_for(finished.wait(), 1)
        # Timeouts are not failed attempts
        assert guard.check_rate_limit()[1] == guard.max_attempts

    async def test_lockout_after_max_attempts(self):
        clock = Clock()
        guard = SessionGuard(max_attempts=3, lockout_minutes=15, clock=clock)

        results = [await guard.login(reject) for _ in range(3)]
        assert [r.remaining_attempts for r in results[:2]] == [2, 1]
        assert results[2].lockout_seconds == 900

        locked = await guard.login(succeed)
        assert not locked.success
        assert "Too many login attempts" in locked.error

        clock.now += 901
        assert (await guard.login(succeed)).success

    async def test_success_resets_attempts(self):
        guard = SessionGuard(max_attempts=3)
        await guard.login(reject)
        await guard.login(succeed)
        assert guard.check_rate_limit() == (True, 3, 0)


class TestInactivity:

    async def test_expired_session_signs_out(self):
        clock = Clock()
        signed_out = []
        notifier = Notifier()
        guard = SessionGuard(sign_out=lambda: signed_out.append(True), notifier=notifier, session_timeout_minutes=30, clock=clock)
        await guard.login(succeed)

        clock.now += 29 * 60
        assert not await guard.check_timeout()

        clock.now += 2 * 60
        assert await guard.check_timeout()
        assert signed_out == [True]
        assert notifier.recent()[-1].level == NoticeLevel.WARNING

    async def test_activity_extends_session(self):
        clock = Clock()
        guard = SessionGuard(session_timeout_minutes=30, clock=clock)
        await guard.login(succeed)

        clock.now += 20 * 60
        await guard.ensure_active()
        clock.now += 20 * 60

        assert not guard.is_expired()

    async def test_ensure_active_raises_after_timeout(self):
        clock = Clock()
        guard = SessionGuard(session_timeout_minutes=30, clock=clock)
        await guard.login(succeed)
        clock.now += 31 * 60

        with pytest.raises(SessionTimeout):
            await guard.ensure_active()

    async def test_timeout_clears_kitchen(self, kitchen, cache):
        clock = Clock()
        kitchen.guard.clock = clock
        await kitchen.login(USER_EMAIL, USER_PASSWORD)
        assert cache.snapshot is not None

        clock.now += 31 * 60
        assert await kitchen.guard.check_timeout()

        assert kitchen.store.snapshot.recipes == []
        assert cache.snapshot is None
        assert kitchen.sync.state == SyncState.UNAUTHENTICATED
        assert not await kitchen.identity.is_authenticated()
