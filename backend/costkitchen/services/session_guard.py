"""
CostKitchen - Session Guard

Login race against a fixed timeout, failed-login rate limiting and the
inactivity timeout.
"""

import asyncio
import inspect
import logging
import math
import time
from typing import Any, Awaitable, Callable, Optional

from costkitchen.core.config import settings
from costkitchen.core.errors import AuthenticationFailed, SessionTimeout
from costkitchen.models.finance import LoginResult
from costkitchen.services.notifications import Notifier

logger = logging.getLogger(__name__)

Authenticator = Callable[[], Awaitable[str]]


def _discard_result(task: asyncio.Future) -> None:
    # Late login outcome is dropped; retrieve it so it is never reported
    if not task.cancelled():
        task.exception()


class SessionGuard:

    def __init__(
        self,
        sign_out: Optional[Callable[[], Any]] = None,
        notifier: Optional[Notifier] = None,
        login_timeout: Optional[float] = None,
        session_timeout_minutes: Optional[int] = None,
        max_attempts: Optional[int] = None,
        lockout_minutes: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.sign_out = sign_out
        self.notifier = notifier or Notifier()
        self.login_timeout = login_timeout or settings.LOGIN_TIMEOUT_SECONDS
        self.session_timeout = (session_timeout_minutes or settings.SESSION_TIMEOUT_MINUTES) * 60
        self.max_attempts = max_attempts or settings.MAX_LOGIN_ATTEMPTS
        self.lockout_seconds = (lockout_minutes or settings.LOGIN_LOCKOUT_MINUTES) * 60
        self.clock = clock

        self._attempts = 0
        self._lockout_until: Optional[float] = None
        self._last_activity: Optional[float] = None
        self.user_id: Optional[str] = None

    # =========================================================================
    # RATE LIMIT
    # =========================================================================

    def check_rate_limit(self) -> tuple[bool, int, int]:
        """
        Returns:
            - allowed: bool
            - remaining_attempts: int
            - lockout_seconds: int
        """
        now = self.clock()
        if self._lockout_until is not None:
            if now < self._lockout_until:
                return False, 0, math.ceil(self._lockout_until - now)
            self._lockout_until = None
            self._attempts = 0
        return self._attempts < self.max_attempts, self.max_attempts - self._attempts, 0

    def _record_failure(self) -> None:
        self._attempts += 1
        if self._attempts >= self.max_attempts:
            self._lockout_until = self.clock() + self.lockout_seconds
            logger.warning(f"Login locked for {self.lockout_seconds}s after {self._attempts} failed attempts")

    # =========================================================================
    # LOGIN
    # =========================================================================

    async def login(self, authenticate: Authenticator) -> LoginResult:
        """
        Race authenticate() against the login timeout.

        The slower side is not cancelled; a late result is discarded.
        """
        allowed, remaining, lockout = self.check_rate_limit()
        if not allowed:
            return LoginResult(
                success=False,
                lockout_seconds=lockout,
                error=f"Too many login attempts. Try again in {math.ceil(lockout / 60)} minutes.",
            )

        task = asyncio.ensure_future(authenticate())
        done, _ = await asyncio.wait({task}, timeout=self.login_timeout)

        if not done:
            task.add_done_callback(_discard_result)
            logger.warning(f"Login timed out after {self.login_timeout}s")
            return LoginResult(
                success=False,
                timed_out=True,
                remaining_attempts=remaining,
                error="Login timed out. Please try again.",
            )

        try:
            user_id = task.result()
        except AuthenticationFailed as e:
            self._record_failure()
            _, remaining, lockout = self.check_rate_limit()
            return LoginResult(
                success=False,
                remaining_attempts=remaining,
                lockout_seconds=lockout,
                error=str(e),
            )

        self._attempts = 0
        self._lockout_until = None
        self.user_id = user_id
        self.touch()
        return LoginResult(success=True, user_id=user_id, remaining_attempts=self.max_attempts)

    # =========================================================================
    # INACTIVITY
    # =========================================================================

    def touch(self) -> None:
        self._last_activity = self.clock()

    def is_expired(self) -> bool:
        if self._last_activity is None:
            return False
        return self.clock() - self._last_activity >= self.session_timeout

    async def check_timeout(self) -> bool:
        """Sign out when the session has been idle too long. Returns True if it did."""
        if self.user_id is None or not self.is_expired():
            return False

        logger.info(f"Session expired for user={self.user_id}")
        self.user_id = None
        self._last_activity = None
        if self.sign_out is not None:
            result = self.sign_out()
            if inspect.isawaitable(result):
                await result
        self.notifier.warning("Your session expired due to inactivity. Please sign in again.")
        return True

    async def ensure_active(self) -> None:
        """Record activity, or raise SessionTimeout if the session expired."""
        if await self.check_timeout():
            raise SessionTimeout("Session expired due to inactivity")
        self.touch()

    def reset(self) -> None:
        self.user_id = None
        self._last_activity = None
