"""
CostKitchen - Local Identity Provider

In-process identity with an asyncio.Queue event channel. Accounts are
registered with an argon2 password hash; user ids are stable per email.
"""

import asyncio
import logging
import uuid
from typing import AsyncIterator, Optional

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

from costkitchen.bridges.base import IdentityProvider, SessionEvent, SessionEventType
from costkitchen.core.errors import AuthenticationFailed

logger = logging.getLogger(__name__)

USER_NAMESPACE = uuid.UUID("6f1c1d8e-3f0b-4c55-9d59-2b8f1c7a4e10")
ph = PasswordHasher()


def verify_password(hashed: str, password: str) -> bool:
    try:
        return ph.verify(hashed, password)
    except (VerificationError, InvalidHashError):
        return False


def user_id_for(email: str) -> str:
    return str(uuid.uuid5(USER_NAMESPACE, email.strip().lower()))


class LocalIdentityProvider(IdentityProvider):
    """
    Identity provider for local development and tests.

    sign_in/sign_out/refresh_token publish SessionEvents that the sync
    controller consumes from events().
    """

    def __init__(self) -> None:
        self._accounts: dict[str, str] = {}
        self._user_id: Optional[str] = None
        self._queue: asyncio.Queue[SessionEvent] = asyncio.Queue()

    def register(self, email: str, password: str) -> str:
        email = email.strip().lower()
        self._accounts[email] = ph.hash(password)
        return user_id_for(email)

    async def authenticate(self, email: str, password: str) -> str:
        """Check credentials and sign in. Returns the user id."""
        email = email.strip().lower()
        hashed = self._accounts.get(email)
        if hashed is None or not verify_password(hashed, password):
            raise AuthenticationFailed("Invalid email or password")
        user_id = user_id_for(email)
        self.sign_in(user_id)
        return user_id

    # =========================================================================
    # SESSION EVENTS
    # =========================================================================

    def emit(self, event: SessionEvent) -> None:
        self._queue.put_nowait(event)

    def sign_in(self, user_id: str) -> None:
        self._user_id = user_id
        logger.info(f"[IDENTITY] Signed in user={user_id}")
        self.emit(SessionEvent(type=SessionEventType.SIGNED_IN, user_id=user_id))

    def sign_out(self) -> None:
        user_id, self._user_id = self._user_id, None
        logger.info(f"[IDENTITY] Signed out user={user_id}")
        self.emit(SessionEvent(type=SessionEventType.SIGNED_OUT, user_id=user_id))

    def refresh_token(self) -> None:
        if self._user_id is None:
            return
        self.emit(SessionEvent(type=SessionEventType.TOKEN_REFRESHED, user_id=self._user_id))

    # =========================================================================
    # IdentityProvider
    # =========================================================================

    async def is_authenticated(self) -> bool:
        return self._user_id is not None

    async def current_user_id(self) -> Optional[str]:
        return self._user_id

    async def events(self) -> AsyncIterator[SessionEvent]:
        while True:
            yield await self._queue.get()
