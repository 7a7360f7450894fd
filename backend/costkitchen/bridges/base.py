"""
CostKitchen - Collaborator Base Interfaces

Abstract base classes that every persistence, transport and identity
integration must implement. The services depend only on these.
"""

import datetime as dt
from abc import ABC, abstractmethod
from enum import Enum
from typing import AsyncIterator, Generic, Optional, TypeVar

from pydantic import BaseModel, Field

from costkitchen.models.dataset import (
    CacheSnapshot,
    ConfirmedId,
    DailySnapshot,
    Entity,
    Expense,
    Ingredient,
    KitchenSettings,
    Recipe,
)


T = TypeVar("T", bound=Entity)


# =============================================================================
# IDENTITY
# =============================================================================

class SessionEventType(str, Enum):
    """Session lifecycle events emitted by the identity provider"""
    SIGNED_IN = "signed-in"
    SIGNED_OUT = "signed-out"
    TOKEN_REFRESHED = "token-refreshed"


class SessionEvent(BaseModel):
    type: SessionEventType
    user_id: Optional[str] = None
    at: dt.datetime = Field(default_factory=lambda: dt.datetime.now(dt.timezone.utc))


class IdentityProvider(ABC):
    """Source of the current user and of session events."""

    @abstractmethod
    async def is_authenticated(self) -> bool:
        pass

    @abstractmethod
    async def current_user_id(self) -> Optional[str]:
        """Return the signed-in user id, or None when logged out."""
        pass

    @abstractmethod
    def events(self) -> AsyncIterator[SessionEvent]:
        """Async iterator over session events, in emission order."""
        pass


# =============================================================================
# REMOTE DATA SERVICE
# =============================================================================

class RemoteCollection(ABC, Generic[T]):
    """
    Authoritative store for one entity collection.

    All methods raise RemoteServiceError on failure.
    """

    @abstractmethod
    async def list(self) -> list[T]:
        pass

    @abstractmethod
    async def create(self, entity: T) -> T:
        """
        Persist a new entity.

        The id of the argument is ignored; the returned entity carries the
        ConfirmedId issued by the store.
        """
        pass

    @abstractmethod
    async def update(self, entity_id: ConfirmedId, fields: dict) -> None:
        """Partial update of the given fields."""
        pass

    @abstractmethod
    async def delete(self, entity_id: ConfirmedId) -> None:
        pass


class RemoteDataService(ABC):
    """Authoritative remote store for the whole Dataset."""

    @property
    @abstractmethod
    def ingredients(self) -> RemoteCollection[Ingredient]:
        pass

    @property
    @abstractmethod
    def recipes(self) -> RemoteCollection[Recipe]:
        pass

    @property
    @abstractmethod
    def expenses(self) -> RemoteCollection[Expense]:
        pass

    @abstractmethod
    async def list_snapshots(self, limit: int = 90) -> list[DailySnapshot]:
        """Most recent snapshots, oldest first."""
        pass

    @abstractmethod
    async def save_snapshot(self, snapshot: DailySnapshot) -> None:
        """Upsert by date."""
        pass

    @abstractmethod
    async def get_settings(self) -> KitchenSettings:
        pass

    @abstractmethod
    async def update_settings(self, fields: dict) -> None:
        pass

    def collection(self, name) -> RemoteCollection:
        return getattr(self, name.value)


# =============================================================================
# LOCAL CACHE
# =============================================================================

class LocalCacheStore(ABC):
    """Last-known Dataset persisted on the device."""

    @abstractmethod
    async def save(self, snapshot: CacheSnapshot) -> None:
        pass

    @abstractmethod
    async def load(self, user_id: Optional[str] = None) -> Optional[CacheSnapshot]:
        """
        Load the cached snapshot.

        Returns None when nothing is cached, or when the cache belongs to a
        different user than user_id. Raises CacheError on storage failure.
        """
        pass

    @abstractmethod
    async def clear(self) -> None:
        pass


# =============================================================================
# CONNECTIVITY
# =============================================================================

class ConnectivityProbe(ABC):
    """Advisory network status. A True result does not guarantee success."""

    @abstractmethod
    async def is_online(self) -> bool:
        pass
