"""
CostKitchen - Local Cache & Connectivity Mocks

This is a MOCK implementation.
In production, SqlCacheStore and HttpConnectivityProbe are used.
"""

from typing import Optional

from costkitchen.bridges.base import ConnectivityProbe, LocalCacheStore
from costkitchen.core.errors import CacheError
from costkitchen.models.dataset import CacheSnapshot


class InMemoryCacheStore(LocalCacheStore):
    """Cache held in memory. Set fail=True to simulate storage failure."""

    def __init__(self, snapshot: Optional[CacheSnapshot] = None):
        self.snapshot = snapshot
        self.fail = False
        self.saves = 0

    def _check(self) -> None:
        if self.fail:
            raise CacheError("Injected cache failure")

    async def save(self, snapshot: CacheSnapshot) -> None:
        self._check()
        self.snapshot = snapshot
        self.saves += 1

    async def load(self, user_id: Optional[str] = None) -> Optional[CacheSnapshot]:
        self._check()
        if self.snapshot is None:
            return None
        if user_id is not None and self.snapshot.user_id not in (None, user_id):
            return None
        return self.snapshot

    async def clear(self) -> None:
        self._check()
        self.snapshot = None

    def reset(self) -> None:
        """Reset mock state."""
        self.snapshot = None
        self.fail = False
        self.saves = 0


class StaticConnectivityProbe(ConnectivityProbe):
    """Connectivity fixed by the online flag."""

    def __init__(self, online: bool = True):
        self.online = online

    async def is_online(self) -> bool:
        return self.online
