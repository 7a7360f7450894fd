"""
CostKitchen - Kitchen Session

Wires the collaborators and the four engines around one shared
DatasetStore for a single client session.
"""

import asyncio
import logging
from functools import lru_cache
from typing import Optional

from costkitchen.bridges.base import ConnectivityProbe, LocalCacheStore, RemoteDataService
from costkitchen.bridges.identity import LocalIdentityProvider
from costkitchen.core.config import settings
from costkitchen.models.finance import LoginResult
from costkitchen.services.mutation_engine import OptimisticMutationEngine
from costkitchen.services.notifications import Notifier
from costkitchen.services.offline_queue import OfflineQueue
from costkitchen.services.projection_engine import FinancialProjectionEngine
from costkitchen.services.session_guard import SessionGuard
from costkitchen.services.stock_engine import StockConsumptionEngine
from costkitchen.services.store import DatasetStore
from costkitchen.services.sync_controller import DataSyncController

logger = logging.getLogger(__name__)


class KitchenSession:
    """
    Composition root.

    The sync controller is built first; the engines reconcile through it,
    and it flushes the mutation engine's offline queue before each fetch.
    """

    def __init__(
        self,
        identity: LocalIdentityProvider,
        remote: RemoteDataService,
        cache: LocalCacheStore,
        connectivity: Optional[ConnectivityProbe] = None,
        store: Optional[DatasetStore] = None,
        notifier: Optional[Notifier] = None,
        guard: Optional[SessionGuard] = None,
    ):
        self.identity = identity
        self.remote = remote
        self.cache = cache
        self.connectivity = connectivity
        self.store = store or DatasetStore()
        self.notifier = notifier or Notifier()

        self.sync = DataSyncController(self.store, identity, remote, cache, connectivity)
        self.mutations = OptimisticMutationEngine(
            self.store,
            remote,
            notifier=self.notifier,
            reconcile=self.sync.reconcile,
            connectivity=connectivity,
            queue=OfflineQueue(settings.OFFLINE_MAX_RETRIES),
        )
        self.projections = FinancialProjectionEngine(
            self.store,
            remote=remote,
            notifier=self.notifier,
            refresh=self.sync.reconcile,
        )
        self.stock = StockConsumptionEngine(
            self.store,
            self.mutations,
            notifier=self.notifier,
            reconcile=self.sync.reconcile,
        )
        self.guard = guard or SessionGuard(notifier=self.notifier)
        self.guard.sign_out = self.logout

        self.sync.add_pre_fetch_hook(self.mutations.flush_offline_queue)
        self.sync.add_sign_out_hook(self.mutations.reset)
        self.sync.add_sign_out_hook(self.guard.reset)

        self._events_task: Optional[asyncio.Task] = None

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self) -> None:
        """Initial session check, then follow identity events in the background."""
        if self._events_task is None:
            self._events_task = asyncio.get_running_loop().create_task(self.sync.run())

    async def stop(self) -> None:
        if self._events_task is not None:
            self._events_task.cancel()
            try:
                await self._events_task
            except asyncio.CancelledError:
                pass
            self._events_task = None
        await self.mutations.drain()

    # =========================================================================
    # SESSION
    # =========================================================================

    async def login(self, email: str, password: str) -> LoginResult:
        result = await self.guard.login(lambda: self.identity.authenticate(email, password))
        if result.success:
            # Loads cache then remote; the event loop sees the latch and skips
            await self.sync.refresh(silent=False)
        return result

    async def logout(self) -> None:
        self.identity.sign_out()
        await self.sync.sign_out()


def build_kitchen() -> KitchenSession:
    """Build a session from settings."""
    identity = LocalIdentityProvider()
    if settings.USE_IN_MEMORY_BACKENDS:
        from costkitchen.services.mocks import (
            InMemoryCacheStore,
            InMemoryRemoteDataService,
            StaticConnectivityProbe,
        )

        logger.info("Using in-memory backends")
        return KitchenSession(
            identity,
            InMemoryRemoteDataService(),
            InMemoryCacheStore(),
            StaticConnectivityProbe(),
        )

    from costkitchen.bridges.cache import SqlCacheStore
    from costkitchen.bridges.connectivity import HttpConnectivityProbe
    from costkitchen.bridges.remote import RestDataService

    return KitchenSession(
        identity,
        RestDataService(identity),
        SqlCacheStore(),
        HttpConnectivityProbe(),
    )


@lru_cache()
def get_kitchen() -> KitchenSession:
    return build_kitchen()
