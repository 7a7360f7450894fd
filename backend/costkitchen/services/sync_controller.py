"""
CostKitchen - Data Synchronization Controller

Cache-first, then remote. Driven by identity session events.

States:
    UNAUTHENTICATED → No identity, empty Dataset
    CACHE_LOADED → Dataset populated from the local cache
    FRESH → Dataset populated from the remote service

Rules:
    - The cache is shown before any network request
    - A remote refresh replaces the Dataset wholesale (never merges)
    - At most one full refresh per login session unless forced
    - refresh never raises; remote and cache failures degrade to the
      existing Dataset
"""

import asyncio
import datetime as dt
import logging
import time
from typing import Any, Awaitable, Callable, Optional

from costkitchen.bridges.base import (
    ConnectivityProbe,
    IdentityProvider,
    LocalCacheStore,
    RemoteDataService,
    SessionEvent,
    SessionEventType,
)
from costkitchen.core.config import settings
from costkitchen.core.errors import CacheError, RemoteServiceError
from costkitchen.models.dataset import CacheSnapshot, Dataset
from costkitchen.models.finance import SyncReport, SyncState, SyncStateTransition
from costkitchen.services.store import DatasetStore

logger = logging.getLogger(__name__)

Hook = Callable[[], Awaitable[Any]]


class DataSyncController:

    # Valid state transitions: current_state -> allowed_next_states
    VALID_TRANSITIONS: dict[SyncState, set[SyncState]] = {
        SyncState.UNAUTHENTICATED: {SyncState.UNAUTHENTICATED, SyncState.CACHE_LOADED, SyncState.FRESH},
        SyncState.CACHE_LOADED: {SyncState.UNAUTHENTICATED, SyncState.CACHE_LOADED, SyncState.FRESH},
        SyncState.FRESH: {SyncState.UNAUTHENTICATED, SyncState.FRESH},
    }

    def __init__(
        self,
        store: DatasetStore,
        identity: IdentityProvider,
        remote: RemoteDataService,
        cache: LocalCacheStore,
        connectivity: Optional[ConnectivityProbe] = None,
        snapshot_limit: Optional[int] = None,
    ):
        self.store = store
        self.identity = identity
        self.remote = remote
        self.cache = cache
        self.connectivity = connectivity
        self.snapshot_limit = snapshot_limit or settings.SNAPSHOT_LIMIT

        self._state = SyncState.UNAUTHENTICATED
        self._transition_log: list[SyncStateTransition] = []
        self._latched_user: Optional[str] = None
        self._inflight: Optional[asyncio.Future] = None
        self._pre_fetch_hooks: list[Hook] = []
        self._sign_out_hooks: list[Callable[[], Any]] = []

        self.user_id: Optional[str] = None
        self.is_loading = False
        self.last_alive_at: Optional[dt.datetime] = None
        self.last_sync_epoch_millis = 0

    @property
    def state(self) -> SyncState:
        return self._state

    def get_transition_log(self) -> list[SyncStateTransition]:
        return self._transition_log.copy()

    def add_pre_fetch_hook(self, hook: Hook) -> None:
        """Run hook before every remote fetch (offline queue flush)."""
        self._pre_fetch_hooks.append(hook)

    def add_sign_out_hook(self, hook: Callable[[], Any]) -> None:
        self._sign_out_hooks.append(hook)

    def _transition(self, target: SyncState, trigger: str) -> None:
        if target not in self.VALID_TRANSITIONS.get(self._state, set()):
            logger.warning(f"Invalid sync transition {self._state.value} -> {target.value} ({trigger})")
            return
        previous = self._state
        self._state = target
        self._transition_log.append(SyncStateTransition(
            previous_state=previous,
            current_state=target,
            trigger_event=trigger,
            user_id=self.user_id,
        ))
        logger.debug(f"Sync state {previous.value} -> {target.value} ({trigger})")

    # =========================================================================
    # REFRESH
    # =========================================================================

    async def refresh(self, silent: bool = True, force: bool = False) -> SyncReport:
        """
        Load cache, then fetch remote truth.

        Args:
            silent: When False, is_loading is set for the duration
            force: Bypass the once-per-session latch (reconciliation)
        """
        user_id = await self.identity.current_user_id()
        if user_id is None:
            self.user_id = None
            self.store.clear()
            self._transition(SyncState.UNAUTHENTICATED, "no-identity")
            return SyncReport(state=self._state)

        if not force and self._latched_user == user_id:
            if self._inflight is not None:
                # Latched callers return once the running refresh has landed
                await asyncio.shield(self._inflight)
            return SyncReport(user_id=user_id, state=self._state, skipped=True)
        self._latched_user = user_id

        if not silent:
            self.is_loading = True
        task = asyncio.ensure_future(self._refresh(user_id))
        self._inflight = task
        try:
            return await task
        finally:
            if self._inflight is task:
                self._inflight = None
            if not silent:
                self.is_loading = False

    async def reconcile(self) -> SyncReport:
        """Forced refresh after a failed optimistic mutation."""
        return await self.refresh(force=True)

    async def _refresh(self, user_id: str) -> SyncReport:
        report = SyncReport(user_id=user_id, state=self._state)

        # The in-memory Dataset is at least as new as the cache once loaded
        if self.user_id != user_id or self._state == SyncState.UNAUTHENTICATED:
            cached = await self._load_cache(user_id)
            self.user_id = user_id
            if cached is not None:
                self.store.replace(cached.to_dataset())
                self.last_sync_epoch_millis = cached.last_sync_epoch_millis
                self._transition(SyncState.CACHE_LOADED, "cache-loaded")
                report.cache_loaded = True
            else:
                self.store.clear()

        if not await self._is_online():
            logger.info("Offline: keeping cached dataset")
            report.offline = True
            report.state = self._state
            return report

        try:
            for hook in self._pre_fetch_hooks:
                await hook()
            dataset = await self._fetch()
        except RemoteServiceError as e:
            logger.error(f"Remote refresh failed: {e}")
            report.error = str(e)
            report.state = self._state
            return report

        if await self.identity.current_user_id() != user_id:
            logger.info("Identity changed during refresh; discarding fetched data")
            report.state = self._state
            return report

        self.store.replace(dataset)
        self.last_sync_epoch_millis = int(time.time() * 1000)
        await self._save_cache(user_id, dataset)
        self._transition(SyncState.FRESH, "remote-fetched")

        report.fetched = True
        report.state = self._state
        return report

    async def _fetch(self) -> Dataset:
        ingredients, recipes, expenses, kitchen_settings, snapshots = await asyncio.gather(
            self.remote.ingredients.list(),
            self.remote.recipes.list(),
            self.remote.expenses.list(),
            self.remote.get_settings(),
            self.remote.list_snapshots(self.snapshot_limit),
        )
        return Dataset(
            ingredients=ingredients,
            recipes=recipes,
            settings=kitchen_settings,
            expenses=expenses,
            snapshots=snapshots,
        )

    async def _is_online(self) -> bool:
        if self.connectivity is None:
            return True
        return await self.connectivity.is_online()

    async def _load_cache(self, user_id: str) -> Optional[CacheSnapshot]:
        try:
            return await self.cache.load(user_id)
        except CacheError as e:
            logger.warning(f"Cache load failed, continuing without cache: {e}")
            return None

    async def _save_cache(self, user_id: str, dataset: Dataset) -> None:
        try:
            await self.cache.save(CacheSnapshot.from_dataset(dataset, user_id, self.last_sync_epoch_millis))
        except CacheError as e:
            logger.warning(f"Cache save failed: {e}")

    # =========================================================================
    # SESSION EVENTS
    # =========================================================================

    async def start(self) -> SyncReport:
        """Initial session check."""
        return await self.refresh()

    async def handle_event(self, event: SessionEvent) -> Optional[SyncReport]:
        if event.type == SessionEventType.SIGNED_IN:
            return await self.refresh()
        if event.type == SessionEventType.TOKEN_REFRESHED:
            self.last_alive_at = event.at
            return None
        if event.type == SessionEventType.SIGNED_OUT:
            await self.sign_out()
        return None

    async def sign_out(self) -> None:
        """Reset the latch and clear the Dataset, then the cache."""
        self._latched_user = None
        self.user_id = None
        self.store.clear()
        for hook in self._sign_out_hooks:
            hook()
        self._transition(SyncState.UNAUTHENTICATED, "signed-out")

        try:
            await self.cache.clear()
        except CacheError as e:
            logger.warning(f"Cache clear failed: {e}")

    async def run(self) -> None:
        """Initial check, then consume session events until cancelled."""
        await self.start()
        async for event in self.identity.events():
            await self.handle_event(event)
