"""
CostKitchen - Optimistic Mutation Engine

Applies create/update/delete/duplicate to the in-memory Dataset immediately,
then performs the remote step in the background.

LOCAL STEP (synchronous, in call order):
- Validate; on failure raise ValidationFailure with nothing applied
- Apply to the DatasetStore
- Return a MutationHandle; awaiting it yields the MutationResult

REMOTE STEP (background task):
- Remote requests for one entity are serialized by a per-entity lock
- A request for a pending entity runs after its create and uses the
  confirmed id
- A create confirmation applies the returned data only when no newer local
  edit exists for the entity; otherwise only the id is swapped
- Offline: the step is queued and the handle resolves with queued=True
- Failure: forced reconciliation refresh, user notice, success=False. If the
  refresh cannot fetch either, the optimistic change itself is undone
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Union

from pydantic import ValidationError

from costkitchen.bridges.base import ConnectivityProbe, RemoteDataService
from costkitchen.core.errors import EntityNotFound, MutationFailure, RemoteServiceError
from costkitchen.models.dataset import (
    ENTITY_MODELS,
    PRICING_FIELDS,
    Collection,
    ConfirmedId,
    Entity,
    Ingredient,
    KitchenSettings,
    PendingId,
    PendingIdFactory,
    Recipe,
    RecipeIngredient,
)
from costkitchen.models.finance import MutationResult, SyncReport, SyncState
from costkitchen.services.notifications import Notifier
from costkitchen.services.offline_queue import (
    FlushReport,
    OfflineQueue,
    OperationKind,
    SyncOperation,
)
from costkitchen.services.store import DatasetStore
from costkitchen.services.validators import (
    validate_fields,
    validate_settings,
    validation_failure_from,
)

logger = logging.getLogger(__name__)

Reconciler = Callable[[], Awaitable[Any]]
Undo = Callable[[], Any]

NOUNS = {
    Collection.INGREDIENTS: "ingredient",
    Collection.RECIPES: "recipe",
    Collection.EXPENSES: "expense",
}


class MutationHandle:
    """Awaitable handle on the remote step of one mutation."""

    def __init__(self, entity_id, task: "asyncio.Task[MutationResult]"):
        self.entity_id = entity_id
        self.task = task

    def done(self) -> bool:
        return self.task.done()

    def __await__(self):
        return self.task.__await__()


class OptimisticMutationEngine:

    def __init__(
        self,
        store: DatasetStore,
        remote: RemoteDataService,
        notifier: Optional[Notifier] = None,
        reconcile: Optional[Reconciler] = None,
        connectivity: Optional[ConnectivityProbe] = None,
        queue: Optional[OfflineQueue] = None,
        ids: Optional[PendingIdFactory] = None,
    ):
        self.store = store
        self.remote = remote
        self.notifier = notifier or Notifier()
        self.reconcile = reconcile
        self.connectivity = connectivity
        self.queue = queue or OfflineQueue()
        self.ids = ids or PendingIdFactory()

        self._locks: dict[Any, asyncio.Lock] = {}
        self._versions: dict[Any, int] = {}
        self._aliases: dict[PendingId, ConfirmedId] = {}
        self._origins: dict[ConfirmedId, PendingId] = {}
        self._tasks: set[asyncio.Task] = set()

    # =========================================================================
    # IDENTITY
    # =========================================================================

    def _canonical(self, entity_id):
        """Stable key for an entity: its pending id if it was created here."""
        return self._origins.get(entity_id, entity_id)

    def _local_id(self, entity_id):
        """The id the entity currently has in the Dataset."""
        return self._aliases.get(entity_id, entity_id)

    def _remote_id(self, entity_id) -> Optional[ConfirmedId]:
        local = self._local_id(entity_id)
        return local if isinstance(local, ConfirmedId) else None

    def confirmed_id(self, entity_id) -> Optional[ConfirmedId]:
        """Confirmed id for a pending or confirmed id, if known."""
        return self._remote_id(entity_id)

    def _lock(self, key) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    def _bump(self, key) -> int:
        self._versions[key] = self._versions.get(key, 0) + 1
        return self._versions[key]

    def _require(self, collection: Collection, entity_id) -> Entity:
        entity = self.store.get(collection, self._local_id(entity_id))
        if entity is None:
            raise EntityNotFound(f"{NOUNS[collection]} {entity_id} not found")
        return entity

    def _build(self, collection: Collection, data: dict) -> Entity:
        try:
            return ENTITY_MODELS[collection].model_validate(data)
        except ValidationError as e:
            raise validation_failure_from(e)

    # =========================================================================
    # LOCAL STEP
    # =========================================================================

    def create(self, collection: Collection, entity: Union[Entity, dict]) -> MutationHandle:
        fields = entity if isinstance(entity, dict) else entity.model_dump(exclude={"id"})
        fields = {k: v for k, v in fields.items() if k != "id"}
        validate_fields(collection, fields)
        return self._create(collection, fields)

    def _create(self, collection: Collection, fields: dict) -> MutationHandle:
        pending_id = self.ids.next()
        new_entity = self._build(collection, {**fields, "id": pending_id})
        if isinstance(new_entity, Ingredient) and PRICING_FIELDS & fields.keys():
            new_entity = new_entity.with_derived_cost()

        self.store.insert(collection, new_entity)
        self._bump(pending_id)
        logger.debug(f"Created {NOUNS[collection]} {pending_id} locally")

        op = SyncOperation(
            collection=collection,
            operation=OperationKind.CREATE,
            entity_id=pending_id,
            payload=new_entity.model_dump(mode="json"),
        )
        return self._schedule(op, pending_id, undo=lambda: self.store.remove(collection, self._local_id(pending_id)))

    def update(self, collection: Collection, entity_id, fields: dict) -> MutationHandle:
        current = self._require(collection, entity_id)
        fields = {k: v for k, v in fields.items() if k != "id"}
        validate_fields(collection, fields)

        merged = self._merge(current, fields)
        changed = set(fields)
        if isinstance(merged, Ingredient) and PRICING_FIELDS & changed:
            changed.add("cost")

        self.store.patch(collection, current.id, lambda e: self._merge(e, fields))
        key = self._canonical(current.id)
        self._bump(key)

        op = SyncOperation(
            collection=collection,
            operation=OperationKind.UPDATE,
            entity_id=key,
            payload=merged.model_dump(mode="json", include=changed),
        )
        return self._schedule(op, current.id, undo=lambda: self._restore(collection, key, current))

    def delete(self, collection: Collection, entity_id) -> MutationHandle:
        current = self._require(collection, entity_id)
        self.store.remove(collection, current.id)
        key = self._canonical(current.id)
        self._bump(key)

        op = SyncOperation(
            collection=collection,
            operation=OperationKind.DELETE,
            entity_id=key,
        )
        return self._schedule(op, current.id, undo=lambda: self._restore(collection, key, current))

    def duplicate(self, collection: Collection, entity_id) -> MutationHandle:
        source = self._require(collection, entity_id)
        fields = source.model_dump(exclude={"id"})
        label = "name" if "name" in fields else "category"
        fields[label] = f"{fields[label]} (Copy)"
        return self._create(collection, fields)

    def persist(
        self,
        collection: Collection,
        entity_id,
        fields,
        handle_failure: bool = True,
    ) -> MutationHandle:
        """
        Send fields already applied in memory (no local change).

        With handle_failure=False a failed request only reports
        success=False; the caller reconciles and notifies.
        """
        current = self._require(collection, entity_id)
        key = self._canonical(current.id)
        self._bump(key)

        op = SyncOperation(
            collection=collection,
            operation=OperationKind.UPDATE,
            entity_id=key,
            payload=current.model_dump(mode="json", include=set(fields)),
        )
        return self._schedule(op, current.id, handle_failure)

    def update_settings(self, fields: dict) -> MutationHandle:
        validate_settings(fields)
        previous = self.store.snapshot.settings
        try:
            merged = KitchenSettings.model_validate({**self.store.snapshot.settings.model_dump(), **fields})
        except ValidationError as e:
            raise validation_failure_from(e)

        self.store.update(lambda d: d.model_copy(update={
            "settings": KitchenSettings.model_validate({**d.settings.model_dump(), **fields}),
        }))

        op = SyncOperation(
            operation=OperationKind.SETTINGS,
            payload=merged.model_dump(mode="json", include=set(fields)),
        )
        return self._schedule(
            op, None, undo=lambda: self.store.update(lambda d: d.model_copy(update={"settings": previous}))
        )

    def _restore(self, collection: Collection, key, pre_image: Entity) -> None:
        """Put back the entity as it was before a failed update or delete."""
        local_id = self._local_id(key)
        restored = pre_image.with_id(local_id)
        if self.store.get(collection, local_id) is None:
            self.store.insert(collection, restored)
        else:
            self.store.patch(collection, local_id, lambda _: restored)

    def _merge(self, entity: Entity, fields: dict) -> Entity:
        try:
            merged = entity.merged(fields)
        except ValidationError as e:
            raise validation_failure_from(e)
        if isinstance(merged, Ingredient) and PRICING_FIELDS & fields.keys():
            merged = merged.with_derived_cost()
        return merged

    # =========================================================================
    # REMOTE STEP
    # =========================================================================

    def _schedule(
        self,
        op: SyncOperation,
        entity_id,
        handle_failure: bool = True,
        undo: Optional[Undo] = None,
    ) -> MutationHandle:
        task = asyncio.get_running_loop().create_task(self._run(op, handle_failure, undo))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return MutationHandle(entity_id, task)

    async def drain(self) -> None:
        """Wait for every outstanding remote step."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _run(
        self,
        op: SyncOperation,
        handle_failure: bool = True,
        undo: Optional[Undo] = None,
    ) -> MutationResult:
        async with self._lock(op.lock_key):
            if self.connectivity is not None and not await self.connectivity.is_online():
                self.queue.enqueue(op)
                return MutationResult(success=True, entity_id=op.entity_id, queued=True)
            try:
                return await self._execute(op)
            except (RemoteServiceError, MutationFailure) as e:
                error = str(e)

        if not handle_failure:
            logger.warning(f"Remote {op.describe()} failed: {error}")
            return MutationResult(success=False, entity_id=op.entity_id, error=error)
        # Outside the lock: reconciliation may replay queued operations
        return await self._fail(op, error, undo)

    async def _fail(self, op: SyncOperation, error: str, undo: Optional[Undo] = None) -> MutationResult:
        logger.warning(f"Remote {op.describe()} failed: {error}")
        report = await self.reconcile() if self.reconcile is not None else None
        outcome = "Data was reloaded from the server."
        if undo is not None and not _reconciled(report):
            logger.warning(f"Reconciliation did not reload data; undoing {op.describe()}")
            undo()
            outcome = "Your change was undone."
        noun = NOUNS[op.collection] if op.collection else "settings"
        self.notifier.error(f"Could not save {noun} changes. {outcome}")
        return MutationResult(success=False, entity_id=op.entity_id, error=error)

    async def _execute(self, op: SyncOperation) -> MutationResult:
        if op.operation == OperationKind.SETTINGS:
            await self.remote.update_settings(op.payload)
            return MutationResult(success=True)

        remote = self.remote.collection(op.collection)
        key = op.entity_id

        if op.operation == OperationKind.CREATE:
            entity = self.store.get(op.collection, self._local_id(key))
            if entity is None:
                entity = self._build(op.collection, op.payload)
            entity = await self._resolve_entity(entity)
            sent_version = self._versions.get(key, 0)
            confirmed = await remote.create(entity)
            self._confirm(op.collection, key, confirmed, sent_version)
            return MutationResult(success=True, entity_id=confirmed.id)

        remote_id = self._remote_id(key)
        if remote_id is None:
            raise MutationFailure(f"{NOUNS[op.collection]} {key} was never confirmed")

        if op.operation == OperationKind.UPDATE:
            await remote.update(remote_id, await self._resolve_fields(op.payload))
        elif op.operation == OperationKind.DELETE:
            await remote.delete(remote_id)
        return MutationResult(success=True, entity_id=remote_id)

    def _confirm(self, collection: Collection, key: PendingId, confirmed: Entity, sent_version: int) -> None:
        self._aliases[key] = confirmed.id
        self._origins[confirmed.id] = key
        self.store.swap_id(collection, key, confirmed.id)

        if self._versions.get(key, 0) == sent_version:
            self.store.patch(collection, confirmed.id, lambda _: confirmed)
        logger.info(f"Confirmed {NOUNS[collection]} {key} -> {confirmed.id}")

    # =========================================================================
    # REFERENCE RESOLUTION
    # =========================================================================

    async def _resolve_ingredient(self, ingredient_id) -> ConfirmedId:
        key = self._canonical(ingredient_id)
        if isinstance(key, PendingId) and key not in self._aliases:
            # Wait for an in-flight create of the referenced ingredient
            async with self._lock((Collection.INGREDIENTS, key)):
                pass
        resolved = self._remote_id(key)
        if resolved is None:
            raise MutationFailure(f"ingredient {ingredient_id} was never confirmed")
        return resolved

    async def _resolve_lines(self, lines: list) -> list[RecipeIngredient]:
        resolved = []
        for line in lines:
            ri = RecipeIngredient.model_validate(line)
            resolved.append(RecipeIngredient(
                ingredient_id=await self._resolve_ingredient(ri.ingredient_id),
                qty=ri.qty,
            ))
        return resolved

    async def _resolve_entity(self, entity: Entity) -> Entity:
        if isinstance(entity, Recipe) and entity.ingredients:
            return entity.model_copy(update={"ingredients": await self._resolve_lines(entity.ingredients)})
        return entity

    async def _resolve_fields(self, fields: dict) -> dict:
        if "ingredients" in fields:
            return {**fields, "ingredients": await self._resolve_lines(fields["ingredients"])}
        return fields

    # =========================================================================
    # OFFLINE QUEUE
    # =========================================================================

    async def _replay(self, op: SyncOperation) -> MutationResult:
        async with self._lock(op.lock_key):
            return await self._execute(op)

    async def flush_offline_queue(self) -> FlushReport:
        """Replay queued remote steps. Operations that give up raise a notice."""
        report = await self.queue.flush(self._replay)
        for op in report.failed_operations:
            self.notifier.error(f"Could not sync {op.describe()} after {op.retry_count} attempts.")
        return report

    def reset(self) -> None:
        """Forget session state (sign-out)."""
        self.queue.clear()
        self._versions.clear()
        self._aliases.clear()
        self._origins.clear()
        self._locks.clear()


def _reconciled(report: Optional[SyncReport]) -> bool:
    """True when the refresh replaced the Dataset, or signed out and cleared it."""
    if report is None:
        return False
    return report.fetched or report.state == SyncState.UNAUTHENTICATED
