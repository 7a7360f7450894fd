"""
CostKitchen - Remote Data Service Mock

This is a MOCK implementation.
In production, the REST adapter talks to the hosted data service.

Contract:
    - Issues sequential confirmed ids per collection
    - Upserts snapshots by date
    - Deleting an ingredient removes it from every recipe
    - Failures can be injected per operation ("ingredients.update", ...)
"""

import asyncio
import datetime as dt

from costkitchen.bridges.base import RemoteCollection, RemoteDataService
from costkitchen.core.errors import RemoteServiceError
from costkitchen.models.dataset import (
    Collection,
    ConfirmedId,
    DailySnapshot,
    Dataset,
    Entity,
    Expense,
    Ingredient,
    KitchenSettings,
    Recipe,
)


class InMemoryCollection(RemoteCollection):
    """One remote table held in a dict keyed by id."""

    def __init__(self, service: "InMemoryRemoteDataService", name: Collection):
        self.service = service
        self.name = name
        self.rows: dict[int, Entity] = {}
        self._next_id = 1

    def seed(self, entities: list[Entity]) -> None:
        for entity in entities:
            self.rows[entity.id.value] = entity
            self._next_id = max(self._next_id, entity.id.value + 1)

    async def list(self) -> list:
        await self.service._call(f"{self.name.value}.list")
        return list(self.rows.values())

    async def create(self, entity: Entity) -> Entity:
        await self.service._call(f"{self.name.value}.create", entity)
        confirmed = entity.with_id(ConfirmedId(value=self._next_id))
        self._next_id += 1
        self.rows[confirmed.id.value] = confirmed
        return confirmed

    async def update(self, entity_id: ConfirmedId, fields: dict) -> None:
        await self.service._call(f"{self.name.value}.update", entity_id, fields)
        current = self._get(entity_id)
        self.rows[entity_id.value] = current.merged(fields)

    async def delete(self, entity_id: ConfirmedId) -> None:
        await self.service._call(f"{self.name.value}.delete", entity_id)
        self._get(entity_id)
        del self.rows[entity_id.value]
        if self.name == Collection.INGREDIENTS:
            self.service._drop_ingredient_lines(entity_id)

    def _get(self, entity_id: ConfirmedId) -> Entity:
        if not isinstance(entity_id, ConfirmedId):
            raise RemoteServiceError(f"Unconfirmed id sent to remote: {entity_id}", status_code=400)
        if entity_id.value not in self.rows:
            raise RemoteServiceError(f"{self.name.value} {entity_id} not found", status_code=404)
        return self.rows[entity_id.value]


class InMemoryRemoteDataService(RemoteDataService):
    """
    In-process stand-in for the hosted data service.

    Used for local development (USE_IN_MEMORY_BACKENDS) and tests.
    """

    def __init__(self, latency: float = 0.0):
        self.latency = latency
        self.reset()

    # =========================================================================
    # MOCK CONTROL
    # =========================================================================

    def seed(self, dataset: Dataset) -> None:
        """Load confirmed entities, settings and snapshots as server state."""
        self._ingredients.seed(dataset.ingredients)
        self._recipes.seed(dataset.recipes)
        self._expenses.seed(dataset.expenses)
        self._settings = dataset.settings
        for snapshot in dataset.snapshots:
            self._snapshots[snapshot.date] = snapshot

    def fail_on(self, *operations: str) -> None:
        """Make the named operations raise RemoteServiceError ("*" for all)."""
        self.failures.update(operations)

    def recover(self) -> None:
        self.failures.clear()

    def get_call_log(self) -> list[tuple]:
        """Return the operations received, in order."""
        return self._calls.copy()

    def calls(self, operation: str) -> list[tuple]:
        return [c for c in self._calls if c[0] == operation]

    def dataset(self) -> Dataset:
        """Current server state as a Dataset."""
        return Dataset(
            ingredients=list(self._ingredients.rows.values()),
            recipes=list(self._recipes.rows.values()),
            settings=self._settings,
            expenses=list(self._expenses.rows.values()),
            snapshots=sorted(self._snapshots.values(), key=lambda s: s.date),
        )

    def reset(self) -> None:
        """Reset mock state."""
        self._ingredients = InMemoryCollection(self, Collection.INGREDIENTS)
        self._recipes = InMemoryCollection(self, Collection.RECIPES)
        self._expenses = InMemoryCollection(self, Collection.EXPENSES)
        self._settings = KitchenSettings()
        self._snapshots: dict[dt.date, DailySnapshot] = {}
        self.failures: set[str] = set()
        self._calls: list[tuple] = []

    async def _call(self, operation: str, *args) -> None:
        self._calls.append((operation, *args))
        if self.latency:
            await asyncio.sleep(self.latency)
        if operation in self.failures or "*" in self.failures:
            raise RemoteServiceError(f"Injected failure: {operation}", status_code=503)

    def _drop_ingredient_lines(self, ingredient_id: ConfirmedId) -> None:
        for key, recipe in list(self._recipes.rows.items()):
            lines = [l for l in recipe.ingredients if l.ingredient_id != ingredient_id]
            if len(lines) != len(recipe.ingredients):
                self._recipes.rows[key] = recipe.model_copy(update={"ingredients": lines})

    # =========================================================================
    # RemoteDataService
    # =========================================================================

    @property
    def ingredients(self) -> RemoteCollection[Ingredient]:
        return self._ingredients

    @property
    def recipes(self) -> RemoteCollection[Recipe]:
        return self._recipes

    @property
    def expenses(self) -> RemoteCollection[Expense]:
        return self._expenses

    async def list_snapshots(self, limit: int = 90) -> list[DailySnapshot]:
        await self._call("snapshots.list", limit)
        ordered = sorted(self._snapshots.values(), key=lambda s: s.date)
        return ordered[-limit:] if limit else []

    async def save_snapshot(self, snapshot: DailySnapshot) -> None:
        await self._call("snapshots.save", snapshot)
        self._snapshots[snapshot.date] = snapshot

    async def get_settings(self) -> KitchenSettings:
        await self._call("settings.get")
        return self._settings

    async def update_settings(self, fields: dict) -> None:
        await self._call("settings.update", fields)
        self._settings = KitchenSettings.model_validate({**self._settings.model_dump(), **fields})
