"""
CostKitchen - Entity API Routes
Optimistic create/update/delete/duplicate for ingredients, recipes and expenses

The local step is applied before the response is sent. The remote step runs
in the background unless wait=true, in which case its MutationResult is
returned as well.
"""

from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query
from pydantic import BaseModel

from costkitchen.core.errors import EntityNotFound
from costkitchen.dependencies import active_kitchen, entity_id
from costkitchen.models.dataset import Collection, EntityId
from costkitchen.models.finance import CookResult, MutationResult, RecipeFinancials
from costkitchen.services.kitchen import KitchenSession
from costkitchen.services.mutation_engine import MutationHandle


class MutationAccepted(BaseModel):
    """Response of a mutation route."""
    entity_id: EntityId
    entity: Optional[dict[str, Any]] = None
    result: Optional[MutationResult] = None


class CookRequest(BaseModel):
    portions: Any


async def _accepted(
    kitchen: KitchenSession,
    collection: Collection,
    handle: MutationHandle,
    wait: bool,
) -> MutationAccepted:
    result = await handle if wait else None
    current_id = kitchen.mutations.confirmed_id(handle.entity_id) or handle.entity_id
    entity = kitchen.store.get(collection, current_id)
    return MutationAccepted(
        entity_id=current_id,
        entity=entity.model_dump(mode="json") if entity else None,
        result=result,
    )


def collection_router(collection: Collection, prefix: str, tag: str) -> APIRouter:
    """CRUD routes over one Dataset collection."""
    router = APIRouter(prefix=prefix, tags=[tag])

    @router.get("")
    async def list_entities(kitchen: KitchenSession = Depends(active_kitchen)) -> list[dict]:
        return [e.model_dump(mode="json") for e in kitchen.store.snapshot.collection(collection)]

    @router.get("/{item_id}")
    async def get_entity(item_id: str, kitchen: KitchenSession = Depends(active_kitchen)) -> dict:
        entity = kitchen.store.get(collection, entity_id(kitchen, item_id))
        if entity is None:
            raise EntityNotFound(f"{collection.value} {item_id} not found")
        return entity.model_dump(mode="json")

    @router.post("", status_code=202, response_model=MutationAccepted)
    async def create_entity(
        fields: dict = Body(...),
        wait: bool = Query(False),
        kitchen: KitchenSession = Depends(active_kitchen),
    ) -> MutationAccepted:
        handle = kitchen.mutations.create(collection, fields)
        return await _accepted(kitchen, collection, handle, wait)

    @router.patch("/{item_id}", status_code=202, response_model=MutationAccepted)
    async def update_entity(
        item_id: str,
        fields: dict = Body(...),
        wait: bool = Query(False),
        kitchen: KitchenSession = Depends(active_kitchen),
    ) -> MutationAccepted:
        handle = kitchen.mutations.update(collection, entity_id(kitchen, item_id), fields)
        return await _accepted(kitchen, collection, handle, wait)

    @router.delete("/{item_id}", status_code=202, response_model=MutationAccepted)
    async def delete_entity(
        item_id: str,
        wait: bool = Query(False),
        kitchen: KitchenSession = Depends(active_kitchen),
    ) -> MutationAccepted:
        handle = kitchen.mutations.delete(collection, entity_id(kitchen, item_id))
        return await _accepted(kitchen, collection, handle, wait)

    @router.post("/{item_id}/duplicate", status_code=202, response_model=MutationAccepted)
    async def duplicate_entity(
        item_id: str,
        wait: bool = Query(False),
        kitchen: KitchenSession = Depends(active_kitchen),
    ) -> MutationAccepted:
        handle = kitchen.mutations.duplicate(collection, entity_id(kitchen, item_id))
        return await _accepted(kitchen, collection, handle, wait)

    return router


ingredients_router = collection_router(Collection.INGREDIENTS, "/ingredients", "Ingredients")
recipes_router = collection_router(Collection.RECIPES, "/recipes", "Recipes")
expenses_router = collection_router(Collection.EXPENSES, "/expenses", "Expenses")


# =============================================================================
# RECIPE ACTIONS
# =============================================================================

@recipes_router.get("/{item_id}/financials", response_model=RecipeFinancials)
async def recipe_financials(item_id: str, kitchen: KitchenSession = Depends(active_kitchen)) -> RecipeFinancials:
    """Daily cost, tax, discount and profit breakdown for one recipe."""
    breakdown = kitchen.projections.breakdown(entity_id(kitchen, item_id))
    if breakdown is None:
        raise EntityNotFound(f"recipe {item_id} not found")
    return breakdown


@recipes_router.post("/{item_id}/cook", response_model=CookResult)
async def cook_recipe(
    item_id: str,
    request: CookRequest,
    kitchen: KitchenSession = Depends(active_kitchen),
) -> CookResult:
    """
    Deduct ingredient stock for cooked portions.

    Stock is clamped at zero. A failed save reloads data from the server.
    """
    return await kitchen.stock.cook(entity_id(kitchen, item_id), request.portions)

