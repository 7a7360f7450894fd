"""
CostKitchen - Pricing API Routes
Suggested menu price and tax/discount settings
"""

from typing import Any

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel

from costkitchen.core.types import Money
from costkitchen.dependencies import active_kitchen
from costkitchen.models.dataset import KitchenSettings, RecipeIngredient
from costkitchen.models.finance import MutationResult
from costkitchen.services.kitchen import KitchenSession

router = APIRouter(prefix="/pricing", tags=["Pricing"])


class PriceSuggestionRequest(BaseModel):
    ingredients: list[RecipeIngredient] = []
    batch_size: int = 1
    margin: Any = 0


class PriceSuggestion(BaseModel):
    price: Money


@router.post("/suggest", response_model=PriceSuggestion)
async def suggest_price(
    request: PriceSuggestionRequest,
    kitchen: KitchenSession = Depends(active_kitchen),
) -> PriceSuggestion:
    """
    Menu price for a recipe being authored.

    price = ceil(cost per serving / (1 - margin/100) × (1 + VAT))
    """
    return PriceSuggestion(price=kitchen.projections.suggested_price(
        request.ingredients,
        request.batch_size,
        request.margin,
    ))


@router.get("/settings", response_model=KitchenSettings)
async def get_settings(kitchen: KitchenSession = Depends(active_kitchen)) -> KitchenSettings:
    return kitchen.store.snapshot.settings


@router.patch("/settings", response_model=MutationResult)
async def update_settings(
    fields: dict = Body(...),
    kitchen: KitchenSession = Depends(active_kitchen),
) -> MutationResult:
    """Apply VAT/discount settings locally, then save them."""
    return await kitchen.mutations.update_settings(fields)
