"""
CostKitchen - Stock Consumption Engine
Deduct ingredient stock when portions of a recipe are cooked.

LOGIC:
1. ratio = portions / max(1, batch_size)
2. For each ingredient line: new stock = max(0, stock − qty × ratio)
3. Apply every deduction in memory as one Dataset update
4. Persist each affected ingredient concurrently

GUARDRAILS:
- Stock never goes below zero
- A failed persist does not roll back the others; any failure triggers a
  single reconciliation refresh and one notice
"""

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from costkitchen.core.errors import ValidationFailure
from costkitchen.core.types import ZERO, to_decimal
from costkitchen.models.dataset import Collection, Dataset, Ingredient, StockAlert
from costkitchen.models.finance import (
    CookResult,
    StockDeduction,
    StockLevel,
    StockStatus,
)
from costkitchen.services.notifications import Notifier
from costkitchen.services.store import DatasetStore

if TYPE_CHECKING:
    from costkitchen.services.mutation_engine import OptimisticMutationEngine

logger = logging.getLogger(__name__)

FULL_WIDTH = Decimal(100)
MIN_LOW_WIDTH = Decimal(10)
REORDER_FACTOR = Decimal("1.2")


# =============================================================================
# STATUS
# =============================================================================

def stock_status(ingredient: Ingredient) -> StockLevel:
    """
    Classify stock with an indicator width (0-100).

    stock ≤ 0 → CRITICAL (full width)
    no min stock → GOOD
    stock ≤ min → LOW, width max(10, stock/min × 100)
    stock ≤ 1.2 × min → REORDER, width stock/(1.2 × min) × 100
    otherwise → GOOD
    """
    stock = ingredient.stock_qty
    minimum = ingredient.min_stock

    if stock <= 0:
        status, width = StockStatus.CRITICAL, FULL_WIDTH
    elif minimum is None or minimum <= 0:
        status, width = StockStatus.GOOD, FULL_WIDTH
    elif stock <= minimum:
        status, width = StockStatus.LOW, max(MIN_LOW_WIDTH, stock / minimum * 100)
    elif stock <= minimum * REORDER_FACTOR:
        status, width = StockStatus.REORDER, stock / (minimum * REORDER_FACTOR) * 100
    else:
        status, width = StockStatus.GOOD, FULL_WIDTH

    return StockLevel(
        ingredient_id=ingredient.id,
        ingredient_name=ingredient.name,
        stock_qty=stock,
        min_stock=minimum,
        status=status,
        width=width,
    )


def stock_report(dataset: Dataset) -> list[StockLevel]:
    return [stock_status(i) for i in dataset.ingredients]


def low_stock_alerts(dataset: Dataset) -> list[StockAlert]:
    """Ingredients at or below their minimum stock."""
    return [
        StockAlert(ingredient_id=i.id, ingredient_name=i.name, stock_qty=i.stock_qty)
        for i in dataset.ingredients
        if i.min_stock is not None and i.stock_qty <= i.min_stock
    ]


# =============================================================================
# COOK
# =============================================================================

@dataclass
class DeductionPlan:
    """Deductions computed against the Dataset at apply time."""
    usage: dict
    deductions: list[StockDeduction] = field(default_factory=list)

    def apply(self, dataset: Dataset) -> Dataset:
        self.deductions.clear()
        ingredients = []
        for ingredient in dataset.ingredients:
            used = self.usage.get(ingredient.id)
            if used is None:
                ingredients.append(ingredient)
                continue
            new_qty = max(ZERO, ingredient.stock_qty - used)
            self.deductions.append(StockDeduction(
                ingredient_id=ingredient.id,
                previous_qty=ingredient.stock_qty,
                new_qty=new_qty,
            ))
            ingredients.append(ingredient.model_copy(update={"stock_qty": new_qty}))
        return dataset.model_copy(update={"ingredients": ingredients})


class StockConsumptionEngine:

    def __init__(
        self,
        store: DatasetStore,
        mutations: "OptimisticMutationEngine",
        notifier: Optional[Notifier] = None,
        reconcile: Optional[Callable[[], Awaitable[Any]]] = None,
    ):
        self.store = store
        self.mutations = mutations
        self.notifier = notifier or Notifier()
        self.reconcile = reconcile

    def _plan(self, recipe_id, portions) -> tuple:
        try:
            portions = to_decimal(portions)
        except ValueError:
            raise ValidationFailure(["Portions must be a number"])
        if portions < 0:
            raise ValidationFailure(["Portions cannot be negative"])

        recipe_id = self.mutations.confirmed_id(recipe_id) or recipe_id
        recipe = self.store.get(Collection.RECIPES, recipe_id)
        if recipe is None:
            raise ValidationFailure([f"Recipe {recipe_id} not found"])

        ratio = portions / max(1, recipe.batch_size)
        usage: dict = {}
        for line in recipe.ingredients:
            usage[line.ingredient_id] = usage.get(line.ingredient_id, ZERO) + line.qty * ratio
        return recipe, portions, DeductionPlan(usage=usage)

    async def cook(self, recipe_id, portions) -> CookResult:
        """Deduct stock for cooked portions and persist the new levels."""
        recipe, portions, plan = self._plan(recipe_id, portions)

        self.store.update(plan.apply)
        if not plan.deductions:
            return CookResult(success=True, recipe_id=recipe.id, portions=portions)

        handles = [
            self.mutations.persist(Collection.INGREDIENTS, d.ingredient_id, {"stock_qty"}, handle_failure=False)
            for d in plan.deductions
        ]
        results = await asyncio.gather(*(h.task for h in handles))

        failed = [d.ingredient_id for d, r in zip(plan.deductions, results) if not r.success]
        if failed:
            logger.warning(f"Stock persist failed for {len(failed)} ingredient(s) of recipe {recipe.id}")
            if self.reconcile is not None:
                await self.reconcile()
            self.notifier.error("Could not save stock levels. Data was reloaded from the server.")
            return CookResult(
                success=False,
                recipe_id=recipe.id,
                portions=portions,
                deductions=plan.deductions,
                failed_ingredients=failed,
                error="Stock persist failed",
            )

        logger.info(f"Cooked {portions} portion(s) of recipe {recipe.id}")
        return CookResult(
            success=True,
            recipe_id=recipe.id,
            portions=portions,
            deductions=plan.deductions,
        )
