"""
CostKitchen - Stock Consumption Tests

Stock status classification and cook deductions.
"""

from decimal import Decimal

import pytest

from conftest import cid
from costkitchen.core.errors import ValidationFailure
from costkitchen.models.dataset import Collection, Ingredient
from costkitchen.models.finance import NoticeLevel, StockStatus
from costkitchen.services.stock_engine import stock_status

pytestmark = pytest.mark.anyio


def ingredient(stock, minimum=None) -> Ingredient:
    return Ingredient(id=cid(1), name="Flour", stock_qty=stock, min_stock=minimum)


class TestStockStatus:
    """Status and indicator width."""

    def test_empty_is_critical(self):
        level = stock_status(ingredient(0, 10))
        assert level.status == StockStatus.CRITICAL
        assert level.width == 100

    def test_no_minimum_is_good(self):
        assert stock_status(ingredient(3)).status == StockStatus.GOOD

    def test_low_width_is_percent_of_minimum(self):
        level = stock_status(ingredient(5, 10))
        assert level.status == StockStatus.LOW
        assert level.width == Decimal("50")

    def test_low_width_has_floor(self):
        level = stock_status(ingredient(Decimal("0.5"), 10))
        assert level.status == StockStatus.LOW
        assert level.width == Decimal("10")

    def test_reorder_band(self):
        level = stock_status(ingredient(12, 10))
        assert level.status == StockStatus.REORDER
        assert level.width == Decimal("100")

    def test_above_reorder_band_is_good(self):
        assert stock_status(ingredient(13, 10)).status == StockStatus.GOOD


class TestCook:
    """Cooking deducts stock locally and persists each ingredient."""

    async def test_cook_deducts_and_persists(self, signed_in, remote):
        result = await signed_in.stock.cook(cid(10), 5)

        assert result.success
        store = signed_in.store
        assert store.get(Collection.INGREDIENTS, cid(1)).stock_qty == Decimal("95")
        assert store.get(Collection.INGREDIENTS, cid(2)).stock_qty == Decimal("30")
        server = remote.dataset()
        assert server.find(Collection.INGREDIENTS, cid(2)).stock_qty == Decimal("30")

    async def test_stock_never_goes_negative(self, signed_in):
        result = await signed_in.stock.cook(cid(10), 30)

        assert result.success
        chicken = signed_in.store.get(Collection.INGREDIENTS, cid(2))
        assert chicken.stock_qty == 0
        deduction = next(d for d in result.deductions if d.ingredient_id == cid(2))
        assert deduction.previous_qty == Decimal("40")

    async def test_fractional_portions_scale_by_batch(self, signed_in):
        await signed_in.mutations.update(Collection.RECIPES, cid(10), {"batch_size": 4})
        await signed_in.stock.cook(cid(10), 2)

        rice = signed_in.store.get(Collection.INGREDIENTS, cid(1))
        assert rice.stock_qty == Decimal("99.5")

    async def test_failed_persist_reconciles_once(self, signed_in, remote):
        remote.fail_on("ingredients.update")
        lists_before = len(remote.calls("ingredients.list"))

        result = await signed_in.stock.cook(cid(10), 5)

        assert not result.success
        assert set(result.failed_ingredients) == {cid(1), cid(2)}
        # Reloaded from the server
        assert signed_in.store.get(Collection.INGREDIENTS, cid(1)).stock_qty == Decimal("100")
        assert len(remote.calls("ingredients.list")) == lists_before + 1
        errors = [n for n in signed_in.notifier.recent() if n.level == NoticeLevel.ERROR]
        assert len(errors) == 1

    async def test_negative_portions_rejected(self, signed_in):
        with pytest.raises(ValidationFailure):
            await signed_in.stock.cook(cid(10), -1)

    async def test_unknown_recipe_rejected(self, signed_in):
        with pytest.raises(ValidationFailure):
            await signed_in.stock.cook(cid(404), 1)
