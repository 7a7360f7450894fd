"""
CostKitchen - Optimistic Mutation Tests

Local step first, remote step in the background, id swap on confirmation,
reconciliation on failure, offline queueing.
"""

import asyncio
from decimal import Decimal

import pytest

from conftest import cid
from costkitchen.core.errors import EntityNotFound, ValidationFailure
from costkitchen.models.dataset import Collection, ConfirmedId, PendingId
from costkitchen.models.finance import NoticeLevel
from costkitchen.services.offline_queue import OperationStatus

pytestmark = pytest.mark.anyio


class TestCreate:
    """Create applies locally with a pending id, then swaps to the confirmed id."""

    async def test_create_is_visible_before_confirmation(self, signed_in):
        handle = signed_in.mutations.create(Collection.INGREDIENTS, {"name": "Garlic", "unit": "head"})

        assert isinstance(handle.entity_id, PendingId)
        assert signed_in.store.get(Collection.INGREDIENTS, handle.entity_id).name == "Garlic"
        assert not handle.done()

        result = await handle
        assert result.success
        assert isinstance(result.entity_id, ConfirmedId)
        assert signed_in.store.get(Collection.INGREDIENTS, handle.entity_id) is None
        assert signed_in.store.get(Collection.INGREDIENTS, result.entity_id).name == "Garlic"

    async def test_invalid_input_applies_nothing(self, signed_in):
        before = signed_in.store.snapshot
        with pytest.raises(ValidationFailure) as exc:
            signed_in.mutations.create(Collection.INGREDIENTS, {"name": "", "unit": "kg"})

        assert "Name must be 1-100 characters" in exc.value.errors
        assert signed_in.store.snapshot is before

    async def test_pricing_inputs_derive_cost(self, signed_in):
        handle = signed_in.mutations.create(Collection.INGREDIENTS, {
            "name": "Oil",
            "unit": "ml",
            "package_cost": "100",
            "package_qty": "1000",
            "shipping_fee": "10",
            "price_buffer": "10",
        })
        # (100 × 1.10 + 10) / 1000
        assert signed_in.store.get(Collection.INGREDIENTS, handle.entity_id).cost == Decimal("0.12")
        await handle

    async def test_recipe_referencing_pending_ingredient(self, signed_in, remote):
        """The recipe create waits for the ingredient and sends its confirmed id."""
        remote.latency = 0.01
        ing = signed_in.mutations.create(Collection.INGREDIENTS, {"name": "Ginger", "unit": "g", "cost": "1"})
        rec = signed_in.mutations.create(Collection.RECIPES, {
            "name": "Tinola",
            "ingredients": [{"ingredient_id": str(ing.entity_id), "qty": "3"}],
        })

        ing_result, rec_result = await asyncio.gather(ing.task, rec.task)

        assert rec_result.success
        recipe = signed_in.store.get(Collection.RECIPES, rec_result.entity_id)
        assert recipe.ingredients[0].ingredient_id == ing_result.entity_id
        server_recipe = remote.dataset().find(Collection.RECIPES, rec_result.entity_id)
        assert server_recipe.ingredients[0].ingredient_id == ing_result.entity_id

    async def test_stale_confirmation_keeps_local_edit(self, signed_in, remote):
        remote.latency = 0.05
        handle = signed_in.mutations.create(Collection.INGREDIENTS, {"name": "Onion", "unit": "pc"})
        await asyncio.sleep(0.01)  # create is in flight

        edit = signed_in.mutations.update(Collection.INGREDIENTS, handle.entity_id, {"name": "Red onion"})
        created = await handle

        assert signed_in.store.get(Collection.INGREDIENTS, created.entity_id).name == "Red onion"
        assert (await edit).success
        assert remote.dataset().find(Collection.INGREDIENTS, created.entity_id).name == "Red onion"

    async def test_remote_failure_removes_optimistic_entity(self, signed_in, remote):
        remote.fail_on("expenses.create")
        handle = signed_in.mutations.create(Collection.EXPENSES, {"category": "Gas", "amount": "900"})

        result = await handle

        assert not result.success
        assert [e.category for e in signed_in.store.snapshot.expenses] == ["Rent"]
        notice = signed_in.notifier.recent()[-1]
        assert notice.level == NoticeLevel.ERROR
        assert "expense" in notice.message

    async def test_failed_create_undone_when_refresh_fails(self, signed_in, remote):
        remote.fail_on("ingredients.create", "recipes.list")
        handle = signed_in.mutations.create(Collection.INGREDIENTS, {"name": "Salt", "unit": "g"})

        result = await handle

        assert not result.success
        assert [i.name for i in signed_in.store.snapshot.ingredients] == ["Rice", "Chicken"]
        assert "undone" in signed_in.notifier.recent()[-1].message


class TestUpdate:
    """Partial updates."""

    async def test_update_merges_fields(self, signed_in, remote):
        result = await signed_in.mutations.update(Collection.RECIPES, cid(10), {"price": "55"})

        assert result.success
        recipe = signed_in.store.get(Collection.RECIPES, cid(10))
        assert recipe.price == Decimal("55")
        assert recipe.name == "Chicken Adobo"
        assert remote.calls("recipes.update")[-1][2] == {"price": "55"}

    async def test_update_unknown_entity(self, signed_in):
        with pytest.raises(EntityNotFound):
            signed_in.mutations.update(Collection.RECIPES, cid(999), {"price": "1"})

    async def test_failed_update_reverts_to_server(self, signed_in, remote):
        remote.fail_on("recipes.update")
        handle = signed_in.mutations.update(Collection.RECIPES, cid(10), {"price": "75"})
        assert signed_in.store.get(Collection.RECIPES, cid(10)).price == Decimal("75")

        result = await handle

        assert not result.success
        assert signed_in.store.get(Collection.RECIPES, cid(10)).price == Decimal("50")

    async def test_failed_update_undone_when_refresh_fails(self, signed_in, remote):
        remote.fail_on("recipes.update", "recipes.list")
        handle = signed_in.mutations.update(Collection.RECIPES, cid(10), {"price": "75"})

        result = await handle

        assert not result.success
        recipe = signed_in.store.get(Collection.RECIPES, cid(10))
        assert recipe.price == Decimal("50")
        assert recipe.name == "Chicken Adobo"

    async def test_failed_settings_undone_when_refresh_fails(self, signed_in, remote):
        remote.fail_on("settings.update", "expenses.list")
        result = await signed_in.mutations.update_settings({"other_discount_rate": "10"})

        assert not result.success
        assert signed_in.store.snapshot.settings.other_discount_rate == Decimal("0")

    async def test_settings_update(self, signed_in, remote):
        result = await signed_in.mutations.update_settings({"other_discount_rate": "10"})

        assert result.success
        assert signed_in.store.snapshot.settings.other_discount_rate == Decimal("10")
        assert remote.dataset().settings.other_discount_rate == Decimal("10")

    async def test_settings_discount_limit(self, signed_in):
        with pytest.raises(ValidationFailure):
            signed_in.mutations.update_settings({"other_discount_rate": "60"})


class TestDeleteAndDuplicate:

    async def test_delete(self, signed_in, remote):
        result = await signed_in.mutations.delete(Collection.EXPENSES, cid(20))

        assert result.success
        assert signed_in.store.snapshot.expenses == []
        assert remote.dataset().expenses == []

    async def test_failed_delete_restores(self, signed_in, remote):
        remote.fail_on("expenses.delete")
        handle = signed_in.mutations.delete(Collection.EXPENSES, cid(20))
        assert signed_in.store.snapshot.expenses == []

        await handle

        assert [e.id for e in signed_in.store.snapshot.expenses] == [cid(20)]

    async def test_failed_delete_undone_when_refresh_fails(self, signed_in, remote):
        remote.fail_on("expenses.delete", "expenses.list")
        result = await signed_in.mutations.delete(Collection.EXPENSES, cid(20))

        assert not result.success
        rent = signed_in.store.get(Collection.EXPENSES, cid(20))
        assert rent.category == "Rent"
        assert rent.amount == Decimal("15000")

    async def test_duplicate_appends_copy(self, signed_in):
        handle = signed_in.mutations.duplicate(Collection.RECIPES, cid(10))
        result = await handle

        copy = signed_in.store.get(Collection.RECIPES, result.entity_id)
        assert copy.name == "Chicken Adobo (Copy)"
        assert copy.ingredients == signed_in.store.get(Collection.RECIPES, cid(10)).ingredients

    async def test_duplicate_expense_renames_category(self, signed_in):
        result = await signed_in.mutations.duplicate(Collection.EXPENSES, cid(20))
        assert signed_in.store.get(Collection.EXPENSES, result.entity_id).category == "Rent (Copy)"


class TestOfflineQueue:
    """Offline remote steps queue and replay before the next fetch."""

    async def test_offline_mutation_is_queued(self, signed_in, connectivity, remote):
        connectivity.online = False
        result = await signed_in.mutations.update(Collection.RECIPES, cid(10), {"price": "60"})

        assert result.success and result.queued
        assert len(signed_in.mutations.queue) == 1
        assert remote.calls("recipes.update") == []

        connectivity.online = True
        report = await signed_in.sync.reconcile()

        assert report.fetched
        assert len(signed_in.mutations.queue) == 0
        assert signed_in.store.get(Collection.RECIPES, cid(10)).price == Decimal("60")

    async def test_offline_create_then_update_replays_in_order(self, signed_in, connectivity, remote):
        connectivity.online = False
        handle = signed_in.mutations.create(Collection.EXPENSES, {"category": "Water", "amount": "300"})
        await handle
        await signed_in.mutations.update(Collection.EXPENSES, handle.entity_id, {"amount": "350"})

        connectivity.online = True
        await signed_in.mutations.flush_offline_queue()

        water = next(e for e in remote.dataset().expenses if e.category == "Water")
        assert water.amount == Decimal("350")

    async def test_queue_gives_up_after_retries(self, signed_in, connectivity, remote):
        connectivity.online = False
        await signed_in.mutations.update(Collection.RECIPES, cid(10), {"price": "60"})
        connectivity.online = True
        remote.fail_on("recipes.update")

        for _ in range(3):
            await signed_in.mutations.flush_offline_queue()

        assert signed_in.mutations.queue.failed()[0].status == OperationStatus.FAILED
        assert "after 3 attempts" in signed_in.notifier.recent()[-1].message

    async def test_sign_out_clears_queue(self, signed_in, connectivity):
        connectivity.online = False
        await signed_in.mutations.update(Collection.RECIPES, cid(10), {"price": "60"})

        await signed_in.logout()

        assert len(signed_in.mutations.queue) == 0

    async def test_sign_out_forgets_entity_state(self, signed_in):
        await signed_in.mutations.update(Collection.RECIPES, cid(10), {"price": "60"})
        await signed_in.mutations.create(Collection.EXPENSES, {"category": "Water", "amount": "300"})
        assert signed_in.mutations._locks

        await signed_in.logout()

        assert signed_in.mutations._locks == {}
        assert signed_in.mutations._versions == {}
        assert signed_in.mutations._aliases == {}
