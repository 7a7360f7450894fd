"""
CostKitchen - Dataset Store and Notifier Tests
"""

from decimal import Decimal

from conftest import cid, sample_dataset
from costkitchen.models.dataset import Collection, PendingId
from costkitchen.models.finance import NoticeLevel
from costkitchen.services.notifications import Notifier
from costkitchen.services.store import DatasetStore


class TestDatasetStore:
    """Immutable Dataset behind one owner."""

    def test_update_applies_to_current_value(self):
        store = DatasetStore(sample_dataset())
        store.patch(Collection.RECIPES, cid(10), lambda r: r.model_copy(update={"price": Decimal("55")}))
        store.remove(Collection.EXPENSES, cid(20))

        snapshot = store.snapshot
        assert snapshot.recipes[0].price == Decimal("55")
        assert snapshot.expenses == []

    def test_previous_snapshot_is_untouched(self):
        store = DatasetStore(sample_dataset())
        before = store.snapshot
        store.remove(Collection.INGREDIENTS, cid(1))

        assert len(before.ingredients) == 2
        assert len(store.snapshot.ingredients) == 1

    def test_swap_ingredient_id_rewrites_recipe_lines(self):
        store = DatasetStore(sample_dataset())
        pending = PendingId(token=1)
        store.swap_id(Collection.INGREDIENTS, cid(1), pending)

        assert store.get(Collection.INGREDIENTS, pending).name == "Rice"
        assert store.snapshot.recipes[0].ingredients[0].ingredient_id == pending
        assert store.snapshot.recipes[0].ingredients[1].ingredient_id == cid(2)

    def test_failing_listener_does_not_break_update(self):
        store = DatasetStore()
        seen = []

        def broken(dataset):
            raise RuntimeError("listener bug")

        store.subscribe(broken)
        store.subscribe(lambda d: seen.append(len(d.recipes)))
        store.replace(sample_dataset())

        assert seen == [1]
        store.unsubscribe(broken)
        store.clear()
        assert seen == [1, 0]


class TestNotifier:

    def test_history_is_bounded(self):
        notifier = Notifier(history=2)
        for n in range(3):
            notifier.info(f"notice {n}")

        assert [n.message for n in notifier.recent()] == ["notice 1", "notice 2"]

    def test_listeners_receive_notices(self):
        notifier = Notifier()
        received = []
        notifier.subscribe(received.append)

        notifier.error("Could not save")

        assert received[0].level == NoticeLevel.ERROR
        notifier.clear()
        assert notifier.recent() == []
