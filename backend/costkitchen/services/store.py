"""
CostKitchen - Dataset Store

Single owner of the session Dataset.

RULES:
- The Dataset is an immutable value; every change replaces it.
- update(fn) applies fn to the value current at the time of the call,
  never to a copy captured earlier (no lost updates between awaits).
- Listeners are notified after every change.
"""

import logging
from typing import Callable, Optional

from costkitchen.models.dataset import (
    Collection,
    Dataset,
    Entity,
    Recipe,
    RecipeIngredient,
)

logger = logging.getLogger(__name__)

DatasetListener = Callable[[Dataset], None]
Updater = Callable[[Dataset], Dataset]


class DatasetStore:

    def __init__(self, dataset: Optional[Dataset] = None) -> None:
        self._dataset = dataset or Dataset()
        self._listeners: list[DatasetListener] = []
        self.version = 0

    @property
    def snapshot(self) -> Dataset:
        return self._dataset

    # =========================================================================
    # WHOLE-DATASET OPERATIONS
    # =========================================================================

    def update(self, fn: Updater) -> Dataset:
        """Apply fn(previous) -> next to the current Dataset."""
        self._dataset = fn(self._dataset)
        self.version += 1
        self._notify()
        return self._dataset

    def replace(self, dataset: Dataset) -> Dataset:
        return self.update(lambda _: dataset)

    def clear(self) -> Dataset:
        return self.replace(Dataset())

    # =========================================================================
    # COLLECTION HELPERS
    # =========================================================================

    def get(self, collection: Collection, entity_id) -> Optional[Entity]:
        return self._dataset.find(collection, entity_id)

    def insert(self, collection: Collection, entity: Entity) -> Dataset:
        return self.update(
            lambda d: d.with_collection(collection, [*d.collection(collection), entity])
        )

    def patch(self, collection: Collection, entity_id, fn: Callable[[Entity], Entity]) -> Dataset:
        """Replace one entity with fn(entity). Missing ids are a no-op."""
        def apply(d: Dataset) -> Dataset:
            items = [fn(e) if e.id == entity_id else e for e in d.collection(collection)]
            return d.with_collection(collection, items)
        return self.update(apply)

    def remove(self, collection: Collection, entity_id) -> Dataset:
        return self.update(
            lambda d: d.with_collection(
                collection, [e for e in d.collection(collection) if e.id != entity_id]
            )
        )

    def swap_id(self, collection: Collection, old_id, new_id) -> Dataset:
        """
        Replace an entity id in place.

        Swapping an ingredient id also rewrites every recipe line that
        references it.
        """
        def apply(d: Dataset) -> Dataset:
            items = [e.with_id(new_id) if e.id == old_id else e for e in d.collection(collection)]
            d = d.with_collection(collection, items)
            if collection == Collection.INGREDIENTS:
                d = d.model_copy(update={
                    "recipes": [_rewrite_references(r, old_id, new_id) for r in d.recipes],
                })
            return d
        return self.update(apply)

    # =========================================================================
    # LISTENERS
    # =========================================================================

    def subscribe(self, listener: DatasetListener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: DatasetListener) -> None:
        self._listeners = [l for l in self._listeners if l != listener]

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._dataset)
            except Exception:
                logger.exception("Dataset listener failed")


def _rewrite_references(recipe: Recipe, old_id, new_id) -> Recipe:
    if not any(ri.ingredient_id == old_id for ri in recipe.ingredients):
        return recipe
    lines = [
        RecipeIngredient(ingredient_id=new_id, qty=ri.qty) if ri.ingredient_id == old_id else ri
        for ri in recipe.ingredients
    ]
    return recipe.model_copy(update={"ingredients": lines})
