from costkitchen.models.dataset import (
    Collection,
    ConfirmedId,
    DailySnapshot,
    Dataset,
    EntityId,
    Expense,
    Ingredient,
    IngredientType,
    KitchenSettings,
    PendingId,
    Recipe,
    RecipeIngredient,
    parse_entity_id,
)

__all__ = [
    "Collection",
    "ConfirmedId",
    "DailySnapshot",
    "Dataset",
    "EntityId",
    "Expense",
    "Ingredient",
    "IngredientType",
    "KitchenSettings",
    "PendingId",
    "Recipe",
    "RecipeIngredient",
    "parse_entity_id",
]
