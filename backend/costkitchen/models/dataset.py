"""
CostKitchen - Dataset Schemas
Kitchen costing data contracts (ingredients, recipes, settings, snapshots)

IDENTITY:
- Every entity id is either Pending (local, unconfirmed) or Confirmed
  (issued by the remote store). The two are distinct types, never numbers
  that merely look different.

IMMUTABILITY:
- Entities and the Dataset are frozen. A change produces a new value.
"""

import datetime as dt
import itertools
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    PlainSerializer,
    WithJsonSchema,
    field_validator,
)

from costkitchen.core.types import Money, Percentage, Quantity


# =============================================================================
# ENTITY IDENTITY
# =============================================================================

PENDING_PREFIX = "tmp-"


class PendingId(BaseModel):
    """Temporary id of an entity whose create is not yet confirmed."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["pending"] = "pending"
    token: int

    def __str__(self) -> str:
        return f"{PENDING_PREFIX}{self.token}"


class ConfirmedId(BaseModel):
    """Authoritative id issued by the remote data service."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["confirmed"] = "confirmed"
    value: int

    def __str__(self) -> str:
        return str(self.value)


def parse_entity_id(text: str) -> Union[ConfirmedId, PendingId]:
    """Parse the text form of an id ("42" or "tmp-7")."""
    text = text.strip()
    try:
        if text.startswith(PENDING_PREFIX):
            return PendingId(token=int(text[len(PENDING_PREFIX):]))
        return ConfirmedId(value=int(text))
    except ValueError:
        raise ValueError(f"Invalid entity id: {text!r}")


def _coerce_entity_id(v: Any) -> Any:
    """Plain ints (remote rows, old caches) are confirmed ids."""
    if isinstance(v, bool):
        raise ValueError(f"Invalid entity id: {v}")
    if isinstance(v, int):
        return ConfirmedId(value=v)
    if isinstance(v, str):
        return parse_entity_id(v)
    return v


EntityId = Annotated[
    Union[ConfirmedId, PendingId],
    BeforeValidator(_coerce_entity_id),
    PlainSerializer(str, return_type=str, when_used="json"),
    WithJsonSchema({"type": "string", "description": "Confirmed id (\"42\") or pending id (\"tmp-7\")"}),
]


class PendingIdFactory:
    """Monotonic source of pending tokens. Never reuses a token."""

    def __init__(self, start: int = 1) -> None:
        self._counter = itertools.count(start)

    def next(self) -> PendingId:
        return PendingId(token=next(self._counter))


# =============================================================================
# COLLECTIONS
# =============================================================================

class Collection(str, Enum):
    """Entity collections that support optimistic mutation."""
    INGREDIENTS = "ingredients"
    RECIPES = "recipes"
    EXPENSES = "expenses"


class Entity(BaseModel):
    """Base for identifiable dataset entities."""
    model_config = ConfigDict(frozen=True)

    id: EntityId

    def merged(self, fields: dict[str, Any]):
        """Return a validated copy with fields applied."""
        return type(self).model_validate({**self.model_dump(), **fields})

    def with_id(self, entity_id: Union[ConfirmedId, PendingId]):
        return self.model_copy(update={"id": entity_id})


# =============================================================================
# INGREDIENTS
# =============================================================================

class IngredientType(str, Enum):
    """Stock item classification."""
    INGREDIENT = "ingredient"
    OTHER = "other"  # packaging, supplies


PRICING_FIELDS = frozenset({"package_cost", "package_qty", "shipping_fee", "price_buffer"})


class Ingredient(Entity):
    """Stock item with unit cost derived from package pricing."""
    name: str
    unit: str = ""
    supplier: str = ""
    type: IngredientType = IngredientType.INGREDIENT
    category: Optional[str] = None

    # Unit cost (derived from pricing inputs, or set manually)
    cost: Money = Field(default=0)

    # Stock
    stock_qty: Quantity = Field(default=0)
    min_stock: Optional[Quantity] = None

    # Pricing inputs
    package_cost: Optional[Money] = None
    package_qty: Optional[Quantity] = None
    shipping_fee: Optional[Money] = None
    price_buffer: Optional[Percentage] = None  # e.g. 10 for 10%

    def with_derived_cost(self) -> "Ingredient":
        """
        Recompute unit cost from the pricing inputs.

        cost = (package_cost * (1 + price_buffer/100) + shipping_fee) / package_qty

        Left unchanged when package_qty is missing or zero.
        """
        package_qty = self.package_qty or 0
        if package_qty <= 0:
            return self

        package_cost = self.package_cost or 0
        shipping_fee = self.shipping_fee or 0
        price_buffer = self.price_buffer or 0

        buffered = package_cost * (1 + price_buffer / 100)
        return self.model_copy(update={"cost": (buffered + shipping_fee) / package_qty})


# =============================================================================
# RECIPES
# =============================================================================

class RecipeIngredient(BaseModel):
    """Ingredient usage in a recipe (by reference)."""
    model_config = ConfigDict(frozen=True)

    ingredient_id: EntityId
    qty: Quantity


class Recipe(Entity):
    """Menu recipe with batch yield and pricing."""
    name: str
    category: str = ""

    # Yield: servings produced by one batch
    batch_size: int = 1

    # Pricing
    margin: Percentage = Field(default=0)
    price: Money = Field(default=0)

    # Expected servings sold per day
    daily_volume: Quantity = Field(default=0)

    ingredients: list[RecipeIngredient] = []

    image: Optional[str] = None
    prep_time: Optional[str] = None

    @field_validator("batch_size", mode="before")
    @classmethod
    def _default_batch_size(cls, v: Any) -> Any:
        # Missing or zero batch size means a single serving
        return v or 1


# =============================================================================
# SETTINGS & EXPENSES
# =============================================================================

class Expense(Entity):
    """Monthly fixed operating expense."""
    category: str
    amount: Money = Field(default=0)


class KitchenSettings(BaseModel):
    """Tax and discount configuration."""
    model_config = ConfigDict(frozen=True)

    is_vat_registered: bool = False
    is_pwd_senior_active: bool = False
    other_discount_rate: Percentage = Field(default=0)
    daily_sales_target: Optional[Money] = None


# =============================================================================
# SNAPSHOTS
# =============================================================================

class RecipeSale(BaseModel):
    """Per-recipe sales line frozen into a snapshot."""
    model_config = ConfigDict(frozen=True)

    recipe_id: EntityId
    recipe_name: str
    quantity: Quantity
    revenue: Money


class StockAlert(BaseModel):
    """Ingredient at or below its minimum stock at capture time."""
    model_config = ConfigDict(frozen=True)

    ingredient_id: EntityId
    ingredient_name: str
    stock_qty: Quantity


class DailySnapshot(BaseModel):
    """Immutable record of one day's projected financials. Keyed by date."""
    model_config = ConfigDict(frozen=True)

    date: dt.date
    gross_sales: Money = Field(default=0)
    net_revenue: Money = Field(default=0)
    cogs: Money = Field(default=0)
    gross_profit: Money = Field(default=0)
    opex: Money = Field(default=0)
    net_profit: Money = Field(default=0)
    vat: Money = Field(default=0)
    discounts: Money = Field(default=0)
    total_orders: Quantity = Field(default=0)
    recipes_sold: list[RecipeSale] = []
    stock_alerts: list[StockAlert] = []


# =============================================================================
# DATASET
# =============================================================================

ENTITY_MODELS: dict[Collection, type[Entity]] = {
    Collection.INGREDIENTS: Ingredient,
    Collection.RECIPES: Recipe,
    Collection.EXPENSES: Expense,
}


class Dataset(BaseModel):
    """The in-memory aggregate shared by the session."""
    model_config = ConfigDict(frozen=True)

    ingredients: list[Ingredient] = []
    recipes: list[Recipe] = []
    settings: KitchenSettings = Field(default_factory=KitchenSettings)
    expenses: list[Expense] = []
    snapshots: list[DailySnapshot] = []

    def collection(self, name: Collection) -> list[Entity]:
        return getattr(self, name.value)

    def with_collection(self, name: Collection, items: list[Entity]) -> "Dataset":
        return self.model_copy(update={name.value: list(items)})

    def find(self, name: Collection, entity_id) -> Optional[Entity]:
        return next((e for e in self.collection(name) if e.id == entity_id), None)

    def ingredient_map(self) -> dict:
        return {i.id: i for i in self.ingredients}


class CacheSnapshot(BaseModel):
    """
    Persisted form of the Dataset.

    Every field is optional on load; missing fields take the Dataset defaults
    (empty lists, False, 0).
    """
    user_id: Optional[str] = None
    ingredients: list[Ingredient] = []
    recipes: list[Recipe] = []
    settings: KitchenSettings = Field(default_factory=KitchenSettings)
    expenses: list[Expense] = []
    daily_snapshots: list[DailySnapshot] = []
    last_sync_epoch_millis: int = 0

    @field_validator("ingredients", "recipes", "expenses", "daily_snapshots", mode="before")
    @classmethod
    def _none_as_empty(cls, v: Any) -> Any:
        return v if v is not None else []

    @field_validator("settings", mode="before")
    @classmethod
    def _none_as_defaults(cls, v: Any) -> Any:
        return v if v is not None else {}

    @classmethod
    def from_dataset(
        cls,
        dataset: Dataset,
        user_id: Optional[str],
        last_sync_epoch_millis: int,
    ) -> "CacheSnapshot":
        return cls(
            user_id=user_id,
            ingredients=dataset.ingredients,
            recipes=dataset.recipes,
            settings=dataset.settings,
            expenses=dataset.expenses,
            daily_snapshots=dataset.snapshots,
            last_sync_epoch_millis=last_sync_epoch_millis,
        )

    def to_dataset(self) -> Dataset:
        return Dataset(
            ingredients=self.ingredients,
            recipes=self.recipes,
            settings=self.settings,
            expenses=self.expenses,
            snapshots=self.daily_snapshots,
        )
