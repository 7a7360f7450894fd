"""
CostKitchen - Remote Data Service Bridge

PostgREST-style REST API over httpx.

Tables:
- ingredients, recipes, recipe_ingredients (join), expenses
- settings (one row per user)
- daily_snapshots (upsert on user_id,date)

JSON numbers are parsed as Decimal. Every transport or HTTP failure, and every
malformed row, is raised as RemoteServiceError.
"""

import datetime as dt
import json
import logging
from contextlib import contextmanager
from decimal import Decimal
from typing import Any, Iterator, Optional

import httpx
from pydantic import ValidationError

from costkitchen.bridges.base import (
    IdentityProvider,
    RemoteCollection,
    RemoteDataService,
)
from costkitchen.core.config import settings
from costkitchen.core.errors import RemoteServiceError
from costkitchen.models.dataset import (
    ConfirmedId,
    DailySnapshot,
    Entity,
    Expense,
    Ingredient,
    KitchenSettings,
    Recipe,
    RecipeIngredient,
)

logger = logging.getLogger(__name__)

REST_PREFIX = "/rest/v1"


class DecimalEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal, dates and ids."""
    def default(self, obj):
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, (dt.date, dt.datetime)):
            return obj.isoformat()
        if isinstance(obj, ConfirmedId):
            return obj.value
        return super().default(obj)


def _row_to_model(row: dict, model: type) -> Any:
    """Drop nulls so model defaults apply, and unknown columns."""
    data = {k: v for k, v in row.items() if v is not None and k in model.model_fields}
    return model.model_validate(data)


@contextmanager
def _decoding(table: str) -> Iterator[None]:
    """Raise rows that do not fit the model as RemoteServiceError."""
    try:
        yield
    except (ValidationError, KeyError, TypeError, AttributeError) as e:
        logger.warning(f"[REMOTE] Malformed {table} response: {e}")
        raise RemoteServiceError(f"{table} returned a malformed row: {e}") from e


def _require_confirmed(entity_id) -> int:
    if not isinstance(entity_id, ConfirmedId):
        raise RemoteServiceError(f"Entity {entity_id} is not confirmed")
    return entity_id.value


class PostgrestClient:
    """
    Minimal PostgREST client.

    A client is opened per request; pass transport to route requests
    elsewhere (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    def _headers(self, prefer: Optional[str]) -> dict:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.api_key:
            headers["apikey"] = self.api_key
            headers["Authorization"] = f"Bearer {self.api_key}"
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def request(
        self,
        method: str,
        table: str,
        params: Optional[dict] = None,
        payload: Any = None,
        prefer: Optional[str] = None,
    ) -> Any:
        content = json.dumps(payload, cls=DecimalEncoder) if payload is not None else None
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(
                    method,
                    f"{REST_PREFIX}/{table}",
                    params=params,
                    content=content,
                    headers=self._headers(prefer),
                )
        except httpx.HTTPError as e:
            logger.error(f"[REMOTE] {method} {table} error: {e}")
            raise RemoteServiceError(f"{method} {table} failed: {e}") from e

        if response.status_code >= 400:
            logger.warning(f"[REMOTE] {method} {table} failed: {response.status_code} {response.text}")
            raise RemoteServiceError(
                f"{method} {table} failed: {response.status_code}",
                status_code=response.status_code,
            )

        if not response.content:
            return None
        try:
            return json.loads(response.content, parse_float=Decimal)
        except ValueError as e:
            raise RemoteServiceError(f"{method} {table} returned invalid JSON") from e


# =============================================================================
# COLLECTIONS
# =============================================================================

class RestCollection(RemoteCollection):
    """Generic table-backed collection."""

    def __init__(
        self,
        client: PostgrestClient,
        identity: IdentityProvider,
        table: str,
        model: type[Entity],
        order: Optional[str] = None,
    ):
        self.client = client
        self.identity = identity
        self.table = table
        self.model = model
        self.order = order

    def _to_row(self, entity: Entity) -> dict:
        return entity.model_dump(mode="json", exclude={"id"})

    async def _insert(self, table: str, row: Any) -> list:
        return await self.client.request(
            "POST", table, payload=row, prefer="return=representation"
        ) or []

    async def list(self) -> list:
        params = {"select": "*"}
        if self.order:
            params["order"] = self.order
        rows = await self.client.request("GET", self.table, params=params) or []
        with _decoding(self.table):
            return [_row_to_model(row, self.model) for row in rows]

    async def create(self, entity: Entity) -> Entity:
        row = {"user_id": await self.identity.current_user_id(), **self._to_row(entity)}
        created = await self._insert(self.table, row)
        if not created:
            raise RemoteServiceError(f"Create on {self.table} returned no row")
        with _decoding(self.table):
            confirmed = ConfirmedId(value=created[0]["id"])
        logger.info(f"[REMOTE] Created {self.table} id={confirmed}")
        return entity.with_id(confirmed)

    async def update(self, entity_id: ConfirmedId, fields: dict) -> None:
        if not fields:
            return
        await self.client.request(
            "PATCH",
            self.table,
            params={"id": f"eq.{_require_confirmed(entity_id)}"},
            payload=fields,
        )

    async def delete(self, entity_id: ConfirmedId) -> None:
        await self.client.request(
            "DELETE",
            self.table,
            params={"id": f"eq.{_require_confirmed(entity_id)}"},
        )


class IngredientCollection(RestCollection):

    async def delete(self, entity_id: ConfirmedId) -> None:
        # Recipe references go first
        await self.client.request(
            "DELETE",
            "recipe_ingredients",
            params={"ingredient_id": f"eq.{_require_confirmed(entity_id)}"},
        )
        await super().delete(entity_id)


class RecipeCollection(RestCollection):
    """Recipes with their ingredient lines in the recipe_ingredients table."""

    def _to_row(self, entity: Entity) -> dict:
        return entity.model_dump(mode="json", exclude={"id", "ingredients"})

    def _ingredient_rows(self, recipe_id: int, ingredients: list) -> list[dict]:
        rows = []
        for item in ingredients:
            ri = RecipeIngredient.model_validate(item)
            rows.append({
                "recipe_id": recipe_id,
                "ingredient_id": _require_confirmed(ri.ingredient_id),
                "qty": ri.qty,
            })
        return rows

    async def list(self) -> list[Recipe]:
        recipe_rows = await self.client.request(
            "GET", self.table, params={"select": "*", "order": "id.desc"}
        ) or []
        line_rows = await self.client.request(
            "GET", "recipe_ingredients", params={"select": "*"}
        ) or []

        lines_by_recipe: dict[int, list[dict]] = {}
        with _decoding("recipe_ingredients"):
            for line in line_rows:
                lines_by_recipe.setdefault(line["recipe_id"], []).append(
                    {"ingredient_id": line["ingredient_id"], "qty": line.get("qty")}
                )

        recipes = []
        with _decoding(self.table):
            for row in recipe_rows:
                recipe = _row_to_model(row, Recipe)
                recipes.append(recipe.model_copy(update={
                    "ingredients": [RecipeIngredient.model_validate(x) for x in lines_by_recipe.get(row["id"], [])],
                }))
        return recipes

    async def create(self, entity: Recipe) -> Recipe:
        created = await super().create(entity)
        lines = self._ingredient_rows(created.id.value, entity.ingredients)
        if lines:
            await self._insert("recipe_ingredients", lines)
        return created

    async def update(self, entity_id: ConfirmedId, fields: dict) -> None:
        fields = dict(fields)
        ingredients = fields.pop("ingredients", None)
        await super().update(entity_id, fields)

        if ingredients is not None:
            recipe_id = _require_confirmed(entity_id)
            await self.client.request(
                "DELETE", "recipe_ingredients", params={"recipe_id": f"eq.{recipe_id}"}
            )
            lines = self._ingredient_rows(recipe_id, ingredients)
            if lines:
                await self._insert("recipe_ingredients", lines)


# =============================================================================
# SERVICE
# =============================================================================

class RestDataService(RemoteDataService):
    """Remote Data Service backed by a PostgREST API."""

    def __init__(
        self,
        identity: IdentityProvider,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.identity = identity
        self.client = PostgrestClient(
            base_url=base_url or settings.REMOTE_BASE_URL,
            api_key=api_key if api_key is not None else settings.REMOTE_API_KEY,
            timeout=timeout or settings.REMOTE_TIMEOUT_SECONDS,
            transport=transport,
        )
        self._ingredients = IngredientCollection(self.client, identity, "ingredients", Ingredient, order="name")
        self._recipes = RecipeCollection(self.client, identity, "recipes", Recipe)
        self._expenses = RestCollection(self.client, identity, "expenses", Expense)

    @property
    def ingredients(self) -> IngredientCollection:
        return self._ingredients

    @property
    def recipes(self) -> RecipeCollection:
        return self._recipes

    @property
    def expenses(self) -> RestCollection:
        return self._expenses

    async def list_snapshots(self, limit: int = 90) -> list[DailySnapshot]:
        rows = await self.client.request(
            "GET",
            "daily_snapshots",
            params={"select": "*", "order": "date.desc", "limit": str(limit)},
        ) or []
        with _decoding("daily_snapshots"):
            return [_row_to_model(row, DailySnapshot) for row in reversed(rows)]

    async def save_snapshot(self, snapshot: DailySnapshot) -> None:
        row = {"user_id": await self.identity.current_user_id(), **snapshot.model_dump(mode="json")}
        await self.client.request(
            "POST",
            "daily_snapshots",
            params={"on_conflict": "user_id,date"},
            payload=row,
            prefer="resolution=merge-duplicates",
        )
        logger.info(f"[REMOTE] Saved snapshot for {snapshot.date}")

    async def get_settings(self) -> KitchenSettings:
        rows = await self.client.request(
            "GET", "settings", params={"select": "*", "limit": "1"}
        ) or []
        if not rows:
            return KitchenSettings()
        with _decoding("settings"):
            return _row_to_model(rows[0], KitchenSettings)

    async def update_settings(self, fields: dict) -> None:
        user_id = await self.identity.current_user_id()
        await self.client.request(
            "PATCH",
            "settings",
            params={"user_id": f"eq.{user_id}"},
            payload=fields,
        )
