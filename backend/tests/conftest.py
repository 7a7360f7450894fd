"""Shared fixtures for CostKitchen tests."""

from decimal import Decimal

import pytest

from costkitchen.bridges.identity import LocalIdentityProvider
from costkitchen.models.dataset import (
    ConfirmedId,
    Dataset,
    Expense,
    Ingredient,
    KitchenSettings,
    Recipe,
    RecipeIngredient,
)
from costkitchen.services.kitchen import KitchenSession
from costkitchen.services.mocks import (
    InMemoryCacheStore,
    InMemoryRemoteDataService,
    StaticConnectivityProbe,
)

USER_EMAIL = "chef@example.com"
USER_PASSWORD = "mise-en-place"


@pytest.fixture
def anyio_backend():
    return "asyncio"


def cid(value: int) -> ConfirmedId:
    return ConfirmedId(value=value)


def sample_dataset(**settings) -> Dataset:
    """
    Rice at 5.00/cup, chicken at 2.50/pc; adobo uses 1 cup rice and
    2 pcs chicken per serving, sells 20 a day at 50.00.
    """
    rice = Ingredient(id=cid(1), name="Rice", unit="cup", cost=Decimal("5"), stock_qty=Decimal("100"), min_stock=Decimal("10"))
    chicken = Ingredient(id=cid(2), name="Chicken", unit="pc", cost=Decimal("2.5"), stock_qty=Decimal("40"), min_stock=Decimal("50"))
    adobo = Recipe(
        id=cid(10),
        name="Chicken Adobo",
        category="Mains",
        batch_size=1,
        margin=Decimal("30"),
        price=Decimal("50"),
        daily_volume=Decimal("20"),
        ingredients=[
            RecipeIngredient(ingredient_id=cid(1), qty=Decimal("1")),
            RecipeIngredient(ingredient_id=cid(2), qty=Decimal("2")),
        ],
    )
    rent = Expense(id=cid(20), category="Rent", amount=Decimal("15000"))
    return Dataset(
        ingredients=[rice, chicken],
        recipes=[adobo],
        expenses=[rent],
        settings=KitchenSettings(**settings),
    )


@pytest.fixture
def remote():
    service = InMemoryRemoteDataService()
    service.seed(sample_dataset(is_vat_registered=True))
    return service


@pytest.fixture
def cache():
    return InMemoryCacheStore()


@pytest.fixture
def connectivity():
    return StaticConnectivityProbe(online=True)


@pytest.fixture
def identity():
    provider = LocalIdentityProvider()
    provider.register(USER_EMAIL, USER_PASSWORD)
    return provider


@pytest.fixture
def kitchen(identity, remote, cache, connectivity):
    return KitchenSession(identity, remote, cache, connectivity)


@pytest.fixture
async def signed_in(kitchen, identity):
    """Kitchen with the sample user signed in and the Dataset fetched."""
    result = await kitchen.login(USER_EMAIL, USER_PASSWORD)
    assert result.success
    yield kitchen
    await kitchen.mutations.drain()
