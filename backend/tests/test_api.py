"""
CostKitchen - HTTP Surface Tests

FastAPI routes over a kitchen session wired to in-memory backends.
"""

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from conftest import USER_EMAIL, USER_PASSWORD
from costkitchen.dependencies import kitchen_session
from costkitchen.main import app


@pytest.fixture
def client(kitchen):
    app.dependency_overrides[kitchen_session] = lambda: kitchen
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def chef(client):
    response = client.post("/session/login", json={"email": USER_EMAIL, "password": USER_PASSWORD})
    assert response.json()["success"]
    return client


class TestSession:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["online"] is True

    def test_routes_require_login(self, client):
        assert client.get("/ingredients").status_code == 401
        assert client.get("/dashboard/projection").status_code == 401

    def test_login_loads_data(self, chef):
        state = chef.get("/session/state").json()
        assert state["state"] == "fresh"
        assert state["queued_operations"] == 0

        names = [i["name"] for i in chef.get("/ingredients").json()]
        assert names == ["Rice", "Chicken"]

    def test_wrong_password(self, client):
        response = client.post("/session/login", json={"email": USER_EMAIL, "password": "nope"})
        body = response.json()

        assert response.status_code == 200
        assert not body["success"]
        assert body["remaining_attempts"] == 4

    def test_lockout_returns_429(self, client):
        for _ in range(4):
            client.post("/session/login", json={"email": USER_EMAIL, "password": "nope"})
        response = client.post("/session/login", json={"email": USER_EMAIL, "password": "nope"})

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "900"

    def test_logout_clears_state(self, chef):
        assert chef.post("/session/logout").json() == {"status": "signed-out"}

        state = chef.get("/session/state").json()
        assert state["state"] == "unauthenticated"
        assert chef.get("/recipes").status_code == 401


class TestEntities:

    def test_create_and_wait(self, chef):
        response = chef.post("/ingredients?wait=true", json={"name": "Garlic", "unit": "head", "cost": "2"})
        body = response.json()

        assert response.status_code == 202
        assert body["result"]["success"]
        assert not body["entity_id"].startswith("tmp-")
        assert chef.get(f"/ingredients/{body['entity_id']}").json()["name"] == "Garlic"

    def test_create_without_wait_returns_pending_id(self, chef):
        body = chef.post("/expenses", json={"category": "Gas", "amount": "900"}).json()
        assert body["entity_id"].startswith("tmp-")
        assert body["entity"]["category"] == "Gas"

    def test_validation_errors(self, chef):
        response = chef.post("/ingredients", json={"name": "", "unit": "kg"})
        assert response.status_code == 422
        assert "Name must be 1-100 characters" in response.json()["detail"]

    def test_unknown_and_malformed_ids(self, chef):
        assert chef.get("/recipes/999").status_code == 404
        assert chef.get("/recipes/abc").status_code == 404
        assert chef.patch("/recipes/999", json={"price": "1"}).status_code == 404

    def test_update_and_financials(self, chef):
        response = chef.patch("/recipes/10?wait=true", json={"price": "60"})
        assert response.json()["result"]["success"]

        financials = chef.get("/recipes/10/financials").json()
        assert Decimal(financials["gross_sales"]) == Decimal("1200")

    def test_duplicate(self, chef):
        body = chef.post("/recipes/10/duplicate?wait=true").json()
        assert body["entity"]["name"] == "Chicken Adobo (Copy)"

    def test_cook_deducts_stock(self, chef):
        result = chef.post("/recipes/10/cook", json={"portions": 2}).json()

        assert result["success"]
        rice = chef.get("/ingredients/1").json()
        assert Decimal(rice["stock_qty"]) == Decimal("98")

    def test_cook_rejects_bad_portions(self, chef):
        assert chef.post("/recipes/10/cook", json={"portions": -1}).status_code == 422


class TestDashboardAndPricing:

    def test_daily_projection(self, chef):
        projection = chef.get("/dashboard/projection", params={"period": "daily"}).json()

        assert projection["period"] == "daily"
        assert Decimal(projection["gross_sales"]) == Decimal("1000")
        assert Decimal(projection["cogs"]) == Decimal("200")

    def test_stock_report_flags_low_stock(self, chef):
        levels = {s["ingredient_name"]: s["status"] for s in chef.get("/dashboard/stock").json()}
        assert levels == {"Rice": "good", "Chicken": "low"}

    def test_monthly_summary_rejects_bad_month(self, chef):
        assert chef.get("/dashboard/summary/monthly", params={"month": "March"}).status_code == 422

    def test_suggested_price_includes_vat(self, chef):
        # 5 / 0.5 = 10, × 1.12 = 11.2 → 12
        response = chef.post("/pricing/suggest", json={
            "ingredients": [{"ingredient_id": "1", "qty": "1"}],
            "batch_size": 1,
            "margin": 50,
        })
        assert Decimal(response.json()["price"]) == Decimal("12")

    def test_settings_update(self, chef):
        result = chef.patch("/pricing/settings", json={"other_discount_rate": "5"}).json()
        assert result["success"]
        assert Decimal(chef.get("/pricing/settings").json()["other_discount_rate"]) == Decimal("5")
