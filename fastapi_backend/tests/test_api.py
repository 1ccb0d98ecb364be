"""HTTP tests for the service-backed routes, using the in-memory store."""
from datetime import datetime, timedelta, timezone
from uuid import UUID, uuid4

import pytest
from fastapi.testclient import TestClient

from src.pawie import discounts
from src.pawie.auth_utils import get_current_user
from src.pawie.main import _patch, app
from src.pawie.schemas import DiscountUpdate, ProductUpdate
from src.pawie.store import get_store


@pytest.fixture
def client(store):
    app.dependency_overrides[get_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def login_as():
    def _login(user):
        app.dependency_overrides[get_current_user] = lambda: user
        return user

    return _login


def test_health(client):
    response = client.get("/")

    assert response.status_code == 200
    assert response.json() == {"message": "Healthy"}


def test_protected_route_requires_token(client):
    assert client.get("/autoships").status_code == 401


class TestPricingRoutes:
    def test_quote(self, client, store):
        product = store.add_product(price=80000)
        store.add_discount("percentage", 25, kind="autoship", all_products=True)

        response = client.post(
            "/pricing/quote", json={"product_id": str(product["id"]), "quantity": 2, "is_autoship": True}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["final_price_idr"] == 60000
        assert body["line_total_idr"] == 120000
        assert body["discounts_applied"][0]["amount"] == 20000

    def test_unknown_product_maps_to_404(self, client):
        product_id = str(uuid4())

        response = client.post("/pricing/quote", json={"product_id": product_id})

        assert response.status_code == 404
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "PRODUCT_NOT_FOUND"
        assert body["product_id"] == product_id

    def test_cart(self, client, store):
        a = store.add_product(price=10000)
        b = store.add_product(name="Treats", price=5000)

        response = client.post(
            "/pricing/cart",
            json={"items": [{"product_id": str(a["id"]), "quantity": 1}, {"product_id": str(b["id"]), "quantity": 3}]},
        )

        assert response.status_code == 200
        assert response.json()["total_idr"] == 25000

    def test_empty_cart_is_rejected(self, client):
        assert client.post("/pricing/cart", json={"items": []}).status_code == 422

    def test_autoship_badge(self, client, store):
        store.add_discount(kind="autoship", all_products=True)

        assert client.get("/pricing/autoship-discount").json() == {"active": True}


class TestCheckoutRoutes:
    """Tests for placing orders and enrolling in autoship over HTTP."""

    def test_place_order(self, client, store, customer, login_as):
        login_as(customer)
        product = store.add_product(price=50000, stock=3)

        response = client.post("/orders", json={"items": [{"product_id": str(product["id"]), "quantity": 2}]})

        assert response.status_code == 200
        assert response.json()["total_price_idr"] == 100000
        assert store.stock(product["id"]) == 1

    def test_insufficient_stock_is_conflict(self, client, store, customer, login_as):
        login_as(customer)
        product = store.add_product(stock=1)

        response = client.post("/orders", json={"items": [{"product_id": str(product["id"]), "quantity": 2}]})

        assert response.status_code == 409
        assert response.json()["error"] == "INSUFFICIENT_INVENTORY"

    def test_empty_order(self, client, customer, login_as):
        login_as(customer)

        response = client.post("/orders", json={"items": []})

        assert response.status_code == 400
        assert response.json()["error"] == "EMPTY_ORDER"

    def test_autoship_checkout(self, client, store, customer, login_as):
        login_as(customer)
        product = store.add_product(stock=5)

        response = client.post(
            "/autoships/checkout",
            json={"product_id": str(product["id"]), "quantity": 1, "frequency_weeks": 3},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert store.get_order(UUID(body["order_id"]))["source"] == "autoship"

    def test_cannot_manage_someone_elses_autoship(self, client, store, customer, login_as):
        product = store.add_product()
        autoship = store.add_autoship(customer["id"], product["id"], datetime.now(timezone.utc))
        login_as(store.add_user())

        response = client.post(f"/autoships/{autoship['id']}/pause")

        assert response.status_code == 404
        assert response.json()["error"] == "AUTOSHIP_NOT_FOUND"
        assert store.get_autoship(autoship["id"])["status"] == "active"

    def test_skip(self, client, store, customer, login_as):
        login_as(customer)
        product = store.add_product()
        when = datetime(2030, 1, 6, tzinfo=timezone.utc)
        autoship = store.add_autoship(customer["id"], product["id"], when, frequency_weeks=2)

        response = client.post(f"/autoships/{autoship['id']}/skip")

        assert response.status_code == 200
        assert store.get_autoship(autoship["id"])["next_run_at"] == when + timedelta(weeks=2)


class TestAdminRoutes:
    """Tests for admin-only service routes."""

    @pytest.fixture
    def admin(self, store, login_as):
        return login_as(store.add_user(role="admin"))

    def test_customers_are_forbidden(self, client, store, customer, login_as):
        login_as(customer)

        assert client.post("/admin/autoships/run-due").status_code == 403

    def test_order_status_workflow(self, client, store, customer, admin):
        order = store.insert_order(customer["id"], "one_time", 100000, 0, 100000, None)

        ok = client.patch(f"/admin/orders/{order['id']}", json={"status": "paid"})
        bad = client.patch(f"/admin/orders/{order['id']}", json={"status": "pending"})

        assert ok.status_code == 200
        assert ok.json()["previous_status"] == "pending"
        assert bad.status_code == 409
        assert bad.json()["error"] == "INVALID_TRANSITION"

    def test_unknown_status_is_rejected_by_schema(self, client, store, customer, admin):
        order = store.insert_order(customer["id"], "one_time", 0, 0, 0, None)

        assert client.patch(f"/admin/orders/{order['id']}", json={"status": "lost"}).status_code == 422

    def test_adjust_inventory(self, client, store, admin):
        product = store.add_product(stock=2)

        response = client.post(
            f"/admin/inventory/{product['id']}/adjust", json={"adjustment": 8, "reason": "Restock"}
        )

        assert response.status_code == 200
        assert response.json()["new_stock"] == 10

    def test_run_due(self, client, store, customer, admin):
        product = store.add_product(stock=5)
        store.add_autoship(customer["id"], product["id"], datetime.now(timezone.utc) - timedelta(days=1))

        response = client.post("/admin/autoships/run-due")

        assert response.status_code == 200
        assert response.json()["executed"] == 1
        assert store.stock(product["id"]) == 4

    def test_execute_unknown_autoship(self, client, admin):
        response = client.post(f"/admin/autoships/{uuid4()}/execute")

        assert response.status_code == 404

    def test_discount_edit_can_clear_end_date(self, client, admin, monkeypatch):
        discount_id = uuid4()
        existing = {
            "id": discount_id,
            "name": "Ramadan promo",
            "kind": "promo",
            "discount_type": "percentage",
            "value": 15,
            "active": True,
            "starts_at": datetime(2024, 3, 1, tzinfo=timezone.utc),
            "ends_at": datetime(2024, 4, 1, tzinfo=timezone.utc),
            "min_order_subtotal_idr": None,
            "stack_policy": "best_only",
            "usage_limit": 100,
            "usage_count": 3,
            "created_at": datetime(2024, 2, 1, tzinfo=timezone.utc),
            "updated_at": datetime(2024, 2, 1, tzinfo=timezone.utc),
        }
        sent = {}

        def update(query, params):
            sent["query"], sent["params"] = query, params
            return dict(existing, ends_at=None, usage_limit=None)

        monkeypatch.setattr(discounts.db, "fetch_one", lambda query, params: dict(existing))
        monkeypatch.setattr(discounts.db, "execute_returning_one", update)

        response = client.patch(f"/admin/discounts/{discount_id}", json={"ends_at": None, "usage_limit": None})

        assert response.status_code == 200
        assert response.json()["ends_at"] is None
        assert "ends_at=%s" in sent["query"]
        assert "usage_limit=%s" in sent["query"]
        assert "name=%s" not in sent["query"]
        assert sent["params"] == [None, None, discount_id]


class TestPartialUpdates:
    """Tests for which PATCH fields reach the database."""

    def test_explicit_null_clears_nullable_column(self):
        payload = DiscountUpdate.model_validate({"ends_at": None, "usage_limit": None})

        assert _patch(payload, "discounts") == {"ends_at": None, "usage_limit": None}

    def test_null_is_dropped_for_required_column(self):
        payload = DiscountUpdate.model_validate({"name": None, "value": 20})

        assert _patch(payload, "discounts") == {"value": 20}

    def test_omitted_fields_are_untouched(self):
        payload = ProductUpdate.model_validate({"description": None})

        assert _patch(payload, "products") == {"description": None}

    def test_enums_are_reduced_to_values(self):
        payload = DiscountUpdate.model_validate({"stack_policy": "stack"})

        assert _patch(payload, "discounts") == {"stack_policy": "stack"}
