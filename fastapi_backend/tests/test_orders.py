"""Unit tests for order placement and the order status workflow."""
from datetime import datetime
from uuid import uuid4

import pytest

from conftest import NOW
from src.pawie import orders
from src.pawie.errors import ServiceError


def place(store, user, *lines, **kwargs):
    items = [{"product_id": p["id"], "quantity": q} for p, q in lines]
    return orders.create_order_with_inventory(store, user["id"], items, now=NOW, **kwargs)


class TestCreateOrder:
    """Tests for creating orders and taking stock."""

    def test_places_order_and_decrements_stock(self, store, customer):
        kibble = store.add_product(price=100000, stock=10)
        treats = store.add_product(name="Treats", price=20000, stock=5)

        result = place(store, customer, (kibble, 2), (treats, 1))

        assert result["success"] is True
        assert result["status"] == "pending"
        assert result["subtotal_idr"] == 220000
        assert result["total_price_idr"] == 220000
        order = store.get_order(result["order_id"])
        assert order["source"] == "one_time"
        assert order["total_idr"] == 220000
        assert store.stock(kibble["id"]) == 8
        assert store.stock(treats["id"]) == 4
        [movement] = store.movements(kibble["id"])
        assert movement["reason"] == "order_placed"
        assert movement["reference_id"] == result["order_id"]

    def test_snapshots_discounted_prices(self, store, customer):
        kibble = store.add_product(price=100000)
        promo = store.add_discount("percentage", 10, all_products=True)

        result = place(store, customer, (kibble, 2))

        [item] = store.list_order_items(result["order_id"])
        assert item["unit_base_price_idr"] == 100000
        assert item["unit_final_price_idr"] == 90000
        assert item["discount_total_idr"] == 10000
        assert item["discount_breakdown"][0]["discount_id"] == str(promo["id"])
        assert result["discount_total_idr"] == 20000
        assert result["total_price_idr"] == 180000

    def test_discount_usage_counted_once_per_order(self, store, customer):
        kibble = store.add_product(price=100000)
        treats = store.add_product(name="Treats", price=20000)
        promo = store.add_discount("percentage", 10, all_products=True)

        place(store, customer, (kibble, 1), (treats, 3))

        assert store.get_discount_usage(promo["id"]) == 1

    def test_autoship_source_gets_autoship_pricing(self, store, customer):
        kibble = store.add_product(price=100000)
        store.add_discount("percentage", 15, kind="autoship", all_products=True)

        result = place(store, customer, (kibble, 1), source="autoship")

        assert result["total_price_idr"] == 85000
        assert store.get_order(result["order_id"])["source"] == "autoship"

    def test_insufficient_stock_writes_nothing(self, store, customer):
        kibble = store.add_product(stock=10)
        treats = store.add_product(name="Treats", stock=1)

        with pytest.raises(ServiceError) as exc:
            place(store, customer, (kibble, 2), (treats, 2))

        assert exc.value.code == "INSUFFICIENT_INVENTORY"
        assert exc.value.details == {"product_id": treats["id"], "available": 1, "requested": 2}
        assert store.tables["orders"] == {}
        assert store.stock(kibble["id"]) == 10

    def test_unpublished_product(self, store, customer):
        hidden = store.add_product(published=False)

        with pytest.raises(ServiceError) as exc:
            place(store, customer, (hidden, 1))

        assert exc.value.code == "PRODUCT_NOT_FOUND"

    def test_invalid_quantity(self, store, customer):
        kibble = store.add_product()

        with pytest.raises(ServiceError) as exc:
            place(store, customer, (kibble, 0))

        assert exc.value.code == "INVALID_QUANTITY"

    def test_empty_order(self, store, customer):
        with pytest.raises(ServiceError) as exc:
            place(store, customer)

        assert exc.value.code == "EMPTY_ORDER"

    def test_unknown_user(self, store):
        kibble = store.add_product()

        with pytest.raises(ServiceError) as exc:
            place(store, {"id": uuid4()}, (kibble, 1))

        assert exc.value.code == "USER_NOT_FOUND"

    def test_invalid_source(self, store, customer):
        kibble = store.add_product()

        with pytest.raises(ServiceError) as exc:
            place(store, customer, (kibble, 1), source="subscription")

        assert exc.value.code == "INVALID_SOURCE"

    def test_address_of_another_user(self, store, customer):
        kibble = store.add_product()
        other = store.add_user()
        address = store.add_address(other["id"])

        with pytest.raises(ServiceError) as exc:
            place(store, customer, (kibble, 1), address_id=address["id"])

        assert exc.value.code == "ADDRESS_NOT_FOUND"
        assert store.stock(kibble["id"]) == 10

    def test_own_address_is_recorded(self, store, customer):
        kibble = store.add_product()
        address_id = store.find_default_address_id(customer["id"])

        result = place(store, customer, (kibble, 1), address_id=address_id)

        assert store.get_order(result["order_id"])["shipping_address_id"] == address_id


class TestUpdateOrderStatus:
    """Tests for the order status workflow."""

    @pytest.fixture
    def placed(self, store, customer):
        kibble = store.add_product(stock=10)
        return place(store, customer, (kibble, 3))["order_id"], kibble["id"]

    def test_happy_path(self, store, placed):
        order_id, product_id = placed
        for status in ("paid", "processing", "shipped", "delivered"):
            result = orders.update_order_status(store, order_id, status)
            assert result["new_status"] == status

        assert store.get_order(order_id)["status"] == "delivered"

    def test_cancelling_pending_order_restores_stock(self, store, placed):
        order_id, product_id = placed
        assert store.stock(product_id) == 7

        result = orders.update_order_status(store, order_id, "cancelled")

        assert result["inventory_restored"] == 1
        assert store.stock(product_id) == 10
        reasons = [m["reason"] for m in store.movements(product_id)]
        assert reasons == ["order_placed", "order_cancelled"]

    def test_refund_does_not_restock(self, store, placed):
        order_id, product_id = placed
        orders.update_order_status(store, order_id, "paid")

        result = orders.update_order_status(store, order_id, "refunded")

        assert result["inventory_restored"] == 0
        assert store.stock(product_id) == 7

    def test_skipping_steps_is_rejected(self, store, placed):
        order_id, product_id = placed
        with pytest.raises(ServiceError) as exc:
            orders.update_order_status(store, order_id, "shipped")

        assert exc.value.code == "INVALID_TRANSITION"
        assert exc.value.status_code == 409
        assert exc.value.details == {"current_status": "pending", "new_status": "shipped"}

    def test_terminal_states(self, store, placed):
        order_id, product_id = placed
        orders.update_order_status(store, order_id, "cancelled")

        with pytest.raises(ServiceError) as exc:
            orders.update_order_status(store, order_id, "paid")

        assert exc.value.message == "Cannot change status from terminal state"

    def test_delivered_is_final(self, store, placed):
        order_id, product_id = placed
        for status in ("paid", "processing", "shipped", "delivered"):
            orders.update_order_status(store, order_id, status)

        with pytest.raises(ServiceError) as exc:
            orders.update_order_status(store, order_id, "refunded")

        assert exc.value.message == "Delivered is a terminal state"

    def test_unknown_status(self, store, placed):
        order_id, product_id = placed
        with pytest.raises(ServiceError) as exc:
            orders.update_order_status(store, order_id, "lost")

        assert exc.value.code == "INVALID_STATUS"

    def test_unknown_order(self, store):
        with pytest.raises(ServiceError) as exc:
            orders.update_order_status(store, uuid4(), "paid")

        assert exc.value.code == "ORDER_NOT_FOUND"


class TestOrderFilters:
    def test_all_disables_status_and_source(self):
        assert orders.build_order_filters(status="all", source="all") == ("", [])

    def test_combined(self):
        start = datetime(2024, 1, 1)
        user_id = uuid4()

        where, params = orders.build_order_filters(
            status="paid", source="autoship", search="ab12", start_date=start, user_id=user_id
        )

        assert where == (
            "WHERE o.status=%s AND o.source=%s AND o.created_at >= %s AND o.id::text ILIKE %s AND o.user_id=%s"
        )
        assert params == ["paid", "autoship", start, "%ab12%", user_id]
