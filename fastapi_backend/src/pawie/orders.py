"""Order placement, status workflow and order queries."""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from src.pawie import db, inventory, pricing
from src.pawie.errors import ServiceError
from src.pawie.store import Store

logger = logging.getLogger(__name__)

ORDER_SOURCES = ("one_time", "autoship")
ORDER_STATUSES = ("pending", "paid", "processing", "shipped", "delivered", "cancelled", "refunded")
REVENUE_STATUSES = ("paid", "processing", "shipped", "delivered")

# Allowed next statuses; anything missing from this table is terminal.
STATUS_TRANSITIONS: Dict[str, Tuple[str, ...]] = {
    "pending": ("paid", "cancelled"),
    "paid": ("processing", "refunded"),
    "processing": ("shipped", "refunded"),
    "shipped": ("delivered",),
}

_TRANSITION_MESSAGES = {
    "pending": "Pending orders can only transition to paid or cancelled",
    "paid": "Paid orders can only transition to processing or refunded",
    "processing": "Processing orders can only transition to shipped or refunded",
    "shipped": "Shipped orders can only transition to delivered",
    "delivered": "Delivered is a terminal state",
}


def _validate_items(store: Store, items: Sequence[Dict[str, Any]]) -> List[Tuple[UUID, int]]:
    lines: List[Tuple[UUID, int]] = []
    for item in items:
        product_id = item.get("product_id")
        quantity = item.get("quantity")
        if quantity is None or int(quantity) <= 0:
            raise ServiceError("INVALID_QUANTITY", product_id=product_id)
        quantity = int(quantity)

        product = store.get_product(product_id)
        if not product or not product.get("published"):
            raise ServiceError("PRODUCT_NOT_FOUND", product_id=product_id)

        availability = inventory.check_product_availability(store, product_id, quantity)
        if not availability["available"]:
            raise ServiceError(
                "INSUFFICIENT_INVENTORY",
                product_id=product_id,
                available=availability.get("stock_quantity", 0),
                requested=quantity,
            )
        lines.append((product_id, quantity))
    return lines


# PUBLIC_INTERFACE
def create_order_with_inventory(
    store: Store,
    user_id: UUID,
    items: Sequence[Dict[str, Any]],
    address_id: Optional[UUID] = None,
    source: str = "one_time",
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Place an order and take its items out of stock in one transaction.

    Every item is validated (quantity, published product, stock) before
    anything is written. Prices are snapshotted onto the order items from
    `pricing.compute_product_price`, using autoship pricing when
    `source == "autoship"`.
    """
    if not store.user_exists(user_id):
        raise ServiceError("USER_NOT_FOUND", user_id=user_id)
    if not items:
        raise ServiceError("EMPTY_ORDER")
    if source not in ORDER_SOURCES:
        raise ServiceError("INVALID_SOURCE", source=source)

    lines = _validate_items(store, items)

    if address_id is not None:
        address = store.get_address(address_id)
        if not address or address["user_id"] != user_id:
            raise ServiceError("ADDRESS_NOT_FOUND", address_id=address_id)

    is_autoship = source == "autoship"
    quotes = []
    subtotal = discount_total = total = 0
    for product_id, quantity in lines:
        quote = pricing.compute_product_price(
            store, product_id, user_id=user_id, is_autoship=is_autoship, quantity=quantity, now=now
        )
        quotes.append((product_id, quantity, quote))
        subtotal += quote["base_price_idr"] * quantity
        discount_total += quote["discount_total_idr"] * quantity
        total += quote["line_total_idr"]

    order = store.insert_order(user_id, source, subtotal, discount_total, total, address_id)
    order_id = order["id"]

    items_result = []
    used_discounts: List[UUID] = []
    for product_id, quantity, quote in quotes:
        order_item = store.insert_order_item(
            order_id,
            product_id,
            quantity,
            quote["base_price_idr"],
            quote["final_price_idr"],
            quote["discount_total_idr"],
            quote["discounts_applied"],
        )
        inventory.decrement_inventory(store, product_id, quantity, "order_placed", order_id)
        for applied in quote["discounts_applied"]:
            discount_id = UUID(str(applied["discount_id"]))
            if discount_id not in used_discounts:
                used_discounts.append(discount_id)
        items_result.append(
            {
                "order_item_id": order_item["id"],
                "product_id": product_id,
                "quantity": quantity,
                "pricing": quote,
            }
        )

    store.increment_discount_usage(used_discounts)
    logger.info("Order %s created for user %s (%s, total %s IDR)", order_id, user_id, source, total)

    return {
        "success": True,
        "order_id": order_id,
        "status": "pending",
        "subtotal_idr": subtotal,
        "discount_total_idr": discount_total,
        "total_price_idr": total,
        "items": items_result,
    }


# PUBLIC_INTERFACE
def update_order_status(store: Store, order_id: UUID, new_status: str) -> Dict[str, Any]:
    """Move an order along its workflow; cancelling a pending order restocks its items."""
    if new_status not in ORDER_STATUSES:
        raise ServiceError("INVALID_STATUS", new_status=new_status)

    order = store.lock_order(order_id)
    if not order:
        raise ServiceError("ORDER_NOT_FOUND", order_id=order_id)

    current = order["status"]
    if current in ("cancelled", "refunded"):
        raise ServiceError(
            "INVALID_TRANSITION",
            "Cannot change status from terminal state",
            current_status=current,
            new_status=new_status,
        )
    if new_status not in STATUS_TRANSITIONS.get(current, ()):
        raise ServiceError(
            "INVALID_TRANSITION",
            _TRANSITION_MESSAGES.get(current, "Invalid status transition"),
            current_status=current,
            new_status=new_status,
        )

    restored = 0
    if new_status == "cancelled" and current == "pending":
        for item in store.list_order_items(order_id):
            inventory.restore_inventory(store, item["product_id"], int(item["quantity"]), "order_cancelled", order_id)
            restored += 1

    store.set_order_status(order_id, new_status)
    logger.info("Order %s: %s -> %s", order_id, current, new_status)
    return {
        "success": True,
        "order_id": order_id,
        "previous_status": current,
        "new_status": new_status,
        "inventory_restored": restored,
    }


def build_order_filters(
    status: Optional[str] = None,
    source: Optional[str] = None,
    search: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    user_id: Optional[UUID] = None,
) -> Tuple[str, List[Any]]:
    """WHERE clause for order listings. `all` disables the status/source filter."""
    where = []
    params: List[Any] = []
    if status and status != "all":
        where.append("o.status=%s")
        params.append(status)
    if source and source != "all":
        where.append("o.source=%s")
        params.append(source)
    if start_date:
        where.append("o.created_at >= %s")
        params.append(start_date)
    if end_date:
        where.append("o.created_at <= %s")
        params.append(end_date)
    if search:
        where.append("o.id::text ILIKE %s")
        params.append(f"%{search}%")
    if user_id:
        where.append("o.user_id=%s")
        params.append(user_id)
    return ("WHERE " + " AND ".join(where)) if where else "", params


# PUBLIC_INTERFACE
def list_orders(page: int = 1, limit: int = 20, **filters: Any) -> Dict[str, Any]:
    """Paginated orders (newest first) with customer and address summaries."""
    where_sql, params = build_order_filters(**filters)
    offset = (page - 1) * limit
    rows = db.fetch_all(
        f"""
        SELECT o.*, pr.email AS customer_email, pr.full_name AS customer_name,
               a.label AS address_label, a.city AS address_city
        FROM orders o
        LEFT JOIN profiles pr ON pr.id = o.user_id
        LEFT JOIN addresses a ON a.id = o.shipping_address_id
        {where_sql}
        ORDER BY o.created_at DESC
        LIMIT %s OFFSET %s
        """,
        params + [limit, offset],
    )
    count = db.fetch_one(f"SELECT COUNT(*) AS total FROM orders o {where_sql}", params)
    total = int(count["total"]) if count else 0
    return {
        "items": rows,
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": (total + limit - 1) // limit,
    }


# PUBLIC_INTERFACE
def get_order_with_items(order_id: UUID) -> Optional[Dict[str, Any]]:
    order = db.fetch_one("SELECT * FROM orders WHERE id=%s", [order_id])
    if not order:
        return None
    order["items"] = db.fetch_all(
        """
        SELECT oi.*, p.name AS product_name, p.sku AS product_sku, p.primary_image_path
        FROM order_items oi
        LEFT JOIN products p ON p.id = oi.product_id
        WHERE oi.order_id=%s
        ORDER BY oi.created_at ASC
        """,
        [order_id],
    )
    return order


# PUBLIC_INTERFACE
def get_order_stats() -> Dict[str, Any]:
    """Order counts by status and total revenue in one query."""
    row = db.fetch_one(
        """
        SELECT COUNT(*) AS total_orders,
               COUNT(*) FILTER (WHERE status='pending') AS pending_orders,
               COUNT(*) FILTER (WHERE status='paid') AS paid_orders,
               COUNT(*) FILTER (WHERE status='processing') AS processing_orders,
               COUNT(*) FILTER (WHERE status='shipped') AS shipped_orders,
               COALESCE(SUM(total_idr) FILTER (WHERE status = ANY(%s)), 0) AS total_revenue
        FROM orders
        """,
        [list(REVENUE_STATUSES)],
    )
    return {k: int(v) for k, v in (row or {}).items()}
