"""Stock levels, stock movements (audit log) and inventory listings."""
import logging
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from src.pawie import config, db
from src.pawie.errors import ServiceError
from src.pawie.store import Store

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
def stock_status(stock_quantity: int, threshold: Optional[int], has_record: bool = True) -> str:
    """Classify a stock level for admin listings."""
    if not has_record:
        return "no_inventory_record"
    if threshold is None:
        threshold = config.LOW_STOCK_DEFAULT_THRESHOLD
    if stock_quantity <= 0:
        return "out_of_stock"
    if stock_quantity <= threshold:
        return "low_stock"
    return "in_stock"


# PUBLIC_INTERFACE
def check_product_availability(store: Store, product_id: UUID, quantity: int) -> Dict[str, Any]:
    """Report whether `quantity` units of a published product are in stock."""
    if quantity is None or quantity <= 0:
        return {"available": False, "error": "INVALID_QUANTITY", "product_id": product_id}

    product = store.get_product(product_id)
    if not product:
        return {"available": False, "error": "PRODUCT_NOT_FOUND", "product_id": product_id}
    if not product.get("published"):
        return {
            "available": False,
            "error": "PRODUCT_NOT_PUBLISHED",
            "product_id": product_id,
            "product_name": product["name"],
        }

    inv = store.get_inventory(product_id)
    stock = int(inv["stock_quantity"]) if inv else 0
    result: Dict[str, Any] = {
        "available": stock >= quantity,
        "stock_quantity": stock,
        "requested_quantity": quantity,
        "product_id": product_id,
        "product_name": product["name"],
    }
    if stock < quantity:
        result["error"] = "INSUFFICIENT_STOCK"
    return result


def _require_reason(reason: Optional[str]) -> str:
    if reason is None or not reason.strip():
        raise ServiceError("REASON_REQUIRED", "Reason is required for inventory movements")
    return reason.strip()


# PUBLIC_INTERFACE
def decrement_inventory(
    store: Store,
    product_id: UUID,
    quantity: int,
    reason: str,
    reference_id: Optional[UUID] = None,
) -> Dict[str, Any]:
    """Take `quantity` units out of stock under a row lock and log the movement."""
    if quantity is None or quantity <= 0:
        raise ServiceError("INVALID_QUANTITY", f"Invalid quantity: {quantity}", product_id=product_id)
    reason = _require_reason(reason)

    inv = store.lock_inventory(product_id) or store.create_inventory(product_id)
    current = int(inv["stock_quantity"])
    if current < quantity:
        raise ServiceError(
            "INSUFFICIENT_STOCK",
            f"Insufficient stock. Current: {current}, Requested: {quantity}",
            product_id=product_id,
            current_stock=current,
            requested=quantity,
        )

    new_stock = current - quantity
    store.set_stock(product_id, new_stock)
    movement_id = store.insert_movement(product_id, -quantity, reason, reference_id)
    return {
        "success": True,
        "new_stock": new_stock,
        "previous_stock": current,
        "decremented": quantity,
        "movement_id": movement_id,
    }


# PUBLIC_INTERFACE
def restore_inventory(
    store: Store,
    product_id: UUID,
    quantity: int,
    reason: str,
    reference_id: Optional[UUID] = None,
) -> int:
    """Put `quantity` units back into stock and log the movement. Returns the new stock."""
    new_stock = store.add_stock(product_id, quantity)
    store.insert_movement(product_id, quantity, _require_reason(reason), reference_id)
    return new_stock


# PUBLIC_INTERFACE
def adjust_inventory(
    store: Store,
    product_id: UUID,
    adjustment: int,
    reason: str,
    reference_id: Optional[UUID] = None,
) -> Dict[str, Any]:
    """Admin restock/correction. Stock may never go negative."""
    reason = _require_reason(reason)
    if adjustment == 0:
        raise ServiceError("INVALID_ADJUSTMENT", "Adjustment cannot be zero")
    if not store.get_product(product_id):
        raise ServiceError("PRODUCT_NOT_FOUND", product_id=product_id)

    inv = store.lock_inventory(product_id) or store.create_inventory(product_id)
    current = int(inv["stock_quantity"])
    new_stock = current + adjustment
    if new_stock < 0:
        raise ServiceError(
            "INSUFFICIENT_STOCK",
            "Inventory cannot go negative",
            current_stock=current,
            adjustment=adjustment,
            would_result_in=new_stock,
        )

    store.set_stock(product_id, new_stock)
    movement_id = store.insert_movement(product_id, adjustment, reason, reference_id)
    logger.info("Inventory adjusted for %s: %s -> %s (%s)", product_id, current, new_stock, reason)
    return {
        "success": True,
        "product_id": product_id,
        "previous_stock": current,
        "adjustment": adjustment,
        "new_stock": new_stock,
        "movement_id": movement_id,
    }


def build_inventory_filters(
    search: Optional[str], low_stock_only: bool, out_of_stock_only: bool
) -> Tuple[str, List[Any]]:
    """WHERE clause shared by the inventory listing and its count."""
    default = config.LOW_STOCK_DEFAULT_THRESHOLD
    where = []
    params: List[Any] = []
    if search:
        where.append("(p.name ILIKE %s OR p.sku ILIKE %s)")
        params.extend([f"%{search}%", f"%{search}%"])
    if low_stock_only:
        where.append(
            "(COALESCE(i.stock_quantity, 0) > 0 AND COALESCE(i.stock_quantity, 0) <= COALESCE(i.low_stock_threshold, %s))"
        )
        params.append(default)
    if out_of_stock_only:
        where.append("COALESCE(i.stock_quantity, 0) = 0")
    return ("WHERE " + " AND ".join(where)) if where else "", params


# PUBLIC_INTERFACE
def list_inventory(
    limit: int = 50,
    offset: int = 0,
    search: Optional[str] = None,
    low_stock_only: bool = False,
    out_of_stock_only: bool = False,
) -> Dict[str, Any]:
    """Paginated products with their stock level and status."""
    where_sql, params = build_inventory_filters(search, low_stock_only, out_of_stock_only)
    rows = db.fetch_all(
        f"""
        SELECT i.id, p.id AS product_id, p.name, p.sku, p.base_price_idr, p.published,
               COALESCE(i.stock_quantity, 0) AS stock_quantity,
               COALESCE(i.low_stock_threshold, %s) AS low_stock_threshold,
               (i.id IS NOT NULL) AS has_record,
               COALESCE(i.updated_at, p.updated_at) AS updated_at,
               p.primary_image_path
        FROM products p
        LEFT JOIN inventory i ON i.product_id = p.id
        {where_sql}
        ORDER BY updated_at DESC
        LIMIT %s OFFSET %s
        """,
        [config.LOW_STOCK_DEFAULT_THRESHOLD] + params + [limit, offset],
    )
    count = db.fetch_one(
        f"SELECT COUNT(*) AS total FROM products p LEFT JOIN inventory i ON i.product_id = p.id {where_sql}",
        params,
    )
    for r in rows:
        r["status"] = stock_status(r["stock_quantity"], r["low_stock_threshold"], r.pop("has_record"))
    return {"items": rows, "total": int(count["total"]) if count else 0, "limit": limit, "offset": offset}


# PUBLIC_INTERFACE
def list_low_stock(limit: int = 10) -> List[Dict[str, Any]]:
    """Products at or under their low-stock threshold, lowest stock first."""
    rows = db.fetch_all(
        """
        SELECT p.id AS product_id, p.name, p.sku, i.stock_quantity, i.low_stock_threshold
        FROM inventory i
        JOIN products p ON p.id = i.product_id
        WHERE i.stock_quantity <= i.low_stock_threshold
        ORDER BY i.stock_quantity ASC, p.name ASC
        LIMIT %s
        """,
        [limit],
    )
    for r in rows:
        r["status"] = stock_status(r["stock_quantity"], r["low_stock_threshold"])
    return rows


# PUBLIC_INTERFACE
def list_movements(product_id: UUID, limit: int = 50, offset: int = 0) -> List[Dict[str, Any]]:
    """Stock movement history for one product, newest first."""
    return db.fetch_all(
        """
        SELECT * FROM inventory_movements
        WHERE product_id=%s
        ORDER BY created_at DESC
        LIMIT %s OFFSET %s
        """,
        [product_id, limit, offset],
    )
