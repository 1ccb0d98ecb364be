"""Admin management of discounts and their product targets."""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID

from src.pawie import db
from src.pawie.errors import ServiceError

logger = logging.getLogger(__name__)

DISCOUNT_COLUMNS = (
    "name",
    "kind",
    "discount_type",
    "value",
    "active",
    "starts_at",
    "ends_at",
    "min_order_subtotal_idr",
    "stack_policy",
    "usage_limit",
)
NULLABLE_COLUMNS = ("starts_at", "ends_at", "min_order_subtotal_idr", "usage_limit")


# PUBLIC_INTERFACE
def validate_discount(
    discount_type: str,
    value: int,
    starts_at: Optional[datetime] = None,
    ends_at: Optional[datetime] = None,
) -> None:
    if value is None or value <= 0:
        raise ServiceError("INVALID_VALUE", "Discount value must be greater than 0")
    if discount_type == "percentage" and value > 100:
        raise ServiceError("INVALID_VALUE", "Percentage discount cannot exceed 100")
    if starts_at and ends_at and ends_at < starts_at:
        raise ServiceError("INVALID_DATE_RANGE", "End date must be after start date")


# PUBLIC_INTERFACE
def create_discount(fields: Dict[str, Any]) -> Dict[str, Any]:
    validate_discount(fields["discount_type"], fields["value"], fields.get("starts_at"), fields.get("ends_at"))
    cols = [c for c in DISCOUNT_COLUMNS if c in fields]
    discount = db.execute_returning_one(
        f"INSERT INTO discounts ({', '.join(cols)}) VALUES ({', '.join(['%s'] * len(cols))}) RETURNING *",
        [fields[c] for c in cols],
    )
    logger.info("Discount %s created (%s %s)", discount["id"], discount["discount_type"], discount["value"])
    return discount


# PUBLIC_INTERFACE
def update_discount(discount_id: UUID, changes: Dict[str, Any]) -> Dict[str, Any]:
    """Apply a partial update, validating the discount as it would be afterwards."""
    existing = db.fetch_one("SELECT * FROM discounts WHERE id=%s", [discount_id])
    if not existing:
        raise ServiceError("DISCOUNT_NOT_FOUND", discount_id=discount_id)
    merged = dict(existing, **changes)
    validate_discount(merged["discount_type"], merged["value"], merged.get("starts_at"), merged.get("ends_at"))

    cols = [c for c in DISCOUNT_COLUMNS if c in changes]
    if not cols:
        return existing
    return db.execute_returning_one(
        f"UPDATE discounts SET {', '.join(f'{c}=%s' for c in cols)}, updated_at=NOW() WHERE id=%s RETURNING *",
        [changes[c] for c in cols] + [discount_id],
    )


# PUBLIC_INTERFACE
def set_discount_targets(
    discount_id: UUID, applies_to_all_products: bool, product_ids: Sequence[UUID]
) -> List[Dict[str, Any]]:
    """Replace every target of a discount: either all products or an explicit product list."""
    if not applies_to_all_products and not product_ids:
        raise ServiceError("TARGET_REQUIRED", "Select all products or at least one product")

    with db.transaction() as cur:
        cur.execute("SELECT id FROM discounts WHERE id=%s", [discount_id])
        if not cur.fetchone():
            raise ServiceError("DISCOUNT_NOT_FOUND", discount_id=discount_id)
        cur.execute("DELETE FROM discount_targets WHERE discount_id=%s", [discount_id])
        targets = []
        if applies_to_all_products:
            cur.execute(
                """
                INSERT INTO discount_targets (discount_id, applies_to_all_products)
                VALUES (%s, TRUE) RETURNING *
                """,
                [discount_id],
            )
            targets.append(dict(cur.fetchone()))
        else:
            for product_id in dict.fromkeys(product_ids):
                cur.execute(
                    """
                    INSERT INTO discount_targets (discount_id, product_id, applies_to_all_products)
                    VALUES (%s, %s, FALSE) RETURNING *
                    """,
                    [discount_id, product_id],
                )
                targets.append(dict(cur.fetchone()))
    return targets


# PUBLIC_INTERFACE
def get_discount_with_targets(discount_id: UUID) -> Optional[Dict[str, Any]]:
    discount = db.fetch_one("SELECT * FROM discounts WHERE id=%s", [discount_id])
    if not discount:
        return None
    discount["targets"] = db.fetch_all(
        """
        SELECT t.*, p.name AS product_name
        FROM discount_targets t
        LEFT JOIN products p ON p.id = t.product_id
        WHERE t.discount_id=%s
        ORDER BY t.created_at ASC
        """,
        [discount_id],
    )
    return discount
