"""
Transactional data access for the business services.

Pricing, ordering, inventory and autoship logic only talks to the database
through a `Store`, which wraps the cursor of one `db.transaction()`.
"""
import json
from contextlib import contextmanager
from datetime import date, datetime
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple
from uuid import UUID

from psycopg2.extras import Json

from src.pawie import db

Row = Dict[str, Any]

_AUTOSHIP_COLUMNS = {"quantity", "frequency_weeks", "next_run_at", "status"}
_RUN_COLUMNS = {"status", "order_id", "error_message", "executed_at"}


class Store:
    def __init__(self, cur) -> None:
        self._cur = cur
        self._savepoints = 0

    def _one(self, query: str, params: Sequence[Any] = ()) -> Optional[Row]:
        self._cur.execute(query, list(params))
        row = self._cur.fetchone()
        return dict(row) if row else None

    def _all(self, query: str, params: Sequence[Any] = ()) -> List[Row]:
        self._cur.execute(query, list(params))
        return [dict(r) for r in self._cur.fetchall()]

    def _run(self, query: str, params: Sequence[Any] = ()) -> int:
        self._cur.execute(query, list(params))
        return self._cur.rowcount

    @contextmanager
    def savepoint(self) -> Iterator[None]:
        """Undo only the statements of this block if it raises."""
        self._savepoints += 1
        name = f"sp_{self._savepoints}"
        self._run(f"SAVEPOINT {name}")
        try:
            yield
        except Exception:
            self._run(f"ROLLBACK TO SAVEPOINT {name}")
            raise
        else:
            self._run(f"RELEASE SAVEPOINT {name}")

    # ---- users / addresses / pets ----

    def user_exists(self, user_id: UUID) -> bool:
        return self._one("SELECT 1 AS ok FROM profiles WHERE id=%s", [user_id]) is not None

    def get_address(self, address_id: UUID) -> Optional[Row]:
        return self._one("SELECT * FROM addresses WHERE id=%s", [address_id])

    def find_default_address_id(self, user_id: UUID) -> Optional[UUID]:
        row = self._one(
            "SELECT id FROM addresses WHERE user_id=%s AND is_default=TRUE LIMIT 1",
            [user_id],
        )
        return row["id"] if row else None

    def find_latest_address_id(self, user_id: UUID) -> Optional[UUID]:
        row = self._one(
            "SELECT id FROM addresses WHERE user_id=%s ORDER BY created_at DESC LIMIT 1",
            [user_id],
        )
        return row["id"] if row else None

    def get_pet(self, pet_id: UUID) -> Optional[Row]:
        return self._one("SELECT * FROM pets WHERE id=%s", [pet_id])

    # ---- products / discounts ----

    def get_product(self, product_id: UUID) -> Optional[Row]:
        return self._one("SELECT * FROM products WHERE id=%s", [product_id])

    def list_published_products(self) -> List[Row]:
        return self._all("SELECT * FROM products WHERE published=TRUE")

    def list_family_products(self, family_id: UUID) -> List[Row]:
        """Published products of a family, each with its `variant_value_ids`."""
        return self._all(
            """
            SELECT p.*, COALESCE(
                       ARRAY_AGG(pvv.variant_value_id) FILTER (WHERE pvv.variant_value_id IS NOT NULL),
                       '{}'
                   ) AS variant_value_ids
            FROM products p
            LEFT JOIN product_variant_values pvv ON pvv.product_id = p.id
            WHERE p.family_id=%s AND p.published=TRUE
            GROUP BY p.id
            ORDER BY p.created_at ASC
            """,
            [family_id],
        )

    def filter_products_by_tags(self, tag_ids: List[UUID], limit: int, offset: int) -> List[Row]:
        if not tag_ids:
            return self._all(
                "SELECT * FROM products WHERE published=TRUE ORDER BY updated_at DESC LIMIT %s OFFSET %s",
                [limit, offset],
            )
        return self._all(
            """
            SELECT p.*
            FROM products p
            JOIN product_tag_assignments pta ON pta.product_id = p.id
            WHERE p.published=TRUE AND pta.tag_id = ANY(%s)
            GROUP BY p.id
            HAVING COUNT(DISTINCT pta.tag_id) = %s
            ORDER BY p.updated_at DESC
            LIMIT %s OFFSET %s
            """,
            [list(tag_ids), len(set(tag_ids)), limit, offset],
        )

    def list_discounts_with_targets(self, product_id: Optional[UUID]) -> Tuple[List[Row], List[Row]]:
        """Discounts with at least one target for `product_id` or for all products, plus those targets."""
        targets = self._all(
            """
            SELECT * FROM discount_targets
            WHERE applies_to_all_products=TRUE OR product_id=%s
            """,
            [product_id],
        )
        discount_ids = list({t["discount_id"] for t in targets})
        if not discount_ids:
            return [], []
        discounts = self._all("SELECT * FROM discounts WHERE id = ANY(%s)", [discount_ids])
        return discounts, targets

    def increment_discount_usage(self, discount_ids: Sequence[UUID]) -> None:
        if not discount_ids:
            return
        self._run(
            "UPDATE discounts SET usage_count = usage_count + 1, updated_at=NOW() WHERE id = ANY(%s)",
            [list(discount_ids)],
        )

    # ---- detail sections ----

    def list_template_sections(self, template_id: UUID) -> List[Row]:
        return self._all(
            "SELECT * FROM product_detail_template_sections WHERE template_id=%s ORDER BY sort_order ASC",
            [template_id],
        )

    def list_product_sections(self, product_id: UUID) -> List[Row]:
        return self._all(
            "SELECT * FROM product_detail_sections WHERE product_id=%s ORDER BY sort_order ASC",
            [product_id],
        )

    # ---- inventory ----

    def get_inventory(self, product_id: UUID) -> Optional[Row]:
        return self._one("SELECT * FROM inventory WHERE product_id=%s", [product_id])

    def lock_inventory(self, product_id: UUID) -> Optional[Row]:
        return self._one("SELECT * FROM inventory WHERE product_id=%s FOR UPDATE", [product_id])

    def create_inventory(self, product_id: UUID) -> Row:
        """Ensure an inventory row exists (stock 0 when new) and return it locked."""
        self._run(
            "INSERT INTO inventory (product_id, stock_quantity) VALUES (%s, 0) ON CONFLICT (product_id) DO NOTHING",
            [product_id],
        )
        row = self.lock_inventory(product_id)
        assert row is not None
        return row

    def set_stock(self, product_id: UUID, stock_quantity: int) -> None:
        self._run(
            "UPDATE inventory SET stock_quantity=%s, updated_at=NOW() WHERE product_id=%s",
            [stock_quantity, product_id],
        )

    def add_stock(self, product_id: UUID, quantity: int) -> int:
        row = self._one(
            """
            INSERT INTO inventory (product_id, stock_quantity)
            VALUES (%s, %s)
            ON CONFLICT (product_id) DO UPDATE
              SET stock_quantity = inventory.stock_quantity + EXCLUDED.stock_quantity, updated_at=NOW()
            RETURNING stock_quantity
            """,
            [product_id, quantity],
        )
        assert row is not None
        return int(row["stock_quantity"])

    def insert_movement(
        self, product_id: UUID, change_quantity: int, reason: str, reference_id: Optional[UUID]
    ) -> UUID:
        row = self._one(
            """
            INSERT INTO inventory_movements (product_id, change_quantity, reason, reference_id)
            VALUES (%s, %s, %s, %s)
            RETURNING id
            """,
            [product_id, change_quantity, reason, reference_id],
        )
        assert row is not None
        return row["id"]

    # ---- orders ----

    def insert_order(
        self,
        user_id: UUID,
        source: str,
        subtotal_idr: int,
        discount_total_idr: int,
        total_idr: int,
        shipping_address_id: Optional[UUID],
    ) -> Row:
        row = self._one(
            """
            INSERT INTO orders (user_id, status, source, subtotal_idr, discount_total_idr, total_idr, shipping_address_id)
            VALUES (%s, 'pending', %s, %s, %s, %s, %s)
            RETURNING *
            """,
            [user_id, source, subtotal_idr, discount_total_idr, total_idr, shipping_address_id],
        )
        assert row is not None
        return row

    def insert_order_item(
        self,
        order_id: UUID,
        product_id: UUID,
        quantity: int,
        unit_base_price_idr: int,
        unit_final_price_idr: int,
        discount_total_idr: int,
        discount_breakdown: List[Dict[str, Any]],
    ) -> Row:
        row = self._one(
            """
            INSERT INTO order_items (order_id, product_id, quantity, unit_base_price_idr,
                                     unit_final_price_idr, discount_total_idr, discount_breakdown)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            [
                order_id,
                product_id,
                quantity,
                unit_base_price_idr,
                unit_final_price_idr,
                discount_total_idr,
                Json(discount_breakdown, dumps=_dumps),
            ],
        )
        assert row is not None
        return row

    def get_order(self, order_id: UUID) -> Optional[Row]:
        return self._one("SELECT * FROM orders WHERE id=%s", [order_id])

    def lock_order(self, order_id: UUID) -> Optional[Row]:
        return self._one("SELECT * FROM orders WHERE id=%s FOR UPDATE", [order_id])

    def list_order_items(self, order_id: UUID) -> List[Row]:
        return self._all("SELECT * FROM order_items WHERE order_id=%s ORDER BY created_at ASC", [order_id])

    def set_order_status(self, order_id: UUID, status: str) -> None:
        self._run("UPDATE orders SET status=%s, updated_at=NOW() WHERE id=%s", [status, order_id])

    # ---- autoships ----

    def get_autoship(self, autoship_id: UUID) -> Optional[Row]:
        return self._one("SELECT * FROM autoships WHERE id=%s", [autoship_id])

    def lock_autoship(self, autoship_id: UUID) -> Optional[Row]:
        return self._one("SELECT * FROM autoships WHERE id=%s FOR UPDATE", [autoship_id])

    def list_active_autoships(self, user_id: UUID, product_id: UUID) -> List[Row]:
        return self._all(
            "SELECT * FROM autoships WHERE user_id=%s AND product_id=%s AND status='active'",
            [user_id, product_id],
        )

    def insert_autoship(
        self,
        user_id: UUID,
        product_id: UUID,
        quantity: int,
        frequency_weeks: int,
        next_run_at: datetime,
        pet_id: Optional[UUID],
    ) -> Row:
        row = self._one(
            """
            INSERT INTO autoships (user_id, pet_id, product_id, quantity, frequency_weeks, next_run_at, status)
            VALUES (%s, %s, %s, %s, %s, %s, 'active')
            RETURNING *
            """,
            [user_id, pet_id, product_id, quantity, frequency_weeks, next_run_at],
        )
        assert row is not None
        return row

    def update_autoship(self, autoship_id: UUID, **fields: Any) -> None:
        unknown = set(fields) - _AUTOSHIP_COLUMNS
        if unknown:
            raise ValueError(f"Unknown autoship columns: {sorted(unknown)}")
        assignments = ", ".join(f"{col}=%s" for col in fields)
        self._run(
            f"UPDATE autoships SET {assignments}, updated_at=NOW() WHERE id=%s",
            list(fields.values()) + [autoship_id],
        )

    def list_due_autoships(self, now: datetime) -> List[Row]:
        return self._all(
            "SELECT * FROM autoships WHERE status='active' AND next_run_at <= %s ORDER BY next_run_at ASC",
            [now],
        )

    def get_run_for_date(self, autoship_id: UUID, scheduled_date: date) -> Optional[Row]:
        return self._one(
            """
            SELECT * FROM autoship_runs
            WHERE autoship_id=%s AND (scheduled_at AT TIME ZONE 'UTC')::date = %s
            ORDER BY created_at DESC
            LIMIT 1
            """,
            [autoship_id, scheduled_date],
        )

    def insert_run(
        self,
        autoship_id: UUID,
        scheduled_at: datetime,
        status: str,
        order_id: Optional[UUID] = None,
        error_message: Optional[str] = None,
        executed_at: Optional[datetime] = None,
    ) -> Row:
        row = self._one(
            """
            INSERT INTO autoship_runs (autoship_id, scheduled_at, status, order_id, error_message, executed_at)
            VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            [autoship_id, scheduled_at, status, order_id, error_message, executed_at],
        )
        assert row is not None
        return row

    def update_run(self, run_id: UUID, **fields: Any) -> None:
        unknown = set(fields) - _RUN_COLUMNS
        if unknown:
            raise ValueError(f"Unknown autoship run columns: {sorted(unknown)}")
        assignments = ", ".join(f"{col}=%s" for col in fields)
        self._run(f"UPDATE autoship_runs SET {assignments} WHERE id=%s", list(fields.values()) + [run_id])


def _dumps(value: Any) -> str:
    return json.dumps(value, default=str)


# PUBLIC_INTERFACE
def get_store() -> Iterator[Store]:
    """FastAPI dependency: a Store bound to one transaction for the request."""
    with db.transaction() as cur:
        yield Store(cur)
