# tests/conftest.py
# Ensure the backend root (parent of tests) is on sys.path so `import src.pawie...` works.
import copy
import sys
from contextlib import contextmanager
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple
from uuid import UUID, uuid4

import pytest

ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)

NOW = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)

Row = Dict[str, Any]


class MemoryStore:
    """In-memory stand-in for `src.pawie.store.Store` with the same method surface."""

    def __init__(self) -> None:
        self.tables: Dict[str, Dict[UUID, Row]] = {
            name: {}
            for name in (
                "profiles",
                "addresses",
                "pets",
                "products",
                "discounts",
                "discount_targets",
                "template_sections",
                "product_sections",
                "inventory",
                "movements",
                "orders",
                "order_items",
                "autoships",
                "autoship_runs",
            )
        }
        self.product_values: Dict[UUID, List[UUID]] = {}
        self.product_tags: Dict[UUID, List[UUID]] = {}
        self._clock = NOW - timedelta(days=30)

    # ---- helpers ----

    def _tick(self) -> datetime:
        self._clock += timedelta(seconds=1)
        return self._clock

    def _insert(self, table: str, **fields: Any) -> Row:
        row = {"id": uuid4(), "created_at": self._tick()}
        row.update(fields)
        row.setdefault("updated_at", row["created_at"])
        self.tables[table][row["id"]] = row
        return dict(row)

    def _rows(self, table: str) -> List[Row]:
        return sorted(self.tables[table].values(), key=lambda r: r["created_at"])

    def _get(self, table: str, row_id: Any) -> Optional[Row]:
        row = self.tables[table].get(row_id)
        return dict(row) if row else None

    @contextmanager
    def savepoint(self) -> Iterator[None]:
        snapshot = copy.deepcopy((self.tables, self.product_values, self.product_tags))
        try:
            yield
        except Exception:
            self.tables, self.product_values, self.product_tags = snapshot
            raise

    # ---- seeding ----

    def add_user(self, role: str = "user", email: Optional[str] = None) -> Row:
        return self._insert("profiles", email=email or f"{uuid4().hex[:8]}@example.com", full_name="Test User", role=role)

    def add_address(self, user_id: UUID, is_default: bool = False, city: str = "Jakarta") -> Row:
        return self._insert("addresses", user_id=user_id, label="Home", address_line="Jl. Sudirman 1", city=city, is_default=is_default)

    def add_pet(self, user_id: UUID, name: str = "Milo") -> Row:
        return self._insert("pets", user_id=user_id, name=name, species="cat")

    def add_product(
        self,
        name: str = "Salmon Kibble",
        price: Optional[int] = 100000,
        stock: Optional[int] = 10,
        published: bool = True,
        autoship_eligible: bool = True,
        family_id: Optional[UUID] = None,
        value_ids: Sequence[UUID] = (),
        tag_ids: Sequence[UUID] = (),
        description: Optional[str] = None,
        category: Optional[str] = None,
        detail_template_id: Optional[UUID] = None,
        threshold: int = 5,
    ) -> Row:
        product = self._insert(
            "products",
            name=name,
            description=description,
            category=category,
            sku=None,
            base_price_idr=price,
            published=published,
            autoship_eligible=autoship_eligible,
            primary_image_path=None,
            family_id=family_id,
            detail_template_id=detail_template_id,
        )
        if stock is not None:
            self._insert("inventory", product_id=product["id"], stock_quantity=stock, low_stock_threshold=threshold)
        self.product_values[product["id"]] = list(value_ids)
        self.product_tags[product["id"]] = list(tag_ids)
        return product

    def add_discount(
        self,
        discount_type: str = "percentage",
        value: int = 10,
        kind: str = "promo",
        stack_policy: str = "best_only",
        product_ids: Sequence[UUID] = (),
        all_products: bool = False,
        **fields: Any,
    ) -> Row:
        row = dict(
            name=fields.pop("name", f"{value} {discount_type}"),
            kind=kind,
            discount_type=discount_type,
            value=value,
            active=True,
            starts_at=None,
            ends_at=None,
            min_order_subtotal_idr=None,
            stack_policy=stack_policy,
            usage_limit=None,
            usage_count=0,
        )
        row.update(fields)
        discount = self._insert("discounts", **row)
        if all_products:
            self._insert("discount_targets", discount_id=discount["id"], product_id=None, applies_to_all_products=True)
        for product_id in product_ids:
            self._insert("discount_targets", discount_id=discount["id"], product_id=product_id, applies_to_all_products=False)
        return discount

    def add_template_section(self, template_id: UUID, title: str, sort_order: int, content: str = "") -> Row:
        return self._insert("template_sections", template_id=template_id, title=title, content=content, sort_order=sort_order)

    def add_product_section(
        self, product_id: UUID, title: str, sort_order: int, template_section_id: Optional[UUID] = None, content: str = ""
    ) -> Row:
        return self._insert(
            "product_sections",
            product_id=product_id,
            template_section_id=template_section_id,
            title=title,
            content=content,
            sort_order=sort_order,
        )

    def add_autoship(self, user_id: UUID, product_id: UUID, next_run_at: datetime, quantity: int = 1,
                     frequency_weeks: int = 4, status: str = "active", pet_id: Optional[UUID] = None) -> Row:
        return self._insert(
            "autoships",
            user_id=user_id,
            pet_id=pet_id,
            product_id=product_id,
            quantity=quantity,
            frequency_weeks=frequency_weeks,
            next_run_at=next_run_at,
            status=status,
        )

    def stock(self, product_id: UUID) -> Optional[int]:
        inv = self.get_inventory(product_id)
        return inv["stock_quantity"] if inv else None

    def get_discount_usage(self, discount_id: UUID) -> int:
        return self.tables["discounts"][discount_id]["usage_count"]

    def runs(self, autoship_id: UUID) -> List[Row]:
        return [r for r in self._rows("autoship_runs") if r["autoship_id"] == autoship_id]

    def movements(self, product_id: UUID) -> List[Row]:
        return [m for m in self._rows("movements") if m["product_id"] == product_id]

    # ---- users / addresses / pets ----

    def user_exists(self, user_id: UUID) -> bool:
        return user_id in self.tables["profiles"]

    def get_address(self, address_id: UUID) -> Optional[Row]:
        return self._get("addresses", address_id)

    def find_default_address_id(self, user_id: UUID) -> Optional[UUID]:
        for a in self._rows("addresses"):
            if a["user_id"] == user_id and a["is_default"]:
                return a["id"]
        return None

    def find_latest_address_id(self, user_id: UUID) -> Optional[UUID]:
        mine = [a for a in self._rows("addresses") if a["user_id"] == user_id]
        return mine[-1]["id"] if mine else None

    def get_pet(self, pet_id: UUID) -> Optional[Row]:
        return self._get("pets", pet_id)

    # ---- products / discounts ----

    def get_product(self, product_id: UUID) -> Optional[Row]:
        return self._get("products", product_id)

    def list_published_products(self) -> List[Row]:
        return [dict(p) for p in self._rows("products") if p["published"]]

    def list_family_products(self, family_id: UUID) -> List[Row]:
        return [
            dict(p, variant_value_ids=list(self.product_values.get(p["id"], [])))
            for p in self._rows("products")
            if p["family_id"] == family_id and p["published"]
        ]

    def filter_products_by_tags(self, tag_ids: List[UUID], limit: int, offset: int) -> List[Row]:
        products = [
            dict(p)
            for p in self._rows("products")
            if p["published"] and all(t in self.product_tags.get(p["id"], []) for t in tag_ids)
        ]
        products.sort(key=lambda p: p["updated_at"], reverse=True)
        return products[offset : offset + limit]

    def list_discounts_with_targets(self, product_id: Optional[UUID]) -> Tuple[List[Row], List[Row]]:
        targets = [
            dict(t)
            for t in self._rows("discount_targets")
            if t["applies_to_all_products"] or (product_id is not None and t["product_id"] == product_id)
        ]
        ids = {t["discount_id"] for t in targets}
        return [dict(d) for d in self._rows("discounts") if d["id"] in ids], targets

    def increment_discount_usage(self, discount_ids: Sequence[UUID]) -> None:
        for discount_id in discount_ids:
            self.tables["discounts"][discount_id]["usage_count"] += 1

    # ---- detail sections ----

    def list_template_sections(self, template_id: UUID) -> List[Row]:
        rows = [dict(s) for s in self._rows("template_sections") if s["template_id"] == template_id]
        return sorted(rows, key=lambda s: s["sort_order"])

    def list_product_sections(self, product_id: UUID) -> List[Row]:
        rows = [dict(s) for s in self._rows("product_sections") if s["product_id"] == product_id]
        return sorted(rows, key=lambda s: s["sort_order"])

    # ---- inventory ----

    def _inventory_row(self, product_id: UUID) -> Optional[Row]:
        for inv in self.tables["inventory"].values():
            if inv["product_id"] == product_id:
                return inv
        return None

    def get_inventory(self, product_id: UUID) -> Optional[Row]:
        inv = self._inventory_row(product_id)
        return dict(inv) if inv else None

    def lock_inventory(self, product_id: UUID) -> Optional[Row]:
        return self.get_inventory(product_id)

    def create_inventory(self, product_id: UUID) -> Row:
        if self._inventory_row(product_id) is None:
            self._insert("inventory", product_id=product_id, stock_quantity=0, low_stock_threshold=10)
        return self.get_inventory(product_id)

    def set_stock(self, product_id: UUID, stock_quantity: int) -> None:
        self._inventory_row(product_id)["stock_quantity"] = stock_quantity

    def add_stock(self, product_id: UUID, quantity: int) -> int:
        inv = self._inventory_row(product_id)
        if inv is None:
            self._insert("inventory", product_id=product_id, stock_quantity=quantity, low_stock_threshold=10)
            return quantity
        inv["stock_quantity"] += quantity
        return inv["stock_quantity"]

    def insert_movement(self, product_id: UUID, change_quantity: int, reason: str, reference_id: Optional[UUID]) -> UUID:
        return self._insert(
            "movements", product_id=product_id, change_quantity=change_quantity, reason=reason, reference_id=reference_id
        )["id"]

    # ---- orders ----

    def insert_order(self, user_id, source, subtotal_idr, discount_total_idr, total_idr, shipping_address_id) -> Row:
        return self._insert(
            "orders",
            user_id=user_id,
            status="pending",
            source=source,
            subtotal_idr=subtotal_idr,
            discount_total_idr=discount_total_idr,
            total_idr=total_idr,
            shipping_address_id=shipping_address_id,
        )

    def insert_order_item(self, order_id, product_id, quantity, unit_base_price_idr, unit_final_price_idr,
                          discount_total_idr, discount_breakdown) -> Row:
        return self._insert(
            "order_items",
            order_id=order_id,
            product_id=product_id,
            quantity=quantity,
            unit_base_price_idr=unit_base_price_idr,
            unit_final_price_idr=unit_final_price_idr,
            discount_total_idr=discount_total_idr,
            discount_breakdown=copy.deepcopy(discount_breakdown),
        )

    def get_order(self, order_id: UUID) -> Optional[Row]:
        return self._get("orders", order_id)

    def lock_order(self, order_id: UUID) -> Optional[Row]:
        return self._get("orders", order_id)

    def list_order_items(self, order_id: UUID) -> List[Row]:
        return [dict(i) for i in self._rows("order_items") if i["order_id"] == order_id]

    def set_order_status(self, order_id: UUID, status: str) -> None:
        self.tables["orders"][order_id]["status"] = status

    # ---- autoships ----

    def get_autoship(self, autoship_id: UUID) -> Optional[Row]:
        return self._get("autoships", autoship_id)

    def lock_autoship(self, autoship_id: UUID) -> Optional[Row]:
        return self._get("autoships", autoship_id)

    def list_active_autoships(self, user_id: UUID, product_id: UUID) -> List[Row]:
        return [
            dict(a)
            for a in self._rows("autoships")
            if a["user_id"] == user_id and a["product_id"] == product_id and a["status"] == "active"
        ]

    def insert_autoship(self, user_id, product_id, quantity, frequency_weeks, next_run_at, pet_id) -> Row:
        return self.add_autoship(user_id, product_id, next_run_at, quantity, frequency_weeks, "active", pet_id)

    def update_autoship(self, autoship_id: UUID, **fields: Any) -> None:
        self.tables["autoships"][autoship_id].update(fields)

    def list_due_autoships(self, now: datetime) -> List[Row]:
        due = [dict(a) for a in self._rows("autoships") if a["status"] == "active" and a["next_run_at"] <= now]
        return sorted(due, key=lambda a: a["next_run_at"])

    def get_run_for_date(self, autoship_id: UUID, scheduled_date: date) -> Optional[Row]:
        matches = [
            r for r in self.runs(autoship_id)
            if r["scheduled_at"].astimezone(timezone.utc).date() == scheduled_date
        ]
        return dict(matches[-1]) if matches else None

    def insert_run(self, autoship_id, scheduled_at, status, order_id=None, error_message=None, executed_at=None) -> Row:
        if self.get_run_for_date(autoship_id, scheduled_at.astimezone(timezone.utc).date()):
            raise ValueError("autoship_runs_autoship_date_idx: one run per autoship and date")
        return self._insert(
            "autoship_runs",
            autoship_id=autoship_id,
            scheduled_at=scheduled_at,
            status=status,
            order_id=order_id,
            error_message=error_message,
            executed_at=executed_at,
        )

    def update_run(self, run_id: UUID, **fields: Any) -> None:
        self.tables["autoship_runs"][run_id].update(fields)


@pytest.fixture
def store() -> MemoryStore:
    """Provide a fresh in-memory store for each test."""
    return MemoryStore()


@pytest.fixture
def customer(store):
    """A customer with a default address."""
    user = store.add_user()
    store.add_address(user["id"], is_default=True)
    return user
