"""
Variant-combination resolver for product families.

A family groups sibling products (e.g. one food in several sizes and
flavors). Each product carries one variant value per dimension; a shopper's
selection `{dimension_id: value_id}` resolves to the product whose value set
matches exactly.
"""
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence
from uuid import UUID

from src.pawie import db
from src.pawie.errors import ServiceError
from src.pawie.store import Row, Store


def _value_ids(product: Row) -> List[UUID]:
    return list(product.get("variant_value_ids") or [])


def _matches_exactly(product: Row, value_ids: Sequence[UUID]) -> bool:
    product_values = _value_ids(product)
    return len(value_ids) == len(product_values) and all(v in product_values for v in value_ids)


# PUBLIC_INTERFACE
def find_product_by_variant_combination(products: Iterable[Row], value_ids: Sequence[UUID]) -> Optional[Row]:
    """First product whose variant values are exactly `value_ids`."""
    if not value_ids:
        return None
    for product in products:
        if _matches_exactly(product, value_ids):
            return product
    return None


# PUBLIC_INTERFACE
def has_products_for_value(products: Iterable[Row], value_id: UUID) -> bool:
    return any(value_id in _value_ids(p) for p in products)


# PUBLIC_INTERFACE
def check_values_availability(
    products: Sequence[Row],
    dimension_id: UUID,
    value_ids: Sequence[UUID],
    current_selections: Mapping[UUID, UUID],
) -> Dict[UUID, bool]:
    """For each candidate value of a dimension: does the selection with that value resolve to a product?"""
    results: Dict[UUID, bool] = {}
    for value_id in value_ids:
        combination = dict(current_selections)
        combination[dimension_id] = value_id
        wanted = list(combination.values())
        results[value_id] = any(_matches_exactly(p, wanted) for p in products)
    return results


# PUBLIC_INTERFACE
def find_first_available_combination(
    products: Sequence[Row],
    changed_dimension_id: UUID,
    new_value_id: UUID,
    current_selections: Mapping[UUID, UUID],
) -> Optional[List[UUID]]:
    """
    Closest existing combination after the shopper changes one dimension.

    Among products carrying `new_value_id`, pick the one sharing the most
    values with the current selections (first one wins ties) and return its
    value ids. None when no product has the new value.
    """
    candidates = [p for p in products if new_value_id in _value_ids(p)]
    if not candidates:
        return None
    selected = list(current_selections.values())
    best = max(candidates, key=lambda p: sum(1 for v in selected if v in _value_ids(p)))
    return _value_ids(best)


# PUBLIC_INTERFACE
def load_family_products(store: Store, family_id: UUID) -> List[Row]:
    return store.list_family_products(family_id)


# PUBLIC_INTERFACE
def get_family_detail(family_id: UUID) -> Optional[Dict[str, Any]]:
    """Family with its dimensions, each with values, all in `sort_order`."""
    family = db.fetch_one("SELECT * FROM product_families WHERE id=%s", [family_id])
    if not family:
        return None
    dimensions = db.fetch_all(
        "SELECT * FROM variant_dimensions WHERE family_id=%s ORDER BY sort_order ASC, name ASC",
        [family_id],
    )
    values = db.fetch_all(
        """
        SELECT v.* FROM variant_values v
        JOIN variant_dimensions d ON d.id = v.dimension_id
        WHERE d.family_id=%s
        ORDER BY v.sort_order ASC, v.value ASC
        """,
        [family_id],
    )
    for dim in dimensions:
        dim["values"] = [v for v in values if v["dimension_id"] == dim["id"]]
    family["dimensions"] = dimensions
    return family


# PUBLIC_INTERFACE
def delete_family(family_id: UUID) -> None:
    """Delete a family and its dimensions. Refused while products still belong to it."""
    used = db.fetch_one("SELECT COUNT(*) AS n FROM products WHERE family_id=%s", [family_id])
    if used and int(used["n"]) > 0:
        raise ServiceError(
            "FAMILY_IN_USE",
            f"Cannot delete family: {used['n']} product(s) are using it",
            product_count=int(used["n"]),
        )
    if db.execute("DELETE FROM product_families WHERE id=%s", [family_id]) == 0:
        raise ServiceError("FAMILY_NOT_FOUND", family_id=family_id)


# PUBLIC_INTERFACE
def delete_dimension(dimension_id: UUID) -> None:
    """Delete a dimension and its values. Refused while any of its values is assigned to a product."""
    used = db.fetch_one(
        """
        SELECT COUNT(*) AS n FROM product_variant_values pvv
        JOIN variant_values v ON v.id = pvv.variant_value_id
        WHERE v.dimension_id=%s
        """,
        [dimension_id],
    )
    if used and int(used["n"]) > 0:
        raise ServiceError(
            "DIMENSION_IN_USE",
            "Cannot delete dimension: its values are assigned to products",
            assignment_count=int(used["n"]),
        )
    if db.execute("DELETE FROM variant_dimensions WHERE id=%s", [dimension_id]) == 0:
        raise ServiceError("DIMENSION_NOT_FOUND", dimension_id=dimension_id)


# PUBLIC_INTERFACE
def assign_product_values(cur, product_id: UUID, value_ids: Sequence[UUID]) -> None:
    """Replace a product's variant values using the caller's transaction cursor."""
    cur.execute("DELETE FROM product_variant_values WHERE product_id=%s", [product_id])
    for value_id in value_ids:
        cur.execute(
            "INSERT INTO product_variant_values (product_id, variant_value_id) VALUES (%s, %s)",
            [product_id, value_id],
        )
