"""
Product pricing with discount stacking.

All prices are integer IDR. A quote is computed per product for a purchase
context (one-time or autoship, optional cart subtotal) and is the only source
of prices used when orders are placed.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence
from uuid import UUID

from src.pawie.errors import ServiceError
from src.pawie.store import Row, Store

# Fixed-amount discounts rank above every percentage when candidates are ordered.
_FIXED_RANK = 999999


def _discount_rank(discount: Row) -> int:
    if discount["discount_type"] == "percentage":
        return int(discount["value"])
    if discount["discount_type"] == "fixed":
        return _FIXED_RANK
    return 0


# PUBLIC_INTERFACE
def find_applicable_discounts(
    discounts: Iterable[Row],
    targets: Iterable[Row],
    product_id: UUID,
    is_autoship: bool,
    cart_total_idr: Optional[int],
    now: datetime,
) -> List[Row]:
    """Return the discounts that apply to `product_id` in this context, best rank first."""
    targeted = set()
    for t in targets:
        if t.get("applies_to_all_products") or t.get("product_id") == product_id:
            targeted.add(t["discount_id"])

    applicable: List[Row] = []
    seen = set()
    for d in discounts:
        if d["id"] in seen or d["id"] not in targeted:
            continue
        if not d.get("active"):
            continue
        if d.get("starts_at") is not None and d["starts_at"] > now:
            continue
        if d.get("ends_at") is not None and d["ends_at"] < now:
            continue
        if d["kind"] == "autoship":
            if not is_autoship:
                continue
        elif d["kind"] != "promo":
            continue
        minimum = d.get("min_order_subtotal_idr")
        if minimum is not None and cart_total_idr is not None and cart_total_idr < minimum:
            continue
        limit = d.get("usage_limit")
        if limit is not None and int(d.get("usage_count") or 0) >= limit:
            continue
        seen.add(d["id"])
        applicable.append(d)

    applicable.sort(key=_discount_rank, reverse=True)
    return applicable


def _discount_amount(price: int, discount: Row) -> int:
    if discount["discount_type"] == "percentage":
        return price * int(discount["value"]) // 100
    if discount["discount_type"] == "fixed":
        return int(discount["value"])
    return 0


def _applied(discount: Row, amount: int) -> Dict[str, Any]:
    return {
        "discount_id": str(discount["id"]),
        "name": discount["name"],
        "type": discount["discount_type"],
        "value": int(discount["value"]),
        "amount": amount,
    }


# PUBLIC_INTERFACE
def apply_discount_stacking(base_price_idr: int, discounts: Sequence[Row]) -> Dict[str, Any]:
    """
    Apply the stacking policy to already-filtered discounts.

    If any discount is `best_only`, only the single largest discount (measured
    against the base price) is applied. Otherwise every percentage discount is
    applied in turn to the running price, then every fixed discount. Amounts
    are capped at the price left, so the price never goes below zero and
    `discount_total_idr == base_price_idr - final_price_idr`.
    """
    if not discounts:
        return {"final_price_idr": base_price_idr, "discount_total_idr": 0, "discounts_applied": []}

    price = base_price_idr
    applied: List[Dict[str, Any]] = []

    if any(d.get("stack_policy") == "best_only" for d in discounts):
        best: Optional[Row] = None
        best_amount = 0
        for d in discounts:
            amount = _discount_amount(base_price_idr, d)
            if amount > best_amount:
                best, best_amount = d, amount
        if best is not None:
            amount = min(best_amount, price)
            price -= amount
            applied.append(_applied(best, amount))
    else:
        ordered = [d for d in discounts if d["discount_type"] == "percentage"]
        ordered += [d for d in discounts if d["discount_type"] == "fixed"]
        for d in ordered:
            amount = min(_discount_amount(price, d), price)
            price -= amount
            applied.append(_applied(d, amount))

    return {
        "final_price_idr": price,
        "discount_total_idr": base_price_idr - price,
        "discounts_applied": applied,
    }


# PUBLIC_INTERFACE
def compute_product_price(
    store: Store,
    product_id: UUID,
    user_id: Optional[UUID] = None,
    is_autoship: bool = False,
    quantity: int = 1,
    cart_total_idr: Optional[int] = None,
    coupon_code: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Price one product line.

    `user_id` and `coupon_code` are accepted for API compatibility; no
    per-user or coupon discounts exist yet, so they do not change the quote.
    """
    product = store.get_product(product_id)
    if not product or product.get("base_price_idr") is None:
        raise ServiceError("PRODUCT_NOT_FOUND", f"Product not found: {product_id}", product_id=product_id)
    if not product.get("published"):
        raise ServiceError("PRODUCT_NOT_PUBLISHED", f"Product is not published: {product_id}", product_id=product_id)

    base_price = int(product["base_price_idr"])
    discounts, targets = store.list_discounts_with_targets(product_id)
    applicable = find_applicable_discounts(
        discounts,
        targets,
        product_id,
        is_autoship,
        cart_total_idr,
        now or datetime.now(timezone.utc),
    )
    stacked = apply_discount_stacking(base_price, applicable)

    return {
        "base_price_idr": base_price,
        "final_price_idr": stacked["final_price_idr"],
        "discount_total_idr": stacked["discount_total_idr"],
        "discounts_applied": stacked["discounts_applied"],
        "line_total_idr": stacked["final_price_idr"] * quantity,
    }


# PUBLIC_INTERFACE
def compute_cart_prices(
    store: Store,
    items: Sequence[Dict[str, Any]],
    is_autoship: bool,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Quote every cart line and total the cart."""
    quotes = []
    subtotal = discount_total = total = 0
    for item in items:
        quote = compute_product_price(
            store,
            item["product_id"],
            is_autoship=is_autoship,
            quantity=item["quantity"],
            now=now,
        )
        quotes.append({"product_id": item["product_id"], "quantity": item["quantity"], "pricing": quote})
        subtotal += quote["base_price_idr"] * item["quantity"]
        discount_total += quote["discount_total_idr"] * item["quantity"]
        total += quote["line_total_idr"]
    return {
        "items": quotes,
        "subtotal_idr": subtotal,
        "discount_total_idr": discount_total,
        "total_idr": total,
    }


# PUBLIC_INTERFACE
def has_active_global_autoship_discount(store: Store) -> bool:
    """True when an active autoship discount targets every product."""
    discounts, targets = store.list_discounts_with_targets(None)
    global_ids = {t["discount_id"] for t in targets if t.get("applies_to_all_products")}
    return any(d["kind"] == "autoship" and d.get("active") and d["id"] in global_ids for d in discounts)
