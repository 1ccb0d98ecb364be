"""
Autoship subscriptions: recurring orders of one product on a weekly cadence.

Scheduling is plain date arithmetic on `next_run_at`. `execute_autoship` is
idempotent per autoship and scheduled calendar date (UTC): re-running a
completed date returns the original order instead of placing a new one.
"""
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID

from src.pawie import db, orders
from src.pawie.errors import ServiceError
from src.pawie.store import Row, Store

logger = logging.getLogger(__name__)

# Frequencies offered when managing an existing subscription.
FREQUENCY_WEEKS = (1, 2, 4, 6, 8, 12)
# Frequencies offered when enrolling at checkout.
CHECKOUT_FREQUENCY_WEEKS = (1, 2, 3, 4, 5, 6, 7, 8, 10, 12, 16, 20, 24)

AUTOSHIP_STATUSES = ("active", "paused", "cancelled")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# PUBLIC_INTERFACE
def advance(when: datetime, frequency_weeks: int) -> datetime:
    """The run date one frequency after `when`."""
    return when + timedelta(weeks=frequency_weeks)


# PUBLIC_INTERFACE
def get_user_default_address(store: Store, user_id: UUID) -> Optional[UUID]:
    """The user's default address, else their most recently created one."""
    return store.find_default_address_id(user_id) or store.find_latest_address_id(user_id)


def _owned_autoship(store: Store, user_id: UUID, autoship_id: UUID) -> Row:
    autoship = store.lock_autoship(autoship_id)
    if not autoship or autoship["user_id"] != user_id:
        raise ServiceError("AUTOSHIP_NOT_FOUND", autoship_id=autoship_id)
    return autoship


def _check_pet(store: Store, user_id: UUID, pet_id: Optional[UUID]) -> None:
    if pet_id is None:
        return
    pet = store.get_pet(pet_id)
    if not pet or pet["user_id"] != user_id:
        raise ServiceError("PET_NOT_FOUND", pet_id=pet_id)


# PUBLIC_INTERFACE
def create_autoship(
    store: Store,
    user_id: UUID,
    product_id: UUID,
    quantity: int,
    frequency_weeks: int,
    pet_id: Optional[UUID] = None,
    start_date: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Subscribe to a product without placing an order now."""
    now = now or _utcnow()
    product = store.get_product(product_id)
    if not product:
        raise ServiceError("PRODUCT_NOT_FOUND", product_id=product_id)
    if not product.get("published"):
        raise ServiceError("PRODUCT_NOT_PUBLISHED", product_id=product_id)
    if not product.get("autoship_eligible"):
        raise ServiceError("PRODUCT_NOT_AUTOSHIP_ELIGIBLE", product_id=product_id)
    if quantity is None or quantity <= 0:
        raise ServiceError("INVALID_QUANTITY")
    if frequency_weeks not in FREQUENCY_WEEKS:
        raise ServiceError("INVALID_FREQUENCY", allowed_values=list(FREQUENCY_WEEKS))
    if store.list_active_autoships(user_id, product_id):
        raise ServiceError("DUPLICATE_AUTOSHIP", "You already have an active autoship for this product")
    _check_pet(store, user_id, pet_id)

    next_run_at = start_date or advance(now, frequency_weeks)
    autoship = store.insert_autoship(user_id, product_id, quantity, frequency_weeks, next_run_at, pet_id)
    logger.info("Autoship %s created for user %s, product %s", autoship["id"], user_id, product_id)
    return {
        "success": True,
        "autoship_id": autoship["id"],
        "next_run_at": next_run_at,
        "product_name": product["name"],
        "quantity": quantity,
        "frequency_weeks": frequency_weeks,
    }


# PUBLIC_INTERFACE
def create_autoship_with_order(
    store: Store,
    user_id: UUID,
    product_id: UUID,
    quantity: int,
    frequency_weeks: int,
    address_id: Optional[UUID],
    pet_id: Optional[UUID] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Enroll in autoship at checkout: the subscription plus its first order, placed now.

    The first future delivery is one frequency from now. Any failure while
    placing the order propagates, so the caller's transaction discards the
    new subscription as well.
    """
    now = now or _utcnow()
    product = store.get_product(product_id)
    if not product:
        raise ServiceError("PRODUCT_NOT_FOUND", "Product does not exist")
    if not product.get("published"):
        raise ServiceError("PRODUCT_NOT_AVAILABLE", "Product is not available")
    if not product.get("autoship_eligible"):
        raise ServiceError("NOT_AUTOSHIP_ELIGIBLE", "Product is not eligible for autoship")
    if frequency_weeks not in CHECKOUT_FREQUENCY_WEEKS:
        raise ServiceError(
            "INVALID_FREQUENCY",
            "Frequency must be between 1-8, 10 or 12 weeks, or 16, 20, 24 weeks",
            allowed_values=list(CHECKOUT_FREQUENCY_WEEKS),
        )
    if quantity is None or quantity < 1:
        raise ServiceError("INVALID_QUANTITY", "Quantity must be at least 1")
    for existing in store.list_active_autoships(user_id, product_id):
        if (
            existing["quantity"] == quantity
            and existing["frequency_weeks"] == frequency_weeks
            and existing.get("pet_id") == pet_id
        ):
            raise ServiceError(
                "DUPLICATE_AUTOSHIP",
                "You already have an active autoship for this product with the same quantity, "
                "frequency, and pet.",
            )
    _check_pet(store, user_id, pet_id)

    next_run_at = advance(now, frequency_weeks)
    autoship = store.insert_autoship(user_id, product_id, quantity, frequency_weeks, next_run_at, pet_id)
    order = orders.create_order_with_inventory(
        store,
        user_id,
        [{"product_id": product_id, "quantity": quantity}],
        address_id,
        "autoship",
        now=now,
    )
    run = store.insert_run(autoship["id"], now, "completed", order_id=order["order_id"], executed_at=now)
    logger.info("Autoship %s enrolled with first order %s", autoship["id"], order["order_id"])
    return {
        "success": True,
        "autoship_id": autoship["id"],
        "order_id": order["order_id"],
        "first_run_id": run["id"],
        "next_run_at": next_run_at,
        "product_name": product["name"],
        "quantity": quantity,
        "frequency_weeks": frequency_weeks,
        "message": "Autoship created with immediate first order",
    }


# PUBLIC_INTERFACE
def update_autoship(
    store: Store,
    user_id: UUID,
    autoship_id: UUID,
    quantity: Optional[int] = None,
    frequency_weeks: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Change quantity and/or frequency. A new frequency restarts the schedule from now."""
    now = now or _utcnow()
    autoship = _owned_autoship(store, user_id, autoship_id)
    if autoship["status"] == "cancelled":
        raise ServiceError("AUTOSHIP_CANCELLED", "Cannot update a cancelled autoship")

    if quantity is not None and quantity <= 0:
        raise ServiceError("INVALID_QUANTITY")
    if frequency_weeks is not None and frequency_weeks not in FREQUENCY_WEEKS:
        raise ServiceError("INVALID_FREQUENCY", allowed_values=list(FREQUENCY_WEEKS))

    fields: Dict[str, Any] = {}
    if quantity is not None:
        fields["quantity"] = quantity
    next_run_at = autoship["next_run_at"]
    if frequency_weeks is not None:
        next_run_at = advance(now, frequency_weeks)
        fields["frequency_weeks"] = frequency_weeks
        fields["next_run_at"] = next_run_at
    if fields:
        store.update_autoship(autoship_id, **fields)

    return {
        "success": True,
        "autoship_id": autoship_id,
        "updated_fields": [f for f in ("quantity", "frequency_weeks") if f in fields],
        "new_next_run_at": next_run_at,
    }


# PUBLIC_INTERFACE
def pause_autoship(store: Store, user_id: UUID, autoship_id: UUID) -> Dict[str, Any]:
    autoship = _owned_autoship(store, user_id, autoship_id)
    if autoship["status"] == "paused":
        raise ServiceError("ALREADY_PAUSED", "Autoship is already paused")
    if autoship["status"] == "cancelled":
        raise ServiceError("AUTOSHIP_CANCELLED", "Cannot pause a cancelled autoship")
    store.update_autoship(autoship_id, status="paused")
    return {"success": True, "autoship_id": autoship_id, "status": "paused"}


# PUBLIC_INTERFACE
def resume_autoship(
    store: Store,
    user_id: UUID,
    autoship_id: UUID,
    next_run_at: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Reactivate a paused autoship, next due at `next_run_at` or one frequency from now."""
    autoship = _owned_autoship(store, user_id, autoship_id)
    if autoship["status"] == "active":
        raise ServiceError("ALREADY_ACTIVE", "Autoship is already active")
    if autoship["status"] == "cancelled":
        raise ServiceError("AUTOSHIP_CANCELLED", "Cannot resume a cancelled autoship")
    next_run_at = next_run_at or advance(now or _utcnow(), autoship["frequency_weeks"])
    store.update_autoship(autoship_id, status="active", next_run_at=next_run_at)
    return {"success": True, "autoship_id": autoship_id, "status": "active", "next_run_at": next_run_at}


# PUBLIC_INTERFACE
def cancel_autoship(store: Store, user_id: UUID, autoship_id: UUID) -> Dict[str, Any]:
    autoship = _owned_autoship(store, user_id, autoship_id)
    if autoship["status"] == "cancelled":
        raise ServiceError("ALREADY_CANCELLED", "Autoship is already cancelled")
    store.update_autoship(autoship_id, status="cancelled")
    return {"success": True, "autoship_id": autoship_id, "status": "cancelled"}


# PUBLIC_INTERFACE
def skip_next_autoship(store: Store, user_id: UUID, autoship_id: UUID) -> Dict[str, Any]:
    """Record the upcoming delivery as skipped and move the schedule one frequency on."""
    autoship = _owned_autoship(store, user_id, autoship_id)
    if autoship["status"] != "active":
        raise ServiceError("AUTOSHIP_NOT_ACTIVE", "Can only skip active autoships")

    skipped_at = autoship["next_run_at"]
    existing = store.get_run_for_date(autoship_id, skipped_at.astimezone(timezone.utc).date())
    if existing and existing["status"] == "completed":
        raise ServiceError(
            "ALREADY_EXECUTED", "This delivery has already been placed", order_id=existing["order_id"]
        )
    if existing:
        store.update_run(existing["id"], status="skipped", error_message=None)
        run = existing
    else:
        run = store.insert_run(autoship_id, skipped_at, "skipped")
    new_next_run_at = advance(skipped_at, autoship["frequency_weeks"])
    store.update_autoship(autoship_id, next_run_at=new_next_run_at)
    return {
        "success": True,
        "autoship_id": autoship_id,
        "run_id": run["id"],
        "skipped_date": skipped_at,
        "new_next_run_at": new_next_run_at,
    }


def _fail_run(store: Store, run: Optional[Row], autoship_id: UUID, scheduled_at: datetime, error: str, now: datetime) -> UUID:
    if run:
        store.update_run(run["id"], status="failed", error_message=error, executed_at=now)
        return run["id"]
    return store.insert_run(autoship_id, scheduled_at, "failed", error_message=error, executed_at=now)["id"]


# PUBLIC_INTERFACE
def execute_autoship(
    store: Store,
    autoship_id: UUID,
    scheduled_at: datetime,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Place the order for one scheduled delivery.

    Returns a result dict rather than raising so failures are recorded on the
    run and reported to the batch runner. The schedule only advances when
    the order is placed.
    """
    now = now or _utcnow()
    scheduled_date = scheduled_at.astimezone(timezone.utc).date()
    # Lock before reading runs so concurrent executions for one date serialize.
    autoship = store.lock_autoship(autoship_id)
    if not autoship:
        return {"success": False, "autoship_id": autoship_id, "error": "AUTOSHIP_NOT_FOUND"}
    existing = store.get_run_for_date(autoship_id, scheduled_date)

    if existing and existing["status"] == "completed":
        return {
            "success": True,
            "autoship_id": autoship_id,
            "order_id": existing["order_id"],
            "run_id": existing["id"],
            "already_executed": True,
        }
    if existing and existing["status"] == "skipped":
        return {
            "success": False,
            "autoship_id": autoship_id,
            "run_id": existing["id"],
            "error": "SKIPPED",
            "message": "This delivery was skipped by user",
        }
    if autoship["status"] != "active":
        return {
            "success": False,
            "autoship_id": autoship_id,
            "error": "AUTOSHIP_NOT_ACTIVE",
            "status": autoship["status"],
        }

    address_id = get_user_default_address(store, autoship["user_id"])
    if address_id is None:
        run_id = _fail_run(store, existing, autoship_id, scheduled_at, "No delivery address found for user", now)
        logger.warning("Autoship %s has no delivery address", autoship_id)
        return {"success": False, "autoship_id": autoship_id, "error": "NO_ADDRESS", "run_id": run_id}

    if existing:
        store.update_run(existing["id"], status="pending", error_message=None)
        run_id = existing["id"]
    else:
        run_id = store.insert_run(autoship_id, scheduled_at, "pending")["id"]

    try:
        with store.savepoint():
            order = orders.create_order_with_inventory(
                store,
                autoship["user_id"],
                [{"product_id": autoship["product_id"], "quantity": autoship["quantity"]}],
                address_id,
                "autoship",
                now=now,
            )
    except ServiceError as exc:
        store.update_run(run_id, status="failed", error_message=exc.code, executed_at=now)
        logger.warning("Autoship %s run for %s failed: %s", autoship_id, scheduled_date, exc.code)
        return {
            "success": False,
            "autoship_id": autoship_id,
            "run_id": run_id,
            "error": exc.code,
            "message": exc.message or exc.code,
        }

    next_run_at = advance(scheduled_at, autoship["frequency_weeks"])
    store.update_run(run_id, status="completed", order_id=order["order_id"], executed_at=now)
    store.update_autoship(autoship_id, next_run_at=next_run_at)
    logger.info("Autoship %s executed for %s: order %s", autoship_id, scheduled_date, order["order_id"])
    return {
        "success": True,
        "autoship_id": autoship_id,
        "order_id": order["order_id"],
        "run_id": run_id,
        "already_executed": False,
        "next_run_at": next_run_at,
    }


# PUBLIC_INTERFACE
def run_due_autoships(store: Store, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Execute every active autoship whose `next_run_at` has passed, oldest first."""
    now = now or _utcnow()
    results: List[Dict[str, Any]] = []
    executed = failed = 0
    for autoship in store.list_due_autoships(now):
        result = execute_autoship(store, autoship["id"], autoship["next_run_at"], now=now)
        if result["success"]:
            executed += 1
        else:
            failed += 1
        results.append({"autoship_id": autoship["id"], "scheduled_at": autoship["next_run_at"], "result": result})

    logger.info("Autoship run: %s due, %s executed, %s failed", len(results), executed, failed)
    return {"success": True, "total_due": len(results), "executed": executed, "failed": failed, "results": results}


# PUBLIC_INTERFACE
def list_autoships(
    status: Optional[str] = None,
    user_id: Optional[UUID] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[Dict[str, Any]]:
    """Autoships with product, customer and pet names, soonest run first."""
    where = []
    params: List[Any] = []
    if status and status != "all":
        where.append("a.status=%s")
        params.append(status)
    if user_id:
        where.append("a.user_id=%s")
        params.append(user_id)
    where_sql = ("WHERE " + " AND ".join(where)) if where else ""
    return db.fetch_all(
        f"""
        SELECT a.*, p.name AS product_name, p.primary_image_path, p.base_price_idr,
               pr.email AS customer_email, pr.full_name AS customer_name, pet.name AS pet_name
        FROM autoships a
        JOIN products p ON p.id = a.product_id
        LEFT JOIN profiles pr ON pr.id = a.user_id
        LEFT JOIN pets pet ON pet.id = a.pet_id
        {where_sql}
        ORDER BY a.next_run_at ASC
        LIMIT %s OFFSET %s
        """,
        params + [limit, offset],
    )


# PUBLIC_INTERFACE
def get_autoship_with_runs(autoship_id: UUID) -> Optional[Dict[str, Any]]:
    autoship = db.fetch_one(
        """
        SELECT a.*, p.name AS product_name, p.primary_image_path, pet.name AS pet_name
        FROM autoships a
        JOIN products p ON p.id = a.product_id
        LEFT JOIN pets pet ON pet.id = a.pet_id
        WHERE a.id=%s
        """,
        [autoship_id],
    )
    if not autoship:
        return None
    autoship["runs"] = db.fetch_all(
        """
        SELECT r.*, o.status AS order_status, o.total_idr AS order_total_idr
        FROM autoship_runs r
        LEFT JOIN orders o ON o.id = r.order_id
        WHERE r.autoship_id=%s
        ORDER BY r.scheduled_at DESC
        """,
        [autoship_id],
    )
    return autoship


# PUBLIC_INTERFACE
def get_autoship_stats(today: date) -> Dict[str, int]:
    row = db.fetch_one(
        """
        SELECT COUNT(*) FILTER (WHERE status='active') AS active,
               COUNT(*) FILTER (WHERE status='paused') AS paused,
               COUNT(*) FILTER (WHERE status='active' AND next_run_at::date = %s::date) AS due_today,
               (SELECT COUNT(*) FROM autoship_runs WHERE status='failed') AS failed_runs
        FROM autoships
        """,
        [today],
    )
    return {k: int(v) for k, v in (row or {}).items()}
