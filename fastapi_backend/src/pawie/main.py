import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID

from fastapi import Depends, FastAPI, File, HTTPException, Query, Request, UploadFile, status
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from psycopg2 import errors as pg_errors
from pydantic import BaseModel

from src.pawie import autoships, catalog, config, dashboard, db, discounts, inventory, orders, pricing, variants
from src.pawie.auth_utils import create_user_access_token, get_current_user, hash_password, require_admin, verify_password
from src.pawie.errors import ServiceError
from src.pawie.schemas import (
    Address,
    AddressCreate,
    AddressUpdate,
    AdminOrderUpdate,
    APIMessage,
    Autoship,
    AutoshipCheckoutRequest,
    AutoshipCreate,
    AutoshipResume,
    AutoshipUpdate,
    CartQuote,
    CartQuoteRequest,
    DetailSection,
    DetailTemplate,
    DetailTemplateCreate,
    DetailTemplateUpdate,
    Discount,
    DiscountActiveUpdate,
    DiscountCreate,
    DiscountTargetsUpdate,
    DiscountUpdate,
    Family,
    FamilyCreate,
    FamilyDetail,
    FamilyUpdate,
    FirstAvailableRequest,
    InventoryAdjustRequest,
    LoginRequest,
    Order,
    OrderCreateRequest,
    Pet,
    PetCreate,
    PetUpdate,
    PriceQuote,
    PriceQuoteRequest,
    Product,
    ProductCreate,
    ProductImage,
    ProductUpdate,
    PublishUpdate,
    SearchResult,
    SectionCreate,
    SectionUpdate,
    SignupRequest,
    SortOrderUpdate,
    Tag,
    TagAssignment,
    TagCreate,
    TagUpdate,
    ThresholdUpdate,
    TokenResponse,
    ValuesAvailabilityRequest,
    VariantDimension,
    VariantDimensionCreate,
    VariantDimensionUpdate,
    VariantResolveRequest,
    VariantValue,
    VariantValueAssignment,
    VariantValueCreate,
    VariantValueUpdate,
)
from src.pawie.store import Store, get_store

logger = logging.getLogger(__name__)

openapi_tags = [
    {"name": "Health", "description": "Service health checks."},
    {"name": "Auth", "description": "Signup/login and current user."},
    {"name": "Catalog", "description": "Published products, search, tag filters, variants and detail sections."},
    {"name": "Pricing", "description": "Price quotes with discount stacking."},
    {"name": "Addresses", "description": "User address book."},
    {"name": "Pets", "description": "User pet profiles."},
    {"name": "Orders", "description": "Checkout and order history."},
    {"name": "Autoships", "description": "Recurring deliveries for the current user."},
    {"name": "Admin", "description": "Admin catalog, discounts, inventory, orders, autoships and dashboard."},
]

app = FastAPI(
    title="Pawie API",
    description=(
        "Backend API for the Pawie pet-supply store (admin dashboard and mobile app). "
        "Includes auth, catalog, pricing, checkout/orders, autoships, address book, pets and admin endpoints.\n\n"
        "Auth: Use the `Authorization: Bearer <token>` header for protected routes."
    ),
    version="1.0.0",
    openapi_tags=openapi_tags,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_allow_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

if config.MEDIA_BASE_URL.startswith("/"):
    app.mount(config.MEDIA_BASE_URL, StaticFiles(directory=config.MEDIA_ROOT, check_dir=False), name="media")


@app.exception_handler(ServiceError)
def _service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


@app.exception_handler(pg_errors.UniqueViolation)
def _unique_violation_handler(request: Request, exc: pg_errors.UniqueViolation) -> JSONResponse:
    logger.warning("Unique violation on %s %s: %s", request.method, request.url.path, exc.diag.constraint_name)
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"detail": "A record with the same unique value already exists"},
    )


def _not_found(entity: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{entity} not found")


def _bad_request(msg: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=msg)


def _changes(payload: BaseModel) -> Dict[str, Any]:
    """Fields the client actually sent, with enums reduced to their values."""
    return {
        k: (v.value if isinstance(v, Enum) else v)
        for k, v in payload.model_dump(exclude_none=True).items()
    }


# Columns a PATCH may set back to NULL.
_NULLABLE_COLUMNS = {
    "addresses": ("label", "province", "postal_code"),
    "pets": ("species", "breed", "age", "weight", "activity_level", "notes"),
    "products": ("description", "category", "sku", "base_price_idr", "family_id", "detail_template_id"),
    "product_families": ("description",),
    "product_detail_templates": ("description",),
    "discounts": discounts.NULLABLE_COLUMNS,
}


def _patch(payload: BaseModel, table: str = "") -> Dict[str, Any]:
    """
    Fields present in a partial update.

    An explicit null is kept for the table's nullable columns and dropped
    elsewhere; fields the client left out are never touched.
    """
    nullable = _NULLABLE_COLUMNS.get(table, ())
    return {
        k: (v.value if isinstance(v, Enum) else v)
        for k, v in payload.model_dump(exclude_unset=True).items()
        if v is not None or k in nullable
    }


def _update_returning(table: str, row_id: UUID, changes: Dict[str, Any], touch: bool = True) -> Optional[Dict[str, Any]]:
    if not changes:
        return db.fetch_one(f"SELECT * FROM {table} WHERE id=%s", [row_id])
    assignments = ", ".join(f"{col}=%s" for col in changes)
    if touch:
        assignments += ", updated_at=NOW()"
    rows = db.fetch_all(
        f"UPDATE {table} SET {assignments} WHERE id=%s RETURNING *",
        list(changes.values()) + [row_id],
    )
    return rows[0] if rows else None


def _reorder(table: str, parent_col: str, parent_id: UUID, payload: SortOrderUpdate) -> None:
    with db.transaction() as cur:
        for item in payload.items:
            cur.execute(
                f"UPDATE {table} SET sort_order=%s WHERE id=%s AND {parent_col}=%s",
                [item.sort_order, item.id, parent_id],
            )


def _user_id(user: Dict[str, Any]) -> UUID:
    return UUID(str(user["id"]))


@app.on_event("startup")
def _startup() -> None:
    config.configure_logging()
    db.init_db_pool()


@app.on_event("shutdown")
def _shutdown() -> None:
    db.close_db_pool()


@app.get("/", tags=["Health"], summary="Health check")
def health_check() -> Dict[str, str]:
    """Health check endpoint used by the clients to verify backend availability."""
    return {"message": "Healthy"}


# =========================
# Auth
# =========================

@app.post("/auth/signup", response_model=TokenResponse, tags=["Auth"], summary="Sign up")
def signup(payload: SignupRequest) -> TokenResponse:
    """Create a new customer profile and return an access token."""
    existing = db.fetch_one("SELECT id FROM profiles WHERE email=%s", [payload.email.lower()])
    if existing:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered")

    user = db.execute_returning_one(
        """
        INSERT INTO profiles (email, password_hash, full_name, phone, role)
        VALUES (%s, %s, %s, %s, 'user')
        RETURNING id, email, full_name, role
        """,
        [payload.email.lower(), hash_password(payload.password), payload.full_name, payload.phone],
    )
    token = create_user_access_token(_user_id(user), user["role"], user["email"])
    return TokenResponse(
        access_token=token,
        user_id=user["id"],
        email=user["email"],
        role=user["role"],
        full_name=user["full_name"],
    )


@app.post("/auth/login", response_model=TokenResponse, tags=["Auth"], summary="Login")
def login(payload: LoginRequest) -> TokenResponse:
    """Authenticate a profile and return an access token."""
    user = db.fetch_one(
        "SELECT id, email, full_name, role, password_hash FROM profiles WHERE email=%s",
        [payload.email.lower()],
    )
    if not user or not verify_password(payload.password, user["password_hash"]):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    token = create_user_access_token(_user_id(user), user["role"], user["email"])
    return TokenResponse(
        access_token=token,
        user_id=user["id"],
        email=user["email"],
        role=user["role"],
        full_name=user["full_name"],
    )


@app.get("/auth/me", tags=["Auth"], summary="Get current user")
def me(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    """Return the current authenticated user."""
    return user


# =========================
# Catalog
# =========================

_PRODUCT_WITH_STOCK = """
    SELECT p.*, COALESCE(i.stock_quantity, 0) AS stock_quantity
    FROM products p
    LEFT JOIN inventory i ON i.product_id = p.id
"""


@app.get("/catalog/products", response_model=List[Product], tags=["Catalog"], summary="List products")
def list_products(
    tag_ids: List[UUID] = Query([], description="Only products carrying ALL of these tags"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    store: Store = Depends(get_store),
) -> List[Dict[str, Any]]:
    """List published products, newest first, optionally filtered by tags."""
    return catalog.filter_products_by_tags(store, tag_ids, limit, offset)


@app.get("/catalog/search", response_model=List[SearchResult], tags=["Catalog"], summary="Search products")
def search_products(
    q: str = Query(..., min_length=1, description="Search query"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    store: Store = Depends(get_store),
) -> List[Dict[str, Any]]:
    """Search published products with word, prefix and typo-tolerant matching."""
    return catalog.search_products(store, q, limit, offset)


@app.get("/catalog/products/{product_id}", response_model=Product, tags=["Catalog"], summary="Get product")
def get_product(product_id: UUID) -> Dict[str, Any]:
    """Get a published product with its stock level."""
    product = db.fetch_one(_PRODUCT_WITH_STOCK + " WHERE p.id=%s AND p.published=TRUE", [product_id])
    if not product:
        raise _not_found("Product")
    return product


@app.get("/catalog/products/{product_id}/related", response_model=List[Product], tags=["Catalog"], summary="Related products")
def related_products(product_id: UUID, limit: int = Query(10, ge=1, le=50)) -> List[Dict[str, Any]]:
    """Other published products of the same family."""
    product = db.fetch_one("SELECT family_id FROM products WHERE id=%s AND published=TRUE", [product_id])
    if not product:
        raise _not_found("Product")
    if not product["family_id"]:
        return []
    return db.fetch_all(
        _PRODUCT_WITH_STOCK + " WHERE p.family_id=%s AND p.id<>%s AND p.published=TRUE ORDER BY p.name ASC LIMIT %s",
        [product["family_id"], product_id, limit],
    )


@app.get("/catalog/products/{product_id}/images", response_model=List[ProductImage], tags=["Catalog"], summary="Product images")
def list_product_images(product_id: UUID) -> List[Dict[str, Any]]:
    images = db.fetch_all("SELECT * FROM product_images WHERE product_id=%s ORDER BY sort_order ASC", [product_id])
    for img in images:
        img["url"] = catalog.image_url(img["path"])
    return images


@app.get("/catalog/products/{product_id}/details", response_model=List[DetailSection], tags=["Catalog"], summary="Product detail sections")
def product_detail_sections(product_id: UUID, store: Store = Depends(get_store)) -> List[Dict[str, Any]]:
    """Template sections merged with the product's overrides and custom sections."""
    return catalog.get_product_detail_sections(store, product_id)


@app.get("/catalog/products/{product_id}/variant-values", response_model=List[VariantValue], tags=["Catalog"], summary="Product variant values")
def product_variant_values(product_id: UUID) -> List[Dict[str, Any]]:
    return db.fetch_all(
        """
        SELECT v.* FROM variant_values v
        JOIN product_variant_values pvv ON pvv.variant_value_id = v.id
        WHERE pvv.product_id=%s
        ORDER BY v.sort_order ASC
        """,
        [product_id],
    )


@app.get("/catalog/tags", response_model=List[Tag], tags=["Catalog"], summary="List tags")
def list_tags() -> List[Dict[str, Any]]:
    return db.fetch_all("SELECT * FROM product_tags ORDER BY name ASC")


@app.get("/catalog/families/{family_id}", response_model=FamilyDetail, tags=["Catalog"], summary="Family with dimensions")
def get_family(family_id: UUID) -> Dict[str, Any]:
    family = variants.get_family_detail(family_id)
    if not family:
        raise _not_found("Family")
    return family


@app.post("/catalog/families/{family_id}/resolve", response_model=Optional[Product], tags=["Catalog"], summary="Resolve variant combination")
def resolve_variant(family_id: UUID, payload: VariantResolveRequest, store: Store = Depends(get_store)) -> Optional[Dict[str, Any]]:
    """The published product whose variant values are exactly the selection, or null."""
    products = variants.load_family_products(store, family_id)
    return variants.find_product_by_variant_combination(products, payload.value_ids)


@app.post("/catalog/families/{family_id}/availability", tags=["Catalog"], summary="Check values availability")
def values_availability(
    family_id: UUID, payload: ValuesAvailabilityRequest, store: Store = Depends(get_store)
) -> Dict[UUID, bool]:
    """For each value of a dimension: whether choosing it with the current selections resolves to a product."""
    products = variants.load_family_products(store, family_id)
    return variants.check_values_availability(products, payload.dimension_id, payload.value_ids, payload.current_selections)


@app.post("/catalog/families/{family_id}/first-available", tags=["Catalog"], summary="Closest available combination")
def first_available(family_id: UUID, payload: FirstAvailableRequest, store: Store = Depends(get_store)) -> Dict[str, Any]:
    products = variants.load_family_products(store, family_id)
    value_ids = variants.find_first_available_combination(
        products, payload.changed_dimension_id, payload.new_value_id, payload.current_selections
    )
    return {"value_ids": value_ids}


@app.get("/catalog/families/{family_id}/values/{value_id}/has-products", tags=["Catalog"], summary="Value has products")
def value_has_products(family_id: UUID, value_id: UUID, store: Store = Depends(get_store)) -> Dict[str, bool]:
    products = variants.load_family_products(store, family_id)
    return {"has_products": variants.has_products_for_value(products, value_id)}


# =========================
# Pricing
# =========================

@app.post("/pricing/quote", response_model=PriceQuote, tags=["Pricing"], summary="Quote one product")
def quote_product(payload: PriceQuoteRequest, store: Store = Depends(get_store)) -> Dict[str, Any]:
    return pricing.compute_product_price(
        store,
        payload.product_id,
        is_autoship=payload.is_autoship,
        quantity=payload.quantity,
        cart_total_idr=payload.cart_total_idr,
        coupon_code=payload.coupon_code,
    )


@app.post("/pricing/cart", response_model=CartQuote, tags=["Pricing"], summary="Quote a cart")
def quote_cart(payload: CartQuoteRequest, store: Store = Depends(get_store)) -> Dict[str, Any]:
    items = [{"product_id": line.product_id, "quantity": line.quantity} for line in payload.items]
    return pricing.compute_cart_prices(store, items, payload.is_autoship)


@app.get("/pricing/autoship-discount", tags=["Pricing"], summary="Global autoship discount active")
def autoship_discount(store: Store = Depends(get_store)) -> Dict[str, bool]:
    """Whether an active autoship discount applies to every product (drives the 'Save with Autoship' badge)."""
    return {"active": pricing.has_active_global_autoship_discount(store)}


# =========================
# Addresses
# =========================

@app.get("/addresses", response_model=List[Address], tags=["Addresses"], summary="List addresses")
def list_addresses(user: Dict[str, Any] = Depends(get_current_user)) -> List[Dict[str, Any]]:
    """List current user's saved addresses, default first."""
    return db.fetch_all(
        "SELECT * FROM addresses WHERE user_id=%s ORDER BY is_default DESC, created_at DESC",
        [_user_id(user)],
    )


@app.post("/addresses", response_model=Address, tags=["Addresses"], summary="Create address")
def create_address(payload: AddressCreate, user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    """Create an address for the current user."""
    with db.transaction() as cur:
        if payload.is_default:
            cur.execute("UPDATE addresses SET is_default=FALSE, updated_at=NOW() WHERE user_id=%s", [_user_id(user)])
        cur.execute(
            """
            INSERT INTO addresses (user_id, label, address_line, city, province, postal_code, is_default)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            [
                _user_id(user),
                payload.label,
                payload.address_line,
                payload.city,
                payload.province,
                payload.postal_code,
                payload.is_default,
            ],
        )
        return dict(cur.fetchone())


@app.patch("/addresses/{address_id}", response_model=Address, tags=["Addresses"], summary="Update address")
def update_address(address_id: UUID, payload: AddressUpdate, user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    """Update a saved address belonging to the current user."""
    existing = db.fetch_one("SELECT * FROM addresses WHERE id=%s AND user_id=%s", [address_id, _user_id(user)])
    if not existing:
        raise _not_found("Address")

    changes = _patch(payload, "addresses")
    if not changes:
        return existing
    with db.transaction() as cur:
        if changes.get("is_default"):
            cur.execute(
                "UPDATE addresses SET is_default=FALSE, updated_at=NOW() WHERE user_id=%s AND id<>%s",
                [_user_id(user), address_id],
            )
        cur.execute(
            f"UPDATE addresses SET {', '.join(f'{c}=%s' for c in changes)}, updated_at=NOW() "
            "WHERE id=%s AND user_id=%s RETURNING *",
            list(changes.values()) + [address_id, _user_id(user)],
        )
        return dict(cur.fetchone())


@app.delete("/addresses/{address_id}", response_model=APIMessage, tags=["Addresses"], summary="Delete address")
def delete_address(address_id: UUID, user: Dict[str, Any] = Depends(get_current_user)) -> APIMessage:
    """Delete a saved address."""
    affected = db.execute("DELETE FROM addresses WHERE id=%s AND user_id=%s", [address_id, _user_id(user)])
    if affected == 0:
        raise _not_found("Address")
    return APIMessage(message="Deleted")


# =========================
# Pets
# =========================

@app.get("/pets", response_model=List[Pet], tags=["Pets"], summary="List pets")
def list_pets(user: Dict[str, Any] = Depends(get_current_user)) -> List[Dict[str, Any]]:
    return db.fetch_all("SELECT * FROM pets WHERE user_id=%s ORDER BY created_at ASC", [_user_id(user)])


@app.post("/pets", response_model=Pet, tags=["Pets"], summary="Create pet")
def create_pet(payload: PetCreate, user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    fields = _changes(payload)
    cols = ["user_id"] + list(fields)
    return db.execute_returning_one(
        f"INSERT INTO pets ({', '.join(cols)}) VALUES ({', '.join(['%s'] * len(cols))}) RETURNING *",
        [_user_id(user)] + list(fields.values()),
    )


@app.get("/pets/{pet_id}", response_model=Pet, tags=["Pets"], summary="Get pet")
def get_pet(pet_id: UUID, user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    pet = db.fetch_one("SELECT * FROM pets WHERE id=%s AND user_id=%s", [pet_id, _user_id(user)])
    if not pet:
        raise _not_found("Pet")
    return pet


@app.patch("/pets/{pet_id}", response_model=Pet, tags=["Pets"], summary="Update pet")
def update_pet(pet_id: UUID, payload: PetUpdate, user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    existing = get_pet(pet_id, user)
    updated = _update_returning("pets", pet_id, _patch(payload, "pets"))
    return updated or existing


@app.delete("/pets/{pet_id}", response_model=APIMessage, tags=["Pets"], summary="Delete pet")
def delete_pet(pet_id: UUID, user: Dict[str, Any] = Depends(get_current_user)) -> APIMessage:
    affected = db.execute("DELETE FROM pets WHERE id=%s AND user_id=%s", [pet_id, _user_id(user)])
    if affected == 0:
        raise _not_found("Pet")
    return APIMessage(message="Deleted")


# =========================
# Orders / Checkout
# =========================

@app.post("/orders", tags=["Orders"], summary="Place a one-time order")
def place_order(
    payload: OrderCreateRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    store: Store = Depends(get_store),
) -> Dict[str, Any]:
    """
    Price, validate and place an order, taking the items out of stock.

    Prices come from the pricing engine at the moment of checkout and are
    snapshotted on the order items.
    """
    items = [{"product_id": line.product_id, "quantity": line.quantity} for line in payload.items]
    return orders.create_order_with_inventory(store, _user_id(user), items, payload.address_id, "one_time")


@app.get("/orders", response_model=List[Order], tags=["Orders"], summary="Order history")
def order_history(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: Dict[str, Any] = Depends(get_current_user),
) -> List[Dict[str, Any]]:
    """List orders for the current user (most recent first)."""
    rows = db.fetch_all(
        "SELECT id FROM orders WHERE user_id=%s ORDER BY created_at DESC LIMIT %s OFFSET %s",
        [_user_id(user), limit, offset],
    )
    return [orders.get_order_with_items(r["id"]) for r in rows]


@app.get("/orders/{order_id}", response_model=Order, tags=["Orders"], summary="Get order")
def get_order(order_id: UUID, user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    """Get an order (must belong to current user, unless admin)."""
    order = orders.get_order_with_items(order_id)
    if not order:
        raise _not_found("Order")
    if order["user_id"] != _user_id(user) and user.get("role") != "admin":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed")
    return order


# =========================
# Autoships
# =========================

def _own_autoship(autoship_id: UUID, user: Dict[str, Any]) -> Dict[str, Any]:
    autoship = autoships.get_autoship_with_runs(autoship_id)
    if not autoship or autoship["user_id"] != _user_id(user):
        raise _not_found("Autoship")
    return autoship


@app.get("/autoships", response_model=List[Autoship], tags=["Autoships"], summary="List my autoships")
def list_my_autoships(
    status_filter: Optional[str] = Query(None, alias="status", description="active, paused, cancelled or all"),
    user: Dict[str, Any] = Depends(get_current_user),
) -> List[Dict[str, Any]]:
    return autoships.list_autoships(status=status_filter, user_id=_user_id(user), limit=200)


@app.post("/autoships", tags=["Autoships"], summary="Create autoship")
def create_autoship(
    payload: AutoshipCreate,
    user: Dict[str, Any] = Depends(get_current_user),
    store: Store = Depends(get_store),
) -> Dict[str, Any]:
    """Subscribe to a product; the first delivery is scheduled, not placed now."""
    return autoships.create_autoship(
        store,
        _user_id(user),
        payload.product_id,
        payload.quantity,
        payload.frequency_weeks,
        pet_id=payload.pet_id,
        start_date=payload.start_date,
    )


@app.post("/autoships/checkout", tags=["Autoships"], summary="Enroll in autoship at checkout")
def autoship_checkout(
    payload: AutoshipCheckoutRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    store: Store = Depends(get_store),
) -> Dict[str, Any]:
    """Create the autoship and place its first order immediately, in one transaction."""
    return autoships.create_autoship_with_order(
        store,
        _user_id(user),
        payload.product_id,
        payload.quantity,
        payload.frequency_weeks,
        payload.address_id,
        pet_id=payload.pet_id,
    )


@app.get("/autoships/{autoship_id}", tags=["Autoships"], summary="Get autoship with runs")
def get_my_autoship(autoship_id: UUID, user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    return _own_autoship(autoship_id, user)


@app.patch("/autoships/{autoship_id}", tags=["Autoships"], summary="Update autoship")
def update_my_autoship(
    autoship_id: UUID,
    payload: AutoshipUpdate,
    user: Dict[str, Any] = Depends(get_current_user),
    store: Store = Depends(get_store),
) -> Dict[str, Any]:
    return autoships.update_autoship(
        store, _user_id(user), autoship_id, quantity=payload.quantity, frequency_weeks=payload.frequency_weeks
    )


@app.post("/autoships/{autoship_id}/pause", tags=["Autoships"], summary="Pause autoship")
def pause_my_autoship(
    autoship_id: UUID, user: Dict[str, Any] = Depends(get_current_user), store: Store = Depends(get_store)
) -> Dict[str, Any]:
    return autoships.pause_autoship(store, _user_id(user), autoship_id)


@app.post("/autoships/{autoship_id}/resume", tags=["Autoships"], summary="Resume autoship")
def resume_my_autoship(
    autoship_id: UUID,
    payload: Optional[AutoshipResume] = None,
    user: Dict[str, Any] = Depends(get_current_user),
    store: Store = Depends(get_store),
) -> Dict[str, Any]:
    next_run_at = payload.next_run_at if payload else None
    return autoships.resume_autoship(store, _user_id(user), autoship_id, next_run_at=next_run_at)


@app.post("/autoships/{autoship_id}/cancel", tags=["Autoships"], summary="Cancel autoship")
def cancel_my_autoship(
    autoship_id: UUID, user: Dict[str, Any] = Depends(get_current_user), store: Store = Depends(get_store)
) -> Dict[str, Any]:
    return autoships.cancel_autoship(store, _user_id(user), autoship_id)


@app.post("/autoships/{autoship_id}/skip", tags=["Autoships"], summary="Skip next delivery")
def skip_my_autoship(
    autoship_id: UUID, user: Dict[str, Any] = Depends(get_current_user), store: Store = Depends(get_store)
) -> Dict[str, Any]:
    return autoships.skip_next_autoship(store, _user_id(user), autoship_id)


# =========================
# Admin: products
# =========================

_PRODUCT_COLUMNS = ("name", "description", "category", "sku", "base_price_idr", "autoship_eligible", "family_id", "detail_template_id")


@app.get("/admin/products", response_model=List[Product], tags=["Admin"], summary="List all products")
def admin_list_products(
    q: Optional[str] = Query(None, description="Search query (name/sku)"),
    published: Optional[bool] = Query(None, description="Filter by published flag"),
    family_id: Optional[UUID] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    _: Dict[str, Any] = Depends(require_admin),
) -> List[Dict[str, Any]]:
    """Admin: list products including unpublished ones."""
    where = []
    params: List[Any] = []
    if q:
        where.append("(p.name ILIKE %s OR p.sku ILIKE %s)")
        params.extend([f"%{q}%", f"%{q}%"])
    if published is not None:
        where.append("p.published=%s")
        params.append(published)
    if family_id:
        where.append("p.family_id=%s")
        params.append(family_id)
    where_sql = ("WHERE " + " AND ".join(where)) if where else ""
    return db.fetch_all(
        _PRODUCT_WITH_STOCK + f" {where_sql} ORDER BY p.updated_at DESC LIMIT %s OFFSET %s",
        params + [limit, offset],
    )


@app.post("/admin/products", response_model=Product, tags=["Admin"], summary="Create product")
def admin_create_product(payload: ProductCreate, _: Dict[str, Any] = Depends(require_admin)) -> Dict[str, Any]:
    """Admin: create an unpublished product with its inventory row, variant values and tags."""
    fields = {c: getattr(payload, c) for c in _PRODUCT_COLUMNS}
    with db.transaction() as cur:
        cur.execute(
            f"INSERT INTO products ({', '.join(fields)}, published) "
            f"VALUES ({', '.join(['%s'] * len(fields))}, FALSE) RETURNING *",
            list(fields.values()),
        )
        product = dict(cur.fetchone())
        cur.execute("INSERT INTO inventory (product_id, stock_quantity) VALUES (%s, 0)", [product["id"]])
        if payload.variant_value_ids:
            variants.assign_product_values(cur, product["id"], payload.variant_value_ids)
        for tag_id in dict.fromkeys(payload.tag_ids):
            cur.execute(
                "INSERT INTO product_tag_assignments (product_id, tag_id) VALUES (%s, %s)",
                [product["id"], tag_id],
            )
    logger.info("Product %s created", product["id"])
    product["stock_quantity"] = 0
    return product


@app.get("/admin/products/{product_id}", response_model=Product, tags=["Admin"], summary="Get product")
def admin_get_product(product_id: UUID, _: Dict[str, Any] = Depends(require_admin)) -> Dict[str, Any]:
    product = db.fetch_one(_PRODUCT_WITH_STOCK + " WHERE p.id=%s", [product_id])
    if not product:
        raise _not_found("Product")
    return product


@app.patch("/admin/products/{product_id}", response_model=Product, tags=["Admin"], summary="Update product")
def admin_update_product(product_id: UUID, payload: ProductUpdate, _: Dict[str, Any] = Depends(require_admin)) -> Dict[str, Any]:
    if not _update_returning("products", product_id, _patch(payload, "products")):
        raise _not_found("Product")
    return admin_get_product(product_id, _)


@app.patch("/admin/products/{product_id}/publish", response_model=Product, tags=["Admin"], summary="Publish or unpublish")
def admin_publish_product(product_id: UUID, payload: PublishUpdate, _: Dict[str, Any] = Depends(require_admin)) -> Dict[str, Any]:
    if not _update_returning("products", product_id, {"published": payload.published}):
        raise _not_found("Product")
    return admin_get_product(product_id, _)


@app.delete("/admin/products/{product_id}", response_model=APIMessage, tags=["Admin"], summary="Delete product")
def admin_delete_product(product_id: UUID, _: Dict[str, Any] = Depends(require_admin)) -> APIMessage:
    """Admin: delete a product (inventory, images, tags and sections cascade)."""
    affected = db.execute("DELETE FROM products WHERE id=%s", [product_id])
    if affected == 0:
        raise _not_found("Product")
    return APIMessage(message="Deleted")


@app.put("/admin/products/{product_id}/tags", response_model=List[Tag], tags=["Admin"], summary="Replace product tags")
def admin_set_product_tags(product_id: UUID, payload: TagAssignment, _: Dict[str, Any] = Depends(require_admin)) -> List[Dict[str, Any]]:
    with db.transaction() as cur:
        cur.execute("DELETE FROM product_tag_assignments WHERE product_id=%s", [product_id])
        for tag_id in dict.fromkeys(payload.tag_ids):
            cur.execute(
                "INSERT INTO product_tag_assignments (product_id, tag_id) VALUES (%s, %s)",
                [product_id, tag_id],
            )
    return db.fetch_all(
        """
        SELECT t.* FROM product_tags t
        JOIN product_tag_assignments a ON a.tag_id = t.id
        WHERE a.product_id=%s ORDER BY t.name ASC
        """,
        [product_id],
    )


@app.put("/admin/products/{product_id}/variant-values", response_model=APIMessage, tags=["Admin"], summary="Replace variant values")
def admin_set_variant_values(
    product_id: UUID, payload: VariantValueAssignment, _: Dict[str, Any] = Depends(require_admin)
) -> APIMessage:
    with db.transaction() as cur:
        variants.assign_product_values(cur, product_id, payload.value_ids)
    return APIMessage(message="Updated")


# =========================
# Admin: product images
# =========================

@app.post("/admin/products/{product_id}/images", response_model=ProductImage, tags=["Admin"], summary="Upload image")
def admin_upload_image(
    product_id: UUID, file: UploadFile = File(...), _: Dict[str, Any] = Depends(require_admin)
) -> Dict[str, Any]:
    """Admin: upload a JPEG/PNG/WebP/GIF image (max 5 MB). The first image becomes primary."""
    image = catalog.upload_image(product_id, file.filename, file.content_type, file.file.read())
    image["url"] = catalog.image_url(image["path"])
    return image


@app.patch("/admin/products/{product_id}/images/{image_id}/primary", response_model=ProductImage, tags=["Admin"], summary="Set primary image")
def admin_set_primary_image(product_id: UUID, image_id: UUID, _: Dict[str, Any] = Depends(require_admin)) -> Dict[str, Any]:
    image = catalog.set_primary_image(product_id, image_id)
    image["url"] = catalog.image_url(image["path"])
    return image


@app.put("/admin/products/{product_id}/images/order", response_model=APIMessage, tags=["Admin"], summary="Reorder images")
def admin_reorder_images(product_id: UUID, payload: SortOrderUpdate, _: Dict[str, Any] = Depends(require_admin)) -> APIMessage:
    catalog.reorder_images(product_id, [item.model_dump() for item in payload.items])
    return APIMessage(message="Reordered")


@app.delete("/admin/products/{product_id}/images/{image_id}", response_model=APIMessage, tags=["Admin"], summary="Delete image")
def admin_delete_image(product_id: UUID, image_id: UUID, _: Dict[str, Any] = Depends(require_admin)) -> APIMessage:
    catalog.delete_image(product_id, image_id)
    return APIMessage(message="Deleted")


# =========================
# Admin: tags
# =========================

@app.post("/admin/tags", response_model=Tag, tags=["Admin"], summary="Create tag")
def admin_create_tag(payload: TagCreate, _: Dict[str, Any] = Depends(require_admin)) -> Dict[str, Any]:
    slug = payload.slug or catalog.generate_slug(payload.name)
    if not slug:
        raise _bad_request("Tag name must contain letters or digits")
    return db.execute_returning_one(
        "INSERT INTO product_tags (name, slug) VALUES (%s, %s) RETURNING *",
        [payload.name.strip(), slug],
    )


@app.patch("/admin/tags/{tag_id}", response_model=Tag, tags=["Admin"], summary="Update tag")
def admin_update_tag(tag_id: UUID, payload: TagUpdate, _: Dict[str, Any] = Depends(require_admin)) -> Dict[str, Any]:
    """Admin: rename a tag. The slug follows the new name unless one is given."""
    changes = _patch(payload)
    if "name" in changes:
        changes["name"] = changes["name"].strip()
        changes.setdefault("slug", catalog.generate_slug(changes["name"]))
    tag = _update_returning("product_tags", tag_id, changes, touch=False)
    if not tag:
        raise _not_found("Tag")
    return tag


@app.delete("/admin/tags/{tag_id}", response_model=APIMessage, tags=["Admin"], summary="Delete tag")
def admin_delete_tag(tag_id: UUID, _: Dict[str, Any] = Depends(require_admin)) -> APIMessage:
    if db.execute("DELETE FROM product_tags WHERE id=%s", [tag_id]) == 0:
        raise _not_found("Tag")
    return APIMessage(message="Deleted")


# =========================
# Admin: families / variants
# =========================

@app.get("/admin/families", response_model=List[Family], tags=["Admin"], summary="List families")
def admin_list_families(_: Dict[str, Any] = Depends(require_admin)) -> List[Dict[str, Any]]:
    return db.fetch_all("SELECT * FROM product_families ORDER BY name ASC")


@app.post("/admin/families", response_model=Family, tags=["Admin"], summary="Create family")
def admin_create_family(payload: FamilyCreate, _: Dict[str, Any] = Depends(require_admin)) -> Dict[str, Any]:
    return db.execute_returning_one(
        "INSERT INTO product_families (name, description) VALUES (%s, %s) RETURNING *",
        [payload.name, payload.description],
    )


@app.get("/admin/families/{family_id}", response_model=FamilyDetail, tags=["Admin"], summary="Get family")
def admin_get_family(family_id: UUID, _: Dict[str, Any] = Depends(require_admin)) -> Dict[str, Any]:
    return get_family(family_id)


@app.patch("/admin/families/{family_id}", response_model=Family, tags=["Admin"], summary="Update family")
def admin_update_family(family_id: UUID, payload: FamilyUpdate, _: Dict[str, Any] = Depends(require_admin)) -> Dict[str, Any]:
    family = _update_returning("product_families", family_id, _patch(payload, "product_families"))
    if not family:
        raise _not_found("Family")
    return family


@app.delete("/admin/families/{family_id}", response_model=APIMessage, tags=["Admin"], summary="Delete family")
def admin_delete_family(family_id: UUID, _: Dict[str, Any] = Depends(require_admin)) -> APIMessage:
    variants.delete_family(family_id)
    return APIMessage(message="Deleted")


@app.post("/admin/families/{family_id}/dimensions", response_model=VariantDimension, tags=["Admin"], summary="Create dimension")
def admin_create_dimension(
    family_id: UUID, payload: VariantDimensionCreate, _: Dict[str, Any] = Depends(require_admin)
) -> Dict[str, Any]:
    if not db.fetch_one("SELECT id FROM product_families WHERE id=%s", [family_id]):
        raise _not_found("Family")
    return db.execute_returning_one(
        "INSERT INTO variant_dimensions (family_id, name, sort_order) VALUES (%s, %s, %s) RETURNING *",
        [family_id, payload.name, payload.sort_order],
    )


@app.patch("/admin/dimensions/{dimension_id}", response_model=VariantDimension, tags=["Admin"], summary="Update dimension")
def admin_update_dimension(
    dimension_id: UUID, payload: VariantDimensionUpdate, _: Dict[str, Any] = Depends(require_admin)
) -> Dict[str, Any]:
    dimension = _update_returning("variant_dimensions", dimension_id, _patch(payload), touch=False)
    if not dimension:
        raise _not_found("Dimension")
    return dimension


@app.delete("/admin/dimensions/{dimension_id}", response_model=APIMessage, tags=["Admin"], summary="Delete dimension")
def admin_delete_dimension(dimension_id: UUID, _: Dict[str, Any] = Depends(require_admin)) -> APIMessage:
    variants.delete_dimension(dimension_id)
    return APIMessage(message="Deleted")


@app.post("/admin/dimensions/{dimension_id}/values", response_model=VariantValue, tags=["Admin"], summary="Create value")
def admin_create_value(dimension_id: UUID, payload: VariantValueCreate, _: Dict[str, Any] = Depends(require_admin)) -> Dict[str, Any]:
    if not db.fetch_one("SELECT id FROM variant_dimensions WHERE id=%s", [dimension_id]):
        raise _not_found("Dimension")
    return db.execute_returning_one(
        "INSERT INTO variant_values (dimension_id, value, sort_order) VALUES (%s, %s, %s) RETURNING *",
        [dimension_id, payload.value, payload.sort_order],
    )


@app.patch("/admin/values/{value_id}", response_model=VariantValue, tags=["Admin"], summary="Update value")
def admin_update_value(value_id: UUID, payload: VariantValueUpdate, _: Dict[str, Any] = Depends(require_admin)) -> Dict[str, Any]:
    value = _update_returning("variant_values", value_id, _patch(payload), touch=False)
    if not value:
        raise _not_found("Value")
    return value


@app.delete("/admin/values/{value_id}", response_model=APIMessage, tags=["Admin"], summary="Delete value")
def admin_delete_value(value_id: UUID, _: Dict[str, Any] = Depends(require_admin)) -> APIMessage:
    used = db.fetch_one("SELECT COUNT(*) AS n FROM product_variant_values WHERE variant_value_id=%s", [value_id])
    if used and int(used["n"]) > 0:
        raise ServiceError("VALUE_IN_USE", "Value is assigned to products", assignment_count=int(used["n"]))
    if db.execute("DELETE FROM variant_values WHERE id=%s", [value_id]) == 0:
        raise _not_found("Value")
    return APIMessage(message="Deleted")


# =========================
# Admin: detail templates / sections
# =========================

@app.get("/admin/detail-templates", response_model=List[DetailTemplate], tags=["Admin"], summary="List detail templates")
def admin_list_templates(_: Dict[str, Any] = Depends(require_admin)) -> List[Dict[str, Any]]:
    return db.fetch_all("SELECT * FROM product_detail_templates ORDER BY name ASC")


@app.post("/admin/detail-templates", response_model=DetailTemplate, tags=["Admin"], summary="Create detail template")
def admin_create_template(payload: DetailTemplateCreate, _: Dict[str, Any] = Depends(require_admin)) -> Dict[str, Any]:
    return db.execute_returning_one(
        "INSERT INTO product_detail_templates (name, description) VALUES (%s, %s) RETURNING *",
        [payload.name, payload.description],
    )


@app.get("/admin/detail-templates/{template_id}", tags=["Admin"], summary="Get detail template with sections")
def admin_get_template(template_id: UUID, _: Dict[str, Any] = Depends(require_admin)) -> Dict[str, Any]:
    template = db.fetch_one("SELECT * FROM product_detail_templates WHERE id=%s", [template_id])
    if not template:
        raise _not_found("Template")
    template["sections"] = db.fetch_all(
        "SELECT * FROM product_detail_template_sections WHERE template_id=%s ORDER BY sort_order ASC",
        [template_id],
    )
    return template


@app.patch("/admin/detail-templates/{template_id}", response_model=DetailTemplate, tags=["Admin"], summary="Update detail template")
def admin_update_template(
    template_id: UUID, payload: DetailTemplateUpdate, _: Dict[str, Any] = Depends(require_admin)
) -> Dict[str, Any]:
    template = _update_returning("product_detail_templates", template_id, _patch(payload, "product_detail_templates"))
    if not template:
        raise _not_found("Template")
    return template


@app.delete("/admin/detail-templates/{template_id}", response_model=APIMessage, tags=["Admin"], summary="Delete detail template")
def admin_delete_template(template_id: UUID, _: Dict[str, Any] = Depends(require_admin)) -> APIMessage:
    if db.execute("DELETE FROM product_detail_templates WHERE id=%s", [template_id]) == 0:
        raise _not_found("Template")
    return APIMessage(message="Deleted")


@app.post("/admin/detail-templates/{template_id}/sections", tags=["Admin"], summary="Add template section")
def admin_create_template_section(
    template_id: UUID, payload: SectionCreate, _: Dict[str, Any] = Depends(require_admin)
) -> Dict[str, Any]:
    if not db.fetch_one("SELECT id FROM product_detail_templates WHERE id=%s", [template_id]):
        raise _not_found("Template")
    return db.execute_returning_one(
        """
        INSERT INTO product_detail_template_sections (template_id, title, content, sort_order)
        VALUES (%s, %s, %s, %s) RETURNING *
        """,
        [template_id, payload.title, payload.content, payload.sort_order],
    )


@app.put("/admin/detail-templates/{template_id}/sections/order", response_model=APIMessage, tags=["Admin"], summary="Reorder template sections")
def admin_reorder_template_sections(
    template_id: UUID, payload: SortOrderUpdate, _: Dict[str, Any] = Depends(require_admin)
) -> APIMessage:
    _reorder("product_detail_template_sections", "template_id", template_id, payload)
    return APIMessage(message="Reordered")


@app.patch("/admin/template-sections/{section_id}", tags=["Admin"], summary="Update template section")
def admin_update_template_section(
    section_id: UUID, payload: SectionUpdate, _: Dict[str, Any] = Depends(require_admin)
) -> Dict[str, Any]:
    section = _update_returning("product_detail_template_sections", section_id, _patch(payload))
    if not section:
        raise _not_found("Section")
    return section


@app.delete("/admin/template-sections/{section_id}", response_model=APIMessage, tags=["Admin"], summary="Delete template section")
def admin_delete_template_section(section_id: UUID, _: Dict[str, Any] = Depends(require_admin)) -> APIMessage:
    if db.execute("DELETE FROM product_detail_template_sections WHERE id=%s", [section_id]) == 0:
        raise _not_found("Section")
    return APIMessage(message="Deleted")


@app.get("/admin/products/{product_id}/details", response_model=List[DetailSection], tags=["Admin"], summary="Product detail sections")
def admin_product_details(
    product_id: UUID, store: Store = Depends(get_store), _: Dict[str, Any] = Depends(require_admin)
) -> List[Dict[str, Any]]:
    """Admin: merged sections, shown even while the product is unpublished."""
    return catalog.get_product_detail_sections(store, product_id, public=False)


@app.post("/admin/products/{product_id}/sections", tags=["Admin"], summary="Add product section or override")
def admin_create_product_section(
    product_id: UUID, payload: SectionCreate, _: Dict[str, Any] = Depends(require_admin)
) -> Dict[str, Any]:
    if not db.fetch_one("SELECT id FROM products WHERE id=%s", [product_id]):
        raise _not_found("Product")
    return db.execute_returning_one(
        """
        INSERT INTO product_detail_sections (product_id, template_section_id, title, content, sort_order)
        VALUES (%s, %s, %s, %s, %s) RETURNING *
        """,
        [product_id, payload.template_section_id, payload.title, payload.content, payload.sort_order],
    )


@app.put("/admin/products/{product_id}/sections/order", response_model=APIMessage, tags=["Admin"], summary="Reorder product sections")
def admin_reorder_product_sections(
    product_id: UUID, payload: SortOrderUpdate, _: Dict[str, Any] = Depends(require_admin)
) -> APIMessage:
    _reorder("product_detail_sections", "product_id", product_id, payload)
    return APIMessage(message="Reordered")


@app.patch("/admin/product-sections/{section_id}", tags=["Admin"], summary="Update product section")
def admin_update_product_section(
    section_id: UUID, payload: SectionUpdate, _: Dict[str, Any] = Depends(require_admin)
) -> Dict[str, Any]:
    section = _update_returning("product_detail_sections", section_id, _patch(payload))
    if not section:
        raise _not_found("Section")
    return section


@app.delete("/admin/product-sections/{section_id}", response_model=APIMessage, tags=["Admin"], summary="Delete product section")
def admin_delete_product_section(section_id: UUID, _: Dict[str, Any] = Depends(require_admin)) -> APIMessage:
    """Admin: delete a custom section, or an override (the template section shows again)."""
    if db.execute("DELETE FROM product_detail_sections WHERE id=%s", [section_id]) == 0:
        raise _not_found("Section")
    return APIMessage(message="Deleted")


# =========================
# Admin: discounts
# =========================

@app.get("/admin/discounts", response_model=List[Discount], tags=["Admin"], summary="List discounts")
def admin_list_discounts(
    active: Optional[bool] = Query(None), _: Dict[str, Any] = Depends(require_admin)
) -> List[Dict[str, Any]]:
    if active is None:
        return db.fetch_all("SELECT * FROM discounts ORDER BY created_at DESC")
    return db.fetch_all("SELECT * FROM discounts WHERE active=%s ORDER BY created_at DESC", [active])


@app.post("/admin/discounts", response_model=Discount, tags=["Admin"], summary="Create discount")
def admin_create_discount(payload: DiscountCreate, _: Dict[str, Any] = Depends(require_admin)) -> Dict[str, Any]:
    return discounts.create_discount(_changes(payload))


@app.get("/admin/discounts/{discount_id}", tags=["Admin"], summary="Get discount with targets")
def admin_get_discount(discount_id: UUID, _: Dict[str, Any] = Depends(require_admin)) -> Dict[str, Any]:
    discount = discounts.get_discount_with_targets(discount_id)
    if not discount:
        raise _not_found("Discount")
    return discount


@app.patch("/admin/discounts/{discount_id}", response_model=Discount, tags=["Admin"], summary="Update discount")
def admin_update_discount(discount_id: UUID, payload: DiscountUpdate, _: Dict[str, Any] = Depends(require_admin)) -> Dict[str, Any]:
    return discounts.update_discount(discount_id, _patch(payload, "discounts"))


@app.patch("/admin/discounts/{discount_id}/active", response_model=Discount, tags=["Admin"], summary="Toggle discount")
def admin_toggle_discount(
    discount_id: UUID, payload: DiscountActiveUpdate, _: Dict[str, Any] = Depends(require_admin)
) -> Dict[str, Any]:
    discount = _update_returning("discounts", discount_id, {"active": payload.active})
    if not discount:
        raise _not_found("Discount")
    return discount


@app.delete("/admin/discounts/{discount_id}", response_model=APIMessage, tags=["Admin"], summary="Delete discount")
def admin_delete_discount(discount_id: UUID, _: Dict[str, Any] = Depends(require_admin)) -> APIMessage:
    if db.execute("DELETE FROM discounts WHERE id=%s", [discount_id]) == 0:
        raise _not_found("Discount")
    return APIMessage(message="Deleted")


@app.put("/admin/discounts/{discount_id}/targets", tags=["Admin"], summary="Replace discount targets")
def admin_set_discount_targets(
    discount_id: UUID, payload: DiscountTargetsUpdate, _: Dict[str, Any] = Depends(require_admin)
) -> List[Dict[str, Any]]:
    return discounts.set_discount_targets(discount_id, payload.applies_to_all_products, payload.product_ids)


@app.post("/admin/pricing/preview", response_model=PriceQuote, tags=["Admin"], summary="Preview price")
def admin_price_preview(
    payload: PriceQuoteRequest, store: Store = Depends(get_store), _: Dict[str, Any] = Depends(require_admin)
) -> Dict[str, Any]:
    """Admin: the quote a customer would get for a product in the given context."""
    return quote_product(payload, store)


# =========================
# Admin: inventory
# =========================

@app.get("/admin/inventory", tags=["Admin"], summary="List inventory")
def admin_list_inventory(
    search: Optional[str] = Query(None, description="Product name or SKU"),
    low_stock_only: bool = Query(False),
    out_of_stock_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    _: Dict[str, Any] = Depends(require_admin),
) -> Dict[str, Any]:
    return inventory.list_inventory(limit, offset, search, low_stock_only, out_of_stock_only)


@app.get("/admin/inventory/low-stock", tags=["Admin"], summary="Low stock alerts")
def admin_low_stock(limit: int = Query(10, ge=1, le=100), _: Dict[str, Any] = Depends(require_admin)) -> List[Dict[str, Any]]:
    return inventory.list_low_stock(limit)


@app.post("/admin/inventory/{product_id}/adjust", tags=["Admin"], summary="Adjust stock")
def admin_adjust_inventory(
    product_id: UUID,
    payload: InventoryAdjustRequest,
    store: Store = Depends(get_store),
    _: Dict[str, Any] = Depends(require_admin),
) -> Dict[str, Any]:
    """Admin: restock (positive) or remove (negative) units with a reason; stock never goes negative."""
    return inventory.adjust_inventory(store, product_id, payload.adjustment, payload.reason)


@app.patch("/admin/inventory/{product_id}/threshold", tags=["Admin"], summary="Set low stock threshold")
def admin_set_threshold(product_id: UUID, payload: ThresholdUpdate, _: Dict[str, Any] = Depends(require_admin)) -> Dict[str, Any]:
    if not db.fetch_one("SELECT id FROM products WHERE id=%s", [product_id]):
        raise _not_found("Product")
    return db.execute_returning_one(
        """
        INSERT INTO inventory (product_id, stock_quantity, low_stock_threshold)
        VALUES (%s, 0, %s)
        ON CONFLICT (product_id) DO UPDATE SET low_stock_threshold=EXCLUDED.low_stock_threshold, updated_at=NOW()
        RETURNING *
        """,
        [product_id, payload.low_stock_threshold],
    )


@app.get("/admin/inventory/{product_id}/movements", tags=["Admin"], summary="Stock movement history")
def admin_inventory_movements(
    product_id: UUID,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    _: Dict[str, Any] = Depends(require_admin),
) -> List[Dict[str, Any]]:
    return inventory.list_movements(product_id, limit, offset)


# =========================
# Admin: orders
# =========================

@app.get("/admin/orders", tags=["Admin"], summary="List all orders")
def admin_list_orders(
    status_filter: Optional[str] = Query(None, alias="status", description="Order status or 'all'"),
    source: Optional[str] = Query(None, description="one_time, autoship or 'all'"),
    search: Optional[str] = Query(None, description="Order id fragment"),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    user_id: Optional[UUID] = Query(None, description="Only this customer's orders"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    _: Dict[str, Any] = Depends(require_admin),
) -> Dict[str, Any]:
    """Admin: paginated orders with filters."""
    return orders.list_orders(
        page=page,
        limit=limit,
        status=status_filter,
        source=source,
        search=search,
        start_date=start_date,
        end_date=end_date,
        user_id=user_id,
    )


@app.get("/admin/orders/stats", tags=["Admin"], summary="Order statistics")
def admin_order_stats(_: Dict[str, Any] = Depends(require_admin)) -> Dict[str, Any]:
    return orders.get_order_stats()


@app.get("/admin/orders/{order_id}", response_model=Order, tags=["Admin"], summary="Get order")
def admin_get_order(order_id: UUID, _: Dict[str, Any] = Depends(require_admin)) -> Dict[str, Any]:
    order = orders.get_order_with_items(order_id)
    if not order:
        raise _not_found("Order")
    return order


@app.patch("/admin/orders/{order_id}", tags=["Admin"], summary="Update order status")
def admin_update_order(
    order_id: UUID,
    payload: AdminOrderUpdate,
    store: Store = Depends(get_store),
    _: Dict[str, Any] = Depends(require_admin),
) -> Dict[str, Any]:
    """Admin: move an order along its workflow. Cancelling a pending order restocks it."""
    return orders.update_order_status(store, order_id, payload.status.value)


# =========================
# Admin: autoships
# =========================

@app.get("/admin/autoships", tags=["Admin"], summary="List autoships")
def admin_list_autoships(
    status_filter: Optional[str] = Query(None, alias="status"),
    user_id: Optional[UUID] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    _: Dict[str, Any] = Depends(require_admin),
) -> List[Dict[str, Any]]:
    return autoships.list_autoships(status_filter, user_id, limit, offset)


@app.get("/admin/autoships/stats", tags=["Admin"], summary="Autoship statistics")
def admin_autoship_stats(_: Dict[str, Any] = Depends(require_admin)) -> Dict[str, int]:
    return autoships.get_autoship_stats(datetime.now(timezone.utc).date())


@app.post("/admin/autoships/run-due", tags=["Admin"], summary="Run due autoships")
def admin_run_due_autoships(store: Store = Depends(get_store), _: Dict[str, Any] = Depends(require_admin)) -> Dict[str, Any]:
    """Admin/scheduler: place orders for every active autoship that is due."""
    return autoships.run_due_autoships(store)


@app.get("/admin/autoships/{autoship_id}", tags=["Admin"], summary="Get autoship with runs")
def admin_get_autoship(autoship_id: UUID, _: Dict[str, Any] = Depends(require_admin)) -> Dict[str, Any]:
    autoship = autoships.get_autoship_with_runs(autoship_id)
    if not autoship:
        raise _not_found("Autoship")
    return autoship


@app.post("/admin/autoships/{autoship_id}/execute", tags=["Admin"], summary="Execute autoship now")
def admin_execute_autoship(
    autoship_id: UUID, store: Store = Depends(get_store), _: Dict[str, Any] = Depends(require_admin)
) -> Dict[str, Any]:
    """Admin: run the delivery currently scheduled for this autoship."""
    autoship = store.get_autoship(autoship_id)
    if not autoship:
        raise _not_found("Autoship")
    return autoships.execute_autoship(store, autoship_id, autoship["next_run_at"])


# =========================
# Admin: dashboard
# =========================

@app.get("/admin/dashboard", tags=["Admin"], summary="Dashboard statistics")
def admin_dashboard(_: Dict[str, Any] = Depends(require_admin)) -> Dict[str, int]:
    return dashboard.get_dashboard_stats()


@app.get("/admin/dashboard/recent-orders", tags=["Admin"], summary="Recent orders")
def admin_recent_orders(limit: int = Query(10, ge=1, le=50), _: Dict[str, Any] = Depends(require_admin)) -> List[Dict[str, Any]]:
    return dashboard.get_recent_orders(limit)
