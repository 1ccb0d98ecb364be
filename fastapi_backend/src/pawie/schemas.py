from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, PositiveInt, conint


class UserRole(str, Enum):
    user = "user"
    admin = "admin"


class OrderStatus(str, Enum):
    pending = "pending"
    paid = "paid"
    processing = "processing"
    shipped = "shipped"
    delivered = "delivered"
    cancelled = "cancelled"
    refunded = "refunded"


class OrderSource(str, Enum):
    one_time = "one_time"
    autoship = "autoship"


class AutoshipStatus(str, Enum):
    active = "active"
    paused = "paused"
    cancelled = "cancelled"


class DiscountKind(str, Enum):
    promo = "promo"
    autoship = "autoship"


class DiscountType(str, Enum):
    percentage = "percentage"
    fixed = "fixed"


class StackPolicy(str, Enum):
    best_only = "best_only"
    stack = "stack"


class APIMessage(BaseModel):
    message: str = Field(..., description="Human readable message")


# =========================
# Auth
# =========================


class TokenResponse(BaseModel):
    access_token: str = Field(..., description="JWT access token")
    token_type: str = Field("bearer", description="Token type (bearer)")
    user_id: UUID
    email: EmailStr
    role: UserRole
    full_name: Optional[str] = None


class SignupRequest(BaseModel):
    email: EmailStr = Field(..., description="User email address")
    password: str = Field(..., min_length=8, description="Password (min 8 chars)")
    full_name: str = Field(..., min_length=1, description="Full name")
    phone: Optional[str] = Field(None, description="Phone number")


class LoginRequest(BaseModel):
    email: EmailStr = Field(..., description="User email address")
    password: str = Field(..., description="Password")


# =========================
# Catalog
# =========================


class Product(BaseModel):
    id: UUID
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    sku: Optional[str] = None
    base_price_idr: Optional[int] = None
    published: bool
    autoship_eligible: bool
    primary_image_path: Optional[str] = None
    family_id: Optional[UUID] = None
    detail_template_id: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime
    stock_quantity: Optional[int] = None


class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    category: Optional[str] = None
    sku: Optional[str] = None
    base_price_idr: Optional[conint(ge=0)] = Field(None, description="Price in IDR")
    autoship_eligible: bool = False
    family_id: Optional[UUID] = None
    detail_template_id: Optional[UUID] = None
    variant_value_ids: List[UUID] = Field(default_factory=list, description="One value per family dimension")
    tag_ids: List[UUID] = Field(default_factory=list)


class ProductUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    sku: Optional[str] = None
    base_price_idr: Optional[conint(ge=0)] = None
    autoship_eligible: Optional[bool] = None
    family_id: Optional[UUID] = None
    detail_template_id: Optional[UUID] = None


class PublishUpdate(BaseModel):
    published: bool


class SearchResult(Product):
    relevance: float


class Tag(BaseModel):
    id: UUID
    name: str
    slug: str
    created_at: datetime


class TagCreate(BaseModel):
    name: str = Field(..., min_length=1)
    slug: Optional[str] = Field(None, description="Generated from the name when omitted")


class TagUpdate(BaseModel):
    name: Optional[str] = None
    slug: Optional[str] = None


class TagAssignment(BaseModel):
    tag_ids: List[UUID] = Field(default_factory=list)


class ProductImage(BaseModel):
    id: UUID
    product_id: UUID
    path: str
    alt_text: Optional[str] = None
    sort_order: int
    is_primary: bool
    created_at: datetime
    url: Optional[str] = None


class SortOrderItem(BaseModel):
    id: UUID
    sort_order: int


class SortOrderUpdate(BaseModel):
    items: List[SortOrderItem]


# =========================
# Families / variants
# =========================


class Family(BaseModel):
    id: UUID
    name: str
    description: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class FamilyCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None


class FamilyUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None


class VariantValue(BaseModel):
    id: UUID
    dimension_id: UUID
    value: str
    sort_order: int
    created_at: datetime


class VariantValueCreate(BaseModel):
    value: str = Field(..., min_length=1)
    sort_order: int = 0


class VariantValueUpdate(BaseModel):
    value: Optional[str] = None
    sort_order: Optional[int] = None


class VariantDimension(BaseModel):
    id: UUID
    family_id: UUID
    name: str
    sort_order: int
    created_at: datetime
    values: List[VariantValue] = []


class VariantDimensionCreate(BaseModel):
    name: str = Field(..., min_length=1)
    sort_order: int = 0


class VariantDimensionUpdate(BaseModel):
    name: Optional[str] = None
    sort_order: Optional[int] = None


class FamilyDetail(Family):
    dimensions: List[VariantDimension] = []


class VariantValueAssignment(BaseModel):
    value_ids: List[UUID] = Field(default_factory=list)


class VariantResolveRequest(BaseModel):
    value_ids: List[UUID]


class ValuesAvailabilityRequest(BaseModel):
    dimension_id: UUID
    value_ids: List[UUID]
    current_selections: Dict[UUID, UUID] = Field(
        default_factory=dict, description="dimension_id -> value_id, excluding the dimension being checked"
    )


class FirstAvailableRequest(BaseModel):
    changed_dimension_id: UUID
    new_value_id: UUID
    current_selections: Dict[UUID, UUID] = Field(default_factory=dict)


# =========================
# Detail sections
# =========================


class DetailTemplate(BaseModel):
    id: UUID
    name: str
    description: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class DetailTemplateCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None


class DetailTemplateUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None


class SectionCreate(BaseModel):
    title: str = Field(..., min_length=1)
    content: str = ""
    sort_order: int = 0
    template_section_id: Optional[UUID] = Field(None, description="Product sections only: the template section overridden")


class SectionUpdate(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    sort_order: Optional[int] = None


class DetailSection(BaseModel):
    id: UUID
    title: str
    content: Optional[str] = None
    sort_order: int
    source: str = Field(..., description="template, override or custom")


# =========================
# Pricing / discounts
# =========================


class AppliedDiscount(BaseModel):
    discount_id: UUID
    name: str
    type: DiscountType
    value: int
    amount: int


class PriceQuote(BaseModel):
    base_price_idr: int
    final_price_idr: int
    discount_total_idr: int
    discounts_applied: List[AppliedDiscount] = []
    line_total_idr: int


class PriceQuoteRequest(BaseModel):
    product_id: UUID
    quantity: PositiveInt = 1
    is_autoship: bool = False
    cart_total_idr: Optional[conint(ge=0)] = None
    coupon_code: Optional[str] = None


class CartLine(BaseModel):
    product_id: UUID
    quantity: PositiveInt = Field(..., description="Quantity (>0)")


class CartQuoteRequest(BaseModel):
    items: List[CartLine] = Field(..., min_length=1)
    is_autoship: bool = False


class CartLineQuote(BaseModel):
    product_id: UUID
    quantity: int
    pricing: PriceQuote


class CartQuote(BaseModel):
    items: List[CartLineQuote]
    subtotal_idr: int
    discount_total_idr: int
    total_idr: int


class Discount(BaseModel):
    id: UUID
    name: str
    kind: DiscountKind
    discount_type: DiscountType
    value: int
    active: bool
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    min_order_subtotal_idr: Optional[int] = None
    stack_policy: StackPolicy
    usage_limit: Optional[int] = None
    usage_count: int
    created_at: datetime
    updated_at: datetime


class DiscountCreate(BaseModel):
    name: str = Field(..., min_length=1)
    kind: DiscountKind
    discount_type: DiscountType
    value: PositiveInt
    active: bool = False
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    min_order_subtotal_idr: Optional[conint(ge=0)] = None
    stack_policy: StackPolicy = StackPolicy.best_only
    usage_limit: Optional[PositiveInt] = None


class DiscountUpdate(BaseModel):
    name: Optional[str] = None
    kind: Optional[DiscountKind] = None
    discount_type: Optional[DiscountType] = None
    value: Optional[PositiveInt] = None
    active: Optional[bool] = None
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    min_order_subtotal_idr: Optional[conint(ge=0)] = None
    stack_policy: Optional[StackPolicy] = None
    usage_limit: Optional[PositiveInt] = None


class DiscountActiveUpdate(BaseModel):
    active: bool


class DiscountTargetsUpdate(BaseModel):
    applies_to_all_products: bool = False
    product_ids: List[UUID] = Field(default_factory=list)


# =========================
# Customer: addresses / pets
# =========================


class Address(BaseModel):
    id: UUID
    user_id: UUID
    label: Optional[str] = None
    address_line: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None
    postal_code: Optional[str] = None
    is_default: bool
    created_at: datetime


class AddressCreate(BaseModel):
    label: Optional[str] = None
    address_line: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    province: Optional[str] = None
    postal_code: Optional[str] = None
    is_default: bool = False


class AddressUpdate(BaseModel):
    label: Optional[str] = None
    address_line: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None
    postal_code: Optional[str] = None
    is_default: Optional[bool] = None


class Pet(BaseModel):
    id: UUID
    user_id: UUID
    name: Optional[str] = None
    species: Optional[str] = None
    breed: Optional[str] = None
    age: Optional[int] = None
    weight: Optional[float] = None
    activity_level: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class PetCreate(BaseModel):
    name: str = Field(..., min_length=1)
    species: Optional[str] = None
    breed: Optional[str] = None
    age: Optional[conint(ge=0)] = None
    weight: Optional[float] = Field(None, ge=0)
    activity_level: Optional[str] = None
    notes: Optional[str] = None


class PetUpdate(BaseModel):
    name: Optional[str] = None
    species: Optional[str] = None
    breed: Optional[str] = None
    age: Optional[conint(ge=0)] = None
    weight: Optional[float] = Field(None, ge=0)
    activity_level: Optional[str] = None
    notes: Optional[str] = None


# =========================
# Orders
# =========================


class OrderCreateRequest(BaseModel):
    items: List[CartLine] = Field(..., description="Products and quantities to order")
    address_id: Optional[UUID] = Field(None, description="Existing address id to ship to")


class OrderItem(BaseModel):
    id: UUID
    order_id: UUID
    product_id: UUID
    quantity: int
    unit_base_price_idr: int
    unit_final_price_idr: int
    discount_total_idr: int
    discount_breakdown: List[AppliedDiscount] = []
    created_at: datetime
    product_name: Optional[str] = None
    product_sku: Optional[str] = None
    primary_image_path: Optional[str] = None


class Order(BaseModel):
    id: UUID
    user_id: UUID
    status: OrderStatus
    source: OrderSource
    subtotal_idr: int
    discount_total_idr: int
    total_idr: int
    shipping_address_id: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime
    items: List[OrderItem] = []


class AdminOrderUpdate(BaseModel):
    status: OrderStatus = Field(..., description="New order status")


# =========================
# Inventory
# =========================


class InventoryAdjustRequest(BaseModel):
    adjustment: int = Field(..., description="Positive to restock, negative to remove")
    reason: str = Field(..., description="Why the stock changed")


class ThresholdUpdate(BaseModel):
    low_stock_threshold: conint(ge=0)


# =========================
# Autoships
# =========================


class Autoship(BaseModel):
    id: UUID
    user_id: UUID
    pet_id: Optional[UUID] = None
    product_id: UUID
    quantity: int
    frequency_weeks: int
    next_run_at: datetime
    status: AutoshipStatus
    created_at: datetime
    updated_at: datetime
    product_name: Optional[str] = None
    pet_name: Optional[str] = None


class AutoshipCreate(BaseModel):
    product_id: UUID
    quantity: int = Field(..., description="Units per delivery")
    frequency_weeks: int = Field(..., description="Weeks between deliveries")
    pet_id: Optional[UUID] = None
    start_date: Optional[datetime] = Field(None, description="First delivery; one frequency from now when omitted")


class AutoshipCheckoutRequest(BaseModel):
    product_id: UUID
    quantity: int
    frequency_weeks: int
    address_id: Optional[UUID] = None
    pet_id: Optional[UUID] = None


class AutoshipUpdate(BaseModel):
    quantity: Optional[int] = None
    frequency_weeks: Optional[int] = None


class AutoshipResume(BaseModel):
    next_run_at: Optional[datetime] = None
