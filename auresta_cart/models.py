from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

# caps keep every total well inside the default decimal context
MAX_UNIT_PRICE = Decimal("10000000")
MAX_QUANTITY = 10000


class NewItem(BaseModel):
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    unitPrice: Decimal = Field(ge=0, le=MAX_UNIT_PRICE)
    imageRef: str = ""
    category: str = ""

    @field_validator("id", "name")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v

    @field_validator("unitPrice")
    @classmethod
    def finite_price(cls, v: Decimal) -> Decimal:
        if not v.is_finite():
            raise ValueError("must be a finite number")
        return v


class LineItem(NewItem):
    quantity: int = Field(ge=1, le=MAX_QUANTITY)


class Coupon(BaseModel):
    code: str
    description: str = ""
    discountType: str  # "percentage" or "fixed"
    discountValue: Decimal = Field(ge=0)
    minOrderAmount: Decimal = Decimal("0")

    validFrom: date
    validUntil: date

    maxUses: Optional[int] = None  # None = unlimited
    usedCount: int = 0
    isActive: bool = True

    @field_validator("code")
    @classmethod
    def canonical_code(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("discountType")
    @classmethod
    def known_type(cls, v: str) -> str:
        v = v.lower()
        if v not in ("percentage", "fixed"):
            raise ValueError("discountType must be 'percentage' or 'fixed'")
        return v


class BundleOffer(BaseModel):
    # first `units` units of the cart for a flat `price`
    price: Decimal = Decimal("999")
    units: int = Field(default=3, ge=1)


class CartTotals(BaseModel):
    subtotal: Decimal = Decimal("0")
    itemCount: int = 0
    bundleActive: bool = False
    bundleDiscount: Decimal = Decimal("0")
    couponDiscount: Decimal = Decimal("0")
    finalTotal: Decimal = Decimal("0")


class EventKind(str, Enum):
    ITEM_ADDED = "ITEM_ADDED"
    ITEM_REMOVED = "ITEM_REMOVED"
    QUANTITY_UPDATED = "QUANTITY_UPDATED"
    CART_CLEARED = "CART_CLEARED"
    BUNDLE_ACTIVATED = "BUNDLE_ACTIVATED"
    BUNDLE_DEACTIVATED = "BUNDLE_DEACTIVATED"
    COUPON_APPLIED = "COUPON_APPLIED"
    COUPON_REJECTED = "COUPON_REJECTED"
    COUPON_REMOVED = "COUPON_REMOVED"
    COUPON_SUPERSEDED = "COUPON_SUPERSEDED"
    ORDER_PLACED = "ORDER_PLACED"


class CartEvent(BaseModel):
    kind: EventKind
    message: str
    reason: Optional[str] = None


class CartView(BaseModel):
    """Presentation copy of a cart: money rounded to two places."""
    items: List[LineItem]
    appliedCoupon: Optional[Coupon] = None
    subtotal: Decimal
    itemCount: int
    bundleActive: bool
    bundleDiscount: Decimal
    couponDiscount: Decimal
    finalTotal: Decimal


# ---------------------------
# Checkout
# ---------------------------

class ShippingAddress(BaseModel):
    firstName: str
    lastName: str
    email: str
    phone: str
    address: str
    city: str
    state: str
    pincode: str


class CheckoutRequest(BaseModel):
    shippingAddress: ShippingAddress
    paymentMethod: str = "cod"  # "card", "upi" or "cod"
    userId: Optional[str] = None

    @field_validator("paymentMethod")
    @classmethod
    def known_method(cls, v: str) -> str:
        v = v.lower()
        if v not in ("card", "upi", "cod"):
            raise ValueError("paymentMethod must be 'card', 'upi' or 'cod'")
        return v


class Order(BaseModel):
    id: str
    sessionId: Optional[str] = None
    userId: Optional[str] = None
    status: str = "pending"
    items: List[LineItem]
    subtotal: Decimal
    totalAmount: Decimal
    discountAmount: Decimal
    discountKind: Optional[str] = None  # "bundle", "coupon" or None
    couponCode: Optional[str] = None
    shippingAddress: ShippingAddress
    paymentMethod: str
    paymentId: str
    createdAt: datetime


# ---------------------------
# HTTP bodies
# ---------------------------

class UpdateQuantityRequest(BaseModel):
    quantity: int


class ApplyCouponRequest(BaseModel):
    code: str


class CartResponse(BaseModel):
    cart: CartView
    notifications: List[CartEvent] = Field(default_factory=list)


class CheckoutResponse(BaseModel):
    order: Order
    notifications: List[CartEvent] = Field(default_factory=list)
