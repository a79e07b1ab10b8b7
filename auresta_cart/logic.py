from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Sequence, Tuple

from .models import BundleOffer, CartTotals, CartView, Coupon, LineItem

ZERO = Decimal("0")
CENT = Decimal("0.01")


def compute_subtotal(items: Sequence[LineItem]) -> Decimal:
    return sum((item.unitPrice * item.quantity for item in items), ZERO)


def compute_items_count(items: Sequence[LineItem]) -> int:
    return sum(item.quantity for item in items)


def split_bundle_cost(items: Sequence[LineItem], units: int) -> Tuple[Decimal, Decimal]:
    """
    Walk the cart in order and split its cost at the `units` cutoff.

    Returns (cost of the first `units` units, cost of everything after).
    """
    first_cost = ZERO
    additional_cost = ZERO
    remaining = units
    for item in items:
        taken = min(remaining, item.quantity)
        first_cost += item.unitPrice * taken
        additional_cost += item.unitPrice * (item.quantity - taken)
        remaining -= taken
    return first_cost, additional_cost


def compute_coupon_discount(coupon: Coupon, subtotal: Decimal) -> Decimal:
    if subtotal < coupon.minOrderAmount:
        return ZERO

    if coupon.discountType == "percentage":
        discount = subtotal * coupon.discountValue / Decimal("100")
    else:
        discount = coupon.discountValue

    # discount cannot exceed subtotal and cannot be negative
    return max(ZERO, min(discount, subtotal))


def recompute(
    items: Sequence[LineItem],
    coupon: Optional[Coupon],
    bundle: BundleOffer,
) -> CartTotals:
    """
    Derive every total of a cart from its items and applied coupon.

    The bundle offer and the coupon are alternatives: the bundle is checked
    first and, when active, the coupon contributes nothing.
    """
    subtotal = compute_subtotal(items)
    item_count = compute_items_count(items)

    if item_count >= bundle.units:
        first_cost, additional_cost = split_bundle_cost(items, bundle.units)
        # the flat price never raises what the customer pays
        if first_cost > bundle.price:
            return CartTotals(
                subtotal=subtotal,
                itemCount=item_count,
                bundleActive=True,
                bundleDiscount=first_cost - bundle.price,
                couponDiscount=ZERO,
                finalTotal=bundle.price + additional_cost,
            )

    coupon_discount = ZERO
    if coupon is not None:
        coupon_discount = compute_coupon_discount(coupon, subtotal)

    return CartTotals(
        subtotal=subtotal,
        itemCount=item_count,
        bundleActive=False,
        bundleDiscount=ZERO,
        couponDiscount=coupon_discount,
        finalTotal=subtotal - coupon_discount,
    )


def round_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def present(
    items: Sequence[LineItem],
    coupon: Optional[Coupon],
    totals: CartTotals,
) -> CartView:
    subtotal = round_money(totals.subtotal)
    bundle_discount = round_money(totals.bundleDiscount)
    coupon_discount = round_money(totals.couponDiscount)
    # derived from the rounded parts so the displayed sum adds up
    final_total = round_money(max(ZERO, subtotal - bundle_discount - coupon_discount))
    return CartView(
        items=[item.model_copy() for item in items],
        appliedCoupon=coupon,
        subtotal=subtotal,
        itemCount=totals.itemCount,
        bundleActive=totals.bundleActive,
        bundleDiscount=bundle_discount,
        couponDiscount=coupon_discount,
        finalTotal=final_total,
    )


def is_within_date_range(coupon: Coupon, today: Optional[date] = None) -> bool:
    if today is None:
        today = date.today()
    return coupon.validFrom <= today <= coupon.validUntil


def has_remaining_usage(coupon: Coupon) -> bool:
    if coupon.maxUses is None:
        return True
    return coupon.usedCount < coupon.maxUses
