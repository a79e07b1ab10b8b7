import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Optional

from .models import CartEvent, CheckoutRequest, EventKind, Order
from .storage import CouponRepository, OrderRepository
from .store import CartStore, CheckoutError

logger = logging.getLogger(__name__)


def place_order(
    store: CartStore,
    orders: OrderRepository,
    coupons: CouponRepository,
    request: CheckoutRequest,
    session_id: Optional[str] = None,
) -> Order:
    """
    Record the cart as a pending order, count the coupon use, empty the cart.

    The amount charged is the cart's final total at this moment; the
    discount recorded is whichever of the bundle or coupon discount applied.
    """
    with store.lock:
        return _place_order(store, orders, coupons, request, session_id)


def _place_order(store, orders, coupons, request, session_id):
    view = store.view()
    if not view.items:
        raise CheckoutError("EMPTY_CART", "Your cart is empty")

    if view.bundleDiscount > 0:
        discount_kind, discount = "bundle", view.bundleDiscount
    elif view.couponDiscount > 0:
        discount_kind, discount = "coupon", view.couponDiscount
    else:
        discount_kind, discount = None, view.bundleDiscount

    # a coupon left under its minimum order amount is not redeemed
    coupon = view.appliedCoupon if discount_kind == "coupon" else None
    order = Order(
        id=str(uuid.uuid4()),
        sessionId=session_id,
        userId=request.userId,
        items=view.items,
        subtotal=view.subtotal,
        totalAmount=view.finalTotal,
        discountAmount=discount,
        discountKind=discount_kind,
        couponCode=coupon.code if coupon else None,
        shippingAddress=request.shippingAddress,
        paymentMethod=request.paymentMethod,
        paymentId="COD" if request.paymentMethod == "cod" else f"PAY_{int(time.time() * 1000)}",
        createdAt=datetime.now(timezone.utc),
    )
    orders.add(order)

    if coupon is not None:
        coupons.increment_usage(coupon.code)

    store.clear_cart()
    logger.info("Placed order %s for %s", order.id, order.totalAmount)
    return order


def order_placed_event(order: Order) -> CartEvent:
    return CartEvent(
        kind=EventKind.ORDER_PLACED,
        message=f"Order placed successfully! Order #{order.id[:8]}",
    )
