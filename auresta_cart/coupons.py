"""
Coupon lookup and validation.

Runs before the cart store sees a coupon: the store only checks the
special offer and the minimum order amount.
"""
import logging
from datetime import date
from typing import Optional

from .logic import has_remaining_usage
from .models import Coupon
from .storage import CouponRepository
from .store import CartResult, CartStore, CouponRejectedError

logger = logging.getLogger(__name__)


def validate_coupon(
    repo: CouponRepository,
    code: str,
    today: Optional[date] = None,
) -> Coupon:
    """
    Resolve `code` to a coupon that may be applied today.

    Raises:
        CouponRejectedError: with code EMPTY_CODE, NOT_FOUND, INACTIVE,
            NOT_STARTED, EXPIRED or EXHAUSTED
    """
    code = code.strip().upper()
    if not code:
        raise CouponRejectedError("EMPTY_CODE", "Please enter a coupon code")

    coupon = repo.get(code)
    if coupon is None:
        raise CouponRejectedError("NOT_FOUND", "Invalid or expired coupon code")

    if not coupon.isActive:
        raise CouponRejectedError("INACTIVE", "Invalid or expired coupon code")

    if today is None:
        today = date.today()
    if today < coupon.validFrom:
        raise CouponRejectedError("NOT_STARTED", "This coupon is not yet active")
    if today > coupon.validUntil:
        raise CouponRejectedError("EXPIRED", "Coupon has expired")

    if not has_remaining_usage(coupon):
        raise CouponRejectedError("EXHAUSTED", "Coupon usage limit exceeded")

    return coupon


def apply_coupon_code(
    repo: CouponRepository,
    store: CartStore,
    code: str,
    today: Optional[date] = None,
) -> CartResult:
    try:
        coupon = validate_coupon(repo, code, today)
    except CouponRejectedError as e:
        logger.warning("Coupon %r rejected: %s", code, e.code)
        raise
    return store.apply_coupon(coupon)
