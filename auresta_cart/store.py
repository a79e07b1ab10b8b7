import logging
from decimal import Decimal
from threading import RLock
from typing import Any, List, Mapping, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from .logic import recompute, present, round_money
from .models import (
    BundleOffer,
    CartEvent,
    CartTotals,
    CartView,
    Coupon,
    EventKind,
    LineItem,
    MAX_QUANTITY,
    NewItem,
)
from .storage import CartSnapshotStore, MemoryStorage, StorageError

logger = logging.getLogger(__name__)


class CartError(Exception):
    """Base class for rejected cart operations. Nothing is mutated."""
    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(message)


class InvalidItemError(CartError):
    def __init__(self, message: str = "Invalid product data"):
        super().__init__("INVALID_ITEM", message)


class CouponRejectedError(CartError):
    @property
    def event(self) -> CartEvent:
        return CartEvent(kind=EventKind.COUPON_REJECTED, message=self.message, reason=self.code)


class CheckoutError(CartError):
    pass


class CartResult(BaseModel):
    state: CartView
    events: List[CartEvent] = Field(default_factory=list)

    @property
    def headline(self) -> Optional[CartEvent]:
        """The one event worth a toast when only one can be shown."""
        for kind in (EventKind.COUPON_SUPERSEDED, EventKind.BUNDLE_ACTIVATED):
            for event in self.events:
                if event.kind == kind:
                    return event
        return self.events[0] if self.events else None


class CartStore:
    """
    Single owner of one cart's items, applied coupon and totals.

    Every mutation runs under the store's lock, recomputes totals from
    scratch, saves the snapshot and returns a CartResult describing what
    happened. Rejected mutations raise a CartError and change nothing.
    """

    def __init__(
        self,
        storage=None,
        bundle: Optional[BundleOffer] = None,
        namespace: Optional[str] = None,
        currency: str = "₹",
    ):
        self.bundle = bundle or BundleOffer()
        self.currency = currency
        self.snapshots = CartSnapshotStore(
            storage if storage is not None else MemoryStorage(), namespace
        )
        self.lock = RLock()
        self._items: List[LineItem] = []
        self._coupon: Optional[Coupon] = None
        self._totals = CartTotals()
        self._rehydrate()

    # ---------------------------
    # Queries
    # ---------------------------

    @property
    def items(self) -> List[LineItem]:
        return [item.model_copy() for item in self._items]

    @property
    def applied_coupon(self) -> Optional[Coupon]:
        return self._coupon

    @property
    def totals(self) -> CartTotals:
        return self._totals.model_copy()

    def view(self) -> CartView:
        return present(self._items, self._coupon, self._totals)

    def is_in_cart(self, item_id: str) -> bool:
        return any(item.id == item_id for item in self._items)

    # ---------------------------
    # Mutations
    # ---------------------------

    def add_item(self, item: Union[NewItem, Mapping[str, Any]]) -> CartResult:
        try:
            if isinstance(item, NewItem):
                new = NewItem.model_validate(item.model_dump(include=set(NewItem.model_fields)))
            else:
                new = NewItem.model_validate(item)
        except ValidationError as e:
            logger.warning("Rejected invalid item %r: %s", item, e)
            raise InvalidItemError() from e

        with self.lock:
            if self.is_in_cart(new.id):
                current = next(i for i in self._items if i.id == new.id)
                if current.quantity >= MAX_QUANTITY:
                    raise InvalidItemError(f"At most {MAX_QUANTITY} of {new.name} per order")
                items = [
                    i.model_copy(update={"quantity": i.quantity + 1}) if i.id == new.id else i
                    for i in self._items
                ]
            else:
                items = self._items + [LineItem(**new.model_dump(), quantity=1)]

            logger.info("Added %s to cart %s", new.id, self.snapshots.cart_key)
            event = CartEvent(kind=EventKind.ITEM_ADDED, message=f"{new.name} added to cart!")
            return self._commit(items, self._coupon, [event])

    def remove_item(self, item_id: str) -> CartResult:
        with self.lock:
            removed = next((i for i in self._items if i.id == item_id), None)
            if removed is None:
                return CartResult(state=self.view())

            items = [i for i in self._items if i.id != item_id]
            logger.info("Removed %s from cart %s", item_id, self.snapshots.cart_key)
            event = CartEvent(
                kind=EventKind.ITEM_REMOVED, message=f"{removed.name} removed from cart"
            )
            return self._commit(items, self._coupon, [event])

    def update_quantity(self, item_id: str, quantity: int) -> CartResult:
        if quantity <= 0:
            return self.remove_item(item_id)
        if quantity > MAX_QUANTITY:
            raise InvalidItemError(f"Quantity cannot exceed {MAX_QUANTITY}")

        with self.lock:
            if not self.is_in_cart(item_id):
                return CartResult(state=self.view())

            items = [
                i.model_copy(update={"quantity": quantity}) if i.id == item_id else i
                for i in self._items
            ]
            event = CartEvent(kind=EventKind.QUANTITY_UPDATED, message="Cart updated")
            return self._commit(items, self._coupon, [event])

    def clear_cart(self) -> CartResult:
        with self.lock:
            self._items = []
            self._coupon = None
            self._totals = CartTotals()
            self._persist()
            logger.info("Cleared cart %s", self.snapshots.cart_key)
            event = CartEvent(kind=EventKind.CART_CLEARED, message="Cart cleared")
            return CartResult(state=self.view(), events=[event])

    def apply_coupon(self, coupon: Coupon) -> CartResult:
        """
        Apply an already-validated coupon.

        Looking the code up and checking its validity window and usage cap
        is the caller's job (see coupons.validate_coupon).
        """
        with self.lock:
            if self._totals.bundleActive:
                self._reject(
                    "BUNDLE_ACTIVE",
                    "Coupons can't be combined with the special offer",
                )
            if self._totals.subtotal < coupon.minOrderAmount:
                self._reject(
                    "MIN_ORDER",
                    f"Minimum order amount of {self._money(coupon.minOrderAmount)} required",
                )

            result = self._commit(self._items, coupon, [])
            saved = self._money(self._totals.couponDiscount)
            result.events.insert(0, CartEvent(
                kind=EventKind.COUPON_APPLIED,
                message=f'Coupon "{coupon.code}" applied! You saved {saved}',
            ))
            logger.info("Applied coupon %s to cart %s", coupon.code, self.snapshots.cart_key)
            return result

    def remove_coupon(self) -> CartResult:
        with self.lock:
            if self._coupon is None:
                return CartResult(state=self.view())
            logger.info("Removed coupon %s from cart %s", self._coupon.code, self.snapshots.cart_key)
            event = CartEvent(kind=EventKind.COUPON_REMOVED, message="Coupon removed")
            return self._commit(self._items, None, [event])

    # ---------------------------
    # Internals
    # ---------------------------

    def _commit(
        self,
        items: List[LineItem],
        coupon: Optional[Coupon],
        events: List[CartEvent],
    ) -> CartResult:
        was_active = self._totals.bundleActive
        totals = recompute(items, coupon, self.bundle)

        if totals.bundleActive and coupon is not None:
            events.append(CartEvent(
                kind=EventKind.COUPON_SUPERSEDED,
                message=f'Coupon "{coupon.code}" removed: the special offer already applies',
            ))
            logger.info("Coupon %s superseded by special offer", coupon.code)
            coupon = None

        if totals.bundleActive and not was_active:
            events.append(CartEvent(
                kind=EventKind.BUNDLE_ACTIVATED,
                message=(
                    f"Special Offer Applied! Buy any {self.bundle.units} products "
                    f"for {self._money(self.bundle.price)}"
                ),
            ))
        elif was_active and not totals.bundleActive:
            events.append(CartEvent(
                kind=EventKind.BUNDLE_DEACTIVATED, message="Special offer no longer applies"
            ))

        # presented before anything is assigned so a failure leaves the cart as it was
        view = present(items, coupon, totals)
        self._items = list(items)
        self._coupon = coupon
        self._totals = totals
        logger.debug("Recomputed cart %s: %s", self.snapshots.cart_key, totals)
        self._persist()
        return CartResult(state=view, events=events)

    def _rehydrate(self) -> None:
        items, coupon = self.snapshots.load()
        if not items and coupon is None:
            return
        self._items = items
        self._coupon = coupon
        self._totals = recompute(items, coupon, self.bundle)
        if self._totals.bundleActive and coupon is not None:
            self._coupon = None
            self._persist()

    def _persist(self) -> None:
        try:
            self.snapshots.save(self._items, self._coupon, self._totals.couponDiscount)
        except (StorageError, ValueError, TypeError):
            # the in-memory cart stays authoritative for the session
            logger.exception("Could not save cart %s", self.snapshots.cart_key)

    def _reject(self, code: str, message: str) -> None:
        logger.warning("Coupon rejected for cart %s: %s", self.snapshots.cart_key, code)
        raise CouponRejectedError(code, message)

    def _money(self, value: Decimal) -> str:
        return f"{self.currency}{round_money(value)}"
