import logging
import os
import tempfile
from decimal import Decimal
from pathlib import Path
from threading import Lock
from typing import Dict, List, Optional, Tuple
from urllib.parse import quote

from pydantic import BaseModel, TypeAdapter, ValidationError

from .models import Coupon, LineItem, Order

logger = logging.getLogger(__name__)

CART_KEY = "auresta-cart"
COUPON_KEY = "auresta-coupon"


class StorageError(Exception):
    """Raised when a storage backend cannot read or write a value."""


class DuplicateCouponError(Exception):
    """Raised when a coupon code is already taken."""


# ---------------------------
# Key/value backends
# ---------------------------

class MemoryStorage:
    def __init__(self):
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStorage:
    """One file per key under `directory`; writes replace the file atomically."""

    def __init__(self, directory):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.directory / (quote(key, safe="") + ".json")

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"could not read {key!r}: {e}") from e

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        tmp = None
        try:
            fd, tmp = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(value)
            os.replace(tmp, path)
        except OSError as e:
            if tmp is not None:
                Path(tmp).unlink(missing_ok=True)
            raise StorageError(f"could not write {key!r}: {e}") from e

    def remove(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"could not remove {key!r}: {e}") from e


# ---------------------------
# Persisted cart snapshot
# ---------------------------

class CouponSnapshot(BaseModel):
    coupon: Coupon
    discount: Decimal


_items_adapter = TypeAdapter(List[LineItem])


class CartSnapshotStore:
    """
    Reads and writes one cart's items and applied coupon under two keys.

    A value that cannot be parsed is treated as absent, and both keys are
    cleared so the same bad entry is not read again.
    """

    def __init__(self, storage, namespace: Optional[str] = None):
        self.storage = storage
        suffix = f":{namespace}" if namespace else ""
        self.cart_key = CART_KEY + suffix
        self.coupon_key = COUPON_KEY + suffix

    def save(self, items: List[LineItem], coupon: Optional[Coupon], discount: Decimal) -> None:
        self.storage.set(self.cart_key, _items_adapter.dump_json(items).decode())
        if coupon is None:
            self.storage.remove(self.coupon_key)
        else:
            snapshot = CouponSnapshot(coupon=coupon, discount=discount)
            self.storage.set(self.coupon_key, snapshot.model_dump_json())

    def load(self) -> Tuple[List[LineItem], Optional[Coupon]]:
        try:
            raw_items = self.storage.get(self.cart_key)
            raw_coupon = self.storage.get(self.coupon_key)
        except StorageError:
            logger.exception("Could not read saved cart %s", self.cart_key)
            return [], None

        try:
            items = _items_adapter.validate_json(raw_items) if raw_items else []
            coupon = None
            if raw_coupon:
                coupon = CouponSnapshot.model_validate_json(raw_coupon).coupon
        except ValidationError as e:
            logger.warning("Discarding corrupt saved cart %s: %s", self.cart_key, e)
            self.clear()
            return [], None

        if len({item.id for item in items}) != len(items):
            logger.warning("Discarding saved cart %s with duplicate items", self.cart_key)
            self.clear()
            return [], None

        return items, coupon

    def clear(self) -> None:
        try:
            self.storage.remove(self.cart_key)
            self.storage.remove(self.coupon_key)
        except StorageError:
            logger.exception("Could not clear saved cart %s", self.cart_key)


# ---------------------------
# In-memory collaborators
# ---------------------------

class CouponRepository:
    """Coupons keyed by their canonical upper-case code."""

    def __init__(self):
        self._coupons: Dict[str, Coupon] = {}
        self._lock = Lock()

    def get(self, code: str) -> Optional[Coupon]:
        return self._coupons.get(code.strip().upper())

    def add(self, coupon: Coupon) -> Coupon:
        with self._lock:
            if coupon.code in self._coupons:
                raise DuplicateCouponError(coupon.code)
            self._coupons[coupon.code] = coupon
        return coupon

    def list(self) -> List[Coupon]:
        return list(self._coupons.values())

    def increment_usage(self, code: str) -> None:
        with self._lock:
            coupon = self._coupons.get(code.strip().upper())
            if coupon is not None:
                self._coupons[coupon.code] = coupon.model_copy(
                    update={"usedCount": coupon.usedCount + 1}
                )


class OrderRepository:
    def __init__(self):
        self._orders: Dict[str, Order] = {}

    def add(self, order: Order) -> Order:
        self._orders[order.id] = order
        return order

    def get(self, order_id: str) -> Optional[Order]:
        return self._orders.get(order_id)

    def list(self) -> List[Order]:
        return list(self._orders.values())
