import logging
from collections import OrderedDict
from contextlib import contextmanager
from threading import Lock
from typing import Dict, Iterator, List, Optional

from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from .checkout import order_placed_event, place_order
from .config import Settings, get_settings
from .coupons import apply_coupon_code
from .models import (
    ApplyCouponRequest,
    CartResponse,
    CheckoutRequest,
    CheckoutResponse,
    Coupon,
    Order,
    UpdateQuantityRequest,
)
from .storage import (
    CouponRepository,
    DuplicateCouponError,
    JsonFileStorage,
    MemoryStorage,
    OrderRepository,
)
from .store import CartError, CartResult, CartStore, CouponRejectedError

logger = logging.getLogger(__name__)


class CartSessions:
    """
    Live CartStores by session id, all backed by the same storage.

    At most `max_sessions` stores are kept; the least recently used idle
    one is evicted first and rehydrates from storage on its next request.
    A store is only ever evicted while no request holds it, so one
    session never has two stores mutating it at once. Empty carts are
    dropped as soon as their request finishes.
    """

    def __init__(self, storage, settings: Settings):
        self.storage = storage
        self.settings = settings
        self.max_sessions = settings.MAX_SESSIONS
        self._stores: "OrderedDict[str, CartStore]" = OrderedDict()
        self._in_use: Dict[str, int] = {}
        self._lock = Lock()

    def __len__(self) -> int:
        return len(self._stores)

    @contextmanager
    def use(self, session_id: str) -> Iterator[CartStore]:
        with self._lock:
            store = self._stores.get(session_id)
            if store is None:
                store = CartStore(
                    storage=self.storage,
                    bundle=self.settings.bundle,
                    namespace=session_id,
                    currency=self.settings.CURRENCY_SYMBOL,
                )
                self._stores[session_id] = store
            self._stores.move_to_end(session_id)
            self._in_use[session_id] = self._in_use.get(session_id, 0) + 1
            self._evict()
        try:
            yield store
        finally:
            with self._lock:
                self._in_use[session_id] -= 1
                if not self._in_use[session_id]:
                    del self._in_use[session_id]
                    if not store.items and store.applied_coupon is None:
                        self._stores.pop(session_id, None)

    def _evict(self) -> None:
        for session_id in list(self._stores):
            if len(self._stores) <= self.max_sessions:
                return
            if session_id not in self._in_use:
                del self._stores[session_id]
                logger.debug("Evicted cart session %s", session_id)


def _respond(result: CartResult) -> CartResponse:
    return CartResponse(cart=result.state, notifications=result.events)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.LOG_LEVEL)

    storage = JsonFileStorage(settings.STORAGE_DIR) if settings.STORAGE_DIR else MemoryStorage()
    sessions = CartSessions(storage, settings)
    coupons = CouponRepository()
    orders = OrderRepository()

    app = FastAPI(title=settings.APP_NAME)

    @app.exception_handler(CartError)
    async def cart_error_handler(request: Request, exc: CartError):
        status_code = 404 if exc.code == "NOT_FOUND" else 400
        content = {"detail": {"code": exc.code, "message": exc.message}}
        if isinstance(exc, CouponRejectedError):
            content["notifications"] = [exc.event.model_dump(mode="json")]
        return JSONResponse(status_code=status_code, content=content)

    def check_admin(api_key: Optional[str]) -> None:
        if settings.ADMIN_API_KEY and api_key != settings.ADMIN_API_KEY:
            raise HTTPException(status_code=401, detail="Invalid API key")

    @app.get("/health")
    def health_check():
        return {"status": "ok"}

    # ---------------------------
    # Coupons
    # ---------------------------

    @app.post("/coupons", response_model=Coupon)
    def create_coupon(coupon: Coupon, x_api_key: Optional[str] = Header(default=None)):
        check_admin(x_api_key)
        try:
            coupons.add(coupon)
        except DuplicateCouponError:
            raise HTTPException(status_code=409, detail="Coupon code already exists")
        logger.info("Created coupon %s", coupon.code)
        return coupon

    @app.get("/coupons", response_model=List[Coupon])
    def list_coupons():
        return coupons.list()

    # ---------------------------
    # Carts
    # ---------------------------

    @app.get("/carts/{session_id}", response_model=CartResponse)
    def get_cart(session_id: str):
        with sessions.use(session_id) as store:
            return CartResponse(cart=store.view())

    @app.post("/carts/{session_id}/items", response_model=CartResponse)
    def add_item(session_id: str, item: dict):
        # validated by the store so bad payloads surface as INVALID_ITEM
        with sessions.use(session_id) as store:
            return _respond(store.add_item(item))

    @app.put("/carts/{session_id}/items/{item_id}", response_model=CartResponse)
    def update_quantity(session_id: str, item_id: str, body: UpdateQuantityRequest):
        with sessions.use(session_id) as store:
            return _respond(store.update_quantity(item_id, body.quantity))

    @app.delete("/carts/{session_id}/items/{item_id}", response_model=CartResponse)
    def remove_item(session_id: str, item_id: str):
        with sessions.use(session_id) as store:
            return _respond(store.remove_item(item_id))

    @app.delete("/carts/{session_id}", response_model=CartResponse)
    def clear_cart(session_id: str):
        with sessions.use(session_id) as store:
            return _respond(store.clear_cart())

    @app.post("/carts/{session_id}/coupon", response_model=CartResponse)
    def apply_coupon(session_id: str, body: ApplyCouponRequest):
        with sessions.use(session_id) as store:
            return _respond(apply_coupon_code(coupons, store, body.code))

    @app.delete("/carts/{session_id}/coupon", response_model=CartResponse)
    def remove_coupon(session_id: str):
        with sessions.use(session_id) as store:
            return _respond(store.remove_coupon())

    # ---------------------------
    # Checkout
    # ---------------------------

    @app.post("/carts/{session_id}/checkout", response_model=CheckoutResponse)
    def checkout(session_id: str, body: CheckoutRequest):
        with sessions.use(session_id) as store:
            order = place_order(store, orders, coupons, body, session_id=session_id)
        return CheckoutResponse(order=order, notifications=[order_placed_event(order)])

    @app.get("/orders/{order_id}", response_model=Order)
    def get_order(order_id: str):
        order = orders.get(order_id)
        if order is None:
            raise HTTPException(status_code=404, detail="Order not found")
        return order

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "auresta_cart.main:app",
        host="127.0.0.1",
        port=8000,
        reload=False,
    )
