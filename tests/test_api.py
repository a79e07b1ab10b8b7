"""
Tests for the HTTP surface.
"""
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from auresta_cart.config import Settings
from auresta_cart.main import CartSessions, create_app
from auresta_cart.storage import MemoryStorage

from helpers import make_item

COUPON = {
    "code": "save10",
    "description": "10% off",
    "discountType": "percentage",
    "discountValue": "10",
    "minOrderAmount": "100",
    "validFrom": "2000-01-01",
    "validUntil": "2999-12-31",
}

ADDRESS = {
    "firstName": "Asha",
    "lastName": "Rao",
    "email": "asha@example.com",
    "phone": "9876543210",
    "address": "12 MG Road",
    "city": "Bengaluru",
    "state": "Karnataka",
    "pincode": "560001",
}


def money(value):
    return Decimal(str(value))


@pytest.fixture
def client(tmp_path):
    settings = Settings(STORAGE_DIR=str(tmp_path), ADMIN_API_KEY="secret")
    return TestClient(create_app(settings))


@pytest.fixture
def coupon(client):
    response = client.post("/coupons", json=COUPON, headers={"x-api-key": "secret"})
    assert response.status_code == 200
    return response.json()


class TestCoupons:
    def test_create_requires_key(self, client):
        response = client.post("/coupons", json=COUPON)
        assert response.status_code == 401

    def test_create_and_list(self, client, coupon):
        assert coupon["code"] == "SAVE10"
        codes = [c["code"] for c in client.get("/coupons").json()]
        assert codes == ["SAVE10"]

    def test_duplicate_rejected(self, client, coupon):
        response = client.post(
            "/coupons", json=dict(COUPON, code="Save10"), headers={"x-api-key": "secret"}
        )
        assert response.status_code == 409


class TestCartRoutes:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_new_cart_is_empty(self, client):
        body = client.get("/carts/s1").json()
        assert body["cart"]["items"] == []
        assert money(body["cart"]["finalTotal"]) == 0

    def test_add_update_remove(self, client):
        response = client.post("/carts/s1/items", json=make_item("a", 250, name="Rose Serum"))
        assert response.status_code == 200
        body = response.json()
        assert body["notifications"][0]["kind"] == "ITEM_ADDED"
        assert body["notifications"][0]["message"] == "Rose Serum added to cart!"

        body = client.put("/carts/s1/items/a", json={"quantity": 3}).json()
        assert body["cart"]["items"][0]["quantity"] == 3
        assert money(body["cart"]["subtotal"]) == 750

        body = client.delete("/carts/s1/items/a").json()
        assert body["cart"]["items"] == []

    def test_invalid_item(self, client):
        response = client.post("/carts/s1/items", json={"name": "No id"})
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "INVALID_ITEM"

    def test_bundle_via_api(self, client):
        for item_id in "abcd":
            body = client.post("/carts/s1/items", json=make_item(item_id, 400)).json()
        assert body["cart"]["bundleActive"] is True
        assert money(body["cart"]["finalTotal"]) == 1399

    def test_sessions_are_separate(self, client):
        client.post("/carts/s1/items", json=make_item("a", 100))
        assert client.get("/carts/s2").json()["cart"]["items"] == []

    def test_clear(self, client):
        client.post("/carts/s1/items", json=make_item("a", 100))
        body = client.delete("/carts/s1").json()
        assert body["notifications"][0]["kind"] == "CART_CLEARED"
        assert body["cart"]["items"] == []

    def test_cart_survives_restart(self, tmp_path):
        settings = Settings(STORAGE_DIR=str(tmp_path))
        TestClient(create_app(settings)).post("/carts/s1/items", json=make_item("a", 100))
        body = TestClient(create_app(settings)).get("/carts/s1").json()
        assert [i["id"] for i in body["cart"]["items"]] == ["a"]


class TestCouponRoutes:
    def test_apply_and_remove(self, client, coupon):
        client.post("/carts/s1/items", json=make_item("a", 250))
        client.post("/carts/s1/items", json=make_item("b", 250))

        body = client.post("/carts/s1/coupon", json={"code": "save10"}).json()
        assert body["notifications"][0]["kind"] == "COUPON_APPLIED"
        assert money(body["cart"]["couponDiscount"]) == 50
        assert money(body["cart"]["finalTotal"]) == 450

        body = client.delete("/carts/s1/coupon").json()
        assert body["cart"]["appliedCoupon"] is None
        assert money(body["cart"]["finalTotal"]) == 500

    def test_unknown_code(self, client):
        client.post("/carts/s1/items", json=make_item("a", 250))
        response = client.post("/carts/s1/coupon", json={"code": "NOPE"})
        assert response.status_code == 404
        assert response.json()["notifications"][0]["reason"] == "NOT_FOUND"

    def test_rejected_while_bundle_active(self, client, coupon):
        for item_id in "abc":
            client.post("/carts/s1/items", json=make_item(item_id, 400))
        response = client.post("/carts/s1/coupon", json={"code": "SAVE10"})
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "BUNDLE_ACTIVE"

    def test_bundle_supersedes_coupon(self, client, coupon):
        client.post("/carts/s1/items", json=make_item("a", 250))
        client.post("/carts/s1/items", json=make_item("b", 250))
        client.post("/carts/s1/coupon", json={"code": "SAVE10"})
        body = client.post("/carts/s1/items", json=make_item("c", 600)).json()
        kinds = [n["kind"] for n in body["notifications"]]
        assert "COUPON_SUPERSEDED" in kinds
        assert body["cart"]["appliedCoupon"] is None
        assert money(body["cart"]["couponDiscount"]) == 0


class TestCheckoutRoutes:
    def test_checkout(self, client, coupon):
        client.post("/carts/s1/items", json=make_item("a", 250))
        client.post("/carts/s1/items", json=make_item("b", 250))
        client.post("/carts/s1/coupon", json={"code": "SAVE10"})

        response = client.post(
            "/carts/s1/checkout",
            json={"shippingAddress": ADDRESS, "paymentMethod": "cod"},
        )
        assert response.status_code == 200
        order = response.json()["order"]
        assert money(order["totalAmount"]) == 450
        assert order["couponCode"] == "SAVE10"

        assert client.get(f"/orders/{order['id']}").json()["id"] == order["id"]
        assert client.get("/carts/s1").json()["cart"]["items"] == []
        assert client.get("/coupons").json()[0]["usedCount"] == 1

    def test_empty_cart_checkout(self, client):
        response = client.post("/carts/s1/checkout", json={"shippingAddress": ADDRESS})
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "EMPTY_CART"

    def test_unknown_order(self, client):
        assert client.get("/orders/missing").status_code == 404


class TestCartSessions:
    @pytest.fixture
    def sessions(self):
        return CartSessions(MemoryStorage(), Settings(MAX_SESSIONS=2))

    def test_empty_carts_are_not_kept(self, sessions):
        for n in range(50):
            with sessions.use(f"visitor-{n}") as store:
                store.view()
        assert len(sessions) == 0

    def test_cleared_cart_is_dropped(self, sessions):
        with sessions.use("s1") as store:
            store.add_item(make_item("a", 100))
        assert len(sessions) == 1
        with sessions.use("s1") as store:
            store.clear_cart()
        assert len(sessions) == 0

    def test_idle_sessions_evicted_and_rehydrated(self, sessions):
        for session_id in ("s1", "s2", "s3"):
            with sessions.use(session_id) as store:
                store.add_item(make_item(session_id, 100))
        assert len(sessions) == 2

        with sessions.use("s1") as store:
            assert store.is_in_cart("s1")

    def test_store_in_use_is_never_evicted(self, sessions):
        with sessions.use("s1") as held:
            held.add_item(make_item("a", 100))
            for session_id in ("s2", "s3", "s4"):
                with sessions.use(session_id) as store:
                    store.add_item(make_item("b", 100))
            with sessions.use("s1") as again:
                assert again is held
