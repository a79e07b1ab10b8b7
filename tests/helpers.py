from datetime import date
from decimal import Decimal

from auresta_cart.models import Coupon


def make_item(item_id, price, name=None, category="serum"):
    return {
        "id": item_id,
        "name": name or f"Product {item_id}",
        "unitPrice": str(price),
        "imageRef": f"https://cdn.example.com/{item_id}.jpg",
        "category": category,
    }


def make_coupon(code="SAVE10", discount_type="percentage", value=10, min_order=100, **extra):
    data = {
        "code": code,
        "description": "test coupon",
        "discountType": discount_type,
        "discountValue": Decimal(str(value)),
        "minOrderAmount": Decimal(str(min_order)),
        "validFrom": date(2026, 1, 1),
        "validUntil": date(2026, 12, 31),
    }
    data.update(extra)
    return Coupon(**data)
