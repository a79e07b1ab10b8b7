from decimal import Decimal

import pytest

from auresta_cart.models import BundleOffer
from auresta_cart.storage import MemoryStorage
from auresta_cart.store import CartStore


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def bundle():
    return BundleOffer(price=Decimal("999"), units=3)


@pytest.fixture
def store(storage, bundle):
    return CartStore(storage=storage, bundle=bundle)
