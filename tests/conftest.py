from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from cart_service.engine import CartEngine
from cart_service.main import create_app
from cart_service.models import Product
from cart_service.products import MemoryProductLookup
from cart_service.stores import MemoryCartStore
from shared.utils import create_access_token


class FakeClock:
    """Ticks one second per call so every write gets a distinct timestamp."""

    def __init__(self, start=datetime(2024, 1, 1, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self):
        self.now += timedelta(seconds=1)
        return self.now


CATALOG = [
    Product(id="p1", name="Keyboard", price=Decimal("10.0"), description="Mechanical", image_url="kb.png"),
    Product(id="p2", name="Mouse", price=Decimal("4.50"), description="Wireless", image_url="mouse.png"),
    Product(id="p3", name="Monitor", price=Decimal("199.99"), description="27 inch"),
]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def products():
    return MemoryProductLookup(CATALOG)


@pytest.fixture
def store():
    return MemoryCartStore()


@pytest.fixture
def engine(store, products, clock):
    return CartEngine(store, products, clock=clock)


@pytest.fixture
def test_client(engine):
    app = create_app(engine, rate_limiting=False)
    with TestClient(app) as client:
        yield client


def bearer(user_id: str, role: str = "user") -> dict:
    token = create_access_token({"sub": user_id, "role": role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def user_headers():
    return bearer("u1")


@pytest.fixture
def admin_headers():
    return bearer("admin-1", role="admin")


@pytest.fixture
def make_headers():
    return bearer
