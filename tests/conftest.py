import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

from decimal import Decimal
from typing import List, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from storefront.caching.redis_client import get_redis
from storefront.data.database import Base
from storefront.data.store import DataStore, get_store
from storefront.main import app
from storefront.messaging.producer import get_producer


class FakeProducer:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.created: List[dict] = []
        self.adjustments: List[tuple] = []

    async def publish_order_created(self, order_data: dict):
        if self.fail:
            raise ConnectionError("broker unreachable")
        self.created.append(order_data)

    async def publish_stock_adjustment(self, adjustment: dict, attempts: int = 0):
        if self.fail:
            raise ConnectionError("broker unreachable")
        self.adjustments.append((adjustment, attempts))


class FakeRedis:
    def __init__(self):
        self.orders = {}
        self.invalidated: List[str] = []
        self.allow = True

    async def get_cached_order(self, order_number: str):
        return self.orders.get(order_number)

    async def set_cached_order(self, order_number: str, data: dict, ttl: int = None):
        self.orders[order_number] = data

    async def invalidate_order(self, order_number: str):
        self.invalidated.append(order_number)
        self.orders.pop(order_number, None)

    async def check_rate_limit(self, ip_address: str, limit: int, window: int) -> bool:
        return self.allow


@pytest.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    await engine.dispose()


@pytest.fixture
def store(session_factory):
    return DataStore(session_factory)


@pytest.fixture
def producer():
    return FakeProducer()


@pytest.fixture
def failing_producer():
    return FakeProducer(fail=True)


@pytest.fixture
def cache():
    return FakeRedis()


@pytest.fixture
def add_product(store):
    async def _add(
        product_id: str,
        name: Optional[str] = None,
        price: str = "10.00",
        stock: Optional[int] = None,
        stock_quantity: Optional[int] = None,
    ) -> dict:
        return await store.insert(
            "products",
            {
                "id": product_id,
                "name": name or f"Product {product_id}",
                "price": Decimal(price),
                "stock": stock,
                "stock_quantity": stock_quantity,
            },
        )

    return _add


def order_payload(items: List[dict], shipping: str = "5.99", **overrides) -> dict:
    """Build a checkout body with consistent totals for ``items``."""
    lines = [
        {
            "id": item["id"],
            "name": item.get("name", f"Product {item['id']}"),
            "price": item.get("price", "10.00"),
            "quantity": item["quantity"],
            "imageUrl": item.get("imageUrl", f"https://cdn.example.com/{item['id']}.jpg"),
        }
        for item in items
    ]
    subtotal = sum(Decimal(line["price"]) * line["quantity"] for line in lines)
    body = {
        "items": lines,
        "shippingInfo": {
            "firstName": "Ada",
            "lastName": "Lovelace",
            "email": "ada@example.com",
            "address": "12 Analytical Row",
            "city": "London",
            "postcode": "N1 9GU",
            "country": "UK",
        },
        "subtotal": str(subtotal),
        "shippingCost": shipping,
        "total": str(subtotal + Decimal(shipping)),
    }
    body.update(overrides)
    return body


@pytest.fixture
async def client(store, producer, cache):
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_producer] = lambda: producer
    app.dependency_overrides[get_redis] = lambda: cache
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def make_payload():
    return order_payload
