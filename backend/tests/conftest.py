import os

# Settings are read at import time; point them at throwaway values first.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("INTERNAL_API_KEY", "test-internal-key")
os.environ.setdefault("CJ_API_KEY", "test-cj-api-key")
os.environ.setdefault("CJ_WORKERS_ENABLED", "false")

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from louiemae.models_sqlalchemy import Base
from louiemae.models_sqlalchemy.models import (
    FulfillmentStatus,
    Order,
    OrderItem,
    OrderStatus,
    Product,
    ProductVariant,
    SourcingStatus,
)
from louiemae.services import cj_orders, cj_sourcing, cj_tracking
from louiemae.services.cj_api_client import CjResponse


TEST_TOKEN = "cj-test-access-token"


@pytest.fixture()
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def cj_token(monkeypatch):
    """Make every workflow see a valid CJ token without touching the provider."""

    async def fake_get_access_token(db, *, triggered_by="worker"):
        return TEST_TOKEN

    for module in (cj_sourcing, cj_orders, cj_tracking):
        monkeypatch.setattr(module, "get_access_token", fake_get_access_token)
    return TEST_TOKEN


@pytest.fixture()
def no_cj_token(monkeypatch):
    async def fake_get_access_token(db, *, triggered_by="worker"):
        return None

    for module in (cj_sourcing, cj_orders, cj_tracking):
        monkeypatch.setattr(module, "get_access_token", fake_get_access_token)


@pytest.fixture()
def sent_notifications(monkeypatch) -> List[Any]:
    """Capture shipping emails instead of calling Resend."""

    sent: List[Any] = []

    async def fake_send(notification):
        sent.append(notification)
        return True

    monkeypatch.setattr(cj_tracking, "send_shipping_notification", fake_send)
    return sent


def ok(data: Any = None, message: str = "Success") -> CjResponse:
    return CjResponse(result=True, message=message, code=200, data=data, raw={"result": True, "data": data})


def fail(message: str, code: int = 1600000) -> CjResponse:
    return CjResponse(result=False, message=message, code=code, data=None, raw={"result": False, "message": message})


@pytest.fixture()
def make_product(db) -> Callable[..., Product]:
    def _make(**kwargs: Any) -> Product:
        variants = kwargs.pop("variants", [])
        values: Dict[str, Any] = {
            "name": "Linen Throw Pillow",
            "price": 24.5,
            "description": "Soft washed linen cover",
            "images": ["https://img.example.com/pillow.jpg"],
            "source_url": "https://www.aliexpress.com/item/1005001.html",
            "sourcing_status": SourcingStatus.pending,
        }
        values.update(kwargs)
        product = Product(**values)
        for position, name in enumerate(variants):
            product.variants.append(ProductVariant(name=name, position=position))
        db.add(product)
        db.commit()
        db.refresh(product)
        return product

    return _make


DEFAULT_ADDRESS = {
    "line1": "12 Orchard Lane",
    "line2": None,
    "city": "Austin",
    "state": "TX",
    "postalCode": "78701",
    "country": "United States",
}


@pytest.fixture()
def make_order(db) -> Callable[..., Order]:
    def _make(
        session_id: str = "cs_test_a1b2c3d4e5f6g7h8",
        items: Optional[List[Dict[str, Any]]] = None,
        **kwargs: Any,
    ) -> Order:
        values: Dict[str, Any] = {
            "session_id": session_id,
            "order_number": cj_orders.order_number_for_session(session_id),
            "customer_email": "jane@example.com",
            "customer_name": "Jane Doe",
            "customer_phone": "+1 512 555 0100",
            "subtotal": 49.0,
            "total": 58.99,
            "shipping_address": dict(DEFAULT_ADDRESS),
            "status": OrderStatus.paid,
            "fulfillment_status": FulfillmentStatus.pending,
        }
        values.update(kwargs)
        order = Order(**values)
        if items is None:
            items = [{"external_variant_id": "VID-1", "external_sku": "SKU-1", "quantity": 2}]
        for position, item in enumerate(items):
            line = {"product_id": "prod-1", "name": "Linen Throw Pillow", "price": 24.5, "quantity": 1}
            line.update(item)
            order.items.append(OrderItem(position=position, **line))
        db.add(order)
        db.commit()
        db.refresh(order)
        return order

    return _make


def hours_ago(hours: float) -> datetime:
    return datetime.now(timezone.utc) - timedelta(hours=hours)
