from sqlalchemy import Column, Integer, String, Float, DateTime, Text, ForeignKey, Enum, Boolean, Index, JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
import enum
import uuid

from . import Base


# JSONB on Postgres, plain JSON everywhere else (SQLite in tests).
JsonType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SourcingStatus(str, enum.Enum):
    none = "none"
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class OrderStatus(str, enum.Enum):
    pending = "pending"
    paid = "paid"
    processing = "processing"
    shipped = "shipped"
    delivered = "delivered"
    cancelled = "cancelled"


class FulfillmentStatus(str, enum.Enum):
    pending = "pending"
    sending = "sending"
    confirmed = "confirmed"
    processing = "processing"
    shipped = "shipped"
    delivered = "delivered"
    failed = "failed"
    cancelled = "cancelled"


# Products in these states are hidden from the storefront until CJ decides.
STOREFRONT_VISIBLE_SOURCING = (SourcingStatus.none, SourcingStatus.approved)


class CjCredential(Base):
    """Singleton row holding the CJ access/refresh token pair.

    Only the token provider reads and writes this table. Tokens are stored
    encrypted; use the ``access_token``/``refresh_token`` properties.
    """

    __tablename__ = "cj_credentials"

    SINGLETON_ID = "cj"

    id = Column(String(36), primary_key=True, default=SINGLETON_ID)
    _access_token = Column("access_token", Text, nullable=True)
    access_token_expires_at = Column(DateTime(timezone=True), nullable=True)
    _refresh_token = Column("refresh_token", Text, nullable=True)
    refresh_token_expires_at = Column(DateTime(timezone=True), nullable=True)

    # getAccessToken is limited to ~1 call per 300s; remember the last attempt.
    last_issue_attempt_at = Column(DateTime(timezone=True), nullable=True)
    last_refreshed_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    @property
    def access_token(self) -> str | None:
        from louiemae.utils import crypto

        return crypto.decrypt(self._access_token)

    @access_token.setter
    def access_token(self, value: str | None) -> None:
        from louiemae.utils import crypto

        self._access_token = crypto.encrypt(value) if value else None

    @property
    def refresh_token(self) -> str | None:
        from louiemae.utils import crypto

        return crypto.decrypt(self._refresh_token)

    @refresh_token.setter
    def refresh_token(self, value: str | None) -> None:
        from louiemae.utils import crypto

        self._refresh_token = crypto.encrypt(value) if value else None


class Product(Base):
    __tablename__ = "products"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(Text, nullable=False)
    price = Column(Float, nullable=False, default=0.0)
    description = Column(Text, nullable=False, default="")
    images = Column(JsonType, nullable=False, default=list)
    category = Column(String(128), nullable=True)
    collection = Column(String(128), nullable=True)
    is_new = Column(Boolean, nullable=False, default=False)
    in_stock = Column(Boolean, nullable=False, default=True)

    # Marketplace page the product was scraped from (AliExpress etc.)
    source_url = Column(Text, nullable=True)

    # CJ sourcing state
    sourcing_status = Column(Enum(SourcingStatus), nullable=False, default=SourcingStatus.none, index=True)
    sourcing_id = Column(String(64), nullable=True, index=True)
    external_product_id = Column(String(64), nullable=True, index=True)
    external_variant_id = Column(String(64), nullable=True)
    external_sku = Column(String(128), nullable=True)
    sourcing_error = Column(Text, nullable=True)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    variants = relationship(
        "ProductVariant",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="ProductVariant.position",
    )
    external_variants = relationship(
        "CjProductVariant",
        back_populates="product",
        cascade="all, delete-orphan",
    )

    @property
    def is_storefront_visible(self) -> bool:
        return self.sourcing_status in STOREFRONT_VISIBLE_SOURCING


class ProductVariant(Base):
    """Customer-facing variant (size, colour...) with its optional CJ link."""

    __tablename__ = "product_variants"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    product_id = Column(String(36), ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(Text, nullable=False)
    price_adjustment = Column(Float, nullable=False, default=0.0)
    in_stock = Column(Boolean, nullable=False, default=True)
    position = Column(Integer, nullable=False, default=0)

    external_variant_id = Column(String(64), nullable=True)
    external_sku = Column(String(128), nullable=True)

    product = relationship("Product", back_populates="variants")


class CjProductVariant(Base):
    """Read-only CJ variant reference data, delivered by VARIANT webhooks."""

    __tablename__ = "cj_product_variants"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    product_id = Column(String(36), ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    external_variant_id = Column(String(64), nullable=False)
    sku = Column(String(128), nullable=True)
    name = Column(Text, nullable=True)
    price = Column(Float, nullable=True)
    image = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    product = relationship("Product", back_populates="external_variants")

    __table_args__ = (
        Index("idx_cj_product_variants_product_vid", "product_id", "external_variant_id", unique=True),
    )


class Order(Base):
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    session_id = Column(String(255), nullable=False, unique=True, index=True)
    # Last 12 chars of session_id, uppercased. Sent to CJ as orderNumber.
    order_number = Column(String(12), nullable=False, index=True)
    payment_intent_id = Column(String(255), nullable=True)

    customer_email = Column(String(320), nullable=False, index=True)
    customer_name = Column(Text, nullable=True)
    customer_phone = Column(String(64), nullable=True)

    subtotal = Column(Float, nullable=False, default=0.0)
    shipping = Column(Float, nullable=True)
    tax = Column(Float, nullable=True)
    total = Column(Float, nullable=False, default=0.0)
    currency = Column(String(8), nullable=False, default="usd")
    shipping_address = Column(JsonType, nullable=True)

    status = Column(Enum(OrderStatus), nullable=False, default=OrderStatus.paid, index=True)

    # CJ fulfillment state, independent from the customer-facing status
    fulfillment_status = Column(Enum(FulfillmentStatus), nullable=True, index=True)
    external_order_id = Column(String(64), nullable=True, index=True)
    fulfillment_error = Column(Text, nullable=True)
    tracking_number = Column(String(128), nullable=True)
    tracking_url = Column(Text, nullable=True)
    carrier = Column(String(128), nullable=True)
    shipped_at = Column(DateTime(timezone=True), nullable=True)
    last_sync_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.position",
    )

    __table_args__ = (
        Index("idx_orders_fulfillment_sync", "fulfillment_status", "last_sync_at"),
    )


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id = Column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)

    product_id = Column(String(36), nullable=False)
    variant_id = Column(String(36), nullable=True)
    variant_name = Column(Text, nullable=True)
    name = Column(Text, nullable=False)
    price = Column(Float, nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    image = Column(Text, nullable=True)

    # Resolved at intake from the variant link or the approved product.
    external_variant_id = Column(String(64), nullable=True)
    external_sku = Column(String(128), nullable=True)

    order = relationship("Order", back_populates="items")

    @property
    def is_externally_sourced(self) -> bool:
        return bool(self.external_variant_id or self.external_sku)


class CjEvent(Base):
    """Inbox of every webhook payload CJ pushed to us.

    Rows are written before processing; ``status`` and ``error`` record the
    outcome so admins can diagnose dropped or unmatched events.
    """

    __tablename__ = "cj_events"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    message_id = Column(String(128), nullable=True, index=True)
    event_type = Column(String(32), nullable=True, index=True)  # ORDER, LOGISTIC, PRODUCT, VARIANT, STOCK...
    message_type = Column(String(32), nullable=True)
    entity_id = Column(Text, nullable=True)

    status = Column(Text, nullable=False, default="RECEIVED")  # RECEIVED, PROCESSED, IGNORED, FAILED
    error = Column(Text, nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    payload = Column(JsonType, nullable=False, default=dict)


class BackgroundWorker(Base):
    """Heartbeat + status row for the background loops."""

    __tablename__ = "background_workers"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    worker_name = Column(String(128), nullable=False, unique=True, index=True)
    interval_seconds = Column(Integer, nullable=True)

    last_started_at = Column(DateTime(timezone=True), nullable=True)
    last_finished_at = Column(DateTime(timezone=True), nullable=True)
    last_status = Column(String(32), nullable=True)
    last_error_message = Column(Text, nullable=True)
    last_summary = Column(JsonType, nullable=True)

    runs_ok_in_row = Column(Integer, nullable=False, default=0)
    runs_error_in_row = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
