import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, String, Integer, Numeric, DateTime, JSON, Text, UniqueConstraint
from storefront.data.database import Base

def _uuid() -> str:
    return str(uuid.uuid4())

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

class Product(Base):
    __tablename__ = "products"

    id = Column(String(64), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    image_url = Column(String(512), nullable=True)
    description = Column(Text, nullable=True)
    # Legacy schemas carry stock under one of two names; both null means untracked
    stock = Column(Integer, nullable=True)
    stock_quantity = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

class Order(Base):
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=_uuid)
    order_number = Column(String(64), nullable=False, unique=True)
    user_id = Column(String(64), nullable=True, index=True)
    customer_email = Column(String(255), nullable=False)
    shipping_info = Column(JSON, nullable=False)
    billing_info = Column(JSON, nullable=False)
    order_items = Column(JSON, nullable=False)
    subtotal = Column(Numeric(10, 2), nullable=False)
    shipping_cost = Column(Numeric(10, 2), nullable=False)
    total = Column(Numeric(10, 2), nullable=False)
    status = Column(String(20), nullable=False, default="pending", index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

class StockAdjustment(Base):
    """Ledger of stock decrements owed by committed orders."""

    __tablename__ = "stock_adjustments"
    __table_args__ = (UniqueConstraint("order_number", "product_id"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    order_number = Column(String(64), nullable=False)
    product_id = Column(String(64), nullable=False)
    field_name = Column(String(32), nullable=False)
    quantity = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    applied_at = Column(DateTime(timezone=True), nullable=True)
