"""
SQLAlchemy ORM Models for PaySync

Orders are the unit of reconciliation. The unique constraint on
payment_reference is what guarantees at most one order per payment attempt
when the storefront and the webhook race to create it.
"""
from datetime import datetime
from sqlalchemy import Column, String, Integer, Boolean, DateTime, ForeignKey, Text, CheckConstraint
from sqlalchemy.orm import declarative_base

Base = declarative_base()

ORDER_STATUSES = ("processing", "completed", "failed", "refunded")


class UserModel(Base):
    """
    ORM model for users table.

    Users are resolved or created from the customer email on an order.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String, nullable=False, unique=True, index=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class ProductModel(Base):
    """ORM model for products table. Prices are in minor currency units."""
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    description = Column(Text)
    price = Column(Integer, nullable=False)
    currency = Column(String, nullable=False, default="usd")
    stripe_product_id = Column(String, index=True)
    stripe_price_id = Column(String)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("price >= 0", name="product_price_check"),
    )


class OrderModel(Base):
    """
    ORM model for orders table.

    Only status, is_provisional, sync_attempts, last_sync_attempt and
    updated_at change after insert.
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    payment_reference = Column(String, nullable=False, unique=True, index=True)
    quantity = Column(Integer, nullable=False)
    amount = Column(Integer, nullable=False)
    currency = Column(String, nullable=False)
    status = Column(String, nullable=False, index=True)
    customer_email = Column(String)
    customer_name = Column(String)
    customer_phone = Column(String)
    is_provisional = Column(Boolean, nullable=False, default=False, index=True)
    provisional_created_at = Column(DateTime)
    sync_attempts = Column(Integer, nullable=False, default=0)
    last_sync_attempt = Column(DateTime)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(
            "status IN ('processing', 'completed', 'failed', 'refunded')",
            name="order_status_check"
        ),
        CheckConstraint("quantity > 0", name="order_quantity_check"),
        CheckConstraint("amount >= 0", name="order_amount_check"),
        CheckConstraint(
            "NOT is_provisional OR status = 'processing'",
            name="order_provisional_status_check"
        ),
    )
