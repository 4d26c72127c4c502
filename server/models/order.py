# server/models/order.py
import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import Column, Integer, String, Text, Numeric, DateTime, ForeignKey, Index, CheckConstraint
from sqlalchemy.orm import relationship
from server.db.base_class import Base


class OrderType(str, Enum):
    PRODUCT = "PRODUCT"
    BUNDLE = "BUNDLE"
    VIP = "VIP"
    CUSTOM_VIDEO = "CUSTOM_VIDEO"
    VIDEO_CALL = "VIDEO_CALL"
    RATING = "RATING"
    DONATION = "DONATION"


ITEM_ORDER_TYPES = (OrderType.PRODUCT, OrderType.BUNDLE)


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    AWAITING_CHECK = "AWAITING_CHECK"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"


def _new_order_id() -> str:
    return str(uuid.uuid4())


class Order(Base):
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=_new_order_id)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    order_type = Column(String(32), nullable=False, index=True)
    total_amount = Column(Numeric(10, 2), nullable=False)
    status = Column(String(32), nullable=False, default=OrderStatus.PENDING.value, index=True)
    payment_status = Column(String(32), nullable=False, default=PaymentStatus.PENDING.value, index=True)
    payment_method = Column(String(64), nullable=True)

    # Скриншот ручной оплаты или telegram_payment_charge_id
    screenshot = Column(Text, nullable=True)
    payment_charge_id = Column(String(255), nullable=True, unique=True)

    donation_message = Column(Text, nullable=True)
    # Подтип тарифа ({"tier": "MONTHLY"}), JSON строкой
    order_metadata = Column("metadata", Text, nullable=True)

    first_name = Column(String(128), nullable=True)
    last_name = Column(String(128), nullable=True)
    address = Column(Text, nullable=True)
    city = Column(String(128), nullable=True)
    zip_code = Column(String(32), nullable=True)
    country = Column(String(128), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="orders")
    order_items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )

    __table_args__ = (
        Index("ix_orders_user_created", "user_id", "created_at"),
    )


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="SET NULL"), nullable=True)
    bundle_id = Column(Integer, ForeignKey("bundles.id", ondelete="SET NULL"), nullable=True)
    quantity = Column(Integer, nullable=False, default=1)
    # Цена на момент заказа, не пересчитывается
    price = Column(Numeric(10, 2), nullable=False)

    order = relationship("Order", back_populates="order_items")
    product = relationship("Product")
    bundle = relationship("Bundle")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
    )
