"""Import every model so ``Base.metadata`` knows all tables."""

from server.models.user import User
from server.models.product import Category, Product
from server.models.bundle import Bundle, BundleImage, BundleVideo
from server.models.order import Order, OrderItem, OrderType, OrderStatus, PaymentStatus
from server.models.subscription import Subscription, SubscriptionStatus
from server.models.support_message import SupportMessage

__all__ = [
    "User",
    "Category",
    "Product",
    "Bundle",
    "BundleImage",
    "BundleVideo",
    "Order",
    "OrderItem",
    "OrderType",
    "OrderStatus",
    "PaymentStatus",
    "Subscription",
    "SubscriptionStatus",
    "SupportMessage",
]
