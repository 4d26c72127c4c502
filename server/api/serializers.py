"""Plain-dict views of ORM objects for JSON responses."""

from decimal import Decimal
from typing import Optional

from server.models.order import Order, OrderItem
from server.services import tariffs


def _money(value) -> Optional[str]:
    if value is None:
        return None
    return f"{Decimal(value):.2f}"


def _dt(value) -> Optional[str]:
    return value.isoformat() if value else None


def serialize_product(product) -> Optional[dict]:
    if product is None:
        return None
    return {
        "id": product.id,
        "name": product.name,
        "price": _money(product.price),
        "description": product.description,
        "image": product.image,
        "categoryId": product.category_id,
    }


def serialize_bundle(bundle) -> Optional[dict]:
    if bundle is None:
        return None
    return {
        "id": bundle.id,
        "name": bundle.name,
        "price": _money(bundle.price),
        "description": bundle.description,
        "image": bundle.image,
        "exclusive": bundle.exclusive,
        "images": [img.url for img in bundle.images],
        "videos": [video.url for video in bundle.videos],
    }


def serialize_order_item(item: OrderItem) -> dict:
    return {
        "id": item.id,
        "productId": item.product_id,
        "bundleId": item.bundle_id,
        "quantity": item.quantity,
        "price": _money(item.price),
        "product": serialize_product(item.product),
        "bundle": serialize_bundle(item.bundle),
    }


def serialize_order(order: Order) -> dict:
    return {
        "id": order.id,
        "userId": order.user.telegram_id if order.user else None,
        "orderType": order.order_type,
        "tier": tariffs.order_tier(order),
        "totalAmount": _money(order.total_amount),
        "status": order.status,
        "paymentStatus": order.payment_status,
        "paymentMethod": order.payment_method,
        "screenshot": order.screenshot,
        "paymentChargeId": order.payment_charge_id,
        "donationMessage": order.donation_message,
        "firstName": order.first_name,
        "lastName": order.last_name,
        "address": order.address,
        "city": order.city,
        "zipCode": order.zip_code,
        "country": order.country,
        "orderItems": [serialize_order_item(item) for item in order.order_items],
        "createdAt": _dt(order.created_at),
        "updatedAt": _dt(order.updated_at),
    }


def serialize_user(user) -> dict:
    return {
        "id": user.id,
        "telegramId": user.telegram_id,
        "firstName": user.first_name,
        "lastName": user.last_name,
        "username": user.username,
        "hasUnreadSupport": user.has_unread_support,
        "createdAt": _dt(user.created_at),
    }


def serialize_subscription(sub) -> dict:
    return {
        "id": sub.id,
        "orderId": sub.order_id,
        "planType": sub.plan_type,
        "price": _money(sub.price),
        "status": sub.status,
        "startDate": _dt(sub.start_date),
        "endDate": _dt(sub.end_date),
    }


def serialize_support_message(message) -> Optional[dict]:
    if message is None:
        return None
    return {
        "id": message.id,
        "userId": message.user_id,
        "message": message.message,
        "mediaUrl": message.media_url,
        "mediaType": message.media_type,
        "orderId": message.order_id,
        "isFromAdmin": message.is_from_admin,
        "isRead": message.is_read,
        "createdAt": _dt(message.created_at),
    }
