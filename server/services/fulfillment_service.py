"""Delivery of purchased content once an order's payment is confirmed."""

import logging
from decimal import Decimal

from server.models.order import Order, OrderItem, OrderType
from server.services import tariffs


def format_amount(amount) -> str:
    return f"{Decimal(amount):.2f}"


async def deliver(send, *args, **kwargs) -> bool:
    """Run one outbound send; a failure is logged and reported as False."""
    try:
        await send(*args, **kwargs)
        return True
    except Exception:
        logging.exception("Telegram delivery failed: %s args=%s", getattr(send, "__name__", send), args)
        return False


def confirmation_text(order: Order) -> str:
    return (
        "✅ Payment confirmed!\n"
        f"Order: {order.id}\n"
        f"Amount: {format_amount(order.total_amount)}"
    )


def donation_text(order: Order) -> str:
    text = f"💖 Thank you for your donation of {format_amount(order.total_amount)}!"
    if order.donation_message:
        text += f"\n\nYour message: {order.donation_message}"
    return text


def product_caption(item: OrderItem) -> str:
    product = item.product
    lines = [product.name, f"Price: {format_amount(item.price)}"]
    if item.quantity > 1:
        lines[-1] += f" × {item.quantity}"
    if product.description:
        lines.append(product.description)
    return "\n".join(lines)


def bundle_caption(item: OrderItem) -> str:
    bundle = item.bundle
    lines = [f"📦 {bundle.name}", f"Price: {format_amount(item.price)}"]
    if bundle.description:
        lines.append(bundle.description)
    return "\n".join(lines)


def vip_text(order: Order) -> str:
    plan = tariffs.vip_plan_of(order)
    months = tariffs.VIP_PLAN_MONTHS[plan]
    period = "1 month" if months == 1 else f"{months} months"
    return f"👑 VIP activated! Your {plan.value.lower()} plan is active for {period}."


SERVICE_NOTICES = {
    OrderType.CUSTOM_VIDEO: "🎬 Your custom video is in progress. We will send it here as soon as it is ready.",
    OrderType.VIDEO_CALL: "📞 A manager will contact you shortly to schedule your video call.",
    OrderType.RATING: "⭐ Thank you! Your rating request has been received.",
}


async def _send_item(gateway, chat_id, item: OrderItem) -> int:
    sent = 0
    if item.product is not None:
        caption = product_caption(item)
        if item.product.image:
            sent += await deliver(gateway.send_photo, chat_id, item.product.image, caption=caption)
        else:
            sent += await deliver(gateway.send_message, chat_id, caption)
    elif item.bundle is not None:
        bundle = item.bundle
        caption = bundle_caption(item)
        if bundle.image:
            sent += await deliver(gateway.send_photo, chat_id, bundle.image, caption=caption)
        else:
            sent += await deliver(gateway.send_message, chat_id, caption)
        for image in bundle.images:
            sent += await deliver(gateway.send_photo, chat_id, image.url)
        for video in bundle.videos:
            sent += await deliver(gateway.send_video, chat_id, video.url)
    else:
        logging.warning(
            "Order item %s of order %s references nothing deliverable", item.id, item.order_id
        )
    return sent


async def dispatch_fulfillment(gateway, order: Order, chat_id) -> int:
    """Send the post-payment messages for ``order`` to ``chat_id``.

    Messages go out one by one in a fixed order; each send is independent,
    failures are logged and the rest still goes out. Returns the number of
    successful sends.
    """
    order_type = OrderType(order.order_type)
    logging.info("Fulfilling order %s (%s) to chat %s", order.id, order_type.value, chat_id)

    if order_type == OrderType.DONATION:
        return int(await deliver(gateway.send_message, chat_id, donation_text(order)))

    sent = int(await deliver(gateway.send_message, chat_id, confirmation_text(order)))

    if order_type in (OrderType.PRODUCT, OrderType.BUNDLE):
        for item in order.order_items:
            sent += await _send_item(gateway, chat_id, item)
    elif order_type == OrderType.VIP:
        sent += await deliver(gateway.send_message, chat_id, vip_text(order))
    else:
        sent += await deliver(gateway.send_message, chat_id, SERVICE_NOTICES[order_type])

    logging.info("Order %s fulfillment finished: %s message(s) delivered", order.id, sent)
    return sent
