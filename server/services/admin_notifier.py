"""Best-effort notifications to operator chats."""

import os
import logging
from dataclasses import dataclass
from typing import List, Optional

from dotenv import load_dotenv

from server.models.order import Order
from server.services.fulfillment_service import deliver, format_amount

load_dotenv()


def _parse_chat_ids(raw: str) -> List[str]:
    return [x.strip() for x in (raw or "").split(",") if x.strip()]


# 111,222,-100333...
ADMIN_CHAT_IDS = _parse_chat_ids(os.getenv("ADMIN_CHAT_IDS", ""))
FRONTEND_URL = os.getenv("FRONTEND_URL", "")


@dataclass
class OrderSummary:
    order_id: str
    requester: str
    order_type: str
    amount: str
    donation_message: Optional[str] = None

    @classmethod
    def from_order(cls, order: Order) -> "OrderSummary":
        user = order.user
        requester = f"{user.display_name} [{user.telegram_id}]" if user else "Unknown"
        return cls(
            order_id=order.id,
            requester=requester,
            order_type=order.order_type,
            amount=format_amount(order.total_amount),
            donation_message=order.donation_message,
        )

    def render(self, title: str) -> str:
        lines = [
            title,
            f"Order ID: {self.order_id}",
            f"From: {self.requester}",
            f"Type: {self.order_type}",
            f"Amount: {self.amount}",
        ]
        if self.donation_message:
            lines.append(f"Message: {self.donation_message}")
        return "\n".join(lines)


async def notify_admins(gateway, text: str, chat_ids: Optional[List[str]] = None) -> int:
    """Send ``text`` to each operator chat; returns how many sends succeeded."""
    chat_ids = ADMIN_CHAT_IDS if chat_ids is None else chat_ids
    if gateway is None:
        logging.warning("Admin notification skipped: Telegram gateway is not configured")
        return 0
    if not chat_ids:
        logging.info("Admin notification skipped: ADMIN_CHAT_IDS is empty")
        return 0

    delivered = 0
    for chat_id in chat_ids:
        delivered += await deliver(gateway.send_message, chat_id, text)
    return delivered


async def notify_order_created(gateway, summary: OrderSummary, chat_ids=None) -> int:
    return await notify_admins(gateway, summary.render("🛒 New order"), chat_ids)


async def notify_payment_confirmed(
    gateway, summary: OrderSummary, charge_id: Optional[str] = None, chat_ids=None
) -> int:
    text = summary.render("✅ Payment confirmed")
    if charge_id:
        text += f"\nCharge ID: {charge_id}"
    return await notify_admins(gateway, text, chat_ids)


async def notify_support_message(gateway, user, message, chat_ids=None) -> int:
    """Forward a user's support message to operators, with media when present."""
    chat_ids = ADMIN_CHAT_IDS if chat_ids is None else chat_ids
    text = (
        "🔔 New Support Message\n\n"
        f"👤 From: {user.display_name}\n"
        f"🆔 ID: {user.telegram_id}\n"
        f"📝 Message: {message.message or '[Media]'}"
    )
    if FRONTEND_URL:
        text += f"\n\n🔗 {FRONTEND_URL}/admin/support"

    senders = {}
    if gateway is not None:
        senders = {
            "photo": gateway.send_photo,
            "video": gateway.send_video,
            "document": gateway.send_document,
        }
    send_media = senders.get(message.media_type) if message.media_url else None
    if send_media is None:
        return await notify_admins(gateway, text, chat_ids)

    delivered = 0
    for chat_id in chat_ids:
        if await deliver(send_media, chat_id, message.media_url, caption=text):
            delivered += 1
        else:
            # Медиа не ушло, отправляем хотя бы текст
            delivered += await deliver(gateway.send_message, chat_id, text)
    return delivered
