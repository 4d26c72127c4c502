"""Handling of Telegram payment updates (pre-checkout and successful payment).

Telegram delivers these updates at least once and wants a quick answer.
The rules here:

* a pre-checkout query is always answered, ``ok=False`` when the invoice
  payload does not name an order, and never touches the database;
* a successful payment is matched to its order through the invoice payload
  and confirmed with a conditional update, so only the first delivery of
  the event sends content to the buyer;
* events that cannot be matched to a payable order are logged as
  correlation failures for manual reconciliation and still acknowledged,
  because the money has already moved and a redelivery will not fix it.

Only store errors propagate (``SQLAlchemyError``); the webhook route turns
them into a 5xx so that Telegram redelivers the update.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from server.models.order import Order, OrderStatus, PaymentStatus
from server.services import admin_notifier, fulfillment_service, order_service
from server.services.errors import CorrelationFailure
from telegram_bot.gateway import to_minor_units

PAYMENT_METHOD_TELEGRAM = "telegram_payment"
INVALID_ORDER_MESSAGE = "Invalid order"


@dataclass
class WebhookResult:
    kind: str  # pre_checkout / payment / ignored
    outcome: str
    order_id: Optional[str] = None


def build_invoice_payload(order_id: str) -> str:
    return json.dumps({"orderId": str(order_id)})


def parse_invoice_payload(raw) -> Optional[str]:
    """Return the order id from an invoice payload, or None if there is none."""
    if not isinstance(raw, str) or not raw.strip():
        return None
    try:
        data = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    order_id = data.get("orderId")
    if isinstance(order_id, int) and not isinstance(order_id, bool):
        order_id = str(order_id)
    if not isinstance(order_id, str) or not order_id.strip():
        return None
    return order_id.strip()


async def handle_update(db: AsyncSession, gateway, update: Dict[str, Any]) -> WebhookResult:
    query = update.get("pre_checkout_query")
    if isinstance(query, dict):
        return await handle_pre_checkout(gateway, query)

    message = update.get("message")
    if isinstance(message, dict) and isinstance(message.get("successful_payment"), dict):
        return await handle_successful_payment(db, gateway, message)

    # Старый формат: successful_payment на верхнем уровне тела
    if isinstance(update.get("successful_payment"), dict):
        return await handle_successful_payment(db, gateway, update)

    logging.info("Ignoring update without payment data: keys=%s", sorted(update.keys()))
    return WebhookResult("ignored", "ignored")


async def handle_pre_checkout(gateway, query: Dict[str, Any]) -> WebhookResult:
    query_id = query.get("id")
    if not query_id:
        logging.warning("pre_checkout_query without id, cannot answer: %r", query)
        return WebhookResult("pre_checkout", "unanswerable")

    order_id = parse_invoice_payload(query.get("invoice_payload"))
    ok = order_id is not None
    if not ok:
        logging.warning(
            "Rejecting pre_checkout_query %s: invoice payload %r has no order id",
            query_id, query.get("invoice_payload"),
        )

    try:
        await gateway.answer_pre_checkout(query_id, ok, None if ok else INVALID_ORDER_MESSAGE)
    except Exception:
        logging.exception("answerPreCheckoutQuery failed for query %s (order %s)", query_id, order_id)
        return WebhookResult("pre_checkout", "answer_failed", order_id)

    return WebhookResult("pre_checkout", "accepted" if ok else "rejected", order_id)


def _log_correlation_failure(exc: CorrelationFailure, charge_id, payer_id) -> None:
    logging.critical(
        "Payment correlation failure: %s. order_id=%s charge_id=%s payer=%s payload=%r. "
        "Manual reconciliation required.",
        exc.reason, exc.order_id, charge_id, payer_id, exc.payload,
    )


def _check_paid_amount(order: Order, payment: Dict[str, Any]) -> None:
    paid = payment.get("total_amount")
    if paid is None:
        return
    expected = to_minor_units(order.total_amount)
    try:
        paid = int(paid)
    except (TypeError, ValueError):
        logging.warning("Order %s: unreadable paid amount %r", order.id, paid)
        return
    if paid != expected:
        logging.warning(
            "Order %s paid amount mismatch: expected %s, got %s %s",
            order.id, expected, paid, payment.get("currency", ""),
        )


async def _load_payable_order(db: AsyncSession, raw_payload) -> Order:
    order_id = parse_invoice_payload(raw_payload)
    if order_id is None:
        raise CorrelationFailure("invoice payload has no order id", raw_payload)

    order = await order_service.get_order(db, order_id)
    if order is None:
        raise CorrelationFailure("order not found", raw_payload, order_id)
    if order.status == OrderStatus.CANCELLED.value and order.payment_status != PaymentStatus.CONFIRMED.value:
        raise CorrelationFailure("payment received for a cancelled order", raw_payload, order_id)
    if order.payment_status == PaymentStatus.FAILED.value:
        raise CorrelationFailure("payment received for an order whose payment has failed", raw_payload, order_id)
    return order


async def handle_successful_payment(db: AsyncSession, gateway, message: Dict[str, Any]) -> WebhookResult:
    payment = message["successful_payment"]
    raw_payload = payment.get("invoice_payload")
    charge_id = payment.get("telegram_payment_charge_id")
    payer_id = (message.get("from") or {}).get("id") or (message.get("chat") or {}).get("id")

    try:
        order = await _load_payable_order(db, raw_payload)
    except CorrelationFailure as exc:
        _log_correlation_failure(exc, charge_id, payer_id)
        return WebhookResult("payment", "correlation_failure", exc.order_id)

    _check_paid_amount(order, payment)

    confirmed = await order_service.confirm_payment(
        db,
        order.id,
        charge_id=charge_id,
        payment_method=PAYMENT_METHOD_TELEGRAM,
        mark_processing=True,
    )
    order = await order_service.get_order(db, order.id)

    if not confirmed:
        if order.payment_status == PaymentStatus.CONFIRMED.value:
            logging.info(
                "Duplicate successful_payment for order %s (charge_id=%s); already fulfilled",
                order.id, charge_id,
            )
            return WebhookResult("payment", "duplicate", order.id)
        # Заказ отменили или оплату отклонили между чтением и подтверждением
        _log_correlation_failure(
            CorrelationFailure(
                "order cancelled or payment failed before it could be confirmed", raw_payload, order.id
            ),
            charge_id,
            payer_id,
        )
        return WebhookResult("payment", "correlation_failure", order.id)

    chat_id = payer_id or order.user.telegram_id
    try:
        await fulfillment_service.dispatch_fulfillment(gateway, order, chat_id)
    except Exception:
        # Оплата уже зафиксирована, повтор вебхука доставку не починит
        logging.exception("Fulfillment of order %s crashed", order.id)

    try:
        await admin_notifier.notify_payment_confirmed(
            gateway, admin_notifier.OrderSummary.from_order(order), charge_id
        )
    except Exception:
        logging.exception("Admin notification for order %s crashed", order.id)

    return WebhookResult("payment", "confirmed", order.id)
