"""Order lifecycle: creation, pricing and status transitions."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from server.models.bundle import Bundle
from server.models.order import (
    ITEM_ORDER_TYPES,
    Order,
    OrderItem,
    OrderStatus,
    OrderType,
    PaymentStatus,
)
from server.models.product import Product
from server.models.subscription import Subscription
from server.services import admin_notifier, fulfillment_service, tariffs, user_service
from server.services.errors import NotFoundError, ValidationError

CENT = Decimal("0.01")


@dataclass
class RequestedItem:
    type: str
    id: Any
    quantity: int = 1


@dataclass
class ShippingInfo:
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None

    def as_columns(self) -> Dict[str, Optional[str]]:
        return {k: (v.strip() if isinstance(v, str) else v) for k, v in self.__dict__.items()}


@dataclass
class _PricedItem:
    product_id: Optional[int] = None
    bundle_id: Optional[int] = None
    quantity: int = 1
    price: Decimal = field(default_factory=Decimal)


def parse_order_type(value) -> OrderType:
    try:
        return OrderType(str(value).upper())
    except ValueError:
        raise ValidationError("orderType", f"Unknown order type: {value!r}")


def parse_order_status(value) -> OrderStatus:
    try:
        return OrderStatus(str(value).upper())
    except ValueError:
        raise ValidationError("status", f"Unknown order status: {value!r}")


def parse_payment_status(value) -> PaymentStatus:
    try:
        return PaymentStatus(str(value).upper())
    except ValueError:
        raise ValidationError("paymentStatus", f"Unknown payment status: {value!r}")


def _parse_donation_amount(value) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError):
        raise ValidationError("donationAmount", "Donation amount must be a number")
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("donationAmount", "Donation amount must be greater than zero")
    return amount.quantize(CENT)


def _parse_quantity(value) -> int:
    try:
        quantity = int(value if value is not None else 1)
    except (TypeError, ValueError):
        raise ValidationError("items.quantity", "Quantity must be an integer")
    if quantity < 1:
        raise ValidationError("items.quantity", "Quantity must be at least 1")
    return quantity


async def _price_items(db: AsyncSession, items: Sequence[RequestedItem]) -> List[_PricedItem]:
    """Snapshot current prices; references to missing products/bundles are skipped."""
    priced: List[_PricedItem] = []
    for item in items or []:
        kind = (item.type or "").lower()
        try:
            ref_id = int(item.id)
        except (TypeError, ValueError):
            raise ValidationError("items.id", f"Invalid item id: {item.id!r}")

        if kind == "product":
            product = await db.get(Product, ref_id)
            if product is None:
                logging.warning("Skipping order item: product %s no longer exists", ref_id)
                continue
            priced.append(
                _PricedItem(
                    product_id=product.id,
                    quantity=_parse_quantity(item.quantity),
                    price=Decimal(product.price).quantize(CENT),
                )
            )
        elif kind == "bundle":
            bundle = await db.get(Bundle, ref_id)
            if bundle is None:
                logging.warning("Skipping order item: bundle %s no longer exists", ref_id)
                continue
            # Бандл всегда в одном экземпляре
            priced.append(
                _PricedItem(bundle_id=bundle.id, quantity=1, price=Decimal(bundle.price).quantize(CENT))
            )
        else:
            raise ValidationError("items.type", f"Unknown item type: {item.type!r}")
    return priced


def _order_query():
    return select(Order).options(
        selectinload(Order.user),
        selectinload(Order.order_items).selectinload(OrderItem.product),
        selectinload(Order.order_items)
        .selectinload(OrderItem.bundle)
        .selectinload(Bundle.images),
        selectinload(Order.order_items)
        .selectinload(OrderItem.bundle)
        .selectinload(Bundle.videos),
    )


async def get_order(db: AsyncSession, order_id: str, include_items: bool = True) -> Optional[Order]:
    if include_items:
        stmt = _order_query()
    else:
        stmt = select(Order).options(selectinload(Order.user))
    result = await db.execute(
        stmt.where(Order.id == str(order_id)).execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def require_order(db: AsyncSession, order_id: str) -> Order:
    order = await get_order(db, order_id)
    if order is None:
        raise NotFoundError("Order", order_id)
    return order


async def list_user_orders(
    db: AsyncSession,
    telegram_id,
    status: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
):
    user = await user_service.require_user(db, telegram_id)
    stmt = _order_query().where(Order.user_id == user.id)
    if status:
        stmt = stmt.where(Order.status == parse_order_status(status).value)
    result = await db.execute(stmt.order_by(Order.created_at.desc()).limit(limit).offset(offset))
    return result.scalars().all()


async def list_orders(
    db: AsyncSession,
    status: Optional[str] = None,
    payment_status: Optional[str] = None,
):
    stmt = _order_query()
    if status:
        stmt = stmt.where(Order.status == parse_order_status(status).value)
    if payment_status:
        stmt = stmt.where(Order.payment_status == parse_payment_status(payment_status).value)
    result = await db.execute(stmt.order_by(Order.created_at.desc()))
    return result.scalars().all()


async def create_order(
    db: AsyncSession,
    telegram_id,
    order_type,
    items: Optional[Sequence[RequestedItem]] = None,
    shipping: Optional[ShippingInfo] = None,
    donation_amount=None,
    donation_message: Optional[str] = None,
    tier: Optional[str] = None,
    payment_method: Optional[str] = None,
    profile: Optional[Dict[str, Optional[str]]] = None,
) -> Order:
    """Price and persist a new order together with its items.

    Order and items are written in one transaction; nothing is stored when
    validation fails.
    """
    telegram_id = user_service.normalize_telegram_id(telegram_id)
    order_type = parse_order_type(order_type)

    priced: List[_PricedItem] = []
    metadata = None
    message = None
    if order_type in ITEM_ORDER_TYPES:
        priced = await _price_items(db, items or [])
        if not priced:
            raise ValidationError("items", "No valid items to order")
        total = sum((p.price * p.quantity for p in priced), Decimal("0"))
    elif order_type == OrderType.DONATION:
        total = _parse_donation_amount(donation_amount)
        message = (donation_message or "").strip() or None
    else:
        chosen = tariffs.resolve_tier(order_type, tier)
        total = tariffs.price_for(order_type, chosen)
        metadata = tariffs.tier_metadata(chosen)

    try:
        user = await user_service.get_or_create_user(db, telegram_id, **(profile or {}))
        order = Order(
            user_id=user.id,
            order_type=order_type.value,
            total_amount=total.quantize(CENT),
            status=OrderStatus.PENDING.value,
            payment_status=PaymentStatus.PENDING.value,
            payment_method=payment_method,
            donation_message=message,
            order_metadata=metadata,
            **(shipping or ShippingInfo()).as_columns(),
        )
        order.order_items = [
            OrderItem(
                product_id=p.product_id,
                bundle_id=p.bundle_id,
                quantity=p.quantity,
                price=p.price,
            )
            for p in priced
        ]
        db.add(order)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logging.info(
        "Order created: id=%s user=%s type=%s total=%s items=%s",
        order.id, telegram_id, order_type.value, order.total_amount, len(priced),
    )
    return await get_order(db, order.id)


async def update_status(db: AsyncSession, order_id: str, new_status) -> Order:
    new_status = parse_order_status(new_status)
    order = await require_order(db, order_id)
    if order.status == OrderStatus.CANCELLED.value and new_status != OrderStatus.CANCELLED:
        raise ValidationError("status", "Cancelled orders cannot be reopened")

    order.status = new_status.value
    order.updated_at = datetime.utcnow()
    await db.commit()
    logging.info("Order %s status -> %s", order_id, new_status.value)
    return await get_order(db, order_id)


async def _activate_subscription(db: AsyncSession, order_id: str) -> None:
    # Тип, сумма и метаданные заказа неизменны, устаревшая копия в сессии подходит
    order = await db.get(Order, order_id)
    if order is None or order.order_type != OrderType.VIP.value:
        return

    plan = tariffs.vip_plan_of(order)
    now = datetime.utcnow()
    db.add(
        Subscription(
            user_id=order.user_id,
            order_id=order_id,
            plan_type=plan.value,
            price=order.total_amount,
            start_date=now,
            end_date=now + timedelta(days=30 * tariffs.VIP_PLAN_MONTHS[plan]),
        )
    )


# Итоговые статусы оплаты, из них заказ больше не выходит
FINAL_PAYMENT_STATUSES = (PaymentStatus.CONFIRMED.value, PaymentStatus.FAILED.value)


async def confirm_payment(
    db: AsyncSession,
    order_id: str,
    charge_id: Optional[str] = None,
    payment_method: Optional[str] = None,
    mark_processing: bool = False,
) -> bool:
    """Mark the order's payment CONFIRMED unless its payment is already final.

    Uses a conditional UPDATE so that concurrent confirmations of the same
    order cannot both succeed. Returns True only for the call that performed
    the transition; that caller owns fulfillment. Cancelled orders and
    FAILED payments are never confirmed. With ``mark_processing`` a PENDING
    order moves to PROCESSING; later statuses are left alone.
    """
    values = {
        "payment_status": PaymentStatus.CONFIRMED.value,
        "updated_at": datetime.utcnow(),
    }
    if mark_processing:
        values["status"] = case(
            (Order.status == OrderStatus.PENDING.value, OrderStatus.PROCESSING.value),
            else_=Order.status,
        )
    if charge_id:
        values["payment_charge_id"] = charge_id
    if payment_method:
        values["payment_method"] = payment_method

    stmt = (
        update(Order)
        .where(
            Order.id == order_id,
            Order.payment_status.notin_(FINAL_PAYMENT_STATUSES),
            Order.status != OrderStatus.CANCELLED.value,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    try:
        result = await db.execute(stmt)
        transitioned = result.rowcount == 1
        if transitioned:
            await _activate_subscription(db, order_id)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    if transitioned:
        logging.info("Order %s payment confirmed (charge_id=%s)", order_id, charge_id)
    return transitioned


async def _notify_confirmed(gateway, order: Order) -> None:
    try:
        await admin_notifier.notify_payment_confirmed(
            gateway, admin_notifier.OrderSummary.from_order(order), order.payment_charge_id
        )
    except Exception:
        logging.exception("Admin notification for order %s crashed", order.id)


async def update_payment_status(db: AsyncSession, order_id: str, new_status, gateway=None) -> Order:
    """Set the payment status; the first confirmation triggers fulfillment.

    Re-confirming an already confirmed order succeeds without sending
    anything again. CONFIRMED and FAILED are final: an order never leaves
    either of them.
    """
    new_status = parse_payment_status(new_status)
    order = await require_order(db, order_id)

    if order.payment_status == PaymentStatus.FAILED.value:
        if new_status == PaymentStatus.FAILED:
            return order
        raise ValidationError("paymentStatus", "Payment has failed; the order cannot be paid again")

    if new_status == PaymentStatus.CONFIRMED:
        if order.status == OrderStatus.CANCELLED.value:
            raise ValidationError("paymentStatus", "Cannot confirm payment of a cancelled order")
        transitioned = await confirm_payment(db, order_id, mark_processing=True)
        order = await get_order(db, order_id)
        if not transitioned:
            return order
        if gateway is not None:
            await fulfillment_service.dispatch_fulfillment(gateway, order, order.user.telegram_id)
        else:
            logging.warning("Order %s confirmed without a Telegram gateway; nothing delivered", order_id)
        await _notify_confirmed(gateway, order)
        return order

    result = await db.execute(
        update(Order)
        .where(Order.id == order_id, Order.payment_status.notin_(FINAL_PAYMENT_STATUSES))
        .values(payment_status=new_status.value, updated_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    if result.rowcount == 0:
        order = await get_order(db, order_id)
        raise ValidationError("paymentStatus", f"Payment is already {order.payment_status}")
    logging.info("Order %s payment status -> %s", order_id, new_status.value)
    return await get_order(db, order_id)


async def submit_payment_proof(
    db: AsyncSession, order_id: str, screenshot: str, payment_method: Optional[str] = None
) -> Order:
    """Attach a manual proof of payment and queue the order for checking."""
    if not screenshot or not screenshot.strip():
        raise ValidationError("screenshot", "Screenshot URL is required")
    order = await require_order(db, order_id)
    if order.status == OrderStatus.CANCELLED.value:
        raise ValidationError("status", "Order is cancelled")

    values = {
        "screenshot": screenshot.strip(),
        "payment_status": PaymentStatus.AWAITING_CHECK.value,
        "updated_at": datetime.utcnow(),
    }
    if payment_method:
        values["payment_method"] = payment_method
    # Не даём откатить уже подтверждённую вебхуком оплату
    result = await db.execute(
        update(Order)
        .where(
            Order.id == order_id,
            Order.payment_status.in_(
                [PaymentStatus.PENDING.value, PaymentStatus.AWAITING_CHECK.value]
            ),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    if result.rowcount == 0:
        raise ValidationError("paymentStatus", f"Order payment is already {order.payment_status}")
    return await get_order(db, order_id)


def is_payable(order: Order) -> bool:
    return (
        order.status != OrderStatus.CANCELLED.value
        and order.payment_status not in (PaymentStatus.CONFIRMED.value, PaymentStatus.FAILED.value)
    )
