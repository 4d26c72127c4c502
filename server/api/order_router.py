import logging
from decimal import Decimal
from typing import List, Optional, Union

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from server.api.deps import get_gateway, get_optional_gateway
from server.api.serializers import serialize_order
from server.db.session import SessionLocal
from server.models.order import OrderType
from server.services import admin_notifier, order_service
from server.services.payment_webhook import build_invoice_payload
from telegram_bot.gateway import to_minor_units

router = APIRouter()

INVOICE_TITLES = {
    OrderType.PRODUCT: "Order",
    OrderType.BUNDLE: "Bundle",
    OrderType.VIP: "VIP subscription",
    OrderType.CUSTOM_VIDEO: "Custom video",
    OrderType.VIDEO_CALL: "Video call",
    OrderType.RATING: "Rating",
    OrderType.DONATION: "Donation",
}


async def get_db():
    async with SessionLocal() as db:
        yield db


class OrderItemIn(BaseModel):
    type: str
    id: Union[int, str]
    quantity: int = 1


class CreateOrderRequest(BaseModel):
    userId: Union[str, int]
    orderType: str = OrderType.PRODUCT.value
    items: List[OrderItemIn] = []
    tier: Optional[str] = None
    donationAmount: Optional[Decimal] = None
    donationMessage: Optional[str] = None
    paymentMethod: Optional[str] = None
    # доставка
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    zipCode: Optional[str] = None
    country: Optional[str] = None
    # профиль Telegram
    username: Optional[str] = None


class PaymentProofRequest(BaseModel):
    screenshot: str
    paymentMethod: Optional[str] = "screenshot"


@router.post("/orders", status_code=201)
async def create_order(
    data: CreateOrderRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    gateway=Depends(get_optional_gateway),
):
    order = await order_service.create_order(
        db,
        data.userId,
        data.orderType,
        items=[order_service.RequestedItem(i.type, i.id, i.quantity) for i in data.items],
        shipping=order_service.ShippingInfo(
            first_name=data.firstName,
            last_name=data.lastName,
            address=data.address,
            city=data.city,
            zip_code=data.zipCode,
            country=data.country,
        ),
        donation_amount=data.donationAmount,
        donation_message=data.donationMessage,
        tier=data.tier,
        payment_method=data.paymentMethod,
        profile={
            "first_name": data.firstName,
            "last_name": data.lastName,
            "username": data.username,
        },
    )
    # Уведомление админам уходит после ответа и не влияет на заказ
    background_tasks.add_task(
        admin_notifier.notify_order_created,
        gateway,
        admin_notifier.OrderSummary.from_order(order),
    )
    return serialize_order(order)


@router.get("/orders/detail/{order_id}")
async def get_order(order_id: str, db: AsyncSession = Depends(get_db)):
    order = await order_service.require_order(db, order_id)
    return serialize_order(order)


@router.get("/orders/{telegram_id}")
async def list_user_orders(
    telegram_id: str,
    status: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    db: AsyncSession = Depends(get_db),
):
    orders = await order_service.list_user_orders(db, telegram_id, status, limit, offset)
    return [serialize_order(o) for o in orders]


@router.post("/orders/{order_id}/invoice")
async def create_invoice(
    order_id: str,
    db: AsyncSession = Depends(get_db),
    gateway=Depends(get_gateway),
):
    """Создаёт ссылку на оплату заказа через Telegram Payments."""
    order = await order_service.require_order(db, order_id)
    if not order_service.is_payable(order):
        raise HTTPException(
            status_code=400,
            detail=f"Order is not payable (status={order.status}, paymentStatus={order.payment_status})",
        )

    order_type = OrderType(order.order_type)
    payload = build_invoice_payload(order.id)
    amount = to_minor_units(order.total_amount)
    try:
        invoice_url = await gateway.create_invoice(
            title=INVOICE_TITLES[order_type],
            description=f"Payment for order {order.id}",
            payload=payload,
            amount_minor_units=amount,
        )
    except Exception as e:
        logging.exception("createInvoiceLink failed for order %s", order.id)
        raise HTTPException(status_code=502, detail=f"Payment provider error: {e}")

    return {
        "invoiceUrl": invoice_url,
        "payload": payload,
        "amount": amount,
        "currency": gateway.currency,
    }


@router.post("/orders/{order_id}/screenshot")
async def submit_payment_proof(
    order_id: str, data: PaymentProofRequest, db: AsyncSession = Depends(get_db)
):
    order = await order_service.submit_payment_proof(db, order_id, data.screenshot, data.paymentMethod)
    return serialize_order(order)
