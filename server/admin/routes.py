from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from server.api.deps import get_optional_gateway
from server.api.serializers import serialize_order
from server.db.session import SessionLocal
from server.services import order_service

admin_router = APIRouter(prefix="/api/admin")


async def get_db():
    async with SessionLocal() as db:
        yield db


class StatusUpdate(BaseModel):
    status: str


class PaymentStatusUpdate(BaseModel):
    paymentStatus: str


@admin_router.get("/orders")
async def admin_orders(
    status: Optional[str] = None,
    paymentStatus: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
):
    orders = await order_service.list_orders(db, status=status, payment_status=paymentStatus)
    return [serialize_order(o) for o in orders]


@admin_router.patch("/orders/{order_id}/status")
async def update_order_status(
    order_id: str, data: StatusUpdate, db: AsyncSession = Depends(get_db)
):
    order = await order_service.update_status(db, order_id, data.status)
    return serialize_order(order)


@admin_router.patch("/orders/{order_id}/payment-status")
async def update_payment_status(
    order_id: str,
    data: PaymentStatusUpdate,
    db: AsyncSession = Depends(get_db),
    gateway=Depends(get_optional_gateway),
):
    """Ручное подтверждение оплаты (например, по скриншоту) запускает выдачу заказа."""
    order = await order_service.update_payment_status(db, order_id, data.paymentStatus, gateway)
    return serialize_order(order)
