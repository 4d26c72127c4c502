"""Utility functions for working with :class:`User` via ``AsyncSession``."""

from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from server.models.order import Order, OrderStatus
from server.models.subscription import Subscription, SubscriptionStatus
from server.models.user import User
from server.services.errors import NotFoundError, ValidationError

PROFILE_FIELDS = ("first_name", "last_name", "username")


def normalize_telegram_id(telegram_id) -> str:
    value = str(telegram_id).strip() if telegram_id is not None else ""
    if not value:
        raise ValidationError("userId", "User ID is required")
    return value


async def get_user_by_telegram_id(db: AsyncSession, telegram_id) -> Optional[User]:
    result = await db.execute(select(User).filter_by(telegram_id=str(telegram_id)))
    return result.scalars().first()


async def get_or_create_user(db: AsyncSession, telegram_id, **profile) -> User:
    """Return the user for ``telegram_id``, adding it to the session if new.

    Does not commit: callers create users as part of their own transaction.
    """
    telegram_id = normalize_telegram_id(telegram_id)
    user = await get_user_by_telegram_id(db, telegram_id)
    if user is None:
        user = User(
            telegram_id=telegram_id,
            **{k: v for k, v in profile.items() if k in PROFILE_FIELDS and v is not None},
        )
        db.add(user)
        await db.flush()
    return user


async def upsert_user(db: AsyncSession, telegram_id, **profile) -> User:
    """Create the user or refresh its profile fields."""
    user = await get_or_create_user(db, telegram_id, **profile)
    for field in PROFILE_FIELDS:
        value = profile.get(field)
        if value is not None:
            setattr(user, field, value)
    await db.commit()
    return user


async def require_user(db: AsyncSession, telegram_id) -> User:
    user = await get_user_by_telegram_id(db, telegram_id)
    if user is None:
        raise NotFoundError("User", str(telegram_id))
    return user


async def get_user_stats(db: AsyncSession, telegram_id) -> dict:
    user = await require_user(db, telegram_id)

    total_orders = await db.scalar(
        select(func.count(Order.id)).where(Order.user_id == user.id)
    )
    completed_orders = await db.scalar(
        select(func.count(Order.id)).where(
            Order.user_id == user.id, Order.status == OrderStatus.COMPLETED.value
        )
    )
    total_spent = await db.scalar(
        select(func.coalesce(func.sum(Order.total_amount), 0)).where(
            Order.user_id == user.id, Order.status == OrderStatus.COMPLETED.value
        )
    )
    active_subscriptions = await db.scalar(
        select(func.count(Subscription.id)).where(
            Subscription.user_id == user.id,
            Subscription.status == SubscriptionStatus.ACTIVE.value,
        )
    )
    return {
        "totalOrders": int(total_orders or 0),
        "completedOrders": int(completed_orders or 0),
        "totalSpent": str(Decimal(str(total_spent or 0)).quantize(Decimal("0.01"))),
        "activeSubscriptions": int(active_subscriptions or 0),
    }


async def list_subscriptions(db: AsyncSession, telegram_id):
    user = await require_user(db, telegram_id)
    result = await db.execute(
        select(Subscription)
        .filter_by(user_id=user.id)
        .order_by(Subscription.created_at.desc())
    )
    return result.scalars().all()
