from typing import Optional, Union

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from server.api.serializers import serialize_subscription, serialize_user
from server.db.session import SessionLocal
from server.services import user_service

router = APIRouter()


async def get_db():
    async with SessionLocal() as db:
        yield db


class UserIn(BaseModel):
    telegramId: Union[str, int]
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    username: Optional[str] = None


class UserUpdate(BaseModel):
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    username: Optional[str] = None


@router.post("/users")
async def register_user(data: UserIn, db: AsyncSession = Depends(get_db)):
    """Register a user by Telegram ID or refresh its profile."""
    user = await user_service.upsert_user(
        db,
        data.telegramId,
        first_name=data.firstName,
        last_name=data.lastName,
        username=data.username,
    )
    return serialize_user(user)


@router.get("/users/{telegram_id}")
async def get_user(telegram_id: str, db: AsyncSession = Depends(get_db)):
    user = await user_service.require_user(db, telegram_id)
    return serialize_user(user)


@router.put("/users/{telegram_id}")
async def update_user(telegram_id: str, data: UserUpdate, db: AsyncSession = Depends(get_db)):
    await user_service.require_user(db, telegram_id)
    user = await user_service.upsert_user(
        db,
        telegram_id,
        first_name=data.firstName,
        last_name=data.lastName,
        username=data.username,
    )
    return serialize_user(user)


@router.get("/users/{telegram_id}/stats")
async def get_user_stats(telegram_id: str, db: AsyncSession = Depends(get_db)):
    return await user_service.get_user_stats(db, telegram_id)


@router.get("/users/{telegram_id}/subscriptions")
async def list_subscriptions(telegram_id: str, db: AsyncSession = Depends(get_db)):
    subscriptions = await user_service.list_subscriptions(db, telegram_id)
    return [serialize_subscription(s) for s in subscriptions]
