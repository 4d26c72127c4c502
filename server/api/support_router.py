from typing import Optional, Union

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from server.api.deps import get_optional_gateway
from server.api.serializers import serialize_support_message, serialize_user
from server.db.session import SessionLocal
from server.services import support_service

router = APIRouter(prefix="/support")


async def get_db():
    async with SessionLocal() as db:
        yield db


class SupportReply(BaseModel):
    userId: Union[str, int]
    message: Optional[str] = None
    mediaUrl: Optional[str] = None
    mediaType: Optional[str] = None
    orderId: Optional[str] = None


@router.get("/chats")
async def list_chats(db: AsyncSession = Depends(get_db)):
    chats = await support_service.list_chats(db)
    return [
        {
            **serialize_user(chat["user"]),
            "unreadCount": chat["unread_count"],
            "lastMessage": serialize_support_message(chat["last_message"]),
        }
        for chat in chats
    ]


@router.get("/messages/{telegram_id}")
async def get_messages(
    telegram_id: str,
    limit: int = 50,
    before: Optional[int] = None,
    db: AsyncSession = Depends(get_db),
):
    messages = await support_service.get_messages(db, telegram_id, limit, before)
    return [serialize_support_message(m) for m in messages]


@router.post("/send")
async def send_message(
    data: SupportReply,
    db: AsyncSession = Depends(get_db),
    gateway=Depends(get_optional_gateway),
):
    message, delivered = await support_service.send_admin_reply(
        db,
        gateway,
        data.userId,
        data.message,
        media_url=data.mediaUrl,
        media_type=data.mediaType,
        order_id=data.orderId,
    )
    return {
        "success": True,
        "delivered": delivered,
        "message": serialize_support_message(message),
    }


@router.get("/unread-count")
async def unread_count(db: AsyncSession = Depends(get_db)):
    return {"count": await support_service.unread_count(db)}


@router.patch("/mark-read/{telegram_id}")
async def mark_read(telegram_id: str, db: AsyncSession = Depends(get_db)):
    await support_service.mark_read(db, telegram_id)
    return {"success": True}
