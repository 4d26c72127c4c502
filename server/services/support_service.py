"""Support chat between users (via the bot) and operators (via the API)."""

import logging
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from server.models.support_message import SupportMessage
from server.models.user import User
from server.services import admin_notifier, user_service
from server.services.errors import ValidationError
from server.services.fulfillment_service import deliver

MEDIA_TYPES = ("photo", "video", "document")


async def record_user_message(
    db: AsyncSession,
    telegram_id,
    text: Optional[str],
    media_url: Optional[str] = None,
    media_type: Optional[str] = None,
    gateway=None,
    **profile,
) -> SupportMessage:
    """Store an incoming user message and let operators know about it."""
    user = await user_service.get_or_create_user(db, telegram_id, **profile)
    for field in user_service.PROFILE_FIELDS:
        if profile.get(field) is not None:
            setattr(user, field, profile[field])

    message = SupportMessage(
        user_id=user.telegram_id,
        message=text or "",
        media_url=media_url,
        media_type=media_type if media_url else None,
        is_from_admin=False,
        is_read=False,
    )
    db.add(message)
    user.has_unread_support = True
    await db.commit()

    try:
        await admin_notifier.notify_support_message(gateway, user, message)
    except Exception:
        logging.exception("Support notification for user %s failed", user.telegram_id)
    return message


async def send_admin_reply(
    db: AsyncSession,
    gateway,
    telegram_id,
    text: Optional[str],
    media_url: Optional[str] = None,
    media_type: Optional[str] = None,
    order_id: Optional[str] = None,
):
    """Store an operator reply, then deliver it. Returns (message, delivered)."""
    if not (text or "").strip() and not media_url:
        raise ValidationError("message", "userId and message or mediaUrl are required")
    if media_url and media_type and media_type not in MEDIA_TYPES:
        raise ValidationError("mediaType", f"mediaType must be one of: {', '.join(MEDIA_TYPES)}")

    user = await user_service.require_user(db, telegram_id)
    message = SupportMessage(
        user_id=user.telegram_id,
        message=text or "",
        media_url=media_url,
        media_type=media_type if media_url else None,
        order_id=order_id,
        is_from_admin=True,
        is_read=True,
    )
    db.add(message)
    await db.commit()

    if gateway is None:
        logging.warning("Support reply %s stored but not sent: no Telegram gateway", message.id)
        return message, False

    if media_url:
        send = {
            "photo": gateway.send_photo,
            "video": gateway.send_video,
        }.get(media_type, gateway.send_document)
        delivered = await deliver(send, user.telegram_id, media_url, caption=text or None)
    else:
        delivered = await deliver(
            gateway.send_message,
            user.telegram_id,
            f"💬 <b>Support Team:</b>\n\n{text}",
            parse_mode="HTML",
        )
    return message, delivered


async def list_chats(db: AsyncSession):
    """Users who have support messages, newest conversation first."""
    last = (
        select(SupportMessage.user_id, func.max(SupportMessage.id).label("last_id"))
        .group_by(SupportMessage.user_id)
        .subquery()
    )
    unread = (
        select(SupportMessage.user_id, func.count(SupportMessage.id).label("unread"))
        .where(SupportMessage.is_from_admin.is_(False), SupportMessage.is_read.is_(False))
        .group_by(SupportMessage.user_id)
        .subquery()
    )
    result = await db.execute(
        select(User, SupportMessage, func.coalesce(unread.c.unread, 0))
        .join(last, last.c.user_id == User.telegram_id)
        .join(SupportMessage, SupportMessage.id == last.c.last_id)
        .outerjoin(unread, unread.c.user_id == User.telegram_id)
        .order_by(SupportMessage.created_at.desc(), SupportMessage.id.desc())
    )
    return [
        {"user": user, "unread_count": int(unread_count or 0), "last_message": last_message}
        for user, last_message, unread_count in result.all()
    ]


async def mark_read(db: AsyncSession, telegram_id) -> None:
    user = await user_service.require_user(db, telegram_id)
    await db.execute(
        update(SupportMessage)
        .where(
            SupportMessage.user_id == user.telegram_id,
            SupportMessage.is_from_admin.is_(False),
            SupportMessage.is_read.is_(False),
        )
        .values(is_read=True)
        .execution_options(synchronize_session=False)
    )
    user.has_unread_support = False
    await db.commit()


async def get_messages(db: AsyncSession, telegram_id, limit: int = 50, before: Optional[int] = None):
    """Chat history in chronological order; marks the user's messages read."""
    user = await user_service.require_user(db, telegram_id)
    stmt = select(SupportMessage).filter_by(user_id=user.telegram_id)
    if before is not None:
        stmt = stmt.where(SupportMessage.id < before)
    result = await db.execute(
        stmt.order_by(SupportMessage.created_at.desc(), SupportMessage.id.desc()).limit(limit)
    )
    messages = list(result.scalars().all())
    await mark_read(db, telegram_id)
    messages.reverse()
    return messages


async def unread_count(db: AsyncSession) -> int:
    count = await db.scalar(select(func.count(User.id)).where(User.has_unread_support.is_(True)))
    return int(count or 0)
