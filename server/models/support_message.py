from datetime import datetime

from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey, Index
from server.db.base_class import Base


class SupportMessage(Base):
    __tablename__ = "support_messages"

    id = Column(Integer, primary_key=True, index=True)
    # telegram_id пользователя, с которым идёт переписка
    user_id = Column(String(64), ForeignKey("users.telegram_id"), nullable=False)
    message = Column(Text, nullable=False, default="")
    media_url = Column(Text, nullable=True)
    media_type = Column(String(16), nullable=True)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=True)
    is_from_admin = Column(Boolean, default=False, nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("ix_support_messages_user_created", "user_id", "created_at"),
    )
