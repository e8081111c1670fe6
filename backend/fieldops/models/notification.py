from __future__ import annotations
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, String, Text, Boolean, DateTime, func
from .user import Base


class Notification(Base):
    __tablename__ = 'notifications'
    TYPE_INFO = 'INFO'
    TYPE_ALERT = 'ALERT'
    TYPE_SUCCESS = 'SUCCESS'
    TYPE_WARNING = 'WARNING'
    TYPE_ERROR = 'ERROR'
    ALL_TYPES = (TYPE_INFO, TYPE_ALERT, TYPE_SUCCESS, TYPE_WARNING, TYPE_ERROR)
    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    target_role: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    title: Mapped[str] = mapped_column(String(160), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(String(8), nullable=False, default=TYPE_INFO)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    reference_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    # sub-second resolution keeps the inbox order stable within a burst
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                                                 server_default=func.now())
