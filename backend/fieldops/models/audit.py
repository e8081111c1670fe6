from __future__ import annotations
from datetime import datetime
from typing import Optional
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, String, Text, JSON, DateTime, func

from .user import Base  # reuse same metadata


class AuditLog(Base):
    """System-level administrative activity (settings, deletes, broadcasts, sweeps)."""
    __tablename__ = 'audit_logs'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    actor_user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    entity: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    entity_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    perms_snapshot: Mapped[dict] = mapped_column(JSON, default=dict)
    meta: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class TicketAuditLog(Base):
    """Append-only before/after record of one administrative ticket mutation.

    ticket_id carries no foreign key; entries outlive a deleted ticket.
    """
    __tablename__ = 'ticket_audit_logs'
    ACTION_STATUS_CHANGE = 'STATUS_CHANGE'
    ACTION_PRIORITY_UPDATE = 'PRIORITY_UPDATE'
    ACTION_EDIT = 'EDIT'
    ACTION_PAUSE = 'PAUSE'
    ACTION_RESUME = 'RESUME'
    ACTION_ASSIGN = 'ASSIGN'
    ACTION_UNASSIGN = 'UNASSIGN'
    ACTION_ROLLBACK = 'ROLLBACK'
    ALL_ACTIONS = (ACTION_STATUS_CHANGE, ACTION_PRIORITY_UPDATE, ACTION_EDIT, ACTION_PAUSE,
                   ACTION_RESUME, ACTION_ASSIGN, ACTION_UNASSIGN, ACTION_ROLLBACK)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ticket_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    actor_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    action_type: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    previous_state: Mapped[dict] = mapped_column(JSON, nullable=False)
    new_state: Mapped[dict] = mapped_column(JSON, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    rolled_back_entry_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
