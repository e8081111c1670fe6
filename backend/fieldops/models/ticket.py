from __future__ import annotations
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Optional, List
from sqlalchemy.orm import Mapped, mapped_column, validates
from sqlalchemy import Integer, String, Text, Boolean, Float, JSON, DateTime, text
from .user import Base, User


@dataclass(frozen=True)
class RequesterSnapshot:
    """Requester identity/contact/balance as it was when the ticket was raised."""
    full_name: str
    mobile: Optional[str] = None
    chassis_number: Optional[str] = None
    wallet_balance: float = 0.0
    team_leader_name: Optional[str] = None
    team_leader_mobile: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> 'RequesterSnapshot':
        return cls(**user.profile_snapshot())

    def as_dict(self) -> dict:
        return asdict(self)


class Ticket(Base):
    __tablename__ = 'tickets'
    # Status constants
    STATUS_PENDING = 'PENDING'
    STATUS_ACCEPTED = 'ACCEPTED'
    STATUS_ON_WAY = 'ON_WAY'
    STATUS_IN_PROGRESS = 'IN_PROGRESS'
    STATUS_COMPLETED = 'COMPLETED'
    STATUS_CANCELLED = 'CANCELLED'
    ALL_STATUSES = (STATUS_PENDING, STATUS_ACCEPTED, STATUS_ON_WAY, STATUS_IN_PROGRESS, STATUS_COMPLETED, STATUS_CANCELLED)
    FORWARD_CHAIN = (STATUS_PENDING, STATUS_ACCEPTED, STATUS_ON_WAY, STATUS_IN_PROGRESS, STATUS_COMPLETED)
    TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_CANCELLED)
    ACTIVE_STATUSES = (STATUS_PENDING, STATUS_ACCEPTED, STATUS_ON_WAY, STATUS_IN_PROGRESS)
    # status -> column stamped when the status is entered
    STATUS_TIMESTAMPS = {
        STATUS_ACCEPTED: 'accepted_at',
        STATUS_ON_WAY: 'on_way_at',
        STATUS_IN_PROGRESS: 'in_progress_at',
        STATUS_COMPLETED: 'completed_at',
    }
    # Dispatch types
    TYPE_ON_SITE = 'ON_SITE'
    TYPE_DEPOT = 'DEPOT'
    ALL_TYPES = (TYPE_ON_SITE, TYPE_DEPOT)
    REQUIRED_ROLE = {
        TYPE_ON_SITE: User.ROLE_FIELD_TECH,
        TYPE_DEPOT: User.ROLE_DEPOT_TECH,
    }
    PRIORITY_LOW = 'LOW'
    PRIORITY_NORMAL = 'NORMAL'
    PRIORITY_HIGH = 'HIGH'
    ALL_PRIORITIES = (PRIORITY_LOW, PRIORITY_NORMAL, PRIORITY_HIGH)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[Optional[str]] = mapped_column(String(16), unique=True, index=True)
    requester_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    technician_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    category: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    location_address: Mapped[Optional[str]] = mapped_column(String(255))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    location_lat: Mapped[float] = mapped_column(Float, nullable=False)
    location_lng: Mapped[float] = mapped_column(Float, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=STATUS_PENDING, index=True)
    priority: Mapped[str] = mapped_column(String(8), nullable=False, default=PRIORITY_NORMAL)
    paused: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    requester_snapshot: Mapped[dict] = mapped_column(JSON, nullable=False)
    accepted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    on_way_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    in_progress_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text)
    technician_remarks: Mapped[Optional[str]] = mapped_column(Text)
    parts_replaced: Mapped[Optional[str]] = mapped_column(Text)
    images: Mapped[List[str]] = mapped_column(JSON, default=list)
    voice_notes: Mapped[List[str]] = mapped_column(JSON, default=list)
    completion_images: Mapped[List[str]] = mapped_column(JSON, default=list)
    completion_voice_notes: Mapped[List[str]] = mapped_column(JSON, default=list)
    customer_rating: Mapped[Optional[int]] = mapped_column(Integer)
    customer_feedback: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=text('CURRENT_TIMESTAMP'))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=text('CURRENT_TIMESTAMP'), server_onupdate=text('CURRENT_TIMESTAMP'))
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Every UPDATE carries "WHERE version = :seen"; a lost race raises StaleDataError.
    __mapper_args__ = {'version_id_col': version}

    @validates('requester_snapshot')
    def _freeze_snapshot(self, key, value):
        if self.requester_snapshot is not None and value != self.requester_snapshot:
            raise ValueError('requester_snapshot is immutable once captured')
        return value

    @property
    def requester(self) -> RequesterSnapshot:
        return RequesterSnapshot(**self.requester_snapshot)

    @property
    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES

    @property
    def location(self):
        return (self.location_lat, self.location_lng)

    @property
    def required_role(self) -> str:
        return self.REQUIRED_ROLE[self.type]

# Forward flow: PENDING -> ACCEPTED -> ON_WAY -> IN_PROGRESS -> COMPLETED (CANCELLED from any non-terminal)
