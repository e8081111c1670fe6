from __future__ import annotations
from datetime import datetime
from typing import Optional
from sqlalchemy.orm import declarative_base, Mapped, mapped_column
from sqlalchemy import String, Integer, Boolean, Float, DateTime, text

Base = declarative_base()


class User(Base):
    """Roster record for every actor: requesters, technicians and administrators.

    Technician-only columns (presence, position, round-robin stamp) stay null/false for other roles.
    """
    __tablename__ = 'users'
    ROLE_REQUESTER = 'requester'
    ROLE_DEPOT_TECH = 'depot_tech'
    ROLE_FIELD_TECH = 'field_tech'
    ROLE_ADMIN = 'admin'
    TECHNICIAN_ROLES = (ROLE_DEPOT_TECH, ROLE_FIELD_TECH)
    ALL_ROLES = (ROLE_REQUESTER, ROLE_DEPOT_TECH, ROLE_FIELD_TECH, ROLE_ADMIN)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    mobile: Mapped[Optional[str]] = mapped_column(String(32), index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    # requester profile (source of the ticket snapshot)
    chassis_number: Mapped[Optional[str]] = mapped_column(String(64))
    wallet_balance: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    team_leader_name: Mapped[Optional[str]] = mapped_column(String(128))
    team_leader_mobile: Mapped[Optional[str]] = mapped_column(String(32))
    # technician presence / round-robin
    is_online: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_available: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_assigned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    assign_seq: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    current_lat: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    current_lng: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=text('CURRENT_TIMESTAMP'), server_onupdate=text('CURRENT_TIMESTAMP'))

    @property
    def is_technician(self) -> bool:
        return self.role in self.TECHNICIAN_ROLES

    @property
    def is_admin(self) -> bool:
        return self.role == self.ROLE_ADMIN

    @property
    def current_position(self):
        if self.current_lat is None or self.current_lng is None:
            return None
        return (self.current_lat, self.current_lng)

    def profile_snapshot(self) -> dict:
        return {
            'full_name': self.name,
            'mobile': self.mobile,
            'chassis_number': self.chassis_number,
            'wallet_balance': self.wallet_balance,
            'team_leader_name': self.team_leader_name,
            'team_leader_mobile': self.team_leader_mobile,
        }
