from __future__ import annotations

import datetime as dt
from datetime import datetime
from enum import StrEnum
from typing import Optional

from sqlalchemy import JSON, CheckConstraint, Enum, Index
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql.sqltypes import Boolean, Date, DateTime, Integer, String, Time


class Base(DeclarativeBase):
    pass


class SlotStatus(StrEnum):
    AVAILABLE = "available"
    BOOKED = "booked"
    COMPLETED = "completed"
    NO_SHOW = "no-show"


class Role(StrEnum):
    MEMBER = "member"
    RUSHEE = "rushee"
    ADMIN = "admin"


def _enum(enum_cls: type[StrEnum]) -> Enum:
    return Enum(
        enum_cls,
        values_callable=lambda cls: [e.value for e in cls],
        native_enum=False,
        length=32,
    )


class User(Base):
    """Directory profile. Written by the onboarding flow, read-only here."""

    __tablename__ = "users"
    __table_args__ = (Index("idx_users_role", "role"),)

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    role: Mapped[Role] = mapped_column(_enum(Role), nullable=False)
    calendar_connected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    calendar_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class Slot(Base):
    __tablename__ = "slots"
    __table_args__ = (
        CheckConstraint(
            "(status = 'available' AND occupant_id IS NULL) OR (status <> 'available' AND occupant_id IS NOT NULL)",
            name="chk_slots_occupant",
        ),
        CheckConstraint(
            "status <> 'available' OR external_event_ref IS NULL",
            name="chk_slots_event_ref",
        ),
        CheckConstraint("version >= 1", name="chk_slots_version"),
        Index("idx_slots_host", "host_id"),
        Index("idx_slots_occupant_status", "occupant_id", "status"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    host_id: Mapped[str] = mapped_column(String(128), nullable=False)
    host_display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    time: Mapped[dt.time] = mapped_column(Time, nullable=False)
    location: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[SlotStatus] = mapped_column(_enum(SlotStatus), nullable=False, default=SlotStatus.AVAILABLE)
    occupant_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    occupant_display_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    external_event_ref: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class BookingQuota(Base):
    """Count of slots an occupant currently holds in `booked` state."""

    __tablename__ = "booking_quotas"
    __table_args__ = (CheckConstraint("active >= 0", name="chk_quota_active"),)

    occupant_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    active: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class Ranking(Base):
    __tablename__ = "rankings"

    ranker_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    candidate_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class CalendarCredential(Base):
    __tablename__ = "calendar_credentials"

    principal_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    access_token: Mapped[str] = mapped_column(String(4096), nullable=False)
    calendar_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
