from __future__ import annotations

from datetime import date, datetime
from enum import StrEnum
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, Enum, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql.sqltypes import BigInteger, Date, DateTime, Integer, String


class Base(DeclarativeBase):
    pass


class UserRole(StrEnum):
    OWNER = "owner"
    STATION_OPERATOR = "station_operator"
    BACKOFFICE = "backoffice"


class ChargerType(StrEnum):
    AC = "AC"
    DC = "DC"


class BookingStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


ACTIVE_BOOKING_STATUSES = (BookingStatus.PENDING, BookingStatus.APPROVED)


def _enum_column(enum_cls: type[StrEnum]) -> Enum:
    return Enum(
        enum_cls,
        values_callable=lambda cls: [e.value for e in cls],
        native_enum=False,
    )


class User(Base):
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("email", name="uq_users_email"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[UserRole] = mapped_column(_enum_column(UserRole), nullable=False, default=UserRole.OWNER)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class Station(Base):
    __tablename__ = "stations"
    __table_args__ = (
        CheckConstraint("total_slots >= 1", name="chk_stations_slots"),
        CheckConstraint("open_hour >= 0 AND close_hour <= 24 AND open_hour < close_hour", name="chk_stations_hours"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    charger_type: Mapped[ChargerType] = mapped_column(_enum_column(ChargerType), nullable=False)
    total_slots: Mapped[int] = mapped_column(Integer, nullable=False)
    open_hour: Mapped[int] = mapped_column(Integer, nullable=False, default=8)
    close_hour: Mapped[int] = mapped_column(Integer, nullable=False, default=20)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    bookings: Mapped[list["Booking"]] = relationship(
        back_populates="station", cascade="all, delete-orphan", passive_deletes=True
    )
    overrides: Mapped[list["ScheduleOverride"]] = relationship(
        back_populates="station", cascade="all, delete-orphan", passive_deletes=True
    )


class ScheduleOverride(Base):
    __tablename__ = "schedule_overrides"
    __table_args__ = (
        UniqueConstraint("station_id", "date", name="uq_overrides_station_date"),
        CheckConstraint(
            "open_hour IS NULL OR close_hour IS NULL OR open_hour < close_hour",
            name="chk_overrides_hours",
        ),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    station_id: Mapped[int] = mapped_column(ForeignKey("stations.id", ondelete="CASCADE"), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    open_hour: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    close_hour: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_closed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_maintenance: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    station: Mapped["Station"] = relationship(back_populates="overrides")


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint("reservation_start < reservation_end", name="chk_bookings_window"),
        Index("idx_bookings_station_window", "station_id", "reservation_start", "reservation_end"),
        Index("idx_bookings_owner", "owner_id"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    station_id: Mapped[int] = mapped_column(ForeignKey("stations.id", ondelete="CASCADE"), nullable=False)
    reservation_start: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    reservation_end: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    status: Mapped[BookingStatus] = mapped_column(
        _enum_column(BookingStatus),
        nullable=False,
        default=BookingStatus.PENDING,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    verification_token: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    station: Mapped["Station"] = relationship(back_populates="bookings")
