from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import Select, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.errors import StationBusyError, VersionConflictError
from ..domain.repositories import BookingRepository, StationRepository
from ..models import ACTIVE_BOOKING_STATUSES, Booking, BookingStatus, ChargerType, ScheduleOverride, Station
from ..utils.time import utc_now_naive

# MySQL "lock wait timeout exceeded" and "deadlock found".
_LOCK_CONTENTION_CODES = frozenset({1205, 1213})


def _is_lock_contention(exc: OperationalError) -> bool:
    args = getattr(exc.orig, "args", ())
    return bool(args) and args[0] in _LOCK_CONTENTION_CODES


class SqlAlchemyStationRepository(StationRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, station_id: int) -> Station | None:
        return await self.session.get(Station, station_id)

    async def get_for_update(self, station_id: int) -> Station | None:
        """Lock the station row; every admission for the station serialises on it."""
        try:
            result = await self.session.scalar(
                select(Station)
                .where(Station.id == station_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
        except OperationalError as exc:
            if not _is_lock_contention(exc):
                raise
            raise StationBusyError("station is busy, retry shortly") from exc
        return result if isinstance(result, Station) else None

    async def create(
        self,
        *,
        name: str,
        charger_type: ChargerType,
        total_slots: int,
        open_hour: int,
        close_hour: int,
    ) -> Station:
        now = utc_now_naive()
        station = Station(
            name=name,
            charger_type=charger_type,
            total_slots=total_slots,
            open_hour=open_hour,
            close_hour=close_hour,
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        self.session.add(station)
        await self.session.flush()
        return station

    async def save(self, station: Station) -> Station:
        self.session.add(station)
        await self.session.flush()
        return station

    async def delete(self, station: Station) -> None:
        await self.session.delete(station)
        await self.session.flush()

    async def get_override(self, station_id: int, day: date) -> ScheduleOverride | None:
        stmt = select(ScheduleOverride).where(
            ScheduleOverride.station_id == station_id,
            ScheduleOverride.date == day,
        )
        return await self.session.scalar(stmt)

    async def list_overrides(self, station_id: int, start: date, end: date) -> List[ScheduleOverride]:
        stmt = (
            select(ScheduleOverride)
            .where(
                ScheduleOverride.station_id == station_id,
                ScheduleOverride.date >= start,
                ScheduleOverride.date < end,
            )
            .order_by(ScheduleOverride.date)
        )
        return list((await self.session.scalars(stmt)).all())

    async def upsert_override(
        self,
        *,
        station_id: int,
        day: date,
        open_hour: int | None,
        close_hour: int | None,
        is_closed: bool,
        is_maintenance: bool,
        reason: str | None,
    ) -> ScheduleOverride:
        now = utc_now_naive()
        override = await self.get_override(station_id, day)
        if override is None:
            override = ScheduleOverride(station_id=station_id, date=day, created_at=now)
        override.open_hour = open_hour
        override.close_hour = close_hour
        override.is_closed = is_closed
        override.is_maintenance = is_maintenance
        override.reason = reason
        override.updated_at = now
        self.session.add(override)
        await self.session.flush()
        return override


class SqlAlchemyBookingRepository(BookingRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, booking_id: int) -> Booking | None:
        return await self.session.get(Booking, booking_id)

    async def get_for_update(self, booking_id: int) -> Booking | None:
        # Refresh rows already in the identity map with the locked values.
        try:
            result = await self.session.scalar(
                select(Booking)
                .where(Booking.id == booking_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
        except OperationalError as exc:
            if not _is_lock_contention(exc):
                raise
            raise VersionConflictError("booking is being modified concurrently") from exc
        return result if isinstance(result, Booking) else None

    async def list_active_overlapping(
        self,
        station_id: int,
        start: datetime,
        end: datetime,
        exclude_booking_id: int | None = None,
    ) -> List[Booking]:
        stmt: Select[tuple[Booking]] = select(Booking).where(
            Booking.station_id == station_id,
            Booking.status.in_(ACTIVE_BOOKING_STATUSES),
            Booking.reservation_start < end,
            Booking.reservation_end > start,
        )
        if exclude_booking_id is not None:
            stmt = stmt.where(Booking.id != exclude_booking_id)
        return list((await self.session.scalars(stmt)).all())

    async def has_future_active(self, station_id: int, now: datetime) -> bool:
        stmt = select(Booking.id).where(
            Booking.station_id == station_id,
            Booking.status.in_(ACTIVE_BOOKING_STATUSES),
            Booking.reservation_start > now,
        )
        return await self.session.scalar(stmt.limit(1)) is not None

    async def create(
        self,
        *,
        owner_id: int,
        station_id: int,
        reservation_start: datetime,
        reservation_end: datetime,
        status: BookingStatus,
    ) -> Booking:
        now = utc_now_naive()
        booking = Booking(
            owner_id=owner_id,
            station_id=station_id,
            reservation_start=reservation_start,
            reservation_end=reservation_end,
            status=status,
            version=1,
            created_at=now,
            updated_at=now,
        )
        self.session.add(booking)
        await self.session.flush()
        return booking

    async def list_bookings(
        self,
        *,
        owner_id: Optional[int] = None,
        station_id: Optional[int] = None,
        status: Optional[BookingStatus] = None,
    ) -> List[Booking]:
        stmt: Select[tuple[Booking]] = select(Booking).order_by(Booking.reservation_start.desc())
        if owner_id is not None:
            stmt = stmt.where(Booking.owner_id == owner_id)
        if station_id is not None:
            stmt = stmt.where(Booking.station_id == station_id)
        if status is not None:
            stmt = stmt.where(Booking.status == status)
        return list((await self.session.scalars(stmt)).all())

    async def save(self, booking: Booking) -> Booking:
        self.session.add(booking)
        await self.session.flush()
        return booking
