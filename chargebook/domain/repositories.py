from __future__ import annotations

from datetime import date, datetime
from typing import Protocol

from ..models import Booking, BookingStatus, ChargerType, ScheduleOverride, Station


class StationRepository(Protocol):
    async def get(self, station_id: int) -> Station | None: ...

    async def get_for_update(self, station_id: int) -> Station | None: ...

    async def create(
        self,
        *,
        name: str,
        charger_type: ChargerType,
        total_slots: int,
        open_hour: int,
        close_hour: int,
    ) -> Station: ...

    async def save(self, station: Station) -> Station: ...

    async def delete(self, station: Station) -> None: ...

    async def get_override(self, station_id: int, day: date) -> ScheduleOverride | None: ...

    async def list_overrides(self, station_id: int, start: date, end: date) -> list[ScheduleOverride]: ...

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
    ) -> ScheduleOverride: ...


class BookingRepository(Protocol):
    async def get(self, booking_id: int) -> Booking | None: ...

    async def get_for_update(self, booking_id: int) -> Booking | None: ...

    async def list_active_overlapping(
        self,
        station_id: int,
        start: datetime,
        end: datetime,
        exclude_booking_id: int | None = None,
    ) -> list[Booking]: ...

    async def has_future_active(self, station_id: int, now: datetime) -> bool: ...

    async def create(
        self,
        *,
        owner_id: int,
        station_id: int,
        reservation_start: datetime,
        reservation_end: datetime,
        status: BookingStatus,
    ) -> Booking: ...

    async def list_bookings(
        self,
        *,
        owner_id: int | None = None,
        station_id: int | None = None,
        status: BookingStatus | None = None,
    ) -> list[Booking]: ...

    async def save(self, booking: Booking) -> Booking: ...
