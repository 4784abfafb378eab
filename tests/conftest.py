import asyncio
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import AsyncIterator, Callable, Optional

import pytest
from chargebook.domain.lifecycle import Principal
from chargebook.models import (
    ACTIVE_BOOKING_STATUSES,
    Booking,
    BookingStatus,
    ChargerType,
    ScheduleOverride,
    Station,
    UserRole,
)

NOW = datetime(2026, 3, 2, 6, 0)


class FakeStationRepo:
    """In-memory station directory. get_for_update takes a per-station lock held until the transaction ends."""

    def __init__(self) -> None:
        self.stations: dict[int, Station] = {}
        self.overrides: dict[tuple[int, date], ScheduleOverride] = {}
        self._locks: dict[int, asyncio.Lock] = {}
        self._held: list[asyncio.Lock] = []
        self.locked_ids: list[int] = []

    def add(self, **kwargs: object) -> Station:
        station_id = len(self.stations) + 1
        fields: dict[str, object] = {
            "id": station_id,
            "name": f"Station {station_id}",
            "charger_type": ChargerType.AC,
            "total_slots": 2,
            "open_hour": 8,
            "close_hour": 20,
            "is_active": True,
            "created_at": NOW,
            "updated_at": NOW,
        }
        fields.update(kwargs)
        station = Station(**fields)
        self.stations[station.id] = station
        return station

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        try:
            yield
        finally:
            while self._held:
                self._held.pop().release()

    async def get(self, station_id: int) -> Optional[Station]:
        return self.stations.get(station_id)

    async def get_for_update(self, station_id: int) -> Optional[Station]:
        lock = self._locks.setdefault(station_id, asyncio.Lock())
        await lock.acquire()
        self._held.append(lock)
        self.locked_ids.append(station_id)
        return self.stations.get(station_id)

    async def create(
        self,
        *,
        name: str,
        charger_type: ChargerType,
        total_slots: int,
        open_hour: int,
        close_hour: int,
    ) -> Station:
        return self.add(
            name=name,
            charger_type=charger_type,
            total_slots=total_slots,
            open_hour=open_hour,
            close_hour=close_hour,
        )

    async def save(self, station: Station) -> Station:
        return station

    async def delete(self, station: Station) -> None:
        del self.stations[station.id]

    async def get_override(self, station_id: int, day: date) -> Optional[ScheduleOverride]:
        return self.overrides.get((station_id, day))

    async def list_overrides(self, station_id: int, start: date, end: date) -> list[ScheduleOverride]:
        return sorted(
            (o for (sid, day), o in self.overrides.items() if sid == station_id and start <= day < end),
            key=lambda o: o.date,
        )

    async def upsert_override(
        self,
        *,
        station_id: int,
        day: date,
        open_hour: Optional[int],
        close_hour: Optional[int],
        is_closed: bool,
        is_maintenance: bool,
        reason: Optional[str],
    ) -> ScheduleOverride:
        override = ScheduleOverride(
            station_id=station_id,
            date=day,
            open_hour=open_hour,
            close_hour=close_hour,
            is_closed=is_closed,
            is_maintenance=is_maintenance,
            reason=reason,
            created_at=NOW,
            updated_at=NOW,
        )
        self.overrides[(station_id, day)] = override
        return override


class FakeBookingRepo:
    def __init__(self) -> None:
        self.bookings: dict[int, Booking] = {}
        self.saved: list[int] = []

    def add(self, **kwargs: object) -> Booking:
        booking_id = len(self.bookings) + 1
        fields: dict[str, object] = {
            "id": booking_id,
            "owner_id": 1,
            "station_id": 1,
            "status": BookingStatus.PENDING,
            "version": 1,
            "created_at": NOW,
            "updated_at": NOW,
        }
        fields.update(kwargs)
        booking = Booking(**fields)
        self.bookings[booking.id] = booking
        return booking

    async def get(self, booking_id: int) -> Optional[Booking]:
        return self.bookings.get(booking_id)

    async def get_for_update(self, booking_id: int) -> Optional[Booking]:
        return self.bookings.get(booking_id)

    async def list_active_overlapping(
        self,
        station_id: int,
        start: datetime,
        end: datetime,
        exclude_booking_id: Optional[int] = None,
    ) -> list[Booking]:
        # Yield so that concurrent admissions interleave between count and insert.
        await asyncio.sleep(0)
        return [
            b
            for b in self.bookings.values()
            if b.station_id == station_id
            and b.status in ACTIVE_BOOKING_STATUSES
            and b.reservation_start < end
            and b.reservation_end > start
            and b.id != exclude_booking_id
        ]

    async def has_future_active(self, station_id: int, now: datetime) -> bool:
        return any(
            b.station_id == station_id and b.status in ACTIVE_BOOKING_STATUSES and b.reservation_start > now
            for b in self.bookings.values()
        )

    async def create(
        self,
        *,
        owner_id: int,
        station_id: int,
        reservation_start: datetime,
        reservation_end: datetime,
        status: BookingStatus,
    ) -> Booking:
        await asyncio.sleep(0)
        return self.add(
            owner_id=owner_id,
            station_id=station_id,
            reservation_start=reservation_start,
            reservation_end=reservation_end,
            status=status,
        )

    async def list_bookings(
        self,
        *,
        owner_id: Optional[int] = None,
        station_id: Optional[int] = None,
        status: Optional[BookingStatus] = None,
    ) -> list[Booking]:
        return [
            b
            for b in self.bookings.values()
            if (owner_id is None or b.owner_id == owner_id)
            and (station_id is None or b.station_id == station_id)
            and (status is None or b.status == status)
        ]

    async def save(self, booking: Booking) -> Booking:
        self.saved.append(booking.id)
        return booking


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def station_repo() -> FakeStationRepo:
    return FakeStationRepo()


@pytest.fixture
def booking_repo() -> FakeBookingRepo:
    return FakeBookingRepo()


@pytest.fixture
def principal() -> Callable[..., Principal]:
    def _make(role: UserRole = UserRole.OWNER, principal_id: int = 1) -> Principal:
        return Principal(principal_id=principal_id, role=role)

    return _make
