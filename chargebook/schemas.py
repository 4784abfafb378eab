from datetime import date, datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, field_serializer

from .domain.services import HourSlot
from .domain.validation import DayStatus
from .models import Booking, BookingStatus, ChargerType, ScheduleOverride, Station
from .usecases.availability import DayAvailability, StationAvailability
from .usecases.bookings import BookingSummary
from .utils.time import utc_naive_to_aware


def _aware(dt: Optional[datetime]) -> Optional[datetime]:
    return utc_naive_to_aware(dt) if dt is not None else None


class BookingCreate(BaseModel):
    station_id: int = Field(ge=1)
    reservation_start: datetime
    reservation_end: datetime


class BookingReschedule(BaseModel):
    reservation_start: datetime
    reservation_end: datetime
    version: Optional[int] = Field(default=None, ge=1)


class BookingTransition(BaseModel):
    version: Optional[int] = Field(default=None, ge=1)


class BookingComplete(BaseModel):
    token: str = Field(min_length=1)


class BookingRead(BaseModel):
    booking_id: int
    station_id: int
    owner_id: int
    reservation_start: datetime
    reservation_end: datetime
    status: BookingStatus
    version: int
    verification_token: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    @field_serializer("reservation_start", "reservation_end", "created_at", "updated_at", "completed_at", "cancelled_at")
    def _ser_datetime(self, dt: Optional[datetime]) -> Optional[str]:
        return dt.astimezone(timezone.utc).isoformat() if dt is not None else None

    @classmethod
    def from_db(cls, *, booking: Booking) -> "BookingRead":
        return cls(
            booking_id=booking.id,
            station_id=booking.station_id,
            owner_id=booking.owner_id,
            reservation_start=utc_naive_to_aware(booking.reservation_start),
            reservation_end=utc_naive_to_aware(booking.reservation_end),
            status=booking.status,
            version=booking.version,
            verification_token=booking.verification_token,
            created_at=utc_naive_to_aware(booking.created_at),
            updated_at=utc_naive_to_aware(booking.updated_at),
            completed_at=_aware(booking.completed_at),
            cancelled_at=_aware(booking.cancelled_at),
        )


class BookingSummaryRead(BaseModel):
    counts: dict[BookingStatus, int]
    next_booking: Optional[BookingRead] = None

    @classmethod
    def from_summary(cls, summary: BookingSummary) -> "BookingSummaryRead":
        return cls(
            counts=summary.counts,
            next_booking=BookingRead.from_db(booking=summary.next_booking) if summary.next_booking else None,
        )


class StationCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    charger_type: ChargerType
    total_slots: int = Field(ge=1)
    open_hour: int = Field(default=8, ge=0, le=23)
    close_hour: int = Field(default=20, ge=1, le=24)


class StationRead(BaseModel):
    station_id: int
    name: str
    charger_type: ChargerType
    total_slots: int
    open_hour: int
    close_hour: int
    is_active: bool

    @classmethod
    def from_db(cls, *, station: Station) -> "StationRead":
        return cls(
            station_id=station.id,
            name=station.name,
            charger_type=station.charger_type,
            total_slots=station.total_slots,
            open_hour=station.open_hour,
            close_hour=station.close_hour,
            is_active=station.is_active,
        )


class ScheduleOverrideCreate(BaseModel):
    date: date
    open_hour: Optional[int] = Field(default=None, ge=0, le=23)
    close_hour: Optional[int] = Field(default=None, ge=1, le=24)
    is_closed: bool = False
    is_maintenance: bool = False
    reason: Optional[str] = Field(default=None, max_length=500)


class ScheduleOverrideRead(BaseModel):
    station_id: int
    date: date
    open_hour: Optional[int]
    close_hour: Optional[int]
    is_closed: bool
    is_maintenance: bool
    reason: Optional[str]

    @classmethod
    def from_db(cls, *, override: ScheduleOverride) -> "ScheduleOverrideRead":
        return cls(
            station_id=override.station_id,
            date=override.date,
            open_hour=override.open_hour,
            close_hour=override.close_hour,
            is_closed=override.is_closed,
            is_maintenance=override.is_maintenance,
            reason=override.reason,
        )


class HourSlotRead(BaseModel):
    hour: int
    starts_at: datetime
    status: DayStatus
    capacity: int
    approved_count: int
    pending_count: int
    available: int
    utilization: float

    @field_serializer("starts_at")
    def _ser_datetime(self, dt: datetime) -> str:
        return dt.astimezone(timezone.utc).isoformat()

    @classmethod
    def from_slot(cls, slot: HourSlot) -> "HourSlotRead":
        return cls(
            hour=slot.hour,
            starts_at=utc_naive_to_aware(slot.bucket_start),
            status=slot.status,
            capacity=slot.capacity,
            approved_count=slot.approved_count,
            pending_count=slot.pending_count,
            available=slot.available,
            utilization=slot.utilization,
        )


class DayAvailabilityRead(BaseModel):
    date: date
    status: DayStatus
    open_hour: int
    close_hour: int
    reason: Optional[str] = None
    slots: list[HourSlotRead]

    @classmethod
    def from_day(cls, day: DayAvailability) -> "DayAvailabilityRead":
        return cls(
            date=day.date,
            status=day.status,
            open_hour=day.open_hour,
            close_hour=day.close_hour,
            reason=day.reason,
            slots=[HourSlotRead.from_slot(slot) for slot in day.slots],
        )


class StationAvailabilityRead(BaseModel):
    station_id: int
    station_name: str
    total_slots: int
    is_active: bool
    days: list[DayAvailabilityRead]

    @classmethod
    def from_availability(cls, availability: StationAvailability) -> "StationAvailabilityRead":
        return cls(
            station_id=availability.station.id,
            station_name=availability.station.name,
            total_slots=availability.station.total_slots,
            is_active=availability.station.is_active,
            days=[DayAvailabilityRead.from_day(day) for day in availability.days],
        )
