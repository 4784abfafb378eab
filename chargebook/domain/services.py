from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable, Protocol

from ..models import BookingStatus
from ..utils.time import start_of_day
from .errors import CapacityError
from .validation import DaySchedule, DayStatus

BUCKET = timedelta(hours=1)


class _BookingWindow(Protocol):
    status: BookingStatus
    reservation_start: datetime
    reservation_end: datetime


@dataclass(frozen=True)
class BucketOccupancy:
    bucket_start: datetime
    capacity: int
    approved_count: int
    pending_count: int

    @property
    def occupied(self) -> int:
        return self.approved_count + self.pending_count

    @property
    def available(self) -> int:
        return self.capacity - self.occupied

    @property
    def is_full(self) -> bool:
        return self.available <= 0


@dataclass(frozen=True)
class HourSlot:
    hour: int
    bucket_start: datetime
    status: DayStatus
    capacity: int
    approved_count: int
    pending_count: int
    available: int
    utilization: float


def bucket_floor(dt: datetime) -> datetime:
    """Map an instant to the start of the hour bucket containing it."""
    return dt.replace(minute=0, second=0, microsecond=0)


def buckets_for_window(start: datetime, end: datetime) -> list[datetime]:
    """Every bucket start whose hour overlaps [start, end)."""
    buckets: list[datetime] = []
    current = bucket_floor(start)
    while current < end:
        buckets.append(current)
        current += BUCKET
    return buckets


def overlaps_bucket(booking: _BookingWindow, bucket_start: datetime) -> bool:
    return booking.reservation_start < bucket_start + BUCKET and booking.reservation_end > bucket_start


def count_bucket(
    bookings: Iterable[_BookingWindow],
    bucket_start: datetime,
    *,
    capacity: int,
) -> BucketOccupancy:
    """Occupancy of one bucket; cancelled and completed bookings never count."""
    approved = 0
    pending = 0
    for booking in bookings:
        if not overlaps_bucket(booking, bucket_start):
            continue
        if booking.status == BookingStatus.APPROVED:
            approved += 1
        elif booking.status == BookingStatus.PENDING:
            pending += 1
    return BucketOccupancy(
        bucket_start=bucket_start,
        capacity=capacity,
        approved_count=approved,
        pending_count=pending,
    )


def ensure_headroom(
    bookings: Iterable[_BookingWindow],
    start: datetime,
    end: datetime,
    *,
    capacity: int,
) -> list[BucketOccupancy]:
    """
    Pure admission check: every bucket the window touches must have at least one free slot.
    Returns the occupancy of each touched bucket before admission. Raises CapacityError otherwise.
    """
    existing = list(bookings)
    occupancies: list[BucketOccupancy] = []
    for bucket_start in buckets_for_window(start, end):
        occupancy = count_bucket(existing, bucket_start, capacity=capacity)
        if occupancy.is_full:
            raise CapacityError(
                f"no free slot at {bucket_start:%Y-%m-%d %H:00} UTC",
                bucket_start=bucket_start,
            )
        occupancies.append(occupancy)
    return occupancies


def build_day_grid(
    day: date,
    schedule: DaySchedule,
    bookings: Iterable[_BookingWindow],
    *,
    capacity: int,
) -> list[HourSlot]:
    existing = list(bookings)
    day_start = start_of_day(day)
    slots: list[HourSlot] = []
    for hour in range(24):
        bucket_start = day_start + timedelta(hours=hour)
        occupancy = count_bucket(existing, bucket_start, capacity=capacity)
        if schedule.status != DayStatus.OPEN:
            status = schedule.status
        elif schedule.is_open_hour(hour):
            status = DayStatus.OPEN
        else:
            status = DayStatus.CLOSED
        available = max(occupancy.available, 0) if status == DayStatus.OPEN else 0
        slots.append(
            HourSlot(
                hour=hour,
                bucket_start=bucket_start,
                status=status,
                capacity=capacity,
                approved_count=occupancy.approved_count,
                pending_count=occupancy.pending_count,
                available=available,
                utilization=round(occupancy.occupied * 100 / capacity, 1) if capacity else 0.0,
            )
        )
    return slots
