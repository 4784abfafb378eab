from dataclasses import dataclass
from datetime import date, timedelta
from typing import List, Optional

from ..domain.errors import NotFoundError, RuleViolation, ValidationError
from ..domain.repositories import BookingRepository, StationRepository
from ..domain.services import HourSlot, build_day_grid
from ..domain.validation import DaySchedule, DayStatus, resolve_day_schedule
from ..models import Station
from ..utils.time import date_range, start_of_day

DEFAULT_AVAILABILITY_DAYS = 7
MAX_AVAILABILITY_DAYS = 31


@dataclass(frozen=True)
class DayAvailability:
    date: date
    status: DayStatus
    open_hour: int
    close_hour: int
    reason: Optional[str]
    slots: List[HourSlot]


@dataclass(frozen=True)
class StationAvailability:
    station: Station
    days: List[DayAvailability]


async def get_availability(
    station_repo: StationRepository,
    booking_repo: BookingRepository,
    *,
    station_id: int,
    start_date: date,
    days: int = DEFAULT_AVAILABILITY_DAYS,
) -> StationAvailability:
    """Hour-bucket occupancy grid for `days` consecutive dates starting at `start_date`. Read only."""
    if not 1 <= days <= MAX_AVAILABILITY_DAYS:
        raise ValidationError([RuleViolation("days", f"days must be between 1 and {MAX_AVAILABILITY_DAYS}")])

    station = await station_repo.get(station_id)
    if station is None:
        raise NotFoundError("station not found")

    end_date = start_date + timedelta(days=days)
    overrides = {
        override.date: override for override in await station_repo.list_overrides(station_id, start_date, end_date)
    }
    bookings = await booking_repo.list_active_overlapping(
        station_id,
        start_of_day(start_date),
        start_of_day(end_date),
    )

    result: List[DayAvailability] = []
    for day in date_range(start_date, days):
        schedule = resolve_day_schedule(station, overrides.get(day))
        if not station.is_active:
            schedule = DaySchedule(DayStatus.CLOSED, schedule.open_hour, schedule.close_hour, reason="station is inactive")
        result.append(
            DayAvailability(
                date=day,
                status=schedule.status,
                open_hour=schedule.open_hour,
                close_hour=schedule.close_hour,
                reason=schedule.reason,
                slots=build_day_grid(day, schedule, bookings, capacity=station.total_slots),
            )
        )
    return StationAvailability(station=station, days=result)
