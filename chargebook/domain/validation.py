from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Optional, Protocol

from ..utils.time import start_of_day
from .errors import RuleViolation, ValidationError

ADVANCE_NOTICE = timedelta(hours=12)
BOOKING_HORIZON = timedelta(days=7)
MAX_DURATION = timedelta(hours=8)


class DayStatus(StrEnum):
    OPEN = "open"
    CLOSED = "closed"
    MAINTENANCE = "maintenance"


@dataclass(frozen=True)
class DaySchedule:
    status: DayStatus
    open_hour: int
    close_hour: int
    reason: Optional[str] = None

    def is_open_hour(self, hour: int) -> bool:
        return self.status == DayStatus.OPEN and self.open_hour <= hour < self.close_hour


class _StationHours(Protocol):
    open_hour: int
    close_hour: int


class _Override(Protocol):
    open_hour: Optional[int]
    close_hour: Optional[int]
    is_closed: bool
    is_maintenance: bool
    reason: Optional[str]


def resolve_day_schedule(station: _StationHours, override: _Override | None) -> DaySchedule:
    """Merge a station's default hours with the override for one date, if any."""
    if override is None:
        return DaySchedule(DayStatus.OPEN, station.open_hour, station.close_hour)
    open_hour = override.open_hour if override.open_hour is not None else station.open_hour
    close_hour = override.close_hour if override.close_hour is not None else station.close_hour
    if override.is_closed:
        return DaySchedule(DayStatus.CLOSED, open_hour, close_hour, override.reason)
    if override.is_maintenance:
        return DaySchedule(DayStatus.MAINTENANCE, open_hour, close_hour, override.reason)
    return DaySchedule(DayStatus.OPEN, open_hour, close_hour, override.reason)


def check_window(
    start: datetime,
    end: datetime,
    *,
    now: datetime,
    schedule: DaySchedule,
) -> list[RuleViolation]:
    """
    Evaluate every temporal admission rule for a proposed window.

    All instants are naive UTC. Rules are checked independently so the caller
    can report every problem at once; an empty list means the window is admissible.
    """
    violations: list[RuleViolation] = []
    if start - now < ADVANCE_NOTICE:
        violations.append(RuleViolation("advance_notice", "reservation must start at least 12 hours from now"))
    if start >= now + BOOKING_HORIZON:
        violations.append(RuleViolation("horizon", "reservation must start within the next 7 days"))
    if end <= start:
        violations.append(RuleViolation("ordering", "reservation end must be after its start"))
    if end - start > MAX_DURATION:
        violations.append(RuleViolation("duration", "reservation may last at most 8 hours"))
    violation = _check_working_hours(start, end, schedule)
    if violation is not None:
        violations.append(violation)
    return violations


def ensure_valid_window(
    start: datetime,
    end: datetime,
    *,
    now: datetime,
    schedule: DaySchedule,
) -> None:
    violations = check_window(start, end, now=now, schedule=schedule)
    if violations:
        raise ValidationError(violations)


def _check_working_hours(start: datetime, end: datetime, schedule: DaySchedule) -> RuleViolation | None:
    """Start hour lies in [open, close); the end may fall exactly on the closing hour."""
    if schedule.status == DayStatus.CLOSED:
        return RuleViolation("working_hours", "station is closed on the requested date")
    if schedule.status == DayStatus.MAINTENANCE:
        reason = f": {schedule.reason}" if schedule.reason else ""
        return RuleViolation("working_hours", f"station is under maintenance on the requested date{reason}")
    day_start = start_of_day(start.date())
    opens_at = day_start + timedelta(hours=schedule.open_hour)
    closes_at = day_start + timedelta(hours=schedule.close_hour)
    if start < opens_at or end > closes_at:
        return RuleViolation(
            "working_hours",
            f"reservation must lie within operating hours {schedule.open_hour:02d}:00-{schedule.close_hour:02d}:00",
        )
    return None
