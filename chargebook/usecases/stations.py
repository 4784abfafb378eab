from datetime import date, datetime, timedelta
from typing import Collection, List

from ..domain.errors import (
    ForbiddenError,
    NotFoundError,
    RuleViolation,
    StationHasFutureBookingsError,
    ValidationError,
)
from ..domain.lifecycle import Principal
from ..domain.repositories import BookingRepository, StationRepository
from ..models import ChargerType, ScheduleOverride, Station, UserRole
from ..utils.time import utc_now_naive

_MANAGERS = frozenset({UserRole.STATION_OPERATOR, UserRole.BACKOFFICE})
_BACKOFFICE = frozenset({UserRole.BACKOFFICE})


def _ensure_role(principal: Principal, allowed: Collection[UserRole], action: str) -> None:
    if principal.role not in allowed:
        raise ForbiddenError(f"role {principal.role} may not {action}")


def _validate_hours(open_hour: int | None, close_hour: int | None) -> list[RuleViolation]:
    violations: list[RuleViolation] = []
    if open_hour is not None and not 0 <= open_hour <= 23:
        violations.append(RuleViolation("open_hour", "open_hour must be between 0 and 23"))
    if close_hour is not None and not 1 <= close_hour <= 24:
        violations.append(RuleViolation("close_hour", "close_hour must be between 1 and 24"))
    if open_hour is not None and close_hour is not None and open_hour >= close_hour:
        violations.append(RuleViolation("operating_hours", "station must open before it closes"))
    return violations


async def create_station(
    station_repo: StationRepository,
    *,
    principal: Principal,
    name: str,
    charger_type: ChargerType,
    total_slots: int,
    open_hour: int,
    close_hour: int,
) -> Station:
    _ensure_role(principal, _BACKOFFICE, "create stations")
    violations = _validate_hours(open_hour, close_hour)
    if total_slots < 1:
        violations.append(RuleViolation("total_slots", "total_slots must be >= 1"))
    if violations:
        raise ValidationError(violations)
    return await station_repo.create(
        name=name,
        charger_type=charger_type,
        total_slots=total_slots,
        open_hour=open_hour,
        close_hour=close_hour,
    )


async def get_station(station_repo: StationRepository, *, station_id: int) -> Station:
    station = await station_repo.get(station_id)
    if station is None:
        raise NotFoundError("station not found")
    return station


async def deactivate_station(
    station_repo: StationRepository,
    booking_repo: BookingRepository,
    *,
    principal: Principal,
    station_id: int,
    now: datetime | None = None,
) -> Station:
    """Clear is_active, vetoed while any Pending or Approved booking still lies ahead."""
    _ensure_role(principal, _MANAGERS, "deactivate stations")
    station = await _lock_without_future_bookings(station_repo, booking_repo, station_id, now=now)
    station.is_active = False
    station.updated_at = utc_now_naive()
    return await station_repo.save(station)


async def activate_station(
    station_repo: StationRepository,
    *,
    principal: Principal,
    station_id: int,
) -> Station:
    _ensure_role(principal, _MANAGERS, "activate stations")
    station = await station_repo.get_for_update(station_id)
    if station is None:
        raise NotFoundError("station not found")
    station.is_active = True
    station.updated_at = utc_now_naive()
    return await station_repo.save(station)


async def delete_station(
    station_repo: StationRepository,
    booking_repo: BookingRepository,
    *,
    principal: Principal,
    station_id: int,
    now: datetime | None = None,
) -> Station:
    """Permanently remove a station with its overrides and booking history; same veto as deactivation."""
    _ensure_role(principal, _BACKOFFICE, "delete stations")
    station = await _lock_without_future_bookings(station_repo, booking_repo, station_id, now=now)
    await station_repo.delete(station)
    return station


async def list_overrides(
    station_repo: StationRepository,
    *,
    station_id: int,
    start_date: date,
    days: int,
) -> List[ScheduleOverride]:
    await get_station(station_repo, station_id=station_id)
    return await station_repo.list_overrides(station_id, start_date, start_date + timedelta(days=days))


async def set_override(
    station_repo: StationRepository,
    *,
    principal: Principal,
    station_id: int,
    day: date,
    open_hour: int | None = None,
    close_hour: int | None = None,
    is_closed: bool = False,
    is_maintenance: bool = False,
    reason: str | None = None,
) -> ScheduleOverride:
    _ensure_role(principal, _MANAGERS, "edit station schedules")
    station = await get_station(station_repo, station_id=station_id)
    violations = _validate_hours(open_hour, close_hour)
    effective_open = open_hour if open_hour is not None else station.open_hour
    effective_close = close_hour if close_hour is not None else station.close_hour
    if not violations and effective_open >= effective_close:
        violations.append(RuleViolation("operating_hours", "station must open before it closes"))
    if is_closed and is_maintenance:
        violations.append(RuleViolation("override", "a date is either closed or under maintenance, not both"))
    if violations:
        raise ValidationError(violations)
    return await station_repo.upsert_override(
        station_id=station_id,
        day=day,
        open_hour=open_hour,
        close_hour=close_hour,
        is_closed=is_closed,
        is_maintenance=is_maintenance,
        reason=reason,
    )


async def _lock_without_future_bookings(
    station_repo: StationRepository,
    booking_repo: BookingRepository,
    station_id: int,
    *,
    now: datetime | None,
) -> Station:
    station = await station_repo.get_for_update(station_id)
    if station is None:
        raise NotFoundError("station not found")
    if await booking_repo.has_future_active(station_id, now or utc_now_naive()):
        raise StationHasFutureBookingsError("station has upcoming pending or approved bookings")
    return station
