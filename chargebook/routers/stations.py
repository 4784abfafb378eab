from datetime import date
from typing import List

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_current_principal, get_session
from ..domain.errors import DomainError
from ..domain.lifecycle import Principal
from ..http_errors import to_http_exception
from ..infrastructure.repositories import SqlAlchemyBookingRepository, SqlAlchemyStationRepository
from ..schemas import (
    DayAvailabilityRead,
    ScheduleOverrideCreate,
    ScheduleOverrideRead,
    StationAvailabilityRead,
    StationCreate,
    StationRead,
)
from ..usecases import availability as availability_usecase
from ..usecases import stations as station_usecase
from ..usecases.availability import DEFAULT_AVAILABILITY_DAYS, MAX_AVAILABILITY_DAYS
from ..utils.audit_log import emit_audit_log

router = APIRouter(prefix="/stations", tags=["stations"], dependencies=[Depends(get_current_principal)])


@router.post("", response_model=StationRead, status_code=status.HTTP_201_CREATED)
async def create_station(
    payload: StationCreate,
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_current_principal),
) -> StationRead:
    station_repo = SqlAlchemyStationRepository(session)
    try:
        async with session.begin():
            station = await station_usecase.create_station(
                station_repo,
                principal=principal,
                name=payload.name,
                charger_type=payload.charger_type,
                total_slots=payload.total_slots,
                open_hour=payload.open_hour,
                close_hour=payload.close_hour,
            )
    except DomainError as exc:
        raise to_http_exception(exc)
    return StationRead.from_db(station=station)


@router.get("/{station_id}", response_model=StationRead)
async def get_station(
    station_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
) -> StationRead:
    station_repo = SqlAlchemyStationRepository(session)
    try:
        station = await station_usecase.get_station(station_repo, station_id=station_id)
    except DomainError as exc:
        raise to_http_exception(exc)
    return StationRead.from_db(station=station)


@router.get("/{station_id}/available-slots", response_model=DayAvailabilityRead)
async def available_slots(
    station_id: int = Path(..., ge=1),
    day: date = Query(..., alias="date", description="UTC date (YYYY-MM-DD)"),
    session: AsyncSession = Depends(get_session),
) -> DayAvailabilityRead:
    try:
        availability = await availability_usecase.get_availability(
            SqlAlchemyStationRepository(session),
            SqlAlchemyBookingRepository(session),
            station_id=station_id,
            start_date=day,
            days=1,
        )
    except DomainError as exc:
        raise to_http_exception(exc)
    return DayAvailabilityRead.from_day(availability.days[0])


@router.get("/{station_id}/availability", response_model=StationAvailabilityRead)
async def station_availability(
    station_id: int = Path(..., ge=1),
    start: date = Query(..., description="first UTC date (YYYY-MM-DD)"),
    days: int = Query(default=DEFAULT_AVAILABILITY_DAYS, ge=1, le=MAX_AVAILABILITY_DAYS),
    session: AsyncSession = Depends(get_session),
) -> StationAvailabilityRead:
    try:
        availability = await availability_usecase.get_availability(
            SqlAlchemyStationRepository(session),
            SqlAlchemyBookingRepository(session),
            station_id=station_id,
            start_date=start,
            days=days,
        )
    except DomainError as exc:
        raise to_http_exception(exc)
    return StationAvailabilityRead.from_availability(availability)


@router.post("/{station_id}/deactivate", response_model=StationRead)
async def deactivate_station(
    station_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_current_principal),
) -> StationRead:
    station_repo = SqlAlchemyStationRepository(session)
    booking_repo = SqlAlchemyBookingRepository(session)
    try:
        async with session.begin():
            station = await station_usecase.deactivate_station(
                station_repo,
                booking_repo,
                principal=principal,
                station_id=station_id,
            )
    except DomainError as exc:
        raise to_http_exception(exc)

    emit_audit_log(
        action="station.deactivated",
        initiator=principal.role,
        station_id=station.id,
        principal_id=principal.principal_id,
    )
    return StationRead.from_db(station=station)


@router.post("/{station_id}/activate", response_model=StationRead)
async def activate_station(
    station_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_current_principal),
) -> StationRead:
    station_repo = SqlAlchemyStationRepository(session)
    try:
        async with session.begin():
            station = await station_usecase.activate_station(
                station_repo,
                principal=principal,
                station_id=station_id,
            )
    except DomainError as exc:
        raise to_http_exception(exc)

    emit_audit_log(
        action="station.activated",
        initiator=principal.role,
        station_id=station.id,
        principal_id=principal.principal_id,
    )
    return StationRead.from_db(station=station)


@router.delete("/{station_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_station(
    station_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_current_principal),
) -> None:
    station_repo = SqlAlchemyStationRepository(session)
    booking_repo = SqlAlchemyBookingRepository(session)
    try:
        async with session.begin():
            await station_usecase.delete_station(
                station_repo,
                booking_repo,
                principal=principal,
                station_id=station_id,
            )
    except DomainError as exc:
        raise to_http_exception(exc)

    emit_audit_log(
        action="station.deleted",
        initiator=principal.role,
        station_id=station_id,
        principal_id=principal.principal_id,
    )


@router.get("/{station_id}/schedule/overrides", response_model=List[ScheduleOverrideRead])
async def list_overrides(
    station_id: int = Path(..., ge=1),
    start: date = Query(...),
    days: int = Query(default=DEFAULT_AVAILABILITY_DAYS, ge=1, le=MAX_AVAILABILITY_DAYS),
    session: AsyncSession = Depends(get_session),
) -> list[ScheduleOverrideRead]:
    station_repo = SqlAlchemyStationRepository(session)
    try:
        overrides = await station_usecase.list_overrides(
            station_repo,
            station_id=station_id,
            start_date=start,
            days=days,
        )
    except DomainError as exc:
        raise to_http_exception(exc)
    return [ScheduleOverrideRead.from_db(override=override) for override in overrides]


@router.post(
    "/{station_id}/schedule/overrides",
    response_model=ScheduleOverrideRead,
    status_code=status.HTTP_201_CREATED,
)
async def set_override(
    payload: ScheduleOverrideCreate,
    station_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_current_principal),
) -> ScheduleOverrideRead:
    station_repo = SqlAlchemyStationRepository(session)
    try:
        async with session.begin():
            override = await station_usecase.set_override(
                station_repo,
                principal=principal,
                station_id=station_id,
                day=payload.date,
                open_hour=payload.open_hour,
                close_hour=payload.close_hour,
                is_closed=payload.is_closed,
                is_maintenance=payload.is_maintenance,
                reason=payload.reason,
            )
    except DomainError as exc:
        raise to_http_exception(exc)
    return ScheduleOverrideRead.from_db(override=override)
