from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..deps import get_current_principal, get_session
from ..domain.errors import DomainError
from ..domain.lifecycle import Principal
from ..http_errors import to_http_exception
from ..infrastructure.repositories import SqlAlchemyBookingRepository, SqlAlchemyStationRepository
from ..models import BookingStatus
from ..schemas import (
    BookingComplete,
    BookingCreate,
    BookingRead,
    BookingReschedule,
    BookingSummaryRead,
    BookingTransition,
)
from ..usecases import bookings as booking_usecase
from ..utils.audit_log import emit_audit_log
from ..utils.time import to_utc_naive

router = APIRouter(prefix="/bookings", tags=["bookings"])


def _to_utc(value: datetime, field: str) -> datetime:
    try:
        return to_utc_naive(value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "validation_failed", "message": f"{field} must include a timezone"},
        )


def _extract_version(
    if_match: Optional[str],
    payload: Optional[BookingTransition | BookingReschedule],
) -> Optional[int]:
    """If-Match wins over a body version; neither means the caller skips the optimistic check."""
    if if_match is not None:
        raw = if_match.strip()
        if raw.startswith("W/"):
            raw = raw[2:]
        try:
            version = int(raw.strip('"'))
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"code": "invalid_version", "message": "If-Match must carry a booking version"},
            )
    elif payload is not None and payload.version is not None:
        version = payload.version
    else:
        return None
    if version < 1:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "invalid_version", "message": "version must be >= 1"},
        )
    return version


@router.post("", response_model=BookingRead, status_code=status.HTTP_201_CREATED)
async def create_booking(
    payload: BookingCreate,
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_current_principal),
) -> BookingRead:
    start = _to_utc(payload.reservation_start, "reservation_start")
    end = _to_utc(payload.reservation_end, "reservation_end")
    station_repo = SqlAlchemyStationRepository(session)
    booking_repo = SqlAlchemyBookingRepository(session)
    try:
        async with session.begin():
            booking = await booking_usecase.create_booking(
                station_repo,
                booking_repo,
                principal=principal,
                station_id=payload.station_id,
                reservation_start=start,
                reservation_end=end,
            )
    except DomainError as exc:
        raise to_http_exception(exc)

    emit_audit_log(
        action="booking.created",
        initiator=principal.role,
        booking_id=booking.id,
        station_id=booking.station_id,
        owner_id=booking.owner_id,
        principal_id=principal.principal_id,
        status_from=None,
        status_to=booking.status,
        version=booking.version,
    )
    return BookingRead.from_db(booking=booking)


@router.get("", response_model=List[BookingRead])
async def list_bookings(
    station_id: Optional[int] = Query(default=None, ge=1),
    status_filter: Optional[BookingStatus] = Query(default=None, alias="status"),
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_current_principal),
) -> list[BookingRead]:
    booking_repo = SqlAlchemyBookingRepository(session)
    bookings = await booking_usecase.list_bookings(
        booking_repo,
        principal=principal,
        station_id=station_id,
        status=status_filter,
    )
    return [BookingRead.from_db(booking=booking) for booking in bookings]


@router.get("/summary", response_model=BookingSummaryRead)
async def booking_summary(
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_current_principal),
) -> BookingSummaryRead:
    booking_repo = SqlAlchemyBookingRepository(session)
    summary = await booking_usecase.summarize_bookings(booking_repo, principal=principal)
    return BookingSummaryRead.from_summary(summary)


@router.get("/{booking_id}", response_model=BookingRead)
async def get_booking(
    booking_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_current_principal),
) -> BookingRead:
    booking_repo = SqlAlchemyBookingRepository(session)
    try:
        booking = await booking_usecase.get_booking(booking_repo, principal=principal, booking_id=booking_id)
    except DomainError as exc:
        raise to_http_exception(exc)
    return BookingRead.from_db(booking=booking)


@router.put("/{booking_id}", response_model=BookingRead)
async def reschedule_booking(
    payload: BookingReschedule,
    booking_id: int = Path(..., ge=1),
    if_match: Optional[str] = Header(default=None, alias="If-Match"),
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_current_principal),
) -> BookingRead:
    version = _extract_version(if_match, payload)
    start = _to_utc(payload.reservation_start, "reservation_start")
    end = _to_utc(payload.reservation_end, "reservation_end")
    station_repo = SqlAlchemyStationRepository(session)
    booking_repo = SqlAlchemyBookingRepository(session)
    try:
        async with session.begin():
            booking, status_from, previous_window = await booking_usecase.reschedule_booking(
                station_repo,
                booking_repo,
                principal=principal,
                booking_id=booking_id,
                reservation_start=start,
                reservation_end=end,
                version=version,
            )
    except DomainError as exc:
        raise to_http_exception(exc)

    emit_audit_log(
        action="booking.rescheduled",
        initiator=principal.role,
        booking_id=booking.id,
        station_id=booking.station_id,
        owner_id=booking.owner_id,
        principal_id=principal.principal_id,
        status_from=status_from,
        status_to=booking.status,
        version=booking.version,
        extra={
            "start_from": previous_window[0].isoformat(),
            "end_from": previous_window[1].isoformat(),
        },
    )
    return BookingRead.from_db(booking=booking)


@router.post("/{booking_id}/cancel", response_model=BookingRead)
async def cancel_booking(
    booking_id: int = Path(..., ge=1),
    payload: Optional[BookingTransition] = None,
    if_match: Optional[str] = Header(default=None, alias="If-Match"),
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_current_principal),
) -> BookingRead:
    version = _extract_version(if_match, payload)
    booking_repo = SqlAlchemyBookingRepository(session)
    try:
        async with session.begin():
            booking, status_from = await booking_usecase.cancel_booking(
                booking_repo,
                principal=principal,
                booking_id=booking_id,
                version=version,
            )
    except DomainError as exc:
        raise to_http_exception(exc)

    emit_audit_log(
        action="booking.cancelled",
        initiator=principal.role,
        booking_id=booking.id,
        station_id=booking.station_id,
        owner_id=booking.owner_id,
        principal_id=principal.principal_id,
        status_from=status_from,
        status_to=booking.status,
        version=booking.version,
    )
    return BookingRead.from_db(booking=booking)


@router.post("/{booking_id}/approve", response_model=BookingRead)
async def approve_booking(
    booking_id: int = Path(..., ge=1),
    payload: Optional[BookingTransition] = None,
    if_match: Optional[str] = Header(default=None, alias="If-Match"),
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_current_principal),
) -> BookingRead:
    version = _extract_version(if_match, payload)
    settings = get_settings()
    booking_repo = SqlAlchemyBookingRepository(session)
    try:
        async with session.begin():
            booking, status_from = await booking_usecase.approve_booking(
                booking_repo,
                principal=principal,
                booking_id=booking_id,
                version=version,
                token_secret=settings.auth_secret,
                token_algorithm=settings.auth_algorithm,
            )
    except DomainError as exc:
        raise to_http_exception(exc)

    emit_audit_log(
        action="booking.approved",
        initiator=principal.role,
        booking_id=booking.id,
        station_id=booking.station_id,
        owner_id=booking.owner_id,
        principal_id=principal.principal_id,
        status_from=status_from,
        status_to=booking.status,
        version=booking.version,
    )
    return BookingRead.from_db(booking=booking)


@router.post("/{booking_id}/complete", response_model=BookingRead)
async def complete_booking(
    payload: BookingComplete,
    booking_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_current_principal),
) -> BookingRead:
    settings = get_settings()
    booking_repo = SqlAlchemyBookingRepository(session)
    try:
        async with session.begin():
            booking, status_from = await booking_usecase.complete_booking(
                booking_repo,
                principal=principal,
                booking_id=booking_id,
                token=payload.token,
                token_secret=settings.auth_secret,
                token_algorithms=[settings.auth_algorithm],
            )
    except DomainError as exc:
        raise to_http_exception(exc)

    emit_audit_log(
        action="booking.completed",
        initiator=principal.role,
        booking_id=booking.id,
        station_id=booking.station_id,
        owner_id=booking.owner_id,
        principal_id=principal.principal_id,
        status_from=status_from,
        status_to=booking.status,
        version=booking.version,
    )
    return BookingRead.from_db(booking=booking)
