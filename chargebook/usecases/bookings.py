import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Sequence

from ..domain.errors import (
    CapacityError,
    InvalidTransitionError,
    NotFoundError,
    RuleViolation,
    ValidationError,
    VersionConflictError,
)
from ..domain.lifecycle import (
    BookingAction,
    Principal,
    ensure_reschedulable,
    ensure_role,
    ensure_visible,
    transition,
)
from ..domain.repositories import BookingRepository, StationRepository
from ..domain.services import BUCKET, buckets_for_window, ensure_headroom
from ..domain.validation import ensure_valid_window, resolve_day_schedule
from ..models import ACTIVE_BOOKING_STATUSES, Booking, BookingStatus, Station, UserRole
from ..utils.auth import create_verification_token, decode_verification_token
from ..utils.time import utc_now_naive

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BookingSummary:
    counts: dict[BookingStatus, int] = field(default_factory=dict)
    next_booking: Optional[Booking] = None


async def create_booking(
    station_repo: StationRepository,
    booking_repo: BookingRepository,
    *,
    principal: Principal,
    station_id: int,
    reservation_start: datetime,
    reservation_end: datetime,
    now: datetime | None = None,
) -> Booking:
    """
    Admit a new booking in Pending.

    Must run inside a transaction: the station row lock taken here is what makes
    the occupancy count and the insert a single unit against concurrent admissions.
    """
    ensure_role(principal, BookingAction.CREATE)
    now = now or utc_now_naive()

    station = await station_repo.get_for_update(station_id)
    if station is None:
        raise NotFoundError("station not found")
    await _ensure_admissible(
        station_repo,
        booking_repo,
        station=station,
        reservation_start=reservation_start,
        reservation_end=reservation_end,
        now=now,
    )

    return await booking_repo.create(
        owner_id=principal.principal_id,
        station_id=station.id,
        reservation_start=reservation_start,
        reservation_end=reservation_end,
        status=BookingStatus.PENDING,
    )


async def reschedule_booking(
    station_repo: StationRepository,
    booking_repo: BookingRepository,
    *,
    principal: Principal,
    booking_id: int,
    reservation_start: datetime,
    reservation_end: datetime,
    version: int | None,
    now: datetime | None = None,
) -> tuple[Booking, BookingStatus, tuple[datetime, datetime]]:
    """Move a Pending or Approved booking to a new window; returns (booking, status_from, previous_window)."""
    now = now or utc_now_naive()
    current = await booking_repo.get(booking_id)
    if current is None:
        raise NotFoundError("booking not found")
    ensure_visible(principal, current)

    # Station before booking: the same lock order as admission.
    station = await station_repo.get_for_update(current.station_id)
    if station is None:
        raise NotFoundError("station not found")
    booking = await booking_repo.get_for_update(booking_id)
    if booking is None:
        raise NotFoundError("booking not found")
    _check_version(booking, version)
    ensure_reschedulable(booking, principal=principal, now=now)

    await _ensure_admissible(
        station_repo,
        booking_repo,
        station=station,
        reservation_start=reservation_start,
        reservation_end=reservation_end,
        now=now,
        exclude_booking_id=booking.id,
    )

    status_from = booking.status
    previous_window = (booking.reservation_start, booking.reservation_end)
    booking.reservation_start = reservation_start
    booking.reservation_end = reservation_end
    # A moved booking needs a fresh approval; its old token must not redeem.
    booking.status = BookingStatus.PENDING
    booking.verification_token = None
    booking.version += 1
    booking.updated_at = now
    return await booking_repo.save(booking), status_from, previous_window


async def approve_booking(
    booking_repo: BookingRepository,
    *,
    principal: Principal,
    booking_id: int,
    version: int | None,
    token_secret: str,
    token_algorithm: str = "HS256",
    now: datetime | None = None,
) -> tuple[Booking, BookingStatus]:
    now = now or utc_now_naive()
    booking = await _load_for_update(booking_repo, booking_id, principal)
    _check_version(booking, version)
    status_from, _ = transition(booking, BookingAction.APPROVE, principal=principal, now=now)
    booking.verification_token = create_verification_token(
        booking_id=booking.id,
        version=booking.version,
        secret=token_secret,
        algorithm=token_algorithm,
    )
    return await booking_repo.save(booking), status_from


async def cancel_booking(
    booking_repo: BookingRepository,
    *,
    principal: Principal,
    booking_id: int,
    version: int | None,
    now: datetime | None = None,
) -> tuple[Booking, BookingStatus]:
    now = now or utc_now_naive()
    booking = await _load_for_update(booking_repo, booking_id, principal)
    _check_version(booking, version)
    status_from, _ = transition(booking, BookingAction.CANCEL, principal=principal, now=now)
    booking.cancelled_at = now
    return await booking_repo.save(booking), status_from


async def complete_booking(
    booking_repo: BookingRepository,
    *,
    principal: Principal,
    booking_id: int,
    token: str,
    token_secret: str,
    token_algorithms: Sequence[str] = ("HS256",),
    now: datetime | None = None,
) -> tuple[Booking, BookingStatus]:
    now = now or utc_now_naive()
    try:
        token_booking_id = decode_verification_token(token, secret=token_secret, algorithms=token_algorithms)
    except ValueError as exc:
        raise ValidationError([RuleViolation("verification_token", str(exc))]) from exc

    booking = await _load_for_update(booking_repo, booking_id, principal)
    ensure_role(principal, BookingAction.COMPLETE)
    if token_booking_id != booking.id:
        raise InvalidTransitionError("verification token does not belong to this booking")
    if booking.status == BookingStatus.APPROVED and booking.verification_token != token:
        raise InvalidTransitionError("verification token has been revoked")

    status_from, _ = transition(booking, BookingAction.COMPLETE, principal=principal, now=now)
    booking.completed_at = now
    return await booking_repo.save(booking), status_from


async def get_booking(
    booking_repo: BookingRepository,
    *,
    principal: Principal,
    booking_id: int,
) -> Booking:
    booking = await booking_repo.get(booking_id)
    if booking is None:
        raise NotFoundError("booking not found")
    ensure_visible(principal, booking)
    return booking


async def list_bookings(
    booking_repo: BookingRepository,
    *,
    principal: Principal,
    station_id: int | None = None,
    status: BookingStatus | None = None,
) -> list[Booking]:
    owner_id = principal.principal_id if principal.role == UserRole.OWNER else None
    return await booking_repo.list_bookings(owner_id=owner_id, station_id=station_id, status=status)


async def summarize_bookings(
    booking_repo: BookingRepository,
    *,
    principal: Principal,
    now: datetime | None = None,
) -> BookingSummary:
    """Per-status counts and the next upcoming booking, scoped like list_bookings."""
    now = now or utc_now_naive()
    bookings = await list_bookings(booking_repo, principal=principal)
    counts = Counter(booking.status for booking in bookings)
    upcoming = [b for b in bookings if b.status in ACTIVE_BOOKING_STATUSES and b.reservation_start > now]
    next_booking = min(upcoming, key=lambda b: b.reservation_start, default=None)
    return BookingSummary(
        counts={status: counts.get(status, 0) for status in BookingStatus},
        next_booking=next_booking,
    )


async def _ensure_admissible(
    station_repo: StationRepository,
    booking_repo: BookingRepository,
    *,
    station: Station,
    reservation_start: datetime,
    reservation_end: datetime,
    now: datetime,
    exclude_booking_id: int | None = None,
) -> None:
    if not station.is_active:
        raise ValidationError([RuleViolation("station_inactive", "station is not accepting bookings")])

    override = await station_repo.get_override(station.id, reservation_start.date())
    schedule = resolve_day_schedule(station, override)
    ensure_valid_window(reservation_start, reservation_end, now=now, schedule=schedule)

    # Capacity is per hour bucket: fetch every booking touching the window's buckets.
    buckets = buckets_for_window(reservation_start, reservation_end)
    active = await booking_repo.list_active_overlapping(
        station.id,
        buckets[0],
        buckets[-1] + BUCKET,
        exclude_booking_id=exclude_booking_id,
    )
    try:
        ensure_headroom(active, reservation_start, reservation_end, capacity=station.total_slots)
    except CapacityError as exc:
        logger.info("admission rejected for station %s: %s", station.id, exc.message)
        raise


async def _load_for_update(booking_repo: BookingRepository, booking_id: int, principal: Principal) -> Booking:
    booking = await booking_repo.get_for_update(booking_id)
    if booking is None:
        raise NotFoundError("booking not found")
    ensure_visible(principal, booking)
    return booking


def _check_version(booking: Booking, version: int | None) -> None:
    if version is not None and booking.version != version:
        raise VersionConflictError("version mismatch")
