from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Protocol

from ..models import BookingStatus, UserRole
from .errors import ForbiddenError, InvalidTransitionError, ModificationWindowClosedError, NotFoundError
from .validation import ADVANCE_NOTICE


@dataclass(frozen=True)
class Principal:
    principal_id: int
    role: UserRole


class BookingAction(StrEnum):
    CREATE = "create"
    APPROVE = "approve"
    CANCEL = "cancel"
    COMPLETE = "complete"
    RESCHEDULE = "reschedule"


_TRANSITIONS: dict[tuple[BookingStatus, BookingAction], BookingStatus] = {
    (BookingStatus.PENDING, BookingAction.APPROVE): BookingStatus.APPROVED,
    (BookingStatus.PENDING, BookingAction.CANCEL): BookingStatus.CANCELLED,
    (BookingStatus.APPROVED, BookingAction.CANCEL): BookingStatus.CANCELLED,
    (BookingStatus.APPROVED, BookingAction.COMPLETE): BookingStatus.COMPLETED,
}

_ALLOWED_ROLES: dict[BookingAction, frozenset[UserRole]] = {
    BookingAction.CREATE: frozenset({UserRole.OWNER}),
    BookingAction.APPROVE: frozenset({UserRole.STATION_OPERATOR, UserRole.BACKOFFICE}),
    BookingAction.CANCEL: frozenset(UserRole),
    BookingAction.COMPLETE: frozenset({UserRole.STATION_OPERATOR, UserRole.BACKOFFICE}),
    BookingAction.RESCHEDULE: frozenset({UserRole.OWNER, UserRole.BACKOFFICE}),
}

_RESCHEDULABLE = (BookingStatus.PENDING, BookingStatus.APPROVED)


class _BookingRecord(Protocol):
    id: int
    owner_id: int
    status: BookingStatus
    reservation_start: datetime
    version: int
    updated_at: datetime


def can_view(principal: Principal, booking: _BookingRecord) -> bool:
    return principal.role != UserRole.OWNER or booking.owner_id == principal.principal_id


def ensure_visible(principal: Principal, booking: _BookingRecord) -> None:
    # Owners never learn about other owners' bookings.
    if not can_view(principal, booking):
        raise NotFoundError("booking not found")


def ensure_role(principal: Principal, action: BookingAction) -> None:
    if principal.role not in _ALLOWED_ROLES[action]:
        raise ForbiddenError(f"role {principal.role} may not {action} bookings")


def next_status(current: BookingStatus, action: BookingAction) -> BookingStatus:
    try:
        return _TRANSITIONS[(current, action)]
    except KeyError:
        raise InvalidTransitionError(f"cannot {action} a booking that is {current}") from None


def ensure_modification_window(reservation_start: datetime, *, now: datetime) -> None:
    if reservation_start - now < ADVANCE_NOTICE:
        raise ModificationWindowClosedError("bookings cannot be changed less than 12 hours before start")


def transition(
    booking: _BookingRecord,
    action: BookingAction,
    *,
    principal: Principal,
    now: datetime,
) -> tuple[BookingStatus, BookingStatus]:
    """
    Apply one state-machine step to a booking in place.

    Checks visibility and role, resolves the target state and enforces the
    modification window for approved cancellations. The booking is untouched
    if any guard fails. Returns (status_from, status_to).
    """
    ensure_visible(principal, booking)
    ensure_role(principal, action)
    status_from = booking.status
    status_to = next_status(status_from, action)
    if status_from == BookingStatus.APPROVED and action == BookingAction.CANCEL:
        ensure_modification_window(booking.reservation_start, now=now)

    booking.status = status_to
    booking.version += 1
    booking.updated_at = now
    return status_from, status_to


def ensure_reschedulable(booking: _BookingRecord, *, principal: Principal, now: datetime) -> None:
    ensure_visible(principal, booking)
    ensure_role(principal, BookingAction.RESCHEDULE)
    if booking.status not in _RESCHEDULABLE:
        raise InvalidTransitionError(f"cannot reschedule a booking that is {booking.status}")
    ensure_modification_window(booking.reservation_start, now=now)
