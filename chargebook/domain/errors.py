from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Sequence


@dataclass(frozen=True)
class RuleViolation:
    code: str
    message: str


class DomainError(Exception):
    code = "domain_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(DomainError):
    """One or more admission rules failed; every failing rule is carried."""

    code = "validation_failed"

    def __init__(self, violations: Sequence[RuleViolation]) -> None:
        super().__init__("; ".join(v.message for v in violations) or "invalid request")
        self.violations = list(violations)


class ConflictError(DomainError):
    code = "conflict"


class CapacityError(ConflictError):
    code = "capacity_exhausted"

    def __init__(self, message: str, *, bucket_start: datetime | None = None) -> None:
        super().__init__(message)
        self.bucket_start = bucket_start


class StationHasFutureBookingsError(ConflictError):
    code = "station_has_future_bookings"


class StationBusyError(ConflictError):
    code = "station_busy"


class VersionConflictError(ConflictError):
    code = "version_conflict"


class InvalidTransitionError(DomainError):
    code = "invalid_transition"


class ModificationWindowClosedError(InvalidTransitionError):
    code = "modification_window_closed"


class NotFoundError(DomainError):
    code = "not_found"


class ForbiddenError(DomainError):
    code = "forbidden"
