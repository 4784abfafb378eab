from fastapi import HTTPException, status

from .domain.errors import (
    ConflictError,
    DomainError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)

_STATUS_BY_ERROR: tuple[tuple[type[DomainError], int], ...] = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ForbiddenError, status.HTTP_403_FORBIDDEN),
    (ConflictError, status.HTTP_409_CONFLICT),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
)


def to_http_exception(exc: DomainError) -> HTTPException:
    """Translate a domain error into a structured HTTP error body."""
    status_code = next(
        (code for error_cls, code in _STATUS_BY_ERROR if isinstance(exc, error_cls)),
        status.HTTP_400_BAD_REQUEST,
    )
    detail: dict[str, object] = {"code": exc.code, "message": exc.message}
    if isinstance(exc, ValidationError):
        detail["violations"] = [{"code": v.code, "message": v.message} for v in exc.violations]
    return HTTPException(status_code=status_code, detail=detail)
