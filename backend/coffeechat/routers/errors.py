from typing import Any

from fastapi import HTTPException, status

from ..domain.errors import (
    CapacityExceededError,
    ConflictError,
    DomainError,
    ForbiddenError,
    NotFoundError,
    UnavailableError,
    ValidationError,
)
from ..utils.audit_log import emit_audit_log

_STATUS_CODES: list[tuple[type[DomainError], int]] = [
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ForbiddenError, status.HTTP_403_FORBIDDEN),
    (CapacityExceededError, status.HTTP_409_CONFLICT),
    (ConflictError, status.HTTP_409_CONFLICT),
    (UnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def to_http_exception(exc: DomainError) -> HTTPException:
    """Map a domain error onto a response whose `code` tells conflict and capacity apart."""
    status_code = next(
        (code for cls, code in _STATUS_CODES if isinstance(exc, cls)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    return HTTPException(status_code=status_code, detail={"code": exc.code, "message": str(exc)})


def audit_or_500(**kwargs: Any) -> None:
    try:
        emit_audit_log(**kwargs)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="audit log failure") from exc
