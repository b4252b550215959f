"""
HTTP mapping of dispatch-core errors.

Route handlers catch ``DispatchError`` and re-raise ``http_error(exc)``.
"""

from __future__ import annotations

from fastapi import HTTPException, status

from src.core.exceptions import (
    DispatchError,
    Forbidden,
    InsufficientBalance,
    NotFound,
    ResponseWindowExpired,
    StateConflict,
    TechnicianNotFound,
    ValidationFailed,
)

# Most specific first.
_STATUS_BY_ERROR: tuple[tuple[type[DispatchError], int], ...] = (
    (ResponseWindowExpired, status.HTTP_410_GONE),
    (InsufficientBalance, status.HTTP_400_BAD_REQUEST),
    (TechnicianNotFound, status.HTTP_404_NOT_FOUND),
    (ValidationFailed, status.HTTP_400_BAD_REQUEST),
    (NotFound, status.HTTP_404_NOT_FOUND),
    (Forbidden, status.HTTP_403_FORBIDDEN),
    (StateConflict, status.HTTP_409_CONFLICT),
)


def status_for(exc: DispatchError) -> int:
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_409_CONFLICT


def http_error(exc: DispatchError) -> HTTPException:
    return HTTPException(
        status_code=status_for(exc),
        detail={"code": exc.code, "message": exc.message},
    )
