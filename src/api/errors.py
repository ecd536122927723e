"""
Mapping of domain exceptions onto HTTP responses.

Routes catch ``DoersError`` and re-raise ``to_http(exc)``; every error body
has the shape ``{"detail": {"code": ..., "message": ...}}``.  Optimistic
lock failures and unique-constraint races surface from the session flush or
commit rather than from a service, so they get app-level handlers.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from src.core.exceptions import (
    AuthorizationError,
    ConcurrentModificationError,
    DoersError,
    NotFoundError,
    PaymentProviderError,
    StateConflictError,
    ValidationError,
)

logger = logging.getLogger(__name__)

_STATUS_BY_FAMILY: list[tuple[type[DoersError], int]] = [
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (AuthorizationError, status.HTTP_403_FORBIDDEN),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (StateConflictError, status.HTTP_400_BAD_REQUEST),
    (ConcurrentModificationError, status.HTTP_409_CONFLICT),
    (PaymentProviderError, status.HTTP_402_PAYMENT_REQUIRED),
]


def status_for(exc: DoersError) -> int:
    for family, code in _STATUS_BY_FAMILY:
        if isinstance(exc, family):
            return code
    return status.HTTP_400_BAD_REQUEST


def to_http(exc: DoersError) -> HTTPException:
    """Convert a domain error into an ``HTTPException``."""
    return HTTPException(
        status_code=status_for(exc),
        detail={"code": exc.code, "message": exc.message},
    )


def _conflict(code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"detail": {"code": code, "message": message}},
    )


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(StaleDataError)
    async def _stale_data(request: Request, exc: StaleDataError) -> JSONResponse:
        logger.warning("Concurrent modification on %s %s", request.method, request.url.path)
        return _conflict(
            ConcurrentModificationError.code,
            "The resource was modified by another request; retry",
        )

    @app.exception_handler(IntegrityError)
    async def _integrity(request: Request, exc: IntegrityError) -> JSONResponse:
        logger.warning(
            "Integrity error on %s %s: %s", request.method, request.url.path, exc.orig
        )
        return _conflict("integrity_conflict", "The request conflicts with existing data")
