"""
casework.api.errors

Maps the domain error taxonomy to HTTP responses.
"""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.status import (
    HTTP_403_FORBIDDEN,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_422_UNPROCESSABLE_ENTITY,
    HTTP_500_INTERNAL_SERVER_ERROR,
    HTTP_502_BAD_GATEWAY,
    HTTP_503_SERVICE_UNAVAILABLE,
)

from casework.errors import (
    CaseworkError,
    InvariantViolation,
    NotFound,
    PermissionDenied,
    RemoteCollaboratorFailure,
    StorageUnavailable,
    ValidationError,
)
from casework.observability.logging import get_logger

log = get_logger(__name__)

_STATUS: tuple[tuple[type[CaseworkError], int], ...] = (
    (ValidationError, HTTP_422_UNPROCESSABLE_ENTITY),
    (InvariantViolation, HTTP_409_CONFLICT),
    (NotFound, HTTP_404_NOT_FOUND),
    (PermissionDenied, HTTP_403_FORBIDDEN),
    (StorageUnavailable, HTTP_503_SERVICE_UNAVAILABLE),
    (RemoteCollaboratorFailure, HTTP_502_BAD_GATEWAY),
)


def status_for(exc: CaseworkError) -> int:
    for cls, status in _STATUS:
        if isinstance(exc, cls):
            return status
    return HTTP_500_INTERNAL_SERVER_ERROR


async def _handle(request: Request, exc: CaseworkError) -> JSONResponse:
    status = status_for(exc)
    log.info("request_rejected", error=exc.code, status_code=status)
    return JSONResponse(status_code=status, content=exc.to_dict())


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CaseworkError, _handle)  # type: ignore[arg-type]
