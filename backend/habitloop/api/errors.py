"""Map domain and coach errors onto HTTP responses."""
from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from habitloop.errors import (
    CoachServiceError,
    DecodingFailure,
    HabitLoopError,
    InvalidResponseShape,
    LifecycleError,
    NetworkFailure,
    TaskNotFound,
)
from habitloop.observability.metrics import log_metric

logger = logging.getLogger(__name__)

# Checked in order; the first matching class wins.
STATUS_BY_ERROR = (
    (TaskNotFound, status.HTTP_404_NOT_FOUND),
    (LifecycleError, status.HTTP_409_CONFLICT),
    (NetworkFailure, status.HTTP_503_SERVICE_UNAVAILABLE),
    (InvalidResponseShape, status.HTTP_502_BAD_GATEWAY),
    (DecodingFailure, status.HTTP_502_BAD_GATEWAY),
    (CoachServiceError, status.HTTP_502_BAD_GATEWAY),
)


def status_for(exc: HabitLoopError) -> int:
    for error_type, code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_400_BAD_REQUEST


async def handle_habitloop_error(request: Request, exc: HabitLoopError) -> JSONResponse:
    code = status_for(exc)
    request_id = getattr(request.state, "request_id", None)
    if code >= 500:
        logger.warning("Request %s failed with %s: %s", request.url.path, type(exc).__name__, exc)
    log_metric("api.error", 1, metadata={"error": type(exc).__name__, "route": request.url.path, "request_id": request_id})
    return JSONResponse(status_code=code, content={"detail": str(exc), "error": type(exc).__name__})


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(HabitLoopError, handle_habitloop_error)
