"""Translate chat engine failures into HTTP errors."""

import logging

from fastapi import HTTPException

from services.chat.errors import (
    BackendResponseError,
    BackendUnreachableError,
    DiscoveryError,
    ModelLoadError,
    SessionBusyError,
)

LOGGER = logging.getLogger(__name__)


def http_error(exc: Exception) -> HTTPException:
    """Return the HTTPException a route should raise for `exc`."""
    if isinstance(exc, HTTPException):
        return exc
    if isinstance(exc, SessionBusyError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, (DiscoveryError, BackendUnreachableError)):
        return HTTPException(status_code=503, detail=str(exc))
    if isinstance(exc, (ModelLoadError, BackendResponseError)):
        return HTTPException(status_code=502, detail=str(exc))
    # ModelValidationError and HistoryError are ValueErrors.
    if isinstance(exc, ValueError):
        return HTTPException(status_code=400, detail=str(exc))
    LOGGER.error("Unhandled error: %r", exc)
    return HTTPException(status_code=500, detail=str(exc))
