"""Translation of taxonomy errors into HTTP responses for the routes."""

from __future__ import annotations

import logging

from fastapi import HTTPException

from reconcile.errors import (
    AuthExpired,
    MusyncError,
    NotFound,
    RateLimited,
    StoreUnavailable,
    SyncInProgress,
    ValidationError,
)

logger = logging.getLogger(__name__)

_STATUS = (
    (ValidationError, 400),
    (AuthExpired, 401),
    (NotFound, 404),
    (SyncInProgress, 409),
    (RateLimited, 429),  # includes QuotaExceeded
    (StoreUnavailable, 503),
)


def http_error(exc: MusyncError) -> HTTPException:
    """Map *exc* to an ``HTTPException``; unknown platform failures are 502."""
    for cls, status in _STATUS:
        if isinstance(exc, cls):
            break
    else:
        status = 502
    if status >= 500:
        logger.error("Request failed with %s: %s", exc.kind, exc.describe())
    return HTTPException(status_code=status, detail=exc.describe())
