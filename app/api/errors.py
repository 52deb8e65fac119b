"""
Domain exception -> HTTP status mapping
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.domain.exceptions import (
    ApprovalBlockedError,
    ApprovalNotFoundError,
    ApprovalTransitionError,
    FundNotFoundError,
    InvalidRunStateError,
    InvalidSnapshotError,
    NAVRecordConflictError,
    NAVRecordNotFoundError,
    NAVRunNotFoundError,
    ShareClassNotFoundError,
)

logger = logging.getLogger(__name__)

_STATUS_CODES = (
    (FundNotFoundError, 404),
    (ShareClassNotFoundError, 404),
    (NAVRecordNotFoundError, 404),
    (NAVRunNotFoundError, 404),
    (ApprovalNotFoundError, 404),
    (NAVRecordConflictError, 409),
    (ApprovalTransitionError, 409),
    (InvalidRunStateError, 409),
    (ApprovalBlockedError, 422),
    (InvalidSnapshotError, 422),
)


def register_exception_handlers(app: FastAPI) -> None:
    for exc_class, status_code in _STATUS_CODES:
        app.add_exception_handler(exc_class, _handler(status_code))


def _handler(status_code: int):
    async def handle(request: Request, exc: Exception) -> JSONResponse:
        logger.info(
            "API_ERROR | path=%s | status=%s | error=%s | detail=%s",
            request.url.path, status_code, type(exc).__name__, exc,
        )
        return JSONResponse(
            status_code=status_code,
            content={"detail": str(exc), "error": type(exc).__name__},
        )

    return handle
