from __future__ import annotations

from typing import NoReturn

import structlog
from fastapi import HTTPException
from services.api.app.services.errors import (
    CommitFailedError,
    GatewayRejectedError,
    GatewayUnreachableError,
    InvalidTransitionError,
    ManualConfirmationDisabledError,
    OrderNotFoundError,
    OrderStatusError,
    ResendCooldownError,
    SessionNotFoundError,
    UnknownProductError,
    ValidationError,
)

logger = structlog.get_logger(__name__)


def raise_checkout_http_error(e: Exception) -> NoReturn:
    if isinstance(e, HTTPException):
        raise e

    if isinstance(e, (SessionNotFoundError, OrderNotFoundError, UnknownProductError)):
        raise HTTPException(status_code=404, detail=str(e)) from e

    if isinstance(e, ValidationError):
        raise HTTPException(status_code=422, detail=str(e)) from e

    if isinstance(e, (InvalidTransitionError, OrderStatusError)):
        raise HTTPException(status_code=409, detail=str(e)) from e

    if isinstance(e, ResendCooldownError):
        raise HTTPException(
            status_code=429,
            detail=str(e),
            headers={"Retry-After": str(e.remaining_seconds)},
        ) from e

    if isinstance(e, GatewayRejectedError):
        raise HTTPException(status_code=402, detail=str(e)) from e

    if isinstance(e, GatewayUnreachableError):
        raise HTTPException(status_code=502, detail=str(e)) from e

    if isinstance(e, CommitFailedError):
        raise HTTPException(status_code=503, detail=str(e)) from e

    if isinstance(e, ManualConfirmationDisabledError):
        raise HTTPException(status_code=403, detail=str(e)) from e

    logger.error("Unhandled checkout error", error=repr(e), exc_info=e)
    raise HTTPException(status_code=500, detail="Internal Server Error") from e
