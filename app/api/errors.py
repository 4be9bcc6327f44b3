"""
Domain error → HTTP response mapping shared by the payment routes.

Error body: {"message": "", "errors": {"_": [<error key>]}}
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.core.exceptions import (
    ConflictError,
    ForbiddenError,
    GatewayError,
    GatewayNotFoundError,
    InvalidInputError,
    NotFoundError,
    PaymentServiceError,
    UnconfiguredError,
    UnprocessableError,
)

logger = logging.getLogger(__name__)

# Most specific first
ERROR_STATUS = (
    (GatewayNotFoundError, 404, "gateway-not-found"),
    (NotFoundError, 404, "not-found"),
    (ForbiddenError, 403, "forbidden"),
    (UnprocessableError, 422, "unprocessable"),
    (InvalidInputError, 422, "invalid-input"),
    (ConflictError, 409, "conflict"),
    (UnconfiguredError, 500, "cc-driver-not-set"),
)


def error_response(status_code: int, key: str) -> JSONResponse:
    return JSONResponse(
        {"message": "", "errors": {"_": [key]}},
        status_code=status_code,
    )


def status_for(error: PaymentServiceError):
    """(status code, error key) for a domain error"""
    if isinstance(error, GatewayError):
        return (503 if error.retryable else 502), "gateway-unavailable"
    for error_type, status_code, key in ERROR_STATUS:
        if isinstance(error, error_type):
            return status_code, key
    return 500, "internal-error"


async def payment_error_handler(request: Request, exc: PaymentServiceError) -> JSONResponse:
    status_code, key = status_for(exc)
    level = logging.ERROR if status_code >= 500 else logging.INFO
    logger.log(level, "PAYMENT_API_ERROR path=%s status=%s error=%s: %s",
               request.url.path, status_code, type(exc).__name__, exc)
    return error_response(status_code, key)


def install_error_handlers(api: FastAPI) -> None:
    api.add_exception_handler(PaymentServiceError, payment_error_handler)
