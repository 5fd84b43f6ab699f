"""
Custom exception handlers for FastAPI.
Maps the domain error taxonomy onto HTTP responses with clear, actionable
messages, and keeps the generic 500 path reporting to Sentry.
"""

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.status import HTTP_422_UNPROCESSABLE_ENTITY, HTTP_500_INTERNAL_SERVER_ERROR

from receipt_vault.core.errors import (
    ReceiptVaultError,
    TransientIOError,
    UnauthenticatedError,
    UnauthorizedError,
)
from receipt_vault.core.observability import sentry_capture_exception


def receipt_vault_exception_handler(request: Request, exc: ReceiptVaultError):
    content = {"error": exc.error, "details": str(exc)}
    if isinstance(exc, UnauthenticatedError):
        content["details"] = "Please sign in"
    elif isinstance(exc, UnauthorizedError):
        # Never echo which record or owner was involved
        content["details"] = "Not authorized"
    elif isinstance(exc, TransientIOError):
        content["retryable"] = True
        content["operation"] = exc.operation
    if exc.status_code >= 500 and not isinstance(exc, TransientIOError):
        sentry_capture_exception(exc)
    return JSONResponse(status_code=exc.status_code, content=content)


def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "Validation error",
            "details": jsonable_encoder(exc.errors()),
        },
    )


def generic_exception_handler(request: Request, exc: Exception):
    sentry_capture_exception(exc)
    return JSONResponse(
        status_code=HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "details": str(exc),
        },
    )
