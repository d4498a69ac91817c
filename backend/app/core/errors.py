"""
Application errors and the uniform JSON error envelope

Every error leaving the API has the shape:

    {"error": {"code": "NOT_FOUND", "message": "Order not found", "details": {...}}}

Services raise AppError subclasses; handlers registered in main.py turn them
(and framework / database errors) into JSONResponses.

Author: Platform Team
Date: 2025-11-20
"""
import logging
from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from psycopg2 import errors as pg_errors
from starlette.exceptions import HTTPException

logger = logging.getLogger(__name__)


class ErrorCode:
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    INSUFFICIENT_PERMISSIONS = "INSUFFICIENT_PERMISSIONS"
    TENANT_ISOLATION_VIOLATION = "TENANT_ISOLATION_VIOLATION"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    NOT_FOUND = "NOT_FOUND"
    ALREADY_EXISTS = "ALREADY_EXISTS"
    CONFLICT = "CONFLICT"
    INSUFFICIENT_INVENTORY = "INSUFFICIENT_INVENTORY"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    SUBSCRIPTION_LIMIT_REACHED = "SUBSCRIPTION_LIMIT_REACHED"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"


# Fallback codes for bare HTTPExceptions
STATUS_CODE_TO_ERROR = {
    400: ErrorCode.VALIDATION_ERROR,
    401: ErrorCode.UNAUTHORIZED,
    402: ErrorCode.PAYMENT_FAILED,
    403: ErrorCode.FORBIDDEN,
    404: ErrorCode.NOT_FOUND,
    409: ErrorCode.CONFLICT,
    422: ErrorCode.VALIDATION_ERROR,
    429: ErrorCode.RATE_LIMIT_EXCEEDED,
}


class AppError(Exception):
    """Base class for errors that map onto the API error envelope"""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, code: Optional[str] = None, details: Any = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details

    def to_dict(self) -> dict:
        error = {"code": self.code, "message": self.message}
        if self.details is not None:
            error["details"] = self.details
        return {"error": error}


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = ErrorCode.VALIDATION_ERROR


class UnauthorizedError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = ErrorCode.UNAUTHORIZED


class ForbiddenError(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    code = ErrorCode.FORBIDDEN


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    code = ErrorCode.NOT_FOUND

    def __init__(self, resource: str, details: Any = None):
        super().__init__(f"{resource} not found", details=details)


class ConflictError(AppError):
    status_code = status.HTTP_409_CONFLICT
    code = ErrorCode.CONFLICT


class AlreadyExistsError(ConflictError):
    code = ErrorCode.ALREADY_EXISTS


class InsufficientInventoryError(ConflictError):
    code = ErrorCode.INSUFFICIENT_INVENTORY


class PaymentError(AppError):
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    code = ErrorCode.PAYMENT_FAILED


class SubscriptionLimitError(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    code = ErrorCode.SUBSCRIPTION_LIMIT_REACHED


class RateLimitError(AppError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = ErrorCode.RATE_LIMIT_EXCEEDED


class InternalError(AppError):
    pass


def error_response(status_code: int, code: str, message: str, details: Any = None, headers=None) -> JSONResponse:
    error = {"code": code, "message": message}
    if details is not None:
        error["details"] = jsonable_encoder(details)
    return JSONResponse(status_code=status_code, content={"error": error}, headers=headers)


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return error_response(exc.status_code, exc.code, exc.message, exc.details)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    code = STATUS_CODE_TO_ERROR.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    details = None if isinstance(exc.detail, str) else exc.detail
    return error_response(exc.status_code, code, message, details, headers=getattr(exc, "headers", None))


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(
        status.HTTP_400_BAD_REQUEST,
        ErrorCode.VALIDATION_ERROR,
        "Invalid request data",
        exc.errors(),
    )


async def unique_violation_handler(request: Request, exc: pg_errors.UniqueViolation) -> JSONResponse:
    logger.warning(f"Unique violation on {request.url.path}: {exc.diag.constraint_name}")
    return error_response(
        status.HTTP_409_CONFLICT,
        ErrorCode.ALREADY_EXISTS,
        "A record with this value already exists",
        {"constraint": exc.diag.constraint_name},
    )


async def foreign_key_violation_handler(request: Request, exc: pg_errors.ForeignKeyViolation) -> JSONResponse:
    logger.warning(f"Foreign key violation on {request.url.path}: {exc.diag.constraint_name}")
    return error_response(
        status.HTTP_409_CONFLICT,
        ErrorCode.CONFLICT,
        "Referenced record does not exist or is still in use",
        {"constraint": exc.diag.constraint_name},
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        ErrorCode.INTERNAL_ERROR,
        "An unexpected error occurred",
    )


def register_exception_handlers(app: FastAPI):
    """Attach all envelope-producing handlers to the app"""
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(pg_errors.UniqueViolation, unique_violation_handler)
    app.add_exception_handler(pg_errors.ForeignKeyViolation, foreign_key_violation_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
