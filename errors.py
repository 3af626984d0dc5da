"""
Error taxonomy for the API.

Every failure leaves the service as a JSON envelope ``{"error": "..."}`` with
an HTTP status matching the failure kind. Handlers are registered on the app
by :func:`register_error_handlers`.
"""

import logging
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pymongo.errors import DuplicateKeyError, ExecutionTimeout, OperationFailure, PyMongoError

import config

logger = logging.getLogger(__name__)

# MaxTimeMSExpired
_MONGO_TIMEOUT_CODES = {50}


class AppError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, details: Any = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class AuthenticationRequired(AppError):
    status_code = 401
    default_message = "Unauthorized"


class AccessDenied(AppError):
    status_code = 403
    default_message = "Access denied"


class NotFound(AppError):
    status_code = 404
    default_message = "Not found"


class ValidationError(AppError):
    status_code = 400
    default_message = "Invalid request"


class ConflictError(AppError):
    status_code = 409
    default_message = "Resource already exists"


class TransactionTimeout(AppError):
    status_code = 408
    default_message = "Transaction timed out"


class InternalError(AppError):
    status_code = 500
    default_message = "Internal server error"


def translate_persistence_error(exc: PyMongoError) -> AppError:
    """Map a driver error onto the taxonomy."""
    if isinstance(exc, DuplicateKeyError):
        return ConflictError("Duplicate value for a unique field")
    if isinstance(exc, ExecutionTimeout):
        return TransactionTimeout()
    if isinstance(exc, OperationFailure) and exc.code in _MONGO_TIMEOUT_CODES:
        return TransactionTimeout()
    return InternalError(details=str(exc))


def _payload(err: AppError) -> dict:
    body = {"error": err.message}
    if isinstance(err, InternalError) and err.details is not None and not config.is_production():
        body["details"] = err.details
    return body


def _describe_validation(exc: RequestValidationError) -> str:
    fields = []
    for e in exc.errors():
        loc = [str(p) for p in e.get("loc", ()) if p not in ("body", "query", "path")]
        if loc:
            fields.append(".".join(loc))
    if not fields:
        return "Invalid request"
    return "Invalid or missing field(s): " + ", ".join(dict.fromkeys(fields))


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def _app_error(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.details or exc.message)
        return JSONResponse(status_code=exc.status_code, content=_payload(exc))

    @app.exception_handler(HTTPException)
    async def _http_error(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": _describe_validation(exc)})

    @app.exception_handler(PyMongoError)
    async def _persistence_error(request: Request, exc: PyMongoError):
        err = translate_persistence_error(exc)
        if isinstance(err, InternalError):
            logger.exception("Database error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=err.status_code, content=_payload(err))

    @app.exception_handler(Exception)
    async def _unexpected(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content=_payload(InternalError(details=str(exc))))
