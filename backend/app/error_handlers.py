"""Exception handlers that turn every failure into the canonical error payload.

``{"error": {"code", "message", "details"}}`` is the only error shape the
panel and the Minecraft plugin ever see.
"""
import logging

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import (
    IntegrityError,
    MultipleResultsFound,
    NoResultFound,
    ProgrammingError,
)
from starlette.exceptions import HTTPException as StarletteHTTPException

from .errors import (
    AppError,
    AuthError,
    ConflictError,
    InternalError,
    NotFoundError,
    PayloadTooLargeError,
    PermissionError,
    RateLimitedError,
    ValidationError,
    error_payload,
    resolve_error_code,
)

logger = logging.getLogger("modl.errors")

# Public message per status for HTTPExceptions raised with a free-form detail
SAFE_HTTP_MESSAGES: dict[int, str] = {
    status.HTTP_400_BAD_REQUEST: ValidationError.message,
    status.HTTP_401_UNAUTHORIZED: AuthError.message,
    status.HTTP_403_FORBIDDEN: PermissionError.message,
    status.HTTP_404_NOT_FOUND: NotFoundError.message,
    status.HTTP_409_CONFLICT: ConflictError.message,
    status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: PayloadTooLargeError.message,
    status.HTTP_422_UNPROCESSABLE_ENTITY: ValidationError.message,
    status.HTTP_429_TOO_MANY_REQUESTS: RateLimitedError.message,
}

# SQLAlchemy errors that escape a repository: (status, code, public message)
DATABASE_ERRORS: dict[type[Exception], tuple[int, str, str]] = {
    IntegrityError: (
        status.HTTP_409_CONFLICT,
        ConflictError.code,
        "Request could not be completed due to a conflict",
    ),
    ProgrammingError: (
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        InternalError.code,
        "Database not initialized. Ensure migrations are applied.",
    ),
    NoResultFound: (
        status.HTTP_404_NOT_FOUND,
        NotFoundError.code,
        "Requested resource was not found",
    ),
    MultipleResultsFound: (
        status.HTTP_409_CONFLICT,
        ConflictError.code,
        "Multiple resources found where one expected",
    ),
}


def _log(
    request: Request, status_code: int, code: str, message: str, exc: Exception | None = None
) -> None:
    line = "[%s] path=%s server=%s request_id=%s message=%s"
    args = (
        code,
        request.url.path,
        request.headers.get("x-server-name") or "n/a",
        request.headers.get("x-request-id") or "n/a",
        message,
    )
    if status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error(line, *args, exc_info=exc)
    else:
        logger.warning(line, *args)


def _respond(status_code: int, code: str, message: str, details=None, headers=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=error_payload(code, message, details),
        headers=headers,
    )


def _canonical_detail(detail: object) -> dict | None:
    """Return ``detail`` if it already is an error payload, filling in ``details``."""
    if not isinstance(detail, dict) or not isinstance(detail.get("error"), dict):
        return None
    error = detail["error"]
    if not isinstance(error.get("code"), str) or not isinstance(error.get("message"), str):
        return None
    return {"error": {"details": None, **error}}


async def handle_app_error(request: Request, exc: AppError) -> JSONResponse:
    _log(request, exc.status_code, exc.code, exc.message, exc)
    return _respond(exc.status_code, exc.code, exc.message, exc.details)


async def handle_http_exception(
    request: Request, exc: HTTPException | StarletteHTTPException
) -> JSONResponse:
    canonical = _canonical_detail(exc.detail)
    if canonical is not None:
        error = canonical["error"]
        _log(request, exc.status_code, error["code"], error["message"])
        return JSONResponse(status_code=exc.status_code, content=canonical)

    if exc.status_code in SAFE_HTTP_MESSAGES:
        message = SAFE_HTTP_MESSAGES[exc.status_code]
    elif exc.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        message = InternalError.message
    else:
        message = "Request failed"
    code = resolve_error_code(exc.status_code)
    detail = exc.detail if isinstance(exc.detail, str) else ""
    _log(request, exc.status_code, code, detail.strip() or message)
    return _respond(
        exc.status_code, code, message, exc.detail, headers=getattr(exc, "headers", None)
    )


async def handle_request_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    message = "Request validation failed"
    _log(request, status.HTTP_422_UNPROCESSABLE_ENTITY, ValidationError.code, message, exc)
    return _respond(
        status.HTTP_422_UNPROCESSABLE_ENTITY, ValidationError.code, message, exc.errors()
    )


async def handle_value_error(request: Request, exc: ValueError) -> JSONResponse:
    reason = str(exc).strip() or "Invalid request"
    _log(request, status.HTTP_400_BAD_REQUEST, ValidationError.code, reason, exc)
    return _respond(status.HTTP_400_BAD_REQUEST, ValidationError.code, "Invalid request", reason)


async def handle_database_error(request: Request, exc: Exception) -> JSONResponse:
    for error_type, (status_code, code, message) in DATABASE_ERRORS.items():
        if isinstance(exc, error_type):
            break
    else:
        status_code, code, message = (
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            InternalError.code,
            InternalError.message,
        )
    _log(request, status_code, code, message, exc)
    return _respond(status_code, code, message)


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    _log(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        InternalError.code,
        InternalError.message,
        exc,
    )
    return _respond(
        status.HTTP_500_INTERNAL_SERVER_ERROR, InternalError.code, InternalError.message
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, handle_app_error)
    app.add_exception_handler(HTTPException, handle_http_exception)
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)
    app.add_exception_handler(RequestValidationError, handle_request_validation_error)
    app.add_exception_handler(ValueError, handle_value_error)
    for error_type in DATABASE_ERRORS:
        app.add_exception_handler(error_type, handle_database_error)
    app.add_exception_handler(Exception, handle_unexpected_error)
