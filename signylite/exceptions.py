"""
HTTP exceptions and error handlers for the local adapter.
"""
import logging
from typing import Optional

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from signylite.config import is_allowed_origin
from signylite.utils.logging import get_request_id

logger = logging.getLogger(__name__)


def _add_cors_headers(response: JSONResponse, request: Request) -> JSONResponse:
    """Add CORS headers to error response."""
    origin = request.headers.get("origin")
    if origin and is_allowed_origin(origin):
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"
        response.headers["Vary"] = "Origin"
    return response


class AppException(HTTPException):
    """Base application exception."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: Optional[dict] = None,
    ):
        self.code = code
        self.message = message
        self.details = details
        super().__init__(status_code=status_code, detail=message)


class ValidationException(AppException):
    """Validation error."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            status_code=400,
            code="VALIDATION_ERROR",
            message=message,
            details=details,
        )


class MissingInputException(AppException):
    """A document or mark is required but was not provided."""

    def __init__(self, message: str, code: str = "MISSING_INPUT"):
        super().__init__(status_code=400, code=code, message=message)


class LoadException(AppException):
    """The document or mark image could not be read."""

    def __init__(self, message: str, code: str = "LOAD_ERROR"):
        super().__init__(status_code=422, code=code, message=message)


class PlacementException(AppException):
    """Placement rejected (strict mode)."""

    def __init__(self, message: str, code: str = "PLACEMENT_OUT_OF_RANGE"):
        super().__init__(status_code=422, code=code, message=message)


class SessionBusyException(AppException):
    """Another operation is running on the session."""

    def __init__(self, message: str, code: str = "SESSION_BUSY"):
        super().__init__(status_code=409, code=code, message=message)


class SerializeException(AppException):
    """The output document could not be written."""

    def __init__(self, message: str, code: str = "SERIALIZE_ERROR"):
        super().__init__(status_code=500, code=code, message=message)


_STATUS_EXCEPTIONS = {
    "MISSING_INPUT": MissingInputException,
    "LOAD_ERROR": LoadException,
    "ENCRYPTED_PDF": LoadException,
    "FILE_TOO_LARGE": LoadException,
    "PLACEMENT_OUT_OF_RANGE": PlacementException,
    "SESSION_BUSY": SessionBusyException,
    "SERIALIZE_ERROR": SerializeException,
}


def exception_from_status(report) -> AppException:
    """
    Map a failed StatusReport to the matching HTTP exception.

    Unknown codes become a 500 carrying the original code.
    """
    code = report.code or "INTERNAL_ERROR"
    exc_class = _STATUS_EXCEPTIONS.get(code)
    if exc_class is None:
        return AppException(status_code=500, code=code, message=report.message or "Operation failed")
    return exc_class(report.message, code=code)


def build_error_response(
    status_code: int,
    code: str,
    message: str,
    details: Optional[dict] = None,
) -> dict:
    """Build standardized error response."""
    response = {
        "error": True,
        "code": code,
        "message": message,
        "request_id": get_request_id(),
    }
    if details:
        response["details"] = details
    return response


async def app_exception_handler(
    request: Request,
    exc: AppException,
) -> JSONResponse:
    """Handle application exceptions."""
    logger.warning(f"AppException: {exc.code} - {exc.message}")
    response = JSONResponse(
        status_code=exc.status_code,
        content=build_error_response(
            exc.status_code,
            exc.code,
            exc.message,
            exc.details,
        ),
    )
    return _add_cors_headers(response, request)


async def http_exception_handler(
    request: Request,
    exc: HTTPException,
) -> JSONResponse:
    """Handle HTTP exceptions."""
    logger.warning(f"HTTPException: {exc.status_code} - {exc.detail}")

    if isinstance(exc.detail, dict):
        code = exc.detail.get("code", "HTTP_ERROR")
        message = exc.detail.get("message", str(exc.detail))
    else:
        code = "HTTP_ERROR"
        message = str(exc.detail)

    response = JSONResponse(
        status_code=exc.status_code,
        content=build_error_response(exc.status_code, code, message),
    )
    return _add_cors_headers(response, request)


async def validation_exception_handler(
    request: Request,
    exc: ValidationError,
) -> JSONResponse:
    """Handle Pydantic validation errors."""
    logger.warning(f"ValidationError: {len(exc.errors())} error(s)")

    errors = []
    for error in exc.errors():
        errors.append({
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        })

    response = JSONResponse(
        status_code=422,
        content=build_error_response(
            422,
            "VALIDATION_ERROR",
            "Request validation failed",
            {"errors": errors},
        ),
    )
    return _add_cors_headers(response, request)


async def generic_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.exception(f"Unexpected error: {exc}")

    response = JSONResponse(
        status_code=500,
        content=build_error_response(
            500,
            "INTERNAL_ERROR",
            "An unexpected error occurred",
        ),
    )
    return _add_cors_headers(response, request)
