"""
HTTP rendering of failures.

Every error body has the same shape: ``error`` (message), ``error_code``
(stable, from fieldops.lib.errors), ``correlation_id`` and, when there is
something to add, ``details``.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from fieldops.lib.errors import AppException, ValidationException, http_status_for
from fieldops.lib.logging import get_logger

logger = get_logger(__name__)


class OperationFailedException(AppException):
    """A failed OperationResult re-raised inside a route."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str],
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            status_code=http_status_for(error_code),
            details=details,
        )
        self.error_code = error_code or AppException.error_code


def _correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", "unknown")


def _error_response(
    request: Request,
    status_code: int,
    message: str,
    error_code: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    body: Dict[str, Any] = {"error": message}
    if error_code:
        body["error_code"] = error_code
    body["correlation_id"] = _correlation_id(request)
    if details:
        body["details"] = details
    return JSONResponse(status_code=status_code, content=body)


def _request_fields(request: Request) -> Dict[str, Any]:
    return {"path": request.url.path, "method": request.method}


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Domain errors; 4xx at WARNING, 5xx at ERROR."""
    logger.log(
        logging.WARNING if exc.status_code < 500 else logging.ERROR,
        f"Request failed: {exc.message}",
        extra={"status_code": exc.status_code, "error_code": exc.error_code, **_request_fields(request)},
    )
    return _error_response(request, exc.status_code, exc.message, exc.error_code, exc.details)


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Body and query validation, reported like a ValidationException."""
    errors = [
        {"loc": list(error["loc"]), "msg": error["msg"], "type": error["type"]}
        for error in exc.errors()
    ]
    logger.warning("Request rejected by validation", extra={"errors": errors, **_request_fields(request)})
    return _error_response(
        request,
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Validation error",
        ValidationException.error_code,
        {"errors": errors},
    )


async def http_exception_handler(
    request: Request,
    exc: StarletteHTTPException,
) -> JSONResponse:
    """Routing errors such as unknown paths and wrong methods."""
    logger.warning(
        f"HTTP {exc.status_code}: {exc.detail}",
        extra={"status_code": exc.status_code, **_request_fields(request)},
    )
    return _error_response(request, exc.status_code, exc.detail)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled exception: {exc}", extra=_request_fields(request), exc_info=True)
    return _error_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Internal server error",
        AppException.error_code,
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
