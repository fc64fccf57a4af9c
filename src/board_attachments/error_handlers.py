"""Unified exception handling (ErrorResponse).

Every error leaves the service as `{error, message, request_id, details}` so
clients can branch on `error` (e.g. `file_too_large` vs `invalid_file_type`)
instead of parsing FastAPI's default `{"detail": ...}`.
"""

from __future__ import annotations

import logging
from typing import cast

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from board_attachments.errors import (
    FILE_TOO_LARGE,
    FORBIDDEN,
    INTERNAL_ERROR,
    INVALID_FILE_TYPE,
    NOT_FOUND,
    UNAUTHORIZED,
    VALIDATION_ERROR,
    ApiError,
)
from board_attachments.schemas.errors import ErrorResponse

logger = logging.getLogger(__name__)

# Codes for HTTP errors raised by the framework itself (routing, method checks).
_ERROR_BY_STATUS: dict[int, str] = {
    400: VALIDATION_ERROR,
    401: UNAUTHORIZED,
    403: FORBIDDEN,
    404: NOT_FOUND,
    405: "method_not_allowed",
    413: FILE_TOO_LARGE,
    415: INVALID_FILE_TYPE,
    422: VALIDATION_ERROR,
    500: INTERNAL_ERROR,
}


def _error_code(exc: StarletteHTTPException) -> str:
    if isinstance(exc, ApiError):
        return exc.error
    return _ERROR_BY_STATUS.get(exc.status_code, f"http_{exc.status_code}")


def _split_detail(detail: object) -> tuple[str, object | None]:
    # ApiError detail is {"message": str, "details"?: object}.
    if isinstance(detail, dict):
        message = detail.get("message")
        if isinstance(message, str):
            return message, detail.get("details")
        return "Request failed", detail
    if isinstance(detail, list):
        return "Request failed", detail
    return str(detail), None


def _render(
    request: Request,
    status_code: int,
    *,
    error: str,
    message: str,
    details: object | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    payload = ErrorResponse(
        error=error,
        message=message,
        request_id=getattr(request.state, "request_id", None),
        details=details,
    )
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(payload, exclude_none=True),
        headers=headers,
    )


async def _http_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    http_exc = cast(StarletteHTTPException, exc)
    error = _error_code(http_exc)
    message, details = _split_detail(http_exc.detail)

    if http_exc.status_code >= 500:
        logger.error(
            "request failed request_id=%s method=%s path=%s error=%s message=%s",
            getattr(request.state, "request_id", None),
            request.method,
            request.url.path,
            error,
            message,
        )
    return _render(
        request,
        http_exc.status_code,
        error=error,
        message=message,
        details=details,
        headers=getattr(http_exc, "headers", None),
    )


async def _validation_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    validation_exc = cast(RequestValidationError, exc)
    return _render(
        request,
        422,
        error=VALIDATION_ERROR,
        message="Request validation error",
        details=validation_exc.errors(),
    )


async def _unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled exception request_id=%s method=%s path=%s",
        getattr(request.state, "request_id", None),
        request.method,
        request.url.path,
        exc_info=exc,
    )
    return _render(request, 500, error=INTERNAL_ERROR, message="Internal server error")


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)
    app.add_exception_handler(Exception, _unhandled_exception_handler)
