from __future__ import annotations

from fastapi import HTTPException, status

VALIDATION_ERROR = "validation_error"
FILE_TOO_LARGE = "file_too_large"
INVALID_FILE_TYPE = "invalid_file_type"
UNAUTHORIZED = "unauthorized"
FORBIDDEN = "forbidden"
NOT_FOUND = "not_found"
INTERNAL_ERROR = "internal_error"


class ApiError(HTTPException):
    """HTTPException carrying a stable error code for the ErrorResponse contract."""

    def __init__(
        self,
        status_code: int,
        error: str,
        message: str,
        *,
        details: object | None = None,
    ) -> None:
        detail: dict[str, object] = {"message": message}
        if details is not None:
            detail["details"] = details
        super().__init__(status_code=status_code, detail=detail)
        self.error = error
        self.message = message


def validation_error(message: str, *, details: object | None = None) -> ApiError:
    return ApiError(status.HTTP_400_BAD_REQUEST, VALIDATION_ERROR, message, details=details)


def file_too_large(message: str, *, details: object | None = None) -> ApiError:
    return ApiError(status.HTTP_413_CONTENT_TOO_LARGE, FILE_TOO_LARGE, message, details=details)


def invalid_file_type(message: str, *, details: object | None = None) -> ApiError:
    return ApiError(
        status.HTTP_415_UNSUPPORTED_MEDIA_TYPE, INVALID_FILE_TYPE, message, details=details
    )


def unauthorized(message: str) -> ApiError:
    return ApiError(status.HTTP_401_UNAUTHORIZED, UNAUTHORIZED, message)


def forbidden(message: str) -> ApiError:
    return ApiError(status.HTTP_403_FORBIDDEN, FORBIDDEN, message)


def not_found(message: str) -> ApiError:
    return ApiError(status.HTTP_404_NOT_FOUND, NOT_FOUND, message)


def internal_error(message: str = "Internal server error") -> ApiError:
    return ApiError(status.HTTP_500_INTERNAL_SERVER_ERROR, INTERNAL_ERROR, message)
