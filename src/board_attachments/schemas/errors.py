from __future__ import annotations

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Unified error payload returned by every endpoint.

    `error` is a stable machine-readable code (e.g. `file_too_large`) so clients
    can render targeted messages; `message` is human-readable.
    """

    error: str
    message: str
    request_id: str | None = None
    details: object | None = None
