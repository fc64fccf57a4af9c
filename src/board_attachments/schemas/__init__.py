from __future__ import annotations

from .errors import ErrorResponse
from .attachments import (
    AttachmentOut,
    DeleteAttachmentResponse,
    PresignedUrlRequest,
    PresignedUrlResponse,
    RegisterMetadataRequest,
)

__all__ = [
    "AttachmentOut",
    "DeleteAttachmentResponse",
    "ErrorResponse",
    "PresignedUrlRequest",
    "PresignedUrlResponse",
    "RegisterMetadataRequest",
]
