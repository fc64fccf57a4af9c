"""Upload policy checks.

All checks are pure and raise `ApiError` with a distinct code. They run in a
fixed order (entity type -> size -> file type) before any storage or database
call, so an invalid request never produces a storage key or a signed URL.
"""

from __future__ import annotations

from dataclasses import dataclass

from board_attachments.config import Settings
from board_attachments.errors import file_too_large, invalid_file_type, validation_error
from board_attachments.models import EntityType

_ALLOWED_ENTITY_TYPES = ", ".join(e.value for e in EntityType)


@dataclass(frozen=True)
class FileTypePolicy:
    image_types: frozenset[str]
    image_extensions: frozenset[str]
    doc_types: frozenset[str]
    doc_extensions: frozenset[str]

    @classmethod
    def from_settings(cls, settings: Settings) -> "FileTypePolicy":
        return cls(
            image_types=settings.allowed_image_types(),
            image_extensions=settings.allowed_image_extensions(),
            doc_types=settings.allowed_doc_types(),
            doc_extensions=settings.allowed_doc_extensions(),
        )

    def allows(self, content_type: str, ext: str) -> bool:
        # The pair must come from the same family; an image content type with a
        # document extension (or vice versa) is rejected.
        is_image = content_type in self.image_types and ext in self.image_extensions
        is_doc = content_type in self.doc_types and ext in self.doc_extensions
        return is_image or is_doc


def file_extension(file_name: str) -> str:
    """Lower-cased text after the last dot, or "" when there is none."""
    base = (file_name or "").replace("\\", "/").rsplit("/", 1)[-1]
    if "." not in base:
        return ""
    return base.rsplit(".", 1)[1].strip().lower()


def normalize_content_type(content_type: str) -> str:
    # "Image/JPEG; charset=binary" -> "image/jpeg"
    return (content_type or "").split(";", 1)[0].strip().lower()


def validate_entity_type(token: str) -> EntityType:
    value = (token or "").strip().upper()
    try:
        return EntityType(value)
    except ValueError:
        raise validation_error(
            "Invalid entity type",
            details={"allowed": _ALLOWED_ENTITY_TYPES, "got": token},
        ) from None


def validate_file_size(size: int, *, max_size_bytes: int) -> None:
    if size <= 0:
        raise validation_error("File size must be greater than 0")
    if size > max_size_bytes:
        raise file_too_large(
            f"File size exceeds {max_size_bytes} bytes limit",
            details={"max_size_bytes": max_size_bytes, "file_size": size},
        )


def validate_file_type(file_name: str, content_type: str, *, policy: FileTypePolicy) -> str:
    """Check the (content type, extension) pair; returns the extension."""
    ext = file_extension(file_name)
    if not ext:
        raise invalid_file_type("File must have an extension")

    if not policy.allows(normalize_content_type(content_type), ext):
        raise invalid_file_type(
            "Unsupported file type",
            details={
                "images": sorted(policy.image_extensions),
                "documents": sorted(policy.doc_extensions),
            },
        )
    return ext


def validate_upload_request(
    *,
    entity_type: str,
    file_size: int,
    file_name: str,
    content_type: str,
    settings: Settings,
) -> EntityType:
    entity = validate_entity_type(entity_type)
    validate_file_size(file_size, max_size_bytes=settings.attachments_max_size_bytes)
    validate_file_type(file_name, content_type, policy=FileTypePolicy.from_settings(settings))
    return entity
