from __future__ import annotations

import uuid
from datetime import datetime
from typing import ClassVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config: ClassVar[ConfigDict] = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class PresignedUrlRequest(_CamelModel):
    entity_type: str = Field(min_length=1, max_length=50)
    # Older clients send workspaceId; the value is the parent entity id either way.
    parent_id: uuid.UUID = Field(
        validation_alias=AliasChoices("parentId", "workspaceId", "parent_id"),
    )
    file_name: str = Field(min_length=1, max_length=255)
    file_size: int
    content_type: str = Field(min_length=1, max_length=255)


class PresignedUrlResponse(_CamelModel):
    attachment_id: str
    upload_url: str
    storage_key: str
    expires_in_seconds: int


class RegisterMetadataRequest(_CamelModel):
    entity_type: str = Field(min_length=1, max_length=50)
    storage_key: str = Field(
        min_length=1,
        max_length=1024,
        validation_alias=AliasChoices("storageKey", "fileKey", "storage_key"),
    )
    file_name: str = Field(min_length=1, max_length=255)
    file_size: int
    content_type: str = Field(min_length=1, max_length=255)


class AttachmentOut(_CamelModel):
    id: str
    entity_type: str
    entity_id: str | None = None
    status: str
    file_name: str
    url: str
    file_size: int
    content_type: str
    uploaded_by: str
    uploaded_at: datetime
    expires_at: datetime | None = None


class DeleteAttachmentResponse(_CamelModel):
    message: str = "attachment deleted"
