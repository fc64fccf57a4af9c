"""Attachments router."""

from __future__ import annotations

import uuid
from collections.abc import Callable

from fastapi import APIRouter, Depends, status
from sqlmodel.ext.asyncio.session import AsyncSession

from board_attachments.db import get_session
from board_attachments.deps import get_current_user_id
from board_attachments.errors import not_found
from board_attachments.integrations.storage.object_storage import (
    ObjectStorage,
    get_object_storage,
    get_object_storage_factory,
)
from board_attachments.models import EntityType
from board_attachments.schemas.attachments import (
    AttachmentOut,
    DeleteAttachmentResponse,
    PresignedUrlRequest,
    PresignedUrlResponse,
    RegisterMetadataRequest,
)
from board_attachments.services import attachments_service
from board_attachments.services.attachments_service import AttachmentView

router = APIRouter(tags=["attachments"])

_ENTITY_BY_PLURAL: dict[str, EntityType] = {e.plural: e for e in EntityType}


def _to_out(view: AttachmentView) -> AttachmentOut:
    return AttachmentOut(
        id=view.id,
        entity_type=view.entity_type,
        entity_id=view.entity_id,
        status=view.status,
        file_name=view.file_name,
        url=view.url,
        file_size=view.file_size,
        content_type=view.content_type,
        uploaded_by=view.uploaded_by,
        uploaded_at=view.uploaded_at,
        expires_at=view.expires_at,
    )


@router.post("/attachments/presigned-url", response_model=PresignedUrlResponse)
async def create_presigned_url(
    payload: PresignedUrlRequest,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
    storage: ObjectStorage = Depends(get_object_storage),
) -> PresignedUrlResponse:
    auth = await attachments_service.issue_upload_authorization(
        session=session,
        storage=storage,
        entity_type=payload.entity_type,
        parent_id=str(payload.parent_id),
        file_name=payload.file_name,
        file_size=payload.file_size,
        content_type=payload.content_type,
        requester=user_id,
    )
    return PresignedUrlResponse(
        attachment_id=auth.attachment_id,
        upload_url=auth.upload_url,
        storage_key=auth.storage_key,
        expires_in_seconds=auth.expires_in_seconds,
    )


@router.post(
    "/attachments",
    response_model=AttachmentOut,
    status_code=status.HTTP_201_CREATED,
)
async def register_attachment_metadata(
    payload: RegisterMetadataRequest,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
    storage_factory: Callable[[], ObjectStorage] = Depends(get_object_storage_factory),
) -> AttachmentOut:
    row = await attachments_service.register_uploaded_metadata(
        session=session,
        entity_type=payload.entity_type,
        storage_key=payload.storage_key,
        file_name=payload.file_name,
        file_size=payload.file_size,
        content_type=payload.content_type,
        requester=user_id,
    )
    # Storage is resolved only after validation, to derive the URL.
    return _to_out(attachments_service.to_view(row, storage_factory()))


@router.get("/{entity_plural}/{entity_id}/attachments", response_model=list[AttachmentOut])
async def list_entity_attachments(
    entity_plural: str,
    entity_id: uuid.UUID,
    _user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
    storage: ObjectStorage = Depends(get_object_storage),
) -> list[AttachmentOut]:
    entity_type = _ENTITY_BY_PLURAL.get(entity_plural.lower())
    if entity_type is None:
        raise not_found("Not Found")

    views = await attachments_service.list_entity_attachments(
        session=session,
        storage=storage,
        entity_type=entity_type,
        entity_id=str(entity_id),
    )
    return [_to_out(v) for v in views]


@router.delete("/attachments/{attachment_id}", response_model=DeleteAttachmentResponse)
async def delete_attachment(
    attachment_id: uuid.UUID,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
    storage: ObjectStorage = Depends(get_object_storage),
) -> DeleteAttachmentResponse:
    await attachments_service.delete_attachment(
        session=session,
        storage=storage,
        attachment_id=str(attachment_id),
        requester=user_id,
    )
    return DeleteAttachmentResponse()
