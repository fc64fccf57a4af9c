from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlmodel.ext.asyncio.session import AsyncSession

from board_attachments.config import settings
from board_attachments.errors import forbidden, internal_error, not_found, validation_error
from board_attachments.integrations.storage.object_storage import ObjectStorage
from board_attachments.models import (
    Attachment,
    AttachmentStatus,
    EntityType,
    assume_utc,
    utc_now,
)
from board_attachments.repositories import attachments_repo
from board_attachments.validators import (
    normalize_content_type,
    validate_entity_type,
    validate_upload_request,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadAuthorization:
    attachment_id: str
    upload_url: str
    storage_key: str
    expires_in_seconds: int


@dataclass(frozen=True)
class AttachmentView:
    """Read model: the stored key is never exposed, only the derived URL."""

    id: str
    entity_type: str
    entity_id: str | None
    status: str
    file_name: str
    url: str
    file_size: int
    content_type: str
    uploaded_by: str
    uploaded_at: datetime
    expires_at: datetime | None


@dataclass
class ConfirmResult:
    confirmed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


def to_view(attachment: Attachment, storage: ObjectStorage) -> AttachmentView:
    return AttachmentView(
        id=attachment.id,
        entity_type=attachment.entity_type,
        entity_id=attachment.entity_id,
        status=attachment.status,
        file_name=attachment.file_name,
        url=storage.to_readable_url(attachment.storage_key),
        file_size=attachment.file_size,
        content_type=attachment.content_type,
        uploaded_by=attachment.uploaded_by,
        uploaded_at=assume_utc(attachment.created_at) or attachment.created_at,
        expires_at=assume_utc(attachment.expires_at),
    )


def _dedupe(ids: Sequence[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for raw in ids:
        value = str(raw)
        if value not in seen:
            seen.add(value)
            out.append(value)
    return out


def _new_temp_attachment(
    *,
    entity_type: EntityType,
    storage_key: str,
    file_name: str,
    file_size: int,
    content_type: str,
    requester: str,
) -> Attachment:
    now = utc_now()
    return Attachment(
        id=str(uuid.uuid4()),
        entity_type=entity_type.value,
        entity_id=None,
        status=AttachmentStatus.TEMP.value,
        file_name=file_name,
        storage_key=storage_key,
        file_size=file_size,
        content_type=normalize_content_type(content_type),
        uploaded_by=requester,
        created_at=now,
        updated_at=now,
        expires_at=now + timedelta(seconds=settings.attachments_temp_ttl_seconds),
    )


async def _persist_new(session: AsyncSession, attachment: Attachment) -> Attachment:
    # Commit before returning so the TEMP row is durable when the URL goes out.
    try:
        await attachments_repo.create(session, attachment)
        await session.commit()
    except Exception:
        try:
            await session.rollback()
        except Exception:
            logger.debug("rollback failed attachment_id=%s", attachment.id, exc_info=True)
        raise
    return attachment


async def issue_upload_authorization(
    *,
    session: AsyncSession,
    storage: ObjectStorage,
    entity_type: str,
    parent_id: str,
    file_name: str,
    file_size: int,
    content_type: str,
    requester: str,
) -> UploadAuthorization:
    entity = validate_upload_request(
        entity_type=entity_type,
        file_size=file_size,
        file_name=file_name,
        content_type=content_type,
        settings=settings,
    )

    try:
        upload_url, storage_key = await storage.issue_upload_url(
            entity_type_plural=entity.plural,
            parent_id=parent_id,
            file_name=file_name,
            # Signed verbatim: the browser PUT must send this exact header value.
            content_type=content_type,
        )
    except Exception:
        logger.exception(
            "presigned url generation failed entity_type=%s parent_id=%s",
            entity.value,
            parent_id,
        )
        raise internal_error("Failed to generate presigned URL") from None

    attachment = _new_temp_attachment(
        entity_type=entity,
        storage_key=storage_key,
        file_name=file_name,
        file_size=file_size,
        content_type=content_type,
        requester=requester,
    )
    try:
        await _persist_new(session, attachment)
    except Exception:
        # No object exists yet; the caller re-requests a fresh URL.
        logger.exception("attachment create failed storage_key=%s", storage_key)
        raise internal_error("Failed to create attachment record") from None

    logger.info(
        "upload authorized attachment_id=%s entity_type=%s uploaded_by=%s",
        attachment.id,
        entity.value,
        requester,
    )
    return UploadAuthorization(
        attachment_id=attachment.id,
        upload_url=upload_url,
        storage_key=storage_key,
        expires_in_seconds=settings.attachments_upload_url_ttl_seconds,
    )


def _validate_storage_key(storage_key: str) -> str:
    key = (storage_key or "").strip()
    if not key:
        raise validation_error("File key is required")

    prefix = settings.attachments_key_category.strip("/") + "/"
    if not key.startswith(prefix):
        raise validation_error("Invalid file key format", details={"expected_prefix": prefix})
    if any(part in {"", ".", ".."} for part in key.split("/")):
        raise validation_error("Invalid file key format")
    return key


async def register_uploaded_metadata(
    *,
    session: AsyncSession,
    entity_type: str,
    storage_key: str,
    file_name: str,
    file_size: int,
    content_type: str,
    requester: str,
) -> Attachment:
    entity = validate_upload_request(
        entity_type=entity_type,
        file_size=file_size,
        file_name=file_name,
        content_type=content_type,
        settings=settings,
    )
    key = _validate_storage_key(storage_key)

    attachment = _new_temp_attachment(
        entity_type=entity,
        storage_key=key,
        file_name=file_name,
        file_size=file_size,
        content_type=content_type,
        requester=requester,
    )
    try:
        await _persist_new(session, attachment)
    except Exception:
        logger.exception("attachment metadata save failed storage_key=%s", key)
        raise internal_error("Failed to save attachment metadata") from None

    logger.info(
        "attachment metadata registered attachment_id=%s entity_type=%s uploaded_by=%s",
        attachment.id,
        entity.value,
        requester,
    )
    return attachment


async def validate_attachments_for_entity(
    *,
    session: AsyncSession,
    attachment_ids: Sequence[str],
    entity_type: str,
) -> list[Attachment]:
    """Pre-check run by parent workflows before they create the owning entity."""
    ids = _dedupe(attachment_ids)
    if not ids:
        return []

    entity = validate_entity_type(entity_type)
    rows = await attachments_repo.find_by_ids(session, ids)
    if len(rows) != len(ids):
        found = {r.id for r in rows}
        raise validation_error(
            "One or more attachments not found",
            details={"missing": [i for i in ids if i not in found]},
        )

    now = utc_now()
    for row in rows:
        if row.status != AttachmentStatus.TEMP.value:
            raise validation_error(
                "Attachment is not in temporary status and cannot be reused",
                details={"attachment_id": row.id},
            )
        expires_at = assume_utc(row.expires_at)
        if expires_at is not None and expires_at < now:
            raise validation_error("Attachment has expired", details={"attachment_id": row.id})
        if row.entity_type != entity.value:
            raise validation_error(
                "Attachment entity type does not match",
                details={"attachment_id": row.id, "entity_type": row.entity_type},
            )
    return rows


async def confirm_attachments(
    *,
    session: AsyncSession,
    attachment_ids: Sequence[str],
    entity_id: str | None,
    entity_type: str | None = None,
) -> ConfirmResult:
    """Bind TEMP attachments to their owning entity.

    Ids that are already confirmed, deleted, expired or unknown are reported
    in `skipped`; a retried parent workflow therefore never fails here and the
    first confirmation keeps its entity id.
    """
    owner_id = str(entity_id).strip() if entity_id is not None else ""
    if not owner_id:
        raise validation_error("Entity ID is required")

    ids = _dedupe(attachment_ids)
    if not ids:
        return ConfirmResult()

    entity_value = validate_entity_type(entity_type).value if entity_type is not None else None

    try:
        confirmed = await attachments_repo.confirm_batch(
            session,
            ids,
            entity_id=owner_id,
            now=utc_now(),
            entity_type=entity_value,
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    confirmed_set = set(confirmed)
    result = ConfirmResult(
        confirmed=[i for i in ids if i in confirmed_set],
        skipped=[i for i in ids if i not in confirmed_set],
    )
    if result.skipped:
        logger.info(
            "attachments not confirmed (already linked, deleted or expired) entity_id=%s ids=%s",
            entity_id,
            ",".join(result.skipped),
        )
    return result


async def list_entity_attachments(
    *,
    session: AsyncSession,
    storage: ObjectStorage,
    entity_type: EntityType,
    entity_id: str,
) -> list[AttachmentView]:
    rows = await attachments_repo.find_by_entity(
        session, entity_type=entity_type.value, entity_id=str(entity_id)
    )
    return [to_view(row, storage) for row in rows]


async def _delete_object_best_effort(storage: ObjectStorage, attachment: Attachment) -> bool:
    try:
        await storage.delete_object(attachment.storage_key)
    except Exception:
        # Metadata stays authoritative; an orphaned object is left to bucket lifecycle rules.
        logger.warning(
            "failed to delete object attachment_id=%s storage_key=%s",
            attachment.id,
            attachment.storage_key,
            exc_info=True,
        )
        return False
    return True


async def delete_attachment(
    *,
    session: AsyncSession,
    storage: ObjectStorage,
    attachment_id: str,
    requester: str,
) -> None:
    attachment = await attachments_repo.find_by_id(session, attachment_id, include_deleted=True)
    if attachment is None:
        raise not_found("Attachment not found")
    if attachment.uploaded_by != requester:
        raise forbidden("You do not have permission to delete this attachment")
    if attachment.is_deleted:
        return

    await _delete_object_best_effort(storage, attachment)

    try:
        await attachments_repo.soft_delete(session, attachment.id, now=utc_now())
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    logger.info("attachment deleted attachment_id=%s uploaded_by=%s", attachment.id, requester)


async def delete_entity_attachments(
    *,
    session: AsyncSession,
    storage: ObjectStorage,
    entity_type: str,
    entity_id: str,
) -> int:
    """Remove every attachment of an owning entity that is being deleted."""
    entity = validate_entity_type(entity_type)
    rows = await attachments_repo.find_by_entity(
        session, entity_type=entity.value, entity_id=str(entity_id)
    )
    if not rows:
        return 0

    for row in rows:
        await _delete_object_best_effort(storage, row)

    try:
        deleted = await attachments_repo.soft_delete_batch(
            session, [r.id for r in rows], now=utc_now()
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    logger.info(
        "entity attachments deleted entity_type=%s entity_id=%s count=%d",
        entity.value,
        entity_id,
        len(deleted),
    )
    return len(deleted)
