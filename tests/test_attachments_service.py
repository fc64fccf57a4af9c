from __future__ import annotations

import uuid
from datetime import timedelta

import pytest

from board_attachments.db import session_scope
from board_attachments.errors import ApiError
from board_attachments.models import Attachment, AttachmentStatus, EntityType, utc_now
from board_attachments.repositories import attachments_repo
from board_attachments.services import attachments_service
from conftest import FakeObjectStorage


async def _insert(
    *,
    uploaded_by: str,
    entity_type: str = "BOARD",
    status: str = AttachmentStatus.TEMP.value,
    entity_id: str | None = None,
    expires_in: timedelta | None = timedelta(hours=1),
    storage_key: str | None = None,
) -> Attachment:
    now = utc_now()
    row = Attachment(
        id=str(uuid.uuid4()),
        entity_type=entity_type,
        entity_id=entity_id,
        status=status,
        file_name="photo.png",
        storage_key=storage_key or f"board/boards/p/2026/10/{uuid.uuid4()}_1.png",
        file_size=10,
        content_type="image/png",
        uploaded_by=uploaded_by,
        created_at=now,
        updated_at=now,
        expires_at=(now + expires_in) if expires_in is not None else None,
    )
    async with session_scope() as session:
        await attachments_repo.create(session, row)
        await session.commit()
    return row


async def _get(attachment_id: str) -> Attachment | None:
    async with session_scope() as session:
        return await attachments_repo.find_by_id(session, attachment_id, include_deleted=True)


@pytest.mark.anyio
async def test_issue_upload_authorization_creates_temp_row(
    db: str, fake_storage: FakeObjectStorage, user_id: str
):
    parent = str(uuid.uuid4())
    async with session_scope() as session:
        auth = await attachments_service.issue_upload_authorization(
            session=session,
            storage=fake_storage,
            entity_type="board",
            parent_id=parent,
            file_name="photo.png",
            file_size=2 * 1024 * 1024,
            content_type="image/png",
            requester=user_id,
        )

    assert auth.expires_in_seconds == 300
    assert auth.storage_key.startswith(f"board/boards/{parent}/")
    assert auth.upload_url.startswith("https://upload.test/")
    assert fake_storage.issued[0]["content_type"] == "image/png"

    row = await _get(auth.attachment_id)
    assert row is not None
    assert row.status == AttachmentStatus.TEMP.value
    assert row.entity_type == "BOARD"
    assert row.entity_id is None
    assert row.storage_key == auth.storage_key
    assert row.uploaded_by == user_id
    assert row.expires_at is not None


@pytest.mark.anyio
async def test_rejected_upload_touches_neither_storage_nor_database(
    db: str, fake_storage: FakeObjectStorage, user_id: str
):
    async with session_scope() as session:
        for kwargs, error in [
            ({"file_size": 25 * 1024 * 1024, "file_name": "big.png"}, "file_too_large"),
            (
                {"file_size": 10, "file_name": "clip.mp4", "content_type": "video/mp4"},
                "invalid_file_type",
            ),
        ]:
            params: dict[str, object] = {
                "entity_type": "BOARD",
                "parent_id": str(uuid.uuid4()),
                "content_type": "image/png",
            }
            params.update(kwargs)
            with pytest.raises(ApiError) as exc:
                await attachments_service.issue_upload_authorization(
                    session=session,
                    storage=fake_storage,
                    requester=user_id,
                    **params,  # type: ignore[arg-type]
                )
            assert exc.value.error == error

        rows = await attachments_repo.find_expired_temp(session, now=utc_now() + timedelta(days=1))
    assert fake_storage.issued == []
    assert rows == []


@pytest.mark.anyio
async def test_gateway_failure_is_internal_error_without_row(
    db: str, fake_storage: FakeObjectStorage, user_id: str
):
    fake_storage.fail_issue = True
    async with session_scope() as session:
        with pytest.raises(ApiError) as exc:
            await attachments_service.issue_upload_authorization(
                session=session,
                storage=fake_storage,
                entity_type="BOARD",
                parent_id=str(uuid.uuid4()),
                file_name="photo.png",
                file_size=10,
                content_type="image/png",
                requester=user_id,
            )
        rows = await attachments_repo.find_expired_temp(session, now=utc_now() + timedelta(days=1))

    assert exc.value.status_code == 500
    assert exc.value.error == "internal_error"
    # Gateway internals are not leaked to the caller.
    assert exc.value.message == "Failed to generate presigned URL"
    assert rows == []


@pytest.mark.anyio
async def test_register_uploaded_metadata(db: str, user_id: str):
    key = f"board/comments/{uuid.uuid4()}/2026/10/abc_1.pdf"
    async with session_scope() as session:
        row = await attachments_service.register_uploaded_metadata(
            session=session,
            entity_type="COMMENT",
            storage_key=key,
            file_name="brief.pdf",
            file_size=100,
            content_type="application/pdf",
            requester=user_id,
        )
    stored = await _get(row.id)
    assert stored is not None
    assert stored.status == AttachmentStatus.TEMP.value
    assert stored.storage_key == key


@pytest.mark.anyio
@pytest.mark.parametrize(
    "key", ["", "other/boards/x.png", "board/../secret.png", "board//x.png"]
)
async def test_register_rejects_foreign_or_malformed_keys(db: str, user_id: str, key: str):
    async with session_scope() as session:
        with pytest.raises(ApiError) as exc:
            await attachments_service.register_uploaded_metadata(
                session=session,
                entity_type="BOARD",
                storage_key=key,
                file_name="x.png",
                file_size=10,
                content_type="image/png",
                requester=user_id,
            )
    assert exc.value.error == "validation_error"


@pytest.mark.anyio
async def test_confirm_is_idempotent_and_first_binding_wins(db: str, user_id: str):
    a = await _insert(uploaded_by=user_id)
    b = await _insert(uploaded_by=user_id)
    first_entity = str(uuid.uuid4())
    second_entity = str(uuid.uuid4())

    async with session_scope() as session:
        r1 = await attachments_service.confirm_attachments(
            session=session, attachment_ids=[a.id, b.id, a.id], entity_id=first_entity
        )
    assert r1.confirmed == [a.id, b.id]
    assert r1.skipped == []

    # Retried parent workflow, possibly with a different entity id.
    async with session_scope() as session:
        r2 = await attachments_service.confirm_attachments(
            session=session, attachment_ids=[a.id, b.id], entity_id=second_entity
        )
    assert r2.confirmed == []
    assert r2.skipped == [a.id, b.id]

    for row_id in (a.id, b.id):
        row = await _get(row_id)
        assert row is not None
        assert row.status == AttachmentStatus.CONFIRMED.value
        assert row.entity_id == first_entity
        assert row.expires_at is None


@pytest.mark.anyio
async def test_confirm_skips_unknown_deleted_expired_and_mismatched(db: str, user_id: str):
    live = await _insert(uploaded_by=user_id)
    expired = await _insert(uploaded_by=user_id, expires_in=timedelta(minutes=-1))
    deleted = await _insert(uploaded_by=user_id)
    comment = await _insert(uploaded_by=user_id, entity_type="COMMENT")
    async with session_scope() as session:
        await attachments_repo.soft_delete(session, deleted.id, now=utc_now())
        await session.commit()

    unknown = str(uuid.uuid4())
    async with session_scope() as session:
        result = await attachments_service.confirm_attachments(
            session=session,
            attachment_ids=[live.id, expired.id, deleted.id, comment.id, unknown],
            entity_id=str(uuid.uuid4()),
            entity_type="BOARD",
        )

    assert result.confirmed == [live.id]
    assert result.skipped == [expired.id, deleted.id, comment.id, unknown]
    row = await _get(expired.id)
    assert row is not None and row.status == AttachmentStatus.TEMP.value


@pytest.mark.anyio
async def test_confirm_empty_list_is_noop(db: str):
    async with session_scope() as session:
        result = await attachments_service.confirm_attachments(
            session=session, attachment_ids=[], entity_id=str(uuid.uuid4())
        )
    assert result.confirmed == [] and result.skipped == []


@pytest.mark.anyio
async def test_validate_attachments_for_entity(db: str, user_id: str):
    ok = await _insert(uploaded_by=user_id)
    async with session_scope() as session:
        rows = await attachments_service.validate_attachments_for_entity(
            session=session, attachment_ids=[ok.id], entity_type="board"
        )
    assert [r.id for r in rows] == [ok.id]

    confirmed = await _insert(
        uploaded_by=user_id,
        status=AttachmentStatus.CONFIRMED.value,
        entity_id=str(uuid.uuid4()),
        expires_in=None,
    )
    expired = await _insert(uploaded_by=user_id, expires_in=timedelta(minutes=-5))
    comment = await _insert(uploaded_by=user_id, entity_type="COMMENT")

    for ids, message in [
        ([ok.id, str(uuid.uuid4())], "One or more attachments not found"),
        ([confirmed.id], "Attachment is not in temporary status and cannot be reused"),
        ([expired.id], "Attachment has expired"),
        ([comment.id], "Attachment entity type does not match"),
    ]:
        async with session_scope() as session:
            with pytest.raises(ApiError) as exc:
                await attachments_service.validate_attachments_for_entity(
                    session=session, attachment_ids=ids, entity_type="BOARD"
                )
        assert exc.value.error == "validation_error"
        assert exc.value.message == message


@pytest.mark.anyio
async def test_list_returns_confirmed_rows_with_derived_urls(
    db: str, fake_storage: FakeObjectStorage, user_id: str
):
    board_id = str(uuid.uuid4())
    a = await _insert(uploaded_by=user_id)
    b = await _insert(uploaded_by=user_id)
    await _insert(uploaded_by=user_id)  # never confirmed
    async with session_scope() as session:
        await attachments_service.confirm_attachments(
            session=session, attachment_ids=[a.id, b.id], entity_id=board_id
        )

    async with session_scope() as session:
        views = await attachments_service.list_entity_attachments(
            session=session, storage=fake_storage, entity_type=EntityType.BOARD, entity_id=board_id
        )
        others = await attachments_service.list_entity_attachments(
            session=session,
            storage=fake_storage,
            entity_type=EntityType.COMMENT,
            entity_id=board_id,
        )

    assert {v.id for v in views} == {a.id, b.id}
    assert {v.url for v in views} == {
        f"https://cdn.test/bucket/{a.storage_key}",
        f"https://cdn.test/bucket/{b.storage_key}",
    }
    assert all(v.uploaded_at.tzinfo is not None for v in views)
    assert others == []


@pytest.mark.anyio
async def test_delete_by_non_uploader_is_forbidden(
    db: str, fake_storage: FakeObjectStorage, user_id: str
):
    row = await _insert(uploaded_by=user_id)
    async with session_scope() as session:
        with pytest.raises(ApiError) as exc:
            await attachments_service.delete_attachment(
                session=session,
                storage=fake_storage,
                attachment_id=row.id,
                requester=str(uuid.uuid4()),
            )
    assert exc.value.status_code == 403
    assert fake_storage.deleted == []
    stored = await _get(row.id)
    assert stored is not None and stored.deleted_at is None


@pytest.mark.anyio
async def test_delete_unknown_is_not_found(db: str, fake_storage: FakeObjectStorage, user_id: str):
    async with session_scope() as session:
        with pytest.raises(ApiError) as exc:
            await attachments_service.delete_attachment(
                session=session,
                storage=fake_storage,
                attachment_id=str(uuid.uuid4()),
                requester=user_id,
            )
    assert exc.value.status_code == 404


@pytest.mark.anyio
async def test_delete_by_uploader_is_idempotent(
    db: str, fake_storage: FakeObjectStorage, user_id: str
):
    board_id = str(uuid.uuid4())
    row = await _insert(uploaded_by=user_id)
    async with session_scope() as session:
        await attachments_service.confirm_attachments(
            session=session, attachment_ids=[row.id], entity_id=board_id
        )

    for _ in range(2):
        async with session_scope() as session:
            await attachments_service.delete_attachment(
                session=session, storage=fake_storage, attachment_id=row.id, requester=user_id
            )

    stored = await _get(row.id)
    assert stored is not None
    assert stored.deleted_at is not None
    assert fake_storage.deleted == [row.storage_key]

    async with session_scope() as session:
        views = await attachments_service.list_entity_attachments(
            session=session, storage=fake_storage, entity_type=EntityType.BOARD, entity_id=board_id
        )
    assert views == []


@pytest.mark.anyio
async def test_delete_marks_row_even_when_object_delete_fails(
    db: str, fake_storage: FakeObjectStorage, user_id: str
):
    row = await _insert(uploaded_by=user_id)
    fake_storage.fail_delete_keys.add(row.storage_key)

    async with session_scope() as session:
        await attachments_service.delete_attachment(
            session=session, storage=fake_storage, attachment_id=row.id, requester=user_id
        )

    stored = await _get(row.id)
    assert stored is not None and stored.deleted_at is not None


@pytest.mark.anyio
async def test_delete_entity_attachments(db: str, fake_storage: FakeObjectStorage, user_id: str):
    comment_id = str(uuid.uuid4())
    a = await _insert(uploaded_by=user_id, entity_type="COMMENT")
    b = await _insert(uploaded_by=str(uuid.uuid4()), entity_type="COMMENT")
    async with session_scope() as session:
        await attachments_service.confirm_attachments(
            session=session, attachment_ids=[a.id, b.id], entity_id=comment_id
        )

    async with session_scope() as session:
        count = await attachments_service.delete_entity_attachments(
            session=session, storage=fake_storage, entity_type="comment", entity_id=comment_id
        )
    assert count == 2
    assert sorted(fake_storage.deleted) == sorted([a.storage_key, b.storage_key])

    async with session_scope() as session:
        again = await attachments_service.delete_entity_attachments(
            session=session, storage=fake_storage, entity_type="COMMENT", entity_id=comment_id
        )
    assert again == 0


@pytest.mark.anyio
@pytest.mark.parametrize("entity_id", [None, "", "   "])
async def test_confirm_requires_entity_id(db: str, user_id: str, entity_id: str | None):
    row = await _insert(uploaded_by=user_id)

    async with session_scope() as session:
        with pytest.raises(ApiError) as exc:
            await attachments_service.confirm_attachments(
                session=session, attachment_ids=[row.id], entity_id=entity_id
            )
    assert exc.value.error == "validation_error"

    stored = await _get(row.id)
    assert stored is not None
    assert stored.status == AttachmentStatus.TEMP.value
    assert stored.entity_id is None


@pytest.mark.anyio
async def test_content_type_is_stored_normalized_and_signed_verbatim(
    db: str, fake_storage: FakeObjectStorage, user_id: str
):
    raw = "Image/PNG; charset=binary"
    async with session_scope() as session:
        auth = await attachments_service.issue_upload_authorization(
            session=session,
            storage=fake_storage,
            entity_type="BOARD",
            parent_id=str(uuid.uuid4()),
            file_name="photo.png",
            file_size=10,
            content_type=raw,
            requester=user_id,
        )
        registered = await attachments_service.register_uploaded_metadata(
            session=session,
            entity_type="BOARD",
            storage_key=auth.storage_key,
            file_name="photo.png",
            file_size=10,
            content_type=raw,
            requester=user_id,
        )

    assert fake_storage.issued[0]["content_type"] == raw
    stored = await _get(auth.attachment_id)
    assert stored is not None and stored.content_type == "image/png"
    assert registered.content_type == "image/png"
