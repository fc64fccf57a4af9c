from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import cast

import sqlalchemy as sa
from sqlalchemy.sql.elements import ColumnElement
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from board_attachments.models import Attachment, AttachmentStatus


def _col(attr: object) -> ColumnElement[object]:
    return cast(ColumnElement[object], attr)


def _not_deleted() -> ColumnElement[bool]:
    return _col(Attachment.deleted_at).is_(None)


def _expired_temp(now: datetime) -> list[ColumnElement[bool]]:
    return [
        _col(Attachment.status) == AttachmentStatus.TEMP.value,
        _col(Attachment.expires_at).is_not(None),
        _col(Attachment.expires_at) < now,
        _not_deleted(),
    ]


async def create(session: AsyncSession, attachment: Attachment) -> Attachment:
    session.add(attachment)
    await session.flush()
    return attachment


async def find_by_id(
    session: AsyncSession, attachment_id: str, *, include_deleted: bool = False
) -> Attachment | None:
    stmt = select(Attachment).where(Attachment.id == attachment_id)
    if not include_deleted:
        stmt = stmt.where(_not_deleted())
    return (await session.exec(stmt)).first()


async def find_by_entity(
    session: AsyncSession, *, entity_type: str, entity_id: str
) -> list[Attachment]:
    stmt = (
        select(Attachment)
        .where(Attachment.entity_type == entity_type)
        .where(Attachment.entity_id == entity_id)
        .where(_not_deleted())
        .order_by(_col(Attachment.created_at).desc(), _col(Attachment.id).asc())
    )
    return list((await session.exec(stmt)).all())


async def find_by_ids(session: AsyncSession, ids: Sequence[str]) -> list[Attachment]:
    if not ids:
        return []
    stmt = select(Attachment).where(_col(Attachment.id).in_(list(ids))).where(_not_deleted())
    return list((await session.exec(stmt)).all())


async def find_expired_temp(
    session: AsyncSession,
    *,
    now: datetime,
    limit: int | None = None,
    after: tuple[datetime, str] | None = None,
) -> list[Attachment]:
    """Expired TEMP rows ordered by (expires_at, id).

    `after` is a keyset cursor: only rows strictly past that position are
    returned, so a caller can page beyond rows it could not clean up.
    """
    stmt = select(Attachment).where(*_expired_temp(now))
    if after is not None:
        after_expires_at, after_id = after
        stmt = stmt.where(
            sa.or_(
                _col(Attachment.expires_at) > after_expires_at,
                sa.and_(
                    _col(Attachment.expires_at) == after_expires_at,
                    _col(Attachment.id) > after_id,
                ),
            )
        )
    stmt = stmt.order_by(_col(Attachment.expires_at).asc(), _col(Attachment.id).asc())
    if limit is not None and limit > 0:
        stmt = stmt.limit(limit)
    return list((await session.exec(stmt)).all())


async def confirm_batch(
    session: AsyncSession,
    ids: Sequence[str],
    *,
    entity_id: str,
    now: datetime,
    entity_type: str | None = None,
) -> list[str]:
    """Flip TEMP rows to CONFIRMED in one conditional UPDATE.

    Rows already confirmed, deleted or past `expires_at` do not match and are
    left untouched. Returns the ids that were actually confirmed.
    """
    if not ids:
        return []

    stmt = (
        sa.update(Attachment)
        .where(_col(Attachment.id).in_(list(ids)))
        .where(_col(Attachment.status) == AttachmentStatus.TEMP.value)
        .where(_not_deleted())
        .where(_col(Attachment.expires_at) >= now)
    )
    if entity_type is not None:
        stmt = stmt.where(_col(Attachment.entity_type) == entity_type)
    stmt = stmt.values(
        status=AttachmentStatus.CONFIRMED.value,
        entity_id=entity_id,
        expires_at=None,
        updated_at=now,
    ).returning(_col(Attachment.id))

    # Bulk writes skip identity-map sync; callers re-read rows they need.
    stmt = stmt.execution_options(synchronize_session=False)
    result = await session.exec(stmt)  # type: ignore[call-overload]
    return [str(row[0]) for row in result.all()]


async def soft_delete(session: AsyncSession, attachment_id: str, *, now: datetime) -> bool:
    # Guarded on deleted_at so a repeated delete never moves the marker.
    stmt = (
        sa.update(Attachment)
        .where(_col(Attachment.id) == attachment_id)
        .where(_not_deleted())
        .values(deleted_at=now, updated_at=now)
    )
    stmt = stmt.execution_options(synchronize_session=False)
    result = await session.exec(stmt)  # type: ignore[call-overload]
    return bool(result.rowcount)


async def soft_delete_batch(
    session: AsyncSession,
    ids: Sequence[str],
    *,
    now: datetime,
    only_expired_temp: bool = False,
) -> list[str]:
    if not ids:
        return []

    stmt = sa.update(Attachment).where(_col(Attachment.id).in_(list(ids)))
    if only_expired_temp:
        stmt = stmt.where(*_expired_temp(now))
    else:
        stmt = stmt.where(_not_deleted())
    stmt = stmt.values(deleted_at=now, updated_at=now).returning(_col(Attachment.id))

    stmt = stmt.execution_options(synchronize_session=False)
    result = await session.exec(stmt)  # type: ignore[call-overload]
    return [str(row[0]) for row in result.all()]


async def delete_batch(
    session: AsyncSession,
    ids: Sequence[str],
    *,
    now: datetime | None = None,
    only_expired_temp: bool = False,
) -> list[str]:
    """Hard delete rows; used when retention policy drops reaped TEMP rows."""
    if not ids:
        return []

    stmt = sa.delete(Attachment).where(_col(Attachment.id).in_(list(ids)))
    if only_expired_temp:
        if now is None:
            raise ValueError("now is required when only_expired_temp=True")
        stmt = stmt.where(*_expired_temp(now))
    stmt = stmt.returning(_col(Attachment.id))

    stmt = stmt.execution_options(synchronize_session=False)
    result = await session.exec(stmt)  # type: ignore[call-overload]
    return [str(row[0]) for row in result.all()]
