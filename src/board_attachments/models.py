# basedpyright: reportAssignmentType=false
# basedpyright: reportIncompatibleVariableOverride=false

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import Column, DateTime, Index, Text
from sqlmodel import Field, SQLModel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def assume_utc(dt: datetime | None) -> datetime | None:
    # SQLite returns naive datetimes even for timezone=True columns.
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


class EntityType(str, Enum):
    BOARD = "BOARD"
    COMMENT = "COMMENT"
    PROJECT = "PROJECT"
    PROFILE = "PROFILE"

    @property
    def plural(self) -> str:
        # Storage key segment: boards, comments, projects, profiles.
        return self.value.lower() + "s"


class AttachmentStatus(str, Enum):
    TEMP = "TEMP"
    CONFIRMED = "CONFIRMED"


def _ts_column(*, nullable: bool, index: bool = True) -> Column:  # type: ignore[type-arg]
    return Column(DateTime(timezone=True), nullable=nullable, index=index)


class Attachment(SQLModel, table=True):
    __tablename__ = "attachments"  # pyright: ignore[reportAssignmentType]

    # entity_id is polymorphic (board/comment/project/profile): no foreign key.
    __table_args__ = (Index("ix_attachments_entity", "entity_type", "entity_id"),)

    id: str = Field(primary_key=True, min_length=1, max_length=36)

    entity_type: str = Field(max_length=50)
    # NULL while TEMP; set exactly once by confirmation.
    entity_id: Optional[str] = Field(default=None, max_length=36)
    status: str = Field(default=AttachmentStatus.TEMP.value, max_length=20, index=True)

    file_name: str = Field(min_length=1, max_length=255)
    # Bare object key; the browsable URL is derived on read.
    storage_key: str = Field(sa_column=Column(Text, nullable=False, index=True))
    file_size: int
    content_type: str = Field(max_length=255)
    uploaded_by: str = Field(index=True, max_length=36)

    created_at: datetime = Field(default_factory=utc_now, sa_column=_ts_column(nullable=False))
    updated_at: datetime = Field(default_factory=utc_now, sa_column=_ts_column(nullable=False))
    expires_at: Optional[datetime] = Field(default=None, sa_column=_ts_column(nullable=True))
    deleted_at: Optional[datetime] = Field(default=None, sa_column=_ts_column(nullable=True))

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None
