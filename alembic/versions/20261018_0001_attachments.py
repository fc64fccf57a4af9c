"""attachments table

Revision ID: 20261018_0001
Revises: None
Create Date: 2026-10-18 00:00:00

Databases adopted from the previous deployment already have an `attachments`
table whose location column is called `file_url`; it is renamed in place.
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def _columns(table_name: str) -> set[str] | None:
    insp = inspect(op.get_bind())
    if table_name not in insp.get_table_names():
        return None
    return {c["name"] for c in insp.get_columns(table_name)}


def upgrade() -> None:
    columns = _columns("attachments")
    if columns is not None:
        if "file_url" in columns and "storage_key" not in columns:
            with op.batch_alter_table("attachments") as batch:
                batch.alter_column("file_url", new_column_name="storage_key")
        return

    op.create_table(
        "attachments",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("entity_type", sa.String(length=50), nullable=False),
        sa.Column("entity_id", sa.String(length=36), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="TEMP"),
        sa.Column("file_name", sa.String(length=255), nullable=False),
        sa.Column("storage_key", sa.Text(), nullable=False),
        sa.Column("file_size", sa.Integer(), nullable=False),
        sa.Column("content_type", sa.String(length=255), nullable=False),
        sa.Column("uploaded_by", sa.String(length=36), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_attachments_entity", "attachments", ["entity_type", "entity_id"], unique=False
    )
    op.create_index("ix_attachments_status", "attachments", ["status"], unique=False)
    op.create_index("ix_attachments_storage_key", "attachments", ["storage_key"], unique=False)
    op.create_index("ix_attachments_uploaded_by", "attachments", ["uploaded_by"], unique=False)
    op.create_index("ix_attachments_created_at", "attachments", ["created_at"], unique=False)
    op.create_index("ix_attachments_updated_at", "attachments", ["updated_at"], unique=False)
    op.create_index("ix_attachments_expires_at", "attachments", ["expires_at"], unique=False)
    op.create_index("ix_attachments_deleted_at", "attachments", ["deleted_at"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_attachments_deleted_at", table_name="attachments")
    op.drop_index("ix_attachments_expires_at", table_name="attachments")
    op.drop_index("ix_attachments_updated_at", table_name="attachments")
    op.drop_index("ix_attachments_created_at", table_name="attachments")
    op.drop_index("ix_attachments_uploaded_by", table_name="attachments")
    op.drop_index("ix_attachments_storage_key", table_name="attachments")
    op.drop_index("ix_attachments_status", table_name="attachments")
    op.drop_index("ix_attachments_entity", table_name="attachments")
    op.drop_table("attachments")
