"""rewrite legacy full object URLs to bare storage keys

Revision ID: 20261018_0002
Revises: 20261018_0001
Create Date: 2026-10-18 00:00:01

One revision of the previous service persisted the full object URL instead of
the key. Runtime code only understands bare keys, so such rows are rewritten
once here.
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

from board_attachments.integrations.storage.object_storage import extract_storage_key_from_url


revision = "20261018_0002"
down_revision = "20261018_0001"
branch_labels = None
depends_on = None


_attachments = sa.table(
    "attachments",
    sa.column("id", sa.String()),
    sa.column("storage_key", sa.Text()),
)


def upgrade() -> None:
    bind = op.get_bind()
    rows = bind.execute(
        sa.select(_attachments.c.id, _attachments.c.storage_key).where(
            sa.or_(
                _attachments.c.storage_key.like("http://%"),
                _attachments.c.storage_key.like("https://%"),
            )
        )
    ).all()

    for attachment_id, legacy_url in rows:
        key = extract_storage_key_from_url(legacy_url)
        if not key:
            # Leave unparseable values for manual inspection.
            continue
        bind.execute(
            sa.update(_attachments)
            .where(_attachments.c.id == attachment_id)
            .values(storage_key=key)
        )


def downgrade() -> None:
    # Bucket/endpoint of the legacy URLs is not recoverable from the key alone.
    pass
