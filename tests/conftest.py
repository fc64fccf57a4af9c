from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest

from board_attachments.config import settings
from board_attachments.db import dispose_engines, init_db, reset_engine_cache
from board_attachments.integrations.storage.object_storage import build_storage_key


class FakeObjectStorage:
    """In-memory stand-in for the S3 gateway."""

    def __init__(self) -> None:
        self.issued: list[dict[str, str]] = []
        self.deleted: list[str] = []
        self.fail_issue = False
        self.fail_delete_keys: set[str] = set()

    async def issue_upload_url(
        self,
        *,
        entity_type_plural: str,
        parent_id: str,
        file_name: str,
        content_type: str,
    ) -> tuple[str, str]:
        if self.fail_issue:
            raise RuntimeError("s3 unavailable: AccessDenied for arn:aws:s3:::secret-bucket")
        key = build_storage_key(
            category=settings.attachments_key_category,
            entity_type_plural=entity_type_plural,
            parent_id=parent_id,
            file_name=file_name,
        )
        self.issued.append(
            {"key": key, "parent_id": parent_id, "content_type": content_type}
        )
        return f"https://upload.test/{key}?X-Amz-Signature=abc", key

    def to_readable_url(self, storage_key: str) -> str:
        return f"https://cdn.test/bucket/{storage_key}"

    async def delete_object(self, storage_key: str) -> None:
        if storage_key in self.fail_delete_keys:
            raise RuntimeError("s3 delete failed")
        # Deleting an absent object is a success, like S3.
        self.deleted.append(storage_key)


@pytest.fixture
def fake_storage() -> FakeObjectStorage:
    return FakeObjectStorage()


@pytest.fixture
def user_id() -> str:
    return str(uuid.uuid4())


@pytest.fixture
async def db(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> AsyncGenerator[str, None]:
    url = f"sqlite:///{tmp_path / 'test-attachments.db'}"
    monkeypatch.setattr(settings, "database_url", url)
    reset_engine_cache()
    await init_db()
    yield url


@pytest.fixture(autouse=True)
async def _dispose_engines_per_test(  # pyright: ignore[reportUnusedFunction]
    anyio_backend: object,  # noqa: ARG001
) -> AsyncGenerator[None, None]:
    # Close aiosqlite worker threads before the per-test event loop goes away.
    _ = anyio_backend
    yield
    await dispose_engines()


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"
