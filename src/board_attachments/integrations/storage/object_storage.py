from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from functools import lru_cache
from typing import Protocol
from urllib.parse import unquote, urlsplit

from board_attachments.config import settings
from board_attachments.errors import internal_error
from board_attachments.validators import file_extension


class ObjectStorage(Protocol):
    async def issue_upload_url(
        self,
        *,
        entity_type_plural: str,
        parent_id: str,
        file_name: str,
        content_type: str,
    ) -> tuple[str, str]: ...

    def to_readable_url(self, storage_key: str) -> str: ...

    async def delete_object(self, storage_key: str) -> None: ...


def build_storage_key(
    *,
    category: str,
    entity_type_plural: str,
    parent_id: str,
    file_name: str,
    now: datetime | None = None,
    token: str | None = None,
) -> str:
    """Build `{category}/{plural}/{parent}/{YYYY}/{MM}/{token}_{unix_ms}.{ext}`.

    The random token plus the millisecond timestamp keep keys unguessable; the
    parent id and year/month keep them traceable to their owner.
    """
    now = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    token = token or str(uuid.uuid4())
    unix_ms = int(now.timestamp() * 1000)

    name = f"{token}_{unix_ms}"
    ext = file_extension(file_name)
    if ext:
        name = f"{name}.{ext}"
    return "/".join(
        [
            category.strip("/"),
            entity_type_plural,
            parent_id,
            f"{now.year:04d}",
            f"{now.month:02d}",
            name,
        ]
    )


def extract_storage_key_from_url(value: str) -> str:
    """Recover the bare key from a legacy full object URL.

    Handles `https://{bucket}.s3.{region}.amazonaws.com/{key}` and path-style
    `{endpoint}/{bucket}/{key}` (MinIO). Values without a scheme are returned
    unchanged; an unparseable URL yields "".
    """
    raw = (value or "").strip()
    if not raw.lower().startswith(("http://", "https://")):
        return raw

    parts = urlsplit(raw)
    path = unquote(parts.path).lstrip("/")
    host = parts.hostname or ""
    if host.endswith(".amazonaws.com") and ".s3." in f".{host}":
        if host.startswith("s3.") or host.startswith("s3-"):
            # https://s3.{region}.amazonaws.com/{bucket}/{key}
            _, _, key = path.partition("/")
            return key
        return path

    _, _, key = path.partition("/")
    return key


@lru_cache(maxsize=4)
def _s3_storage(
    endpoint_url: str,
    public_endpoint_url: str,
    region: str,
    bucket: str,
    access_key_id: str,
    secret_access_key: str,
    force_path_style: bool,
    key_category: str,
    upload_url_ttl_seconds: int,
) -> ObjectStorage:
    from .s3_storage import S3ObjectStorage

    return S3ObjectStorage(
        endpoint_url=endpoint_url,
        public_endpoint_url=public_endpoint_url,
        region=region,
        bucket=bucket,
        access_key_id=access_key_id,
        secret_access_key=secret_access_key,
        force_path_style=force_path_style,
        key_category=key_category,
        upload_url_ttl_seconds=upload_url_ttl_seconds,
    )


def get_object_storage() -> ObjectStorage:
    if not settings.s3_configured():
        raise internal_error("object storage not configured")

    return _s3_storage(
        settings.s3_endpoint_url.strip(),
        settings.s3_public_endpoint_url.strip(),
        settings.s3_region.strip(),
        settings.s3_bucket.strip(),
        settings.s3_access_key_id.strip(),
        settings.s3_secret_access_key.strip(),
        settings.s3_force_path_style,
        settings.attachments_key_category,
        settings.attachments_upload_url_ttl_seconds,
    )


def get_object_storage_factory() -> Callable[[], ObjectStorage]:
    """Deferred `get_object_storage` for routes that must validate input first."""
    return get_object_storage
