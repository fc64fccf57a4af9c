from __future__ import annotations

import logging
from dataclasses import dataclass

from botocore.config import Config
from botocore.exceptions import ClientError
from starlette.concurrency import run_in_threadpool

from .object_storage import build_storage_key

logger = logging.getLogger(__name__)

_MISSING_OBJECT_CODES = {"NoSuchKey", "404", "NotFound"}


@dataclass(frozen=True)
class S3Config:
    endpoint_url: str
    public_endpoint_url: str
    region: str
    bucket: str
    access_key_id: str
    secret_access_key: str
    force_path_style: bool


class S3ObjectStorage:
    def __init__(
        self,
        *,
        endpoint_url: str,
        region: str,
        bucket: str,
        access_key_id: str,
        secret_access_key: str,
        force_path_style: bool,
        public_endpoint_url: str = "",
        key_category: str = "board",
        upload_url_ttl_seconds: int = 300,
    ) -> None:
        self._cfg = S3Config(
            endpoint_url=endpoint_url,
            public_endpoint_url=public_endpoint_url,
            region=region,
            bucket=bucket,
            access_key_id=access_key_id,
            secret_access_key=secret_access_key,
            force_path_style=force_path_style,
        )
        self._key_category = key_category
        self._upload_url_ttl_seconds = int(upload_url_ttl_seconds)

        # Custom endpoints (MinIO) need path-style addressing.
        path_style = force_path_style or bool(endpoint_url)
        self._client = self._make_client(endpoint_url, path_style=path_style)

        # Presigned URLs must be signed against the host the browser will hit.
        if public_endpoint_url and endpoint_url:
            self._presign_client = self._make_client(public_endpoint_url, path_style=True)
        else:
            self._presign_client = self._client

    def _make_client(self, endpoint_url: str, *, path_style: bool):  # type: ignore[no-untyped-def]
        import boto3

        addressing_style = "path" if path_style else "virtual"
        return boto3.client(
            "s3",
            endpoint_url=endpoint_url or None,
            region_name=self._cfg.region or None,
            # Empty credentials fall back to the default chain (IAM role, ~/.aws).
            aws_access_key_id=self._cfg.access_key_id or None,
            aws_secret_access_key=self._cfg.secret_access_key or None,
            config=Config(signature_version="s3v4", s3={"addressing_style": addressing_style}),
        )

    async def issue_upload_url(
        self,
        *,
        entity_type_plural: str,
        parent_id: str,
        file_name: str,
        content_type: str,
    ) -> tuple[str, str]:
        key = build_storage_key(
            category=self._key_category,
            entity_type_plural=entity_type_plural,
            parent_id=parent_id,
            file_name=file_name,
        )

        def _presign() -> str:
            return self._presign_client.generate_presigned_url(
                "put_object",
                Params={"Bucket": self._cfg.bucket, "Key": key, "ContentType": content_type},
                ExpiresIn=self._upload_url_ttl_seconds,
            )

        url = await run_in_threadpool(_presign)
        return url, key

    def to_readable_url(self, storage_key: str) -> str:
        key = storage_key.lstrip("/")
        if self._cfg.public_endpoint_url:
            return f"{self._cfg.public_endpoint_url.rstrip('/')}/{self._cfg.bucket}/{key}"
        if self._cfg.endpoint_url:
            return f"{self._cfg.endpoint_url.rstrip('/')}/{self._cfg.bucket}/{key}"
        return f"https://{self._cfg.bucket}.s3.{self._cfg.region}.amazonaws.com/{key}"

    async def delete_object(self, storage_key: str) -> None:
        def _delete() -> None:
            try:
                self._client.delete_object(Bucket=self._cfg.bucket, Key=storage_key)
            except ClientError as exc:
                code = str(exc.response.get("Error", {}).get("Code", ""))
                if code in _MISSING_OBJECT_CODES:
                    logger.debug("object already absent storage_key=%s", storage_key)
                    return
                raise

        await run_in_threadpool(_delete)
