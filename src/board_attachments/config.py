from __future__ import annotations

from typing import ClassVar, final

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


_DEFAULT_IMAGE_TYPES = ",".join(
    [
        "image/jpeg",
        "image/jpg",
        "image/png",
        "image/gif",
        "image/webp",
        "image/svg+xml",
        "image/heic",
    ]
)
_DEFAULT_IMAGE_EXTENSIONS = "jpg,jpeg,png,gif,webp,svg,heic"
_DEFAULT_DOC_TYPES = ",".join(
    [
        "application/pdf",
        "text/plain",
        "text/markdown",
        "text/csv",
        "application/msword",
        "application/vnd.ms-excel",
        "application/vnd.ms-powerpoint",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/vnd.openxmlformats-officedocument.presentationml.presentation",
        "application/zip",
        "application/x-zip-compressed",
        "application/json",
    ]
)
_DEFAULT_DOC_EXTENSIONS = "pdf,txt,md,csv,doc,docx,xls,xlsx,ppt,pptx,zip,json"


def _split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [x.strip() for x in value.split(",") if x.strip()]


@final
class Settings(BaseSettings):
    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )
    app_name: str = "Board Attachments"
    api_prefix: str = "/api/v1"

    # Environment (ENVIRONMENT): development | production
    environment: str = "development"

    database_url: str = "sqlite:///./dev.db"
    log_level: str = "INFO"

    # Primary env: CORS_ALLOW_ORIGINS; also accept CORS_ORIGINS as alias.
    cors_allow_origins: str = Field(
        default="*",
        validation_alias=AliasChoices("CORS_ALLOW_ORIGINS", "CORS_ORIGINS"),
    )

    # Identity is resolved upstream; the gateway forwards the principal id here.
    user_id_header: str = "X-User-Id"

    # S3 / MinIO
    s3_endpoint_url: str = ""
    # Browser-reachable endpoint (MinIO behind docker networking). Presigned URLs
    # are signed against this host when set.
    s3_public_endpoint_url: str = ""
    s3_region: str = ""
    s3_bucket: str = ""
    s3_access_key_id: str = ""
    s3_secret_access_key: str = ""
    s3_force_path_style: bool = False

    # Attachments
    attachments_key_category: str = "board"
    attachments_max_size_bytes: int = 20 * 1024 * 1024
    attachments_allowed_image_types: str = _DEFAULT_IMAGE_TYPES
    attachments_allowed_image_extensions: str = _DEFAULT_IMAGE_EXTENSIONS
    attachments_allowed_doc_types: str = _DEFAULT_DOC_TYPES
    attachments_allowed_doc_extensions: str = _DEFAULT_DOC_EXTENSIONS
    attachments_upload_url_ttl_seconds: int = 300
    attachments_temp_ttl_seconds: int = 60 * 60  # 1 hour

    # Expiration sweeper
    attachments_sweeper_enabled: bool = True
    attachments_sweep_interval_seconds: int = 60 * 10
    attachments_sweep_batch_size: int = 500
    # Retention policy for reaped TEMP rows: soft delete by default.
    attachments_sweeper_hard_delete: bool = False

    # Validate production settings early to fail fast on unsafe defaults.
    @model_validator(mode="after")
    def _validate_production_settings(self) -> "Settings":  # pyright: ignore[reportUnusedFunction]
        if self.environment.strip().lower() != "production":
            return self

        errors: list[str] = []

        cors_v = self.cors_allow_origins.strip()
        if not cors_v or cors_v == "*":
            errors.append("CORS_ALLOW_ORIGINS must be explicit (not '*') in production")

        if not self.s3_bucket.strip():
            errors.append("S3_BUCKET must be set in production")
        if not self.s3_region.strip():
            errors.append("S3_REGION must be set in production")

        # Static credentials are optional (IAM role), but a half-filled pair is a mistake.
        creds = {
            "S3_ACCESS_KEY_ID": self.s3_access_key_id.strip(),
            "S3_SECRET_ACCESS_KEY": self.s3_secret_access_key.strip(),
        }
        if any(v for v in creds.values()) and any(not v for v in creds.values()):
            missing = ",".join([k for k, v in creds.items() if not v])
            errors.append(f"S3 credentials incomplete in production; missing: {missing}")

        if self.attachments_max_size_bytes <= 0:
            errors.append("ATTACHMENTS_MAX_SIZE_BYTES must be positive")

        if errors:
            raise ValueError("Invalid production settings: " + "; ".join(errors))
        return self

    def cors_origins_list(self) -> list[str]:
        v = self.cors_allow_origins.strip()
        if not v:
            return []
        if v == "*":
            return ["*"]
        return _split_csv(v)

    def allowed_image_types(self) -> frozenset[str]:
        return frozenset(x.lower() for x in _split_csv(self.attachments_allowed_image_types))

    def allowed_image_extensions(self) -> frozenset[str]:
        return frozenset(
            x.lower().lstrip(".") for x in _split_csv(self.attachments_allowed_image_extensions)
        )

    def allowed_doc_types(self) -> frozenset[str]:
        return frozenset(x.lower() for x in _split_csv(self.attachments_allowed_doc_types))

    def allowed_doc_extensions(self) -> frozenset[str]:
        return frozenset(
            x.lower().lstrip(".") for x in _split_csv(self.attachments_allowed_doc_extensions)
        )

    def s3_configured(self) -> bool:
        has_location = bool(self.s3_region.strip() or self.s3_endpoint_url.strip())
        return bool(self.s3_bucket.strip()) and has_location

    def security_warnings(self) -> list[str]:
        warnings: list[str] = []
        if self.cors_allow_origins.strip() == "*":
            warnings.append("CORS_ALLOW_ORIGINS='*' is permissive")
        if not self.s3_configured():
            warnings.append("S3 is not configured; upload authorization will fail")
        return warnings


settings = Settings()
