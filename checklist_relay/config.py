"""Configuration utilities for the checklist relay."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Tuple

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator


def _env_flag(name: str, default: bool) -> bool:
    """Return a boolean flag derived from environment variables."""

    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_str(*names: str) -> str | None:
    """Return the first non-blank value among the given environment variables."""

    for name in names:
        raw = os.getenv(name)
        if raw is not None and raw.strip():
            return raw.strip()
    return None


BASE_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = BASE_DIR.parent

RESPONSE_MODES = ("background", "sync")
REGISTRAR_MODES = ("immediate", "deferred")


def _load_environment() -> None:
    """Load environment variables from a ``.env`` file if present."""

    explicit_path = os.getenv("RELAY_ENV_FILE")
    candidates = []

    if explicit_path:
        candidates.append(Path(explicit_path))

    candidates.append(PROJECT_ROOT / ".env")

    for candidate in candidates:
        try_path = candidate.expanduser()
        if try_path.exists():
            load_dotenv(try_path, override=False)


_load_environment()


def _database_url_default() -> str:
    """Return the configured database URL using legacy fallbacks."""

    return (
        os.getenv("DATABASE_URL") or os.getenv("DB_URL") or "sqlite:///./checklist_relay.db"
    )


def _csv_tuple(raw: str | None) -> Tuple[str, ...]:
    if not raw:
        return ()
    return tuple(part.strip() for part in raw.split(",") if part.strip())


class Settings(BaseModel):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(default_factory=_database_url_default)
    upload_dir: Path = Field(
        default_factory=lambda: Path(
            os.getenv("UPLOAD_DIR", str(PROJECT_ROOT / "uploads"))
        )
    )
    max_upload_size: int = Field(
        default_factory=lambda: int(os.getenv("MAX_UPLOAD_SIZE", str(25 * 1024 * 1024)))
    )
    max_files_per_request: int = Field(
        default_factory=lambda: int(os.getenv("MAX_FILES_PER_REQUEST", "10"))
    )
    cors_allow_origins: Tuple[str, ...] = Field(
        default_factory=lambda: _csv_tuple(os.getenv("CORS_ALLOW_ORIGINS", "*"))
    )
    host: str = Field(default_factory=lambda: os.getenv("HOST", "0.0.0.0"))
    port: int = Field(default_factory=lambda: int(os.getenv("PORT", "3000")))
    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "info"))

    # Object storage
    aws_access_key_id: str | None = Field(
        default_factory=lambda: _env_str("AWS_ACCESS_KEY_ID")
    )
    aws_secret_access_key: str | None = Field(
        default_factory=lambda: _env_str("AWS_SECRET_ACCESS_KEY")
    )
    aws_region: str = Field(
        default_factory=lambda: os.getenv("AWS_REGION", "us-east-1")
    )
    s3_bucket: str | None = Field(
        default_factory=lambda: _env_str("AWS_S3_BUCKET", "S3_BUCKET")
    )
    s3_endpoint_url: str | None = Field(
        default_factory=lambda: _env_str("S3_ENDPOINT_URL")
    )
    storage_prefix: str = Field(
        default_factory=lambda: os.getenv("STORAGE_PREFIX", "documents")
    )
    storage_connect_timeout_s: float = Field(
        default_factory=lambda: float(os.getenv("STORAGE_CONNECT_TIMEOUT_S", "10"))
    )
    storage_read_timeout_s: float = Field(
        default_factory=lambda: float(os.getenv("STORAGE_READ_TIMEOUT_S", "120"))
    )

    # Attachment registrar
    registrar_url: str | None = Field(
        default_factory=lambda: _env_str("REGISTRAR_URL")
    )
    registrar_token: str | None = Field(
        default_factory=lambda: _env_str("REGISTRAR_TOKEN")
    )
    registrar_action_name: str = Field(
        default_factory=lambda: os.getenv("REGISTRAR_ACTION_NAME", "SaveAttachment")
    )
    registrar_timeout_s: float = Field(
        default_factory=lambda: float(os.getenv("REGISTRAR_TIMEOUT_S", "30"))
    )
    registrar_mode: str = Field(
        default_factory=lambda: os.getenv("REGISTRAR_MODE", "immediate")
    )
    attachment_sort_order: str = Field(
        default_factory=lambda: os.getenv("ATTACHMENT_SORT_ORDER", "1")
    )
    attachment_status: str = Field(
        default_factory=lambda: os.getenv("ATTACHMENT_STATUS", "Active")
    )
    attachment_changed_by: str = Field(
        default_factory=lambda: os.getenv("ATTACHMENT_CHANGED_BY", "system")
    )

    # Email notifications
    smtp_host: str | None = Field(default_factory=lambda: _env_str("SMTP_HOST"))
    smtp_port: int = Field(default_factory=lambda: int(os.getenv("SMTP_PORT", "587")))
    smtp_username: str | None = Field(
        default_factory=lambda: _env_str("SMTP_USERNAME", "EMAIL_USER")
    )
    smtp_password: str | None = Field(
        default_factory=lambda: _env_str("SMTP_PASSWORD", "EMAIL_PASS")
    )
    smtp_use_tls: bool = Field(default_factory=lambda: _env_flag("SMTP_USE_TLS", True))
    email_from: str | None = Field(
        default_factory=lambda: _env_str("EMAIL_FROM", "SMTP_USERNAME", "EMAIL_USER")
    )
    notify_email_to: str | None = Field(
        default_factory=lambda: _env_str("NOTIFY_EMAIL_TO")
    )

    # Pipeline behaviour
    upload_response_mode: str = Field(
        default_factory=lambda: os.getenv("UPLOAD_RESPONSE_MODE", "background")
    )
    store_max_write_attempts: int = Field(
        default_factory=lambda: int(os.getenv("STORE_MAX_WRITE_ATTEMPTS", "3"))
    )

    @field_validator("upload_dir", mode="after")
    @classmethod
    def _ensure_upload_dir(cls, value: Path) -> Path:
        value.mkdir(parents=True, exist_ok=True)
        return value

    @field_validator("storage_prefix", mode="after")
    @classmethod
    def _normalise_prefix(cls, value: str) -> str:
        return value.strip().strip("/") or "documents"

    @field_validator("upload_response_mode", mode="after")
    @classmethod
    def _check_response_mode(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in RESPONSE_MODES:
            raise ValueError(
                f"UPLOAD_RESPONSE_MODE must be one of {', '.join(RESPONSE_MODES)}"
            )
        return value

    @field_validator("registrar_mode", mode="after")
    @classmethod
    def _check_registrar_mode(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in REGISTRAR_MODES:
            raise ValueError(
                f"REGISTRAR_MODE must be one of {', '.join(REGISTRAR_MODES)}"
            )
        return value

    @field_validator("max_files_per_request", "store_max_write_attempts", mode="after")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        return max(1, value)

    @property
    def storage_configured(self) -> bool:
        return bool(self.s3_bucket)

    @property
    def registrar_configured(self) -> bool:
        return bool(self.registrar_url)

    @property
    def email_configured(self) -> bool:
        return bool(
            self.smtp_host
            and self.notify_email_to
            and (self.email_from or self.smtp_username)
        )


@lru_cache()
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()


def reset_settings_cache() -> None:
    """Clear the cached settings so that subsequent calls reload from the environment."""

    get_settings.cache_clear()
