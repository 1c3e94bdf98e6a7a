"""Upload job tracking and per-file pipeline results."""

from __future__ import annotations

import secrets
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel
from sqlalchemy import JSON, Column, Text
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    return datetime.now(UTC)


class UploadResult(BaseModel):
    """Outcome of the pipeline for a single file."""

    original_name: str
    storage_key: str | None = None
    storage_url: str | None = None
    registrar_response: Any = None
    registrar_error: str | None = None
    error: str | None = None

    @property
    def stored(self) -> bool:
        return self.error is None and self.storage_url is not None


class UploadJobStatus(str, Enum):
    """Lifecycle of a background pipeline run."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class UploadJobKind(str, Enum):
    DOCUMENT = "document"
    BATCH = "batch"


class UploadJob(SQLModel, table=True):
    """Persisted status of a pipeline run scheduled after the HTTP response."""

    __tablename__ = "upload_jobs"

    id: str = Field(default_factory=lambda: secrets.token_hex(12), primary_key=True)
    kind: UploadJobKind = Field(nullable=False)
    status: UploadJobStatus = Field(default=UploadJobStatus.PENDING, nullable=False)
    file_count: int = Field(default=0, nullable=False)
    group_id: Optional[int] = Field(default=None, nullable=True)
    item_id: Optional[str] = Field(default=None, nullable=True)
    results: list[dict[str, Any]] = Field(
        default_factory=list,
        sa_column=Column(JSON, nullable=False),
        description="Serialised UploadResult entries, one per file.",
    )
    error: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    created_at: datetime = Field(default_factory=_utcnow, nullable=False)
    finished_at: datetime | None = Field(default=None, nullable=True)
