"""Checklist group model and its embedded item/document shapes."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any, Optional

from pydantic import BaseModel, Field as PydanticField
from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

DEFAULT_ITEM_STATUS = "Open"


def _utcnow() -> datetime:
    """Return the current UTC timestamp."""

    return datetime.now(UTC)


class DocumentRecord(BaseModel):
    """Metadata for a file that has been written to object storage."""

    model_config = {"frozen": True}

    name: str
    storage_key: str
    url: str
    size: int
    mime_type: str | None = None
    uploaded_at: datetime = PydanticField(default_factory=_utcnow)


class ChecklistItem(BaseModel):
    """A checklist entry embedded in its parent group."""

    id: str = PydanticField(default_factory=lambda: uuid.uuid4().hex)
    name: str
    status: str = DEFAULT_ITEM_STATUS
    documents: list[DocumentRecord] = PydanticField(default_factory=list)


class ChecklistGroupRecord(SQLModel, table=True):
    """Stored checklist group; items and documents live in the ``items`` column."""

    __tablename__ = "checklist_groups"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, nullable=False)
    items: list[dict[str, Any]] = Field(
        default_factory=list,
        sa_column=Column(JSON, nullable=False),
        description="Ordered checklist items with their embedded documents.",
    )
    version: int = Field(
        default=1,
        nullable=False,
        description="Incremented on every write; guards read-modify-write cycles.",
    )
    created_at: datetime = Field(default_factory=_utcnow, nullable=False)
    updated_at: datetime = Field(default_factory=_utcnow, nullable=False)


class ChecklistGroup(BaseModel):
    """Checklist group as returned to callers."""

    id: int
    name: str
    items: list[ChecklistItem] = PydanticField(default_factory=list)
    version: int = 1
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_record(cls, record: ChecklistGroupRecord) -> "ChecklistGroup":
        if record.id is None:
            raise ValueError("Checklist group must be persisted before it is read")
        return cls(
            id=record.id,
            name=record.name,
            items=[ChecklistItem.model_validate(item) for item in record.items or []],
            version=record.version,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )

    def find_item(self, item_id: str) -> ChecklistItem | None:
        for item in self.items:
            if item.id == item_id:
                return item
        return None
