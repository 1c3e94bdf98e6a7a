"""Database models for the checklist relay."""

from .checklist import (
    DEFAULT_ITEM_STATUS,
    ChecklistGroup,
    ChecklistGroupRecord,
    ChecklistItem,
    DocumentRecord,
)
from .uploads import UploadJob, UploadJobKind, UploadJobStatus, UploadResult

__all__ = [
    "DEFAULT_ITEM_STATUS",
    "ChecklistGroup",
    "ChecklistGroupRecord",
    "ChecklistItem",
    "DocumentRecord",
    "UploadJob",
    "UploadJobKind",
    "UploadJobStatus",
    "UploadResult",
]
