"""FastAPI dependencies that hand out the process-wide clients."""

from __future__ import annotations

from fastapi import Depends, Request
from sqlmodel import Session

from .config import Settings, get_settings
from .database import get_session
from .services.checklists import ChecklistStore
from .services.notifications import NotificationSender
from .services.pipeline import UploadPipeline
from .services.registrar import AttachmentRegistrar
from .services.storage import ObjectStorageUploader


def build_pipeline(settings: Settings) -> UploadPipeline:
    """Create the storage, registrar and mail clients once for the process."""

    return UploadPipeline(
        uploader=ObjectStorageUploader.from_settings(settings),
        registrar=AttachmentRegistrar.from_settings(settings),
        notifier=NotificationSender.from_settings(settings),
        settings=settings,
    )


def get_pipeline(request: Request) -> UploadPipeline:
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        pipeline = build_pipeline(get_settings())
        request.app.state.pipeline = pipeline
    return pipeline


def get_store(
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
) -> ChecklistStore:
    return ChecklistStore(session, max_write_attempts=settings.store_max_write_attempts)


__all__ = ["build_pipeline", "get_pipeline", "get_store"]
