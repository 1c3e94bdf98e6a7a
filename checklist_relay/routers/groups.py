"""Checklist group, item and item-document endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    File,
    Query,
    Response,
    UploadFile,
    status,
)
from pydantic import BaseModel, Field
from sqlmodel import Session

from ..config import Settings, get_settings
from ..database import get_session
from ..dependencies import get_pipeline, get_store
from ..middleware import get_request_id
from ..models import ChecklistGroup, ChecklistItem, DocumentRecord, UploadJobKind
from ..services.checklists import ChecklistStore
from ..services.files import discard, receive_upload
from ..services.jobs import create_job
from ..services.pipeline import UploadPipeline, UploadTarget
from ..utils.errors import (
    PersistenceError,
    RegistrationError,
    RelayError,
    StorageError,
    ValidationError,
)

router = APIRouter(prefix="/api", tags=["groups"])


class GroupCreate(BaseModel):
    """Request body for creating a checklist group."""

    name: str = Field(min_length=1)


class ItemCreate(BaseModel):
    """Request body for adding an item to a group."""

    name: str = Field(min_length=1)
    status: str | None = None


class DocumentAccepted(BaseModel):
    """Acknowledgement returned before the upload pipeline runs."""

    message: str
    job_id: str


class DocumentUploaded(BaseModel):
    """Outcome of a document upload that waited for the pipeline."""

    storage_url: str
    registrar_response: Any = None
    document: DocumentRecord


def wants_sync(wait: bool | None, settings: Settings) -> bool:
    if wait is not None:
        return wait
    return settings.upload_response_mode == "sync"


@router.post(
    "/groups", response_model=ChecklistGroup, status_code=status.HTTP_201_CREATED
)
def create_group(
    payload: GroupCreate, *, store: ChecklistStore = Depends(get_store)
) -> ChecklistGroup:
    """Create an empty checklist group."""

    return store.create_group(payload.name)


@router.get("/groups", response_model=list[ChecklistGroup])
def list_groups(*, store: ChecklistStore = Depends(get_store)) -> list[ChecklistGroup]:
    """Return every group with its items and documents."""

    return store.list_groups()


@router.get("/groups/{group_id}", response_model=ChecklistGroup)
def get_group(
    group_id: int, *, store: ChecklistStore = Depends(get_store)
) -> ChecklistGroup:
    return store.get_group(group_id)


@router.post(
    "/groups/{group_id}/items",
    response_model=ChecklistItem,
    status_code=status.HTTP_201_CREATED,
)
def add_item(
    group_id: int,
    payload: ItemCreate,
    *,
    store: ChecklistStore = Depends(get_store),
) -> ChecklistItem:
    """Append an item to a group; status defaults to ``Open``."""

    return store.add_item(group_id, payload.name, payload.status)


@router.post(
    "/groups/{group_id}/items/{item_id}/documents",
    response_model=DocumentAccepted | DocumentUploaded,
    responses={202: {"model": DocumentAccepted}},
)
async def upload_document(
    group_id: int,
    item_id: str,
    response: Response,
    background_tasks: BackgroundTasks,
    *,
    file: UploadFile | None = File(None),
    wait: bool | None = Query(None),
    session: Session = Depends(get_session),
    store: ChecklistStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
    pipeline: UploadPipeline = Depends(get_pipeline),
) -> DocumentAccepted | DocumentUploaded:
    """Store a file for a checklist item and register it with the registrar.

    By default the file is acknowledged with ``202`` as soon as it has been
    received and the rest of the pipeline runs after the response; progress is
    available from ``GET /api/uploads/{job_id}``. With ``?wait=true`` (or
    ``UPLOAD_RESPONSE_MODE=sync``) the response carries the final outcome.
    """

    store.get_item(group_id, item_id)
    if file is None:
        raise ValidationError("No file uploaded")

    received = await receive_upload(file, settings)
    target = UploadTarget(group_id=group_id, item_id=item_id)

    if not wants_sync(wait, settings):
        try:
            job = create_job(
                session=session,
                kind=UploadJobKind.DOCUMENT,
                file_count=1,
                group_id=group_id,
                item_id=item_id,
            )
        except RelayError:
            discard([received])
            raise
        background_tasks.add_task(
            pipeline.run_job,
            job.id,
            [received],
            request_id=get_request_id(),
            target=target,
            notify=True,
        )
        response.status_code = status.HTTP_202_ACCEPTED
        return DocumentAccepted(
            message="File received, uploading to storage...", job_id=job.id
        )

    try:
        [result] = await pipeline.run([received], store=store, target=target)
    finally:
        discard([received])

    if result.storage_url is None:
        raise StorageError(result.error or "Upload failed")
    if result.error:
        raise PersistenceError(result.error, extra={"storage_url": result.storage_url})
    if result.registrar_error:
        raise RegistrationError(
            result.registrar_error,
            extra={"storage_url": result.storage_url},
        )

    item = store.get_item(group_id, item_id)
    document = next(
        doc for doc in reversed(item.documents) if doc.storage_key == result.storage_key
    )
    background_tasks.add_task(pipeline.notify_stored, [result])
    return DocumentUploaded(
        storage_url=result.storage_url,
        registrar_response=result.registrar_response,
        document=document,
    )


__all__ = ["router"]
