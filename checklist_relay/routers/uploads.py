"""Batch upload, upload-or-update and upload job status endpoints."""

from __future__ import annotations

import json
from typing import Any

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    File,
    Form,
    Query,
    Response,
    UploadFile,
    status,
)
from pydantic import BaseModel
from sqlmodel import Session

from ..config import Settings, get_settings
from ..database import get_session
from ..dependencies import get_pipeline
from ..middleware import get_request_id
from ..models import UploadJob, UploadJobKind, UploadResult
from ..services.files import discard, receive_uploads
from ..services.jobs import create_job, get_job
from ..services.pipeline import UploadPipeline
from ..utils.errors import RelayError, ValidationError
from .groups import wants_sync

router = APIRouter(prefix="/api", tags=["uploads"])


class BatchAccepted(BaseModel):
    """Acknowledgement for a batch handed to a background job."""

    message: str
    job_id: str
    file_count: int


class BatchResults(BaseModel):
    """Per-file outcomes of a batch that waited for the pipeline."""

    results: list[UploadResult]


class MergeResponse(BaseModel):
    """Outcome of an upload-or-update call."""

    results: list[UploadResult]
    records: list[dict[str, Any]]
    registrar_response: Any = None


def parse_existing_results(raw: str | None) -> list[dict[str, Any]]:
    """Decode the JSON-encoded list of attachment records sent by the client."""

    if raw is None or not raw.strip():
        return []
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValidationError(
            "existingResults must be a JSON-encoded list", extra={"reason": str(exc)}
        ) from exc
    if isinstance(value, dict):
        value = [value]
    if not isinstance(value, list) or not all(isinstance(entry, dict) for entry in value):
        raise ValidationError("existingResults must be a list of objects")
    return value


@router.post(
    "/upload",
    response_model=BatchAccepted | BatchResults,
    responses={202: {"model": BatchAccepted}},
)
async def upload_files(
    response: Response,
    background_tasks: BackgroundTasks,
    *,
    files: list[UploadFile] | None = File(None),
    folder_path: str | None = Form(None, alias="folderPath"),
    wait: bool | None = Query(None),
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
    pipeline: UploadPipeline = Depends(get_pipeline),
) -> BatchAccepted | BatchResults:
    """Upload several files and register each with the attachment registrar."""

    received = await receive_uploads(files or [], settings)

    if not wants_sync(wait, settings):
        try:
            job = create_job(
                session=session, kind=UploadJobKind.BATCH, file_count=len(received)
            )
        except RelayError:
            discard(received)
            raise
        background_tasks.add_task(
            pipeline.run_job,
            job.id,
            received,
            request_id=get_request_id(),
            prefix=folder_path,
        )
        response.status_code = status.HTTP_202_ACCEPTED
        return BatchAccepted(
            message="Files received, processing in background",
            job_id=job.id,
            file_count=len(received),
        )

    try:
        results = await pipeline.run(received, prefix=folder_path)
    finally:
        discard(received)
    return BatchResults(results=results)


@router.post("/upload-or-update", response_model=MergeResponse)
async def upload_or_update(
    *,
    files: list[UploadFile] | None = File(None),
    existing_results: str | None = Form(None, alias="existingResults"),
    attachment_id: str | None = Form(None, alias="attachmentId"),
    folder_path: str | None = Form(None, alias="folderPath"),
    settings: Settings = Depends(get_settings),
    pipeline: UploadPipeline = Depends(get_pipeline),
) -> MergeResponse:
    """Append newly uploaded files to an existing attachment list and resubmit it."""

    existing = parse_existing_results(existing_results)
    received = await receive_uploads(files, settings) if files else []
    try:
        outcome = await pipeline.run_and_merge(
            received,
            existing,
            attachment_id=(attachment_id or "").strip() or None,
            prefix=folder_path,
        )
    finally:
        discard(received)
    return MergeResponse(
        results=outcome.results,
        records=[dict(record) for record in outcome.records],
        registrar_response=outcome.registrar_response,
    )


@router.get("/uploads/{job_id}", response_model=UploadJob)
def read_upload_job(
    job_id: str, *, session: Session = Depends(get_session)
) -> UploadJob:
    """Return the status and per-file results of a background upload."""

    return get_job(session=session, job_id=job_id)


__all__ = ["parse_existing_results", "router"]
