"""Persisted status for pipeline runs that finish after the HTTP response."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from ..models import UploadJob, UploadJobKind, UploadJobStatus, UploadResult
from ..utils.errors import NotFoundError, PersistenceError


def _save(session: Session, job: UploadJob) -> UploadJob:
    try:
        session.add(job)
        session.commit()
        session.refresh(job)
    except SQLAlchemyError as exc:
        session.rollback()
        raise PersistenceError("Could not save upload job") from exc
    return job


def create_job(
    *,
    session: Session,
    kind: UploadJobKind,
    file_count: int,
    group_id: int | None = None,
    item_id: str | None = None,
) -> UploadJob:
    job = UploadJob(kind=kind, file_count=file_count, group_id=group_id, item_id=item_id)
    return _save(session, job)


def get_job(*, session: Session, job_id: str) -> UploadJob:
    try:
        job = session.get(UploadJob, job_id)
    except SQLAlchemyError as exc:
        raise PersistenceError("Could not read upload job") from exc
    if job is None:
        raise NotFoundError("Upload job not found", extra={"job_id": job_id})
    return job


def mark_running(*, session: Session, job_id: str) -> UploadJob:
    job = get_job(session=session, job_id=job_id)
    job.status = UploadJobStatus.RUNNING
    return _save(session, job)


def complete_job(
    *, session: Session, job_id: str, results: Sequence[UploadResult]
) -> UploadJob:
    """Record the results; the job fails when no file reached storage."""

    job = get_job(session=session, job_id=job_id)
    job.results = [result.model_dump(mode="json") for result in results]
    failures = [result for result in results if not result.stored]
    if results and len(failures) == len(results):
        job.status = UploadJobStatus.FAILED
        job.error = "; ".join(
            f"{result.original_name}: {result.error}" for result in failures
        )
    else:
        job.status = UploadJobStatus.COMPLETED
    job.finished_at = datetime.now(UTC)
    return _save(session, job)


def fail_job(*, session: Session, job_id: str, error: str) -> UploadJob:
    job = get_job(session=session, job_id=job_id)
    job.status = UploadJobStatus.FAILED
    job.error = error
    job.finished_at = datetime.now(UTC)
    return _save(session, job)


__all__ = ["complete_job", "create_job", "fail_job", "get_job", "mark_running"]
