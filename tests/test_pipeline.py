"""Tests for background pipeline jobs."""

from __future__ import annotations

import asyncio

from sqlmodel import Session

from checklist_relay.database import get_engine, init_db
from checklist_relay.middleware import get_request_id
from checklist_relay.models import UploadJobKind, UploadJobStatus
from checklist_relay.observability import metrics_registry
from checklist_relay.services.files import ReceivedFile
from checklist_relay.services.jobs import create_job, get_job


def _received(tmp_path, name: str, body: bytes = b"data") -> ReceivedFile:
    path = tmp_path / f"{name}.tmp"
    path.write_bytes(body)
    return ReceivedFile(path=path, original_name=name, size=len(body), mime_type="text/plain")


def _new_job(file_count: int) -> str:
    init_db()
    with Session(get_engine()) as session:
        return create_job(session=session, kind=UploadJobKind.BATCH, file_count=file_count).id


def test_job_records_results_and_binds_request_id(pipeline, fakes, tmp_path):
    job_id = _new_job(2)
    files = [_received(tmp_path, "a.txt"), _received(tmp_path, "b.txt")]
    seen_request_ids = []

    original_upload = fakes.uploader.upload

    async def _upload(path, key, content_type=None):
        seen_request_ids.append(get_request_id())
        return await original_upload(path, key, content_type=content_type)

    fakes.uploader.upload = _upload

    asyncio.run(pipeline.run_job(job_id, files, request_id="req-123"))

    assert seen_request_ids == ["req-123", "req-123"]
    assert get_request_id() != "req-123"
    with Session(get_engine()) as session:
        job = get_job(session=session, job_id=job_id)
    assert job.status == UploadJobStatus.COMPLETED
    assert [result["original_name"] for result in job.results] == ["a.txt", "b.txt"]
    assert job.finished_at is not None
    assert all(not received.path.exists() for received in files)
    assert metrics_registry.snapshot()["pipeline"]["jobs_completed"] == 1


def test_job_fails_when_every_file_fails(pipeline, fakes, tmp_path):
    job_id = _new_job(1)
    fakes.uploader.fail_names.add("a.txt")

    asyncio.run(pipeline.run_job(job_id, [_received(tmp_path, "a.txt")]))

    with Session(get_engine()) as session:
        job = get_job(session=session, job_id=job_id)
    assert job.status == UploadJobStatus.FAILED
    assert job.error.startswith("a.txt: ")
    assert metrics_registry.snapshot()["pipeline"]["jobs_failed"] == 1


def test_unexpected_error_marks_job_failed_and_cleans_up(pipeline, fakes, tmp_path):
    job_id = _new_job(1)
    received = _received(tmp_path, "a.txt")

    async def _explode(path, key, content_type=None):
        raise RuntimeError("disk on fire")

    fakes.uploader.upload = _explode

    asyncio.run(pipeline.run_job(job_id, [received]))

    with Session(get_engine()) as session:
        job = get_job(session=session, job_id=job_id)
    assert job.status == UploadJobStatus.FAILED
    assert job.error == "disk on fire"
    assert not received.path.exists()


def test_registrar_failure_keeps_stored_object(pipeline, fakes, tmp_path):
    from checklist_relay.utils.errors import RegistrationError

    fakes.registrar.fail_with = RegistrationError("Attachment registrar request failed")

    [result] = asyncio.run(pipeline.run([_received(tmp_path, "a.txt")]))

    assert result.stored
    assert result.registrar_error == "Attachment registrar request failed"
    assert len(fakes.uploader.objects) == 1
    counts = metrics_registry.snapshot()["pipeline"]
    assert counts["registration_failures"] == 1
    assert counts["files_stored"] == 1
