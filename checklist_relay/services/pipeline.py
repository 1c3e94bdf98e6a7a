"""Upload pipeline: storage upload, document recording, registration, cleanup."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Sequence

from sqlmodel import Session

from ..config import Settings
from ..database import get_engine
from ..middleware import bind_request_id, reset_request_id
from ..models import DocumentRecord, UploadJobStatus, UploadResult
from ..observability import MetricsRegistry, metrics_registry
from ..utils.errors import RegistrationError, RelayError, StorageError, ValidationError
from .checklists import ChecklistStore
from .files import ReceivedFile, discard
from .jobs import complete_job, fail_job, mark_running
from .notifications import NotificationSender
from .registrar import AttachmentRecord, AttachmentRegistrar, build_attachment_record
from .storage import ObjectStorageUploader

log = logging.getLogger("checklist_relay.pipeline")

NOTIFICATION_SUBJECT = "File Upload Notification"


@dataclass(frozen=True)
class UploadTarget:
    """Checklist item that receives a Document for every stored file."""

    group_id: int
    item_id: str


@dataclass
class MergeOutcome:
    """Result of an upload-or-update run."""

    results: list[UploadResult]
    records: list[Mapping[str, Any]] = field(default_factory=list)
    registrar_response: Any = None


def _default_session_factory() -> Session:
    return Session(get_engine())


class UploadPipeline:
    """Run received files through storage, the checklist store and the registrar.

    Files are processed one after another. A file whose storage upload fails is
    reported with an ``error`` and the remaining files still run. A registrar
    failure never undoes the stored object or its Document; the file's result
    carries ``registrar_error`` instead.
    """

    def __init__(
        self,
        *,
        uploader: ObjectStorageUploader,
        registrar: AttachmentRegistrar,
        notifier: NotificationSender,
        settings: Settings,
        session_factory: Callable[[], Session] | None = None,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        self.uploader = uploader
        self.registrar = registrar
        self.notifier = notifier
        self.settings = settings
        self.session_factory = session_factory or _default_session_factory
        self.metrics = metrics or metrics_registry

    @property
    def deferred_registration(self) -> bool:
        return self.settings.registrar_mode == "deferred"

    async def run(
        self,
        files: Sequence[ReceivedFile],
        *,
        store: ChecklistStore | None = None,
        target: UploadTarget | None = None,
        prefix: str | None = None,
        attachment_id: str | None = None,
        notify: bool = False,
    ) -> list[UploadResult]:
        """Process ``files`` in order and return one result per file."""

        if target is not None and store is None:
            raise ValueError("A checklist store is required when a target is given")

        results: list[UploadResult] = []
        pending: list[tuple[UploadResult, AttachmentRecord]] = []

        for received in files:
            result, record = await self._store_file(
                received, prefix=prefix, attachment_id=attachment_id
            )
            results.append(result)
            if record is None:
                continue

            if target is not None and store is not None:
                if not self._record_document(store, target, received, result):
                    continue

            if self.registrar.enabled:
                if self.deferred_registration:
                    pending.append((result, record))
                else:
                    await self._register(record, [result])

            if notify:
                await self._notify(result)

        if pending:
            await self._register(
                [record for _, record in pending], [result for result, _ in pending]
            )

        stored = sum(1 for result in results if result.stored)
        log.info("Pipeline finished: %d of %d files stored", stored, len(results))
        return results

    async def run_and_merge(
        self,
        files: Sequence[ReceivedFile],
        existing_results: Sequence[Mapping[str, Any]],
        *,
        attachment_id: str | None = None,
        prefix: str | None = None,
    ) -> MergeOutcome:
        """Upload ``files`` and register them together with ``existing_results``.

        The combined list is submitted in one registrar call. Registrar errors
        propagate to the caller.
        """

        results: list[UploadResult] = []
        new_records: list[AttachmentRecord] = []
        for received in files:
            result, record = await self._store_file(
                received, prefix=prefix, attachment_id=attachment_id
            )
            results.append(result)
            if record is not None:
                new_records.append(record)

        if files and not new_records:
            raise StorageError(
                "No files could be uploaded to object storage",
                extra={"results": [result.model_dump(mode="json") for result in results]},
            )

        combined: list[Mapping[str, Any]] = [*existing_results, *new_records]
        if not combined:
            raise ValidationError("No files or existing results to register")

        try:
            response = await self.registrar.register(combined)
        except RegistrationError:
            self.metrics.record("registration_failures")
            raise
        self.metrics.record("registrations")

        for result in results:
            if result.stored:
                result.registrar_response = response
        return MergeOutcome(
            results=results, records=combined, registrar_response=response
        )

    async def run_job(
        self,
        job_id: str,
        files: Sequence[ReceivedFile],
        *,
        request_id: str | None = None,
        target: UploadTarget | None = None,
        prefix: str | None = None,
        notify: bool = False,
    ) -> None:
        """Background entrypoint; outcomes go to the job record and the logs only."""

        token = bind_request_id(request_id)
        try:
            with self.session_factory() as session:
                try:
                    mark_running(session=session, job_id=job_id)
                    results = await self.run(
                        files,
                        store=ChecklistStore(
                            session,
                            max_write_attempts=self.settings.store_max_write_attempts,
                        ),
                        target=target,
                        prefix=prefix,
                        notify=notify,
                    )
                    job = complete_job(session=session, job_id=job_id, results=results)
                except Exception as exc:
                    log.exception("Upload job %s failed", job_id)
                    self.metrics.record("jobs_failed")
                    try:
                        fail_job(session=session, job_id=job_id, error=str(exc))
                    except RelayError:
                        log.exception("Could not record failure of upload job %s", job_id)
                    return
                self.metrics.record(
                    "jobs_failed"
                    if job.status == UploadJobStatus.FAILED
                    else "jobs_completed"
                )
                log.info("Upload job %s finished with status %s", job_id, job.status)
        finally:
            discard(files)
            reset_request_id(token)

    async def _store_file(
        self,
        received: ReceivedFile,
        *,
        prefix: str | None,
        attachment_id: str | None,
    ) -> tuple[UploadResult, AttachmentRecord | None]:
        key = self.uploader.build_key(received.original_name, prefix)
        try:
            stored = await self.uploader.upload(
                received.path, key, content_type=received.mime_type
            )
        except StorageError as exc:
            self.metrics.record("storage_failures")
            log.error("Storage upload failed for %s: %s", received.original_name, exc)
            return UploadResult(original_name=received.original_name, error=exc.message), None
        finally:
            discard([received])

        self.metrics.record("files_stored")
        record = build_attachment_record(
            original_name=received.original_name,
            url=stored.url,
            size=received.size,
            mime_type=received.mime_type,
            settings=self.settings,
            attachment_id=attachment_id,
        )
        result = UploadResult(
            original_name=received.original_name,
            storage_key=stored.key,
            storage_url=stored.url,
        )
        return result, record

    def _record_document(
        self,
        store: ChecklistStore,
        target: UploadTarget,
        received: ReceivedFile,
        result: UploadResult,
    ) -> bool:
        document = DocumentRecord(
            name=received.original_name,
            storage_key=result.storage_key or "",
            url=result.storage_url or "",
            size=received.size,
            mime_type=received.mime_type,
        )
        try:
            store.append_document(target.group_id, target.item_id, document)
        except RelayError as exc:
            log.error(
                "Stored %s but could not record its document: %s",
                result.storage_key,
                exc,
            )
            result.error = f"Stored but not recorded: {exc.message}"
            return False
        self.metrics.record("documents_recorded")
        return True

    async def _register(
        self,
        records: AttachmentRecord | list[AttachmentRecord],
        results: Sequence[UploadResult],
    ) -> None:
        try:
            response = await self.registrar.register(records)
        except RegistrationError as exc:
            self.metrics.record("registration_failures")
            for result in results:
                result.registrar_error = exc.message
            return
        self.metrics.record("registrations")
        for result in results:
            result.registrar_response = response

    async def notify_stored(self, results: Sequence[UploadResult]) -> None:
        """Send the upload notification for every stored file in ``results``."""

        for result in results:
            if result.stored:
                await self._notify(result)

    async def _notify(self, result: UploadResult) -> None:
        body = (
            f'Your file "{result.original_name}" has been successfully uploaded. '
            f"You can access it at {result.storage_url}"
        )
        await self.notifier.notify(None, NOTIFICATION_SUBJECT, body)


__all__ = ["MergeOutcome", "UploadPipeline", "UploadTarget"]
