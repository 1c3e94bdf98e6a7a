"""Receipt of multipart uploads into request-owned temporary files."""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Sequence

from fastapi import UploadFile

from ..config import Settings
from ..observability import metrics_registry
from ..utils.errors import PayloadTooLargeError, ValidationError

log = logging.getLogger("checklist_relay.files")

CHUNK_SIZE = 1024 * 1024  # 1MB
DEFAULT_MIME_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class ReceivedFile:
    """An uploaded file spooled to disk, plus the metadata the client sent."""

    path: Path
    original_name: str
    size: int
    mime_type: str


def _incoming_dir(settings: Settings) -> Path:
    path = settings.upload_dir / "_incoming"
    path.mkdir(parents=True, exist_ok=True)
    return path


async def receive_upload(upload: UploadFile, settings: Settings) -> ReceivedFile:
    """Stream ``upload`` into a temporary file and return its description."""

    original_name = Path(upload.filename or "").name
    if not original_name:
        await upload.close()
        raise ValidationError("No file uploaded")

    temp_path = _incoming_dir(settings) / f"{secrets.token_hex(16)}.tmp"
    total_bytes = 0

    try:
        with temp_path.open("wb") as buffer:
            while True:
                chunk = await upload.read(CHUNK_SIZE)
                if not chunk:
                    break
                total_bytes += len(chunk)
                if total_bytes > settings.max_upload_size:
                    raise PayloadTooLargeError(
                        "File exceeds maximum allowed size",
                        extra={"filename": original_name},
                    )
                buffer.write(chunk)
    except Exception:
        temp_path.unlink(missing_ok=True)
        raise
    finally:
        await upload.close()

    metrics_registry.record("files_received")
    log.info("Received %s (%d bytes)", original_name, total_bytes)
    return ReceivedFile(
        path=temp_path,
        original_name=original_name,
        size=total_bytes,
        mime_type=(upload.content_type or DEFAULT_MIME_TYPE).lower(),
    )


async def receive_uploads(
    uploads: Sequence[UploadFile], settings: Settings
) -> list[ReceivedFile]:
    """Receive every upload in order; nothing is left on disk if one fails."""

    if not uploads:
        raise ValidationError("No files uploaded")
    if len(uploads) > settings.max_files_per_request:
        raise ValidationError(
            f"At most {settings.max_files_per_request} files may be uploaded at once",
            extra={"received": len(uploads)},
        )

    received: list[ReceivedFile] = []
    try:
        for upload in uploads:
            received.append(await receive_upload(upload, settings))
    except Exception:
        discard(received)
        raise
    return received


def discard(files: Iterable[ReceivedFile]) -> None:
    """Remove temporary files, ignoring ones that are already gone."""

    for received in files:
        try:
            received.path.unlink(missing_ok=True)
        except OSError as exc:
            log.warning("Could not remove temporary file %s: %s", received.path, exc)


__all__ = [
    "CHUNK_SIZE",
    "ReceivedFile",
    "discard",
    "receive_upload",
    "receive_uploads",
]
