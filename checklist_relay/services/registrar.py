"""Client for the third-party attachment registrar."""

from __future__ import annotations

import json
import logging
import mimetypes
import secrets
import time
from pathlib import PurePath
from typing import Any, Dict, List, Mapping, Sequence

import requests
from starlette.concurrency import run_in_threadpool

from ..config import Settings
from ..utils.errors import RegistrationError

log = logging.getLogger("checklist_relay.registrar")

DISPLAY_NAME_LIMIT = 20
_ERROR_KEYS = ("error", "Error", "errors", "Errors", "errorMessage", "ErrorMessage")
_NESTED_KEYS = ("data", "Data", "result", "Result")

AttachmentRecord = Dict[str, str]


def generate_attachment_id() -> str:
    """Return a numeric attachment id: milliseconds since epoch plus 3 random digits."""

    return f"{int(time.time() * 1000)}{secrets.randbelow(1000):03d}"


def truncate_display_name(filename: str, limit: int = DISPLAY_NAME_LIMIT) -> str:
    """Cap the filename stem at ``limit`` characters, keeping the extension."""

    path = PurePath(filename or "")
    suffix = path.suffix
    stem = path.name[: -len(suffix)] if suffix else path.name
    return f"{stem[:limit]}{suffix}"


def file_extension(filename: str) -> str:
    return PurePath(filename or "").suffix.lstrip(".").lower()


def top_level_type(mime_type: str | None, filename: str = "") -> str:
    """Return the MIME top-level type (``image`` for ``image/png``)."""

    candidate = mime_type or mimetypes.guess_type(filename)[0] or ""
    major = candidate.split("/", 1)[0].strip().lower()
    return major or "application"


def build_attachment_record(
    *,
    original_name: str,
    url: str,
    size: int,
    mime_type: str | None,
    settings: Settings,
    attachment_id: str | None = None,
) -> AttachmentRecord:
    """Map an uploaded file onto the registrar's attachment shape."""

    return {
        "AttachmentID": attachment_id or generate_attachment_id(),
        "DisplayName": truncate_display_name(original_name),
        "FileName": original_name,
        "FileURL": url,
        "FileSize": str(size),
        "FileType": top_level_type(mime_type, original_name),
        "FileExtension": file_extension(original_name),
        "SortOrder": settings.attachment_sort_order,
        "Status": settings.attachment_status,
        "ChangedBy": settings.attachment_changed_by,
    }


def find_logical_error(payload: Any) -> Any:
    """Return the error value embedded in a registrar reply, if any.

    The registrar answers HTTP 200 even when it rejected the data, so the body
    has to be inspected as well as the status code.
    """

    if isinstance(payload, list):
        for entry in payload:
            value = find_logical_error(entry)
            if value:
                return value
        return None
    if not isinstance(payload, Mapping):
        return None
    for key in _ERROR_KEYS:
        value = payload.get(key)
        if value:
            return value
    for key in _NESTED_KEYS:
        nested = payload.get(key)
        if isinstance(nested, (Mapping, list)):
            value = find_logical_error(nested)
            if value:
                return value
    return None


class AttachmentRegistrar:
    """Submit attachment records to the registrar's action endpoint."""

    def __init__(
        self,
        *,
        url: str | None,
        token: str | None,
        action_name: str,
        timeout_s: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        self.url = url
        self.token = token
        self.action_name = action_name
        self.timeout_s = timeout_s
        self._session = session or requests.Session()

    @classmethod
    def from_settings(cls, settings: Settings) -> "AttachmentRegistrar":
        return cls(
            url=settings.registrar_url,
            token=settings.registrar_token,
            action_name=settings.registrar_action_name,
            timeout_s=settings.registrar_timeout_s,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    def build_envelope(
        self, records: Sequence[AttachmentRecord]
    ) -> Dict[str, Any]:
        return {
            "actionname": self.action_name,
            "jsondata": json.dumps(list(records), ensure_ascii=False),
            "multipletable": len(records) > 1,
        }

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def register(
        self, records: AttachmentRecord | Sequence[AttachmentRecord]
    ) -> Any:
        """Send one record or a list of records and return the decoded reply."""

        batch: List[AttachmentRecord] = (
            [records] if isinstance(records, Mapping) else list(records)
        )
        if not batch:
            raise RegistrationError("No attachment records to register")
        if not self.url:
            raise RegistrationError("Attachment registrar is not configured")

        envelope = self.build_envelope(batch)
        log.debug(
            "Registrar request prepared",
            extra={
                "registrar": {
                    "url": self.url,
                    "action": self.action_name,
                    "records": len(batch),
                    "authorization": "***REDACTED***" if self.token else None,
                }
            },
        )
        return await run_in_threadpool(self._post, envelope)

    def _post(self, envelope: Mapping[str, Any]) -> Any:
        try:
            response = self._session.post(
                self.url,
                json=envelope,
                headers=self._headers(),
                timeout=self.timeout_s,
            )
        except requests.RequestException as exc:
            log.error("Registrar request failed: %s", exc)
            raise RegistrationError(
                "Attachment registrar request failed", extra={"reason": str(exc)}
            ) from exc

        if response.status_code >= 400:
            log.error(
                "Registrar returned HTTP %s: %s",
                response.status_code,
                response.text[:500],
            )
            raise RegistrationError(
                f"Attachment registrar returned HTTP {response.status_code}",
                extra={"status_code": response.status_code, "body": response.text[:2000]},
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise RegistrationError(
                "Attachment registrar returned a non-JSON response",
                extra={"body": response.text[:2000]},
            ) from exc

        error = find_logical_error(payload)
        if error:
            log.error("Registrar rejected attachment data: %s", error)
            raise RegistrationError(
                "Attachment registrar reported an error",
                extra={"registrar_error": error, "response": payload},
            )

        log.info("Registrar accepted %s", envelope.get("actionname"))
        return payload


__all__ = [
    "AttachmentRecord",
    "AttachmentRegistrar",
    "DISPLAY_NAME_LIMIT",
    "build_attachment_record",
    "file_extension",
    "find_logical_error",
    "generate_attachment_id",
    "top_level_type",
    "truncate_display_name",
]
