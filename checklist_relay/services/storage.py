"""Object storage uploader backed by an S3-compatible bucket."""

from __future__ import annotations

import logging
import re
import secrets
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import quote

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from starlette.concurrency import run_in_threadpool

from ..config import Settings
from ..utils.errors import StorageError

log = logging.getLogger("checklist_relay.storage")

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9._-]")


@dataclass(frozen=True)
class StoredObject:
    """Location of an object that finished uploading."""

    key: str
    url: str


def sanitise_filename(filename: str) -> str:
    """Return a key-safe version of the provided filename."""

    name = Path(filename or "").name
    cleaned = _UNSAFE_KEY_CHARS.sub("_", name)
    return cleaned or f"file-{secrets.token_hex(4)}"


def build_key(original_name: str, prefix: str) -> str:
    """Return ``<prefix>/<ms timestamp>-<random>_<name>`` for a new upload.

    The millisecond timestamp alone collides for concurrent uploads of the same
    filename; the random suffix separates them.
    """

    folder = prefix.strip().strip("/")
    stamp = f"{int(time.time() * 1000)}-{secrets.token_hex(3)}"
    name = sanitise_filename(original_name)
    return f"{folder}/{stamp}_{name}" if folder else f"{stamp}_{name}"


class ObjectStorageUploader:
    """Stream local files into a bucket and report their public URLs."""

    def __init__(
        self,
        *,
        bucket: str | None,
        region: str,
        default_prefix: str = "documents",
        endpoint_url: str | None = None,
        client: Any = None,
    ) -> None:
        self.bucket = bucket
        self.region = region
        self.default_prefix = default_prefix
        self.endpoint_url = endpoint_url.rstrip("/") if endpoint_url else None
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "ObjectStorageUploader":
        client = boto3.client(
            "s3",
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            region_name=settings.aws_region,
            endpoint_url=settings.s3_endpoint_url,
            config=Config(
                connect_timeout=settings.storage_connect_timeout_s,
                read_timeout=settings.storage_read_timeout_s,
                retries={"max_attempts": 1, "mode": "standard"},
            ),
        )
        return cls(
            bucket=settings.s3_bucket,
            region=settings.aws_region,
            default_prefix=settings.storage_prefix,
            endpoint_url=settings.s3_endpoint_url,
            client=client,
        )

    def build_key(self, original_name: str, prefix: str | None = None) -> str:
        return build_key(original_name, prefix if prefix is not None else self.default_prefix)

    def public_url(self, key: str) -> str:
        quoted = quote(key, safe="/")
        if self.endpoint_url:
            return f"{self.endpoint_url}/{self.bucket}/{quoted}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{quoted}"

    async def upload(
        self, path: Path, key: str, content_type: str | None = None
    ) -> StoredObject:
        """Stream ``path`` to the bucket under ``key``.

        ``upload_fileobj`` reads the file in parts, so memory use stays bounded
        regardless of file size.
        """

        if not self.bucket or self._client is None:
            raise StorageError("Object storage is not configured")

        extra_args = {"ContentType": content_type} if content_type else None
        log.info("Uploading %s to bucket %s as %s", path.name, self.bucket, key)
        try:
            await run_in_threadpool(self._upload_file, path, key, extra_args)
        except (BotoCoreError, ClientError, OSError) as exc:
            log.error("Upload of %s failed: %s", key, exc)
            raise StorageError(
                "Failed to upload file to object storage",
                extra={"key": key, "reason": str(exc)},
            ) from exc
        return StoredObject(key=key, url=self.public_url(key))

    async def delete(self, key: str) -> None:
        if not self.bucket or self._client is None:
            raise StorageError("Object storage is not configured")
        try:
            await run_in_threadpool(
                self._client.delete_object, Bucket=self.bucket, Key=key
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(
                "Failed to delete object", extra={"key": key, "reason": str(exc)}
            ) from exc
        log.info("Deleted %s from bucket %s", key, self.bucket)

    def _upload_file(
        self, path: Path, key: str, extra_args: dict[str, str] | None
    ) -> None:
        with path.open("rb") as handle:
            self._client.upload_fileobj(
                handle, self.bucket, key, ExtraArgs=extra_args
            )


__all__ = ["ObjectStorageUploader", "StoredObject", "build_key", "sanitise_filename"]
