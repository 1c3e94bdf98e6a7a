"""Unit tests for the object storage uploader."""

from __future__ import annotations

import asyncio
import re

import pytest
from botocore.exceptions import ClientError

from checklist_relay.config import Settings
from checklist_relay.services.storage import (
    ObjectStorageUploader,
    build_key,
    sanitise_filename,
)
from checklist_relay.utils.errors import StorageError


class _S3Client:
    def __init__(self, error=None):
        self.error = error
        self.uploads = []
        self.deleted = []

    def upload_fileobj(self, handle, bucket, key, ExtraArgs=None):
        if self.error is not None:
            raise self.error
        chunks = []
        while True:
            chunk = handle.read(3)
            if not chunk:
                break
            chunks.append(chunk)
        self.uploads.append((bucket, key, b"".join(chunks), ExtraArgs))

    def delete_object(self, Bucket, Key):
        self.deleted.append((Bucket, Key))


def _uploader(client, **kwargs) -> ObjectStorageUploader:
    return ObjectStorageUploader(
        bucket="docs-bucket", region="ap-south-1", client=client, **kwargs
    )


def test_key_has_prefix_timestamp_and_sanitised_name():
    key = build_key("../My Report (final).pdf", "documents")

    assert re.fullmatch(r"documents/\d{13}-[0-9a-f]{6}_My_Report__final_\.pdf", key)


def test_keys_for_the_same_name_do_not_collide():
    keys = {build_key("same.txt", "documents") for _ in range(20)}
    assert len(keys) == 20


def test_empty_prefix_produces_bare_key():
    assert re.fullmatch(r"\d{13}-[0-9a-f]{6}_a\.txt", build_key("a.txt", "/"))


def test_sanitise_filename_never_returns_empty():
    assert sanitise_filename("").startswith("file-")
    assert sanitise_filename("dir/sub/ok.txt") == "ok.txt"


def test_public_url_uses_virtual_host_style():
    uploader = _uploader(_S3Client())
    assert (
        uploader.public_url("documents/1_a b.pdf")
        == "https://docs-bucket.s3.ap-south-1.amazonaws.com/documents/1_a%20b.pdf"
    )


def test_public_url_uses_custom_endpoint():
    uploader = _uploader(_S3Client(), endpoint_url="http://minio:9000/")
    assert uploader.public_url("documents/x.txt") == "http://minio:9000/docs-bucket/documents/x.txt"


def test_upload_streams_file_and_returns_location(tmp_path):
    path = tmp_path / "incoming.tmp"
    path.write_bytes(b"hello world")
    client = _S3Client()
    uploader = _uploader(client)

    stored = asyncio.run(uploader.upload(path, "documents/k.txt", content_type="text/plain"))

    assert stored.key == "documents/k.txt"
    assert stored.url == "https://docs-bucket.s3.ap-south-1.amazonaws.com/documents/k.txt"
    assert client.uploads == [
        ("docs-bucket", "documents/k.txt", b"hello world", {"ContentType": "text/plain"})
    ]


def test_client_error_becomes_storage_error(tmp_path):
    path = tmp_path / "incoming.tmp"
    path.write_bytes(b"x")
    error = ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject")
    uploader = _uploader(_S3Client(error=error))

    with pytest.raises(StorageError) as info:
        asyncio.run(uploader.upload(path, "documents/k.txt"))

    assert info.value.extra["key"] == "documents/k.txt"
    assert path.exists()


def test_missing_local_file_becomes_storage_error(tmp_path):
    uploader = _uploader(_S3Client())

    with pytest.raises(StorageError):
        asyncio.run(uploader.upload(tmp_path / "gone.tmp", "documents/k.txt"))


def test_unconfigured_bucket_fails_fast(tmp_path):
    uploader = ObjectStorageUploader(bucket=None, region="us-east-1", client=_S3Client())

    with pytest.raises(StorageError, match="not configured"):
        asyncio.run(uploader.upload(tmp_path / "a.tmp", "documents/a"))


def test_delete_removes_object():
    client = _S3Client()
    asyncio.run(_uploader(client).delete("documents/k.txt"))
    assert client.deleted == [("docs-bucket", "documents/k.txt")]


def test_from_settings_uses_configured_bucket_and_prefix(monkeypatch):
    monkeypatch.setenv("AWS_S3_BUCKET", "configured-bucket")
    monkeypatch.setenv("AWS_REGION", "eu-central-1")
    monkeypatch.setenv("STORAGE_PREFIX", "/uploads/")

    uploader = ObjectStorageUploader.from_settings(Settings())

    assert uploader.bucket == "configured-bucket"
    assert uploader.default_prefix == "uploads"
    assert uploader.build_key("a.txt").startswith("uploads/")
    assert uploader.public_url("k").startswith(
        "https://configured-bucket.s3.eu-central-1.amazonaws.com/"
    )


def test_from_settings_applies_timeouts_and_single_attempt(monkeypatch):
    monkeypatch.setenv("STORAGE_CONNECT_TIMEOUT_S", "4")
    monkeypatch.setenv("STORAGE_READ_TIMEOUT_S", "17.5")
    settings = Settings()

    uploader = ObjectStorageUploader.from_settings(settings)
    client_config = uploader._client.meta.config

    assert client_config.connect_timeout == settings.storage_connect_timeout_s == 4.0
    assert client_config.read_timeout == settings.storage_read_timeout_s == 17.5
    assert client_config.retries["max_attempts"] == 1
