"""Test configuration for the checklist relay."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Generator

PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from checklist_relay.config import get_settings, reset_settings_cache  # noqa: E402
from checklist_relay.database import reset_database_state  # noqa: E402
from checklist_relay.observability import metrics_registry  # noqa: E402
from checklist_relay.services.notifications import NotificationSender  # noqa: E402
from checklist_relay.services.pipeline import UploadPipeline  # noqa: E402
from checklist_relay.services.registrar import AttachmentRegistrar  # noqa: E402
from checklist_relay.services.storage import (  # noqa: E402
    ObjectStorageUploader,
    StoredObject,
)
from checklist_relay.utils.errors import RegistrationError, StorageError  # noqa: E402

BUCKET = "relay-test-bucket"
REGISTRAR_URL = "https://registrar.test/api/action"


@dataclass
class UploadCall:
    key: str
    content_type: str | None
    body: bytes
    temp_existed: bool


class FakeUploader(ObjectStorageUploader):
    """Uploader that keeps objects in memory and can be told to fail."""

    def __init__(self) -> None:
        super().__init__(bucket=BUCKET, region="eu-west-1", default_prefix="documents")
        self.calls: list[UploadCall] = []
        self.objects: dict[str, bytes] = {}
        self.fail_names: set[str] = set()

    async def upload(self, path, key, content_type=None):
        existed = path.exists()
        body = path.read_bytes() if existed else b""
        self.calls.append(UploadCall(key, content_type, body, existed))
        if any(key.endswith(f"_{name}") for name in self.fail_names):
            raise StorageError("Failed to upload file to object storage", extra={"key": key})
        self.objects[key] = body
        return StoredObject(key=key, url=self.public_url(key))


class FakeRegistrar(AttachmentRegistrar):
    """Registrar whose HTTP call is replaced by a scripted reply."""

    def __init__(self) -> None:
        super().__init__(url=REGISTRAR_URL, token="test-token", action_name="SaveAttachment")
        self.envelopes: list[dict[str, Any]] = []
        self.reply: Any = {"status": "ok"}
        self.fail_with: RegistrationError | None = None

    def _post(self, envelope):
        self.envelopes.append(dict(envelope))
        if self.fail_with is not None:
            raise self.fail_with
        return self.reply


class FakeNotifier(NotificationSender):
    def __init__(self) -> None:
        super().__init__(host=None)
        self.sent: list[tuple[str | None, str, str]] = []

    async def notify(self, recipient, subject, body):
        self.sent.append((recipient, subject, body))


@pytest.fixture(autouse=True)
def _isolate_environment(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> Generator[None, None, None]:
    """Provide isolated configuration for each test."""

    db_path = tmp_path / "test.db"
    upload_dir = tmp_path / "uploads"
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{db_path}")
    monkeypatch.setenv("UPLOAD_DIR", str(upload_dir))
    monkeypatch.setenv("MAX_UPLOAD_SIZE", str(4096))
    monkeypatch.setenv("AWS_S3_BUCKET", BUCKET)
    for name in (
        "UPLOAD_RESPONSE_MODE",
        "REGISTRAR_MODE",
        "REGISTRAR_URL",
        "REGISTRAR_TOKEN",
        "SMTP_HOST",
        "NOTIFY_EMAIL_TO",
        "MAX_FILES_PER_REQUEST",
    ):
        monkeypatch.delenv(name, raising=False)
    reset_settings_cache()
    reset_database_state()
    metrics_registry.reset()
    yield
    reset_settings_cache()
    reset_database_state()
    metrics_registry.reset()


@pytest.fixture()
def fakes() -> SimpleNamespace:
    return SimpleNamespace(
        uploader=FakeUploader(),
        registrar=FakeRegistrar(),
        notifier=FakeNotifier(),
    )


@pytest.fixture()
def pipeline(fakes: SimpleNamespace) -> UploadPipeline:
    return UploadPipeline(
        uploader=fakes.uploader,
        registrar=fakes.registrar,
        notifier=fakes.notifier,
        settings=get_settings(),
    )


@pytest.fixture()
def client(pipeline: UploadPipeline) -> Generator[TestClient, None, None]:
    """Return a test client whose pipeline talks to in-memory fakes."""

    from checklist_relay.dependencies import get_pipeline
    from checklist_relay.main import app

    app.dependency_overrides[get_pipeline] = lambda: pipeline
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.pop(get_pipeline, None)


@pytest.fixture()
def incoming_files(tmp_path: Path):
    """Return a callable listing temporary files still waiting in the upload dir."""

    def _list() -> list[Path]:
        incoming = tmp_path / "uploads" / "_incoming"
        return sorted(incoming.glob("*.tmp")) if incoming.exists() else []

    return _list
