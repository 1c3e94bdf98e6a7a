"""Tests covering the multi-file upload endpoint."""

from __future__ import annotations

import io
import json

from fastapi.testclient import TestClient


def _files(*names: str) -> list[tuple[str, tuple[str, io.BytesIO, str]]]:
    return [
        ("files", (name, io.BytesIO(f"content of {name}".encode()), "text/plain"))
        for name in names
    ]


def test_batch_continues_past_a_failed_file(client: TestClient, fakes, incoming_files) -> None:
    """A storage failure on file K leaves an error at position K only."""

    fakes.uploader.fail_names.add("b.txt")

    response = client.post(
        "/api/upload?wait=true", files=_files("a.txt", "b.txt", "c.txt", "d.txt")
    )
    assert response.status_code == 200
    results = response.json()["results"]

    assert [result["original_name"] for result in results] == [
        "a.txt",
        "b.txt",
        "c.txt",
        "d.txt",
    ]
    errors = [index for index, result in enumerate(results) if result["error"]]
    assert errors == [1]
    assert results[1]["storage_url"] is None
    for index in (0, 2, 3):
        assert results[index]["storage_url"].startswith("https://")
        assert results[index]["registrar_response"] == {"status": "ok"}

    assert len(fakes.uploader.calls) == 4
    assert len(fakes.registrar.envelopes) == 3
    assert incoming_files() == []


def test_batch_uses_folder_path_as_key_prefix(client: TestClient, fakes) -> None:
    response = client.post(
        "/api/upload?wait=true",
        files=_files("a.txt"),
        data={"folderPath": "/claims/2024/"},
    )
    assert response.status_code == 200
    [call] = fakes.uploader.calls
    assert call.key.startswith("claims/2024/")
    assert call.key.endswith("_a.txt")


def test_background_batch_records_results_on_job(client: TestClient, fakes) -> None:
    fakes.uploader.fail_names.add("b.txt")

    response = client.post("/api/upload", files=_files("a.txt", "b.txt"))
    assert response.status_code == 202
    payload = response.json()
    assert payload["file_count"] == 2

    job = client.get(f"/api/uploads/{payload['job_id']}").json()
    assert job["status"] == "completed"
    assert job["kind"] == "batch"
    assert [bool(result["error"]) for result in job["results"]] == [False, True]


def test_deferred_registration_sends_one_batch(
    client: TestClient, fakes, pipeline, monkeypatch
) -> None:
    monkeypatch.setattr(
        pipeline,
        "settings",
        pipeline.settings.model_copy(update={"registrar_mode": "deferred"}),
    )
    fakes.uploader.fail_names.add("b.txt")

    response = client.post(
        "/api/upload?wait=true", files=_files("a.txt", "b.txt", "c.txt")
    )
    results = response.json()["results"]

    [envelope] = fakes.registrar.envelopes
    assert envelope["multipletable"] is True
    records = json.loads(envelope["jsondata"])
    assert [record["FileName"] for record in records] == ["a.txt", "c.txt"]
    assert results[0]["registrar_response"] == {"status": "ok"}
    assert results[1]["registrar_response"] is None


def test_batch_without_files_is_rejected(client: TestClient) -> None:
    response = client.post("/api/upload", data={"folderPath": "x"})
    assert response.status_code == 400
    assert response.json()["error"] == "No files uploaded"


def test_batch_rejects_more_than_ten_files(client: TestClient, fakes, incoming_files) -> None:
    names = [f"f{index}.txt" for index in range(11)]

    response = client.post("/api/upload", files=_files(*names))
    assert response.status_code == 400
    assert response.json()["details"] == {"received": 11}
    assert fakes.uploader.calls == []
    assert incoming_files() == []


def test_oversized_file_discards_the_whole_batch(
    client: TestClient, fakes, incoming_files
) -> None:
    files = _files("small.txt") + [
        ("files", ("big.bin", io.BytesIO(b"x" * 5000), "application/octet-stream"))
    ]

    response = client.post("/api/upload", files=files)
    assert response.status_code == 413
    assert fakes.uploader.calls == []
    assert incoming_files() == []
