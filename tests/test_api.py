import asyncio
import json
import threading

import pytest
from fastapi.testclient import TestClient

from toonmu_backend.app.config import Settings
from toonmu_backend.app.models import JobStatus
from toonmu_backend.app.storage import LocalBlobStore
from toonmu_backend.main import create_app

from .fakes import DATA_URL, PNG, FakeProvider, RecordingJobStore

VALID = {"imageDataUrl": DATA_URL, "stylePrompt": "anime cel shading", "userId": "user-1"}


class GatedOrchestrator:
    """Holds every job until the test opens the gate."""

    providers = []

    def __init__(self, jobs):
        self.jobs = jobs
        self.gate = threading.Event()
        self.calls = []

    async def run(self, job_id, image_data_url, style_prompt, user_id):
        self.calls.append((job_id, image_data_url, style_prompt, user_id))
        while not self.gate.is_set():
            await asyncio.sleep(0.01)
        self.jobs.mark_completed(job_id, f"https://cdn.example.test/{user_id}/{job_id}.png")


@pytest.fixture
def settings(tmp_path):
    return Settings(static_dir=str(tmp_path), database_url="sqlite://", shutdown_grace_seconds=5)


@pytest.fixture
def local_blobs(tmp_path):
    return LocalBlobStore(str(tmp_path / "assets"))


def test_root_liveness(settings, job_store, local_blobs):
    app = create_app(settings, jobs=job_store, blobs=local_blobs, providers=[])
    with TestClient(app) as client:
        r = client.get("/")
    assert r.status_code == 200
    assert r.text == "Toonmu Backend is running!"


def test_submit_returns_id_that_polls_pending(settings, job_store, local_blobs):
    orchestrator = GatedOrchestrator(job_store)
    app = create_app(settings, jobs=job_store, blobs=local_blobs, orchestrator=orchestrator)

    with TestClient(app) as client:
        r = client.post("/generate-toon", json=VALID)
        assert r.status_code == 202
        creation_id = r.json()["creationId"]

        status = client.get(f"/creation-status/{creation_id}")
        assert status.status_code == 200
        record = status.json()
        assert record["id"] == creation_id
        assert record["status"] == "pending"
        assert record["user_id"] == "user-1"
        assert record["style_name"] == "anime cel shading"
        assert record["image_url"] is None
        assert record["error_message"] is None

        orchestrator.gate.set()

    assert orchestrator.calls == [(creation_id, DATA_URL, "anime cel shading", "user-1")]
    assert job_store.get(creation_id).status == JobStatus.COMPLETED


def test_submit_runs_generation_in_background(settings, job_store, local_blobs):
    primary = FakeProvider("openai", error="OpenAI: no image result")
    fallback = FakeProvider("fal")
    app = create_app(settings, jobs=job_store, blobs=local_blobs, providers=[primary, fallback])

    with TestClient(app) as client:
        creation_id = client.post("/generate-toon", json=VALID).json()["creationId"]
    # Leaving the client runs shutdown, which drains background jobs.

    with TestClient(app) as client:
        record = client.get(f"/creation-status/{creation_id}").json()
        assert record["status"] == "completed"
        assert record["image_url"] == f"/assets/user-1/{creation_id}.png"
        assert record["error_message"] is None

        asset = client.get(record["image_url"])
        assert asset.status_code == 200
        assert asset.content == PNG


def test_failed_generation_is_visible_only_through_poll(settings, job_store, local_blobs):
    providers = [FakeProvider("openai", error="OpenAI API request failed"), FakeProvider("fal", error="FAL: no image url")]
    app = create_app(settings, jobs=job_store, blobs=local_blobs, providers=providers)

    with TestClient(app) as client:
        r = client.post("/generate-toon", json=VALID)
        assert r.status_code == 202
        creation_id = r.json()["creationId"]

    record = job_store.get(creation_id)
    assert record.status == JobStatus.FAILED
    assert record.error_message == "FAL: no image url"
    assert record.image_url is None


@pytest.mark.parametrize("missing", ["imageDataUrl", "stylePrompt", "userId"])
def test_missing_field_is_rejected_without_insert(settings, job_store, local_blobs, missing):
    jobs = RecordingJobStore(job_store)
    orchestrator = GatedOrchestrator(job_store)
    app = create_app(settings, jobs=jobs, blobs=local_blobs, orchestrator=orchestrator)
    body = {k: v for k, v in VALID.items() if k != missing}

    with TestClient(app) as client:
        r = client.post("/generate-toon", json=body)

    assert r.status_code == 400
    assert r.json() == {"error": "Missing imageDataUrl, stylePrompt, or userId"}
    assert jobs.creates == 0
    assert orchestrator.calls == []


@pytest.mark.parametrize("body", [{**VALID, "userId": ""}, {**VALID, "stylePrompt": 7}, ["not", "an", "object"]])
def test_empty_or_malformed_fields_are_rejected(settings, job_store, local_blobs, body):
    jobs = RecordingJobStore(job_store)
    app = create_app(settings, jobs=jobs, blobs=local_blobs, providers=[])

    with TestClient(app) as client:
        r = client.post("/generate-toon", json=body)

    assert r.status_code == 400
    assert jobs.creates == 0


def test_record_creation_failure_returns_500(settings, job_store, local_blobs):
    jobs = RecordingJobStore(job_store, fail_create=True)
    orchestrator = GatedOrchestrator(job_store)
    app = create_app(settings, jobs=jobs, blobs=local_blobs, orchestrator=orchestrator)

    with TestClient(app) as client:
        r = client.post("/generate-toon", json=VALID)

    assert r.status_code == 500
    assert r.json() == {"error": "Could not create generation record."}
    assert "creationId" not in r.json()
    assert orchestrator.calls == []


def test_unknown_id_is_not_found(settings, job_store, local_blobs):
    app = create_app(settings, jobs=job_store, blobs=local_blobs, providers=[])
    with TestClient(app) as client:
        r = client.get("/creation-status/00000000-0000-0000-0000-000000000000")
    assert r.status_code == 404
    assert r.json() == {"error": "Creation not found."}


def test_read_failure_polls_as_not_found(settings, job_store, local_blobs):
    jobs = RecordingJobStore(job_store, fail_get=True)
    app = create_app(settings, jobs=jobs, blobs=local_blobs, providers=[])
    with TestClient(app) as client:
        r = client.get("/creation-status/anything")
    assert r.status_code == 404


def test_polled_records_obey_field_exclusion(settings, job_store, local_blobs):
    app = create_app(settings, jobs=job_store, blobs=local_blobs, providers=[])
    pending = job_store.create("u", "s")
    done = job_store.create("u", "s")
    failed = job_store.create("u", "s")
    job_store.mark_completed(done, "https://cdn/u/done.png")
    job_store.mark_failed(failed, "boom")

    with TestClient(app) as client:
        for job_id in (pending, done, failed):
            record = client.get(f"/creation-status/{job_id}").json()
            assert record["status"] in {"pending", "completed", "failed"}
            assert not (record["image_url"] and record["error_message"])
            if record["status"] == "completed":
                assert record["image_url"]
            if record["status"] == "failed":
                assert record["error_message"]


def test_oversized_body_is_rejected(tmp_path, job_store, local_blobs):
    settings = Settings(static_dir=str(tmp_path), max_body_bytes=1024)
    jobs = RecordingJobStore(job_store)
    app = create_app(settings, jobs=jobs, blobs=local_blobs, providers=[])
    body = {**VALID, "imageDataUrl": "data:image/png;base64," + "A" * 4096}

    with TestClient(app) as client:
        r = client.post("/generate-toon", json=body)

    assert r.status_code == 413
    assert jobs.creates == 0


def test_oversized_chunked_body_is_rejected(tmp_path, job_store, local_blobs):
    settings = Settings(static_dir=str(tmp_path), max_body_bytes=1024)
    jobs = RecordingJobStore(job_store)
    orchestrator = GatedOrchestrator(job_store)
    app = create_app(settings, jobs=jobs, blobs=local_blobs, orchestrator=orchestrator)
    payload = json.dumps({**VALID, "imageDataUrl": "data:image/png;base64," + "A" * 8192}).encode()

    def chunks():
        for i in range(0, len(payload), 512):
            yield payload[i : i + 512]

    with TestClient(app) as client:
        r = client.post(
            "/generate-toon", content=chunks(), headers={"Content-Type": "application/json"}
        )

    assert r.status_code == 413
    assert jobs.creates == 0
    assert orchestrator.calls == []


def test_chunked_body_under_ceiling_is_accepted(tmp_path, job_store, local_blobs):
    settings = Settings(static_dir=str(tmp_path), max_body_bytes=4096)
    orchestrator = GatedOrchestrator(job_store)
    orchestrator.gate.set()
    app = create_app(settings, jobs=job_store, blobs=local_blobs, orchestrator=orchestrator)
    payload = json.dumps(VALID).encode()

    def chunks():
        yield payload[:10]
        yield payload[10:]

    with TestClient(app) as client:
        r = client.post(
            "/generate-toon", content=chunks(), headers={"Content-Type": "application/json"}
        )

    assert r.status_code == 202
    assert job_store.get(r.json()["creationId"]) is not None
