"""HTTP tests for the API routers, with the job store and trigger faked out."""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from fastapi.testclient import TestClient

from footer_studio.config import get_settings
from footer_studio.main import app
from footer_studio.routers import diff as diff_router
from footer_studio.routers import jobs as jobs_router
from footer_studio.routers import tasks as tasks_router
from footer_studio.services.slicer import SlicerService

from ..conftest import job_record

USER = "3f1c2b7e-9a4d-4e21-8b55-0c6f1d2a9e10"

JOB_BODY = {
    "brandId": "brand-1",
    "source": "upload",
    "imageUrl": "https://res.cloudinary.com/demo/image/upload/footer.png",
    "imageWidth": 600,
    "imageHeight": 420,
}


@pytest.fixture
def client(monkeypatch, store, feed, trigger):
    monkeypatch.setattr(jobs_router, "get_job_store", lambda: store)
    monkeypatch.setattr(jobs_router, "get_change_feed", lambda: feed)
    monkeypatch.setattr(jobs_router, "get_pipeline_trigger", lambda: trigger)
    monkeypatch.setattr(tasks_router, "get_job_store", lambda: store)
    return TestClient(app)


def test_healthz(client):
    resp = client.get("/api/healthz")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_config_exposes_thresholds(client):
    body = client.get("/api/config").json()
    assert body["thresholds"]["height_diff"] == 10
    assert body["thresholds"]["color_diff"] == 30
    assert body["refinement"]["maxAttempts"] >= 1


def test_diff_endpoint(client):
    payload = {
        "reference": {"dimensions": {"width": 600, "height": 400}},
        "candidate": {"dimensions": {"width": 600, "height": 389}},
    }
    body = client.post("/api/diff", json=payload).json()
    assert body["differences"] == [
        "Footer is 11px SHORTER than reference (389px vs 400px) - increase padding/spacing"
    ]
    assert body["prompt"].startswith("1. Footer is 11px SHORTER")


def test_create_job_requires_user(client, store):
    resp = client.post("/api/jobs", json=JOB_BODY)
    assert resp.status_code == 401
    assert store.calls == []


def test_create_job_rejects_bad_user_header(client):
    resp = client.post("/api/jobs", json=JOB_BODY, headers={"X-User-Id": "not-a-uuid"})
    assert resp.status_code == 400


def test_create_job(client, store, trigger):
    resp = client.post("/api/jobs", json=JOB_BODY, headers={"X-User-Id": USER})
    assert resp.status_code == 202
    job_id = resp.json()["jobId"]
    assert store.records[job_id]["status"] == "processing"
    assert trigger.invoked == [job_id]


def test_create_job_store_failure(client, store, trigger):
    store.fail_insert = True
    resp = client.post("/api/jobs", json=JOB_BODY, headers={"X-User-Id": USER})
    assert resp.status_code == 503
    assert resp.json()["detail"] == "insert failed"
    assert trigger.invoked == []


def test_get_job(client, store):
    store.records["job-a"] = job_record("job-a", processing_step="slicing_footer", processing_percent=15)
    body = client.get("/api/jobs/job-a").json()
    assert body["processing_step"] == "slicing_footer"
    assert body["processing_percent"] == 15


def test_get_missing_job(client):
    assert client.get("/api/jobs/nope").status_code == 404


def test_complete_job(client, store):
    store.records["job-a"] = job_record("job-a", status="pending_review")
    resp = client.post("/api/jobs/job-a/complete")
    assert resp.status_code == 200
    assert store.records["job-a"]["status"] == "completed"


def test_events_stream_ends_for_finished_job(client, store):
    store.records["job-a"] = job_record("job-a", status="pending_review", processing_percent=100)
    resp = client.get("/api/jobs/job-a/events")
    assert resp.status_code == 200
    assert resp.text.startswith("event: job\ndata: ")
    assert '"pending_review"' in resp.text


def test_task_requires_job_id(client):
    assert client.post("/api/tasks/process", json={}).status_code == 400


def test_task_unknown_job(client):
    assert client.post("/api/tasks/process", json={"jobId": "nope"}).status_code == 404


def test_task_rejects_non_cloudinary_image(client, store):
    store.records["job-a"] = job_record("job-a", image_url="https://example.com/f.png")
    body = client.post("/api/tasks/process", json={"jobId": "job-a"}).json()
    assert body["ok"] is False
    assert store.records["job-a"]["status"] == "failed"


def test_refine_unreachable_reference_image(client, monkeypatch):
    monkeypatch.setattr(diff_router, "VisionExtractionService", MagicMock())
    monkeypatch.setattr(
        SlicerService, "_download", AsyncMock(side_effect=httpx.ConnectError("connection refused"))
    )
    resp = client.post(
        "/api/refine",
        json={"referenceImageUrl": "https://res.cloudinary.com/x/ref.png", "html": "<table></table>"},
    )
    assert resp.status_code == 503
    assert resp.json()["detail"] == "Failed to fetch image"


def test_events_stream_subscribes_before_reading(client, store, feed):
    store.records["job-a"] = job_record("job-a", status="completed", processing_percent=100)
    original_get = store.get_job
    subscribed_at_read = []

    async def get_job(job_id):
        subscribed_at_read.append(job_id in feed.handlers)
        return await original_get(job_id)

    store.get_job = get_job
    client.get("/api/jobs/job-a/events")
    assert subscribed_at_read == [True]


def test_events_stream_recovers_change_missed_by_feed(client, store, monkeypatch):
    monkeypatch.setattr(get_settings(), "EVENTS_POLL_INTERVAL_S", 0.01)
    store.records["job-a"] = job_record("job-a", processing_step="slicing_footer", processing_percent=15)
    original_get = store.get_job
    reads = []

    async def get_job(job_id):
        reads.append(job_id)
        if len(reads) == 3:
            # finished without a feed event reaching the stream
            store.records[job_id].update(
                {"status": "pending_review", "processing_step": "complete", "processing_percent": 100}
            )
        return await original_get(job_id)

    store.get_job = get_job
    resp = client.get("/api/jobs/job-a/events")

    assert resp.status_code == 200
    assert ": keepalive" in resp.text
    events = [line for line in resp.text.splitlines() if line.startswith("data: ")]
    assert len(events) == 2
    assert '"slicing_footer"' in events[0]
    assert '"pending_review"' in events[1]
