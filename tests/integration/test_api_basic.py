from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from compositor.core.settings import PATHS
from compositor.db.base import Base
from compositor.db.session import engine
from compositor.main import app
from compositor.schemas.job import JobFailure
from compositor.services.repository import SqlJobRepository

Base.metadata.create_all(bind=engine)


@pytest.fixture
def dispatched(monkeypatch) -> list[str]:
    calls: list[str] = []
    monkeypatch.setattr("compositor.api.routes.enqueue_job", calls.append)
    return calls


@pytest.fixture
def client(dispatched) -> TestClient:
    with TestClient(app) as test_client:
        yield test_client


def _submission(**overrides) -> dict[str, object]:
    payload: dict[str, object] = {
        "primary_asset_ref": "https://cdn.example.com/ugc.mp4",
        "showcase_asset_ref1": "https://cdn.example.com/show1.mp4",
    }
    payload.update(overrides)
    return payload


def test_health(client: TestClient) -> None:
    resp = client.get("/api/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["version"] == "0.1.0"
    assert "ffmpeg_available" in body


def test_config_roundtrip(client: TestClient) -> None:
    backup = PATHS.config_path.read_text(encoding="utf-8") if PATHS.config_path.exists() else None

    try:
        current = client.get("/api/config")
        assert current.status_code == 200
        payload = current.json()
        payload["storage"]["cloud_name"] = "demo-cloud"
        payload["notify"]["timeout_s"] = 5

        saved = client.put("/api/config", json=payload)
        assert saved.status_code == 200
        assert saved.json()["storage"]["cloud_name"] == "demo-cloud"
        assert client.get("/api/config").json()["notify"]["timeout_s"] == 5
    finally:
        if backup is None:
            PATHS.config_path.unlink(missing_ok=True)
        else:
            PATHS.config_path.write_text(backup, encoding="utf-8")


def test_create_job_returns_immediately(client: TestClient, dispatched: list[str]) -> None:
    resp = client.post("/api/jobs", json=_submission(callback_target="https://hooks.example.com/done"))
    assert resp.status_code == 202, resp.text
    payload = resp.json()
    assert payload["status"] == "queued"
    job_id = payload["job_id"]
    assert payload["status_url"] == f"/api/jobs/{job_id}"
    assert dispatched == [job_id]

    status = client.get(payload["status_url"])
    assert status.status_code == 200
    job = status.json()
    assert job["status"] == "queued"
    assert job["progress"] == 0
    assert job["result"] is None
    assert job["parameters"]["interval"] == 7.0
    assert job["parameters"]["width"] == 720
    assert job["parameters"]["height"] == 1280

    listed = client.get("/api/jobs")
    assert any(item["id"] == job_id for item in listed.json())


def test_create_job_accepts_legacy_field_names(client: TestClient) -> None:
    resp = client.post(
        "/api/jobs",
        json={
            "ugcUrl": "https://cdn.example.com/ugc.mp4",
            "show1Url": "https://cdn.example.com/show1.mp4",
            "show2Url": "https://cdn.example.com/show2.mp4",
            "lengthSec": 4,
            "fadeSec": 0.25,
            "fps": 25,
        },
    )
    assert resp.status_code == 202, resp.text
    params = client.get(resp.json()["status_url"]).json()["parameters"]
    assert params["showcase_asset_ref2"] == "https://cdn.example.com/show2.mp4"
    assert params["insert_len"] == 4
    assert params["fade_sec"] == 0.25
    assert params["frame_rate"] == 25


def test_missing_showcase_is_rejected(client: TestClient, dispatched: list[str]) -> None:
    before = len(client.get("/api/jobs").json())

    resp = client.post("/api/jobs", json={"primary_asset_ref": "https://cdn.example.com/ugc.mp4"})

    assert resp.status_code == 400
    assert resp.json()["detail"]["category"] == "MissingInput"
    assert dispatched == []
    assert len(client.get("/api/jobs").json()) == before


def test_unknown_job_is_404(client: TestClient) -> None:
    assert client.get("/api/jobs/does-not-exist").status_code == 404
    assert client.get("/api/jobs/does-not-exist/events").status_code == 404


def test_failed_job_snapshot(client: TestClient) -> None:
    job_id = client.post("/api/jobs", json=_submission()).json()["job_id"]
    repository = SqlJobRepository()
    repository.mark_processing(job_id, "processing started")
    repository.fail(job_id, JobFailure(category="RenderFailed", detail="ffmpeg exited with code 1"))

    job = client.get(f"/api/jobs/{job_id}").json()
    assert job["status"] == "failed"
    assert job["failure"] == {"category": "RenderFailed", "detail": "ffmpeg exited with code 1"}
    assert job["result"] is None
