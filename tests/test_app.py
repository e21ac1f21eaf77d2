import asyncio
import json

import aiohttp
import pytest
from fastapi.testclient import TestClient

import backend.app as app_module
from backend.stores import JobStore
from config.settings import settings

PAYLOAD = {"source_image": "https://cdn.test/car.png", "metadata": {"job_id": "job_000000000001"}}


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(settings, "STUDIO_PHOTO_WEBHOOK_URL", "https://hooks.test/photo")
    monkeypatch.setattr(settings, "STUDIO_PHOTO_SECRET", "photo-secret")
    monkeypatch.setattr(settings, "STUDIO_VIDEO_WEBHOOK_URL", "https://hooks.test/video")
    monkeypatch.setattr(settings, "STUDIO_VIDEO_SECRET", "video-secret")
    return TestClient(app_module.app)


def fake_upstream(monkeypatch, status=200, raw="", error=None):
    calls = []

    async def forward(url, secret, payload):
        calls.append((url, secret, payload))
        if error is not None:
            raise error
        return status, raw

    monkeypatch.setattr(app_module, "forward_to_webhook", forward)
    return calls


def test_forwards_to_mode_webhook(client, monkeypatch):
    calls = fake_upstream(monkeypatch, raw=json.dumps({"success": True, "after_image": "x.png"}))

    resp = client.post("/studio", json={"mode": "video", "payload": PAYLOAD})

    assert resp.status_code == 200
    assert resp.json() == {"success": True, "after_image": "x.png"}
    assert calls == [("https://hooks.test/video", "video-secret", PAYLOAD)]


def test_edge_timeout_is_accepted(client, monkeypatch):
    fake_upstream(monkeypatch, status=524, raw="<html>timeout</html>")

    resp = client.post("/studio", json={"mode": "photo", "payload": PAYLOAD})

    assert resp.status_code == 202
    assert resp.json() == {"status": "accepted", "upstreamStatus": 524, "reason": "cloudflare_timeout"}


def test_upstream_timeout_is_accepted(client, monkeypatch):
    fake_upstream(monkeypatch, error=asyncio.TimeoutError())

    resp = client.post("/studio", json={"mode": "photo", "payload": PAYLOAD})

    assert resp.status_code == 202
    assert resp.json()["reason"] == "upstream_timeout"
    assert resp.json()["upstreamStatus"] is None


def test_unreachable_upstream_is_bad_gateway(client, monkeypatch):
    fake_upstream(monkeypatch, error=aiohttp.ClientConnectionError("refused"))

    resp = client.post("/studio", json={"mode": "photo", "payload": PAYLOAD})

    assert resp.status_code == 502
    assert "error" in resp.json()


def test_upstream_error_status_passes_through(client, monkeypatch):
    fake_upstream(monkeypatch, status=500, raw=json.dumps({"success": False, "error": "boom"}))

    resp = client.post("/studio", json={"mode": "photo", "payload": PAYLOAD})

    assert resp.status_code == 500
    assert resp.json() == {"success": False, "error": "boom"}


def test_non_json_body_is_wrapped(client, monkeypatch):
    fake_upstream(monkeypatch, raw="Workflow was started")

    resp = client.post("/studio", json={"mode": "photo", "payload": PAYLOAD})

    assert resp.status_code == 200
    assert resp.json() == {"raw": "Workflow was started"}


def test_invalid_mode(client, monkeypatch):
    calls = fake_upstream(monkeypatch)

    resp = client.post("/studio", json={"mode": "gif", "payload": PAYLOAD})

    assert resp.status_code == 400
    assert calls == []


def test_missing_webhook_config(client, monkeypatch):
    monkeypatch.setattr(settings, "STUDIO_PHOTO_SECRET", None)
    calls = fake_upstream(monkeypatch)

    resp = client.post("/studio", json={"mode": "photo", "payload": PAYLOAD})

    assert resp.status_code == 500
    assert calls == []


def test_get_job(client, monkeypatch, fake_redis, redis_factory):
    fake_redis.values["job:job_1"] = json.dumps({"job_id": "job_1", "project_id": "proj-1", "mode": "photo"})
    monkeypatch.setattr(app_module, "job_store", JobStore(client_factory=redis_factory))

    resp = client.get("/jobs/job_1")

    assert resp.status_code == 200
    assert resp.json()["status"] == "pending"
    assert resp.json()["mode"] == "photo"


def test_get_unknown_job(client, monkeypatch, redis_factory):
    monkeypatch.setattr(app_module, "job_store", JobStore(client_factory=redis_factory))
    assert client.get("/jobs/job_missing").status_code == 404


def test_get_job_store_down(client, monkeypatch, fake_redis, redis_factory):
    fake_redis.broken = True
    monkeypatch.setattr(app_module, "job_store", JobStore(client_factory=redis_factory))
    assert client.get("/jobs/job_1").status_code == 503
