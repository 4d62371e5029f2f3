import time

import pytest
from fastapi.testclient import TestClient

from slidecast.main import app, get_video_service
from slidecast.queue.queue import LocalQueue

HOOK_URL = "https://hooks.test/notify"


@pytest.fixture()
def client(make_service):
    service = make_service()
    service.bind_queue(LocalQueue(processor=service.process_job))
    app.dependency_overrides[get_video_service] = lambda: service
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _wait_for_terminal(client, job_id):
    job = None
    for _ in range(100):
        resp = client.get(f"/videos/{job_id}")
        assert resp.status_code == 200
        job = resp.json()["job"]
        if job["state"] in ("completed", "failed"):
            return job
        time.sleep(0.02)
    return job


def test_video_flow_with_local_queue(client, assets, hooks):
    payload = {
        "request_id": "campaign-7",
        "slides": [
            {"image_url": assets.image("a.png"), "narration_url": assets.narration("a.mp3", 2.0)},
            {"image_url": assets.image("b.png"), "caption": {"text": "Hello World", "color": "#ffcc00"}},
        ],
        "webhook_url": HOOK_URL,
    }
    create_resp = client.post("/videos", json=payload)
    assert create_resp.status_code == 202
    created = create_resp.json()["job"]
    assert created["request_id"] == "campaign-7"
    assert created["result"] is None

    job = _wait_for_terminal(client, created["id"])
    assert job["state"] == "completed"
    assert job["result"]["clips"] == 2
    assert job["result"]["duration"] == pytest.approx(6.0)
    assert job["error"] is None
    assert hooks.payloads[0]["success"] is True
    assert hooks.payloads[0]["job_id"] == created["id"]

    list_resp = client.get("/videos")
    assert list_resp.status_code == 200
    assert any(item["id"] == created["id"] for item in list_resp.json()["items"])


def test_failed_job_reports_error(client, assets, hooks):
    payload = {
        "slides": [{"image_url": assets.missing("/images/gone.png")}],
        "webhook_url": HOOK_URL,
    }
    job_id = client.post("/videos", json=payload).json()["job"]["id"]

    job = _wait_for_terminal(client, job_id)
    assert job["state"] == "failed"
    assert job["error"]
    assert hooks.payloads[0]["success"] is False


@pytest.mark.parametrize(
    "payload",
    [
        {"webhook_url": HOOK_URL},
        {"slides": [], "webhook_url": HOOK_URL},
        {"slides": [{"narration_url": "https://assets.test/a.mp3"}], "webhook_url": HOOK_URL},
        {"slides": [{"image_url": "https://assets.test/a.png"}]},
        {"slides": [{"image_url": "https://assets.test/a.png"}], "webhook_url": "ftp://hooks"},
        {"slides": [{"image_url": "https://assets.test/a.png"}], "webhook_url": HOOK_URL, "request_id": "../etc"},
    ],
)
def test_invalid_requests_are_rejected(client, payload):
    resp = client.post("/videos", json=payload)
    assert resp.status_code == 422
    assert client.get("/videos").json()["items"] == []


def test_unknown_job_is_not_found(client):
    resp = client.get("/videos/8d6f3c1e-3f1b-4c55-9a38-2f6f1c7b9a10")
    assert resp.status_code == 404


def test_n8n_payload_is_adapted(client, assets, hooks):
    body = {
        "supabaseData": [{"image_url": assets.image("a.png")}, {"image_url": assets.image("b.png")}],
        "n8nWebhookUrl": HOOK_URL,
    }
    resp = client.post("/process-n8n-data", json=body)
    assert resp.status_code == 202
    data = resp.json()
    assert data["success"] is True

    job = _wait_for_terminal(client, data["job_id"])
    assert job["state"] == "completed"
    assert job["result"]["clips"] == 2
    assert hooks.payloads[0]["video_base64"]


def test_n8n_payload_without_images_is_rejected(client):
    resp = client.post("/process-n8n-data", json={"supabaseData": [], "n8nWebhookUrl": HOOK_URL})
    assert resp.status_code == 400


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"
