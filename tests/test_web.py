import io
import re
from typing import Any, Dict, List

import pytest
from PIL import Image

from cafe_printer import create_app
from cafe_printer.printing import worker


@pytest.fixture
def app():
    app = create_app(register_worker=False)
    app.config.update(TESTING=True, WTF_CSRF_ENABLED=False)
    return app


@pytest.fixture
def enqueued(monkeypatch) -> List[Any]:
    captured: List[Any] = []

    def _fake_enqueue(job, runtime=None):
        captured.append(job)
        return "job-abc"

    import cafe_printer.web.routes as routes

    monkeypatch.setattr(routes, "ensure_worker", lambda: None)
    monkeypatch.setattr(routes, "enqueue_job", _fake_enqueue)
    return captured


def _png() -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (4, 4), "black").save(buf, format="PNG")
    return buf.getvalue()


def test_form_is_served(app):
    client = app.test_client()
    for path in ("/", "/chat"):
        r = client.get(path)
        assert r.status_code == 200
        assert b'name="csrf_token"' in r.data
        assert b'name="image"' in r.data


def test_submit_text_and_name(app, enqueued):
    r = app.test_client().post("/chat", data={"name": " Ann ", "text": "Hi"})
    assert r.status_code == 200
    assert r.get_data(as_text=True) == "queued"
    assert r.headers["X-Job-Id"] == "job-abc"
    job = enqueued[0]
    assert (job.name, job.text, job.image) == ("Ann", "Hi", None)


def test_submit_with_photo(app, enqueued):
    data: Dict[str, Any] = {"text": "", "image": (io.BytesIO(_png()), "photo.png", "image/png")}
    r = app.test_client().post("/chat", data=data, content_type="multipart/form-data")
    assert r.status_code == 200
    job = enqueued[0]
    assert job.text is None
    assert job.image.filename == "photo.png"
    assert job.image.data == _png()


def test_empty_submission_prints_placeholder(app, enqueued):
    data = {"name": "", "text": "   ", "image": (io.BytesIO(b""), "", "application/octet-stream")}
    r = app.test_client().post("/chat", data=data, content_type="multipart/form-data")
    assert r.status_code == 200
    assert enqueued[0].text == "blank print"
    assert enqueued[0].image is None


def test_control_characters_rejected(app, enqueued):
    r = app.test_client().post("/chat", data={"name": "bad\x07name", "text": "x"})
    assert r.status_code == 400
    assert r.get_data(as_text=True).startswith("invalid submission:")
    assert enqueued == []


def test_overlong_text_rejected(app, enqueued):
    r = app.test_client().post("/chat", data={"text": "x" * 5000})
    assert r.status_code == 400


def test_non_image_upload_rejected(app, enqueued):
    data = {"image": (io.BytesIO(b"hello"), "notes.txt", "text/plain")}
    r = app.test_client().post("/chat", data=data, content_type="multipart/form-data")
    assert r.status_code == 400
    assert "unsupported image type" in r.get_data(as_text=True)


def test_csrf_enforced_when_enabled(enqueued):
    app = create_app(register_worker=False)
    app.config.update(TESTING=True)
    client = app.test_client()

    r = client.post("/chat", data={"text": "hi"})
    assert r.status_code == 400
    assert enqueued == []

    page = client.get("/").get_data(as_text=True)
    token = re.search(r'name="csrf_token" value="([^"]+)"', page).group(1)
    r = client.post("/chat", data={"text": "hi", "csrf_token": token})
    assert r.status_code == 200
    assert r.get_data(as_text=True) == "queued"


def test_job_status_endpoints(app):
    worker.JOBS.clear()
    worker._create_job("abc123", meta={"has_text": True})
    client = app.test_client()
    r = client.get("/jobs/abc123")
    assert r.status_code == 200
    assert r.get_json()["status"] == "queued"
    assert client.get("/jobs/missing").status_code == 404
    assert [j["id"] for j in client.get("/jobs").get_json()["jobs"]] == ["abc123"]
    worker.JOBS.clear()


def test_healthz_degraded_without_worker(app):
    body = app.test_client().get("/healthz").get_json()
    assert body["status"] == "degraded"
    assert body["reason"] == "worker_not_running"
    assert "queue_size" in body
