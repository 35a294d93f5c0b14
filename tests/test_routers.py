"""Tests for the HTTP and WebSocket surface."""

from __future__ import annotations

import io
from unittest.mock import Mock

import numpy as np
from fastapi.testclient import TestClient
from PIL import Image

from faunacam.main import create_app
from faunacam.services.camera import Frame
from faunacam.services.detectors import CallableExecutor, DetectionDecoder, TensorPreprocessor
from faunacam.services.pipeline import DetectionPipeline
from faunacam.services.stabilizer import ResultStabilizer


def _model_output(score: float) -> np.ndarray:
    grid = np.zeros((4 + 3, 4), dtype=np.float32)
    grid[0:4, 1] = [8.0, 8.0, 4.0, 4.0]
    grid[4 + 1, 1] = score
    return grid.reshape(-1)


def _pipeline(score: float = 0.82) -> DetectionPipeline:
    return DetectionPipeline(
        stabilizer=ResultStabilizer(display_threshold=0.70),
        preprocessor=TensorPreprocessor(16),
        executor=CallableExecutor(lambda tensor: _model_output(score), name="fake"),
        decoder=DetectionDecoder(["Bear", "Fox", "Lion"], num_classes=3, num_anchors=4, input_size=16),
    )


def _camera() -> Mock:
    camera = Mock()
    camera.latest_frame.return_value = Frame.from_array(np.zeros((12, 16, 3), dtype=np.uint8))
    camera.capture_jpeg.return_value = b"\xff\xd8fake"
    return camera


def _png() -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (8, 8), (200, 100, 50)).save(buf, format="PNG")
    return buf.getvalue()


def test_ping() -> None:
    client = TestClient(create_app(pipeline=_pipeline()))

    resp = client.get("/api/ping")

    assert resp.status_code == 200
    assert resp.text == "pong"


def test_current_detection_empty_then_shown() -> None:
    pipeline = _pipeline()
    client = TestClient(create_app(pipeline=pipeline))

    body = client.get("/api/detection/current").json()
    assert body["label"] is None
    assert body["type"] == "detection"

    pipeline.tick(Frame.from_array(np.zeros((12, 16, 3), dtype=np.uint8)))
    body = client.get("/api/detection/current").json()
    assert body["label"] == "Fox"
    assert body["score"] == "82%"
    assert 0 < body["expiresInMs"] <= 3000


def test_status_endpoint() -> None:
    client = TestClient(create_app(pipeline=_pipeline()))

    body = client.get("/api/detection/status").json()

    assert body["mode"] == "on_device"
    assert body["busy"] is False
    assert body["scheduler"]["runs"] == 0
    assert body["ordering"] is None


def test_analyze_still_image() -> None:
    client = TestClient(create_app(pipeline=_pipeline(0.9)))

    resp = client.post("/api/detection/analyze", content=_png(), headers={"Content-Type": "image/png"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["detected"] is True
    assert body["detection"]["label"] == "Fox"
    assert body["detection"]["score"] == "90%"
    assert body["detection"]["anchorIndex"] == 1


def test_analyze_below_threshold_reports_nothing() -> None:
    client = TestClient(create_app(pipeline=_pipeline(0.3)))

    body = client.post("/api/detection/analyze", content=_png()).json()

    assert body == {"detected": False, "detection": None}


def test_analyze_rejects_unreadable_image() -> None:
    client = TestClient(create_app(pipeline=_pipeline()))

    resp = client.post("/api/detection/analyze", content=b"garbage")

    assert resp.status_code == 400


def test_detection_routes_unavailable_without_pipeline() -> None:
    app = create_app(pipeline=_pipeline())
    app.state.pipeline = None
    client = TestClient(app)

    assert client.get("/api/detection/current").status_code == 503
    assert client.get("/api/detection/status").status_code == 503


def test_capture_returns_displayed_result_and_keeps_photo() -> None:
    pipeline = _pipeline()
    camera = _camera()
    client = TestClient(create_app(pipeline=pipeline, camera=camera))
    pipeline.tick(camera.latest_frame())

    resp = client.post("/api/detection/capture")

    assert resp.status_code == 200
    body = resp.json()
    assert body["label"] == "Fox"
    assert body["score"] == "82%"
    assert body["requestId"] is None

    photo = client.get("/api/video/capture.jpg")
    assert photo.status_code == 200
    assert photo.headers["content-type"] == "image/jpeg"
    assert photo.content[:2] == b"\xff\xd8"


def test_capture_without_camera_is_unavailable() -> None:
    client = TestClient(create_app(pipeline=_pipeline()))

    assert client.post("/api/detection/capture").status_code == 503
    assert client.get("/api/video/capture.jpg").status_code == 404


def test_snapshot_and_video_status() -> None:
    client = TestClient(create_app(pipeline=_pipeline(), camera=_camera()))

    snap = client.get("/api/video/snapshot.jpg")
    assert snap.status_code == 200
    assert snap.content == b"\xff\xd8fake"

    status = client.get("/api/video/status").json()
    assert status["camera_available"] is True
    assert status["mode"] == "on_device"
    assert status["loop_running"] is False


def test_system_diagnostics(monkeypatch) -> None:
    monkeypatch.setattr(
        "faunacam.routers.diagnostics.get_system_diagnostics",
        lambda pipeline: {"cpu_util_percent": 12.5, "mode": pipeline.mode},
    )
    client = TestClient(create_app(pipeline=_pipeline()))

    body = client.get("/api/diag/system").json()

    assert body["cpu_util_percent"] == 12.5
    assert body["mode"] == "on_device"


def test_websocket_streams_current_result() -> None:
    pipeline = _pipeline()
    pipeline.tick(Frame.from_array(np.zeros((12, 16, 3), dtype=np.uint8)))
    client = TestClient(create_app(pipeline=pipeline))

    with client.websocket_connect("/ws/detections") as ws:
        first = ws.receive_json()
        assert first["type"] == "detection"
        assert first["label"] == "Fox"
        ws.send_json({"action": "ping", "ts": 7})
        reply = ws.receive_json()
        assert reply == {"type": "pong", "ts": 7}
