import base64
import time

import cv2
import numpy as np
import pytest
from fastapi.testclient import TestClient

from gorillamode.api import manager, routes, websocket as websocket_module
from gorillamode.api.websocket import FrameClock
from gorillamode.core.config import PipelineConfig
from gorillamode.main import app

from conftest import FakeEstimator, ThreadedFakeEstimator, registry_of


def encoded_image() -> str:
    ok, buffer = cv2.imencode(".png", np.zeros((16, 16, 3), dtype=np.uint8))
    assert ok
    return base64.b64encode(buffer.tobytes()).decode("ascii")


@pytest.fixture
def client(monkeypatch):
    registry = registry_of(FakeEstimator("BlazePose"), FakeEstimator("Baseline"))
    monkeypatch.setattr(manager, "registry", registry)
    with TestClient(app) as test_client:
        yield test_client


def receive_until(websocket, message_type, limit=20):
    """Read server messages until one of the given type arrives."""
    seen = []
    for _ in range(limit):
        message = websocket.receive_json()
        seen.append(message["type"])
        if message["type"] == message_type:
            return message
    raise AssertionError(f"no {message_type} message, got {seen}")


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["active_sessions"] == 0
    assert isinstance(body["mediapipe_available"], bool)


def test_list_models(client):
    body = client.get("/api/models").json()
    assert sorted(body["models"]) == ["Baseline", "BlazePose"]
    assert body["default"] == "BlazePose"


def test_angle_definitions(client):
    body = client.get("/api/angles/definitions").json()
    labels = [d["label"] for d in body]
    assert labels[:2] == ["Left Knee", "Right Knee"]
    assert all(len(d["joint_ids"]) == 3 for d in body)


def test_detect_pose(client):
    response = client.post("/api/pose/detect", json={"image_base64": encoded_image(), "model": "Baseline"})
    body = response.json()

    assert body["success"] is True
    assert body["pose"]["model_id"] == "Baseline"
    knee = {a["label"]: a["value"] for a in body["angles"]}
    assert knee["Left Knee"] == pytest.approx(170.0, abs=1e-3)


def test_detect_pose_rejects_bad_image(client):
    body = client.post("/api/pose/detect", json={"image_base64": "not an image!"}).json()
    assert body["success"] is False
    assert body["error"] == "Could not decode image data"


def test_detect_pose_unknown_model(client):
    body = client.post("/api/pose/detect", json={"image_base64": encoded_image(), "model": "Nope"}).json()
    assert body["success"] is False
    assert "Nope" in body["error"]


def test_websocket_session(client):
    with client.websocket_connect("/ws/session") as websocket:
        hello = receive_until(websocket, "session_started")
        assert hello["data"]["default_model"] == "BlazePose"

        websocket.send_json({"type": "start_session", "data": {"model": "Baseline"}})
        status = receive_until(websocket, "status")
        assert status["data"]["kind"] == "started"
        assert status["data"]["model_id"] == "Baseline"

        websocket.send_json({
            "type": "frame",
            "data": {"image_base64": encoded_image(), "frame_number": 0},
            "timestamp": 1000,
        })
        snapshot = receive_until(websocket, "snapshot")
        assert snapshot["data"]["model_id"] == "Baseline"
        assert snapshot["data"]["frame_timestamp"] == 1000
        assert snapshot["data"]["tier"]["tier"] is None
        assert {a["label"] for a in snapshot["data"]["angles"]} == {"Left Knee", "Right Knee"}

        websocket.send_json({"type": "end_session"})
        receive_until(websocket, "session_ended")


def test_websocket_reports_protocol_errors(client):
    with client.websocket_connect("/ws/session") as websocket:
        receive_until(websocket, "session_started")

        websocket.send_json({"type": "frame", "data": {"image_base64": encoded_image()}})
        assert receive_until(websocket, "error")["data"]["error"] == "Session not started"

        websocket.send_json({"type": "select_model", "data": {"model": "Nope"}})
        assert "Unknown model" in receive_until(websocket, "error")["data"]["error"]

        websocket.send_json({"type": "dance"})
        assert "Invalid message" in receive_until(websocket, "error")["data"]["error"]

        websocket.send_json({"type": "end_session"})
        receive_until(websocket, "session_ended")


def test_detect_pose_timeout_disposes_after_call_returns(monkeypatch):
    slow = ThreadedFakeEstimator("Slow", work_s=0.3)
    monkeypatch.setattr(manager, "registry", registry_of(slow))
    config = PipelineConfig.model_validate({"estimator": {"inference_timeout_s": 0.05}})
    monkeypatch.setattr(routes, "get_config", lambda: config)

    with TestClient(app) as client:
        body = client.post("/api/pose/detect", json={"image_base64": encoded_image(), "model": "Slow"}).json()
        assert body["success"] is False
        assert "50 ms inference budget" in body["error"]
        assert not slow.disposed

        deadline = time.monotonic() + 2.0
        while not slow.disposed and time.monotonic() < deadline:
            time.sleep(0.01)

    assert slow.disposed
    assert not slow.disposed_during_call


def test_frame_clock_follows_client_timestamps(monkeypatch):
    now = [50_000]
    monkeypatch.setattr(websocket_module, "_now_ms", lambda: now[0])
    clock = FrameClock()

    assert clock.stamp(1000) == 1000
    now[0] += 40
    # No timestamp: placed on the client timeline, not the server one.
    assert clock.stamp(0) == 1040
    now[0] += 26
    assert clock.stamp(1066) == 1066
    assert clock.use_client_clock


def test_frame_clock_uses_server_time_when_first_frame_is_unstamped(monkeypatch):
    now = [50_000]
    monkeypatch.setattr(websocket_module, "_now_ms", lambda: now[0])
    clock = FrameClock()

    assert clock.stamp(0) == 50_000
    now[0] += 33
    assert clock.stamp(99) == 50_033
    assert clock.use_client_clock is False
