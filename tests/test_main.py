"""
Receiver Service Tests
======================

Tests for the HTTP and WebSocket endpoints, without running the lifespan.
"""

import json

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from framepipe import main
from framepipe.pose.correlator import PoseCorrelator
from framepipe.stream.buffer import FrameBuffer
from framepipe.stream.dispatcher import Dispatcher
from framepipe.stream.frame import Frame
from framepipe.wire.format import encode_transform


@pytest.fixture
def client():
    return TestClient(main.app)


@pytest.fixture
def dispatcher(monkeypatch):
    dispatcher = Dispatcher(PoseCorrelator(), buffer=FrameBuffer(maxsize=2))
    monkeypatch.setattr(main, "_dispatcher", dispatcher)
    return dispatcher


class TestHealthEndpoints:
    """Tests for liveness, readiness and metrics."""

    def test_root(self, client):
        body = client.get("/").json()
        assert body["service"] == "framepipe"
        assert body["header_variant"] == "stamped"

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_not_ready_without_receiver(self, client):
        response = client.get("/ready")
        assert response.status_code == 503
        assert response.json()["listening"] is False

    def test_metrics(self, client, dispatcher):
        body = client.get("/metrics").json()
        assert body["receiver"] == {}
        assert body["dispatch"]["frames_dispatched"] == 0
        assert body["dispatch"]["buffer"]["maxsize"] == 2


class TestFrameAndPose:
    """Tests for the inspection endpoints."""

    def test_no_frame_yet(self, client):
        assert client.get("/frame/latest").status_code == 503

    def test_latest_frame(self, client, monkeypatch):
        frame = Frame(
            width=2, height=2, pixels=bytes(16), sequence=7,
            frame_timestamp=1.5, pose_timestamp=1.25, pose_id=3,
        )
        monkeypatch.setattr(main, "_latest_frame", frame)

        body = client.get("/frame/latest").json()

        assert body == {
            "sequence": 7,
            "width": 2,
            "height": 2,
            "payload_bytes": 16,
            "frame_timestamp": 1.5,
            "pose_timestamp": 1.25,
            "pose_id": 3,
        }

    def test_no_pose_yet(self, client, dispatcher):
        assert client.get("/pose").status_code == 503


class TestPoseIngress:
    """Tests for WS /ws/pose."""

    def test_rejected_without_dispatcher(self, client):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/ws/pose") as websocket:
                websocket.receive_text()
        assert exc_info.value.code == 1013

    def test_json_pose(self, client, dispatcher):
        """A JSON pose sent over the socket becomes the current pose."""
        message = {
            "id": 9,
            "timestamp": 4.0,
            "transform": [[1, 0, 0, 0.5], [0, 1, 0, 0], [0, 0, 1, 0]],
        }
        with client.websocket_connect("/ws/pose") as websocket:
            websocket.send_text(json.dumps(message))
            websocket.send_text("hello")

        body = client.get("/pose").json()

        assert body["id"] == 9
        assert body["timestamp"] == 4.0
        assert body["transform"][0] == [1.0, 0.0, 0.0, 0.5]
        assert dispatcher.unknown_messages == 1

    def test_binary_transform(self, client, dispatcher):
        """A 64-byte binary transform is accepted without an id."""
        rows = [[1, 0, 0, 0], [0, 1, 0, 2], [0, 0, 1, 0]]
        with client.websocket_connect("/ws/pose") as websocket:
            websocket.send_bytes(encode_transform(rows))

        body = client.get("/pose").json()

        assert body["id"] is None
        assert body["timestamp"] is None
        assert body["transform"][1][3] == 2.0
