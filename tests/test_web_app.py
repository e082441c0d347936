import random

import pytest
from fastapi.testclient import TestClient

from conftest import FakeCamera, dark_frame, face_frame, no_sleep
from face_doorlock.capture import CAMERA_UNAVAILABLE_MESSAGE, NO_FACE_MESSAGE
from face_doorlock.exceptions import StorageError
from face_doorlock.imaging import encode_jpeg_data_uri
from face_doorlock.recognition import RecognitionSimulator
from face_doorlock.registry import ENROLLMENT_INCOMPLETE_MESSAGE, UserRegistry
from face_doorlock.storage import InMemoryStorage
from face_doorlock.web_app import create_web_app


def build_app(registry, camera):
    return create_web_app(
        camera_index=0,
        registry=registry,
        recognizer=RecognitionSimulator(rng=random.Random(7), sleep=no_sleep),
        capture_factory=camera,
        auto_recognize=False,
    )


def make_client(registry, camera) -> TestClient:
    return TestClient(build_app(registry, camera))


class BrokenStorage:
    def load(self):
        raise StorageError("database is locked")

    def save(self, records):
        raise StorageError("database is locked")


@pytest.fixture
def client(registry):
    with make_client(registry, FakeCamera(face_frame())) as test_client:
        yield test_client


def test_injected_empty_registry_is_used(registry, storage, face_camera):
    app = build_app(registry, face_camera)

    assert app.state.registry is registry

    with TestClient(app) as client:
        client.post("/api/users", json={"name": "Ana", "employeeId": "E1", "imageData": "data:image/jpeg;base64,AAAA"})

    assert storage.save_count == 1
    assert [r.name for r in registry.list()] == ["Ana"]


def test_health_endpoint(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["ok"] is True


def test_user_crud(client):
    photo = encode_jpeg_data_uri(face_frame(), 0.8)

    created = client.post("/api/users", json={"name": "Ana", "employeeId": "E1", "imageData": photo})
    assert created.status_code == 201
    user = created.json()
    assert user["name"] == "Ana"
    assert user["employeeId"] == "E1"
    assert user["imageData"] == photo
    assert "registeredAt" in user

    listed = client.get("/api/users").json()
    assert [u["id"] for u in listed] == [user["id"]]

    assert client.delete(f"/api/users/{user['id']}").json() == {"ok": True, "removed": True}
    assert client.delete(f"/api/users/{user['id']}").json() == {"ok": True, "removed": False}
    assert client.get("/api/users").json() == []


def test_snake_case_enrollment_body_is_accepted(client):
    created = client.post(
        "/api/users",
        json={"name": "Bo", "employee_id": "E2", "image_data": "data:image/jpeg;base64,AAAA"},
    )

    assert created.status_code == 201
    assert created.json()["employeeId"] == "E2"


def test_incomplete_user_is_rejected(client):
    response = client.post("/api/users", json={"name": "Ana", "employeeId": ""})

    assert response.status_code == 400
    assert response.json()["detail"] == ENROLLMENT_INCOMPLETE_MESSAGE


def test_malformed_stored_user_is_skipped(face_camera):
    storage = InMemoryStorage(
        [
            {"id": "old", "name": "Old", "employeeId": "E0", "imageData": "data:,"},
            {
                "id": "ok",
                "name": "Ana",
                "employeeId": "E1",
                "imageData": "data:image/jpeg;base64,AAAA",
                "registeredAt": "2024-01-01T00:00:00Z",
            },
        ]
    )

    with make_client(UserRegistry(storage), face_camera) as client:
        users = client.get("/api/users").json()
        state = client.get("/api/capture/state").json()
        enroll_state = client.get("/api/enroll/state").json()

    assert [u["id"] for u in users] == ["ok"]
    assert state["registeredUsers"] == 1
    assert enroll_state["registeredUsers"] == 1


def test_storage_failure_is_reported(face_camera):
    with make_client(UserRegistry(BrokenStorage()), face_camera) as client:
        listed = client.get("/api/users")
        state = client.get("/api/capture/state")

    assert listed.status_code == 503
    assert listed.json()["detail"] == "User registry is unavailable."
    assert state.status_code == 503


def test_manual_capture_and_recognition(client):
    client.post("/api/users", json={"name": "Ana", "employeeId": "E1", "imageData": encode_jpeg_data_uri(face_frame(), 0.8)})

    started = client.post("/api/capture/start")
    assert started.status_code == 200
    assert started.json()["state"] == "streaming"

    captured = client.post("/api/capture/now").json()
    assert captured["state"] == "captured"
    assert captured["capturedImage"].startswith("data:image/jpeg;base64,")

    result = client.post("/api/capture/recognize").json()
    if result["success"]:
        assert result["user"]["employeeId"] == "E1"
        assert result["title"] == "Access Granted"
    else:
        assert result["user"] is None
    assert result["confidenceText"].endswith("%")

    state = client.get("/api/capture/state").json()
    assert state["result"] == result

    reset = client.post("/api/capture/reset").json()
    assert reset["state"] == "idle"
    assert reset["capturedImage"] is None
    assert reset["result"] is None


def test_operations_in_wrong_state_return_conflict(client):
    assert client.post("/api/capture/now").status_code == 409
    assert client.post("/api/capture/smart").status_code == 409
    assert client.post("/api/capture/recognize").status_code == 409


def test_smart_capture_without_face_stays_streaming(registry):
    with make_client(registry, FakeCamera(dark_frame())) as client:
        client.post("/api/capture/start")
        state = client.post("/api/capture/smart").json()

    assert state["state"] == "streaming"
    assert state["notice"] == NO_FACE_MESSAGE
    assert state["countdown"] == 0
    assert state["faceDetected"] is False


def test_camera_failure_is_reported(registry):
    with make_client(registry, FakeCamera(face_frame(), fail=True)) as client:
        response = client.post("/api/capture/start")
        state = client.get("/api/capture/state").json()

    assert response.status_code == 503
    assert response.json()["detail"] == CAMERA_UNAVAILABLE_MESSAGE
    assert state["state"] == "idle"


def test_enrollment_flow_uses_captured_photo(client):
    assert client.post("/api/enroll/start").status_code == 200
    assert client.post("/api/capture/start").status_code == 503

    captured = client.post("/api/enroll/capture").json()
    assert captured["state"] == "captured"

    created = client.post("/api/users", json={"name": "Ana", "employeeId": "E1"})
    assert created.status_code == 201
    assert created.json()["imageData"] == captured["capturedImage"]

    state = client.get("/api/enroll/state").json()
    assert state["state"] == "idle"
    assert state["message"] == "User registered successfully!"
    assert state["registeredUsers"] == 1
