import os
import tempfile
from pathlib import Path

os.environ.setdefault("DOORLOCK_LOG_DIR", str(Path(tempfile.gettempdir()) / "face_doorlock_test_logs"))

import numpy as np
import pytest

from face_doorlock import camera
from face_doorlock.exceptions import CameraUnavailable
from face_doorlock.registry import UserRegistry
from face_doorlock.storage import InMemoryStorage

FRAME_HEIGHT = 480
FRAME_WIDTH = 640
# BGR order, as OpenCV delivers frames: RGB (200, 120, 90) is skin toned and bright.
SKIN_BGR = (90, 120, 200)
DARK_BGR = (10, 10, 10)


def face_frame() -> np.ndarray:
    frame = np.zeros((FRAME_HEIGHT, FRAME_WIDTH, 3), dtype=np.uint8)
    frame[:] = DARK_BGR
    frame[: FRAME_HEIGHT // 2] = SKIN_BGR
    return frame


def dark_frame() -> np.ndarray:
    frame = np.zeros((FRAME_HEIGHT, FRAME_WIDTH, 3), dtype=np.uint8)
    frame[:] = DARK_BGR
    return frame


class FakeCapture:
    def __init__(self, frame: np.ndarray):
        self.frame = frame
        self.reads = 0
        self.released = False

    def read(self):
        if self.released:
            return False, None
        self.reads += 1
        return True, self.frame.copy()

    def release(self) -> None:
        self.released = True


class FakeCamera:
    """Capture factory standing in for ``open_camera_capture``."""

    def __init__(self, frame: np.ndarray, fail: bool = False):
        self.frame = frame
        self.fail = fail
        self.captures: list[FakeCapture] = []

    def __call__(self, camera_index: int, width: int, height: int):
        if self.fail:
            raise CameraUnavailable(f"Permission denied for camera {camera_index}")
        cap = FakeCapture(self.frame)
        self.captures.append(cap)
        return cap, "Fake"


async def no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture(autouse=True)
def release_camera_claims():
    yield
    with camera._claims_lock:
        camera._claimed_devices.clear()


@pytest.fixture
def face_camera() -> FakeCamera:
    return FakeCamera(face_frame())


@pytest.fixture
def dark_camera() -> FakeCamera:
    return FakeCamera(dark_frame())


@pytest.fixture
def broken_camera() -> FakeCamera:
    return FakeCamera(dark_frame(), fail=True)


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def registry(storage: InMemoryStorage) -> UserRegistry:
    return UserRegistry(storage)
