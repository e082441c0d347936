from __future__ import annotations

import asyncio
import threading
from typing import Any, Callable, Optional

import cv2
import numpy as np

from .camera_capture import open_camera_capture
from .config import CAMERA_INDEX, FRAME_HEIGHT, FRAME_WIDTH, JPEG_QUALITY
from .exceptions import BufferUnavailable, CameraUnavailable
from .imaging import encode_jpeg_data_uri
from .logger import setup_logger

CaptureFactory = Callable[[int, int, int], tuple[Any, str]]

_claims_lock = threading.Lock()
_claimed_devices: set[int] = set()


def active_device_count() -> int:
    with _claims_lock:
        return len(_claimed_devices)


def _claim_device(camera_index: int) -> None:
    with _claims_lock:
        if camera_index in _claimed_devices:
            raise CameraUnavailable(f"Camera index {camera_index} is already in use by another session.")
        _claimed_devices.add(camera_index)


def _release_device(camera_index: int) -> None:
    with _claims_lock:
        _claimed_devices.discard(camera_index)


class FrameSource:
    """Live camera stream with on-demand still-frame sampling."""

    def __init__(
        self,
        camera_index: int = CAMERA_INDEX,
        width: int = FRAME_WIDTH,
        height: int = FRAME_HEIGHT,
        capture_factory: CaptureFactory = open_camera_capture,
    ):
        self.camera_index = camera_index
        self.width = width
        self.height = height
        self.capture_factory = capture_factory
        self.cap = None
        self.backend_name: Optional[str] = None
        self.logger = setup_logger(self.__class__.__name__)

    @property
    def is_streaming(self) -> bool:
        return self.cap is not None

    async def open(self) -> None:
        if self.cap is not None:
            return

        _claim_device(self.camera_index)
        try:
            cap, backend_name = await asyncio.to_thread(
                self.capture_factory, self.camera_index, self.width, self.height
            )
        except CameraUnavailable:
            _release_device(self.camera_index)
            raise
        except Exception as exc:
            _release_device(self.camera_index)
            raise CameraUnavailable(f"Unable to open camera index {self.camera_index}: {exc}") from exc

        self.cap = cap
        self.backend_name = backend_name
        self.logger.info("Camera %s streaming via %s", self.camera_index, backend_name)

    def close(self) -> None:
        if self.cap is None:
            return
        try:
            self.cap.release()
        finally:
            self.cap = None
            self.backend_name = None
            _release_device(self.camera_index)
        self.logger.info("Camera %s released", self.camera_index)

    def _read(self) -> np.ndarray:
        if self.cap is None:
            raise BufferUnavailable("Camera is not streaming.")

        success, frame = self.cap.read()
        if not success or frame is None:
            raise BufferUnavailable("Failed to read frame from camera.")
        return frame

    def sample_frame(self) -> np.ndarray:
        """Return the current frame as an RGBA ``uint8`` buffer of native size."""
        return cv2.cvtColor(self._read(), cv2.COLOR_BGR2RGBA)

    def encode_current_frame(self, quality: float = JPEG_QUALITY) -> str:
        return encode_jpeg_data_uri(self._read(), quality)
