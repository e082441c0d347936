from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Sequence

import numpy as np

from .camera import FrameSource
from .config import CAPTURE_SETTLE_SECONDS, COUNTDOWN_START, COUNTDOWN_TICK_SECONDS, JPEG_QUALITY
from .exceptions import BufferUnavailable, CameraUnavailable, InvalidTransition
from .logger import setup_logger
from .presence import detect_presence
from .recognition import DetectionResult, RecognitionSimulator
from .registry import UserRecord

CAMERA_UNAVAILABLE_MESSAGE = "Unable to access camera. Please check permissions."
NO_FACE_MESSAGE = "No face detected. Please position yourself properly in front of the camera."

PresenceDetector = Callable[[np.ndarray], bool]
Sleeper = Callable[[float], Awaitable[Any]]


class CaptureState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    DETECTING = "detecting"
    COUNTDOWN = "countdown"
    CAPTURED = "captured"


@dataclass(frozen=True)
class CaptureSnapshot:
    state: CaptureState
    countdown: int
    face_detected: bool
    auto_capturing: bool
    processing: bool
    progress: float
    notice: Optional[str]
    captured_image: Optional[str]
    detection_result: Optional[DetectionResult]

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "countdown": self.countdown,
            "face_detected": self.face_detected,
            "auto_capturing": self.auto_capturing,
            "processing": self.processing,
            "progress": self.progress,
            "notice": self.notice,
            "captured_image": self.captured_image,
            "result": None if self.detection_result is None else self.detection_result.to_dict(),
        }


class CaptureStateMachine:
    """Auto-capture sequence over a single :class:`FrameSource`.

    The countdown only advances through :meth:`tick`. With ``auto_tick`` a
    driver task calls it once per ``tick_seconds``; tests can leave it off and
    tick by hand. Every session-ending call bumps a generation counter so late
    timer callbacks and in-flight recognitions from an older session are
    ignored.
    """

    def __init__(
        self,
        source: FrameSource,
        detector: PresenceDetector = detect_presence,
        countdown_start: int = COUNTDOWN_START,
        tick_seconds: float = COUNTDOWN_TICK_SECONDS,
        settle_seconds: float = CAPTURE_SETTLE_SECONDS,
        jpeg_quality: float = JPEG_QUALITY,
        sleep: Sleeper = asyncio.sleep,
        auto_tick: bool = True,
    ):
        if countdown_start < 1:
            raise ValueError("countdown_start must be at least 1.")

        self.source = source
        self.detector = detector
        self.countdown_start = countdown_start
        self.tick_seconds = max(0.0, float(tick_seconds))
        self.settle_seconds = max(0.0, float(settle_seconds))
        self.jpeg_quality = jpeg_quality
        self.sleep = sleep
        self.auto_tick = auto_tick
        self.logger = setup_logger(self.__class__.__name__)

        self.state = CaptureState.IDLE
        self.countdown = 0
        self.face_detected = False
        self.auto_capturing = False
        self.processing = False
        self.notice: Optional[str] = None
        self.captured_image: Optional[str] = None
        self.detection_result: Optional[DetectionResult] = None
        self.capture_count = 0

        self._generation = 0
        self._countdown_task: Optional[asyncio.Task] = None

    @property
    def generation(self) -> int:
        return self._generation

    async def open(self) -> bool:
        if self.state is CaptureState.CAPTURED:
            raise InvalidTransition("Reset the captured image before starting the camera again.")
        if self.state is not CaptureState.IDLE:
            return True

        generation = self._generation
        self.notice = None
        try:
            await self.source.open()
        except CameraUnavailable as exc:
            self.logger.warning("Camera unavailable: %s", exc)
            self.notice = CAMERA_UNAVAILABLE_MESSAGE
            return False

        if generation != self._generation:
            # stop() or reset() arrived while the device was opening.
            self.source.close()
            return False

        self.state = CaptureState.STREAMING
        self.logger.info("Capture session %d streaming", generation)
        return True

    async def request_capture(self) -> bool:
        self._require(CaptureState.STREAMING, "start smart capture")

        generation = self._generation
        self.state = CaptureState.DETECTING
        self.auto_capturing = True
        self.notice = None

        try:
            buffer = self.source.sample_frame()
        except BufferUnavailable:
            self.logger.exception("Frame sampling failed while streaming")
            self.reset()
            raise
        present = bool(await asyncio.to_thread(self.detector, buffer))

        if generation != self._generation:
            return False

        self.face_detected = present
        if not present:
            self.auto_capturing = False
            self.notice = NO_FACE_MESSAGE
            self.state = CaptureState.STREAMING
            self.logger.info("No face detected; staying in streaming state")
            return False

        self.state = CaptureState.COUNTDOWN
        self.countdown = self.countdown_start
        self.logger.info("Face detected; capturing in %d", self.countdown)
        if self.auto_tick:
            self._countdown_task = asyncio.create_task(self._drive_countdown(generation))
        return True

    async def tick(self) -> None:
        if self.state is not CaptureState.COUNTDOWN or self.countdown <= 0:
            return

        if self.countdown > 1:
            self.countdown -= 1
            return

        self.countdown = 0
        generation = self._generation
        await self.sleep(self.settle_seconds)
        if generation != self._generation or self.state is not CaptureState.COUNTDOWN:
            return
        if self.captured_image is not None:
            return
        self._capture()

    def capture_now(self) -> str:
        self._require(CaptureState.STREAMING, "capture")
        self._capture()
        return self.captured_image

    async def wait_for_capture(self) -> Optional[str]:
        task = self._countdown_task
        if task is not None and not task.done():
            await asyncio.wait({task})
        return self.captured_image

    async def recognize(
        self,
        recognizer: RecognitionSimulator,
        users: Sequence[UserRecord],
    ) -> Optional[DetectionResult]:
        self._require(CaptureState.CAPTURED, "recognize")

        generation = self._generation
        self.processing = True
        try:
            result = await recognizer.recognize(self.captured_image, users)
        finally:
            if generation == self._generation:
                self.processing = False

        if generation != self._generation:
            self.logger.info("Discarding recognition result from reset session %d", generation)
            return None
        self.detection_result = result
        return result

    def stop(self) -> None:
        if self.state is CaptureState.CAPTURED:
            return

        self._invalidate()
        self.source.close()
        self.state = CaptureState.IDLE
        self.countdown = 0
        self.auto_capturing = False
        self.face_detected = False

    def reset(self) -> None:
        self._invalidate()
        self.source.close()
        self.state = CaptureState.IDLE
        self.countdown = 0
        self.auto_capturing = False
        self.face_detected = False
        self.processing = False
        self.notice = None
        self.captured_image = None
        self.detection_result = None

    def snapshot(self) -> CaptureSnapshot:
        counting = self.state is CaptureState.COUNTDOWN and self.countdown > 0
        progress = (self.countdown_start + 1 - self.countdown) / self.countdown_start if counting else 0.0
        return CaptureSnapshot(
            state=self.state,
            countdown=self.countdown,
            face_detected=self.face_detected,
            auto_capturing=self.auto_capturing,
            processing=self.processing,
            progress=progress,
            notice=self.notice,
            captured_image=self.captured_image,
            detection_result=self.detection_result,
        )

    async def _drive_countdown(self, generation: int) -> None:
        try:
            while generation == self._generation and self.countdown > 0:
                await self.sleep(self.tick_seconds)
                if generation != self._generation:
                    return
                await self.tick()
        except BufferUnavailable:
            self.logger.exception("Countdown capture failed")

    def _capture(self) -> None:
        try:
            image = self.source.encode_current_frame(self.jpeg_quality)
        except BufferUnavailable:
            self.logger.exception("Frame encoding failed while streaming")
            self.reset()
            raise

        self.captured_image = image
        self.capture_count += 1
        self.source.close()
        self.state = CaptureState.CAPTURED
        self.countdown = 0
        self.auto_capturing = False
        self.logger.info("Captured still image for session %d", self._generation)

    def _invalidate(self) -> None:
        self._generation += 1
        task = self._countdown_task
        self._countdown_task = None
        if task is not None and not task.done():
            task.cancel()

    def _require(self, expected: CaptureState, action: str) -> None:
        if self.state is not expected:
            raise InvalidTransition(f"Cannot {action} while {self.state.value}.")
