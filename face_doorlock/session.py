from __future__ import annotations

import asyncio
from typing import Any, Optional

from .capture import CaptureState, CaptureStateMachine
from .config import AUTO_RECOGNIZE
from .exceptions import InvalidTransition
from .logger import setup_logger
from .recognition import DetectionResult, RecognitionSimulator
from .registry import UserRegistry


class AccessSession:
    """Capture screen flow: smart capture, then simulated recognition."""

    def __init__(
        self,
        machine: CaptureStateMachine,
        registry: UserRegistry,
        recognizer: RecognitionSimulator,
        auto_recognize: bool = AUTO_RECOGNIZE,
    ):
        self.machine = machine
        self.registry = registry
        self.recognizer = recognizer
        self.auto_recognize = auto_recognize
        self.logger = setup_logger(self.__class__.__name__)

        self._recognition: Optional[tuple[int, asyncio.Task]] = None
        self._follow_up: Optional[asyncio.Task] = None

    async def start_camera(self) -> bool:
        return await self.machine.open()

    def stop_camera(self) -> None:
        self.machine.stop()

    async def smart_capture(self) -> bool:
        started = await self.machine.request_capture()
        if started and self.auto_recognize and self.machine.auto_tick:
            self._follow_up = asyncio.create_task(self._recognize_when_captured())
        return started

    async def capture_now(self) -> str:
        image = self.machine.capture_now()
        if self.auto_recognize:
            self._follow_up = asyncio.create_task(self.identify())
        return image

    async def identify(self) -> Optional[DetectionResult]:
        if self.machine.detection_result is not None:
            return self.machine.detection_result
        if self.machine.state is not CaptureState.CAPTURED:
            raise InvalidTransition(f"Cannot recognize while {self.machine.state.value}.")

        generation = self.machine.generation
        if self._recognition is None or self._recognition[0] != generation or self._recognition[1].done():
            task = asyncio.create_task(self._recognize(generation))
            self._recognition = (generation, task)

        # Several callers may wait on the same recognition.
        return await asyncio.shield(self._recognition[1])

    def reset(self) -> None:
        follow_up = self._follow_up
        self._follow_up = None
        if follow_up is not None and not follow_up.done():
            follow_up.cancel()
        self.machine.reset()

    async def snapshot(self) -> dict[str, Any]:
        registered = await asyncio.to_thread(self.registry.count)
        payload = self.machine.snapshot().to_dict()
        payload["registered_users"] = registered
        return payload

    async def _recognize(self, generation: int) -> Optional[DetectionResult]:
        users = await asyncio.to_thread(self.registry.list)
        if generation != self.machine.generation:
            return None
        return await self.machine.recognize(self.recognizer, users)

    async def _recognize_when_captured(self) -> None:
        image = await self.machine.wait_for_capture()
        if image is None:
            return
        result = await self.identify()
        if result is not None:
            self.logger.info("%s (confidence %.1f%%)", result.title, result.confidence * 100)
