from __future__ import annotations

import asyncio
from typing import Any, List, Optional

from .capture import CaptureStateMachine
from .exceptions import ValidationError
from .imaging import is_image_data_uri
from .logger import setup_logger
from .registry import UserRecord, UserRegistry

ENROLLMENT_SUCCESS_MESSAGE = "User registered successfully!"


class EnrollmentService:
    """User management flow: manual photo capture and registry upkeep."""

    def __init__(self, registry: UserRegistry, machine: CaptureStateMachine):
        self.registry = registry
        self.machine = machine
        self.last_message: Optional[str] = None
        self.logger = setup_logger(self.__class__.__name__)

    async def start_camera(self) -> bool:
        self.last_message = None
        return await self.machine.open()

    def capture(self) -> str:
        return self.machine.capture_now()

    def stop_camera(self) -> None:
        self.machine.stop()

    def reset_form(self) -> None:
        self.machine.reset()

    async def save(self, name: str, employee_id: str, image_data: Optional[str] = None) -> UserRecord:
        if image_data is not None and not is_image_data_uri(image_data):
            raise ValidationError("Face photo must be a base64 image data URI.")

        image = image_data or self.machine.captured_image
        record = await asyncio.to_thread(self.registry.add, name, employee_id, image)

        self.machine.reset()
        self.last_message = ENROLLMENT_SUCCESS_MESSAGE
        return record

    def list_users(self) -> List[UserRecord]:
        return self.registry.list()

    def delete_user(self, user_id: str) -> bool:
        removed = self.registry.remove(user_id)
        if not removed:
            self.logger.info("Delete requested for unknown user %s", user_id)
        return removed

    async def snapshot(self) -> dict[str, Any]:
        registered = await asyncio.to_thread(self.registry.count)
        payload = self.machine.snapshot().to_dict()
        payload["message"] = self.last_message
        payload["registered_users"] = registered
        return payload
