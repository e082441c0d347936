from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, List, Optional
from uuid import uuid4

from .exceptions import StorageError, ValidationError
from .logger import setup_logger
from .storage import RegistryStorage

ENROLLMENT_INCOMPLETE_MESSAGE = "Please fill all fields and capture an image"


@dataclass(frozen=True)
class UserRecord:
    id: str
    name: str
    employee_id: str
    image_data: str
    registered_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "employeeId": self.employee_id,
            "imageData": self.image_data,
            "registeredAt": self.registered_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "UserRecord":
        try:
            registered_at = datetime.fromisoformat(str(payload["registeredAt"]).replace("Z", "+00:00"))
            return cls(
                id=str(payload["id"]),
                name=str(payload["name"]),
                employee_id=str(payload["employeeId"]),
                image_data=str(payload["imageData"]),
                registered_at=registered_at,
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise StorageError(f"Malformed user record: {exc}") from exc


class UserRegistry:
    """Persisted, insertion-ordered collection of enrolled users.

    Every mutation reloads the full list, applies the change and writes it
    back while holding a process-wide lock, so concurrent add/remove calls
    never lose updates.
    """

    def __init__(self, storage: RegistryStorage):
        self.storage = storage
        self._lock = threading.Lock()
        self.logger = setup_logger(self.__class__.__name__)

    def list(self) -> List[UserRecord]:
        with self._lock:
            items = self.storage.load()

        records = []
        for item in items:
            try:
                records.append(UserRecord.from_dict(item))
            except StorageError as exc:
                self.logger.warning("Skipping stored user %r: %s", item.get("id"), exc)
        return records

    def count(self) -> int:
        return len(self.list())

    def get(self, user_id: str) -> Optional[UserRecord]:
        for record in self.list():
            if record.id == user_id:
                return record
        return None

    def add(self, name: str, employee_id: str, image_data: Optional[str]) -> UserRecord:
        name = (name or "").strip()
        employee_id = (employee_id or "").strip()
        if not name or not employee_id or not image_data:
            raise ValidationError(ENROLLMENT_INCOMPLETE_MESSAGE)

        record = UserRecord(
            id=uuid4().hex,
            name=name,
            employee_id=employee_id,
            image_data=image_data,
            registered_at=datetime.now(timezone.utc),
        )

        with self._lock:
            records = self.storage.load()
            records.append(record.to_dict())
            self.storage.save(records)

        self.logger.info("Registered user %s (%s) as %s", record.name, record.employee_id, record.id)
        return record

    def remove(self, user_id: str) -> bool:
        with self._lock:
            records = self.storage.load()
            remaining = [item for item in records if item.get("id") != user_id]
            if len(remaining) == len(records):
                return False
            self.storage.save(remaining)

        self.logger.info("Removed user %s", user_id)
        return True
