from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Sequence

from .config import RECOGNITION_DELAY_SECONDS
from .logger import setup_logger
from .registry import UserRecord

ACCEPT_DRAW_THRESHOLD = 0.3
SUCCESS_CONFIDENCE_FLOOR = 0.7
SUCCESS_CONFIDENCE_SPAN = 0.3
FAILURE_CONFIDENCE_FLOOR = 0.2
FAILURE_CONFIDENCE_SPAN = 0.5

Sleeper = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class DetectionResult:
    success: bool
    confidence: float
    user: Optional[UserRecord] = None

    @property
    def title(self) -> str:
        return "Access Granted" if self.success else "Access Denied"

    @property
    def message(self) -> str:
        if self.user is not None:
            return f"Welcome: {self.user.name}"
        return "Face not recognized. Please try again or contact administrator."

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "confidence": self.confidence,
            "confidence_text": f"{self.confidence * 100:.1f}%",
            "title": self.title,
            "message": self.message,
            "user": None
            if self.user is None
            else {"id": self.user.id, "name": self.user.name, "employeeId": self.user.employee_id},
        }


class RecognitionSimulator:
    """Randomized stand-in for face matching.

    The outcome ignores the image: roughly 70% of calls against a non-empty
    registry succeed with a uniformly chosen user.
    """

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        delay_seconds: float = RECOGNITION_DELAY_SECONDS,
        sleep: Sleeper = asyncio.sleep,
    ):
        self.rng = rng or random.Random()
        self.delay_seconds = max(0.0, float(delay_seconds))
        self.sleep = sleep
        self.logger = setup_logger(self.__class__.__name__)

    async def recognize(self, image: str, users: Sequence[UserRecord]) -> DetectionResult:
        await self.sleep(self.delay_seconds)

        if self.rng.random() > ACCEPT_DRAW_THRESHOLD and users:
            user = users[int(self.rng.random() * len(users))]
            result = DetectionResult(
                success=True,
                confidence=self.rng.random() * SUCCESS_CONFIDENCE_SPAN + SUCCESS_CONFIDENCE_FLOOR,
                user=user,
            )
            self.logger.info("Access granted to %s (%s), confidence %.3f", user.name, user.employee_id, result.confidence)
        else:
            result = DetectionResult(
                success=False,
                confidence=self.rng.random() * FAILURE_CONFIDENCE_SPAN + FAILURE_CONFIDENCE_FLOOR,
            )
            self.logger.info("Access denied, confidence %.3f", result.confidence)

        self._publish(result)
        return result

    def _publish(self, result: DetectionResult) -> None:
        # No access-log server is attached; the event is only recorded locally.
        self.logger.debug("Access event not forwarded: success=%s", result.success)
