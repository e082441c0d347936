from .capture import CaptureState, CaptureStateMachine
from .presence import detect_presence
from .recognition import DetectionResult, RecognitionSimulator
from .registry import UserRecord, UserRegistry

__all__ = [
    "CaptureState",
    "CaptureStateMachine",
    "DetectionResult",
    "RecognitionSimulator",
    "UserRecord",
    "UserRegistry",
    "detect_presence",
]
