import os
from pathlib import Path


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() not in {"0", "false", "no", "off"}


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except (TypeError, ValueError):
        return default


def _str_env(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


BASE_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = Path(_str_env("DOORLOCK_DATA_DIR", str(BASE_DIR / "data")))
LOG_DIR = Path(_str_env("DOORLOCK_LOG_DIR", str(BASE_DIR / "logs")))
LOG_LEVEL = _str_env("DOORLOCK_LOG_LEVEL", "INFO").upper()

# Webcam settings
CAMERA_INDEX = _int_env("DOORLOCK_CAMERA_INDEX", 0)
FRAME_WIDTH = _int_env("DOORLOCK_FRAME_WIDTH", 640)
FRAME_HEIGHT = _int_env("DOORLOCK_FRAME_HEIGHT", 480)
JPEG_QUALITY = _float_env("DOORLOCK_JPEG_QUALITY", 0.8)

# Smart capture settings
COUNTDOWN_START = _int_env("DOORLOCK_COUNTDOWN_START", 3)
COUNTDOWN_TICK_SECONDS = _float_env("DOORLOCK_COUNTDOWN_TICK_SECONDS", 1.0)
CAPTURE_SETTLE_SECONDS = _float_env("DOORLOCK_CAPTURE_SETTLE_SECONDS", 0.1)
AUTO_RECOGNIZE = _bool_env("DOORLOCK_AUTO_RECOGNIZE", True)

# Recognition settings
RECOGNITION_DELAY_SECONDS = _float_env("DOORLOCK_RECOGNITION_DELAY_SECONDS", 2.0)

# Registry settings
REGISTRY_BACKEND = _str_env("DOORLOCK_REGISTRY_BACKEND", "sqlite").lower()
REGISTRY_PATH = Path(_str_env("DOORLOCK_REGISTRY_PATH", str(DATA_DIR / "registry.db")))
REGISTRY_KEY = "registeredUsers"
