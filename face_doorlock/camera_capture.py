from __future__ import annotations

import os
import time
from typing import List, Tuple

import cv2

from .config import FRAME_HEIGHT, FRAME_WIDTH
from .exceptions import CameraUnavailable

BACKEND_ALIASES = {
    "auto": "Auto",
    "any": "Auto",
    "v4l2": "V4L2",
    "dshow": "DirectShow",
    "directshow": "DirectShow",
    "msmf": "Media Foundation",
    "mediafoundation": "Media Foundation",
    "media foundation": "Media Foundation",
    "avfoundation": "AVFoundation",
}


def _preferred_backend_order() -> list[str]:
    raw = os.getenv("DOORLOCK_CAMERA_BACKEND_ORDER", "").strip()
    if not raw:
        if os.name == "nt":
            return ["DirectShow", "Media Foundation", "Auto"]
        return ["Auto", "V4L2"]
    result: list[str] = []
    for item in raw.split(","):
        name = BACKEND_ALIASES.get(item.strip().lower())
        if name and name not in result:
            result.append(name)
    return result or ["Auto"]


def capture_backends() -> List[Tuple[str, int | None]]:
    backend_map: dict[str, int | None] = {
        "Auto": getattr(cv2, "CAP_ANY", None),
        "V4L2": getattr(cv2, "CAP_V4L2", None),
        "DirectShow": getattr(cv2, "CAP_DSHOW", None),
        "Media Foundation": getattr(cv2, "CAP_MSMF", None),
        "AVFoundation": getattr(cv2, "CAP_AVFOUNDATION", None),
    }

    candidates: List[Tuple[str, int | None]] = []
    seen: set[int | None] = set()
    for name in _preferred_backend_order():
        backend = backend_map.get(name)
        if backend in seen:
            continue
        seen.add(backend)
        candidates.append((name, backend))
    return candidates


def open_camera_capture(
    camera_index: int,
    width: int = FRAME_WIDTH,
    height: int = FRAME_HEIGHT,
) -> tuple[cv2.VideoCapture, str]:
    """Open ``camera_index`` at the requested resolution.

    Each backend is probed with a few reads because some report an opened
    device that never delivers frames (typically when permission is denied).
    """
    attempted: List[str] = []

    for backend_name, backend in capture_backends():
        attempted.append(backend_name)
        if backend is None:
            cap = cv2.VideoCapture(camera_index)
        else:
            cap = cv2.VideoCapture(camera_index, backend)

        if cap.isOpened():
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
            for _ in range(6):
                ok, frame = cap.read()
                if ok and frame is not None:
                    return cap, backend_name
                time.sleep(0.03)
        cap.release()

    tried = ", ".join(attempted) if attempted else "default backend"
    raise CameraUnavailable(
        f"Unable to open camera index {camera_index}. Tried backends: {tried}."
    )
