import base64

import cv2
import numpy as np

JPEG_DATA_URI_PREFIX = "data:image/jpeg;base64,"


def encode_jpeg_data_uri(frame: np.ndarray, quality: float) -> str:
    """Encode a BGR frame as a JPEG data URI; ``quality`` is on a 0-1 scale."""
    if not 0.0 <= quality <= 1.0:
        raise ValueError(f"JPEG quality must be within [0, 1], got {quality}.")

    ok, encoded = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), int(round(quality * 100))])
    if not ok:
        raise ValueError("Frame could not be encoded as JPEG.")
    return JPEG_DATA_URI_PREFIX + base64.b64encode(encoded.tobytes()).decode("utf-8")


def decode_data_uri(image_data: str) -> np.ndarray:
    header, _, payload = image_data.partition(",")
    if not header.startswith("data:image/") or not header.endswith(";base64") or not payload:
        raise ValueError("Image payload must be a base64 image data URI.")
    try:
        raw = base64.b64decode(payload, validate=True)
    except ValueError as exc:
        raise ValueError(f"Image payload is not valid base64: {exc}") from exc

    frame = cv2.imdecode(np.frombuffer(raw, dtype=np.uint8), cv2.IMREAD_COLOR)
    if frame is None:
        raise ValueError("Image payload could not be decoded.")
    return frame


def is_image_data_uri(image_data: object) -> bool:
    if not isinstance(image_data, str):
        return False
    try:
        decode_data_uri(image_data)
    except ValueError:
        return False
    return True
