from __future__ import annotations

from dataclasses import dataclass
from typing import Union

import numpy as np

PixelBuffer = Union[np.ndarray, bytes, bytearray, memoryview]

# Thresholds are fixed; changing them changes documented detection behavior.
SKIN_MIN_RED = 95
SKIN_MIN_GREEN = 40
SKIN_MIN_BLUE = 20
BRIGHTNESS_LOW = 80
BRIGHTNESS_HIGH = 200
SKIN_RATIO_LOW = 0.15
SKIN_RATIO_HIGH = 0.6
BRIGHT_RATIO_MIN = 0.4


@dataclass(frozen=True)
class PresenceStats:
    skin_ratio: float
    bright_ratio: float
    total_pixels: int

    @property
    def face_likely(self) -> bool:
        if self.total_pixels == 0:
            return False
        return SKIN_RATIO_LOW < self.skin_ratio < SKIN_RATIO_HIGH and self.bright_ratio > BRIGHT_RATIO_MIN


def _as_rgb_pixels(buffer: PixelBuffer) -> np.ndarray:
    if isinstance(buffer, (bytes, bytearray, memoryview)):
        pixels = np.frombuffer(buffer, dtype=np.uint8)
    else:
        pixels = np.asarray(buffer, dtype=np.uint8)

    if pixels.ndim == 1:
        if pixels.size % 4:
            raise ValueError("Flat pixel buffers must hold RGBA quadruplets.")
        pixels = pixels.reshape(-1, 4)
    else:
        pixels = pixels.reshape(-1, pixels.shape[-1])

    if pixels.shape[1] < 3:
        raise ValueError("Pixel buffer needs at least three color channels.")
    # int32 keeps channel sums from wrapping around.
    return pixels[:, :3].astype(np.int32)


def presence_stats(buffer: PixelBuffer) -> PresenceStats:
    rgb = _as_rgb_pixels(buffer)
    total = int(rgb.shape[0])
    if total == 0:
        return PresenceStats(skin_ratio=0.0, bright_ratio=0.0, total_pixels=0)

    r, g, b = rgb[:, 0], rgb[:, 1], rgb[:, 2]
    skin = (r > SKIN_MIN_RED) & (g > SKIN_MIN_GREEN) & (b > SKIN_MIN_BLUE) & (r > g) & (r > b)

    # 80 < (r+g+b)/3 < 200 evaluated on integers as 240 < r+g+b < 600.
    channel_sum = r + g + b
    bright = (channel_sum > BRIGHTNESS_LOW * 3) & (channel_sum < BRIGHTNESS_HIGH * 3)

    return PresenceStats(
        skin_ratio=int(np.count_nonzero(skin)) / total,
        bright_ratio=int(np.count_nonzero(bright)) / total,
        total_pixels=total,
    )


def detect_presence(buffer: PixelBuffer) -> bool:
    """Coarse "face likely in frame" test from skin-tone and brightness ratios."""
    return presence_stats(buffer).face_likely
