"""
Green -> yellow -> red thermal colour ramp shared by the raymarcher and the
isosurface colouring.
"""

from typing import Tuple

import numpy as np

from config import THERMAL_GREEN, THERMAL_RED, THERMAL_YELLOW


def hex_to_rgb(hex_color: str) -> Tuple[int, int, int]:
    h = hex_color.lstrip("#")
    n = int(h, 16)
    return (n >> 16) & 255, (n >> 8) & 255, n & 255


def rgb_to_hex(rgb) -> str:
    return "#" + "".join(f"{int(v):02X}" for v in rgb)


def lerp_hex(h1: str, h2: str, t: float) -> str:
    """Per-channel linear blend of two hex colours, rounded to 8 bits."""
    a = np.array(hex_to_rgb(h1), dtype=np.float64)
    b = np.array(hex_to_rgb(h2), dtype=np.float64)
    t = min(1.0, max(0.0, float(t)))
    return rgb_to_hex(np.floor(a + (b - a) * t + 0.5))


_GREEN = np.array(hex_to_rgb(THERMAL_GREEN), dtype=np.float64) / 255.0
_YELLOW = np.array(hex_to_rgb(THERMAL_YELLOW), dtype=np.float64) / 255.0
_RED = np.array(hex_to_rgb(THERMAL_RED), dtype=np.float64) / 255.0


def thermal_ramp(t) -> np.ndarray:
    """
    Map ``t`` in [0, 1] to RGB in [0, 1].

    Two linear segments: green -> yellow on [0, 0.5], yellow -> red on [0.5, 1].
    Output shape is ``np.shape(t) + (3,)``.
    """
    t = np.clip(np.asarray(t, dtype=np.float64), 0.0, 1.0)[..., None]
    low = _GREEN + (_YELLOW - _GREEN) * (t * 2.0)
    high = _YELLOW + (_RED - _YELLOW) * ((t - 0.5) * 2.0)
    return np.where(t <= 0.5, low, high)


def window_position(values, win_min: float, win_max: float) -> np.ndarray:
    """Position of ``values`` within [win_min, win_max], clamped to [0, 1]."""
    span = max(1e-6, win_max - win_min)
    return np.clip((np.asarray(values, dtype=np.float64) - win_min) / span, 0.0, 1.0)


def normalized_ramp_colors(scalars) -> np.ndarray:
    """Colour each scalar by its position between the array's min and max."""
    s = np.asarray(scalars, dtype=np.float64)
    if s.size == 0:
        return np.zeros((0, 3), dtype=np.float32)
    s_min, s_max = float(s.min()), float(s.max())
    t = (s - s_min) / max(1e-12, s_max - s_min)
    return thermal_ramp(t).astype(np.float32)
