"""
Thermal statistics provider and threshold colouring.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Tuple, Union

import numpy as np

from config import STATS_PERCENTILES, THERMAL_GREEN, THERMAL_RED, THERMAL_YELLOW
from core.base import Volume
from core.colormap import lerp_hex, normalized_ramp_colors
from core.dto import ColorMode, IsoRequest, IsoResult

# Percentile keys, matching STATS_PERCENTILES
PERCENTILE_KEYS = ("p10", "p75", "p975")


@dataclass(frozen=True)
class ThermalStatistics:
    """Summary of a thermal field in physical units."""
    min: float
    max: float
    percentiles: Dict[str, float] = field(default_factory=dict)

    @staticmethod
    def from_value_range(value_range: Tuple[float, float]) -> "ThermalStatistics":
        """Statistics implied by the value range alone (p75 is the midpoint)."""
        vmin, vmax = (float(v) for v in value_range)
        mid = 0.5 * (vmin + vmax)
        return ThermalStatistics(min=vmin, max=vmax, percentiles={"p10": vmin, "p75": mid, "p975": vmax})


StatisticsProvider = Callable[[], Optional[ThermalStatistics]]


def compute_statistics(volume: Volume) -> ThermalStatistics:
    """Min, max and the p10 / p75 / p97.5 percentiles of the dequantized field."""
    values = volume.dequantize(volume.data)
    pcts = np.percentile(values, STATS_PERCENTILES)
    print(f"[Statistics] {volume.describe()}: min={values.min():.2f}, max={values.max():.2f}")
    return ThermalStatistics(
        min=float(values.min()),
        max=float(values.max()),
        percentiles={key: float(p) for key, p in zip(PERCENTILE_KEYS, pcts)},
    )


def _two_segment(value: float, low: float, mid: float, high: float) -> str:
    if value <= mid:
        t = (value - low) / max(1e-9, mid - low)
        return lerp_hex(THERMAL_GREEN, THERMAL_YELLOW, min(1.0, max(0.0, t)))
    t = (value - mid) / max(1e-9, high - mid)
    return lerp_hex(THERMAL_YELLOW, THERMAL_RED, min(1.0, max(0.0, t)))


def color_for_level(level: float, stats: ThermalStatistics) -> str:
    """
    Hex colour for a temperature, placed on the statistical distribution.

    p10 maps to green, p75 to yellow and p97.5 to red.  Returns white when
    the statistics are unusable (non-finite or collapsed).
    """
    p = stats.percentiles
    low = p.get("p10", stats.min)
    high = p.get("p975", stats.max)
    mid = p.get("p75", 0.5 * (low + high))
    if not (np.isfinite(level) and np.isfinite(low) and np.isfinite(high)) or high <= low:
        return "#FFFFFF"
    return _two_segment(float(level), low, mid, high)


def solid_color_for_threshold(level: float, stats: Optional[ThermalStatistics],
                              value_range: Tuple[float, float]) -> str:
    """Solid surface colour: statistics when available, else the value range midpoint split."""
    if stats is not None and stats.percentiles:
        return color_for_level(level, stats)
    vmin, vmax = (float(v) for v in value_range)
    return _two_segment(float(level), vmin, 0.5 * (vmin + vmax), vmax)


def surface_colors(request: IsoRequest, result: IsoResult, value_range: Tuple[float, float],
                   statistics: StatisticsProvider) -> Union[str, np.ndarray]:
    """
    Colours for an extracted surface.

    Gradient mode gives an (n_vertices, 3) ramp over the gradient magnitudes;
    Solid mode (or a result without usable scalars) gives one hex colour for
    the threshold, clamped into ``value_range``.  ``statistics`` is only
    called for the solid colour.
    """
    if request.color_mode == ColorMode.GRADIENT and result.scalars is not None \
            and result.scalars.size == result.vertex_count:
        return normalized_ramp_colors(result.scalars)
    vmin, vmax = (float(v) for v in value_range)
    level = min(vmax, max(vmin, request.threshold))
    return solid_color_for_threshold(level, statistics(), (vmin, vmax))
