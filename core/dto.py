"""
Data Transfer Objects (DTOs) for the thermal volume engine.

Design rules
------------
* All DTOs are immutable (frozen=True).  Callers build a new DTO and *push*
  it to the engine; nothing is mutated in place.
* No GUI imports anywhere in this module.
* ``from_dict`` / ``to_dict`` factory methods keep serialisation in one place.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

import numpy as np

from config import (
    DEFAULT_ISO_COLOR_MODE,
    DEFAULT_ISO_LEVEL,
    DEFAULT_ISO_QUALITY,
    DEFAULT_WINDOW_MAX,
    DEFAULT_WINDOW_MIN,
    ISO_MAX_STRIDE,
    ISO_QUALITY_PRESETS,
    RAYMARCH_DEFAULT_OPACITY,
    RAYMARCH_DEFAULT_STEPS,
    RAYMARCH_OPACITY_RANGE,
    RAYMARCH_STEPS_RANGE,
)
from core.base import validate_dims, validate_origin, validate_spacing, validate_value_range


# ---------------------------------------------------------------------------
# Volume metadata (wire format)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class VolumeMeta:
    """
    Metadata record of the volume wire format::

        {dimensions: [nx, ny, nz], spacing: [sx, sy, sz],
         origin: [ox, oy, oz], valueRange: [vmin, vmax]}
    """

    dims:        Tuple[int, int, int]
    spacing:     Tuple[float, float, float]
    value_range: Tuple[float, float]
    origin:      Tuple[float, float, float] = (0.0, 0.0, 0.0)

    @staticmethod
    def from_dict(d: Mapping[str, Any]) -> "VolumeMeta":
        """Parse and validate a wire metadata record (``dims`` accepted for ``dimensions``)."""
        dims = d.get("dimensions", d.get("dims"))
        value_range = d.get("valueRange", d.get("value_range"))
        return VolumeMeta(
            dims        = validate_dims(dims),
            spacing     = validate_spacing(d.get("spacing")),
            value_range = validate_value_range(value_range),
            origin      = validate_origin(d.get("origin")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dimensions": list(self.dims),
            "spacing":    list(self.spacing),
            "origin":     list(self.origin),
            "valueRange": list(self.value_range),
        }


# ---------------------------------------------------------------------------
# Isosurface request / result
# ---------------------------------------------------------------------------

class ColorMode(str, Enum):
    SOLID = "Solid"
    GRADIENT = "Gradient"

    @classmethod
    def parse(cls, value: Any) -> "ColorMode":
        if isinstance(value, ColorMode):
            return value
        key = str(value).strip().lower()
        if key in ("solid", "solid color"):
            return cls.SOLID
        if key in ("gradient", "gradientmagnitude", "gradient magnitude"):
            return cls.GRADIENT
        raise ValueError(f"Unknown color mode: {value!r}. Supported: 'Solid', 'Gradient'.")


def _finite(name: str, value: Any) -> float:
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"{name} must be finite, got {value!r}.")
    return number


def quality_to_stride(quality: str) -> int:
    """Map a quality preset ('Fast' | 'Balanced' | 'Full') to a cell stride."""
    try:
        return ISO_QUALITY_PRESETS[quality]
    except KeyError:
        allowed = ", ".join(ISO_QUALITY_PRESETS)
        raise ValueError(f"Unknown quality preset {quality!r}. Expected one of: {allowed}.") from None


@dataclass(frozen=True)
class IsoRequest:
    """Isosurface request: physical threshold, cell stride and colouring."""

    threshold:      float
    quality_stride: int       = ISO_QUALITY_PRESETS[DEFAULT_ISO_QUALITY]
    color_mode:     ColorMode = ColorMode.GRADIENT

    def __post_init__(self) -> None:
        stride = int(self.quality_stride)
        if not 1 <= stride <= ISO_MAX_STRIDE:
            raise ValueError(f"quality_stride must be in [1, {ISO_MAX_STRIDE}], got {self.quality_stride}.")
        object.__setattr__(self, "quality_stride", stride)
        object.__setattr__(self, "threshold", _finite("threshold", self.threshold))
        object.__setattr__(self, "color_mode", ColorMode.parse(self.color_mode))

    @staticmethod
    def from_quality(threshold: float, quality: str = DEFAULT_ISO_QUALITY,
                     color_mode: Any = DEFAULT_ISO_COLOR_MODE) -> "IsoRequest":
        return IsoRequest(threshold=threshold, quality_stride=quality_to_stride(quality), color_mode=color_mode)

    @property
    def quality_label(self) -> str:
        for name, stride in ISO_QUALITY_PRESETS.items():
            if stride == self.quality_stride:
                return name
        return f"Stride {self.quality_stride}"


def _as_float_array(values: Any) -> np.ndarray:
    if values is None:
        return np.zeros(0, dtype=np.float32)
    return np.ascontiguousarray(np.asarray(values, dtype=np.float32).reshape(-1))


@dataclass(frozen=True, eq=False)
class IsoResult:
    """
    Unindexed triangle soup produced by isosurface extraction.

    positions / normals are flat xyz triples (three vertices per triangle,
    normals constant within a triangle); scalars, when present, hold one
    gradient magnitude per vertex.
    """

    positions: np.ndarray
    normals:   np.ndarray
    scalars:   Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        positions = _as_float_array(self.positions)
        normals = _as_float_array(self.normals)
        if positions.size % 9 != 0:
            raise ValueError(f"positions length {positions.size} is not a multiple of 9 (3 vertices x xyz).")
        if normals.size != positions.size:
            raise ValueError(f"normals length {normals.size} != positions length {positions.size}.")
        object.__setattr__(self, "positions", positions)
        object.__setattr__(self, "normals", normals)
        if self.scalars is not None:
            scalars = _as_float_array(self.scalars)
            if scalars.size != positions.size // 3:
                raise ValueError(f"scalars length {scalars.size} != vertex count {positions.size // 3}.")
            object.__setattr__(self, "scalars", scalars)

    @staticmethod
    def empty(with_scalars: bool = True) -> "IsoResult":
        zeros = np.zeros(0, dtype=np.float32)
        return IsoResult(positions=zeros, normals=zeros, scalars=zeros if with_scalars else None)

    @property
    def vertex_count(self) -> int:
        return self.positions.size // 3

    @property
    def triangle_count(self) -> int:
        return self.positions.size // 9

    @property
    def is_empty(self) -> bool:
        return self.positions.size == 0

    def vertices(self) -> np.ndarray:
        """(n_vertices, 3) view of the positions."""
        return self.positions.reshape(-1, 3)

    # ------------------------------------------------------------------
    # Response wire format
    # ------------------------------------------------------------------

    def to_message(self) -> Dict[str, Any]:
        msg: Dict[str, Any] = {"positions": self.positions, "normals": self.normals}
        if self.scalars is not None:
            msg["scalars"] = self.scalars
        return msg

    @staticmethod
    def from_message(msg: Mapping[str, Any]) -> "IsoResult":
        return IsoResult(
            positions = msg.get("positions"),
            normals   = msg.get("normals"),
            scalars   = msg.get("scalars"),
        )


# ---------------------------------------------------------------------------
# Renderable volume parameters
# ---------------------------------------------------------------------------

def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


@dataclass(frozen=True)
class RaymarchParams:
    """
    Immutable snapshot of every raymarch parameter.

    Updated functionally (``with_*`` methods return a new object) and applied
    to the compositor once per frame.  ``win_min <= win_max`` always holds:
    an update that would break it clamps the updated bound to the other one.
    """

    enabled:  bool  = False
    opacity:  float = RAYMARCH_DEFAULT_OPACITY
    steps:    int   = RAYMARCH_DEFAULT_STEPS
    win_min:  float = DEFAULT_WINDOW_MIN
    win_max:  float = DEFAULT_WINDOW_MAX

    def __post_init__(self) -> None:
        object.__setattr__(self, "opacity", _clamp(_finite("opacity", self.opacity), *RAYMARCH_OPACITY_RANGE))
        lo, hi = RAYMARCH_STEPS_RANGE
        object.__setattr__(self, "steps", int(_clamp(int(self.steps), lo, hi)))
        object.__setattr__(self, "win_min", _finite("win_min", self.win_min))
        object.__setattr__(self, "win_max", _finite("win_max", self.win_max))
        if self.win_min > self.win_max:
            object.__setattr__(self, "win_min", float(self.win_max))

    def with_window(self, win_min: Optional[float] = None, win_max: Optional[float] = None) -> "RaymarchParams":
        """
        Update one or both window bounds.

        A lone ``win_min`` above the current max is clamped down to it; a
        ``win_max`` below the (possibly new) min is clamped up to it.
        """
        lo, hi = self.win_min, self.win_max
        if win_min is not None:
            lo = _finite("win_min", win_min)
            if win_max is None and lo > hi:
                lo = hi
        if win_max is not None:
            hi = _finite("win_max", win_max)
            if hi < lo:
                hi = lo
        return replace(self, win_min=lo, win_max=hi)

    def reset_window(self, value_range: Tuple[float, float]) -> "RaymarchParams":
        """Reset the window to the full data range."""
        vmin, vmax = (_finite("value_range", v) for v in value_range)
        return replace(self, win_min=vmin, win_max=max(vmin, vmax))

    def with_opacity(self, opacity: float) -> "RaymarchParams":
        return replace(self, opacity=opacity)

    def with_steps(self, steps: int) -> "RaymarchParams":
        return replace(self, steps=steps)

    def with_enabled(self, enabled: bool) -> "RaymarchParams":
        return replace(self, enabled=bool(enabled))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "opacity": self.opacity,
            "steps":   self.steps,
            "win_min": self.win_min,
            "win_max": self.win_max,
        }

    @staticmethod
    def from_dict(d: Mapping[str, Any]) -> "RaymarchParams":
        base = RaymarchParams(
            enabled = bool(d.get("enabled", False)),
            opacity = float(d.get("opacity", RAYMARCH_DEFAULT_OPACITY)),
            steps   = int(d.get("steps", RAYMARCH_DEFAULT_STEPS)),
        )
        return base.with_window(
            win_min = float(d.get("win_min", DEFAULT_WINDOW_MIN)),
            win_max = float(d.get("win_max", DEFAULT_WINDOW_MAX)),
        )


# ---------------------------------------------------------------------------
# Headless pipeline DTO
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class IsoPipelineDTO:
    """
    Immutable configuration for a headless extraction run.

    Used by the CLI and by unit tests that bypass any display host.
    """

    # Input
    input_path:      str                 = ""
    loader_type:     str                 = "raw"        # "raw" | "synthetic"
    synthetic_size:  int                 = 32
    synthetic_kind:  str                 = "hotspot"    # "hotspot" | "ramp"

    # Level of detail
    lod_tier:        str                 = "Full"       # "Full" | "Half" | "Quarter"

    # Isosurface
    iso_level:       float               = DEFAULT_ISO_LEVEL
    quality:         str                 = DEFAULT_ISO_QUALITY
    color_mode:      str                 = DEFAULT_ISO_COLOR_MODE

    # Output
    output_dir:      Optional[str]       = None
    export_formats:  Tuple[str, ...]     = ("vtp",)     # "vtp", "ply", "stl", "vti", "npz"

    raymarch:        RaymarchParams      = field(default_factory=RaymarchParams)

    def iso_request(self) -> IsoRequest:
        return IsoRequest.from_quality(self.iso_level, self.quality, self.color_mode)

    # ------------------------------------------------------------------
    # Factories
    # ------------------------------------------------------------------

    @staticmethod
    def from_dict(d: Mapping[str, Any]) -> "IsoPipelineDTO":
        rm_raw = d.get("raymarch")
        return IsoPipelineDTO(
            input_path     = str(d.get("input_path",     "")),
            loader_type    = str(d.get("loader_type",    "raw")),
            synthetic_size = int(d.get("synthetic_size", 32)),
            synthetic_kind = str(d.get("synthetic_kind", "hotspot")),
            lod_tier       = str(d.get("lod_tier",       "Full")),
            iso_level      = float(d.get("iso_level",    DEFAULT_ISO_LEVEL)),
            quality        = str(d.get("quality",        DEFAULT_ISO_QUALITY)),
            color_mode     = str(d.get("color_mode",     DEFAULT_ISO_COLOR_MODE)),
            output_dir     = d.get("output_dir"),
            export_formats = tuple(d.get("export_formats", ["vtp"])),
            raymarch       = RaymarchParams.from_dict(rm_raw) if rm_raw else RaymarchParams(),
        )

    @staticmethod
    def from_yaml(path: str) -> "IsoPipelineDTO":
        """Load config from a YAML file."""
        import yaml  # only needed for CLI config files
        with open(path, encoding="utf-8") as fh:
            d = yaml.safe_load(fh)
        return IsoPipelineDTO.from_dict(d or {})

    @staticmethod
    def from_json(path: str) -> "IsoPipelineDTO":
        """Load config from a JSON file."""
        import json
        with open(path, encoding="utf-8") as fh:
            d = json.load(fh)
        return IsoPipelineDTO.from_dict(d)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "input_path":     self.input_path,
            "loader_type":    self.loader_type,
            "synthetic_size": self.synthetic_size,
            "synthetic_kind": self.synthetic_kind,
            "lod_tier":       self.lod_tier,
            "iso_level":      self.iso_level,
            "quality":        self.quality,
            "color_mode":     self.color_mode,
            "output_dir":     self.output_dir,
            "export_formats": list(self.export_formats),
            "raymarch":       self.raymarch.to_dict(),
        }
