"""
Core data structures and abstract base classes.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Sequence, Tuple, Union

import numpy as np

from config import QUANT_LEVELS
from core.errors import DataShapeMismatch, InvalidVolumeMetadata

Vec3 = Tuple[float, float, float]
Dims3 = Tuple[int, int, int]
ByteSource = Union[bytes, bytearray, memoryview, np.ndarray]


# ---------------------------------------------------------------------------
# Metadata validation
# ---------------------------------------------------------------------------

def validate_dims(dims: Optional[Sequence[Any]]) -> Dims3:
    """Normalise ``dims`` to three positive ints or raise InvalidVolumeMetadata."""
    if dims is None:
        raise InvalidVolumeMetadata("Volume dimensions are missing.")
    try:
        values = list(dims)
    except TypeError:
        raise InvalidVolumeMetadata(f"Volume dimensions must be a sequence, got {dims!r}.") from None
    if len(values) != 3:
        raise InvalidVolumeMetadata(f"Volume dimensions must have 3 entries, got {len(values)}.")

    out = []
    for v in values:
        try:
            iv = int(v)
        except (TypeError, ValueError):
            raise InvalidVolumeMetadata(f"Non-integer volume dimension {v!r}.") from None
        if iv != v or iv <= 0:
            raise InvalidVolumeMetadata(f"Volume dimensions must be positive integers, got {list(values)}.")
        out.append(iv)
    return (out[0], out[1], out[2])


def _validate_vec3(name: str, values: Optional[Sequence[Any]], *, positive: bool) -> Vec3:
    if values is None:
        raise InvalidVolumeMetadata(f"Volume {name} is missing.")
    try:
        floats = [float(v) for v in values]
    except (TypeError, ValueError):
        raise InvalidVolumeMetadata(f"Volume {name} must be numeric, got {values!r}.") from None
    if len(floats) != 3:
        raise InvalidVolumeMetadata(f"Volume {name} must have 3 entries, got {len(floats)}.")
    if not all(math.isfinite(v) for v in floats):
        raise InvalidVolumeMetadata(f"Volume {name} must be finite, got {floats}.")
    if positive and any(v <= 0 for v in floats):
        raise InvalidVolumeMetadata(f"Volume {name} must be positive, got {floats}.")
    return (floats[0], floats[1], floats[2])


def validate_spacing(spacing: Optional[Sequence[Any]]) -> Vec3:
    return _validate_vec3("spacing", spacing, positive=True)


def validate_origin(origin: Optional[Sequence[Any]]) -> Vec3:
    if origin is None:
        return (0.0, 0.0, 0.0)
    return _validate_vec3("origin", origin, positive=False)


def validate_value_range(value_range: Optional[Sequence[Any]]) -> Tuple[float, float]:
    if value_range is None:
        raise InvalidVolumeMetadata("Volume valueRange is missing.")
    try:
        vmin, vmax = (float(v) for v in value_range)
    except (TypeError, ValueError):
        raise InvalidVolumeMetadata(f"Volume valueRange must be two numbers, got {value_range!r}.") from None
    if not (math.isfinite(vmin) and math.isfinite(vmax)):
        raise InvalidVolumeMetadata(f"Volume valueRange must be finite, got {[vmin, vmax]}.")
    if vmin > vmax:
        raise InvalidVolumeMetadata(f"Volume valueRange must satisfy vmin <= vmax, got {[vmin, vmax]}.")
    return (vmin, vmax)


def as_byte_array(data: Optional[ByteSource], dims: Dims3) -> np.ndarray:
    """
    Return a private, read-only flat uint8 array for ``data``.

    Raises DataShapeMismatch when the length differs from nx * ny * nz.
    """
    if data is None:
        raise InvalidVolumeMetadata("Volume data buffer is missing.")

    if isinstance(data, np.ndarray):
        if data.dtype != np.uint8:
            raise InvalidVolumeMetadata(f"Volume data must be unsigned bytes, got dtype {data.dtype}.")
        arr = np.array(data, dtype=np.uint8, copy=True).reshape(-1)
    elif isinstance(data, bytes):
        arr = np.frombuffer(data, dtype=np.uint8)
    elif isinstance(data, (bytearray, memoryview)):
        arr = np.frombuffer(data, dtype=np.uint8).copy()
    else:
        raise InvalidVolumeMetadata(f"Unsupported volume data type: {type(data).__name__}.")

    expected = dims[0] * dims[1] * dims[2]
    if arr.size != expected:
        raise DataShapeMismatch(expected=expected, actual=arr.size, dims=dims)

    arr.setflags(write=False)
    return arr


# ---------------------------------------------------------------------------
# Volume
# ---------------------------------------------------------------------------

@dataclass(frozen=True, eq=False)
class Volume:
    """
    Quantized scalar field with its physical metadata.

    Attributes:
        dims: Grid size (nx, ny, nz).
        spacing: Physical size of one voxel along (x, y, z).
        origin: World position of voxel (0, 0, 0).
        data: Flat read-only uint8 array, index = z*(ny*nx) + y*nx + x.
        value_range: Physical values (vmin, vmax) mapped to bytes 0 and 255.
        metadata: Descriptive information (source, type, ...).
    """
    dims: Dims3
    spacing: Vec3
    origin: Vec3
    data: np.ndarray
    value_range: Tuple[float, float]
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        dims = validate_dims(self.dims)
        object.__setattr__(self, "dims", dims)
        object.__setattr__(self, "spacing", validate_spacing(self.spacing))
        object.__setattr__(self, "origin", validate_origin(self.origin))
        object.__setattr__(self, "value_range", validate_value_range(self.value_range))
        object.__setattr__(self, "metadata", dict(self.metadata or {}))
        if not (isinstance(self.data, np.ndarray) and self.data.dtype == np.uint8
                and self.data.ndim == 1 and not self.data.flags.writeable
                and self.data.size == dims[0] * dims[1] * dims[2]):
            object.__setattr__(self, "data", as_byte_array(self.data, dims))

    # ------------------------------------------------------------------
    # Quantization (single source of truth for the affine mapping)
    # ------------------------------------------------------------------

    def dequantize(self, byte_value):
        """Map stored byte(s) to physical units: vmin + (b/255) * (vmax - vmin)."""
        vmin, vmax = self.value_range
        b = np.asarray(byte_value, dtype=np.float64)
        out = vmin + (b / QUANT_LEVELS) * (vmax - vmin)
        return float(out) if out.ndim == 0 else out

    def quantize(self, physical_value):
        """
        Clamped inverse of ``dequantize``.

        Physical values are clamped to the value range, rounded half away from
        zero and clamped to [0, 255].  A zero-width range maps everything to 0.
        """
        vmin, vmax = self.value_range
        span = max(vmax - vmin, 1e-12)
        v = np.clip(np.asarray(physical_value, dtype=np.float64), vmin, vmax)
        q = np.floor((v - vmin) / span * QUANT_LEVELS + 0.5)
        q = np.clip(q, 0, QUANT_LEVELS).astype(np.uint8)
        return int(q) if q.ndim == 0 else q

    @property
    def byte_scale(self) -> float:
        """Physical units per byte step."""
        return self.dequantize(1) - self.dequantize(0)

    # ------------------------------------------------------------------
    # Geometry
    # ------------------------------------------------------------------

    @property
    def num_voxels(self) -> int:
        nx, ny, nz = self.dims
        return nx * ny * nz

    @property
    def num_cells(self) -> int:
        nx, ny, nz = self.dims
        return max(1, (nx - 1) * (ny - 1) * (nz - 1))

    def grid(self) -> np.ndarray:
        """Read-only (nz, ny, nx) view of the byte data."""
        nx, ny, nz = self.dims
        return self.data.reshape(nz, ny, nx)

    def bounds(self) -> Tuple[np.ndarray, np.ndarray]:
        """World-space AABB spanned by the voxel centres."""
        origin = np.asarray(self.origin, dtype=np.float64)
        extent = (np.asarray(self.dims, dtype=np.float64) - 1.0) * np.asarray(self.spacing, dtype=np.float64)
        return origin, origin + extent

    def copy_bytes(self) -> bytes:
        """Detached copy of the byte buffer (safe to hand to another process)."""
        return self.data.tobytes()

    def describe(self) -> str:
        nx, ny, nz = self.dims
        return f"{nx}x{ny}x{nz}"

    def __repr__(self) -> str:
        return (
            f"Volume(dims={list(self.dims)}, spacing={list(self.spacing)}, "
            f"origin={list(self.origin)}, value_range={list(self.value_range)})"
        )


class BaseLoader(ABC):
    """Abstract base class for volume acquisition strategies."""

    @abstractmethod
    def load(self, source: Any, callback: Optional[Callable[[int, str], None]] = None) -> Volume:
        """
        Load a volume.

        Args:
            source: Path, size or other loader-specific input.
            callback: Optional progress callback (percent, message).

        Returns:
            Volume: Loaded volume.
        """
        pass


class BaseProcessor(ABC):
    """Abstract base class for volumetric processing algorithms."""

    @abstractmethod
    def process(self, volume: Volume, callback: Optional[Callable[[int, str], None]] = None, **kwargs) -> Any:
        """
        Process a volume.

        Args:
            volume: Input volume.
            callback: Optional progress callback (percent, message).
            **kwargs: Algorithm specific parameters.
        """
        pass
