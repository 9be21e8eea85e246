"""
Error taxonomy for volume loading and isosurface extraction.

Zero-denominator edge interpolation is resolved inside the extractor
(t = 0.5) and an empty surface is a valid ``IsoResult``; neither has an
exception type.
"""

from __future__ import annotations

from typing import Optional


class VolumeEngineError(Exception):
    """Root of all engine errors."""


class InvalidVolumeMetadata(VolumeEngineError, ValueError):
    """Dimensions, spacing or value range are missing or inconsistent."""


class DataShapeMismatch(InvalidVolumeMetadata):
    """Byte buffer length does not equal nx * ny * nz."""

    def __init__(self, expected: int, actual: int, dims=None) -> None:
        self.expected = int(expected)
        self.actual = int(actual)
        self.dims = tuple(dims) if dims is not None else None
        detail = f" for dims {list(self.dims)}" if self.dims is not None else ""
        super().__init__(
            f"Volume buffer holds {self.actual} bytes, expected {self.expected}{detail}."
        )


class WorkerFailure(VolumeEngineError, RuntimeError):
    """Internal or transport failure inside the isolated extraction process."""

    def __init__(self, message: str, request_id: Optional[int] = None, error_type: Optional[str] = None) -> None:
        self.request_id = request_id
        self.error_type = error_type
        prefix = f"[request {request_id}] " if request_id is not None else ""
        suffix = f" ({error_type})" if error_type else ""
        super().__init__(f"{prefix}{message}{suffix}")


__all__ = [
    "VolumeEngineError",
    "InvalidVolumeMetadata",
    "DataShapeMismatch",
    "WorkerFailure",
]
