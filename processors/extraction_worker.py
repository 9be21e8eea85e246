"""
Worker-side handler for isosurface extraction requests.

``run_extraction`` is the function executed inside the isolated extraction
process.  It receives one request message and returns one response message;
it never raises, so every failure reaches the scheduler as a response.
"""

from typing import Any, Dict, Mapping

import numpy as np

from core.base import Volume
from core.errors import InvalidVolumeMetadata
from processors.marching_tetrahedra import extract_isosurface

REQUEST_KEYS = ("dims", "spacing", "origin", "thresh8", "data", "valueRange", "qualityStride")


def validate_request_message(message: Mapping[str, Any]) -> Volume:
    """
    Build the Volume described by a request message.

    Raises:
        InvalidVolumeMetadata: missing keys, bad threshold or stride.
        DataShapeMismatch: buffer length differs from nx * ny * nz.
    """
    missing = [k for k in ("dims", "spacing", "data", "valueRange", "thresh8") if message.get(k) is None]
    if missing:
        raise InvalidVolumeMetadata(f"Extraction request is missing: {', '.join(missing)}.")

    thresh8 = message["thresh8"]
    if isinstance(thresh8, bool) or not isinstance(thresh8, (int, np.integer)) or not 0 <= thresh8 <= 255:
        raise InvalidVolumeMetadata(f"thresh8 must be an integer in [0, 255], got {thresh8!r}.")

    stride = message.get("qualityStride")
    if stride is not None and (isinstance(stride, bool) or not isinstance(stride, (int, np.integer))
                               or not 1 <= stride <= 4):
        raise InvalidVolumeMetadata(f"qualityStride must be an integer in [1, 4], got {stride!r}.")

    return Volume(
        dims=message["dims"],
        spacing=message["spacing"],
        origin=message.get("origin"),
        data=message["data"],
        value_range=message["valueRange"],
    )


def run_extraction(message: Dict[str, Any]) -> Dict[str, Any]:
    """
    Execute one extraction request.

    Returns:
        ``{"positions", "normals", "scalars"}`` float32 arrays on success
        (empty arrays when there is no surface), or
        ``{"error", "error_type"}`` when anything fails.
    """
    try:
        volume = validate_request_message(message)
        result = extract_isosurface(volume, int(message["thresh8"]), message.get("qualityStride"))
        return result.to_message()
    except Exception as exc:
        return {"error": str(exc), "error_type": type(exc).__name__}
