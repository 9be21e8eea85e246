"""
Synthetic thermal volume generators for testing and demos.
"""

import numpy as np
from typing import Optional, Callable, Tuple

from core.base import BaseLoader, Volume

SYNTHETIC_KINDS = ("hotspot", "ramp", "uniform")


class SyntheticThermalLoader(BaseLoader):
    """Synthetic thermal field generator (degrees Celsius)."""

    def __init__(self, value_range: Tuple[float, float] = (20.0, 60.0), spacing: float = 1.0):
        self.value_range = value_range
        self.spacing = spacing

    def load(self, size: int = 32, callback: Optional[Callable[[int, str], None]] = None,
             kind: str = "hotspot") -> Volume:
        if kind not in SYNTHETIC_KINDS:
            raise ValueError(f"Unknown synthetic kind: {kind!r}. Supported: {', '.join(SYNTHETIC_KINDS)}.")
        size = max(2, int(size))
        print(f"[Loader] Generating synthetic thermal field ({kind}, size={size})...")
        if callback:
            callback(0, "Initializing temperature field...")

        vmin, vmax = self.value_range
        dims = (size, size, size)
        zz, yy, xx = np.meshgrid(
            np.arange(size, dtype=np.float64),
            np.arange(size, dtype=np.float64),
            np.arange(size, dtype=np.float64),
            indexing="ij",
        )

        if kind == "hotspot":
            # Gaussian heat source slightly off-centre so the field is not symmetric
            c = np.array([0.55, 0.5, 0.45]) * (size - 1)
            sigma = max(1.0, size / 5.0)
            r2 = (xx - c[0]) ** 2 + (yy - c[1]) ** 2 + (zz - c[2]) ** 2
            field = vmin + (vmax - vmin) * np.exp(-r2 / (2.0 * sigma ** 2))
        elif kind == "ramp":
            field = vmin + (vmax - vmin) * xx / (size - 1)
        else:
            field = np.full(xx.shape, 0.5 * (vmin + vmax))

        if callback:
            callback(60, "Quantizing temperature field...")

        quantizer = Volume(
            dims=dims,
            spacing=(self.spacing,) * 3,
            origin=(0.0, 0.0, 0.0),
            data=np.zeros(size ** 3, dtype=np.uint8),
            value_range=(vmin, vmax),
        )
        data = quantizer.quantize(field).reshape(-1)

        if callback:
            callback(100, "Generation complete.")

        return Volume(
            dims=dims,
            spacing=quantizer.spacing,
            origin=quantizer.origin,
            data=data,
            value_range=quantizer.value_range,
            metadata={
                "Type": "Synthetic",
                "Description": f"Synthetic thermal field ({kind})",
                "GenerationMethod": kind,
            },
        )
