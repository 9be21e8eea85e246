"""
Level of Detail (LOD) manager for efficient volume rendering.
Provides block-averaged volume reduction and distance-based tier selection.
"""

import math
from enum import Enum
from typing import Callable, Dict, List, Optional

import numpy as np

from config import LOD_HALF_THRESHOLD, LOD_QUARTER_THRESHOLD
from core.base import Volume
from core.progress import emit_status


def downsample_volume(volume: Volume, stride: int) -> Volume:
    """
    Reduce a volume by averaging non-overlapping ``stride``^3 blocks.

    Boundary blocks are truncated to the remaining extent.  Each output voxel
    is the block mean rounded half away from zero; spacing is multiplied by
    ``stride`` and the value range is copied unchanged, so bytes keep their
    physical meaning.  ``stride == 1`` returns ``volume`` itself.
    """
    stride = int(stride)
    if stride < 1:
        raise ValueError(f"stride must be >= 1, got {stride}")
    if stride == 1:
        return volume

    grid = volume.grid().astype(np.int64)
    nz, ny, nx = grid.shape
    starts_z = np.arange(0, nz, stride)
    starts_y = np.arange(0, ny, stride)
    starts_x = np.arange(0, nx, stride)

    sums = np.add.reduceat(grid, starts_z, axis=0)
    sums = np.add.reduceat(sums, starts_y, axis=1)
    sums = np.add.reduceat(sums, starts_x, axis=2)

    count_z = np.minimum(starts_z + stride, nz) - starts_z
    count_y = np.minimum(starts_y + stride, ny) - starts_y
    count_x = np.minimum(starts_x + stride, nx) - starts_x
    counts = count_z[:, None, None] * count_y[None, :, None] * count_x[None, None, :]

    # floor(sum / count + 1/2) in exact integer arithmetic
    means = (2 * sums + counts) // (2 * counts)
    data = means.astype(np.uint8).reshape(-1)
    data.setflags(write=False)

    sx, sy, sz = volume.spacing
    return Volume(
        dims=(len(starts_x), len(starts_y), len(starts_z)),
        spacing=(sx * stride, sy * stride, sz * stride),
        origin=volume.origin,
        data=data,
        value_range=volume.value_range,
        metadata={**volume.metadata, "LODStride": stride},
    )


class LODTier(Enum):
    """Volume LOD tiers; the value is the downsampling stride."""
    FULL = 1
    HALF = 2
    QUARTER = 4

    @property
    def stride(self) -> int:
        return self.value

    @property
    def label(self) -> str:
        return self.name.capitalize()

    @classmethod
    def parse(cls, value) -> "LODTier":
        if isinstance(value, LODTier):
            return value
        if isinstance(value, int):
            return cls(value)
        try:
            return cls[str(value).strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown LOD tier {value!r}. Expected Full, Half or Quarter.") from None


def select_tier(camera_distance: float,
                half_threshold: float = LOD_HALF_THRESHOLD,
                quarter_threshold: float = LOD_QUARTER_THRESHOLD) -> LODTier:
    """
    Pick a tier for the camera distance.

    Monotone: a larger distance never yields a finer tier than a smaller one.
    """
    if half_threshold > quarter_threshold:
        raise ValueError(
            f"half_threshold ({half_threshold}) must not exceed quarter_threshold ({quarter_threshold})"
        )
    if camera_distance > quarter_threshold:
        return LODTier.QUARTER
    if camera_distance > half_threshold:
        return LODTier.HALF
    return LODTier.FULL


class LODRenderManager:
    """
    Manages the active volume tier with distance-driven selection.

    Reduced tiers are built lazily and cached; re-selecting the active tier is
    a no-op.
    """

    def __init__(self, status_callback: Optional[Callable[[str], None]] = None,
                 half_threshold: float = LOD_HALF_THRESHOLD,
                 quarter_threshold: float = LOD_QUARTER_THRESHOLD):
        """
        Args:
            status_callback: Optional status update callback.
            half_threshold: Distance above which the Half tier is used.
            quarter_threshold: Distance above which the Quarter tier is used.
        """
        if half_threshold > quarter_threshold:
            raise ValueError("half_threshold must not exceed quarter_threshold")
        self._status_callback = status_callback
        self.half_threshold = half_threshold
        self.quarter_threshold = quarter_threshold
        self.base_volume: Optional[Volume] = None
        self.current_tier: LODTier = LODTier.FULL
        self._levels: Dict[LODTier, Volume] = {}
        self.rebuild_count = 0

    def _status(self, message: str) -> None:
        emit_status(self._status_callback, message)

    def set_volume(self, volume: Volume, tier: LODTier = LODTier.FULL) -> None:
        """Install a new base volume and drop every cached tier."""
        self.base_volume = volume
        self._levels = {LODTier.FULL: volume}
        self.current_tier = LODTier.FULL
        self.rebuild_count = 0
        if tier != LODTier.FULL:
            self.set_tier(tier)

    @property
    def active_volume(self) -> Optional[Volume]:
        if self.base_volume is None:
            return None
        return self._levels.get(self.current_tier, self.base_volume)

    def get_level(self, tier: LODTier) -> Optional[Volume]:
        """Volume for ``tier``, building and caching it on first use."""
        if self.base_volume is None:
            return None
        tier = LODTier.parse(tier)
        level = self._levels.get(tier)
        if level is None:
            self._status(f"Volume: Building {tier.label} LOD (stride {tier.stride}) ...")
            level = downsample_volume(self.base_volume, tier.stride)
            self._levels[tier] = level
            self.rebuild_count += 1
            self._status(f"Volume: LOD ready: {level.describe()}")
        return level

    def set_tier(self, tier: LODTier) -> bool:
        """
        Activate ``tier``.

        Returns:
            True when the active tier changed, False for a no-op re-selection.
        """
        tier = LODTier.parse(tier)
        if self.base_volume is None or tier == self.current_tier:
            return False
        level = self.get_level(tier)
        self.current_tier = tier
        self._status(f"Volume mesh switched to {tier.label} (dims {level.describe()})")
        return True

    def update_for_distance(self, camera_distance: float) -> bool:
        """Select the tier for the camera distance; True when it changed."""
        if self.base_volume is None:
            return False
        desired = select_tier(camera_distance, self.half_threshold, self.quarter_threshold)
        if desired == self.current_tier:
            return False
        self._status(f"Auto volume LOD: {desired.label} (distance {camera_distance:.3f})")
        return self.set_tier(desired)

    def get_for_memory(self, max_memory_mb: float) -> Optional[Volume]:
        """Finest tier whose byte buffer fits in ``max_memory_mb``."""
        if self.base_volume is None:
            return None
        for tier in LODTier:
            n_bytes = int(np.prod([math.ceil(d / tier.stride) for d in self.base_volume.dims]))
            if n_bytes / (1024 * 1024) <= max_memory_mb:
                return self.get_level(tier)
        return self.get_level(LODTier.QUARTER)

    def level_info(self) -> List[Dict]:
        return [
            {"tier": tier.label, "dimensions": level.dims, "memory_mb": level.num_voxels / (1024 * 1024)}
            for tier, level in sorted(self._levels.items(), key=lambda kv: kv[0].stride)
        ]

    def __repr__(self):
        info_str = ", ".join(f"{i['tier']}:{i['dimensions']}" for i in self.level_info())
        return f"LODRenderManager(active={self.current_tier.label}, {info_str})"
