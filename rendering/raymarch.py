"""
CPU reference raymarch compositor for thermal volumes.

Mirrors the GPU shader algorithm: ray/box intersection, N equal steps with a
per-ray hashed jitter, trilinear sampling, windowed opacity, a two-segment
green -> yellow -> red ramp and front-to-back compositing with early ray
termination.  Rays are processed in vectorised batches.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from scipy.ndimage import map_coordinates

from config import (
    HEATMAP_FOV_DEG,
    HEATMAP_VIEW_DIRECTION,
    RAYMARCH_BATCH_RAYS,
    RAYMARCH_EARLY_EXIT_ALPHA,
    RAYMARCH_ENTRY_EPSILON,
)
from core.base import Volume
from core.colormap import thermal_ramp, window_position
from core.dto import RaymarchParams

_HASH_WEIGHTS = np.array([12.9898, 78.233, 37.719], dtype=np.float64)


def intersect_box(origins, directions, box_min, box_max) -> Tuple[np.ndarray, np.ndarray]:
    """
    Slab-method ray/AABB intersection.

    Returns:
        (t_entry, t_exit) arrays, one value per ray.  The ray misses when
        ``t_exit <= 0`` or ``t_entry > t_exit``.
    """
    o = np.atleast_2d(np.asarray(origins, dtype=np.float64))
    d = np.atleast_2d(np.asarray(directions, dtype=np.float64))
    safe = np.where(np.abs(d) < 1e-12, np.where(d < 0, -1e-12, 1e-12), d)
    t0 = (np.asarray(box_min, dtype=np.float64) - o) / safe
    t1 = (np.asarray(box_max, dtype=np.float64) - o) / safe
    t_entry = np.minimum(t0, t1).max(axis=1)
    t_exit = np.maximum(t0, t1).min(axis=1)
    return t_entry, t_exit


def ray_jitter(points) -> np.ndarray:
    """
    Hash points to [0, 1): fract(sin(dot(p, (12.9898, 78.233, 37.719))) * 43758.5453).

    Stateless, so a static camera gets identical jitter every frame.
    """
    p = np.atleast_2d(np.asarray(points, dtype=np.float64))
    h = np.sin(p @ _HASH_WEIGHTS) * 43758.5453
    return h - np.floor(h)


def framing_camera(box_min, box_max, fov_deg: float = HEATMAP_FOV_DEG,
                   view_direction=HEATMAP_VIEW_DIRECTION) -> Tuple[np.ndarray, np.ndarray]:
    """Eye and target that keep the whole box in view, looking back along ``view_direction``."""
    lo = np.asarray(box_min, dtype=np.float64)
    hi = np.asarray(box_max, dtype=np.float64)
    target = 0.5 * (lo + hi)
    radius = max(0.5 * float(np.linalg.norm(hi - lo)), 1e-6)
    direction = np.asarray(view_direction, dtype=np.float64)
    direction /= np.linalg.norm(direction)
    distance = radius / np.sin(np.radians(fov_deg) / 2.0)
    return target + direction * distance, target


def smoothstep(edge0: float, edge1: float, x) -> np.ndarray:
    t = np.clip((np.asarray(x, dtype=np.float64) - edge0) / max(edge1 - edge0, 1e-6), 0.0, 1.0)
    return t * t * (3.0 - 2.0 * t)


@dataclass(frozen=True, eq=False)
class RaymarchResult:
    """
    Per-ray output of the compositor.

    Attributes:
        rgb: (n, 3) premultiplied accumulated colour.
        alpha: (n,) accumulated opacity.
        hit: (n,) whether the ray intersects the volume box.
        trace: optional (n, steps) accumulated opacity after each step.
    """
    rgb: np.ndarray
    alpha: np.ndarray
    hit: np.ndarray
    trace: Optional[np.ndarray] = None

    def rgba(self) -> np.ndarray:
        return np.concatenate([self.rgb, self.alpha[:, None]], axis=1)


class RaymarchCompositor:
    """
    Direct volume renderer for a single thermal volume tier.

    Parameters are a ``RaymarchParams`` snapshot swapped in with ``apply``
    once per frame; the volume is swapped with ``set_volume`` on LOD changes.
    """

    def __init__(self, volume: Volume, params: Optional[RaymarchParams] = None,
                 batch_rays: int = RAYMARCH_BATCH_RAYS):
        self.params = params or RaymarchParams()
        self.batch_rays = max(1, int(batch_rays))
        self.volume: Optional[Volume] = None
        self._grid: Optional[np.ndarray] = None
        self.set_volume(volume)

    def set_volume(self, volume: Volume) -> None:
        self.volume = volume
        self._grid = volume.grid().astype(np.float32)
        box_min, box_max = volume.bounds()
        # Flat axes (one voxel thick) get a one-voxel slab so rays can hit them
        half = 0.5 * np.asarray(volume.spacing) * (box_max <= box_min)
        self.box_min = box_min - half
        self.box_max = box_max + half

    def apply(self, params: RaymarchParams) -> bool:
        """Swap in a new parameter snapshot; True when anything changed."""
        changed = params != self.params
        self.params = params
        return changed

    # ------------------------------------------------------------------
    # Sampling
    # ------------------------------------------------------------------

    def sample(self, points) -> np.ndarray:
        """Trilinear sample at world points, returned in physical units."""
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        idx = (pts - np.asarray(self.volume.origin)) / np.asarray(self.volume.spacing)
        coords = np.stack([idx[:, 2], idx[:, 1], idx[:, 0]])
        raw = map_coordinates(self._grid, coords, order=1, mode="nearest")
        return self.volume.dequantize(raw)

    def classify(self, values) -> Tuple[np.ndarray, np.ndarray]:
        """Per-sample (alpha, rgb) for physical values under the current window."""
        p = self.params
        alpha = p.opacity * smoothstep(p.win_min, p.win_max, values)
        rgb = thermal_ramp(window_position(values, p.win_min, p.win_max))
        return alpha, rgb

    # ------------------------------------------------------------------
    # Marching
    # ------------------------------------------------------------------

    def march(self, origins, directions, return_trace: bool = False) -> RaymarchResult:
        """
        Composite rays front to back.

        Args:
            origins: (n, 3) or (3,) world-space ray origins.
            directions: (n, 3) or (3,) ray directions (normalised here).
            return_trace: Keep the accumulated alpha after every step.
        """
        o = np.atleast_2d(np.asarray(origins, dtype=np.float64))
        d = np.atleast_2d(np.asarray(directions, dtype=np.float64))
        if o.shape[0] == 1 and d.shape[0] > 1:
            o = np.repeat(o, d.shape[0], axis=0)
        if o.shape != d.shape or o.shape[1] != 3:
            raise ValueError(f"origins {o.shape} and directions {d.shape} must both be (n, 3)")
        norms = np.linalg.norm(d, axis=1)
        if np.any(norms == 0):
            raise ValueError("Ray directions must be non-zero.")
        d = d / norms[:, None]

        n = o.shape[0]
        steps = self.params.steps
        rgb = np.zeros((n, 3), dtype=np.float64)
        alpha = np.zeros(n, dtype=np.float64)
        hit = np.zeros(n, dtype=bool)
        trace = np.zeros((n, steps), dtype=np.float64) if return_trace else None

        for start in range(0, n, self.batch_rays):
            sl = slice(start, min(start + self.batch_rays, n))
            b_rgb, b_alpha, b_hit, b_trace = self._march_batch(o[sl], d[sl], steps)
            rgb[sl] = b_rgb
            alpha[sl] = b_alpha
            hit[sl] = b_hit
            if trace is not None:
                trace[sl] = b_trace

        return RaymarchResult(rgb=rgb, alpha=alpha, hit=hit, trace=trace)

    def _march_batch(self, o: np.ndarray, d: np.ndarray, steps: int):
        t_entry, t_exit = intersect_box(o, d, self.box_min, self.box_max)
        hit = (t_exit > 0.0) & (t_entry <= t_exit)

        t_start = np.maximum(t_entry, 0.0)
        t0 = t_start + RAYMARCH_ENTRY_EPSILON
        dt = (t_exit - t0) / steps
        hit &= dt > 0.0

        jitter = ray_jitter(o + d * t_start[:, None]) * dt
        ts = t0[:, None] + jitter[:, None] + np.arange(steps)[None, :] * dt[:, None]
        pts = o[:, None, :] + d[:, None, :] * ts[..., None]

        tol = 1e-9 * max(1.0, float(np.max(self.box_max - self.box_min)))
        inside = np.all((pts >= self.box_min - tol) & (pts <= self.box_max + tol), axis=2)
        inside &= hit[:, None]

        values = self.sample(pts).reshape(inside.shape)
        alpha, color = self.classify(values)
        alpha = np.where(inside, alpha, 0.0)

        # Front to back: acc_after = 1 - prod(1 - alpha).  A step runs only
        # while the opacity accumulated before it is <= the early-exit limit.
        transmittance = np.cumprod(1.0 - alpha, axis=1)
        before = np.concatenate([np.ones((alpha.shape[0], 1)), transmittance[:, :-1]], axis=1)
        active = (1.0 - before) <= RAYMARCH_EARLY_EXIT_ALPHA

        effective = np.where(active, 1.0 - alpha, 1.0)
        transmittance = np.cumprod(effective, axis=1)
        before = np.concatenate([np.ones((alpha.shape[0], 1)), transmittance[:, :-1]], axis=1)
        weights = before * np.where(active, alpha, 0.0)

        acc_rgb = np.einsum("ns,nsc->nc", weights, color)
        acc_trace = 1.0 - transmittance
        acc_alpha = acc_trace[:, -1]
        return acc_rgb, acc_alpha, hit, acc_trace

    # ------------------------------------------------------------------
    # Camera helper
    # ------------------------------------------------------------------

    def render_image(self, eye, target, width: int, height: int,
                     fov_deg: float = 45.0, up=(0.0, 0.0, 1.0)) -> np.ndarray:
        """Render an (height, width, 4) RGBA image from a pinhole camera."""
        eye = np.asarray(eye, dtype=np.float64)
        forward = np.asarray(target, dtype=np.float64) - eye
        forward /= np.linalg.norm(forward)
        right = np.cross(forward, np.asarray(up, dtype=np.float64))
        if np.linalg.norm(right) < 1e-9:
            right = np.cross(forward, np.array([0.0, 1.0, 0.0]))
        right /= np.linalg.norm(right)
        true_up = np.cross(right, forward)

        half_h = np.tan(np.radians(fov_deg) / 2.0)
        half_w = half_h * width / max(1, height)
        xs = ((np.arange(width) + 0.5) / width * 2.0 - 1.0) * half_w
        ys = (1.0 - (np.arange(height) + 0.5) / height * 2.0) * half_h
        px, py = np.meshgrid(xs, ys)
        dirs = forward + px[..., None] * right + py[..., None] * true_up

        result = self.march(eye, dirs.reshape(-1, 3))
        return result.rgba().reshape(height, width, 4)

    def snapshot(self, width: int, height: int, fov_deg: float = HEATMAP_FOV_DEG) -> np.ndarray:
        """RGBA image of the whole volume from the default oblique viewpoint."""
        eye, target = framing_camera(self.box_min, self.box_max, fov_deg)
        return self.render_image(eye, target, width, height, fov_deg)
