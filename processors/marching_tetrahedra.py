"""
Marching-tetrahedra isosurface extraction for quantized thermal volumes.

Each cell is split into six tetrahedra around its 0 -> 6 diagonal.  Cells are
processed in z-slabs with numpy so memory stays bounded on large volumes,
while the emitted triangle order stays z-major, then y, then x, then tetra
index, then triangle index.
"""

from typing import Callable, Optional, Sequence, Tuple

import numpy as np

from config import ISO_CROSSING_CHUNK_CELLS, ISO_MAX_STRIDE, ISO_SLAB_CELLS, ISO_STRIDE2_CELLS, ISO_STRIDE3_CELLS
from core.base import BaseProcessor, Volume
from core.dto import IsoResult

# Corner offsets (dx, dy, dz) in the order
# (x,y,z) (x1,y,z) (x1,y1,z) (x,y1,z) (x,y,z1) (x1,y,z1) (x1,y1,z1) (x,y1,z1)
CORNER_OFFSETS = np.array([
    [0, 0, 0],
    [1, 0, 0],
    [1, 1, 0],
    [0, 1, 0],
    [0, 0, 1],
    [1, 0, 1],
    [1, 1, 1],
    [0, 1, 1],
], dtype=bool)

# Six tetrahedra fanned around the cube diagonal 0 -> 6
TETRAHEDRA = np.array([
    [0, 1, 2, 6],
    [0, 2, 3, 6],
    [0, 5, 1, 6],
    [0, 4, 5, 6],
    [0, 3, 7, 6],
    [0, 7, 4, 6],
], dtype=np.intp)

# Remaining tetra vertices (ascending) for each lone vertex
_OTHERS = np.array([
    [1, 2, 3],
    [0, 2, 3],
    [0, 1, 3],
    [0, 1, 2],
], dtype=np.intp)


def resolve_stride(dims: Sequence[int], quality_stride: Optional[int] = None) -> int:
    """
    Cell stride for extraction.

    Without a quality stride the stride adapts to the cell count (2 above 8M
    cells, 3 above 27M).  An explicit stride overrides, clamped to [1, 4].
    """
    nx, ny, nz = (int(d) for d in dims)
    cells = max(1, (nx - 1) * (ny - 1) * (nz - 1))
    stride = 1
    if cells > ISO_STRIDE2_CELLS:
        stride = 2
    if cells > ISO_STRIDE3_CELLS:
        stride = 3
    if quality_stride is not None and int(quality_stride) > 0:
        stride = max(1, min(ISO_MAX_STRIDE, int(quality_stride)))
    return stride


def gradient_magnitude(volume: Volume) -> np.ndarray:
    """
    Per-voxel |grad T| in physical units per world unit, shape (nz, ny, nx).

    Central differences inside, one-sided at the borders; axes of length 1
    contribute nothing.
    """
    grid = volume.grid().astype(np.float32)
    sx, sy, sz = volume.spacing
    scale = np.float32(volume.byte_scale)
    sq = np.zeros(grid.shape, dtype=np.float32)
    for axis, step in ((0, sz), (1, sy), (2, sx)):
        if grid.shape[axis] < 2:
            continue
        d = np.gradient(grid, axis=axis, edge_order=1)
        d *= scale / np.float32(step)
        sq += d * d
    return np.sqrt(sq)


def interpolate_edge(p_a, p_b, s_a, s_b, g_a, g_b, threshold: float) -> Tuple[np.ndarray, np.ndarray]:
    """
    Threshold crossing on edges A -> B (vectorised).

    t = (threshold - sA) / (sB - sA), or 0.5 when sA == sB.  The same t
    blends positions and gradient magnitudes.
    """
    s_a = np.asarray(s_a, dtype=np.float64)
    s_b = np.asarray(s_b, dtype=np.float64)
    denom = s_b - s_a
    flat = denom == 0
    t = np.where(flat, 0.5, (threshold - s_a) / np.where(flat, 1.0, denom))
    p_a = np.asarray(p_a, dtype=np.float64)
    p_b = np.asarray(p_b, dtype=np.float64)
    g_a = np.asarray(g_a, dtype=np.float64)
    g_b = np.asarray(g_b, dtype=np.float64)
    points = p_a + (p_b - p_a) * t[..., None]
    grads = g_a + (g_b - g_a) * t
    return points, grads


def face_normals(a: np.ndarray, b: np.ndarray, c: np.ndarray) -> np.ndarray:
    """Unit (b - a) x (c - a) per triangle; zero-area triangles get a zero normal."""
    n = np.cross(b - a, c - a)
    length = np.linalg.norm(n, axis=-1, keepdims=True)
    return np.divide(n, length, out=np.zeros_like(n), where=length > 0)


def _axis_cells(n: int, stride: int) -> Tuple[np.ndarray, np.ndarray]:
    lo = np.arange(0, n - 1, stride, dtype=np.intp)
    hi = np.minimum(lo + stride, n - 1)
    return lo, hi


def _slab_triangles(grid, gmag, origin, spacing, thresh8, zl, zh, y_lo, y_hi, x_lo, x_hi):
    """
    Triangles for one slab of cells.

    Crossing cells are triangulated ``ISO_CROSSING_CHUNK_CELLS`` at a time, so
    the per-tetra working arrays stay bounded on noisy slabs.

    Returns (vertices (T, 3, 3), gradients (T, 3)) in emission order, or None.
    """
    shape = (len(zl), len(y_lo), len(x_lo))
    corner_vals = np.empty(shape + (8,), dtype=np.uint8)
    for c, (fx, fy, fz) in enumerate(CORNER_OFFSETS):
        corner_vals[..., c] = grid[np.ix_(zh if fz else zl, y_hi if fy else y_lo, x_hi if fx else x_lo)]
    vals = corner_vals.reshape(-1, 8)
    above = vals >= thresh8
    n_above = above.sum(axis=1)
    cells = np.nonzero((n_above > 0) & (n_above < 8))[0]
    if cells.size == 0:
        return None

    parts = []
    for start in range(0, cells.size, ISO_CROSSING_CHUNK_CELLS):
        out = _cell_triangles(vals, above, cells[start:start + ISO_CROSSING_CHUNK_CELLS], shape,
                              gmag, origin, spacing, thresh8, zl, zh, y_lo, y_hi, x_lo, x_hi)
        if out is not None:
            parts.append(out)
    if not parts:
        return None
    return np.concatenate([p[0] for p in parts]), np.concatenate([p[1] for p in parts])


def _cell_triangles(vals, above, cells, shape, gmag, origin, spacing, thresh8, zl, zh, y_lo, y_hi, x_lo, x_hi):
    """Triangles for ascending crossing-cell indices ``cells`` of one slab."""
    iz, iy, ix = np.unravel_index(cells, shape)
    cz = np.where(CORNER_OFFSETS[:, 2], zh[iz][:, None], zl[iz][:, None])
    cy = np.where(CORNER_OFFSETS[:, 1], y_hi[iy][:, None], y_lo[iy][:, None])
    cx = np.where(CORNER_OFFSETS[:, 0], x_hi[ix][:, None], x_lo[ix][:, None])

    pos = origin + np.stack([cx, cy, cz], axis=-1) * spacing          # (m, 8, 3)
    grads = gmag[cz, cy, cx]                                          # (m, 8)

    tv = vals[cells][:, TETRAHEDRA].reshape(-1, 4).astype(np.float64)
    ta = above[cells][:, TETRAHEDRA].reshape(-1, 4)
    tp = pos[:, TETRAHEDRA].reshape(-1, 4, 3)
    tg = grads[:, TETRAHEDRA].reshape(-1, 4)
    # Emission key: (cell, tetra) in traversal order
    tet_key = np.arange(tv.shape[0], dtype=np.int64)

    k = ta.sum(axis=1)

    def edge(rows, a, b):
        return interpolate_edge(tp[rows, a], tp[rows, b], tv[rows, a], tv[rows, b],
                                tg[rows, a], tg[rows, b], thresh8)

    tris, gvals, keys = [], [], []

    # One vertex on its own side: a single triangle, reversed when it is the
    # lone vertex below the threshold.
    rows = np.nonzero((k == 1) | (k == 3))[0]
    if rows.size:
        lone_above = (k[rows] == 1)[:, None]
        minority = np.where(lone_above, ta[rows], ~ta[rows])
        top = np.argmax(minority, axis=1)
        others = _OTHERS[top]
        pa, ga = edge(rows, top, others[:, 0])
        pb, gb = edge(rows, top, others[:, 1])
        pc, gc = edge(rows, top, others[:, 2])
        flip = ~lone_above
        v0 = np.where(flip, pc, pa)
        v2 = np.where(flip, pa, pc)
        g0 = np.where(flip[:, 0], gc, ga)
        g2 = np.where(flip[:, 0], ga, gc)
        tris.append(np.stack([v0, pb, v2], axis=1))
        gvals.append(np.stack([g0, gb, g2], axis=1))
        keys.append(tet_key[rows] * 2)

    # Two on each side: a quad split along a fixed diagonal
    rows = np.nonzero(k == 2)[0]
    if rows.size:
        order = np.argsort(~ta[rows], axis=1, kind="stable")
        i0, i1, o0, o1 = order[:, 0], order[:, 1], order[:, 2], order[:, 3]
        p0, g0 = edge(rows, i0, o0)
        p1, g1 = edge(rows, i0, o1)
        p2, g2 = edge(rows, i1, o0)
        p3, g3 = edge(rows, i1, o1)
        tris.append(np.stack([p0, p1, p2], axis=1))
        gvals.append(np.stack([g0, g1, g2], axis=1))
        keys.append(tet_key[rows] * 2)
        tris.append(np.stack([p1, p3, p2], axis=1))
        gvals.append(np.stack([g1, g3, g2], axis=1))
        keys.append(tet_key[rows] * 2 + 1)

    if not tris:
        return None
    order = np.argsort(np.concatenate(keys), kind="stable")
    return np.concatenate(tris)[order], np.concatenate(gvals)[order]


def extract_isosurface(volume: Volume, thresh8: int, stride: Optional[int] = 1,
                       callback: Optional[Callable[[int, str], None]] = None) -> IsoResult:
    """
    Extract the ``thresh8`` isosurface of ``volume`` as an unindexed triangle soup.

    Args:
        volume: Source volume (metadata is validated on construction).
        thresh8: Threshold on the byte scale, 0..255.  A voxel is inside when
            its byte value is >= thresh8.
        stride: Cell stride; None selects it from the cell count.
        callback: Optional progress callback (percent, message).

    Returns:
        IsoResult with per-vertex gradient magnitude scalars.  An empty
        result means there is no surface at this level.
    """
    if not isinstance(volume, Volume):
        raise TypeError(f"extract_isosurface expects a Volume, got {type(volume).__name__}")
    if isinstance(thresh8, bool) or int(thresh8) != thresh8 or not 0 <= int(thresh8) <= 255:
        raise ValueError(f"thresh8 must be an integer in [0, 255], got {thresh8!r}")
    thresh8 = int(thresh8)
    stride = resolve_stride(volume.dims, stride)

    nx, ny, nz = volume.dims
    z_lo, z_hi = _axis_cells(nz, stride)
    y_lo, y_hi = _axis_cells(ny, stride)
    x_lo, x_hi = _axis_cells(nx, stride)
    if z_lo.size == 0 or y_lo.size == 0 or x_lo.size == 0:
        if callback:
            callback(100, "No cells to process.")
        return IsoResult.empty()

    grid = volume.grid()
    gmag = gradient_magnitude(volume)
    origin = np.asarray(volume.origin, dtype=np.float64)
    spacing = np.asarray(volume.spacing, dtype=np.float64)

    n_slabs = (z_lo.size + ISO_SLAB_CELLS - 1) // ISO_SLAB_CELLS
    all_tris, all_grads = [], []
    for i, start in enumerate(range(0, z_lo.size, ISO_SLAB_CELLS)):
        end = start + ISO_SLAB_CELLS
        out = _slab_triangles(grid, gmag, origin, spacing, thresh8,
                              z_lo[start:end], z_hi[start:end], y_lo, y_hi, x_lo, x_hi)
        if out is not None:
            all_tris.append(out[0])
            all_grads.append(out[1])
        if callback:
            callback(int(100 * (i + 1) / n_slabs), f"Extracting slab {i + 1}/{n_slabs}...")

    if not all_tris:
        return IsoResult.empty()

    tris = np.concatenate(all_tris)
    grads = np.concatenate(all_grads)
    normals = face_normals(tris[:, 0], tris[:, 1], tris[:, 2])
    normals = np.repeat(normals[:, None, :], 3, axis=1)
    return IsoResult(positions=tris.reshape(-1), normals=normals.reshape(-1), scalars=grads.reshape(-1))


class IsosurfaceProcessor(BaseProcessor):
    """
    Isosurface extraction at a physical threshold.

    The threshold is quantized through ``Volume.quantize`` so extraction
    and rendering agree on the byte mapping.
    """

    def process(self, volume: Volume, callback: Optional[Callable[[int, str], None]] = None,
                threshold: float = 0.0, quality_stride: Optional[int] = None) -> IsoResult:
        thresh8 = volume.quantize(threshold)
        stride = resolve_stride(volume.dims, quality_stride)
        print(f"[IsoProcessor] Extracting {threshold:.2f} (byte {thresh8}) from {volume.describe()}, stride {stride}")
        result = extract_isosurface(volume, thresh8, stride, callback)
        print(f"[IsoProcessor] {result.triangle_count} triangles")
        return result
