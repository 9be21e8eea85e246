"""
File writers for thermal volumes, extracted isosurfaces and heat map images.

Surfaces go out as PolyData (.vtp/.vtk/.ply/.stl) or as the raw flat arrays
(.npz), with their display colours as ``RGB`` when given.  Volumes go out as
ImageData (.vti) carrying both the quantized bytes and the dequantized
temperatures; an (height, width, 4) RGBA image goes out as a one-slice .vti.
"""

import os
from typing import Optional

import numpy as np
import pyvista as pv

from core.base import Volume
from core.dto import IsoResult
from rendering.scene import SurfaceColors, colors_as_rgb, iso_result_to_polydata

MESH_EXTENSIONS = (".vtp", ".vtk", ".ply", ".stl")
VOLUME_EXTENSIONS = (".vti",)


def _write_polydata(result: IsoResult, filepath: str, colors=None) -> None:
    mesh = iso_result_to_polydata(result)
    if "GradientMagnitude" not in mesh.array_names:
        print(f"[Exporter] {os.path.basename(filepath)}: mesh carries no gradient scalars.")
    rgb = colors_as_rgb(colors, result.vertex_count)
    if rgb is not None:
        mesh.point_data["RGB"] = rgb
    mesh.save(filepath)
    print(f"[Exporter] {result.triangle_count} triangles -> {filepath}")


def _write_npz(result: IsoResult, filepath: str, colors=None) -> None:
    arrays = dict(positions=result.positions, normals=result.normals)
    if result.scalars is not None:
        arrays["scalars"] = result.scalars
    rgb = colors_as_rgb(colors, result.vertex_count)
    if rgb is not None:
        arrays["colors"] = rgb
    np.savez(filepath, **arrays)
    print(f"[Exporter] {result.vertex_count} vertices (flat arrays) -> {filepath}")


def _write_image_data(volume: Volume, filepath: str) -> None:
    image = pv.ImageData(dimensions=volume.dims, spacing=volume.spacing, origin=volume.origin)
    # both buffers are x-fastest, matching VTK point order
    image.point_data["values"] = np.ascontiguousarray(volume.data)
    image.point_data["temperature"] = volume.dequantize(volume.data).astype(np.float32)
    image.save(filepath)
    print(f"[Exporter] Volume {volume.describe()} -> {filepath}")


def _write_rgba_image(rgba: np.ndarray, filepath: str) -> None:
    height, width = rgba.shape[:2]
    image = pv.ImageData(dimensions=(width, height, 1))
    # image rows run top to bottom, VTK rows bottom to top
    pixels = np.clip(np.rint(rgba[::-1].reshape(-1, 4) * 255.0), 0, 255).astype(np.uint8)
    image.point_data["RGBA"] = pixels
    image.save(filepath)
    print(f"[Exporter] {width}x{height} heat map -> {filepath}")


def _is_rgba_image(data) -> bool:
    return isinstance(data, np.ndarray) and data.ndim == 3 and data.shape[2] == 4


class VTKExporter:
    """Picks a writer from the object type and the file extension."""

    @staticmethod
    def export(data, filepath: str, colors: Optional[SurfaceColors] = None) -> bool:
        """
        Write ``data`` to ``filepath``.

        Args:
            data: Volume, IsoResult or an (height, width, 4) RGBA image.
            filepath: Target path; its extension selects the format.
            colors: Surface colours (hex string or per-vertex RGB in [0, 1]);
                ignored for volumes and images.

        Returns:
            True once the file is written.

        Raises:
            ValueError: nothing to write, or the extension does not suit the data.
        """
        if data is None:
            raise ValueError("No data to export.")

        ext = os.path.splitext(filepath)[1].lower()
        if isinstance(data, IsoResult):
            if ext == ".npz":
                _write_npz(data, filepath, colors)
            elif ext in MESH_EXTENSIONS:
                _write_polydata(data, filepath, colors)
            else:
                raise ValueError(f"Unsupported surface format: {ext!r}")
        elif isinstance(data, Volume) or _is_rgba_image(data):
            if ext not in VOLUME_EXTENSIONS:
                raise ValueError(f"Unsupported image format: {ext!r}")
            if isinstance(data, Volume):
                _write_image_data(data, filepath)
            else:
                _write_rgba_image(data, filepath)
        else:
            raise ValueError(f"No exportable data found in {type(data).__name__}.")
        return True
