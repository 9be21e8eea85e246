"""
Scene host interface for generated isosurfaces, with a PyVista implementation.

The engine never draws directly: it hands triangle soups and colours to a
``SceneHost``, which may be an interactive plotter or a headless store.
"""

from typing import Dict, Iterable, List, Optional, Protocol, Union

import numpy as np
import pyvista as pv

from config import ISO_SURFACE_OPACITY
from core.colormap import hex_to_rgb
from core.dto import IsoResult

# A hex colour for a solid surface or an (n_vertices, 3) RGB array in [0, 1]
SurfaceColors = Union[str, np.ndarray]


class SceneHost(Protocol):
    """Collaborator that displays generated surfaces."""

    def add_geometry(self, label: str, result: IsoResult, colors: SurfaceColors) -> None:
        ...

    def set_visible(self, label: str, visible: bool) -> None:
        ...

    def labels(self) -> List[str]:
        ...


def unique_label(base: str, existing: Iterable[str]) -> str:
    """``base``, or ``base (2)``, ``base (3)``, ... if already taken."""
    taken = set(existing)
    label = base
    suffix = 2
    while label in taken:
        label = f"{base} ({suffix})"
        suffix += 1
    return label


def colors_as_rgb(colors: Optional[SurfaceColors], n_vertices: int) -> Optional[np.ndarray]:
    """(n_vertices, 3) uint8 colours; a hex colour is repeated for every vertex."""
    if isinstance(colors, str):
        return np.tile(np.asarray(hex_to_rgb(colors), dtype=np.uint8), (n_vertices, 1))
    if isinstance(colors, np.ndarray) and colors.shape == (n_vertices, 3):
        return np.clip(np.rint(colors * 255.0), 0, 255).astype(np.uint8)
    return None


def iso_result_to_polydata(result: IsoResult, colors: Optional[SurfaceColors] = None) -> pv.PolyData:
    """
    Wrap a triangle soup as PolyData.

    Every triangle keeps its own three points, so flat normals survive.
    Gradient magnitudes go to ``GradientMagnitude``; per-vertex colours to
    ``RGB`` (uint8).  A solid hex colour is left to the actor.
    """
    n_tri = result.triangle_count
    if n_tri == 0:
        return pv.PolyData()

    faces = np.column_stack([
        np.full(n_tri, 3, dtype=np.int64),
        np.arange(n_tri * 3, dtype=np.int64).reshape(n_tri, 3),
    ]).ravel()
    mesh = pv.PolyData(result.vertices().astype(np.float32), faces=faces)
    mesh.point_data["Normals"] = result.normals.reshape(-1, 3)
    if result.scalars is not None:
        mesh.point_data["GradientMagnitude"] = result.scalars
    if isinstance(colors, np.ndarray):
        rgb = colors_as_rgb(colors, result.vertex_count)
        if rgb is not None:
            mesh.point_data["RGB"] = rgb
    return mesh


class PyVistaSceneHost:
    """
    Scene host backed by PyVista meshes.

    With a plotter, each surface is added as a translucent double-sided actor
    and visibility toggles the actor; without one the meshes are only kept
    (headless use, export, tests).
    """

    def __init__(self, plotter=None, opacity: float = ISO_SURFACE_OPACITY):
        self.plotter = plotter
        self.opacity = opacity
        self.meshes: Dict[str, pv.PolyData] = {}
        self.colors: Dict[str, SurfaceColors] = {}
        self.visibility: Dict[str, bool] = {}
        self._actors: Dict[str, object] = {}

    def add_geometry(self, label: str, result: IsoResult, colors: SurfaceColors) -> None:
        if label in self.meshes:
            raise ValueError(f"Surface label already in use: {label!r}")
        mesh = iso_result_to_polydata(result, colors)
        self.meshes[label] = mesh
        self.colors[label] = colors
        self.visibility[label] = True

        if self.plotter is not None:
            if isinstance(colors, str):
                actor = self.plotter.add_mesh(
                    mesh, color=[c / 255.0 for c in hex_to_rgb(colors)],
                    opacity=self.opacity, name=label, culling=False,
                )
            else:
                actor = self.plotter.add_mesh(
                    mesh, scalars="RGB", rgb=True,
                    opacity=self.opacity, name=label, culling=False,
                )
            self._actors[label] = actor

    def set_visible(self, label: str, visible: bool) -> None:
        if label not in self.meshes:
            raise KeyError(f"Unknown surface label: {label!r}")
        self.visibility[label] = bool(visible)
        actor = self._actors.get(label)
        if actor is not None:
            actor.SetVisibility(bool(visible))
            self.plotter.render()

    def labels(self) -> List[str]:
        return list(self.meshes)

    def visible_labels(self) -> List[str]:
        return [label for label in self.meshes if self.visibility[label]]
