"""
Render engine context for thermal volumes.

Owns the loaded volume, its LOD tiers, the raymarch parameters and
compositor, the extraction scheduler and the registry of generated
surfaces.  Independent of any GUI framework: a scene host and a status
callback are injected.
"""

from dataclasses import dataclass
from typing import Callable, List, Optional

import numpy as np

from config import DEFAULT_ISO_COLOR_MODE, DEFAULT_ISO_LEVEL, DEFAULT_ISO_QUALITY
from core.base import Volume
from core.dto import ColorMode, IsoRequest, IsoResult, RaymarchParams
from core.errors import WorkerFailure
from processors.scheduler import ExtractionScheduler, build_request_message
from processors.statistics import StatisticsProvider, ThermalStatistics, compute_statistics, surface_colors
from rendering.lod_manager import LODRenderManager, LODTier
from rendering.raymarch import RaymarchCompositor
from rendering.scene import PyVistaSceneHost, SceneHost, SurfaceColors, unique_label


@dataclass(frozen=True, eq=False)
class GeneratedSurface:
    """A surface added to the scene by ``generate_isosurface``."""
    label: str
    level: float
    color_mode: ColorMode
    quality: str
    request_id: int
    result: IsoResult
    colors: SurfaceColors


class RenderEngine:
    """
    Explicit engine context.

    Raymarch parameters are pushed with ``update_params`` and take effect at
    the next ``frame``; surfaces are only added on the event-loop thread when
    an extraction result arrives.
    """

    def __init__(self, scene_host: Optional[SceneHost] = None,
                 scheduler: Optional[ExtractionScheduler] = None,
                 statistics_provider: Optional[StatisticsProvider] = None,
                 status_callback: Optional[Callable[[str], None]] = None):
        """
        Args:
            scene_host: Display collaborator; a headless PyVista host by default.
            scheduler: Extraction scheduler; one using isolated processes by default.
            statistics_provider: Returns ThermalStatistics for solid colouring.
                Statistics are computed from the volume when omitted.
            status_callback: Optional callback for status updates.
        """
        self._status_callback = status_callback
        self.scene_host: SceneHost = scene_host if scene_host is not None else PyVistaSceneHost()
        self.scheduler = scheduler or ExtractionScheduler(status_callback=self.update_status)
        self._statistics_provider = statistics_provider
        self._stats: Optional[ThermalStatistics] = None

        self.volume: Optional[Volume] = None
        self.lod = LODRenderManager(status_callback=self.update_status)
        self.params = RaymarchParams()
        self._pending_params: Optional[RaymarchParams] = None
        self.compositor: Optional[RaymarchCompositor] = None
        self.generated: List[GeneratedSurface] = []

    def update_status(self, message: str):
        """Update status via callback."""
        if self._status_callback:
            self._status_callback(message)
        else:
            print(f"[RenderEngine] {message}")

    # ------------------------------------------------------------------
    # Volume
    # ------------------------------------------------------------------

    def set_volume(self, volume: Volume, tier: LODTier = LODTier.FULL) -> None:
        """Install a volume; cached tiers and statistics are dropped."""
        self.volume = volume
        self._stats = None
        self.lod.set_volume(volume, tier)
        self.compositor = RaymarchCompositor(self.lod.active_volume, self.params)
        self.update_status(f"Volume: Loaded {volume.describe()} (range {volume.value_range[0]:g}..{volume.value_range[1]:g})")

    @property
    def active_volume(self) -> Optional[Volume]:
        return self.lod.active_volume

    # ------------------------------------------------------------------
    # Raymarch parameters
    # ------------------------------------------------------------------

    def update_params(self, params: RaymarchParams) -> None:
        """Queue a parameter snapshot for the next frame."""
        self._pending_params = params

    def reset_window(self) -> None:
        """Queue a window reset to the volume's full value range."""
        if self.volume is None:
            return
        base = self._pending_params or self.params
        self.update_params(base.reset_window(self.volume.value_range))

    def frame(self, camera_distance: Optional[float] = None) -> Optional[RaymarchCompositor]:
        """
        Per-frame update: LOD selection for the camera distance, then the
        queued parameter snapshot is applied to the compositor.
        """
        if self._pending_params is not None:
            self.params = self._pending_params
            self._pending_params = None
        if self.volume is None:
            return None

        if camera_distance is not None and self.lod.update_for_distance(camera_distance):
            self.compositor.set_volume(self.lod.active_volume)
        self.compositor.apply(self.params)
        return self.compositor

    def render_heatmap(self, eye, target, width: int, height: int, fov_deg: float = 45.0) -> Optional[np.ndarray]:
        """RGBA heat map image, or None when raymarching is disabled."""
        compositor = self.frame()
        if compositor is None or not self.params.enabled:
            return None
        return compositor.render_image(eye, target, width, height, fov_deg)

    # ------------------------------------------------------------------
    # Isosurfaces
    # ------------------------------------------------------------------

    def statistics(self) -> Optional[ThermalStatistics]:
        """Cached thermal statistics (best-effort)."""
        if self._stats is None and self.volume is not None:
            try:
                if self._statistics_provider is not None:
                    self._stats = self._statistics_provider()
                else:
                    self._stats = compute_statistics(self.volume)
            except Exception as exc:
                print(f"[RenderEngine] Statistics unavailable: {exc}")
                self._stats = None
        return self._stats

    def _surface_colors(self, request: IsoRequest, result: IsoResult) -> SurfaceColors:
        return surface_colors(request, result, self.volume.value_range, self.statistics)

    async def generate_isosurface(self, level: float = DEFAULT_ISO_LEVEL,
                                  quality: str = DEFAULT_ISO_QUALITY,
                                  color_mode=DEFAULT_ISO_COLOR_MODE) -> Optional[GeneratedSurface]:
        """
        Extract a surface at ``level`` (physical units) off the render path and
        add it to the scene.

        Returns the new surface, or None when the level has no surface or the
        worker failed; in both cases the scene is left untouched.

        Raises:
            InvalidVolumeMetadata / DataShapeMismatch: the request was rejected
                before any worker started.
            ValueError: non-finite level, or unknown quality or colour mode.
        """
        if self.volume is None:
            self.update_status("Custom Iso: Missing volume files.")
            return None

        request = IsoRequest.from_quality(level, quality, color_mode)
        tag = f"{request.threshold:.1f}°C ({request.color_mode.value}, {request.quality_label})"
        self.update_status(f"Custom Iso: Generating at {tag} ...")

        message = build_request_message(self.volume, request)
        ticket = self.scheduler.submit(message)
        try:
            result = await self.scheduler.wait(ticket)
        except WorkerFailure:
            self.update_status("Custom Iso: Worker error")
            return None

        if result.is_empty:
            self.update_status("Custom Iso: No surface at this level.")
            return None

        colors = self._surface_colors(request, result)
        label = unique_label(tag, self.scene_host.labels())
        self.scene_host.add_geometry(label, result, colors)
        surface = GeneratedSurface(
            label=label,
            level=request.threshold,
            color_mode=request.color_mode,
            quality=request.quality_label,
            request_id=ticket.request_id,
            result=result,
            colors=colors,
        )
        self.generated.append(surface)
        self.update_status(f"Custom Iso: Generated isosurface at {label}")
        return surface

    def set_surface_visible(self, label: str, visible: bool) -> None:
        self.scene_host.set_visible(label, visible)

    def surface_labels(self) -> List[str]:
        return [s.label for s in self.generated]
