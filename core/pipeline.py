"""
Headless extraction pipeline shared by the CLI and the tests.

Four stages, each a node in a ``SimpleDAGExecutor``::

    load -> reduce -> extract -> export

A run can stop early (``target_stage``) or skip writing files
(``include_export=False``).  Stage bodies import their processors lazily so
building a pipeline stays cheap.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, List, Literal, Optional, Tuple

from config import HEATMAP_IMAGE_SIZE
from core.base import Volume
from core.dag import DAGNode, SimpleDAGExecutor
from core.dto import IsoPipelineDTO, IsoResult, RaymarchParams
from core.progress import ProgressBus, ProgressCallback


PipelineStage = Literal["load", "reduce", "extract", "export"]
PIPELINE_STAGE_ORDER: Tuple[PipelineStage, ...] = ("load", "reduce", "extract", "export")

SURFACE_FORMATS = ("vtp", "ply", "stl", "npz")
VOLUME_FORMATS = ("vti",)
HEATMAP_FILENAME = "heatmap.vti"

_STAGE_INPUTS: Dict[str, Tuple[str, ...]] = {
    "load": (),
    "reduce": ("load",),
    "extract": ("reduce",),
    "export": ("reduce", "extract"),
}


def _silent(_percent: int, _message: str) -> None:
    pass


def resolve_pipeline_stages(
    target_stage: PipelineStage = "export",
    include_export: bool = True,
) -> Tuple[PipelineStage, ...]:
    """
    Stages needed to reach ``target_stage``, in run order.

    ``resolve_pipeline_stages("extract")`` gives ``("load", "reduce", "extract")``;
    ``include_export=False`` drops the export stage even when it is the target.
    """
    try:
        last = PIPELINE_STAGE_ORDER.index(target_stage)
    except ValueError:
        raise ValueError(
            f"Unknown pipeline stage '{target_stage}'. Expected one of: {', '.join(PIPELINE_STAGE_ORDER)}."
        ) from None
    return tuple(s for s in PIPELINE_STAGE_ORDER[: last + 1] if include_export or s != "export")


def load_volume(dto: IsoPipelineDTO, progress: ProgressCallback = _silent) -> Volume:
    """Read the volume directory named by ``dto`` or synthesise a test volume."""
    kind = (dto.loader_type or "raw").lower()
    progress(0, f"Loading input via {kind}...")

    if kind == "synthetic":
        from loaders import SyntheticThermalLoader
        return SyntheticThermalLoader().load(size=dto.synthetic_size, callback=progress, kind=dto.synthetic_kind)
    if kind != "raw":
        raise ValueError(f"Unknown loader_type: {dto.loader_type!r}. Supported: 'raw', 'synthetic'.")
    if not dto.input_path:
        raise ValueError("input_path is required when loader_type='raw'.")

    from loaders import RawVolumeLoader
    return RawVolumeLoader().load(dto.input_path, callback=progress)


def reduce_volume(volume: Volume, dto: IsoPipelineDTO, progress: ProgressCallback = _silent) -> Volume:
    from rendering.lod_manager import LODTier, downsample_volume

    tier = LODTier.parse(dto.lod_tier)
    progress(0, f"Reducing to {tier.label} (stride {tier.stride})...")
    reduced = downsample_volume(volume, tier.stride)
    progress(100, f"LOD ready: {reduced.describe()}")
    return reduced


def extract_surface(
    volume: Volume,
    dto: IsoPipelineDTO,
    progress: ProgressCallback = _silent,
    scheduler: Any = None,
) -> IsoResult:
    """Extract in-process, or hand the job to ``scheduler`` and wait for it."""
    request = dto.iso_request()
    if scheduler is None:
        from processors import IsosurfaceProcessor
        return IsosurfaceProcessor().process(
            volume,
            callback=progress,
            threshold=request.threshold,
            quality_stride=request.quality_stride,
        )

    progress(0, f"Submitting extraction at {request.threshold:.1f} ({request.quality_label})...")
    surface = scheduler.submit_request(volume, request).result()
    progress(100, f"{surface.triangle_count} triangles")
    return surface


def _export_targets(
    formats: Tuple[str, ...],
    out_dir: Path,
    surface: Optional[IsoResult],
    volume: Optional[Volume],
) -> List[Tuple[str, Any, Path]]:
    targets: List[Tuple[str, Any, Path]] = []
    for fmt in (f.lower() for f in formats):
        if fmt in VOLUME_FORMATS:
            if volume is not None:
                targets.append((fmt, volume, out_dir / f"volume.{fmt}"))
            continue
        if fmt not in SURFACE_FORMATS:
            raise ValueError(f"Unknown export format: {fmt!r}.")
        if surface is None:
            continue
        # an empty mesh is still a valid npz archive but not a valid VTK/PLY/STL file
        if surface.is_empty and fmt != "npz":
            print(f"[Pipeline] No surface at this level; skipping {fmt.upper()} export.")
            continue
        targets.append((fmt, surface, out_dir / f"isosurface.{fmt}"))
    return targets


def render_heatmap(volume: Volume, params: RaymarchParams, size: Tuple[int, int] = HEATMAP_IMAGE_SIZE):
    """RGBA snapshot of ``volume`` under the raymarch settings ``params``."""
    from rendering.raymarch import RaymarchCompositor

    width, height = size
    return RaymarchCompositor(volume, params).snapshot(width, height)


def _surface_colors(dto: IsoPipelineDTO, surface: Optional[IsoResult], volume: Optional[Volume]):
    if surface is None or surface.is_empty or volume is None:
        return None
    from processors.statistics import compute_statistics, surface_colors

    return surface_colors(dto.iso_request(), surface, volume.value_range, lambda: compute_statistics(volume))


def export_results(
    outputs: Dict[str, Any],
    dto: IsoPipelineDTO,
    progress: ProgressCallback = _silent,
) -> List[str]:
    """
    Write the configured formats and return the paths written.

    Surfaces carry their ``dto.color_mode`` colours.  With raymarching
    enabled a heat map snapshot is written as ``heatmap.vti`` as well.
    """
    out_dir = Path(dto.output_dir) if dto.output_dir else Path.cwd() / "cli_output"
    out_dir.mkdir(parents=True, exist_ok=True)
    surface, volume = outputs.get("extract"), outputs.get("reduce")
    targets = _export_targets(tuple(dto.export_formats), out_dir, surface, volume)
    if dto.raymarch.enabled and volume is not None:
        progress(0, "Rendering heat map...")
        targets.append(("heatmap", render_heatmap(volume, dto.raymarch), out_dir / HEATMAP_FILENAME))
    if not targets:
        progress(100, "No export tasks requested.")
        return []

    from exporters import VTKExporter

    colors = _surface_colors(dto, surface, volume)
    written: List[str] = []
    for fmt, obj, path in targets:
        progress(100 * len(written) // len(targets), f"Exporting {fmt.upper()} -> {path.name}")
        VTKExporter.export(obj, str(path), colors=colors if obj is surface else None)
        written.append(str(path))
    progress(100, "Export complete.")
    return written


def build_iso_pipeline(
    dto: IsoPipelineDTO,
    *,
    input_volume: Optional[Volume] = None,
    target_stage: PipelineStage = "export",
    include_export: bool = True,
    scheduler: Any = None,
    progress_bus: Optional[ProgressBus] = None,
    stage_progress_factory: Optional[Callable[[PipelineStage], ProgressCallback]] = None,
) -> SimpleDAGExecutor:
    """
    Wire the stages up to ``target_stage`` into a DAG executor.

    Args:
        dto: Pipeline configuration.
        input_volume: Already-loaded volume; the load stage passes it through.
        target_stage: Last stage to run.
        include_export: Drop the export stage when False.
        scheduler: ExtractionScheduler to extract out of process; None extracts in-process.
        progress_bus: Bus that receives per-stage progress.
        stage_progress_factory: Per-stage callback factory; takes precedence over ``progress_bus``.
    """
    def reporter(stage: PipelineStage) -> ProgressCallback:
        if stage_progress_factory is not None:
            return stage_progress_factory(stage)
        if progress_bus is not None:
            return progress_bus.stage_callback(stage)
        return _silent

    def run_load(_inputs):
        if input_volume is not None:
            return input_volume
        return load_volume(dto, reporter("load"))

    bodies: Dict[str, Callable[[Dict[str, Any]], Any]] = {
        "load": run_load,
        "reduce": lambda inputs: reduce_volume(inputs["load"], dto, reporter("reduce")),
        "extract": lambda inputs: extract_surface(inputs["reduce"], dto, reporter("extract"), scheduler),
        "export": lambda inputs: export_results(inputs, dto, reporter("export")),
    }

    dag = SimpleDAGExecutor()
    for stage in resolve_pipeline_stages(target_stage, include_export):
        dag.add(DAGNode(stage, bodies[stage], depends_on=_STAGE_INPUTS[stage]))
    return dag


def run_iso_pipeline(
    dto: IsoPipelineDTO,
    *,
    dag_progress: Optional[ProgressCallback] = None,
    **build_options: Any,
) -> Dict[str, Any]:
    """
    Build and run the pipeline; returns stage outputs keyed by stage name.

    ``build_options`` are the keyword arguments of ``build_iso_pipeline``.
    """
    return build_iso_pipeline(dto, **build_options).run(progress=dag_progress)


__all__ = [
    "PipelineStage",
    "PIPELINE_STAGE_ORDER",
    "resolve_pipeline_stages",
    "load_volume",
    "reduce_volume",
    "extract_surface",
    "render_heatmap",
    "export_results",
    "build_iso_pipeline",
    "run_iso_pipeline",
]
