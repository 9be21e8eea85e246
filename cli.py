"""
Command-line isosurface extraction for thermal volumes.

Loads (or synthesises) a volume, optionally reduces it to a coarser LOD tier,
extracts one isosurface and writes the requested files.  Nothing here needs a
display: VTK is switched to offscreen rendering before PyVista is imported.

Examples::

    thermal-iso --synthetic hotspot --size 48 --level 45 --formats vtp vti
    thermal-iso --input ./scan --lod Half --quality Fast --isolated
    thermal-iso --config run.yaml --dry-run
"""

from __future__ import annotations

import argparse
import json
import os
import sys
import time


def _force_offscreen_vtk() -> None:
    """Without an X11 or Wayland display, make VTK render offscreen."""
    if os.environ.get("DISPLAY") or os.environ.get("WAYLAND_DISPLAY"):
        return
    for key, value in (("PYVISTA_OFF_SCREEN", "true"), ("VTK_DEFAULT_RENDER_WINDOW_OFFSCREEN", "1")):
        os.environ.setdefault(key, value)


_force_offscreen_vtk()


from config import DEFAULT_ISO_COLOR_MODE, DEFAULT_ISO_LEVEL, DEFAULT_ISO_QUALITY, ISO_QUALITY_PRESETS
from core import IsoPipelineDTO, run_iso_pipeline
from core.errors import VolumeEngineError
from core.progress import ProgressBus, TerminalProgressObserver
from loaders import SYNTHETIC_KINDS

EXIT_OK = 0
EXIT_INTERRUPTED = 1
EXIT_FAILED = 2


def _report(results: dict, elapsed: float) -> None:
    print(f"\nFinished in {elapsed:.2f}s")
    volume = results.get("reduce")
    if volume is not None:
        print(f"Volume: {volume.describe()} (range {volume.value_range[0]:g}..{volume.value_range[1]:g})")

    surface = results.get("extract")
    if surface is not None and surface.is_empty:
        print("Custom Iso: No surface at this level.")
    elif surface is not None:
        print(f"Isosurface: {surface.triangle_count} triangles / {surface.vertex_count} vertices")

    for path in results.get("export") or ():
        print(f"  wrote {path}")


def run_batch(dto: IsoPipelineDTO, isolated: bool = False) -> dict:
    """
    Run load -> reduce -> extract -> export for ``dto`` with a terminal
    progress bar.

    Args:
        dto: Pipeline configuration.
        isolated: Extract in a single-use worker process instead of in-process.

    Returns:
        Stage outputs keyed by stage name.
    """
    bus = ProgressBus().subscribe(TerminalProgressObserver())

    scheduler = None
    if isolated:
        from processors import ExtractionScheduler
        scheduler = ExtractionScheduler()

    started = time.perf_counter()
    results = run_iso_pipeline(
        dto=dto,
        scheduler=scheduler,
        progress_bus=bus,
        dag_progress=bus.dag_callback(),
    )
    _report(results, time.perf_counter() - started)
    return results


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="thermal-iso",
        description="Extract an isosurface from a quantized thermal volume.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    source = parser.add_argument_group("input")
    source.add_argument("--config", metavar="FILE",
                        help="YAML or JSON run description; when given, the other flags are ignored.")
    source.add_argument("--input", metavar="DIR", default="",
                        help="Directory with volume.json and volume.bin.")
    source.add_argument("--synthetic", metavar="KIND", choices=SYNTHETIC_KINDS, default=None,
                        help="Generate a synthetic volume instead of loading one.")
    source.add_argument("--size", metavar="N", type=int, default=32,
                        help="Edge length of the synthetic volume.")

    surface = parser.add_argument_group("isosurface")
    surface.add_argument("--level", metavar="DEG", type=float, default=DEFAULT_ISO_LEVEL,
                         help="Iso level in physical units.")
    surface.add_argument("--quality", choices=list(ISO_QUALITY_PRESETS), default=DEFAULT_ISO_QUALITY,
                         help="Cell stride preset (Fast=3, Balanced=2, Full=1).")
    surface.add_argument("--color-by", metavar="MODE", default=DEFAULT_ISO_COLOR_MODE,
                         help="Solid or Gradient.")
    surface.add_argument("--lod", metavar="TIER", default="Full",
                         help="Reduce the volume first: Full, Half or Quarter.")
    surface.add_argument("--isolated", action="store_true",
                         help="Extract in a separate worker process.")

    output = parser.add_argument_group("output")
    output.add_argument("--output", metavar="DIR", default=None,
                        help="Where to write files (default: ./cli_output).")
    output.add_argument("--formats", metavar="FMT", nargs="+", default=["vtp"],
                        help="Any of: vtp ply stl npz vti.")
    output.add_argument("--dry-run", action="store_true",
                        help="Show the resolved configuration and exit.")
    return parser


def _load_config(path: str) -> IsoPipelineDTO:
    if path.endswith(".json"):
        return IsoPipelineDTO.from_json(path)
    # YAML is a superset of JSON, so anything else goes through the YAML reader
    return IsoPipelineDTO.from_yaml(path)


def _resolve_dto(args: argparse.Namespace, parser: argparse.ArgumentParser) -> IsoPipelineDTO:
    if args.config:
        return _load_config(args.config)
    if not (args.input or args.synthetic):
        parser.error("one of --config, --input or --synthetic is required")

    return IsoPipelineDTO(
        input_path=args.input,
        loader_type="synthetic" if args.synthetic else "raw",
        synthetic_size=args.size,
        synthetic_kind=args.synthetic or "hotspot",
        lod_tier=args.lod,
        iso_level=args.level,
        quality=args.quality,
        color_mode=args.color_by,
        output_dir=args.output,
        export_formats=tuple(args.formats),
    )


def main(argv=None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    dto = _resolve_dto(args, parser)

    if args.dry_run:
        print(json.dumps(dto.to_dict(), indent=2))
        return EXIT_OK

    print(f"Thermal isosurface run: level {dto.iso_level:g}, quality {dto.quality}, LOD {dto.lod_tier}")
    try:
        run_batch(dto, isolated=args.isolated)
    except KeyboardInterrupt:
        print("\nInterrupted.")
        return EXIT_INTERRUPTED
    except VolumeEngineError as exc:
        print(f"\nInvalid input: {type(exc).__name__}: {exc}")
        return EXIT_FAILED
    except (OSError, ValueError) as exc:
        print(f"\nRun failed: {type(exc).__name__}: {exc}")
        return EXIT_FAILED
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
