"""
Data processors package for thermal volumes.

Modules:
- marching_tetrahedra: Isosurface extraction (triangle soup + gradient magnitude)
- extraction_worker: Request handler executed in the isolated worker process
- scheduler: Asynchronous extraction in single-use worker processes
- statistics: Thermal statistics and threshold colouring
"""

from processors.marching_tetrahedra import IsosurfaceProcessor, extract_isosurface, gradient_magnitude, resolve_stride
from processors.extraction_worker import run_extraction
from processors.scheduler import ExtractionScheduler, ExtractionTicket, build_request_message, iter_completed
from processors.statistics import ThermalStatistics, compute_statistics, solid_color_for_threshold

__all__ = [
    'IsosurfaceProcessor',
    'extract_isosurface',
    'gradient_magnitude',
    'resolve_stride',
    'run_extraction',
    'ExtractionScheduler',
    'ExtractionTicket',
    'build_request_message',
    'iter_completed',
    'ThermalStatistics',
    'compute_statistics',
    'solid_color_for_threshold',
]
