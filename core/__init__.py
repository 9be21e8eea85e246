"""
Core module containing base classes and data structures.
"""

from core.base import Volume, BaseLoader, BaseProcessor
from core.errors import VolumeEngineError, InvalidVolumeMetadata, DataShapeMismatch, WorkerFailure
from core.dto import VolumeMeta, ColorMode, IsoRequest, IsoResult, RaymarchParams, IsoPipelineDTO
from core.dag import DAGNode, SimpleDAGExecutor
from core.progress import (
    ProgressEvent,
    ProgressObserver,
    ProgressBus,
    StatusSinkObserver,
    TerminalProgressObserver,
)
from core.pipeline import (
    PipelineStage,
    PIPELINE_STAGE_ORDER,
    resolve_pipeline_stages,
    load_volume,
    reduce_volume,
    extract_surface,
    export_results,
    build_iso_pipeline,
    run_iso_pipeline,
)

__all__ = [
    'Volume', 'BaseLoader', 'BaseProcessor',
    'VolumeEngineError', 'InvalidVolumeMetadata', 'DataShapeMismatch', 'WorkerFailure',
    'VolumeMeta', 'ColorMode', 'IsoRequest', 'IsoResult', 'RaymarchParams', 'IsoPipelineDTO',
    'DAGNode', 'SimpleDAGExecutor',
    'ProgressEvent', 'ProgressObserver', 'ProgressBus', 'StatusSinkObserver',
    'TerminalProgressObserver',
    'PipelineStage', 'PIPELINE_STAGE_ORDER', 'resolve_pipeline_stages',
    'load_volume', 'reduce_volume', 'extract_surface', 'export_results',
    'build_iso_pipeline', 'run_iso_pipeline',
]
