"""
Raw volume loader for the ``volume.json`` + ``volume.bin`` wire format.

The metadata record holds dimensions, spacing, origin and the physical value
range; the binary file holds nx*ny*nz unsigned bytes in z-major / y / x order.
"""

import json
import logging
import os
from typing import Any, Callable, Mapping, Optional, Union

from config import VOLUME_DATA_FILENAME, VOLUME_META_FILENAME
from core.base import BaseLoader, ByteSource, Volume, as_byte_array
from core.dto import VolumeMeta

logger = logging.getLogger(__name__)


def load_volume(meta: Union[VolumeMeta, Mapping[str, Any]], raw_bytes: ByteSource,
                metadata: Optional[Mapping[str, Any]] = None) -> Volume:
    """
    Build a Volume from a metadata record and its raw byte buffer.

    ``metadata`` (source, type, ...) is attached at construction.

    Raises:
        InvalidVolumeMetadata: dims / spacing / valueRange missing or invalid.
        DataShapeMismatch: ``len(raw_bytes) != nx * ny * nz``.
    """
    if not isinstance(meta, VolumeMeta):
        meta = VolumeMeta.from_dict(meta)
    data = as_byte_array(raw_bytes, meta.dims)
    return Volume(
        dims=meta.dims,
        spacing=meta.spacing,
        origin=meta.origin,
        data=data,
        value_range=meta.value_range,
        metadata=metadata,
    )


def _validate_path(folder_path: str) -> None:
    """Validate folder path exists."""
    if not os.path.exists(folder_path):
        raise FileNotFoundError(f"Path does not exist: {folder_path}")


class RawVolumeLoader(BaseLoader):
    """
    Loads a quantized thermal volume from a directory holding
    ``volume.json`` and ``volume.bin``.
    """

    def __init__(self, meta_filename: str = VOLUME_META_FILENAME, data_filename: str = VOLUME_DATA_FILENAME):
        self.meta_filename = meta_filename
        self.data_filename = data_filename

    def load(self, source: str, callback: Optional[Callable[[int, str], None]] = None) -> Volume:
        _validate_path(source)
        meta_path = os.path.join(source, self.meta_filename)
        data_path = os.path.join(source, self.data_filename)

        if callback:
            callback(0, f"Reading {self.meta_filename}...")
        with open(meta_path, encoding="utf-8") as fh:
            meta = VolumeMeta.from_dict(json.load(fh))

        if callback:
            callback(30, f"Reading {self.data_filename}...")
        with open(data_path, "rb") as fh:
            raw = fh.read()

        volume = load_volume(meta, raw, metadata={"Type": "Thermal", "Source": os.path.abspath(source)})
        print(f"[Loader] Loaded volume {volume.describe()} range={list(volume.value_range)} from {source}")
        if callback:
            callback(100, f"Loaded volume {volume.describe()}")
        return volume


def save_volume(volume: Volume, target_dir: str,
                meta_filename: str = VOLUME_META_FILENAME,
                data_filename: str = VOLUME_DATA_FILENAME) -> str:
    """Write ``volume`` as a ``volume.json`` / ``volume.bin`` pair; returns the directory."""
    os.makedirs(target_dir, exist_ok=True)
    meta = VolumeMeta(
        dims=volume.dims,
        spacing=volume.spacing,
        value_range=volume.value_range,
        origin=volume.origin,
    )
    with open(os.path.join(target_dir, meta_filename), "w", encoding="utf-8") as fh:
        json.dump(meta.to_dict(), fh, indent=2)
    with open(os.path.join(target_dir, data_filename), "wb") as fh:
        fh.write(volume.copy_bytes())
    logger.debug("Wrote volume %s to %s", volume.describe(), target_dir)
    return target_dir
