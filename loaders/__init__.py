"""
Data loaders package.
"""

from loaders.raw_volume import RawVolumeLoader, load_volume, save_volume
from loaders.synthetic import SyntheticThermalLoader, SYNTHETIC_KINDS

__all__ = [
    'RawVolumeLoader',
    'SyntheticThermalLoader',
    'SYNTHETIC_KINDS',
    'load_volume',
    'save_volume',
]
