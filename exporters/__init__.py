"""
Exporters package.
"""

from exporters.vtk import VTKExporter

__all__ = ['VTKExporter']
