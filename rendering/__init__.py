"""
Rendering package for modular visualization logic.
"""

from rendering.render_engine import RenderEngine, GeneratedSurface
from rendering.lod_manager import LODRenderManager, LODTier, downsample_volume, select_tier
from rendering.raymarch import RaymarchCompositor, RaymarchResult
from rendering.scene import PyVistaSceneHost, SceneHost

__all__ = [
    'RenderEngine',
    'GeneratedSurface',
    'LODRenderManager',
    'LODTier',
    'downsample_volume',
    'select_tier',
    'RaymarchCompositor',
    'RaymarchResult',
    'PyVistaSceneHost',
    'SceneHost',
]
