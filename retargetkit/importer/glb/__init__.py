"""
GLB/GLTF parsing module.
"""

from .accessor import AccessorReader
from .loader import build_clips, build_skeleton, load_model, load_model_bytes, parse_model
from .parser import GLBParser

__all__ = ['AccessorReader', 'GLBParser', 'build_clips', 'build_skeleton',
           'load_model', 'load_model_bytes', 'parse_model']
