"""
Model importers producing ParsedModel values.
"""

from .glb import GLBParser, load_model, load_model_bytes
from .model import ParsedModel

__all__ = ['GLBParser', 'ParsedModel', 'load_model', 'load_model_bytes']
