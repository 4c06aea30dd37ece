"""
GLB export of animation clips.
"""

from .clip_exporter import ClipExporter, export_clips, skeleton_to_gltf

__all__ = ['ClipExporter', 'export_clips', 'skeleton_to_gltf']
