"""
Project archives, texture metadata and frame export.
"""

from .archive import (
    LoadedProject,
    ProjectArchive,
    TextureFile,
    default_scene_settings,
    deserialize_project,
    is_compatible_version,
    project_metadata,
    serialize_model,
    serialize_project,
    validate_project_data,
)
from .frames import FrameExporter, frame_filename
from .textures import TextureMetadata, read_texture_metadata

__all__ = [
    'LoadedProject', 'ProjectArchive', 'TextureFile', 'default_scene_settings',
    'deserialize_project', 'is_compatible_version', 'project_metadata',
    'serialize_model', 'serialize_project', 'validate_project_data',
    'FrameExporter', 'frame_filename', 'TextureMetadata', 'read_texture_metadata',
]
