"""
Texture slots and texture file metadata for the project material table.
"""

import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

from PIL import Image, UnidentifiedImageError

from ..exceptions import ProjectIOError

logger = logging.getLogger(__name__)

TEXTURE_SLOTS = {
    'map': ('Albedo/Diffuse', 'Albedo'),
    'normalMap': ('Normal Map', 'Normal'),
    'roughnessMap': ('Roughness Map', 'Roughness'),
    'metalnessMap': ('Metalness Map', 'Metalness'),
    'aoMap': ('Ambient Occlusion', 'AO'),
    'emissiveMap': ('Emissive Map', 'Emissive'),
    'specularMap': ('Specular Map', 'Specular'),
    'alphaMap': ('Alpha Map', 'Alpha'),
    'bumpMap': ('Bump Map', 'Bump'),
    'displacementMap': ('Displacement Map', 'Displacement'),
    'lightMap': ('Light Map', 'Light'),
    'envMap': ('Environment Map', 'Environment'),
}

VALID_TEXTURE_EXTENSIONS = frozenset(
    ('jpg', 'jpeg', 'png', 'gif', 'bmp', 'webp', 'tga', 'tiff', 'tif')
)

# sampled as data, not color
LINEAR_SLOTS = frozenset(('normalMap', 'roughnessMap', 'metalnessMap', 'aoMap'))

# precision or alpha matters for these; the rest compress fine as jpg
PNG_SLOTS = frozenset(('normalMap', 'alphaMap', 'displacementMap'))

TextureSource = Union[str, Path, bytes]


@dataclass
class TextureMetadata:
    width: int
    height: int
    format: Optional[str]
    mode: str

    def to_dict(self) -> Dict[str, Any]:
        return {'width': self.width, 'height': self.height, 'format': self.format, 'mode': self.mode}


def texture_slot_info(key: str) -> Dict[str, str]:
    label, short = TEXTURE_SLOTS.get(key, (key, key))
    return {'label': label, 'shortLabel': short}


def is_valid_texture_slot(key: str) -> bool:
    return key in TEXTURE_SLOTS


def is_valid_texture_type(extension: str) -> bool:
    """Whether a file extension (with or without the dot) is an image type."""
    return extension.lower().lstrip('.') in VALID_TEXTURE_EXTENSIONS


def uses_linear_color_space(key: str) -> bool:
    return key in LINEAR_SLOTS


def recommended_format(key: str) -> str:
    if key in PNG_SLOTS:
        return 'png'
    return 'jpg' if key in TEXTURE_SLOTS else 'png'


def _open(source: TextureSource) -> Image.Image:
    try:
        if isinstance(source, (str, Path)):
            return Image.open(source)
        return Image.open(io.BytesIO(source))
    except (OSError, UnidentifiedImageError) as e:
        raise ProjectIOError(f"Cannot read texture: {e}")


def read_texture_metadata(source: TextureSource) -> TextureMetadata:
    """
    Size, format and mode of an image file or image bytes.

    Raises:
        ProjectIOError: The data is not a readable image
    """
    with _open(source) as img:
        metadata = TextureMetadata(width=img.width, height=img.height, format=img.format, mode=img.mode)
    logger.debug(f"Texture {metadata.width}x{metadata.height} {metadata.format} {metadata.mode}")
    return metadata


def save_texture(texture_data: TextureSource, output_path: Union[str, Path]) -> Optional[Path]:
    """
    Save texture data as a PNG file.

    Args:
        texture_data: Binary image data or a path to an image file
        output_path: File to write

    Returns:
        Path to the saved image file, or None when there is no data
    """
    if not texture_data:
        return None

    output_path = Path(output_path)
    output_path.parent.mkdir(exist_ok=True, parents=True)
    with _open(texture_data) as img:
        img.save(output_path, format="PNG")
    return output_path
