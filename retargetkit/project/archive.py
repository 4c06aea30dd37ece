"""
Project archive: one zip holding a model, its animations, textures,
bone mappings and scene state.

Layout::

    project.json          version, timestamp, model/animation/material/scene data
    model/<file>          the original model bytes
    textures/<file>       texture files referenced by the material table
    bone-mappings/<n>.json

Reading and writing return Result values; nothing here raises on IO
problems.
"""

import json
import logging
import zipfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from ..animation.clip import AnimationClip, deserialize_clips, serialize_clips
from ..common import PROJECT_VERSION, SUPPORTED_MODEL_EXTENSIONS, sanitize_name
from ..exceptions import ErrorKind, InvalidInputError, ProjectIOError, Result
from ..mapping.service import BoneMap
from ..mapping.store import mapping_to_json
from ..retargeter.engine import RetargetOptions
from .textures import read_texture_metadata, save_texture, texture_slot_info

logger = logging.getLogger(__name__)

PROJECT_FILE = "project.json"
MODEL_DIR = "model"
TEXTURE_DIR = "textures"
MAPPING_DIR = "bone-mappings"


def default_scene_settings() -> Dict[str, Any]:
    return {
        'backgroundColor': '#1a1a1a',
        'gridVisible': True,
        'camera': {
            'position': {'x': 0, 'y': 2, 'z': 5},
            'target': {'x': 0, 'y': 0, 'z': 0},
        },
        'lighting': {
            'ambientIntensity': 0.5,
            'directionalIntensity': 0.8,
            'directionalPosition': {'x': 5, 'y': 10, 'z': 7.5},
        },
    }


def _extension(file_name: str) -> str:
    return file_name.rsplit('.', 1)[-1].lower() if '.' in file_name else ''


def serialize_model(name: str, position=(0.0, 0.0, 0.0), rotation=(0.0, 0.0, 0.0),
                    scale=(1.0, 1.0, 1.0), path: Optional[str] = None) -> Dict[str, Any]:
    if not name:
        raise InvalidInputError("Model name is required")
    axes = ('x', 'y', 'z')
    return {
        'name': name,
        'fileName': sanitize_name(name),
        'path': path,
        'extension': _extension(sanitize_name(name)),
        'position': dict(zip(axes, map(float, position))),
        'rotation': dict(zip(axes, map(float, rotation))),
        'scale': dict(zip(axes, map(float, scale))),
    }


def serialize_project(model: Mapping[str, Any], clips: Sequence[AnimationClip],
                      materials: Optional[Sequence[Mapping[str, Any]]] = None,
                      scene: Optional[Mapping[str, Any]] = None,
                      options: Optional[RetargetOptions] = None) -> Dict[str, Any]:
    """
    The project.json document.

    Args:
        model: Output of serialize_model()
        clips: Clips to store
        materials: Material table entries {uuid, name, textures: [...]}
        scene: Scene settings; defaults are used when None
        options: Retarget options stored with the project
    """
    data = {
        'version': PROJECT_VERSION,
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'model': dict(model),
        'animations': serialize_clips(clips),
        'materials': [dict(m) for m in materials or []],
        'scene': dict(scene) if scene is not None else default_scene_settings(),
    }
    if options is not None:
        data['retargetOptions'] = options.to_dict()
    return data


def validate_project_data(data: Any) -> bool:
    """
    Raises:
        InvalidInputError: With the first problem found
    """
    if not data or not isinstance(data, Mapping):
        raise InvalidInputError("Project data is required")
    if not data.get('version'):
        raise InvalidInputError("Project version is missing")
    model = data.get('model')
    if not model:
        raise InvalidInputError("Model data is required")
    if not model.get('name') and not model.get('fileName'):
        raise InvalidInputError("Model name/fileName is required")
    if not model.get('extension'):
        raise InvalidInputError("Model extension is required")
    if model['extension'].lower() not in SUPPORTED_MODEL_EXTENSIONS:
        raise InvalidInputError(f"Unsupported model format: {model['extension']}")
    if data.get('animations') is not None and not isinstance(data['animations'], list):
        raise InvalidInputError("Animations must be an array")
    if data.get('materials') is not None and not isinstance(data['materials'], list):
        raise InvalidInputError("Materials must be an array")
    return True


def deserialize_project(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Validated project data with missing sections filled in."""
    validate_project_data(data)
    return {
        'version': data['version'],
        'timestamp': data.get('timestamp'),
        'model': data['model'],
        'animations': data.get('animations') or [],
        'materials': data.get('materials') or [],
        'scene': data.get('scene') or default_scene_settings(),
        'retargetOptions': data.get('retargetOptions'),
    }


def is_compatible_version(data: Optional[Mapping[str, Any]]) -> bool:
    return bool(data) and data.get('version') == PROJECT_VERSION


def project_metadata(data: Mapping[str, Any]) -> Dict[str, Any]:
    materials = data.get('materials') or []
    return {
        'version': data.get('version'),
        'timestamp': data.get('timestamp'),
        'modelName': data['model'].get('name') or data['model'].get('fileName'),
        'modelFormat': data['model'].get('extension'),
        'animationCount': len(data.get('animations') or []),
        'materialCount': len(materials),
        'hasTextures': any(m.get('textures') for m in materials),
    }


@dataclass
class TextureFile:
    """A texture to bundle: where it comes from and which slot uses it."""
    source: Union[str, Path, bytes]
    file_name: str
    material_uuid: str
    key: str = 'map'
    material_name: str = ''


@dataclass
class LoadedProject:
    data: Dict[str, Any]
    model_name: str
    model_bytes: bytes
    clips: List[AnimationClip] = field(default_factory=list)
    textures: Dict[str, bytes] = field(default_factory=dict)
    bone_mappings: Dict[str, BoneMap] = field(default_factory=dict)
    options: Optional[RetargetOptions] = None

    @property
    def scene(self) -> Dict[str, Any]:
        return self.data['scene']

    @property
    def materials(self) -> List[Dict[str, Any]]:
        return self.data['materials']

    def extract_textures(self, directory: Union[str, Path]) -> List[Path]:
        """Write every bundled texture to directory as PNG."""
        written = []
        for name, payload in self.textures.items():
            path = save_texture(payload, Path(directory) / f"{PurePosixPath(name).stem}.png")
            if path is not None:
                written.append(path)
        return written


def _material_table(materials: Optional[Sequence[Mapping[str, Any]]],
                    textures: Sequence[TextureFile]) -> List[Dict[str, Any]]:
    table = {m['uuid']: {**m, 'textures': list(m.get('textures', []))} for m in materials or []}
    for texture in textures:
        entry = table.setdefault(texture.material_uuid, {
            'uuid': texture.material_uuid,
            'name': texture.material_name,
            'textures': [],
        })
        metadata = read_texture_metadata(texture.source)
        entry['textures'].append({
            'key': texture.key,
            'label': texture_slot_info(texture.key)['label'],
            'source': str(texture.source) if not isinstance(texture.source, bytes) else None,
            'path': f"{TEXTURE_DIR}/{texture.file_name}",
            'fileName': texture.file_name,
            'metadata': metadata.to_dict(),
        })
    return list(table.values())


class ProjectArchive:
    """Save and load project zip files."""

    def save(self, path: Union[str, Path], model_name: str, model_bytes: bytes,
             clips: Sequence[AnimationClip],
             materials: Optional[Sequence[Mapping[str, Any]]] = None,
             textures: Sequence[TextureFile] = (),
             scene: Optional[Mapping[str, Any]] = None,
             bone_mappings: Optional[Mapping[str, BoneMap]] = None,
             options: Optional[RetargetOptions] = None,
             model_transform: Optional[Mapping[str, Sequence[float]]] = None) -> Result:
        """
        Write a project archive.

        Returns:
            Result with the written path
        """
        if not path:
            return Result.failure(ErrorKind.INVALID_INPUT, "Save path is required")
        try:
            model = serialize_model(model_name, **(model_transform or {}))
            data = serialize_project(model, clips, _material_table(materials, textures), scene, options)
            validate_project_data(data)
        except (InvalidInputError, ProjectIOError) as e:
            return Result.failure(ErrorKind.INVALID_INPUT, str(e))

        path = Path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with zipfile.ZipFile(path, 'w', compression=zipfile.ZIP_DEFLATED) as archive:
                archive.writestr(PROJECT_FILE, json.dumps(data, indent=2))
                archive.writestr(f"{MODEL_DIR}/{model['fileName']}", model_bytes)
                for texture in textures:
                    payload = (texture.source if isinstance(texture.source, bytes)
                               else Path(texture.source).read_bytes())
                    archive.writestr(f"{TEXTURE_DIR}/{texture.file_name}", payload)
                for name, bone_map in (bone_mappings or {}).items():
                    archive.writestr(f"{MAPPING_DIR}/{sanitize_name(name)}.json",
                                     json.dumps(mapping_to_json(name, bone_map), indent=2))
        except OSError as e:
            logger.error(f"Failed to save project {path}: {e}")
            return Result.failure(ErrorKind.IO, f"Failed to save project: {e}")

        logger.info(f"Saved project {path}: {len(clips)} animations, {len(textures)} textures")
        return Result.success(path)

    def load(self, path: Union[str, Path]) -> Result:
        """
        Read a project archive.

        Returns:
            Result with a LoadedProject
        """
        path = Path(path)
        if not path.exists():
            return Result.failure(ErrorKind.IO, f"Project file not found: {path}")

        try:
            with zipfile.ZipFile(path, 'r') as archive:
                names = archive.namelist()
                if PROJECT_FILE not in names:
                    return Result.failure(ErrorKind.IO, f"{PROJECT_FILE} missing from archive")
                raw = json.loads(archive.read(PROJECT_FILE).decode('utf-8'))
                data = deserialize_project(raw)

                file_name = data['model'].get('fileName') or data['model'].get('name')
                model_entry = f"{MODEL_DIR}/{file_name}"
                if model_entry not in names:
                    return Result.failure(ErrorKind.IO, f"Model file {model_entry} missing from archive")
                model_bytes = archive.read(model_entry)

                textures = {n[len(TEXTURE_DIR) + 1:]: archive.read(n) for n in names
                            if n.startswith(f"{TEXTURE_DIR}/") and not n.endswith('/')}
                mappings = {}
                for n in names:
                    if n.startswith(f"{MAPPING_DIR}/") and n.endswith('.json'):
                        entry = json.loads(archive.read(n).decode('utf-8'))
                        if not isinstance(entry, dict):
                            logger.warning(f"Skipping bone mapping {n}: not a JSON object")
                            continue
                        mappings[entry.get('name') or PurePosixPath(n).stem] = BoneMap.from_dict(entry)

                options = None
                if data.get('retargetOptions'):
                    if not isinstance(data['retargetOptions'], dict):
                        raise InvalidInputError("Retarget options must be an object")
                    options = RetargetOptions.from_dict(data['retargetOptions'])
                clips = deserialize_clips(data['animations'])
        except (OSError, zipfile.BadZipFile, json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.error(f"Failed to read project {path}: {e}")
            return Result.failure(ErrorKind.IO, f"Failed to load project: {e}")
        except InvalidInputError as e:
            return Result.failure(ErrorKind.INVALID_INPUT, str(e))

        if not is_compatible_version(data):
            logger.warning(f"Project version {data['version']} differs from {PROJECT_VERSION}")

        project = LoadedProject(
            data=data,
            model_name=data['model'].get('name') or file_name,
            model_bytes=model_bytes,
            clips=clips,
            textures=textures,
            bone_mappings=mappings,
            options=options,
        )
        logger.info(f"Loaded project {path}: {len(project.clips)} animations, {len(textures)} textures")
        return Result.success(project)
