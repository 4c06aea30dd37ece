"""
Named bone mappings persisted as JSON files in a directory.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from ..common import get_cache_directory, sanitize_name
from ..exceptions import ErrorKind, Result
from .service import BoneMap

logger = logging.getLogger(__name__)


@dataclass
class LoadedMapping:
    name: str
    bone_map: BoneMap
    missing_bones: List[str] = field(default_factory=list)
    created_at: Optional[str] = None


def mapping_to_json(name: str, bone_map: BoneMap) -> Dict[str, Any]:
    """Persisted form of a named bone map."""
    data = {'name': name}
    data.update(bone_map.to_dict())
    data['mapping'] = dict(bone_map.entries)
    data['createdAt'] = datetime.now(timezone.utc).isoformat()
    return data


def find_missing_bones(bone_map: BoneMap, source_bones: Optional[Sequence[str]] = None,
                       target_bones: Optional[Sequence[str]] = None) -> List[str]:
    """Bones referenced by the map that the given skeletons lack."""
    missing = []
    source_set = set(source_bones) if source_bones is not None else None
    target_set = set(target_bones) if target_bones is not None else None
    for source, target in bone_map.items():
        if source_set is not None and source not in source_set:
            missing.append(source)
        if target_set is not None and target not in target_set:
            missing.append(target)
    return list(dict.fromkeys(missing))


class BoneMappingStore:
    """
    Save, load, list and delete named bone mappings.

    IO problems are returned as failed Result values rather than raised.
    """

    def __init__(self, directory: Optional[Union[str, Path]] = None):
        self.directory = Path(directory) if directory else get_cache_directory() / "bone-mappings"

    def _path(self, name: str) -> Path:
        return self.directory / f"{sanitize_name(name)}.json"

    def save(self, name: str, bone_map: BoneMap) -> Result:
        """
        Write a mapping under name.

        Returns:
            Result with the written path
        """
        if not name or not name.strip():
            return Result.failure(ErrorKind.INVALID_INPUT, "Mapping name must not be empty")
        name = name.strip()

        path = self._path(name)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            with open(path, 'w', encoding='utf-8') as f:
                json.dump(mapping_to_json(name, bone_map), f, indent=2)
        except OSError as e:
            logger.error(f"Failed to save bone mapping '{name}': {e}")
            return Result.failure(ErrorKind.IO, f"Failed to save bone mapping '{name}': {e}")

        logger.info(f"Saved bone mapping '{name}' ({len(bone_map)} entries) to {path}")
        return Result.success(path)

    def load(self, name: str, source_bones: Optional[Sequence[str]] = None,
             target_bones: Optional[Sequence[str]] = None) -> Result:
        """
        Read a mapping by name.

        Args:
            name: Mapping name
            source_bones: Current source bone names, to report missing bones
            target_bones: Current target bone names, to report missing bones

        Returns:
            Result with a LoadedMapping
        """
        if not name or not name.strip():
            return Result.failure(ErrorKind.INVALID_INPUT, "Mapping name must not be empty")

        path = self._path(name.strip())
        if not path.exists():
            return Result.failure(ErrorKind.IO, f"Bone mapping '{name}' not found")

        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to read bone mapping '{name}': {e}")
            return Result.failure(ErrorKind.IO, f"Failed to read bone mapping '{name}': {e}")

        if not isinstance(data, dict):
            return Result.failure(ErrorKind.IO, f"Bone mapping '{name}' is malformed")

        bone_map = BoneMap.from_dict(data)
        missing = find_missing_bones(bone_map, source_bones, target_bones)
        if missing:
            logger.warning(f"Bone mapping '{name}' references {len(missing)} missing bones")

        return Result.success(LoadedMapping(
            name=data.get('name', name),
            bone_map=bone_map,
            missing_bones=missing,
            created_at=data.get('createdAt'),
        ))

    def list(self) -> List[str]:
        """Names of the stored mappings, sorted."""
        if not self.directory.exists():
            return []
        names = []
        for path in sorted(self.directory.glob("*.json")):
            try:
                with open(path, 'r', encoding='utf-8') as f:
                    data = json.load(f)
                names.append(data.get('name') or path.stem)
            except (OSError, json.JSONDecodeError, AttributeError):
                logger.warning(f"Skipping unreadable bone mapping file {path}")
        return sorted(names)

    def delete(self, name: str) -> Result:
        path = self._path(name.strip()) if name else None
        if path is None or not path.exists():
            return Result.failure(ErrorKind.IO, f"Bone mapping '{name}' not found")
        try:
            path.unlink()
        except OSError as e:
            return Result.failure(ErrorKind.IO, f"Failed to delete bone mapping '{name}': {e}")
        logger.info(f"Deleted bone mapping '{name}'")
        return Result.success(name)
