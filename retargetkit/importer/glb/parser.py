"""
Main GLB/GLTF parser.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import numpy as np
from pygltflib import GLTF2

from ...exceptions import GLBParseError
from ...utils.quaternion import compose_matrix
from .accessor import AccessorReader

logger = logging.getLogger(__name__)


class GLBParser:
    """
    Parser for GLB/GLTF files.

    Gives access to the node tree, skins, animations and mesh bounds of
    one file. Use GLBParser(path) for files and GLBParser.from_bytes()
    for in-memory .glb data.
    """

    def __init__(self, file_path: Optional[Union[str, Path]] = None, gltf: Optional[GLTF2] = None,
                 name: Optional[str] = None):
        """
        Initialize GLB parser.

        Args:
            file_path: Path to GLB/GLTF file
            gltf: Already loaded document, used instead of file_path
            name: Display name; defaults to the file stem

        Raises:
            GLBParseError: If file cannot be loaded
        """
        self.file_path = Path(file_path) if file_path is not None else None
        if gltf is None:
            if self.file_path is None:
                raise GLBParseError("No GLB file or document given")
            if not self.file_path.exists():
                raise GLBParseError(f"File not found: {file_path}")
            logger.info(f"Loading GLB file: {self.file_path}")
            try:
                gltf = GLTF2.load(str(self.file_path))
            except Exception as e:
                raise GLBParseError(f"Failed to load GLB file: {e}")
            if gltf is None:
                raise GLBParseError(f"Unsupported file: {self.file_path}")

        self.gltf = gltf
        self.name = name or (self.file_path.stem if self.file_path is not None else "model")
        base_dir = self.file_path.parent if self.file_path is not None else None
        self.accessor_reader = AccessorReader(self.gltf, base_dir)
        self._parents = self._build_parent_map()

        logger.info(f"GLB loaded: {len(self.gltf.nodes)} nodes, {len(self.gltf.meshes)} meshes, "
                    f"{len(self.gltf.skins)} skins, {len(self.gltf.animations)} animations")

    @classmethod
    def from_bytes(cls, data: bytes, name: str = "model") -> 'GLBParser':
        try:
            gltf = GLTF2.load_from_bytes(data)
        except Exception as e:
            raise GLBParseError(f"Failed to parse GLB data: {e}")
        return cls(gltf=gltf, name=name)

    # ------------------------------------------------------------------ nodes

    def _build_parent_map(self) -> Dict[int, int]:
        parents = {}
        for idx, node in enumerate(self.gltf.nodes):
            for child in node.children or []:
                parents[child] = idx
        return parents

    def parent_of(self, node_idx: int) -> int:
        return self._parents.get(node_idx, -1)

    def parentless_nodes(self) -> List[int]:
        return [i for i in range(len(self.gltf.nodes)) if i not in self._parents]

    def node_name(self, node_idx: int) -> str:
        return self.gltf.nodes[node_idx].name or f"Node_{node_idx}"

    def scene_roots(self, scene_idx: Optional[int] = None) -> List[int]:
        """Root nodes of a scene, or every parentless node if the file has no scenes."""
        if self.gltf.scenes:
            if scene_idx is None:
                scene_idx = self.gltf.scene or 0
            if scene_idx >= len(self.gltf.scenes):
                raise GLBParseError(f"Scene index {scene_idx} out of range")
            return list(self.gltf.scenes[scene_idx].nodes or [])
        return self.parentless_nodes()

    def get_node_info(self, node_idx: int) -> Dict[str, Any]:
        """
        Get information about a node.

        Returns:
            Dictionary with name, children, mesh, skin and the local
            translation / rotation (x, y, z, w) / scale
        """
        if node_idx >= len(self.gltf.nodes):
            raise GLBParseError(f"Node index {node_idx} out of range")
        node = self.gltf.nodes[node_idx]

        info = {
            'name': self.node_name(node_idx),
            'children': node.children or [],
            'mesh': node.mesh,
            'skin': node.skin,
        }
        if node.matrix is not None:
            # glTF matrices are column-major
            info['matrix'] = np.array(node.matrix, dtype=float).reshape(4, 4).T
        else:
            info['translation'] = np.array(node.translation or [0, 0, 0], dtype=float)
            info['rotation'] = np.array(node.rotation or [0, 0, 0, 1], dtype=float)
            info['scale'] = np.array(node.scale or [1, 1, 1], dtype=float)
        return info

    def local_matrix(self, node_idx: int) -> np.ndarray:
        info = self.get_node_info(node_idx)
        if 'matrix' in info:
            return info['matrix']
        return compose_matrix(info['translation'], info['rotation'], info['scale'])

    def world_matrix(self, node_idx: int) -> np.ndarray:
        """World matrix of a node, walking up the parent chain."""
        matrix = self.local_matrix(node_idx)
        parent = self.parent_of(node_idx)
        while parent >= 0:
            matrix = self.local_matrix(parent) @ matrix
            parent = self.parent_of(parent)
        return matrix

    # ------------------------------------------------------------------ skins

    def get_skin_data(self, skin_idx: int) -> Dict[str, Any]:
        if skin_idx >= len(self.gltf.skins):
            raise GLBParseError(f"Skin index {skin_idx} out of range")
        skin = self.gltf.skins[skin_idx]

        skin_data = {
            'name': skin.name or f'Skin_{skin_idx}',
            'joints': list(skin.joints or []),
            'skeleton': skin.skeleton,
        }
        if skin.inverseBindMatrices is not None:
            matrices = self.accessor_reader.read_accessor(skin.inverseBindMatrices)
            # column-major per matrix
            skin_data['inverseBindMatrices'] = matrices.reshape(-1, 4, 4).transpose(0, 2, 1).astype(float)
        return skin_data

    # ------------------------------------------------------------------ animations

    def get_animation_data(self, anim_idx: int) -> Dict[str, Any]:
        """
        Get animation data.

        Returns:
            Dictionary with name, duration and a list of channels, each with
            target_node, target_path, interpolation, times and values
        """
        if anim_idx >= len(self.gltf.animations):
            raise GLBParseError(f"Animation index {anim_idx} out of range")
        animation = self.gltf.animations[anim_idx]

        anim_data = {
            'name': animation.name or f'Animation_{anim_idx}',
            'channels': [],
            'duration': 0.0,
        }
        for channel in animation.channels:
            sampler = animation.samplers[channel.sampler]
            times = np.asarray(self.accessor_reader.read_accessor(sampler.input), dtype=float).reshape(-1)
            values = np.asarray(self.accessor_reader.read_accessor(sampler.output), dtype=float)

            anim_data['channels'].append({
                'target_node': channel.target.node,
                'target_path': channel.target.path,
                'interpolation': sampler.interpolation or 'LINEAR',
                'times': times,
                'values': values,
            })
            if len(times) > 0:
                anim_data['duration'] = max(anim_data['duration'], float(times[-1]))
        return anim_data

    # ------------------------------------------------------------------ meshes

    def mesh_bounds(self) -> Optional[Tuple[np.ndarray, np.ndarray]]:
        """
        World-space bounding box of every mesh instance, from the POSITION
        accessor min/max. None when the file has no positioned geometry.
        """
        lo = np.full(3, np.inf)
        hi = np.full(3, -np.inf)
        found = False
        for node_idx, node in enumerate(self.gltf.nodes):
            if node.mesh is None:
                continue
            world = self.world_matrix(node_idx)
            for primitive in self.gltf.meshes[node.mesh].primitives:
                idx = getattr(primitive.attributes, 'POSITION', None)
                if idx is None:
                    continue
                accessor = self.gltf.accessors[idx]
                if accessor.min is None or accessor.max is None:
                    continue
                a, b = np.array(accessor.min[:3], dtype=float), np.array(accessor.max[:3], dtype=float)
                corners = np.array([[x, y, z, 1.0] for x in (a[0], b[0]) for y in (a[1], b[1])
                                    for z in (a[2], b[2])])
                points = (world @ corners.T).T[:, :3]
                lo = np.minimum(lo, points.min(axis=0))
                hi = np.maximum(hi, points.max(axis=0))
                found = True
        return (lo, hi) if found else None
