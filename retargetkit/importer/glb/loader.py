"""
GLB/GLTF file -> ParsedModel.

The skeleton comes from the first skin (or, without skins, from the
nodes under an armature-like node). Each animation becomes one clip
with tracks named ``<node>.<property>``.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

import numpy as np

from ...animation.clip import (
    AnimationClip,
    Interpolation,
    KeyframeTrack,
    NumberTrack,
    QuaternionTrack,
    VectorTrack,
)
from ...common import SUPPORTED_MODEL_EXTENSIONS
from ...exceptions import InvalidInputError
from ...skeleton.bone import Bone, Skeleton, Transform
from ..model import ParsedModel
from .parser import GLBParser

logger = logging.getLogger(__name__)

ARMATURE_NAMES = ('armature', 'skeleton', 'rig', 'root')

_PATH_TRACKS = {
    'rotation': (QuaternionTrack, 'rotation'),
    'translation': (VectorTrack, 'position'),
    'scale': (VectorTrack, 'scale'),
    'weights': (NumberTrack, 'morphTargetInfluences'),
}


def _ordered_subset(parser: GLBParser, members: List[int]) -> List[int]:
    """members in depth-first scene order, so parents precede children."""
    wanted = set(members)
    order: List[int] = []
    visited = set()
    stack = list(reversed(parser.parentless_nodes()))
    while stack:
        idx = stack.pop()
        if idx in visited:
            continue
        visited.add(idx)
        if idx in wanted:
            order.append(idx)
        stack.extend(reversed(parser.gltf.nodes[idx].children or []))
    return order


def _armature_nodes(parser: GLBParser) -> List[int]:
    for idx in range(len(parser.gltf.nodes)):
        if parser.node_name(idx).lower() not in ARMATURE_NAMES:
            continue
        members = []
        stack = list(parser.gltf.nodes[idx].children or [])
        while stack:
            child = stack.pop()
            if parser.gltf.nodes[child].mesh is None:
                members.append(child)
                stack.extend(parser.gltf.nodes[child].children or [])
        if members:
            logger.info(f"No skin found, using {len(members)} nodes under '{parser.node_name(idx)}'")
            return members
    return []


def build_skeleton(parser: GLBParser) -> Optional[Skeleton]:
    """
    Skeleton of the first skin, with inverse bind matrices.

    Bones whose nearest bone ancestor is not their direct parent get their
    local transform relative to that ancestor. The world transform of the
    non-bone nodes above the first root becomes the skeleton's root_transform.
    """
    ibms: Dict[int, np.ndarray] = {}
    if parser.gltf.skins:
        skin = parser.get_skin_data(0)
        joints = skin['joints']
        matrices = skin.get('inverseBindMatrices')
        if matrices is not None:
            ibms = {joint: matrices[i] for i, joint in enumerate(joints) if i < len(matrices)}
    else:
        joints = _armature_nodes(parser)
    if not joints:
        return None

    ordered = _ordered_subset(parser, joints)
    bone_index = {node: i for i, node in enumerate(ordered)}

    first_parent = parser.parent_of(ordered[0])
    root_transform = parser.world_matrix(first_parent) if first_parent >= 0 else np.eye(4)
    inv_root = np.linalg.inv(root_transform)

    bones = []
    for node in ordered:
        parent = parser.parent_of(node)
        while parent >= 0 and parent not in bone_index:
            parent = parser.parent_of(parent)

        if parent >= 0 and parser.parent_of(node) == parent:
            local = parser.local_matrix(node)
        elif parent >= 0:
            local = np.linalg.inv(parser.world_matrix(parent)) @ parser.world_matrix(node)
        else:
            local = inv_root @ parser.world_matrix(node)
        transform = Transform.from_matrix(local)

        bones.append(Bone(
            name=parser.node_name(node),
            parent_index=bone_index[parent] if parent >= 0 else -1,
            position=transform.position,
            rotation=transform.rotation,
            scale=transform.scale,
            inverse_bind_matrix=ibms.get(node),
        ))

    logger.info(f"Built skeleton with {len(bones)} bones")
    return Skeleton(bones, root_transform=root_transform, name=parser.name)


def _channel_track(parser: GLBParser, channel: Dict) -> Optional[KeyframeTrack]:
    if channel['target_node'] is None or channel['target_path'] not in _PATH_TRACKS:
        return None
    track_type, prop = _PATH_TRACKS[channel['target_path']]
    times = channel['times']
    values = np.asarray(channel['values'], dtype=float)

    interpolation = Interpolation(channel['interpolation'])
    if interpolation == Interpolation.CUBICSPLINE:
        # keep the value of each (in-tangent, value, out-tangent) triplet
        values = values.reshape(len(times), 3, -1)[:, 1, :]
        interpolation = Interpolation.LINEAR

    name = f"{parser.node_name(channel['target_node'])}.{prop}"
    return track_type(name, times, values.reshape(-1), interpolation)


def build_clips(parser: GLBParser) -> List[AnimationClip]:
    clips = []
    for anim_idx in range(len(parser.gltf.animations)):
        data = parser.get_animation_data(anim_idx)
        tracks = []
        for channel in data['channels']:
            track = _channel_track(parser, channel)
            if track is None:
                logger.debug(f"Skipping unsupported channel {channel['target_path']} in {data['name']}")
                continue
            tracks.append(track)
        clips.append(AnimationClip(data['name'], data['duration'], tracks))
        logger.info(f"Loaded animation '{data['name']}': {len(tracks)} tracks, {data['duration']:.2f}s")
    return clips


def parse_model(parser: GLBParser, source_path: Optional[str] = None) -> ParsedModel:
    skeleton = build_skeleton(parser)
    root_name = skeleton[skeleton.root_indices()[0]].name if skeleton is not None else None
    asset = parser.gltf.asset
    return ParsedModel(
        name=parser.name,
        skeleton=skeleton,
        clips=build_clips(parser),
        world_transform=skeleton.root_transform.copy() if skeleton is not None else np.eye(4),
        up_axis='Y',
        bounds=parser.mesh_bounds(),
        root_name=root_name,
        source_path=source_path,
        metadata={
            'generator': getattr(asset, 'generator', None),
            'nodes': len(parser.gltf.nodes),
            'meshes': len(parser.gltf.meshes),
            'skins': len(parser.gltf.skins),
            'animations': len(parser.gltf.animations),
        },
    )


def load_model(path: Union[str, Path]) -> ParsedModel:
    """
    Load a .glb or .gltf file.

    Raises:
        InvalidInputError: Unsupported extension
        GLBParseError: The file cannot be read
    """
    path = Path(path)
    extension = path.suffix.lower().lstrip('.')
    if extension not in SUPPORTED_MODEL_EXTENSIONS:
        raise InvalidInputError(f"Unsupported model format: .{extension}")
    if extension == 'fbx':
        raise InvalidInputError("FBX files must be converted to glTF before loading")
    return parse_model(GLBParser(path), source_path=str(path))


def load_model_bytes(data: bytes, name: str = "model") -> ParsedModel:
    return parse_model(GLBParser.from_bytes(data, name=name))
