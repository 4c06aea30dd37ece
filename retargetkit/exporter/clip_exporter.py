"""
Write animation clips into a GLB.

Clips are added to a copy of the target file (nodes are matched by name)
or to a bare armature built from a Skeleton.
"""

import logging
import warnings
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import numpy as np
from pygltflib import (
    GLTF2,
    Accessor,
    Animation,
    AnimationChannel,
    AnimationChannelTarget,
    AnimationSampler,
    Asset,
    Buffer,
    BufferFormat,
    BufferView,
    Node,
    Scene,
    Skin,
)

from ..animation.clip import AnimationClip, Interpolation, KeyframeTrack
from ..common import PROJECT_VERSION
from ..exceptions import ExporterWarning, GLBParseError, InvalidInputError
from ..skeleton.bone import Skeleton

logger = logging.getLogger(__name__)

FLOAT = 5126

TYPE_SIZES = {
    'SCALAR': 1,
    'VEC2': 2,
    'VEC3': 3,
    'VEC4': 4,
    'MAT4': 16,
}

# track property -> (glTF channel path, accessor type)
CHANNEL_PATHS = {
    'rotation': ('rotation', 'VEC4'),
    'position': ('translation', 'VEC3'),
    'scale': ('scale', 'VEC3'),
    'morphTargetInfluences': ('weights', 'SCALAR'),
}


class ClipExporter:
    """
    Appends accessors and animations to a GLTF2 document.

    All new data goes into buffer 0 after whatever it already holds;
    call finalize() once before saving.
    """

    def __init__(self, gltf: GLTF2):
        if gltf.buffers and any(b.uri for b in gltf.buffers):
            gltf.convert_buffers(BufferFormat.BINARYBLOB)
        if len(gltf.buffers) > 1:
            raise GLBParseError("Documents with several buffers are not supported")
        self.gltf = gltf
        blob = gltf.binary_blob() if gltf.buffers else None
        self._data = bytearray(blob or b'')

    def node_map(self) -> Dict[str, int]:
        """Node name -> index; skin joints win over other nodes of the same name."""
        nodes: Dict[str, int] = {}
        for i, node in enumerate(self.gltf.nodes):
            if node.name:
                nodes.setdefault(node.name, i)
        if self.gltf.skins:
            for joint in self.gltf.skins[0].joints or []:
                name = self.gltf.nodes[joint].name
                if name:
                    nodes[name] = joint
        return nodes

    def create_accessor(self, data: np.ndarray, accessor_type: str) -> int:
        """
        Append float data and create an accessor for it.

        Returns:
            Accessor index
        """
        size = TYPE_SIZES[accessor_type]
        data = np.asarray(data, dtype=np.float32).reshape(-1, size)

        while len(self._data) % 4 != 0:
            self._data.append(0)
        byte_offset = len(self._data)
        data_bytes = data.tobytes()
        self._data.extend(data_bytes)

        self.gltf.bufferViews.append(BufferView(buffer=0, byteOffset=byte_offset, byteLength=len(data_bytes)))
        self.gltf.accessors.append(Accessor(
            bufferView=len(self.gltf.bufferViews) - 1,
            byteOffset=0,
            componentType=FLOAT,
            count=len(data),
            type=accessor_type,
            min=data.min(axis=0).tolist() if len(data) else None,
            max=data.max(axis=0).tolist() if len(data) else None,
        ))
        return len(self.gltf.accessors) - 1

    def add_clip(self, clip: AnimationClip, node_map: Optional[Dict[str, int]] = None) -> Animation:
        """
        Add clip as a glTF animation.

        Tracks whose node is not in the document or whose property has no
        glTF channel are skipped with an ExporterWarning.
        """
        if node_map is None:
            node_map = self.node_map()

        animation = Animation(name=clip.name, channels=[], samplers=[])
        skipped: List[str] = []
        time_accessors: Dict[bytes, int] = {}

        for track in clip.tracks:
            target = self._channel_target(track, node_map)
            if target is None:
                skipped.append(track.name)
                continue
            node, path, accessor_type = target

            times = np.asarray(track.times, dtype=np.float32)
            key = times.tobytes()
            if key not in time_accessors:
                time_accessors[key] = self.create_accessor(times, 'SCALAR')

            values = track.keyframes()
            if path == 'rotation':
                # keep consecutive keys in one hemisphere
                values = values.copy()
                for i in range(1, len(values)):
                    if np.dot(values[i], values[i - 1]) < 0:
                        values[i] = -values[i]

            animation.samplers.append(AnimationSampler(
                input=time_accessors[key],
                output=self.create_accessor(values, accessor_type),
                interpolation=('STEP' if track.interpolation == Interpolation.STEP else 'LINEAR'),
            ))
            animation.channels.append(AnimationChannel(
                sampler=len(animation.samplers) - 1,
                target=AnimationChannelTarget(node=node, path=path),
            ))

        if skipped:
            warnings.warn(f"{len(skipped)} tracks of '{clip.name}' were not exported: "
                          + ", ".join(skipped[:5]), ExporterWarning)

        self.gltf.animations.append(animation)
        logger.info(f"Exported '{clip.name}': {len(animation.channels)} channels, {len(skipped)} skipped")
        return animation

    @staticmethod
    def _channel_target(track: KeyframeTrack, node_map: Dict[str, int]):
        if track.property_name not in CHANNEL_PATHS or track.node_name not in node_map:
            return None
        path, accessor_type = CHANNEL_PATHS[track.property_name]
        return node_map[track.node_name], path, accessor_type

    def finalize(self):
        """Write the collected data back as the binary blob of buffer 0."""
        while len(self._data) % 4 != 0:
            self._data.append(0)
        data = bytes(self._data)
        if not self.gltf.buffers:
            self.gltf.buffers = [Buffer(byteLength=len(data))]
        else:
            self.gltf.buffers[0].byteLength = len(data)
        self.gltf.set_binary_blob(data)

    def save(self, output_path: Union[str, Path]) -> Path:
        self.finalize()
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        self.gltf.save_binary(str(output_path))
        logger.info(f"Saved {output_path}")
        return output_path


def skeleton_to_gltf(skeleton: Skeleton) -> GLTF2:
    """
    A document holding only the skeleton: an 'Armature' node carrying
    root_transform, one node per bone and a skin with inverse bind matrices.
    """
    gltf = GLTF2(asset=Asset(version="2.0", generator=f"retargetkit {PROJECT_VERSION}"))
    gltf.nodes.append(Node(name="Armature", matrix=skeleton.root_transform.T.reshape(-1).tolist(),
                           children=[]))

    for bone in skeleton:
        gltf.nodes.append(Node(
            name=bone.name,
            translation=bone.position.tolist(),
            rotation=bone.rotation.tolist(),
            scale=bone.scale.tolist(),
            children=[],
        ))
    for i, bone in enumerate(skeleton):
        parent = 0 if bone.parent_index < 0 else bone.parent_index + 1
        gltf.nodes[parent].children.append(i + 1)

    gltf.scenes = [Scene(nodes=[0])]
    gltf.scene = 0

    exporter = ClipExporter(gltf)
    ibms = np.array([np.linalg.inv(m).T for m in skeleton.world_matrices])
    gltf.skins = [Skin(name=skeleton.name, joints=list(range(1, len(skeleton) + 1)),
                       inverseBindMatrices=exporter.create_accessor(ibms.reshape(-1, 16), 'MAT4'))]
    exporter.finalize()
    return gltf


def export_clips(clips: Sequence[AnimationClip], output_path: Union[str, Path],
                 target_path: Optional[Union[str, Path]] = None,
                 skeleton: Optional[Skeleton] = None,
                 replace_existing: bool = True) -> Path:
    """
    Save clips to a GLB.

    Args:
        clips: Clips to write
        output_path: GLB to create
        target_path: GLB/GLTF whose nodes receive the clips
        skeleton: Used instead of target_path to build a bare armature
        replace_existing: Drop the animations already in the target

    Returns:
        The written path
    """
    if target_path is not None:
        target_path = Path(target_path)
        if not target_path.exists():
            raise InvalidInputError(f"File not found: {target_path}")
        gltf = GLTF2.load(str(target_path))
    elif skeleton is not None:
        gltf = skeleton_to_gltf(skeleton)
    else:
        raise InvalidInputError("Either a target file or a skeleton is required")

    if replace_existing and gltf.animations:
        logger.info(f"Removing {len(gltf.animations)} existing animations")
        gltf.animations = []

    exporter = ClipExporter(gltf)
    node_map = exporter.node_map()
    for clip in clips:
        exporter.add_clip(clip, node_map)
    return exporter.save(output_path)
