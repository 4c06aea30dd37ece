"""
Bone and skeleton classes.

A skeleton is a flat, topologically ordered list of bones. Every bone
refers to its parent by index (-1 for roots) and parents always precede
their children, so hierarchy walks are plain index loops.
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Sequence

import numpy as np

from ..exceptions import SkeletonError
from ..utils.quaternion import (
    compose_matrix,
    decompose_matrix,
    mulQuat,
    normalize_quat,
)


class BindPoseMode(Enum):
    """How a bind snapshot is taken when the engine clones a skeleton."""
    DEFAULT = "default"  # the original bind pose
    CURRENT = "current"  # the live pose becomes the bind pose


@dataclass
class Transform:
    """Translation, rotation (x, y, z, w) and scale triple."""
    position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    rotation: np.ndarray = field(default_factory=lambda: np.array([0.0, 0.0, 0.0, 1.0]))
    scale: np.ndarray = field(default_factory=lambda: np.ones(3))

    def __post_init__(self):
        self.position = np.array(self.position, dtype=float)
        self.rotation = normalize_quat(np.array(self.rotation, dtype=float))
        self.scale = np.array(self.scale, dtype=float)

    @property
    def matrix(self) -> np.ndarray:
        return compose_matrix(self.position, self.rotation, self.scale)

    @classmethod
    def from_matrix(cls, matrix: np.ndarray) -> 'Transform':
        position, rotation, scale = decompose_matrix(matrix)
        return cls(position, rotation, scale)

    def copy(self) -> 'Transform':
        return Transform(self.position.copy(), self.rotation.copy(), self.scale.copy())

    def is_identity(self, tol: float = 1e-6) -> bool:
        return bool(np.allclose(self.matrix, np.eye(4), atol=tol))


@dataclass
class EmbeddedWorld:
    """The scene transform above a skeleton and its inverse."""
    forward: Transform
    inverse: Transform


@dataclass
class Bone:
    """
    Represents a single bone in the skeleton hierarchy.
    """
    name: str
    parent_index: int = -1

    # Local transform relative to the parent bone
    position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    rotation: np.ndarray = field(default_factory=lambda: np.array([0.0, 0.0, 0.0, 1.0]))  # XYZW
    scale: np.ndarray = field(default_factory=lambda: np.ones(3))

    # Inverse bind matrix (if skinned)
    inverse_bind_matrix: Optional[np.ndarray] = None

    def __post_init__(self):
        """Ensure arrays are numpy arrays."""
        self.position = np.array(self.position, dtype=float)
        self.rotation = normalize_quat(np.array(self.rotation, dtype=float))
        self.scale = np.array(self.scale, dtype=float)
        if self.inverse_bind_matrix is not None:
            self.inverse_bind_matrix = np.array(self.inverse_bind_matrix, dtype=float).reshape(4, 4)

    @property
    def is_root(self) -> bool:
        return self.parent_index < 0

    @property
    def local_matrix(self) -> np.ndarray:
        """Get local transformation matrix."""
        return compose_matrix(self.position, self.rotation, self.scale)

    def local_transform(self) -> Transform:
        return Transform(self.position.copy(), self.rotation.copy(), self.scale.copy())

    def set_local(self, transform: Transform):
        self.position = transform.position.copy()
        self.rotation = transform.rotation.copy()
        self.scale = transform.scale.copy()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            'name': self.name,
            'parent_index': self.parent_index,
            'position': self.position.tolist(),
            'rotation': self.rotation.tolist(),
            'scale': self.scale.tolist(),
        }


class Skeleton:
    """
    Ordered bone list with parent indices, world transforms and a rest pose.

    The rest pose is captured when the skeleton is built (its "freeze")
    and can be re-captured with capture_bind_pose(). World transforms are
    expressed in skeleton space; the transform of the scene above the
    skeleton is kept separately in root_transform.
    """

    def __init__(self, bones: Sequence[Bone], root_transform: Optional[np.ndarray] = None,
                 name: str = "Skeleton"):
        """
        Initialize skeleton.

        Args:
            bones: Bones in topological order (parents before children)
            root_transform: 4x4 world matrix of the scene above the skeleton
            name: Display name

        Raises:
            SkeletonError: If the bone list is empty or not topologically ordered
        """
        self.bones: List[Bone] = list(bones)
        self.name = name
        self.root_transform = (np.eye(4) if root_transform is None
                               else np.array(root_transform, dtype=float).reshape(4, 4))
        self.embedded: Optional[EmbeddedWorld] = None

        self._validate()
        self._rest: List[Transform] = [b.local_transform() for b in self.bones]
        self._name_index: Dict[str, int] = {}
        for i, bone in enumerate(self.bones):
            self._name_index.setdefault(bone.name, i)

        self.world_matrices = np.zeros((len(self.bones), 4, 4))
        self.world_rotations = np.zeros((len(self.bones), 4))
        self.update_world_matrices()

    def _validate(self):
        if not self.bones:
            raise SkeletonError("Skeleton has no bones")
        for i, bone in enumerate(self.bones):
            if bone.parent_index >= i:
                raise SkeletonError(
                    f"Bone '{bone.name}' (index {i}) has parent index {bone.parent_index}; "
                    "parents must precede their children"
                )
            if bone.parent_index < -1:
                raise SkeletonError(f"Bone '{bone.name}' has invalid parent index {bone.parent_index}")

    @classmethod
    def from_hierarchy(cls, names: Sequence[str], parents: Sequence[int],
                       positions: Optional[Sequence] = None,
                       rotations: Optional[Sequence] = None,
                       scales: Optional[Sequence] = None,
                       root_transform: Optional[np.ndarray] = None,
                       name: str = "Skeleton") -> 'Skeleton':
        """
        Build a skeleton from parallel arrays.

        Args:
            names: Bone names
            parents: Parent index per bone (-1 for roots)
            positions: Optional local positions
            rotations: Optional local rotations (x, y, z, w)
            scales: Optional local scales
            root_transform: Optional 4x4 transform of the scene above the skeleton
            name: Display name

        Returns:
            Skeleton
        """
        if len(names) != len(parents):
            raise SkeletonError(
                f"Got {len(names)} names but {len(parents)} parent indices"
            )
        bones = []
        for i, bone_name in enumerate(names):
            bones.append(Bone(
                name=bone_name,
                parent_index=int(parents[i]),
                position=positions[i] if positions is not None else np.zeros(3),
                rotation=rotations[i] if rotations is not None else np.array([0.0, 0.0, 0.0, 1.0]),
                scale=scales[i] if scales is not None else np.ones(3),
            ))
        return cls(bones, root_transform=root_transform, name=name)

    # ------------------------------------------------------------------ access

    def __len__(self) -> int:
        return len(self.bones)

    def __iter__(self) -> Iterator[Bone]:
        return iter(self.bones)

    def __getitem__(self, index: int) -> Bone:
        return self.bones[index]

    @property
    def bone_names(self) -> List[str]:
        return [b.name for b in self.bones]

    @property
    def parent_indices(self) -> np.ndarray:
        return np.array([b.parent_index for b in self.bones], dtype=int)

    def index_of(self, name: str) -> int:
        """Index of the first bone called name, or -1."""
        return self._name_index.get(name, -1)

    def get_bone_by_name(self, name: str) -> Optional[Bone]:
        index = self.index_of(name)
        return self.bones[index] if index >= 0 else None

    def children_of(self, index: int) -> List[int]:
        return [i for i, b in enumerate(self.bones) if b.parent_index == index]

    def first_child(self, index: int) -> int:
        for i in range(index + 1, len(self.bones)):
            if self.bones[i].parent_index == index:
                return i
        return -1

    def root_indices(self) -> List[int]:
        return [i for i, b in enumerate(self.bones) if b.parent_index < 0]

    def depth_of(self, index: int) -> int:
        depth = 0
        parent = self.bones[index].parent_index
        while parent >= 0:
            depth += 1
            parent = self.bones[parent].parent_index
        return depth

    def chain(self, start: int, end: int) -> List[int]:
        """
        Bone indices from start down to end, inclusive.

        Returns an empty list when end does not descend from start.
        """
        path = [end]
        current = end
        while current != start:
            current = self.bones[current].parent_index
            if current < 0:
                return []
            path.append(current)
        return path[::-1]

    # ------------------------------------------------------------------ world

    def update_world_matrices(self):
        """Recompute world matrices and world rotations from the locals."""
        for i, bone in enumerate(self.bones):
            local = bone.local_matrix
            if bone.parent_index < 0:
                self.world_matrices[i] = local
                self.world_rotations[i] = bone.rotation
            else:
                self.world_matrices[i] = self.world_matrices[bone.parent_index] @ local
                self.world_rotations[i] = normalize_quat(
                    mulQuat(self.world_rotations[bone.parent_index], bone.rotation)
                )

    def world_position(self, index: int) -> np.ndarray:
        return self.world_matrices[index][:3, 3].copy()

    def world_rotation(self, index: int) -> np.ndarray:
        return self.world_rotations[index].copy()

    def parent_world_rotation(self, index: int) -> np.ndarray:
        parent = self.bones[index].parent_index
        if parent < 0:
            return np.array([0.0, 0.0, 0.0, 1.0])
        return self.world_rotations[parent].copy()

    def set_local_rotation(self, index: int, rotation, update: bool = True):
        self.bones[index].rotation = normalize_quat(np.array(rotation, dtype=float))
        if update:
            self.update_world_matrices()

    def bone_length(self, index: int) -> float:
        """Distance from the bone's world origin to its first child's, 0 for leaves."""
        child = self.first_child(index)
        if child < 0:
            return 0.0
        return float(np.linalg.norm(self.world_position(child) - self.world_position(index)))

    # ------------------------------------------------------------------ rest pose

    def rest_local(self, index: int) -> Transform:
        return self._rest[index].copy()

    def capture_bind_pose(self):
        """Record the current local transforms as the rest pose."""
        self._rest = [b.local_transform() for b in self.bones]

    def reset_to_rest(self):
        for bone, rest in zip(self.bones, self._rest):
            bone.set_local(rest)
        self.update_world_matrices()

    def has_inverse_bind_matrices(self) -> bool:
        return all(b.inverse_bind_matrix is not None for b in self.bones)

    def _locals_from_inverse_bind(self) -> Optional[List[Transform]]:
        """Local bind transforms implied by the inverse bind matrices."""
        if not self.has_inverse_bind_matrices():
            return None
        locals_ = []
        for i, bone in enumerate(self.bones):
            if bone.parent_index < 0:
                locals_.append(self._rest[i].copy())
                continue
            try:
                world = np.linalg.inv(bone.inverse_bind_matrix)
            except np.linalg.LinAlgError:
                return None
            parent_ibm = self.bones[bone.parent_index].inverse_bind_matrix
            locals_.append(Transform.from_matrix(parent_ibm @ world))
        return locals_

    def clone(self) -> 'Skeleton':
        return copy.deepcopy(self)

    def bind_clone(self, mode: BindPoseMode = BindPoseMode.DEFAULT,
                   embed_world: bool = False) -> 'Skeleton':
        """
        Detached copy posed at the bind pose chosen by mode.

        DEFAULT uses the inverse bind matrices when every bone has one and
        the captured rest pose otherwise. CURRENT snapshots the live pose.
        With embed_world the clone carries the scene transform above the
        skeleton as an EmbeddedWorld.
        """
        if mode == BindPoseMode.CURRENT:
            locals_ = [b.local_transform() for b in self.bones]
        else:
            locals_ = self._locals_from_inverse_bind() or [t.copy() for t in self._rest]

        bones = []
        for bone, local in zip(self.bones, locals_):
            bones.append(Bone(
                name=bone.name,
                parent_index=bone.parent_index,
                position=local.position,
                rotation=local.rotation,
                scale=local.scale,
                inverse_bind_matrix=bone.inverse_bind_matrix,
            ))
        clone = Skeleton(bones, root_transform=self.root_transform.copy(), name=self.name)
        if embed_world and not np.allclose(self.root_transform, np.eye(4)):
            clone.embedded = EmbeddedWorld(
                forward=Transform.from_matrix(self.root_transform),
                inverse=Transform.from_matrix(np.linalg.inv(self.root_transform)),
            )
        return clone

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'bones': [b.to_dict() for b in self.bones],
            'root_transform': self.root_transform.tolist(),
        }
