"""
Bind pose detection and normalization (T-pose / A-pose).

All operations work on a Skeleton in place: world rotations are composed
in skeleton space and written back as local rotations through the parent's
world rotation. The returned PoseResult records, per touched bone, the
delta between the old and the new local rotation.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Union

import numpy as np

from ..common import EPSILON
from ..skeleton.bone import Skeleton
from ..skeleton.naming import canonical_key
from ..utils.quaternion import (
    inverse_quat,
    mulQuat,
    normalize_quat,
    normalize_vector,
    quat_angle,
    quat_between_vectors,
)

logger = logging.getLogger(__name__)

X_AXIS = np.array([1.0, 0.0, 0.0])
Y_AXIS = np.array([0.0, 1.0, 0.0])
Z_AXIS = np.array([0.0, 0.0, 1.0])

# Roles resolved against a skeleton before imposing a pose
POSE_ROLES = (
    'Hips', 'Spine',
    'LeftUpLeg', 'LeftFoot', 'RightUpLeg', 'RightFoot',
    'LeftArm', 'LeftHand', 'RightArm', 'RightHand',
)

# Arms closer than this to the plane perpendicular to the spine count as T-pose
T_POSE_MAX_VERTICAL = 0.3
A_POSE_MIN_DROOP = 25.0
A_POSE_MAX_DROOP = 75.0

# Rotations below this (radians) are skipped
MIN_CORRECTION_ANGLE = 1e-3

BoneRef = Union[int, str]


class PoseType(Enum):
    T_POSE = "T-pose"
    A_POSE = "A-pose"
    OTHER = "other"
    UNKNOWN = "unknown"


_COMPATIBLE_POSES = {
    (PoseType.T_POSE, PoseType.A_POSE),
    (PoseType.A_POSE, PoseType.T_POSE),
}


@dataclass
class PoseValidation:
    valid: bool
    source_pose: PoseType
    target_pose: PoseType
    source_in_t_pose: bool
    target_in_t_pose: bool
    recommendation: str = ""


@dataclass
class PoseResult:
    skeleton: Skeleton
    bone_map: Dict[str, str]
    corrections: Dict[str, np.ndarray] = field(default_factory=dict)


def poses_compatible(source: PoseType, target: PoseType) -> bool:
    """
    Whether two bind poses can be retargeted without normalization.

    T- and A-pose are accepted against each other; any other pose,
    UNKNOWN included, only against itself.
    """
    return source == target or (source, target) in _COMPATIBLE_POSES


class PoseNormalization:
    """
    Detects and imposes canonical bind poses on skeletons.
    """

    # ------------------------------------------------------------------ lookup

    def detect_t_pose_bones(self, skeleton: Skeleton) -> Dict[str, str]:
        """
        Resolve the pose roles (Hips, Spine, legs, arms) to bone names.

        Returns:
            Role -> bone name for every role found
        """
        keys = [canonical_key(b.name) for b in skeleton]
        bone_map: Dict[str, str] = {}
        for role in POSE_ROLES:
            wanted = role.lower()
            for bone, key in zip(skeleton, keys):
                if key == wanted:
                    bone_map[role] = bone.name
                    break

        if 'Spine' not in bone_map:
            for bone, key in zip(skeleton, keys):
                if key.startswith('spine'):
                    bone_map['Spine'] = bone.name
                    break

        return bone_map

    @staticmethod
    def _resolve(skeleton: Skeleton, ref: Optional[BoneRef]) -> int:
        if ref is None:
            return -1
        if isinstance(ref, str):
            return skeleton.index_of(ref)
        return ref if 0 <= ref < len(skeleton) else -1

    # ------------------------------------------------------------------ detection

    def _spine_axis(self, skeleton: Skeleton, bone_map: Dict[str, str]) -> np.ndarray:
        hips = self._resolve(skeleton, bone_map.get('Hips'))
        spine = self._resolve(skeleton, bone_map.get('Spine'))
        if hips >= 0 and spine >= 0:
            axis = skeleton.world_position(spine) - skeleton.world_position(hips)
            if np.linalg.norm(axis) > EPSILON:
                return normalize_vector(axis)
            head = next((i for i, b in enumerate(skeleton) if canonical_key(b.name) == 'head'), -1)
            if head >= 0:
                axis = skeleton.world_position(head) - skeleton.world_position(hips)
                if np.linalg.norm(axis) > EPSILON:
                    return normalize_vector(axis)
        return Y_AXIS.copy()

    def _arm_direction(self, skeleton: Skeleton, arm: int) -> Optional[np.ndarray]:
        child = skeleton.first_child(arm)
        if child < 0:
            return None
        direction = skeleton.world_position(child) - skeleton.world_position(arm)
        if np.linalg.norm(direction) < EPSILON:
            return None
        return normalize_vector(direction)

    def detect_pose_type(self, skeleton: Skeleton) -> PoseType:
        """
        Classify the current pose from the upper-arm directions.

        Arms roughly perpendicular to the spine axis are a T-pose; arms
        hanging 25-75 degrees below that plane are an A-pose.
        """
        if skeleton is None or len(skeleton) == 0:
            return PoseType.UNKNOWN

        bone_map = self.detect_t_pose_bones(skeleton)
        left = self._resolve(skeleton, bone_map.get('LeftArm'))
        right = self._resolve(skeleton, bone_map.get('RightArm'))
        if left < 0 or right < 0:
            return PoseType.UNKNOWN

        left_dir = self._arm_direction(skeleton, left)
        right_dir = self._arm_direction(skeleton, right)
        if left_dir is None or right_dir is None:
            return PoseType.UNKNOWN

        up = self._spine_axis(skeleton, bone_map)
        left_vertical = float(np.dot(left_dir, up))
        right_vertical = float(np.dot(right_dir, up))
        left_droop = float(np.degrees(np.arcsin(np.clip(-left_vertical, -1.0, 1.0))))
        right_droop = float(np.degrees(np.arcsin(np.clip(-right_vertical, -1.0, 1.0))))

        logger.debug(f"Arm droop left={left_droop:.1f} right={right_droop:.1f} degrees")

        if abs(left_vertical) < T_POSE_MAX_VERTICAL and abs(right_vertical) < T_POSE_MAX_VERTICAL:
            return PoseType.T_POSE
        if (A_POSE_MIN_DROOP < left_droop < A_POSE_MAX_DROOP
                and A_POSE_MIN_DROOP < right_droop < A_POSE_MAX_DROOP):
            return PoseType.A_POSE
        return PoseType.OTHER

    def validate_poses(self, source: Optional[Skeleton], target: Optional[Skeleton]) -> PoseValidation:
        """Compare the bind poses of two skeletons."""
        if source is None or target is None:
            return PoseValidation(False, PoseType.UNKNOWN, PoseType.UNKNOWN, False, False,
                                  "Bind poses not initialized")

        source_pose = self.detect_pose_type(source)
        target_pose = self.detect_pose_type(target)
        valid = poses_compatible(source_pose, target_pose)

        if not valid:
            recommendation = (f"Source is {source_pose.value} and target is {target_pose.value}. "
                              "Consider applying T-pose normalization.")
        elif PoseType.T_POSE not in (source_pose, target_pose):
            recommendation = "Poses are compatible but T-pose normalization may improve results."
        else:
            recommendation = "Poses are compatible for retargeting."

        return PoseValidation(
            valid=valid,
            source_pose=source_pose,
            target_pose=target_pose,
            source_in_t_pose=source_pose == PoseType.T_POSE,
            target_in_t_pose=target_pose == PoseType.T_POSE,
            recommendation=recommendation,
        )

    # ------------------------------------------------------------------ edits

    def _rotate_world(self, skeleton: Skeleton, index: int, rotation: np.ndarray):
        """Premultiply a bone's world rotation by rotation, keeping descendants attached."""
        world = mulQuat(rotation, skeleton.world_rotation(index))
        local = mulQuat(inverse_quat(skeleton.parent_world_rotation(index)), world)
        skeleton.set_local_rotation(index, normalize_quat(local))

    def extend_chain(self, skeleton: Skeleton, origin: BoneRef, end: Optional[BoneRef] = None):
        """
        Straighten the chain from origin to end.

        Walking up from end, every bone strictly between origin and end is
        rotated so that its outgoing segment continues its incoming one.
        When end is omitted, the chain follows first children to a leaf.
        """
        base = self._resolve(skeleton, origin)
        if base < 0:
            logger.warning(f"extend_chain: origin bone not found: {origin}")
            return

        if end is None:
            leaf = base
            while skeleton.first_child(leaf) >= 0:
                leaf = skeleton.first_child(leaf)
            tip = leaf
        else:
            tip = self._resolve(skeleton, end)
        if tip < 0:
            logger.warning(f"extend_chain: end bone not found: {end}")
            return

        chain = skeleton.chain(base, tip)
        if len(chain) < 3:
            return

        for k in range(len(chain) - 2, 0, -1):
            previous, current, upper = chain[k + 1], chain[k], chain[k - 1]
            desired = skeleton.world_position(current) - skeleton.world_position(upper)
            actual = skeleton.world_position(previous) - skeleton.world_position(current)
            if np.linalg.norm(desired) < EPSILON or np.linalg.norm(actual) < EPSILON:
                continue
            rotation = quat_between_vectors(actual, desired)
            if quat_angle(rotation, np.array([0.0, 0.0, 0.0, 1.0])) > MIN_CORRECTION_ANGLE:
                self._rotate_world(skeleton, current, rotation)

    def align_bone_to_axis(self, skeleton: Skeleton, origin: BoneRef, end: Optional[BoneRef],
                           axis) -> bool:
        """
        Rotate origin so the world direction origin -> end equals axis.

        When end is omitted the first child is used.

        Returns:
            True if the bone was rotated
        """
        o_index = self._resolve(skeleton, origin)
        if o_index < 0:
            logger.warning(f"align_bone_to_axis: origin bone not found: {origin}")
            return False
        e_index = self._resolve(skeleton, end) if end is not None else skeleton.first_child(o_index)
        if e_index < 0:
            logger.warning(f"align_bone_to_axis: end bone not found: {end}")
            return False

        direction = skeleton.world_position(e_index) - skeleton.world_position(o_index)
        if np.linalg.norm(direction) < EPSILON:
            return False

        rotation = quat_between_vectors(direction, axis)
        if quat_angle(rotation, np.array([0.0, 0.0, 0.0, 1.0])) <= MIN_CORRECTION_ANGLE:
            return False
        self._rotate_world(skeleton, o_index, rotation)
        return True

    def look_bone_at_axis(self, skeleton: Skeleton, bone: BoneRef, dir_a, dir_b, axis) -> bool:
        """Rotate bone so the normal of the plane (dir_a, dir_b) points along axis."""
        index = self._resolve(skeleton, bone)
        if index < 0:
            return False
        normal = np.cross(normalize_vector(dir_a), normalize_vector(dir_b))
        if np.linalg.norm(normal) < EPSILON:
            return False
        rotation = quat_between_vectors(normal, axis)
        if quat_angle(rotation, np.array([0.0, 0.0, 0.0, 1.0])) <= MIN_CORRECTION_ANGLE:
            return False
        self._rotate_world(skeleton, index, rotation)
        return True

    # ------------------------------------------------------------------ poses

    def apply_t_pose(self, skeleton: Skeleton, bone_map: Optional[Dict[str, str]] = None) -> PoseResult:
        """Impose a T-pose: spine up, legs down, arms along +X / -X, facing +Z."""
        return self._apply_pose(skeleton, bone_map, X_AXIS, -X_AXIS)

    def apply_a_pose(self, skeleton: Skeleton, bone_map: Optional[Dict[str, str]] = None) -> PoseResult:
        """Impose an A-pose: as the T-pose but arms 45 degrees below horizontal."""
        left_arm_axis = normalize_vector(np.array([1.0, -1.0, 0.0]))
        right_arm_axis = normalize_vector(np.array([-1.0, -1.0, 0.0]))
        return self._apply_pose(skeleton, bone_map, left_arm_axis, right_arm_axis)

    def _apply_pose(self, skeleton: Skeleton, bone_map: Optional[Dict[str, str]],
                    left_arm_axis: np.ndarray, right_arm_axis: np.ndarray) -> PoseResult:
        if bone_map is None:
            bone_map = self.detect_t_pose_bones(skeleton)

        before = [b.rotation.copy() for b in skeleton]

        if bone_map.get('Hips') and bone_map.get('Spine'):
            self.extend_chain(skeleton, bone_map['Hips'], bone_map['Spine'])

        limbs = (
            ('LeftUpLeg', 'LeftFoot'),
            ('RightUpLeg', 'RightFoot'),
            ('LeftArm', 'LeftHand'),
            ('RightArm', 'RightHand'),
        )
        for start, end in limbs:
            if bone_map.get(start) and bone_map.get(end):
                self.extend_chain(skeleton, bone_map[start], bone_map[end])

        alignments = (
            ('Hips', 'Spine', Y_AXIS),
            ('LeftUpLeg', 'LeftFoot', -Y_AXIS),
            ('RightUpLeg', 'RightFoot', -Y_AXIS),
            ('LeftArm', 'LeftHand', left_arm_axis),
            ('RightArm', 'RightHand', right_arm_axis),
        )
        for start, end, axis in alignments:
            if bone_map.get(start) and bone_map.get(end):
                self.align_bone_to_axis(skeleton, bone_map[start], bone_map[end], axis)

        if bone_map.get('LeftArm') and bone_map.get('RightArm') and bone_map.get('Spine'):
            left = skeleton.index_of(bone_map['LeftArm'])
            right = skeleton.index_of(bone_map['RightArm'])
            arms_dir = skeleton.world_position(left) - skeleton.world_position(right)
            self.look_bone_at_axis(skeleton, 0, arms_dir, Y_AXIS, Z_AXIS)

        skeleton.update_world_matrices()

        corrections = {}
        for bone, old in zip(skeleton, before):
            delta = normalize_quat(mulQuat(bone.rotation, inverse_quat(old)))
            if quat_angle(delta, np.array([0.0, 0.0, 0.0, 1.0])) > MIN_CORRECTION_ANGLE:
                corrections[bone.name] = delta

        logger.info(f"Normalized pose of '{skeleton.name}': {len(corrections)} bones corrected")
        return PoseResult(skeleton=skeleton, bone_map=bone_map, corrections=corrections)
