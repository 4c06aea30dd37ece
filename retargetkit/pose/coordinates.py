"""
Coordinate system detection for loaded models.

The canonical frame is right-handed, Y-up, with one unit per meter.
Detection is heuristic: bounding-box proportions, the direction from the
skeleton root to its first child, and axis hints in the model name.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence

import numpy as np

from ..skeleton.bone import Skeleton
from ..utils.quaternion import decompose_matrix, quat_from_axis_angle, rotate_vector

logger = logging.getLogger(__name__)

CANONICAL_UP_AXIS = 'Y'
CANONICAL_HANDEDNESS = 'right'

# Assumed height of a humanoid character, meters
HUMANOID_HEIGHT = 1.7

_AXES = ('X', 'Y', 'Z')


@dataclass
class CoordinateDetection:
    up_axis: str = 'Y'
    forward_axis: str = 'Z'
    handedness: str = 'right'
    estimated_scale: float = 1.0
    confidence: Dict[str, int] = field(default_factory=lambda: {'up_axis': 0, 'forward_axis': 0, 'scale': 0})

    @property
    def is_canonical(self) -> bool:
        return self.up_axis == CANONICAL_UP_AXIS and self.handedness == CANONICAL_HANDEDNESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            'upAxis': self.up_axis,
            'forwardAxis': self.forward_axis,
            'handedness': self.handedness,
            'estimatedScale': self.estimated_scale,
            'confidence': dict(self.confidence),
        }


class CoordinateSystemDetector:
    """
    Detects up-axis, forward-axis, handedness and unit scale of a model and
    produces the rotation that brings it into the canonical frame.
    """

    def detect(self, size: Optional[Sequence[float]] = None, skeleton: Optional[Skeleton] = None,
               name: str = "", up_axis_hint: Optional[str] = None) -> CoordinateDetection:
        """
        Detect the coordinate frame of a model.

        Args:
            size: World-space bounding box size (x, y, z), if known
            skeleton: Model skeleton; its root_transform is applied to bone directions
            name: Model or root node name, searched for y_up / z_up hints
            up_axis_hint: Up axis declared by the file metadata ('X', 'Y' or 'Z')

        Returns:
            CoordinateDetection
        """
        detection = CoordinateDetection()
        size_arr = np.abs(np.asarray(size, dtype=float)) if size is not None else None

        detection.up_axis = self._detect_up_axis(size_arr, skeleton, name, up_axis_hint, detection)
        detection.forward_axis = self._detect_forward_axis(detection.up_axis, name, detection)
        detection.estimated_scale = self._detect_scale(size_arr, detection)
        detection.handedness = self._detect_handedness(skeleton)

        if detection.handedness != CANONICAL_HANDEDNESS:
            logger.warning("Model has a mirrored root transform; a rotation cannot undo handedness")

        logger.info(f"Detected coordinate system: up={detection.up_axis} forward={detection.forward_axis} "
                    f"handedness={detection.handedness} scale={detection.estimated_scale:.3f}")
        return detection

    def detect_model(self, model) -> CoordinateDetection:
        """Detect from any object exposing bounds, skeleton, name and up_axis."""
        size = None
        bounds = getattr(model, 'bounds', None)
        if bounds is not None:
            size = np.asarray(bounds[1], dtype=float) - np.asarray(bounds[0], dtype=float)
        return self.detect(
            size=size,
            skeleton=getattr(model, 'skeleton', None),
            name=getattr(model, 'name', '') or '',
            up_axis_hint=getattr(model, 'up_axis', None),
        )

    def _detect_up_axis(self, size, skeleton, name, up_axis_hint, detection) -> str:
        up_axis = 'Y'
        confidence = 50

        # The tallest dimension is usually up for characters
        if size is not None and np.max(size) > 0:
            up_axis = _AXES[int(np.argmax([size[1], size[2], size[0]]) + 1) % 3]
            confidence = {'Y': 85, 'Z': 75, 'X': 60}[up_axis]

        if skeleton is not None:
            bone_axis = self.analyze_bone_orientation(skeleton)
            if bone_axis:
                up_axis = bone_axis
                confidence = min(95, confidence + 20)

        lowered = (name or '').lower()
        if 'y_up' in lowered or 'yup' in lowered:
            up_axis, confidence = 'Y', 95
        elif 'z_up' in lowered or 'zup' in lowered:
            up_axis, confidence = 'Z', 95

        if up_axis_hint and up_axis_hint.upper() in _AXES:
            up_axis, confidence = up_axis_hint.upper(), 95

        detection.confidence['up_axis'] = confidence
        return up_axis

    def _detect_forward_axis(self, up_axis, name, detection) -> str:
        forward_axis, confidence = {'Y': ('Z', 70), 'Z': ('Y', 70), 'X': ('Z', 60)}[up_axis]

        lowered = (name or '').lower()
        if 'z_forward' in lowered or 'zforward' in lowered:
            forward_axis, confidence = 'Z', 95
        elif 'y_forward' in lowered or 'yforward' in lowered:
            forward_axis, confidence = 'Y', 95

        detection.confidence['forward_axis'] = confidence
        return forward_axis

    def _detect_scale(self, size, detection) -> float:
        """Estimate meters per model unit."""
        if size is None or np.max(size) <= 0:
            detection.confidence['scale'] = 0
            return 1.0

        max_dim = float(np.max(size))
        aspect = size[1] / max(size[0], size[2], 1e-9)

        if 2.0 < aspect < 6.0:
            # tall and narrow, assume a standing character
            scale, confidence = HUMANOID_HEIGHT / size[1], 70
        elif max_dim < 0.1:
            scale, confidence = 100.0, 60
        elif max_dim > 100:
            scale, confidence = 0.01, 60
        elif max_dim > 10:
            scale, confidence = 0.01, 50
        else:
            scale, confidence = 1.0, 40

        detection.confidence['scale'] = confidence
        return float(scale)

    def _detect_handedness(self, skeleton: Optional[Skeleton]) -> str:
        if skeleton is not None and np.linalg.det(skeleton.root_transform[:3, :3]) < 0:
            return 'left'
        return 'right'

    def analyze_bone_orientation(self, skeleton: Skeleton) -> Optional[str]:
        """
        Up axis suggested by the direction from the first root bone to its first child.
        """
        if skeleton is None or len(skeleton) == 0:
            return None
        roots = skeleton.root_indices()
        if not roots:
            return None
        root = roots[0]
        child = skeleton.first_child(root)
        if child < 0:
            return None

        direction = skeleton.world_position(child) - skeleton.world_position(root)
        _, root_rotation, _ = decompose_matrix(skeleton.root_transform)
        direction = rotate_vector(root_rotation, direction)
        magnitude = np.abs(direction)
        if np.max(magnitude) < 1e-9:
            return None

        order = np.argsort(magnitude)
        if magnitude[order[2]] - magnitude[order[1]] < 1e-9:
            return None
        return _AXES[int(order[2])]

    @staticmethod
    def canonical_rotation(up_axis: str) -> np.ndarray:
        """
        World rotation taking the given up axis onto +Y.

        Z-up turns -90 degrees about X; X-up turns +90 degrees about Z.
        """
        up_axis = (up_axis or 'Y').upper()
        if up_axis == 'Z':
            return quat_from_axis_angle([1.0, 0.0, 0.0], -np.pi / 2)
        if up_axis == 'X':
            return quat_from_axis_angle([0.0, 0.0, 1.0], np.pi / 2)
        return np.array([0.0, 0.0, 0.0, 1.0])

    def correction_for(self, detection: CoordinateDetection) -> np.ndarray:
        return self.canonical_rotation(detection.up_axis)
