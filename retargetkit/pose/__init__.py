"""
Bind pose normalization and coordinate system detection.
"""

from .coordinates import CoordinateDetection, CoordinateSystemDetector
from .normalization import (
    PoseNormalization,
    PoseResult,
    PoseType,
    PoseValidation,
    poses_compatible,
)

__all__ = [
    'CoordinateDetection', 'CoordinateSystemDetector',
    'PoseNormalization', 'PoseResult', 'PoseType', 'PoseValidation', 'poses_compatible',
]
