"""
Skeleton model, bone naming and skeleton analysis.
"""

from .bone import Bone, BindPoseMode, EmbeddedWorld, Skeleton, Transform
from .analyzer import (
    BoneTreeNode,
    CompatibilityReport,
    HierarchyStats,
    RigFamily,
    SkeletonAnalyzer,
)
from .naming import canonical_key, normalize_bone_name

__all__ = [
    'Bone', 'BindPoseMode', 'EmbeddedWorld', 'Skeleton', 'Transform',
    'BoneTreeNode', 'CompatibilityReport', 'HierarchyStats', 'RigFamily',
    'SkeletonAnalyzer', 'canonical_key', 'normalize_bone_name',
]
