"""
Skeleton analysis: roots, duplicates, hierarchy statistics, rig family
and bone compatibility between two rigs.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from ..common import COMPATIBILITY_THRESHOLD
from .naming import canonical_key, mirror_tokens, normalize_bone_name, split_tokens
from .bone import Skeleton

logger = logging.getLogger(__name__)

# Normalized names that identify the functional root, highest priority first
FUNCTIONAL_ROOT_NAMES = ('hips', 'hip', 'pelvis', 'root', 'armature')

LIMB_PATTERNS = ('arm', 'leg', 'hand', 'foot')


class RigFamily(Enum):
    MIXAMO = "mixamo"
    UE5 = "ue5"
    UE4 = "ue4"
    UNITY = "unity"
    HUMANOID = "humanoid"
    CUSTOM = "custom"


@dataclass
class HierarchyStats:
    bone_count: int
    root_bones: List[str]
    max_depth: int
    limb_count: int
    has_symmetry: bool
    functional_root: Optional[str] = None
    duplicates: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'boneCount': self.bone_count,
            'rootBones': list(self.root_bones),
            'maxDepth': self.max_depth,
            'limbCount': self.limb_count,
            'hasSymmetry': self.has_symmetry,
            'functionalRoot': self.functional_root,
            'duplicates': dict(self.duplicates),
        }


@dataclass
class CompatibilityReport:
    compatible: bool
    match_percentage: int
    matching_bones: List[str] = field(default_factory=list)
    missing_bones: List[str] = field(default_factory=list)
    extra_bones: List[str] = field(default_factory=list)
    level: str = "poor"
    message: str = ""


@dataclass
class BoneTreeNode:
    """One bone in a display tree, with its mapping state."""
    name: str
    depth: int
    mapped: bool
    children: List['BoneTreeNode'] = field(default_factory=list)


SkeletonLike = Union[Skeleton, Sequence[str]]


def _names_of(skeleton: SkeletonLike) -> List[str]:
    if isinstance(skeleton, Skeleton):
        return skeleton.bone_names
    return list(skeleton or [])


class SkeletonAnalyzer:
    """
    Stateless skeleton inspection helpers.

    Most methods accept either a Skeleton or a plain list of bone names;
    the ones that need the hierarchy require a Skeleton.
    """

    def detect_duplicate_bone_names(self, skeleton: SkeletonLike) -> Dict[str, int]:
        """
        Bone names that occur more than once.

        Returns:
            Mapping of duplicated name to its occurrence count
        """
        counts = Counter(_names_of(skeleton))
        return {name: count for name, count in counts.items() if count > 1}

    @staticmethod
    def format_duplicates(duplicates: Mapping[str, int]) -> List[str]:
        return [f"{name} (x{count})" for name, count in duplicates.items()]

    def find_root_bones(self, skeleton: Skeleton) -> List[str]:
        """Names of the bones without a parent bone."""
        return [skeleton[i].name for i in skeleton.root_indices()]

    def detect_functional_root(self, skeleton: SkeletonLike) -> Optional[str]:
        """
        Find the bone acting as the pelvis for motion purposes.

        Exact normalized matches against FUNCTIONAL_ROOT_NAMES win in
        priority order; then a bone whose canonical key is hips or root;
        then the first structural root.
        """
        names = _names_of(skeleton)
        if not names:
            return None

        normalized = [normalize_bone_name(n) for n in names]
        for candidate in FUNCTIONAL_ROOT_NAMES:
            for name, norm in zip(names, normalized):
                if norm == candidate:
                    return name

        for role in ('hips', 'root'):
            for name in names:
                if canonical_key(name) == role:
                    return name

        if isinstance(skeleton, Skeleton):
            roots = skeleton.root_indices()
            if roots:
                return skeleton[roots[0]].name
        return names[0]

    def compute_max_depth(self, skeleton: Skeleton) -> int:
        depths = [0] * len(skeleton)
        for i, bone in enumerate(skeleton):
            if bone.parent_index >= 0:
                depths[i] = depths[bone.parent_index] + 1
        return max(depths) if depths else 0

    def count_limbs(self, skeleton: SkeletonLike) -> int:
        return sum(
            1 for name in _names_of(skeleton)
            if any(p in normalize_bone_name(name) for p in LIMB_PATTERNS)
        )

    def has_symmetry(self, skeleton: SkeletonLike) -> bool:
        """True if some bone has a left/right counterpart."""
        token_sets = {tuple(split_tokens(n)) for n in _names_of(skeleton)}
        for tokens in token_sets:
            mirrored = tuple(mirror_tokens(list(tokens)))
            if mirrored != tokens and mirrored in token_sets:
                return True
        return False

    def analyze(self, skeleton: Skeleton) -> HierarchyStats:
        """Collect hierarchy statistics for a skeleton."""
        if skeleton is None or len(skeleton) == 0:
            return HierarchyStats(0, [], 0, 0, False)

        stats = HierarchyStats(
            bone_count=len(skeleton),
            root_bones=self.find_root_bones(skeleton),
            max_depth=self.compute_max_depth(skeleton),
            limb_count=self.count_limbs(skeleton),
            has_symmetry=self.has_symmetry(skeleton),
            functional_root=self.detect_functional_root(skeleton),
            duplicates=self.detect_duplicate_bone_names(skeleton),
        )
        logger.debug(f"Skeleton '{skeleton.name}': {stats.bone_count} bones, "
                     f"depth {stats.max_depth}, root {stats.functional_root}")
        return stats

    def classify_rig(self, skeleton: SkeletonLike) -> RigFamily:
        """
        Guess the naming convention a rig follows.

        Only used to inform the user; mapping never depends on it.
        """
        names = _names_of(skeleton)
        if not names:
            return RigFamily.CUSTOM

        if any('mixamorig' in n.lower() for n in names):
            return RigFamily.MIXAMO

        lowered = {n.lower() for n in names}
        # Unreal mannequins use lowercase snake_case with _l/_r suffixes
        if {'pelvis', 'spine_01', 'clavicle_l', 'clavicle_r'} <= lowered:
            # the UE5 mannequin adds spine_04/05 and a second neck bone
            if lowered & {'spine_04', 'spine_05', 'neck_02'}:
                return RigFamily.UE5
            return RigFamily.UE4

        normalized = {normalize_bone_name(n) for n in names}
        if {'hips', 'spine', 'chest', 'leftupperarm'} <= normalized:
            return RigFamily.UNITY

        joined = ' '.join(normalized)
        has_hips = 'hips' in joined or 'pelvis' in joined
        has_spine = 'spine' in joined
        has_head = 'head' in joined or 'neck' in joined
        has_arms = 'arm' in joined or 'shoulder' in joined
        has_legs = 'leg' in joined or 'thigh' in joined
        if has_hips and has_spine and has_head and has_arms and has_legs:
            return RigFamily.HUMANOID

        return RigFamily.CUSTOM

    def verify_bone_compatibility(self, source: SkeletonLike, target: SkeletonLike) -> CompatibilityReport:
        """
        Compare bone names of two rigs.

        The match percentage is the share of source bones found by exact
        name in the target, rounded to an integer.
        """
        source_names = list(dict.fromkeys(_names_of(source)))
        target_names = list(dict.fromkeys(_names_of(target)))

        if not source_names or not target_names:
            return CompatibilityReport(
                compatible=False, match_percentage=0,
                message="One or both models have no bones",
            )

        target_set = set(target_names)
        source_set = set(source_names)
        matching = [n for n in source_names if n in target_set]
        missing = [n for n in source_names if n not in target_set]
        extra = [n for n in target_names if n not in source_set]

        percentage = int(round(100.0 * len(matching) / len(source_names)))
        if percentage == 100:
            level = "perfect"
        elif percentage >= COMPATIBILITY_THRESHOLD:
            level = "good"
        elif percentage >= 60:
            level = "fair"
        else:
            level = "poor"

        compatible = percentage >= COMPATIBILITY_THRESHOLD
        if compatible:
            message = f"Bone structures are compatible ({percentage}% match)"
        else:
            message = (f"Bone structures differ: {percentage}% match, "
                       f"{len(missing)} source bones missing in target")

        return CompatibilityReport(
            compatible=compatible,
            match_percentage=percentage,
            matching_bones=matching,
            missing_bones=missing,
            extra_bones=extra,
            level=level,
            message=message,
        )

    def build_bone_tree(self, skeleton: Skeleton, bone_map: Optional[Mapping[str, str]] = None,
                        is_source: bool = True) -> List[BoneTreeNode]:
        """
        Nested bone tree for display, flagging bones that take part in a mapping.
        """
        bone_map = bone_map or {}
        mapped_names: Iterable[str] = bone_map.keys() if is_source else bone_map.values()
        mapped = set(mapped_names)

        nodes: List[BoneTreeNode] = []
        for i, bone in enumerate(skeleton):
            nodes.append(BoneTreeNode(bone.name, skeleton.depth_of(i), bone.name in mapped))

        roots = []
        for i, bone in enumerate(skeleton):
            if bone.parent_index < 0:
                roots.append(nodes[i])
            else:
                nodes[bone.parent_index].children.append(nodes[i])
        return roots
