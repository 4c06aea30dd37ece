"""
Parsed model: what the loaders hand to the rest of the library.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from ..animation.clip import AnimationClip
from ..skeleton.bone import Skeleton


@dataclass
class ParsedModel:
    """
    A loaded character: skeleton, clips and scene placement.

    bounds is (min, max) in world space, if the file had geometry.
    up_axis is the axis declared by the file ('Y' for glTF), or None.
    """
    name: str
    skeleton: Optional[Skeleton] = None
    clips: List[AnimationClip] = field(default_factory=list)
    world_transform: np.ndarray = field(default_factory=lambda: np.eye(4))
    up_axis: Optional[str] = None
    bounds: Optional[Tuple[np.ndarray, np.ndarray]] = None
    root_name: Optional[str] = None
    source_path: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def bone_names(self) -> List[str]:
        return self.skeleton.bone_names if self.skeleton is not None else []

    @property
    def has_skeleton(self) -> bool:
        return self.skeleton is not None and len(self.skeleton) > 0

    def bone_names_from_tracks(self) -> List[str]:
        """Node names animated by the clips, in first-seen order."""
        names: Dict[str, None] = {}
        for clip in self.clips:
            for track in clip.tracks:
                names.setdefault(track.node_name, None)
        return list(names)

    @property
    def size(self) -> Optional[np.ndarray]:
        if self.bounds is None:
            return None
        return np.asarray(self.bounds[1], dtype=float) - np.asarray(self.bounds[0], dtype=float)
