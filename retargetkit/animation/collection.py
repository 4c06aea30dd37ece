"""
Ordered collection of animation clips.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from ..common import UNNAMED_CLIP
from .clip import AnimationClip, clip_stats, trim_clip

logger = logging.getLogger(__name__)


class AnimationCollection:
    """
    Holds the clips available for playback and retargeting.

    Clips are trimmed of leading silence as they are added. Invalid
    indices are answered with None / False rather than raised.
    """

    def __init__(self, clips: Optional[Sequence[AnimationClip]] = None):
        self._clips: List[AnimationClip] = []
        if clips:
            self.load(clips)

    def __len__(self) -> int:
        return len(self._clips)

    def __iter__(self):
        return iter(self._clips)

    def _valid_index(self, index: int) -> bool:
        return 0 <= index < len(self._clips)

    def load(self, clips: Sequence[AnimationClip]) -> List[AnimationClip]:
        """Replace the collection with the given clips."""
        self._clips = [trim_clip(c) for c in clips]
        logger.info(f"Loaded {len(self._clips)} animations: {self.names()}")
        return list(self._clips)

    def add(self, clips: Sequence[AnimationClip]) -> int:
        """
        Append clips.

        Returns:
            Number of clips after adding
        """
        if not clips:
            return len(self._clips)
        self._clips.extend(trim_clip(c) for c in clips)
        return len(self._clips)

    def remove(self, index: int) -> Optional[AnimationClip]:
        if not self._valid_index(index):
            return None
        return self._clips.pop(index)

    def rename(self, index: int, new_name: str) -> bool:
        """Rename a clip; empty or whitespace-only names are rejected."""
        if not self._valid_index(index):
            return False
        if not new_name or not new_name.strip():
            return False
        self._clips[index] = self._clips[index].renamed(new_name.strip())
        return True

    def duplicate(self, index: int, new_name: Optional[str] = None) -> Optional[AnimationClip]:
        """Append a deep copy of a clip, named new_name or '<name>_copy'."""
        clip = self.get(index)
        if clip is None:
            return None
        duplicate = clip.renamed(new_name or f"{clip.name}_copy")
        self._clips.append(duplicate)
        return duplicate

    def get(self, index: int) -> Optional[AnimationClip]:
        if not self._valid_index(index):
            return None
        return self._clips[index]

    def clips(self) -> List[AnimationClip]:
        return list(self._clips)

    def count(self) -> int:
        return len(self._clips)

    def has_animations(self) -> bool:
        return bool(self._clips)

    def clear(self):
        self._clips = []

    def find_by_name(self, name: str) -> int:
        """Index of the first clip called name (case sensitive), or -1."""
        for i, clip in enumerate(self._clips):
            if clip.name == name:
                return i
        return -1

    def names(self) -> List[str]:
        return [c.name or UNNAMED_CLIP for c in self._clips]

    def stats(self, index: int) -> Optional[Dict[str, Any]]:
        clip = self.get(index)
        if clip is None:
            return None
        return clip_stats(clip)
