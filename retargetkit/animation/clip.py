"""
Keyframe tracks and animation clips.

A track targets one property of one node through its name,
``<node>.<property>`` (for example ``Hips.rotation``). Times are seconds
and values are packed: a quaternion track with N keys holds 4 * N values
in (x, y, z, w) order.

Clips and tracks are treated as immutable. Operations that change them
(trim, rename, retarget) build new objects.
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from ..common import EPSILON, TRIM_THRESHOLD
from ..exceptions import AnimationError
from ..utils.quaternion import quat_slerp

logger = logging.getLogger(__name__)

# Alternative property names accepted on input
PROPERTY_ALIASES = {
    'quaternion': 'rotation',
    'translation': 'position',
    'weights': 'morphTargetInfluences',
}


class TrackKind(Enum):
    QUATERNION = "quaternion"
    VECTOR = "vector"
    NUMBER = "number"
    COLOR = "color"
    BOOLEAN = "boolean"
    STRING = "string"


class Interpolation(Enum):
    LINEAR = "LINEAR"
    STEP = "STEP"
    CUBICSPLINE = "CUBICSPLINE"


def split_track_name(name: str) -> Tuple[str, str]:
    """
    Split a track name into node name and property.

    The split happens at the last dot, so node names may contain dots.
    Property aliases are resolved (``quaternion`` -> ``rotation``).
    """
    if '.' not in name:
        return name, ''
    node, prop = name.rsplit('.', 1)
    base = prop.split('[', 1)[0]
    if base in PROPERTY_ALIASES:
        prop = PROPERTY_ALIASES[base] + prop[len(base):]
    return node, prop


def join_track_name(node: str, prop: str) -> str:
    return f"{node}.{prop}" if prop else node


@dataclass(eq=False)
class KeyframeTrack:
    """
    Base class for keyframe tracks.

    Subclasses fix ``kind`` and ``item_size`` (values per key; None means
    any fixed multiple, as for morph target weights).
    """
    name: str
    times: np.ndarray
    values: np.ndarray
    interpolation: Interpolation = Interpolation.LINEAR

    kind = None
    item_size: ClassVar[Optional[int]] = None
    value_dtype = float

    def __post_init__(self):
        self.times = np.asarray(self.times, dtype=float).reshape(-1)
        self.values = np.asarray(self.values, dtype=self.value_dtype).reshape(-1)
        if not isinstance(self.interpolation, Interpolation):
            self.interpolation = Interpolation(str(self.interpolation).upper())

    @property
    def node_name(self) -> str:
        return split_track_name(self.name)[0]

    @property
    def property_name(self) -> str:
        return split_track_name(self.name)[1]

    @property
    def key_count(self) -> int:
        return len(self.times)

    @property
    def value_size(self) -> int:
        if self.item_size is not None:
            return self.item_size
        if len(self.times) == 0:
            return 1
        return max(1, len(self.values) // len(self.times))

    @property
    def start_time(self) -> Optional[float]:
        return float(self.times[0]) if len(self.times) else None

    @property
    def end_time(self) -> Optional[float]:
        return float(self.times[-1]) if len(self.times) else None

    def is_aligned(self) -> bool:
        """Whether values hold exactly one item per time."""
        n = len(self.times)
        if n == 0:
            return len(self.values) == 0
        if self.item_size is not None:
            return len(self.values) == n * self.item_size
        return len(self.values) > 0 and len(self.values) % n == 0

    def keyframes(self) -> np.ndarray:
        """Values reshaped to (keys, value_size)."""
        if not self.is_aligned():
            raise AnimationError(
                f"Track '{self.name}' has {len(self.values)} values for {len(self.times)} times"
            )
        return self.values.reshape(len(self.times), self.value_size)

    def copy(self) -> 'KeyframeTrack':
        return replace(self, times=self.times.copy(), values=self.values.copy())

    def renamed(self, name: str) -> 'KeyframeTrack':
        return replace(self, name=name, times=self.times.copy(), values=self.values.copy())

    def shifted(self, offset: float) -> 'KeyframeTrack':
        """Copy with every time moved by -offset."""
        return replace(self, times=self.times - offset, values=self.values.copy())

    def sample(self, time: float) -> np.ndarray:
        """
        Value at time, clamped to the first and last key.

        Linear tracks interpolate componentwise; step tracks hold the
        previous key.
        """
        frames = self.keyframes()
        if len(frames) == 0:
            raise AnimationError(f"Track '{self.name}' has no keyframes")
        if time <= self.times[0] or len(frames) == 1:
            return frames[0].copy()
        if time >= self.times[-1]:
            return frames[-1].copy()

        upper = int(np.searchsorted(self.times, time, side='right'))
        lower = upper - 1
        if self.interpolation == Interpolation.STEP:
            return frames[lower].copy()

        span = self.times[upper] - self.times[lower]
        alpha = 0.0 if span < EPSILON else (time - self.times[lower]) / span
        return self._interpolate(frames[lower], frames[upper], alpha)

    def _interpolate(self, a: np.ndarray, b: np.ndarray, alpha: float) -> np.ndarray:
        return a + (b - a) * alpha

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.kind.value,
            'name': self.name,
            'times': self.times.tolist(),
            'values': self.values.tolist(),
            'interpolation': self.interpolation.value,
        }


@dataclass(eq=False)
class QuaternionTrack(KeyframeTrack):
    kind = TrackKind.QUATERNION
    item_size = 4

    def _interpolate(self, a, b, alpha):
        return quat_slerp(a, b, alpha)


@dataclass(eq=False)
class VectorTrack(KeyframeTrack):
    kind = TrackKind.VECTOR
    item_size = 3


@dataclass(eq=False)
class NumberTrack(KeyframeTrack):
    kind = TrackKind.NUMBER
    item_size = None


@dataclass(eq=False)
class ColorTrack(KeyframeTrack):
    kind = TrackKind.COLOR
    item_size = 3


@dataclass(eq=False)
class BooleanTrack(KeyframeTrack):
    kind = TrackKind.BOOLEAN
    item_size = 1
    value_dtype = bool

    def _interpolate(self, a, b, alpha):
        return a.copy()


@dataclass(eq=False)
class StringTrack(KeyframeTrack):
    kind = TrackKind.STRING
    item_size = 1
    value_dtype = object

    def _interpolate(self, a, b, alpha):
        return a.copy()

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['values'] = [str(v) for v in self.values]
        return data


TRACK_TYPES = {
    TrackKind.QUATERNION: QuaternionTrack,
    TrackKind.VECTOR: VectorTrack,
    TrackKind.NUMBER: NumberTrack,
    TrackKind.COLOR: ColorTrack,
    TrackKind.BOOLEAN: BooleanTrack,
    TrackKind.STRING: StringTrack,
}

# Type tags written by older project files
_LEGACY_TAGS = {
    'QuaternionKeyframeTrack': TrackKind.QUATERNION,
    'VectorKeyframeTrack': TrackKind.VECTOR,
    'NumberKeyframeTrack': TrackKind.NUMBER,
    'ColorKeyframeTrack': TrackKind.COLOR,
    'BooleanKeyframeTrack': TrackKind.BOOLEAN,
    'StringKeyframeTrack': TrackKind.STRING,
    'KeyframeTrack': TrackKind.NUMBER,
}


def track_kind_from_tag(tag: str) -> TrackKind:
    """Resolve a serialized type tag to a TrackKind."""
    if tag in _LEGACY_TAGS:
        return _LEGACY_TAGS[tag]
    try:
        return TrackKind(str(tag).lower())
    except ValueError:
        raise AnimationError(f"Unknown track type: {tag}")


def make_track(kind: TrackKind, name: str, times, values,
               interpolation: Interpolation = Interpolation.LINEAR) -> KeyframeTrack:
    return TRACK_TYPES[kind](name, times, values, interpolation)


def track_from_dict(data: Mapping[str, Any]) -> KeyframeTrack:
    kind = track_kind_from_tag(data.get('type', 'number'))
    interpolation = data.get('interpolation') or Interpolation.LINEAR.value
    if isinstance(interpolation, int):
        # numeric interpolation constants: 2300 discrete, 2301 linear, 2302 smooth
        interpolation = Interpolation.STEP.value if interpolation == 2300 else Interpolation.LINEAR.value
    return make_track(kind, data['name'], data.get('times', []), data.get('values', []), interpolation)


@dataclass(frozen=True, eq=False)
class AnimationClip:
    """
    A named, ordered set of keyframe tracks.

    When duration is None (or negative) it is set to the latest key time.
    """
    name: str
    duration: Optional[float] = None
    tracks: Tuple[KeyframeTrack, ...] = field(default_factory=tuple)

    def __post_init__(self):
        object.__setattr__(self, 'tracks', tuple(self.tracks))
        if self.duration is None or self.duration < 0:
            object.__setattr__(self, 'duration', self.max_time)
        else:
            object.__setattr__(self, 'duration', float(self.duration))

    @property
    def max_time(self) -> float:
        ends = [t.end_time for t in self.tracks if t.key_count]
        return float(max(ends)) if ends else 0.0

    @property
    def min_time(self) -> Optional[float]:
        starts = [t.start_time for t in self.tracks if t.key_count]
        return float(min(starts)) if starts else None

    @property
    def track_names(self) -> List[str]:
        return [t.name for t in self.tracks]

    def find_track(self, name: str) -> Optional[KeyframeTrack]:
        for track in self.tracks:
            if track.name == name:
                return track
        return None

    def renamed(self, name: str) -> 'AnimationClip':
        return AnimationClip(name, self.duration, tuple(t.copy() for t in self.tracks))

    def clone(self) -> 'AnimationClip':
        return self.renamed(self.name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'duration': self.duration,
            'tracks': [t.to_dict() for t in self.tracks],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'AnimationClip':
        if 'name' not in data:
            raise AnimationError("Serialized clip has no name")
        tracks = tuple(track_from_dict(t) for t in data.get('tracks', []))
        duration = data.get('duration')
        return cls(data['name'], None if duration is None else float(duration), tracks)


def trim_clip(clip: AnimationClip, threshold: float = TRIM_THRESHOLD) -> AnimationClip:
    """
    Remove leading silence from a clip.

    Every track's times are shifted by the earliest key time across the
    clip and the duration is reduced by the same amount. Clips that
    already start within threshold seconds of zero, or have no keys, are
    returned as the same object.
    """
    earliest = clip.min_time
    if earliest is None or earliest < threshold:
        return clip

    logger.debug(f"Trimming {earliest:.3f}s from start of '{clip.name}'")
    tracks = tuple(t.shifted(earliest) if t.key_count else t.copy() for t in clip.tracks)
    return AnimationClip(clip.name, max(0.0, clip.duration - earliest), tracks)


def is_valid_clip(clip: Any) -> bool:
    """A clip is valid with at least one track and every track aligned."""
    if not isinstance(clip, AnimationClip) or not clip.tracks:
        return False
    return all(t.is_aligned() for t in clip.tracks)


def clip_stats(clip: AnimationClip) -> Dict[str, Any]:
    earliest = clip.min_time
    kinds = list(dict.fromkeys(t.kind.value for t in clip.tracks))
    return {
        'name': clip.name,
        'duration': clip.duration,
        'trackCount': len(clip.tracks),
        'trackTypes': kinds,
        'earliestKeyframe': 0.0 if earliest is None else earliest,
        'latestKeyframe': clip.max_time,
        'hasPositionTracks': any(t.property_name == 'position' for t in clip.tracks),
    }


def serialize_clips(clips: Sequence[AnimationClip]) -> List[Dict[str, Any]]:
    return [c.to_dict() for c in clips]


def deserialize_clips(data: Sequence[Mapping[str, Any]]) -> List[AnimationClip]:
    """Rebuild clips; entries that cannot be parsed are skipped with a warning."""
    clips = []
    for item in data or []:
        try:
            clips.append(AnimationClip.from_dict(item))
        except (AnimationError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping unreadable clip: {e}")
    return clips
