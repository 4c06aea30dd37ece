"""
Animation clips, clip collections, playback and timeline arithmetic.
"""

from .clip import (
    AnimationClip,
    BooleanTrack,
    ColorTrack,
    Interpolation,
    KeyframeTrack,
    NumberTrack,
    QuaternionTrack,
    StringTrack,
    TrackKind,
    VectorTrack,
    clip_stats,
    deserialize_clips,
    is_valid_clip,
    make_track,
    serialize_clips,
    split_track_name,
    trim_clip,
)
from .collection import AnimationCollection
from .playback import (
    AnimationMixer,
    AnimationPlayer,
    ClipAction,
    LoopMode,
    MixerState,
    PlaybackController,
    PlaybackStatus,
    advance,
    pose_skeleton,
)

__all__ = [
    'AnimationClip', 'BooleanTrack', 'ColorTrack', 'Interpolation', 'KeyframeTrack',
    'NumberTrack', 'QuaternionTrack', 'StringTrack', 'TrackKind', 'VectorTrack',
    'clip_stats', 'deserialize_clips', 'is_valid_clip', 'make_track', 'serialize_clips',
    'split_track_name', 'trim_clip', 'AnimationCollection', 'AnimationMixer',
    'AnimationPlayer', 'ClipAction', 'LoopMode', 'MixerState', 'PlaybackController',
    'PlaybackStatus', 'advance', 'pose_skeleton',
]
