"""
Clip playback on a time-based mixer.

Playback is a pure step function: ``advance(state, dt)`` returns the next
MixerState. ClipAction and AnimationMixer wrap that function with the
play / pause / stop / reset / set_loop interface the controller drives,
and PlaybackController keeps the single active clip. The host's frame
loop calls ``AnimationMixer.update(dt)``; playback stops when it stops
calling.
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, List, Optional

import numpy as np

from ..exceptions import InvalidInputError
from ..skeleton.bone import Skeleton
from ..utils.quaternion import normalize_quat
from .clip import AnimationClip
from .collection import AnimationCollection

logger = logging.getLogger(__name__)


class LoopMode(Enum):
    ONCE = "once"
    REPEAT = "repeat"


class PlaybackStatus(Enum):
    NONE = "none"
    PLAYING = "playing"
    PAUSED = "paused"
    STOPPED = "stopped"


@dataclass(frozen=True)
class MixerState:
    time: float = 0.0
    duration: float = 0.0
    running: bool = False
    paused: bool = False
    loop: LoopMode = LoopMode.ONCE
    time_scale: float = 1.0


def advance(state: MixerState, dt: float) -> MixerState:
    """
    Advance playback by dt seconds.

    REPEAT wraps time into [0, duration). ONCE clamps at the duration and
    stops running there. Paused or stopped states are returned unchanged.
    """
    if not state.running or state.paused:
        return state

    time = state.time + dt * state.time_scale
    if state.duration <= 0:
        return replace(state, time=0.0, running=state.loop == LoopMode.REPEAT)

    if state.loop == LoopMode.REPEAT:
        return replace(state, time=float(time % state.duration))
    if time >= state.duration:
        return replace(state, time=state.duration, running=False)
    return replace(state, time=max(0.0, time))


class ClipAction:
    """Playback handle for one clip on a mixer."""

    def __init__(self, clip: AnimationClip, loop: LoopMode = LoopMode.ONCE):
        self.clip = clip
        self.state = MixerState(duration=clip.duration, loop=loop)

    @property
    def time(self) -> float:
        return self.state.time

    @time.setter
    def time(self, value: float):
        self.state = replace(self.state, time=float(value))

    @property
    def paused(self) -> bool:
        return self.state.paused

    @paused.setter
    def paused(self, value: bool):
        self.state = replace(self.state, paused=bool(value))

    @property
    def loop(self) -> LoopMode:
        return self.state.loop

    def get_clip(self) -> AnimationClip:
        return self.clip

    def play(self) -> 'ClipAction':
        self.state = replace(self.state, running=True)
        return self

    def pause(self) -> 'ClipAction':
        self.paused = True
        return self

    def stop(self) -> 'ClipAction':
        self.state = replace(self.state, running=False, paused=False, time=0.0)
        return self

    def reset(self) -> 'ClipAction':
        self.state = replace(self.state, paused=False, time=0.0)
        return self

    def set_loop(self, mode: LoopMode) -> 'ClipAction':
        self.state = replace(self.state, loop=mode)
        return self

    def is_running(self) -> bool:
        return self.state.running and not self.state.paused

    def update(self, dt: float):
        self.state = advance(self.state, dt)


class AnimationMixer:
    """
    Owns clip actions and advances them.

    When given a skeleton, every update poses it from the running actions.
    """

    def __init__(self, root: Optional[Skeleton] = None):
        self.root = root
        self._actions: Dict[int, ClipAction] = {}

    def clip_action(self, clip: AnimationClip) -> ClipAction:
        """The action for clip, created on first request."""
        key = id(clip)
        if key not in self._actions:
            self._actions[key] = ClipAction(clip)
        return self._actions[key]

    @property
    def actions(self) -> List[ClipAction]:
        return list(self._actions.values())

    def stop_all_actions(self):
        for action in self._actions.values():
            action.stop()

    def uncache_clip(self, clip: AnimationClip):
        self._actions.pop(id(clip), None)

    def update(self, dt: float):
        for action in self._actions.values():
            action.update(dt)
        if self.root is not None:
            for action in self._actions.values():
                if action.state.running:
                    pose_skeleton(self.root, action.clip, action.time)


def pose_skeleton(skeleton: Skeleton, clip: AnimationClip, time: float) -> int:
    """
    Set bone transforms from the clip sampled at time.

    Only rotation, position and scale tracks on bones of the skeleton are
    applied.

    Returns:
        Number of tracks applied
    """
    applied = 0
    for track in clip.tracks:
        index = skeleton.index_of(track.node_name)
        if index < 0 or not track.key_count:
            continue
        prop = track.property_name
        bone = skeleton[index]
        if prop == 'rotation':
            bone.rotation = normalize_quat(track.sample(time))
        elif prop == 'position':
            bone.position = np.asarray(track.sample(time), dtype=float)
        elif prop == 'scale':
            bone.scale = np.asarray(track.sample(time), dtype=float)
        else:
            continue
        applied += 1
    skeleton.update_world_matrices()
    return applied


class PlaybackController:
    """
    Single active clip playback state.

    NONE -> PLAYING <-> PAUSED -> STOPPED; reset() always returns to NONE
    and keeps the loop preference.
    """

    def __init__(self, loop_enabled: bool = False):
        self.current_index = -1
        self.is_playing = False
        self.loop_enabled = loop_enabled
        self.current_action: Optional[ClipAction] = None

    @property
    def status(self) -> PlaybackStatus:
        if self.current_action is None:
            return PlaybackStatus.NONE
        if self.is_playing:
            return PlaybackStatus.PLAYING
        if self.current_action.paused:
            return PlaybackStatus.PAUSED
        return PlaybackStatus.STOPPED

    @property
    def loop_mode(self) -> LoopMode:
        return LoopMode.REPEAT if self.loop_enabled else LoopMode.ONCE

    def initialize_playback(self, index: int, action: ClipAction):
        if action is None:
            raise InvalidInputError("Playback requires a clip action")
        self.current_index = index
        self.current_action = action
        action.set_loop(self.loop_mode)
        action.reset().play()
        self.is_playing = True

    def pause(self):
        if self.current_action is not None:
            self.current_action.paused = True
            self.is_playing = False

    def resume(self):
        """Continue playback, restarting from zero if the action has finished."""
        if self.current_action is None:
            return
        if not self.current_action.is_running():
            if self.current_action.paused:
                self.current_action.paused = False
            if not self.current_action.is_running():
                self.current_action.reset().play()
        self.is_playing = True

    def stop(self):
        if self.current_action is not None:
            self.current_action.stop()
            self.is_playing = False

    def set_loop(self, enabled: bool):
        self.loop_enabled = bool(enabled)
        if self.current_action is not None:
            self.current_action.set_loop(self.loop_mode)

    def toggle_loop(self) -> bool:
        self.set_loop(not self.loop_enabled)
        return self.loop_enabled

    def get_current_time(self) -> float:
        return self.current_action.time if self.current_action is not None else 0.0

    def set_time(self, time: float):
        if self.current_action is not None:
            self.current_action.time = time

    def get_duration(self) -> float:
        if self.current_action is None:
            return 0.0
        return self.current_action.get_clip().duration

    def get_progress(self) -> float:
        duration = self.get_duration()
        if duration <= 0:
            return 0.0
        return self.get_current_time() / duration

    def scrub(self, progress: float):
        """Jump to progress (clamped to [0, 1]) of the clip's duration."""
        progress = max(0.0, min(1.0, float(progress)))
        self.set_time(progress * self.get_duration())

    def is_finished(self) -> bool:
        if self.current_action is None:
            return True
        return not self.current_action.is_running() and not self.current_action.paused

    def sync(self):
        """Drop the playing flag once a play-once action has run out."""
        if self.is_playing and self.current_action is not None and not self.current_action.is_running():
            self.is_playing = False

    def has_active_animation(self) -> bool:
        return self.current_action is not None

    def reset(self):
        self.current_index = -1
        self.current_action = None
        self.is_playing = False


class AnimationPlayer:
    """
    Plays clips from a collection on a mixer.

    The host calls update(dt) from its frame loop.
    """

    def __init__(self, collection: Optional[AnimationCollection] = None,
                 mixer: Optional[AnimationMixer] = None):
        self.collection = collection or AnimationCollection()
        self.mixer = mixer or AnimationMixer()
        self.playback = PlaybackController()

    def load(self, clips):
        self.mixer.stop_all_actions()
        self.collection.load(clips)
        self.playback.reset()

    def play(self, index: int) -> bool:
        clip = self.collection.get(index)
        if clip is None:
            return False
        self.mixer.stop_all_actions()
        logger.info(f"Playing animation '{clip.name}' ({clip.duration:.3f}s, {len(clip.tracks)} tracks)")
        self.playback.initialize_playback(index, self.mixer.clip_action(clip))
        return True

    def pause(self):
        self.playback.pause()

    def resume(self):
        self.playback.resume()

    def stop(self):
        self.playback.stop()

    def toggle_play_pause(self):
        if self.playback.is_playing:
            self.pause()
        elif self.playback.has_active_animation():
            self.resume()
        elif self.collection.has_animations():
            self.play(0)

    def set_loop(self, enabled: bool):
        self.playback.set_loop(enabled)
        # turning looping on restarts a finished clip
        if enabled and not self.playback.is_playing and self.playback.has_active_animation():
            self.playback.resume()

    def toggle_loop(self):
        self.set_loop(not self.playback.loop_enabled)

    def change_animation(self, direction: int):
        count = self.collection.count()
        if count == 0:
            return
        index = self.playback.current_index + direction
        if index < 0:
            index = count - 1
        elif index >= count:
            index = 0
        self.play(index)

    def update(self, dt: float):
        self.mixer.update(dt)
        self.playback.sync()
