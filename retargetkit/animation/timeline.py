"""
Timeline arithmetic: time codes, frames and scrub positions.

Time codes are ``MM:SS:FF`` where FF counts frames within the second.
"""

import math

from ..common import DEFAULT_FPS


def format_time(seconds: float, fps: int = DEFAULT_FPS) -> str:
    """Format seconds as MM:SS:FF."""
    seconds = max(0.0, float(seconds))
    minutes = int(seconds // 60)
    secs = int(seconds % 60)
    frames = int((seconds % 1) * fps)
    return f"{minutes:02d}:{secs:02d}:{frames:02d}"


def parse_time_string(time_string: str, fps: int = DEFAULT_FPS) -> float:
    """Parse MM:SS:FF into seconds; malformed input gives 0."""
    parts = (time_string or '').split(':')
    if len(parts) != 3:
        return 0.0
    try:
        minutes, secs, frames = (int(p) for p in parts)
    except ValueError:
        return 0.0
    return minutes * 60 + secs + (frames / fps if fps else 0.0)


def timeline_position(current_time: float, duration: float) -> float:
    """Progress in [0, 1] for current_time within duration."""
    if duration <= 0:
        return 0.0
    return max(0.0, min(1.0, current_time / duration))


def time_from_position(position: float, duration: float) -> float:
    return max(0.0, min(duration, position * duration))


def scrub_time(current_time: float, delta: float, duration: float) -> float:
    """Move current_time by delta, clamped to [0, duration]."""
    return max(0.0, min(duration, current_time + delta))


def fps_from_frames(duration: float, frame_count: int) -> float:
    if duration <= 0:
        return 0.0
    return frame_count / duration


def frame_count(duration: float, fps: float) -> int:
    """Number of frames covering duration, rounded up."""
    return int(math.ceil(round(duration * fps, 9)))


def frame_time(frame_index: int, fps: float) -> float:
    if fps <= 0:
        return 0.0
    return frame_index / fps


def frame_index(time: float, fps: float) -> int:
    return int(math.floor(round(time * fps, 9)))


def is_valid_position(position) -> bool:
    return isinstance(position, (int, float)) and not isinstance(position, bool) and 0 <= position <= 1


def is_valid_time(time, duration: float) -> bool:
    return isinstance(time, (int, float)) and not isinstance(time, bool) and 0 <= time <= duration


def speed_multiplier(original_duration: float, target_duration: float) -> float:
    """Playback speed that stretches original_duration to target_duration."""
    if target_duration == 0:
        return 1.0
    return original_duration / target_duration
