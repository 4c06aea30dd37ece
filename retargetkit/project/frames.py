"""
Per-frame image export of an animation.

Rendering is not done here: FrameExporter is handed a ``render(time)``
callable that poses the scene at time and returns the image, as a PIL
image, an (H, W, 3|4) uint8 array or encoded image bytes.
"""

import io
import logging
import math
import time as _time
from pathlib import Path
from typing import Callable, List, Optional, Union

import numpy as np
from PIL import Image

from ..animation import timeline
from ..common import DEFAULT_FPS
from ..exceptions import InvalidInputError, ProjectIOError

logger = logging.getLogger(__name__)

RenderedFrame = Union[Image.Image, np.ndarray, bytes]
Renderer = Callable[[float], RenderedFrame]
ProgressCallback = Callable[[int, int], None]


def export_frame_count(duration: float, fps: float) -> int:
    if duration < 0 or fps <= 0:
        raise InvalidInputError("Invalid duration or fps")
    return timeline.frame_count(duration, fps)


def export_frame_time(frame_index: int, fps: float) -> float:
    if frame_index < 0 or fps <= 0:
        raise InvalidInputError("Invalid frame index or fps")
    return timeline.frame_time(frame_index, fps)


def frame_filename(frame_index: int, image_format: str = 'png', padding: int = 3) -> str:
    if frame_index < 0:
        raise InvalidInputError("Frame index must be non-negative")
    return f"frame_{frame_index:0{padding}d}.{image_format}"


def export_progress(current_frame: int, total_frames: int) -> float:
    """Percentage done."""
    if total_frames == 0:
        return 0.0
    return current_frame / total_frames * 100.0


def estimate_remaining_time(elapsed_ms: float, current_frame: int, total_frames: int) -> int:
    """Seconds left, extrapolated from the average time per frame so far."""
    if current_frame == 0:
        return 0
    per_frame = elapsed_ms / current_frame
    return int(math.ceil((total_frames - current_frame) * per_frame / 1000.0))


def to_image(frame: RenderedFrame) -> Image.Image:
    if isinstance(frame, Image.Image):
        return frame
    if isinstance(frame, (bytes, bytearray)):
        return Image.open(io.BytesIO(frame))
    array = np.asarray(frame)
    if array.dtype != np.uint8:
        array = np.clip(array, 0, 255).astype(np.uint8)
    return Image.fromarray(array)


class FrameExporter:
    """
    Renders an animation frame by frame and saves numbered images.

    Args:
        render: Called with the time of each frame
        width, height: Output resolution; frames of another size are resized
        fps: Frames per second
        image_format: 'png' or any format Pillow can write
    """

    def __init__(self, render: Renderer, width: int, height: int, fps: float = DEFAULT_FPS,
                 image_format: str = 'png', padding: int = 3):
        if width <= 0 or height <= 0:
            raise InvalidInputError(f"Invalid resolution {width}x{height}")
        if fps <= 0:
            raise InvalidInputError("FPS must be positive")
        self.render = render
        self.width = int(width)
        self.height = int(height)
        self.fps = fps
        self.image_format = image_format.lower()
        self.padding = padding
        self.cancelled = False

    def cancel(self):
        self.cancelled = True

    def frame_times(self, duration: float) -> List[float]:
        return [export_frame_time(i, self.fps) for i in range(export_frame_count(duration, self.fps))]

    def export(self, duration: float, output_dir: Union[str, Path],
               on_progress: Optional[ProgressCallback] = None) -> List[Path]:
        """
        Render and save every frame of duration seconds.

        Returns:
            The written files, in frame order. A cancelled export returns
            the frames written so far.

        Raises:
            ProjectIOError: A frame cannot be written
        """
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        times = self.frame_times(duration)
        total = len(times)
        padding = max(self.padding, len(str(max(total - 1, 0))))
        self.cancelled = False

        written: List[Path] = []
        started = _time.monotonic()
        for index, t in enumerate(times):
            if self.cancelled:
                logger.info(f"Frame export cancelled after {index} of {total} frames")
                break
            image = to_image(self.render(t))
            if image.size != (self.width, self.height):
                image = image.resize((self.width, self.height))
            if self.image_format in ('jpg', 'jpeg') and image.mode != 'RGB':
                image = image.convert('RGB')

            path = output_dir / frame_filename(index, self.image_format, padding)
            try:
                image.save(path)
            except (OSError, ValueError) as e:
                raise ProjectIOError(f"Failed to write {path}: {e}")
            written.append(path)

            if on_progress is not None:
                on_progress(index + 1, total)
            logger.debug(f"Frame {index + 1}/{total} at {t:.3f}s, "
                         f"~{estimate_remaining_time((_time.monotonic() - started) * 1000, index + 1, total)}s left")

        logger.info(f"Exported {len(written)} frames at {self.width}x{self.height}, {self.fps} fps to {output_dir}")
        return written
