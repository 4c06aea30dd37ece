"""
Common constants and helpers shared across retargetkit modules.
"""

import logging
import sys
from pathlib import Path

# Clip trimming: leading silence shorter than this is left alone (seconds)
TRIM_THRESHOLD = 0.01

# Numeric tolerance for lengths, norms and time comparisons
EPSILON = 1e-6

# Bones shorter than this are ignored when comparing limb lengths
MIN_BONE_LENGTH = 1e-3

# Scale track values are clamped to at least this
MIN_SCALE = 1e-6

PROJECT_VERSION = "1.0.0"
SUPPORTED_MODEL_EXTENSIONS = ("glb", "gltf", "fbx")

DEFAULT_FPS = 24

# Bone compatibility: percentage of source bones found in the target
COMPATIBILITY_THRESHOLD = 80

# Mapping confidence considered good enough to retarget without review
CONFIDENCE_GOOD = 0.7

UNNAMED_CLIP = "Unnamed"


def get_logger(name="retargetkit", level=logging.INFO):
    """Get a logger that writes to stdout."""

    logger = logging.getLogger(name)
    logger.setLevel(level)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    return logger


def get_cache_directory() -> Path:
    """
    Get the cache directory used for persisted bone mappings.

    Returns:
        Path to ~/.cache/retargetkit (not created here)
    """
    return Path.home() / ".cache" / "retargetkit"


def sanitize_name(name: str) -> str:
    """
    Sanitize a user supplied name for use as a file name.

    Args:
        name: Original name

    Returns:
        Sanitized name
    """
    sanitized = name.strip()
    for char in (' ', '/', '\\', ':', '*', '?', '"', '<', '>', '|'):
        sanitized = sanitized.replace(char, '_')

    return sanitized or 'unnamed'
