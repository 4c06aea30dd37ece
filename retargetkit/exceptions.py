"""
Exceptions, diagnostics and result values for retargetkit.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class RetargetKitError(Exception):
    """Base exception for retargetkit errors."""
    pass


class InvalidInputError(RetargetKitError):
    """Raised when a model, skeleton or name is missing or malformed."""
    pass


class MappingEmptyError(RetargetKitError):
    """Raised when a strict caller requires a non-empty bone map."""
    pass


class PoseMismatchError(RetargetKitError):
    """Raised when source and target bind poses are incompatible."""
    pass


class NotInitializedError(RetargetKitError):
    """Raised when the engine is used before initialize()."""
    pass


class ProjectIOError(RetargetKitError):
    """Raised when a project archive cannot be read or written."""
    pass


class MappingIOError(RetargetKitError):
    """Raised when a stored bone mapping cannot be read or written."""
    pass


class GLBParseError(InvalidInputError):
    """Raised when GLB file cannot be parsed."""
    pass


class SkeletonError(InvalidInputError):
    """Raised when a skeleton cannot be built."""
    pass


class AnimationError(InvalidInputError):
    """Raised when animation extraction fails."""
    pass


class TrackDroppedWarning(UserWarning):
    """Category for tracks dropped while retargeting a clip."""
    pass


class ExporterWarning(UserWarning):
    """Category for tracks left out of an exported file."""
    pass


class ErrorKind(Enum):
    INVALID_INPUT = "invalid_input"
    MAPPING_EMPTY = "mapping_empty"
    POSE_MISMATCH = "pose_mismatch"
    TRACK_DROPPED = "track_dropped"
    NOT_INITIALIZED = "not_initialized"
    IO = "io"


@dataclass
class Diagnostic:
    """A non-fatal problem recorded while mapping or retargeting."""
    kind: ErrorKind
    message: str
    subject: Optional[str] = None

    def __str__(self) -> str:
        if self.subject:
            return f"[{self.kind.value}] {self.subject}: {self.message}"
        return f"[{self.kind.value}] {self.message}"


@dataclass
class Result:
    """
    Success or failure value returned at IO and parsing boundaries.

    Use ``Result.success(value)`` or ``Result.failure(kind, detail)``
    instead of constructing it directly.
    """
    ok: bool
    value: Any = None
    kind: Optional[ErrorKind] = None
    detail: str = ""

    @classmethod
    def success(cls, value: Any = None) -> 'Result':
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, kind: ErrorKind, detail: str) -> 'Result':
        return cls(ok=False, kind=kind, detail=detail)

    def unwrap(self) -> Any:
        """Return the value or raise the matching exception."""
        if self.ok:
            return self.value
        raise _KIND_TO_ERROR.get(self.kind, RetargetKitError)(self.detail)

    def __bool__(self) -> bool:
        return self.ok


_KIND_TO_ERROR = {
    ErrorKind.INVALID_INPUT: InvalidInputError,
    ErrorKind.MAPPING_EMPTY: MappingEmptyError,
    ErrorKind.POSE_MISMATCH: PoseMismatchError,
    ErrorKind.NOT_INITIALIZED: NotInitializedError,
    ErrorKind.IO: ProjectIOError,
}
