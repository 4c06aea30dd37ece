"""
retargetkit
===========

Skeletal animation retargeting between humanoid rigs: bone auto-mapping,
bind pose normalization, quaternion retargeting of clips, playback,
glTF/GLB import and export, and project archives.
"""

__version__ = "0.1.0"

from .animation import AnimationClip, AnimationCollection, AnimationPlayer, PlaybackController
from .exceptions import (
    Diagnostic,
    ErrorKind,
    InvalidInputError,
    NotInitializedError,
    PoseMismatchError,
    Result,
    RetargetKitError,
)
from .host import HostAdapter, LoggingHost
from .importer import ParsedModel, load_model
from .mapping import BoneMap, BoneMappingService, BoneMappingStore
from .retargeter import RetargetingEngine, RetargetManager, RetargetOptions
from .skeleton import Bone, Skeleton, SkeletonAnalyzer

__all__ = [
    'AnimationClip', 'AnimationCollection', 'AnimationPlayer', 'PlaybackController',
    'Diagnostic', 'ErrorKind', 'InvalidInputError', 'NotInitializedError',
    'PoseMismatchError', 'Result', 'RetargetKitError', 'HostAdapter', 'LoggingHost',
    'ParsedModel', 'load_model', 'BoneMap', 'BoneMappingService', 'BoneMappingStore',
    'RetargetingEngine', 'RetargetManager', 'RetargetOptions', 'Bone', 'Skeleton',
    'SkeletonAnalyzer',
]
