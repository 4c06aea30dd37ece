"""
Bone mapping: automatic name matching, manual edits and persistence.
"""

from .service import (
    AddMapping,
    BoneMap,
    BoneMappingService,
    ClearMappings,
    RemoveMapping,
    SetMapping,
)
from .store import BoneMappingStore, LoadedMapping

__all__ = [
    'AddMapping', 'BoneMap', 'BoneMappingService', 'ClearMappings',
    'RemoveMapping', 'SetMapping', 'BoneMappingStore', 'LoadedMapping',
]
