"""
Bone mapping service.

Holds the current source -> target bone correspondence. Callers change it
through commands (AddMapping, RemoveMapping, ClearMappings, SetMapping)
passed to BoneMappingService.execute(), and listeners are told about every
change. The retargeting engine only ever sees a snapshot taken at
initialize time.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from ..common import CONFIDENCE_GOOD
from ..exceptions import InvalidInputError
from ..skeleton.analyzer import RigFamily, SkeletonAnalyzer
from ..skeleton.naming import (
    BASE_ROLES,
    EXTRA_ROLES,
    FINGER_ROLES,
    canonical_key,
    is_finger_key,
)

logger = logging.getLogger(__name__)


@dataclass
class BoneMap:
    """Source bone name -> target bone name, with mapping metadata."""
    entries: Dict[str, str] = field(default_factory=dict)
    confidence: float = 0.0
    source_rig: RigFamily = RigFamily.CUSTOM
    target_rig: RigFamily = RigFamily.CUSTOM

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, source: str) -> bool:
        return source in self.entries

    def get(self, source: str, default: Optional[str] = None) -> Optional[str]:
        return self.entries.get(source, default)

    def items(self):
        return self.entries.items()

    def copy(self) -> 'BoneMap':
        return BoneMap(dict(self.entries), self.confidence, self.source_rig, self.target_rig)

    def targets(self) -> List[str]:
        return list(self.entries.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            'entries': [{'source': s, 'target': t} for s, t in self.entries.items()],
            'confidence': self.confidence,
            'sourceRigType': self.source_rig.value,
            'targetRigType': self.target_rig.value,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'BoneMap':
        """
        Build a map from its persisted form.

        Accepts ``entries`` as a list of {source, target} objects or a legacy
        ``mapping`` object of source -> target.
        """
        entries: Dict[str, str] = {}
        if isinstance(data.get('entries'), list):
            for item in data['entries']:
                source, target = item.get('source'), item.get('target')
                if source and target:
                    entries[source] = target
        elif isinstance(data.get('mapping'), dict):
            entries = {s: t for s, t in data['mapping'].items() if s and t}

        return cls(
            entries=entries,
            confidence=float(data.get('confidence', 0.0) or 0.0),
            source_rig=_parse_rig(data.get('sourceRigType')),
            target_rig=_parse_rig(data.get('targetRigType')),
        )


def _parse_rig(value: Optional[str]) -> RigFamily:
    try:
        return RigFamily(value)
    except ValueError:
        return RigFamily.CUSTOM


# ------------------------------------------------------------------ commands

@dataclass(frozen=True)
class AddMapping:
    source: str
    target: str


@dataclass(frozen=True)
class RemoveMapping:
    source: str


@dataclass(frozen=True)
class ClearMappings:
    pass


@dataclass(frozen=True)
class SetMapping:
    entries: Mapping[str, str]
    confidence: Optional[float] = None
    source_bones: Optional[Sequence[str]] = None
    target_bones: Optional[Sequence[str]] = None


MappingCommand = Union[AddMapping, RemoveMapping, ClearMappings, SetMapping]
MappingListener = Callable[[MappingCommand, BoneMap], None]


class BoneMappingService:
    """
    Produces and maintains the source -> target bone map.
    """

    def __init__(self, analyzer: Optional[SkeletonAnalyzer] = None):
        self.analyzer = analyzer or SkeletonAnalyzer()
        self._bone_map = BoneMap()
        self._listeners: List[MappingListener] = []

    # ------------------------------------------------------------------ detection

    def detect_rig_type(self, bone_names: Sequence[str]) -> RigFamily:
        return self.analyzer.classify_rig(bone_names)

    def generate_automatic_mapping(self, source_bones: Sequence[str], target_bones: Sequence[str],
                                   include_hand_fingers: bool = False) -> BoneMap:
        """
        Match bones by canonical name.

        Roles are visited in humanoid priority order (pelvis, spine chain,
        neck and head, arms, legs, then fingers when requested). A target is
        claimed at most once; when several targets share the canonical key,
        the one closest in list position to the source wins. Bones that are
        not humanoid roles are matched by identical canonical key.

        Args:
            source_bones: Source bone names in skeleton order
            target_bones: Target bone names in skeleton order
            include_hand_fingers: Also map finger bones

        Returns:
            BoneMap; empty with confidence 0 when neither rig has a
            recognizable humanoid bone
        """
        source_bones = list(source_bones or [])
        target_bones = list(target_bones or [])
        bone_map = BoneMap(
            source_rig=self.detect_rig_type(source_bones),
            target_rig=self.detect_rig_type(target_bones),
        )

        source_keys = [canonical_key(n) for n in source_bones]
        target_keys = [canonical_key(n) for n in target_bones]
        source_roles = {k for k in source_keys if k in BASE_ROLES}
        target_roles = {k for k in target_keys if k in BASE_ROLES}

        if not source_roles and not target_roles:
            logger.info("No humanoid bones recognized on either rig; mapping left empty")
            return bone_map

        claimed = set()

        def claim(source_index: int, key: str) -> Optional[str]:
            candidates = [
                ti for ti, tk in enumerate(target_keys)
                if tk == key and ti not in claimed
                and is_finger_key(tk) == is_finger_key(source_keys[source_index])
            ]
            if not candidates:
                return None
            best = min(candidates, key=lambda ti: (abs(ti - source_index), ti))
            claimed.add(best)
            return target_bones[best]

        roles = BASE_ROLES + EXTRA_ROLES + (FINGER_ROLES if include_hand_fingers else ())
        for role in roles:
            for si, key in enumerate(source_keys):
                source = source_bones[si]
                if key != role or source in bone_map.entries:
                    continue
                target = claim(si, key)
                if target is not None:
                    bone_map.entries[source] = target

        known_roles = set(BASE_ROLES) | set(EXTRA_ROLES) | set(FINGER_ROLES)
        for si, key in enumerate(source_keys):
            source = source_bones[si]
            if key in known_roles or source in bone_map.entries:
                continue
            target = claim(si, key)
            if target is not None:
                bone_map.entries[source] = target

        matched_roles = {canonical_key(s) for s in bone_map.entries} & source_roles
        bone_map.confidence = len(matched_roles) / len(source_roles) if source_roles else 0.0

        logger.info(f"Auto-mapped {len(bone_map)} bones "
                    f"({bone_map.source_rig.value} -> {bone_map.target_rig.value}), "
                    f"confidence {bone_map.confidence:.2f}")
        return bone_map

    def auto_map(self, source_bones: Sequence[str], target_bones: Sequence[str],
                 include_hand_fingers: bool = False) -> BoneMap:
        """Generate an automatic mapping and make it the current one."""
        bone_map = self.generate_automatic_mapping(source_bones, target_bones, include_hand_fingers)
        self._bone_map.source_rig = bone_map.source_rig
        self._bone_map.target_rig = bone_map.target_rig
        self.execute(SetMapping(bone_map.entries, confidence=bone_map.confidence))
        return self.get_bone_map()

    # ------------------------------------------------------------------ command bus

    def subscribe(self, listener: MappingListener) -> Callable[[], None]:
        """Register a change listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    def execute(self, command: MappingCommand) -> Any:
        """
        Apply a mapping command.

        Returns:
            AddMapping: None; RemoveMapping: whether the key existed;
            ClearMappings: None; SetMapping: list of missing bone names

        Raises:
            InvalidInputError: On empty names or an unknown command
        """
        if isinstance(command, AddMapping):
            result = self._add(command.source, command.target)
        elif isinstance(command, RemoveMapping):
            result = self._bone_map.entries.pop(command.source, None) is not None
        elif isinstance(command, ClearMappings):
            self._bone_map = BoneMap()
            result = None
        elif isinstance(command, SetMapping):
            result = self._set(command)
        else:
            raise InvalidInputError(f"Unknown mapping command: {command!r}")

        snapshot = self.get_bone_map()
        for listener in list(self._listeners):
            listener(command, snapshot)
        return result

    def _add(self, source: str, target: str):
        if not source or not source.strip() or not target or not target.strip():
            raise InvalidInputError("Both source and target bone names are required")
        self._bone_map.entries[source] = target
        logger.debug(f"Mapped {source} -> {target}")

    def _set(self, command: SetMapping) -> List[str]:
        source_set = set(command.source_bones) if command.source_bones is not None else None
        target_set = set(command.target_bones) if command.target_bones is not None else None

        entries: Dict[str, str] = {}
        missing: List[str] = []
        for source, target in command.entries.items():
            if not source or not target:
                continue
            absent = False
            if source_set is not None and source not in source_set:
                missing.append(source)
                absent = True
            if target_set is not None and target not in target_set:
                missing.append(target)
                absent = True
            if not absent:
                entries[source] = target

        if missing:
            logger.warning(f"Skipped {len(command.entries) - len(entries)} mapping entries "
                           f"with bones missing from the current skeletons")

        confidence = self._bone_map.confidence if command.confidence is None else command.confidence
        self._bone_map = BoneMap(entries, float(confidence),
                                 self._bone_map.source_rig, self._bone_map.target_rig)
        return list(dict.fromkeys(missing))

    # ------------------------------------------------------------------ convenience

    def add_mapping(self, source: str, target: str):
        self.execute(AddMapping(source, target))

    def remove_mapping(self, source: str) -> bool:
        return self.execute(RemoveMapping(source))

    def clear_mappings(self):
        self.execute(ClearMappings())

    def set_mapping(self, entries: Union[Mapping[str, str], BoneMap], confidence: Optional[float] = None,
                    source_bones: Optional[Iterable[str]] = None,
                    target_bones: Optional[Iterable[str]] = None) -> List[str]:
        if isinstance(entries, BoneMap):
            if confidence is None:
                confidence = entries.confidence
            entries = entries.entries
        return self.execute(SetMapping(
            dict(entries), confidence,
            list(source_bones) if source_bones is not None else None,
            list(target_bones) if target_bones is not None else None,
        ))

    def get_mapping(self) -> Dict[str, str]:
        """Copy of the current source -> target entries."""
        return dict(self._bone_map.entries)

    def get_bone_map(self) -> BoneMap:
        return self._bone_map.copy()

    def get_mapping_info(self) -> Dict[str, Any]:
        bone_map = self._bone_map
        return {
            'count': len(bone_map),
            'confidence': bone_map.confidence,
            'sourceRigType': bone_map.source_rig.value,
            'targetRigType': bone_map.target_rig.value,
            'quality': 'good' if bone_map.confidence >= CONFIDENCE_GOOD else 'review',
        }
