"""
Bone name normalization and humanoid role tables.

Every bone name is reduced to a canonical key: an optional side prefix
("left"/"right") followed by a body part taken from the synonym table,
e.g. ``mixamorig:LeftUpLeg``, ``thigh_l`` and ``Bip01 L Thigh`` all become
``leftupleg``. Names that match no body part keep their normalized form.
"""

import re
from functools import lru_cache
from typing import Dict, List, Optional, Tuple

_CAMEL_BOUNDARY = re.compile(r'(?<=[a-z0-9])(?=[A-Z])')
_SEPARATORS = re.compile(r'[\s_\-.:|]+')
_MIXAMO_PREFIX = re.compile(r'^mixamorig\d*[_\s]', re.IGNORECASE)
_FINGER = re.compile(r'^(?:hand)?(thumb|index|middle|ring|pinky|pinkie|little)(?:finger)?0*(\d)$')

# Tokens that carry no anatomical meaning (3ds Max bipeds, deform prefixes...)
_NOISE_TOKENS = re.compile(r'^(bip\d*|def|deform|jnt|joint|bn|bone)$')

LEFT_TOKENS = ('left', 'l')
RIGHT_TOKENS = ('right', 'r')

# body-part synonyms, normalized form -> canonical part
PART_SYNONYMS: Dict[str, str] = {
    'hips': 'hips', 'hip': 'hips', 'pelvis': 'hips',
    'spine': 'spine', 'spine0': 'spine', 'spine00': 'spine', 'spine01': 'spine',
    'spine1': 'spine1', 'spine02': 'spine1', 'chest': 'spine1',
    'spine2': 'spine2', 'spine03': 'spine2', 'upperchest': 'spine2',
    'neck': 'neck', 'neck1': 'neck', 'neck01': 'neck',
    'head': 'head',
    'shoulder': 'shoulder', 'clavicle': 'shoulder', 'collar': 'shoulder', 'collarbone': 'shoulder',
    'arm': 'arm', 'upperarm': 'arm', 'uparm': 'arm',
    'forearm': 'forearm', 'lowerarm': 'forearm', 'elbow': 'forearm',
    'hand': 'hand', 'wrist': 'hand',
    'upleg': 'upleg', 'thigh': 'upleg', 'upperleg': 'upleg',
    'leg': 'leg', 'calf': 'leg', 'shin': 'leg', 'lowerleg': 'leg', 'knee': 'leg',
    'foot': 'foot', 'ankle': 'foot',
    'toebase': 'toebase', 'toe': 'toebase', 'toes': 'toebase', 'ball': 'toebase',
    'root': 'root', 'armature': 'root', 'reference': 'root',
}

SIDED_PARTS = ('shoulder', 'arm', 'forearm', 'hand', 'upleg', 'leg', 'foot', 'toebase')
FINGER_NAMES = ('thumb', 'index', 'middle', 'ring', 'pinky')

# Base humanoid roles in mapping priority order
BASE_ROLES: Tuple[str, ...] = (
    'hips', 'spine', 'spine1', 'spine2', 'neck', 'head',
    'leftshoulder', 'leftarm', 'leftforearm', 'lefthand',
    'rightshoulder', 'rightarm', 'rightforearm', 'righthand',
    'leftupleg', 'leftleg', 'leftfoot', 'lefttoebase',
    'rightupleg', 'rightleg', 'rightfoot', 'righttoebase',
)

# Mapped after the base roles; never counted towards confidence
EXTRA_ROLES: Tuple[str, ...] = ('root',)

FINGER_ROLES: Tuple[str, ...] = tuple(
    f"{side}{finger}{n}"
    for side in ('left', 'right')
    for finger in FINGER_NAMES
    for n in range(1, 5)
)

ROLE_DISPLAY_NAMES: Dict[str, str] = {
    'hips': 'Hips', 'spine': 'Spine', 'spine1': 'Spine1', 'spine2': 'Spine2',
    'neck': 'Neck', 'head': 'Head', 'root': 'Root',
}
for _side in ('Left', 'Right'):
    for _part, _label in (('shoulder', 'Shoulder'), ('arm', 'Arm'), ('forearm', 'ForeArm'),
                          ('hand', 'Hand'), ('upleg', 'UpLeg'), ('leg', 'Leg'),
                          ('foot', 'Foot'), ('toebase', 'ToeBase')):
        ROLE_DISPLAY_NAMES[f"{_side.lower()}{_part}"] = f"{_side}{_label}"
    for _finger in FINGER_NAMES:
        for _n in range(1, 5):
            ROLE_DISPLAY_NAMES[f"{_side.lower()}{_finger}{_n}"] = f"{_side}Hand{_finger.capitalize()}{_n}"


def strip_namespace(name: str) -> str:
    """Drop a leading ``namespace:`` (e.g. ``mixamorig:``)."""
    stripped = name.rsplit(':', 1)[-1]
    return _MIXAMO_PREFIX.sub('', stripped)


def normalize_bone_name(name: str) -> str:
    """
    Lowercase, namespace-free, separator-free form of a bone name.

    >>> normalize_bone_name("mixamorig:Left_Up-Leg")
    'leftupleg'
    """
    return _SEPARATORS.sub('', strip_namespace(name)).lower()


def split_tokens(name: str) -> List[str]:
    """Lowercase word tokens of a bone name, split on separators and camelCase."""
    spaced = _CAMEL_BOUNDARY.sub(' ', strip_namespace(name))
    return [t for t in _SEPARATORS.split(spaced.lower()) if t]


def detect_side(tokens: List[str]) -> Tuple[Optional[str], List[str]]:
    """
    Find the side marker in a token list.

    Returns:
        Tuple of (side or None, remaining tokens)
    """
    side = None
    rest = []
    for token in tokens:
        if side is None and token in LEFT_TOKENS:
            side = 'left'
        elif side is None and token in RIGHT_TOKENS:
            side = 'right'
        else:
            rest.append(token)

    if side is None and rest:
        # merged lowercase names such as "lefthand"
        for prefix, marker in (('left', 'left'), ('right', 'right')):
            if rest[0].startswith(prefix) and len(rest[0]) > len(prefix):
                side = marker
                rest[0] = rest[0][len(prefix):]
                break

    return side, rest


def canonical_part(body: str) -> Optional[str]:
    """Canonical body part for a side-free normalized name, or None."""
    if body in PART_SYNONYMS:
        return PART_SYNONYMS[body]
    match = _FINGER.match(body)
    if match:
        finger = match.group(1)
        if finger in ('pinkie', 'little'):
            finger = 'pinky'
        return f"{finger}{match.group(2)}"
    return None


@lru_cache(maxsize=4096)
def canonical_key(name: str) -> str:
    """
    Canonical key of a bone name.

    Recognized humanoid bones map to role keys such as ``hips`` or
    ``leftforearm``; everything else maps to its normalized name.
    """
    tokens = [t for t in split_tokens(name) if not _NOISE_TOKENS.match(t)]
    side, rest = detect_side(tokens)
    body = ''.join(rest)
    part = canonical_part(body)
    if part is None:
        return normalize_bone_name(name)
    if side is None:
        return part
    return f"{side}{part}"


def is_finger_key(key: str) -> bool:
    return any(finger in key for finger in FINGER_NAMES) and key[-1:].isdigit()


def humanoid_role(name: str, include_fingers: bool = True) -> Optional[str]:
    """Role key of a bone name if it is a known humanoid bone, else None."""
    key = canonical_key(name)
    if key in BASE_ROLES or key in EXTRA_ROLES:
        return key
    if include_fingers and key in FINGER_ROLES:
        return key
    return None


def mirror_tokens(tokens: List[str]) -> List[str]:
    """Swap left/right markers in a token list."""
    swap = {'left': 'right', 'right': 'left', 'l': 'r', 'r': 'l'}
    mirrored = []
    for token in tokens:
        if token in swap:
            mirrored.append(swap[token])
        elif token.startswith('left') and len(token) > 4:
            mirrored.append('right' + token[4:])
        elif token.startswith('right') and len(token) > 5:
            mirrored.append('left' + token[5:])
        else:
            mirrored.append(token)
    return mirrored
