"""
Retargeting engine.

initialize() freezes bind snapshots of both skeletons, resolves the bone
map to indices and precomputes, for every mapped source bone s with
target t, the rest-pose quaternions

    left[s]  = inv(Ptrg) * inv(Etrg) * Esrc * Psrc
    right[s] = inv(Wsrc) * inv(Esrc) * Etrg * Wtrg

where W is the bone's rest world rotation, P its parent's (identity for
roots) and E the embedded scene rotation above each skeleton. A source
local rotation q then retargets to the target local rotation
left[s] * q * right[s]; a source bone at rest lands exactly on the
target's rest local rotation.

retarget_clip() applies that per keyframe and returns a new clip. The
context built by initialize() is never modified by retargeting, so
retargeting is deterministic and clips can be processed in any order.
"""

import logging
import warnings
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from ..common import MIN_BONE_LENGTH, MIN_SCALE
from ..exceptions import (
    Diagnostic,
    ErrorKind,
    InvalidInputError,
    MappingEmptyError,
    NotInitializedError,
    PoseMismatchError,
    TrackDroppedWarning,
)
from ..animation.clip import (
    AnimationClip,
    KeyframeTrack,
    QuaternionTrack,
    TrackKind,
    VectorTrack,
    join_track_name,
    split_track_name,
)
from ..mapping.service import BoneMap
from ..pose.normalization import PoseNormalization, PoseType, PoseValidation
from ..skeleton.analyzer import SkeletonAnalyzer
from ..skeleton.bone import BindPoseMode, Skeleton
from ..utils.quaternion import (
    IDENTITY_QUAT,
    inverse_quat,
    mulQuat,
    normalize_quat,
    rotate_vector,
)

logger = logging.getLogger(__name__)

# camelCase keys accepted by RetargetOptions.from_dict
_CAMEL_KEYS = {
    'useWorldSpaceTransformation': 'use_world_space_transformation',
    'autoValidatePose': 'auto_validate_pose',
    'autoApplyTPose': 'auto_apply_t_pose',
    'useOptimalScale': 'use_optimal_scale',
    'srcEmbedWorld': 'src_embed_world',
    'trgEmbedWorld': 'trg_embed_world',
    'srcPoseMode': 'src_pose_mode',
    'trgPoseMode': 'trg_pose_mode',
    'preserveRootMotion': 'preserve_root_motion',
    'applyCoordinateCorrection': 'apply_coordinate_correction',
}


def _parse_pose_mode(value: Union[BindPoseMode, str, int, None]) -> BindPoseMode:
    if isinstance(value, BindPoseMode):
        return value
    if value is None:
        return BindPoseMode.DEFAULT
    if isinstance(value, int):
        return BindPoseMode.CURRENT if value == 1 else BindPoseMode.DEFAULT
    try:
        return BindPoseMode(str(value).lower())
    except ValueError:
        raise InvalidInputError(f"Unknown bind pose mode: {value}")


@dataclass
class RetargetOptions:
    """Switches that control initialize() and retarget_clip()."""
    use_world_space_transformation: bool = False
    auto_validate_pose: bool = True
    auto_apply_t_pose: bool = False
    use_optimal_scale: bool = True
    src_embed_world: bool = True
    trg_embed_world: bool = True
    src_pose_mode: BindPoseMode = BindPoseMode.DEFAULT
    trg_pose_mode: BindPoseMode = BindPoseMode.DEFAULT
    preserve_root_motion: bool = True
    apply_coordinate_correction: bool = False

    def __post_init__(self):
        self.src_pose_mode = _parse_pose_mode(self.src_pose_mode)
        self.trg_pose_mode = _parse_pose_mode(self.trg_pose_mode)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> 'RetargetOptions':
        """Build options from snake_case or camelCase keys; unknown keys are ignored."""
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in (data or {}).items():
            name = _CAMEL_KEYS.get(key, key)
            if name in known:
                kwargs[name] = value
            else:
                logger.debug(f"Ignoring unknown retarget option '{key}'")
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        data = {}
        for camel, name in _CAMEL_KEYS.items():
            value = getattr(self, name)
            data[camel] = value.value if isinstance(value, BindPoseMode) else value
        return data

    def updated(self, **changes) -> 'RetargetOptions':
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data.update(changes)
        return RetargetOptions(**data)


@dataclass
class RetargetingContext:
    """
    Everything retargeting needs, frozen at initialize() time.

    left and right are indexed by source bone index; rows of unmapped
    bones hold the identity.
    """
    source_bind: Skeleton
    target_bind: Skeleton
    bone_map: Dict[str, str]
    bone_map_indices: np.ndarray
    left: np.ndarray
    right: np.ndarray
    proportion_ratio: float = 1.0
    coordinate_correction: np.ndarray = field(default_factory=lambda: IDENTITY_QUAT.copy())
    source_root: int = -1
    target_root: int = -1
    options: RetargetOptions = field(default_factory=RetargetOptions)
    pose_validation: Optional[PoseValidation] = None
    source_corrections: Dict[str, np.ndarray] = field(default_factory=dict)
    target_corrections: Dict[str, np.ndarray] = field(default_factory=dict)

    @property
    def mapped_count(self) -> int:
        return int(np.sum(self.bone_map_indices >= 0))

    def target_index(self, source_index: int) -> int:
        if 0 <= source_index < len(self.bone_map_indices):
            return int(self.bone_map_indices[source_index])
        return -1

    def mapped_pairs(self) -> List[Tuple[int, int]]:
        return [(s, int(t)) for s, t in enumerate(self.bone_map_indices) if t >= 0]

    def embedded_rotation(self, skeleton: Skeleton) -> np.ndarray:
        if skeleton.embedded is None:
            return IDENTITY_QUAT.copy()
        return skeleton.embedded.forward.rotation.copy()


class RetargetingEngine:
    """
    Transfers animation clips from a source skeleton onto a target skeleton.
    """

    def __init__(self, analyzer: Optional[SkeletonAnalyzer] = None,
                 pose_normalization: Optional[PoseNormalization] = None,
                 options: Optional[RetargetOptions] = None):
        self.analyzer = analyzer or SkeletonAnalyzer()
        self.pose_normalization = pose_normalization or PoseNormalization()
        self.options = options or RetargetOptions()
        self.coordinate_correction_rotation = IDENTITY_QUAT.copy()
        self.context: Optional[RetargetingContext] = None
        self.diagnostics: List[Diagnostic] = []

    # ------------------------------------------------------------------ configuration

    @property
    def is_initialized(self) -> bool:
        return self.context is not None

    @property
    def apply_coordinate_correction(self) -> bool:
        return self.options.apply_coordinate_correction

    @property
    def proportion_ratio(self) -> float:
        return self.context.proportion_ratio if self.context is not None else 1.0

    def set_retarget_options(self, options: Union[RetargetOptions, Mapping[str, Any]]):
        """Replace or update the options; takes effect for the next initialize()."""
        if isinstance(options, RetargetOptions):
            self.options = options
        else:
            merged = self.options.to_dict()
            merged.update(options)
            self.options = RetargetOptions.from_dict(merged)

    def set_coordinate_correction(self, enabled: bool, rotation=None):
        """
        Enable or disable the root coordinate correction.

        The change applies to the active context immediately.
        """
        self.options = self.options.updated(apply_coordinate_correction=bool(enabled))
        if rotation is not None:
            self.coordinate_correction_rotation = normalize_quat(np.asarray(rotation, dtype=float))
        if self.context is not None:
            self.context.options = self.context.options.updated(apply_coordinate_correction=bool(enabled))
            self.context.coordinate_correction = self.coordinate_correction_rotation.copy()

    def reset(self):
        self.context = None
        self.diagnostics = []

    def _diagnose(self, kind: ErrorKind, message: str, subject: Optional[str] = None):
        self.diagnostics.append(Diagnostic(kind, message, subject))

    # ------------------------------------------------------------------ initialize

    def initialize(self, source: Skeleton, target: Skeleton,
                   bone_map: Union[BoneMap, Mapping[str, str]],
                   options: Optional[RetargetOptions] = None,
                   source_root: Optional[str] = None,
                   target_root: Optional[str] = None,
                   require_mapping: bool = False) -> RetargetingContext:
        """
        Build the retargeting context.

        Args:
            source: Skeleton the clips were authored for
            target: Skeleton to drive
            bone_map: Source bone name -> target bone name (snapshotted)
            options: Options to use; defaults to the engine's options
            source_root: Functional root override for the source
            target_root: Functional root override for the target
            require_mapping: Raise instead of recording a diagnostic when no
                bone pair resolves

        Returns:
            The new RetargetingContext

        Raises:
            InvalidInputError: Missing skeleton or duplicate names among mapped bones
            PoseMismatchError: Poses are incompatible and auto_apply_t_pose is off
            MappingEmptyError: require_mapping is set and no bone pair resolves
        """
        if source is None or target is None or len(source) == 0 or len(target) == 0:
            raise InvalidInputError("Source or target skeleton not found")

        if options is not None:
            self.options = options
        options = self.options
        self.context = None
        self.diagnostics = []

        entries = dict(bone_map.entries if isinstance(bone_map, BoneMap) else bone_map)
        self._check_duplicates(source, target, entries)

        logger.info(f"Initializing retargeting: source {len(source)} bones, target {len(target)} bones")

        source_bind = source.bind_clone(options.src_pose_mode, options.src_embed_world)
        target_bind = target.bind_clone(options.trg_pose_mode, options.trg_embed_world)

        validation = None
        source_corrections: Dict[str, np.ndarray] = {}
        target_corrections: Dict[str, np.ndarray] = {}
        if options.auto_validate_pose:
            validation = self.pose_normalization.validate_poses(source_bind, target_bind)
            logger.info(f"Pose detection: source is {validation.source_pose.value}, "
                        f"target is {validation.target_pose.value}")
            if not validation.valid:
                if not options.auto_apply_t_pose:
                    raise PoseMismatchError(validation.recommendation)
                logger.info("Incompatible poses detected, applying T-pose normalization")
                if validation.source_pose != PoseType.T_POSE:
                    source_corrections = self.pose_normalization.apply_t_pose(source_bind).corrections
                if validation.target_pose != PoseType.T_POSE:
                    target_corrections = self.pose_normalization.apply_t_pose(target_bind).corrections

        indices = self.compute_bone_map_indices(source_bind, target_bind, entries)
        mapped = int(np.sum(indices >= 0))
        if mapped == 0:
            if require_mapping:
                raise MappingEmptyError("Bone map resolves to no bone pairs")
            logger.warning("No bones are mapped; retargeted clips will be empty")
            self._diagnose(ErrorKind.MAPPING_EMPTY, "Bone map resolves to no bone pairs")

        left, right = self._precompute_quats(source_bind, target_bind, indices)

        context = RetargetingContext(
            source_bind=source_bind,
            target_bind=target_bind,
            bone_map=entries,
            bone_map_indices=indices,
            left=left,
            right=right,
            coordinate_correction=self.coordinate_correction_rotation.copy(),
            source_root=self._resolve_root(source_bind, source_root),
            target_root=self._resolve_root(target_bind, target_root),
            options=options,
            pose_validation=validation,
            source_corrections=source_corrections,
            target_corrections=target_corrections,
        )
        context.proportion_ratio = (self.compute_proportion_ratio(context)
                                    if options.use_optimal_scale else 1.0)
        self.context = context

        logger.info(f"Retargeting initialized: {mapped} mapped bones, "
                    f"proportion ratio {context.proportion_ratio:.3f}")
        return context

    def _check_duplicates(self, source: Skeleton, target: Skeleton, entries: Mapping[str, str]):
        for skeleton, names, side in ((source, set(entries.keys()), 'source'),
                                      (target, set(entries.values()), 'target')):
            duplicates = self.analyzer.detect_duplicate_bone_names(skeleton)
            blocking = sorted(n for n in duplicates if n in names)
            if blocking:
                raise InvalidInputError(
                    f"Duplicate {side} bone names block mapping: "
                    + ", ".join(self.analyzer.format_duplicates({n: duplicates[n] for n in blocking}))
                )

    def _resolve_root(self, skeleton: Skeleton, override: Optional[str]) -> int:
        if override:
            index = skeleton.index_of(override)
            if index >= 0:
                return index
            self._diagnose(ErrorKind.INVALID_INPUT, "Root bone override not found", override)
        name = self.analyzer.detect_functional_root(skeleton)
        return skeleton.index_of(name) if name else -1

    def compute_bone_map_indices(self, source: Skeleton, target: Skeleton,
                                 bone_map: Mapping[str, str]) -> np.ndarray:
        """Target bone index per source bone index, -1 where unmapped."""
        indices = np.full(len(source), -1, dtype=int)
        for source_name, target_name in bone_map.items():
            s = source.index_of(source_name)
            if s < 0:
                self._diagnose(ErrorKind.INVALID_INPUT, "Mapped bone not in source skeleton", source_name)
                continue
            t = target.index_of(target_name)
            if t < 0:
                self._diagnose(ErrorKind.INVALID_INPUT, "Mapped bone not in target skeleton", target_name)
                continue
            indices[s] = t
        return indices

    def _precompute_quats(self, source: Skeleton, target: Skeleton,
                          indices: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        left = np.tile(IDENTITY_QUAT, (len(source), 1))
        right = np.tile(IDENTITY_QUAT, (len(source), 1))

        e_src = (source.embedded.forward.rotation if source.embedded is not None else IDENTITY_QUAT)
        e_trg = (target.embedded.forward.rotation if target.embedded is not None else IDENTITY_QUAT)
        inv_e_src = inverse_quat(e_src)
        inv_e_trg = inverse_quat(e_trg)

        for s, t in enumerate(indices):
            if t < 0:
                continue
            src_parent = source.parent_world_rotation(s)
            trg_parent = target.parent_world_rotation(t)

            q = mulQuat(e_src, src_parent)
            q = mulQuat(inv_e_trg, q)
            left[s] = normalize_quat(mulQuat(inverse_quat(trg_parent), q))

            q = mulQuat(e_trg, target.world_rotation(t))
            q = mulQuat(inv_e_src, q)
            right[s] = normalize_quat(mulQuat(inverse_quat(source.world_rotation(s)), q))

        return left, right

    def _length_pairs(self, context: RetargetingContext) -> List[Tuple[float, float]]:
        pairs = []
        for s, t in context.mapped_pairs():
            src_length = context.source_bind.bone_length(s)
            trg_length = context.target_bind.bone_length(t)
            if src_length > MIN_BONE_LENGTH and trg_length > MIN_BONE_LENGTH:
                pairs.append((src_length, trg_length))
        return pairs

    def compute_proportion_ratio(self, context: Optional[RetargetingContext] = None) -> float:
        """
        Median of target / source first-child bone lengths over mapped pairs.

        Pairs where either length is below MIN_BONE_LENGTH are skipped;
        with no usable pair the ratio is 1.0.
        """
        context = context or self.context
        if context is None:
            return 1.0
        pairs = self._length_pairs(context)
        if not pairs:
            logger.warning("No measurable bone pairs for scale computation, using 1.0")
            return 1.0
        ratios = [trg / src for src, trg in pairs]
        return float(np.median(ratios))

    def total_length_ratio(self) -> float:
        """Sum of mapped target bone lengths over the sum of source lengths."""
        if self.context is None:
            return 1.0
        pairs = self._length_pairs(self.context)
        if not pairs:
            return 1.0
        return sum(t for _, t in pairs) / sum(s for s, _ in pairs)

    # ------------------------------------------------------------------ retarget

    def retarget_quaternion(self, source_index: int, quaternion) -> np.ndarray:
        """
        Retarget one source local rotation (or an (N, 4) batch) of a bone.

        Raises:
            NotInitializedError: Before initialize()
        """
        if self.context is None:
            raise NotInitializedError("Retargeting engine is not initialized")
        q = mulQuat(self.context.left[source_index], quaternion)
        q = mulQuat(q, self.context.right[source_index])
        return normalize_quat(q)

    def retarget_clip(self, clip: AnimationClip,
                      preserve_root_motion: Optional[bool] = None) -> Optional[AnimationClip]:
        """
        Retarget a clip onto the target skeleton.

        Tracks are handled one at a time; a track that cannot be retargeted
        is dropped and recorded in diagnostics. The output keeps the clip's
        name, duration, track order and key times.

        Args:
            clip: Source clip
            preserve_root_motion: Overrides the context option for this call

        Returns:
            The retargeted clip, or None if the engine is not initialized
        """
        self.diagnostics = []
        context = self.context
        if context is None:
            logger.error("retarget_clip called before initialize")
            self._diagnose(ErrorKind.NOT_INITIALIZED, "Retargeting engine is not initialized",
                           clip.name if clip is not None else None)
            return None

        if context.mapped_count == 0:
            self._diagnose(ErrorKind.MAPPING_EMPTY, "No mapped bones; clip left empty", clip.name)
            return AnimationClip(clip.name, clip.duration, ())

        if preserve_root_motion is None:
            preserve_root_motion = context.options.preserve_root_motion

        sampler = None
        if context.options.use_world_space_transformation:
            sampler = _WorldSpaceSampler(context, clip)

        tracks: List[KeyframeTrack] = []
        seen = set()
        failed = 0
        for track in clip.tracks:
            try:
                new_track = self._retarget_track(track, sampler, preserve_root_motion)
            except Exception as e:
                failed += 1
                logger.warning(f"Dropping track {track.name}: {e}")
                self._diagnose(ErrorKind.TRACK_DROPPED, f"Retargeting failed: {e}", track.name)
                continue
            if new_track is None:
                continue
            if new_track.name in seen:
                self._diagnose(ErrorKind.TRACK_DROPPED,
                               f"Output path {new_track.name} already written by an earlier track",
                               track.name)
                continue
            seen.add(new_track.name)
            tracks.append(new_track)

        if failed:
            warnings.warn(f"{failed} tracks of '{clip.name}' could not be retargeted", TrackDroppedWarning)

        logger.info(f"Retargeted '{clip.name}': {len(tracks)} of {len(clip.tracks)} tracks kept")
        return AnimationClip(clip.name, clip.duration, tuple(tracks))

    def retarget_clips(self, clips: Sequence[AnimationClip],
                       preserve_root_motion: Optional[bool] = None) -> List[AnimationClip]:
        """Retarget several clips, keeping the ones that succeed."""
        results = []
        diagnostics = []
        for clip in clips:
            result = self.retarget_clip(clip, preserve_root_motion)
            diagnostics.extend(self.diagnostics)
            if result is not None:
                results.append(result)
        self.diagnostics = diagnostics
        return results

    def _drop(self, track: KeyframeTrack, reason: str):
        logger.debug(f"Skipping {track.name}: {reason}")
        self._diagnose(ErrorKind.TRACK_DROPPED, reason, track.name)

    def _retarget_track(self, track: KeyframeTrack, sampler: Optional['_WorldSpaceSampler'],
                        preserve_root_motion: bool):
        context = self.context
        node, prop = split_track_name(track.name)
        source_index = context.source_bind.index_of(node)

        if prop in ('rotation', 'position', 'scale'):
            if source_index < 0:
                self._drop(track, "Node is not a source bone")
                return None
            target_index = context.target_index(source_index)
            if target_index < 0:
                self._drop(track, "Bone is not mapped")
                return None
            target_name = context.target_bind[target_index].name

            if prop == 'rotation':
                if track.kind != TrackKind.QUATERNION:
                    self._drop(track, "Rotation track is not a quaternion track")
                    return None
                return self._retarget_rotation(track, source_index, target_index, target_name, sampler)
            if prop == 'position':
                if not preserve_root_motion:
                    self._drop(track, "Root motion disabled")
                    return None
                return self._retarget_position(track, source_index, target_index, target_name)
            return self._retarget_scale(track, target_name)

        if source_index < 0:
            # not skeletal: passed through as is
            return track.copy()
        target_name = context.bone_map.get(node)
        if target_name is None or context.target_index(source_index) < 0:
            self._drop(track, "Bone is not mapped")
            return None
        return track.renamed(join_track_name(target_name, prop))

    def _retarget_rotation(self, track: KeyframeTrack, source_index: int, target_index: int,
                           target_name: str, sampler: Optional['_WorldSpaceSampler']) -> QuaternionTrack:
        context = self.context
        values = normalize_quat(track.keyframes())

        if sampler is not None:
            out = np.array([
                sampler.target_local(source_index, target_index, time, q)
                for time, q in zip(track.times, values)
            ]).reshape(-1, 4)
        else:
            out = self.retarget_quaternion(source_index, values)

        if target_index == context.target_root and context.options.apply_coordinate_correction:
            out = normalize_quat(mulQuat(context.coordinate_correction, out))

        return QuaternionTrack(join_track_name(target_name, 'rotation'), track.times.copy(),
                               out.reshape(-1), track.interpolation)

    def _retarget_position(self, track: KeyframeTrack, source_index: int, target_index: int,
                           target_name: str) -> Optional[VectorTrack]:
        context = self.context
        if source_index != context.source_root:
            self._drop(track, "Position track on a non-root bone")
            return None

        values = track.keyframes()
        delta = values - context.source_bind[source_index].position
        if context.options.apply_coordinate_correction:
            delta = rotate_vector(context.coordinate_correction, delta)
        out = context.target_bind[target_index].position + context.proportion_ratio * delta

        logger.debug(f"Root motion {track.node_name} -> {target_name}: {len(values)} keys")
        return VectorTrack(join_track_name(target_name, 'position'), track.times.copy(),
                           out.reshape(-1), track.interpolation)

    def _retarget_scale(self, track: KeyframeTrack, target_name: str) -> VectorTrack:
        values = np.maximum(track.values.astype(float), MIN_SCALE)
        return VectorTrack(join_track_name(target_name, 'scale'), track.times.copy(),
                           values, track.interpolation)


class _WorldSpaceSampler:
    """
    Animated world rotations for world-space retargeting.

    Source world rotations come from the clip's rotation tracks sampled at
    the requested time (bind rotations where a bone has no track). The
    target world rotation of a driven bone is the source world rotation
    carried across by the rest-pose correspondence; undriven target bones
    follow their parent at bind rotation. A target local rotation is then
    the target world rotation seen from its animated parent, which keeps
    the motion of unmapped intermediate source bones.
    """

    def __init__(self, context: RetargetingContext, clip: AnimationClip):
        self.context = context
        self.source = context.source_bind
        self.target = context.target_bind
        self.tracks: Dict[int, KeyframeTrack] = {}
        self.driven: Dict[int, int] = {}
        for track in clip.tracks:
            node, prop = split_track_name(track.name)
            index = self.source.index_of(node)
            if prop != 'rotation' or index < 0 or track.kind != TrackKind.QUATERNION:
                continue
            if index in self.tracks or not track.key_count:
                continue
            self.tracks[index] = track
            target_index = context.target_index(index)
            if target_index >= 0 and target_index not in self.driven:
                self.driven[target_index] = index

        e_src = context.embedded_rotation(self.source)
        e_trg = context.embedded_rotation(self.target)
        self.carry = normalize_quat(mulQuat(inverse_quat(e_trg), e_src))
        self._source_cache: Dict[Tuple[int, float], np.ndarray] = {}
        self._target_cache: Dict[Tuple[int, float], np.ndarray] = {}

    def source_world(self, index: int, time: float) -> np.ndarray:
        key = (index, float(time))
        if key not in self._source_cache:
            if index in self.tracks:
                local = normalize_quat(self.tracks[index].sample(time))
            else:
                local = self.source[index].rotation
            parent = self.source[index].parent_index
            world = local if parent < 0 else mulQuat(self.source_world(parent, time), local)
            self._source_cache[key] = normalize_quat(world)
        return self._source_cache[key]

    def target_world(self, index: int, time: float) -> np.ndarray:
        key = (index, float(time))
        if key not in self._target_cache:
            if index in self.driven:
                s = self.driven[index]
                world = mulQuat(mulQuat(self.carry, self.source_world(s, time)), self.context.right[s])
            else:
                local = self.target[index].rotation
                parent = self.target[index].parent_index
                world = local if parent < 0 else mulQuat(self.target_world(parent, time), local)
            self._target_cache[key] = normalize_quat(world)
        return self._target_cache[key]

    def target_local(self, source_index: int, target_index: int, time: float, q) -> np.ndarray:
        parent = self.source[source_index].parent_index
        source_world = q if parent < 0 else mulQuat(self.source_world(parent, time), q)
        target_world = mulQuat(mulQuat(self.carry, source_world), self.context.right[source_index])

        target_parent = self.target[target_index].parent_index
        if target_parent >= 0:
            target_world = mulQuat(inverse_quat(self.target_world(target_parent, time)), target_world)
        return normalize_quat(target_world)
