"""
RetargetManager: one object that holds the source and target models and
drives mapping, pose checks, retargeting and mapping persistence, reporting
each user-level action through the host adapter.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from ..animation.clip import AnimationClip
from ..exceptions import InvalidInputError, PoseMismatchError, Result
from ..host import HostAdapter, LoggingHost
from ..importer.model import ParsedModel
from ..mapping.service import BoneMap, BoneMappingService
from ..mapping.store import BoneMappingStore
from ..pose.coordinates import CoordinateDetection, CoordinateSystemDetector
from ..pose.normalization import PoseNormalization, PoseResult, PoseType, PoseValidation
from ..skeleton.analyzer import CompatibilityReport, SkeletonAnalyzer
from ..skeleton.bone import Skeleton
from .engine import RetargetingEngine, RetargetOptions

logger = logging.getLogger(__name__)

RETARGETED_SUFFIX = "_retargeted"


class RetargetManager:
    """
    Facade over the analyzer, mapping service, pose normalization and
    retargeting engine.

    Every collaborator can be injected; defaults are created otherwise.
    """

    def __init__(self, host: Optional[HostAdapter] = None,
                 analyzer: Optional[SkeletonAnalyzer] = None,
                 mapping_service: Optional[BoneMappingService] = None,
                 pose_normalization: Optional[PoseNormalization] = None,
                 engine: Optional[RetargetingEngine] = None,
                 store: Optional[BoneMappingStore] = None,
                 coordinate_detector: Optional[CoordinateSystemDetector] = None,
                 options: Optional[RetargetOptions] = None):
        self.host = host or LoggingHost()
        self.analyzer = analyzer or SkeletonAnalyzer()
        self.mapping_service = mapping_service or BoneMappingService(self.analyzer)
        self.pose_normalization = pose_normalization or PoseNormalization()
        self.engine = engine or RetargetingEngine(self.analyzer, self.pose_normalization)
        self.store = store or BoneMappingStore()
        self.coordinate_detector = coordinate_detector or CoordinateSystemDetector()
        self.options = options or RetargetOptions()

        self.source_model: Optional[ParsedModel] = None
        self.target_model: Optional[ParsedModel] = None
        self.source_skeleton: Optional[Skeleton] = None
        self.target_skeleton: Optional[Skeleton] = None
        self.source_from_tracks = False

        # auto-detected functional roots and user overrides
        self.source_root_bone: Optional[str] = None
        self.target_root_bone: Optional[str] = None
        self.selected_source_root_bone: Optional[str] = None
        self.selected_target_root_bone: Optional[str] = None

        self.target_coordinates: Optional[CoordinateDetection] = None

    def _notify(self, message: str, level: str = 'info'):
        self.host.show_notification(message, level)

    # ------------------------------------------------------------------ models

    def set_source_model(self, model: ParsedModel):
        """
        Use model as the animation source.

        A model without bones but with clips gets a flat skeleton made from
        the node names its tracks animate.
        """
        if model is None:
            raise InvalidInputError("No source model given")

        self.source_model = model
        self.source_from_tracks = False
        if model.has_skeleton:
            self.source_skeleton = model.skeleton
        elif model.clips:
            names = model.bone_names_from_tracks()
            if not names:
                raise InvalidInputError(f"Source model '{model.name}' has no bones and no animated nodes")
            logger.info(f"No skeleton in '{model.name}', using {len(names)} bone names from animation tracks")
            self.source_skeleton = Skeleton.from_hierarchy(names, [-1] * len(names), name=model.name)
            self.source_from_tracks = True
        else:
            raise InvalidInputError(f"Source model '{model.name}' has no skeleton")

        self.source_root_bone = self.analyzer.detect_functional_root(self.source_skeleton)
        self.engine.reset()
        rig = self.mapping_service.detect_rig_type(self.source_skeleton.bone_names)
        logger.info(f"Source model set: '{model.name}', rig {rig.value}, "
                    f"{len(self.source_skeleton)} bones, {len(model.clips)} clips, "
                    f"root {self.source_root_bone}")

    def set_target_model(self, model: ParsedModel):
        if model is None or not model.has_skeleton:
            self._notify("Target model has no skeleton", 'error')
            raise InvalidInputError("Target model has no skeleton")

        self.target_model = model
        self.target_skeleton = model.skeleton
        self.target_root_bone = self.analyzer.detect_functional_root(self.target_skeleton)
        self.target_coordinates = self.coordinate_detector.detect_model(model)
        self.engine.reset()
        rig = self.mapping_service.detect_rig_type(self.target_skeleton.bone_names)
        logger.info(f"Target model set: '{model.name}', rig {rig.value}, "
                    f"{len(self.target_skeleton)} bones, root {self.target_root_bone}")

    def _require_models(self) -> bool:
        if self.source_skeleton is None or self.target_skeleton is None:
            self._notify("Please load both source and target models", 'error')
            return False
        return True

    # ------------------------------------------------------------------ roots

    def set_source_root_bone(self, name: Optional[str]):
        self.selected_source_root_bone = name or None

    def set_target_root_bone(self, name: Optional[str]):
        self.selected_target_root_bone = name or None

    @property
    def effective_source_root(self) -> Optional[str]:
        return self.selected_source_root_bone or self.source_root_bone

    @property
    def effective_target_root(self) -> Optional[str]:
        return self.selected_target_root_bone or self.target_root_bone

    # ------------------------------------------------------------------ mapping

    def auto_map_bones(self, include_hand_fingers: bool = False) -> Optional[BoneMap]:
        """
        Auto-map the loaded skeletons and make the result current.

        The effective source root is mapped to the effective target root
        when the automatic pass left it out.
        """
        if not self._require_models():
            return None

        bone_map = self.mapping_service.auto_map(
            self.source_skeleton.bone_names, self.target_skeleton.bone_names, include_hand_fingers
        )
        source_root, target_root = self.effective_source_root, self.effective_target_root
        if source_root and target_root and source_root not in bone_map:
            self.mapping_service.add_mapping(source_root, target_root)
            logger.info(f"Added root bone mapping: {source_root} -> {target_root}")
            bone_map = self.mapping_service.get_bone_map()

        confidence = int(round(bone_map.confidence * 100))
        self._notify(f"Auto-mapped {len(bone_map)} bones with {confidence}% confidence",
                     'success' if confidence > 70 else 'warning')
        return bone_map

    def add_manual_mapping(self, source_bone: str, target_bone: str) -> bool:
        if not source_bone or not target_bone:
            self._notify("Please select both source and target bones", 'warning')
            return False
        self.mapping_service.add_mapping(source_bone, target_bone)
        self._notify(f"Mapped: {source_bone} -> {target_bone}", 'success')
        return True

    def remove_mapping(self, source_bone: str) -> bool:
        removed = self.mapping_service.remove_mapping(source_bone)
        if removed:
            self._notify(f"Removed mapping for {source_bone}")
        return removed

    def clear_mappings(self):
        self.mapping_service.clear_mappings()
        self._notify("All mappings cleared")

    def get_bone_mapping(self) -> Dict[str, str]:
        return self.mapping_service.get_mapping()

    def get_mapping_info(self) -> Dict[str, Any]:
        return self.mapping_service.get_mapping_info()

    def save_bone_mapping(self, name: str) -> Result:
        result = self.store.save(name, self.mapping_service.get_bone_map())
        if result.ok:
            self._notify(f"Bone mapping '{name}' saved successfully", 'success')
        else:
            self._notify(f"Failed to save mapping: {result.detail}", 'error')
        return result

    def load_bone_mapping(self, name: str) -> Result:
        """
        Load a stored mapping and make it current.

        Entries naming bones absent from the loaded skeletons are skipped
        and listed in the result's missing_bones.
        """
        source_bones = self.source_skeleton.bone_names if self.source_skeleton is not None else None
        target_bones = self.target_skeleton.bone_names if self.target_skeleton is not None else None
        result = self.store.load(name, source_bones, target_bones)
        if not result.ok:
            self._notify(f"Failed to load mapping: {result.detail}", 'error')
            return result

        loaded = result.value
        self.mapping_service.set_mapping(loaded.bone_map, source_bones=source_bones, target_bones=target_bones)
        if loaded.missing_bones:
            self._notify(f"Loaded bone mapping '{name}'; {len(loaded.missing_bones)} bones not found",
                         'warning')
        else:
            self._notify(f"Loaded bone mapping '{name}'", 'success')
        return result

    def list_bone_mappings(self) -> List[str]:
        return self.store.list()

    def delete_bone_mapping(self, name: str) -> Result:
        return self.store.delete(name)

    # ------------------------------------------------------------------ analysis

    def verify_bone_compatibility(self) -> Optional[CompatibilityReport]:
        if self.source_skeleton is None or self.target_skeleton is None:
            return None
        return self.analyzer.verify_bone_compatibility(self.source_skeleton, self.target_skeleton)

    def detect_pose_type(self, skeleton: Skeleton) -> PoseType:
        return self.pose_normalization.detect_pose_type(skeleton)

    def apply_t_pose(self, skeleton: Skeleton, bone_map: Optional[Dict[str, str]] = None) -> PoseResult:
        return self.pose_normalization.apply_t_pose(skeleton, bone_map)

    def apply_a_pose(self, skeleton: Skeleton, bone_map: Optional[Dict[str, str]] = None) -> PoseResult:
        return self.pose_normalization.apply_a_pose(skeleton, bone_map)

    def build_bone_tree(self, is_source: bool = True):
        skeleton = self.source_skeleton if is_source else self.target_skeleton
        if skeleton is None:
            return []
        return self.analyzer.build_bone_tree(skeleton, self.get_bone_mapping(), is_source)

    def validate_retargeting_poses(self) -> PoseValidation:
        context = self.engine.context
        if context is None:
            return self.pose_normalization.validate_poses(None, None)
        return self.pose_normalization.validate_poses(context.source_bind, context.target_bind)

    # ------------------------------------------------------------------ options

    def set_retarget_options(self, options: Union[RetargetOptions, Mapping[str, Any]]):
        """Update options; they take effect at the next initialize."""
        if isinstance(options, RetargetOptions):
            self.options = options
        else:
            merged = self.options.to_dict()
            merged.update(options)
            self.options = RetargetOptions.from_dict(merged)
        logger.info(f"Retargeting options updated: {self.options.to_dict()}")

    def set_coordinate_correction(self, enabled: bool):
        """
        Toggle the root coordinate correction.

        The rotation comes from the target model's detected up axis.
        """
        self.options = self.options.updated(apply_coordinate_correction=bool(enabled))
        rotation = None
        if self.target_coordinates is not None:
            rotation = self.coordinate_detector.correction_for(self.target_coordinates)
        self.engine.set_coordinate_correction(enabled, rotation)

    # ------------------------------------------------------------------ retargeting

    def _initialize(self, options: Optional[RetargetOptions] = None):
        if self.source_skeleton is None or self.target_skeleton is None:
            raise InvalidInputError("Source or target skeleton not found")
        if options is not None:
            self.options = options

        if self.options.apply_coordinate_correction and self.target_coordinates is not None:
            self.engine.set_coordinate_correction(
                True, self.coordinate_detector.correction_for(self.target_coordinates)
            )

        engine_options = self.options
        if self.source_from_tracks and engine_options.auto_validate_pose:
            # names harvested from tracks carry no bind pose to compare
            logger.info("Source skeleton built from track names, skipping pose validation")
            engine_options = engine_options.updated(auto_validate_pose=False)

        return self.engine.initialize(
            self.source_skeleton, self.target_skeleton,
            self.mapping_service.get_bone_map(),
            options=engine_options,
            source_root=self.effective_source_root,
            target_root=self.effective_target_root,
        )

    def initialize_retargeting(self, options: Optional[RetargetOptions] = None):
        """
        Initialize the engine with the current models, mapping and options.

        Sends one notification: the pose detection outcome, or that T-pose
        normalization was applied.

        Raises:
            InvalidInputError: Models missing or duplicate mapped bone names
            PoseMismatchError: Incompatible poses with auto_apply_t_pose off
        """
        try:
            context = self._initialize(options)
        except PoseMismatchError as e:
            self._notify(f"Pose mismatch: {e}", 'error')
            raise

        validation = context.pose_validation
        if context.source_corrections or context.target_corrections:
            self._notify("Applied T-pose normalization", 'success')
        elif validation is not None:
            self._notify(f"Pose detection: source is {validation.source_pose.value}, "
                         f"target is {validation.target_pose.value}",
                         'info' if validation.valid else 'warning')
        return context

    def _retarget_one(self, clip: AnimationClip,
                      preserve_root_motion: Optional[bool] = None) -> Tuple[Optional[AnimationClip], str]:
        """The retargeted clip, or None and the reason it failed."""
        if self.source_model is None or self.target_model is None:
            return None, "Please load both source and target models"
        if not self.mapping_service.get_mapping():
            return None, "No bone mappings defined. Use auto-map or manual mapping."

        try:
            if not self.engine.is_initialized:
                self._initialize()
        except (InvalidInputError, PoseMismatchError) as e:
            return None, f"Retargeting failed: {e}"

        result = self.engine.retarget_clip(clip, preserve_root_motion)
        if result is None or not result.tracks:
            return None, "No tracks were retargeted"
        return result.renamed(f"{clip.name}{RETARGETED_SUFFIX}"), ""

    def retarget_animation(self, clip: AnimationClip,
                           preserve_root_motion: Optional[bool] = None) -> Optional[AnimationClip]:
        """
        Retarget one clip, initializing the engine on first use.

        Returns:
            The retargeted clip named '<name>_retargeted', or None on failure
        """
        retargeted, error = self._retarget_one(clip, preserve_root_motion)
        if retargeted is None:
            level = 'warning' if error == "No tracks were retargeted" else 'error'
            self._notify(error, level)
            return None

        self._notify(f"Successfully retargeted animation: {clip.name} ({len(retargeted.tracks)} tracks)",
                     'success')
        return retargeted

    def retarget_all_animations(self, clips: Sequence[AnimationClip]) -> List[AnimationClip]:
        """Retarget every clip, keeping the successes. Sends a single summary notification."""
        results = []
        for clip in clips:
            retargeted, error = self._retarget_one(clip)
            if retargeted is None:
                logger.warning(f"Skipped '{clip.name}': {error}")
            else:
                results.append(retargeted)
        self._notify(f"Retargeted {len(results)} of {len(clips)} animations",
                     'success' if results else 'warning')
        return results

    @property
    def diagnostics(self):
        return list(self.engine.diagnostics)
