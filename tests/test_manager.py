"""
Unit tests for RetargetManager.
"""

import shutil
import tempfile
import unittest

import numpy as np

from retargetkit.animation.clip import AnimationClip
from retargetkit.exceptions import InvalidInputError, PoseMismatchError
from retargetkit.host import LoggingHost
from retargetkit.importer.model import ParsedModel
from retargetkit.mapping.store import BoneMappingStore
from retargetkit.retargeter.manager import RetargetManager
from retargetkit.skeleton.bone import Skeleton

from skeleton_fixtures import HUMANOID_BONES, humanoid_skeleton, walk_clip

PREFIX = 'mixamorig:'
BOUNDS = (np.array([-0.6, 0.0, -0.2]), np.array([0.6, 1.8, 0.2]))


def source_model(**kwargs):
    return ParsedModel(name='mixamo_walk', skeleton=humanoid_skeleton(prefix=PREFIX, **kwargs),
                       clips=[walk_clip(PREFIX)], up_axis='Y', bounds=BOUNDS)


def target_model(skeleton=None):
    return ParsedModel(name='hero', skeleton=skeleton or humanoid_skeleton(), up_axis='Y', bounds=BOUNDS)


class ManagerTestCase(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.host = LoggingHost()
        self.manager = RetargetManager(host=self.host, store=BoneMappingStore(self.temp_dir))

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    @property
    def last_notification(self):
        return self.host.notifications[-1]

    def load_models(self, target=None):
        self.manager.set_source_model(source_model())
        self.manager.set_target_model(target or target_model())


class TestModels(ManagerTestCase):
    """Test loading source and target models."""

    def test_set_models(self):
        self.load_models()
        self.assertEqual(self.manager.source_root_bone, PREFIX + 'Hips')
        self.assertEqual(self.manager.target_root_bone, 'Hips')
        self.assertFalse(self.manager.source_from_tracks)
        self.assertEqual(self.manager.target_coordinates.up_axis, 'Y')

    def test_source_without_skeleton_uses_track_names(self):
        model = ParsedModel(name='anim_only', clips=[walk_clip(PREFIX)])
        self.manager.set_source_model(model)
        self.assertTrue(self.manager.source_from_tracks)
        self.assertEqual(self.manager.source_skeleton.bone_names,
                         [PREFIX + 'Hips', PREFIX + 'Spine', PREFIX + 'LeftArm'])

    def test_source_without_anything(self):
        with self.assertRaises(InvalidInputError):
            self.manager.set_source_model(ParsedModel(name='empty'))
        with self.assertRaises(InvalidInputError):
            self.manager.set_source_model(None)

    def test_target_without_skeleton(self):
        with self.assertRaises(InvalidInputError):
            self.manager.set_target_model(ParsedModel(name='props', clips=[walk_clip()]))
        self.assertEqual(self.last_notification, ('error', 'Target model has no skeleton'))

    def test_root_override(self):
        self.load_models()
        self.manager.set_target_root_bone('Spine')
        self.assertEqual(self.manager.effective_target_root, 'Spine')
        self.manager.set_target_root_bone('')
        self.assertEqual(self.manager.effective_target_root, 'Hips')


class TestMapping(ManagerTestCase):
    """Test mapping through the manager."""

    def test_auto_map(self):
        self.load_models()
        bone_map = self.manager.auto_map_bones()
        self.assertEqual(len(bone_map), 19)
        self.assertEqual(self.last_notification, ('success', 'Auto-mapped 19 bones with 100% confidence'))
        self.assertEqual(self.manager.get_bone_mapping()[PREFIX + 'LeftHand'], 'LeftHand')

    def test_auto_map_low_confidence_warns(self):
        bones = HUMANOID_BONES[:13]
        target = Skeleton.from_hierarchy([b[0] for b in bones], [b[1] for b in bones],
                                         positions=[b[2] for b in bones])
        self.load_models(target_model(target))

        self.manager.auto_map_bones()

        self.assertEqual(self.last_notification, ('warning', 'Auto-mapped 13 bones with 68% confidence'))

    def test_auto_map_without_models(self):
        self.assertIsNone(self.manager.auto_map_bones())
        self.assertEqual(self.last_notification, ('error', 'Please load both source and target models'))

    def test_manual_mapping(self):
        self.assertFalse(self.manager.add_manual_mapping('', 'Hips'))
        self.assertEqual(self.last_notification[0], 'warning')

        self.assertTrue(self.manager.add_manual_mapping(PREFIX + 'Hips', 'Hips'))
        self.assertEqual(self.manager.get_mapping_info()['count'], 1)

        self.assertTrue(self.manager.remove_mapping(PREFIX + 'Hips'))
        self.assertFalse(self.manager.remove_mapping(PREFIX + 'Hips'))

        self.manager.add_manual_mapping(PREFIX + 'Hips', 'Hips')
        self.manager.clear_mappings()
        self.assertEqual(self.manager.get_bone_mapping(), {})

    def test_save_and_load_mapping(self):
        self.load_models()
        self.manager.auto_map_bones()
        self.assertTrue(self.manager.save_bone_mapping('mixamo to hero').ok)
        self.assertEqual(self.manager.list_bone_mappings(), ['mixamo to hero'])

        self.manager.clear_mappings()
        result = self.manager.load_bone_mapping('mixamo to hero')

        self.assertTrue(result.ok)
        self.assertEqual(len(self.manager.get_bone_mapping()), 19)
        self.assertEqual(self.last_notification, ('success', "Loaded bone mapping 'mixamo to hero'"))

        self.assertTrue(self.manager.delete_bone_mapping('mixamo to hero').ok)
        self.assertEqual(self.manager.list_bone_mappings(), [])

    def test_load_mapping_with_missing_bones(self):
        self.manager.add_manual_mapping(PREFIX + 'Hips', 'Hips')
        self.manager.add_manual_mapping(PREFIX + 'Tail', 'Tail')
        self.manager.save_bone_mapping('with tail')

        self.load_models()
        result = self.manager.load_bone_mapping('with tail')

        self.assertEqual(result.value.missing_bones, [PREFIX + 'Tail', 'Tail'])
        self.assertEqual(self.manager.get_bone_mapping(), {PREFIX + 'Hips': 'Hips'})
        self.assertEqual(self.last_notification[0], 'warning')

    def test_load_unknown_mapping(self):
        self.assertFalse(self.manager.load_bone_mapping('nothing').ok)
        self.assertEqual(self.last_notification[0], 'error')


class TestAnalysis(ManagerTestCase):
    """Test the analysis helpers."""

    def test_without_models(self):
        self.assertIsNone(self.manager.verify_bone_compatibility())
        self.assertEqual(self.manager.build_bone_tree(), [])
        self.assertFalse(self.manager.validate_retargeting_poses().valid)

    def test_compatibility_and_tree(self):
        self.load_models()
        report = self.manager.verify_bone_compatibility()
        self.assertFalse(report.compatible)
        self.assertEqual(report.match_percentage, 0)

        self.manager.auto_map_bones()
        roots = self.manager.build_bone_tree(is_source=False)
        self.assertEqual(roots[0].name, 'Hips')
        self.assertTrue(roots[0].mapped)


class TestRetargeting(ManagerTestCase):
    """Test retargeting through the manager."""

    def test_retarget_animation(self):
        self.load_models()
        self.manager.auto_map_bones()
        before = len(self.host.notifications)

        result = self.manager.retarget_animation(walk_clip(PREFIX))

        self.assertEqual(result.name, 'Walk_retargeted')
        self.assertEqual(result.track_names,
                         ['Hips.rotation', 'Spine.rotation', 'LeftArm.rotation', 'Hips.position'])
        self.assertEqual(self.host.notifications[before:],
                         [('success', 'Successfully retargeted animation: Walk (4 tracks)')])

    def test_initialize_reports_pose_detection(self):
        self.load_models()
        self.manager.auto_map_bones()
        before = len(self.host.notifications)

        self.manager.initialize_retargeting()

        self.assertEqual(self.host.notifications[before:],
                         [('info', 'Pose detection: source is T-pose, target is T-pose')])

    def test_requires_models(self):
        self.assertIsNone(self.manager.retarget_animation(walk_clip(PREFIX)))
        self.assertEqual(self.last_notification, ('error', 'Please load both source and target models'))
        with self.assertRaises(InvalidInputError):
            self.manager.initialize_retargeting()

    def test_requires_mapping(self):
        self.load_models()
        self.assertIsNone(self.manager.retarget_animation(walk_clip(PREFIX)))
        self.assertEqual(self.last_notification,
                         ('error', 'No bone mappings defined. Use auto-map or manual mapping.'))

    def test_nothing_retargeted(self):
        self.load_models()
        self.manager.add_manual_mapping(PREFIX + 'Head', 'Head')
        self.assertIsNone(self.manager.retarget_animation(walk_clip(PREFIX)))
        self.assertEqual(self.last_notification, ('warning', 'No tracks were retargeted'))

    def test_pose_mismatch(self):
        self.load_models(target_model(humanoid_skeleton(arms_down=True)))
        self.manager.auto_map_bones()

        with self.assertRaises(PoseMismatchError):
            self.manager.initialize_retargeting()
        self.assertTrue(self.last_notification[1].startswith('Pose mismatch:'))

        self.assertIsNone(self.manager.retarget_animation(walk_clip(PREFIX)))
        self.assertEqual(self.last_notification[0], 'error')
        self.assertTrue(self.last_notification[1].startswith('Retargeting failed:'))

    def test_auto_apply_t_pose(self):
        self.load_models(target_model(humanoid_skeleton(arms_down=True)))
        self.manager.auto_map_bones()
        self.manager.set_retarget_options({'autoApplyTPose': True})

        self.manager.initialize_retargeting()

        self.assertIn(('success', 'Applied T-pose normalization'), self.host.notifications)
        self.assertIsNotNone(self.manager.retarget_animation(walk_clip(PREFIX)))

    def test_animation_only_source(self):
        self.manager.set_source_model(ParsedModel(name='anim_only', clips=[walk_clip(PREFIX)]))
        self.manager.set_target_model(target_model())
        self.manager.auto_map_bones()

        result = self.manager.retarget_animation(walk_clip(PREFIX))

        self.assertEqual(result.find_track('LeftArm.rotation').key_count, 3)

    def test_retarget_all(self):
        self.load_models()
        self.manager.auto_map_bones()

        results = self.manager.retarget_all_animations([walk_clip(PREFIX), AnimationClip('Empty')])

        self.assertEqual([c.name for c in results], ['Walk_retargeted'])
        self.assertEqual(self.last_notification, ('success', 'Retargeted 1 of 2 animations'))

    def test_retarget_all_notifies_once(self):
        self.load_models()
        self.manager.auto_map_bones()
        before = len(self.host.notifications)
        clips = [walk_clip(PREFIX, name) for name in ('Walk', 'Run', 'Jump')]

        results = self.manager.retarget_all_animations(clips)

        self.assertEqual(len(results), 3)
        self.assertEqual(self.host.notifications[before:], [('success', 'Retargeted 3 of 3 animations')])

    def test_retarget_all_failure_notifies_once(self):
        self.load_models(target_model(humanoid_skeleton(arms_down=True)))
        self.manager.auto_map_bones()
        before = len(self.host.notifications)

        results = self.manager.retarget_all_animations([walk_clip(PREFIX), walk_clip(PREFIX, 'Run')])

        self.assertEqual(results, [])
        self.assertEqual(self.host.notifications[before:], [('warning', 'Retargeted 0 of 2 animations')])

    def test_armless_source_skeleton_is_pose_checked(self):
        armless = Skeleton.from_hierarchy([PREFIX + 'Hips', PREFIX + 'Spine', PREFIX + 'Head'], [-1, 0, 1],
                                          positions=[[0, 1, 0], [0, 0.2, 0], [0, 0.5, 0]])
        self.manager.set_source_model(ParsedModel(name='armless', skeleton=armless, clips=[walk_clip(PREFIX)]))
        self.manager.set_target_model(target_model())
        self.manager.auto_map_bones()

        with self.assertRaises(PoseMismatchError):
            self.manager.initialize_retargeting()

    def test_new_model_resets_engine(self):
        self.load_models()
        self.manager.auto_map_bones()
        self.manager.initialize_retargeting()
        self.assertTrue(self.manager.engine.is_initialized)

        self.manager.set_target_model(target_model())
        self.assertFalse(self.manager.engine.is_initialized)

    def test_coordinate_correction_toggle(self):
        self.load_models()
        self.manager.set_coordinate_correction(True)
        self.assertTrue(self.manager.options.apply_coordinate_correction)
        self.assertTrue(self.manager.engine.apply_coordinate_correction)
        np.testing.assert_allclose(self.manager.engine.coordinate_correction_rotation, [0, 0, 0, 1])

    def test_diagnostics(self):
        self.load_models()
        self.manager.add_manual_mapping(PREFIX + 'Hips', 'Hips')
        self.manager.retarget_animation(walk_clip(PREFIX))
        self.assertEqual(len(self.manager.diagnostics), 2)


if __name__ == '__main__':
    unittest.main()
