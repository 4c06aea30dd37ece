"""
Unit tests for bone mapping and mapping persistence.
"""

import json
import shutil
import tempfile
import unittest
from pathlib import Path

from retargetkit.exceptions import ErrorKind, InvalidInputError
from retargetkit.mapping.service import (
    AddMapping,
    BoneMap,
    BoneMappingService,
    ClearMappings,
    RemoveMapping,
    SetMapping,
)
from retargetkit.mapping.store import BoneMappingStore, find_missing_bones
from retargetkit.skeleton.analyzer import RigFamily

from skeleton_fixtures import BONE_NAMES

MIXAMO_NAMES = ['mixamorig:' + n for n in BONE_NAMES]

UE_NAMES = [
    'pelvis', 'spine_01', 'spine_02', 'neck_01', 'head',
    'clavicle_l', 'upperarm_l', 'lowerarm_l', 'hand_l',
    'clavicle_r', 'upperarm_r', 'lowerarm_r', 'hand_r',
    'thigh_l', 'calf_l', 'foot_l',
    'thigh_r', 'calf_r', 'foot_r',
]


class TestAutomaticMapping(unittest.TestCase):
    """Test name-based automatic mapping."""

    def setUp(self):
        self.service = BoneMappingService()

    def test_mixamo_to_plain(self):
        """Namespaced bones map onto the same names without namespace."""
        bone_map = self.service.generate_automatic_mapping(MIXAMO_NAMES, list(BONE_NAMES))
        self.assertEqual(len(bone_map), 19)
        self.assertEqual(bone_map.get('mixamorig:Hips'), 'Hips')
        self.assertEqual(bone_map.get('mixamorig:LeftForeArm'), 'LeftForeArm')
        self.assertAlmostEqual(bone_map.confidence, 1.0)
        self.assertEqual(bone_map.source_rig, RigFamily.MIXAMO)
        self.assertEqual(bone_map.target_rig, RigFamily.HUMANOID)

    def test_mixamo_to_unreal(self):
        """Synonyms (pelvis, upperarm, calf...) bridge naming conventions."""
        bone_map = self.service.generate_automatic_mapping(MIXAMO_NAMES, UE_NAMES)
        expected = {
            'mixamorig:Hips': 'pelvis',
            'mixamorig:Spine': 'spine_01',
            'mixamorig:Spine1': 'spine_02',
            'mixamorig:Neck': 'neck_01',
            'mixamorig:LeftShoulder': 'clavicle_l',
            'mixamorig:LeftArm': 'upperarm_l',
            'mixamorig:LeftForeArm': 'lowerarm_l',
            'mixamorig:RightHand': 'hand_r',
            'mixamorig:LeftUpLeg': 'thigh_l',
            'mixamorig:RightLeg': 'calf_r',
            'mixamorig:RightFoot': 'foot_r',
        }
        for source, target in expected.items():
            with self.subTest(source=source):
                self.assertEqual(bone_map.get(source), target)
        self.assertAlmostEqual(bone_map.confidence, 1.0)

    def test_partial_target_lowers_confidence(self):
        """Confidence is the share of source humanoid roles that found a target."""
        bone_map = self.service.generate_automatic_mapping(MIXAMO_NAMES, list(BONE_NAMES[:13]))
        self.assertEqual(len(bone_map), 13)
        self.assertAlmostEqual(bone_map.confidence, 13 / 19)

    def test_targets_claimed_once(self):
        bone_map = self.service.generate_automatic_mapping(['Hips', 'pelvis'], ['Hips'])
        self.assertEqual(len(bone_map), 1)
        self.assertEqual(bone_map.targets(), ['Hips'])

    def test_closest_position_wins(self):
        """Among targets with the same key the one nearest in list order is used."""
        bone_map = self.service.generate_automatic_mapping(['Hips', 'Spine'], ['pelvis', 'Spine', 'Hips'])
        self.assertEqual(bone_map.get('Hips'), 'pelvis')
        self.assertEqual(bone_map.get('Spine'), 'Spine')

    def test_non_humanoid_bones_match_by_name(self):
        bone_map = self.service.generate_automatic_mapping(['Hips', 'Tail_01'], ['Hips', 'tail01'])
        self.assertEqual(bone_map.get('Tail_01'), 'tail01')

    def test_fingers_are_optional(self):
        names = ['Hips', 'LeftHand', 'LeftHandIndex1', 'LeftHandIndex2']
        without = self.service.generate_automatic_mapping(names, names)
        self.assertNotIn('LeftHandIndex1', without)

        with_fingers = self.service.generate_automatic_mapping(names, names, include_hand_fingers=True)
        self.assertEqual(with_fingers.get('LeftHandIndex1'), 'LeftHandIndex1')
        self.assertEqual(with_fingers.get('LeftHandIndex2'), 'LeftHandIndex2')

    def test_unrecognized_rigs_give_empty_map(self):
        bone_map = self.service.generate_automatic_mapping(['Joint1', 'Joint2'], ['Bone_A'])
        self.assertEqual(len(bone_map), 0)
        self.assertEqual(bone_map.confidence, 0.0)

    def test_auto_map_becomes_current(self):
        self.service.auto_map(MIXAMO_NAMES, list(BONE_NAMES))
        self.assertEqual(self.service.get_mapping()['mixamorig:Head'], 'Head')
        info = self.service.get_mapping_info()
        self.assertEqual(info['count'], 19)
        self.assertEqual(info['sourceRigType'], 'mixamo')
        self.assertEqual(info['quality'], 'good')


class TestMappingCommands(unittest.TestCase):
    """Test the mapping command bus."""

    def setUp(self):
        self.service = BoneMappingService()
        self.events = []
        self.unsubscribe = self.service.subscribe(lambda command, snapshot: self.events.append((command, snapshot)))

    def test_add_and_remove(self):
        self.service.execute(AddMapping('Hips', 'pelvis'))
        self.assertEqual(self.service.get_mapping(), {'Hips': 'pelvis'})
        self.assertTrue(self.service.execute(RemoveMapping('Hips')))
        self.assertFalse(self.service.execute(RemoveMapping('Hips')))
        self.assertEqual(self.service.get_mapping(), {})

    def test_listeners_get_snapshots(self):
        self.service.add_mapping('Hips', 'pelvis')
        command, snapshot = self.events[-1]
        self.assertIsInstance(command, AddMapping)
        self.assertEqual(snapshot.entries, {'Hips': 'pelvis'})

        # later changes do not leak into earlier snapshots
        self.service.add_mapping('Spine', 'spine_01')
        self.assertEqual(snapshot.entries, {'Hips': 'pelvis'})

    def test_unsubscribe(self):
        self.unsubscribe()
        self.service.add_mapping('Hips', 'pelvis')
        self.assertEqual(self.events, [])

    def test_empty_names_rejected(self):
        with self.assertRaises(InvalidInputError):
            self.service.execute(AddMapping('', 'pelvis'))
        with self.assertRaises(InvalidInputError):
            self.service.execute(AddMapping('Hips', '   '))

    def test_unknown_command_rejected(self):
        with self.assertRaises(InvalidInputError):
            self.service.execute("clear")

    def test_clear(self):
        self.service.add_mapping('Hips', 'pelvis')
        self.service.execute(ClearMappings())
        self.assertEqual(self.service.get_mapping(), {})
        self.assertEqual(len(self.events), 2)

    def test_set_mapping_skips_missing_bones(self):
        missing = self.service.execute(SetMapping(
            {'Hips': 'pelvis', 'Tail': 'spine_01', 'Spine': 'spine_09'},
            confidence=0.5,
            source_bones=['Hips', 'Spine'],
            target_bones=['pelvis', 'spine_01'],
        ))
        self.assertEqual(self.service.get_mapping(), {'Hips': 'pelvis'})
        self.assertEqual(missing, ['Tail', 'spine_09'])
        self.assertEqual(self.service.get_bone_map().confidence, 0.5)

    def test_get_mapping_returns_copy(self):
        self.service.add_mapping('Hips', 'pelvis')
        mapping = self.service.get_mapping()
        mapping['Spine'] = 'spine_01'
        self.assertNotIn('Spine', self.service.get_mapping())


class TestBoneMap(unittest.TestCase):
    """Test BoneMap serialization."""

    def test_dict_roundtrip(self):
        bone_map = BoneMap({'Hips': 'pelvis'}, 0.8, RigFamily.MIXAMO, RigFamily.UE5)
        restored = BoneMap.from_dict(bone_map.to_dict())
        self.assertEqual(restored.entries, {'Hips': 'pelvis'})
        self.assertEqual(restored.confidence, 0.8)
        self.assertEqual(restored.target_rig, RigFamily.UE5)

    def test_legacy_mapping_object(self):
        restored = BoneMap.from_dict({'mapping': {'Hips': 'pelvis', 'Spine': ''}, 'sourceRigType': 'odd'})
        self.assertEqual(restored.entries, {'Hips': 'pelvis'})
        self.assertEqual(restored.source_rig, RigFamily.CUSTOM)


class TestBoneMappingStore(unittest.TestCase):
    """Test named mapping persistence."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.store = BoneMappingStore(self.temp_dir)
        self.bone_map = BoneMap({'mixamorig:Hips': 'pelvis', 'mixamorig:Spine': 'spine_01'}, 1.0,
                                RigFamily.MIXAMO, RigFamily.UE4)

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_save_load(self):
        result = self.store.save('Mixamo to UE', self.bone_map)
        self.assertTrue(result.ok)
        self.assertEqual(Path(result.value).name, 'Mixamo_to_UE.json')

        loaded = self.store.load('Mixamo to UE').unwrap()
        self.assertEqual(loaded.name, 'Mixamo to UE')
        self.assertEqual(loaded.bone_map.entries, self.bone_map.entries)
        self.assertEqual(loaded.bone_map.source_rig, RigFamily.MIXAMO)
        self.assertIsNotNone(loaded.created_at)

    def test_saved_file_has_both_entry_forms(self):
        path = self.store.save('map', self.bone_map).value
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        self.assertEqual(data['mapping']['mixamorig:Hips'], 'pelvis')
        self.assertIn({'source': 'mixamorig:Hips', 'target': 'pelvis'}, data['entries'])

    def test_load_reports_missing_bones(self):
        self.store.save('map', self.bone_map)
        loaded = self.store.load('map', source_bones=['mixamorig:Hips'], target_bones=['pelvis']).value
        self.assertEqual(loaded.missing_bones, ['mixamorig:Spine', 'spine_01'])

    def test_load_unknown(self):
        result = self.store.load('nope')
        self.assertFalse(result.ok)
        self.assertEqual(result.kind, ErrorKind.IO)

    def test_empty_name(self):
        result = self.store.save('  ', self.bone_map)
        self.assertFalse(result.ok)
        self.assertEqual(result.kind, ErrorKind.INVALID_INPUT)
        with self.assertRaises(InvalidInputError):
            result.unwrap()

    def test_corrupt_file(self):
        Path(self.temp_dir, 'broken.json').write_text('{not json', encoding='utf-8')
        self.assertFalse(self.store.load('broken').ok)

        self.store.save('good', self.bone_map)
        self.assertEqual(self.store.list(), ['good'])

    def test_list_and_delete(self):
        self.store.save('b', self.bone_map)
        self.store.save('a', self.bone_map)
        self.assertEqual(self.store.list(), ['a', 'b'])

        self.assertTrue(self.store.delete('a').ok)
        self.assertEqual(self.store.list(), ['b'])
        self.assertFalse(self.store.delete('a').ok)

    def test_list_without_directory(self):
        store = BoneMappingStore(Path(self.temp_dir) / 'missing')
        self.assertEqual(store.list(), [])

    def test_find_missing_bones(self):
        missing = find_missing_bones(self.bone_map, target_bones=['pelvis'])
        self.assertEqual(missing, ['spine_01'])


if __name__ == '__main__':
    unittest.main()
