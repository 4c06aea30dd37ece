"""
Tests for GLB export and loading.

Files are written with export_clips and read back with load_model, so
every test exercises both directions.
"""

import io
import json
import shutil
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path

import numpy as np

from retargetkit.animation.clip import AnimationClip, Interpolation, VectorTrack
from retargetkit.exceptions import ExporterWarning, GLBParseError, InvalidInputError
from retargetkit.exporter.clip_exporter import export_clips, skeleton_to_gltf
from retargetkit.importer.glb.loader import load_model, load_model_bytes
from retargetkit.utils import inspect_rig
from retargetkit.utils.quaternion import compose_matrix, quat_from_axis_angle

from skeleton_fixtures import BONE_NAMES, assert_quat_close, humanoid_skeleton, rotation_track, walk_clip


class GLBTestCase(unittest.TestCase):

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def export(self, name, clips, **kwargs):
        return export_clips(clips, self.temp_dir / name, **kwargs)


class TestSkeletonDocument(unittest.TestCase):
    """Test the bare armature document."""

    def test_nodes_and_skin(self):
        skeleton = humanoid_skeleton()
        gltf = skeleton_to_gltf(skeleton)

        self.assertEqual(gltf.nodes[0].name, 'Armature')
        self.assertEqual(gltf.nodes[0].children, [1])
        self.assertEqual([n.name for n in gltf.nodes[1:]], list(BONE_NAMES))
        self.assertEqual(gltf.nodes[1].children, [2, 14, 17])
        self.assertEqual(gltf.skins[0].joints, list(range(1, 20)))
        self.assertEqual(gltf.accessors[gltf.skins[0].inverseBindMatrices].count, 19)
        self.assertEqual(gltf.buffers[0].byteLength % 4, 0)


class TestRoundTrip(GLBTestCase):
    """Test writing clips and loading them back."""

    def setUp(self):
        super().setUp()
        tilt = quat_from_axis_angle([1, 0, 0], -np.pi / 2)
        self.root_transform = compose_matrix([0.0, 0.0, 0.5], tilt, [0.01, 0.01, 0.01])
        self.skeleton = humanoid_skeleton(a_pose=True, root_transform=self.root_transform)
        self.path = self.export('walk.glb', [walk_clip()], skeleton=self.skeleton)

    def test_skeleton(self):
        model = load_model(self.path)

        self.assertEqual(model.name, 'walk')
        self.assertEqual(model.up_axis, 'Y')
        self.assertEqual(model.root_name, 'Hips')
        skeleton = model.skeleton
        self.assertEqual(skeleton.bone_names, list(BONE_NAMES))
        np.testing.assert_array_equal(skeleton.parent_indices, self.skeleton.parent_indices)
        np.testing.assert_allclose(skeleton.root_transform, self.root_transform, atol=1e-9)

        for loaded, original in zip(skeleton, self.skeleton):
            with self.subTest(bone=original.name):
                np.testing.assert_allclose(loaded.position, original.position, atol=1e-6)
                assert_quat_close(self, loaded.rotation, original.rotation)

    def test_inverse_bind_matrices(self):
        skeleton = load_model(self.path).skeleton
        self.assertTrue(skeleton.has_inverse_bind_matrices())
        arm = skeleton.index_of('LeftArm')
        expected = np.linalg.inv(self.skeleton.world_matrices[arm])
        np.testing.assert_allclose(skeleton[arm].inverse_bind_matrix, expected, atol=1e-5)

    def test_clips(self):
        clip = load_model(self.path).clips[0]
        original = walk_clip()

        self.assertEqual(clip.name, 'Walk')
        self.assertAlmostEqual(clip.duration, 1.0)
        self.assertEqual(clip.track_names, original.track_names)
        for loaded, track in zip(clip.tracks, original.tracks):
            np.testing.assert_allclose(loaded.times, track.times, atol=1e-6)
            np.testing.assert_allclose(loaded.values, track.values, atol=1e-6)

    def test_step_interpolation(self):
        track = VectorTrack('Hips.position', [0.0, 0.5], [0, 1, 0, 0, 1, 1], Interpolation.STEP)
        path = self.export('step.glb', [AnimationClip('Hop', None, [track])], skeleton=self.skeleton)
        loaded = load_model(path).clips[0].tracks[0]
        self.assertEqual(loaded.interpolation, Interpolation.STEP)

    def test_load_from_bytes(self):
        model = load_model_bytes(self.path.read_bytes(), name='hero')
        self.assertEqual(model.name, 'hero')
        self.assertEqual(len(model.skeleton), 19)
        self.assertEqual(len(model.clips), 1)
        self.assertIsNone(model.source_path)


class TestExportIntoTarget(GLBTestCase):
    """Test adding clips to an existing file."""

    def setUp(self):
        super().setUp()
        self.target = self.export('hero.glb', [walk_clip()], skeleton=humanoid_skeleton())

    def test_replace_existing(self):
        path = self.export('out.glb', [walk_clip(name='Run')], target_path=self.target)
        model = load_model(path)
        self.assertEqual([c.name for c in model.clips], ['Run'])
        self.assertEqual(len(model.skeleton), 19)

    def test_keep_existing(self):
        path = self.export('out.glb', [walk_clip(name='Run')], target_path=self.target,
                           replace_existing=False)
        model = load_model(path)
        self.assertEqual([c.name for c in model.clips], ['Walk', 'Run'])
        np.testing.assert_allclose(model.clips[0].tracks[0].values, walk_clip().tracks[0].values, atol=1e-6)

    def test_unknown_nodes_skipped_with_warning(self):
        clip = AnimationClip('Wag', None, [rotation_track('Tail'), rotation_track('Spine')])
        with self.assertWarns(ExporterWarning):
            path = self.export('out.glb', [clip], target_path=self.target)
        self.assertEqual(load_model(path).clips[0].track_names, ['Spine.rotation'])

    def test_missing_inputs(self):
        with self.assertRaises(InvalidInputError):
            self.export('out.glb', [walk_clip()])
        with self.assertRaises(InvalidInputError):
            self.export('out.glb', [walk_clip()], target_path=self.temp_dir / 'missing.glb')


class TestLoadErrors(GLBTestCase):
    """Test load_model input checks."""

    def test_unsupported_extensions(self):
        with self.assertRaises(InvalidInputError):
            load_model(self.temp_dir / 'hero.obj')
        with self.assertRaises(InvalidInputError):
            load_model(self.temp_dir / 'hero.fbx')

    def test_missing_file(self):
        with self.assertRaises(GLBParseError):
            load_model(self.temp_dir / 'missing.glb')

    def test_garbage_bytes(self):
        with self.assertRaises(GLBParseError):
            load_model_bytes(b'not a glb file', name='junk')


class TestInspectRig(GLBTestCase):
    """Test the rig inspection tool."""

    def setUp(self):
        super().setUp()
        self.path = self.export('hero.glb', [walk_clip()], skeleton=humanoid_skeleton())

    def test_inspect_model(self):
        report = inspect_rig.inspect_model(load_model(self.path))
        self.assertTrue(report['hasSkeleton'])
        self.assertEqual(report['rigFamily'], 'humanoid')
        self.assertEqual(report['pose'], 'T-pose')
        self.assertEqual(report['hierarchy']['boneCount'], 19)
        self.assertEqual(report['bones'][1], {'name': 'Spine', 'parent': 'Hips'})
        self.assertEqual(report['clips'][0]['name'], 'Walk')

    def test_main_text(self):
        out = io.StringIO()
        with redirect_stdout(out):
            status = inspect_rig.main([str(self.path)])
        self.assertEqual(status, 0)
        self.assertIn('RIG INSPECTION: hero', out.getvalue())
        self.assertIn('Walk: 1.00s', out.getvalue())

    def test_main_json(self):
        out = io.StringIO()
        with redirect_stdout(out):
            status = inspect_rig.main([str(self.path), '--json'])
        self.assertEqual(status, 0)
        self.assertEqual(json.loads(out.getvalue())['name'], 'hero')

    def test_main_missing_file(self):
        err = io.StringIO()
        with redirect_stderr(err), redirect_stdout(io.StringIO()):
            status = inspect_rig.main([str(self.temp_dir / 'missing.glb')])
        self.assertEqual(status, 1)
        self.assertIn('File not found', err.getvalue())


if __name__ == '__main__':
    unittest.main()
