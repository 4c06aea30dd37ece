"""
Tests for project archives, texture helpers and frame export.
"""

import io
import json
import shutil
import tempfile
import unittest
import zipfile
from pathlib import Path

import numpy as np
from PIL import Image

from retargetkit.common import PROJECT_VERSION
from retargetkit.exceptions import ErrorKind, InvalidInputError, ProjectIOError
from retargetkit.mapping.service import BoneMap
from retargetkit.project import frames, textures
from retargetkit.project.archive import (
    ProjectArchive,
    TextureFile,
    deserialize_project,
    is_compatible_version,
    project_metadata,
    validate_project_data,
)
from retargetkit.retargeter.engine import RetargetOptions
from retargetkit.skeleton.analyzer import RigFamily

from skeleton_fixtures import walk_clip


def png_bytes(size=(4, 2), color='red', mode='RGB'):
    buffer = io.BytesIO()
    Image.new(mode, size, color).save(buffer, format='PNG')
    return buffer.getvalue()


class ProjectTestCase(unittest.TestCase):

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        self.archive = ProjectArchive()

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)


class TestProjectArchive(ProjectTestCase):
    """Test saving and loading project zips."""

    def setUp(self):
        super().setUp()
        normal_path = self.temp_dir / 'normal.png'
        normal_path.write_bytes(png_bytes((8, 8), 'blue'))
        self.textures = [
            TextureFile(png_bytes(), 'hero_albedo.png', 'mat-1', 'map', 'Skin'),
            TextureFile(normal_path, 'hero_normal.png', 'mat-1', 'normalMap'),
        ]
        self.mappings = {'Mixamo to hero': BoneMap({'mixamorig:Hips': 'Hips'}, 1.0, RigFamily.MIXAMO,
                                                   RigFamily.HUMANOID)}
        self.path = self.temp_dir / 'projects' / 'hero.zip'

    def save(self, **kwargs):
        args = dict(
            model_name='hero.glb',
            model_bytes=b'glTF model data',
            clips=[walk_clip()],
            textures=self.textures,
            bone_mappings=self.mappings,
            options=RetargetOptions(preserve_root_motion=False),
            model_transform={'position': (0, 1, 0)},
        )
        args.update(kwargs)
        return self.archive.save(self.path, **args)

    def test_save_layout(self):
        result = self.save()
        self.assertTrue(result.ok)
        self.assertEqual(result.value, self.path)

        with zipfile.ZipFile(self.path) as archive:
            names = set(archive.namelist())
            data = json.loads(archive.read('project.json'))

        self.assertEqual(names, {
            'project.json',
            'model/hero.glb',
            'textures/hero_albedo.png',
            'textures/hero_normal.png',
            'bone-mappings/Mixamo_to_hero.json',
        })
        self.assertEqual(data['version'], PROJECT_VERSION)
        self.assertEqual(data['model']['extension'], 'glb')
        self.assertEqual(data['model']['position'], {'x': 0.0, 'y': 1.0, 'z': 0.0})
        self.assertFalse(data['retargetOptions']['preserveRootMotion'])

    def test_material_table(self):
        self.save()
        project = self.archive.load(self.path).unwrap()

        self.assertEqual(len(project.materials), 1)
        material = project.materials[0]
        self.assertEqual(material['uuid'], 'mat-1')
        self.assertEqual(material['name'], 'Skin')
        albedo, normal = material['textures']
        self.assertEqual(albedo['label'], 'Albedo/Diffuse')
        self.assertEqual(albedo['path'], 'textures/hero_albedo.png')
        self.assertIsNone(albedo['source'])
        self.assertEqual(albedo['metadata'], {'width': 4, 'height': 2, 'format': 'PNG', 'mode': 'RGB'})
        self.assertEqual(normal['metadata']['width'], 8)

    def test_roundtrip(self):
        self.save()
        result = self.archive.load(self.path)

        self.assertTrue(result.ok)
        project = result.value
        self.assertEqual(project.model_name, 'hero.glb')
        self.assertEqual(project.model_bytes, b'glTF model data')
        self.assertEqual([c.name for c in project.clips], ['Walk'])
        np.testing.assert_allclose(project.clips[0].tracks[2].values, walk_clip().tracks[2].values)
        self.assertEqual(sorted(project.textures), ['hero_albedo.png', 'hero_normal.png'])
        self.assertEqual(project.bone_mappings['Mixamo to hero'].entries, {'mixamorig:Hips': 'Hips'})
        self.assertFalse(project.options.preserve_root_motion)
        self.assertTrue(project.scene['gridVisible'])

    def test_extract_textures(self):
        self.save()
        project = self.archive.load(self.path).value
        written = project.extract_textures(self.temp_dir / 'out')

        self.assertEqual(sorted(p.name for p in written), ['hero_albedo.png', 'hero_normal.png'])
        with Image.open(self.temp_dir / 'out' / 'hero_albedo.png') as img:
            self.assertEqual(img.size, (4, 2))

    def test_custom_scene(self):
        self.save(scene={'backgroundColor': '#ffffff'}, textures=(), bone_mappings=None, options=None)
        project = self.archive.load(self.path).value
        self.assertEqual(project.scene, {'backgroundColor': '#ffffff'})
        self.assertIsNone(project.options)
        self.assertEqual(project.materials, [])

    def test_save_failures(self):
        result = self.save(model_name='hero.obj')
        self.assertFalse(result.ok)
        self.assertEqual(result.kind, ErrorKind.INVALID_INPUT)

        self.assertEqual(self.save(model_name='').kind, ErrorKind.INVALID_INPUT)

        bad = [TextureFile(b'not an image', 'bad.png', 'mat-1')]
        self.assertEqual(self.save(textures=bad).kind, ErrorKind.INVALID_INPUT)
        self.assertFalse(self.path.exists())

    def test_load_failures(self):
        self.assertEqual(self.archive.load(self.temp_dir / 'missing.zip').kind, ErrorKind.IO)

        not_zip = self.temp_dir / 'not.zip'
        not_zip.write_bytes(b'plain text')
        self.assertEqual(self.archive.load(not_zip).kind, ErrorKind.IO)

        empty = self.temp_dir / 'empty.zip'
        with zipfile.ZipFile(empty, 'w') as archive:
            archive.writestr('readme.txt', 'nothing here')
        self.assertEqual(self.archive.load(empty).kind, ErrorKind.IO)

        broken = self.temp_dir / 'broken.zip'
        with zipfile.ZipFile(broken, 'w') as archive:
            archive.writestr('project.json', '{not json')
        self.assertEqual(self.archive.load(broken).kind, ErrorKind.IO)

    def test_load_invalid_project_data(self):
        path = self.temp_dir / 'old.zip'
        with zipfile.ZipFile(path, 'w') as archive:
            archive.writestr('project.json', json.dumps({'model': {'name': 'a.glb', 'extension': 'glb'}}))
        result = self.archive.load(path)
        self.assertEqual(result.kind, ErrorKind.INVALID_INPUT)
        with self.assertRaises(InvalidInputError):
            result.unwrap()

    def write_archive(self, name, data, extra=None):
        path = self.temp_dir / name
        with zipfile.ZipFile(path, 'w') as archive:
            archive.writestr('project.json', json.dumps(data))
            archive.writestr('model/a.glb', b'glTF')
            for member, payload in (extra or {}).items():
                archive.writestr(member, payload)
        return path

    def test_load_bad_retarget_options(self):
        data = {'version': PROJECT_VERSION, 'model': {'name': 'a.glb', 'extension': 'glb'},
                'retargetOptions': {'srcPoseMode': 'bogus'}}
        result = self.archive.load(self.write_archive('options.zip', data))
        self.assertFalse(result.ok)
        self.assertEqual(result.kind, ErrorKind.INVALID_INPUT)

    def test_load_skips_malformed_mapping(self):
        data = {'version': PROJECT_VERSION, 'model': {'name': 'a.glb', 'extension': 'glb'}}
        good = json.dumps({'name': 'good', 'mapping': {'mixamorig:Hips': 'Hips'}})
        path = self.write_archive('mappings.zip', data, {
            'bone-mappings/a.json': json.dumps([1, 2]),
            'bone-mappings/good.json': good,
        })

        result = self.archive.load(path)

        self.assertTrue(result.ok)
        self.assertEqual(list(result.value.bone_mappings), ['good'])
        self.assertEqual(result.value.bone_mappings['good'].entries, {'mixamorig:Hips': 'Hips'})

    def test_model_name_with_separators(self):
        result = self.save(model_name='assets/hero.glb')
        self.assertTrue(result.ok)

        with zipfile.ZipFile(self.path) as archive:
            names = archive.namelist()
            model = json.loads(archive.read('project.json'))['model']
        self.assertIn('model/assets_hero.glb', names)
        self.assertNotIn('model/assets/hero.glb', names)
        self.assertEqual(model['fileName'], 'assets_hero.glb')

        project = self.archive.load(self.path).unwrap()
        self.assertEqual(project.model_name, 'assets/hero.glb')
        self.assertEqual(project.model_bytes, b'glTF model data')

    def test_missing_model_file(self):
        path = self.temp_dir / 'nomodel.zip'
        data = {'version': PROJECT_VERSION, 'model': {'name': 'a.glb', 'extension': 'glb'}}
        with zipfile.ZipFile(path, 'w') as archive:
            archive.writestr('project.json', json.dumps(data))
        self.assertEqual(self.archive.load(path).kind, ErrorKind.IO)


class TestProjectData(unittest.TestCase):
    """Test project.json validation and helpers."""

    def setUp(self):
        self.data = {'version': PROJECT_VERSION, 'model': {'name': 'hero.glb', 'extension': 'glb'}}

    def assert_invalid(self, data, message):
        with self.assertRaises(InvalidInputError) as ctx:
            validate_project_data(data)
        self.assertEqual(str(ctx.exception), message)

    def test_validation_messages(self):
        self.assert_invalid(None, "Project data is required")
        self.assert_invalid({'model': self.data['model']}, "Project version is missing")
        self.assert_invalid({'version': '1.0.0'}, "Model data is required")
        self.assert_invalid({'version': '1.0.0', 'model': {'extension': 'glb'}}, "Model name/fileName is required")
        self.assert_invalid({'version': '1.0.0', 'model': {'name': 'hero'}}, "Model extension is required")
        self.assert_invalid({'version': '1.0.0', 'model': {'name': 'a.obj', 'extension': 'obj'}},
                            "Unsupported model format: obj")
        self.assert_invalid(dict(self.data, animations={}), "Animations must be an array")
        self.assert_invalid(dict(self.data, materials='none'), "Materials must be an array")
        self.assertTrue(validate_project_data(self.data))

    def test_deserialize_fills_defaults(self):
        project = deserialize_project(self.data)
        self.assertEqual(project['animations'], [])
        self.assertEqual(project['materials'], [])
        self.assertEqual(project['scene']['backgroundColor'], '#1a1a1a')
        self.assertIsNone(project['retargetOptions'])

    def test_metadata(self):
        data = dict(self.data, materials=[{'uuid': 'm', 'textures': [{'key': 'map'}]}], animations=[{}, {}])
        metadata = project_metadata(data)
        self.assertEqual(metadata['modelName'], 'hero.glb')
        self.assertEqual(metadata['modelFormat'], 'glb')
        self.assertEqual(metadata['animationCount'], 2)
        self.assertTrue(metadata['hasTextures'])
        self.assertFalse(project_metadata(self.data)['hasTextures'])

    def test_version_check(self):
        self.assertTrue(is_compatible_version(self.data))
        self.assertFalse(is_compatible_version({'version': '0.1.0'}))
        self.assertFalse(is_compatible_version(None))


class TestTextures(ProjectTestCase):
    """Test texture slot helpers and metadata."""

    def test_slot_info(self):
        self.assertEqual(textures.texture_slot_info('normalMap'), {'label': 'Normal Map', 'shortLabel': 'Normal'})
        self.assertEqual(textures.texture_slot_info('sheenMap'), {'label': 'sheenMap', 'shortLabel': 'sheenMap'})
        self.assertTrue(textures.is_valid_texture_slot('aoMap'))
        self.assertFalse(textures.is_valid_texture_slot('sheenMap'))

    def test_types_and_formats(self):
        self.assertTrue(textures.is_valid_texture_type('.PNG'))
        self.assertTrue(textures.is_valid_texture_type('tga'))
        self.assertFalse(textures.is_valid_texture_type('psd'))
        self.assertEqual(textures.recommended_format('map'), 'jpg')
        self.assertEqual(textures.recommended_format('normalMap'), 'png')
        self.assertEqual(textures.recommended_format('sheenMap'), 'png')
        self.assertTrue(textures.uses_linear_color_space('roughnessMap'))
        self.assertFalse(textures.uses_linear_color_space('map'))

    def test_metadata(self):
        metadata = textures.read_texture_metadata(png_bytes((3, 5), mode='RGBA'))
        self.assertEqual((metadata.width, metadata.height), (3, 5))
        self.assertEqual(metadata.format, 'PNG')
        self.assertEqual(metadata.mode, 'RGBA')

        with self.assertRaises(ProjectIOError):
            textures.read_texture_metadata(b'junk')
        with self.assertRaises(ProjectIOError):
            textures.read_texture_metadata(self.temp_dir / 'missing.png')

    def test_save_texture(self):
        path = textures.save_texture(png_bytes(), self.temp_dir / 'tex' / 'albedo.png')
        self.assertTrue(path.exists())
        self.assertIsNone(textures.save_texture(b'', self.temp_dir / 'empty.png'))


class TestFrameExport(ProjectTestCase):
    """Test the frame helpers and FrameExporter."""

    def render(self, t):
        self.rendered.append(t)
        return np.full((10, 20, 3), int(t * 100), dtype=np.uint8)

    def setUp(self):
        super().setUp()
        self.rendered = []

    def test_helpers(self):
        self.assertEqual(frames.export_frame_count(1.0, 24), 24)
        self.assertAlmostEqual(frames.export_frame_time(12, 24), 0.5)
        self.assertEqual(frames.frame_filename(5), 'frame_005.png')
        self.assertEqual(frames.frame_filename(12, 'jpg', 4), 'frame_0012.jpg')
        self.assertEqual(frames.export_progress(0, 0), 0.0)
        self.assertEqual(frames.export_progress(5, 20), 25.0)
        self.assertEqual(frames.estimate_remaining_time(1000, 10, 30), 2)
        self.assertEqual(frames.estimate_remaining_time(1000, 0, 30), 0)

    def test_helper_errors(self):
        with self.assertRaises(InvalidInputError):
            frames.export_frame_count(1.0, 0)
        with self.assertRaises(InvalidInputError):
            frames.export_frame_count(-1.0, 24)
        with self.assertRaises(InvalidInputError):
            frames.export_frame_time(-1, 24)
        with self.assertRaises(InvalidInputError):
            frames.frame_filename(-1)

    def test_to_image(self):
        self.assertEqual(frames.to_image(png_bytes()).size, (4, 2))
        image = frames.to_image(np.full((2, 3, 3), 300.0))
        self.assertEqual(image.getpixel((0, 0)), (255, 255, 255))

    def test_invalid_exporter(self):
        with self.assertRaises(InvalidInputError):
            frames.FrameExporter(self.render, 0, 10)
        with self.assertRaises(InvalidInputError):
            frames.FrameExporter(self.render, 10, 10, fps=0)

    def test_export(self):
        progress = []
        exporter = frames.FrameExporter(self.render, 8, 6, fps=4)

        written = exporter.export(1.0, self.temp_dir / 'frames', lambda i, n: progress.append((i, n)))

        self.assertEqual([p.name for p in written],
                         ['frame_000.png', 'frame_001.png', 'frame_002.png', 'frame_003.png'])
        self.assertEqual(self.rendered, [0.0, 0.25, 0.5, 0.75])
        self.assertEqual(progress, [(1, 4), (2, 4), (3, 4), (4, 4)])
        with Image.open(written[2]) as img:
            self.assertEqual(img.size, (8, 6))
            self.assertEqual(img.getpixel((0, 0)), (50, 50, 50))

    def test_jpg_drops_alpha(self):
        exporter = frames.FrameExporter(lambda t: np.zeros((6, 8, 4), dtype=np.uint8), 8, 6, fps=2,
                                        image_format='JPG')
        written = exporter.export(1.0, self.temp_dir)
        self.assertEqual([p.suffix for p in written], ['.jpg', '.jpg'])
        with Image.open(written[0]) as img:
            self.assertEqual(img.mode, 'RGB')

    def test_cancel(self):
        def render(t):
            if t > 0:
                exporter.cancel()
            return self.render(t)

        exporter = frames.FrameExporter(render, 20, 10, fps=10)
        written = exporter.export(1.0, self.temp_dir)
        self.assertEqual(len(written), 2)
        self.assertTrue(exporter.cancelled)


if __name__ == '__main__':
    unittest.main()
