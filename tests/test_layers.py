"""Tests for layer storage."""

import tempfile
import unittest
from pathlib import Path

import tomlkit

from webops_buildpacks.errors import EnvironmentModeError, LayerCreationError
from webops_buildpacks.layers import LayerFlags, LayerStore, discover_layers


class TestLayerStore(unittest.TestCase):
    """Test cases for the LayerStore class."""

    def setUp(self) -> None:
        """Set up test fixtures."""
        self.temp_dir = tempfile.TemporaryDirectory()
        self.layers_dir = Path(self.temp_dir.name) / 'layers'
        self.store = LayerStore(self.layers_dir, 'dotnet-sdk')
        self.flags = LayerFlags(build=True, cache=True)

    def tearDown(self) -> None:
        """Clean up test fixtures."""
        self.temp_dir.cleanup()

    def test_acquire_creates_directory(self) -> None:
        """Test acquire creates directory."""
        layer = self.store.acquire('sdk', self.flags)
        self.assertTrue(layer.path.is_dir())
        self.assertEqual(layer.path, self.layers_dir / 'dotnet-sdk' / 'sdk')
        self.assertEqual(layer.toml_path, self.layers_dir / 'dotnet-sdk' / 'sdk.toml')

    def test_acquire_is_idempotent(self) -> None:
        """Test acquire is idempotent."""
        first = self.store.acquire('sdk', self.flags)
        self.store.write_metadata(first, 'version', '1')
        second = self.store.acquire('sdk', self.flags)
        self.assertIs(first, second)
        self.assertEqual(self.store.read_metadata(second, 'version'), '1')
        self.assertEqual(len(self.store.layers), 1)

    def test_acquire_with_other_flags_fails(self) -> None:
        """Test acquire with other flags fails."""
        self.store.acquire('sdk', self.flags)
        with self.assertRaises(LayerCreationError):
            self.store.acquire('sdk', LayerFlags(launch=True))

    def test_invalid_layer_name(self) -> None:
        """Test invalid layer name."""
        for name in ['', '../escape', 'a/b', '.hidden']:
            with self.subTest(name=name):
                with self.assertRaises(LayerCreationError):
                    self.store.acquire(name, self.flags)

    def test_storage_failure_raises_layer_creation_error(self) -> None:
        """Test storage failure raises layer creation error."""
        blocker = Path(self.temp_dir.name) / 'not-a-dir'
        blocker.write_text('')
        store = LayerStore(blocker, 'dotnet-sdk')
        with self.assertRaises(LayerCreationError) as cm:
            store.acquire('sdk', self.flags)
        self.assertIn("'sdk'", str(cm.exception))

    def test_metadata_absent_on_first_build(self) -> None:
        """Test metadata absent on first build."""
        layer = self.store.acquire('sdk', self.flags)
        self.assertIsNone(self.store.read_metadata(layer, 'version'))

    def test_flush_persists_metadata_and_types(self) -> None:
        """Test flush persists metadata and types."""
        layer = self.store.acquire('sdk', self.flags)
        self.store.write_metadata(layer, 'version', 'version:8.0.404,devMode:false')
        self.store.flush(layer)

        document = tomlkit.parse(layer.toml_path.read_text())
        self.assertEqual(document['metadata']['version'], 'version:8.0.404,devMode:false')
        self.assertTrue(document['types']['build'])
        self.assertTrue(document['types']['cache'])
        self.assertFalse(document['types']['launch'])

        reread = LayerStore(self.layers_dir, 'dotnet-sdk').acquire('sdk', self.flags)
        self.assertEqual(reread.metadata, {'version': 'version:8.0.404,devMode:false'})

    def test_metadata_is_not_written_before_flush(self) -> None:
        """Test metadata is not written before flush."""
        layer = self.store.acquire('sdk', self.flags)
        self.store.write_metadata(layer, 'version', '1')
        self.assertFalse(layer.toml_path.exists())

    def test_clear_removes_contents_and_metadata(self) -> None:
        """Test clear removes contents and metadata."""
        layer = self.store.acquire('sdk', self.flags)
        (layer.path / 'bin').mkdir()
        (layer.path / 'bin' / 'dotnet').write_text('binary')
        (layer.path / 'tracer').write_text('old')
        self.store.write_metadata(layer, 'version', '1')

        self.store.clear(layer)

        self.assertTrue(layer.path.is_dir())
        self.assertEqual(list(layer.path.iterdir()), [])
        self.assertEqual(layer.metadata, {})

    def test_clear_removes_persisted_record(self) -> None:
        """Test that clearing a layer drops the fingerprint of the previous build."""
        layer = self.store.acquire('sdk', self.flags)
        self.store.write_metadata(layer, 'version', 'version:8.0.404,devMode:false')
        self.store.flush(layer)

        store = LayerStore(self.layers_dir, 'dotnet-sdk')
        cleared = store.acquire('sdk', self.flags)
        store.clear(cleared)

        self.assertFalse(cleared.toml_path.exists())
        reread = LayerStore(self.layers_dir, 'dotnet-sdk').acquire('sdk', self.flags)
        self.assertIsNone(reread.metadata.get('version'))

    def test_non_cached_layer_starts_empty(self) -> None:
        """Test non cached layer starts empty."""
        flags = LayerFlags(launch=True)
        layer = self.store.acquire('app', flags)
        (layer.path / 'leftover').write_text('x')
        self.store.write_metadata(layer, 'version', '1')
        self.store.flush(layer)

        again = LayerStore(self.layers_dir, 'dotnet-sdk').acquire('app', flags)
        self.assertFalse((again.path / 'leftover').exists())
        self.assertIsNone(again.metadata.get('version'))

    def test_unreadable_record_is_treated_as_absent(self) -> None:
        """Test unreadable record is treated as absent."""
        layer = self.store.acquire('sdk', self.flags)
        layer.toml_path.write_text('[metadata\nversion = ')
        reread = LayerStore(self.layers_dir, 'dotnet-sdk').acquire('sdk', self.flags)
        self.assertEqual(reread.metadata, {})

    def test_discover_layers(self) -> None:
        """Test discovering persisted layers."""
        sdk = self.store.acquire('sdk', self.flags)
        self.store.flush(sdk)
        other = LayerStore(self.layers_dir, 'nodejs-npm')
        modules = other.acquire('npm_modules', LayerFlags(build=True, cache=True, launch=True))
        other.flush(modules)

        found = discover_layers(self.layers_dir)

        self.assertEqual([path for path, _ in found], [sdk.path, modules.path])
        self.assertFalse(found[0][1]['launch'])
        self.assertTrue(found[1][1]['launch'])


class TestLayerLaunchMode(unittest.TestCase):
    """Launch environment access and environment mode selection."""

    def setUp(self) -> None:
        """Set up test fixtures."""
        self.temp_dir = tempfile.TemporaryDirectory()
        self.layers_dir = Path(self.temp_dir.name)
        self.flags = LayerFlags(build=True, cache=True, launch_if_dev_mode=True)

    def tearDown(self) -> None:
        """Clean up test fixtures."""
        self.temp_dir.cleanup()

    def test_conditional_layer_is_launch_in_dev_mode(self) -> None:
        """Test conditional layer is launch in dev mode."""
        layer = LayerStore(self.layers_dir, 'bp', dev_mode=True).acquire('sdk', self.flags)
        self.assertTrue(layer.launch)
        layer.launch_env.default('DOTNET_RUNNING_IN_CONTAINER', 'true')

    def test_conditional_layer_rejects_launch_env_outside_dev_mode(self) -> None:
        """Test conditional layer rejects launch env outside dev mode."""
        layer = LayerStore(self.layers_dir, 'bp', dev_mode=False).acquire('sdk', self.flags)
        self.assertFalse(layer.launch)
        with self.assertRaises(EnvironmentModeError):
            layer.launch_env.default('DOTNET_RUNNING_IN_CONTAINER', 'true')

    def test_mode_must_be_selected_before_writes(self) -> None:
        """Test mode must be selected before writes."""
        layer = LayerStore(self.layers_dir, 'bp').acquire('sdk', self.flags)
        layer.build_env.default('DOTNET_ROOT', str(layer.path))
        with self.assertRaises(EnvironmentModeError):
            layer.select_environment_mode(False)

    def test_mode_is_selected_once(self) -> None:
        """Test mode is selected once."""
        layer = LayerStore(self.layers_dir, 'bp').acquire('sdk', self.flags)
        self.assertFalse(layer.select_environment_mode(False))
        self.assertFalse(layer.select_environment_mode(False))
        with self.assertRaises(EnvironmentModeError):
            layer.select_environment_mode(True)

    def test_conditional_mode_must_match_build(self) -> None:
        """Test conditional mode must match build."""
        layer = LayerStore(self.layers_dir, 'bp', dev_mode=False).acquire('sdk', self.flags)
        with self.assertRaises(EnvironmentModeError):
            layer.select_environment_mode(True)

    def test_launch_type_follows_dev_mode(self) -> None:
        """Test launch type follows dev mode."""
        store = LayerStore(self.layers_dir, 'bp', dev_mode=True)
        layer = store.acquire('sdk', self.flags)
        store.flush(layer)
        document = tomlkit.parse(layer.toml_path.read_text())
        self.assertTrue(document['types']['launch'])
