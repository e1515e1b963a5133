"""
Unit tests for extension dependency checks.
"""

import json
import os
import shutil
import tempfile
import unittest
from unittest.mock import patch

from vstelemd.errors import AccessError
from vstelemd.paths import StaticPathResolver
from vstelemd.safety.dependencies import (
    DEPENDENCY_CONFIGURATION,
    DEPENDENCY_EXTENSION,
    DEPENDENCY_SHARED_DATA,
    DependencyChecker,
    parse_manifest,
)


def write_manifest(extensions_dir, directory, manifest):
    path = os.path.join(extensions_dir, directory, "package.json")
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w") as f:
        if isinstance(manifest, str):
            f.write(manifest)
        else:
            json.dump(manifest, f)


class TestParseManifest:

    def test_parse_manifest(self):
        info = parse_manifest({
            "publisher": "pub",
            "name": "tool",
            "version": "1.2.3",
            "dependencies": {"b-lib": "^1", "a-lib": "^2"},
            "extensionDependencies": ["pub.base", 7],
        }, "/ext/pub.tool-1.2.3")

        assert info.extension_id == "pub.tool"
        assert info.version == "1.2.3"
        assert info.dependencies == ["a-lib", "b-lib"]
        assert info.extension_dependencies == ["pub.base"]

    def test_manifest_without_publisher(self):
        assert parse_manifest({"name": "tool"}) is None


class TestDependencyChecker(unittest.TestCase):
    """Test cases for DependencyChecker."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.extensions_dir = os.path.join(self.temp_dir, "extensions")

        write_manifest(self.extensions_dir, "pub.base-1.0.0", {"publisher": "pub", "name": "base"})
        write_manifest(self.extensions_dir, "pub.addon-2.0.0", {
            "publisher": "pub",
            "name": "addon",
            "extensionDependencies": ["Pub.Base"],
        })
        write_manifest(self.extensions_dir, "other.viewer-0.1.0", {
            "publisher": "other",
            "name": "viewer",
            "contributes": {"commands": [{"command": "pub.base.open", "title": "Open"}]},
        })
        write_manifest(self.extensions_dir, "acme.usage-telemetry-1.0.0", {
            "publisher": "acme",
            "name": "usage-telemetry",
        })
        write_manifest(self.extensions_dir, "broken-1.0.0", "{not json")
        os.makedirs(os.path.join(self.extensions_dir, "no-manifest"))

        self.checker = DependencyChecker(StaticPathResolver({'extensions_path': self.extensions_dir}))

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def test_registry_skips_unreadable_manifests(self):
        registry = self.checker.load_registry()

        self.assertEqual(sorted(registry), ["acme.usage-telemetry", "other.viewer", "pub.addon", "pub.base"])
        self.assertEqual(self.checker.get_extension_info("PUB.ADDON").version, "")

    def test_dependency_graph(self):
        self.assertEqual(self.checker.dependency_graph(), {"pub.base": ["pub.addon"]})

    def test_check_dependencies(self):
        dependencies = self.checker.check_dependencies("pub.base")

        found = [(d.dependent_extension, d.dependency_type, d.required) for d in dependencies]
        self.assertEqual(found, [
            ("acme.usage-telemetry", DEPENDENCY_SHARED_DATA, False),
            ("other.viewer", DEPENDENCY_CONFIGURATION, False),
            ("pub.addon", DEPENDENCY_EXTENSION, True),
        ])
        self.assertEqual(dependencies[2].description, "addon depends on pub.base")

    def test_extension_is_not_its_own_dependency(self):
        dependencies = self.checker.check_dependencies("acme.usage-telemetry")

        self.assertEqual(dependencies, [])

    def test_removal_warnings(self):
        warnings = self.checker.removal_warnings("pub.base")

        self.assertIn("Required by pub.addon: addon depends on pub.base", warnings)
        self.assertIn("May affect other.viewer: viewer has configuration references to pub.base", warnings)

    def test_registry_is_cached_until_reload(self):
        self.checker.load_registry()
        write_manifest(self.extensions_dir, "pub.late-1.0.0", {"publisher": "pub", "name": "late"})

        self.assertIsNone(self.checker.get_extension_info("pub.late"))
        self.checker.reload()
        self.assertIsNotNone(self.checker.get_extension_info("pub.late"))

    def test_unconfigured_extensions_path(self):
        checker = DependencyChecker(StaticPathResolver({}))

        self.assertEqual(checker.load_registry(), {})
        self.assertEqual(checker.check_dependencies("pub.base"), [])

    def test_unlistable_extensions_path(self):
        with patch('vstelemd.safety.dependencies.list_directories',
                   side_effect=AccessError("Cannot enumerate directory", self.extensions_dir)):
            with self.assertRaises(AccessError):
                self.checker.check_dependencies("pub.base")
