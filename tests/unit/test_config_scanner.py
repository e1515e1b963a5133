"""
Unit tests for the configuration scanner.
"""

import json
import os
import shutil
import tempfile
import unittest

from vstelemd.patterns.registry import create_pattern_registry
from vstelemd.patterns.risk import TelemetryRisk
from vstelemd.paths import StaticPathResolver
from vstelemd.scanners.config_scanner import (
    CATEGORY_GLOBAL_STORAGE,
    CATEGORY_USER,
    CATEGORY_WORKSPACE,
    ConfigScanner,
    is_extension_setting,
    key_recommendation,
)
from vstelemd.scanners.models import SourceType


def write_json(path, document):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w") as f:
        json.dump(document, f)


class TestSettingHelpers:

    def test_is_extension_setting(self):
        assert is_extension_setting("myext.analytics.endpoint")
        assert not is_extension_setting("editor.fontSize")
        assert not is_extension_setting("Telemetry.telemetryLevel")
        assert not is_extension_setting("standalone")

    def test_key_recommendation(self):
        assert key_recommendation("telemetry.telemetryLevel", "off") == "Good: Telemetry is disabled"
        assert key_recommendation("telemetry.telemetryLevel", "all").startswith("Consider setting to 'off'")
        assert key_recommendation("telemetry.enableTelemetry", False) == "Good: Telemetry is disabled"
        assert key_recommendation("telemetry.enableCrashReporter", True).startswith("Consider")
        assert key_recommendation("workbench.enableExperiments", True) == "Review this setting and disable if not needed"


class TestConfigScanner(unittest.TestCase):
    """Test cases for ConfigScanner."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.user_dir = os.path.join(self.temp_dir, "Code", "User")
        self.global_storage = os.path.join(self.user_dir, "globalStorage")
        self.workspace_storage = os.path.join(self.user_dir, "workspaceStorage")
        self.home = os.path.join(self.temp_dir, "home")
        os.makedirs(self.workspace_storage)
        os.makedirs(self.home)

        with open(os.path.join(self.user_dir, "settings.json"), "w") as f:
            f.write(
                '{\n'
                '  // user settings\n'
                '  "telemetry.telemetryLevel": "all",\n'
                '  "myext.analytics.endpoint": "https://collector.example.com",\n'
                '  "editor.fontSize": 12,\n'
                '  "myext.list": [{"myext.telemetry.flag": true}],\n'
                '}\n'
            )
        write_json(os.path.join(self.global_storage, "pub.tool", "config.json"),
                   {"pub.tool.telemetry.enabled": True})

        self.resolver = StaticPathResolver({
            'storage_path': os.path.join(self.global_storage, "storage.json"),
            'workspace_storage_path': self.workspace_storage,
            'home_dir': self.home,
        })
        self.scanner = ConfigScanner(self.resolver, create_pattern_registry())

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def test_scan_user_and_storage_settings(self):
        result = self.scanner.scan()

        telemetry_paths = sorted(f.path for f in result.telemetry_settings)
        self.assertEqual(telemetry_paths, ["pub.tool.telemetry.enabled", "telemetry.telemetryLevel"])
        self.assertEqual([f.path for f in result.extension_settings], ["myext.analytics.endpoint"])
        self.assertEqual(result.workspace_settings, [])
        self.assertEqual(result.total_findings, 3)
        self.assertEqual(result.high_risk_findings, 3)

    def test_exact_key_description(self):
        result = self.scanner.scan()

        level = next(f for f in result.telemetry_settings if f.path == "telemetry.telemetryLevel")
        self.assertEqual(level.category, CATEGORY_USER)
        self.assertEqual(level.risk, TelemetryRisk.HIGH)
        self.assertEqual(level.description, "Controls the level of telemetry data sent to Microsoft")

    def test_storage_items_carry_extension_id(self):
        result = self.scanner.scan()

        item = next(i for i in result.items if i.key == "pub.tool.telemetry.enabled")
        self.assertEqual(item.extension_id, "pub.tool")
        self.assertEqual(item.source_type, SourceType.SETTING)
        self.assertEqual(item.key_path, ("pub.tool.telemetry.enabled",))
        finding = next(f for f in result.telemetry_settings if f.path == "pub.tool.telemetry.enabled")
        self.assertEqual(finding.category, CATEGORY_GLOBAL_STORAGE)

    def test_members_inside_arrays_are_skipped(self):
        result = self.scanner.scan()
        self.assertFalse(any("[" in item.key for item in result.items))

    def test_recommendations_without_disabled_telemetry(self):
        result = self.scanner.scan()

        self.assertEqual(result.recommendations, [
            'Consider disabling telemetry: set telemetry.telemetryLevel to "off"',
            "Review 1 extension settings that may collect data",
        ])

    def test_workspace_settings_disable_telemetry(self):
        write_json(os.path.join(self.home, "Projects", "app", ".vscode", "settings.json"),
                   {"telemetry.telemetryLevel": "off"})

        result = self.scanner.scan()

        workspace = [f for f in result.telemetry_settings if f.category == CATEGORY_WORKSPACE]
        self.assertEqual(len(workspace), 1)
        self.assertEqual(workspace[0].recommendation, "Good: Telemetry is disabled")
        self.assertEqual(result.recommendations[0], "Good: Telemetry is disabled")

    def test_invalid_settings_file_is_recorded(self):
        with open(os.path.join(self.user_dir, "settings.json"), "w") as f:
            f.write("{not json")

        result = self.scanner.scan()

        self.assertEqual([entry.kind for entry in result.skipped], ["parse"])
        self.assertEqual(len(result.telemetry_settings), 1)
