"""
Unit tests for the extension storage scanner.

Builds a small editor profile with global, workspace, cache and temp storage
and checks what the scanner reports for each.
"""

import json
import os
import shutil
import tempfile
import unittest

from vstelemd.errors import AccessError
from vstelemd.patterns.registry import create_pattern_registry
from vstelemd.patterns.risk import TelemetryRisk
from vstelemd.paths import StaticPathResolver
from vstelemd.scanners.extension_storage import (
    STORAGE_CACHE,
    STORAGE_TEMP,
    ExtensionStorageScanner,
    infer_extension_from_path,
    infer_file_type,
    workspace_placeholder,
)
from vstelemd.scanners.models import SourceType


def write_file(path, content):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    mode = "wb" if isinstance(content, bytes) else "w"
    with open(path, mode) as f:
        f.write(content)


class TestHelpers:

    def test_workspace_placeholder(self):
        assert workspace_placeholder("abcdef1234567890") == "Unknown workspace (hash: abcdef12)"

    def test_infer_extension_from_path(self):
        assert infer_extension_from_path("/cache/vscode-eslint/x") == "dbaeumer.vscode-eslint"
        assert infer_extension_from_path("/cache/ms-python/x") == "ms-python.python"
        assert infer_extension_from_path("/cache/other/x") == "unknown"

    def test_infer_file_type(self):
        assert infer_file_type("a.LOG") == "log"
        assert infer_file_type("a.json") == "json"
        assert infer_file_type("a.tmp") == "temporary"
        assert infer_file_type("a.cache") == "cache"
        assert infer_file_type("a.bin") == "binary"


class TestExtensionStorageScanner(unittest.TestCase):
    """Test cases for ExtensionStorageScanner."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        user_dir = os.path.join(self.temp_dir, "Code", "User")
        self.global_storage = os.path.join(user_dir, "globalStorage")
        self.workspace_storage = os.path.join(user_dir, "workspaceStorage")
        self.cache_dir = os.path.join(self.temp_dir, "cache", "ms-python")
        self.temp_root = os.path.join(self.temp_dir, "scratch")

        tool = os.path.join(self.global_storage, "pub.tool")
        write_file(os.path.join(tool, "usageStats.json"),
                   json.dumps({"usageStats": {"count": 3}, "sessionId": "s-1", "theme": "dark"}))
        write_file(os.path.join(tool, "telemetryData.bin"), b"0123456789")
        write_file(os.path.join(tool, "notes.txt"), "plain notes")
        write_file(os.path.join(self.global_storage, "pub.broken", "usageStats.json"), "{bad")
        write_file(os.path.join(self.global_storage, "state.vscdb"), b"")

        write_file(os.path.join(self.workspace_storage, "abcdef1234567890", "pub.tool", "userId.json"),
                   json.dumps({"userId": "u-1"}))

        write_file(os.path.join(self.cache_dir, "telemetry-events.log"), "event")
        write_file(os.path.join(self.temp_root, "vscode-eslint-usage.tmp"), "x" * 20)
        write_file(os.path.join(self.temp_root, "unrelated.txt"), "x")

        self.resolver = StaticPathResolver({
            'storage_path': os.path.join(self.global_storage, "storage.json"),
            'workspace_storage_path': self.workspace_storage,
            'cache_directories': [self.cache_dir, os.path.join(self.temp_dir, "no-cache")],
            'temp_directories': [self.temp_root],
        })
        self.scanner = ExtensionStorageScanner(self.resolver, create_pattern_registry(), max_workers=2)

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def test_scan_extension_json_and_binary_files(self):
        storage = self.scanner.scan_extension("pub.tool", os.path.join(self.global_storage, "pub.tool"))
        items = {item.key: item for item in storage.items}

        self.assertEqual(set(items), {"usageStats", "sessionId", "usageStats.count", "telemetryData.bin"})
        self.assertEqual(items["usageStats"].value, '{"count":3}')
        self.assertEqual(items["usageStats.count"].key_path, ("usageStats", "count"))
        self.assertEqual(items["sessionId"].source_type, SourceType.STORAGE_KEY)
        self.assertEqual(items["telemetryData.bin"].source_type, SourceType.FILE)
        self.assertEqual(items["telemetryData.bin"].risk, TelemetryRisk.CRITICAL)
        self.assertEqual(storage.risk, TelemetryRisk.CRITICAL)
        self.assertTrue(all(item.extension_id == "pub.tool" for item in storage.items))
        self.assertGreater(storage.total_size, storage.telemetry_size)
        self.assertIsNotNone(storage.retention_policy)

    def test_scan_extension_missing_directory(self):
        with self.assertRaises(AccessError):
            self.scanner.scan_extension("pub.gone", os.path.join(self.global_storage, "pub.gone"))

    def test_full_scan(self):
        result = self.scanner.scan()

        self.assertEqual([s.extension_id for s in result.global_storages], ["pub.broken", "pub.tool"])
        self.assertEqual(result.global_storages[0].items, [])
        self.assertTrue(any(entry.kind == "parse" and entry.path.endswith("usageStats.json")
                            for entry in result.skipped))

        self.assertEqual(len(result.workspace_storages), 1)
        workspace = result.workspace_storages[0]
        self.assertEqual(workspace.workspace_path, "Unknown workspace (hash: abcdef12)")
        self.assertEqual([s.extension_id for s in workspace.extension_storages], ["pub.tool"])
        self.assertEqual(workspace.extension_storages[0].workspace_hash, "abcdef1234567890")
        self.assertEqual(workspace.extension_storages[0].items[0].key, "userId")

        self.assertEqual(result.statistics.extension_count, 2)
        self.assertEqual(result.statistics.workspace_count, 1)

    def test_cache_directories(self):
        result = self.scanner.scan()

        self.assertEqual(len(result.cache_storages), 1)
        cache = result.cache_storages[0]
        self.assertEqual(cache.storage_type, STORAGE_CACHE)
        self.assertEqual(cache.extension_id, "ms-python.python")
        log_item = next(item for item in cache.items if item.key == "telemetry-events.log")
        self.assertEqual(log_item.risk, TelemetryRisk.HIGH)
        self.assertEqual(log_item.value, "log file (5 bytes)")

    def test_temp_files_grouped_by_extension(self):
        result = self.scanner.scan()

        self.assertEqual([s.extension_id for s in result.temp_storages], ["dbaeumer.vscode-eslint"])
        temp = result.temp_storages[0]
        self.assertEqual(temp.storage_type, STORAGE_TEMP)
        self.assertEqual([item.key for item in temp.items], ["vscode-eslint-usage.tmp"])
        self.assertEqual(temp.items[0].risk, TelemetryRisk.MEDIUM)
        self.assertEqual(temp.telemetry_size, 20)

    def test_all_storages_and_grouping(self):
        result = self.scanner.scan()

        grouped = result.items_by_extension()
        self.assertEqual(len(grouped["pub.tool"]), 5)
        self.assertEqual(len(result.all_storages()), 5)
        self.assertEqual(result.statistics.item_count, sum(len(s.items) for s in result.all_storages()))
