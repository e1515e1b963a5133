"""
Unit tests for backup manager functionality.

Tests backup creation, restoration, integrity verification, and retention policies.
"""

import json
import os
import shutil
import tempfile
import unittest
import zipfile
from collections import namedtuple
from datetime import datetime, timedelta
from pathlib import Path
from unittest.mock import patch

import pytest

from vstelemd.cancellation import CancellationToken
from vstelemd.errors import AccessError, ExhaustionError, IntegrityError, OperationCancelled
from vstelemd.patterns.risk import TelemetryRisk
from vstelemd.scanners.models import DataItem, ExtensionStorage, SourceType
from vstelemd.storage.backup_manager import (
    BackupConfig,
    BackupManager,
    BackupMetadata,
    create_backup_manager,
    file_checksum,
    metadata_path_for,
)

DiskUsage = namedtuple("DiskUsage", ["total", "used", "free", "percent"])


class TestBackupManager(unittest.TestCase):
    """Test cases for BackupManager class."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.storage_dir = Path(self.temp_dir) / "globalStorage" / "publisher.tool"
        self.backup_dir = Path(self.temp_dir) / "backups"
        self._create_test_storage()

        self.backup_manager = BackupManager(BackupConfig(
            backup_directory=str(self.backup_dir),
            min_free_disk_mb=0,
        ))
        self.storage = ExtensionStorage(
            extension_id="publisher.tool",
            storage_path=str(self.storage_dir),
            items=[DataItem(
                key="usageStats",
                value=12,
                size=2,
                risk=TelemetryRisk.HIGH,
                category="Usage Tracking",
                source_type=SourceType.STORAGE_KEY,
                source_path=str(self.storage_dir / "usageStats.json"),
            )],
        )

    def tearDown(self):
        """Clean up test fixtures."""
        shutil.rmtree(self.temp_dir)

    def _create_test_storage(self):
        """Create an extension storage tree with nested files."""
        (self.storage_dir / "cache").mkdir(parents=True)
        (self.storage_dir / "usageStats.json").write_text(json.dumps({"usageStats": 12}))
        (self.storage_dir / "cache" / "blob.bin").write_bytes(os.urandom(512))

    def test_create_backup(self):
        """Test archive creation with sidecar metadata."""
        result = self.backup_manager.create_extension_backup(self.storage)

        self.assertTrue(os.path.exists(result.backup_path))
        self.assertTrue(os.path.basename(result.backup_path).startswith("publisher.tool-"))
        self.assertEqual(result.file_count, 2)
        self.assertEqual(result.errors, [])

        metadata = self.backup_manager.load_metadata(metadata_path_for(result.backup_path))
        self.assertEqual(metadata.extension_id, "publisher.tool")
        self.assertEqual(metadata.checksum, file_checksum(result.backup_path))
        self.assertEqual(sorted(i.relative_path for i in metadata.items),
                         ["cache/blob.bin", "usageStats.json"])
        usage_item = next(i for i in metadata.items if i.relative_path == "usageStats.json")
        self.assertEqual(usage_item.risk, TelemetryRisk.HIGH)
        self.assertEqual(usage_item.item_type, "storage-key")

    def test_only_paths_limits_archive(self):
        """Test that only the requested files are archived."""
        result = self.backup_manager.create_extension_backup(
            self.storage, only_paths=[str(self.storage_dir / "cache" / "blob.bin")]
        )
        self.assertEqual(result.file_count, 1)
        with zipfile.ZipFile(result.backup_path) as archive:
            self.assertEqual(archive.namelist(), ["cache/blob.bin"])

    def test_missing_storage_path(self):
        storage = ExtensionStorage(extension_id="x.y", storage_path=str(Path(self.temp_dir) / "nope"))
        with self.assertRaises(AccessError):
            self.backup_manager.create_extension_backup(storage)

    def test_verify_backup_round_trip(self):
        """Test that a fresh backup verifies and the flag is persisted."""
        result = self.backup_manager.create_extension_backup(self.storage)

        self.assertTrue(self.backup_manager.verify_backup(result.backup_path))
        metadata = self.backup_manager.load_metadata(metadata_path_for(result.backup_path))
        self.assertTrue(metadata.verified)

    def test_single_byte_mutation_fails_verification(self):
        """Test that flipping one byte of the archive is detected."""
        result = self.backup_manager.create_extension_backup(self.storage)
        with open(result.backup_path, "r+b") as f:
            f.seek(10)
            byte = f.read(1)
            f.seek(10)
            f.write(bytes([byte[0] ^ 0xFF]))

        self.assertFalse(self.backup_manager.verify_backup(result.backup_path))
        metadata = self.backup_manager.load_metadata(metadata_path_for(result.backup_path))
        self.assertFalse(metadata.verified)
        with self.assertRaises(IntegrityError):
            self.backup_manager.verify_backup(result.backup_path, strict=True)

    def test_restore_backup(self):
        """Test restoring into a fresh directory reproduces the files."""
        result = self.backup_manager.create_extension_backup(self.storage)
        restore_dir = os.path.join(self.temp_dir, "restored")

        restored = self.backup_manager.restore_backup(result.backup_path, restore_dir)

        self.assertTrue(restored.success)
        self.assertEqual(restored.file_count, 2)
        self.assertEqual(
            file_checksum(os.path.join(restore_dir, "cache", "blob.bin")),
            file_checksum(str(self.storage_dir / "cache" / "blob.bin")),
        )
        metadata = self.backup_manager.load_metadata(metadata_path_for(result.backup_path))
        self.assertTrue(metadata.restoration_info.success)

    def test_restore_rejects_path_traversal(self):
        """Test that an entry escaping the destination aborts before writing."""
        self.backup_dir.mkdir(parents=True)
        backup_path = str(self.backup_dir / "evil.zip")
        with zipfile.ZipFile(backup_path, "w") as archive:
            archive.writestr("ok.txt", "fine")
            archive.writestr("../escaped.txt", "bad")
        self.backup_manager._save_metadata(BackupMetadata(
            backup_id="backup_evil",
            extension_id="evil.ext",
            creation_time=datetime.now(),
            backup_path=backup_path,
            checksum=file_checksum(backup_path),
            verified=True,
        ))
        restore_dir = os.path.join(self.temp_dir, "restore")

        with self.assertRaises(IntegrityError):
            self.backup_manager.restore_backup(backup_path, restore_dir)

        self.assertFalse(os.path.exists(os.path.join(self.temp_dir, "escaped.txt")))
        self.assertFalse(os.path.exists(os.path.join(restore_dir, "ok.txt")))

    def test_restore_of_tampered_backup_fails(self):
        result = self.backup_manager.create_extension_backup(self.storage)
        with open(result.backup_path, "ab") as f:
            f.write(b"garbage")
        with self.assertRaises(IntegrityError):
            self.backup_manager.restore_backup(result.backup_path, os.path.join(self.temp_dir, "r"))

    def test_size_ceiling(self):
        """Test that a backup larger than the ceiling is refused."""
        (self.storage_dir / "big.bin").write_bytes(b"\0" * (2 * 1024 * 1024))
        manager = BackupManager(BackupConfig(backup_directory=str(self.backup_dir),
                                             max_backup_size_mb=1, min_free_disk_mb=0))
        with self.assertRaises(ExhaustionError):
            manager.create_extension_backup(self.storage)
        self.assertFalse(self.backup_dir.exists() and any(self.backup_dir.iterdir()))

    @patch('vstelemd.storage.backup_manager.psutil.disk_usage')
    def test_free_disk_reserve(self, mock_disk):
        mock_disk.return_value = DiskUsage(0, 0, 50 * 1024 * 1024, 0.0)
        manager = BackupManager(BackupConfig(backup_directory=str(self.backup_dir), min_free_disk_mb=100))
        with self.assertRaises(ExhaustionError):
            manager.create_extension_backup(self.storage)

    def test_cancelled_backup_leaves_no_archive(self):
        token = CancellationToken()
        token.cancel()
        with self.assertRaises(OperationCancelled):
            self.backup_manager.create_extension_backup(self.storage, token=token)
        self.assertEqual(list(self.backup_dir.glob("*.zip")), [])

    def test_backup_storage_item(self):
        """Test single-item JSON backups get unique names."""
        item = self.storage.items[0]
        first = self.backup_manager.backup_storage_item(item)
        second = self.backup_manager.backup_storage_item(item)

        self.assertNotEqual(first, second)
        with open(first) as f:
            data = json.load(f)
        self.assertEqual(data['key'], "usageStats")
        self.assertEqual(data['risk'], "High")

    def test_cleanup_old_backups_by_age(self):
        """Test backups past the age limit are removed."""
        result = self.backup_manager.create_extension_backup(self.storage)
        removed = self.backup_manager.cleanup_old_backups(now=datetime.now() + timedelta(days=91))

        self.assertEqual(removed, [result.backup_path])
        self.assertFalse(os.path.exists(result.backup_path))
        self.assertFalse(os.path.exists(metadata_path_for(result.backup_path)))

    def test_cleanup_keeps_recent_backups(self):
        self.backup_manager.create_extension_backup(self.storage)
        self.assertEqual(self.backup_manager.cleanup_old_backups(), [])
        self.assertEqual(len(self.backup_manager.list_backups()), 1)

    def test_cleanup_evicts_oldest_over_size_ceiling(self):
        """Test the oldest backups go first until the total fits the ceiling."""
        (self.storage_dir / "history.bin").write_bytes(b"\0" * (400 * 1024))
        manager = BackupManager(BackupConfig(backup_directory=str(self.backup_dir),
                                             max_backup_size_mb=1, min_free_disk_mb=0))
        paths = [manager.create_extension_backup(self.storage, backup_name=f"tool-{n}").backup_path
                 for n in range(3)]

        removed = manager.cleanup_old_backups()

        self.assertEqual(removed, paths[:1])
        remaining = manager.list_backups()
        self.assertEqual([b.backup_path for b in remaining], paths[1:])
        self.assertLessEqual(sum(b.total_size for b in remaining), 1024 * 1024)
        self.assertTrue(os.path.exists(paths[-1]))

    def test_backup_status(self):
        self.backup_manager.create_extension_backup(self.storage)
        status = self.backup_manager.get_backup_status()
        self.assertEqual(status['total_backups'], 1)
        self.assertGreater(status['total_size_mb'], 0)


class TestBackupConfigFile:
    """Test YAML-backed backup configuration."""

    def test_missing_config_file_is_written_with_defaults(self, tmp_path):
        config_path = tmp_path / "backup.yaml"
        manager = create_backup_manager(config_path=str(config_path))
        assert config_path.exists()
        assert manager.config.max_backup_age_days == 90

    def test_config_file_values(self, tmp_path):
        config_path = tmp_path / "backup.yaml"
        config_path.write_text("backup_directory: /tmp/vstelemd-bk\nmax_backup_size_mb: 5\nunknown: 1\n")
        manager = BackupManager(config_path=str(config_path))
        assert manager.config.max_backup_size_mb == 5
        assert str(manager.backup_dir) == "/tmp/vstelemd-bk"

    def test_metadata_path(self):
        assert metadata_path_for("/b/ext-1.zip") == "/b/ext-1.metadata.json"

    def test_missing_metadata(self, tmp_path):
        manager = create_backup_manager(str(tmp_path))
        with pytest.raises(AccessError):
            manager.verify_backup(str(tmp_path / "none.zip"))
