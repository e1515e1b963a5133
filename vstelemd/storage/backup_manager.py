"""
Backup Manager for extension storage.

This module creates zip backups of extension storage trees before anything is
removed, verifies them by checksum, restores them, and keeps the backup
directory within its age and size limits.
"""

import hashlib
import json
import logging
import os
import time
import uuid
import zipfile
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

import psutil
import yaml

from ..cancellation import CancellationToken, check_cancelled
from ..errors import AccessError, ExhaustionError, IntegrityError, ParseError
from ..patterns.risk import TelemetryRisk, parse_risk
from ..scanners.models import DataItem, ExtensionStorage

METADATA_SUFFIX = ".metadata.json"
ITEMS_DIRECTORY = "items"
MB = 1024 * 1024


@dataclass
class BackupItem:
    """One file inside a backup archive."""
    relative_path: str
    original_path: str
    size: int
    mod_time: datetime
    checksum: str
    item_type: str = "file"
    risk: TelemetryRisk = TelemetryRisk.NONE

    def to_dict(self) -> Dict[str, Any]:
        return {
            'relative_path': self.relative_path,
            'original_path': self.original_path,
            'size': self.size,
            'mod_time': self.mod_time.isoformat(),
            'checksum': self.checksum,
            'item_type': self.item_type,
            'risk': self.risk.label,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BackupItem":
        return cls(
            relative_path=data['relative_path'],
            original_path=data.get('original_path', ''),
            size=int(data.get('size', 0)),
            mod_time=datetime.fromisoformat(data['mod_time']),
            checksum=data.get('checksum', ''),
            item_type=data.get('item_type', 'file'),
            risk=parse_risk(data.get('risk', 'None')),
        )


@dataclass
class RestorationInfo:
    """Outcome of the last restore of a backup."""
    restored_time: datetime
    restoration_path: str
    success: bool
    restored_by: str = "vstelemd"
    error_message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'restored_time': self.restored_time.isoformat(),
            'restored_by': self.restored_by,
            'restoration_path': self.restoration_path,
            'success': self.success,
            'error_message': self.error_message,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RestorationInfo":
        return cls(
            restored_time=datetime.fromisoformat(data['restored_time']),
            restoration_path=data.get('restoration_path', ''),
            success=bool(data.get('success', False)),
            restored_by=data.get('restored_by', 'vstelemd'),
            error_message=data.get('error_message', ''),
        )


@dataclass
class BackupMetadata:
    """Checksum-verifiable record describing a backup archive."""
    backup_id: str
    extension_id: str
    creation_time: datetime
    backup_path: str
    original_path: str = ""
    backup_type: str = "extension_full"
    total_size: int = 0
    file_count: int = 0
    checksum: str = ""
    items: List[BackupItem] = field(default_factory=list)
    compression_type: str = "zip"
    verified: bool = False
    restoration_info: Optional[RestorationInfo] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'backup_id': self.backup_id,
            'extension_id': self.extension_id,
            'creation_time': self.creation_time.isoformat(),
            'backup_type': self.backup_type,
            'original_path': self.original_path,
            'backup_path': self.backup_path,
            'total_size': self.total_size,
            'file_count': self.file_count,
            'checksum': self.checksum,
            'backup_items': [item.to_dict() for item in self.items],
            'compression_type': self.compression_type,
            'verified': self.verified,
            'restoration_info': self.restoration_info.to_dict() if self.restoration_info else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BackupMetadata":
        restoration = data.get('restoration_info')
        return cls(
            backup_id=data['backup_id'],
            extension_id=data.get('extension_id', ''),
            creation_time=datetime.fromisoformat(data['creation_time']),
            backup_path=data['backup_path'],
            original_path=data.get('original_path', ''),
            backup_type=data.get('backup_type', 'extension_full'),
            total_size=int(data.get('total_size', 0)),
            file_count=int(data.get('file_count', 0)),
            checksum=data.get('checksum', ''),
            items=[BackupItem.from_dict(item) for item in data.get('backup_items') or []],
            compression_type=data.get('compression_type', 'zip'),
            verified=bool(data.get('verified', False)),
            restoration_info=RestorationInfo.from_dict(restoration) if restoration else None,
        )


@dataclass
class BackupResult:
    """Result of creating a backup."""
    backup_path: str
    backup_size: int
    file_count: int
    backup_duration: float
    metadata: BackupMetadata
    verified: bool = False
    errors: List[str] = field(default_factory=list)


@dataclass
class RestoreResult:
    """Result of restoring a backup."""
    restored_path: str
    restored_size: int = 0
    file_count: int = 0
    restore_duration: float = 0.0
    success: bool = False
    errors: List[str] = field(default_factory=list)


@dataclass
class BackupConfig:
    """Configuration for backup operations."""
    backup_directory: str = "backups/extensions"
    max_backup_age_days: int = 90
    max_backup_size_mb: int = 1024
    min_free_disk_mb: int = 100
    verify_integrity: bool = True


def metadata_path_for(backup_path: str) -> str:
    """Sidecar path: the archive path without its extension plus .metadata.json."""
    root, _ = os.path.splitext(backup_path)
    return root + METADATA_SUFFIX


def file_checksum(path: str) -> str:
    """MD5 of a file's content."""
    hasher = hashlib.md5()
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(65536), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def _safe_name(text: str) -> str:
    return "".join(c if c.isalnum() or c in "-_." else "-" for c in text) or "unknown"


class BackupManager:
    """
    Manages backups of extension storage.

    Features:
    - Deflate-compressed zip archives with per-file and archive checksums
    - Sidecar metadata next to every archive
    - Verification and restoration with a path traversal guard
    - Cleanup by age and by total size
    - Single-item JSON backups for removed keys
    """

    def __init__(self, config: Optional[BackupConfig] = None, config_path: Optional[str] = None):
        self.logger = logging.getLogger(__name__)
        self.config_path = Path(config_path) if config_path else None

        if config is None:
            config = self._load_config() if self.config_path else BackupConfig()
        self.config = config

        self.backup_dir = Path(self.config.backup_directory)

    def _load_config(self) -> BackupConfig:
        """Load backup configuration from YAML file."""
        try:
            if self.config_path.exists():
                with open(self.config_path, 'r') as f:
                    config_data = yaml.safe_load(f) or {}
            else:
                config_data = self._get_default_config()
                self._save_config(config_data)

            defaults = self._get_default_config()
            defaults.update({k: v for k, v in config_data.items() if k in defaults})
            return BackupConfig(**defaults)

        except Exception as e:
            self.logger.error(f"Failed to load backup config: {e}")
            return BackupConfig(**self._get_default_config())

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default backup configuration."""
        return {
            'backup_directory': 'backups/extensions',
            'max_backup_age_days': 90,
            'max_backup_size_mb': 1024,
            'min_free_disk_mb': 100,
            'verify_integrity': True,
        }

    def _save_config(self, config_data: Dict[str, Any]):
        """Save configuration to YAML file."""
        try:
            with open(self.config_path, 'w') as f:
                yaml.dump(config_data, f, default_flow_style=False)
        except Exception as e:
            self.logger.error(f"Failed to save backup config: {e}")

    # Creation

    def create_extension_backup(
        self,
        storage: ExtensionStorage,
        backup_name: Optional[str] = None,
        token: Optional[CancellationToken] = None,
        only_paths: Optional[List[str]] = None,
    ) -> BackupResult:
        """
        Archive an extension's storage tree.

        When only_paths is given, just those files below the storage root are
        archived (temp storages share one directory between extensions).
        Unreadable files are left out and listed in the result's errors.
        Raises AccessError when the storage path is missing, ExhaustionError
        when the backup would not fit, and OSError if the archive cannot be
        written. A partially written archive is removed before raising.
        """
        start_time = time.time()
        storage_root = storage.storage_path
        if not os.path.exists(storage_root):
            raise AccessError("Storage path not found", storage_root)

        files = self._collect_files(storage_root)
        if only_paths is not None:
            wanted = {os.path.abspath(p) for p in only_paths}
            files = [entry for entry in files if os.path.abspath(entry[0]) in wanted]
        self.ensure_capacity(sum(info.st_size for _, _, info in files))
        self.backup_dir.mkdir(parents=True, exist_ok=True)

        if backup_name is None:
            backup_name = f"{_safe_name(storage.extension_id)}-{datetime.now().strftime('%Y%m%d_%H%M%S_%f')}"
        backup_path = str(self.backup_dir / f"{backup_name}.zip")

        metadata = BackupMetadata(
            backup_id=f"backup_{datetime.now().strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:8]}",
            extension_id=storage.extension_id,
            creation_time=datetime.now(),
            backup_path=backup_path,
            original_path=storage_root,
        )
        errors: List[str] = []

        self.logger.info(f"Starting backup of {storage.extension_id}: {backup_path}")
        try:
            with zipfile.ZipFile(backup_path, 'w', compression=zipfile.ZIP_DEFLATED) as archive:
                for path, relative_path, info in files:
                    check_cancelled(token, "backup")
                    try:
                        item = self._create_backup_item(path, relative_path, info, storage.items)
                        archive.write(path, arcname=relative_path)
                    except OSError as e:
                        self.logger.warning(f"Skipping unreadable file {path}: {e}")
                        errors.append(f"{path}: {e}")
                        continue
                    metadata.items.append(item)
                    metadata.total_size += info.st_size
                    metadata.file_count += 1

            metadata.checksum = file_checksum(backup_path)
            self._save_metadata(metadata)
        except BaseException:
            self._remove_quietly(backup_path)
            self._remove_quietly(metadata_path_for(backup_path))
            raise

        backup_size = os.path.getsize(backup_path)
        self.logger.info(
            f"Backup completed: {backup_path} ({metadata.file_count} files, {backup_size / MB:.2f} MB)"
        )
        return BackupResult(
            backup_path=backup_path,
            backup_size=backup_size,
            file_count=metadata.file_count,
            backup_duration=time.time() - start_time,
            metadata=metadata,
            errors=errors,
        )

    def _collect_files(self, storage_root: str):
        files = []
        if os.path.isfile(storage_root):
            info = os.stat(storage_root)
            return [(storage_root, os.path.basename(storage_root), info)]

        def on_error(error: OSError):
            self.logger.warning(f"Cannot read directory during backup: {error}")

        for dirpath, dirnames, filenames in os.walk(storage_root, onerror=on_error):
            dirnames.sort()
            for name in sorted(filenames):
                path = os.path.join(dirpath, name)
                try:
                    info = os.stat(path)
                except OSError as e:
                    self.logger.warning(f"Cannot stat {path}: {e}")
                    continue
                if not os.path.isfile(path):
                    continue
                relative_path = os.path.relpath(path, storage_root).replace(os.sep, '/')
                files.append((path, relative_path, info))
        return files

    def _create_backup_item(self, path: str, relative_path: str, info: os.stat_result,
                            storage_items: List[DataItem]) -> BackupItem:
        risk = TelemetryRisk.NONE
        item_type = "file"
        for item in storage_items:
            if item.source_path == path or (item.key and item.key in relative_path):
                risk = item.risk
                item_type = item.source_type.value
                break
        return BackupItem(
            relative_path=relative_path,
            original_path=path,
            size=info.st_size,
            mod_time=datetime.fromtimestamp(info.st_mtime),
            checksum=file_checksum(path),
            item_type=item_type,
            risk=risk,
        )

    def ensure_capacity(self, required_bytes: int):
        """Raise ExhaustionError if a backup of required_bytes cannot be taken."""
        ceiling = self.config.max_backup_size_mb * MB
        if ceiling > 0 and required_bytes > ceiling:
            raise ExhaustionError(
                f"Backup of {required_bytes / MB:.2f} MB exceeds the {self.config.max_backup_size_mb} MB ceiling",
                str(self.backup_dir),
            )

        existing = self.backup_dir.resolve()
        while not existing.exists() and existing.parent != existing:
            existing = existing.parent
        free = psutil.disk_usage(str(existing)).free
        if free - required_bytes < self.config.min_free_disk_mb * MB:
            raise ExhaustionError(
                f"Not enough free disk space for backup: {free / MB:.0f} MB free, "
                f"{required_bytes / MB:.2f} MB needed plus {self.config.min_free_disk_mb} MB reserve",
                str(existing),
            )

    def backup_storage_item(self, item: DataItem) -> str:
        """Write one data item to <backup dir>/items/ as JSON and return the path."""
        timestamp = int(time.time())
        backup_name = f"storage-item-{item.key.replace('/', '-')}-{timestamp}"
        items_dir = self.backup_dir / ITEMS_DIRECTORY
        items_dir.mkdir(parents=True, exist_ok=True)

        backup_path = items_dir / f"{_safe_name(backup_name)}.json"
        counter = 1
        while backup_path.exists():
            backup_path = items_dir / f"{_safe_name(backup_name)}-{counter}.json"
            counter += 1

        backup_data = {
            'key': item.key,
            'value': item.value,
            'size': item.size,
            'type': item.source_type.value,
            'risk': item.risk.label,
            'category': item.category,
            'description': item.description,
            'source_path': item.source_path,
            'extension_id': item.extension_id,
            'last_modified': item.last_modified.isoformat() if item.last_modified else None,
            'backup_time': datetime.now().isoformat(),
        }
        with open(backup_path, 'w', encoding='utf-8') as f:
            json.dump(backup_data, f, indent=2, default=str)

        self.logger.debug(f"Backed up storage item {item.key} to {backup_path}")
        return str(backup_path)

    # Verification and restoration

    def verify_backup(self, backup_path: str, strict: bool = False) -> bool:
        """
        Recompute the archive checksum and read every entry.

        The verified flag is persisted to the sidecar either way. Returns False
        on mismatch, or raises IntegrityError when strict is set.
        """
        metadata = self.load_metadata(metadata_path_for(backup_path))
        problem = self._integrity_problem(backup_path, metadata)

        metadata.verified = problem is None
        self._save_metadata(metadata)

        if problem is None:
            self.logger.info(f"Backup integrity verification passed for {metadata.backup_id}")
            return True

        self.logger.error(f"Backup integrity verification failed for {metadata.backup_id}: {problem}")
        if strict:
            raise IntegrityError(problem, backup_path)
        return False

    def _integrity_problem(self, backup_path: str, metadata: BackupMetadata) -> Optional[str]:
        if not os.path.isfile(backup_path):
            return "Backup file not found"

        current_checksum = file_checksum(backup_path)
        if current_checksum != metadata.checksum:
            return f"Backup checksum mismatch: expected {metadata.checksum}, got {current_checksum}"

        try:
            with zipfile.ZipFile(backup_path, 'r') as archive:
                bad_entry = archive.testzip()
                if bad_entry is not None:
                    return f"Corrupt archive entry: {bad_entry}"
                names = set(archive.namelist())
        except (zipfile.BadZipFile, zipfile.LargeZipFile, OSError, RuntimeError) as e:
            return f"Zip file integrity check failed: {e}"

        missing = [item.relative_path for item in metadata.items if item.relative_path not in names]
        if missing:
            return f"Archive is missing {len(missing)} entries listed in metadata"
        return None

    def restore_backup(self, backup_path: str, restore_path: str) -> RestoreResult:
        """
        Extract a backup into restore_path.

        Unverified backups are verified first. Raises IntegrityError when
        verification fails or an entry would land outside restore_path; no
        file is written in either case.
        """
        start_time = time.time()
        result = RestoreResult(restored_path=restore_path)
        metadata_path = metadata_path_for(backup_path)
        metadata = self.load_metadata(metadata_path)

        if not metadata.verified:
            self.verify_backup(backup_path, strict=True)
            metadata = self.load_metadata(metadata_path)

        self.logger.info(f"Restoring backup {metadata.backup_id} to {restore_path}")
        try:
            os.makedirs(restore_path, exist_ok=True)
            with zipfile.ZipFile(backup_path, 'r') as archive:
                members = archive.infolist()
                destination = os.path.realpath(restore_path)
                targets = []
                for member in members:
                    target = os.path.realpath(os.path.join(destination, member.filename))
                    if not target.startswith(destination + os.sep):
                        raise IntegrityError(f"Invalid file path in archive: {member.filename}", backup_path)
                    targets.append((member, target))

                for member, target in targets:
                    if member.is_dir():
                        os.makedirs(target, exist_ok=True)
                        continue
                    os.makedirs(os.path.dirname(target), exist_ok=True)
                    with archive.open(member) as source, open(target, 'wb') as out:
                        for chunk in iter(lambda: source.read(65536), b""):
                            out.write(chunk)
                    result.restored_size += member.file_size
                    result.file_count += 1
        except IntegrityError:
            raise
        except (OSError, zipfile.BadZipFile) as e:
            result.errors.append(f"Failed to extract backup: {e}")
            self.logger.error(f"Backup restoration failed: {e}")

        result.success = not result.errors
        result.restore_duration = time.time() - start_time

        metadata.restoration_info = RestorationInfo(
            restored_time=datetime.now(),
            restoration_path=restore_path,
            success=result.success,
            error_message="; ".join(result.errors),
        )
        try:
            self._save_metadata(metadata)
        except OSError as e:
            result.errors.append(f"Failed to update metadata: {e}")
            result.success = False

        if result.success:
            self.logger.info(f"Backup restoration completed: {metadata.backup_id} ({result.file_count} files)")
        return result

    # Metadata

    def load_metadata(self, metadata_path: str) -> BackupMetadata:
        try:
            with open(metadata_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except FileNotFoundError:
            raise AccessError("Backup metadata not found", metadata_path)
        except OSError as e:
            raise AccessError(f"Cannot read backup metadata: {e}", metadata_path)
        except ValueError as e:
            raise ParseError(f"Invalid backup metadata: {e}", metadata_path)
        try:
            return BackupMetadata.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise ParseError(f"Invalid backup metadata: {e}", metadata_path)

    def _save_metadata(self, metadata: BackupMetadata):
        with open(metadata_path_for(metadata.backup_path), 'w', encoding='utf-8') as f:
            json.dump(metadata.to_dict(), f, indent=2)

    # Housekeeping

    def list_backups(self) -> List[BackupMetadata]:
        """All backups with readable metadata, oldest first."""
        backups = []
        if not self.backup_dir.exists():
            return backups

        for metadata_file in self.backup_dir.rglob(f"*{METADATA_SUFFIX}"):
            try:
                backups.append(self.load_metadata(str(metadata_file)))
            except (AccessError, ParseError) as e:
                self.logger.warning(f"Skipping backup metadata {metadata_file}: {e}")

        backups.sort(key=lambda b: b.creation_time)
        return backups

    def cleanup_old_backups(self, now: Optional[datetime] = None) -> List[str]:
        """
        Remove backups older than the age limit, then evict the oldest
        remaining backups while the total exceeds the size ceiling.

        Returns the removed archive paths.
        """
        now = now or datetime.now()
        max_age = timedelta(days=self.config.max_backup_age_days)
        ceiling = self.config.max_backup_size_mb * MB
        self.logger.info("Starting backup cleanup")

        backups = self.list_backups()
        total_size = sum(b.total_size for b in backups)
        removed = []

        for backup in backups:
            too_old = self.config.max_backup_age_days > 0 and now - backup.creation_time > max_age
            over_ceiling = ceiling > 0 and total_size > ceiling
            if not (too_old or over_ceiling):
                continue
            try:
                self.remove_backup(backup)
            except OSError as e:
                self.logger.error(f"Error removing backup {backup.backup_path}: {e}")
                continue
            total_size -= backup.total_size
            removed.append(backup.backup_path)
            self.logger.info(f"Deleted old backup: {backup.backup_id}")

        self.logger.info(f"Backup cleanup completed: {len(removed)} backups removed")
        return removed

    def remove_backup(self, backup: BackupMetadata):
        for path in (backup.backup_path, metadata_path_for(backup.backup_path)):
            try:
                os.remove(path)
            except FileNotFoundError:
                continue

    def _remove_quietly(self, path: str):
        try:
            os.remove(path)
        except OSError:
            pass

    def backup_directory_size(self) -> int:
        if not self.backup_dir.exists():
            return 0
        return sum(f.stat().st_size for f in self.backup_dir.rglob('*') if f.is_file())

    def get_backup_status(self) -> Dict[str, Any]:
        """Get current backup status and statistics."""
        backups = self.list_backups()
        latest = backups[-1].to_dict() if backups else None
        return {
            'backup_directory': str(self.backup_dir),
            'total_backups': len(backups),
            'verified_backups': sum(1 for b in backups if b.verified),
            'total_size_mb': self.backup_directory_size() / MB,
            'latest_backup': latest,
            'config': {
                'max_backup_age_days': self.config.max_backup_age_days,
                'max_backup_size_mb': self.config.max_backup_size_mb,
                'verify_integrity': self.config.verify_integrity,
            },
        }


def create_backup_manager(backup_directory: str = "backups/extensions",
                          config_path: Optional[str] = None, **kwargs) -> BackupManager:
    """Create a new backup manager instance."""
    if config_path:
        return BackupManager(config_path=config_path)
    return BackupManager(BackupConfig(backup_directory=backup_directory, **kwargs))
