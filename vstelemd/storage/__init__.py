"""
Backups and on-disk mutation of editor storage.
"""

from .backup_manager import (
    BackupConfig,
    BackupItem,
    BackupManager,
    BackupMetadata,
    BackupResult,
    RestorationInfo,
    RestoreResult,
    create_backup_manager,
)
from .database_cleaner import DatabaseCleaner, DatabaseCleanResult
from .json_editor import JsonEditor, JsonEditResult
from .telemetry_ids import TelemetryIdResult, TelemetryIdRewriter, generate_device_id, generate_machine_id

__all__ = [
    'BackupConfig',
    'BackupItem',
    'BackupManager',
    'BackupMetadata',
    'BackupResult',
    'RestorationInfo',
    'RestoreResult',
    'create_backup_manager',
    'DatabaseCleaner',
    'DatabaseCleanResult',
    'JsonEditor',
    'JsonEditResult',
    'TelemetryIdResult',
    'TelemetryIdRewriter',
    'generate_device_id',
    'generate_machine_id',
]
