"""
Source scanners.

Four independent readers (filesystem, configuration, database and extension
storage) that emit normalized, classified DataItem records.
"""

from .base import ErrorCollector, SkippedEntry
from .models import (
    ConfigFinding,
    ConfigScanResult,
    DatabaseScan,
    DatabaseScanResult,
    DataItem,
    ExtensionCodeReport,
    ExtensionStorage,
    FileMatch,
    FilesystemScanResult,
    SourceType,
    StorageScanResult,
    WorkspaceStorage,
)
from .config_scanner import ConfigScanner
from .database import DatabaseScanner
from .extension_storage import ExtensionStorageScanner
from .filesystem import FilesystemScanner

__all__ = [
    'ErrorCollector',
    'SkippedEntry',
    'ConfigFinding',
    'ConfigScanResult',
    'DatabaseScan',
    'DatabaseScanResult',
    'DataItem',
    'ExtensionCodeReport',
    'ExtensionStorage',
    'FileMatch',
    'FilesystemScanResult',
    'SourceType',
    'StorageScanResult',
    'WorkspaceStorage',
    'ConfigScanner',
    'DatabaseScanner',
    'ExtensionStorageScanner',
    'FilesystemScanner',
]
