"""
Data models for the source scanners.

This module contains the normalized records every scanner emits, plus the
per-source result containers.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple, Union, TYPE_CHECKING

from ..patterns.risk import TelemetryRisk, aggregate_risk
from ..patterns.registry import CodeMatch

if TYPE_CHECKING:
    from ..analysis.retention import RetentionPolicy
    from .base import SkippedEntry


class SourceType(Enum):
    """Where a data item was found."""
    SETTING = "setting"
    STORAGE_KEY = "storage-key"
    DB_ROW = "db-row"
    FILE = "file"


KeyPath = Tuple[Union[str, int], ...]


@dataclass(frozen=True)
class DataItem:
    """A normalized, classified unit of discovered data."""
    key: str
    value: Any
    size: int
    risk: TelemetryRisk
    category: str
    source_type: SourceType
    source_path: str
    last_modified: Optional[datetime] = None
    description: str = ""
    extension_id: Optional[str] = None
    key_path: KeyPath = ()
    table: Optional[str] = None
    access_frequency: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'key': self.key,
            'value': self.value,
            'size': self.size,
            'risk': self.risk.label,
            'category': self.category,
            'source_type': self.source_type.value,
            'source_path': self.source_path,
            'last_modified': self.last_modified.isoformat() if self.last_modified else None,
            'description': self.description,
            'extension_id': self.extension_id,
            'table': self.table,
        }


@dataclass
class ExtensionStorage:
    """Everything one extension keeps in one storage location."""
    extension_id: str
    storage_path: str
    storage_type: str = "global"  # 'global', 'workspace', 'cache', 'temp'
    items: List[DataItem] = field(default_factory=list)
    total_size: int = 0
    telemetry_size: int = 0
    risk: TelemetryRisk = TelemetryRisk.NONE
    retention_policy: Optional["RetentionPolicy"] = None
    data_categories: Set[str] = field(default_factory=set)
    last_accessed: Optional[datetime] = None
    workspace_hash: Optional[str] = None

    def refresh_aggregates(self):
        """Recompute risk and categories from the item list."""
        self.risk = aggregate_risk(self.items)
        self.data_categories = {item.category for item in self.items if item.category}


@dataclass
class WorkspaceStorage:
    """Extension storages found under one workspace hash directory."""
    workspace_hash: str
    workspace_path: str
    extension_storages: List[ExtensionStorage] = field(default_factory=list)
    total_size: int = 0
    telemetry_size: int = 0
    last_accessed: Optional[datetime] = None


@dataclass
class FileMatch:
    """A file the filesystem scanner considers telemetry-related."""
    path: str
    size: int
    modified: datetime
    file_type: str
    description: str
    confidence: float
    risk: TelemetryRisk = TelemetryRisk.NONE


@dataclass
class ExtensionCodeReport:
    """Telemetry code patterns found in one installed extension."""
    extension_id: str
    extension_path: str
    matches: List[CodeMatch] = field(default_factory=list)
    files_scanned: int = 0

    @property
    def risk(self) -> TelemetryRisk:
        return aggregate_risk(self.matches)


@dataclass
class FilesystemScanResult:
    """Result of a filesystem scan."""
    vscode_files: List[FileMatch] = field(default_factory=list)
    target_files: List[FileMatch] = field(default_factory=list)
    config_files: List[FileMatch] = field(default_factory=list)
    log_files: List[FileMatch] = field(default_factory=list)
    items: List[DataItem] = field(default_factory=list)
    skipped: List["SkippedEntry"] = field(default_factory=list)
    scan_duration: float = 0.0

    @property
    def all_files(self) -> List[FileMatch]:
        return self.vscode_files + self.target_files + self.config_files + self.log_files

    @property
    def total_files(self) -> int:
        return len(self.all_files)

    @property
    def total_size(self) -> int:
        return sum(f.size for f in self.all_files)


@dataclass
class ConfigFinding:
    """A telemetry-related setting found in a settings file."""
    file: str
    path: str
    key: str
    value: Any
    risk: TelemetryRisk
    category: str
    description: str
    recommendation: str


@dataclass
class ConfigScanResult:
    """Result of a configuration scan."""
    vscode_settings: List[ConfigFinding] = field(default_factory=list)
    extension_settings: List[ConfigFinding] = field(default_factory=list)
    workspace_settings: List[ConfigFinding] = field(default_factory=list)
    telemetry_settings: List[ConfigFinding] = field(default_factory=list)
    items: List[DataItem] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    skipped: List["SkippedEntry"] = field(default_factory=list)

    @property
    def all_findings(self) -> List[ConfigFinding]:
        return self.vscode_settings + self.extension_settings + self.workspace_settings + self.telemetry_settings

    @property
    def total_findings(self) -> int:
        return len(self.all_findings)

    @property
    def high_risk_findings(self) -> int:
        return sum(1 for f in self.all_findings if f.risk >= TelemetryRisk.HIGH)


@dataclass
class TableScan:
    """Rows inspected and items found in one database table."""
    name: str
    rows_scanned: int = 0
    items: List[DataItem] = field(default_factory=list)


@dataclass
class DatabaseScan:
    """Result of scanning one SQLite database."""
    db_path: str
    tables: List[TableScan] = field(default_factory=list)
    size: int = 0

    @property
    def items(self) -> List[DataItem]:
        return [item for table in self.tables for item in table.items]

    @property
    def risk(self) -> TelemetryRisk:
        return aggregate_risk(self.items)


@dataclass
class DatabaseScanResult:
    """Result of scanning every configured database."""
    databases: List[DatabaseScan] = field(default_factory=list)
    skipped: List["SkippedEntry"] = field(default_factory=list)

    @property
    def items(self) -> List[DataItem]:
        return [item for db in self.databases for item in db.items]

    def items_by_extension(self) -> Dict[str, List[DataItem]]:
        grouped: Dict[str, List[DataItem]] = {}
        for item in self.items:
            if item.extension_id:
                grouped.setdefault(item.extension_id, []).append(item)
        return grouped


@dataclass
class StorageStatistics:
    """Summary numbers for an extension storage scan."""
    total_size: int = 0
    telemetry_size: int = 0
    extension_count: int = 0
    workspace_count: int = 0
    item_count: int = 0
    risk_distribution: Dict[str, int] = field(default_factory=dict)


@dataclass
class StorageScanResult:
    """Result of an extension storage scan."""
    global_storages: List[ExtensionStorage] = field(default_factory=list)
    workspace_storages: List[WorkspaceStorage] = field(default_factory=list)
    cache_storages: List[ExtensionStorage] = field(default_factory=list)
    temp_storages: List[ExtensionStorage] = field(default_factory=list)
    statistics: StorageStatistics = field(default_factory=StorageStatistics)
    skipped: List["SkippedEntry"] = field(default_factory=list)
    scan_duration: float = 0.0

    def all_storages(self) -> List[ExtensionStorage]:
        storages = list(self.global_storages)
        for workspace in self.workspace_storages:
            storages.extend(workspace.extension_storages)
        storages.extend(self.cache_storages)
        storages.extend(self.temp_storages)
        return storages

    def items_by_extension(self) -> Dict[str, List[DataItem]]:
        grouped: Dict[str, List[DataItem]] = {}
        for storage in self.all_storages():
            grouped.setdefault(storage.extension_id, []).extend(storage.items)
        return grouped
