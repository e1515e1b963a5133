"""
Extension storage scanner.

Enumerates per-extension global storage, per-workspace extension storage,
and the extension cache and temp directories of the platform. Every file is
classified by name; JSON files that look telemetry-related are classified key
by key.
"""

import os
import time
from datetime import datetime
from typing import Callable, Dict, List, Optional

import structlog

from ..analysis.retention import RetentionAnalyzer
from ..cancellation import CancellationToken, check_cancelled
from ..errors import AccessError, ParseError
from ..paths import PathResolver
from ..patterns import tables
from ..patterns.registry import CONTEXT_CACHE, CONTEXT_STORAGE, PatternRegistry, categorize_file, categorize_key
from ..patterns.risk import TelemetryRisk
from .base import (
    ErrorCollector,
    SkippedEntry,
    access_frequency,
    estimate_value_size,
    iter_json_members,
    list_directories,
    load_json_file,
    run_bounded,
    sanitize_value,
    walk_files,
)
from .models import DataItem, ExtensionStorage, SourceType, StorageScanResult, StorageStatistics, WorkspaceStorage

logger = structlog.get_logger(__name__)

STORAGE_GLOBAL = "global"
STORAGE_WORKSPACE = "workspace"
STORAGE_CACHE = "cache"
STORAGE_TEMP = "temp"


def workspace_placeholder(workspace_hash: str) -> str:
    """Workspace hashes are not reversed into paths."""
    return f"Unknown workspace (hash: {workspace_hash[:8]})"


def infer_extension_from_path(path: str) -> str:
    lowered = path.lower()
    for hint, extension_id in tables.EXTENSION_PATH_HINTS:
        if hint in lowered:
            return extension_id
    return tables.UNKNOWN_EXTENSION


def infer_cache_type(path: str) -> str:
    lowered = path.lower()
    for hint, cache_type in tables.CACHE_TYPE_HINTS:
        if hint in lowered:
            return cache_type
    return "general"


def infer_file_type(file_name: str) -> str:
    lowered = file_name.lower()
    if lowered.endswith(".log"):
        return "log"
    if lowered.endswith(".json"):
        return "json"
    if lowered.endswith(".tmp"):
        return "temporary"
    if lowered.endswith(".cache"):
        return "cache"
    return "binary"


def is_extension_related(path: str) -> bool:
    lowered = path.lower()
    return any(marker in lowered for marker in tables.EXTENSION_RELATED_MARKERS)


class ExtensionStorageScanner:
    """Scans what extensions keep on disk."""

    def __init__(
        self,
        resolver: PathResolver,
        registry: PatternRegistry,
        retention_analyzer: Optional[RetentionAnalyzer] = None,
        max_workers: int = 4,
        on_error: Optional[Callable[[SkippedEntry], None]] = None,
    ):
        self.resolver = resolver
        self.registry = registry
        self.retention_analyzer = retention_analyzer or RetentionAnalyzer()
        self.max_workers = max_workers
        self.on_error = on_error

    def scan(self, token: Optional[CancellationToken] = None) -> StorageScanResult:
        """
        Scan global, workspace, cache and temp storage.

        Raises AccessError when the global or workspace storage root exists
        but cannot be listed. Cache and temp directories are best-effort.
        """
        start_time = time.time()
        collector = ErrorCollector("extension_storage", self.on_error)
        result = StorageScanResult()

        result.global_storages = self.scan_global_storage(collector, token)
        result.workspace_storages = self.scan_workspace_storage(collector, token)
        result.cache_storages = self.scan_cache_directories(collector, token)
        result.temp_storages = self.scan_temp_directories(collector, token)

        result.statistics = self.calculate_statistics(result)
        result.skipped = collector.entries
        result.scan_duration = time.time() - start_time

        logger.info(
            "Extension storage scan completed",
            extensions=result.statistics.extension_count,
            workspaces=result.statistics.workspace_count,
            items=result.statistics.item_count,
            skipped=len(result.skipped),
            duration=round(result.scan_duration, 3),
        )
        return result

    def scan_global_storage(self, collector: ErrorCollector,
                            token: Optional[CancellationToken] = None) -> List[ExtensionStorage]:
        root = self.resolver.get_global_storage_path()
        extension_ids = list_directories(root)

        def scan_one(extension_id: str) -> ExtensionStorage:
            return self.scan_extension(extension_id, os.path.join(root, extension_id),
                                       STORAGE_GLOBAL, collector=collector, token=token)

        return run_bounded(scan_one, extension_ids, self.max_workers, collector, token,
                           describe=lambda ext: os.path.join(root, ext))

    def scan_workspace_storage(self, collector: ErrorCollector,
                               token: Optional[CancellationToken] = None) -> List[WorkspaceStorage]:
        root = self.resolver.get_workspace_storage_path()
        hashes = list_directories(root)

        def scan_one(workspace_hash: str) -> WorkspaceStorage:
            return self.scan_workspace(workspace_hash, os.path.join(root, workspace_hash), collector, token)

        return run_bounded(scan_one, hashes, self.max_workers, collector, token,
                           describe=lambda h: os.path.join(root, h))

    def scan_workspace(self, workspace_hash: str, workspace_dir: str, collector: ErrorCollector,
                       token: Optional[CancellationToken] = None) -> WorkspaceStorage:
        workspace = WorkspaceStorage(
            workspace_hash=workspace_hash,
            workspace_path=workspace_placeholder(workspace_hash),
        )
        for extension_id in list_directories(workspace_dir):
            check_cancelled(token, "workspace scan")
            path = os.path.join(workspace_dir, extension_id)
            try:
                storage = self.scan_extension(extension_id, path, STORAGE_WORKSPACE,
                                              collector=collector, token=token,
                                              workspace_hash=workspace_hash)
            except AccessError as e:
                collector.record(path, e)
                continue
            workspace.extension_storages.append(storage)
            workspace.total_size += storage.total_size
            workspace.telemetry_size += storage.telemetry_size
            if storage.last_accessed and (workspace.last_accessed is None
                                          or storage.last_accessed > workspace.last_accessed):
                workspace.last_accessed = storage.last_accessed
        return workspace

    def scan_extension(
        self,
        extension_id: str,
        storage_path: str,
        storage_type: str = STORAGE_GLOBAL,
        collector: Optional[ErrorCollector] = None,
        token: Optional[CancellationToken] = None,
        workspace_hash: Optional[str] = None,
    ) -> ExtensionStorage:
        """Scan one extension's storage directory."""
        collector = collector or ErrorCollector("extension_storage", self.on_error)
        try:
            info = os.stat(storage_path)
        except OSError as e:
            raise AccessError(f"Cannot read extension storage: {e}", storage_path)

        storage = ExtensionStorage(
            extension_id=extension_id,
            storage_path=storage_path,
            storage_type=storage_type,
            last_accessed=datetime.fromtimestamp(info.st_mtime),
            workspace_hash=workspace_hash,
        )
        storage.retention_policy = self.retention_analyzer.analyze(extension_id, storage_path)

        for path, file_info in walk_files(storage_path, collector, token):
            self._scan_storage_file(path, file_info, storage, collector)

        storage.refresh_aggregates()
        return storage

    def _scan_storage_file(self, path: str, info: os.stat_result, storage: ExtensionStorage,
                           collector: ErrorCollector):
        storage.total_size += info.st_size
        file_name = os.path.basename(path)
        risk = self.registry.classify_many([file_name, path], CONTEXT_STORAGE).risk
        if risk == TelemetryRisk.NONE:
            return

        modified = datetime.fromtimestamp(info.st_mtime)
        if file_name.lower().endswith(".json"):
            try:
                document = load_json_file(path)
            except (OSError, ParseError) as e:
                collector.record(path, e)
                return
            self._scan_json_document(document, path, modified, storage)
            return

        storage.items.append(DataItem(
            key=file_name,
            value=f"Binary file ({info.st_size} bytes)",
            size=info.st_size,
            risk=risk,
            category=categorize_file(file_name),
            source_type=SourceType.FILE,
            source_path=path,
            last_modified=modified,
            description=f"Storage file with {risk.label} telemetry risk",
            extension_id=storage.extension_id,
            access_frequency=access_frequency(modified),
        ))
        if risk >= TelemetryRisk.MEDIUM:
            storage.telemetry_size += info.st_size

    def _scan_json_document(self, document, path: str, modified: datetime, storage: ExtensionStorage):
        frequency = access_frequency(modified)
        for member in iter_json_members(document):
            texts = [member.key, member.path]
            if isinstance(member.value, str):
                texts.append(member.value)
            risk = self.registry.classify_many(texts, CONTEXT_STORAGE).risk
            if risk == TelemetryRisk.NONE:
                continue
            item = DataItem(
                key=member.path,
                value=sanitize_value(member.value, tables.STORAGE_VALUE_LIMIT),
                size=estimate_value_size(member.value),
                risk=risk,
                category=categorize_key(member.key),
                source_type=SourceType.STORAGE_KEY,
                source_path=path,
                last_modified=modified,
                description=f"Storage key with {risk.label} telemetry risk",
                extension_id=storage.extension_id,
                key_path=member.key_path,
                access_frequency=frequency,
            )
            storage.items.append(item)
            if risk >= TelemetryRisk.MEDIUM:
                storage.telemetry_size += item.size

    # Cache and temp directories

    def scan_cache_directories(self, collector: ErrorCollector,
                               token: Optional[CancellationToken] = None) -> List[ExtensionStorage]:
        directories = [d for d in self.resolver.get_cache_directories() if os.path.isdir(d)]
        return run_bounded(lambda d: self.scan_cache_directory(d, collector, token),
                           directories, self.max_workers, collector, token)

    def scan_cache_directory(self, cache_dir: str, collector: ErrorCollector,
                             token: Optional[CancellationToken] = None) -> ExtensionStorage:
        info = os.stat(cache_dir)
        storage = ExtensionStorage(
            extension_id=infer_extension_from_path(cache_dir),
            storage_path=cache_dir,
            storage_type=STORAGE_CACHE,
            last_accessed=datetime.fromtimestamp(info.st_mtime),
        )
        cache_type = infer_cache_type(cache_dir)
        for path, file_info in walk_files(cache_dir, collector, token):
            item = self._classify_loose_file(path, file_info, storage.extension_id, "Cache")
            if item is None:
                continue
            storage.items.append(item)
            storage.total_size += item.size
            if item.risk >= TelemetryRisk.MEDIUM:
                storage.telemetry_size += item.size
        storage.refresh_aggregates()
        logger.debug("Cache directory scanned", path=cache_dir, cache_type=cache_type, items=len(storage.items))
        return storage

    def scan_temp_directories(self, collector: ErrorCollector,
                              token: Optional[CancellationToken] = None) -> List[ExtensionStorage]:
        """Group extension-related temp files by the extension they appear to belong to."""
        storages: List[ExtensionStorage] = []
        for temp_dir in self.resolver.get_temp_directories():
            if not os.path.isdir(temp_dir):
                continue
            grouped: Dict[str, ExtensionStorage] = {}
            for path, file_info in walk_files(temp_dir, collector, token):
                if not is_extension_related(path):
                    continue
                extension_id = infer_extension_from_path(path)
                item = self._classify_loose_file(path, file_info, extension_id, "Temporary")
                if item is None:
                    continue
                storage = grouped.get(extension_id)
                if storage is None:
                    storage = ExtensionStorage(extension_id=extension_id, storage_path=temp_dir,
                                               storage_type=STORAGE_TEMP)
                    grouped[extension_id] = storage
                storage.items.append(item)
                storage.total_size += item.size
                if item.risk >= TelemetryRisk.MEDIUM:
                    storage.telemetry_size += item.size
                if storage.last_accessed is None or item.last_modified > storage.last_accessed:
                    storage.last_accessed = item.last_modified
            for storage in grouped.values():
                storage.refresh_aggregates()
                storages.append(storage)
        return storages

    def _classify_loose_file(self, path: str, info: os.stat_result, extension_id: str,
                             label: str) -> Optional[DataItem]:
        file_name = os.path.basename(path)
        risk = self.registry.classify_many([file_name, path], CONTEXT_CACHE).risk
        if risk == TelemetryRisk.NONE:
            return None
        modified = datetime.fromtimestamp(info.st_mtime)
        return DataItem(
            key=file_name,
            value=f"{infer_file_type(file_name)} file ({info.st_size} bytes)",
            size=info.st_size,
            risk=risk,
            category=categorize_file(file_name),
            source_type=SourceType.FILE,
            source_path=path,
            last_modified=modified,
            description=f"{label} file with {risk.label} telemetry risk",
            extension_id=extension_id,
            access_frequency=access_frequency(modified),
        )

    @staticmethod
    def calculate_statistics(result: StorageScanResult) -> StorageStatistics:
        stats = StorageStatistics()
        extension_ids = set()
        for storage in result.all_storages():
            stats.total_size += storage.total_size
            stats.telemetry_size += storage.telemetry_size
            stats.item_count += len(storage.items)
            if storage.storage_type in (STORAGE_GLOBAL, STORAGE_WORKSPACE):
                extension_ids.add(storage.extension_id)
            for item in storage.items:
                label = item.risk.label
                stats.risk_distribution[label] = stats.risk_distribution.get(label, 0) + 1
        stats.extension_count = len(extension_ids)
        stats.workspace_count = len(result.workspace_storages)
        return stats


def create_extension_storage_scanner(resolver: PathResolver, registry: PatternRegistry,
                                     max_workers: int = 4) -> ExtensionStorageScanner:
    return ExtensionStorageScanner(resolver, registry, max_workers=max_workers)
