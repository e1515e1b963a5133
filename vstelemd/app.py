"""
Main application entry point.

Wires the path resolver, pattern registry, scanners, analyzers, safety gate,
backup manager and removal engine together from CleanerSettings.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, TypeVar

from .analysis.correlation import CorrelationAnalyzer, CorrelationRecord, CorrelationStatistics
from .analysis.retention import RetentionAnalyzer, RetentionRecommendation
from .cancellation import CancellationToken
from .cleaner.audit_log import RemovalAuditLogger
from .cleaner.engine import ExtensionCleanResult, RemovalEngine
from .config.settings import CleanerSettings, load_settings
from .errors import CleanerError, OperationCancelled
from .monitoring.metrics_collector import CleanerMetricsCollector
from .paths import PathResolver, create_path_resolver
from .patterns.registry import create_pattern_registry
from .safety.dependencies import DependencyChecker
from .safety.preflight import PreflightChecker, PreflightReport
from .safety.validator import SafetyValidator
from .scanners.config_scanner import ConfigScanner
from .scanners.database import DatabaseScanner
from .scanners.extension_storage import ExtensionStorageScanner
from .scanners.filesystem import FilesystemScanner
from .scanners.models import (
    ConfigScanResult,
    DatabaseScanResult,
    DataItem,
    ExtensionStorage,
    FilesystemScanResult,
    StorageScanResult,
)
from .storage.backup_manager import BackupConfig, BackupManager
from .storage.database_cleaner import DatabaseCleaner, DatabaseCleanResult
from .storage.telemetry_ids import TelemetryIdResult, TelemetryIdRewriter

T = TypeVar("T")

STORAGE_DATABASE = "database"


@dataclass
class ScanReport:
    """Everything a full scan found."""
    filesystem: Optional[FilesystemScanResult] = None
    config: Optional[ConfigScanResult] = None
    database: Optional[DatabaseScanResult] = None
    storage: Optional[StorageScanResult] = None
    correlations: List[CorrelationRecord] = field(default_factory=list)
    correlation_statistics: CorrelationStatistics = field(default_factory=CorrelationStatistics)
    retention_recommendations: Dict[str, List[RetentionRecommendation]] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)
    scan_duration: float = 0.0

    def items_by_extension(self) -> Dict[str, List[DataItem]]:
        grouped: Dict[str, List[DataItem]] = {}
        if self.storage is not None:
            for extension_id, items in self.storage.items_by_extension().items():
                grouped.setdefault(extension_id, []).extend(items)
        if self.database is not None:
            for extension_id, items in self.database.items_by_extension().items():
                grouped.setdefault(extension_id, []).extend(items)
        return grouped

    def summary(self) -> Dict[str, Any]:
        return {
            'filesystem_files': self.filesystem.total_files if self.filesystem else 0,
            'config_findings': self.config.total_findings if self.config else 0,
            'high_risk_config_findings': self.config.high_risk_findings if self.config else 0,
            'database_items': len(self.database.items) if self.database else 0,
            'extension_count': self.storage.statistics.extension_count if self.storage else 0,
            'storage_items': self.storage.statistics.item_count if self.storage else 0,
            'telemetry_size': self.storage.statistics.telemetry_size if self.storage else 0,
            'correlations': self.correlation_statistics.total_correlations,
            'recommendations': list(self.config.recommendations) if self.config else [],
            'errors': dict(self.errors),
            'scan_duration': round(self.scan_duration, 3),
        }


def database_storages(result: DatabaseScanResult) -> List[ExtensionStorage]:
    """Group database items into one storage per (database, extension)."""
    storages: Dict[tuple, ExtensionStorage] = {}
    for database in result.databases:
        for item in database.items:
            if not item.extension_id:
                continue
            key = (database.db_path, item.extension_id)
            storage = storages.get(key)
            if storage is None:
                storage = ExtensionStorage(
                    extension_id=item.extension_id,
                    storage_path=database.db_path,
                    storage_type=STORAGE_DATABASE,
                )
                storages[key] = storage
            storage.items.append(item)
            storage.total_size += item.size
    for storage in storages.values():
        storage.refresh_aggregates()
    return list(storages.values())


class TelemetryCleanerApp:
    """Scans for editor telemetry and removes it under a removal policy."""

    def __init__(self, settings: Optional[CleanerSettings] = None, resolver: Optional[PathResolver] = None):
        self.logger = logging.getLogger(__name__)
        self.settings = settings or load_settings()
        self.resolver = resolver or create_path_resolver(self.settings.editor_name,
                                                         self.settings.path_overrides())
        self.registry = create_pattern_registry()
        self.policy = self.settings.build_policy()

        self.backup_manager = BackupManager(BackupConfig(
            backup_directory=self.settings.backup_directory,
            max_backup_age_days=self.settings.max_backup_age_days,
            max_backup_size_mb=self.settings.max_backup_size_mb,
            min_free_disk_mb=self.settings.min_free_disk_mb,
        ))
        self.metrics = CleanerMetricsCollector(self.backup_manager)

        workers = self.settings.max_workers
        self.retention_analyzer = RetentionAnalyzer()
        self.filesystem_scanner = FilesystemScanner(self.resolver, self.registry, workers)
        self.config_scanner = ConfigScanner(self.resolver, self.registry)
        self.database_scanner = DatabaseScanner(self.resolver, self.registry,
                                                timeout=self.settings.database_timeout_seconds,
                                                max_workers=workers)
        self.storage_scanner = ExtensionStorageScanner(self.resolver, self.registry,
                                                       retention_analyzer=self.retention_analyzer,
                                                       max_workers=workers)
        self.correlation_analyzer = CorrelationAnalyzer()

        self.preflight = PreflightChecker(self.resolver, self.settings.backup_directory,
                                          self.settings.min_free_disk_mb)
        self.dependency_checker = DependencyChecker(self.resolver)
        self.database_cleaner = DatabaseCleaner(
            timeout=self.settings.database_timeout_seconds,
            retries=self.settings.file_operation_retries,
        )
        self.engine = RemovalEngine(
            policy=self.policy,
            backup_manager=self.backup_manager,
            safety_validator=SafetyValidator(),
            preflight=self.preflight,
            dependency_checker=self.dependency_checker,
            database_cleaner=DatabaseCleaner(
                timeout=self.settings.database_timeout_seconds,
                retries=self.settings.file_operation_retries,
                create_backups=False,
            ),
            audit_logger=RemovalAuditLogger(self.settings.audit_log_directory),
            metrics=self.metrics,
            max_workers=workers,
        )

    # Scanning

    def _run_scanner(self, name: str, report: ScanReport, scan: Callable[[], T]) -> Optional[T]:
        start_time = time.time()
        try:
            result = scan()
        except OperationCancelled:
            raise
        except CleanerError as e:
            self.logger.error(f"{name} scan failed: {e}")
            report.errors[name] = str(e)
            return None

        skipped = getattr(result, 'skipped', [])
        by_kind: Dict[str, int] = {}
        for entry in skipped:
            by_kind[entry.kind] = by_kind.get(entry.kind, 0) + 1
        items = getattr(result, 'items', None)
        if items is None and isinstance(result, StorageScanResult):
            items = [item for storage in result.all_storages() for item in storage.items]
        self.metrics.record_scan(name, len(items or []), time.time() - start_time, by_kind)
        return result

    def scan_all(self, token: Optional[CancellationToken] = None) -> ScanReport:
        """
        Run every scanner, then the correlation and retention analyses.

        A scanner whose root cannot be read is reported in errors; the other
        scanners still run.
        """
        start_time = time.time()
        report = ScanReport()
        self.logger.info("Starting telemetry scan")

        report.filesystem = self._run_scanner("filesystem", report,
                                              lambda: self.filesystem_scanner.scan(token=token))
        report.config = self._run_scanner("config", report, lambda: self.config_scanner.scan(token))
        report.database = self._run_scanner("database", report, lambda: self.database_scanner.scan(token=token))
        report.storage = self._run_scanner("extension_storage", report, lambda: self.storage_scanner.scan(token))

        report.correlations = self.correlation_analyzer.analyze(report.items_by_extension())
        report.correlation_statistics = self.correlation_analyzer.statistics(report.correlations)
        if report.storage is not None:
            for storage in report.storage.global_storages:
                recommendations = self.retention_analyzer.recommend(storage)
                if recommendations:
                    report.retention_recommendations[storage.extension_id] = recommendations

        report.scan_duration = time.time() - start_time
        self.logger.info(f"Scan completed in {report.scan_duration:.2f}s: {report.summary()}")
        return report

    # Cleaning

    def run_preflight(self) -> PreflightReport:
        return self.preflight.run()

    def clean_extensions(
        self,
        storages: Optional[Iterable[ExtensionStorage]] = None,
        extension_ids: Optional[Iterable[str]] = None,
        include_databases: bool = True,
        token: Optional[CancellationToken] = None,
    ) -> List[ExtensionCleanResult]:
        """
        Clean the given storages, or everything a fresh scan finds.

        extension_ids restricts the run to those extensions.
        """
        if storages is None:
            report = ScanReport()
            scanned = self._run_scanner("extension_storage", report, lambda: self.storage_scanner.scan(token))
            storages = scanned.all_storages() if scanned is not None else []
            if include_databases:
                db_result = self._run_scanner("database", report, lambda: self.database_scanner.scan(token=token))
                if db_result is not None:
                    storages = list(storages) + database_storages(db_result)

        storages = [s for s in storages if s.items]
        if extension_ids is not None:
            wanted = set(extension_ids)
            storages = [s for s in storages if s.extension_id in wanted]

        self.logger.info(f"Cleaning {len(storages)} storages with policy "
                         f"{self.settings.removal_policy}{' (dry run)' if self.policy.dry_run else ''}")
        return self.engine.clean_extensions(storages, token, self.settings.max_workers)

    def clean_database(self, pattern: str, dry_run: Optional[bool] = None) -> List[DatabaseCleanResult]:
        """Bulk-delete rows whose key contains pattern from the global and workspace databases."""
        dry_run = self.policy.dry_run if dry_run is None else dry_run
        results = [self.database_cleaner.clean(self.resolver.get_db_path(), pattern, dry_run)]
        results.extend(self.database_cleaner.clean_workspaces(
            self.resolver.get_workspace_storage_path(), pattern, dry_run
        ))
        return results

    def regenerate_telemetry_ids(self, dry_run: Optional[bool] = None) -> TelemetryIdResult:
        dry_run = self.policy.dry_run if dry_run is None else dry_run
        return TelemetryIdRewriter(self.resolver).rewrite(dry_run=dry_run)


def format_summary(report: ScanReport) -> str:
    summary = report.summary()
    lines = [
        "VS Code Telemetry Scan",
        "=" * 50,
        f"Filesystem matches:      {summary['filesystem_files']}",
        f"Config findings:         {summary['config_findings']} ({summary['high_risk_config_findings']} high risk)",
        f"Database items:          {summary['database_items']}",
        f"Extensions with storage: {summary['extension_count']}",
        f"Storage items:           {summary['storage_items']}",
        f"Telemetry size:          {summary['telemetry_size'] / 1024:.1f} KB",
        f"Cross-extension links:   {summary['correlations']}",
        f"Scan duration:           {summary['scan_duration']}s",
    ]
    for recommendation in summary['recommendations']:
        lines.append(f"- {recommendation}")
    for source, error in summary['errors'].items():
        lines.append(f"! {source}: {error}")
    return "\n".join(lines)


def main() -> int:
    """Main entry point."""
    settings = load_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    app = TelemetryCleanerApp(settings)
    report = app.scan_all()
    print(format_summary(report))
    return 1 if report.errors else 0


if __name__ == "__main__":
    raise SystemExit(main())
