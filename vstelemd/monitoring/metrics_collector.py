"""
Metrics collection for vstelemd.

Provides the base collector with a private Prometheus registry and timed
asynchronous collection, and the cleaner's own collector for scan, backup
and removal activity.
"""

import asyncio
import logging
import os
import time
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, TYPE_CHECKING

import psutil
from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

if TYPE_CHECKING:
    from ..cleaner.engine import ExtensionCleanResult
    from ..storage.backup_manager import BackupManager


class MetricsCollector(ABC):
    """
    Base class for metrics collectors.

    Provides common functionality for:
    - Asynchronous metrics collection with duration and error tracking
    - Registry management
    - Metric factory helpers
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional Prometheus registry. If None, a private one is created.
        """
        self.registry = registry or CollectorRegistry()
        self.logger = logging.getLogger(f"{self.__class__.__module__}.{self.__class__.__name__}")
        self._collection_start_time = time.time()
        self._last_collection_time = 0.0
        self._collection_count = 0

        collector_type = self.__class__.__name__.lower()
        self._collection_duration = Histogram(
            f'metrics_collection_duration_seconds_{collector_type}',
            'Time spent collecting metrics',
            ['collector_type'],
            registry=self.registry
        )
        self._collection_errors = Counter(
            f'metrics_collection_errors_total_{collector_type}',
            'Total number of metrics collection errors',
            ['collector_type', 'error_type'],
            registry=self.registry
        )

        self._initialize_metrics()

    @abstractmethod
    def _initialize_metrics(self) -> None:
        """Initialize collector-specific metrics. Must be implemented by subclasses."""
        pass

    @abstractmethod
    async def collect_metrics(self) -> Dict[str, Any]:
        """Collect metrics asynchronously. Must be implemented by subclasses."""
        pass

    async def collect(self) -> Dict[str, Any]:
        """
        Main collection method with performance tracking.

        Returns:
            Dictionary containing collected metrics data
        """
        start_time = time.time()
        collector_type = self.__class__.__name__

        try:
            metrics_data = await self.collect_metrics()

            duration = time.time() - start_time
            self._collection_duration.labels(collector_type=collector_type).observe(duration)
            self._last_collection_time = time.time()
            self._collection_count += 1

            self.logger.debug(f"Collected {len(metrics_data)} metrics in {duration:.4f}s")
            return metrics_data

        except Exception as e:
            self._collection_errors.labels(
                collector_type=collector_type,
                error_type=type(e).__name__
            ).inc()
            self.logger.error(f"Error collecting metrics: {e}")
            raise

    def get_registry(self) -> CollectorRegistry:
        return self.registry

    def export(self) -> bytes:
        """Render the registry in the Prometheus text format."""
        return generate_latest(self.registry)

    def get_metrics_summary(self) -> Dict[str, Any]:
        uptime = time.time() - self._collection_start_time
        return {
            'collector_type': self.__class__.__name__,
            'uptime_seconds': uptime,
            'collection_count': self._collection_count,
            'last_collection_time': self._last_collection_time,
        }

    def create_counter(self, name: str, description: str,
                       labelnames: Optional[List[str]] = None) -> Counter:
        return Counter(name, description, labelnames or [], registry=self.registry)

    def create_histogram(self, name: str, description: str,
                         labelnames: Optional[List[str]] = None,
                         buckets: Optional[List[float]] = None) -> Histogram:
        if buckets is None:
            return Histogram(name, description, labelnames or [], registry=self.registry)
        return Histogram(name, description, labelnames or [], buckets=buckets, registry=self.registry)

    def create_gauge(self, name: str, description: str,
                     labelnames: Optional[List[str]] = None) -> Gauge:
        return Gauge(name, description, labelnames or [], registry=self.registry)


class CleanerMetricsCollector(MetricsCollector):
    """
    Collects scan, backup and removal metrics.

    Counters and histograms are updated as work happens; gauges for the backup
    directory and free disk space are refreshed by collect_metrics().
    """

    def __init__(self, backup_manager: Optional["BackupManager"] = None,
                 registry: Optional[CollectorRegistry] = None):
        self.backup_manager = backup_manager
        super().__init__(registry)

    def _initialize_metrics(self) -> None:
        self.items_scanned_total = self.create_counter(
            'vstelemd_items_scanned_total',
            'Classified data items found by scanners',
            ['source']
        )
        self.items_removed_total = self.create_counter(
            'vstelemd_items_removed_total',
            'Data items removed (or that would be removed in a dry run)',
            ['extension_id', 'dry_run']
        )
        self.bytes_removed_total = self.create_counter(
            'vstelemd_bytes_removed_total',
            'Bytes of data removed',
            ['dry_run']
        )
        self.backups_total = self.create_counter(
            'vstelemd_backups_total',
            'Backup attempts by outcome',
            ['status']
        )
        self.blocked_removals_total = self.create_counter(
            'vstelemd_blocked_removals_total',
            'Removals stopped by the safety gate',
            ['reason']
        )
        self.skipped_entries_total = self.create_counter(
            'vstelemd_skipped_entries_total',
            'Entries skipped by scanners',
            ['source', 'kind']
        )
        self.scan_duration = self.create_histogram(
            'vstelemd_scan_duration_seconds',
            'Scanner run duration',
            ['source'],
            buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0]
        )
        self.cleanup_duration = self.create_histogram(
            'vstelemd_cleanup_duration_seconds',
            'Per-extension cleanup duration',
            buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0]
        )
        self.backup_directory_bytes = self.create_gauge(
            'vstelemd_backup_directory_bytes',
            'Total size of the backup directory'
        )
        self.disk_free_bytes = self.create_gauge(
            'vstelemd_disk_free_bytes',
            'Free disk space where backups are written'
        )

    def record_scan(self, source: str, items: int, duration: float,
                    skipped_by_kind: Optional[Dict[str, int]] = None):
        self.items_scanned_total.labels(source=source).inc(items)
        self.scan_duration.labels(source=source).observe(duration)
        for kind, count in (skipped_by_kind or {}).items():
            self.skipped_entries_total.labels(source=source, kind=kind).inc(count)

    def record_cleanup(self, result: "ExtensionCleanResult"):
        dry_run = str(result.dry_run).lower()
        if result.items_removed:
            self.items_removed_total.labels(extension_id=result.extension_id, dry_run=dry_run).inc(
                result.items_removed
            )
            self.bytes_removed_total.labels(dry_run=dry_run).inc(result.total_size_removed)
        self.cleanup_duration.observe(result.cleanup_duration)

    def record_backup(self, status: str):
        self.backups_total.labels(status=status).inc()

    def record_blocked(self, reason: str):
        self.blocked_removals_total.labels(reason=reason).inc()

    async def collect_metrics(self) -> Dict[str, Any]:
        backup_bytes = 0
        disk_free = 0
        backup_dir = None
        if self.backup_manager is not None:
            backup_dir = str(self.backup_manager.backup_dir)
            backup_bytes = await asyncio.to_thread(self.backup_manager.backup_directory_size)

        existing = os.path.abspath(backup_dir or ".")
        while not os.path.exists(existing) and os.path.dirname(existing) != existing:
            existing = os.path.dirname(existing)
        try:
            disk_free = psutil.disk_usage(existing).free
        except OSError as e:
            self.logger.warning(f"Could not read disk usage for {existing}: {e}")

        self.backup_directory_bytes.set(backup_bytes)
        self.disk_free_bytes.set(disk_free)

        return {
            'backup_directory': backup_dir,
            'backup_directory_bytes': backup_bytes,
            'disk_free_bytes': disk_free,
            'timestamp': datetime.now().isoformat(),
        }


def create_cleaner_metrics_collector(backup_manager: Optional["BackupManager"] = None) -> CleanerMetricsCollector:
    return CleanerMetricsCollector(backup_manager)
