"""
Unit tests for the cleaner metrics collector.
"""

import pytest
from unittest.mock import Mock, patch
from prometheus_client import CollectorRegistry

from vstelemd.cleaner.engine import ExtensionCleanResult
from vstelemd.monitoring.metrics_collector import CleanerMetricsCollector, MetricsCollector


class StaticMetricsCollector(MetricsCollector):
    """Test implementation of MetricsCollector."""

    def _initialize_metrics(self) -> None:
        self.test_counter = self.create_counter('test_counter_total', 'Test counter metric', ['test_label'])

    async def collect_metrics(self) -> dict:
        return {'test': 'data'}


class FailingMetricsCollector(StaticMetricsCollector):

    async def collect_metrics(self) -> dict:
        raise RuntimeError("collection failed")


class TestMetricsCollectorBase:
    """Test cases for the base MetricsCollector class."""

    def test_initialization(self):
        """Test metrics collector initialization."""
        collector = StaticMetricsCollector()

        assert collector.registry is not None
        assert collector._collection_count == 0
        assert collector._last_collection_time == 0.0

    def test_initialization_with_custom_registry(self):
        """Test initialization with custom registry."""
        custom_registry = CollectorRegistry()
        collector = StaticMetricsCollector(registry=custom_registry)

        assert collector.get_registry() is custom_registry

    @pytest.mark.asyncio
    async def test_collect_tracks_count(self):
        """Test that a successful collection is counted."""
        collector = StaticMetricsCollector()

        data = await collector.collect()

        assert data == {'test': 'data'}
        assert collector.get_metrics_summary()['collection_count'] == 1

    @pytest.mark.asyncio
    async def test_collect_error_is_counted_and_raised(self):
        """Test that collection errors are recorded."""
        collector = FailingMetricsCollector()

        with pytest.raises(RuntimeError):
            await collector.collect()

        value = collector.registry.get_sample_value(
            'metrics_collection_errors_total_failingmetricscollector_total',
            {'collector_type': 'FailingMetricsCollector', 'error_type': 'RuntimeError'},
        )
        assert value == 1.0


class TestCleanerMetricsCollector:
    """Test cases for CleanerMetricsCollector."""

    def make_result(self, items_removed=3, size=120, dry_run=False):
        result = ExtensionCleanResult("pub.tool", "/storage/pub.tool", "global", "op-1", dry_run=dry_run)
        result.items_removed = items_removed
        result.total_size_removed = size
        result.cleanup_duration = 0.2
        return result

    def test_record_cleanup(self):
        """Test removal counters."""
        collector = CleanerMetricsCollector()

        collector.record_cleanup(self.make_result())
        collector.record_cleanup(self.make_result(items_removed=2, size=30, dry_run=True))

        registry = collector.registry
        assert registry.get_sample_value('vstelemd_items_removed_total',
                                         {'extension_id': 'pub.tool', 'dry_run': 'false'}) == 3.0
        assert registry.get_sample_value('vstelemd_items_removed_total',
                                         {'extension_id': 'pub.tool', 'dry_run': 'true'}) == 2.0
        assert registry.get_sample_value('vstelemd_bytes_removed_total', {'dry_run': 'false'}) == 120.0
        assert registry.get_sample_value('vstelemd_cleanup_duration_seconds_count') == 2.0

    def test_empty_cleanup_only_observes_duration(self):
        """Test that a cleanup without removals adds no removal samples."""
        collector = CleanerMetricsCollector()

        collector.record_cleanup(self.make_result(items_removed=0, size=0))

        assert collector.registry.get_sample_value('vstelemd_items_removed_total',
                                                   {'extension_id': 'pub.tool', 'dry_run': 'false'}) is None
        assert collector.registry.get_sample_value('vstelemd_cleanup_duration_seconds_count') == 1.0

    def test_record_scan_backup_and_blocked(self):
        """Test scan, backup and safety gate counters."""
        collector = CleanerMetricsCollector()

        collector.record_scan('database', 12, 0.3, {'access': 2, 'parse': 1})
        collector.record_backup('success')
        collector.record_backup('failed')
        collector.record_blocked('extension_active')

        registry = collector.registry
        assert registry.get_sample_value('vstelemd_items_scanned_total', {'source': 'database'}) == 12.0
        assert registry.get_sample_value('vstelemd_skipped_entries_total',
                                         {'source': 'database', 'kind': 'access'}) == 2.0
        assert registry.get_sample_value('vstelemd_backups_total', {'status': 'failed'}) == 1.0
        assert registry.get_sample_value('vstelemd_blocked_removals_total',
                                         {'reason': 'extension_active'}) == 1.0

    def test_export(self):
        """Test Prometheus text export."""
        collector = CleanerMetricsCollector()
        collector.record_backup('success')

        output = collector.export()

        assert b'vstelemd_backups_total{status="success"} 1.0' in output

    def test_collectors_do_not_share_registries(self):
        """Test that two collectors can be created side by side."""
        first = CleanerMetricsCollector()
        second = CleanerMetricsCollector()

        first.record_blocked('inaccessible')

        assert second.registry.get_sample_value('vstelemd_blocked_removals_total',
                                                {'reason': 'inaccessible'}) is None

    @pytest.mark.asyncio
    @patch('vstelemd.monitoring.metrics_collector.psutil.disk_usage')
    async def test_collect_metrics(self, mock_disk_usage, tmp_path):
        """Test gauge collection from the backup manager and disk usage."""
        mock_disk_usage.return_value = Mock(free=5000)
        backup_manager = Mock()
        backup_manager.backup_dir = tmp_path / "backups"
        backup_manager.backup_directory_size.return_value = 2048
        collector = CleanerMetricsCollector(backup_manager)

        data = await collector.collect()

        assert data['backup_directory'] == str(tmp_path / "backups")
        assert data['backup_directory_bytes'] == 2048
        assert data['disk_free_bytes'] == 5000
        mock_disk_usage.assert_called_once_with(str(tmp_path))
        assert collector.registry.get_sample_value('vstelemd_backup_directory_bytes') == 2048.0
        assert collector.registry.get_sample_value('vstelemd_disk_free_bytes') == 5000.0

    @pytest.mark.asyncio
    @patch('vstelemd.monitoring.metrics_collector.psutil.disk_usage')
    async def test_collect_metrics_disk_error(self, mock_disk_usage):
        """Test that a disk usage failure leaves free space at zero."""
        mock_disk_usage.side_effect = OSError("unavailable")
        collector = CleanerMetricsCollector()

        data = await collector.collect_metrics()

        assert data['backup_directory'] is None
        assert data['disk_free_bytes'] == 0
