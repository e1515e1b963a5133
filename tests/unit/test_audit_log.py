"""
Unit tests for the removal audit trail.
"""

import json
import shutil
import tempfile
import unittest
from datetime import datetime
from pathlib import Path

from vstelemd.cleaner.audit_log import RemovalAuditLogger
from vstelemd.cleaner.engine import CleanedItem, CleanupState, ExtensionCleanResult
from vstelemd.cleaner.policy import DEFAULT_POLICY
from vstelemd.patterns.risk import TelemetryRisk
from vstelemd.scanners.models import SourceType


def make_result(extension_id, operation_id, state=CleanupState.CLEANED):
    result = ExtensionCleanResult(extension_id, f"/storage/{extension_id}", "global", operation_id)
    result.transition(CleanupState.SAFETY_CHECKED)
    result.transition(state)
    if state == CleanupState.CLEANED:
        result.record(CleanedItem(
            key="usageStats",
            original_size=2048,
            risk=TelemetryRisk.HIGH,
            source_type=SourceType.STORAGE_KEY,
            source_path=f"/storage/{extension_id}/usageStats.json",
            storage_type="global",
            removal_time=datetime(2026, 1, 1, 12, 0, 0),
        ))
    else:
        result.errors.append("Backup not possible: ceiling reached")
    return result


class TestRemovalAuditLogger(unittest.TestCase):
    """Test cases for RemovalAuditLogger."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.logger = RemovalAuditLogger(self.temp_dir)

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def test_log_removal_operation(self):
        """Test the daily log line and the per-operation report."""
        result = make_result("pub.tool", "removal_1")

        entry = self.logger.log_removal_operation(result, DEFAULT_POLICY)

        self.assertEqual(entry['status'], 'success')
        self.assertEqual(entry['items_removed'], 1)
        self.assertEqual(entry['policy_applied']['min_risk_level'], "Medium")

        log_files = list(Path(self.temp_dir).glob("removal_operations_*.jsonl"))
        self.assertEqual(len(log_files), 1)
        lines = log_files[0].read_text().splitlines()
        self.assertEqual(json.loads(lines[0])['operation_id'], "removal_1")

        report = json.loads((Path(self.temp_dir) / "reports" / "removal_report_removal_1.json").read_text())
        self.assertEqual(report['removal_metrics']['total_size_removed'], 2048)
        self.assertEqual(report['removed_items'][0]['key'], "usageStats")
        self.assertFalse(report['error_details']['has_error'])

    def test_failed_operation(self):
        """Test that failures are marked in the report."""
        result = make_result("pub.tool", "removal_2", CleanupState.FAILED)

        entry = self.logger.log_removal_operation(result)

        self.assertEqual(entry['status'], 'failed')
        self.assertIsNone(entry['policy_applied'])
        report = json.loads((Path(self.temp_dir) / "reports" / "removal_report_removal_2.json").read_text())
        self.assertTrue(report['error_details']['has_error'])
        self.assertEqual(report['operation_summary']['state_history'], ["scanned", "safety_checked", "failed"])

    def test_entries_are_appended(self):
        """Test that several operations share the daily file."""
        self.logger.log_removal_operation(make_result("pub.one", "removal_a"))
        self.logger.log_removal_operation(make_result("pub.two", "removal_b"))

        log_file = next(Path(self.temp_dir).glob("removal_operations_*.jsonl"))
        self.assertEqual(len(log_file.read_text().splitlines()), 2)

    def test_summary_report(self):
        """Test the batch summary."""
        results = [make_result("pub.one", "removal_a"),
                   make_result("pub.two", "removal_b", CleanupState.BLOCKED)]

        summary = self.logger.create_removal_summary_report(results)

        overall = summary['overall_summary']
        self.assertEqual(overall['items_removed'], 1)
        self.assertEqual(overall['by_status'], {'success': 1, 'blocked': 1})
        self.assertEqual(overall['success_rate'], 50.0)
        self.assertEqual(len(list((Path(self.temp_dir) / "reports").glob("removal_summary_*.json"))), 1)

    def test_format_duration(self):
        self.assertEqual(self.logger._format_duration(1.5), "1.50s")
        self.assertEqual(self.logger._format_duration(90), "1.5m")
        self.assertEqual(self.logger._format_duration(5400), "1.5h")
