"""
Unit tests for retention policy analysis.

Tests period parsing, explicit policy files, inference from file ages, the
keyword defaults and recommendations.
"""

import json
import os
import time
from datetime import datetime, timedelta, timezone

from vstelemd.analysis.retention import (
    RetentionAnalyzer,
    RetentionPolicyType,
    SOURCE_DEFAULT,
    SOURCE_EXPLICIT,
    SOURCE_INFERRED,
    parse_cleanup_rule,
    parse_policy_type,
    parse_retention_period,
    parse_timestamp,
)
from vstelemd.patterns.risk import TelemetryRisk
from vstelemd.scanners.base import ErrorCollector
from vstelemd.scanners.models import DataItem, ExtensionStorage, SourceType


class TestParsing:
    """Test the value parsers."""

    def test_duration_strings(self):
        assert parse_retention_period("72h") == timedelta(hours=72)
        assert parse_retention_period("1h30m") == timedelta(minutes=90)
        assert parse_retention_period("500ms") == timedelta(milliseconds=500)

    def test_free_text_periods(self):
        assert parse_retention_period("every day") == timedelta(days=1)
        assert parse_retention_period("2 weeks") == timedelta(days=7)
        assert parse_retention_period("monthly") == timedelta(days=30)
        assert parse_retention_period("one year") == timedelta(days=365)
        assert parse_retention_period("forever") == timedelta(0)

    def test_numbers_are_hours(self):
        assert parse_retention_period(48) == timedelta(hours=48)
        assert parse_retention_period(0) == timedelta(0)
        assert parse_retention_period(True) == timedelta(0)
        assert parse_retention_period(None) == timedelta(0)

    def test_timestamps(self):
        assert parse_timestamp("2025-01-02T03:04:05Z") == datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        assert parse_timestamp("2025-01-02 03:04:05") == datetime(2025, 1, 2, 3, 4, 5)
        assert parse_timestamp(0) == datetime(1970, 1, 1, tzinfo=timezone.utc)
        assert parse_timestamp("yesterday") is None
        assert parse_timestamp(False) is None

    def test_policy_type(self):
        assert parse_policy_type("weekly-cleanup") == RetentionPolicyType.WEEKLY
        assert parse_policy_type("never expire") == RetentionPolicyType.PERMANENT
        assert parse_policy_type("ttl based") == RetentionPolicyType.CUSTOM
        assert parse_policy_type("whatever") == RetentionPolicyType.NONE
        assert parse_policy_type(3) == RetentionPolicyType.NONE

    def test_cleanup_rule(self):
        rule = parse_cleanup_rule({"name": "logs", "pattern": "*.log", "maxAge": "24h",
                                   "maxSize": 1024, "priority": 2, "enabled": False})
        assert rule.name == "logs"
        assert rule.max_age == timedelta(hours=24)
        assert rule.max_size == 1024
        assert not rule.enabled
        assert parse_cleanup_rule({"priority": 5}) is None


class TestRetentionAnalyzer:
    """Test policy resolution for storage directories."""

    def write_json(self, path, document):
        with open(path, "w") as f:
            json.dump(document, f)

    def test_explicit_policy_file(self, tmp_path):
        self.write_json(tmp_path / "retention.json", {
            "retentionPeriod": "168h",
            "cleanup": {"enabled": True, "maxAge": "24h",
                        "rules": [{"name": "old-logs", "pattern": "*.log", "maxAge": "48h"}]},
            "lastCleanup": "2025-06-01T00:00:00Z",
        })

        policy = RetentionAnalyzer().analyze("pub.ext", str(tmp_path))

        assert policy.has_policy
        assert policy.policy_source == SOURCE_EXPLICIT
        assert policy.retention_period == timedelta(days=7)
        assert policy.policy_type == RetentionPolicyType.CUSTOM
        assert policy.auto_cleanup
        assert policy.is_enforced
        assert [r.name for r in policy.cleanup_rules] == ["MaxAge", "old-logs"]
        assert policy.next_cleanup == datetime(2025, 6, 8, tzinfo=timezone.utc)

    def test_policy_in_other_json_file(self, tmp_path):
        (tmp_path / "nested").mkdir()
        self.write_json(tmp_path / "nested" / "state.json", {"ttl": 12})

        policy = RetentionAnalyzer().analyze("pub.ext", str(tmp_path))

        assert policy.policy_source == SOURCE_EXPLICIT
        assert policy.retention_period == timedelta(hours=12)

    def test_malformed_policy_file_is_recorded(self, tmp_path):
        (tmp_path / "policy.json").write_text("{broken")
        collector = ErrorCollector("retention")

        RetentionAnalyzer(collector).analyze("pub.ext", str(tmp_path))

        assert collector.count("parse") >= 1

    def test_inferred_from_file_ages(self, tmp_path):
        old = tmp_path / "a.bin"
        new = tmp_path / "b-cleanup.bin"
        old.write_bytes(b"1")
        new.write_bytes(b"2")
        now = time.time()
        os.utime(old, (now - 3 * 86400, now - 3 * 86400))
        os.utime(new, (now, now))

        policy = RetentionAnalyzer().analyze("pub.ext", str(tmp_path))

        assert policy.policy_source == SOURCE_INFERRED
        assert policy.policy_type == RetentionPolicyType.DAILY
        assert policy.retention_period == timedelta(days=7)
        assert policy.auto_cleanup

    def test_default_from_keyword_table(self, tmp_path):
        empty = tmp_path / "empty"
        empty.mkdir()

        policy = RetentionAnalyzer().analyze("acme.usage-helper", str(empty))

        assert not policy.has_policy
        assert policy.policy_source == SOURCE_DEFAULT
        assert policy.retention_period == timedelta(days=90)

    def test_default_without_keyword(self):
        assert RetentionAnalyzer.default_retention_period("acme.widget", "/nowhere") == timedelta(days=30)
        assert RetentionAnalyzer.default_retention_period("acme.telemetry", "/nowhere") == timedelta(days=7)


class TestRecommendations:

    def make_item(self, key, risk, age_days):
        return DataItem(
            key=key, value=1, size=10, risk=risk, category="Data",
            source_type=SourceType.STORAGE_KEY, source_path="/x/state.json",
            last_modified=datetime(2026, 1, 1) - timedelta(days=age_days),
        )

    def test_recommendations(self):
        storage = ExtensionStorage(extension_id="pub.ext", storage_path="/x", items=[
            self.make_item("userId", TelemetryRisk.HIGH, 1),
            self.make_item("featureUsage", TelemetryRisk.MEDIUM, 120),
            self.make_item("preferences", TelemetryRisk.LOW, 5),
        ], total_size=200 * 1024 * 1024)
        storage.refresh_aggregates()

        types = [r.type for r in RetentionAnalyzer().recommend(storage, now=datetime(2026, 1, 1))]

        assert types == ["high_risk_data", "old_data", "storage_size", "privacy"]

    def test_nothing_to_recommend(self):
        storage = ExtensionStorage(extension_id="pub.ext", storage_path="/x")
        assert RetentionAnalyzer().recommend(storage) == []
