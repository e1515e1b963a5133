"""
Retention policy analysis.

Works out how long an extension intends to keep its stored data. An explicit
policy file wins; otherwise the policy is inferred from the spread of file
modification times; otherwise a default is taken from a keyword table.
"""

import json
import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

import structlog

from ..patterns import tables
from ..patterns.risk import TelemetryRisk
from ..scanners.base import ErrorCollector, walk_files
from ..scanners.models import ExtensionStorage

logger = structlog.get_logger(__name__)

SOURCE_EXPLICIT = "explicit"
SOURCE_INFERRED = "inferred"
SOURCE_DEFAULT = "default"

OLD_DATA_AGE = timedelta(days=90)
LARGE_STORAGE_BYTES = 100 * 1024 * 1024

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1,
    "m": 60,
    "h": 3600,
}
_TIMESTAMP_FORMATS = ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d")


class RetentionPolicyType(Enum):
    """Kinds of retention policy."""
    NONE = "None"
    SESSION = "Session"
    DAILY = "Daily"
    WEEKLY = "Weekly"
    MONTHLY = "Monthly"
    PERMANENT = "Permanent"
    CUSTOM = "Custom"


_KEYWORD_TYPES = {
    "session": RetentionPolicyType.SESSION,
    "daily": RetentionPolicyType.DAILY,
    "weekly": RetentionPolicyType.WEEKLY,
    "monthly": RetentionPolicyType.MONTHLY,
    "permanent": RetentionPolicyType.PERMANENT,
    "custom": RetentionPolicyType.CUSTOM,
}


@dataclass
class CleanupRule:
    """A cleanup rule declared in a policy file."""
    name: str = ""
    pattern: str = ""
    max_age: timedelta = timedelta(0)
    max_size: int = 0
    priority: int = 1
    enabled: bool = True
    description: str = ""


@dataclass
class RetentionPolicy:
    """How long an extension's data is meant to live."""
    has_policy: bool = False
    retention_period: timedelta = timedelta(0)
    auto_cleanup: bool = False
    last_cleanup: Optional[datetime] = None
    policy_source: str = SOURCE_DEFAULT
    policy_type: RetentionPolicyType = RetentionPolicyType.NONE
    config_path: Optional[str] = None
    cleanup_rules: List[CleanupRule] = field(default_factory=list)

    @property
    def next_cleanup(self) -> Optional[datetime]:
        if self.last_cleanup is None or not self.retention_period:
            return None
        return self.last_cleanup + self.retention_period

    @property
    def is_enforced(self) -> bool:
        return self.auto_cleanup and self.retention_period > timedelta(0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'has_policy': self.has_policy,
            'retention_period_seconds': int(self.retention_period.total_seconds()),
            'auto_cleanup': self.auto_cleanup,
            'last_cleanup': self.last_cleanup.isoformat() if self.last_cleanup else None,
            'policy_source': self.policy_source,
            'policy_type': self.policy_type.value,
            'config_path': self.config_path,
            'cleanup_rules': len(self.cleanup_rules),
        }


@dataclass
class RetentionRecommendation:
    """A suggested change to how an extension retains data."""
    type: str
    priority: str
    description: str
    action: str


def parse_retention_period(value: Any) -> timedelta:
    """
    Parse a retention period.

    Accepts duration strings such as "72h" or "1h30m", free text mentioning
    day/week/month/year, and bare numbers which are read as hours. Anything
    else yields a zero period.
    """
    if isinstance(value, bool):
        return timedelta(0)
    if isinstance(value, (int, float)):
        return timedelta(hours=value) if value > 0 else timedelta(0)
    if not isinstance(value, str):
        return timedelta(0)

    text = value.strip()
    if text and _DURATION_PART.sub("", text) == "":
        seconds = sum(float(n) * _DURATION_UNITS[u] for n, u in _DURATION_PART.findall(text))
        return timedelta(seconds=seconds)

    lowered = text.lower()
    if "day" in lowered:
        return timedelta(days=1)
    if "week" in lowered:
        return timedelta(days=7)
    if "month" in lowered:
        return timedelta(days=30)
    if "year" in lowered:
        return timedelta(days=365)
    return timedelta(0)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string, a plain date/time string or a unix timestamp."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if not isinstance(value, str):
        return None

    text = value.strip()
    iso_text = text[:-1] + "+00:00" if text.endswith("Z") else text
    try:
        return datetime.fromisoformat(iso_text)
    except ValueError:
        pass
    for fmt in _TIMESTAMP_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def parse_policy_type(value: Any) -> RetentionPolicyType:
    if not isinstance(value, str):
        return RetentionPolicyType.NONE
    lowered = value.lower()
    for keyword, type_name in tables.POLICY_TYPE_KEYWORDS:
        if keyword in lowered:
            return _KEYWORD_TYPES[type_name]
    return RetentionPolicyType.NONE


def parse_cleanup_rule(config: Dict[str, Any]) -> Optional[CleanupRule]:
    """Build a CleanupRule from a rule object, or None if it names nothing."""
    rule = CleanupRule()
    for key, value in config.items():
        lowered = key.lower()
        if lowered == "name" and isinstance(value, str):
            rule.name = value
        elif lowered == "pattern" and isinstance(value, str):
            rule.pattern = value
        elif lowered in ("maxage", "max_age"):
            rule.max_age = parse_retention_period(value)
        elif lowered in ("maxsize", "max_size") and isinstance(value, (int, float)) and not isinstance(value, bool):
            rule.max_size = int(value)
        elif lowered == "priority" and isinstance(value, (int, float)) and not isinstance(value, bool):
            rule.priority = int(value)
        elif lowered == "enabled" and isinstance(value, bool):
            rule.enabled = value
        elif lowered == "description" and isinstance(value, str):
            rule.description = value

    if rule.name or rule.pattern or rule.max_age > timedelta(0) or rule.max_size > 0:
        return rule
    return None


class RetentionAnalyzer:
    """Resolves the retention policy of an extension storage directory."""

    def __init__(self, collector: Optional[ErrorCollector] = None):
        self.collector = collector or ErrorCollector("retention")

    def analyze(self, extension_id: str, storage_path: str) -> RetentionPolicy:
        """
        Resolve a policy: explicit file > inferred from file ages > default.

        A default policy reports has_policy=False but still carries the
        keyword-table retention period.
        """
        policy = self.find_explicit_policy(storage_path)
        if policy is not None:
            logger.debug("Explicit retention policy found", extension_id=extension_id, config_path=policy.config_path)
            return policy

        policy = self.infer_policy_from_data(storage_path)
        if policy is not None:
            return policy

        return RetentionPolicy(
            has_policy=False,
            retention_period=self.default_retention_period(extension_id, storage_path),
            policy_source=SOURCE_DEFAULT,
        )

    def find_explicit_policy(self, storage_path: str) -> Optional[RetentionPolicy]:
        """Check the well-known policy files first, then any small JSON file."""
        for file_name in tables.POLICY_FILE_NAMES:
            policy = self.parse_policy_file(os.path.join(storage_path, file_name))
            if policy is not None:
                return policy
        return self._find_policy_in_storage_files(storage_path)

    def parse_policy_file(self, path: str) -> Optional[RetentionPolicy]:
        if not os.path.isfile(path):
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                config = json.load(f)
        except (OSError, UnicodeDecodeError) as e:
            self.collector.record(path, e)
            return None
        except json.JSONDecodeError as e:
            self.collector.record(path, e, "parse")
            return None
        if not isinstance(config, dict):
            return None
        return self.extract_policy(config, path)

    def extract_policy(self, config: Dict[str, Any], config_path: str) -> Optional[RetentionPolicy]:
        """Read retention keys from a top-level configuration object."""
        policy = RetentionPolicy(policy_source=SOURCE_EXPLICIT, config_path=config_path)

        for key, value in config.items():
            lowered = key.lower()

            if "retention" in lowered or "ttl" in lowered:
                period = parse_retention_period(value)
                if period > timedelta(0):
                    policy.retention_period = period
                    policy.policy_type = RetentionPolicyType.CUSTOM

            if "cleanup" in lowered or "clean" in lowered:
                if isinstance(value, dict):
                    policy.auto_cleanup = self._parse_cleanup_config(value, policy)
                elif isinstance(value, bool):
                    policy.auto_cleanup = value

            if "lastcleanup" in lowered or "last_cleanup" in lowered:
                timestamp = parse_timestamp(value)
                if timestamp is not None:
                    policy.last_cleanup = timestamp

            if "policy" in lowered or "type" in lowered:
                policy_type = parse_policy_type(value)
                if policy_type != RetentionPolicyType.NONE:
                    policy.policy_type = policy_type

        if (policy.policy_type != RetentionPolicyType.NONE
                or policy.retention_period > timedelta(0)
                or policy.auto_cleanup):
            policy.has_policy = True
            return policy
        return None

    def _parse_cleanup_config(self, config: Dict[str, Any], policy: RetentionPolicy) -> bool:
        auto_cleanup = False
        for key, value in config.items():
            lowered = key.lower()

            if ("enabled" in lowered or "auto" in lowered) and isinstance(value, bool):
                auto_cleanup = value

            if "rule" in lowered and isinstance(value, list):
                for rule_config in value:
                    if isinstance(rule_config, dict):
                        rule = parse_cleanup_rule(rule_config)
                        if rule is not None:
                            policy.cleanup_rules.append(rule)

            if "maxage" in lowered or "max_age" in lowered:
                period = parse_retention_period(value)
                if period > timedelta(0):
                    policy.cleanup_rules.append(CleanupRule(
                        name="MaxAge",
                        max_age=period,
                        description="Maximum age cleanup rule",
                    ))
        return auto_cleanup

    def _find_policy_in_storage_files(self, storage_path: str) -> Optional[RetentionPolicy]:
        if not os.path.isdir(storage_path):
            return None
        for path, info in walk_files(storage_path, self.collector):
            if not path.lower().endswith(".json") or info.st_size > tables.MAX_CONFIG_FILE_BYTES:
                continue
            policy = self.parse_policy_file(path)
            if policy is not None:
                return policy
        return None

    def infer_policy_from_data(self, storage_path: str) -> Optional[RetentionPolicy]:
        """Infer a policy from the span between the oldest and newest file."""
        if not os.path.isdir(storage_path):
            return None

        oldest = newest = None
        has_cleanup_pattern = False
        for path, info in walk_files(storage_path, self.collector):
            modified = info.st_mtime
            if oldest is None or modified < oldest:
                oldest = modified
            if newest is None or modified > newest:
                newest = modified
            name = os.path.basename(path).lower()
            if any(marker in name for marker in tables.AUTO_CLEANUP_FILE_MARKERS):
                has_cleanup_pattern = True

        if oldest is None:
            return None

        span = newest - oldest
        if span < tables.DAY:
            policy_type, period = RetentionPolicyType.SESSION, timedelta(hours=24)
        elif span < 7 * tables.DAY:
            policy_type, period = RetentionPolicyType.DAILY, timedelta(days=7)
        elif span < 30 * tables.DAY:
            policy_type, period = RetentionPolicyType.WEEKLY, timedelta(days=30)
        elif span < 365 * tables.DAY:
            policy_type, period = RetentionPolicyType.MONTHLY, timedelta(days=365)
        else:
            policy_type, period = RetentionPolicyType.PERMANENT, timedelta(0)

        return RetentionPolicy(
            has_policy=True,
            retention_period=period,
            auto_cleanup=has_cleanup_pattern,
            policy_source=SOURCE_INFERRED,
            policy_type=policy_type,
        )

    @staticmethod
    def default_retention_period(extension_id: str, storage_path: str) -> timedelta:
        lowered_path = storage_path.lower()
        lowered_id = extension_id.lower()
        for keyword, seconds in tables.RETENTION_DEFAULTS:
            if keyword in lowered_path or keyword in lowered_id:
                return timedelta(seconds=seconds)
        return timedelta(seconds=tables.DEFAULT_RETENTION_SECONDS)

    def recommend(self, storage: ExtensionStorage, now: Optional[datetime] = None) -> List[RetentionRecommendation]:
        """Retention recommendations for one extension storage."""
        now = now or datetime.now()
        recommendations: List[RetentionRecommendation] = []

        for item in storage.items:
            if item.risk >= TelemetryRisk.HIGH:
                recommendations.append(RetentionRecommendation(
                    type="high_risk_data",
                    priority="high",
                    description=f"High-risk data item: {item.key}",
                    action="Consider removing or implementing short retention period",
                ))
            elif item.last_modified is not None and now - item.last_modified > OLD_DATA_AGE:
                age = now - item.last_modified
                recommendations.append(RetentionRecommendation(
                    type="old_data",
                    priority="medium",
                    description=f"Old data item: {item.key} (age: {age.days} days)",
                    action="Consider removing old data",
                ))

        if storage.total_size > LARGE_STORAGE_BYTES:
            recommendations.append(RetentionRecommendation(
                type="storage_size",
                priority="high",
                description="Large storage size detected - consider implementing cleanup policies",
                action="Enable automatic cleanup for old data",
            ))

        if storage.risk >= TelemetryRisk.HIGH:
            recommendations.append(RetentionRecommendation(
                type="privacy",
                priority="critical",
                description="High-risk telemetry data detected - implement short retention period",
                action="Set retention period to 7 days or less",
            ))

        return recommendations


def create_retention_analyzer(collector: Optional[ErrorCollector] = None) -> RetentionAnalyzer:
    return RetentionAnalyzer(collector)
