"""
Removal policies.

A RemovalPolicy decides which scanned items may be deleted. It is plain
configuration: presets are module constants and variations are made with
dataclasses.replace.
"""

from dataclasses import asdict, dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple

from ..errors import PolicyError
from ..patterns.risk import TelemetryRisk
from ..scanners.models import DataItem


@dataclass(frozen=True)
class RemovalPolicy:
    """Filter and safety configuration for a removal run."""
    min_risk_level: TelemetryRisk = TelemetryRisk.MEDIUM
    max_file_age: timedelta = timedelta(0)     # only items at least this old; 0 disables
    max_file_size: int = 0                      # bytes; 0 disables
    preserve_recent: bool = True
    recent_threshold: timedelta = timedelta(hours=24)
    create_backups: bool = True
    verify_backups: bool = True
    dry_run: bool = False
    require_confirmation: bool = True
    exclude_patterns: Tuple[str, ...] = ()
    include_patterns: Tuple[str, ...] = ()

    def with_overrides(self, **changes) -> "RemovalPolicy":
        for name in ("exclude_patterns", "include_patterns"):
            if name in changes:
                changes[name] = tuple(changes[name])
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['min_risk_level'] = self.min_risk_level.label
        data['max_file_age'] = self.max_file_age.total_seconds()
        data['recent_threshold'] = self.recent_threshold.total_seconds()
        data['exclude_patterns'] = list(self.exclude_patterns)
        data['include_patterns'] = list(self.include_patterns)
        return data


DEFAULT_POLICY = RemovalPolicy(
    min_risk_level=TelemetryRisk.MEDIUM,
    preserve_recent=True,
    recent_threshold=timedelta(hours=24),
    exclude_patterns=("config", "settings", "preferences"),
)

AGGRESSIVE_POLICY = RemovalPolicy(
    min_risk_level=TelemetryRisk.LOW,
    preserve_recent=False,
    recent_threshold=timedelta(0),
    include_patterns=("telemetry", "analytics", "tracking", "usage", "metrics"),
)

CONSERVATIVE_POLICY = RemovalPolicy(
    min_risk_level=TelemetryRisk.HIGH,
    max_file_age=timedelta(days=30),
    preserve_recent=True,
    recent_threshold=timedelta(days=7),
    exclude_patterns=("config", "settings", "preferences", "cache"),
    include_patterns=("telemetry", "analytics"),
)

POLICIES = {
    'default': DEFAULT_POLICY,
    'aggressive': AGGRESSIVE_POLICY,
    'conservative': CONSERVATIVE_POLICY,
}


def get_policy(name: str) -> RemovalPolicy:
    """Look up a preset by name."""
    try:
        return POLICIES[name.lower()]
    except KeyError:
        raise PolicyError(f"Unknown removal policy: {name} (expected one of {', '.join(POLICIES)})")


def matches_pattern(text: str, pattern: str) -> bool:
    """
    Narrow wildcard match.

    "*" matches everything; a pattern with exactly one "*" matches on prefix
    and suffix; anything else is a case-insensitive substring check.
    """
    if pattern == "*":
        return True
    if pattern.count("*") == 1:
        prefix, suffix = pattern.split("*")
        return text.startswith(prefix) and text.endswith(suffix)
    return pattern.lower() in text.lower()


def evaluate_item(item: DataItem, policy: RemovalPolicy,
                  now: Optional[datetime] = None) -> Tuple[bool, str]:
    """
    Check an item against a policy.

    Returns:
        Tuple of (should_clean, reason)
    """
    now = now or datetime.now()
    # Items without a timestamp count as old.
    age = now - item.last_modified if item.last_modified is not None else None

    if item.risk < policy.min_risk_level:
        return False, f"Risk {item.risk.label} below minimum {policy.min_risk_level.label}"

    if policy.max_file_age > timedelta(0) and age is not None and age < policy.max_file_age:
        return False, "Item is younger than the maximum file age"

    if policy.max_file_size > 0 and item.size > policy.max_file_size:
        return False, "Item is larger than the maximum file size"

    if policy.preserve_recent and age is not None and age < policy.recent_threshold:
        return False, "Item was modified recently"

    for pattern in policy.exclude_patterns:
        if matches_pattern(item.key, pattern):
            return False, f"Item matches exclude pattern '{pattern}'"

    if policy.include_patterns and not any(matches_pattern(item.key, p) for p in policy.include_patterns):
        return False, "Item matches no include pattern"

    return True, "Item can be cleaned"


def should_clean_item(item: DataItem, policy: RemovalPolicy, now: Optional[datetime] = None) -> bool:
    return evaluate_item(item, policy, now)[0]
