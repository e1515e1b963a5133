"""
Removal safety validation.

Checks a set of data items against a rule set before anything is deleted and
computes an aggregate risk score for the whole operation. Any critical or high
severity issue, or a score above the unsafe threshold, marks the removal as
unsafe.
"""

import os
import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import structlog

from ..errors import AccessError, IntegrityError
from ..patterns import tables
from ..patterns.risk import TelemetryRisk
from ..scanners.models import DataItem

logger = structlog.get_logger(__name__)

RULE_PATH = "path_protection"
RULE_CONTENT = "content_protection"
RULE_TEMPORAL = "temporal_protection"
RULE_SIZE = "size_protection"

ACTION_WARN = "warn"
ACTION_BLOCK = "block"

SEVERITY_CRITICAL = "critical"
SEVERITY_HIGH = "high"
SEVERITY_MEDIUM = "medium"
SEVERITY_LOW = "low"
ERROR_SEVERITIES = (SEVERITY_CRITICAL, SEVERITY_HIGH)

UNSAFE_SCORE = 0.8
HIGH_RISK_SCORE = 0.5
RECENT_AGE = timedelta(hours=24)
VERY_RECENT_AGE = timedelta(hours=1)
MB = 1024 * 1024
GB = 1024 * MB

_AGE_RULE = re.compile(r"^\s*age\s*<\s*(\d+)\s*([hd])\s*$", re.IGNORECASE)
_SIZE_RULE = re.compile(r"^\s*size\s*>\s*(\d+)\s*(kb|mb|gb)\s*$", re.IGNORECASE)
_SIZE_UNITS = {"kb": 1024, "mb": MB, "gb": GB}
_SUGGESTIONS = dict(tables.SAFETY_RULE_SUGGESTIONS)


@dataclass(frozen=True)
class SafetyRule:
    """A single protection rule."""
    name: str
    description: str
    rule_type: str
    pattern: str
    action: str = ACTION_WARN
    severity: str = SEVERITY_MEDIUM
    enabled: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'description': self.description,
            'rule_type': self.rule_type,
            'pattern': self.pattern,
            'action': self.action,
            'severity': self.severity,
            'enabled': self.enabled,
        }


@dataclass(frozen=True)
class RuleSet:
    """
    Immutable collection of safety rules.

    Changing a rule produces a new RuleSet; validators holding the old one
    are unaffected.
    """
    rules: Tuple[SafetyRule, ...] = ()

    def __iter__(self):
        return iter(self.rules)

    def __len__(self) -> int:
        return len(self.rules)

    def get(self, name: str) -> Optional[SafetyRule]:
        for rule in self.rules:
            if rule.name == name:
                return rule
        return None

    def enabled_rules(self) -> List[SafetyRule]:
        return [rule for rule in self.rules if rule.enabled]

    def with_rule(self, rule: SafetyRule) -> "RuleSet":
        """Replace the rule with the same name, or append it."""
        if self.get(rule.name) is None:
            return RuleSet(self.rules + (rule,))
        return RuleSet(tuple(rule if r.name == rule.name else r for r in self.rules))

    def without_rule(self, name: str) -> "RuleSet":
        """Return a copy with the named rule disabled."""
        return RuleSet(tuple(replace(r, enabled=False) if r.name == name else r for r in self.rules))


def default_rule_set() -> RuleSet:
    return RuleSet(tuple(
        SafetyRule(name, description, rule_type, pattern, action, severity)
        for name, description, rule_type, pattern, action, severity in tables.SAFETY_RULES
    ))


@dataclass
class SafetyIssue:
    """One problem found while validating a removal."""
    type: str
    severity: str
    message: str
    path: str = ""
    rule: str = ""
    risk: TelemetryRisk = TelemetryRisk.NONE
    suggestion: str = ""

    @property
    def is_error(self) -> bool:
        return self.severity in ERROR_SEVERITIES

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.type,
            'severity': self.severity,
            'message': self.message,
            'path': self.path,
            'rule': self.rule,
            'risk': self.risk.label,
            'suggestion': self.suggestion,
        }


@dataclass
class SafetyValidationResult:
    """Gate decision for a removal plus the reasons behind it."""
    safe: bool = True
    warnings: List[SafetyIssue] = field(default_factory=list)
    errors: List[SafetyIssue] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    risk_score: float = 0.0

    def add_issue(self, issue: SafetyIssue):
        if issue.is_error:
            self.errors.append(issue)
            self.safe = False
        else:
            self.warnings.append(issue)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'safe': self.safe,
            'warnings': [w.to_dict() for w in self.warnings],
            'errors': [e.to_dict() for e in self.errors],
            'recommendations': list(self.recommendations),
            'risk_score': self.risk_score,
        }


def _pattern_parts(pattern: str) -> List[str]:
    parts = []
    for part in pattern.split("|"):
        part = part.strip().lower().replace("*", "")
        if part:
            parts.append(part)
    return parts


def matches_path_pattern(path: str, pattern: str) -> bool:
    """Case-insensitive containment check against |-separated, *-wrapped parts."""
    lowered = path.lower()
    return any(part in lowered for part in _pattern_parts(pattern))


def matches_content_pattern(item: DataItem, pattern: str) -> bool:
    content = f"{item.key} {item.category} {item.description}".lower()
    return any(part in content for part in _pattern_parts(pattern))


def item_age(item: DataItem, now: datetime) -> Optional[timedelta]:
    if item.last_modified is None:
        return None
    return now - item.last_modified


def matches_temporal_pattern(item: DataItem, pattern: str, now: datetime) -> bool:
    match = _AGE_RULE.match(pattern)
    age = item_age(item, now)
    if match is None or age is None:
        return False
    amount, unit = int(match.group(1)), match.group(2).lower()
    limit = timedelta(hours=amount) if unit == "h" else timedelta(days=amount)
    return age < limit


def matches_size_pattern(item: DataItem, pattern: str) -> bool:
    match = _SIZE_RULE.match(pattern)
    if match is None:
        return False
    return item.size > int(match.group(1)) * _SIZE_UNITS[match.group(2).lower()]


def calculate_risk_score(total_items: int, total_size: int, critical_items: int, recent_items: int) -> float:
    """
    Heuristic operation risk in [0, 1].

    0.4 * critical ratio + 0.2 * recent ratio, plus up to 0.2 for total size
    (>100MB, >1GB) and up to 0.2 for item count (>100, >1000).
    """
    if total_items == 0:
        return 0.0

    score = 0.4 * (critical_items / total_items)
    score += 0.2 * (recent_items / total_items)

    if total_size > GB:
        score += 0.2
    elif total_size > 100 * MB:
        score += 0.1

    if total_items > 1000:
        score += 0.2
    elif total_items > 100:
        score += 0.1

    return min(score, 1.0)


class SafetyValidator:
    """Validates removal requests against a RuleSet."""

    def __init__(self, rules: Optional[RuleSet] = None,
                 critical_paths: Sequence[str] = tables.CRITICAL_PATHS,
                 protected_patterns: Sequence[str] = tables.PROTECTED_PATTERNS):
        self.rules = rules if rules is not None else default_rule_set()
        self.critical_paths = tuple(critical_paths)
        self.protected_patterns = tuple(protected_patterns)

    def validate_removal_safety(self, items: Iterable[DataItem], extension_path: str = "",
                                now: Optional[datetime] = None) -> SafetyValidationResult:
        """Evaluate every item and the operation as a whole."""
        now = now or datetime.now()
        items = list(items)
        result = SafetyValidationResult()

        total_size = 0
        critical_items = 0
        recent_items = 0

        for item in items:
            total_size += item.size
            for issue in self.validate_item(item, now):
                result.add_issue(issue)
            if item.risk == TelemetryRisk.CRITICAL:
                critical_items += 1
            age = item_age(item, now)
            if age is not None and age < RECENT_AGE:
                recent_items += 1

        result.risk_score = calculate_risk_score(len(items), total_size, critical_items, recent_items)
        result.recommendations = self.recommendations(result, total_size, critical_items, recent_items)

        if result.risk_score > UNSAFE_SCORE:
            result.safe = False
            result.errors.append(SafetyIssue(
                type="risk_assessment",
                severity=SEVERITY_CRITICAL,
                message=f"Overall risk score too high: {result.risk_score:.2f}",
                path=extension_path,
                suggestion="Consider using a more conservative removal policy",
            ))

        logger.info(
            "Removal safety validated",
            path=extension_path,
            items=len(items),
            safe=result.safe,
            errors=len(result.errors),
            warnings=len(result.warnings),
            risk_score=round(result.risk_score, 3),
        )
        return result

    def validate_item(self, item: DataItem, now: Optional[datetime] = None) -> List[SafetyIssue]:
        now = now or datetime.now()
        issues = []

        for rule in self.rules.enabled_rules():
            message = self._check_rule(rule, item, now)
            if message is None:
                continue
            issues.append(SafetyIssue(
                type=rule.rule_type,
                severity=rule.severity,
                message=message,
                path=item.key,
                rule=rule.name,
                risk=item.risk,
                suggestion=_SUGGESTIONS.get(rule.name, "Review this item carefully before removal"),
            ))

        issues.extend(self._builtin_checks(item, now))
        return issues

    @staticmethod
    def _check_rule(rule: SafetyRule, item: DataItem, now: datetime) -> Optional[str]:
        if rule.rule_type == RULE_PATH and matches_path_pattern(item.key, rule.pattern):
            return f"Item matches protected path pattern: {rule.pattern}"
        if rule.rule_type == RULE_CONTENT and matches_content_pattern(item, rule.pattern):
            return f"Item contains protected content: {rule.pattern}"
        if rule.rule_type == RULE_TEMPORAL and matches_temporal_pattern(item, rule.pattern, now):
            return f"Item matches temporal protection rule: {rule.pattern}"
        if rule.rule_type == RULE_SIZE and matches_size_pattern(item, rule.pattern):
            return f"Item matches size protection rule: {rule.pattern}"
        return None

    def _builtin_checks(self, item: DataItem, now: datetime) -> List[SafetyIssue]:
        issues = []
        key = item.key.lower()

        for critical_path in self.critical_paths:
            if critical_path.lower() in key:
                issues.append(SafetyIssue(
                    type="critical_path",
                    severity=SEVERITY_HIGH,
                    message=f"Item is in critical path: {critical_path}",
                    path=item.key,
                    risk=item.risk,
                    suggestion="Consider excluding this item from removal",
                ))

        for pattern in self.protected_patterns:
            if pattern.lower() in key:
                issues.append(SafetyIssue(
                    type="protected_pattern",
                    severity=SEVERITY_MEDIUM,
                    message=f"Item matches protected pattern: {pattern}",
                    path=item.key,
                    risk=item.risk,
                    suggestion="Verify this item should be removed",
                ))

        if item.risk == TelemetryRisk.CRITICAL:
            issues.append(SafetyIssue(
                type="high_risk_data",
                severity=SEVERITY_HIGH,
                message="Item contains critical telemetry data",
                path=item.key,
                risk=item.risk,
                suggestion="Ensure this critical data should be removed",
            ))

        age = item_age(item, now)
        if age is not None and age < VERY_RECENT_AGE:
            issues.append(SafetyIssue(
                type="recent_modification",
                severity=SEVERITY_MEDIUM,
                message="Item was modified very recently",
                path=item.key,
                risk=item.risk,
                suggestion="Consider waiting before removing recently modified data",
            ))

        return issues

    @staticmethod
    def recommendations(result: SafetyValidationResult, total_size: int,
                        critical_items: int, recent_items: int) -> List[str]:
        recommendations = []

        if result.errors:
            recommendations.append("Address all critical safety issues before proceeding")
            recommendations.append("Consider using a more conservative removal policy")

        if result.warnings:
            recommendations.append("Review all warnings carefully before proceeding")
            if len(result.warnings) > 10:
                recommendations.append("Consider filtering items to reduce the number of warnings")

        if critical_items > 0:
            recommendations.append(
                f"Found {critical_items} critical telemetry items - ensure these should be removed")
        if recent_items > 0:
            recommendations.append(
                f"Found {recent_items} recently modified items - consider preserving recent data")
        if total_size > 100 * MB:
            recommendations.append(
                f"Large amount of data to remove ({total_size / MB:.2f} MB) - ensure adequate backup")

        if result.risk_score > HIGH_RISK_SCORE:
            recommendations.append("High risk operation - consider running in dry-run mode first")
            recommendations.append("Ensure comprehensive backups are created and verified")

        if not recommendations:
            recommendations.append("Operation appears safe to proceed")
        return recommendations


def validate_backup_integrity(backup_path: str):
    """
    Cheap structural check of a backup file.

    Raises AccessError if the file is missing and IntegrityError if it is empty
    or a .zip without the zip signature. Full checksum verification lives in
    BackupManager.verify_backup.
    """
    try:
        size = os.path.getsize(backup_path)
    except OSError as e:
        raise AccessError(f"Backup file not accessible: {e}", backup_path)
    if size == 0:
        raise IntegrityError("Backup file is empty", backup_path)

    if backup_path.lower().endswith(".zip"):
        try:
            with open(backup_path, "rb") as f:
                header = f.read(4)
        except OSError as e:
            raise AccessError(f"Cannot read backup file: {e}", backup_path)
        if header[:2] != b"PK":
            raise IntegrityError("Invalid zip file signature", backup_path)


def create_safety_validator(rules: Optional[RuleSet] = None) -> SafetyValidator:
    return SafetyValidator(rules)
