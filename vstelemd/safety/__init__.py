"""
Safety gates run before any data is removed.
"""

from .validator import (
    RuleSet,
    SafetyIssue,
    SafetyRule,
    SafetyValidationResult,
    SafetyValidator,
    default_rule_set,
    validate_backup_integrity,
)
from .preflight import PreflightCheck, PreflightChecker, PreflightReport
from .dependencies import DependencyChecker, DependencyInfo, ExtensionInfo

__all__ = [
    'RuleSet',
    'SafetyIssue',
    'SafetyRule',
    'SafetyValidationResult',
    'SafetyValidator',
    'default_rule_set',
    'validate_backup_integrity',
    'PreflightCheck',
    'PreflightChecker',
    'PreflightReport',
    'DependencyChecker',
    'DependencyInfo',
    'ExtensionInfo',
]
