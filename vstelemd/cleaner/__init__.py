"""
Removal of telemetry data: policies, the removal engine and its audit trail.
"""

from .audit_log import RemovalAuditLogger
from .engine import (
    CleanedItem,
    CleanupState,
    ExtensionCleanResult,
    RemovalEngine,
    SafetyCheckResult,
    create_removal_engine,
)
from .policy import (
    AGGRESSIVE_POLICY,
    CONSERVATIVE_POLICY,
    DEFAULT_POLICY,
    RemovalPolicy,
    get_policy,
    matches_pattern,
    should_clean_item,
)

__all__ = [
    'RemovalAuditLogger',
    'CleanedItem',
    'CleanupState',
    'ExtensionCleanResult',
    'RemovalEngine',
    'SafetyCheckResult',
    'create_removal_engine',
    'AGGRESSIVE_POLICY',
    'CONSERVATIVE_POLICY',
    'DEFAULT_POLICY',
    'RemovalPolicy',
    'get_policy',
    'matches_pattern',
    'should_clean_item',
]
