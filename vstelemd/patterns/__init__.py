"""
Telemetry risk levels and the shared pattern registry.
"""

from .risk import TelemetryRisk, aggregate_risk, parse_risk
from .registry import (
    Classification,
    CodeMatch,
    PatternRegistry,
    categorize_file,
    categorize_key,
    create_pattern_registry,
)

__all__ = [
    'TelemetryRisk',
    'aggregate_risk',
    'parse_risk',
    'Classification',
    'CodeMatch',
    'PatternRegistry',
    'categorize_file',
    'categorize_key',
    'create_pattern_registry',
]
