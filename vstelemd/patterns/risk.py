"""
Telemetry risk levels.

The order None < Low < Medium < High < Critical is defined once here; every
aggregation in the package goes through aggregate_risk().
"""

from enum import IntEnum
from typing import Iterable, Union


class TelemetryRisk(IntEnum):
    """Ordered confidence that a data item is privacy-sensitive telemetry."""
    NONE = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4

    @property
    def label(self) -> str:
        return _LABELS[self]

    @property
    def description(self) -> str:
        return _DESCRIPTIONS[self]

    def __str__(self) -> str:
        return self.label


_LABELS = {
    TelemetryRisk.NONE: "None",
    TelemetryRisk.LOW: "Low",
    TelemetryRisk.MEDIUM: "Medium",
    TelemetryRisk.HIGH: "High",
    TelemetryRisk.CRITICAL: "Critical",
}

_DESCRIPTIONS = {
    TelemetryRisk.NONE: "No telemetry risk detected",
    TelemetryRisk.LOW: "Low: May collect basic usage information",
    TelemetryRisk.MEDIUM: "Medium: Likely collects usage patterns and analytics",
    TelemetryRisk.HIGH: "High: Collects detailed user behavior and system information",
    TelemetryRisk.CRITICAL: "Critical: Actively collects and transmits telemetry data",
}


def aggregate_risk(risks: Iterable[Union[TelemetryRisk, object]]) -> TelemetryRisk:
    """
    Aggregate risk of a composite (file, extension, operation).

    Accepts risk values or objects with a ``risk`` attribute. The result is
    the maximum constituent risk, or NONE for an empty input.
    """
    result = TelemetryRisk.NONE
    for entry in risks:
        risk = entry if isinstance(entry, TelemetryRisk) else getattr(entry, "risk", TelemetryRisk.NONE)
        if risk > result:
            result = TelemetryRisk(risk)
    return result


def parse_risk(value: Union[str, int, TelemetryRisk]) -> TelemetryRisk:
    """Parse a risk from its label ("high"), enum name or integer level."""
    if isinstance(value, TelemetryRisk):
        return value
    if isinstance(value, int):
        return TelemetryRisk(value)
    text = str(value).strip().lower()
    for risk, label in _LABELS.items():
        if label.lower() == text:
            return risk
    raise ValueError(f"Unknown telemetry risk: {value}")
