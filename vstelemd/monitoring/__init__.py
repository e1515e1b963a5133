"""
Prometheus metrics for scans, backups and removals.
"""

from .metrics_collector import CleanerMetricsCollector, MetricsCollector, create_cleaner_metrics_collector

__all__ = [
    'CleanerMetricsCollector',
    'MetricsCollector',
    'create_cleaner_metrics_collector',
]
