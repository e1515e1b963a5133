"""
Read-only enrichment of scan results: cross-extension correlation and
retention policy analysis.
"""

from .correlation import CorrelationAnalyzer, CorrelationRecord, CorrelationStatistics
from .retention import RetentionAnalyzer, RetentionPolicy, RetentionPolicyType, RetentionRecommendation

__all__ = [
    'CorrelationAnalyzer',
    'CorrelationRecord',
    'CorrelationStatistics',
    'RetentionAnalyzer',
    'RetentionPolicy',
    'RetentionPolicyType',
    'RetentionRecommendation',
]
