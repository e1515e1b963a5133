"""
Cross-extension correlation analysis.

Three passes run over every item grouped by owning extension: shared key
patterns, identical values, and well-known shared data types. A correlation
is only reported when it spans at least two distinct extensions.
"""

import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

import structlog

from ..patterns import tables
from ..patterns.risk import TelemetryRisk, aggregate_risk
from ..scanners.models import DataItem, ExtensionStorage

logger = structlog.get_logger(__name__)

SHARED_VALUE = "Shared Value"


@dataclass
class CorrelationRecord:
    """Evidence that the same data appears in two or more extensions."""
    data_type: str
    extension_ids: Set[str]
    shared_keys: List[str]
    risk: TelemetryRisk
    confidence: float
    data_size: int
    correlation_hash: str
    description: str = ""

    def __post_init__(self):
        if len(self.extension_ids) < 2:
            raise ValueError("A correlation must span at least two extensions")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'data_type': self.data_type,
            'extension_ids': sorted(self.extension_ids),
            'shared_keys': self.shared_keys,
            'risk': self.risk.label,
            'confidence': self.confidence,
            'data_size': self.data_size,
            'correlation_hash': self.correlation_hash,
            'description': self.description,
        }


@dataclass
class CorrelationStatistics:
    """Summary of a set of correlation records."""
    total_correlations: int = 0
    by_risk: Dict[str, int] = field(default_factory=dict)
    total_data_size: int = 0
    affected_extensions: Set[str] = field(default_factory=set)
    by_data_type: Dict[str, int] = field(default_factory=dict)

    @property
    def affected_extension_count(self) -> int:
        return len(self.affected_extensions)


def value_string(value: Any) -> Optional[str]:
    """String form of a value as it is compared across extensions."""
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"), sort_keys=True, default=str)
    return str(value)


def hash_value(value: Any) -> Optional[str]:
    """
    Digest of a value for value correlation, or None if it is not worth comparing.

    Skips None, the literals true/false/null, masked values, and strings
    shorter than 3 or longer than 1000 bytes of UTF-8.
    """
    text = value_string(value)
    if text is None:
        return None
    if text in tables.TRIVIAL_VALUES or text == tables.MASKED_VALUE:
        return None
    encoded = text.encode("utf-8")
    if len(encoded) < tables.MIN_HASHABLE_LENGTH or len(encoded) > tables.MAX_HASHABLE_LENGTH:
        return None
    return hashlib.md5(encoded).hexdigest()


def correlation_hash(data_type: str, extension_ids: Iterable[str]) -> str:
    """Stable digest of (data type, sorted extension ids)."""
    combined = data_type + ":" + ",".join(sorted(extension_ids))
    return hashlib.md5(combined.encode("utf-8")).hexdigest()


def _unique(values: Iterable[str]) -> List[str]:
    seen = set()
    unique = []
    for value in values:
        if value not in seen:
            seen.add(value)
            unique.append(value)
    return unique


class CorrelationAnalyzer:
    """Finds identifiers and values shared between extensions."""

    def __init__(self):
        self.key_patterns = tables.CORRELATION_KEY_PATTERNS
        self.shared_data_types = tables.SHARED_DATA_TYPES

    def analyze(self, items_by_extension: Mapping[str, List[DataItem]]) -> List[CorrelationRecord]:
        """Run all three passes and return the union of their records."""
        grouped = {ext: list(items) for ext, items in items_by_extension.items() if ext and items}
        records: List[CorrelationRecord] = []
        records.extend(self.key_correlations(grouped))
        records.extend(self.value_correlations(grouped))
        records.extend(self.shared_type_correlations(grouped))
        logger.info("Correlation analysis completed", extensions=len(grouped), correlations=len(records))
        return records

    def analyze_storages(self, storages: Iterable[ExtensionStorage]) -> List[CorrelationRecord]:
        grouped: Dict[str, List[DataItem]] = {}
        for storage in storages:
            grouped.setdefault(storage.extension_id, []).extend(storage.items)
        return self.analyze(grouped)

    def key_correlations(self, grouped: Mapping[str, List[DataItem]]) -> List[CorrelationRecord]:
        records = []
        for name, display_name, description, substrings, risk in self.key_patterns:
            lowered = [s.lower() for s in substrings]
            matches = self._match_keys(grouped, lowered)
            if len(matches) < 2:
                continue
            records.append(self._build_record(
                data_type=display_name,
                hash_name=name,
                matches=matches,
                risk=risk,
                confidence=self._key_confidence(matches, lowered),
                description=f"{description} found in {len(matches)} extensions",
            ))
        return records

    def value_correlations(self, grouped: Mapping[str, List[DataItem]]) -> List[CorrelationRecord]:
        by_hash: Dict[str, Dict[str, List[DataItem]]] = {}
        for extension_id, items in grouped.items():
            for item in items:
                digest = hash_value(item.value)
                if digest is not None:
                    by_hash.setdefault(digest, {}).setdefault(extension_id, []).append(item)

        records = []
        for digest, matches in by_hash.items():
            if len(matches) < 2:
                continue
            all_items = [item for ext_items in matches.values() for item in ext_items]
            records.append(CorrelationRecord(
                data_type=SHARED_VALUE,
                extension_ids=set(matches),
                shared_keys=_unique(item.key for item in all_items),
                risk=aggregate_risk(all_items),
                confidence=1.0,
                data_size=sum(item.size for item in all_items),
                correlation_hash=digest,
                description=f"Identical value found in {len(matches)} extensions",
            ))
        return records

    def shared_type_correlations(self, grouped: Mapping[str, List[DataItem]]) -> List[CorrelationRecord]:
        records = []
        for name, description, examples, risk in self.shared_data_types:
            lowered = [e.lower() for e in examples]
            matches = self._match_keys(grouped, lowered)
            if len(matches) < 2:
                continue
            records.append(self._build_record(
                data_type=name,
                hash_name=name,
                matches=matches,
                risk=risk,
                confidence=self._key_confidence(matches, lowered),
                description=f"{description} found in {len(matches)} extensions",
            ))
        return records

    @staticmethod
    def _match_keys(grouped: Mapping[str, List[DataItem]], lowered_substrings: List[str]) -> Dict[str, List[DataItem]]:
        matches: Dict[str, List[DataItem]] = {}
        for extension_id, items in grouped.items():
            for item in items:
                key = item.key.lower()
                if any(s in key for s in lowered_substrings):
                    matches.setdefault(extension_id, []).append(item)
        return matches

    @staticmethod
    def _key_confidence(matches: Dict[str, List[DataItem]], lowered_substrings: List[str]) -> float:
        """Share of matching keys that hit a pattern exactly rather than as a fragment."""
        keys = [item.key.lower() for items in matches.values() for item in items]
        if not keys:
            return 0.0
        exact = sum(1 for key in keys if key.rsplit(".", 1)[-1] in lowered_substrings)
        return round(0.5 + 0.5 * exact / len(keys), 3)

    @staticmethod
    def _build_record(data_type: str, hash_name: str, matches: Dict[str, List[DataItem]],
                      risk: TelemetryRisk, confidence: float, description: str) -> CorrelationRecord:
        all_items = [item for items in matches.values() for item in items]
        return CorrelationRecord(
            data_type=data_type,
            extension_ids=set(matches),
            shared_keys=_unique(item.key for item in all_items),
            risk=risk,
            confidence=confidence,
            data_size=sum(item.size for item in all_items),
            correlation_hash=correlation_hash(hash_name, matches),
            description=description,
        )

    @staticmethod
    def deduplicate(records: Iterable[CorrelationRecord]) -> List[CorrelationRecord]:
        """Drop records whose correlation hash has been seen already."""
        seen = set()
        unique = []
        for record in records:
            if record.correlation_hash in seen:
                continue
            seen.add(record.correlation_hash)
            unique.append(record)
        return unique

    def statistics(self, records: Iterable[CorrelationRecord]) -> CorrelationStatistics:
        stats = CorrelationStatistics()
        for record in self.deduplicate(records):
            stats.total_correlations += 1
            label = record.risk.label
            stats.by_risk[label] = stats.by_risk.get(label, 0) + 1
            stats.total_data_size += record.data_size
            stats.affected_extensions.update(record.extension_ids)
            stats.by_data_type[record.data_type] = stats.by_data_type.get(record.data_type, 0) + 1
        return stats


def create_correlation_analyzer() -> CorrelationAnalyzer:
    return CorrelationAnalyzer()
