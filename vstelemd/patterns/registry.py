"""
Pattern registry and risk classification.

The registry compiles every detection table once at start-up and is then
shared, read-only, by all scanners and analyzers. Classification always
picks the highest-risk match; confidence scoring filters out near-zero
filesystem matches.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional, Pattern, Tuple

from . import tables
from .risk import TelemetryRisk

CONTEXT_STORAGE = "storage"
CONTEXT_CACHE = "cache"
CONTEXT_DATABASE = "database"
CONTEXT_DATABASE_EXTENSION = "database_extension"
CONTEXT_CONFIG = "config"
CONTEXT_CODE = "code"


@dataclass(frozen=True)
class Classification:
    """Result of classifying one piece of text."""
    risk: TelemetryRisk
    category: str
    matched_pattern: Optional[str] = None

    @property
    def matched(self) -> bool:
        return self.risk > TelemetryRisk.NONE


NO_MATCH = Classification(TelemetryRisk.NONE, "", None)


@dataclass(frozen=True)
class CodePattern:
    """A compiled source-code telemetry pattern."""
    name: str
    risk: TelemetryRisk
    category: str
    regex: Pattern
    description: str


@dataclass(frozen=True)
class CodeMatch:
    """One code pattern hit inside a piece of source text."""
    pattern: str
    risk: TelemetryRisk
    category: str
    description: str
    line: int
    snippet: str


@dataclass(frozen=True)
class SubstringPattern:
    """A case-insensitive substring mapped to a risk and category."""
    text: str
    lowered: str
    risk: TelemetryRisk
    category: str


def categorize_key(key: str) -> str:
    """Map a storage key to its data category."""
    lowered = key.lower()
    for category, marker in tables.KEY_CATEGORIES:
        if marker in lowered:
            return category
    return tables.DEFAULT_KEY_CATEGORY


def categorize_file(file_name: str) -> str:
    """Map a storage file name to its data category."""
    lowered = file_name.lower()
    for category, marker in tables.FILE_CATEGORIES:
        if marker in lowered:
            return category
    return tables.DEFAULT_FILE_CATEGORY


def _substring_table(entries) -> Tuple[SubstringPattern, ...]:
    return tuple(
        SubstringPattern(text, text.lower(), risk, categorize_key(text))
        for text, risk in entries
    )


def _compile(patterns) -> Tuple[Pattern, ...]:
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)


@dataclass(frozen=True)
class PatternRegistry:
    """
    Immutable set of detection tables.

    Build it once with create_pattern_registry() and pass it to every
    component that classifies data.
    """
    code_patterns: Tuple[CodePattern, ...]
    storage_patterns: Tuple[SubstringPattern, ...]
    cache_patterns: Tuple[SubstringPattern, ...]
    database_patterns: Tuple[SubstringPattern, ...]
    database_extension_patterns: Tuple[SubstringPattern, ...]
    config_keys: Tuple[Tuple[str, TelemetryRisk], ...]
    config_patterns: Tuple[Pattern, ...]
    path_patterns: Tuple[Pattern, ...]
    content_patterns: Tuple[Pattern, ...]
    min_confidence: float = tables.MIN_CONFIDENCE
    max_content_bytes: int = tables.MAX_CONTENT_SCAN_BYTES
    _config_key_index: dict = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "_config_key_index", dict(self.config_keys))

    # Classification

    def classify(self, text: str, context: str = CONTEXT_STORAGE) -> Classification:
        """
        Classify text against the table for the given context.

        The highest-risk match wins; on equal risk the earliest table entry
        wins. Category comes from the winning match.
        """
        if not text:
            return NO_MATCH
        if context == CONTEXT_CODE:
            matches = self.match_code(text)
            if not matches:
                return NO_MATCH
            best = matches[0]
            return Classification(best.risk, best.category, best.pattern)
        if context == CONTEXT_CONFIG:
            return self.classify_setting(text)
        return self._classify_substrings(text, self._table_for(context))

    def classify_many(self, texts, context: str = CONTEXT_STORAGE) -> Classification:
        """Classify several texts (key, path, value) and keep the highest match."""
        best = NO_MATCH
        for text in texts:
            if not isinstance(text, str):
                continue
            result = self.classify(text, context)
            if result.risk > best.risk:
                best = result
        return best

    def _table_for(self, context: str) -> Tuple[SubstringPattern, ...]:
        if context == CONTEXT_STORAGE:
            return self.storage_patterns
        if context == CONTEXT_CACHE:
            return self.cache_patterns
        if context == CONTEXT_DATABASE:
            return self.database_patterns
        if context == CONTEXT_DATABASE_EXTENSION:
            return self.database_extension_patterns
        raise ValueError(f"Unknown classification context: {context}")

    @staticmethod
    def _classify_substrings(text: str, table: Tuple[SubstringPattern, ...]) -> Classification:
        lowered = text.lower()
        best = NO_MATCH
        for pattern in table:
            if pattern.risk > best.risk and pattern.lowered in lowered:
                best = Classification(pattern.risk, pattern.category, pattern.text)
        return best

    def classify_setting(self, path: str) -> Classification:
        """
        Classify a dotted settings path.

        Exact telemetry keys and fuzzy setting patterns are both evaluated;
        the higher risk wins. Only the first fuzzy pattern that matches is
        considered.
        """
        best = NO_MATCH
        exact = self._config_key_index.get(path)
        if exact is not None:
            best = Classification(exact, "Telemetry Setting", path)
        for regex in self.config_patterns:
            if regex.search(path):
                risk = setting_pattern_risk(path)
                if risk > best.risk:
                    best = Classification(risk, "Extension Setting", regex.pattern)
                break
        return best

    def is_exact_setting(self, path: str) -> bool:
        return path in self._config_key_index

    def match_code(self, text: str) -> List[CodeMatch]:
        """Return every code pattern hit, highest risk first."""
        matches: List[CodeMatch] = []
        for pattern in self.code_patterns:
            for hit in pattern.regex.finditer(text):
                line = text.count("\n", 0, hit.start()) + 1
                matches.append(CodeMatch(
                    pattern=pattern.name,
                    risk=pattern.risk,
                    category=pattern.category,
                    description=pattern.description,
                    line=line,
                    snippet=hit.group(0)[:120],
                ))
        matches.sort(key=lambda m: (-int(m.risk), m.line))
        return matches

    # Confidence scoring

    def path_confidence(self, path: str) -> float:
        confidence = 0.0
        for regex in self.path_patterns:
            if regex.match(path):
                confidence += tables.PATH_PATTERN_WEIGHT
        if tables.EDITOR_PATH_MARKER in path and any(m in path for m in tables.EDITOR_STORAGE_MARKERS):
            confidence += tables.EDITOR_LOCATION_WEIGHT
        return min(confidence, 1.0)

    def content_confidence(self, content: str) -> float:
        confidence = 0.0
        for regex in self.content_patterns:
            if regex.search(content):
                confidence += tables.CONTENT_PATTERN_WEIGHT
        return min(confidence, 1.0)

    def combined_confidence(self, path: str, content: Optional[str] = None) -> float:
        """(path confidence + content confidence) / 2, clamped to [0, 1]."""
        content_score = self.content_confidence(content) if content else 0.0
        score = (self.path_confidence(path) + content_score) / 2.0
        return max(0.0, min(score, 1.0))

    def passes_confidence(self, confidence: float) -> bool:
        return confidence > self.min_confidence


def setting_pattern_risk(path: str) -> TelemetryRisk:
    """Risk for a settings path that matched a fuzzy setting pattern."""
    lowered = path.lower()
    if "telemetry" in lowered or "analytics" in lowered:
        return TelemetryRisk.HIGH
    if "tracking" in lowered or "usage" in lowered:
        return TelemetryRisk.MEDIUM
    if "update" in lowered or "experiment" in lowered:
        return TelemetryRisk.MEDIUM
    return TelemetryRisk.LOW


def create_pattern_registry() -> PatternRegistry:
    """Build the default registry from the constant tables."""
    code_patterns = tuple(
        CodePattern(name, risk, category, re.compile(regex, re.IGNORECASE), description)
        for name, risk, category, regex, description in tables.CODE_PATTERNS
    )
    return PatternRegistry(
        code_patterns=code_patterns,
        storage_patterns=_substring_table(tables.STORAGE_KEY_PATTERNS),
        cache_patterns=_substring_table(tables.CACHE_PATTERNS),
        database_patterns=_substring_table(tables.DATABASE_KEY_PATTERNS),
        database_extension_patterns=_substring_table(tables.DATABASE_EXTENSION_PATTERNS),
        config_keys=tuple(tables.CONFIG_TELEMETRY_KEYS),
        config_patterns=_compile(tables.CONFIG_SETTING_PATTERNS),
        path_patterns=_compile(tables.FILESYSTEM_PATH_PATTERNS),
        content_patterns=_compile(tables.FILESYSTEM_CONTENT_PATTERNS),
    )
