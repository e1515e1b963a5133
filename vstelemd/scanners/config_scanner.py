"""
Configuration scanner.

Flattens settings files into dot-paths and checks every path against the
exact telemetry-key table and the fuzzy setting patterns. Covers the user
settings file, workspace .vscode/settings.json files found under common
project folders, and small JSON files in extension storage.
"""

import os
from datetime import datetime
from typing import Any, Callable, List, Optional

import structlog

from ..cancellation import CancellationToken, check_cancelled
from ..errors import AccessError, ParseError
from ..paths import PathResolver
from ..patterns import tables
from ..patterns.registry import PatternRegistry
from ..patterns.risk import TelemetryRisk
from .base import (
    ErrorCollector,
    SkippedEntry,
    estimate_value_size,
    iter_json_members,
    list_directories,
    load_json_file,
    sanitize_value,
    walk_files,
)
from .models import ConfigFinding, ConfigScanResult, DataItem, SourceType

logger = structlog.get_logger(__name__)

CATEGORY_USER = "VS Code Settings"
CATEGORY_WORKSPACE = "Workspace Settings"
CATEGORY_GLOBAL_STORAGE = "Global Storage"
CATEGORY_WORKSPACE_STORAGE = "Workspace Storage"

_KEY_DESCRIPTIONS = dict(tables.CONFIG_KEY_DESCRIPTIONS)


def is_core_setting(prefix: str) -> bool:
    return prefix.lower() in tables.CORE_SETTING_PREFIXES


def is_extension_setting(path: str) -> bool:
    """Extension settings have at least two parts and a non-core prefix."""
    parts = path.split(".")
    return len(parts) >= 2 and not is_core_setting(parts[0])


def key_description(path: str, risk: TelemetryRisk) -> str:
    return _KEY_DESCRIPTIONS.get(path, f"Telemetry-related setting with {risk.label} risk level")


def key_recommendation(path: str, value: Any) -> str:
    if path == "telemetry.telemetryLevel":
        if value == "off":
            return "Good: Telemetry is disabled"
        return "Consider setting to 'off' to disable telemetry"
    if path == "telemetry.enableTelemetry":
        if value is False:
            return "Good: Telemetry is disabled"
        return "Consider setting to false to disable telemetry"
    if path == "telemetry.enableCrashReporter":
        if value is False:
            return "Good: Crash reporting is disabled"
        return "Consider setting to false to disable crash reporting"
    return "Review this setting and disable if not needed"


def pattern_description(risk: TelemetryRisk) -> str:
    return f"Extension setting that may be related to telemetry or data collection ({risk.label} risk)"


PATTERN_RECOMMENDATION = "Review this extension setting and disable if it relates to unwanted data collection"


class ConfigScanner:
    """Finds telemetry-related settings."""

    def __init__(
        self,
        resolver: PathResolver,
        registry: PatternRegistry,
        on_error: Optional[Callable[[SkippedEntry], None]] = None,
    ):
        self.resolver = resolver
        self.registry = registry
        self.on_error = on_error

    def user_settings_path(self) -> str:
        return os.path.join(self.resolver.get_user_dir(), "settings.json")

    def workspace_settings_paths(self, collector: Optional[ErrorCollector] = None) -> List[str]:
        """Find .vscode/settings.json files in common project folders."""
        try:
            home = self.resolver.get_home_dir()
        except AccessError:
            return []
        paths: List[str] = []
        for name in tables.WORKSPACE_SEARCH_DIRS:
            directory = os.path.join(home, name)
            if os.path.isdir(directory):
                self._find_workspace_settings(directory, paths, tables.WORKSPACE_SEARCH_DEPTH, collector)
        return paths

    def _find_workspace_settings(self, directory: str, paths: List[str], depth: int,
                                 collector: Optional[ErrorCollector]):
        if depth <= 0:
            return
        try:
            entries = list_directories(directory)
        except AccessError as e:
            if collector is not None:
                collector.record(directory, e)
            return
        for name in entries:
            entry_path = os.path.join(directory, name)
            settings_path = os.path.join(entry_path, ".vscode", "settings.json")
            if os.path.isfile(settings_path):
                paths.append(settings_path)
            self._find_workspace_settings(entry_path, paths, depth - 1, collector)

    def scan(self, token: Optional[CancellationToken] = None) -> ConfigScanResult:
        """
        Scan settings files and extension storage JSON.

        Unparseable files are recorded and skipped. Raises AccessError when a
        storage root exists but cannot be listed.
        """
        collector = ErrorCollector("config", self.on_error)
        result = ConfigScanResult()

        try:
            user_settings = self.user_settings_path()
        except AccessError:
            user_settings = None
        if user_settings and os.path.isfile(user_settings):
            self.scan_file(user_settings, CATEGORY_USER, result, collector, allow_comments=True)

        for path in self.workspace_settings_paths(collector):
            check_cancelled(token, "workspace settings scan")
            self.scan_file(path, CATEGORY_WORKSPACE, result, collector, allow_comments=True)

        self._scan_storage_root(self.resolver.get_global_storage_path(), CATEGORY_GLOBAL_STORAGE,
                                result, collector, token)
        self._scan_storage_root(self.resolver.get_workspace_storage_path(), CATEGORY_WORKSPACE_STORAGE,
                                result, collector, token)

        result.recommendations = self.recommendations(result)
        result.skipped = collector.entries
        logger.info(
            "Configuration scan completed",
            findings=result.total_findings,
            high_risk=result.high_risk_findings,
            skipped=len(result.skipped),
        )
        return result

    def _scan_storage_root(self, root: str, category: str, result: ConfigScanResult,
                           collector: ErrorCollector, token: Optional[CancellationToken]):
        for name in list_directories(root):
            directory = os.path.join(root, name)
            for path, info in walk_files(directory, collector, token):
                if not path.lower().endswith(".json") or info.st_size > tables.MAX_CONFIG_FILE_BYTES:
                    continue
                extension_id = name if category == CATEGORY_GLOBAL_STORAGE else _workspace_extension(directory, path)
                self.scan_file(path, category, result, collector, extension_id=extension_id)

    def scan_file(
        self,
        path: str,
        category: str,
        result: ConfigScanResult,
        collector: ErrorCollector,
        allow_comments: bool = False,
        extension_id: Optional[str] = None,
    ):
        """Add the findings of one settings document to result."""
        try:
            document = load_json_file(path, allow_comments=allow_comments)
            modified = datetime.fromtimestamp(os.path.getmtime(path))
        except (OSError, ParseError) as e:
            collector.record(path, e)
            return
        if not isinstance(document, dict):
            return

        for member in iter_json_members(document):
            if any(isinstance(part, int) for part in member.key_path):
                continue
            classification = self.registry.classify_setting(member.path)
            if not classification.matched:
                continue

            exact = self.registry.is_exact_setting(member.path) and classification.matched_pattern == member.path
            if exact:
                description = key_description(member.path, classification.risk)
                recommendation = key_recommendation(member.path, member.value)
            else:
                description = pattern_description(classification.risk)
                recommendation = PATTERN_RECOMMENDATION

            finding = ConfigFinding(
                file=path,
                path=member.path,
                key=member.key,
                value=member.value,
                risk=classification.risk,
                category=category,
                description=description,
                recommendation=recommendation,
            )
            self._add_finding(finding, result)
            result.items.append(DataItem(
                key=member.path,
                value=sanitize_value(member.value, tables.STORAGE_VALUE_LIMIT),
                size=estimate_value_size(member.value),
                risk=classification.risk,
                category=classification.category,
                source_type=SourceType.SETTING,
                source_path=path,
                last_modified=modified,
                description=description,
                extension_id=extension_id,
                key_path=member.key_path,
            ))

    @staticmethod
    def _add_finding(finding: ConfigFinding, result: ConfigScanResult):
        if "telemetry" in finding.path.lower():
            result.telemetry_settings.append(finding)
        elif "Workspace" in finding.category:
            result.workspace_settings.append(finding)
        elif is_extension_setting(finding.path):
            result.extension_settings.append(finding)
        else:
            result.vscode_settings.append(finding)

    @staticmethod
    def recommendations(result: ConfigScanResult) -> List[str]:
        telemetry_disabled = any(
            (f.path == "telemetry.telemetryLevel" and f.value == "off")
            or (f.path == "telemetry.enableTelemetry" and f.value is False)
            for f in result.telemetry_settings
            if f.category in (CATEGORY_USER, CATEGORY_WORKSPACE)
        )
        recommendations = []
        if telemetry_disabled:
            recommendations.append("Good: Telemetry is disabled")
        else:
            recommendations.append('Consider disabling telemetry: set telemetry.telemetryLevel to "off"')
        if result.extension_settings:
            recommendations.append(
                f"Review {len(result.extension_settings)} extension settings that may collect data"
            )
        return recommendations


def _workspace_extension(workspace_dir: str, path: str) -> Optional[str]:
    """First directory below the workspace hash directory, if the file is inside one."""
    relative = os.path.relpath(path, workspace_dir)
    parts = relative.split(os.sep)
    return parts[0] if len(parts) > 1 else None


def create_config_scanner(resolver: PathResolver, registry: PatternRegistry) -> ConfigScanner:
    return ConfigScanner(resolver, registry)
