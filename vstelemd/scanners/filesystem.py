"""
Filesystem scanner.

Walks the editor's storage files and a handful of common user directories
and scores every file by path and content patterns. Also scans installed
extension source code for telemetry call sites.
"""

import json
import os
import time
from datetime import datetime
from typing import Callable, List, Optional, Sequence, Tuple

import structlog

from ..cancellation import CancellationToken, check_cancelled
from ..errors import AccessError
from ..paths import PathResolver
from ..patterns.registry import PatternRegistry
from ..patterns.risk import TelemetryRisk
from .base import ErrorCollector, SkippedEntry, list_directories, read_text, run_bounded, walk_files
from .models import DataItem, ExtensionCodeReport, FileMatch, FilesystemScanResult, SourceType

logger = structlog.get_logger(__name__)

TYPE_STORAGE = "VS Code Storage"
TYPE_DATABASE = "VS Code Database"
TYPE_MACHINE_ID = "VS Code Machine ID"
TYPE_WORKSPACE = "VS Code Workspace"
TYPE_SYSTEM = "System Directory"

COMMON_USER_DIRS = ("Documents", "Downloads", "Desktop")
CODE_FILE_SUFFIXES = (".js", ".ts")
CODE_SKIP_DIRS = ("node_modules", ".git", "test", "tests")
TARGET_CONFIDENCE = 0.7


def describe_confidence(confidence: float) -> str:
    if confidence > 0.8:
        return "Highly likely to be telemetry-related"
    if confidence > 0.5:
        return "Likely to be telemetry-related"
    if confidence > 0.3:
        return "Possibly telemetry-related"
    return "May contain telemetry references"


def confidence_risk(confidence: float) -> TelemetryRisk:
    """Map a filesystem confidence score onto the shared risk scale."""
    if confidence > 0.8:
        return TelemetryRisk.HIGH
    if confidence > 0.5:
        return TelemetryRisk.MEDIUM
    return TelemetryRisk.LOW


class FilesystemScanner:
    """Scores files by how likely they are to hold telemetry."""

    def __init__(
        self,
        resolver: PathResolver,
        registry: PatternRegistry,
        max_workers: int = 4,
        on_error: Optional[Callable[[SkippedEntry], None]] = None,
    ):
        self.resolver = resolver
        self.registry = registry
        self.max_workers = max_workers
        self.on_error = on_error

    def default_targets(self) -> Tuple[List[Tuple[str, str]], List[Tuple[str, str]]]:
        """
        Return (single files, directories) to scan, each as (path, type).

        Locations the resolver cannot provide are left out.
        """
        files = []
        for getter, file_type in (
            (self.resolver.get_storage_path, TYPE_STORAGE),
            (self.resolver.get_db_path, TYPE_DATABASE),
            (self.resolver.get_machine_id_path, TYPE_MACHINE_ID),
        ):
            try:
                files.append((getter(), file_type))
            except AccessError:
                continue

        directories = []
        try:
            directories.append((self.resolver.get_workspace_storage_path(), TYPE_WORKSPACE))
        except AccessError:
            pass
        try:
            home = self.resolver.get_home_dir()
            directories.extend((os.path.join(home, name), TYPE_SYSTEM) for name in COMMON_USER_DIRS)
        except AccessError:
            pass
        try:
            directories.append((self.resolver.get_app_data_dir(), TYPE_SYSTEM))
        except AccessError:
            pass
        directories.extend((d, TYPE_SYSTEM) for d in self.resolver.get_temp_directories()[:1])
        return files, directories

    def scan(
        self,
        files: Optional[Sequence[Tuple[str, str]]] = None,
        directories: Optional[Sequence[Tuple[str, str]]] = None,
        token: Optional[CancellationToken] = None,
    ) -> FilesystemScanResult:
        """
        Scan single files and directory trees; defaults come from the resolver.

        Raises AccessError when a directory root exists but cannot be listed.
        """
        start_time = time.time()
        if files is None and directories is None:
            files, directories = self.default_targets()
        files = list(files or [])
        directories = [(d, t) for d, t in (directories or []) if os.path.isdir(d)]
        for root, _ in directories:
            list_directories(root)

        collector = ErrorCollector("filesystem", self.on_error)
        result = FilesystemScanResult()

        for path, file_type in files:
            check_cancelled(token, "file scan")
            if not os.path.exists(path):
                continue
            try:
                match = self.analyze_file(path, file_type)
            except OSError as e:
                collector.record(path, e)
                continue
            if match is not None:
                result.vscode_files.append(match)

        def scan_tree(target: Tuple[str, str]) -> List[FileMatch]:
            root, file_type = target
            matches = []
            for path, info in walk_files(root, collector, token):
                try:
                    match = self.analyze_file(path, file_type, info)
                except OSError as e:
                    collector.record(path, e)
                    continue
                if match is not None:
                    matches.append(match)
            return matches

        for matches in run_bounded(scan_tree, directories, self.max_workers, collector, token,
                                   describe=lambda target: target[0]):
            for match in matches:
                self._bucket(result, match)

        result.items = [self.to_item(match) for match in result.all_files]
        result.skipped = collector.entries
        result.scan_duration = time.time() - start_time
        logger.info(
            "Filesystem scan completed",
            files=result.total_files,
            total_size=result.total_size,
            skipped=len(result.skipped),
            duration=round(result.scan_duration, 3),
        )
        return result

    @staticmethod
    def _bucket(result: FilesystemScanResult, match: FileMatch):
        lowered = match.path.lower()
        if "log" in lowered:
            result.log_files.append(match)
        elif "config" in lowered:
            result.config_files.append(match)
        elif match.confidence > TARGET_CONFIDENCE:
            result.target_files.append(match)
        else:
            result.vscode_files.append(match)

    def analyze_file(self, path: str, file_type: str, info: Optional[os.stat_result] = None) -> Optional[FileMatch]:
        """Score one file, returning None when confidence is too low."""
        if info is None:
            info = os.stat(path)
        content = None
        if info.st_size < self.registry.max_content_bytes:
            content = read_text(path, self.registry.max_content_bytes)
        confidence = self.registry.combined_confidence(path, content)
        if not self.registry.passes_confidence(confidence):
            return None
        return FileMatch(
            path=path,
            size=info.st_size,
            modified=datetime.fromtimestamp(info.st_mtime),
            file_type=file_type,
            description=describe_confidence(confidence),
            confidence=confidence,
            risk=confidence_risk(confidence),
        )

    @staticmethod
    def to_item(match: FileMatch) -> DataItem:
        return DataItem(
            key=os.path.basename(match.path),
            value=f"{match.file_type} ({match.size} bytes, confidence {match.confidence:.2f})",
            size=match.size,
            risk=match.risk,
            category=match.file_type,
            source_type=SourceType.FILE,
            source_path=match.path,
            last_modified=match.modified,
            description=match.description,
        )

    # Extension source code

    def scan_extension_code(
        self,
        extensions_path: Optional[str] = None,
        token: Optional[CancellationToken] = None,
    ) -> List[ExtensionCodeReport]:
        """
        Apply the code patterns to every installed extension's .js/.ts files.

        Raises AccessError if the extensions directory exists but cannot be
        listed.
        """
        if extensions_path is None:
            extensions_path = self.resolver.get_extensions_path()
        collector = ErrorCollector("extension_code", self.on_error)
        names = list_directories(extensions_path)

        def scan_one(name: str) -> ExtensionCodeReport:
            return self.scan_extension_source(os.path.join(extensions_path, name), collector, token)

        reports = run_bounded(scan_one, names, self.max_workers, collector, token,
                              describe=lambda name: os.path.join(extensions_path, name))
        logger.info(
            "Extension code scan completed",
            extensions=len(reports),
            with_telemetry=sum(1 for r in reports if r.matches),
        )
        return reports

    def scan_extension_source(self, extension_path: str, collector: ErrorCollector,
                              token: Optional[CancellationToken] = None) -> ExtensionCodeReport:
        report = ExtensionCodeReport(
            extension_id=read_extension_id(extension_path),
            extension_path=extension_path,
        )
        for path, info in walk_files(extension_path, collector, token, skip_dirs=CODE_SKIP_DIRS):
            if not path.lower().endswith(CODE_FILE_SUFFIXES):
                continue
            if info.st_size >= self.registry.max_content_bytes:
                continue
            try:
                text = read_text(path, self.registry.max_content_bytes)
            except OSError as e:
                collector.record(path, e)
                continue
            report.files_scanned += 1
            if text:
                report.matches.extend(self.registry.match_code(text))
        report.matches.sort(key=lambda m: -int(m.risk))
        return report


def read_extension_id(extension_path: str) -> str:
    """publisher.name from package.json, or the directory name."""
    manifest_path = os.path.join(extension_path, "package.json")
    fallback = os.path.basename(extension_path.rstrip(os.sep))
    try:
        with open(manifest_path, "r", encoding="utf-8") as f:
            manifest = json.load(f)
    except (OSError, ValueError):
        return fallback
    if not isinstance(manifest, dict):
        return fallback
    publisher = manifest.get("publisher")
    name = manifest.get("name")
    if publisher and name:
        return f"{publisher}.{name}".lower()
    return fallback


def create_filesystem_scanner(resolver: PathResolver, registry: PatternRegistry,
                              max_workers: int = 4) -> FilesystemScanner:
    return FilesystemScanner(resolver, registry, max_workers)
