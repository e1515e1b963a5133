"""
Pre-operation checks.

Run before any destructive step: the editor must not be running, the backup
directory must be writable with enough free space, and the editor's state
files should be present.
"""

import os
import tempfile
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import psutil
import structlog

from ..errors import AccessError
from ..paths import PathResolver
from ..patterns import tables

logger = structlog.get_logger(__name__)

SEVERITY_INFO = "info"
SEVERITY_WARNING = "warning"
SEVERITY_ERROR = "error"


@dataclass
class PreflightCheck:
    """Outcome of one pre-operation check."""
    check_name: str
    passed: bool = True
    message: str = ""
    severity: str = SEVERITY_INFO


@dataclass
class PreflightReport:
    """All pre-operation checks; errors stop the run, warnings do not."""
    can_proceed: bool = True
    checks: List[PreflightCheck] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def add(self, check: PreflightCheck):
        self.checks.append(check)
        if check.passed:
            return
        if check.severity == SEVERITY_ERROR:
            self.can_proceed = False
            self.errors.append(check.message)
        else:
            self.warnings.append(check.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'can_proceed': self.can_proceed,
            'checks': [check.__dict__ for check in self.checks],
            'warnings': list(self.warnings),
            'errors': list(self.errors),
        }


def _is_editor_process(name: str, cmdline: List[str]) -> bool:
    lowered = (name or "").lower()
    if lowered in tables.EDITOR_PROCESS_NAMES:
        return True
    if lowered in tables.ELECTRON_PROCESS_NAMES:
        return any("code" in part.lower() for part in cmdline or [])
    return False


def _existing_ancestor(path: str) -> str:
    path = os.path.abspath(path)
    while not os.path.exists(path):
        parent = os.path.dirname(path)
        if parent == path:
            break
        path = parent
    return path


class PreflightChecker:
    """Pre-operation safety checks backed by psutil."""

    def __init__(self, resolver: PathResolver, backup_directory: str, min_free_disk_mb: int = 100):
        self.resolver = resolver
        self.backup_directory = backup_directory
        self.min_free_disk_mb = min_free_disk_mb

    def find_editor_processes(self) -> List[Dict[str, Any]]:
        """Running editor processes as {pid, name} dicts."""
        found = []
        for process in psutil.process_iter(['pid', 'name', 'cmdline']):
            try:
                info = process.info
                if _is_editor_process(info.get('name') or "", info.get('cmdline') or []):
                    found.append({'pid': info.get('pid'), 'name': info.get('name')})
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue
        return found

    def is_editor_running(self) -> bool:
        return bool(self.find_editor_processes())

    def is_extension_installed(self, extension_id: str) -> bool:
        try:
            extensions_path = self.resolver.get_extensions_path()
        except AccessError:
            return False
        if not os.path.isdir(extensions_path):
            return False
        prefix = extension_id.lower()
        for name in os.listdir(extensions_path):
            lowered = name.lower()
            if lowered == prefix or lowered.startswith(prefix + "-"):
                return True
        return False

    def is_extension_active(self, extension_id: str) -> bool:
        """An extension counts as active while the editor runs and it is installed."""
        return self.is_extension_installed(extension_id) and self.is_editor_running()

    def check_editor_not_running(self) -> PreflightCheck:
        check = PreflightCheck("VS Code Process Check", message="VS Code does not appear to be running")
        processes = self.find_editor_processes()
        if processes:
            pids = ", ".join(str(p['pid']) for p in processes[:5])
            check.passed = False
            check.severity = SEVERITY_ERROR
            check.message = f"VS Code is running (pid {pids}); close it before proceeding"
        return check

    def check_required_files(self) -> PreflightCheck:
        check = PreflightCheck("Required Files Check", message="All required VS Code files found")
        missing = []
        for getter, label, predicate in (
            (self.resolver.get_storage_path, "storage.json", os.path.isfile),
            (self.resolver.get_db_path, "state.vscdb", os.path.isfile),
            (self.resolver.get_workspace_storage_path, "workspaceStorage directory", os.path.isdir),
        ):
            try:
                if not predicate(getter()):
                    missing.append(label)
            except AccessError:
                missing.append(label)
        if missing:
            check.passed = False
            check.severity = SEVERITY_WARNING
            check.message = f"Missing files/directories: {', '.join(missing)}. Some operations may not work."
        return check

    def check_disk_space(self) -> PreflightCheck:
        check = PreflightCheck("Disk Space Check", message="Sufficient disk space available")
        if not self.backup_directory:
            check.passed = False
            check.severity = SEVERITY_ERROR
            check.message = "Backup directory not configured"
            return check
        try:
            usage = psutil.disk_usage(_existing_ancestor(self.backup_directory))
        except OSError as e:
            check.passed = False
            check.severity = SEVERITY_ERROR
            check.message = f"Cannot determine free disk space: {e}"
            return check
        free_mb = usage.free / (1024 * 1024)
        if free_mb < self.min_free_disk_mb:
            check.passed = False
            check.severity = SEVERITY_ERROR
            check.message = (f"Insufficient disk space for backups: {free_mb:.0f} MB free, "
                             f"{self.min_free_disk_mb} MB required")
        return check

    def check_backup_directory(self) -> PreflightCheck:
        check = PreflightCheck("Backup Directory Check", message="Backup directory is accessible and writable")
        if not self.backup_directory:
            check.passed = False
            check.severity = SEVERITY_ERROR
            check.message = "Backup directory not configured"
            return check
        try:
            os.makedirs(self.backup_directory, exist_ok=True)
            with tempfile.NamedTemporaryFile(dir=self.backup_directory, prefix=".write-test-"):
                pass
        except OSError as e:
            check.passed = False
            check.severity = SEVERITY_ERROR
            check.message = f"Backup directory is not writable: {e}"
        return check

    def run(self) -> PreflightReport:
        report = PreflightReport()
        report.add(self.check_editor_not_running())
        report.add(self.check_required_files())
        report.add(self.check_disk_space())
        report.add(self.check_backup_directory())
        logger.info(
            "Pre-operation checks completed",
            can_proceed=report.can_proceed,
            errors=len(report.errors),
            warnings=len(report.warnings),
        )
        return report


def create_preflight_checker(resolver: PathResolver, backup_directory: str,
                             min_free_disk_mb: int = 100) -> PreflightChecker:
    return PreflightChecker(resolver, backup_directory, min_free_disk_mb)
