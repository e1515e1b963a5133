"""
Removal Engine.

Drives the cleanup of one extension's storage through a fixed sequence of
states: scanned, safety checked, blocked or backed up, cleaned, reported.
Mutation of a given extension is serialized with a per-extension lock;
different extensions may be cleaned concurrently.
"""

import logging
import os
import sqlite3
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, TYPE_CHECKING

from ..cancellation import CancellationToken, check_cancelled
from ..errors import CleanerError, ExhaustionError, OperationCancelled, PolicyError
from ..patterns import tables
from ..patterns.risk import TelemetryRisk
from ..safety.dependencies import DependencyChecker
from ..safety.preflight import PreflightChecker
from ..safety.validator import SafetyValidationResult, SafetyValidator
from ..scanners.models import DataItem, ExtensionStorage, SourceType
from ..storage.backup_manager import BackupManager, create_backup_manager
from ..storage.database_cleaner import DatabaseCleaner
from ..storage.json_editor import JsonEditor
from .audit_log import RemovalAuditLogger
from .policy import DEFAULT_POLICY, RemovalPolicy, evaluate_item

if TYPE_CHECKING:
    from ..monitoring.metrics_collector import CleanerMetricsCollector


class CleanupState(Enum):
    """Stages of a per-extension cleanup."""
    SCANNED = "scanned"
    SAFETY_CHECKED = "safety_checked"
    BLOCKED = "blocked"
    BACKED_UP = "backed_up"
    CLEANED = "cleaned"
    REPORTED = "reported"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = (CleanupState.BLOCKED, CleanupState.CLEANED, CleanupState.FAILED, CleanupState.CANCELLED)

ALLOWED_TRANSITIONS = {
    CleanupState.SCANNED: {CleanupState.SAFETY_CHECKED, CleanupState.FAILED, CleanupState.CANCELLED},
    CleanupState.SAFETY_CHECKED: {
        CleanupState.BLOCKED, CleanupState.BACKED_UP, CleanupState.CLEANED,
        CleanupState.FAILED, CleanupState.CANCELLED,
    },
    CleanupState.BACKED_UP: {CleanupState.CLEANED, CleanupState.FAILED, CleanupState.CANCELLED},
    CleanupState.BLOCKED: {CleanupState.REPORTED},
    CleanupState.CLEANED: {CleanupState.REPORTED},
    CleanupState.FAILED: {CleanupState.REPORTED},
    CleanupState.CANCELLED: {CleanupState.REPORTED},
    CleanupState.REPORTED: set(),
}


@dataclass
class CleanedItem:
    """One item that was (or in a dry run would have been) removed."""
    key: str
    original_size: int
    risk: TelemetryRisk
    source_type: SourceType
    source_path: str
    storage_type: str
    removal_time: datetime
    backup_path: Optional[str] = None
    table: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'key': self.key,
            'original_size': self.original_size,
            'risk': self.risk.label,
            'source_type': self.source_type.value,
            'source_path': self.source_path,
            'storage_type': self.storage_type,
            'removal_time': self.removal_time.isoformat(),
            'backup_path': self.backup_path,
            'table': self.table,
        }


@dataclass
class SafetyCheckResult:
    """Gate decision taken before anything is backed up or removed."""
    passed: bool = True
    extension_active: bool = False
    backup_verified: bool = False
    rollback_capable: bool = False
    dependency_check: bool = False
    dependencies: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    blocking_issues: List[str] = field(default_factory=list)
    block_reason: Optional[str] = None
    validation: Optional[SafetyValidationResult] = None

    def block(self, message: str, reason: str):
        self.passed = False
        self.blocking_issues.append(message)
        if self.block_reason is None:
            self.block_reason = reason

    def to_dict(self) -> Dict[str, Any]:
        return {
            'passed': self.passed,
            'extension_active': self.extension_active,
            'backup_verified': self.backup_verified,
            'rollback_capable': self.rollback_capable,
            'dependency_check': self.dependency_check,
            'dependencies': list(self.dependencies),
            'warnings': list(self.warnings),
            'blocking_issues': list(self.blocking_issues),
            'block_reason': self.block_reason,
            'validation': self.validation.to_dict() if self.validation else None,
        }


@dataclass
class ExtensionCleanResult:
    """Outcome of cleaning one extension storage."""
    extension_id: str
    storage_path: str
    storage_type: str
    operation_id: str
    dry_run: bool = False
    state: CleanupState = CleanupState.SCANNED
    history: List[CleanupState] = field(default_factory=lambda: [CleanupState.SCANNED])
    reported: bool = False
    cleaned_storage_items: List[CleanedItem] = field(default_factory=list)
    cleaned_cache_files: List[CleanedItem] = field(default_factory=list)
    cleaned_temp_files: List[CleanedItem] = field(default_factory=list)
    backup_paths: List[str] = field(default_factory=list)
    total_size_removed: int = 0
    telemetry_size_removed: int = 0
    items_removed: int = 0
    items_skipped: int = 0
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    cleanup_duration: float = 0.0
    safety_checks: Optional[SafetyCheckResult] = None

    def transition(self, new_state: CleanupState):
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise ValueError(f"Invalid cleanup transition {self.state.value} -> {new_state.value}")
        self.history.append(new_state)
        if new_state == CleanupState.REPORTED:
            # state keeps the outcome; reporting is recorded in history
            self.reported = True
        else:
            self.state = new_state

    @property
    def status(self) -> str:
        if self.state == CleanupState.CLEANED:
            return 'success' if not self.errors else 'partial'
        return {
            CleanupState.BLOCKED: 'blocked',
            CleanupState.CANCELLED: 'cancelled',
        }.get(self.state, 'failed')

    def all_cleaned_items(self) -> List[CleanedItem]:
        return self.cleaned_storage_items + self.cleaned_cache_files + self.cleaned_temp_files

    def record(self, cleaned: CleanedItem):
        if cleaned.storage_type == "cache":
            self.cleaned_cache_files.append(cleaned)
        elif cleaned.storage_type == "temp":
            self.cleaned_temp_files.append(cleaned)
        else:
            self.cleaned_storage_items.append(cleaned)
        self.items_removed += 1
        self.total_size_removed += cleaned.original_size
        if cleaned.risk >= TelemetryRisk.MEDIUM:
            self.telemetry_size_removed += cleaned.original_size

    def to_dict(self) -> Dict[str, Any]:
        return {
            'operation_id': self.operation_id,
            'extension_id': self.extension_id,
            'storage_path': self.storage_path,
            'storage_type': self.storage_type,
            'status': self.status,
            'state': self.state.value,
            'history': [state.value for state in self.history],
            'dry_run': self.dry_run,
            'items_removed': self.items_removed,
            'items_skipped': self.items_skipped,
            'total_size_removed': self.total_size_removed,
            'telemetry_size_removed': self.telemetry_size_removed,
            'backup_paths': list(self.backup_paths),
            'errors': list(self.errors),
            'warnings': list(self.warnings),
            'cleanup_duration': self.cleanup_duration,
            'safety_checks': self.safety_checks.to_dict() if self.safety_checks else None,
            'cleaned_items': [item.to_dict() for item in self.all_cleaned_items()],
        }


class RemovalEngine:
    """
    Cleans extension storage under a RemovalPolicy.

    Features:
    - Safety gate (SafetyValidator plus an extension-active check)
    - Verified archive backup before anything is deleted
    - Per-item policy filter with dry-run statistics identical to a real run
    - File, JSON key and database row removal
    - Audit trail and metrics for every outcome
    """

    def __init__(
        self,
        policy: RemovalPolicy = DEFAULT_POLICY,
        backup_manager: Optional[BackupManager] = None,
        safety_validator: Optional[SafetyValidator] = None,
        preflight: Optional[PreflightChecker] = None,
        dependency_checker: Optional[DependencyChecker] = None,
        json_editor: Optional[JsonEditor] = None,
        database_cleaner: Optional[DatabaseCleaner] = None,
        audit_logger: Optional[RemovalAuditLogger] = None,
        metrics: Optional["CleanerMetricsCollector"] = None,
        max_workers: int = 4,
        allow_unsafe: bool = False,
    ):
        self.policy = policy
        self.backup_manager = backup_manager or BackupManager()
        self.safety_validator = safety_validator or SafetyValidator()
        self.preflight = preflight
        self.dependency_checker = dependency_checker
        self.json_editor = json_editor or JsonEditor()
        self.database_cleaner = database_cleaner or DatabaseCleaner(create_backups=False)
        self.audit_logger = audit_logger
        self.metrics = metrics
        self.max_workers = max(1, max_workers)
        self.allow_unsafe = allow_unsafe
        self.logger = logging.getLogger(__name__)

        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, extension_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(extension_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[extension_id] = lock
            return lock

    # Orchestration

    def clean_extension(
        self,
        storage: ExtensionStorage,
        token: Optional[CancellationToken] = None,
        raise_on_block: bool = False,
        now: Optional[datetime] = None,
    ) -> ExtensionCleanResult:
        """
        Run the full cleanup sequence for one extension storage.

        Blocked, failed and cancelled outcomes are returned in the result.
        Raises PolicyError for a blocked run only when raise_on_block is set.
        """
        with self._lock_for(storage.extension_id):
            result = self._run(storage, token, now or datetime.now())

        if raise_on_block and result.state == CleanupState.BLOCKED:
            issues = result.safety_checks.blocking_issues if result.safety_checks else []
            raise PolicyError(
                f"Removal blocked for {storage.extension_id}: {'; '.join(issues)}",
                storage.storage_path,
                issues,
            )
        return result

    def _run(self, storage: ExtensionStorage, token: Optional[CancellationToken],
             now: datetime) -> ExtensionCleanResult:
        start_time = time.time()
        result = ExtensionCleanResult(
            extension_id=storage.extension_id,
            storage_path=storage.storage_path,
            storage_type=storage.storage_type,
            operation_id=f"removal_{now.strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:8]}",
            dry_run=self.policy.dry_run,
        )
        self.logger.info(f"Starting cleanup of {storage.extension_id} ({storage.storage_path})"
                         f"{' in dry-run mode' if self.policy.dry_run else ''}")

        try:
            check_cancelled(token, "safety check")
            candidates, skipped = self.select_items(storage, now)
            result.items_skipped = len(skipped)

            result.safety_checks = self.perform_safety_checks(storage, candidates, now)
            result.transition(CleanupState.SAFETY_CHECKED)
            result.warnings.extend(result.safety_checks.warnings)

            if not result.safety_checks.passed:
                result.transition(CleanupState.BLOCKED)
                self._record_blocked(result)
            elif not candidates:
                self.logger.info(f"Nothing to clean for {storage.extension_id}")
                result.transition(CleanupState.CLEANED)
            else:
                check_cancelled(token, "backup")
                if self.policy.create_backups:
                    if not self._create_backup(storage, candidates, result, token):
                        result.transition(CleanupState.FAILED)
                    else:
                        result.transition(CleanupState.BACKED_UP)
                if result.state != CleanupState.FAILED:
                    self._remove_items(candidates, result, token)
                    result.transition(CleanupState.CLEANED)

        except OperationCancelled as e:
            self.logger.warning(f"Cleanup of {storage.extension_id} cancelled: {e}")
            result.errors.append(str(e))
            result.transition(CleanupState.CANCELLED)
        except (CleanerError, OSError) as e:
            self.logger.error(f"Cleanup of {storage.extension_id} failed: {e}")
            result.errors.append(str(e))
            if result.state not in TERMINAL_STATES:
                result.transition(CleanupState.FAILED)

        result.cleanup_duration = time.time() - start_time
        self._report(result)
        return result

    def clean_extensions(
        self,
        storages: Sequence[ExtensionStorage],
        token: Optional[CancellationToken] = None,
        max_workers: Optional[int] = None,
    ) -> List[ExtensionCleanResult]:
        """Clean several storages concurrently; results keep the input order."""
        workers = max(1, max_workers or self.max_workers)
        if not storages:
            return []

        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [executor.submit(self.clean_extension, storage, token) for storage in storages]
            results = [future.result() for future in futures]

        if self.audit_logger is not None:
            self.audit_logger.create_removal_summary_report(results)
        if not self.policy.dry_run:
            removed = self.backup_manager.cleanup_old_backups()
            if removed:
                self.logger.info(f"Removed {len(removed)} expired backups")
        return results

    # Phases

    def select_items(self, storage: ExtensionStorage,
                     now: Optional[datetime] = None) -> Tuple[List[DataItem], List[Tuple[DataItem, str]]]:
        """Split storage items into removal candidates and (item, reason) skips."""
        now = now or datetime.now()
        candidates = []
        skipped = []
        for item in storage.items:
            should_clean, reason = evaluate_item(item, self.policy, now)
            if should_clean:
                candidates.append(item)
            else:
                skipped.append((item, reason))
                self.logger.debug(f"Skipping {item.key}: {reason}")
        return candidates, skipped

    def perform_safety_checks(self, storage: ExtensionStorage, candidates: Sequence[DataItem],
                              now: Optional[datetime] = None) -> SafetyCheckResult:
        checks = SafetyCheckResult()

        if not os.path.exists(storage.storage_path):
            checks.block(f"Storage path is not accessible: {storage.storage_path}", "inaccessible")
            return checks

        if self.preflight is not None and self.preflight.is_extension_active(storage.extension_id):
            checks.extension_active = True
            checks.block(f"Extension {storage.extension_id} is currently active", "extension_active")

        if self.dependency_checker is not None:
            try:
                dependencies = self.dependency_checker.check_dependencies(storage.extension_id)
            except (CleanerError, OSError) as e:
                checks.warnings.append(f"Dependency check failed: {e}")
            else:
                if dependencies:
                    checks.dependency_check = True
                    checks.dependencies = [dependency.to_dict() for dependency in dependencies]
                    checks.warnings.append(
                        f"Extension has {len(dependencies)} dependencies that may be affected")

        validation = self.safety_validator.validate_removal_safety(candidates, storage.storage_path, now)
        checks.validation = validation
        checks.warnings.extend(issue.message for issue in validation.warnings)
        if not validation.safe:
            messages = [issue.message for issue in validation.errors]
            if self.allow_unsafe:
                checks.warnings.extend(f"Overridden: {message}" for message in messages)
            else:
                for message in messages:
                    checks.block(message, "safety_validation")

        checks.rollback_capable = self.policy.create_backups
        return checks

    def _create_backup(self, storage: ExtensionStorage, candidates: Sequence[DataItem],
                       result: ExtensionCleanResult, token: Optional[CancellationToken]) -> bool:
        """Archive the storage. Returns False when the run must stop."""
        only_paths = None
        if storage.storage_type == "temp":
            only_paths = sorted({item.source_path for item in candidates})

        try:
            backup = self.backup_manager.create_extension_backup(storage, token=token, only_paths=only_paths)
            result.backup_paths.append(backup.backup_path)
            result.warnings.extend(backup.errors)
            if self.policy.verify_backups:
                self.backup_manager.verify_backup(backup.backup_path, strict=True)
                result.safety_checks.backup_verified = True
            self._record_backup("success")
            return True

        except OperationCancelled:
            raise
        except ExhaustionError as e:
            self._record_backup("failed")
            result.errors.append(f"Backup not possible: {e}")
            return False
        except (CleanerError, OSError) as e:
            self._record_backup("failed")
            if self.policy.verify_backups:
                result.errors.append(f"Backup failed: {e}")
                return False
            self.logger.warning(f"Backup failed for {storage.extension_id}, continuing without it: {e}")
            result.warnings.append(f"Backup failed: {e}")
            result.safety_checks.rollback_capable = False
            return True

    def _remove_items(self, candidates: Sequence[DataItem], result: ExtensionCleanResult,
                      token: Optional[CancellationToken]):
        files = [item for item in candidates if item.source_type == SourceType.FILE]
        json_items = [item for item in candidates
                      if item.source_type in (SourceType.STORAGE_KEY, SourceType.SETTING)]
        db_items = [item for item in candidates if item.source_type == SourceType.DB_ROW]

        for item in files:
            check_cancelled(token, "file removal")
            self._remove_file(item, result)

        by_file: Dict[str, List[DataItem]] = {}
        for item in json_items:
            by_file.setdefault(item.source_path, []).append(item)
        for path, items in by_file.items():
            check_cancelled(token, "key removal")
            self._remove_json_keys(path, items, result)

        by_db: Dict[str, List[DataItem]] = {}
        for item in db_items:
            by_db.setdefault(item.source_path, []).append(item)
        for db_path, items in by_db.items():
            check_cancelled(token, "row removal")
            self._remove_db_rows(db_path, items, result)

    def _cleaned(self, item: DataItem, result: ExtensionCleanResult, backup_path: Optional[str]) -> CleanedItem:
        return CleanedItem(
            key=item.key,
            original_size=item.size,
            risk=item.risk,
            source_type=item.source_type,
            source_path=item.source_path,
            storage_type=result.storage_type,
            removal_time=datetime.now(),
            backup_path=backup_path,
            table=item.table,
        )

    def _item_backup(self, item: DataItem, result: ExtensionCleanResult) -> Optional[str]:
        if self.policy.dry_run or not self.policy.create_backups or item.source_type == SourceType.FILE:
            return None
        try:
            return self.backup_manager.backup_storage_item(item)
        except (OSError, TypeError, ValueError) as e:
            result.warnings.append(f"Item backup failed for {item.key}: {e}")
            return None

    def _remove_file(self, item: DataItem, result: ExtensionCleanResult):
        if not self.policy.dry_run:
            try:
                os.remove(item.source_path)
            except FileNotFoundError:
                self.logger.debug(f"File already removed: {item.source_path}")
            except OSError as e:
                self.logger.error(f"Failed to remove {item.source_path}: {e}")
                result.errors.append(f"Failed to remove {item.source_path}: {e}")
                return
        result.record(self._cleaned(item, result, None))

    def _remove_json_keys(self, path: str, items: List[DataItem], result: ExtensionCleanResult):
        backups = {id(item): self._item_backup(item, result) for item in items}
        key_paths = [item.key_path or (item.key,) for item in items]
        try:
            self.json_editor.remove_keys(path, key_paths, dry_run=self.policy.dry_run)
        except FileNotFoundError:
            self.logger.debug(f"JSON file already removed: {path}")
        except (CleanerError, OSError) as e:
            self.logger.error(f"Failed to remove keys from {path}: {e}")
            result.errors.append(f"Failed to remove keys from {path}: {e}")
            return
        for item in items:
            result.record(self._cleaned(item, result, backups[id(item)]))

    def _remove_db_rows(self, db_path: str, items: List[DataItem], result: ExtensionCleanResult):
        supported = [item for item in items if item.table in tables.KEY_VALUE_TABLES]
        for item in items:
            if item.table not in tables.KEY_VALUE_TABLES:
                result.warnings.append(f"Row removal is not supported for table {item.table}: {item.key}")

        if not supported:
            return
        backups = {id(item): self._item_backup(item, result) for item in supported}
        keys_by_table: Dict[str, List[str]] = {}
        for item in supported:
            keys_by_table.setdefault(item.table, []).append(item.key)
        try:
            self.database_cleaner.delete_keys(db_path, keys_by_table, dry_run=self.policy.dry_run)
        except (CleanerError, OSError, sqlite3.Error) as e:
            self.logger.error(f"Failed to remove rows from {db_path}: {e}")
            result.errors.append(f"Failed to remove rows from {db_path}: {e}")
            return
        for item in supported:
            result.record(self._cleaned(item, result, backups[id(item)]))

    # Reporting

    def _report(self, result: ExtensionCleanResult):
        result.transition(CleanupState.REPORTED)
        if self.audit_logger is not None:
            self.audit_logger.log_removal_operation(result, self.policy)
        if self.metrics is not None:
            self.metrics.record_cleanup(result)

    def _record_blocked(self, result: ExtensionCleanResult):
        checks = result.safety_checks
        self.logger.warning(f"Cleanup of {result.extension_id} blocked: {'; '.join(checks.blocking_issues)}")
        if self.metrics is not None:
            self.metrics.record_blocked(checks.block_reason or "safety_validation")

    def _record_backup(self, status: str):
        if self.metrics is not None:
            self.metrics.record_backup(status)


def create_removal_engine(policy: RemovalPolicy = DEFAULT_POLICY, backup_directory: str = "backups/extensions",
                          **kwargs) -> RemovalEngine:
    return RemovalEngine(policy=policy, backup_manager=create_backup_manager(backup_directory), **kwargs)
