"""
Database cleanup.

Deletes rows from the editor's state databases: bulk removal of every
ItemTable row whose key contains a pattern, and removal of specific keys
found by the database scanner. Each database is copied to <db>.bak.<ts>
before it is modified and every change runs in a single transaction.
"""

import logging
import os
import sqlite3
from contextlib import closing
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, TypeVar

from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from ..errors import AccessError
from ..patterns import tables
from ..scanners.database import STATE_DB_NAME, quote_identifier
from .file_backup import create_file_backup, verify_file_backup

T = TypeVar("T")

ITEM_TABLE = "ItemTable"


@dataclass
class DatabaseCleanResult:
    """Outcome of a cleanup of one database."""
    db_path: str
    pattern: str = ""
    backup_path: Optional[str] = None
    rows_matched: int = 0
    rows_deleted: int = 0
    dry_run: bool = False
    errors: List[str] = field(default_factory=list)


def is_busy_error(error: BaseException) -> bool:
    """True for the transient 'database is locked' / 'busy' errors."""
    if not isinstance(error, sqlite3.OperationalError):
        return False
    message = str(error).lower()
    return "locked" in message or "busy" in message


class DatabaseCleaner:
    """Removes telemetry rows from SQLite state databases."""

    def __init__(self, timeout: float = 30.0, retries: int = 3, create_backups: bool = True):
        self.timeout = timeout
        self.retries = max(1, retries)
        self.create_backups = create_backups
        self.logger = logging.getLogger(__name__)

    def _with_retry(self, func: Callable[[], T]) -> T:
        retrying = Retrying(
            stop=stop_after_attempt(self.retries),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception(is_busy_error),
            reraise=True,
        )
        return retrying(func)

    def _connect(self, db_path: str) -> sqlite3.Connection:
        if not os.path.isfile(db_path):
            raise AccessError("Database file not found", db_path)
        conn = sqlite3.connect(db_path, timeout=self.timeout, isolation_level=None)
        return conn

    def _backup(self, db_path: str) -> Optional[str]:
        if not self.create_backups:
            return None
        backup_path = create_file_backup(db_path)
        verify_file_backup(backup_path, db_path)
        return backup_path

    def count_matching(self, db_path: str, pattern: str) -> int:
        """Rows of ItemTable whose key contains pattern."""
        def count() -> int:
            with closing(self._connect(db_path)) as conn:
                row = conn.execute(
                    f"SELECT COUNT(*) FROM {ITEM_TABLE} WHERE key LIKE ?", (f"%{pattern}%",)
                ).fetchone()
                return int(row[0])
        return self._with_retry(count)

    def clean(self, db_path: str, pattern: str, dry_run: bool = False) -> DatabaseCleanResult:
        """
        Delete every ItemTable row whose key contains pattern.

        Dry runs only count matching rows and create no backup. On failure the
        transaction is rolled back and the error re-raised.
        """
        result = DatabaseCleanResult(db_path=db_path, pattern=pattern, dry_run=dry_run)
        result.rows_matched = self.count_matching(db_path, pattern)

        if dry_run:
            self.logger.info(f"Dry run: {result.rows_matched} rows matching '{pattern}' in {db_path}")
            return result
        if result.rows_matched == 0:
            return result

        result.backup_path = self._backup(db_path)

        def delete() -> int:
            with closing(self._connect(db_path)) as conn:
                try:
                    conn.execute("BEGIN IMMEDIATE")
                    cursor = conn.execute(
                        f"DELETE FROM {ITEM_TABLE} WHERE key LIKE ?", (f"%{pattern}%",)
                    )
                    deleted = cursor.rowcount
                    conn.execute("COMMIT")
                    return deleted
                except sqlite3.Error:
                    if conn.in_transaction:
                        conn.execute("ROLLBACK")
                    raise

        result.rows_deleted = self._with_retry(delete)
        self.logger.info(f"Deleted {result.rows_deleted} rows matching '{pattern}' from {db_path}")
        return result

    def clean_workspaces(self, workspace_storage: str, pattern: str,
                         dry_run: bool = False) -> List[DatabaseCleanResult]:
        """Apply clean() to every <workspace hash>/state.vscdb below workspace_storage."""
        results = []
        if not os.path.isdir(workspace_storage):
            return results

        for name in sorted(os.listdir(workspace_storage)):
            db_path = os.path.join(workspace_storage, name, STATE_DB_NAME)
            if not os.path.isfile(db_path):
                continue
            try:
                results.append(self.clean(db_path, pattern, dry_run))
            except (sqlite3.Error, OSError, AccessError) as e:
                self.logger.error(f"Failed to clean workspace database {db_path}: {e}")
                results.append(DatabaseCleanResult(
                    db_path=db_path, pattern=pattern, dry_run=dry_run, errors=[str(e)]
                ))
        return results

    def delete_keys(self, db_path: str, keys_by_table: Dict[str, Iterable[str]],
                    dry_run: bool = False) -> DatabaseCleanResult:
        """
        Delete specific keys from key-value tables in one transaction.

        Only tables in KEY_VALUE_TABLES are touched. rows_matched counts the
        rows present before deletion, so dry and real runs report the same
        figure.
        """
        result = DatabaseCleanResult(db_path=db_path, dry_run=dry_run)
        plan = {
            table: sorted(set(keys))
            for table, keys in keys_by_table.items()
            if table in tables.KEY_VALUE_TABLES
        }

        def count() -> int:
            total = 0
            with closing(self._connect(db_path)) as conn:
                for table, keys in plan.items():
                    for key in keys:
                        row = conn.execute(
                            f"SELECT COUNT(*) FROM {quote_identifier(table)} WHERE key = ?", (key,)
                        ).fetchone()
                        total += int(row[0])
            return total

        result.rows_matched = self._with_retry(count)
        if dry_run or result.rows_matched == 0:
            return result

        result.backup_path = self._backup(db_path)

        def delete() -> int:
            deleted = 0
            with closing(self._connect(db_path)) as conn:
                try:
                    conn.execute("BEGIN IMMEDIATE")
                    for table, keys in plan.items():
                        for key in keys:
                            cursor = conn.execute(
                                f"DELETE FROM {quote_identifier(table)} WHERE key = ?", (key,)
                            )
                            deleted += cursor.rowcount
                    conn.execute("COMMIT")
                except sqlite3.Error:
                    if conn.in_transaction:
                        conn.execute("ROLLBACK")
                    raise
            return deleted

        result.rows_deleted = self._with_retry(delete)
        self.logger.info(f"Deleted {result.rows_deleted} rows from {db_path}")
        return result


def create_database_cleaner(timeout: float = 30.0, retries: int = 3) -> DatabaseCleaner:
    return DatabaseCleaner(timeout, retries)
