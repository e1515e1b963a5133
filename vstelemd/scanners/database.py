"""
Database scanner.

Opens the editor's SQLite state databases read-only and classifies every
row of the key-value tables. Other tables are introspected with PRAGMA and
sampled up to a fixed row limit.
"""

import os
import sqlite3
import urllib.parse
from contextlib import closing
from datetime import datetime
from typing import Any, Callable, List, Optional, Sequence

import structlog

from ..cancellation import CancellationToken, check_cancelled
from ..errors import AccessError
from ..paths import PathResolver
from ..patterns import tables
from ..patterns.registry import CONTEXT_DATABASE, CONTEXT_DATABASE_EXTENSION, PatternRegistry
from ..patterns.risk import TelemetryRisk
from .base import ErrorCollector, SkippedEntry, list_directories, run_bounded, sanitize_value
from .config_scanner import is_core_setting
from .models import DatabaseScan, DatabaseScanResult, DataItem, SourceType, TableScan

logger = structlog.get_logger(__name__)

STATE_DB_NAME = "state.vscdb"


def open_read_only(db_path: str, timeout: float = 30.0) -> sqlite3.Connection:
    """Open a SQLite database read-only with a bounded busy timeout."""
    if not os.path.isfile(db_path):
        raise AccessError("Database not found", db_path)
    uri = "file:" + urllib.parse.quote(os.path.abspath(db_path)) + "?mode=ro"
    try:
        return sqlite3.connect(uri, uri=True, timeout=timeout, check_same_thread=False)
    except sqlite3.Error as e:
        raise AccessError(f"Cannot open database: {e}", db_path)


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def value_text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def extract_extension_id(key: str, value: str) -> Optional[str]:
    """
    Guess the owning extension of a row.

    Keys shaped like publisher.extension.* give publisher.extension unless the
    first part is a core editor prefix. Short values shaped like a.b are taken
    as an extension id as well.
    """
    parts = key.split(".")
    if len(parts) >= 2 and parts[0] and parts[1] and not is_core_setting(parts[0]):
        return f"{parts[0]}.{parts[1]}"
    if "." in value and len(value) < 100:
        value_parts = value.split(".")
        if len(value_parts) == 2 and len(value_parts[0]) > 2 and len(value_parts[1]) > 2:
            return value
    return None


class DatabaseScanner:
    """Finds telemetry rows in the editor's state databases."""

    def __init__(
        self,
        resolver: PathResolver,
        registry: PatternRegistry,
        timeout: float = 30.0,
        max_workers: int = 4,
        on_error: Optional[Callable[[SkippedEntry], None]] = None,
    ):
        self.resolver = resolver
        self.registry = registry
        self.timeout = timeout
        self.max_workers = max_workers
        self.on_error = on_error

    def default_db_paths(self) -> List[str]:
        paths = []
        try:
            paths.append(self.resolver.get_db_path())
        except AccessError:
            pass
        try:
            root = self.resolver.get_workspace_storage_path()
        except AccessError:
            return paths
        for workspace_hash in list_directories(root):
            candidate = os.path.join(root, workspace_hash, STATE_DB_NAME)
            if os.path.isfile(candidate):
                paths.append(candidate)
        return paths

    def scan(self, db_paths: Optional[Sequence[str]] = None,
             token: Optional[CancellationToken] = None) -> DatabaseScanResult:
        """
        Scan each database; missing databases are ignored.

        A database that exists but cannot be opened is recorded and skipped.
        """
        if db_paths is None:
            db_paths = self.default_db_paths()
        existing = [path for path in db_paths if os.path.exists(path)]
        collector = ErrorCollector("database", self.on_error)

        result = DatabaseScanResult()
        result.databases = run_bounded(
            lambda path: self.scan_database(path, collector, token),
            existing, self.max_workers, collector, token,
        )
        result.skipped = collector.entries
        logger.info(
            "Database scan completed",
            databases=len(result.databases),
            items=len(result.items),
            skipped=len(result.skipped),
        )
        return result

    def scan_database(self, db_path: str, collector: Optional[ErrorCollector] = None,
                      token: Optional[CancellationToken] = None) -> DatabaseScan:
        """Scan one database. Raises AccessError if it cannot be opened."""
        collector = collector or ErrorCollector("database", self.on_error)
        scan = DatabaseScan(db_path=db_path, size=os.path.getsize(db_path))
        modified = datetime.fromtimestamp(os.path.getmtime(db_path))

        with closing(open_read_only(db_path, self.timeout)) as conn:
            try:
                table_names = [row[0] for row in conn.execute(
                    "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name")]
            except sqlite3.DatabaseError as e:
                raise AccessError(f"Cannot list tables: {e}", db_path)

            for table in table_names:
                check_cancelled(token, "table scan")
                try:
                    if table in tables.KEY_VALUE_TABLES:
                        table_scan = self._scan_key_value_table(conn, db_path, table, modified)
                    else:
                        table_scan = self._scan_generic_table(conn, db_path, table, modified)
                except sqlite3.DatabaseError as e:
                    collector.record(f"{db_path}:{table}", e, "parse")
                    continue
                scan.tables.append(table_scan)

        return scan

    def _scan_key_value_table(self, conn: sqlite3.Connection, db_path: str, table: str,
                              modified: datetime) -> TableScan:
        table_scan = TableScan(name=table)
        cursor = conn.execute(f"SELECT key, value FROM {quote_identifier(table)}")
        for key, value in cursor:
            table_scan.rows_scanned += 1
            if key is None:
                continue
            item = self.classify_row(db_path, table, value_text(key),
                                     "" if value is None else value_text(value), modified)
            if item is not None:
                table_scan.items.append(item)
        return table_scan

    def _scan_generic_table(self, conn: sqlite3.Connection, db_path: str, table: str,
                            modified: datetime) -> TableScan:
        table_scan = TableScan(name=table)
        columns = [row[1] for row in conn.execute(f"PRAGMA table_info({quote_identifier(table)})")]
        if not columns:
            return table_scan
        cursor = conn.execute(f"SELECT * FROM {quote_identifier(table)} LIMIT {tables.MAX_GENERIC_ROWS}")
        for row in cursor:
            table_scan.rows_scanned += 1
            for column, value in zip(columns, row):
                if value is None:
                    continue
                item = self.classify_row(db_path, table, column, value_text(value), modified)
                if item is not None:
                    table_scan.items.append(item)
        return table_scan

    def classify_row(self, db_path: str, table: str, key: str, value: str,
                     modified: Optional[datetime] = None) -> Optional[DataItem]:
        """Classify a key/value pair; telemetry patterns win ties over extension patterns."""
        telemetry = self.registry.classify_many([key, value], CONTEXT_DATABASE)
        extension = self.registry.classify_many([key, value], CONTEXT_DATABASE_EXTENSION)

        if extension.risk > telemetry.risk:
            risk, category = extension.risk, "Extension"
            description = f"Contains extension pattern: {extension.matched_pattern}"
        else:
            risk, category = telemetry.risk, "Telemetry"
            description = f"Contains telemetry pattern: {telemetry.matched_pattern}"

        if risk == TelemetryRisk.NONE:
            return None

        return DataItem(
            key=key,
            value=sanitize_value(value, tables.DATABASE_VALUE_LIMIT),
            size=len(value.encode("utf-8")),
            risk=risk,
            category=category,
            source_type=SourceType.DB_ROW,
            source_path=db_path,
            last_modified=modified,
            description=description,
            extension_id=extract_extension_id(key, value),
            table=table,
        )


def create_database_scanner(resolver: PathResolver, registry: PatternRegistry,
                            timeout: float = 30.0) -> DatabaseScanner:
    return DatabaseScanner(resolver, registry, timeout)
