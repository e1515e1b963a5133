"""
Shared scanning support.

Scanners are best-effort: a single unreadable file or malformed document is
recorded in an ErrorCollector and the scan continues. Independent roots are
scanned in a bounded thread pool and merged through a lock-guarded
accumulator.
"""

import json
import os
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple, TypeVar

import structlog

from ..cancellation import CancellationToken, check_cancelled
from ..errors import AccessError, CleanerError, OperationCancelled, ParseError
from ..patterns import tables
from .models import KeyPath

logger = structlog.get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")

KIND_ACCESS = "access"
KIND_PARSE = "parse"
KIND_ERROR = "error"


@dataclass(frozen=True)
class SkippedEntry:
    """A path or row a scanner could not process."""
    source: str
    path: str
    kind: str
    message: str


class ErrorCollector:
    """
    Records what a scan skipped instead of silently discarding it.

    An optional callback is invoked for every entry, which lets callers
    stream skip events or fail fast in strict runs.
    """

    def __init__(self, source: str, on_error: Optional[Callable[[SkippedEntry], None]] = None):
        self.source = source
        self.on_error = on_error
        self._entries: List[SkippedEntry] = []
        self._lock = threading.Lock()

    def record(self, path: str, error: Any, kind: Optional[str] = None) -> SkippedEntry:
        if kind is None:
            kind = classify_error(error)
        entry = SkippedEntry(self.source, str(path), kind, str(error))
        with self._lock:
            self._entries.append(entry)
        logger.warning("Skipping entry", source=self.source, path=str(path), kind=kind, error=str(error))
        if self.on_error is not None:
            self.on_error(entry)
        return entry

    @property
    def entries(self) -> List[SkippedEntry]:
        with self._lock:
            return list(self._entries)

    def count(self, kind: Optional[str] = None) -> int:
        with self._lock:
            if kind is None:
                return len(self._entries)
            return sum(1 for e in self._entries if e.kind == kind)

    def by_kind(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for entry in self.entries:
            counts[entry.kind] = counts.get(entry.kind, 0) + 1
        return counts


def classify_error(error: Any) -> str:
    """Map an exception to a skip kind."""
    if isinstance(error, CleanerError):
        return error.kind
    if isinstance(error, (PermissionError, FileNotFoundError, NotADirectoryError, IsADirectoryError)):
        return KIND_ACCESS
    if isinstance(error, OSError):
        return KIND_ACCESS
    if isinstance(error, (ValueError, UnicodeDecodeError)):
        return KIND_PARSE
    return KIND_ERROR


class ResultAccumulator:
    """Append-only, lock-guarded list shared by pool workers."""

    def __init__(self):
        self._items: List[Any] = []
        self._lock = threading.Lock()

    def add(self, item: Any):
        with self._lock:
            self._items.append(item)

    def extend(self, items):
        with self._lock:
            self._items.extend(items)

    def snapshot(self) -> List[Any]:
        with self._lock:
            return list(self._items)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


def run_bounded(
    func: Callable[[T], R],
    inputs: Sequence[T],
    max_workers: int = 4,
    collector: Optional[ErrorCollector] = None,
    token: Optional[CancellationToken] = None,
    describe: Callable[[T], str] = str,
) -> List[R]:
    """
    Run func over inputs in a bounded thread pool.

    Results are returned in input order. A failing input is recorded in the
    collector and omitted from the results; without a collector the first
    failure is re-raised. Cancellation stops scheduling and re-raises.
    """
    check_cancelled(token, "scan")
    if not inputs:
        return []

    results: Dict[int, R] = {}
    workers = max(1, min(max_workers, len(inputs)))

    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = {}
        for index, value in enumerate(inputs):
            if token is not None and token.cancelled:
                break
            futures[executor.submit(func, value)] = (index, value)

        try:
            for future in as_completed(futures):
                index, value = futures[future]
                try:
                    results[index] = future.result()
                except OperationCancelled:
                    raise
                except Exception as e:
                    if collector is None:
                        raise
                    collector.record(describe(value), e)
        except OperationCancelled:
            for future in futures:
                future.cancel()
            raise

    check_cancelled(token, "merge")
    return [results[i] for i in sorted(results)]


def walk_files(
    root: str,
    collector: ErrorCollector,
    token: Optional[CancellationToken] = None,
    skip_dirs: Sequence[str] = (),
) -> Iterator[Tuple[str, os.stat_result]]:
    """
    Yield (path, stat) for every regular file below root.

    Unreadable directories and files are recorded and skipped. Symlinked
    directories are not followed; directories named in skip_dirs are pruned.
    """
    def on_walk_error(error: OSError):
        collector.record(getattr(error, "filename", None) or root, error, KIND_ACCESS)

    for dirpath, dirnames, filenames in os.walk(root, onerror=on_walk_error):
        check_cancelled(token, "walk")
        dirnames[:] = sorted(d for d in dirnames if d not in skip_dirs)
        for name in sorted(filenames):
            path = os.path.join(dirpath, name)
            try:
                info = os.stat(path)
            except OSError as e:
                collector.record(path, e, KIND_ACCESS)
                continue
            if not os.path.isfile(path):
                continue
            yield path, info


def list_directories(path: str) -> List[str]:
    """
    List immediate subdirectory names of a root.

    Raises AccessError when the root exists but cannot be enumerated, which
    separates "nothing found" from "couldn't look".
    """
    try:
        with os.scandir(path) as entries:
            return sorted(entry.name for entry in entries if entry.is_dir(follow_symlinks=False))
    except FileNotFoundError:
        return []
    except OSError as e:
        raise AccessError(f"Cannot enumerate directory: {e}", path)


# JSON helpers

@dataclass(frozen=True)
class JsonMember:
    """An object member found while walking a JSON document."""
    key: str
    path: str
    key_path: KeyPath
    value: Any


def format_key_path(key_path: KeyPath) -> str:
    """Render a key path as a dot-path with [i] array indices."""
    rendered = ""
    for part in key_path:
        if isinstance(part, int):
            rendered += f"[{part}]"
        elif rendered:
            rendered += "." + part
        else:
            rendered = part
    return rendered


def iter_json_members(document: Any) -> Iterator[JsonMember]:
    """
    Walk a JSON document depth-first with an explicit stack.

    Yields every object member in document order. Arrays are descended into
    but their elements are not members themselves.
    """
    stack: List[Tuple[Any, KeyPath]] = [(document, ())]
    while stack:
        node, key_path = stack.pop()
        if isinstance(node, dict):
            children = []
            for key, value in node.items():
                child_path = key_path + (str(key),)
                yield JsonMember(str(key), format_key_path(child_path), child_path, value)
                if isinstance(value, (dict, list)):
                    children.append((value, child_path))
            stack.extend(reversed(children))
        elif isinstance(node, list):
            children = [
                (value, key_path + (index,))
                for index, value in enumerate(node)
                if isinstance(value, (dict, list))
            ]
            stack.extend(reversed(children))


def strip_json_comments(text: str) -> str:
    """Remove // and /* */ comments and trailing commas from JSONC text."""
    result = []
    i = 0
    length = len(text)
    in_string = False
    while i < length:
        char = text[i]
        if in_string:
            result.append(char)
            if char == "\\" and i + 1 < length:
                result.append(text[i + 1])
                i += 2
                continue
            if char == '"':
                in_string = False
            i += 1
            continue
        if char == '"':
            in_string = True
            result.append(char)
            i += 1
        elif text.startswith("//", i):
            end = text.find("\n", i)
            i = length if end == -1 else end
        elif text.startswith("/*", i):
            end = text.find("*/", i + 2)
            i = length if end == -1 else end + 2
        else:
            result.append(char)
            i += 1
    return _strip_trailing_commas("".join(result))


def _strip_trailing_commas(text: str) -> str:
    result = []
    in_string = False
    i = 0
    while i < len(text):
        char = text[i]
        if in_string:
            result.append(char)
            if char == "\\" and i + 1 < len(text):
                result.append(text[i + 1])
                i += 2
                continue
            if char == '"':
                in_string = False
        elif char == '"':
            in_string = True
            result.append(char)
        elif char == ",":
            j = i + 1
            while j < len(text) and text[j] in " \t\r\n":
                j += 1
            if j < len(text) and text[j] in "}]":
                i += 1
                continue
            result.append(char)
        else:
            result.append(char)
        i += 1
    return "".join(result)


def load_json_file(path: str, allow_comments: bool = False) -> Any:
    """Read and parse a JSON (or JSONC) file, raising ParseError on bad content."""
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        text = f.read()
    if allow_comments:
        text = strip_json_comments(text)
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise ParseError(f"Invalid JSON: {e}", path)


# Value helpers

def sanitize_value(value: Any, limit: int = tables.STORAGE_VALUE_LIMIT) -> Any:
    """
    Make a value safe to show and store in scan results.

    Strings that look like they hold credentials are masked; other strings
    longer than limit are truncated. Containers are serialized first so a DataItem
    always carries a scalar.
    """
    if isinstance(value, (dict, list)):
        value = json.dumps(value, separators=(",", ":"), default=str)
    elif isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    if not isinstance(value, str):
        return value
    lowered = value.lower()
    if any(marker in lowered for marker in tables.SENSITIVE_VALUE_MARKERS):
        return tables.MASKED_VALUE
    if len(value) > limit:
        return value[:limit] + tables.TRUNCATED_SUFFIX
    return value


def estimate_value_size(value: Any) -> int:
    """Size of a value as compact JSON."""
    try:
        return len(json.dumps(value, separators=(",", ":"), ensure_ascii=False).encode("utf-8"))
    except (TypeError, ValueError):
        return 0


def access_frequency(modified: datetime, now: Optional[datetime] = None) -> int:
    """Rough access-frequency score from file age."""
    now = now or datetime.now()
    age = (now - modified).total_seconds()
    if age < tables.DAY:
        return 10
    if age < 7 * tables.DAY:
        return 5
    if age < 30 * tables.DAY:
        return 2
    return 1


def read_text(path: str, max_bytes: int) -> Optional[str]:
    """Read a file as text if it is smaller than max_bytes."""
    if os.path.getsize(path) >= max_bytes:
        return None
    with open(path, "rb") as f:
        return f.read().decode("utf-8", errors="ignore")
