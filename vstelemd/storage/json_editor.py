"""
JSON document editing.

Removes key paths from settings and storage JSON files and updates top-level
values, writing the result atomically through a temporary file.
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Sequence, Tuple

from ..errors import ParseError
from ..scanners.base import load_json_file
from ..scanners.models import KeyPath


@dataclass
class JsonEditResult:
    """Outcome of editing one JSON file."""
    path: str
    removed: List[KeyPath] = field(default_factory=list)
    already_absent: List[KeyPath] = field(default_factory=list)
    updated: Dict[str, Any] = field(default_factory=dict)
    written: bool = False

    @property
    def removed_count(self) -> int:
        return len(self.removed) + len(self.already_absent)


def _part_order(part) -> Tuple[int, int, str]:
    if isinstance(part, int):
        return (1, part, "")
    return (0, 0, str(part))


def removal_order(key_paths: Iterable[KeyPath]) -> List[KeyPath]:
    """Deepest paths first; within a container, array indices descending."""
    unique = list(dict.fromkeys(tuple(p) for p in key_paths if p))
    return sorted(unique, key=lambda p: (len(p), [_part_order(part) for part in p]), reverse=True)


def remove_key_path(document: Any, key_path: KeyPath) -> bool:
    """Remove one key path in place. Returns False if it was not present."""
    node = document
    for part in key_path[:-1]:
        if isinstance(node, dict) and isinstance(part, str) and part in node:
            node = node[part]
        elif isinstance(node, list) and isinstance(part, int) and 0 <= part < len(node):
            node = node[part]
        else:
            return False

    last = key_path[-1]
    if isinstance(node, dict) and isinstance(last, str) and last in node:
        del node[last]
        return True
    if isinstance(node, list) and isinstance(last, int) and 0 <= last < len(node):
        del node[last]
        return True
    return False


def write_json_atomic(path: str, document: Any, indent: int = 4):
    """Write document next to path and replace path with it."""
    directory = os.path.dirname(os.path.abspath(path))
    fd, temp_path = tempfile.mkstemp(dir=directory, prefix=".vstelemd-", suffix=".json")
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            json.dump(document, f, indent=indent, ensure_ascii=False)
        if os.path.exists(path):
            os.chmod(temp_path, os.stat(path).st_mode & 0o777)
        os.replace(temp_path, path)
    except BaseException:
        if os.path.exists(temp_path):
            os.remove(temp_path)
        raise


class JsonEditor:
    """Edits JSON and JSONC documents on disk."""

    def __init__(self, allow_comments: bool = True):
        self.allow_comments = allow_comments
        self.logger = logging.getLogger(__name__)

    def load(self, path: str) -> Any:
        return load_json_file(path, allow_comments=self.allow_comments)

    def remove_keys(self, path: str, key_paths: Sequence[KeyPath], dry_run: bool = False) -> JsonEditResult:
        """
        Remove key paths from a JSON file.

        A path that is already gone is reported as already_absent, not as an
        error. Comments in JSONC files are not preserved. Raises ParseError
        when the file is not valid JSON.
        """
        result = JsonEditResult(path=path)
        document = self.load(path)
        if not isinstance(document, (dict, list)):
            raise ParseError("JSON document is not an object or array", path)

        for key_path in removal_order(key_paths):
            if remove_key_path(document, key_path):
                result.removed.append(key_path)
            else:
                result.already_absent.append(key_path)

        if result.removed and not dry_run:
            write_json_atomic(path, document)
            result.written = True
            self.logger.info(f"Removed {len(result.removed)} keys from {path}")
        return result

    def set_values(self, path: str, updates: Dict[str, Any], dry_run: bool = False) -> JsonEditResult:
        """Set top-level keys of a JSON object file."""
        result = JsonEditResult(path=path)
        document = self.load(path)
        if not isinstance(document, dict):
            raise ParseError("JSON document is not an object", path)

        for key, value in updates.items():
            result.updated[key] = document.get(key)
            document[key] = value

        if not dry_run:
            write_json_atomic(path, document)
            result.written = True
            self.logger.info(f"Updated {len(updates)} keys in {path}")
        return result


def create_json_editor(allow_comments: bool = True) -> JsonEditor:
    return JsonEditor(allow_comments)
