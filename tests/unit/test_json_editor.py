"""
Unit tests for JSON document editing and side-by-side file backups.
"""

import json
import os

import pytest

from vstelemd.errors import AccessError, IntegrityError, ParseError
from vstelemd.storage.file_backup import create_file_backup, verify_file_backup
from vstelemd.storage.json_editor import JsonEditor, remove_key_path, removal_order


class TestRemovalOrder:

    def test_deepest_first(self):
        order = removal_order([("a",), ("a", "b"), ("c",)])
        assert order[0] == ("a", "b")

    def test_array_indices_descending(self):
        order = removal_order([("items", 0), ("items", 2), ("items", 1)])
        assert order == [("items", 2), ("items", 1), ("items", 0)]

    def test_duplicates_and_empty_paths_dropped(self):
        assert removal_order([("a",), ("a",), ()]) == [("a",)]


class TestRemoveKeyPath:

    def test_nested_dict(self):
        document = {"outer": {"inner": 1, "keep": 2}}
        assert remove_key_path(document, ("outer", "inner"))
        assert document == {"outer": {"keep": 2}}

    def test_missing_path(self):
        document = {"outer": {}}
        assert not remove_key_path(document, ("outer", "inner"))
        assert not remove_key_path(document, ("nope", "inner"))

    def test_type_mismatch(self):
        document = {"list": [1, 2]}
        assert not remove_key_path(document, ("list", "0"))
        assert remove_key_path(document, ("list", 0))
        assert document == {"list": [2]}


class TestJsonEditor:
    """Test JsonEditor file edits."""

    def write(self, path, document):
        with open(path, "w") as f:
            json.dump(document, f)

    def test_remove_keys(self, tmp_path):
        path = str(tmp_path / "usageStats.json")
        self.write(path, {"usageStats": {"count": 3, "lastUsed": "x"}, "theme": "dark"})

        result = JsonEditor().remove_keys(path, [("usageStats", "count"), ("sessionId",)])

        assert result.removed == [("usageStats", "count")]
        assert result.already_absent == [("sessionId",)]
        assert result.removed_count == 2
        assert result.written
        with open(path) as f:
            assert json.load(f) == {"usageStats": {"lastUsed": "x"}, "theme": "dark"}

    def test_dry_run_leaves_file_untouched(self, tmp_path):
        path = str(tmp_path / "state.json")
        self.write(path, {"userId": "abc"})
        before = open(path).read()

        result = JsonEditor().remove_keys(path, [("userId",)], dry_run=True)

        assert result.removed == [("userId",)]
        assert not result.written
        assert open(path).read() == before

    def test_array_elements_removed_highest_index_first(self, tmp_path):
        path = str(tmp_path / "list.json")
        self.write(path, {"events": ["a", "b", "c", "d"]})

        JsonEditor().remove_keys(path, [("events", 1), ("events", 3)])

        with open(path) as f:
            assert json.load(f) == {"events": ["a", "c"]}

    def test_jsonc_comments_accepted(self, tmp_path):
        path = str(tmp_path / "settings.json")
        with open(path, "w") as f:
            f.write('{\n  // telemetry\n  "telemetry.telemetryLevel": "all",\n  "editor.fontSize": 12\n}\n')

        JsonEditor().remove_keys(path, [("telemetry.telemetryLevel",)])

        with open(path) as f:
            assert json.load(f) == {"editor.fontSize": 12}

    def test_invalid_json(self, tmp_path):
        path = str(tmp_path / "broken.json")
        with open(path, "w") as f:
            f.write("{not json")
        with pytest.raises(ParseError):
            JsonEditor().remove_keys(path, [("a",)])

    def test_scalar_document(self, tmp_path):
        path = str(tmp_path / "scalar.json")
        self.write(path, 42)
        with pytest.raises(ParseError):
            JsonEditor().remove_keys(path, [("a",)])

    def test_set_values(self, tmp_path):
        path = str(tmp_path / "storage.json")
        self.write(path, {"telemetry.machineId": "old"})

        result = JsonEditor().set_values(path, {"telemetry.machineId": "new", "extra": 1})

        assert result.updated == {"telemetry.machineId": "old", "extra": None}
        with open(path) as f:
            assert json.load(f) == {"telemetry.machineId": "new", "extra": 1}
        assert [name for name in os.listdir(tmp_path) if name.startswith(".vstelemd-")] == []


class TestFileBackup:

    def test_create_and_verify(self, tmp_path):
        path = tmp_path / "state.vscdb"
        path.write_bytes(b"sqlite")
        first = create_file_backup(str(path))
        second = create_file_backup(str(path))

        assert first != second
        assert ".bak." in first
        verify_file_backup(first, str(path))

    def test_missing_source(self, tmp_path):
        with pytest.raises(AccessError):
            create_file_backup(str(tmp_path / "missing"))

    def test_size_mismatch(self, tmp_path):
        original = tmp_path / "a"
        original.write_bytes(b"12345")
        backup = tmp_path / "a.bak.1"
        backup.write_bytes(b"123")
        with pytest.raises(IntegrityError):
            verify_file_backup(str(backup), str(original))
