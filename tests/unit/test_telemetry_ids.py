"""
Unit tests for telemetry identifier regeneration.
"""

import json
import os
import re

import pytest

from vstelemd.errors import AccessError
from vstelemd.paths import StaticPathResolver
from vstelemd.storage.telemetry_ids import (
    DEVICE_ID_KEY,
    MACHINE_ID_KEY,
    TelemetryIdRewriter,
    generate_device_id,
    generate_machine_id,
    truncate_id,
)


@pytest.fixture
def profile(tmp_path):
    storage_path = tmp_path / "globalStorage" / "storage.json"
    storage_path.parent.mkdir(parents=True)
    storage_path.write_text(json.dumps({
        MACHINE_ID_KEY: "a" * 64,
        DEVICE_ID_KEY: "0f8e4a2c-1111-4222-8333-444455556666",
        "theme": "dark",
    }))
    machine_id_path = tmp_path / "machineid"
    machine_id_path.write_text("old-machine-id")
    resolver = StaticPathResolver({
        'storage_path': str(storage_path),
        'machine_id_path': str(machine_id_path),
    })
    return resolver, storage_path, machine_id_path


class TestIdentifiers:

    def test_machine_id_format(self):
        machine_id = generate_machine_id()
        assert re.fullmatch(r"[0-9a-f]{64}", machine_id)
        assert machine_id != generate_machine_id()

    def test_device_id_format(self):
        assert re.fullmatch(r"[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}",
                            generate_device_id())

    def test_truncate_id(self):
        assert truncate_id(None) == ""
        assert truncate_id("short") == "short"
        assert truncate_id("0123456789") == "01234567..."


class TestTelemetryIdRewriter:

    def test_rewrite(self, profile):
        resolver, storage_path, machine_id_path = profile

        result = TelemetryIdRewriter(resolver).rewrite()

        document = json.loads(storage_path.read_text())
        assert document[MACHINE_ID_KEY] == result.new_machine_id
        assert document[DEVICE_ID_KEY] == result.new_device_id
        assert document["theme"] == "dark"
        assert machine_id_path.read_text() == result.new_device_id
        assert result.old_machine_id == "aaaaaaaa..."
        assert os.path.exists(result.storage_backup_path)
        assert os.path.exists(result.machine_id_backup_path)
        assert json.loads(open(result.storage_backup_path).read())[MACHINE_ID_KEY] == "a" * 64

    def test_dry_run(self, profile):
        resolver, storage_path, machine_id_path = profile
        before = storage_path.read_text()

        result = TelemetryIdRewriter(resolver).rewrite(dry_run=True)

        assert result.dry_run
        assert result.storage_backup_path is None
        assert storage_path.read_text() == before
        assert machine_id_path.read_text() == "old-machine-id"

    def test_missing_storage_file(self, tmp_path):
        resolver = StaticPathResolver({'storage_path': str(tmp_path / "storage.json")})
        with pytest.raises(AccessError):
            TelemetryIdRewriter(resolver).rewrite()

    def test_without_machine_id_path(self, profile):
        _, storage_path, _ = profile
        resolver = StaticPathResolver({'storage_path': str(storage_path)})

        result = TelemetryIdRewriter(resolver).rewrite()

        assert result.machine_id_backup_path is None
        assert json.loads(storage_path.read_text())[DEVICE_ID_KEY] == result.new_device_id
