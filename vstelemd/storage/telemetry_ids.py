"""
Telemetry identifier regeneration.

Replaces telemetry.machineId and telemetry.devDeviceId in the editor's
storage.json with fresh random values and rewrites the machine id file.
"""

import logging
import os
import secrets
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..errors import AccessError
from ..paths import PathResolver
from .file_backup import create_file_backup, verify_file_backup
from .json_editor import JsonEditor

MACHINE_ID_KEY = "telemetry.machineId"
DEVICE_ID_KEY = "telemetry.devDeviceId"
REPORTED_ID_LENGTH = 8


def generate_machine_id() -> str:
    """64 hex characters from 32 random bytes."""
    return secrets.token_hex(32)


def generate_device_id() -> str:
    """A lowercase UUID4."""
    return str(uuid.uuid4()).lower()


def truncate_id(value: Any) -> str:
    if not value:
        return ""
    text = str(value)
    if len(text) <= REPORTED_ID_LENGTH:
        return text
    return text[:REPORTED_ID_LENGTH] + "..."


@dataclass
class TelemetryIdResult:
    """Old and new identifiers. Old values are truncated for reporting."""
    old_machine_id: str
    new_machine_id: str
    old_device_id: str
    new_device_id: str
    storage_backup_path: Optional[str] = None
    machine_id_backup_path: Optional[str] = None
    dry_run: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'old_machine_id': self.old_machine_id,
            'new_machine_id': self.new_machine_id,
            'old_device_id': self.old_device_id,
            'new_device_id': self.new_device_id,
            'storage_backup_path': self.storage_backup_path,
            'machine_id_backup_path': self.machine_id_backup_path,
            'dry_run': self.dry_run,
        }


class TelemetryIdRewriter:
    """Gives the editor a new machine and device identity."""

    def __init__(self, resolver: PathResolver, editor: Optional[JsonEditor] = None):
        self.resolver = resolver
        self.editor = editor or JsonEditor(allow_comments=False)
        self.logger = logging.getLogger(__name__)

    def rewrite(self, dry_run: bool = False) -> TelemetryIdResult:
        """
        Back up and rewrite storage.json and the machine id file.

        The machine id file receives the new device id. Raises AccessError if
        storage.json does not exist.
        """
        storage_path = self.resolver.get_storage_path()
        if not os.path.isfile(storage_path):
            raise AccessError("Storage file not found", storage_path)
        try:
            machine_id_path = self.resolver.get_machine_id_path()
        except AccessError:
            machine_id_path = None

        document = self.editor.load(storage_path)
        old_machine_id = document.get(MACHINE_ID_KEY) if isinstance(document, dict) else None
        old_device_id = document.get(DEVICE_ID_KEY) if isinstance(document, dict) else None

        result = TelemetryIdResult(
            old_machine_id=truncate_id(old_machine_id),
            new_machine_id=generate_machine_id(),
            old_device_id=truncate_id(old_device_id),
            new_device_id=generate_device_id(),
            dry_run=dry_run,
        )
        if dry_run:
            self.logger.info(f"Dry run: would rewrite telemetry ids in {storage_path}")
            return result

        result.storage_backup_path = create_file_backup(storage_path)
        verify_file_backup(result.storage_backup_path, storage_path)
        if machine_id_path and os.path.isfile(machine_id_path):
            result.machine_id_backup_path = create_file_backup(machine_id_path)

        self.editor.set_values(storage_path, {
            MACHINE_ID_KEY: result.new_machine_id,
            DEVICE_ID_KEY: result.new_device_id,
        })
        if machine_id_path:
            os.makedirs(os.path.dirname(machine_id_path) or ".", exist_ok=True)
            with open(machine_id_path, 'w', encoding='utf-8') as f:
                f.write(result.new_device_id)

        self.logger.info(
            f"Telemetry ids rewritten: machine id {result.old_machine_id or '<none>'} -> "
            f"{truncate_id(result.new_machine_id)}"
        )
        return result


def create_telemetry_id_rewriter(resolver: PathResolver) -> TelemetryIdRewriter:
    return TelemetryIdRewriter(resolver)
