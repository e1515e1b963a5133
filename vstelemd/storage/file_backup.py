"""
Timestamped side-by-side file backups (<file>.bak.<unix ts>).
"""

import logging
import os
import shutil
import time
from typing import Optional

from ..errors import AccessError, IntegrityError

logger = logging.getLogger(__name__)


def create_file_backup(file_path: str) -> str:
    """Copy file_path to <file_path>.bak.<unix ts>, keeping its permissions."""
    if not os.path.isfile(file_path):
        raise AccessError("Source file does not exist", file_path)

    timestamp = int(time.time())
    backup_path = f"{file_path}.bak.{timestamp}"
    counter = 1
    while os.path.exists(backup_path):
        backup_path = f"{file_path}.bak.{timestamp}.{counter}"
        counter += 1

    try:
        shutil.copy2(file_path, backup_path)
    except OSError:
        if os.path.exists(backup_path):
            os.remove(backup_path)
        raise

    logger.info(f"Created backup {backup_path}")
    return backup_path


def verify_file_backup(backup_path: str, original_path: Optional[str] = None):
    """Raise if the backup is missing, empty, or differs in size from the original."""
    try:
        size = os.path.getsize(backup_path)
    except OSError as e:
        raise AccessError(f"Backup file not accessible: {e}", backup_path)
    if size == 0 and (original_path is None or os.path.getsize(original_path) > 0):
        raise IntegrityError("Backup file is empty", backup_path)
    if original_path is not None and os.path.getsize(original_path) != size:
        raise IntegrityError("Backup size does not match the original", backup_path)
