"""
Cleaner settings loader.

Settings come from a YAML file (written with defaults when missing), then
from VSTELEMD_* environment variables, which may also be set in a .env file.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError

from ..cleaner.policy import RemovalPolicy, get_policy

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "configs/vstelemd.yaml"


class CleanerSettings(BaseModel):
    """Cleaner configuration."""
    dry_run_mode: bool = True
    create_backups: bool = True
    log_level: str = "INFO"
    editor_name: str = "Code"
    custom_storage_path: Optional[str] = None
    custom_db_path: Optional[str] = None
    custom_machine_id_path: Optional[str] = None
    custom_workspace_storage_path: Optional[str] = None
    custom_extensions_path: Optional[str] = None
    backup_directory: str = "backups/extensions"
    max_backup_age_days: int = 90
    max_backup_size_mb: int = 1024
    min_free_disk_mb: int = 100
    require_confirmation: bool = True
    show_preview_before_run: bool = True
    database_timeout_seconds: int = 30
    file_operation_retries: int = 3
    max_workers: int = 4
    removal_policy: str = "default"
    audit_log_directory: str = "logs/removals"

    def path_overrides(self) -> Dict[str, str]:
        """Resolver overrides for every custom path that is set."""
        overrides = {
            'storage_path': self.custom_storage_path,
            'db_path': self.custom_db_path,
            'machine_id_path': self.custom_machine_id_path,
            'workspace_storage_path': self.custom_workspace_storage_path,
            'extensions_path': self.custom_extensions_path,
        }
        return {key: value for key, value in overrides.items() if value}

    def build_policy(self) -> RemovalPolicy:
        """The named removal preset with this configuration's dry-run and backup switches."""
        return get_policy(self.removal_policy).with_overrides(
            dry_run=self.dry_run_mode,
            create_backups=self.create_backups,
            require_confirmation=self.require_confirmation,
        )


class SettingsManager:
    """Loads and persists CleanerSettings as YAML."""

    def __init__(self, config_path: str = DEFAULT_CONFIG_PATH):
        self.config_path = Path(config_path)
        self.settings = self._load_config()

    def _load_config(self) -> CleanerSettings:
        try:
            if self.config_path.exists():
                with open(self.config_path, 'r') as f:
                    config_data = yaml.safe_load(f) or {}
            else:
                logger.warning(f"Config file not found at {self.config_path}. Using defaults.")
                config_data = self._get_default_config()
                self._save_config(config_data)

            defaults = self._get_default_config()
            defaults.update({k: v for k, v in config_data.items() if k in defaults})
            return CleanerSettings(**defaults)

        except (OSError, yaml.YAMLError, ValidationError, AttributeError) as e:
            logger.error(f"Failed to load config: {e}")
            return CleanerSettings()

    def _get_default_config(self) -> Dict[str, Any]:
        return CleanerSettings().model_dump()

    def _save_config(self, config_data: Dict[str, Any]):
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, 'w') as f:
                yaml.dump(config_data, f, default_flow_style=False)
        except OSError as e:
            logger.error(f"Failed to save config: {e}")

    def update(self, **changes) -> CleanerSettings:
        """Apply changes, validate them and write the file."""
        data = self.settings.model_dump()
        unknown = [key for key in changes if key not in data]
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(unknown)}")
        data.update(changes)
        self.settings = CleanerSettings(**data)
        self._save_config(self.settings.model_dump())
        logger.info(f"Settings updated: {', '.join(sorted(changes))}")
        return self.settings


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


ENV_OVERRIDES = {
    "VSTELEMD_DRY_RUN": ("dry_run_mode", _env_bool),
    "VSTELEMD_LOG_LEVEL": ("log_level", lambda v: v.strip().upper()),
    "VSTELEMD_BACKUP_DIR": ("backup_directory", str),
    "VSTELEMD_MAX_WORKERS": ("max_workers", int),
    "VSTELEMD_POLICY": ("removal_policy", lambda v: v.strip().lower()),
    "VSTELEMD_EDITOR": ("editor_name", str),
}


def load_settings(config_path: Optional[str] = None) -> CleanerSettings:
    """Load settings from .env, the YAML file and the environment, in that order."""
    load_dotenv()

    config_path = config_path or os.getenv("VSTELEMD_CONFIG", DEFAULT_CONFIG_PATH)
    settings = SettingsManager(config_path).settings

    overrides = {}
    for variable, (name, convert) in ENV_OVERRIDES.items():
        value = os.getenv(variable)
        if value is None or value == "":
            continue
        try:
            overrides[name] = convert(value)
        except ValueError as e:
            logger.error(f"Ignoring invalid {variable}={value!r}: {e}")

    if overrides:
        settings = settings.model_copy(update=overrides)
    return settings
