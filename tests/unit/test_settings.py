"""
Unit tests for cleaner settings.
"""

import os
import shutil
import tempfile
import unittest
from unittest.mock import patch

import yaml

from vstelemd.cleaner.policy import CONSERVATIVE_POLICY
from vstelemd.config.settings import ENV_OVERRIDES, CleanerSettings, SettingsManager, load_settings
from vstelemd.errors import PolicyError


class TestCleanerSettings(unittest.TestCase):
    """Test cases for CleanerSettings."""

    def test_defaults(self):
        settings = CleanerSettings()

        self.assertTrue(settings.dry_run_mode)
        self.assertEqual(settings.max_backup_age_days, 90)
        self.assertEqual(settings.path_overrides(), {})

    def test_path_overrides(self):
        settings = CleanerSettings(custom_db_path="/profile/state.vscdb", custom_storage_path="")

        self.assertEqual(settings.path_overrides(), {'db_path': "/profile/state.vscdb"})

    def test_build_policy(self):
        settings = CleanerSettings(removal_policy="conservative", dry_run_mode=False, create_backups=False)

        policy = settings.build_policy()

        self.assertEqual(policy.min_risk_level, CONSERVATIVE_POLICY.min_risk_level)
        self.assertFalse(policy.dry_run)
        self.assertFalse(policy.create_backups)

    def test_unknown_policy(self):
        with self.assertRaises(PolicyError):
            CleanerSettings(removal_policy="reckless").build_policy()


class TestSettingsManager(unittest.TestCase):
    """Test cases for SettingsManager."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.config_path = os.path.join(self.temp_dir, "configs", "vstelemd.yaml")

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def test_defaults_written_when_missing(self):
        manager = SettingsManager(self.config_path)

        self.assertTrue(os.path.exists(self.config_path))
        with open(self.config_path) as f:
            data = yaml.safe_load(f)
        self.assertEqual(data['backup_directory'], "backups/extensions")
        self.assertEqual(manager.settings, CleanerSettings())

    def test_file_values_and_unknown_keys(self):
        os.makedirs(os.path.dirname(self.config_path))
        with open(self.config_path, 'w') as f:
            yaml.dump({'dry_run_mode': False, 'max_workers': 8, 'not_a_setting': 1}, f)

        settings = SettingsManager(self.config_path).settings

        self.assertFalse(settings.dry_run_mode)
        self.assertEqual(settings.max_workers, 8)

    def test_invalid_file_falls_back_to_defaults(self):
        os.makedirs(os.path.dirname(self.config_path))
        with open(self.config_path, 'w') as f:
            f.write("max_workers: [not, an, int]\n")

        self.assertEqual(SettingsManager(self.config_path).settings, CleanerSettings())

    def test_update(self):
        manager = SettingsManager(self.config_path)

        manager.update(max_backup_age_days=30)

        self.assertEqual(manager.settings.max_backup_age_days, 30)
        self.assertEqual(SettingsManager(self.config_path).settings.max_backup_age_days, 30)
        with self.assertRaises(ValueError):
            manager.update(colour="blue")


class TestLoadSettings(unittest.TestCase):
    """Test environment overrides."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.config_path = os.path.join(self.temp_dir, "vstelemd.yaml")
        self.clean_env = {k: v for k, v in os.environ.items() if k not in ENV_OVERRIDES}

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    @patch('vstelemd.config.settings.load_dotenv')
    def test_environment_overrides(self, mock_load_dotenv):
        env = dict(self.clean_env, VSTELEMD_DRY_RUN="no", VSTELEMD_LOG_LEVEL="debug",
                   VSTELEMD_MAX_WORKERS="2", VSTELEMD_POLICY="Aggressive")
        with patch.dict(os.environ, env, clear=True):
            settings = load_settings(self.config_path)

        mock_load_dotenv.assert_called_once()
        self.assertFalse(settings.dry_run_mode)
        self.assertEqual(settings.log_level, "DEBUG")
        self.assertEqual(settings.max_workers, 2)
        self.assertEqual(settings.removal_policy, "aggressive")

    @patch('vstelemd.config.settings.load_dotenv')
    def test_invalid_override_is_ignored(self, mock_load_dotenv):
        env = dict(self.clean_env, VSTELEMD_MAX_WORKERS="many", VSTELEMD_BACKUP_DIR="/var/backups/vstelemd")
        with patch.dict(os.environ, env, clear=True):
            settings = load_settings(self.config_path)

        self.assertEqual(settings.max_workers, 4)
        self.assertEqual(settings.backup_directory, "/var/backups/vstelemd")

    @patch('vstelemd.config.settings.load_dotenv')
    def test_config_path_from_environment(self, mock_load_dotenv):
        with open(self.config_path, 'w') as f:
            yaml.dump({'editor_name': "Code - Insiders"}, f)
        env = dict(self.clean_env, VSTELEMD_CONFIG=self.config_path)
        with patch.dict(os.environ, env, clear=True):
            settings = load_settings()

        self.assertEqual(settings.editor_name, "Code - Insiders")
