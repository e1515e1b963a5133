"""
Configuration for vstelemd.
"""

from .settings import CleanerSettings, SettingsManager, load_settings

__all__ = [
    'CleanerSettings',
    'SettingsManager',
    'load_settings',
]
