"""Configuration module for loading and managing application settings"""
import os
from pathlib import Path
from typing import Dict, Any

from .lib.load_settings_conf import load_settings_conf, SettingsError, DEFAULTS
from .lib.load_custodian_conf import load_custodian_conf, CustodianConfigError, is_configured

__all__ = [
    'settings_conf',
    'custodian_conf',
    'settings_path',
    'load_settings_conf',
    'load_custodian_conf',
    'is_configured',
    'SettingsError',
    'CustodianConfigError',
    'DEFAULTS',
]

SETTINGS_ENV = 'ASSETLINK_SETTINGS'


def settings_path() -> Path:
    """Location of settings.conf, overridable with ASSETLINK_SETTINGS."""
    return Path(os.environ.get(SETTINGS_ENV, 'settings.conf'))


try:
    settings_conf: Dict[str, Any] = load_settings_conf(settings_path())
    custodian_conf: Dict[str, Any] = load_custodian_conf(settings_path())

except (SettingsError, CustodianConfigError) as e:
    # Re-raise the error but provide more context
    raise type(e)(
        f"Configuration Error\n"
        "=================\n\n"
        f"{str(e)}\n\n"
        f"Please check {settings_path()} against examples/settings.conf.example."
    )
