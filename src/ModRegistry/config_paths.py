"""
config_paths.py
Central helpers for resolving where the registry keeps its own files.

Follows the XDG Base Directory Specification:
  Config lives in $XDG_CONFIG_HOME/EldenModRegistry  (default: ~/.config/EldenModRegistry)

$MOD_REGISTRY_INI points the app config somewhere else entirely.
"""

import os
from pathlib import Path

from ModRegistry.constants import APP_LAYOUT, LOG_NAME

APP_NAME = "EldenModRegistry"


def get_config_dir() -> Path:
    """Return the app config directory, creating it if it doesn't exist.

    Respects $XDG_CONFIG_HOME; falls back to ~/.config/EldenModRegistry.
    """
    xdg = os.environ.get("XDG_CONFIG_HOME")
    base = Path(xdg) if xdg else Path.home() / ".config"
    config_dir = base / APP_NAME
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def get_ini_path() -> Path:
    """Return the path of the app config.

    Result: $MOD_REGISTRY_INI if set, else ~/.config/EldenModRegistry/EML_gui_config.ini
    """
    env = os.environ.get("MOD_REGISTRY_INI")
    if env:
        return Path(env)
    return get_config_dir() / APP_LAYOUT.name


def get_log_path(ini_path: Path) -> Path:
    """Log file written next to the app config when save_log is on."""
    return Path(ini_path).parent / LOG_NAME
