"""
constants.py
Section / key layouts and file names shared by the app config and the
mod loader config.

Layouts are plain dataclasses so callers (and tests) can pass a synthetic
layout instead of the defaults below.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# Literal appended to the full file name of a disabled file
OFF_STATE = ".disabled"

# Multi-value encoding in the mod-files section:
#   key=array
#   array[]=path/one.dll
#   array[]=path/two.ini
ARRAY_KEY = "array[]"
ARRAY_VALUE = "array"

# Written into a file entry that does not point at a file so validation drops it
INVALID_FILE_MARKER = "path_can_not_point_to.directory"

# Files that must exist in a directory for it to be accepted as game_dir
REQUIRED_GAME_FILES = (
    "eldenring.exe",
    "oo2core_6_win64.dll",
    "eossdk-win64-shipping.dll",
)

# Name of the directory (inside game_dir) installed mods are copied into
MODS_DIR = "mods"


@dataclass(frozen=True)
class IniLayout:
    """Required sections of one .ini file plus its scalar settings.

    sections[0] always holds the scalar settings listed in `keys`,
    `defaults[i]` is the documented default of `keys[i]`.
    """
    name: str
    sections: tuple[str, ...]
    keys: tuple[str, ...] = ()
    defaults: tuple[str, ...] = ()
    kv_separator: str = "="

    @property
    def settings(self) -> str:
        return self.sections[0]

    def default_for(self, key: str) -> str:
        try:
            return self.defaults[self.keys.index(key)]
        except ValueError:
            raise KeyError(f"Key: {key}, is unknown to: {self.name}") from None


@dataclass(frozen=True)
class AppLayout(IniLayout):
    """Layout of the app's own config: settings, paths, states, files."""
    path_keys: tuple[str, ...] = field(default=("game_dir",))

    @property
    def paths(self) -> str:
        return self.sections[1]

    @property
    def mod_state(self) -> str:
        return self.sections[2]

    @property
    def mod_files(self) -> str:
        return self.sections[3]


@dataclass(frozen=True)
class LoaderLayout(IniLayout):
    """Layout of the external mod loader's config: settings + load order."""
    example_key: str = "example"

    @property
    def order(self) -> str:
        return self.sections[1]


APP_LAYOUT = AppLayout(
    name="EML_gui_config.ini",
    sections=("app-settings", "paths", "registered-mods", "mod-files"),
    keys=("dark_mode", "save_log"),
    defaults=("true", "true"),
    kv_separator="=",
)

LOADER_LAYOUT = LoaderLayout(
    name="mod_loader_config.ini",
    sections=("modloader", "loadorder"),
    keys=("load_delay", "show_terminal"),
    defaults=("5000", "0"),
    kv_separator=" = ",
)

# Mod loader hook (disabled form, enabled form) and its config file name
LOADER_DLL_DISABLED = "dinput8.dll" + OFF_STATE
LOADER_DLL = "dinput8.dll"
LOADER_CONFIG = LOADER_LAYOUT.name

LOG_NAME = "EML_gui_log.txt"
