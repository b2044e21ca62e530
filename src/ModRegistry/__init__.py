"""
ModRegistry — keeps track of Elden Ring mods registered with the app.

Each mod has a name, an enabled state (stored both in the app config and as
a ".disabled" suffix on its dll files), its files under <game_dir>/mods,
and optionally a position in the external mod loader's load order.
"""

from ModRegistry.cfg import Cfg
from ModRegistry.collector import CollectedMods
from ModRegistry.errors import ModError, merge_errors
from ModRegistry.installer import InstallData, remove_mod_files, scan_for_mods, uninstall_mod
from ModRegistry.mod_loader import (
    ForeignOrderKeys,
    ForeignOrderKeysShifted,
    ModLoader,
    ModLoaderCfg,
    OrdMetaData,
)
from ModRegistry.reg_mod import LoadOrder, RegMod, SplitFiles
from ModRegistry.toggle import toggle_files

__all__ = [
    "Cfg",
    "CollectedMods",
    "ForeignOrderKeys",
    "ForeignOrderKeysShifted",
    "InstallData",
    "LoadOrder",
    "ModError",
    "ModLoader",
    "ModLoaderCfg",
    "OrdMetaData",
    "RegMod",
    "SplitFiles",
    "merge_errors",
    "remove_mod_files",
    "scan_for_mods",
    "toggle_files",
    "uninstall_mod",
]
