"""
collector.py
Build the list of registered mods from the app config.

  sync_keys()        — drop mods saved in only one of [registered-mods] /
                       [mod-files]
  combine_map_data() — turn the synced maps into RegMods, fix file state on
                       disk, drop files that no longer exist
  collect_unchecked()— the saved data as-is, no disk access

Every repair is written back to the config straight away and reported as a
warning; a warning never stops the rest of the collection.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from ModRegistry import ini_store
from ModRegistry.constants import ARRAY_VALUE, AppLayout
from ModRegistry.errors import InvalidDataError, ModError, merge_errors
from ModRegistry.ini_store import property_array
from ModRegistry.reg_mod import LoadOrder, OrderMap, RegMod, SplitFiles, display_name

if TYPE_CHECKING:
    from ModRegistry.cfg import Cfg

log = logging.getLogger(__name__)


@dataclass
class CollectedMods:
    mods: list[RegMod] = field(default_factory=list)
    # None, a single error, or a MergedError
    warnings: Exception | None = None


def sync_keys(cfg: "Cfg") -> tuple[dict[str, str], dict[str, list[str]]]:
    """Return (state_map, file_map) holding the same keys.

    A key found in only one section is deleted from the file and from the
    returned maps.
    """
    layout = cfg.layout
    sep = layout.kv_separator
    states = cfg.data.section(layout.mod_state)
    files = cfg.data.section(layout.mod_files)
    if states is None or files is None:
        raise InvalidDataError(f"{layout.name} is missing a required section")

    state_map: dict[str, str] = {}
    for key, value in states:
        state_map.setdefault(key, value)
    file_map: dict[str, list[str]] = {}
    for key, values in property_array(files):
        file_map.setdefault(key, values)

    changed = False
    for key in [k for k in state_map if k not in file_map]:
        del state_map[key]
        ini_store.remove_entry(cfg.path, layout.mod_state, key, sep)
        log.warning("%s has no registered files, mod was removed", display_name(key))
        changed = True

    for key in [k for k in file_map if k not in state_map]:
        if files.get(key) == ARRAY_VALUE:
            ini_store.remove_array(cfg.path, layout.mod_files, key, sep)
        else:
            ini_store.remove_entry(cfg.path, layout.mod_files, key, sep)
        del file_map[key]
        log.warning("%s has no saved state data, mod was removed", display_name(key))
        changed = True

    if changed:
        cfg.update()
    assert len(state_map) == len(file_map), "sync_keys left unmatched keys"
    return state_map, file_map


def _parse_state(key: str, state_str: str, ini_path: Path, layout: AppLayout) -> bool:
    try:
        return ini_store.parse_bool(state_str, key)
    except InvalidDataError as err:
        log.error("%s", err)
        ini_store.save_bool(ini_path, layout.mod_state, key, True, layout.kv_separator)
        return True


def _remove(reg_mod: RegMod, ini_path: Path, was_array: bool, layout: AppLayout,
            warnings: list[Exception]) -> None:
    try:
        reg_mod.remove_from_file(ini_path, was_array, layout)
    except ModError as err:
        log.error("%s", err)
        warnings.append(err)


def combine_map_data(
    state_map: dict[str, str],
    file_map: dict[str, list[str]],
    order_map: OrderMap | None,
    game_dir: Path,
    ini_path: Path,
    layout: AppLayout,
    array_keys: set[str] | None = None,
) -> CollectedMods:
    """RegMods sorted by load order then name, with every repair saved.

    array_keys names the mods whose files are saved as an array; when not
    given, more than one file means an array.
    """
    warnings: list[Exception] = []
    entries: list[tuple[RegMod, bool]] = []

    for key, state_str in state_map.items():
        file_strs = file_map.get(key)
        if file_strs is None:
            continue
        split = SplitFiles.from_paths(file_strs)
        state = _parse_state(key, state_str, ini_path, layout)
        reg_mod = RegMod(key, state, split, LoadOrder.from_dll(split.dll, order_map))
        if array_keys is None:
            was_array = len(file_strs) > 1
        else:
            was_array = key in array_keys
        entries.append((reg_mod, was_array))

    entries.sort(key=lambda e: (
        not e[0].order.set,
        e[0].order.at if e[0].order.set else 0,
        e[0].name,
    ))

    mods: list[RegMod] = []
    for reg_mod, was_array in entries:
        if reg_mod.files.is_empty():
            err = InvalidDataError(f"{reg_mod.display_name} has no registered files, mod was removed")
            log.warning("%s", err)
            warnings.append(err)
            _remove(reg_mod, ini_path, was_array, layout, warnings)
            continue

        try:
            reg_mod.verify_state(game_dir, ini_path)
        except ModError as err:
            log.error("%s", err)
            warnings.append(err)
            _remove(reg_mod, ini_path, was_array, layout, warnings)
            continue

        failures = ini_store.validate_many(reg_mod.files.other_file_refs(), game_dir)
        if failures:
            for path, err in failures:
                reg_mod.files.remove(path)
                err.add_msg(
                    f"File: '{path}' was removed, and is no longer associated with: "
                    f"{reg_mod.display_name}"
                )
                log.warning("%s", err)
                warnings.append(err)
            if reg_mod.files.is_empty():
                _remove(reg_mod, ini_path, was_array, layout, warnings)
                continue
            try:
                reg_mod.write_to_file(ini_path, was_array, layout)
            except ModError as err:
                log.error("%s", err)
                warnings.append(err)
                continue
        mods.append(reg_mod)

    return CollectedMods(mods=mods, warnings=merge_errors(warnings))


def collect_unchecked(cfg: "Cfg") -> CollectedMods:
    """Saved mods with no reconciliation and no disk access. Bad states read as True."""
    layout = cfg.layout
    states = cfg.data.section(layout.mod_state)
    files = cfg.data.section(layout.mod_files)
    if states is None or files is None:
        raise InvalidDataError(f"{layout.name} is missing a required section")
    mods = []
    for key, values in property_array(files):
        state_str = states.get(key, "true")
        try:
            state = ini_store.parse_bool(state_str, key)
        except InvalidDataError:
            state = True
        mods.append(RegMod.new(key, state, values))
    return CollectedMods(mods=mods)
