"""
cfg.py
Config file wrappers.

Config is the shared base: the parsed Ini, where it lives, and its layout.
Cfg is the app's own config (EML_gui_config.ini):

  [app-settings]     dark_mode / save_log
  [paths]            game_dir
  [registered-mods]  mod name -> true / false
  [mod-files]        mod name -> short path, or "array" + array[] lines

ModLoaderCfg (mod_loader.py) is the loader's config.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path

from ModRegistry import ini_store
from ModRegistry.collector import CollectedMods, collect_unchecked, combine_map_data, sync_keys
from ModRegistry.constants import (
    APP_LAYOUT,
    ARRAY_KEY,
    ARRAY_VALUE,
    INVALID_FILE_MARKER,
    REQUIRED_GAME_FILES,
    AppLayout,
    IniLayout,
)
from ModRegistry.errors import InvalidInputError, ModError, NotFoundError
from ModRegistry.ini_store import Ini, Properties, ValueKind, property_array
from ModRegistry.reg_mod import LoadOrder, OrderMap, RegMod, SplitFiles, key_name
from ModRegistry.toggle import file_extension, omit_off_state

log = logging.getLogger(__name__)


class Config(ABC):
    """A parsed .ini file bound to its path and layout."""

    def __init__(self, data: Ini, path: Path, layout: IniLayout):
        self.data = data
        self.path = Path(path)
        self.layout = layout

    @classmethod
    def read(cls, path: Path, layout: IniLayout | None = None):
        """Load path, creating it with defaults if it isn't set up."""
        layout = layout or cls.default_layout()
        return cls(ini_store.get_or_setup_cfg(path, layout), path, layout)

    @classmethod
    @abstractmethod
    def default_layout(cls) -> IniLayout:
        ...

    @property
    @abstractmethod
    def mods_section(self) -> str:
        """Section holding one entry per registered mod."""

    def update(self) -> None:
        """Re-read the file from disk."""
        self.data = ini_store.get_or_setup_cfg(self.path, self.layout)

    def set(self, section: str, key: str, value: str) -> None:
        self.data.with_section(section).set(key, value)

    def write_to_file(self) -> None:
        self.data.write(self.path, self.layout.kv_separator)

    def mods_is_empty(self) -> bool:
        props = self.data.section(self.mods_section)
        return props is None or props.is_empty()

    def mods_registered(self) -> int:
        props = self.data.section(self.mods_section)
        return 0 if props is None else len(props)

    def save_default_val(self, section: str, key: str, err: ModError) -> ModError:
        """Reset key to its documented default and annotate err with the outcome."""
        default = self.layout.default_for(key)
        try:
            ini_store.save_value(self.path, section, key, default, self.layout.kv_separator)
        except (ModError, OSError) as save_err:
            err.add_msg(str(save_err))
        else:
            self.set(section, key, default)
            err.add_msg(f"Reset: {key}, to: {default}")
        log.error("%s", err)
        return err

    def _read_setting(self, key: str, kind: ValueKind):
        section = self.layout.settings
        try:
            return ini_store.read_property(self.data, section, key, kind)
        except ModError as err:
            raise self.save_default_val(section, key, err) from None


class Cfg(Config):
    """The app's own config file."""

    layout: AppLayout

    @classmethod
    def default_layout(cls) -> AppLayout:
        return APP_LAYOUT

    @property
    def mods_section(self) -> str:
        return self.layout.mod_state

    # -- settings -----------------------------------------------------------

    def get_dark_mode(self) -> bool:
        dark_mode = self._read_setting(self.layout.keys[0], ValueKind.BOOL)
        log.info("%s theme loaded", "Dark" if dark_mode else "Light")
        return dark_mode

    def get_save_log(self) -> bool:
        return self._read_setting(self.layout.keys[1], ValueKind.BOOL)

    def get_game_dir(self) -> Path:
        """Saved game_dir; must exist and hold the game's required files."""
        key = self.layout.path_keys[0]
        game_dir = ini_store.read_property(self.data, self.layout.paths, key, ValueKind.PATH)
        missing = [f for f in REQUIRED_GAME_FILES if not (game_dir / f).is_file()]
        if missing:
            raise NotFoundError(f"Failure: {missing} not found in: \"{game_dir}\"")
        return game_dir

    def set_game_dir(self, game_dir: Path) -> None:
        key = self.layout.path_keys[0]
        ini_store.save_path(self.path, self.layout.paths, key, game_dir,
                            self.layout.kv_separator)
        self.set(self.layout.paths, key, str(game_dir))

    # -- registered mods ----------------------------------------------------

    def _section(self, name: str) -> Properties:
        props = self.data.section(name)
        if props is None:
            raise NotFoundError(f"Section: '{name}', not found")
        return props

    def collect_mods(self, game_dir: Path, order_map: OrderMap | None = None,
                     skip_validation: bool = False) -> CollectedMods:
        """Registered mods with valid data.

        Keys present in only one of the state / files sections are removed,
        dll file names are put in the saved state, and other files that no
        longer exist are dropped. Every repair is saved and reported in
        CollectedMods.warnings.

        skip_validation returns the data as saved without touching the disk.
        """
        if skip_validation:
            return collect_unchecked(self)
        state_map, file_map = sync_keys(self)
        array_keys = {k for k, v in self._section(self.layout.mod_files) if v == ARRAY_VALUE}
        collected = combine_map_data(
            state_map, file_map, order_map, Path(game_dir), self.path, self.layout, array_keys
        )
        log.debug("collected %d mods", len(collected.mods))
        return collected

    def get_mod(self, name: str, game_dir: Path, order_map: OrderMap | None = None) -> RegMod:
        """Parse (and validate) one registered mod."""
        key = key_name(name)
        files_section = self.layout.mod_files
        value = self.data.get_from(files_section, key)
        if value is None:
            raise InvalidInputError(f"{key} not found in section: {files_section}")
        game_dir = Path(game_dir)
        if value == ARRAY_VALUE:
            paths = ini_store.read_property(
                self.data, files_section, key, ValueKind.PATH_LIST, path_prefix=game_dir
            )
        else:
            paths = [ini_store.read_property(
                self.data, files_section, key, ValueKind.PATH, path_prefix=game_dir
            )]
        state = ini_store.read_property(self.data, self.layout.mod_state, key, ValueKind.BOOL)
        files = SplitFiles.from_paths(paths)
        return RegMod(key, state, files, LoadOrder.from_dll(files.dll, order_map))

    def keys(self) -> set[str]:
        """Lower-cased names of every registered mod.

        If the files section holds a key the state section doesn't, the two
        are reconciled first.
        """
        state_keys = {k.lower() for k in self._section(self.layout.mod_state).keys()}
        file_keys = {k.lower() for k in self._section(self.layout.mod_files).keys()
                     if k != ARRAY_KEY}
        if file_keys <= state_keys:
            return state_keys
        state_map, _ = sync_keys(self)
        self.update()
        return {k.lower() for k in state_map}

    def files(self) -> set[str]:
        """Every registered file as a short path."""
        return {v for _, v in self._section(self.layout.mod_files) if v != ARRAY_VALUE}

    def dll_set_order_count(self, loader_section: Properties) -> tuple[set[str], int, bool]:
        """(registered dll names, mods with a set order, an order entry was removed).

        Only one dll per mod may hold an order entry; extra entries are
        removed from loader_section. Write the loader config if the last
        value is True.
        """
        dll_set: set[str] = set()
        count = 0
        removed = False
        for name, values in property_array(self._section(self.layout.mod_files)):
            order_found = False
            for value in values:
                if file_extension(value) != ".dll":
                    continue
                f_name = omit_off_state(Path(value).name)
                dll_set.add(f_name)
                if f_name not in loader_section:
                    continue
                if not order_found:
                    order_found = True
                    count += 1
                else:
                    removed = True
                    loader_section.remove(f_name)
                    log.warning(
                        "Load order found set for more than one file associated with mod: %s, "
                        "removed order for file: %s", name.replace("_", " "), f_name,
                    )
        return dll_set, count, removed

    def validate_entries(self) -> list[str]:
        """Repair invalid entries in memory and return a message per repair.

        Bad state values are reset to "true", duplicate state keys removed,
        file entries without an extension are marked so collection drops
        them, and continuation lines with no array above them are removed.
        Call write_to_file() to keep the changes.
        """
        messages: list[str] = []

        def note(msg: str) -> None:
            log.info("%s", msg)
            messages.append(msg)

        states = self.data.section(self.layout.mod_state)
        if states is not None:
            seen: set[str] = set()

            def keep_state(_i: int, key: str, _value: str) -> bool:
                if key in seen:
                    note(f"Duplicate key: {key}, found and removed from: {self.layout.name}")
                    return False
                seen.add(key)
                return True

            states.retain(keep_state)
            for key in states.keys():
                value = states.get(key)
                try:
                    ini_store.parse_bool(value, key)
                except ModError as err:
                    note(str(err))
                    states.set(key, "true")

        files = self.data.section(self.layout.mod_files)
        if files is not None:
            items = list(files)
            fixed = Properties()
            last_key = ""
            in_array = False
            for key, value in items:
                if key == ARRAY_KEY:
                    if not in_array:
                        note(f"Found file: {value}, with no array above it, entry removed")
                        continue
                else:
                    last_key = key
                    in_array = value == ARRAY_VALUE
                if value != ARRAY_VALUE and not Path(value).suffix:
                    note(f"Found invalid file: {value}, saved with key: {last_key}")
                    value = f"{value}{INVALID_FILE_MARKER}"
                fixed.append(key, value)
            files.replace_with(fixed)
        return messages
