"""
mod_loader.py
The external mod loader: whether it is installed, its config file and the
load order it reads.

mod_loader_config.ini:
  [modloader]
  load_delay = 5000
  show_terminal = 0

  [loadorder]
  foo.dll = 0
  bar.dll = 1

Load order keys are dll file names without the ".disabled" suffix. Values
must stay dense (0..N-1, or 1..N if the file already started at 1).
Keys that match no registered dll are "foreign": they are kept, but moved
after every registered key when they would collide with one.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from pathlib import Path

from ModRegistry import ini_store
from ModRegistry.cfg import Config
from ModRegistry.constants import (
    LOADER_CONFIG,
    LOADER_DLL,
    LOADER_DLL_DISABLED,
    LOADER_LAYOUT,
    LoaderLayout,
)
from ModRegistry.errors import ModError, NotFoundError, UnsupportedError
from ModRegistry.ini_store import Properties, ValueKind
from ModRegistry.reg_mod import RegMod, SplitFiles
from ModRegistry.toggle import toggle_files

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Loader detection
# ---------------------------------------------------------------------------

@dataclass
class ModLoader:
    installed: bool
    disabled: bool
    # path to mod_loader_config.ini
    path: Path
    game_dir: Path

    @classmethod
    def properties(cls, game_dir: Path) -> "ModLoader":
        """Detect the loader in game_dir, creating its config if it is missing."""
        game_dir = Path(game_dir)
        enabled = (game_dir / LOADER_DLL).is_file()
        disabled = (game_dir / LOADER_DLL_DISABLED).is_file()
        if not enabled and not disabled:
            raise NotFoundError(f"Elden Mod Loader is not installed at: {game_dir}")
        if enabled and disabled:
            log.warning("Found both %s and %s, treating loader as enabled",
                        LOADER_DLL, LOADER_DLL_DISABLED)
        cfg_path = game_dir / LOADER_CONFIG
        if not cfg_path.is_file():
            ini_store.new_cfg(cfg_path, LOADER_LAYOUT)
        return cls(installed=True, disabled=not enabled, path=cfg_path, game_dir=game_dir)

    def toggle(self, state: bool) -> None:
        """Enable (True) or disable the loader by renaming its hook dll."""
        current = LOADER_DLL_DISABLED if self.disabled else LOADER_DLL
        hook = RegMod("elden_mod_loader", not self.disabled,
                      SplitFiles(dll=[Path(current)]))
        toggle_files(self.game_dir, state, hook)
        self.disabled = not state


# ---------------------------------------------------------------------------
# Load order results / warnings
# ---------------------------------------------------------------------------

@dataclass
class OrdMetaData:
    # (highest order value among registered keys, more than one key holds it)
    max_order: tuple[int, bool] = (0, False)
    # values that were missing from the order before it was renumbered
    missing_vals: list[int] = field(default_factory=list)


class ForeignOrderKeys(ModError):
    """Load order keys with no registered dll, none of them in the way of one."""

    def __init__(self, unknown_keys: set[str]):
        super().__init__(
            f"Found load order set for file(s) not registered with the app: "
            f"{', '.join(sorted(unknown_keys))}"
        )
        self.unknown_keys = set(unknown_keys)


class ForeignOrderKeysShifted(UnsupportedError):
    """Foreign keys sat on positions registered mods need; the order was renumbered."""

    def __init__(self, unknown_keys: set[str], ord_meta_data: OrdMetaData):
        super().__init__(
            f"Found load order set for file(s) not registered with the app: "
            f"{', '.join(sorted(unknown_keys))}. Their order was moved after every registered mod"
        )
        self.unknown_keys = set(unknown_keys)
        self.ord_meta_data = ord_meta_data


def _order_value(value: str | None) -> float:
    """Parsed order value, or infinity when it doesn't parse."""
    if value is None:
        return math.inf
    try:
        return ini_store.parse_u32(value)
    except ModError:
        return math.inf


# ---------------------------------------------------------------------------
# Loader config
# ---------------------------------------------------------------------------

class ModLoaderCfg(Config):
    """mod_loader_config.ini"""

    layout: LoaderLayout

    @classmethod
    def default_layout(cls) -> LoaderLayout:
        return LOADER_LAYOUT

    @classmethod
    def read_from_game_dir(cls, game_dir: Path) -> "ModLoaderCfg":
        return cls.read(ModLoader.properties(game_dir).path)

    @property
    def mods_section(self) -> str:
        return self.layout.order

    # -- settings -----------------------------------------------------------

    def get_load_delay(self) -> int:
        delay = self._read_setting(self.layout.keys[0], ValueKind.U32)
        log.info("Load delay: %dms", delay)
        return delay

    def get_show_terminal(self) -> bool:
        show = self._read_setting(self.layout.keys[1], ValueKind.BOOL)
        log.info("Show terminal: %s", show)
        return show

    def set_load_delay(self, delay: int) -> None:
        ini_store.parse_u32(str(delay), self.layout.keys[0])
        ini_store.save_value_ext(self.path, self.layout.settings, self.layout.keys[0], str(delay))
        self.set(self.layout.settings, self.layout.keys[0], str(delay))

    def set_show_terminal(self, show: bool) -> None:
        value = "1" if show else "0"
        ini_store.save_value_ext(self.path, self.layout.settings, self.layout.keys[1], value)
        self.set(self.layout.settings, self.layout.keys[1], value)

    # -- load order ---------------------------------------------------------

    def section(self) -> Properties:
        return self.data.with_section(self.layout.order)

    def is_empty(self) -> bool:
        return self.section().is_empty()

    def parse_into_map(self) -> dict[str, int]:
        order: dict[str, int] = {}
        for k, v in self.section():
            if k == self.layout.example_key:
                continue
            value = _order_value(v)
            if value != math.inf:
                order.setdefault(k, int(value))
        return order

    def parse_section(self, unknown_keys: set[str] | None = None,
                      order_count: int | None = None) -> dict[str, int]:
        """Order map {file name: value}, renumbered first if it is invalid.

        The order is renumbered when a value doesn't parse, a key repeats,
        the values are not a contiguous run starting at 0 or 1, or (when
        order_count is given) the number of registered keys is not
        order_count.
        """
        section = self.section()
        example_removed = section.remove(self.layout.example_key) is not None

        order = self.parse_into_map()
        if len(order) != len(section):
            log.debug("fixing order value parse error in %s", self.path.name)
            self.update_order_entries(None, unknown_keys)
            return self.parse_into_map()

        values = sorted(order.values())
        start = values[0] if values and values[0] in (0, 1) else None
        if values and (start is None or values != list(range(start, start + len(values)))):
            log.debug("values in %s are not in order, sorting entries", self.path.name)
            self.update_order_entries(None, unknown_keys)
            return self.parse_into_map()

        if order_count is not None:
            known = sum(1 for k in order if k not in (unknown_keys or set()))
            if known != order_count:
                log.debug("found %d order entries for %d registered mods in %s, sorting entries",
                          known, order_count, self.path.name)
                self.update_order_entries(None, unknown_keys)
                return self.parse_into_map()

        if example_removed:
            self.write_to_file()
        return order

    def verify_keys(self, dll_set: set[str], order_count: int) -> None:
        """Check the order section for keys that match no registered dll.

        Raises ForeignOrderKeysShifted after renumbering when one sat below
        order_count, or ForeignOrderKeys when they are in nobody's way.
        """
        section = self.section()
        unknown = {k for k in section.keys()
                   if k not in dll_set and k != self.layout.example_key}
        if not unknown:
            return
        if any(_order_value(section.get(k)) < order_count for k in unknown):
            meta = self.update_order_entries(None, unknown)
            err = ForeignOrderKeysShifted(unknown, meta)
            log.warning("%s", err)
            raise err
        raise ForeignOrderKeys(unknown)

    def update_order_entries(self, stable: str | None = None,
                             unknown_keys: set[str] | None = None) -> OrdMetaData:
        """Renumber the order section and write it.

        Entries keep their relative order (values that don't parse go last).
        Numbering starts at 0, or at 1 when the lowest value already was 1 or
        more. stable is a key the user just placed: numbering restarts at 0
        and stable is put at its value, ahead of the first entry whose value
        is not lower. Keys in unknown_keys go after every other key. A key
        that repeats keeps its first value.
        """
        unknown_keys = unknown_keys or set()
        section = self.section()

        stable_v: float | None = None
        known: list[tuple[float, str]] = []
        foreign: list[tuple[float, str]] = []
        seen: set[str] = set()
        for k, v in section:
            if k == self.layout.example_key:
                continue
            if k in seen:
                log.warning("Duplicate load order key: %s, found in %s, kept the first value",
                            k, self.path.name)
                continue
            seen.add(k)
            value = _order_value(v)
            if stable is not None and k == stable:
                stable_v = value
            elif k in unknown_keys:
                foreign.append((value, k))
            else:
                known.append((value, k))
        known.sort(key=lambda e: e[0])
        foreign.sort(key=lambda e: e[0])

        original = [v for v, _ in known if v != math.inf]
        missing_vals: list[int] = []
        if stable_v is None and original:
            present = set(original)
            lo, hi = int(min(original)), int(max(original))
            missing_vals = [i for i in range(lo, hi) if i not in present]
            offset = 1 if lo > 0 else 0
        else:
            offset = 0

        new_section = Properties()
        assigned: list[int] = []
        pending = stable_v is not None

        def place(key: str) -> None:
            nonlocal offset
            new_section.append(key, str(offset))
            assigned.append(offset)
            offset += 1

        for value, k in known:
            if pending and offset >= stable_v and value >= stable_v:
                place(stable)
                pending = False
            place(k)
        if pending:
            place(stable)
        for _, k in foreign:
            new_section.append(k, str(offset))
            offset += 1

        section.replace_with(new_section)
        self.write_to_file()

        if assigned:
            top = max(assigned)
            max_order = (top, assigned.count(top) > 1)
        else:
            max_order = (0, False)
        if missing_vals:
            log.debug("order values %s were missing from %s", missing_vals, self.path.name)
        return OrdMetaData(max_order=max_order, missing_vals=missing_vals)

    def set_order(self, key: str, at: int,
                  unknown_keys: set[str] | None = None) -> OrdMetaData:
        """Give key the order value at and renumber everything else around it."""
        self.section().set(key, str(at))
        return self.update_order_entries(key, unknown_keys)

    def remove_order(self, key: str, unknown_keys: set[str] | None = None) -> OrdMetaData:
        if self.section().remove(key) is None:
            raise NotFoundError(f"No load order set for: {key}")
        return self.update_order_entries(None, unknown_keys)

    def move_order(self, from_key: str, to_key: str,
                   unknown_keys: set[str] | None = None) -> OrdMetaData:
        """Hand the order value held by from_key over to to_key."""
        section = self.section()
        value = section.remove(from_key)
        if value is None:
            raise NotFoundError(f"No load order set for: {from_key}")
        section.set(to_key, value)
        return self.update_order_entries(to_key, unknown_keys)
