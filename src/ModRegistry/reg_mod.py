"""
reg_mod.py
In-memory form of one registered mod.

  RegMod     — name, enabled state, owned files, load order
  SplitFiles — owned files split by extension into dll / config / other
  LoadOrder  — whether (and where) one of the mod's dlls is in the loader's order

Files are stored as short paths relative to game_dir, e.g. "mods/foo.dll".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path, PurePath
from typing import Iterable, Iterator, Mapping

from ModRegistry import ini_store
from ModRegistry.constants import APP_LAYOUT, AppLayout
from ModRegistry.errors import InvalidDataError
from ModRegistry.toggle import file_extension, omit_off_state, verify_state

log = logging.getLogger(__name__)

# filename (without off-state suffix) -> order value
OrderMap = Mapping[str, int]


def display_name(name: str) -> str:
    return name.replace("_", " ")


def key_name(name: str) -> str:
    return name.strip().replace(" ", "_")


# ---------------------------------------------------------------------------
# SplitFiles
# ---------------------------------------------------------------------------

@dataclass
class SplitFiles:
    dll: list[Path] = field(default_factory=list)
    config: list[Path] = field(default_factory=list)
    other: list[Path] = field(default_factory=list)

    @classmethod
    def from_paths(cls, paths: Iterable[PurePath | str]) -> "SplitFiles":
        split = cls()
        for p in paths:
            split.add(p)
        return split

    def _bucket(self, path: PurePath | str) -> list[Path]:
        ext = file_extension(path)
        if ext == ".dll":
            return self.dll
        if ext == ".ini":
            return self.config
        return self.other

    def add(self, path: PurePath | str) -> None:
        self._bucket(path).append(Path(path))

    def remove(self, path: PurePath | str) -> Path | None:
        bucket = self._bucket(path)
        path = Path(path)
        for i, f in enumerate(bucket):
            if f == path:
                return bucket.pop(i)
        return None

    def chain_all(self) -> Iterator[Path]:
        yield from self.dll
        yield from self.config
        yield from self.other

    def file_refs(self) -> list[Path]:
        return list(self.chain_all())

    def full_paths(self, game_dir: Path) -> list[Path]:
        return [Path(game_dir) / p for p in self.chain_all()]

    def dll_refs(self) -> list[Path]:
        return list(self.dll)

    def other_file_refs(self) -> list[Path]:
        return [*self.config, *self.other]

    def other_files_len(self) -> int:
        return len(self.config) + len(self.other)

    def is_empty(self) -> bool:
        return not (self.dll or self.config or self.other)

    def __len__(self) -> int:
        return len(self.dll) + len(self.config) + len(self.other)


# ---------------------------------------------------------------------------
# LoadOrder
# ---------------------------------------------------------------------------

@dataclass
class LoadOrder:
    # one of the mod's dlls has an entry in the loader's order section
    set: bool = False
    # index into SplitFiles.dll of that file
    i: int = 0
    # its order value
    at: int = 0

    @classmethod
    def from_dll(cls, dll_files: list[Path], order_map: OrderMap | None) -> "LoadOrder":
        if not dll_files or not order_map:
            return cls()
        for i, f in enumerate(dll_files):
            value = order_map.get(omit_off_state(PurePath(f).name))
            if value is not None:
                return cls(set=True, i=i, at=value)
        return cls()

    def __str__(self) -> str:
        return str(self.at + 1) if self.set else "not set"


def order_count(mods: Iterable["RegMod"]) -> int:
    return sum(1 for m in mods if m.order.set)


def max_order(mods: Iterable["RegMod"]) -> tuple[int, bool]:
    """(highest order value, more than one mod holds it) over mods with a set order."""
    values = [m.order.at for m in mods if m.order.set]
    if not values:
        return 0, False
    top = max(values)
    return top, values.count(top) > 1


# ---------------------------------------------------------------------------
# RegMod
# ---------------------------------------------------------------------------

@dataclass
class RegMod:
    name: str
    state: bool
    files: SplitFiles = field(default_factory=SplitFiles)
    order: LoadOrder = field(default_factory=LoadOrder)

    @classmethod
    def new(cls, name: str, state: bool, files: Iterable[PurePath | str]) -> "RegMod":
        """Build a RegMod from a user supplied name, order left unset."""
        return cls(key_name(name), state, SplitFiles.from_paths(files))

    @classmethod
    def with_load_order(cls, name: str, state: bool, files: Iterable[PurePath | str],
                        order_map: OrderMap | None) -> "RegMod":
        split = SplitFiles.from_paths(files)
        return cls(key_name(name), state, split, LoadOrder.from_dll(split.dll, order_map))

    @property
    def display_name(self) -> str:
        return display_name(self.name)

    def is_array(self) -> bool:
        """True if the files are currently saved (or will be saved) as an array."""
        return len(self.files) > 1

    def verify_state(self, game_dir: Path, ini_path: Path) -> None:
        verify_state(self, game_dir, ini_path)

    def write_to_file(self, ini_path: Path, was_array: bool,
                      layout: AppLayout = APP_LAYOUT) -> None:
        """Save state and files.

        was_array must reflect how the files are saved *before* this call;
        an old array is removed first because the two encodings can't be
        overwritten in place.
        """
        files = self.files.file_refs()
        if not files:
            raise InvalidDataError(f"{self.display_name} has no files to save")
        sep = layout.kv_separator
        ini_store.save_bool(ini_path, layout.mod_state, self.name, self.state, sep)
        if was_array:
            ini_store.remove_array(ini_path, layout.mod_files, self.name, sep)
        if self.is_array():
            ini_store.save_paths(ini_path, layout.mod_files, self.name, files, sep)
        else:
            ini_store.save_path(ini_path, layout.mod_files, self.name, files[0], sep)

    def remove_from_file(self, ini_path: Path, was_array: bool | None = None,
                         layout: AppLayout = APP_LAYOUT) -> None:
        """Delete this mod's state and files entries."""
        if was_array is None:
            was_array = self.is_array()
        sep = layout.kv_separator
        ini_store.remove_entry(ini_path, layout.mod_state, self.name, sep)
        if was_array:
            ini_store.remove_array(ini_path, layout.mod_files, self.name, sep)
        else:
            ini_store.remove_entry(ini_path, layout.mod_files, self.name, sep)
        log.debug("Removed %s from %s", self.display_name, Path(ini_path).name)
