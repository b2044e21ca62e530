"""
toggle.py
Keep each registered mod's on-disk file names in step with its saved state.

A disabled file has ".disabled" appended to its full name:
  mods/foo.dll            — enabled
  mods/foo.dll.disabled   — disabled

verify_state() first recovers from file names saved in the wrong state
(e.g. the app stopped half way through a toggle), then calls toggle_files()
if any dll's suffix still disagrees with the saved state.

Renames are done one file at a time and never replace an existing file. The
first failure is raised and files already renamed stay renamed.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path, PurePath
from typing import TYPE_CHECKING

from ModRegistry.constants import OFF_STATE
from ModRegistry.errors import (
    InvalidDataError,
    NotFoundError,
    PermissionDeniedError,
    wrap_os_error,
)
from ModRegistry.ini_store import try_exists

if TYPE_CHECKING:
    from ModRegistry.reg_mod import RegMod

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# File name helpers
# ---------------------------------------------------------------------------

def is_disabled(path: PurePath | str) -> bool:
    return PurePath(path).name.lower().endswith(OFF_STATE)


def is_enabled(path: PurePath | str) -> bool:
    return not is_disabled(path)


def omit_off_state(name: str) -> str:
    """'foo.dll.disabled' -> 'foo.dll'; anything else is returned unchanged."""
    if name.lower().endswith(OFF_STATE):
        return name[:-len(OFF_STATE)]
    return name


def file_name_from_str(path: PurePath | str) -> str:
    return PurePath(path).name


def file_extension(path: PurePath | str) -> str:
    """Lower-case extension of the file name with any off-state suffix removed."""
    return PurePath(omit_off_state(PurePath(path).name)).suffix.lower()


def toggle_name_state(path: PurePath | str, new_state: bool) -> Path:
    """Return path with its file name put in new_state (True = enabled)."""
    path = Path(path)
    name = omit_off_state(path.name)
    if not new_state:
        name += OFF_STATE
    return path.with_name(name)


def toggle_path_state(path: PurePath | str) -> Path:
    """Return path with its file name put in the opposite state."""
    return toggle_name_state(path, is_disabled(path))


# ---------------------------------------------------------------------------
# Toggle / verify
# ---------------------------------------------------------------------------

def toggle_files(game_dir: Path, new_state: bool, reg_mod: "RegMod",
                 ini_path: Path | None = None) -> None:
    """Rename every dll of reg_mod whose suffix disagrees with new_state.

    reg_mod.files.dll and reg_mod.state are updated in memory as renames
    succeed. When ini_path is given the new state and paths are saved once
    every rename is done.
    """
    game_dir = Path(game_dir)
    for i, short_path in enumerate(reg_mod.files.dll):
        if is_enabled(short_path) == new_state:
            continue
        new_short = toggle_name_state(short_path, new_state)
        try:
            if try_exists(game_dir / new_short):
                raise InvalidDataError(
                    f"Could not rename '{short_path}', '{new_short.name}' already exists"
                )
            os.rename(game_dir / short_path, game_dir / new_short)
        except OSError as exc:
            raise wrap_os_error(
                exc, f"Failed to rename '{short_path}' to '{new_short.name}'"
            ) from exc
        log.debug("Renamed %s -> %s", short_path, new_short.name)
        reg_mod.files.dll[i] = new_short

    reg_mod.state = new_state
    if ini_path is not None:
        reg_mod.write_to_file(ini_path, reg_mod.is_array())
    log.info("%s set to: %s", reg_mod.display_name, "enabled" if new_state else "disabled")


def verify_state(reg_mod: "RegMod", game_dir: Path, ini_path: Path) -> None:
    """Make the files on disk agree with reg_mod.state.

    NotFoundError when a dll exists under neither name,
    PermissionDeniedError when existence can't be determined.
    """
    game_dir = Path(game_dir)
    dll = reg_mod.files.dll

    not_found: list[int] = []
    unknown: list[Path] = []
    for i, short_path in enumerate(dll):
        try:
            if not try_exists(game_dir / short_path):
                not_found.append(i)
        except OSError:
            unknown.append(short_path)

    if unknown:
        raise PermissionDeniedError(
            f"One or more of: {', '.join(str(p) for p in unknown)}, "
            f"existance can neither be confirmed nor denied"
        )

    if not_found:
        missing: list[Path] = []
        for i in not_found:
            alt = toggle_path_state(dll[i])
            try:
                found = try_exists(game_dir / alt)
            except OSError:
                raise PermissionDeniedError(
                    f"Path \"{alt}\"'s existance can neither be confirmed nor denied"
                ) from None
            if found:
                dll[i] = alt
            else:
                missing.append(dll[i])
        if missing:
            raise NotFoundError(
                f"File(s): {', '.join(p.name for p in missing)}, can not be found on machine. "
                f"Mod: {reg_mod.display_name}"
            )
        on_disk = {is_enabled(p) for p in dll}
        if len(on_disk) == 1:
            reg_mod.state = on_disk.pop()
        reg_mod.write_to_file(ini_path, reg_mod.is_array())
        log.info(
            "%s's files were saved in the incorrect state, updated files to reflect the correct state",
            reg_mod.display_name,
        )

    if any(is_enabled(p) != reg_mod.state for p in dll):
        log.info("Wrong file state for mod: '%s', changing file state", reg_mod.display_name)
        toggle_files(game_dir, reg_mod.state, reg_mod, ini_path)
        return
    log.debug("verified %s, state: %s", reg_mod.display_name, reg_mod.state)
