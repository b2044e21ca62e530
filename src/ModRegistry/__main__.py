"""
Run from project root:
  python -m ModRegistry list                          # registered mods, in load order
  python -m ModRegistry toggle "My Mod" off           # disable a mod
  python -m ModRegistry order "My Mod" 2              # set load order (1-based)
  python -m ModRegistry order "My Mod" off            # remove load order
  python -m ModRegistry install "My Mod" path/to/dir  # install a directory, archive or files
  python -m ModRegistry uninstall "My Mod"            # remove files and registration
  python -m ModRegistry scan                          # register dlls already in game_dir/mods
  python -m ModRegistry loader off                    # disable the mod loader

Options: --ini PATH (app config), --game-dir DIR (saved for later runs), -v.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from ModRegistry.app_log import app_log, set_app_log
from ModRegistry.cfg import Cfg
from ModRegistry.config_paths import get_ini_path, get_log_path
from ModRegistry.errors import ModError, NotFoundError
from ModRegistry.installer import InstallData, scan_for_mods, uninstall_mod
from ModRegistry.mod_loader import (
    ForeignOrderKeys,
    ForeignOrderKeysShifted,
    ModLoader,
    ModLoaderCfg,
)
from ModRegistry.reg_mod import RegMod, key_name
from ModRegistry.toggle import omit_off_state, toggle_files

log = logging.getLogger("ModRegistry")

_ARCHIVES = (".zip", ".7z", ".tar", ".tar.gz", ".tgz", ".tar.bz2", ".tar.xz")
_LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format=_LOG_FORMAT,
    )


def _show(err: Exception | None) -> None:
    if err is not None:
        app_log(f"Warning: {err}")


class _Session:
    """Config, game_dir and (if installed) loader config for one command."""

    def __init__(self, ini_path: Path, game_dir: Path | None):
        self.cfg = Cfg.read(ini_path)
        if game_dir is not None:
            self.cfg.set_game_dir(game_dir.resolve())
        self.game_dir = self.cfg.get_game_dir()
        self.loader_cfg: ModLoaderCfg | None = None
        self.unknown_keys: set[str] = set()
        self.order_map: dict[str, int] | None = None
        try:
            loader = ModLoader.properties(self.game_dir)
        except NotFoundError as err:
            log.info("%s", err)
            return
        self.loader_cfg = ModLoaderCfg.read(loader.path)
        self.refresh_order()

    def refresh_order(self) -> None:
        if self.loader_cfg is None:
            return
        self.loader_cfg.update()
        dll_set, count, removed = self.cfg.dll_set_order_count(self.loader_cfg.section())
        if removed:
            self.loader_cfg.write_to_file()
        try:
            self.loader_cfg.verify_keys(dll_set, count)
        except (ForeignOrderKeys, ForeignOrderKeysShifted) as err:
            self.unknown_keys = err.unknown_keys
            _show(err)
        self.order_map = self.loader_cfg.parse_section(self.unknown_keys, count)

    def mods(self) -> list[RegMod]:
        collected = self.cfg.collect_mods(self.game_dir, self.order_map)
        _show(collected.warnings)
        self.cfg.update()
        return collected.mods

    def find(self, name: str) -> RegMod:
        key = key_name(name)
        for reg_mod in self.mods():
            if reg_mod.name.lower() == key.lower():
                return reg_mod
        raise NotFoundError(f"No registered mod named: {name}")


def _cmd_list(session: _Session, _args) -> None:
    mods = session.mods()
    if not mods:
        print("No mods registered")
        return
    for reg_mod in mods:
        state = "on " if reg_mod.state else "off"
        print(f"[{state}] {reg_mod.display_name:<32} order: {reg_mod.order}")
        for f in reg_mod.files.chain_all():
            print(f"        {f}")


def _cmd_toggle(session: _Session, args) -> None:
    reg_mod = session.find(args.name)
    toggle_files(session.game_dir, args.state == "on", reg_mod, session.cfg.path)


def _cmd_order(session: _Session, args) -> None:
    if session.loader_cfg is None:
        raise NotFoundError("Elden Mod Loader is not installed, load order is unavailable")
    reg_mod = session.find(args.name)
    if not reg_mod.files.dll:
        raise ModError(f"{reg_mod.display_name} has no dll to set a load order for")
    key = omit_off_state(reg_mod.files.dll[reg_mod.order.i].name)
    if args.value == "off":
        meta = session.loader_cfg.remove_order(key, session.unknown_keys)
    else:
        try:
            at = int(args.value) - 1
        except ValueError:
            raise ModError(f"Load order must be a number or 'off', found: {args.value}") from None
        if at < 0:
            raise ModError("Load order starts at 1")
        meta = session.loader_cfg.set_order(key, at, session.unknown_keys)
    log.debug("max order: %s, missing: %s", meta.max_order, meta.missing_vals)


def _cmd_install(session: _Session, args) -> None:
    if key_name(args.name).lower() in session.cfg.keys():
        raise ModError(f"A mod named: {args.name} is already registered")
    sources = [Path(s).resolve() for s in args.sources]
    first = sources[0]
    if len(sources) == 1 and first.is_file() and first.name.lower().endswith(_ARCHIVES):
        data = InstallData.from_archive(args.name, first, session.game_dir, cutoff=args.preview)
    elif first.is_dir():
        data = InstallData.from_directory(args.name, first, session.game_dir, cutoff=args.preview)
        for extra in sources[1:]:
            data = data.import_dir(extra, cutoff=args.preview)
    else:
        data = InstallData.new(args.name, sources, session.game_dir)
    print(f"Installing: {data.name}\n{data.display_paths}\n\nInstall at:\n{data.install_dir}")
    data.install(session.cfg.path)


def _cmd_uninstall(session: _Session, args) -> None:
    reg_mod = session.find(args.name)
    uninstall_mod(session.game_dir, reg_mod, session.cfg.path, session.loader_cfg)


def _cmd_scan(session: _Session, _args) -> None:
    scan_for_mods(session.game_dir, session.cfg.path)
    session.cfg.update()
    session.refresh_order()


def _cmd_loader(session: _Session, args) -> None:
    loader = ModLoader.properties(session.game_dir)
    loader.toggle(args.state == "on")


def main() -> None:
    ap = argparse.ArgumentParser(
        prog="python -m ModRegistry",
        description="Register, toggle, order and install Elden Ring mods.",
    )
    ap.add_argument("--ini", type=Path, help="App config path (default: XDG config dir)")
    ap.add_argument("--game-dir", type=Path, help="Game directory; saved to the app config")
    ap.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = ap.add_subparsers(dest="command", required=True)

    sub.add_parser("list", help="List registered mods").set_defaults(func=_cmd_list)

    p = sub.add_parser("toggle", help="Enable or disable a mod")
    p.add_argument("name")
    p.add_argument("state", choices=("on", "off"))
    p.set_defaults(func=_cmd_toggle)

    p = sub.add_parser("order", help="Set (1-based) or remove a mod's load order")
    p.add_argument("name")
    p.add_argument("value", help="Position starting at 1, or 'off'")
    p.set_defaults(func=_cmd_order)

    p = sub.add_parser("install", help="Install files, a directory or an archive")
    p.add_argument("name")
    p.add_argument("sources", nargs="+", type=Path)
    p.add_argument("--preview", type=int, default=20, help="Files listed before summarising")
    p.set_defaults(func=_cmd_install)

    p = sub.add_parser("uninstall", help="Remove a mod's files and registration")
    p.add_argument("name")
    p.set_defaults(func=_cmd_uninstall)

    sub.add_parser("scan", help="Register dlls already in game_dir/mods").set_defaults(func=_cmd_scan)

    p = sub.add_parser("loader", help="Enable or disable the mod loader")
    p.add_argument("state", choices=("on", "off"))
    p.set_defaults(func=_cmd_loader)

    args = ap.parse_args()
    ini_path = args.ini or get_ini_path()

    _setup_logging(args.verbose)
    set_app_log(lambda msg: print(msg, file=sys.stderr))
    try:
        session = _Session(ini_path, args.game_dir)
        try:
            save_log = session.cfg.get_save_log()
        except ModError as err:
            _show(err)
            save_log = True
        if save_log:
            handler = logging.FileHandler(get_log_path(ini_path), mode="w", encoding="utf-8")
            handler.setFormatter(logging.Formatter(_LOG_FORMAT))
            logging.getLogger().addHandler(handler)
        args.func(session, args)
    except ModError as err:
        print(f"Error: {err}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
