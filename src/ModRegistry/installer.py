"""
installer.py
Copy a mod's files into <game_dir>/mods and register them, or remove them.

Install flow:
  1. InstallData.new() / from_directory() / from_archive() find the source
     root (the deepest directory that directly holds a file) and plan one
     destination per source file under <game_dir>/mods.
  2. import_dir() adds another directory to an existing plan. The walk runs
     on a worker thread; the caller waits for it and gets a new InstallData
     back.
  3. install() copies the planned files and registers the mod.

remove_mod_files() deletes a mod's files and any directory left empty,
never touching <game_dir>/mods itself or game_dir.
"""

from __future__ import annotations

import copy
import logging
import os
import shutil
import tarfile
import tempfile
import zipfile
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from typing import Iterator

import py7zr

from ModRegistry import ini_store
from ModRegistry.app_log import app_log
from ModRegistry.constants import APP_LAYOUT, MODS_DIR, AppLayout
from ModRegistry.errors import (
    InvalidDataError,
    InvalidInputError,
    ModError,
    WorkerError,
    wrap_os_error,
)
from ModRegistry.reg_mod import RegMod
from ModRegistry.toggle import file_extension, is_disabled, omit_off_state

log = logging.getLogger(__name__)

_ARCHIVE_TAR_SUFFIXES = (".tar", ".tar.gz", ".tgz", ".tar.bz2", ".tar.xz")


# ---------------------------------------------------------------------------
# Directory helpers
# ---------------------------------------------------------------------------

class FileType(Enum):
    FILE = auto()
    DIR = auto()
    ANY = auto()


def items_in_directory(path: Path, f_type: FileType) -> int:
    count = 0
    with os.scandir(path) as it:
        for entry in it:
            if f_type is FileType.FILE and entry.is_file():
                count += 1
            elif f_type is FileType.DIR and entry.is_dir():
                count += 1
            elif f_type is FileType.ANY and (entry.is_file() or entry.is_dir()):
                count += 1
    return count


def walk_files(directory: Path) -> Iterator[Path]:
    """Every file below directory, in name order. Symlinks are refused."""
    with os.scandir(directory) as it:
        entries = sorted(it, key=lambda e: e.name)
    for entry in entries:
        if entry.is_symlink():
            raise InvalidDataError(f"Unsupported file type: {entry.path}")
        if entry.is_file():
            yield Path(entry.path)
        elif entry.is_dir():
            yield from walk_files(Path(entry.path))


def files_in_directory_tree(directory: Path) -> int:
    return sum(1 for _ in walk_files(directory))


def check_dir_contains_files(path: Path) -> Path:
    """Deepest directory at or below path that directly holds a file.

    Descends while there is exactly one non-empty branch; stops where
    several branches hold files.
    """
    path = Path(path)
    if files_in_directory_tree(path) == 0:
        raise InvalidInputError("No files in the selected directory")
    if items_in_directory(path, FileType.FILE) > 0:
        return path
    with os.scandir(path) as it:
        dirs = sorted(Path(e.path) for e in it if e.is_dir())
    non_empty = [d for d in dirs if files_in_directory_tree(d) > 0]
    if len(non_empty) == 1:
        return check_dir_contains_files(non_empty[0])
    return path


def get_parent_dir(path: Path) -> Path:
    path = Path(path)
    if path.is_dir():
        return check_dir_contains_files(path)
    if path.is_file():
        return check_dir_contains_files(path.parent)
    raise InvalidDataError(f"Unable to retrieve metadata for: {path}")


def _is_relative_to(path: Path, other: Path) -> bool:
    try:
        path.relative_to(other)
    except ValueError:
        return False
    return True


def _mods_ancestor_with_files(path: Path) -> bool:
    """True if an ancestor of path is a "mods" directory next to loose files."""
    for ancestor in path.parents:
        if ancestor.name == MODS_DIR and ancestor.parent != ancestor:
            if items_in_directory(ancestor.parent, FileType.FILE) > 0:
                return True
    return False


def extract_archive(archive: Path, dest: Path) -> None:
    """Unpack a .zip, .7z or .tar.* archive into dest."""
    name = archive.name.lower()
    if name.endswith(".zip"):
        with zipfile.ZipFile(archive, "r") as z:
            z.extractall(dest)
    elif name.endswith(".7z"):
        with py7zr.SevenZipFile(archive, "r") as z:
            z.extractall(dest)
    elif name.endswith(_ARCHIVE_TAR_SUFFIXES):
        with tarfile.open(archive, "r:*") as t:
            t.extractall(dest, filter="data")
    else:
        raise InvalidInputError(f"Unsupported archive type: {archive.name}")


# ---------------------------------------------------------------------------
# InstallData
# ---------------------------------------------------------------------------

@dataclass
class InstallData:
    name: str
    from_paths: list[Path] = field(default_factory=list)
    to_paths: list[Path] = field(default_factory=list)
    display_paths: str = ""
    parent_dir: Path = field(default_factory=Path)
    install_dir: Path = field(default_factory=Path)
    # extraction directory owned by this plan, removed by cleanup()
    temp_dir: Path | None = None

    @classmethod
    def new(cls, name: str, file_paths: list[Path], game_dir: Path) -> "InstallData":
        """Plan an install of the selected files."""
        file_paths = [Path(p) for p in file_paths]
        if not file_paths:
            raise InvalidInputError("No files selected")
        parent_dir = get_parent_dir(min(file_paths, key=lambda p: len(p.parts)))
        display = []
        for p in file_paths:
            display.append(str(p.relative_to(parent_dir)) if _is_relative_to(p, parent_dir) else str(p))
        data = cls(
            name=name,
            from_paths=file_paths,
            display_paths="\n".join(display),
            parent_dir=parent_dir,
            install_dir=Path(game_dir) / MODS_DIR,
        )
        data.collect_to_paths()
        return data

    @classmethod
    def reconstruct(cls, name: str, install_dir: Path, new_directory: Path) -> "InstallData":
        return cls(name=name, parent_dir=get_parent_dir(new_directory), install_dir=install_dir)

    @classmethod
    def from_directory(cls, name: str, directory: Path, game_dir: Path,
                       cutoff: int | None = None) -> "InstallData":
        """Plan an install of every file below directory."""
        data = cls.reconstruct(name, Path(game_dir) / MODS_DIR, Path(directory))
        data.display_paths = "\n".join(data.format_entries(data.parent_dir, cutoff))
        data.collect_to_paths()
        return data

    @classmethod
    def from_archive(cls, name: str, archive: Path, game_dir: Path,
                     cutoff: int | None = None) -> "InstallData":
        """Extract archive to a temporary directory and plan it like a directory."""
        temp_dir = Path(tempfile.mkdtemp(prefix="modregistry_"))
        try:
            extract_archive(Path(archive), temp_dir)
            data = cls.from_directory(name, temp_dir, game_dir, cutoff)
        except Exception:
            shutil.rmtree(temp_dir, ignore_errors=True)
            raise
        data.temp_dir = temp_dir
        log.info("Extracted %s to %s", Path(archive).name, temp_dir)
        return data

    def cleanup(self) -> None:
        if self.temp_dir is not None:
            shutil.rmtree(self.temp_dir, ignore_errors=True)
            self.temp_dir = None

    def collect_to_paths(self) -> None:
        """Plan destinations for source paths that don't have one yet."""
        for path in self.from_paths[len(self.to_paths):]:
            if _is_relative_to(path, self.parent_dir):
                rel = path.relative_to(self.parent_dir)
            else:
                rel = Path(path.name)
            self.to_paths.append(self.install_dir / rel)

    def zip_from_to_paths(self) -> list[tuple[Path, Path]]:
        if len(self.from_paths) != len(self.to_paths):
            raise WorkerError("collect_to_paths either failed or was not ran")
        return list(zip(self.from_paths, self.to_paths))

    def format_entries(self, directory: Path, cutoff: int | None = None) -> list[str]:
        """Add every file below directory to from_paths and return preview lines.

        At most cutoff files are listed, followed by one "Plus N more files"
        line; every file is collected regardless.
        """
        preview: list[str] = []
        known = set(self.from_paths)
        total = 0
        for path in walk_files(Path(directory)):
            total += 1
            if path not in known:
                self.from_paths.append(path)
                known.add(path)
            if cutoff is None or len(preview) < cutoff:
                if _is_relative_to(path, self.parent_dir):
                    preview.append(str(path.relative_to(self.parent_dir)))
                else:
                    preview.append(path.name)
        remainder = total - len(preview)
        if remainder == 1:
            preview.append("Plus 1 more file")
        elif remainder > 1:
            preview.append(f"Plus {remainder} more files...")
        return preview

    def import_dir(self, new_directory: Path, cutoff: int | None = None) -> "InstallData":
        """Add new_directory to a copy of this plan on a worker thread.

        Returns the updated plan; self is left untouched. Raises
        InvalidInputError if the directory is already installed and
        InvalidDataError if it would break the mods directory layout.
        """
        data = copy.deepcopy(self)
        with ThreadPoolExecutor(max_workers=1, thread_name_prefix="import_dir") as pool:
            future = pool.submit(_import_worker, data, Path(new_directory), cutoff)
            try:
                return future.result()
            except ModError:
                raise
            except OSError as exc:
                raise wrap_os_error(exc, f"Failed to import: {new_directory}") from exc
            except Exception as exc:
                raise WorkerError(f"Import worker failed to join\n\n{exc!r}") from exc

    def install(self, ini_path: Path, layout: AppLayout = APP_LAYOUT) -> RegMod:
        """Copy every planned file and register the mod as enabled."""
        try:
            pairs = self.zip_from_to_paths()
            taken = [to for _, to in pairs if to.exists()]
            if taken:
                raise InvalidInputError(
                    f"Could not install: {self.name}.\nA selected file is already installed: "
                    f"{', '.join(str(p) for p in taken)}"
                )
            for from_path, to_path in pairs:
                to_path.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(from_path, to_path)
                log.debug("Copied %s -> %s", from_path, to_path)
        finally:
            self.cleanup()

        game_dir = self.install_dir.parent
        reg_mod = RegMod.new(self.name, True, [to.relative_to(game_dir) for _, to in pairs])
        if any(is_disabled(p) for p in reg_mod.files.dll):
            reg_mod.state = False
        reg_mod.write_to_file(ini_path, False, layout)
        log.info("Installed mod: %s", reg_mod.display_name)
        app_log(f"Installed mod: {reg_mod.display_name}")
        return reg_mod


def _import_worker(data: InstallData, new_directory: Path, cutoff: int | None) -> InstallData:
    data.collect_to_paths()
    valid_dir = check_dir_contains_files(new_directory)

    if _is_relative_to(valid_dir, data.install_dir):
        raise InvalidInputError(f"{valid_dir} is already installed")
    if (valid_dir / MODS_DIR).is_dir():
        raise InvalidDataError("Invalid file structure")

    if _is_relative_to(data.parent_dir, valid_dir):
        log.debug("Selected directory contains the original files, reconstructing data")
        data = InstallData.reconstruct(data.name, data.install_dir, valid_dir)
    elif _is_relative_to(valid_dir, data.parent_dir):
        log.debug("New directory is inside the original source, entire folder will be moved")
        if valid_dir.name == MODS_DIR and items_in_directory(valid_dir.parent, FileType.FILE) > 0:
            raise InvalidDataError("Invalid file structure")
        data.parent_dir = valid_dir.parent
    else:
        log.debug("New directory contains unique files, entire folder will be moved")
        if _mods_ancestor_with_files(valid_dir):
            raise InvalidDataError("Invalid file structure")
        if (items_in_directory(valid_dir, FileType.DIR) == 0
                and items_in_directory(valid_dir, FileType.FILE) > 1):
            data.parent_dir = valid_dir.parent
        else:
            data.parent_dir = valid_dir

    preview = data.format_entries(valid_dir, cutoff)
    data.display_paths = "\n".join(filter(None, [data.display_paths, *preview]))
    data.collect_to_paths()
    return data


# ---------------------------------------------------------------------------
# Removal / scan
# ---------------------------------------------------------------------------

def remove_mod_files(game_dir: Path, files: list[Path]) -> None:
    """Delete files (short paths) and every directory they leave empty.

    Files that no longer exist are skipped. <game_dir>/mods and game_dir are
    never removed.
    """
    game_dir = Path(game_dir)
    remove_files = []
    for f in files:
        full = game_dir / f
        if full.is_file():
            remove_files.append(full)
        else:
            log.debug("%s no longer exists, skipping", f)

    parent_dirs: set[Path] = set()
    for full in remove_files:
        for directory in full.parents:
            if directory == game_dir or not _is_relative_to(directory, game_dir):
                break
            if directory.name == MODS_DIR:
                continue
            parent_dirs.add(directory)

    for full in remove_files:
        try:
            full.unlink()
        except OSError as exc:
            raise wrap_os_error(exc, f"Could not remove: {full}") from exc

    for directory in sorted(parent_dirs, key=lambda d: len(d.parts), reverse=True):
        if directory.is_dir() and items_in_directory(directory, FileType.ANY) == 0:
            directory.rmdir()
            log.debug("Removed empty directory: %s", directory)


def uninstall_mod(game_dir: Path, reg_mod: RegMod, ini_path: Path, loader_cfg=None,
                  layout: AppLayout = APP_LAYOUT) -> None:
    """Deregister reg_mod, delete its files and its load order entry."""
    reg_mod.remove_from_file(ini_path, layout=layout)
    remove_mod_files(game_dir, reg_mod.files.file_refs())
    if loader_cfg is not None and reg_mod.order.set:
        key = omit_off_state(reg_mod.files.dll[reg_mod.order.i].name)
        loader_cfg.remove_order(key)
    log.info("Uninstalled mod: %s", reg_mod.display_name)


def scan_for_mods(game_dir: Path, ini_path: Path, layout: AppLayout = APP_LAYOUT) -> list[RegMod]:
    """Register every dll found directly in <game_dir>/mods.

    A directory named like the dll (without extension) is taken to hold
    the mod's other files, as are loose files sharing its stem. Names that
    are already registered are skipped.
    """
    game_dir = Path(game_dir)
    scan_dir = game_dir / MODS_DIR
    with os.scandir(scan_dir) as it:
        entries = sorted(it, key=lambda e: e.name)
    loose = [Path(e.path) for e in entries if e.is_file()]
    dirs = {e.name: Path(e.path) for e in entries if e.is_dir()}

    registered = ini_store.Ini.load(ini_path).section(layout.mod_state)
    found: list[RegMod] = []
    for dll in (f for f in loose if file_extension(f) == ".dll"):
        stem = Path(omit_off_state(dll.name)).stem
        files = [dll]
        files.extend(f for f in loose if f != dll and Path(omit_off_state(f.name)).stem == stem
                     and file_extension(f) != ".dll")
        if stem in dirs:
            files.extend(walk_files(dirs[stem]))
        reg_mod = RegMod.new(stem, not is_disabled(dll),
                             [f.relative_to(game_dir) for f in files])
        if ((registered is not None and reg_mod.name in registered)
                or any(m.name == reg_mod.name for m in found)):
            log.info("%s is already registered, skipping", reg_mod.display_name)
            continue
        reg_mod.write_to_file(ini_path, False, layout)
        reg_mod.verify_state(game_dir, ini_path)
        found.append(reg_mod)
    log.info("Found %d mod(s)", len(found))
    app_log(f"Found {len(found)} mod(s)")
    return found
