"""
Shared fixtures for ModRegistry tests.

Every test works on a throw-away game directory under tmp_path:

  game/
    eldenring.exe, oo2core_6_win64.dll, eossdk-win64-shipping.dll
    mods/
  cfg/EML_gui_config.ini
"""

from pathlib import Path

import pytest

from ModRegistry.cfg import Cfg
from ModRegistry.constants import LOADER_DLL, REQUIRED_GAME_FILES
from ModRegistry.ini_store import Ini
from ModRegistry.reg_mod import RegMod


def touch(path: Path, text: str = "") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path


def read_text(path: Path) -> str:
    with open(path, "r", encoding="utf-8", newline="") as fh:
        return fh.read()


def write_ini(path: Path, text: str) -> Path:
    """Write ini text with CRLF line endings, as the app does."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8", newline="") as fh:
        fh.write(text.replace("\n", "\r\n"))
    return path


# ─── Game directory ─────────────────────────────────────────────────────────

@pytest.fixture
def game_dir(tmp_path):
    """A game directory holding the required game files and an empty mods/."""
    root = tmp_path / "game"
    for name in REQUIRED_GAME_FILES:
        touch(root / name)
    (root / "mods").mkdir()
    return root


@pytest.fixture
def loader_game_dir(game_dir):
    """game_dir with the mod loader installed and enabled."""
    touch(game_dir / LOADER_DLL)
    return game_dir


# ─── App config ─────────────────────────────────────────────────────────────

@pytest.fixture
def ini_path(tmp_path):
    return tmp_path / "cfg" / "EML_gui_config.ini"


@pytest.fixture
def cfg(ini_path):
    """A freshly created app config with every section and default settings."""
    return Cfg.read(ini_path)


@pytest.fixture
def register(ini_path, cfg):
    """register(name, state, files, create=True) saves a mod and (optionally) its files."""
    def _register(name, state, files, game_dir=None, create=True):
        reg_mod = RegMod.new(name, state, [Path(f) for f in files])
        if create and game_dir is not None:
            for f in files:
                touch(game_dir / f)
        reg_mod.write_to_file(ini_path, False)
        cfg.update()
        return reg_mod
    return _register


def load(path: Path) -> Ini:
    return Ini.load(path)
