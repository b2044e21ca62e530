"""
Tests for the command line entry point (python -m ModRegistry).
"""

import logging
import sys

import pytest

from ModRegistry.__main__ import main
from ModRegistry.app_log import clear_app_log
from ModRegistry.constants import LOADER_CONFIG

from conftest import load, touch


@pytest.fixture
def run(ini_path, monkeypatch):
    """run(*args) invokes main() against the test config."""
    root = logging.getLogger()
    handlers = list(root.handlers)

    def _run(*args):
        monkeypatch.setattr(sys, "argv", ["mod-registry", "--ini", str(ini_path), *map(str, args)])
        main()

    yield _run
    for handler in root.handlers[:]:
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    clear_app_log()


class TestCli:
    def test_list_empty(self, run, game_dir, ini_path, capsys):
        run("--game-dir", game_dir, "list")
        assert "No mods registered" in capsys.readouterr().out
        assert load(ini_path).get_from("paths", "game_dir") == str(game_dir.resolve())

    def test_list_and_toggle(self, run, game_dir, register, capsys):
        register("My_Mod", True, ["mods/m.dll"], game_dir)
        run("--game-dir", game_dir, "toggle", "My Mod", "off")
        assert (game_dir / "mods/m.dll.disabled").is_file()

        run("list")
        out = capsys.readouterr().out
        assert "[off] My Mod" in out
        assert "order: not set" in out

    def test_unknown_mod_exits(self, run, game_dir, capsys):
        with pytest.raises(SystemExit) as info:
            run("--game-dir", game_dir, "toggle", "ghost", "on")
        assert info.value.code == 1
        assert "Error: No registered mod named: ghost" in capsys.readouterr().err

    def test_order(self, run, loader_game_dir, register):
        register("a", True, ["mods/a.dll"], loader_game_dir)
        register("b", True, ["mods/b.dll"], loader_game_dir)

        run("--game-dir", loader_game_dir, "order", "b", "1")
        run("order", "a", "1")

        order = list(load(loader_game_dir / LOADER_CONFIG).section("loadorder"))
        assert order == [("a.dll", "0"), ("b.dll", "1")]

        run("order", "a", "off")
        order = list(load(loader_game_dir / LOADER_CONFIG).section("loadorder"))
        # lowest remaining value was 1, numbering keeps starting there
        assert order == [("b.dll", "1")]

    def test_install_and_uninstall(self, run, game_dir, tmp_path, ini_path):
        touch(tmp_path / "dl" / "x.dll")
        touch(tmp_path / "dl" / "x" / "x.ini")

        run("--game-dir", game_dir, "install", "X Mod", tmp_path / "dl")
        assert (game_dir / "mods/x.dll").is_file()
        assert load(ini_path).get_from("registered-mods", "X_Mod") == "true"

        run("uninstall", "X Mod")
        assert not (game_dir / "mods/x.dll").exists()
        assert load(ini_path).get_from("registered-mods", "X_Mod") is None

    def test_scan(self, run, game_dir, ini_path):
        touch(game_dir / "mods/found.dll")
        run("--game-dir", game_dir, "scan")
        assert load(ini_path).get_from("mod-files", "found") == "mods/found.dll"
