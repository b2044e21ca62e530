"""
Tests for cfg.py and collector.py — reading, reconciling and repairing the
registered mods saved in the app config.
"""

from pathlib import Path

import pytest

from ModRegistry.cfg import Cfg
from ModRegistry.collector import sync_keys
from ModRegistry.constants import INVALID_FILE_MARKER
from ModRegistry.errors import InvalidDataError, InvalidInputError, MergedError, NotFoundError
from ModRegistry.ini_store import Properties

from conftest import load, read_text, touch, write_ini

SETTINGS = "[app-settings]\ndark_mode=true\nsave_log=true\n[paths]\n"


def write_app(cfg: Cfg, states: str, files: str) -> None:
    """Overwrite the app config with the given mod sections and reload it."""
    write_ini(cfg.path, f"{SETTINGS}[registered-mods]\n{states}[mod-files]\n{files}")
    cfg.update()


def mod_names(collected):
    return [m.name for m in collected.mods]


# ─── sync_keys ──────────────────────────────────────────────────────────────

class TestSyncKeys:
    def test_removes_keys_found_in_one_section(self, cfg):
        write_app(
            cfg,
            "a=true\nstate_only=false\n",
            "a=mods/a.dll\nfiles_only=array\narray[]=mods/f.dll\narray[]=mods/f.ini\n",
        )

        state_map, file_map = sync_keys(cfg)

        assert state_map == {"a": "true"}
        assert file_map == {"a": ["mods/a.dll"]}
        ini = load(cfg.path)
        assert ini.section("registered-mods").keys() == ["a"]
        assert list(ini.section("mod-files")) == [("a", "mods/a.dll")]

    def test_second_pass_changes_nothing(self, cfg):
        write_app(cfg, "a=true\nb=true\n", "a=mods/a.dll\n")
        sync_keys(cfg)
        text = read_text(cfg.path)

        state_map, file_map = sync_keys(cfg)

        assert read_text(cfg.path) == text
        assert set(state_map) == set(file_map) == {"a"}

    def test_missing_section(self, cfg):
        write_ini(cfg.path, "[registered-mods]\n")
        cfg.data = load(cfg.path)
        with pytest.raises(InvalidDataError):
            sync_keys(cfg)


# ─── collect_mods ───────────────────────────────────────────────────────────

class TestCollectMods:
    def test_empty(self, cfg, game_dir):
        collected = cfg.collect_mods(game_dir)
        assert collected.mods == []
        assert collected.warnings is None

    def test_reads_single_and_array(self, cfg, game_dir):
        touch(game_dir / "mods/a.dll")
        touch(game_dir / "mods/b.dll.disabled")
        touch(game_dir / "mods/b/config.ini")
        touch(game_dir / "mods/b/data.txt")
        write_app(
            cfg,
            "a=true\nb=false\n",
            "a=mods/a.dll\n"
            "b=array\narray[]=mods/b.dll.disabled\narray[]=mods/b/config.ini\narray[]=mods/b/data.txt\n",
        )

        collected = cfg.collect_mods(game_dir)

        assert collected.warnings is None
        a, b = collected.mods
        assert (a.name, a.state, a.files.dll) == ("a", True, [Path("mods/a.dll")])
        assert b.state is False
        assert b.files.config == [Path("mods/b/config.ini")]
        assert b.files.other == [Path("mods/b/data.txt")]

    def test_bad_state_defaults_to_enabled(self, cfg, game_dir):
        touch(game_dir / "mods/a.dll")
        write_app(cfg, "a=maybe\n", "a=mods/a.dll\n")

        collected = cfg.collect_mods(game_dir)

        assert collected.mods[0].state is True
        assert load(cfg.path).get_from("registered-mods", "a") == "true"

    def test_sorted_by_order_then_name(self, cfg, game_dir):
        for name in ("a", "b", "c", "d"):
            touch(game_dir / f"mods/{name}.dll")
        write_app(
            cfg,
            "d=true\nc=true\nb=true\na=true\n",
            "d=mods/d.dll\nc=mods/c.dll\nb=mods/b.dll\na=mods/a.dll\n",
        )

        collected = cfg.collect_mods(game_dir, {"b.dll": 0, "a.dll": 1})

        assert mod_names(collected) == ["b", "a", "c", "d"]
        assert collected.mods[0].order.set and collected.mods[0].order.at == 0
        assert not collected.mods[2].order.set

    def test_state_mismatch_on_disk_is_fixed(self, cfg, game_dir):
        touch(game_dir / "mods/a.dll")
        write_app(cfg, "a=false\n", "a=mods/a.dll\n")

        collected = cfg.collect_mods(game_dir)

        assert collected.mods[0].files.dll == [Path("mods/a.dll.disabled")]
        assert (game_dir / "mods/a.dll.disabled").is_file()

    def test_missing_config_file_is_dropped(self, cfg, game_dir):
        touch(game_dir / "mods/m.dll")
        write_app(
            cfg,
            "m=true\n",
            "m=array\narray[]=mods/m.dll\narray[]=mods/m/config.ini\n",
        )

        collected = cfg.collect_mods(game_dir)

        assert mod_names(collected) == ["m"]
        assert collected.mods[0].files.config == []
        assert isinstance(collected.warnings, NotFoundError)
        assert "config.ini" in str(collected.warnings)
        assert "was removed" in str(collected.warnings)
        # two files became one, so the entry is no longer an array
        assert list(load(cfg.path).section("mod-files")) == [("m", "mods/m.dll")]

    def test_missing_dll_drops_mod(self, cfg, game_dir):
        touch(game_dir / "mods/kept.dll")
        write_app(
            cfg,
            "gone=true\nkept=true\n",
            "gone=array\narray[]=mods/gone.dll\narray[]=mods/gone.ini\nkept=mods/kept.dll\n",
        )

        collected = cfg.collect_mods(game_dir)

        assert mod_names(collected) == ["kept"]
        assert isinstance(collected.warnings, NotFoundError)
        ini = load(cfg.path)
        assert ini.section("registered-mods").keys() == ["kept"]
        assert list(ini.section("mod-files")) == [("kept", "mods/kept.dll")]

    def test_several_warnings_are_merged(self, cfg, game_dir):
        write_app(cfg, "x=true\ny=true\n", "x=mods/x.dll\ny=mods/y.dll\n")

        collected = cfg.collect_mods(game_dir)

        assert collected.mods == []
        assert isinstance(collected.warnings, MergedError)
        assert len(collected.warnings.errors) == 2

    def test_second_collection_is_clean(self, cfg, game_dir):
        touch(game_dir / "mods/a.dll")
        write_app(cfg, "a=false\nb=true\n", "a=mods/a.dll\n")
        cfg.collect_mods(game_dir)
        cfg.update()
        text = read_text(cfg.path)

        collected = cfg.collect_mods(game_dir)

        assert collected.warnings is None
        assert read_text(cfg.path) == text

    def test_saved_mods_round_trip(self, cfg, game_dir, register):
        register("One", True, ["mods/one.dll"], game_dir)
        register("Two", False, ["mods/two.dll.disabled", "mods/two/two.ini"], game_dir)

        collected = cfg.collect_mods(game_dir)

        assert mod_names(collected) == ["One", "Two"]
        assert collected.mods[1].files.file_refs() == [
            Path("mods/two.dll.disabled"), Path("mods/two/two.ini")
        ]

    def test_skip_validation_does_not_touch_disk(self, cfg, game_dir):
        write_app(cfg, "a=nonsense\n", "a=mods/a.dll\nb=mods/b.dll\n")
        text = read_text(cfg.path)

        collected = cfg.collect_mods(game_dir, skip_validation=True)

        assert mod_names(collected) == ["a", "b"]
        assert collected.mods[0].state is True
        assert read_text(cfg.path) == text


# ─── Cfg ────────────────────────────────────────────────────────────────────

class TestCfg:
    def test_read_creates_file(self, ini_path):
        cfg = Cfg.read(ini_path)
        assert ini_path.is_file()
        assert cfg.mods_is_empty()
        assert cfg.mods_registered() == 0

    def test_read_keeps_mods_when_a_line_is_malformed(self, ini_path, game_dir, register):
        register("a", True, ["mods/a.dll"], game_dir)
        with open(ini_path, "a", encoding="utf-8", newline="") as fh:
            fh.write("oops stray line\r\n")

        with pytest.raises(InvalidDataError, match="oops stray line"):
            Cfg.read(ini_path)

        text = read_text(ini_path)
        assert "a=true\r\n" in text
        assert "a=mods/a.dll\r\n" in text

    def test_get_mod(self, cfg, game_dir, register):
        register("My_Mod", False, ["mods/m.dll.disabled", "mods/m.ini"], game_dir)

        reg_mod = cfg.get_mod("My Mod", game_dir, {"m.dll": 3})

        assert reg_mod.name == "My_Mod"
        assert reg_mod.state is False
        assert reg_mod.order.set and reg_mod.order.at == 3
        assert reg_mod.display_name == "My Mod"

    def test_get_mod_unknown(self, cfg, game_dir):
        with pytest.raises(InvalidInputError):
            cfg.get_mod("ghost", game_dir)

    def test_keys_and_files(self, cfg, game_dir, register):
        register("Alpha", True, ["mods/a.dll"], game_dir)
        register("Beta", True, ["mods/b.dll", "mods/b/b.ini"], game_dir)
        assert cfg.keys() == {"alpha", "beta"}
        assert cfg.files() == {"mods/a.dll", "mods/b.dll", "mods/b/b.ini"}
        assert cfg.mods_registered() == 2

    def test_keys_reconciles_extra_file_entries(self, cfg):
        write_app(cfg, "a=true\n", "a=mods/a.dll\nextra=mods/e.dll\n")
        assert cfg.keys() == {"a"}
        assert load(cfg.path).get_from("mod-files", "extra") is None

    def test_dll_set_order_count(self, cfg, register):
        register("m", True, ["mods/m.dll", "mods/m2.dll.disabled", "mods/m/config.ini"])
        register("n", True, ["mods/n.dll"])
        loader_section = Properties([("m.dll", "0"), ("m2.dll", "1"), ("other.dll", "2")])

        dll_set, count, removed = cfg.dll_set_order_count(loader_section)

        assert dll_set == {"m.dll", "m2.dll", "n.dll"}
        assert count == 1
        assert removed is True
        assert loader_section.keys() == ["m.dll", "other.dll"]

    def test_validate_entries(self, cfg):
        write_app(
            cfg,
            "a=true\na=false\nb=maybe\n",
            "array[]=mods/orphan.dll\na=mods/a.dll\nb=mods/bfolder\n",
        )

        messages = cfg.validate_entries()

        assert len(messages) == 4
        states = cfg.data.section("registered-mods")
        assert list(states) == [("a", "true"), ("b", "true")]
        assert list(cfg.data.section("mod-files")) == [
            ("a", "mods/a.dll"),
            ("b", f"mods/bfolder{INVALID_FILE_MARKER}"),
        ]

    def test_bad_setting_is_reset(self, cfg):
        write_ini(cfg.path, SETTINGS.replace("dark_mode=true", "dark_mode=maybe")
                  + "[registered-mods]\n[mod-files]\n")
        cfg.update()

        with pytest.raises(InvalidDataError, match="Reset: dark_mode, to: true"):
            cfg.get_dark_mode()

        assert load(cfg.path).get_from("app-settings", "dark_mode") == "true"
        assert cfg.get_dark_mode() is True

    def test_missing_setting_is_reset(self, cfg):
        write_ini(cfg.path, "[app-settings]\n[paths]\n[registered-mods]\n[mod-files]\n")
        cfg.update()
        with pytest.raises(NotFoundError):
            cfg.get_save_log()
        assert cfg.get_save_log() is True

    def test_game_dir(self, cfg, game_dir, tmp_path):
        with pytest.raises(NotFoundError):
            cfg.get_game_dir()

        cfg.set_game_dir(game_dir)
        assert cfg.get_game_dir() == game_dir
        assert Cfg.read(cfg.path).get_game_dir() == game_dir

        empty = tmp_path / "not_the_game"
        empty.mkdir()
        cfg.set_game_dir(empty)
        with pytest.raises(NotFoundError, match="eldenring.exe"):
            cfg.get_game_dir()
