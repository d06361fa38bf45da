"""Testes para Options e ConfigManager."""

import json

import pytest

from romcurator.common.exceptions import ConfigurationError
from romcurator.core.config_manager import ConfigManager
from romcurator.core.models import DAT, ROM, Disk
from romcurator.core.options import FixExtension, LinkMode, MergeMode, Options


class TestOptions:
    """Predicados de comandos."""

    def test_write_string_precedence(self):
        assert Options(commands=("link", "copy")).write_string() == "copy"
        assert Options(commands=("move", "zip")).write_string() == "move"
        assert Options(commands=("test",)).write_string() is None
        assert not Options(commands=("test",)).should_write()

    def test_commands_are_normalized(self):
        options = Options(commands=("COPY", "Zip"))
        assert options.commands == ("copy", "zip")
        assert options.should_copy() and options.should_zip()

    def test_unknown_command(self):
        with pytest.raises(ConfigurationError):
            Options(commands=("shred",))

    def test_invalid_numbers(self):
        with pytest.raises(ConfigurationError):
            Options(write_retry=-1)
        with pytest.raises(ConfigurationError):
            Options(writer_threads=0)

    def test_zip_exclude(self):
        options = Options(commands=("copy", "zip"), zip_exclude="*.iso")
        assert options.should_zip_rom(ROM("game.bin", 1))
        assert not options.should_zip_rom(ROM("dir/game.iso", 1))
        assert not options.should_zip_rom(Disk("game", 1))

    def test_disks_are_never_extracted(self):
        options = Options(commands=("copy", "extract"))
        assert options.should_extract_rom(ROM("game.bin", 1))
        assert not options.should_extract_rom(Disk("game", 1))

    def test_can_remove_header(self):
        plain = DAT(name="Nintendo - NES")
        assert not Options().can_remove_header(plain, ".nes")
        assert Options(remove_headers=("",)).can_remove_header(plain, ".nes")
        assert Options(remove_headers=(".NES",)).can_remove_header(plain, ".nes")
        assert not Options(remove_headers=(".lnx",)).can_remove_header(plain, ".nes")

        assert Options().can_remove_header(DAT(name="Nintendo - NES (Headerless)"), ".nes")
        assert not Options(remove_headers=("",)).can_remove_header(
            DAT(name="Nintendo - NES (Headered)"), ".nes"
        )


class TestFromMapping:
    def test_enums_from_strings(self):
        options = Options.from_mapping(
            {"link_mode": "SYMLINK", "merge_roms": "split", "fix_extension": "always"}
        )
        assert options.link_mode == LinkMode.SYMLINK
        assert options.merge_roms == MergeMode.SPLIT
        assert options.fix_extension == FixExtension.ALWAYS

    def test_invalid_enum(self):
        with pytest.raises(ConfigurationError) as exc:
            Options.from_mapping({"link_mode": "wormhole"})
        assert "hardlink" in str(exc.value)

    def test_unknown_keys_are_kept_aside(self):
        options = Options.from_mapping({"commands": "copy", "theme": "dark", "output": None})
        assert options.commands == ("copy",)
        assert options.extra == {"theme": "dark"}
        assert options.output == Options().output


class TestConfigManager:
    """Persistência JSON das opções."""

    def test_defaults_without_file(self, tmp_path):
        manager = ConfigManager(tmp_path / "missing.json")
        assert manager.get("link_mode") == "hardlink"
        assert manager.to_options() == Options()

    def test_save_and_reload(self, tmp_path):
        path = tmp_path / "settings.json"
        manager = ConfigManager(path)
        manager.set("output", "/roms/{datName}")
        manager.set("write_retry", 5)
        assert manager.save() is True

        reloaded = ConfigManager(path)
        assert reloaded.get("output") == "/roms/{datName}"
        assert reloaded.to_options().write_retry == 5

    def test_overrides_skip_none(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"output": "/stored"}), encoding="utf-8")
        manager = ConfigManager(path)

        options = manager.to_options(output=None, commands=("copy",))
        assert options.output == "/stored"
        assert options.commands == ("copy",)

    def test_corrupt_file_is_ignored(self, tmp_path, caplog):
        path = tmp_path / "settings.json"
        path.write_text("{not json", encoding="utf-8")

        manager = ConfigManager(path)
        assert manager.get("output") == Options().output
        assert "Ignoring unreadable settings file" in caplog.text

    def test_non_object_is_ignored(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text("[1, 2]", encoding="utf-8")
        assert ConfigManager(path).get("merge_roms") == "fullnonmerged"

    def test_save_failure_returns_false(self, tmp_path):
        manager = ConfigManager(tmp_path / "no" / "such" / "dir.json")
        assert manager.save() is False
