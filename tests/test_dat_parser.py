"""Testes para o parser de DATs (Logiqx XML e ClrMamePro)."""

import pytest

from romcurator.common.exceptions import DATParseError
from romcurator.verification.dat_parser import parse_dat_file

XML_DAT = """<?xml version="1.0"?>
<datafile>
    <header>
        <name>Nintendo - Nintendo Entertainment System (Headered)</name>
        <description>NES test set</description>
        <clrmamepro header="No-Intro_NES.xml"/>
    </header>
    <game name="Game (USA)">
        <description>Game (USA)</description>
        <release name="Game" region="USA" language="en"/>
        <rom name="Game (USA).nes" size="40976" crc="ABCD1234" md5="D41D8CD98F00B204E9800998ECF8427E"/>
    </game>
    <game name="Game (Europe)" cloneof="Game (USA)" romof="Game (USA)">
        <rom name="Game (Europe).nes" size="0x10" crc="1234"/>
    </game>
    <machine name="[BIOS] Console" isbios="yes">
        <rom name="bios.bin" size="4" crc="00000001"/>
        <device_ref name="cpu"/>
        <category>Demos</category>
    </machine>
</datafile>
"""

CMP_DAT = """clrmamepro (
    name "Sega - Game Gear"
    description "Sega - Game Gear (20240101)"
)

game (
    name "Puzzle (Japan)"
    description "Puzzle (Japan)"
    rom ( name "Puzzle (Japan).gg" size 131072 crc 0A1B2C3D sha1 AAAA )
)

game (
    name "Puzzle (World) (Rev 1)"
    cloneof "Puzzle (Japan)"
    release ( name "Puzzle" region EUR )
    rom ( name "Disc (Track 1).bin" size 10 crc 11111111 )
    rom ( name "Disc (Track 2).bin" size 20 crc 22222222 flags baddump )
)

resource (
    name "bios"
    rom ( name "bios.gg" size 1 crc 33333333 )
)
"""


class TestXMLDat:
    def test_header(self, tmp_path):
        path = tmp_path / "nes.dat"
        path.write_text(XML_DAT, encoding="utf-8")

        dat = parse_dat_file(path)
        assert dat.name == "Nintendo - Nintendo Entertainment System (Headered)"
        assert dat.description == "NES test set"
        assert dat.header == "No-Intro_NES.xml"

    def test_games_and_parents(self, tmp_path):
        path = tmp_path / "nes.dat"
        path.write_text(XML_DAT, encoding="utf-8")

        dat = parse_dat_file(path)
        assert [p.name for p in dat.parents] == ["Game (USA)", "[BIOS] Console"]
        assert [g.name for g in dat.parents[0].games] == ["Game (USA)", "Game (Europe)"]

        game = dat.game_by_name("Game (USA)")
        rom = game.roms[0]
        assert rom.size == 40976
        assert rom.crc32 == "abcd1234"
        assert rom.md5 == "d41d8cd98f00b204e9800998ecf8427e"
        assert game.releases[0].region == "USA"

        clone = dat.game_by_name("Game (Europe)")
        assert clone.clone_of == "Game (USA)"
        assert clone.roms[0].size == 16
        assert clone.roms[0].crc32 == "00001234"

    def test_machine_attributes(self, tmp_path):
        path = tmp_path / "mame.xml"
        path.write_text(XML_DAT, encoding="utf-8")

        bios = parse_dat_file(path).game_by_name("[BIOS] Console")
        assert bios.bios is True
        assert bios.device_refs == ("cpu",)
        assert bios.categories == ("Demos",)

    def test_malformed_xml(self, tmp_path):
        path = tmp_path / "broken.dat"
        path.write_text("<?xml version='1.0'?><datafile><game>", encoding="utf-8")

        with pytest.raises(DATParseError):
            parse_dat_file(path)


class TestClrMameProDat:
    def test_header_and_games(self, tmp_path):
        path = tmp_path / "gg.dat"
        path.write_text(CMP_DAT, encoding="utf-8")

        dat = parse_dat_file(path)
        assert dat.name == "Sega - Game Gear"
        assert dat.description == "Sega - Game Gear (20240101)"
        assert [g.name for g in dat.games()] == [
            "Puzzle (Japan)",
            "Puzzle (World) (Rev 1)",
            "bios",
        ]

    def test_nested_blocks(self, tmp_path):
        path = tmp_path / "gg.dat"
        path.write_text(CMP_DAT, encoding="utf-8")

        dat = parse_dat_file(path)
        japan = dat.game_by_name("Puzzle (Japan)")
        assert japan.roms[0].name == "Puzzle (Japan).gg"
        assert japan.roms[0].size == 131072
        assert japan.roms[0].sha1 == "aaaa"

        world = dat.game_by_name("Puzzle (World) (Rev 1)")
        assert world.clone_of == "Puzzle (Japan)"
        assert [r.name for r in world.roms] == ["Disc (Track 1).bin", "Disc (Track 2).bin"]
        assert world.roms[1].status == "baddump"
        assert world.releases[0].region == "EUR"
        # Only the game's own name, not a nested rom name
        assert world.name == "Puzzle (World) (Rev 1)"


class TestErrors:
    def test_missing_file(self, tmp_path):
        with pytest.raises(DATParseError):
            parse_dat_file(tmp_path / "missing.dat")

    def test_no_games(self, tmp_path):
        path = tmp_path / "empty.dat"
        path.write_text('clrmamepro (\n    name "Empty"\n)\n', encoding="utf-8")

        with pytest.raises(DATParseError) as exc:
            parse_dat_file(path)
        assert "no games" in str(exc.value)
