"""Identity rule between DAT ROMs and scanned files."""

from romcurator.core.models import ROM
from romcurator.files.file import File
from romcurator.files.headers import ROMHeader


class TestROMMatches:
    def test_same_size_and_crc(self):
        rom = ROM("game.bin", 4, crc32="ABCDEF90")
        assert rom.matches(File("/in/game.bin", size=4, crc32="abcdef90"))

    def test_crc_mismatch(self):
        rom = ROM("game.bin", 4, crc32="abcdef90")
        assert not rom.matches(File("/in/game.bin", size=4, crc32="09876543"))

    def test_size_mismatch(self):
        rom = ROM("game.bin", 4, crc32="abcdef90")
        assert not rom.matches(File("/in/game.bin", size=5, crc32="abcdef90"))

    def test_checksum_missing_on_one_side_is_not_a_mismatch(self):
        rom = ROM("game.bin", 4, crc32="abcdef90", sha1="a" * 40)
        assert rom.matches(File("/in/game.bin", size=4, crc32="abcdef90"))

    def test_size_only_when_no_algorithms_overlap(self):
        rom = ROM("game.bin", 4, sha1="a" * 40)
        assert rom.matches(File("/in/game.bin", size=4, crc32="abcdef90"))

    def test_stronger_checksum_mismatch_wins_over_crc(self):
        rom = ROM("game.bin", 4, crc32="abcdef90", md5="0" * 32)
        file = File("/in/game.bin", size=4, crc32="abcdef90", md5="1" * 32)
        assert not rom.matches(file)

    def test_headered_file_matches_through_headerless_checksums(self):
        header = ROMHeader.header_from_filename("game.nes")
        file = File(
            "/in/game.nes",
            size=32,
            crc32="11111111",
            size_without_header=16,
            crc32_without_header="22222222",
            file_header=header,
        )
        assert ROM("game.nes", 16, crc32="22222222").matches(file)
        assert ROM("game.nes", 32, crc32="11111111").matches(file)
        assert not ROM("game.nes", 16, crc32="11111111").matches(file)

    def test_crc32_is_zero_padded(self):
        assert ROM("x", 1, crc32="1234").crc32 == "00001234"
