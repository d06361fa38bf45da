"""Tests for input discovery and hashing."""

import asyncio

import py7zr

from romcurator.core.models import ROM, Game
from romcurator.core.scanner import Scanner, required_checksum_bitmask
from romcurator.files.archives import SevenZip, Zip
from romcurator.files.file import ArchiveEntry, File
from romcurator.files.patches import IPSPatch
from romcurator.verification.hasher import ChecksumBitmask
from tests.helpers import crc, make_dat, write_zip


class TestFindPaths:
    def test_recurses_sorted_and_skips_hidden(self, tmp_path):
        (tmp_path / "b").mkdir()
        (tmp_path / "b" / "two.bin").write_bytes(b"2")
        (tmp_path / "one.bin").write_bytes(b"1")
        (tmp_path / ".hidden").write_bytes(b"h")

        found = Scanner().find_paths([tmp_path])
        assert [p.name for p in found] == ["two.bin", "one.bin"]

    def test_duplicates_collapse(self, tmp_path):
        rom = tmp_path / "one.bin"
        rom.write_bytes(b"1")

        assert Scanner().find_paths([rom, tmp_path, str(rom)]) == [rom]

    def test_missing_path_is_logged(self, tmp_path, caplog):
        assert Scanner().find_paths([tmp_path / "nowhere"]) == []
        assert "Input path not found" in caplog.text


class TestScanFiles:
    def test_plain_files_and_zip_entries(self, tmp_path):
        (tmp_path / "game.bin").write_bytes(b"plain")
        write_zip(tmp_path / "set.zip", {"a.bin": b"aaa", "dir/b.bin": b"bbbb"})

        files = asyncio.run(Scanner().scan_files([tmp_path]))

        plain = [f for f in files if not isinstance(f, ArchiveEntry)]
        entries = sorted((f for f in files if isinstance(f, ArchiveEntry)), key=lambda f: f.entry_path)
        assert [(f.size, f.crc32) for f in plain] == [(5, crc(b"plain"))]
        assert [e.entry_path for e in entries] == ["a.bin", "dir/b.bin"]
        assert entries[1].crc32 == crc(b"bbbb")
        assert entries[0].archive == Zip(tmp_path / "set.zip")

    def test_seven_zip_entries(self, tmp_path):
        path = tmp_path / "set.7z"
        with py7zr.SevenZipFile(path, "w") as archive:
            archive.writestr(b"seven", "game.bin")

        files = asyncio.run(Scanner().scan_files([path]))
        assert len(files) == 1
        assert files[0].archive == SevenZip(path)
        assert files[0].entry_path == "game.bin"
        assert files[0].crc32 == crc(b"seven")

    def test_extra_checksums_are_computed(self, tmp_path):
        (tmp_path / "game.bin").write_bytes(b"123456789")

        scanner = Scanner(ChecksumBitmask.CRC32 | ChecksumBitmask.SHA1)
        (file,) = asyncio.run(scanner.scan_files([tmp_path]))
        assert file.sha1 == "f7c3bc1d808e04732adf679965ccc34ca7ae3441"
        assert file.md5 is None

    def test_broken_zip_is_hashed_as_a_file(self, tmp_path, caplog):
        (tmp_path / "broken.zip").write_bytes(b"not a zip")

        (file,) = asyncio.run(Scanner().scan_files([tmp_path]))
        assert type(file) is File
        assert file.crc32 == crc(b"not a zip")
        assert "Could not read archive" in caplog.text

    def test_patches_are_not_inputs(self, tmp_path):
        (tmp_path / "game.bin").write_bytes(b"rom")
        (tmp_path / "Game Hack [0badc0de].ips").write_bytes(b"PATCHEOF")

        files = asyncio.run(Scanner().scan_files([tmp_path]))
        assert [f.file_path for f in files] == [str(tmp_path / "game.bin")]


def test_scan_patches(tmp_path):
    (tmp_path / "Game Hack [0badc0de].ips").write_bytes(b"PATCHEOF")
    (tmp_path / "no crc.ips").write_bytes(b"PATCHEOF")
    (tmp_path / "game.bin").write_bytes(b"rom")

    patches = asyncio.run(Scanner().scan_patches([tmp_path]))
    assert len(patches) == 1
    assert isinstance(patches[0], IPSPatch)
    assert patches[0].crc_before == "0badc0de"


class TestRequiredChecksumBitmask:
    def test_crc_only(self):
        dat = make_dat([Game(name="g", roms=(ROM("g.bin", 1, crc32="00000001", sha1="aa"),))])
        assert required_checksum_bitmask([dat]) == ChecksumBitmask.CRC32

    def test_strongest_checksum_for_crc_less_roms(self):
        dat = make_dat(
            [
                Game(name="a", roms=(ROM("a.bin", 1, md5="aa", sha1="bb"),)),
                Game(name="b", roms=(ROM("b.bin", 1, md5="cc"),)),
            ]
        )
        assert required_checksum_bitmask([dat]) == (
            ChecksumBitmask.CRC32 | ChecksumBitmask.SHA1 | ChecksumBitmask.MD5
        )
