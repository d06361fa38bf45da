"""CandidateWriter behaviour against a real temporary filesystem."""

import asyncio
import os
import zipfile

import pytest

from tests.helpers import crc, make_dat, make_options, rom_for, write_file

from romcurator.candidates import writer as writer_module
from romcurator.candidates.generator import CandidateGenerator
from romcurator.candidates.models import ReleaseCandidate, ROMWithFiles
from romcurator.candidates.writer import CandidateWriter, check_file_contents, check_zip_contents
from romcurator.common.types import MoveResult, WriteOutcome
from romcurator.core.concurrency import WriterContext
from romcurator.core.indexed_files import IndexedFiles
from romcurator.core.models import Game
from romcurator.core.options import LinkMode
from romcurator.files.archives import Zip
from romcurator.files.file import ArchiveEntry, File


def _raw_candidate(name, input_file, output_path):
    rom = rom_for(f"{name}.bin", input_file.read_bytes())
    output = File(str(output_path), size=input_file.size, crc32=input_file.crc32)
    return ReleaseCandidate(Game(name=name, roms=(rom,)), None, (ROMWithFiles(rom, input_file, output),))


def _write(options, candidates, dat=None, context=None):
    dat = dat or make_dat([c.game for c in candidates])
    context = context or WriterContext.create(options)
    return asyncio.run(CandidateWriter(options, context).write(dat, candidates))


def _outcomes(result):
    return [o.outcome for o in result.outcomes]


class TestRawWrites:
    def test_copy_and_verify(self, tmp_path):
        input_file = write_file(tmp_path / "in" / "game.bin", b"game data")
        output_path = tmp_path / "out" / "game.bin"
        candidate = _raw_candidate("game", input_file, output_path)

        result = _write(make_options(tmp_path, "copy", "test"), [candidate])

        assert output_path.read_bytes() == b"game data"
        assert (tmp_path / "in" / "game.bin").exists()
        assert _outcomes(result) == [WriteOutcome.VERIFIED]
        assert [f.file_path for f in result.wrote] == [str(output_path)]
        assert result.moved == []

    def test_copy_without_test_is_only_attempted(self, tmp_path):
        input_file = write_file(tmp_path / "in" / "game.bin", b"game data")
        candidate = _raw_candidate("game", input_file, tmp_path / "out" / "game.bin")

        result = _write(make_options(tmp_path, "copy"), [candidate])
        assert _outcomes(result) == [WriteOutcome.WRITE_ATTEMPTED]
        assert result.written_count == 1

    def test_existing_output_is_not_overwritten(self, tmp_path):
        input_file = write_file(tmp_path / "in" / "game.bin", b"game data")
        output_path = tmp_path / "out" / "game.bin"
        write_file(output_path, b"something else")
        candidate = _raw_candidate("game", input_file, output_path)

        result = _write(make_options(tmp_path, "copy", "test"), [candidate])

        assert output_path.read_bytes() == b"something else"
        assert _outcomes(result) == [WriteOutcome.SKIPPED]

    def test_overwrite_invalid_replaces_a_bad_output(self, tmp_path):
        input_file = write_file(tmp_path / "in" / "game.bin", b"game data")
        output_path = tmp_path / "out" / "game.bin"
        write_file(output_path, b"something else")
        candidate = _raw_candidate("game", input_file, output_path)

        result = _write(make_options(tmp_path, "copy", "test", overwrite_invalid=True), [candidate])

        assert output_path.read_bytes() == b"game data"
        assert _outcomes(result) == [WriteOutcome.VERIFIED]

    def test_overwrite_invalid_keeps_a_good_output(self, tmp_path):
        input_file = write_file(tmp_path / "in" / "game.bin", b"game data")
        output_path = tmp_path / "out" / "game.bin"
        write_file(output_path, b"game data")
        candidate = _raw_candidate("game", input_file, output_path)

        result = _write(make_options(tmp_path, "copy", overwrite_invalid=True), [candidate])
        assert _outcomes(result) == [WriteOutcome.SKIPPED]

    def test_input_equal_to_output_is_skipped(self, tmp_path):
        input_file = write_file(tmp_path / "in" / "game.bin", b"game data")
        candidate = _raw_candidate("game", input_file, input_file.file_path)

        result = _write(make_options(tmp_path, "copy", "test"), [candidate])
        assert _outcomes(result) == [WriteOutcome.SKIPPED]

    def test_test_only_mode(self, tmp_path):
        input_file = write_file(tmp_path / "in" / "game.bin", b"game data")
        good = _raw_candidate("good", input_file, tmp_path / "out" / "good.bin")
        missing = _raw_candidate("missing", input_file, tmp_path / "out" / "missing.bin")
        write_file(tmp_path / "out" / "good.bin", b"game data")

        result = _write(make_options(tmp_path, "test"), [good, missing])

        by_output = {os.path.basename(o.output_file): o for o in result.outcomes}
        assert by_output["good.bin"].outcome == WriteOutcome.VERIFIED
        assert by_output["missing.bin"].outcome == WriteOutcome.FAILED
        assert by_output["missing.bin"].error_message == "doesn't exist"
        assert not (tmp_path / "out" / "missing.bin").exists()

    def test_nothing_happens_without_commands(self, tmp_path):
        input_file = write_file(tmp_path / "in" / "game.bin", b"game data")
        candidate = _raw_candidate("game", input_file, tmp_path / "out" / "game.bin")

        result = _write(make_options(tmp_path), [candidate])
        assert result.outcomes == []
        assert not (tmp_path / "out").exists()


class TestRetry:
    def test_failed_test_is_retried(self, tmp_path, monkeypatch):
        input_file = write_file(tmp_path / "in" / "game.bin", b"game data")
        candidate = _raw_candidate("game", input_file, tmp_path / "out" / "game.bin")
        results = iter(["has the CRC32 00000000, expected something", None])
        monkeypatch.setattr(writer_module, "check_file_contents", lambda path, expected: next(results))

        result = _write(make_options(tmp_path, "copy", "test"), [candidate])
        assert _outcomes(result) == [WriteOutcome.VERIFIED]

    def test_gives_up_after_write_retry_attempts(self, tmp_path, monkeypatch):
        input_file = write_file(tmp_path / "in" / "game.bin", b"game data")
        candidate = _raw_candidate("game", input_file, tmp_path / "out" / "game.bin")
        calls = []

        def _always_bad(path, expected):
            calls.append(path)
            return "is broken"

        monkeypatch.setattr(writer_module, "check_file_contents", _always_bad)

        result = _write(make_options(tmp_path, "copy", "test", write_retry=1), [candidate])

        assert _outcomes(result) == [WriteOutcome.FAILED]
        assert result.outcomes[0].error_message == "is broken"
        assert len(calls) == 2
        assert result.failed_count == 1

    def test_bad_move_is_not_accepted_on_retry(self, tmp_path, monkeypatch):
        input_file = write_file(tmp_path / "in" / "game.bin", b"game data")
        output_path = tmp_path / "out" / "game.bin"
        candidate = _raw_candidate("game", input_file, output_path)

        def _corrupting_move(source, dest, logger):
            # Cross-device fallback that leaves a damaged copy behind
            os.makedirs(os.path.dirname(dest), exist_ok=True)
            with open(dest, "wb") as f:
                f.write(b"garbage!!")
            os.remove(source)
            return MoveResult.COPIED

        monkeypatch.setattr(writer_module.fileops, "move_file", _corrupting_move)

        result = _write(make_options(tmp_path, "move", "test", write_retry=2), [candidate])

        assert _outcomes(result) == [WriteOutcome.FAILED]
        assert output_path.read_bytes() == b"garbage!!"
        assert result.moved == []


class TestMove:
    def test_one_input_moved_to_two_outputs(self, tmp_path):
        input_file = write_file(tmp_path / "in" / "shared.bin", b"shared data")
        alpha = _raw_candidate("alpha", input_file, tmp_path / "out" / "alpha.bin")
        beta = _raw_candidate("beta", input_file, tmp_path / "out" / "beta.bin")
        options = make_options(tmp_path, "move")
        context = WriterContext.create(options)

        result = _write(options, [alpha, beta], context=context)

        assert (tmp_path / "out" / "alpha.bin").read_bytes() == b"shared data"
        assert (tmp_path / "out" / "beta.bin").read_bytes() == b"shared data"
        assert not (tmp_path / "in" / "shared.bin").exists()
        assert [f.file_path for f in result.moved] == [input_file.file_path]
        assert input_file.file_path in context.file_path_moves
        assert result.failed_count == 0

    def test_moved_input_that_is_also_an_output_is_not_queued(self, tmp_path):
        input_file = write_file(tmp_path / "out" / "game.bin", b"game data")
        candidate = _raw_candidate("game", input_file, input_file.file_path)

        result = _write(make_options(tmp_path, "move"), [candidate])
        assert result.moved == []
        assert (tmp_path / "out" / "game.bin").exists()


class TestZipWrites:
    def test_entries_are_written_in_one_archive(self, tmp_path):
        a = write_file(tmp_path / "in" / "a.bin", b"aaaa")
        b = write_file(tmp_path / "in" / "b.bin", b"bbbb")
        game = Game(name="Game", roms=(rom_for("a.bin", b"aaaa"), rom_for("b.bin", b"bbbb")))
        dat = make_dat([game])
        options = make_options(tmp_path, "copy", "zip", "test")

        async def _run():
            generated = await CandidateGenerator(options).generate(dat, IndexedFiles.from_files([a, b]))
            candidates = [c for cs in generated.values() for c in cs]
            return await CandidateWriter(options, WriterContext.create(options)).write(dat, candidates)

        result = asyncio.run(_run())

        zip_path = tmp_path / "out" / "Game.zip"
        with zipfile.ZipFile(zip_path) as zf:
            assert sorted(zf.namelist()) == ["a.bin", "b.bin"]
            assert zf.read("a.bin") == b"aaaa"
        assert _outcomes(result) == [WriteOutcome.VERIFIED, WriteOutcome.VERIFIED]

    def test_existing_zip_is_tested_in_test_only_mode(self, tmp_path):
        a = write_file(tmp_path / "in" / "a.bin", b"aaaa")
        rom = rom_for("a.bin", b"aaaa")
        zip_path = tmp_path / "out" / "Game.zip"
        output = ArchiveEntry.entry_of(Zip(zip_path), "a.bin", size=4, crc32=crc(b"aaaa"))
        candidate = ReleaseCandidate(Game(name="Game", roms=(rom,)), None, (ROMWithFiles(rom, a, output),))
        Zip(zip_path).create_archive([(a, output)])

        result = _write(make_options(tmp_path, "test"), [candidate])
        assert _outcomes(result) == [WriteOutcome.VERIFIED]


class TestLinks:
    def test_symlink(self, tmp_path):
        input_file = write_file(tmp_path / "in" / "game.bin", b"game data")
        link_path = tmp_path / "out" / "game.bin"
        candidate = _raw_candidate("game", input_file, link_path)

        result = _write(
            make_options(tmp_path, "link", "test", link_mode=LinkMode.SYMLINK), [candidate]
        )

        assert link_path.is_symlink()
        assert os.readlink(link_path) == input_file.file_path
        assert _outcomes(result) == [WriteOutcome.VERIFIED]

    def test_relative_symlink(self, tmp_path):
        input_file = write_file(tmp_path / "in" / "game.bin", b"game data")
        link_path = tmp_path / "out" / "game.bin"
        candidate = _raw_candidate("game", input_file, link_path)
        options = make_options(
            tmp_path, "link", "test", link_mode=LinkMode.SYMLINK, symlink_relative=True
        )

        result = _write(options, [candidate])

        assert os.readlink(link_path) == os.path.join("..", "in", "game.bin")
        assert link_path.read_bytes() == b"game data"
        assert _outcomes(result) == [WriteOutcome.VERIFIED]

    def test_hardlink(self, tmp_path):
        input_file = write_file(tmp_path / "in" / "game.bin", b"game data")
        link_path = tmp_path / "out" / "game.bin"
        candidate = _raw_candidate("game", input_file, link_path)

        result = _write(make_options(tmp_path, "link", "test"), [candidate])

        assert os.path.samefile(link_path, input_file.file_path)
        assert _outcomes(result) == [WriteOutcome.VERIFIED]


class TestChecks:
    def test_file_contents(self, tmp_path):
        path = tmp_path / "game.bin"
        path.write_bytes(b"game data")

        assert check_file_contents(str(path), File("/x", size=9, crc32=crc(b"game data"))) is None
        assert "CRC32" in check_file_contents(str(path), File("/x", size=9, crc32="12345678"))
        assert "size" in check_file_contents(str(path), File("/x", size=10, crc32=crc(b"game data")))
        # A zero CRC is a placeholder, fall through to the size check
        assert check_file_contents(str(path), File("/x", size=9, crc32="00000000")) is None

    def test_missing_file(self, tmp_path):
        assert check_file_contents(str(tmp_path / "nope.bin"), File("/x", size=1)).startswith(
            "failed to parse"
        )

    @pytest.mark.parametrize(
        "entries, expected",
        [
            ({"a.bin": b"aaaa"}, "has 1 files, expected 2"),
            ({"a.bin": b"aaaa", "c.bin": b"bbbb"}, "is missing the file b.bin"),
        ],
    )
    def test_zip_contents(self, tmp_path, entries, expected):
        zip_path = tmp_path / "game.zip"
        with zipfile.ZipFile(zip_path, "w") as zf:
            for name, data in entries.items():
                zf.writestr(name, data)
        archive = Zip(zip_path)
        wanted = [
            ArchiveEntry.entry_of(archive, "a.bin", size=4, crc32=crc(b"aaaa")),
            ArchiveEntry.entry_of(archive, "b.bin", size=4, crc32=crc(b"bbbb")),
        ]
        assert check_zip_contents(str(zip_path), wanted) == expected
