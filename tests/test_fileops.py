import logging
import os
from pathlib import Path
from unittest.mock import patch

import pytest

import romcurator.common.fileops as fileops
from romcurator.common.exceptions import FileMoveError
from romcurator.common.types import MoveResult

logger = logging.getLogger(__name__)


def test_safe_unlink_nonexistent(tmp_path):
    p = tmp_path / "nope.txt"
    # should not raise
    fileops.safe_unlink(p, logger=logger)
    assert not p.exists()


def test_safe_unlink_existing(tmp_path):
    p = tmp_path / "file.txt"
    p.write_text("data")
    fileops.safe_unlink(p, logger=logger)
    assert not p.exists()


def test_safe_unlink_dangling_symlink(tmp_path):
    link = tmp_path / "link"
    os.symlink(tmp_path / "gone", link)
    fileops.safe_unlink(link, logger=logger)
    assert not link.is_symlink()


class TestMoveFile:
    def test_rename(self, tmp_path):
        src = tmp_path / "a.bin"
        src.write_bytes(b"data")
        dst = tmp_path / "sub" / "a.bin"

        assert fileops.move_file(src, dst, logger) == MoveResult.RENAMED
        assert dst.read_bytes() == b"data"
        assert not src.exists()

    def test_copy_fallback(self, tmp_path):
        src = tmp_path / "a.bin"
        src.write_bytes(b"data")
        dst = tmp_path / "other" / "a.bin"

        # Simulate a cross-device rename failure
        with patch.object(Path, "replace", side_effect=OSError("EXDEV")):
            result = fileops.move_file(src, dst, logger)

        assert result == MoveResult.COPIED
        assert dst.read_bytes() == b"data"
        assert not src.exists()
        assert [p.name for p in dst.parent.iterdir()] == ["a.bin"]

    def test_missing_source(self, tmp_path):
        with pytest.raises(FileMoveError):
            fileops.move_file(tmp_path / "missing", tmp_path / "dst", logger)


class TestLinks:
    def test_symlink_absolute(self, tmp_path):
        target = tmp_path / "in" / "game.bin"
        target.parent.mkdir()
        target.write_bytes(b"x")
        link = tmp_path / "out" / "game.bin"

        fileops.symlink(target, link)
        assert fileops.is_symlink(link)
        assert fileops.read_symlink(link) == str(target)

    def test_symlink_relative_replaces_existing(self, tmp_path):
        target = tmp_path / "in" / "game.bin"
        target.parent.mkdir()
        target.write_bytes(b"x")
        link = tmp_path / "out" / "game.bin"
        link.parent.mkdir()
        link.write_bytes(b"old")

        fileops.symlink(target, link, relative=True)
        assert fileops.read_symlink(link) == os.path.join("..", "in", "game.bin")
        assert link.read_bytes() == b"x"

    def test_symlink_relative_path(self):
        assert fileops.symlink_relative_path("/a/b/c.bin", "/a/d/e/link.bin") == os.path.join(
            "..", "..", "b", "c.bin"
        )

    def test_hardlink_shares_inode(self, tmp_path):
        target = tmp_path / "game.bin"
        target.write_bytes(b"x")
        link = tmp_path / "out" / "game.bin"

        fileops.hardlink(target, link)
        assert fileops.same_inode(target, link)
        assert not fileops.same_inode(target, tmp_path / "missing")


def test_make_temp_path(tmp_path):
    tmp = fileops.make_temp_path(tmp_path / "new", suffix=".zip")
    assert tmp.exists()
    assert tmp.parent == tmp_path / "new"
    assert tmp.name.endswith(".zip")
