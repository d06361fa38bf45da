"""File operation helpers used by the candidate writer.

Moves prefer an atomic rename when possible (same filesystem) and fall back to
copying into the destination directory to a secure temporary file and then
atomically replacing the final path. Links come in three flavours: hard,
symbolic (absolute or relative) and reflink (copy-on-write clone).
"""

from __future__ import annotations

import errno
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Union

from romcurator.common.exceptions import FileMoveError, FileWriteError
from romcurator.common.types import MoveResult

PathLike = Union[str, Path]

# linux/fs.h
_FICLONE = 0x40049409


def ensure_parent_dir(path: PathLike) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)


def make_temp_path(directory: PathLike, suffix: str = "") -> Path:
    """Reserve a temporary file name inside ``directory``."""
    Path(directory).mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=".romcurator_tmp_", suffix=suffix, dir=str(directory))
    os.close(fd)
    return Path(tmp_name)


def _fsync_path(path: Path, logger: Any) -> None:
    with open(path, "rb") as f:
        try:
            os.fsync(f.fileno())
        except OSError:
            logger.debug("fsync failed for temp file %s", path)


def _try_atomic_replace(source: Path, dest: Path, logger: Any) -> bool:
    try:
        source.replace(dest)
    except OSError:
        return False
    logger.info("Moved (atomic): %s -> %s", source.name, dest.name)
    logger.debug("Moved (atomic) full paths: %s -> %s", source, dest)
    return True


def _copy_and_replace(source: Path, dest: Path, logger: Any) -> None:
    tmp_path = make_temp_path(dest.parent)
    try:
        shutil.copy2(str(source), str(tmp_path))
        _fsync_path(tmp_path, logger)
        os.replace(str(tmp_path), str(dest))
    except OSError as e:
        if tmp_path.exists():
            try:
                tmp_path.unlink()
            except OSError:
                logger.debug("Failed cleaning up tmp file %s", tmp_path)
        raise FileWriteError(str(dest), f"copy failed: {e}") from e


def move_file(source: PathLike, dest: PathLike, logger: Any) -> MoveResult:
    """Move ``source`` to ``dest``, overwriting whatever is there.

    Returns RENAMED for an in-filesystem rename, COPIED when the data had to be
    copied across filesystems (the source is removed afterwards).
    """
    source = Path(source)
    dest = Path(dest)
    dest.parent.mkdir(parents=True, exist_ok=True)

    if _try_atomic_replace(source, dest, logger):
        return MoveResult.RENAMED

    if not source.exists():
        raise FileMoveError(str(source), "source file does not exist")

    _copy_and_replace(source, dest, logger)
    logger.info("Moved (copy+replace): %s -> %s", source.name, dest.name)
    logger.debug("Moved (copy+replace) full paths: %s -> %s", source, dest)
    try:
        source.unlink()
    except OSError as e:
        logger.warning(
            "Could not remove original after move: %s -- %s",
            source.name,
            e,
        )
    return MoveResult.COPIED


def safe_unlink(path: PathLike, logger: Any) -> None:
    """Best-effort, logged deletion.

    INFO logs only the filename; DEBUG logs the full path.
    """
    path = Path(path)
    try:
        if not path.exists() and not path.is_symlink():
            logger.debug("Attempted to delete non-existent file: %s", path)
            return
        path.unlink()
        logger.info("Deleted file: %s", path.name)
        logger.debug("Deleted file full path: %s", path)
    except PermissionError as exc:
        logger.warning("Permission denied deleting file %s: %s", path.name, exc)
    except OSError:
        logger.exception("Unexpected error deleting file: %s", path)


def symlink_relative_path(target: PathLike, link: PathLike) -> str:
    """Path of ``target`` relative to the directory holding ``link``."""
    return os.path.relpath(
        os.path.abspath(str(target)), os.path.dirname(os.path.abspath(str(link)))
    )


def symlink(target: PathLike, link: PathLike, relative: bool = False) -> None:
    ensure_parent_dir(link)
    link = Path(link)
    if link.exists() or link.is_symlink():
        link.unlink()
    source = symlink_relative_path(target, link) if relative else os.path.abspath(str(target))
    os.symlink(source, str(link))


def hardlink(target: PathLike, link: PathLike) -> None:
    ensure_parent_dir(link)
    link = Path(link)
    if link.exists() or link.is_symlink():
        link.unlink()
    os.link(str(target), str(link))


def reflink(target: PathLike, link: PathLike) -> None:
    """Clone ``target`` into ``link`` sharing extents (btrfs, XFS)."""
    import fcntl

    ensure_parent_dir(link)
    with open(target, "rb") as src, open(link, "wb") as dst:
        try:
            fcntl.ioctl(dst.fileno(), _FICLONE, src.fileno())
        except OSError as e:
            if e.errno in (errno.EOPNOTSUPP, errno.EXDEV, errno.EINVAL):
                raise FileWriteError(
                    str(link), "filesystem does not support reflinks"
                ) from e
            raise


def is_symlink(path: PathLike) -> bool:
    return Path(path).is_symlink()


def read_symlink(path: PathLike) -> str:
    return os.readlink(str(path))


def same_inode(a: PathLike, b: PathLike) -> bool:
    try:
        sa = os.stat(str(a))
        sb = os.stat(str(b))
    except OSError:
        return False
    return sa.st_ino == sb.st_ino and sa.st_dev == sb.st_dev
