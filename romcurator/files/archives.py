"""Archive containers the scanner can read and the writer can create.

Zip archives use the standard library; 7z archives use py7zr; CHDs are read by
shelling out to MAME's ``chdman``.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import tempfile
import zipfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Optional

import py7zr

from romcurator.common.exceptions import ArchiveError
from romcurator.common.execution import require_tool, run_cmd
from romcurator.common.fileops import make_temp_path
from romcurator.files.file import ArchiveEntry, props_from_bytes
from romcurator.files.headers import ROMHeader
from romcurator.verification.hasher import ChecksumBitmask, algorithms_for, calculate_hashes

if TYPE_CHECKING:
    from romcurator.files.file import File

logger = logging.getLogger(__name__)


class Archive(ABC):
    EXTENSIONS: tuple[str, ...] = ()

    def __init__(self, file_path: str | Path):
        self.file_path = os.path.normpath(str(file_path))

    def __eq__(self, other: object) -> bool:
        return type(self) is type(other) and self.file_path == other.file_path

    def __hash__(self) -> int:
        return hash((type(self).__name__, self.file_path))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.file_path!r})"

    def with_file_path(self, file_path: str) -> "Archive":
        return type(self)(file_path)

    @abstractmethod
    def get_archive_entries(
        self, checksum_bitmask: int = ChecksumBitmask.CRC32
    ) -> list[ArchiveEntry]:
        raise NotImplementedError

    @abstractmethod
    def read_entry(self, entry_path: str) -> bytes:
        raise NotImplementedError

    def extract_entry_to_file(self, entry_path: str, dest: str) -> None:
        Path(dest).write_bytes(self.read_entry(entry_path))


class Zip(Archive):
    EXTENSIONS = (".zip",)

    def get_archive_entries(
        self, checksum_bitmask: int = ChecksumBitmask.CRC32
    ) -> list[ArchiveEntry]:
        entries = []
        try:
            with zipfile.ZipFile(self.file_path) as zf:
                for info in zf.infolist():
                    if info.is_dir():
                        continue
                    if checksum_bitmask & ~ChecksumBitmask.CRC32 or _may_have_header(info.filename):
                        props = props_from_bytes(zf.read(info), info.filename, checksum_bitmask)
                    else:
                        props = {"size": info.file_size, "crc32": f"{info.CRC:08x}"}
                    entries.append(
                        ArchiveEntry.entry_of(
                            self,
                            info.filename,
                            checksum_bitmask=int(checksum_bitmask),
                            **props,
                        )
                    )
        except (zipfile.BadZipFile, OSError) as e:
            raise ArchiveError(self.file_path, str(e)) from e
        return entries

    def read_entry(self, entry_path: str) -> bytes:
        try:
            with zipfile.ZipFile(self.file_path) as zf:
                return zf.read(entry_path)
        except (zipfile.BadZipFile, KeyError, OSError) as e:
            raise ArchiveError(self.file_path, f"{entry_path}: {e}") from e

    def create_archive(self, pairs: Iterable[tuple["File", ArchiveEntry]]) -> None:
        """Write every (input, output entry) pair into this zip in a single pass.

        The archive is assembled next to its final path and swapped in atomically.
        """
        dest = Path(self.file_path)
        dest.parent.mkdir(parents=True, exist_ok=True)
        tmp_zip = make_temp_path(dest.parent, suffix=".zip")
        try:
            with tempfile.TemporaryDirectory(prefix="romcurator_") as work_dir, zipfile.ZipFile(
                tmp_zip, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9
            ) as zf:
                for idx, (input_file, output_entry) in enumerate(
                    sorted(pairs, key=lambda p: p[1].entry_path)
                ):
                    tmp_file = Path(work_dir) / str(idx)
                    input_file.extract_and_patch_to_file(tmp_file)
                    zf.write(tmp_file, arcname=output_entry.entry_path)
            os.replace(tmp_zip, dest)
        except (OSError, zipfile.BadZipFile, ArchiveError) as e:
            if tmp_zip.exists():
                tmp_zip.unlink()
            if isinstance(e, ArchiveError):
                raise
            raise ArchiveError(self.file_path, str(e)) from e


class SevenZip(Archive):
    EXTENSIONS = (".7z",)

    def get_archive_entries(
        self, checksum_bitmask: int = ChecksumBitmask.CRC32
    ) -> list[ArchiveEntry]:
        try:
            with py7zr.SevenZipFile(self.file_path, mode="r") as archive:
                infos = [i for i in archive.list() if not i.is_directory]
        except (py7zr.Bad7zFile, OSError) as e:
            raise ArchiveError(self.file_path, str(e)) from e

        needs_data = bool(checksum_bitmask & ~ChecksumBitmask.CRC32) or any(
            info.crc32 is None or _may_have_header(info.filename) for info in infos
        )
        if not needs_data:
            return [
                ArchiveEntry.entry_of(
                    self,
                    info.filename,
                    size=info.uncompressed,
                    crc32=f"{info.crc32:08x}",
                    checksum_bitmask=int(checksum_bitmask),
                )
                for info in infos
            ]

        entries = []
        with tempfile.TemporaryDirectory(prefix="romcurator_") as work_dir:
            self._extract_all(work_dir)
            for info in infos:
                data = (Path(work_dir) / info.filename).read_bytes()
                entries.append(
                    ArchiveEntry.entry_of(
                        self,
                        info.filename,
                        checksum_bitmask=int(checksum_bitmask),
                        **props_from_bytes(data, info.filename, checksum_bitmask),
                    )
                )
        return entries

    def _extract_all(self, work_dir: str, targets: Optional[list[str]] = None) -> None:
        try:
            with py7zr.SevenZipFile(self.file_path, mode="r") as archive:
                archive.extract(path=work_dir, targets=targets)
        except (py7zr.Bad7zFile, OSError) as e:
            raise ArchiveError(self.file_path, str(e)) from e

    def read_entry(self, entry_path: str) -> bytes:
        with tempfile.TemporaryDirectory(prefix="romcurator_") as work_dir:
            self._extract_all(work_dir, targets=[entry_path])
            extracted = Path(work_dir) / entry_path
            if not extracted.is_file():
                raise ArchiveError(self.file_path, f"entry not found: {entry_path}")
            return extracted.read_bytes()

    def extract_entry_to_file(self, entry_path: str, dest: str) -> None:
        with tempfile.TemporaryDirectory(prefix="romcurator_") as work_dir:
            self._extract_all(work_dir, targets=[entry_path])
            extracted = Path(work_dir) / entry_path
            if not extracted.is_file():
                raise ArchiveError(self.file_path, f"entry not found: {entry_path}")
            shutil.move(str(extracted), dest)


_CHD_CD_TAGS = re.compile(r"Tag='(CHT2|CHCD|CHTR)'")
_CHD_SHA1 = re.compile(r"^\s*(?:Data )?SHA1:\s*([0-9a-f]{40})", re.IGNORECASE | re.MULTILINE)
_CHD_LOGICAL_SIZE = re.compile(r"^\s*Logical size:\s*([\d,]+)", re.MULTILINE)


def _chdman_info(file_path: str) -> str:
    chdman = require_tool("chdman")
    res = run_cmd([str(chdman), "info", "-v", "-i", file_path], timeout=300)
    if res.returncode != 0:
        raise ArchiveError(file_path, (res.stderr or res.stdout or "").strip())
    return res.stdout or ""


class Chd(Archive):
    """A CHD holding one raw (hard disk / LaserDisc) image."""

    EXTENSIONS = (".chd",)

    def get_archive_entries(
        self, checksum_bitmask: int = ChecksumBitmask.CRC32
    ) -> list[ArchiveEntry]:
        info = _chdman_info(self.file_path)
        sha1 = _CHD_SHA1.search(info)
        size = _CHD_LOGICAL_SIZE.search(info)
        return [
            ArchiveEntry.entry_of(
                self,
                Path(self.file_path).stem,
                size=int(size.group(1).replace(",", "")) if size else 0,
                sha1=sha1.group(1) if sha1 else None,
                checksum_bitmask=int(checksum_bitmask),
            )
        ]

    def read_entry(self, entry_path: str) -> bytes:
        with tempfile.TemporaryDirectory(prefix="romcurator_") as work_dir:
            out = Path(work_dir) / "raw.bin"
            self.extract_entry_to_file(entry_path, str(out))
            return out.read_bytes()

    def extract_entry_to_file(self, entry_path: str, dest: str) -> None:
        chdman = require_tool("chdman")
        res = run_cmd([str(chdman), "extractraw", "-f", "-i", self.file_path, "-o", dest])
        if res.returncode != 0:
            raise ArchiveError(self.file_path, (res.stderr or "").strip())


class ChdBinCue(Chd):
    """A CHD holding a CD image, exposed as a .cue sheet plus its .bin tracks."""

    def _extract_cd(self, work_dir: str) -> list[Path]:
        chdman = require_tool("chdman")
        stem = Path(self.file_path).stem
        cue = Path(work_dir) / f"{stem}.cue"
        res = run_cmd(
            [
                str(chdman), "extractcd", "-f",
                "-i", self.file_path,
                "-o", str(cue),
                "-ob", str(Path(work_dir) / f"{stem}.bin"),
                "-sb",
            ]
        )
        if res.returncode != 0:
            raise ArchiveError(self.file_path, (res.stderr or "").strip())
        return sorted(p for p in Path(work_dir).iterdir() if p.is_file())

    def get_archive_entries(
        self, checksum_bitmask: int = ChecksumBitmask.CRC32
    ) -> list[ArchiveEntry]:
        algorithms = algorithms_for(checksum_bitmask)
        entries = []
        with tempfile.TemporaryDirectory(prefix="romcurator_") as work_dir:
            for track in self._extract_cd(work_dir):
                hashes = calculate_hashes(track, algorithms=algorithms)
                entries.append(
                    ArchiveEntry.entry_of(
                        self,
                        track.name,
                        size=track.stat().st_size,
                        checksum_bitmask=int(checksum_bitmask),
                        **hashes,
                    )
                )
        return entries

    def read_entry(self, entry_path: str) -> bytes:
        with tempfile.TemporaryDirectory(prefix="romcurator_") as work_dir:
            for track in self._extract_cd(work_dir):
                if track.name == entry_path:
                    return track.read_bytes()
        raise ArchiveError(self.file_path, f"entry not found: {entry_path}")

    def extract_entry_to_file(self, entry_path: str, dest: str) -> None:
        Path(dest).write_bytes(self.read_entry(entry_path))


def _may_have_header(name: str) -> bool:
    return ROMHeader.header_from_filename(name) is not None


def archive_of(file_path: str | Path) -> Optional[Archive]:
    """Pick the archive type for ``file_path`` by extension; CHDs are probed with chdman."""
    lower = str(file_path).lower()
    if lower.endswith(Zip.EXTENSIONS):
        return Zip(file_path)
    if lower.endswith(SevenZip.EXTENSIONS):
        return SevenZip(file_path)
    if lower.endswith(Chd.EXTENSIONS):
        info = _chdman_info(str(file_path))
        if _CHD_CD_TAGS.search(info):
            return ChdBinCue(file_path)
        return Chd(file_path)
    return None
