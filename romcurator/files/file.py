"""Input/output file values.

Three kinds of files flow through candidate generation and writing:

* ``File``: a plain file on disk.
* ``ArchiveEntry``: one member of an archive (zip, 7z, CHD).
* ``ArchiveFile``: a whole archive treated as one opaque file, used when an
  archive can be copied as-is.

All of them are immutable; the ``with_*`` helpers return new values.
"""

from __future__ import annotations

import dataclasses
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional

from romcurator.common.fileops import make_temp_path
from romcurator.files.headers import MAX_HEADER_LENGTH_BYTES, ROMHeader
from romcurator.files.patches import Patch
from romcurator.verification.hasher import (
    ChecksumBitmask,
    algorithms_for,
    calculate_hashes,
    hash_bytes,
)

if TYPE_CHECKING:
    from romcurator.files.archives import Archive

CHECKSUM_ALGORITHMS = ("crc32", "md5", "sha1", "sha256")


@dataclass(frozen=True)
class File:
    file_path: str
    size: int = 0
    crc32: Optional[str] = None
    md5: Optional[str] = None
    sha1: Optional[str] = None
    sha256: Optional[str] = None
    size_without_header: Optional[int] = None
    crc32_without_header: Optional[str] = None
    md5_without_header: Optional[str] = None
    sha1_without_header: Optional[str] = None
    sha256_without_header: Optional[str] = None
    file_header: Optional[ROMHeader] = None
    patch: Optional[Patch] = None
    checksum_bitmask: int = int(ChecksumBitmask.CRC32)

    def __post_init__(self):
        object.__setattr__(self, "file_path", os.path.normpath(str(self.file_path)))
        for alg in CHECKSUM_ALGORITHMS:
            for name in (alg, f"{alg}_without_header"):
                value = getattr(self, name)
                if value is not None:
                    object.__setattr__(self, name, value.lower())

    @classmethod
    def file_of(
        cls,
        file_path: str | Path,
        checksum_bitmask: int = ChecksumBitmask.CRC32,
        detect_header: bool = True,
    ) -> "File":
        """Hash a file on disk, detecting a copier header when its extension allows one."""
        file_path = Path(file_path)
        algorithms = algorithms_for(checksum_bitmask)
        size = file_path.stat().st_size
        props = calculate_hashes(file_path, algorithms=algorithms)

        header = None
        if detect_header and ROMHeader.header_from_filename(str(file_path)):
            with open(file_path, "rb") as f:
                header = ROMHeader.header_from_bytes(f.read(MAX_HEADER_LENGTH_BYTES))
        if header:
            headerless = calculate_hashes(
                file_path, algorithms=algorithms, skip_bytes=header.data_offset_bytes
            )
            props.update({f"{k}_without_header": v for k, v in headerless.items()})
            props["size_without_header"] = max(0, size - header.data_offset_bytes)

        return cls(
            file_path=str(file_path),
            size=size,
            file_header=header,
            checksum_bitmask=int(checksum_bitmask),
            **props,
        )

    @property
    def extracted_file_path(self) -> str:
        return self.file_path

    def get_checksums(self) -> Dict[str, str]:
        return {alg: getattr(self, alg) for alg in CHECKSUM_ALGORITHMS if getattr(self, alg)}

    def get_checksums_without_header(self) -> Dict[str, str]:
        return {
            alg: getattr(self, f"{alg}_without_header")
            for alg in CHECKSUM_ALGORITHMS
            if getattr(self, f"{alg}_without_header")
        }

    def has_header_checksums(self) -> bool:
        return self.file_header is not None and bool(self.get_checksums_without_header())

    @staticmethod
    def make_hash_code(crc32: Optional[str], size: Optional[int]) -> str:
        return f"{crc32}|{size}"

    def hash_code(self) -> str:
        return self.make_hash_code(self.crc32, self.size)

    def hash_code_without_header(self) -> str:
        return self.make_hash_code(self.crc32_without_header, self.size_without_header)

    def hash_codes(self) -> list[str]:
        codes = [self.hash_code()]
        if self.file_header and self.hash_code_without_header() not in codes:
            codes.append(self.hash_code_without_header())
        return codes

    # Immutable setters

    def with_props(self, **props: Any) -> "File":
        return dataclasses.replace(self, **props)

    def with_file_path(self, file_path: str) -> "File":
        return dataclasses.replace(self, file_path=file_path)

    def with_file_header(self, file_header: Optional[ROMHeader]) -> "File":
        return dataclasses.replace(self, file_header=file_header)

    def without_file_header(self) -> "File":
        return dataclasses.replace(
            self,
            file_header=None,
            size_without_header=None,
            crc32_without_header=None,
            md5_without_header=None,
            sha1_without_header=None,
            sha256_without_header=None,
        )

    def with_patch(self, patch: Optional[Patch]) -> "File":
        return dataclasses.replace(self, patch=patch)

    def is_same_file(self, other: "File") -> bool:
        return (
            self.file_path == other.file_path
            and self.size == other.size
            and self.crc32 == other.crc32
            and self.crc32_without_header == other.crc32_without_header
        )

    def __str__(self) -> str:
        return self.file_path

    # Reading

    def read_bytes(self) -> bytes:
        return Path(self.file_path).read_bytes()

    def extract_to_file(self, dest: str | Path) -> None:
        Path(dest).parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(self.file_path, str(dest))

    def extract_and_patch_to_file(self, dest: str | Path) -> None:
        """Write this file's ROM data to ``dest``, removing a header and applying a patch."""
        if self.file_header is None and self.patch is None:
            self.extract_to_file(dest)
            return
        if self.patch is None:
            Path(dest).parent.mkdir(parents=True, exist_ok=True)
            self._extract_from_offset(self.file_header.data_offset_bytes, dest)
            return
        data = self.read_bytes()
        if self.file_header is not None:
            data = data[self.file_header.data_offset_bytes:]
        Path(dest).parent.mkdir(parents=True, exist_ok=True)
        Path(dest).write_bytes(self.patch.apply(data))

    def _extract_from_offset(self, offset: int, dest: str | Path) -> None:
        with open(self.file_path, "rb") as src, open(dest, "wb") as out:
            src.seek(offset)
            shutil.copyfileobj(src, out)


def props_from_bytes(data: bytes, name: str, checksum_bitmask: int) -> Dict[str, Any]:
    """Checksum properties for in-memory data, including header-less variants."""
    algorithms = algorithms_for(checksum_bitmask)
    props: Dict[str, Any] = {"size": len(data), **hash_bytes(data, algorithms)}
    header = None
    if ROMHeader.header_from_filename(name):
        header = ROMHeader.header_from_bytes(data[:MAX_HEADER_LENGTH_BYTES])
    if header:
        headerless = hash_bytes(data[header.data_offset_bytes:], algorithms)
        props.update({f"{k}_without_header": v for k, v in headerless.items()})
        props["size_without_header"] = max(0, len(data) - header.data_offset_bytes)
        props["file_header"] = header
    return props


@dataclass(frozen=True)
class ArchiveEntry(File):
    archive: Optional["Archive"] = None
    entry_path: str = ""

    def __post_init__(self):
        if self.archive is None:
            raise ValueError("ArchiveEntry requires an archive")
        object.__setattr__(self, "file_path", self.archive.file_path)
        super().__post_init__()
        object.__setattr__(self, "entry_path", str(self.entry_path).replace("\\", "/"))

    @classmethod
    def entry_of(cls, archive: "Archive", entry_path: str, **props: Any) -> "ArchiveEntry":
        return cls(file_path=archive.file_path, archive=archive, entry_path=entry_path, **props)

    @property
    def extracted_file_path(self) -> str:
        return self.entry_path

    def with_file_path(self, file_path: str) -> "ArchiveEntry":
        return dataclasses.replace(self, archive=self.archive.with_file_path(file_path))

    def with_entry_path(self, entry_path: str) -> "ArchiveEntry":
        return dataclasses.replace(self, entry_path=entry_path)

    def is_same_file(self, other: File) -> bool:
        return (
            isinstance(other, ArchiveEntry)
            and self.entry_path == other.entry_path
            and super().is_same_file(other)
        )

    def __str__(self) -> str:
        return f"{self.file_path}|{self.entry_path}"

    def read_bytes(self) -> bytes:
        return self.archive.read_entry(self.entry_path)

    def extract_to_file(self, dest: str | Path) -> None:
        Path(dest).parent.mkdir(parents=True, exist_ok=True)
        self.archive.extract_entry_to_file(self.entry_path, str(dest))

    def _extract_from_offset(self, offset: int, dest: str | Path) -> None:
        # Entries land on disk whole first, then the tail is streamed out of them
        tmp_path = make_temp_path(Path(dest).parent)
        try:
            self.archive.extract_entry_to_file(self.entry_path, str(tmp_path))
            with open(tmp_path, "rb") as src, open(dest, "wb") as out:
                src.seek(offset)
                shutil.copyfileobj(src, out)
        finally:
            tmp_path.unlink(missing_ok=True)


@dataclass(frozen=True)
class ArchiveFile(File):
    archive: Optional["Archive"] = None

    def __post_init__(self):
        if self.archive is None:
            raise ValueError("ArchiveFile requires an archive")
        object.__setattr__(self, "file_path", self.archive.file_path)
        super().__post_init__()

    @classmethod
    def file_of_archive(cls, archive: "Archive", **props: Any) -> "ArchiveFile":
        if "size" not in props:
            props["size"] = os.path.getsize(archive.file_path)
        return cls(file_path=archive.file_path, archive=archive, **props)

    def with_file_path(self, file_path: str) -> "ArchiveFile":
        return dataclasses.replace(self, archive=self.archive.with_file_path(file_path))
