"""Checksum lookup table over every scanned input file."""

from __future__ import annotations

from typing import TYPE_CHECKING, Dict, Iterable, Optional, Union

if TYPE_CHECKING:
    from romcurator.core.models import ROM
    from romcurator.files.file import File

ChecksumsToFiles = Dict[str, list["File"]]

_ALGORITHMS = ("sha256", "sha1", "md5")


class IndexedFiles:
    """Files indexed by checksum and by container path.

    Built once from the scanner output and only read afterwards, so it is safe
    to share between concurrent generator tasks.
    """

    def __init__(
        self,
        checksums: Dict[str, ChecksumsToFiles],
        files_by_path: Dict[str, list["File"]],
        files: list["File"],
    ):
        self._checksums = checksums
        self._files_by_path = files_by_path
        self._files = files

    @classmethod
    def from_files(cls, files: Iterable["File"]) -> "IndexedFiles":
        raw: Dict[str, ChecksumsToFiles] = {alg: {} for alg in (*_ALGORITHMS, "crc32")}
        headerless: Dict[str, ChecksumsToFiles] = {alg: {} for alg in (*_ALGORITHMS, "crc32")}
        files_by_path: Dict[str, list[File]] = {}
        unique: list[File] = []
        seen: set[str] = set()

        for file in files:
            key = str(file)
            if key in seen:
                continue
            seen.add(key)
            unique.append(file)
            files_by_path.setdefault(file.file_path, []).append(file)

            raw["crc32"].setdefault(file.hash_code(), []).append(file)
            for alg in _ALGORITHMS:
                value = getattr(file, alg)
                if value:
                    raw[alg].setdefault(value, []).append(file)

            if file.file_header is not None:
                headerless["crc32"].setdefault(file.hash_code_without_header(), []).append(file)
                for alg in _ALGORITHMS:
                    value = getattr(file, f"{alg}_without_header")
                    if value:
                        headerless[alg].setdefault(value, []).append(file)

        combined = {alg: cls._combine(raw[alg], headerless[alg]) for alg in raw}
        return cls(combined, files_by_path, unique)

    @staticmethod
    def _combine(with_headers: ChecksumsToFiles, without_headers: ChecksumsToFiles) -> ChecksumsToFiles:
        result = dict(with_headers)
        for checksum, files in without_headers.items():
            # Files as they exist on disk win over header-stripped views of them
            if checksum not in result:
                result[checksum] = files
        return result

    def get_files(self) -> list["File"]:
        return list(self._files)

    def get_size(self) -> int:
        return len(self._files)

    def get_files_by_file_path(self) -> Dict[str, list["File"]]:
        return self._files_by_path

    def find_files(self, rom: Union["ROM", "File"]) -> Optional[list["File"]]:
        """Files matching ``rom``, in scan order, or None when nothing matches.

        The most collision-resistant checksum the ROM carries picks the bucket;
        the bucket is then filtered by the full identity rule.
        """
        for alg in _ALGORITHMS:
            value = getattr(rom, alg)
            if value and value in self._checksums[alg]:
                return self._filter(rom, self._checksums[alg][value])

        if rom.crc32:
            key = f"{rom.crc32}|{rom.size}"
            if key in self._checksums["crc32"]:
                return self._filter(rom, self._checksums["crc32"][key])
        return None

    @staticmethod
    def _filter(rom: Union["ROM", "File"], files: list["File"]) -> Optional[list["File"]]:
        matcher = getattr(rom, "matches", None)
        if matcher is None:
            return list(files)
        matched = [f for f in files if matcher(f)]
        return matched or None
