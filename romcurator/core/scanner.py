from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Iterable, Optional

from romcurator import config
from romcurator.common.exceptions import ArchiveError, DependencyError
from romcurator.core.concurrency import MappableSemaphore
from romcurator.core.models import DAT
from romcurator.files.archives import archive_of
from romcurator.files.file import File
from romcurator.files.patches import Patch, patch_from_path
from romcurator.logging_cfg import get_logger
from romcurator.verification.hasher import ChecksumBitmask


def required_checksum_bitmask(dats: Iterable[DAT]) -> ChecksumBitmask:
    """Checksums worth computing: CRC32, plus the strongest one of ROMs that lack a CRC32."""
    bitmask = ChecksumBitmask.CRC32
    for dat in dats:
        for game in dat.games():
            for rom in game.all_roms():
                if rom.crc32:
                    continue
                if rom.sha256:
                    bitmask |= ChecksumBitmask.SHA256
                elif rom.sha1:
                    bitmask |= ChecksumBitmask.SHA1
                elif rom.md5:
                    bitmask |= ChecksumBitmask.MD5
    return bitmask


class Scanner:
    """Discovers input files and patches, hashing them on worker threads."""

    def __init__(
        self,
        checksum_bitmask: int = ChecksumBitmask.CRC32,
        reader_semaphore: Optional[MappableSemaphore] = None,
    ):
        self.checksum_bitmask = checksum_bitmask
        self.reader_semaphore = reader_semaphore or MappableSemaphore(config.DEFAULT_READER_THREADS)
        self.logger = get_logger("romcurator.core.scanner")

    @staticmethod
    def _is_valid_input_file(path: Path) -> bool:
        """Skip hidden files and our own temp files."""
        return path.is_file() and not path.name.startswith(".")

    def find_paths(self, paths: Iterable[str | Path]) -> list[Path]:
        found: dict[str, Path] = {}
        for path in paths:
            path = Path(path)
            if path.is_file():
                found.setdefault(str(path), path)
                continue
            if not path.is_dir():
                self.logger.warning("Input path not found: %s", path)
                continue
            for child in sorted(path.rglob("*")):
                if self._is_valid_input_file(child):
                    found.setdefault(str(child), child)
        return list(found.values())

    async def scan_files(self, paths: Iterable[str | Path]) -> list[File]:
        """Every ROM file found under ``paths``; archives contribute one file per entry."""
        file_paths = [
            p for p in await asyncio.to_thread(self.find_paths, paths) if patch_from_path(str(p)) is None
        ]
        self.logger.debug("Scanning %d input file(s)", len(file_paths))

        async def _scan(path: Path) -> list[File]:
            return await asyncio.to_thread(self._files_of, path)

        results = await self.reader_semaphore.map(file_paths, _scan)
        return [f for files in results for f in files]

    def _files_of(self, path: Path) -> list[File]:
        if config.is_archive(str(path)):
            try:
                archive = archive_of(path)
                if archive is not None:
                    return list(archive.get_archive_entries(self.checksum_bitmask))
            except (ArchiveError, DependencyError) as e:
                self.logger.warning("Could not read archive %s, hashing it as a file: %s", path.name, e)
        try:
            return [File.file_of(path, self.checksum_bitmask)]
        except OSError as e:
            self.logger.warning("Could not read %s: %s", path, e)
            return []

    async def scan_patches(self, paths: Iterable[str | Path]) -> list[Patch]:
        patches = []
        for path in await asyncio.to_thread(self.find_paths, paths):
            patch = patch_from_path(str(path))
            if patch is None:
                self.logger.debug("Not a usable patch: %s", path)
                continue
            patches.append(patch)
        return patches
