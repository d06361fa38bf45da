"""Checksums for whole-archive inputs, needed before they can be tested."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from romcurator.candidates.models import (
    CandidateMap,
    ReleaseCandidate,
    ROMWithFiles,
    map_candidates,
)
from romcurator.core.concurrency import MappableSemaphore
from romcurator.core.models import DAT
from romcurator.core.options import Options
from romcurator.files.file import ArchiveFile, File

logger = logging.getLogger(__name__)


def hash_archive_file(input_file: ArchiveFile) -> ArchiveFile:
    hashed = File.file_of(input_file.file_path, input_file.checksum_bitmask, detect_header=False)
    return ArchiveFile.file_of_archive(
        input_file.archive,
        size=hashed.size,
        crc32=hashed.crc32,
        md5=hashed.md5,
        sha1=hashed.sha1,
        sha256=hashed.sha256,
        checksum_bitmask=input_file.checksum_bitmask,
    )


class CandidateArchiveFileHasher:
    name = "archive file hasher"

    def __init__(self, options: Options, reader_semaphore: Optional[MappableSemaphore] = None):
        self.options = options
        self.reader_semaphore = reader_semaphore or MappableSemaphore(options.reader_threads)

    async def process(self, dat: DAT, parents_to_candidates: CandidateMap) -> CandidateMap:
        if not self.options.should_test() and not self.options.overwrite_invalid:
            logger.debug("%s: not testing or overwriting invalid files, no need", dat.name)
            return parents_to_candidates

        archive_file_count = sum(
            1
            for candidates in parents_to_candidates.values()
            for candidate in candidates
            for rwf in candidate.roms_with_files
            if isinstance(rwf.input_file, ArchiveFile)
        )
        if archive_file_count == 0:
            logger.debug("%s: no archive files to hash", dat.name)
            return parents_to_candidates

        logger.debug("%s: hashing %d archive file(s)", dat.name, archive_file_count)
        return await map_candidates(
            parents_to_candidates, lambda candidate: self._hash_candidate(dat, candidate)
        )

    async def _hash_candidate(self, dat: DAT, candidate: ReleaseCandidate) -> ReleaseCandidate:
        async def _hash(rwf: ROMWithFiles) -> ROMWithFiles:
            input_file = rwf.input_file
            if not isinstance(input_file, ArchiveFile):
                return rwf
            output_file = rwf.output_file
            if input_file.file_path == output_file.file_path:
                # The writer skips writing a file over itself
                return rwf

            logger.debug(
                "%s: %s: calculating checksums for: %s", dat.name, candidate.name, input_file
            )
            try:
                hashed = await asyncio.to_thread(hash_archive_file, input_file)
            except OSError as e:
                logger.warning("%s: %s: %s", dat.name, candidate.name, e)
                return rwf
            # The expected output was copied from the unhashed input
            hashed_output = output_file.with_props(
                size=hashed.size,
                crc32=hashed.crc32,
                md5=hashed.md5,
                sha1=hashed.sha1,
                sha256=hashed.sha256,
            )
            return rwf.with_input_file(hashed).with_output_file(hashed_output)

        hashed = await self.reader_semaphore.map(candidate.roms_with_files, _hash)
        return candidate.with_roms_with_files(hashed)
