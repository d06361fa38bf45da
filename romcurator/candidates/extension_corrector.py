"""Output extension correction from file signatures.

Applies when there are no DATs to supply trustworthy ROM names, when a DAT
ROM name is blank, or when correction is forced with ``fix_extension=always``.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Optional

from romcurator.candidates.models import (
    CandidateMap,
    ReleaseCandidate,
    ROMWithFiles,
    map_candidates,
)
from romcurator.common.exceptions import RomCuratorError, TokenReplacementError
from romcurator.core import output_factory
from romcurator.core.concurrency import MappableSemaphore
from romcurator.core.models import DAT, ROM
from romcurator.core.options import FixExtension, Options
from romcurator.files.archives import Chd
from romcurator.files.file import ArchiveEntry, File
from romcurator.files.signatures import MAX_SIGNATURE_LENGTH_BYTES, FileSignature

logger = logging.getLogger(__name__)


def read_signature(input_file: File) -> Optional[FileSignature]:
    if isinstance(input_file, ArchiveEntry):
        data = input_file.read_bytes()[:MAX_SIGNATURE_LENGTH_BYTES]
        return FileSignature.signature_from_bytes(data)
    with open(input_file.file_path, "rb") as f:
        return FileSignature.signature_from_stream(f)


class CandidateExtensionCorrector:
    name = "extension corrector"

    def __init__(self, options: Options, reader_semaphore: Optional[MappableSemaphore] = None):
        self.options = options
        self.reader_semaphore = reader_semaphore or MappableSemaphore(options.reader_threads)

    def rom_needs_correcting(self, rwf: ROMWithFiles) -> bool:
        if not rwf.rom.name.strip():
            return True

        input_file = rwf.input_file
        if isinstance(input_file, ArchiveEntry) and isinstance(input_file.archive, Chd):
            return False

        fix = self.options.fix_extension
        return fix == FixExtension.ALWAYS or (
            fix == FixExtension.AUTO and not self.options.using_dats()
        )

    async def process(self, dat: DAT, parents_to_candidates: CandidateMap) -> CandidateMap:
        if not parents_to_candidates:
            logger.debug("%s: no parents to correct extensions for", dat.name_short())
            return parents_to_candidates

        needing = sum(
            1
            for candidates in parents_to_candidates.values()
            for candidate in candidates
            for rwf in candidate.roms_with_files
            if self.rom_needs_correcting(rwf)
        )
        if needing == 0:
            logger.debug("%s: no output files need their extension corrected", dat.name_short())
            return parents_to_candidates

        logger.debug("%s: correcting %d output file extension(s)", dat.name_short(), needing)
        return await map_candidates(
            parents_to_candidates, lambda candidate: self._correct_candidate(dat, candidate)
        )

    async def _correct_candidate(self, dat: DAT, candidate: ReleaseCandidate) -> ReleaseCandidate:
        async def _correct(idx_rwf) -> ROMWithFiles:
            idx, rwf = idx_rwf
            rom = await self._build_corrected_rom(dat, candidate, idx, rwf)
            if rom == rwf.rom:
                return rwf
            try:
                output_path = output_factory.get_path(
                    self.options, dat, candidate.game, candidate.release, rom, rwf.input_file
                )
            except TokenReplacementError as e:
                logger.warning("%s: %s: %s", dat.name_short(), candidate.name, e)
                return rwf
            output_file = rwf.output_file.with_file_path(output_path.format())
            if isinstance(output_file, ArchiveEntry):
                output_file = output_file.with_entry_path(output_path.entry_path.replace(os.sep, "/"))
            return rwf.with_rom(rom).with_output_file(output_file)

        corrected = await self.reader_semaphore.map(
            list(enumerate(candidate.roms_with_files)), _correct
        )
        return candidate.with_roms_with_files(corrected)

    async def _build_corrected_rom(
        self, dat: DAT, candidate: ReleaseCandidate, idx: int, rwf: ROMWithFiles
    ) -> ROM:
        rom = rwf.rom
        if not rom.name.strip():
            # No name means no known extension, defaulting it isn't a correction
            suffix = f" (File {idx + 1})" if len(candidate.roms_with_files) > 1 else ""
            rom = rom.with_name(f"{candidate.name}{suffix}.rom")

        if not self.rom_needs_correcting(rwf):
            return rom

        logger.debug(
            "%s: %s: correcting extension for: %s", dat.name_short(), candidate.name, rwf.input_file
        )
        try:
            signature = await asyncio.to_thread(read_signature, rwf.input_file)
        except (OSError, RomCuratorError) as e:
            logger.error(
                "%s: failed to correct file extension for '%s': %s",
                dat.name_short(),
                rwf.input_file,
                e,
            )
            return rom

        if signature is not None:
            stem, _ = os.path.splitext(rom.name)
            rom = rom.with_name(stem + signature.extension)
        return rom
