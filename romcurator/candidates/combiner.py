"""Combines every candidate of a DAT into one game written to a single zip."""

from __future__ import annotations

import logging
import os

from romcurator.candidates.models import CandidateMap, ReleaseCandidate, ROMWithFiles
from romcurator.core.models import DAT, ROM, Game, Parent
from romcurator.core.options import Options
from romcurator.files.file import ArchiveEntry

logger = logging.getLogger(__name__)


class CandidateCombiner:
    name = "combiner"

    def __init__(self, options: Options):
        self.options = options

    async def process(self, dat: DAT, parents_to_candidates: CandidateMap) -> CandidateMap:
        if not self.options.zip_dat_name:
            return parents_to_candidates
        if not parents_to_candidates:
            logger.debug("%s: no parents to combine", dat.name)
            return parents_to_candidates

        logger.debug("%s: generating consolidated candidate", dat.name)
        candidates = [c for cs in parents_to_candidates.values() for c in cs]
        game = self._build_game(dat, candidates)
        return {Parent.of(game): [self._build_candidate(dat, game, candidates)]}

    @staticmethod
    def _build_game(dat: DAT, candidates: list[ReleaseCandidate]) -> Game:
        unique_roms: dict[str, ROM] = {}
        for candidate in candidates:
            for rwf in candidate.roms_with_files:
                unique_roms.setdefault(rwf.rom.name, rwf.rom)
        return Game(name=dat.name, roms=tuple(unique_roms.values()))

    @staticmethod
    def _build_candidate(
        dat: DAT, game: Game, candidates: list[ReleaseCandidate]
    ) -> ReleaseCandidate:
        roms_with_files: list[ROMWithFiles] = []
        for candidate in candidates:
            for rwf in candidate.roms_with_files:
                output_file = rwf.output_file
                if not isinstance(output_file, ArchiveEntry):
                    # Excluded from zipping, leave it alone
                    roms_with_files.append(rwf)
                    continue

                archive_dir = os.path.dirname(output_file.file_path)
                output_entry = output_file.with_file_path(
                    os.path.join(archive_dir, f"{dat.name.replace('/', '_')}.zip")
                )
                if len(candidate.game.roms) > 1:
                    # Group multi-ROM games in a folder inside the archive
                    output_entry = output_entry.with_entry_path(
                        f"{candidate.game.name}/{output_entry.entry_path}"
                    )
                roms_with_files.append(rwf.with_output_file(output_entry))
        return ReleaseCandidate(game, None, tuple(roms_with_files))
