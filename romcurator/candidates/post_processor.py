"""Final output paths, computed once every candidate's ROM basename is known.

Letter bucketing (``dir_letter`` with a limit) needs the full list of output
basenames of the DAT, which only exists after generation.
"""

from __future__ import annotations

import logging
import os

from romcurator.candidates.models import CandidateMap, ReleaseCandidate
from romcurator.common.exceptions import TokenReplacementError
from romcurator.core import output_factory
from romcurator.core.models import DAT
from romcurator.core.options import Options

logger = logging.getLogger(__name__)


class CandidatePostProcessor:
    name = "path finalizer"

    def __init__(self, options: Options):
        self.options = options

    async def process(self, dat: DAT, parents_to_candidates: CandidateMap) -> CandidateMap:
        if not parents_to_candidates:
            logger.debug("%s: no parents, so no candidates to process", dat.name)
            return parents_to_candidates
        if not self.options.should_write() and not self.options.should_test():
            return parents_to_candidates

        basenames = []
        for candidates in parents_to_candidates.values():
            for candidate in candidates:
                for rwf in candidate.roms_with_files:
                    try:
                        path = output_factory.get_path(
                            self.options, dat, candidate.game, candidate.release, rwf.rom, rwf.input_file
                        )
                    except TokenReplacementError:
                        continue
                    basenames.append(path.name + path.ext)

        return {
            parent: [self._finalize(dat, c, basenames) for c in candidates]
            for parent, candidates in parents_to_candidates.items()
        }

    def _finalize(self, dat: DAT, candidate: ReleaseCandidate, basenames: list[str]) -> ReleaseCandidate:
        changed = False
        roms_with_files = []
        for rwf in candidate.roms_with_files:
            try:
                new_path = output_factory.get_path(
                    self.options,
                    dat,
                    candidate.game,
                    candidate.release,
                    rwf.rom,
                    rwf.input_file,
                    basenames,
                ).format()
            except TokenReplacementError as e:
                logger.warning("%s: %s: %s", dat.name, candidate.name, e)
                roms_with_files.append(rwf)
                continue
            if os.path.normpath(new_path) == rwf.output_file.file_path:
                roms_with_files.append(rwf)
                continue
            changed = True
            roms_with_files.append(rwf.with_output_file(rwf.output_file.with_file_path(new_path)))

        if not changed:
            return candidate
        return candidate.with_roms_with_files(roms_with_files)
