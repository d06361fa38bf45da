"""Rejects candidates of different games that would write the same output path."""

from __future__ import annotations

import logging

from romcurator.candidates.models import CandidateMap, ReleaseCandidate
from romcurator.common.exceptions import PipelineHaltError
from romcurator.core.models import DAT
from romcurator.core.options import Options

logger = logging.getLogger(__name__)


class CandidateValidator:
    name = "validator"

    def __init__(self, options: Options):
        self.options = options

    def find_conflicts(self, dat: DAT, parents_to_candidates: CandidateMap) -> list[ReleaseCandidate]:
        """Candidates whose output paths are also claimed by a different game."""
        paths_to_candidates: dict[str, list[ReleaseCandidate]] = {}
        for candidates in parents_to_candidates.values():
            for candidate in candidates:
                for rwf in candidate.roms_with_files:
                    paths_to_candidates.setdefault(rwf.output_file.file_path, []).append(candidate)

        conflicted: list[ReleaseCandidate] = []
        for output_path, candidates in paths_to_candidates.items():
            game_names = sorted({c.game.name for c in candidates})
            if len(game_names) < 2:
                continue

            message = f"{dat.name}: multiple games writing to the same output path: {output_path}"
            for name in game_names:
                message += f"\n  {name}"
            logger.error(message)
            for candidate in candidates:
                if candidate not in conflicted:
                    conflicted.append(candidate)
        return conflicted

    async def process(self, dat: DAT, parents_to_candidates: CandidateMap) -> CandidateMap:
        if not self.options.should_write():
            return parents_to_candidates
        if not any(parents_to_candidates.values()):
            logger.debug("%s: no candidates to validate", dat.name)
            return parents_to_candidates

        conflicted = self.find_conflicts(dat, parents_to_candidates)
        if not conflicted:
            return parents_to_candidates

        if self.options.strict_validation:
            raise PipelineHaltError(
                self.name, f"{len(conflicted)} candidate(s) have conflicting output paths"
            )

        # Only the offending game names are dropped, everything else is written
        conflicted_games = {c.game.name for c in conflicted}
        return {
            parent: [c for c in candidates if c.game.name not in conflicted_games]
            for parent, candidates in parents_to_candidates.items()
        }
