"""Warns about games whose parent or device ROM sets were not found."""

from __future__ import annotations

import logging

from romcurator.candidates.models import CandidateMap
from romcurator.core.models import DAT
from romcurator.core.options import MergeMode, Options

logger = logging.getLogger(__name__)


class CandidateMergeSplitValidator:
    name = "merge/split validator"

    def __init__(self, options: Options):
        self.options = options

    def find_missing(self, dat: DAT, parents_to_candidates: CandidateMap) -> list[str]:
        """Names of the dependent games that have no candidate with files."""
        dat_games = {game.name: game for game in dat.games()}
        with_files = {
            candidate.game.name: candidate
            for candidates in parents_to_candidates.values()
            for candidate in candidates
            if candidate.roms_with_files
        }

        missing_games: list[str] = []
        seen: set[str] = set()
        for candidates in parents_to_candidates.values():
            for candidate in candidates:
                game = candidate.game
                if not candidate.roms_with_files or game.name in seen:
                    continue
                seen.add(game.name)

                missing: list[str] = []
                if (
                    self.options.merge_roms == MergeMode.SPLIT
                    and game.clone_of
                    and game.clone_of not in with_files
                ):
                    missing.append(game.clone_of)

                if self.options.merge_roms != MergeMode.FULLNONMERGED:
                    missing.extend(
                        sorted(
                            ref
                            for ref in game.device_refs
                            if ref in dat_games
                            and dat_games[ref].roms
                            and ref not in with_files
                        )
                    )

                if missing:
                    logger.warning(
                        "%s: %s: missing dependent ROM set(s): %s",
                        dat.name,
                        game.name,
                        ", ".join(missing),
                    )
                    missing_games.extend(missing)
        return missing_games

    async def process(self, dat: DAT, parents_to_candidates: CandidateMap) -> CandidateMap:
        if not parents_to_candidates:
            logger.debug("%s: no parents to validate merged & split ROM sets for", dat.name)
            return parents_to_candidates
        self.find_missing(dat, parents_to_candidates)
        return parents_to_candidates
