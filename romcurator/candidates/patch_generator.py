"""Patched candidates: one new parent per patch that applies to a candidate's ROM."""

from __future__ import annotations

import logging
import os
import re
from typing import Iterable, Optional

from romcurator.candidates.models import CandidateMap, ReleaseCandidate, ROMWithFiles
from romcurator.core.models import DAT, ROM, Parent, Release
from romcurator.files.file import ArchiveEntry, File
from romcurator.files.patches import Patch

logger = logging.getLogger(__name__)

_MULTI_EXT_RE = re.compile(r"[^.]+((\.[a-zA-Z0-9]+)+)$")


def index_patches_by_crc_before(patches: Iterable[Patch]) -> dict[str, list[Patch]]:
    crc_to_patches: dict[str, list[Patch]] = {}
    for patch in patches:
        crc_to_patches.setdefault(patch.crc_before.lower(), []).append(patch)
    return crc_to_patches


class CandidatePatchGenerator:
    name = "patch generator"

    def __init__(self, patches: Iterable[Patch] = ()):
        self.crc_to_patches = index_patches_by_crc_before(patches)

    async def process(self, dat: DAT, parents_to_candidates: CandidateMap) -> CandidateMap:
        if not parents_to_candidates:
            logger.debug("%s: no parents to make patched candidates for", dat.name_short())
            return parents_to_candidates
        if not self.crc_to_patches:
            return parents_to_candidates

        logger.debug(
            "%s: %d unique patch(es) found", dat.name_short(), len(self.crc_to_patches)
        )
        result: CandidateMap = {}
        for parent, candidates in parents_to_candidates.items():
            result[parent] = candidates

            # One patched candidate per game, not per release
            seen_games = set()
            for candidate in candidates:
                if candidate.game.name in seen_games:
                    continue
                seen_games.add(candidate.game.name)
                for patched_parent, patched in self._build_patched_parents(dat, candidate):
                    result[patched_parent] = patched
        return result

    def _build_patched_parents(
        self, dat: DAT, unpatched: ReleaseCandidate
    ) -> list[tuple[Parent, list[ReleaseCandidate]]]:
        patches: list[Patch] = []
        for rwf in unpatched.roms_with_files:
            if rwf.input_file.crc32 is not None:
                patches.extend(self.crc_to_patches.get(rwf.input_file.crc32, []))

        patched_parents = []
        for patch in patches:
            patched_rom_name = patch.rom_name()
            roms_with_files = [
                self._patch_rom_with_files(dat, unpatched, rwf, patch, patched_rom_name)
                for rwf in unpatched.roms_with_files
            ]

            game_dir = os.path.dirname(unpatched.game.name.replace("\\", "/"))
            patched_game = unpatched.game.with_props(
                name=f"{game_dir}/{patched_rom_name}" if game_dir else patched_rom_name
            )

            patched_release: Optional[Release] = None
            if unpatched.release is not None:
                patched_release = Release(
                    patched_rom_name, unpatched.release.region, unpatched.release.language
                )

            patched_parents.append(
                (
                    Parent.of(patched_game),
                    [ReleaseCandidate(patched_game, patched_release, tuple(roms_with_files))],
                )
            )
        return patched_parents

    def _patch_rom_with_files(
        self,
        dat: DAT,
        unpatched: ReleaseCandidate,
        rwf: ROMWithFiles,
        patch: Patch,
        patched_rom_name: str,
    ) -> ROMWithFiles:
        if patch.crc_before != rwf.rom.crc32:
            return rwf

        input_file = rwf.input_file.with_patch(patch)
        output_file = rwf.output_file

        match = _MULTI_EXT_RE.search(rwf.rom.name)
        extracted_name = patched_rom_name + (match.group(1) if match else "")
        props = {
            "size": patch.size_after if patch.size_after is not None else output_file.size,
            "crc32": patch.crc_after,
            "file_header": output_file.file_header,
        }

        if isinstance(output_file, ArchiveEntry):
            archive_dir = os.path.dirname(output_file.archive.file_path)
            archive = output_file.archive.with_file_path(
                os.path.join(archive_dir, f"{patched_rom_name}.zip")
            )
            # A single file archive is renamed inside too
            entry_path = (
                extracted_name if len(unpatched.roms_with_files) == 1 else output_file.entry_path
            )
            output_file = ArchiveEntry.entry_of(archive, entry_path, **props)
        else:
            output_file = File(
                file_path=os.path.join(os.path.dirname(output_file.file_path), extracted_name),
                **props,
            )

        rom_dir = os.path.dirname(rwf.rom.name.replace("\\", "/"))
        rom_basename = os.path.basename(output_file.extracted_file_path)
        rom = ROM(
            name=f"{rom_dir}/{rom_basename}" if rom_dir else rom_basename,
            size=output_file.size,
            crc32=output_file.crc32,
        )

        logger.debug("%s: %s: patch candidate generated: %s", dat.name_short(), input_file, output_file)
        return ROMWithFiles(rom, input_file, output_file)
