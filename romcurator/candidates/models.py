"""Candidates: a game's ROMs bound to concrete input and output files."""

from __future__ import annotations

import asyncio
import dataclasses
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, Dict, Iterable, Optional

if TYPE_CHECKING:
    from romcurator.core.models import ROM, Game, Parent, Release
    from romcurator.files.file import File


@dataclass(frozen=True)
class ROMWithFiles:
    rom: "ROM"
    input_file: "File"
    output_file: "File"

    def with_rom(self, rom: "ROM") -> "ROMWithFiles":
        return dataclasses.replace(self, rom=rom)

    def with_input_file(self, input_file: "File") -> "ROMWithFiles":
        return dataclasses.replace(self, input_file=input_file)

    def with_output_file(self, output_file: "File") -> "ROMWithFiles":
        return dataclasses.replace(self, output_file=output_file)

    def key(self) -> str:
        return f"{self.input_file}|{self.output_file}"

    def __str__(self) -> str:
        return f"{self.input_file} -> {self.output_file}"


@dataclass(frozen=True)
class ReleaseCandidate:
    game: "Game"
    release: Optional["Release"]
    roms_with_files: tuple[ROMWithFiles, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "roms_with_files", tuple(self.roms_with_files))

    @property
    def name(self) -> str:
        return self.game.name

    def with_game(self, game: "Game") -> "ReleaseCandidate":
        return dataclasses.replace(self, game=game)

    def with_roms_with_files(self, roms_with_files: Iterable[ROMWithFiles]) -> "ReleaseCandidate":
        return dataclasses.replace(self, roms_with_files=tuple(roms_with_files))

    def is_patched(self) -> bool:
        return any(rwf.input_file.patch is not None for rwf in self.roms_with_files)

    def __str__(self) -> str:
        if self.release is not None and self.release.region:
            return f"{self.name} ({self.release.region})"
        return self.name


CandidateMap = Dict["Parent", list[ReleaseCandidate]]


def count_candidates(parents_to_candidates: CandidateMap) -> int:
    return sum(len(candidates) for candidates in parents_to_candidates.values())


async def map_candidates(
    parents_to_candidates: CandidateMap,
    callback: Callable[[ReleaseCandidate], Awaitable[ReleaseCandidate]],
) -> CandidateMap:
    """Run ``callback`` over every candidate at once, keeping parent and candidate order.

    Not gated: callers gate their own file I/O.
    """
    flat = [
        (parent, candidate)
        for parent, candidates in parents_to_candidates.items()
        for candidate in candidates
    ]
    mapped = await asyncio.gather(*(callback(candidate) for _, candidate in flat))

    result: CandidateMap = {parent: [] for parent in parents_to_candidates}
    for (parent, _), candidate in zip(flat, mapped):
        result[parent].append(candidate)
    return result
