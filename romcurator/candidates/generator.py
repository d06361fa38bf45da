"""Candidate generation: bind every game's ROMs to input files and output paths."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Optional, Sequence

from romcurator.candidates.models import CandidateMap, ReleaseCandidate, ROMWithFiles
from romcurator.common.exceptions import TokenReplacementError, format_exception_chain
from romcurator.core import output_factory
from romcurator.core.concurrency import MappableSemaphore
from romcurator.core.indexed_files import IndexedFiles
from romcurator.core.models import DAT, ROM, Disk, Game, Release
from romcurator.core.options import Options
from romcurator.files.archives import Archive, Chd, ChdBinCue, Zip
from romcurator.files.file import ArchiveEntry, ArchiveFile, File
from romcurator.logging_cfg import log_call

logger = logging.getLogger(__name__)

_CHECKSUM_ALGORITHMS = ("crc32", "md5", "sha1", "sha256")


def _plural(count: int, word: str) -> str:
    return f"{count:,} {word}{'' if count == 1 else 's'}"


def _headered_checksums_match(input_file: File, rom: ROM) -> bool:
    return any(
        getattr(input_file, alg) is not None and getattr(input_file, alg) == getattr(rom, alg)
        for alg in _CHECKSUM_ALGORITHMS
    )


def _headerless_checksums_mismatch(input_file: File, rom: ROM) -> bool:
    return any(
        getattr(input_file, f"{alg}_without_header") is not None
        and getattr(input_file, f"{alg}_without_header") != getattr(rom, alg)
        for alg in _CHECKSUM_ALGORITHMS
    )


def only_cue_files_missing_from_chd(game: Game, found_roms: Sequence[ROM]) -> bool:
    """True when ``game`` is bin/cue only and every ROM but some ``.cue`` files was found.

    CHDs rebuild their own cue sheet on extraction, so a raw copied CHD is trusted
    even when its cue file doesn't match the DAT.
    """
    if not found_roms:
        return False

    names = [rom.name.lower() for rom in game.roms]
    has_cue = any(n.endswith(".cue") for n in names)
    has_bin = any(n.endswith(".bin") for n in names)
    has_other = any(not n.endswith((".cue", ".bin")) for n in names)
    if not has_cue or not has_bin or has_other:
        return False

    found_names = {rom.name for rom in found_roms}
    return all(rom.name in found_names or rom.name.lower().endswith(".cue") for rom in game.roms)


class CandidateGenerator:
    """For every game of a DAT, find its ROMs in the index and build release candidates."""

    def __init__(self, options: Options, reader_semaphore: Optional[MappableSemaphore] = None):
        self.options = options
        self.reader_semaphore = reader_semaphore or MappableSemaphore(options.reader_threads)

    @log_call()
    async def generate(self, dat: DAT, indexed_files: IndexedFiles) -> CandidateMap:
        parents_to_candidates: CandidateMap = {parent: [] for parent in dat.parents}
        if indexed_files.get_size() == 0:
            logger.debug("%s: no input ROMs to make candidates from", dat.name)
            return parents_to_candidates

        logger.debug("%s: generating candidates", dat.name)
        pairs = [(parent, game) for parent in dat.parents for game in parent.games]

        async def _build(pair) -> list[ReleaseCandidate]:
            parent, game = pair
            try:
                candidates = await self._build_candidates_for_game(dat, game, indexed_files)
            except Exception as e:
                logger.error(
                    "%s: %s: failed to generate candidates: %s",
                    dat.name,
                    game.name,
                    format_exception_chain(e),
                )
                return []
            if candidates:
                logger.debug(
                    "%s: %s: found %s: %s",
                    dat.name,
                    game.name,
                    _plural(len(candidates), "candidate"),
                    ", ".join(str(rwf.input_file) for rwf in candidates[0].roms_with_files),
                )
            return candidates

        # Results come back in DAT order regardless of completion order
        results = await self.reader_semaphore.map(pairs, _build)
        for (parent, _), candidates in zip(pairs, results):
            parents_to_candidates[parent].extend(candidates)

        total = sum(len(c) for c in parents_to_candidates.values())
        logger.debug(
            "%s: generated %s for %s",
            dat.name,
            _plural(total, "candidate"),
            _plural(len(parents_to_candidates), "parent"),
        )
        return parents_to_candidates

    async def _build_candidates_for_game(
        self, dat: DAT, game: Game, indexed_files: IndexedFiles
    ) -> list[ReleaseCandidate]:
        game_roms: list[ROM] = game.all_roms(exclude_disks=self.options.exclude_disks)
        releases: list[Optional[Release]] = list(game.releases) or [None]

        roms_to_input_files = [indexed_files.find_files(rom) or [] for rom in game_roms]
        roms_to_input_files = self._filter_legal_input_files(dat, game, game_roms, roms_to_input_files)
        optimal_input_files = self._find_optimal_input_files(
            dat, game, game_roms, roms_to_input_files, indexed_files
        )

        bound = [
            self._build_rom_with_files(dat, game, releases[0], rom, input_file)
            for rom, input_file in zip(game_roms, optimal_input_files)
        ]
        found = [rwf for rwf in bound if rwf is not None]
        if game_roms and not found:
            # The game has ROMs, but none of them were found
            return []

        found = await self._build_roms_with_archive_files(dat, game, found)

        missing_roms = [rom for rom, rwf in zip(game_roms, bound) if rwf is None]
        if missing_roms and not self.options.allow_incomplete_sets:
            if found:
                self._log_missing_rom_files(dat, game, found, missing_roms)
            return []

        if (
            not self.options.should_zip()
            and not self.options.should_extract()
            and not self.options.allow_excess_sets
            and self._has_excess_files(dat, game, found, indexed_files)
        ):
            return []

        candidates: list[ReleaseCandidate] = []
        seen: set[tuple] = set()
        for release in releases:
            candidate = self._build_release_candidate(dat, game, release, found)
            if candidate is None:
                continue
            identity = (
                release.name if release else None,
                tuple(rwf.key() for rwf in candidate.roms_with_files),
            )
            if identity in seen:
                continue
            seen.add(identity)
            candidates.append(candidate)
        return candidates

    def _build_release_candidate(
        self,
        dat: DAT,
        game: Game,
        release: Optional[Release],
        found: list[ROMWithFiles],
    ) -> Optional[ReleaseCandidate]:
        # Output paths can depend on release tokens, compute them per release
        roms_with_files: list[ROMWithFiles] = []
        for rwf in found:
            if not self.options.should_write() and not self.options.should_test():
                roms_with_files.append(rwf.with_output_file(rwf.input_file))
                continue
            try:
                output_file = self.get_output_file(dat, game, release, rwf.rom, rwf.input_file)
            except TokenReplacementError as e:
                logger.debug("%s: %s: %s", dat.name, game.name, e)
                if not self.options.allow_incomplete_sets:
                    return None
                continue
            roms_with_files.append(rwf.with_output_file(output_file))

        if found and not roms_with_files:
            return None

        if self._has_conflicting_output_files(dat, roms_with_files):
            return None

        unique: dict[str, ROMWithFiles] = {}
        for rwf in roms_with_files:
            unique.setdefault(rwf.key(), rwf)
        return ReleaseCandidate(game, release, tuple(unique.values()))

    # Input file selection

    def _filter_legal_input_files(
        self,
        dat: DAT,
        game: Game,
        game_roms: list[ROM],
        roms_to_input_files: list[list[File]],
    ) -> list[list[File]]:
        filtered = []
        for rom, input_files in zip(game_roms, roms_to_input_files):
            raw_copying = (
                self.options.should_write()
                and not self.options.should_extract_rom(rom)
                and not self.options.should_zip_rom(rom)
            )
            if not raw_copying:
                filtered.append(input_files)
                continue
            filtered.append(
                [f for f in input_files if not self._is_unusable_raw_archive_entry(dat, game, rom, f)]
            )
        return filtered

    def _is_unusable_raw_archive_entry(self, dat: DAT, game: Game, rom: ROM, input_file: File) -> bool:
        if not isinstance(input_file, ArchiveEntry):
            return False
        if self.options.patch_file_count > 0 and not isinstance(rom, Disk):
            # A raw copied archive can't be patched
            return True
        return not isinstance(input_file.archive, Chd) and self._entry_path_differs(
            dat, game, rom, input_file
        )

    def _entry_path_differs(self, dat: DAT, game: Game, rom: ROM, input_file: ArchiveEntry) -> bool:
        if not rom.name.strip():
            return False
        wanted = output_factory.get_entry_path(self.options, dat, game, rom, input_file)
        return wanted.replace(os.sep, "/") != input_file.extracted_file_path

    def _find_optimal_input_files(
        self,
        dat: DAT,
        game: Game,
        game_roms: list[ROM],
        roms_to_input_files: list[list[File]],
        indexed_files: IndexedFiles,
    ) -> list[Optional[File]]:
        archive_files = self._find_archive_with_every_rom(
            dat, game, game_roms, roms_to_input_files, indexed_files
        )
        if archive_files is not None:
            return archive_files

        # No usable archive holds every ROM, prefer raw files
        return [
            sorted(input_files, key=lambda f: isinstance(f, ArchiveEntry))[0] if input_files else None
            for input_files in roms_to_input_files
        ]

    def _find_archive_with_every_rom(
        self,
        dat: DAT,
        game: Game,
        game_roms: list[ROM],
        roms_to_input_files: list[list[File]],
        indexed_files: IndexedFiles,
    ) -> Optional[list[Optional[File]]]:
        if not game_roms:
            return None
        if all(self.options.should_extract_rom(rom) for rom in game_roms):
            # Extracted files can come from anywhere
            return None

        # Archive -> indexes of this game's ROMs found in it; duplicate ROMs count once each
        archives_to_roms: dict[Archive, list[int]] = {}
        for idx, input_files in enumerate(roms_to_input_files):
            for input_file in input_files:
                if not isinstance(input_file, ArchiveEntry):
                    continue
                indexes = archives_to_roms.setdefault(input_file.archive, [])
                if idx not in indexes:
                    indexes.append(idx)

        game_hash_codes = ",".join(rom.hash_code() for rom in game_roms)
        no_rewrite = not any(
            self.options.should_zip_rom(rom) or self.options.should_extract_rom(rom)
            for rom in game_roms
        )
        archives_with_every_rom = []
        for archive, indexes in archives_to_roms.items():
            roms = [game_roms[i] for i in indexes]
            if ",".join(rom.hash_code() for rom in roms) == game_hash_codes:
                archives_with_every_rom.append(archive)
            elif (
                isinstance(archive, ChdBinCue)
                and no_rewrite
                and only_cue_files_missing_from_chd(game, roms)
            ):
                archives_with_every_rom.append(archive)

        all_input_files = [f for input_files in roms_to_input_files for f in input_files]
        usable = []
        for archive in archives_with_every_rom:
            unused = self.find_archive_unused_entries(archive, all_input_files, indexed_files)
            if unused:
                logger.debug(
                    "%s: %s: not preferring archive that contains every ROM, plus the excess entries:\n%s",
                    dat.name,
                    game.name,
                    "\n".join(f"  {entry}" for entry in unused),
                )
                continue
            usable.append(archive)

        files_by_path = indexed_files.get_files_by_file_path()
        usable.sort(
            key=lambda a: (
                len(files_by_path.get(a.file_path, [])),
                isinstance(a, Chd),
                game.name not in os.path.basename(a.file_path),
            )
        )

        archive = next(
            (a for a in usable if not self.options.should_zip() or isinstance(a, Zip)), None
        )
        if archive is None:
            return None

        logger.debug(
            "%s: %s: preferring input archive that contains every ROM: %s",
            dat.name,
            game.name,
            archive.file_path,
        )
        result: list[Optional[File]] = []
        for rom, input_files in zip(game_roms, roms_to_input_files):
            entry = next(
                (
                    f
                    for f in input_files
                    if isinstance(f, ArchiveEntry) and f.archive == archive
                ),
                None,
            )
            if entry is None and rom.name.lower().endswith(".cue") and isinstance(archive, ChdBinCue):
                entry = next(
                    (
                        f
                        for f in files_by_path.get(archive.file_path, [])
                        if f.extracted_file_path.lower().endswith(".cue")
                    ),
                    None,
                )
            result.append(entry)
        return result

    # Per-ROM binding

    def _build_rom_with_files(
        self,
        dat: DAT,
        game: Game,
        release: Optional[Release],
        rom: ROM,
        input_file: Optional[File],
    ) -> Optional[ROMWithFiles]:
        if input_file is None:
            return None

        # Report only, nothing gets written
        if not self.options.should_write() and not self.options.should_test():
            return ROMWithFiles(rom, input_file, input_file)

        if input_file.file_header is not None and not self.options.should_write():
            # Testing only, don't report a headered file as wrong
            input_file = input_file.without_file_header()

        if input_file.file_header is not None:
            headered_match = _headered_checksums_match(input_file, rom)
            ext = os.path.splitext(input_file.extracted_file_path)[1]
            if headered_match and not self.options.can_remove_header(dat, ext):
                logger.debug(
                    "%s: %s: not removing header, ignoring that one was found for: %s",
                    dat.name,
                    game.name,
                    input_file,
                )
                input_file = input_file.without_file_header()
            elif not headered_match and self.options.should_link():
                # Links can't strip a header
                logger.debug(
                    "%s: %s: can't use headered ROM as target for link: %s",
                    dat.name,
                    game.name,
                    input_file,
                )
                return None

        try:
            output_file = self.get_output_file(dat, game, release, rom, input_file)
        except TokenReplacementError as e:
            logger.error("%s: %s: %s", dat.name, game.name, e)
            return None
        return ROMWithFiles(rom, input_file, output_file)

    def get_output_file(
        self,
        dat: DAT,
        game: Game,
        release: Optional[Release],
        rom: ROM,
        input_file: File,
    ) -> File:
        output_path = output_factory.get_path(self.options, dat, game, release, rom, input_file)
        output_file_path = output_path.format()

        if input_file.file_header is not None:
            props = {
                "size": input_file.size_without_header or 0,
                **{alg: getattr(input_file, f"{alg}_without_header") for alg in _CHECKSUM_ALGORITHMS},
            }
        else:
            props = {
                "size": input_file.size,
                **{alg: getattr(input_file, alg) for alg in _CHECKSUM_ALGORITHMS},
            }

        if (
            self.options.should_zip_rom(rom) and not isinstance(input_file, ArchiveFile)
        ) or (
            not self.options.should_write()
            and isinstance(input_file, ArchiveEntry)
            and isinstance(input_file.archive, Zip)
        ):
            return ArchiveEntry.entry_of(
                Zip(output_file_path),
                output_path.entry_path.replace(os.sep, "/"),
                **props,
            )
        return File(file_path=output_file_path, **props)

    # Archive passthrough

    def _should_generate_archive_file(
        self, dat: DAT, game: Game, roms_with_files: list[ROMWithFiles]
    ) -> bool:
        if self.options.zip_dat_name:
            # Everything gets combined into one zip later
            return False

        for rwf in roms_with_files:
            rom, input_file = rwf.rom, rwf.input_file
            if not isinstance(input_file, ArchiveEntry):
                return False
            if input_file.file_header is not None and _headerless_checksums_mismatch(input_file, rom):
                return False
            if self.options.should_extract_rom(rom):
                return False
            if self.options.should_zip_rom(rom) and not isinstance(input_file.archive, Zip):
                return False
            if (
                self.options.patch_file_count > 0
                and not (self.options.should_extract_rom(rom) or self.options.should_zip_rom(rom))
                and not isinstance(rom, Disk)
            ):
                return False
            if not isinstance(input_file.archive, Chd) and self._entry_path_differs(
                dat, game, rom, input_file
            ):
                return False

        # Every input file has to come from the same archive
        return len({rwf.input_file.file_path for rwf in roms_with_files}) == 1

    async def _build_roms_with_archive_files(
        self, dat: DAT, game: Game, found: list[ROMWithFiles]
    ) -> list[ROMWithFiles]:
        if not found:
            return found

        should_generate = self._should_generate_archive_file(dat, game, found)
        result = []
        for rwf in found:
            input_file = rwf.input_file
            if (not should_generate and not isinstance(rwf.rom, Disk)) or not isinstance(
                input_file, ArchiveEntry
            ):
                result.append(rwf)
                continue

            # Checksums of the whole archive are filled in later by the archive-file hasher
            try:
                size = await asyncio.to_thread(os.path.getsize, input_file.file_path)
            except OSError as e:
                logger.warning("%s: %s: %s", dat.name, game.name, e)
                continue
            result.append(
                rwf.with_input_file(
                    ArchiveFile.file_of_archive(
                        input_file.archive,
                        size=size,
                        checksum_bitmask=input_file.checksum_bitmask,
                    )
                )
            )
        return result

    # Rejections

    def _log_missing_rom_files(
        self, dat: DAT, game: Game, found: list[ROMWithFiles], missing_roms: list[ROM]
    ) -> None:
        message = (
            f"{dat.name}: {game.name}: found {_plural(len(found), 'file')}, "
            f"missing {_plural(len(missing_roms), 'file')}"
        )
        for rom in missing_roms:
            message += f"\n  {rom.name}"
        logger.debug(message)

    def _has_conflicting_output_files(self, dat: DAT, roms_with_files: list[ROMWithFiles]) -> bool:
        if not self.options.should_write():
            return False

        output_paths = [
            rwf.output_file.file_path
            for rwf in roms_with_files
            if not isinstance(rwf.output_file, ArchiveEntry)
        ]
        duplicates = sorted({p for p in output_paths if output_paths.count(p) > 1})

        has_conflict = False
        for duplicate in duplicates:
            inputs: list[str] = []
            for rwf in roms_with_files:
                if rwf.output_file.file_path == duplicate and str(rwf.input_file) not in inputs:
                    inputs.append(str(rwf.input_file))
            if len(inputs) > 1:
                has_conflict = True
                message = (
                    f"{dat.name}: no single archive contains all necessary files, cannot "
                    f"{self.options.write_string()} these different input files to: {duplicate}:"
                )
                for input_path in inputs:
                    message += f"\n  {input_path}"
                logger.warning(message)
        return has_conflict

    def _has_excess_files(
        self,
        dat: DAT,
        game: Game,
        roms_with_files: list[ROMWithFiles],
        indexed_files: IndexedFiles,
    ) -> bool:
        # Look the entries back up, whole-archive inputs no longer carry them
        input_entries: list[ArchiveEntry] = []
        for rwf in roms_with_files:
            input_file = rwf.input_file
            if not isinstance(input_file, (ArchiveEntry, ArchiveFile)):
                continue
            match = next(
                (
                    f
                    for f in indexed_files.find_files(rwf.rom) or []
                    if isinstance(f, ArchiveEntry)
                    and f.file_path == input_file.file_path
                    and f.archive == input_file.archive
                ),
                None,
            )
            if match is not None:
                input_entries.append(match)

        archives: list[Archive] = []
        for entry in input_entries:
            if entry.archive not in archives:
                archives.append(entry.archive)

        if (
            len(archives) == 1
            and isinstance(archives[0], ChdBinCue)
            and only_cue_files_missing_from_chd(game, [rwf.rom for rwf in roms_with_files])
        ):
            return False

        for archive in archives:
            unused = self.find_archive_unused_entries(archive, input_entries, indexed_files)
            if unused:
                logger.debug(
                    "%s: %s: cannot use '%s' as an input file, it has the excess entries:\n%s",
                    dat.name,
                    game.name,
                    archive.file_path,
                    "\n".join(f"  {entry}" for entry in unused),
                )
                return True
        return False

    def find_archive_unused_entries(
        self, archive: Archive, input_files: Sequence[File], indexed_files: IndexedFiles
    ) -> list[ArchiveEntry]:
        """Entries of ``archive`` that none of ``input_files`` account for."""
        if self.options.should_extract() or self.options.allow_excess_sets:
            return []

        # Hash codes, because duplicate ROMs may all be bound to the same entry
        used_hash_codes = {
            f.hash_code()
            for f in input_files
            if isinstance(f, ArchiveEntry) and f.archive == archive
        }
        return [
            f
            for f in indexed_files.get_files_by_file_path().get(archive.file_path, [])
            if isinstance(f, ArchiveEntry)
            and f.archive == archive
            and not (
                isinstance(archive, ChdBinCue) and f.extracted_file_path.lower().endswith(".cue")
            )
            and f.hash_code() not in used_hash_codes
        ]
