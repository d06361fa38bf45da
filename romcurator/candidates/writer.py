"""Writes (and optionally tests) the candidates of one DAT.

Every binding ends in one of the ``WriteOutcome`` states. Write and test
failures are retried ``write_retry`` times and then settle at FAILED without
affecting sibling candidates; errors creating output directories propagate.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from pathlib import Path
from typing import Awaitable, Callable, Iterable, Optional

from romcurator.candidates.models import ReleaseCandidate
from romcurator.common import fileops
from romcurator.common.exceptions import RomCuratorError
from romcurator.common.types import MoveResult, WriteOutcome, WriterResult
from romcurator.core.concurrency import WriterContext
from romcurator.core.models import DAT
from romcurator.core.options import LinkMode, Options
from romcurator.files.archives import Zip
from romcurator.files.file import ArchiveEntry, File
from romcurator.logging_cfg import get_fileops_logger, log_call

logger = logging.getLogger(__name__)

# (written, needs_test)
WriteAttempt = tuple[bool, bool]


def _same_file(input_file: File, output_file: File) -> bool:
    return type(input_file) is type(output_file) and str(input_file) == str(output_file)


def check_file_contents(output_path: str, expected: File) -> Optional[str]:
    """Reason ``output_path`` does not hold ``expected``, or None when it does."""
    try:
        actual = File.file_of(output_path, expected.checksum_bitmask, detect_header=False)
    except OSError as e:
        return f"failed to parse: {e}"

    for alg in ("sha256", "sha1", "md5"):
        actual_value, expected_value = getattr(actual, alg), getattr(expected, alg)
        if actual_value and expected_value and actual_value != expected_value:
            return f"has the {alg.upper()} {actual_value}, expected {expected_value}"
    if (
        actual.crc32
        and expected.crc32
        and expected.crc32 != "00000000"
        and actual.crc32 != expected.crc32
    ):
        return f"has the CRC32 {actual.crc32}, expected {expected.crc32}"

    if actual.crc32:
        if not expected.size:
            logger.warning("%s: can't test, expected size is unknown", output_path)
            return None
        if actual.size != expected.size:
            return f"is of size {actual.size:,}B, expected {expected.size:,}B"
    return None


def check_zip_contents(zip_path: str, expected_entries: list[ArchiveEntry]) -> Optional[str]:
    """Reason the zip at ``zip_path`` does not hold exactly ``expected_entries``."""
    expected_by_path = {entry.entry_path: entry for entry in expected_entries}
    checksum_bitmask = 0
    for entry in expected_entries:
        checksum_bitmask |= entry.checksum_bitmask

    try:
        actual_entries = Zip(zip_path).get_archive_entries(checksum_bitmask)
    except RomCuratorError as e:
        return f"failed to get archive contents: {e}"
    actual_by_path = {entry.entry_path: entry for entry in actual_entries}

    if len(actual_by_path) != len(expected_by_path):
        return f"has {len(actual_by_path):,} files, expected {len(expected_by_path):,}"

    for entry_path, expected in expected_by_path.items():
        actual = actual_by_path.get(entry_path)
        if actual is None:
            return f"is missing the file {entry_path}"

        for alg in ("sha256", "sha1", "md5"):
            actual_value, expected_value = getattr(actual, alg), getattr(expected, alg)
            if actual_value and expected_value and actual_value != expected_value:
                return (
                    f"entry '{entry_path}' has the {alg.upper()} {actual_value}, "
                    f"expected {expected_value}"
                )
        if (
            actual.crc32
            and expected.crc32
            and expected.crc32 != "00000000"
            and actual.crc32 != expected.crc32
        ):
            return f"entry '{entry_path}' has the CRC32 {actual.crc32}, expected {expected.crc32}"

        if actual.crc32 and expected.crc32:
            if not expected.size:
                logger.warning("%s|%s: can't test, expected size is unknown", zip_path, entry_path)
                continue
            if actual.size != expected.size:
                return (
                    f"entry '{entry_path}' is of size {actual.size:,}B, "
                    f"expected {expected.size:,}B"
                )
    return None


def check_symlink(link_path: str, expected_target: str) -> Optional[str]:
    if not os.path.lexists(link_path):
        return "doesn't exist"
    if not fileops.is_symlink(link_path):
        return "is not a symlink"
    existing_target = fileops.read_symlink(link_path)
    if os.path.normpath(existing_target) != os.path.normpath(expected_target):
        return f"has the target path '{existing_target}', expected '{expected_target}'"
    if not os.path.exists(link_path):
        return f"has the target path '{existing_target}' which doesn't exist"
    return None


def check_hardlink(link_path: str, input_path: str) -> Optional[str]:
    if not os.path.exists(link_path):
        return "doesn't exist"
    if not fileops.same_inode(link_path, input_path):
        return f"references a different file than '{input_path}'"
    return None


def _extract_to_path(input_file: File, output_path: str) -> None:
    # Written next to the destination, then swapped in
    tmp_path = fileops.make_temp_path(Path(output_path).parent)
    try:
        input_file.extract_and_patch_to_file(tmp_path)
        os.replace(tmp_path, output_path)
    except BaseException:
        if tmp_path.exists():
            tmp_path.unlink()
        raise


class CandidateWriter:
    def __init__(
        self,
        options: Options,
        context: WriterContext,
        fileops_logger: Optional[logging.Logger] = None,
    ):
        self.options = options
        self.context = context
        self.fileops_logger = fileops_logger or get_fileops_logger()
        self._files_queued_for_deletion: list[File] = []

    @property
    def _verb(self) -> str:
        return "writing" if self.options.should_write() else "testing"

    @log_call()
    async def write(self, dat: DAT, candidates: Iterable[ReleaseCandidate]) -> WriterResult:
        """Write and test ``candidates``; returns what was written and what to delete."""
        candidates = list(candidates)
        start = time.monotonic()
        result = WriterResult(
            dat_name=dat.name,
            wrote=[rwf.output_file for c in candidates for rwf in c.roms_with_files],
        )
        if not candidates:
            return result
        if not self.options.should_write() and not self.options.should_test():
            return result

        writable = [c for c in candidates if c.roms_with_files]
        logger.debug(
            "%s: %s %d candidate(s)", dat.name, self._verb, len(writable)
        )

        async def _write_candidate(candidate: ReleaseCandidate) -> None:
            logger.debug("%s: %s: %s candidate", dat.name, candidate.name, self._verb)
            if self.options.should_link():
                await self._write_link(dat, candidate, result)
            else:
                await self._write_zip(dat, candidate, result)
                await self._write_raw(dat, candidate, result)

        await self.context.semaphore.map(writable, _write_candidate)

        # Never delete a path that is also an output, input and output dirs may overlap
        written_paths = {f.file_path for f in result.wrote}
        seen: set[str] = set()
        for queued in self._files_queued_for_deletion:
            if queued.file_path in written_paths or queued.file_path in seen:
                continue
            seen.add(queued.file_path)
            result.moved.append(queued)
        self._files_queued_for_deletion = []

        result.duration_ms = (time.monotonic() - start) * 1000
        logger.debug("%s: done %s: %s", dat.name, self._verb, result)
        return result

    # Shared

    @staticmethod
    async def _ensure_output_dir(output_path: str) -> None:
        await asyncio.to_thread(os.makedirs, os.path.dirname(output_path) or ".", exist_ok=True)

    def _enqueue_file_deletion(self, input_file: File) -> None:
        # Inputs may feed many outputs, so deletion happens after every write
        if self.options.should_move():
            self._files_queued_for_deletion.append(input_file)

    @staticmethod
    def _record(
        result: WriterResult,
        pairs: Iterable[tuple[File, File]],
        outcome: WriteOutcome,
        error: Optional[str] = None,
    ) -> None:
        for input_file, output_file in pairs:
            result.add_outcome(str(input_file), str(output_file), outcome, error)

    async def _check_existing(
        self,
        dat: DAT,
        candidate: ReleaseCandidate,
        output_path: str,
        kind: str,
        test: Callable[[], Awaitable[Optional[str]]],
    ) -> Optional[tuple[WriteOutcome, Optional[str]]]:
        """Decide what to do about an output path; None means go ahead and write."""
        prefix = f"{dat.name}: {candidate.name}: {output_path}"
        written_by = self.context.output_paths_written.get(output_path)

        if await asyncio.to_thread(os.path.lexists, output_path):
            if (
                self.options.should_write()
                and not self.options.overwrite
                and not self.options.overwrite_invalid
            ):
                if written_by is not None:
                    logger.warning(
                        "%s: not overwriting existing %s already written by '%s'",
                        prefix, kind, written_by,
                    )
                else:
                    logger.debug("%s: not overwriting existing %s", prefix, kind)
                return WriteOutcome.SKIPPED, None

            if not self.options.should_write() or self.options.overwrite_invalid:
                existing_test = await test()
                if self.options.should_write() and not existing_test:
                    logger.debug(
                        "%s: not overwriting existing %s, the existing %s is correct",
                        prefix, kind, kind,
                    )
                    return WriteOutcome.SKIPPED, None
                if not self.options.should_write():
                    if existing_test:
                        logger.error("%s: %s", prefix, existing_test)
                        return WriteOutcome.FAILED, existing_test
                    logger.debug("%s: test passed", prefix)
                    return WriteOutcome.VERIFIED, None

            if self.options.should_write() and written_by is not None:
                logger.warning(
                    "%s: overwriting existing %s already written by '%s'", prefix, kind, written_by
                )
        elif not self.options.should_write():
            logger.error("%s: doesn't exist", prefix)
            return WriteOutcome.FAILED, "doesn't exist"

        self.context.output_paths_written[output_path] = dat.name
        return None

    async def _write_with_retry(
        self,
        dat: DAT,
        candidate: ReleaseCandidate,
        output_path: str,
        kind: str,
        write: Callable[[], Awaitable[WriteAttempt]],
        test: Callable[[], Awaitable[Optional[str]]],
    ) -> tuple[WriteOutcome, Optional[str]]:
        error: Optional[str] = "write failed"
        for attempt in range(self.options.write_retry + 1):
            written, needs_test = await write()
            if not written:
                continue
            if not self.options.should_test() or not needs_test:
                return WriteOutcome.WRITE_ATTEMPTED, None

            error = await test()
            if not error:
                return WriteOutcome.VERIFIED, None
            message = f"{dat.name}: {candidate.name}: {output_path}: written {kind} {error}"
            if attempt < self.options.write_retry:
                logger.warning("%s, retrying", message)
            else:
                logger.error(message)
        return WriteOutcome.FAILED, error

    # Zip

    async def _write_zip(self, dat: DAT, candidate: ReleaseCandidate, result: WriterResult) -> None:
        pairs: list[tuple[File, ArchiveEntry]] = [
            (rwf.input_file, rwf.output_file)
            for rwf in candidate.roms_with_files
            if isinstance(rwf.output_file, ArchiveEntry)
        ]
        if not pairs:
            logger.debug("%s: %s: no zip archives to write", dat.name, candidate.name)
            return

        zip_path = pairs[0][1].file_path
        expected_entries = [output for _, output in pairs]

        async def _test() -> Optional[str]:
            logger.debug("%s: %s: %s: testing zip", dat.name, candidate.name, zip_path)
            return await asyncio.to_thread(check_zip_contents, zip_path, expected_entries)

        decided = await self._check_existing(dat, candidate, zip_path, "zip file", _test)
        if decided is not None:
            self._record(result, pairs, *decided)
            return

        async def _write() -> WriteAttempt:
            return await self._write_zip_file(dat, candidate, zip_path, pairs), True

        outcome, error = await self._write_with_retry(
            dat, candidate, zip_path, "zip", _write, _test
        )
        self._record(result, pairs, outcome, error)
        if outcome != WriteOutcome.FAILED:
            for input_file, _ in pairs:
                self._enqueue_file_deletion(input_file)

    async def _write_zip_file(
        self,
        dat: DAT,
        candidate: ReleaseCandidate,
        zip_path: str,
        pairs: list[tuple[File, ArchiveEntry]],
    ) -> bool:
        lines = [
            f"  '{input_file}' ({input_file.size:,}B) -> '{output.entry_path}'"
            for input_file, output in pairs
        ]
        self.fileops_logger.info(
            "%s: %s: creating zip archive '%s' with the entries:\n%s",
            dat.name, candidate.name, zip_path, "\n".join(lines),
        )

        # A raw move elsewhere may be using the same input paths
        locked_paths = (
            sorted({input_file.file_path for input_file, _ in pairs})
            if self.options.should_move()
            else []
        )

        async def _create() -> bool:
            moves = self.context.file_path_moves
            inputs = [
                (
                    input_file.with_file_path(moves[input_file.file_path])
                    if type(input_file) is File and input_file.file_path in moves
                    else input_file,
                    output,
                )
                for input_file, output in pairs
            ]
            await self._ensure_output_dir(zip_path)
            try:
                await asyncio.to_thread(Zip(zip_path).create_archive, inputs)
            except (OSError, RomCuratorError) as e:
                logger.error(
                    "%s: %s: %s: failed to create zip: %s", dat.name, candidate.name, zip_path, e
                )
                return False
            logger.debug(
                "%s: %s: %s: wrote %d archive entr%s",
                dat.name, candidate.name, zip_path, len(pairs), "y" if len(pairs) == 1 else "ies",
            )
            return True

        return await self.context.move_mutex.run_exclusive_for_keys(locked_paths, _create)

    # Raw

    async def _write_raw(self, dat: DAT, candidate: ReleaseCandidate, result: WriterResult) -> None:
        pairs = [
            (rwf.input_file, rwf.output_file)
            for rwf in candidate.roms_with_files
            if not isinstance(rwf.output_file, ArchiveEntry)
        ]
        if not pairs:
            logger.debug("%s: %s: no raw files to write", dat.name, candidate.name)
            return

        # Raw copies of a whole archive repeat the same output for every ROM
        unique: dict[str, tuple[File, File]] = {}
        for input_file, output_file in pairs:
            unique.setdefault(str(output_file), (input_file, output_file))

        # Entries of one input archive are extracted together
        by_input_path: dict[str, list[tuple[File, File]]] = {}
        for input_file, output_file in unique.values():
            by_input_path.setdefault(input_file.file_path, []).append((input_file, output_file))

        for group in by_input_path.values():
            await asyncio.gather(
                *(
                    self._write_raw_single(dat, candidate, input_file, output_file, result)
                    for input_file, output_file in group
                )
            )

    async def _write_raw_single(
        self,
        dat: DAT,
        candidate: ReleaseCandidate,
        input_file: File,
        output_file: File,
        result: WriterResult,
    ) -> None:
        pair = [(input_file, output_file)]
        if self.options.should_write() and _same_file(input_file, output_file):
            was_moved = self.options.should_move() and await self.context.move_mutex.was_moved(
                input_file.file_path
            )
            if not was_moved:
                logger.debug(
                    "%s: %s: %s: input and output file is the same, skipping",
                    dat.name, candidate.name, output_file,
                )
                self._record(result, pair, WriteOutcome.SKIPPED)
                return

        output_path = output_file.file_path

        async def _test() -> Optional[str]:
            logger.debug("%s: %s: %s: testing raw file", dat.name, candidate.name, output_path)
            return await asyncio.to_thread(check_file_contents, output_path, output_file)

        decided = await self._check_existing(dat, candidate, output_path, "file", _test)
        if decided is not None:
            self._record(result, pair, *decided)
            return

        async def _write() -> WriteAttempt:
            if self.options.should_move():
                moved = await self._move_raw_file(dat, candidate, input_file, output_path)
            else:
                moved = await self._copy_raw_file(dat, candidate, input_file, output_path)
            # A rename leaves the bytes untouched, only copies are tested
            return moved is not None, moved == MoveResult.COPIED

        outcome, error = await self._write_with_retry(
            dat, candidate, output_path, "file", _write, _test
        )
        self._record(result, pair, outcome, error)
        if outcome != WriteOutcome.FAILED:
            self._enqueue_file_deletion(input_file)

    async def _move_raw_file(
        self, dat: DAT, candidate: ReleaseCandidate, input_file: File, output_path: str
    ) -> Optional[MoveResult]:
        async def _locked(moved_to: Optional[str]) -> tuple[Optional[MoveResult], Optional[str]]:
            if moved_to is not None:
                if moved_to == output_path:
                    # Already here, possibly from a failed attempt; the source is gone so
                    # only a test can tell whether the output is good
                    return MoveResult.COPIED, None
                # Already moved once, copy from where it went
                copied = await self._copy_raw_file(
                    dat, candidate, input_file.with_file_path(moved_to), output_path
                )
                return copied, None

            if (
                isinstance(input_file, ArchiveEntry)
                or input_file.file_header is not None
                or input_file.patch is not None
            ):
                # Can't be moved as-is
                return await self._copy_raw_file(dat, candidate, input_file, output_path), None

            self.fileops_logger.info(
                "%s: %s: moving file '%s' (%s B) -> '%s'",
                dat.name, candidate.name, input_file, f"{input_file.size:,}", output_path,
            )
            await self._ensure_output_dir(output_path)
            try:
                moved = await asyncio.to_thread(
                    fileops.move_file, input_file.file_path, output_path, self.fileops_logger
                )
            except (OSError, RomCuratorError) as e:
                logger.error(
                    "%s: %s: failed to move file '%s' -> '%s': %s",
                    dat.name, candidate.name, input_file, output_path, e,
                )
                return None, None
            return moved, output_path

        return await self.context.move_mutex.move_file(input_file.file_path, _locked)

    async def _copy_raw_file(
        self, dat: DAT, candidate: ReleaseCandidate, input_file: File, output_path: str
    ) -> Optional[MoveResult]:
        action = "extract" if isinstance(input_file, ArchiveEntry) else "copy"
        self.fileops_logger.info(
            "%s: %s: %s file '%s' (%s B) -> '%s'",
            dat.name,
            candidate.name,
            "extracting" if action == "extract" else "copying",
            input_file,
            f"{input_file.size:,}",
            output_path,
        )
        await self._ensure_output_dir(output_path)
        try:
            await asyncio.to_thread(_extract_to_path, input_file, output_path)
        except (OSError, RomCuratorError) as e:
            logger.error(
                "%s: %s: failed to %s file '%s' -> '%s': %s",
                dat.name, candidate.name, action, input_file, output_path, e,
            )
            return None
        return MoveResult.COPIED

    # Link

    async def _write_link(self, dat: DAT, candidate: ReleaseCandidate, result: WriterResult) -> None:
        for rwf in candidate.roms_with_files:
            await self._write_link_single(dat, candidate, rwf.input_file, rwf.output_file, result)

    def _test_link(self, link_path: str, target_path: str, input_file: File, output_file: File):
        if self.options.link_mode == LinkMode.SYMLINK:
            return check_symlink(link_path, target_path)
        if self.options.link_mode == LinkMode.HARDLINK:
            return check_hardlink(link_path, input_file.file_path)
        return check_file_contents(link_path, output_file)

    async def _write_link_single(
        self,
        dat: DAT,
        candidate: ReleaseCandidate,
        input_file: File,
        output_file: File,
        result: WriterResult,
    ) -> None:
        pair = [(input_file, output_file)]
        if _same_file(input_file, output_file):
            logger.debug(
                "%s: %s: %s: input and output file is the same, skipping",
                dat.name, candidate.name, output_file,
            )
            self._record(result, pair, WriteOutcome.SKIPPED)
            return

        link_path = output_file.file_path
        target_path = os.path.abspath(input_file.file_path)
        relative = self.options.link_mode == LinkMode.SYMLINK and self.options.symlink_relative
        expected_target = (
            fileops.symlink_relative_path(target_path, link_path) if relative else target_path
        )

        async def _test() -> Optional[str]:
            return await asyncio.to_thread(
                self._test_link, link_path, expected_target, input_file, output_file
            )

        decided = await self._check_existing(dat, candidate, link_path, "link", _test)
        if decided is not None:
            self._record(result, pair, *decided)
            return

        async def _write() -> WriteAttempt:
            return await self._write_raw_link(dat, candidate, target_path, link_path, relative), True

        outcome, error = await self._write_with_retry(
            dat, candidate, link_path, "link", _write, _test
        )
        self._record(result, pair, outcome, error)

    async def _write_raw_link(
        self, dat: DAT, candidate: ReleaseCandidate, target_path: str, link_path: str, relative: bool
    ) -> bool:
        await self._ensure_output_dir(link_path)
        mode = self.options.link_mode
        self.fileops_logger.info(
            "%s: %s: creating %s '%s' -> '%s'", dat.name, candidate.name, mode.value, target_path, link_path
        )
        try:
            if mode == LinkMode.SYMLINK:
                await asyncio.to_thread(fileops.symlink, target_path, link_path, relative)
            elif mode == LinkMode.HARDLINK:
                await asyncio.to_thread(fileops.hardlink, target_path, link_path)
            else:
                await asyncio.to_thread(fileops.reflink, target_path, link_path)
        except (OSError, RomCuratorError) as e:
            logger.error(
                "%s: %s: %s: failed to link from %s: %s",
                dat.name, candidate.name, link_path, target_path, e,
            )
            return False
        return True
