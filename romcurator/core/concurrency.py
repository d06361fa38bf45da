"""asyncio concurrency gates shared by candidate generation and writing.

Nothing in here is a module-level singleton: a ``WriterContext`` owns every
gate and ledger one writer run needs, and is passed explicitly.
"""

from __future__ import annotations

import asyncio
import logging
import math
import os
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterable, Optional, Sequence, TypeVar

from romcurator import config

if TYPE_CHECKING:
    from romcurator.candidates.models import ReleaseCandidate
    from romcurator.core.options import Options

logger = logging.getLogger(__name__)

T = TypeVar("T")
V = TypeVar("V")


class MappableSemaphore:
    """Count gate that maps a coroutine over values, returning results in input order."""

    def __init__(self, threads: int):
        self.threads = max(1, int(threads))
        self._semaphore: Optional[asyncio.Semaphore] = None

    @property
    def semaphore(self) -> asyncio.Semaphore:
        # Created lazily so the gate binds to the loop that first uses it
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.threads)
        return self._semaphore

    async def run_exclusive(self, callback: Callable[[], Awaitable[T]]) -> T:
        async with self.semaphore:
            return await callback()

    async def map(self, values: Iterable[V], callback: Callable[[V], Awaitable[T]]) -> list[T]:
        values = list(values)
        if not values:
            return []
        return list(
            await asyncio.gather(
                *(self.run_exclusive(lambda v=value: callback(v)) for value in values)
            )
        )


class ElasticSemaphore:
    """Weighted semaphore whose capacity grows when a single weight exceeds it."""

    def __init__(self, capacity: float):
        self.capacity = max(1, math.ceil(capacity))
        self._available = self.capacity
        self._condition: Optional[asyncio.Condition] = None
        self._capacity_lock: Optional[asyncio.Lock] = None

    @property
    def available(self) -> int:
        return self._available

    def _lazy_init(self) -> None:
        if self._condition is None:
            self._condition = asyncio.Condition()
            self._capacity_lock = asyncio.Lock()

    async def run_exclusive(self, callback: Callable[[], Awaitable[T]], weight: float) -> T:
        weight_normalized = max(1, math.ceil(weight))

        # Under 1% of the capacity is not worth gating
        if weight_normalized / self.capacity * 100 < 1:
            return await callback()

        self._lazy_init()
        if weight_normalized > self.capacity:
            async with self._capacity_lock:
                increase = weight_normalized - self.capacity
                if increase > 0:
                    async with self._condition:
                        self.capacity += increase
                        self._available += increase
                        self._condition.notify_all()

        async with self._condition:
            await self._condition.wait_for(lambda: self._available >= weight_normalized)
            self._available -= weight_normalized
        try:
            return await callback()
        finally:
            async with self._condition:
                self._available += weight_normalized
                self._condition.notify_all()


class _KeyLock:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.users = 0


class KeyedMutex:
    """One asyncio lock per key, with least-recently-used expiry of idle keys.

    Multiple keys are always acquired in sorted order, so two callers asking
    for overlapping key sets cannot deadlock each other.
    """

    def __init__(self, max_size: Optional[int] = None):
        self.max_size = max_size
        self._locks: "OrderedDict[str, _KeyLock]" = OrderedDict()
        self._global: Optional[asyncio.Lock] = None

    @property
    def _global_lock(self) -> asyncio.Lock:
        if self._global is None:
            self._global = asyncio.Lock()
        return self._global

    def __len__(self) -> int:
        return len(self._locks)

    def is_locked(self, key: str) -> bool:
        entry = self._locks.get(key)
        return entry is not None and entry.lock.locked()

    async def run_exclusive_globally(self, callback: Callable[[], Awaitable[T]]) -> T:
        async with self._global_lock:
            return await callback()

    async def _checkout(self, keys: Sequence[str]) -> list[_KeyLock]:
        async with self._global_lock:
            entries = []
            for key in keys:
                entry = self._locks.get(key)
                if entry is None:
                    entry = _KeyLock()
                    self._locks[key] = entry
                self._locks.move_to_end(key)
                entry.users += 1
                entries.append(entry)
            self._expire()
            return entries

    def _expire(self) -> None:
        if self.max_size is None or len(self._locks) <= self.max_size:
            return
        # Oldest first; only keys nobody holds or waits on can go
        for key in list(self._locks):
            if len(self._locks) <= self.max_size:
                break
            if self._locks[key].users == 0:
                del self._locks[key]

    async def _checkin(self, entries: Iterable[_KeyLock]) -> None:
        async with self._global_lock:
            for entry in entries:
                entry.users -= 1
            self._expire()

    async def acquire_multiple(self, keys: Iterable[str]) -> list[_KeyLock]:
        unique_keys = sorted(set(keys))
        entries = await self._checkout(unique_keys)
        acquired: list[_KeyLock] = []
        try:
            for entry in entries:
                await entry.lock.acquire()
                acquired.append(entry)
        except BaseException:
            for entry in acquired:
                entry.lock.release()
            await self._checkin(entries)
            raise
        return entries

    async def release_multiple(self, entries: list[_KeyLock]) -> None:
        for entry in reversed(entries):
            entry.lock.release()
        await self._checkin(entries)

    async def run_exclusive_for_key(self, key: str, callback: Callable[[], Awaitable[T]]) -> T:
        return await self.run_exclusive_for_keys([key], callback)

    async def run_exclusive_for_keys(
        self, keys: Iterable[str], callback: Callable[[], Awaitable[T]]
    ) -> T:
        entries = await self.acquire_multiple(keys)
        try:
            return await callback()
        finally:
            await self.release_multiple(entries)


class FileMoveMutex(KeyedMutex):
    """Serializes moves of the same input path and remembers where each one went."""

    def __init__(self, max_size: Optional[int] = None):
        super().__init__(max_size)
        self.file_path_moves: dict[str, str] = {}

    async def move_file(
        self,
        input_file_path: str,
        callback: Callable[[Optional[str]], Awaitable[tuple[T, Optional[str]]]],
    ) -> T:
        """Run ``callback(previous_destination)`` while holding the input path's lock.

        The callback returns ``(result, new_path)``; a new path different from
        the input is recorded in the ledger.
        """

        async def _locked() -> T:
            moved_to = self.file_path_moves.get(input_file_path)
            result, output_file_path = await callback(moved_to)
            if output_file_path is not None and output_file_path != input_file_path:
                self.file_path_moves[input_file_path] = output_file_path
            return result

        return await self.run_exclusive_for_key(input_file_path, _locked)

    async def was_moved(self, file_path: str) -> bool:
        if file_path in self.file_path_moves:
            return True

        # A move of this path may still be in flight
        async def _check() -> bool:
            return file_path in self.file_path_moves

        return await self.run_exclusive_for_key(file_path, _check)


class CandidateWriterSemaphore:
    """Count gate, then output-path mutex, then kilobyte gate, for every candidate write."""

    def __init__(
        self,
        threads: int,
        capacity_kilobytes: float = config.MAX_READ_WRITE_CONCURRENT_KILOBYTES,
    ):
        self.mappable_semaphore = MappableSemaphore(threads)
        self.output_paths_mutex = KeyedMutex(1000)
        self.filesize_semaphore = ElasticSemaphore(capacity_kilobytes)
        self._open_locks = 0

    async def map(
        self,
        candidates: Iterable["ReleaseCandidate"],
        callback: Callable[["ReleaseCandidate"], Awaitable[T]],
    ) -> list[T]:
        # Fewer files first, then stable by name
        ordered = sorted(candidates, key=lambda c: (len(c.roms_with_files), c.name))

        async def _run(candidate: "ReleaseCandidate") -> T:
            output_paths = [
                os.path.normpath(rwf.output_file.file_path) for rwf in candidate.roms_with_files
            ]
            total_kilobytes = sum(rwf.input_file.size for rwf in candidate.roms_with_files) / 1024

            async def _weighted() -> T:
                self._open_locks += 1
                try:
                    return await callback(candidate)
                finally:
                    self._open_locks -= 1

            return await self.output_paths_mutex.run_exclusive_for_keys(
                output_paths,
                lambda: self.filesize_semaphore.run_exclusive(_weighted, total_kilobytes),
            )

        return await self.mappable_semaphore.map(ordered, _run)

    def open_locks(self) -> int:
        return self._open_locks


@dataclass
class WriterContext:
    """Everything one writer run shares between its concurrent candidate writes."""

    semaphore: CandidateWriterSemaphore
    move_mutex: FileMoveMutex = field(default_factory=FileMoveMutex)
    # output path -> name of the DAT that wrote it this run
    output_paths_written: dict[str, str] = field(default_factory=dict)

    @property
    def file_path_moves(self) -> dict[str, str]:
        return self.move_mutex.file_path_moves

    @classmethod
    def create(cls, options: "Options", **kwargs: Any) -> "WriterContext":
        return cls(semaphore=CandidateWriterSemaphore(options.writer_threads, **kwargs))
