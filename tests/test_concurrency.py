"""Tests for the asyncio gates used by generation and writing."""

import asyncio

from romcurator.candidates.models import ReleaseCandidate, ROMWithFiles
from romcurator.core.concurrency import (
    CandidateWriterSemaphore,
    ElasticSemaphore,
    FileMoveMutex,
    KeyedMutex,
    MappableSemaphore,
    WriterContext,
)
from romcurator.core.models import ROM, Game
from romcurator.core.options import Options
from romcurator.files.file import File


class TestMappableSemaphore:
    def test_results_keep_input_order(self):
        async def _run():
            semaphore = MappableSemaphore(2)

            async def _work(value):
                # Later values finish first
                await asyncio.sleep(0.001 * (5 - value))
                return value * 10

            return await semaphore.map(range(5), _work)

        assert asyncio.run(_run()) == [0, 10, 20, 30, 40]

    def test_never_exceeds_thread_count(self):
        async def _run():
            semaphore = MappableSemaphore(2)
            running = 0
            peak = 0

            async def _work(_):
                nonlocal running, peak
                running += 1
                peak = max(peak, running)
                await asyncio.sleep(0.001)
                running -= 1

            await semaphore.map(range(10), _work)
            return peak

        assert asyncio.run(_run()) == 2

    def test_empty_input(self):
        assert asyncio.run(MappableSemaphore(1).map([], lambda v: v)) == []


class TestElasticSemaphore:
    def test_capacity_grows_for_oversized_weight(self):
        async def _run():
            semaphore = ElasticSemaphore(10)

            async def _work():
                return semaphore.available

            available_inside = await semaphore.run_exclusive(_work, 25)
            return semaphore.capacity, available_inside, semaphore.available

        assert asyncio.run(_run()) == (25, 0, 25)

    def test_tiny_weights_are_not_gated(self):
        async def _run():
            semaphore = ElasticSemaphore(1000)

            async def _work():
                return semaphore.available

            return await semaphore.run_exclusive(_work, 1)

        assert asyncio.run(_run()) == 1000


class TestKeyedMutex:
    def test_same_key_is_exclusive(self):
        async def _run():
            mutex = KeyedMutex()
            order = []

            async def _work(tag):
                order.append(f"{tag} start")
                await asyncio.sleep(0.001)
                order.append(f"{tag} end")

            await asyncio.gather(
                mutex.run_exclusive_for_key("k", lambda: _work("a")),
                mutex.run_exclusive_for_key("k", lambda: _work("b")),
            )
            return order

        assert asyncio.run(_run()) == ["a start", "a end", "b start", "b end"]

    def test_overlapping_key_sets_do_not_deadlock(self):
        async def _run():
            mutex = KeyedMutex()

            async def _work():
                await asyncio.sleep(0.001)
                return True

            return await asyncio.wait_for(
                asyncio.gather(
                    mutex.run_exclusive_for_keys(["x", "y"], _work),
                    mutex.run_exclusive_for_keys(["y", "x"], _work),
                ),
                timeout=5,
            )

        assert asyncio.run(_run()) == [True, True]

    def test_idle_keys_expire(self):
        async def _run():
            mutex = KeyedMutex(max_size=2)

            async def _noop():
                return None

            for key in ("a", "b", "c"):
                await mutex.run_exclusive_for_key(key, _noop)
            return len(mutex), mutex.is_locked("a")

        assert asyncio.run(_run()) == (2, False)


class TestFileMoveMutex:
    def test_ledger_records_destinations(self):
        async def _run():
            mutex = FileMoveMutex()
            seen = []

            async def _move(moved_to):
                seen.append(moved_to)
                return "moved", "/out/a.bin"

            first = await mutex.move_file("/in/a.bin", _move)
            second = await mutex.move_file("/in/a.bin", _move)
            return first, second, seen, await mutex.was_moved("/in/a.bin"), await mutex.was_moved("/in/b.bin")

        first, second, seen, moved, not_moved = asyncio.run(_run())
        assert (first, second) == ("moved", "moved")
        assert seen == [None, "/out/a.bin"]
        assert moved is True
        assert not_moved is False

    def test_in_place_results_are_not_recorded(self):
        async def _run():
            mutex = FileMoveMutex()

            async def _stay(moved_to):
                return None, "/in/a.bin"

            await mutex.move_file("/in/a.bin", _stay)
            return mutex.file_path_moves

        assert asyncio.run(_run()) == {}


def _candidate(name, *output_paths):
    rom = ROM(f"{name}.bin", 4, crc32="11111111")
    rwfs = tuple(
        ROMWithFiles(rom, File(f"/in/{name}.bin", size=4096), File(path, size=4096))
        for path in output_paths
    )
    return ReleaseCandidate(Game(name=name, roms=(rom,)), None, rwfs)


class TestCandidateWriterSemaphore:
    def test_fewer_files_first_then_by_name(self):
        async def _run():
            semaphore = CandidateWriterSemaphore(1)
            order = []

            async def _write(candidate):
                order.append(candidate.name)
                return candidate.name

            results = await semaphore.map(
                [
                    _candidate("zeta", "/out/z1", "/out/z2"),
                    _candidate("beta", "/out/b"),
                    _candidate("alpha", "/out/a"),
                ],
                _write,
            )
            return order, results, semaphore.open_locks()

        order, results, open_locks = asyncio.run(_run())
        assert order == ["alpha", "beta", "zeta"]
        assert results == ["alpha", "beta", "zeta"]
        assert open_locks == 0

    def test_shared_output_paths_are_serialized(self):
        async def _run():
            semaphore = CandidateWriterSemaphore(4)
            active = set()
            overlaps = []

            async def _write(candidate):
                if "/out/shared" in active:
                    overlaps.append(candidate.name)
                active.add("/out/shared")
                await asyncio.sleep(0.001)
                active.discard("/out/shared")

            await semaphore.map(
                [_candidate("one", "/out/shared"), _candidate("two", "/out/shared")], _write
            )
            return overlaps

        assert asyncio.run(_run()) == []


def test_writer_context_uses_writer_threads():
    context = WriterContext.create(Options(writer_threads=3))
    assert context.semaphore.mappable_semaphore.threads == 3
    assert context.output_paths_written == {}
    assert context.file_path_moves is context.move_mutex.file_path_moves
