import asyncio
import hashlib
import os
import tempfile
import unittest
from pathlib import Path

from dupfind.errors import HashReadError, HashTimeoutError
from dupfind.utils.hash_pool import (
    HASH_ALGORITHMS,
    HashResult,
    HashTask,
    HashWorkerPool,
    compute_digest_for_path,
)


class ComputeDigestTest(unittest.TestCase):
    def test_md5_matches_hashlib(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / 'abc'
            path.write_bytes(b'abc')

            self.assertEqual('900150983cd24fb0d6963f7d28e17f72', compute_digest_for_path(path, 'md5'))

    def test_sha256_of_multi_chunk_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            content = os.urandom(3 * 4096 + 17)
            path = Path(tmpdir) / 'data'
            path.write_bytes(content)

            self.assertEqual(hashlib.sha256(content).hexdigest(), compute_digest_for_path(path, 'sha256'))

    def test_digest_is_independent_of_chunk_size(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / 'data'
            path.write_bytes(os.urandom(10000))

            for algorithm in HASH_ALGORITHMS:
                with self.subTest(algorithm=algorithm):
                    self.assertEqual(
                        compute_digest_for_path(path, algorithm, 1 << 20),
                        compute_digest_for_path(path, algorithm, 7))

    def test_default_digest_is_lowercase_hex(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / 'data'
            path.write_bytes(b'hello')

            digest = compute_digest_for_path(path)

            self.assertEqual(32, len(digest))
            self.assertEqual(digest.lower(), digest)
            int(digest, 16)

    def test_equal_and_different_content(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            a = Path(tmpdir) / 'a'
            b = Path(tmpdir) / 'b'
            c = Path(tmpdir) / 'c'
            a.write_bytes(b'abc')
            b.write_bytes(b'abc')
            c.write_bytes(b'xyz')

            self.assertEqual(compute_digest_for_path(a), compute_digest_for_path(b))
            self.assertNotEqual(compute_digest_for_path(a), compute_digest_for_path(c))

    def test_empty_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / 'empty'
            path.write_bytes(b'')

            self.assertEqual(hashlib.md5(b'').hexdigest(), compute_digest_for_path(path, 'md5'))

    def test_missing_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            with self.assertRaises(FileNotFoundError):
                compute_digest_for_path(Path(tmpdir) / 'missing')


async def collect(pool: HashWorkerPool, tasks: list[HashTask]) -> list[HashResult]:
    """Submit tasks while concurrently draining results, as a coordinator does."""
    results = []

    async def consume():
        async for result in pool.results():
            results.append(result)

    consumer = asyncio.create_task(consume())
    for task in tasks:
        await pool.submit(task)
    pool.seal()
    await consumer
    return results


class HashWorkerPoolTest(unittest.TestCase):
    def test_hashes_in_worker_processes(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            a = Path(tmpdir) / 'a'
            b = Path(tmpdir) / 'b'
            a.write_bytes(b'abc')
            b.write_bytes(b'xyz')

            with HashWorkerPool(2, algorithm='md5') as pool:
                results = asyncio.run(collect(pool, [HashTask(a, 3), HashTask(b, 3)]))

            by_path = {r.path: r for r in results}
            self.assertEqual(hashlib.md5(b'abc').hexdigest(), by_path[a].digest)
            self.assertEqual(hashlib.md5(b'xyz').hexdigest(), by_path[b].digest)
            self.assertTrue(all(r.ok and r.size == 3 for r in results))

    def test_thread_executor(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            paths = []
            for i in range(20):
                path = Path(tmpdir) / f'f{i}'
                path.write_bytes(b'x' * i)
                paths.append(path)

            with HashWorkerPool(3, executor='thread', algorithm='sha1') as pool:
                results = asyncio.run(collect(pool, [HashTask(p, i) for i, p in enumerate(paths)]))

            self.assertEqual(set(paths), {r.path for r in results})
            for result in results:
                self.assertEqual(hashlib.sha1(b'x' * result.size).hexdigest(), result.digest)

    def test_read_error_fails_only_that_task(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            present = Path(tmpdir) / 'present'
            present.write_bytes(b'abc')
            missing = Path(tmpdir) / 'missing'

            with HashWorkerPool(2, executor='thread') as pool:
                results = asyncio.run(collect(pool, [HashTask(missing, 3), HashTask(present, 3)]))

            by_path = {r.path: r for r in results}
            self.assertTrue(by_path[present].ok)
            self.assertFalse(by_path[missing].ok)
            self.assertIsNone(by_path[missing].digest)
            self.assertIsInstance(by_path[missing].error, HashReadError)
            self.assertIsInstance(by_path[missing].error.cause, FileNotFoundError)
            self.assertEqual(missing, by_path[missing].error.path)

    def test_results_end_immediately_when_nothing_was_submitted(self):
        with HashWorkerPool(1, executor='thread') as pool:
            self.assertEqual([], asyncio.run(collect(pool, [])))

    def test_submit_waits_for_capacity(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            a = Path(tmpdir) / 'a'
            b = Path(tmpdir) / 'b'
            a.write_bytes(b'abc')
            b.write_bytes(b'xyz')

            async def scenario():
                results = pool.results()
                self.assertTrue(await pool.submit(HashTask(a, 3)))

                # The only slot is held until the result of the first task is consumed.
                with self.assertRaises(asyncio.TimeoutError):
                    await asyncio.wait_for(pool.submit(HashTask(b, 3)), timeout=0.2)

                first = await anext(results)
                self.assertEqual(a, first.path)

                self.assertTrue(await pool.submit(HashTask(b, 3)))
                pool.seal()
                rest = [r async for r in results]
                self.assertEqual([b], [r.path for r in rest])

            with HashWorkerPool(1, queue_capacity=1, executor='thread') as pool:
                self.assertEqual(1, pool.queue_capacity)
                asyncio.run(scenario())

    def test_submit_after_seal_is_rejected(self):
        async def scenario():
            pool.seal()
            with self.assertRaises(RuntimeError):
                await pool.submit(HashTask(Path('x'), 1))

        with HashWorkerPool(1, executor='thread') as pool:
            asyncio.run(scenario())

    @unittest.skipUnless(hasattr(os, 'mkfifo'), "requires named pipes")
    def test_timeout_produces_error_result(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            # Opening a FIFO for reading blocks until a writer shows up, which never happens.
            fifo = Path(tmpdir) / 'fifo'
            os.mkfifo(fifo)

            with HashWorkerPool(1, timeout=0.5) as pool:
                results = asyncio.run(collect(pool, [HashTask(fifo, 0)]))

            self.assertEqual(1, len(results))
            self.assertIsInstance(results[0].error, HashTimeoutError)
            self.assertEqual(0.5, results[0].error.timeout)

    @unittest.skipUnless(hasattr(os, 'mkfifo'), "requires named pipes")
    def test_abandon_ends_results_and_unblocks_submitters(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            fifo = Path(tmpdir) / 'fifo'
            os.mkfifo(fifo)

            async def scenario():
                results = []

                async def consume():
                    async for result in pool.results():
                        results.append(result)

                consumer = asyncio.create_task(consume())
                self.assertTrue(await pool.submit(HashTask(fifo, 0)))
                blocked = asyncio.create_task(pool.submit(HashTask(fifo, 0)))
                await asyncio.sleep(0.2)
                self.assertFalse(blocked.done())

                pool.abandon()

                self.assertFalse(await blocked)
                await consumer
                return results

            with HashWorkerPool(1, queue_capacity=1) as pool:
                self.assertEqual([], asyncio.run(scenario()))
                self.assertEqual(0, pool.in_flight)

    def test_invalid_configuration(self):
        with self.assertRaises(ValueError):
            HashWorkerPool(0)
        with self.assertRaises(ValueError):
            HashWorkerPool(1, algorithm='crc32')
        with self.assertRaises(ValueError):
            HashWorkerPool(1, executor='fiber')
        with self.assertRaises(ValueError):
            HashWorkerPool(1, queue_capacity=0)

    def test_default_capacity_is_twice_the_workers(self):
        with HashWorkerPool(3, executor='thread') as pool:
            self.assertEqual(3, pool.concurrency)
            self.assertEqual(6, pool.queue_capacity)


if __name__ == '__main__':
    unittest.main()
